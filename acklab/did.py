"""
DID (Decentralized Identifier) document support for ACK Lab agents.
Implements the parts of the W3C DID Core specification needed to verify
agent signatures: did:key, did:web and in-process documents.
"""

import time
import base64
import logging
from urllib.parse import unquote
from typing import Optional, Dict, Any, List, Tuple
from dataclasses import dataclass, field

import aiohttp

from .errors import DIDResolutionError
from .identity import Identity, DID_KEY_PREFIX, decode_multibase_key, encode_multibase_key

logger = logging.getLogger(__name__)

DID_CONTEXT = [
    "https://www.w3.org/ns/did/v1",
    "https://w3id.org/security/suites/ed25519-2020/v1",
]

ED25519_VERIFICATION_KEY_2020 = "Ed25519VerificationKey2020"
JSON_WEB_KEY_2020 = "JsonWebKey2020"

DEFAULT_CACHE_TTL_SECONDS = 300


@dataclass
class VerificationMethod:
    """A verification method in a DID document."""
    id: str
    type: str
    controller: str
    public_key_multibase: Optional[str] = None
    public_key_jwk: Optional[Dict[str, Any]] = None

    def public_key_bytes(self) -> bytes:
        """Raw Ed25519 public key bytes."""
        if self.public_key_multibase:
            return decode_multibase_key(self.public_key_multibase)

        jwk = self.public_key_jwk or {}
        if jwk.get('kty') == 'OKP' and jwk.get('crv') == 'Ed25519' and 'x' in jwk:
            x = jwk['x']
            return base64.urlsafe_b64decode(x + '=' * (-len(x) % 4))

        raise ValueError(f"Unsupported verification method: {self.id}")


@dataclass
class Service:
    """A service endpoint in a DID document."""
    id: str
    type: str
    service_endpoint: str


@dataclass
class DIDDocument:
    """
    W3C DID Document for an agent.

    See: https://www.w3.org/TR/did-core/
    """
    id: str
    verification_method: List[VerificationMethod]
    authentication: List[str] = field(default_factory=list)
    assertion_method: List[str] = field(default_factory=list)
    service: List[Service] = field(default_factory=list)
    context: List[str] = field(default_factory=lambda: list(DID_CONTEXT))
    controller: Optional[str] = None

    @classmethod
    def create(
        cls,
        did: str,
        public_key: bytes,
        key_id: Optional[str] = None,
        service_endpoint: Optional[str] = None,
    ) -> "DIDDocument":
        """Create a DID document with a single Ed25519 signing key."""
        key_id = key_id or f"{did}#signing-key"

        signing_method = VerificationMethod(
            id=key_id,
            type=ED25519_VERIFICATION_KEY_2020,
            controller=did,
            public_key_multibase=encode_multibase_key(public_key),
        )

        services = []
        if service_endpoint:
            services.append(Service(
                id=f"{did}#agent",
                type="AgentEndpoint",
                service_endpoint=service_endpoint,
            ))

        return cls(
            id=did,
            verification_method=[signing_method],
            authentication=[key_id],
            assertion_method=[key_id],
            service=services,
        )

    @classmethod
    def from_identity(
        cls,
        identity: Identity,
        service_endpoint: Optional[str] = None,
    ) -> "DIDDocument":
        """Create the DID document describing an identity's signing key."""
        return cls.create(
            did=identity.did,
            public_key=identity.public_key_bytes,
            key_id=identity.key_id,
            service_endpoint=service_endpoint,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-LD dictionary."""
        methods = []
        for vm in self.verification_method:
            method = {
                "id": vm.id,
                "type": vm.type,
                "controller": vm.controller,
            }
            if vm.public_key_multibase:
                method["publicKeyMultibase"] = vm.public_key_multibase
            if vm.public_key_jwk:
                method["publicKeyJwk"] = vm.public_key_jwk
            methods.append(method)

        data = {
            "@context": self.context,
            "id": self.id,
            "verificationMethod": methods,
            "authentication": self.authentication,
            "assertionMethod": self.assertion_method,
            "service": [
                {
                    "id": s.id,
                    "type": s.type,
                    "serviceEndpoint": s.service_endpoint,
                }
                for s in self.service
            ],
        }
        if self.controller:
            data["controller"] = self.controller
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DIDDocument":
        """Parse from JSON-LD dictionary."""
        verification_methods = [
            VerificationMethod(
                id=vm["id"],
                type=vm["type"],
                controller=vm.get("controller", data["id"]),
                public_key_multibase=vm.get("publicKeyMultibase"),
                public_key_jwk=vm.get("publicKeyJwk"),
            )
            for vm in data.get("verificationMethod", [])
        ]

        services = [
            Service(
                id=s["id"],
                type=s["type"],
                service_endpoint=s["serviceEndpoint"],
            )
            for s in data.get("service", [])
        ]

        # Relationships may embed a method instead of referencing it
        def references(key: str) -> List[str]:
            refs = []
            for entry in data.get(key, []):
                if isinstance(entry, dict):
                    refs.append(entry["id"])
                else:
                    refs.append(entry)
            return refs

        return cls(
            id=data["id"],
            verification_method=verification_methods,
            authentication=references("authentication"),
            assertion_method=references("assertionMethod"),
            service=services,
            context=data.get("@context", []),
            controller=data.get("controller"),
        )

    def _absolute(self, method_id: str) -> str:
        if method_id.startswith('#'):
            return self.id + method_id
        return method_id

    def get_verification_method(self, key_id: Optional[str] = None) -> Optional[VerificationMethod]:
        """Find a verification method by id, or the default assertion key."""
        if key_id:
            wanted = self._absolute(key_id)
            for vm in self.verification_method:
                if self._absolute(vm.id) == wanted:
                    return vm
            return None

        preferred = [self._absolute(ref) for ref in self.assertion_method + self.authentication]
        for ref in preferred:
            for vm in self.verification_method:
                if self._absolute(vm.id) == ref:
                    return vm

        return self.verification_method[0] if self.verification_method else None

    def get_service_endpoint(self, service_type: str = "AgentEndpoint") -> Optional[str]:
        """Get a service endpoint by type."""
        for s in self.service:
            if s.type == service_type:
                return s.service_endpoint
        return None


def strip_fragment(did_url: str) -> str:
    """Drop the #fragment from a DID URL."""
    return did_url.split('#', 1)[0]


def resolve_did_key(did: str) -> DIDDocument:
    """Build the DID document implied by a did:key identifier."""
    multibase = did[len(DID_KEY_PREFIX):]
    try:
        public_key = decode_multibase_key(multibase)
    except ValueError as e:
        raise DIDResolutionError(f"Invalid did:key {did}: {e}") from e

    return DIDDocument.create(
        did=did,
        public_key=public_key,
        key_id=f"{did}#{multibase}",
    )


def did_web_url(did: str, scheme: str = "https") -> str:
    """
    Map a did:web identifier to the URL of its DID document.

    did:web:example.com            -> https://example.com/.well-known/did.json
    did:web:example.com:agents:a1  -> https://example.com/agents/a1/did.json
    """
    parts = did.split(':')
    if len(parts) < 3 or parts[0] != 'did' or parts[1] != 'web':
        raise DIDResolutionError(f"Not a did:web identifier: {did}")

    host = unquote(parts[2])
    path = [unquote(p) for p in parts[3:]]

    if path:
        return f"{scheme}://{host}/{'/'.join(path)}/did.json"
    return f"{scheme}://{host}/.well-known/did.json"


class DIDResolver:
    """
    DID resolver with caching.

    Resolution order:
    1. Documents registered in-process
    2. Cache
    3. did:key (derived locally) or did:web (fetched over HTTPS)
    """

    def __init__(
        self,
        documents: Optional[List[DIDDocument]] = None,
        timeout: float = 10,
        cache_ttl: int = DEFAULT_CACHE_TTL_SECONDS,
        did_web_scheme: str = "https",
    ):
        self._documents: Dict[str, DIDDocument] = {}
        self._cache: Dict[str, Tuple[float, DIDDocument]] = {}
        self._cache_ttl = cache_ttl
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.did_web_scheme = did_web_scheme

        for document in documents or []:
            self.register(document)

    def register(self, document: DIDDocument) -> None:
        """Make a document resolvable without network access."""
        self._documents[document.id] = document

    async def resolve(self, did: str, use_cache: bool = True) -> DIDDocument:
        """
        Resolve a DID to its document.

        Raises:
            DIDResolutionError: if the DID method is unsupported or the
                document cannot be retrieved.
        """
        did = strip_fragment(did)

        if did in self._documents:
            return self._documents[did]

        if use_cache and did in self._cache:
            cached_at, document = self._cache[did]
            if time.monotonic() - cached_at < self._cache_ttl:
                logger.debug(f"DID cache hit: {did}")
                return document
            del self._cache[did]

        if did.startswith(DID_KEY_PREFIX):
            document = resolve_did_key(did)
        elif did.startswith("did:web:"):
            document = await self._fetch_did_web(did)
        else:
            raise DIDResolutionError(f"Unsupported DID method: {did}")

        self._cache[did] = (time.monotonic(), document)
        return document

    async def get_public_key(self, did: str, key_id: Optional[str] = None) -> bytes:
        """Resolve the raw Ed25519 key a DID signs with."""
        document = await self.resolve(did)

        method = document.get_verification_method(key_id)
        if method is None:
            raise DIDResolutionError(f"No verification method {key_id or ''} in {did}")

        try:
            return method.public_key_bytes()
        except ValueError as e:
            raise DIDResolutionError(str(e)) from e

    def clear_cache(self, did: Optional[str] = None) -> None:
        """Clear the resolution cache."""
        if did:
            self._cache.pop(did, None)
        else:
            self._cache.clear()

    async def _fetch_did_web(self, did: str) -> DIDDocument:
        url = did_web_url(did, self.did_web_scheme)

        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.get(url) as response:
                    if response.status != 200:
                        raise DIDResolutionError(
                            f"DID document fetch failed for {did}: HTTP {response.status}"
                        )
                    data = await response.json(content_type=None)

        except aiohttp.ClientError as e:
            raise DIDResolutionError(f"DID document fetch failed for {did}: {e}") from e

        try:
            document = DIDDocument.from_dict(data)
        except (KeyError, TypeError) as e:
            raise DIDResolutionError(f"Malformed DID document for {did}") from e

        if document.id != did:
            raise DIDResolutionError(f"DID document id {document.id} does not match {did}")

        logger.debug(f"DID resolved via did:web: {did}")
        return document
