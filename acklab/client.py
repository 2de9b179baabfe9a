"""
ACK Lab agent: the client and server facades over the handshake protocol.
"""

import asyncio
import logging
from typing import Optional, Dict, Any, List

from .api_client import ApiClient
from .config import SdkConfig, TrustPolicy
from .credentials import Credential
from .did import DIDResolver
from .errors import NotAuthenticated, SignatureVerificationFailed
from .handshake import HandshakeEngine
from .identity import Identity
from .messages import ApplicationMessage, ApplicationResult
from .schemas import SchemaValidator, ValidationMode, build_validator
from .session import AuthenticatedCounterparties, MessageHandler, SessionRouter
from .signer import LocalSigner, Signer
from .tokens import check_audience, expiration, verify_jwt
from .transport import HttpTransport

logger = logging.getLogger(__name__)


class AckLabAgent:
    """
    One agent: its signer, handshake state and authenticated counterparties.

    Usage:
        agent = AckLabAgent.from_identity(identity, credentials)

        # Client side
        call = agent.create_agent_caller("https://seller.example/chat")
        reply = await call({"message": "ping"})

        # Server side
        router = agent.create_request_handler(handle_message)
        reply_jwt = await router.handle(inbound_jwt)
    """

    def __init__(
        self,
        signer: Signer,
        resolver: Optional[DIDResolver] = None,
        policy: Optional[TrustPolicy] = None,
        config: Optional[SdkConfig] = None,
        transport: Optional[HttpTransport] = None,
    ):
        self.config = config or SdkConfig.default()
        self.engine = HandshakeEngine(
            signer,
            resolver=resolver,
            policy=policy or self.config.policy,
            expires_in=self.config.token_ttl_seconds,
        )
        self.authenticated = AuthenticatedCounterparties(self.config.authenticated_ttl_seconds)
        self.transport = transport or HttpTransport(self.config.request_timeout)

        # Endpoint URL -> DID of the agent that answered the handshake there
        self.endpoints: Dict[str, str] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    @classmethod
    def from_config(
        cls,
        config: Optional[SdkConfig] = None,
        resolver: Optional[DIDResolver] = None,
    ) -> "AckLabAgent":
        """Agent backed by the hosted API (credentials from ACK_LAB_* by default)."""
        config = config or SdkConfig.from_env()
        return cls(ApiClient.from_config(config), resolver=resolver, config=config)

    @classmethod
    def from_identity(
        cls,
        identity: Identity,
        credentials: Optional[List[Credential]] = None,
        resolver: Optional[DIDResolver] = None,
        policy: Optional[TrustPolicy] = None,
        config: Optional[SdkConfig] = None,
    ) -> "AckLabAgent":
        """Agent that signs with a local identity."""
        config = config or SdkConfig.default()
        signer = LocalSigner(identity, credentials, expires_in=config.token_ttl_seconds)
        return cls(signer, resolver=resolver, policy=policy, config=config)

    @property
    def signer(self) -> Signer:
        return self.engine.signer

    @property
    def resolver(self) -> DIDResolver:
        return self.engine.resolver

    async def get_did(self) -> str:
        return await self.engine.get_did()

    def create_agent_caller(
        self,
        url: str,
        input_schema: Optional[dict] = None,
        output_schema: Optional[dict] = None,
        validation_mode: ValidationMode = ValidationMode.STRICT,
    ) -> "AgentCaller":
        return AgentCaller(self, url, input_schema, output_schema, validation_mode)

    def create_request_handler(
        self,
        handler: MessageHandler,
        input_schema: Optional[dict] = None,
        validation_mode: ValidationMode = ValidationMode.STRICT,
    ) -> SessionRouter:
        return SessionRouter(
            self.engine, handler, input_schema, self.authenticated, validation_mode
        )

    def is_authenticated(self, url: str) -> bool:
        did = self.endpoints.get(url)
        return did is not None and did in self.authenticated

    def forget(self, url: str) -> None:
        """Drop the cached handshake for an endpoint; the next call re-runs it."""
        did = self.endpoints.pop(url, None)
        if did is not None:
            self.authenticated.remove(did)

    async def authenticate(self, url: str) -> str:
        """
        Make sure a handshake with `url` has completed and return the DID of
        the agent behind it. Concurrent calls for one URL share one handshake.
        """
        if self.is_authenticated(url):
            return self.endpoints[url]

        lock = self._locks.setdefault(url, asyncio.Lock())
        self._lock_users[url] = self._lock_users.get(url, 0) + 1
        try:
            async with lock:
                if self.is_authenticated(url):
                    return self.endpoints[url]
                return await self._handshake(url)
        finally:
            # Drop the lock once nobody is waiting on it
            self._lock_users[url] -= 1
            if not self._lock_users[url]:
                del self._lock_users[url]
                del self._locks[url]

    async def _handshake(self, url: str) -> str:
        logger.debug(f"Starting handshake with {url}")

        init = await self.engine.initiate_handshake()
        response = await self.transport.post(url, init)

        continuation = await self.engine.handle_handshake_response(response)
        complete = await self.transport.post(url, continuation.jwt)

        result = await self.engine.verify_handshake_complete(complete)
        if result.counterparty_did != continuation.counterparty_did:
            raise SignatureVerificationFailed(
                f"Handshake completed by {result.counterparty_did}, "
                f"expected {continuation.counterparty_did}"
            )

        self.authenticated.add(result.counterparty_did, continuation.credentials)
        self.endpoints[url] = result.counterparty_did
        return result.counterparty_did


class AgentCaller:
    """
    `await caller(input) -> output` against one remote agent endpoint.

    The handshake runs on the first call (and again once the counterparty's
    authentication expires); every call then exchanges one signed message.
    """

    def __init__(
        self,
        agent: AckLabAgent,
        url: str,
        input_schema: Optional[dict] = None,
        output_schema: Optional[dict] = None,
        validation_mode: ValidationMode = ValidationMode.STRICT,
    ):
        self.agent = agent
        self.url = url
        self.input_validator: Optional[SchemaValidator] = build_validator(
            input_schema, "input", validation_mode
        )
        self.output_validator: Optional[SchemaValidator] = build_validator(
            output_schema, "output", validation_mode
        )

    @property
    def counterparty_did(self) -> Optional[str]:
        return self.agent.endpoints.get(self.url)

    async def __call__(self, input: Any) -> Any:
        if self.input_validator is not None:
            self.input_validator.ensure_valid(input)

        counterparty = await self.agent.authenticate(self.url)

        token = await self.agent.signer.sign(
            ApplicationMessage(
                input=input,
                audience=counterparty,
                exp=expiration(self.agent.config.token_ttl_seconds),
            ).to_payload()
        )

        try:
            reply = await self.agent.transport.post(self.url, token)
        except NotAuthenticated:
            # The remote side lost our handshake (e.g. it restarted)
            logger.warning(f"{self.url} no longer recognises us, handshake required")
            self.agent.forget(self.url)
            raise

        own_did = await self.agent.get_did()
        verified = await verify_jwt(reply, self.agent.resolver)
        if verified.issuer != counterparty:
            logger.warning(f"Reply from {self.url} signed by {verified.issuer}, not {counterparty}")
            raise SignatureVerificationFailed(
                f"Reply signed by {verified.issuer}, expected {counterparty}"
            )
        check_audience(verified, own_did)

        result = ApplicationResult.from_payload(verified.payload).result
        if self.output_validator is not None:
            self.output_validator.ensure_valid(result)

        return result
