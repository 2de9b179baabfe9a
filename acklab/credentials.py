"""
Verifiable credentials and presentations, and the trust policy applied to them.

Credentials are W3C VCs secured with a JwtProof2020 proof: a vc-jwt signed
by the issuer whose `vc` claim holds the credential itself.
"""

import uuid
import logging
from datetime import datetime, timezone, timedelta
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List, Union

from .config import TrustPolicy
from .did import DIDResolver
from .errors import (
    InvalidMessage,
    SignatureVerificationFailed,
    UntrustedCredential,
    UntrustedController,
)
from .identity import Identity
from .tokens import decode_jwt, sign_jwt, verify_jwt

logger = logging.getLogger(__name__)

VC_CONTEXT = ["https://www.w3.org/2018/credentials/v1"]

VERIFIABLE_CREDENTIAL = "VerifiableCredential"
VERIFIABLE_PRESENTATION = "VerifiablePresentation"
JWT_PROOF_TYPE = "JwtProof2020"

# Credential types checked for a verified controller
CONTROLLER_CREDENTIAL = "ControllerCredential"
EMAIL_VERIFICATION_CREDENTIAL = "EmailVerificationCredential"
LIVENESS_CREDENTIAL = "LivenessCredential"


def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_timestamp(value: str) -> datetime:
    if not isinstance(value, str):
        raise ValueError(f"Timestamp must be a string, got {type(value).__name__}")
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class CredentialSubject:
    """The subject of a credential: an id, an optional controller, and claims."""
    id: str
    controller: Optional[str] = None
    claims: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        data = {'id': self.id}
        if self.controller:
            data['controller'] = self.controller
        data.update(self.claims)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "CredentialSubject":
        if not isinstance(data, dict):
            raise TypeError("credentialSubject must be an object")
        claims = dict(data)
        return cls(
            id=claims.pop('id'),
            controller=claims.pop('controller', None),
            claims=claims,
        )


@dataclass
class Credential:
    """A W3C verifiable credential."""
    issuer: str
    credential_subject: CredentialSubject
    type: List[str] = field(default_factory=lambda: [VERIFIABLE_CREDENTIAL])
    id: Optional[str] = None
    issuance_date: Optional[str] = None
    expiration_date: Optional[str] = None
    proof: Optional[Dict[str, Any]] = None
    context: List[str] = field(default_factory=lambda: list(VC_CONTEXT))

    def to_dict(self, include_proof: bool = True) -> dict:
        data = {
            '@context': self.context,
            'type': self.type,
            'issuer': {'id': self.issuer},
            'credentialSubject': self.credential_subject.to_dict(),
        }
        if self.id:
            data['id'] = self.id
        if self.issuance_date:
            data['issuanceDate'] = self.issuance_date
        if self.expiration_date:
            data['expirationDate'] = self.expiration_date
        if include_proof and self.proof:
            data['proof'] = self.proof
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Credential":
        issuer = data['issuer']
        if isinstance(issuer, dict):
            issuer = issuer['id']
        if not isinstance(issuer, str):
            raise ValueError("Credential issuer must be a DID string")

        expiration_date = data.get('expirationDate')
        if expiration_date is not None:
            parse_timestamp(expiration_date)

        types = data.get('type', [VERIFIABLE_CREDENTIAL])
        if isinstance(types, str):
            types = [types]

        return cls(
            issuer=issuer,
            credential_subject=CredentialSubject.from_dict(data['credentialSubject']),
            type=list(types),
            id=data.get('id'),
            issuance_date=data.get('issuanceDate'),
            expiration_date=expiration_date,
            proof=data.get('proof'),
            context=data.get('@context', list(VC_CONTEXT)),
        )

    @classmethod
    def from_jwt(cls, token: str) -> "Credential":
        """Parse a vc-jwt. The signature is checked later by `verify_credential`."""
        claims = decode_jwt(token)
        if not isinstance(claims.get('vc'), dict):
            raise InvalidMessage("Token carries no verifiable credential")

        credential = cls.from_dict(claims['vc'])
        credential.proof = {'type': JWT_PROOF_TYPE, 'jwt': token}
        return credential

    @property
    def subject_id(self) -> str:
        return self.credential_subject.id

    @property
    def controller(self) -> Optional[str]:
        return self.credential_subject.controller

    @property
    def expires_at(self) -> Optional[datetime]:
        if not self.expiration_date:
            return None
        return parse_timestamp(self.expiration_date)

    def has_type(self, credential_type: str) -> bool:
        return credential_type in self.type

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        expires_at = self.expires_at
        if expires_at is None:
            return False
        return expires_at <= (now or datetime.now(timezone.utc))


def parse_credential(entry: Union[str, dict, Credential]) -> Credential:
    """Accept a credential as embedded JSON or as a vc-jwt string."""
    if isinstance(entry, Credential):
        return entry
    try:
        if isinstance(entry, str):
            return Credential.from_jwt(entry)
        return Credential.from_dict(entry)
    except (KeyError, TypeError, AttributeError, ValueError) as e:
        raise InvalidMessage(f"Malformed credential: {e}") from e


@dataclass
class Presentation:
    """A verifiable presentation: credentials bundled by their holder."""
    holder: str
    verifiable_credential: List[Credential] = field(default_factory=list)
    type: List[str] = field(default_factory=lambda: [VERIFIABLE_PRESENTATION])
    context: List[str] = field(default_factory=lambda: list(VC_CONTEXT))

    def to_dict(self) -> dict:
        return {
            '@context': self.context,
            'type': self.type,
            'holder': self.holder,
            'verifiableCredential': [c.to_dict() for c in self.verifiable_credential],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Presentation":
        types = data.get('type', [VERIFIABLE_PRESENTATION])
        if isinstance(types, str):
            types = [types]

        return cls(
            holder=data.get('holder', ''),
            verifiable_credential=[
                parse_credential(entry)
                for entry in data.get('verifiableCredential') or []
            ],
            type=list(types),
            context=data.get('@context', list(VC_CONTEXT)),
        )


@dataclass
class VerifiedPresentation:
    """A presentation token whose signature and audience checked out."""
    payload: Dict[str, Any]
    presentation: Presentation
    issuer: str

    @property
    def credentials(self) -> List[Credential]:
        return self.presentation.verifiable_credential


def issue_credential(
    issuer: Identity,
    subject: str,
    types: Optional[List[str]] = None,
    controller: Optional[str] = None,
    claims: Optional[Dict[str, Any]] = None,
    expires_in: Optional[int] = None,
) -> Credential:
    """
    Issue a credential about `subject`, signed by `issuer`.

    Args:
        issuer: Identity of the issuing authority
        subject: DID the credential is about
        types: Credential types in addition to VerifiableCredential
        controller: DID of the party controlling the subject agent
        claims: Extra credentialSubject claims
        expires_in: Seconds until expiry; negative values issue an
            already-expired credential
    """
    now = datetime.now(timezone.utc)

    credential = Credential(
        issuer=issuer.did,
        credential_subject=CredentialSubject(
            id=subject,
            controller=controller,
            claims=dict(claims or {}),
        ),
        type=[VERIFIABLE_CREDENTIAL] + list(types or []),
        id=f"urn:uuid:{uuid.uuid4()}",
        issuance_date=format_timestamp(now),
    )

    token_claims = {
        'sub': subject,
        'jti': credential.id,
        'nbf': int(now.timestamp()),
    }

    if expires_in is not None:
        expires_at = now + timedelta(seconds=expires_in)
        credential.expiration_date = format_timestamp(expires_at)
        token_claims['exp'] = int(expires_at.timestamp())

    token_claims['vc'] = credential.to_dict(include_proof=False)
    credential.proof = {
        'type': JWT_PROOF_TYPE,
        'jwt': sign_jwt(token_claims, issuer),
    }
    return credential


async def verify_credential(
    credential: Credential,
    resolver: DIDResolver,
    trusted_issuers: Optional[List[str]] = None,
) -> Credential:
    """
    Verify a credential's proof, expiry and issuer.

    Raises:
        SignatureVerificationFailed: proof missing, invalid, tampered with,
            or the credential has expired.
        UntrustedCredential: issuer not in `trusted_issuers`.
    """
    proof = credential.proof if isinstance(credential.proof, dict) else {}
    if proof.get('type') != JWT_PROOF_TYPE or not isinstance(proof.get('jwt'), str):
        raise SignatureVerificationFailed(
            f"Credential {credential.id or ''} has no {JWT_PROOF_TYPE} proof"
        )

    verified = await verify_jwt(proof['jwt'], resolver, require_expiration=False)

    if verified.issuer != credential.issuer:
        raise SignatureVerificationFailed(
            f"Credential proof signed by {verified.issuer}, not {credential.issuer}"
        )

    signed = verified.payload.get('vc')
    try:
        signed_credential = Credential.from_dict(signed)
    except (KeyError, TypeError, AttributeError, ValueError) as e:
        raise SignatureVerificationFailed("Credential proof carries no credential") from e

    if signed_credential.to_dict(include_proof=False) != credential.to_dict(include_proof=False):
        raise SignatureVerificationFailed("Credential does not match its proof")

    if verified.payload.get('sub', credential.subject_id) != credential.subject_id:
        raise SignatureVerificationFailed("Credential proof names a different subject")

    if credential.is_expired():
        raise SignatureVerificationFailed(
            f"Credential {credential.id or ''} expired at {credential.expiration_date}"
        )

    if trusted_issuers is not None and credential.issuer not in trusted_issuers:
        raise UntrustedCredential(f"Untrusted credential issuer: {credential.issuer}")

    return credential


async def verify_presentation(
    token: str,
    resolver: DIDResolver,
    domain: Optional[str] = None,
) -> VerifiedPresentation:
    """
    Verify a presentation token addressed to `domain`.

    Credentials inside the presentation are parsed but not verified here;
    that is the trust evaluator's job.
    """
    verified = await verify_jwt(token, resolver, audience=domain)

    vp = verified.payload.get('vp')
    if not isinstance(vp, dict):
        raise InvalidMessage("Token carries no verifiable presentation")

    try:
        presentation = Presentation.from_dict(vp)
    except (KeyError, TypeError, AttributeError, ValueError) as e:
        raise InvalidMessage(f"Malformed presentation: {e}") from e

    if presentation.holder and presentation.holder != verified.issuer:
        raise SignatureVerificationFailed(
            f"Presentation holder {presentation.holder} did not sign it"
        )

    return VerifiedPresentation(
        payload=verified.payload,
        presentation=presentation,
        issuer=verified.issuer,
    )


def verify_presentation_claims(agent_did: str, credentials: List[Credential]) -> None:
    """
    Require proof that the agent has a verified, live controller.

    The agent must present:
    - a ControllerCredential about itself naming its controller
    - an EmailVerificationCredential about that controller
    - a LivenessCredential about itself carrying its endpoint URL

    Raises:
        UntrustedCredential: if any of them is missing.
    """
    controller_credential = next(
        (
            c for c in credentials
            if c.has_type(CONTROLLER_CREDENTIAL)
            and c.subject_id == agent_did
            and c.controller
        ),
        None,
    )
    if controller_credential is None:
        raise UntrustedCredential(f"No controller credential for {agent_did}")

    controller = controller_credential.controller

    email_verified = any(
        c.has_type(EMAIL_VERIFICATION_CREDENTIAL)
        and c.subject_id == controller
        and c.credential_subject.claims.get('emailVerifiedAt')
        for c in credentials
    )
    if not email_verified:
        raise UntrustedCredential(f"Controller {controller} has no verified email")

    live = any(
        c.has_type(LIVENESS_CREDENTIAL)
        and c.subject_id == agent_did
        and c.credential_subject.claims.get('endpointUrl')
        for c in credentials
    )
    if not live:
        raise UntrustedCredential(f"No liveness credential for {agent_did}")


class CredentialTrustEvaluator:
    """
    Decides whether a counterparty's presented credentials are acceptable.
    Deterministic policy checks only; the outcome never depends on content
    outside the credentials and the policy.
    """

    def __init__(self, resolver: DIDResolver, policy: Optional[TrustPolicy] = None):
        self.resolver = resolver
        self.policy = policy or TrustPolicy()

    async def evaluate(self, credentials: List[Credential], subject_did: str) -> List[Credential]:
        """
        Evaluate the credentials `subject_did` presented.

        Returns the verified credentials.

        Raises:
            SignatureVerificationFailed: a credential failed verification.
            UntrustedCredential: issuer policy or controller claims not met.
            UntrustedController: controller policy not met.
        """
        policy = self.policy

        # 1. Every presented credential must verify
        for credential in credentials:
            await verify_credential(credential, self.resolver, policy.trusted_issuers)

        if policy.trusted_issuers is not None and not credentials:
            logger.warning(f"Credentials rejected: {subject_did} presented none")
            raise UntrustedCredential(f"{subject_did} presented no credentials")

        # 2. Controller policy
        if policy.trusted_agent_controllers is not None:
            controlled = [c for c in credentials if c.controller]
            if not controlled:
                logger.warning(f"Credentials rejected: {subject_did} names no controller")
                raise UntrustedController(
                    f"Credential subject {subject_did} does not have a controller"
                )

            for credential in controlled:
                if not policy.is_trusted_controller(credential.controller):
                    logger.warning(
                        f"Credentials rejected: controller {credential.controller} "
                        f"of {subject_did} is not trusted"
                    )
                    raise UntrustedController(
                        f"Untrusted agent controller: {credential.controller}"
                    )
                if credential.subject_id != subject_did:
                    logger.warning(
                        f"Credentials rejected: controller credential is about "
                        f"{credential.subject_id}, not {subject_did}"
                    )
                    raise UntrustedController(
                        f"Controller credential does not describe {subject_did}"
                    )

        # 3. Verified controller claims
        if policy.require_verified_controller:
            verify_presentation_claims(subject_did, credentials)

        return credentials
