"""
Signed tokens (compact JWS, EdDSA) exchanged between agents.
"""

import time
import logging
from dataclasses import dataclass, field
from typing import Optional, Dict, Any

import jwt
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from .config import DEFAULT_TOKEN_TTL_SECONDS
from .did import DIDResolver, strip_fragment
from .errors import InvalidMessage, SignatureVerificationFailed
from .identity import Identity

logger = logging.getLogger(__name__)

ALGORITHM = "EdDSA"


@dataclass
class VerifiedJwt:
    """A token whose signature checked out against its issuer's DID."""
    payload: Dict[str, Any]
    issuer: str
    header: Dict[str, Any] = field(default_factory=dict)


def expiration(seconds: int = DEFAULT_TOKEN_TTL_SECONDS) -> int:
    """`exp` claim value for a token valid for `seconds` from now."""
    return int(time.time()) + seconds


def sign_jwt(payload: Dict[str, Any], identity: Identity) -> str:
    """Sign a payload as `identity`. `iss` is always the identity's DID."""
    claims = dict(payload)
    claims["iss"] = identity.did
    claims.setdefault("iat", int(time.time()))

    return jwt.encode(
        claims,
        identity.jwt_signing_key,
        algorithm=ALGORITHM,
        headers={"kid": identity.key_id},
    )


def decode_jwt(token: str) -> Dict[str, Any]:
    """
    Read a token's payload without verifying it.

    Only used to decide how to verify a token; never trust the result.
    """
    if not isinstance(token, str) or not token:
        raise InvalidMessage("Token must be a non-empty string")

    try:
        return jwt.decode(
            token,
            options={
                "verify_signature": False,
                "verify_exp": False,
                "verify_aud": False,
            },
        )
    except jwt.PyJWTError as e:
        raise InvalidMessage(f"Malformed token: {e}") from e


async def verify_jwt(
    token: str,
    resolver: DIDResolver,
    audience: Optional[str] = None,
    require_expiration: bool = True,
) -> VerifiedJwt:
    """
    Verify a token against the key material of its issuer.

    Checks signature, `exp` (no leeway; required unless
    `require_expiration` is false) and, when `audience` is given, that
    `aud` names it.

    Raises:
        SignatureVerificationFailed: on any verification failure.
    """
    try:
        header = jwt.get_unverified_header(token)
        unverified = jwt.decode(
            token,
            options={"verify_signature": False, "verify_exp": False, "verify_aud": False},
        )
    except jwt.PyJWTError as e:
        raise SignatureVerificationFailed(f"Malformed token: {e}") from e

    issuer = unverified.get("iss")
    if not isinstance(issuer, str) or not issuer:
        raise SignatureVerificationFailed("Token has no issuer")

    kid = header.get("kid")
    if kid is not None and (not isinstance(kid, str) or strip_fragment(kid) != issuer):
        raise SignatureVerificationFailed(f"Key {kid} does not belong to issuer {issuer}")

    # DIDResolutionError is a SignatureVerificationFailed
    key_bytes = await resolver.get_public_key(issuer, kid)
    try:
        public_key = Ed25519PublicKey.from_public_bytes(key_bytes)
    except ValueError as e:
        raise SignatureVerificationFailed(f"Unusable signing key for {issuer}: {e}") from e

    options = {"require": ["exp", "iss"] if require_expiration else ["iss"]}
    if audience is None:
        options["verify_aud"] = False

    try:
        payload = jwt.decode(
            token,
            public_key,
            algorithms=[ALGORITHM],
            audience=audience,
            options=options,
        )
    except jwt.ExpiredSignatureError as e:
        raise SignatureVerificationFailed(f"Token from {issuer} has expired") from e
    except (jwt.InvalidAudienceError, jwt.MissingRequiredClaimError) as e:
        raise SignatureVerificationFailed(f"Token from {issuer} rejected: {e}") from e
    except jwt.PyJWTError as e:
        raise SignatureVerificationFailed(f"Invalid token from {issuer}: {e}") from e

    return VerifiedJwt(payload=payload, issuer=issuer, header=header)


def check_audience(verified: VerifiedJwt, audience: str) -> None:
    """
    Reject a verified token addressed to someone other than `audience`.

    Tokens without an `aud` claim are addressed to nobody in particular
    and pass.

    Raises:
        SignatureVerificationFailed: `aud` is present and does not name `audience`.
    """
    aud = verified.payload.get("aud")
    if aud is None:
        return

    recipients = aud if isinstance(aud, list) else [aud]
    if audience not in recipients:
        raise SignatureVerificationFailed(
            f"Token from {verified.issuer} is addressed to {aud}, not {audience}"
        )
