"""
Session routing: turns an inbound signed token into a handshake reply,
a rejection, or a call into application logic.
"""

import inspect
import logging
from datetime import datetime, timezone, timedelta
from dataclasses import dataclass
from typing import Optional, Dict, Any, Callable, List

from .config import DEFAULT_AUTHENTICATED_TTL_SECONDS
from .credentials import Credential
from .errors import AckLabError, InvalidMessage, NotAuthenticated
from .handshake import HandshakeEngine
from .messages import MessageType, classify_payload, ApplicationMessage, ApplicationResult
from .schemas import SchemaValidator, ValidationMode, build_validator
from .tokens import check_audience, decode_jwt, expiration, verify_jwt

logger = logging.getLogger(__name__)


@dataclass
class AuthenticatedCounterparty:
    """A counterparty that completed the handshake with us."""
    did: str
    authenticated_at: datetime
    expires_at: Optional[datetime] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or datetime.now(timezone.utc))


class AuthenticatedCounterparties:
    """
    Counterparties that completed a handshake, keyed by DID.

    An entry lives until the earlier of `ttl_seconds` after the handshake
    and the expiry of the credentials the counterparty presented.
    Expired entries count as absent.
    """

    def __init__(self, ttl_seconds: Optional[int] = DEFAULT_AUTHENTICATED_TTL_SECONDS):
        self.ttl_seconds = ttl_seconds
        self._entries: Dict[str, AuthenticatedCounterparty] = {}

    def add(
        self,
        did: str,
        credentials: Optional[List[Credential]] = None,
    ) -> AuthenticatedCounterparty:
        """Record (or refresh) a counterparty after a completed handshake."""
        now = datetime.now(timezone.utc)

        candidates = [c.expires_at for c in credentials or [] if c.expires_at is not None]
        if self.ttl_seconds is not None:
            candidates.append(now + timedelta(seconds=self.ttl_seconds))

        entry = AuthenticatedCounterparty(
            did=did,
            authenticated_at=now,
            expires_at=min(candidates) if candidates else None,
        )
        self._entries[did] = entry

        logger.info(f"Counterparty authenticated: {did}")
        return entry

    def get(self, did: str) -> Optional[AuthenticatedCounterparty]:
        entry = self._entries.get(did)
        if entry is not None and entry.is_expired():
            logger.info(f"Authentication expired: {did}")
            del self._entries[did]
            return None
        return entry

    def remove(self, did: str) -> bool:
        return self._entries.pop(did, None) is not None

    def cleanup_expired(self) -> int:
        """Remove expired entries."""
        now = datetime.now(timezone.utc)
        expired = [
            did for did, entry in self._entries.items()
            if entry.is_expired(now)
        ]
        for did in expired:
            del self._entries[did]
        return len(expired)

    def __contains__(self, did: str) -> bool:
        return self.get(did) is not None

    def __len__(self) -> int:
        return len(self._entries)


# handler(input) -> result, plain or async
MessageHandler = Callable[[Any], Any]


class SessionRouter:
    """
    Request handler for one agent.

    Handshake messages go to the handshake engine. Application messages run
    the handler, but only for counterparties that completed a handshake.
    """

    def __init__(
        self,
        engine: HandshakeEngine,
        handler: MessageHandler,
        input_schema: Optional[dict] = None,
        authenticated: Optional[AuthenticatedCounterparties] = None,
        validation_mode: ValidationMode = ValidationMode.STRICT,
    ):
        self.engine = engine
        self.handler = handler
        self.input_validator: Optional[SchemaValidator] = build_validator(
            input_schema, "input", validation_mode
        )
        self.authenticated = authenticated if authenticated is not None else AuthenticatedCounterparties()

    async def handle(self, token: str) -> str:
        """
        Process one inbound token and return the token to reply with.

        Raises:
            InvalidMessage, SignatureVerificationFailed, ChallengeMismatch,
            UntrustedCredential, NotAuthenticated, SchemaValidationError.
            Exceptions raised by the application handler propagate as is.
        """
        message_type = classify_payload(decode_jwt(token))

        if message_type is MessageType.HANDSHAKE_INIT:
            result = await self.engine.handle_handshake_init(token)
            return result.jwt

        if message_type is MessageType.HANDSHAKE_RESPONSE:
            result = await self.engine.finalize_handshake(token)
            self.authenticated.add(result.counterparty_did, result.credentials)
            return result.jwt

        if message_type is MessageType.MESSAGE:
            return await self._handle_message(token)

        logger.warning(f"Unexpected inbound {message_type.value} message")
        raise InvalidMessage(f"Cannot handle an inbound {message_type.value} message")

    async def _handle_message(self, token: str) -> str:
        did = await self.engine.get_did()

        try:
            verified = await verify_jwt(token, self.engine.resolver)
        except AckLabError as e:
            logger.warning(f"Message rejected: {e.message}")
            raise

        # Membership first: nothing in the payload matters for an unknown sender
        sender = verified.issuer
        if sender not in self.authenticated:
            logger.warning(f"Message rejected: {sender} is not authenticated")
            raise NotAuthenticated(f"{sender} has not completed a handshake")

        try:
            check_audience(verified, did)
        except AckLabError as e:
            logger.warning(f"Message rejected: {e.message}")
            raise

        message = ApplicationMessage.from_payload(verified.payload)
        if self.input_validator is not None:
            self.input_validator.ensure_valid(message.input)

        output = self.handler(message.input)
        if inspect.isawaitable(output):
            output = await output

        return await self.engine.signer.sign(
            ApplicationResult(
                result=output,
                audience=sender,
                exp=expiration(self.engine.expires_in),
            ).to_payload()
        )
