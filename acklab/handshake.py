"""
Mutual-authentication handshake between two agents.

    Initiator (I)                              Responder (R)
    M1  handshake-init  {type, exp}        ->
                                           <-  M2  VP(aud=I, jti=challenge_R)
    M3  VP(aud=R, nonce=challenge_R,
           jti=challenge_I)                ->
                                           <-  handshake-complete
                                               {nonce=challenge_I, aud=I}

Each side verifies the other's presentation and credentials, and checks
that the value echoed back is the challenge it issued to that DID.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, List

from .challenge import ChallengeStore
from .config import TrustPolicy, DEFAULT_TOKEN_TTL_SECONDS
from .credentials import (
    Credential,
    CredentialTrustEvaluator,
    VerifiedPresentation,
    verify_presentation,
)
from .did import DIDResolver
from .errors import AckLabError, InvalidMessage
from .messages import MessageType, HandshakeInit, HandshakeComplete
from .signer import Signer
from .tokens import expiration, verify_jwt

logger = logging.getLogger(__name__)


@dataclass
class HandshakeResult:
    """Outcome of one handshake step."""
    counterparty_did: str
    jwt: Optional[str] = None           # token to send to the counterparty, if any
    credentials: List[Credential] = field(default_factory=list)


class HandshakeEngine:
    """
    Drives the handshake for one agent.

    Holds the outstanding challenges for this agent only. Challenges issued
    as responder (checked against M3) and as initiator (checked against
    handshake-complete) are kept apart so that two agents handshaking with
    each other in both directions at once do not overwrite each other.
    """

    def __init__(
        self,
        signer: Signer,
        resolver: Optional[DIDResolver] = None,
        policy: Optional[TrustPolicy] = None,
        expires_in: int = DEFAULT_TOKEN_TTL_SECONDS,
    ):
        self.signer = signer
        self.resolver = resolver or DIDResolver()
        self.policy = policy or TrustPolicy()
        self.evaluator = CredentialTrustEvaluator(self.resolver, self.policy)
        self.expires_in = expires_in

        # Challenges we sent in M2, keyed by initiator DID
        self.challenges = ChallengeStore(expires_in)
        # Challenges we sent in M3, keyed by responder DID
        self.initiator_challenges = ChallengeStore(expires_in)

    async def get_did(self) -> str:
        metadata = await self.signer.get_agent_metadata()
        return metadata.did

    async def initiate_handshake(self) -> str:
        """Build M1."""
        return await self.signer.sign(
            HandshakeInit(exp=expiration(self.expires_in)).to_payload()
        )

    async def handle_handshake_init(self, token: str) -> HandshakeResult:
        """Responder: verify M1 and answer with M2."""
        try:
            verified = await verify_jwt(token, self.resolver)
        except AckLabError as e:
            logger.warning(f"Handshake init rejected: {e.message}")
            raise

        if verified.payload.get('type') != MessageType.HANDSHAKE_INIT.value:
            raise InvalidMessage("Expected a handshake-init message")

        initiator = verified.issuer
        challenge = self.challenges.issue(initiator)

        presentation = await self.signer.generate_verifiable_presentation(
            aud=initiator,
            nonce=challenge,
        )

        logger.debug(f"Handshake init from {initiator}, challenge issued")
        return HandshakeResult(counterparty_did=initiator, jwt=presentation)

    async def handle_handshake_response(self, token: str) -> HandshakeResult:
        """Initiator: verify M2, evaluate the responder's credentials, answer with M3."""
        verified = await self._verify_presentation(token)
        responder = verified.issuer

        credentials = await self._evaluate(verified)

        challenge = self.initiator_challenges.issue(responder)
        continuation = await self.signer.generate_verifiable_presentation(
            aud=responder,
            challenge=self._string_claim(verified, 'jti'),
            nonce=challenge,
        )

        return HandshakeResult(
            counterparty_did=responder,
            jwt=continuation,
            credentials=credentials,
        )

    async def finalize_handshake(self, token: str) -> HandshakeResult:
        """
        Responder: verify M3 and answer with handshake-complete.

        The challenge is consumed only once every check has passed, so a
        failed continuation leaves it in place.
        """
        verified = await self._verify_presentation(token)
        initiator = verified.issuer
        echoed = self._string_claim(verified, 'nonce')

        self.challenges.validate(initiator, echoed)

        credentials = await self._evaluate(verified)

        initiator_challenge = self._string_claim(verified, 'jti')
        if initiator_challenge is None:
            logger.warning(f"Handshake continuation from {initiator} carries no challenge")
            raise InvalidMessage("Handshake continuation carries no challenge")

        self.challenges.consume(initiator, echoed)

        complete = await self.signer.sign(
            HandshakeComplete(
                nonce=initiator_challenge,
                audience=initiator,
                exp=expiration(self.expires_in),
            ).to_payload()
        )

        logger.info(f"Handshake completed with {initiator}")
        return HandshakeResult(
            counterparty_did=initiator,
            jwt=complete,
            credentials=credentials,
        )

    async def verify_handshake_complete(self, token: str) -> HandshakeResult:
        """Initiator: verify handshake-complete against the challenge sent in M3."""
        did = await self.get_did()

        try:
            verified = await verify_jwt(token, self.resolver, audience=did)
        except AckLabError as e:
            logger.warning(f"Handshake completion rejected: {e.message}")
            raise

        complete = HandshakeComplete.from_payload(verified.payload)
        self.initiator_challenges.consume(verified.issuer, complete.nonce)

        logger.info(f"Handshake completed with {verified.issuer}")
        return HandshakeResult(counterparty_did=verified.issuer)

    async def _verify_presentation(self, token: str) -> VerifiedPresentation:
        did = await self.get_did()

        try:
            return await verify_presentation(token, self.resolver, domain=did)
        except AckLabError as e:
            logger.warning(f"Handshake presentation rejected: {e.message}")
            raise

    async def _evaluate(self, verified: VerifiedPresentation) -> List[Credential]:
        try:
            return await self.evaluator.evaluate(verified.credentials, verified.issuer)
        except AckLabError as e:
            logger.warning(f"Credentials of {verified.issuer} rejected: {e.message}")
            raise

    @staticmethod
    def _string_claim(verified: VerifiedPresentation, name: str) -> Optional[str]:
        value = verified.payload.get(name)
        if value is not None and not isinstance(value, str):
            raise InvalidMessage(f"Claim {name} must be a string")
        return value
