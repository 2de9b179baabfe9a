"""
Signing collaborators.

The handshake engine never touches keys itself: it asks a `Signer` for its
agent's DID, for signed tokens and for verifiable presentations. `LocalSigner`
does this in-process; `acklab.api_client.ApiClient` asks the hosted API.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Dict, Any, List

from .config import DEFAULT_TOKEN_TTL_SECONDS
from .credentials import Credential, Presentation
from .identity import Identity
from .messages import MessageType
from .tokens import expiration, sign_jwt

logger = logging.getLogger(__name__)


@dataclass
class AgentMetadata:
    """Who the signer signs as."""
    did: str
    credential: Optional[Dict[str, Any]] = None


class Signer(ABC):
    """Signing and presentation backend for one agent."""

    @abstractmethod
    async def get_agent_metadata(self) -> AgentMetadata:
        ...

    @abstractmethod
    async def sign(self, payload: Dict[str, Any]) -> str:
        """Sign `payload` as this agent and return the token."""

    @abstractmethod
    async def generate_verifiable_presentation(
        self,
        aud: str,
        challenge: Optional[str] = None,
        nonce: Optional[str] = None,
    ) -> str:
        """
        Present this agent's credentials to `aud`.

        `challenge` (a value the audience asked to have echoed) is placed in
        the token's `nonce` claim; `nonce` (a fresh value the audience must
        echo next) is placed in its `jti` claim.
        """


class LocalSigner(Signer):
    """Signs with a local identity and presents locally held credentials."""

    def __init__(
        self,
        identity: Identity,
        credentials: Optional[List[Credential]] = None,
        expires_in: int = DEFAULT_TOKEN_TTL_SECONDS,
    ):
        self.identity = identity
        self.credentials = list(credentials or [])
        self.expires_in = expires_in

    async def get_agent_metadata(self) -> AgentMetadata:
        credential = self.credentials[0].to_dict() if self.credentials else None
        return AgentMetadata(did=self.identity.did, credential=credential)

    async def sign(self, payload: Dict[str, Any]) -> str:
        return sign_jwt(payload, self.identity)

    async def generate_verifiable_presentation(
        self,
        aud: str,
        challenge: Optional[str] = None,
        nonce: Optional[str] = None,
    ) -> str:
        presentation = Presentation(
            holder=self.identity.did,
            verifiable_credential=self.credentials,
        )

        payload = {
            'type': MessageType.HANDSHAKE_RESPONSE.value,
            'vp': presentation.to_dict(),
            'aud': aud,
            'exp': expiration(self.expires_in),
        }
        if challenge is not None:
            payload['nonce'] = challenge
        if nonce is not None:
            payload['jti'] = nonce

        return sign_jwt(payload, self.identity)
