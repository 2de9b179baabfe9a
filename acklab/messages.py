"""
Wire messages exchanged between agents.

Every payload the SDK signs carries an explicit `type` tag. Presentations
produced by the hosted API carry no tag, so an untagged payload holding a
`vp` claim is still read as a handshake response.
"""

import logging
from enum import Enum
from dataclasses import dataclass
from typing import Optional, Dict, Any

from .errors import InvalidMessage

logger = logging.getLogger(__name__)


class MessageType(Enum):
    HANDSHAKE_INIT = "handshake-init"
    HANDSHAKE_RESPONSE = "handshake-response"
    HANDSHAKE_COMPLETE = "handshake-complete"
    MESSAGE = "message"
    RESULT = "result"


def classify_payload(payload: Dict[str, Any]) -> MessageType:
    """
    Decide which protocol phase a decoded payload belongs to.

    Raises:
        InvalidMessage: unknown tag, a tag that contradicts the payload
            shape, or an untagged payload without a presentation.
    """
    if not isinstance(payload, dict):
        raise InvalidMessage("Payload must be a JSON object")

    has_presentation = payload.get('vp') is not None
    tag = payload.get('type')

    if tag is None:
        if has_presentation:
            return MessageType.HANDSHAKE_RESPONSE
        raise InvalidMessage("Invalid message")

    try:
        message_type = MessageType(tag)
    except ValueError:
        raise InvalidMessage(f"Unknown message type: {tag!r}") from None

    if has_presentation != (message_type is MessageType.HANDSHAKE_RESPONSE):
        raise InvalidMessage(f"Message of type {tag!r} has unexpected shape")

    logger.debug(f"Classified message as {message_type.value}")
    return message_type


def _with_claims(payload: dict, audience: Optional[str], exp: Optional[int]) -> dict:
    if audience:
        payload['aud'] = audience
    if exp is not None:
        payload['exp'] = exp
    return payload


@dataclass
class HandshakeInit:
    """M1: proves the initiator holds its key. Nothing else."""
    exp: Optional[int] = None

    def to_payload(self) -> dict:
        return _with_claims({'type': MessageType.HANDSHAKE_INIT.value}, None, self.exp)

    @classmethod
    def from_payload(cls, payload: dict) -> "HandshakeInit":
        return cls(exp=payload.get('exp'))


@dataclass
class HandshakeComplete:
    """Final handshake message: the responder echoes the initiator's challenge."""
    nonce: str
    audience: str
    exp: Optional[int] = None

    def to_payload(self) -> dict:
        payload = {
            'type': MessageType.HANDSHAKE_COMPLETE.value,
            'nonce': self.nonce,
        }
        return _with_claims(payload, self.audience, self.exp)

    @classmethod
    def from_payload(cls, payload: dict) -> "HandshakeComplete":
        if payload.get('type') != MessageType.HANDSHAKE_COMPLETE.value:
            raise InvalidMessage("Expected a handshake-complete message")

        nonce = payload.get('nonce')
        if not isinstance(nonce, str):
            raise InvalidMessage("handshake-complete carries no nonce")

        return cls(nonce=nonce, audience=payload.get('aud'), exp=payload.get('exp'))


@dataclass
class ApplicationMessage:
    """An application payload sent after the handshake."""
    input: Any
    audience: Optional[str] = None
    exp: Optional[int] = None

    def to_payload(self) -> dict:
        payload = {
            'type': MessageType.MESSAGE.value,
            'input': self.input,
        }
        return _with_claims(payload, self.audience, self.exp)

    @classmethod
    def from_payload(cls, payload: dict) -> "ApplicationMessage":
        # Older clients send the body under `message`
        if 'input' in payload:
            body = payload['input']
        elif 'message' in payload:
            body = payload['message']
        else:
            raise InvalidMessage("Message carries no input")

        return cls(input=body, audience=payload.get('aud'), exp=payload.get('exp'))


@dataclass
class ApplicationResult:
    """The handler's answer to an application message."""
    result: Any
    audience: Optional[str] = None
    exp: Optional[int] = None

    def to_payload(self) -> dict:
        payload = {
            'type': MessageType.RESULT.value,
            'result': self.result,
        }
        return _with_claims(payload, self.audience, self.exp)

    @classmethod
    def from_payload(cls, payload: dict) -> "ApplicationResult":
        if 'result' not in payload:
            raise InvalidMessage("Reply carries no result")

        return cls(result=payload['result'], audience=payload.get('aud'), exp=payload.get('exp'))


def encode_envelope(token: str) -> dict:
    """HTTP body carrying a signed token."""
    return {'jwt': token}


def decode_envelope(body: Any) -> str:
    """Extract the signed token from an HTTP body."""
    if not isinstance(body, dict):
        raise InvalidMessage("Body must be a JSON object")

    token = body.get('jwt')
    if not isinstance(token, str) or not token:
        raise InvalidMessage("Body carries no jwt")

    return token
