"""
ACK Lab SDK - mutual authentication and messaging for commerce agents

This package lets autonomous agents prove who they are to each other with a
three-message credential handshake, then exchange signed application
messages over plain HTTP.

Usage:
    from acklab import AckLabAgent, AgentServer

    # Seller
    seller = AckLabAgent.from_config()
    router = seller.create_request_handler(handle_message)
    server = AgentServer(router, port=8080)
    await server.start()

    # Buyer
    buyer = AckLabAgent.from_config()
    call = buyer.create_agent_caller("http://localhost:8080/chat")
    reply = await call({"message": "ping"})
"""

__version__ = "0.1.0"
__protocol_version__ = "acklab-handshake/1"

from .client import AckLabAgent, AgentCaller
from .identity import Identity
from .handshake import HandshakeEngine, HandshakeResult
from .session import SessionRouter, AuthenticatedCounterparties
from .challenge import ChallengeStore, generate_challenge
from .credentials import (
    Credential,
    CredentialSubject,
    Presentation,
    CredentialTrustEvaluator,
    issue_credential,
    verify_credential,
    verify_presentation,
    verify_presentation_claims,
)
from .messages import MessageType, classify_payload
from .signer import Signer, LocalSigner, AgentMetadata
from .api_client import ApiClient
from .transport import HttpTransport
from .server import AgentServer, create_app
from .config import SdkConfig, TrustPolicy
from .did import DIDDocument, DIDResolver
from .schemas import SchemaValidator, ValidationMode
from .errors import (
    AckLabError,
    InvalidMessage,
    SignatureVerificationFailed,
    DIDResolutionError,
    ChallengeMismatch,
    UntrustedCredential,
    UntrustedController,
    NotAuthenticated,
    SchemaValidationError,
    TransportError,
    ApiError,
)

__all__ = [
    # Core
    "AckLabAgent",
    "AgentCaller",
    "Identity",
    "HandshakeEngine",
    "HandshakeResult",
    "SessionRouter",
    "AuthenticatedCounterparties",
    "ChallengeStore",
    "generate_challenge",
    # Credentials
    "Credential",
    "CredentialSubject",
    "Presentation",
    "CredentialTrustEvaluator",
    "issue_credential",
    "verify_credential",
    "verify_presentation",
    "verify_presentation_claims",
    # Messages
    "MessageType",
    "classify_payload",
    # Signing
    "Signer",
    "LocalSigner",
    "AgentMetadata",
    "ApiClient",
    # HTTP
    "HttpTransport",
    "AgentServer",
    "create_app",
    # Config
    "SdkConfig",
    "TrustPolicy",
    # DID
    "DIDDocument",
    "DIDResolver",
    # Schemas
    "SchemaValidator",
    "ValidationMode",
    # Errors
    "AckLabError",
    "InvalidMessage",
    "SignatureVerificationFailed",
    "DIDResolutionError",
    "ChallengeMismatch",
    "UntrustedCredential",
    "UntrustedController",
    "NotAuthenticated",
    "SchemaValidationError",
    "TransportError",
    "ApiError",
]
