"""
Error types raised by the ACK Lab SDK.

Every error carries a stable ``code`` so that a request handler can send it
back to the caller as a structured reply, and the caller can raise the same
kind of error on its side.
"""

from typing import Any, Dict, List, Optional


class AckLabError(Exception):
    """Base class for all SDK errors."""

    code = "error"
    http_status = 400

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class InvalidMessage(AckLabError):
    """Token cannot be classified into a known protocol phase."""

    code = "invalid_message"
    http_status = 400


class SignatureVerificationFailed(AckLabError):
    """Token signature, expiry, audience or issuer resolution failed."""

    code = "signature_verification_failed"
    http_status = 401


class DIDResolutionError(SignatureVerificationFailed):
    """A DID could not be resolved to verification material."""

    code = "did_resolution_failed"


class ChallengeMismatch(AckLabError):
    """Echoed nonce does not match the challenge issued to that counterparty."""

    code = "challenge_mismatch"
    http_status = 401


class UntrustedCredential(AckLabError):
    """Presented credentials fail the issuer trust policy."""

    code = "untrusted_credential"
    http_status = 401


class UntrustedController(UntrustedCredential):
    """Presented credentials name no controller, or an untrusted one."""

    code = "untrusted_controller"


class NotAuthenticated(AckLabError):
    """Application message from a DID that has not completed a handshake."""

    code = "not_authenticated"
    http_status = 401


class SchemaValidationError(AckLabError):
    """Application payload does not match its declared schema."""

    code = "schema_validation_failed"
    http_status = 400

    def __init__(self, message: str = "", errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = errors or []


class TransportError(AckLabError):
    """HTTP call failed or returned a non-success status."""

    code = "transport_error"
    http_status = 502

    def __init__(self, message: str = "", status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class ApiError(AckLabError):
    """The hosted ACK Lab API rejected a request."""

    code = "api_error"
    http_status = 502

    def __init__(
        self,
        message: str = "",
        issues: Optional[List[Dict[str, Any]]] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.issues = issues or []
        self.status_code = status_code


# Errors a request handler may report back to its caller
PROTOCOL_ERRORS = {
    cls.code: cls
    for cls in (
        InvalidMessage,
        SignatureVerificationFailed,
        DIDResolutionError,
        ChallengeMismatch,
        UntrustedCredential,
        UntrustedController,
        NotAuthenticated,
        SchemaValidationError,
    )
}


def error_reply(error: AckLabError) -> Dict[str, Any]:
    """Build the structured reply body for a protocol error."""
    return {
        'error': {
            'code': error.code,
            'message': error.message,
        }
    }


def error_from_reply(data: Any) -> Optional[AckLabError]:
    """Rebuild the error described by a structured reply, if it is one."""
    if not isinstance(data, dict) or not isinstance(data.get('error'), dict):
        return None

    code = data['error'].get('code')
    message = data['error'].get('message') or str(code)
    error_class = PROTOCOL_ERRORS.get(code)

    if error_class is None:
        return None

    return error_class(message)
