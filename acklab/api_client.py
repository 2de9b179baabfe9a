"""
Client for the hosted ACK Lab API.

Implements the `Signer` contract remotely (agent metadata, signing,
presentations) plus the account calls: identity verification, balance,
and opaque payment request / receipt tokens.
"""

import json
import hashlib
import logging
from typing import Optional, Dict, Any

import aiohttp
import jwt

from .config import SdkConfig, DEFAULT_API_URL, DEFAULT_REQUEST_TIMEOUT
from .errors import ApiError, TransportError
from .identity import Identity
from .signer import AgentMetadata, Signer

logger = logging.getLogger(__name__)


def stable_stringify(body: Any) -> str:
    """Canonical JSON: sorted keys, no whitespace."""
    return json.dumps(body, sort_keys=True, separators=(',', ':'), ensure_ascii=False)


def body_hash(body_string: str) -> str:
    return hashlib.sha256(body_string.encode('utf-8')).hexdigest()


class ApiClient(Signer):
    """
    Signer backed by the hosted API.

    Every request is authenticated with a short EdDSA token signed by the
    key whose seed is the hex client secret, binding method, path and a
    hash of the body.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        base_url: str = DEFAULT_API_URL,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ):
        self.client_id = client_id
        self.base_url = base_url.rstrip('/')
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._credentials = Identity.from_seed_hex(client_secret)
        self._metadata: Optional[AgentMetadata] = None

    @classmethod
    def from_config(cls, config: SdkConfig) -> "ApiClient":
        if not config.client_id or not config.client_secret:
            raise ValueError("client_id and client_secret are required for the hosted API")

        return cls(
            client_id=config.client_id,
            client_secret=config.client_secret,
            base_url=config.base_url,
            timeout=config.request_timeout,
        )

    async def get_agent_metadata(self) -> AgentMetadata:
        # Metadata never changes for an agent
        if self._metadata is None:
            data = await self._request("GET", "/v1/metadata")
            self._metadata = AgentMetadata(
                did=self._field(data, 'did'),
                credential=data.get('vc'),
            )
        return self._metadata

    async def sign(self, payload: Dict[str, Any]) -> str:
        data = await self._request("POST", "/v1/sign", payload)
        return self._field(data, 'jwt')

    async def generate_verifiable_presentation(
        self,
        aud: str,
        challenge: Optional[str] = None,
        nonce: Optional[str] = None,
    ) -> str:
        body = {'aud': aud}
        if challenge is not None:
            body['challenge'] = challenge
        if nonce is not None:
            body['nonce'] = nonce

        data = await self._request("POST", "/v1/verifiable-presentations", body)
        return self._field(data, 'presentation')

    async def verify(self, challenge: str) -> None:
        """Answer an identity-verification challenge for this agent."""
        await self._request("POST", "/v1/verify", {'challenge': challenge})

    async def get_balance(self) -> Dict[str, str]:
        data = await self._request("GET", "/v1/balance")
        if not isinstance(data, dict):
            raise ApiError("Malformed balance response")
        return data

    async def create_payment_request(
        self,
        amount: int,
        description: Optional[str] = None,
    ) -> str:
        """Create a payment request; returns the opaque payment token."""
        body: Dict[str, Any] = {'amount': amount}
        if description is not None:
            body['description'] = description

        data = await self._request("POST", "/v1/payment-requests", body)
        return self._field(data, 'paymentToken')

    async def execute_payment(self, payment_token: str) -> str:
        """Pay a payment token; returns the opaque receipt."""
        data = await self._request("POST", "/v1/payments", {'paymentToken': payment_token})
        return self._field(data, 'receipt')

    def _auth_header(self, method: str, path: str, body_string: str) -> str:
        token = jwt.encode(
            {
                'method': method,
                'path': path,
                'bodyHash': body_hash(body_string),
            },
            self._credentials.jwt_signing_key,
            algorithm="EdDSA",
            headers={'kid': self.client_id},
        )
        return f"Bearer {token}"

    async def _request(self, method: str, path: str, body: Any = None) -> Any:
        body_string = stable_stringify(body) if body is not None else ""

        headers = {
            'Content-Type': 'application/json',
            'Authorization': self._auth_header(method, path, body_string),
        }

        logger.debug(f"API request: {method} {path}")

        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.request(
                    method,
                    f"{self.base_url}{path}",
                    data=body_string.encode('utf-8') if body_string else None,
                    headers=headers,
                ) as response:
                    status = response.status
                    reason = response.reason
                    try:
                        result = await response.json(content_type=None)
                    except ValueError:
                        result = None

        except aiohttp.ClientError as e:
            logger.error(f"API connection error: {method} {path}: {e}")
            raise TransportError(f"API request {method} {path} failed: {e}") from e

        if not isinstance(result, dict) or 'ok' not in result:
            if status >= 400:
                raise ApiError(f"Request failed: {reason}", status_code=status)
            raise ApiError("Malformed API response", status_code=status)

        if not result['ok'] or status >= 400:
            message = result.get('error') or result.get('message') or f"Request failed: {reason}"
            logger.warning(f"API error: {method} {path}: {message}")
            raise ApiError(message, issues=result.get('issues'), status_code=status)

        return result.get('data')

    @staticmethod
    def _field(data: Any, key: str) -> Any:
        if not isinstance(data, dict) or key not in data:
            raise ApiError(f"Malformed API response: missing {key}")
        return data[key]
