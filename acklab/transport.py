"""
HTTP transport: POST `{jwt}` to an agent endpoint, read `{jwt}` back.
"""

import logging

import aiohttp

from .config import DEFAULT_REQUEST_TIMEOUT
from .errors import TransportError, error_from_reply
from .messages import encode_envelope, decode_envelope

logger = logging.getLogger(__name__)


class HttpTransport:
    """Carries signed tokens to agent endpoints over HTTP."""

    def __init__(self, timeout: float = DEFAULT_REQUEST_TIMEOUT):
        self.timeout = aiohttp.ClientTimeout(total=timeout)

    async def post(self, url: str, token: str) -> str:
        """
        Send a token and return the token the endpoint replied with.

        Raises:
            TransportError: connection failure, or a non-success status
                without a structured error body.
            AckLabError: the protocol error the endpoint reported.
        """
        logger.debug(f"POST {url}")

        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(url, json=encode_envelope(token)) as response:
                    status = response.status
                    try:
                        body = await response.json(content_type=None)
                    except ValueError:
                        body = None

        except aiohttp.ClientError as e:
            logger.error(f"Connection error: {url}: {e}")
            raise TransportError(f"Request to {url} failed: {e}") from e

        if status >= 400:
            remote_error = error_from_reply(body)
            if remote_error is not None:
                raise remote_error
            raise TransportError(f"{url} returned HTTP {status}", status=status)

        if body is None:
            raise TransportError(f"{url} returned a non-JSON body", status=status)

        return decode_envelope(body)
