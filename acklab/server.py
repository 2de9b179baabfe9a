"""
HTTP server adapter: exposes a request handler as `POST <path>` with `{jwt}`.
"""

import logging
from typing import Optional

from aiohttp import web

from .did import DIDDocument
from .errors import AckLabError, InvalidMessage, error_reply
from .messages import encode_envelope, decode_envelope
from .session import SessionRouter

logger = logging.getLogger(__name__)

DEFAULT_PATH = "/chat"


def create_app(
    router: SessionRouter,
    path: str = DEFAULT_PATH,
    did_document: Optional[DIDDocument] = None,
) -> web.Application:
    """
    Build the aiohttp application for an agent endpoint.

    Protocol errors become structured replies with the error's HTTP status.
    Anything else the application handler raises is left to aiohttp (500).
    """
    app = web.Application()

    async def handle(request: web.Request) -> web.Response:
        try:
            body = await request.json()
        except ValueError:
            return web.json_response(
                error_reply(InvalidMessage("Body must be JSON")),
                status=400,
            )

        try:
            reply = await router.handle(decode_envelope(body))
        except AckLabError as e:
            return web.json_response(error_reply(e), status=e.http_status)

        return web.json_response(encode_envelope(reply))

    app.router.add_post(path, handle)

    if did_document is not None:
        document = did_document.to_dict()

        async def serve_did_document(request: web.Request) -> web.Response:
            return web.json_response(document)

        app.router.add_get('/.well-known/did.json', serve_did_document)

    return app


class AgentServer:
    """Serves one agent's request handler over HTTP."""

    def __init__(
        self,
        router: SessionRouter,
        host: str = "127.0.0.1",
        port: int = 8080,
        path: str = DEFAULT_PATH,
        did_document: Optional[DIDDocument] = None,
    ):
        self.host = host
        self.port = port
        self.path = path
        self.app = create_app(router, path, did_document)
        self.runner: Optional[web.AppRunner] = None

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}{self.path}"

    async def start(self):
        """Start serving."""
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()

        site = web.TCPSite(self.runner, self.host, self.port)
        await site.start()

        logger.info(f"Agent endpoint listening at {self.url}")

    async def stop(self):
        """Stop serving."""
        if self.runner:
            await self.runner.cleanup()
            self.runner = None
            logger.info("Agent endpoint stopped")
