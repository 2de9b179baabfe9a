"""
Shared fixtures: local identities, a credential issuer, and agents that
trust that issuer and the root controller.
"""

from contextlib import asynccontextmanager

import pytest
from aiohttp.test_utils import TestServer

from acklab.client import AckLabAgent
from acklab.config import SdkConfig, TrustPolicy
from acklab.credentials import issue_credential
from acklab.did import DIDResolver
from acklab.identity import Identity
from acklab.server import create_app

ROOT_CONTROLLER = "did:web:root"
OTHER_CONTROLLER = "did:web:other"


@pytest.fixture
def issuer():
    """Identity of the credential authority."""
    return Identity.generate()


@pytest.fixture
def resolver():
    # did:key identities resolve without network access
    return DIDResolver()


@pytest.fixture
def trust_policy(issuer):
    return TrustPolicy(
        trusted_issuers=[issuer.did],
        trusted_agent_controllers=[ROOT_CONTROLLER],
    )


@pytest.fixture
def make_agent(issuer, resolver, trust_policy):
    """Build an agent holding a controller credential from `issuer`."""

    def _make(
        controller=ROOT_CONTROLLER,
        expires_in=3600,
        policy=None,
        config=None,
        identity=None,
    ):
        identity = identity or Identity.generate()
        credential = issue_credential(
            issuer,
            identity.did,
            types=["ControllerCredential"],
            controller=controller,
            expires_in=expires_in,
        )
        return AckLabAgent.from_identity(
            identity,
            [credential],
            resolver=resolver,
            policy=policy or trust_policy,
            config=config or SdkConfig.default(),
        )

    return _make


@pytest.fixture
def run_handshake():
    """Run M1 -> M2 -> M3 -> complete in-process between two agents."""

    async def _run(initiator, responder_router):
        init = await initiator.engine.initiate_handshake()
        response = await responder_router.handle(init)
        continuation = await initiator.engine.handle_handshake_response(response)
        complete = await responder_router.handle(continuation.jwt)
        result = await initiator.engine.verify_handshake_complete(complete)
        initiator.authenticated.add(result.counterparty_did, continuation.credentials)
        return result

    return _run


@pytest.fixture
def serve():
    """Serve a request handler on a local port; yields the endpoint URL."""

    @asynccontextmanager
    async def _serve(router, path="/chat"):
        server = TestServer(create_app(router, path))
        await server.start_server()
        try:
            yield str(server.make_url(path))
        finally:
            await server.close()

    return _serve
