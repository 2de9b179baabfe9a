"""
Tests for identities, DID documents and DID resolution.
"""

import base64
import json

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from acklab.did import DIDDocument, DIDResolver, did_web_url, resolve_did_key
from acklab.errors import DIDResolutionError
from acklab.identity import (
    Identity,
    base58_decode,
    base58_encode,
    decode_multibase_key,
)


class TestIdentity:

    def test_generated_did_is_did_key(self):
        identity = Identity.generate()

        assert identity.did.startswith("did:key:z6Mk")
        assert decode_multibase_key(identity.did[len("did:key:"):]) == identity.public_key_bytes

    def test_key_id(self):
        identity = Identity.generate()
        assert identity.key_id == f"{identity.did}#{identity.public_key_multibase}"

        web_identity = Identity.generate(did="did:web:agent.example")
        assert web_identity.key_id == "did:web:agent.example#signing-key"

    def test_from_seed_hex_is_deterministic(self):
        seed = "11" * 32

        first = Identity.from_seed_hex(seed)
        second = Identity.from_seed_hex(seed)

        assert first.did == second.did

    def test_from_seed_hex_rejects_non_hex(self):
        with pytest.raises(ValueError):
            Identity.from_seed_hex("not hex")

    def test_save_and_load(self, tmp_path):
        identity = Identity.generate()
        key_file = tmp_path / "keys" / "identity.json"

        identity.save(key_file)

        assert (key_file.stat().st_mode & 0o777) == 0o600
        with open(key_file) as f:
            data = json.load(f)
        assert data["signing_private_key"].startswith("ed25519:")

        loaded = Identity.load(key_file)
        assert loaded.did == identity.did
        assert loaded.public_key_bytes == identity.public_key_bytes

    def test_base58_leading_zeros(self):
        data = b"\x00\x00\x01\x02"
        encoded = base58_encode(data)

        assert encoded.startswith("11")
        assert base58_decode(encoded) == data

    def test_base58_rejects_invalid_characters(self):
        with pytest.raises(ValueError):
            base58_decode("0OIl")


class TestDIDDocument:

    def test_document_from_identity(self):
        identity = Identity.generate()
        document = DIDDocument.from_identity(identity, service_endpoint="https://a.example/chat")

        method = document.get_verification_method(identity.key_id)
        assert method.public_key_bytes() == identity.public_key_bytes
        assert document.get_service_endpoint() == "https://a.example/chat"

    def test_dict_round_trip(self):
        identity = Identity.generate(did="did:web:agent.example")
        document = DIDDocument.from_identity(identity)

        parsed = DIDDocument.from_dict(document.to_dict())

        assert parsed.id == "did:web:agent.example"
        assert parsed.get_verification_method().public_key_bytes() == identity.public_key_bytes

    def test_relative_method_ids(self):
        identity = Identity.generate(did="did:web:agent.example")
        data = DIDDocument.from_identity(identity).to_dict()
        data["verificationMethod"][0]["id"] = "#signing-key"
        data["assertionMethod"] = ["#signing-key"]

        document = DIDDocument.from_dict(data)

        assert document.get_verification_method("did:web:agent.example#signing-key") is not None
        assert document.get_verification_method() is not None

    def test_jwk_verification_method(self):
        identity = Identity.generate(did="did:web:agent.example")
        x = base64.urlsafe_b64encode(identity.public_key_bytes).rstrip(b"=").decode()
        document = DIDDocument.from_dict({
            "id": identity.did,
            "verificationMethod": [{
                "id": f"{identity.did}#jwk",
                "type": "JsonWebKey2020",
                "controller": identity.did,
                "publicKeyJwk": {"kty": "OKP", "crv": "Ed25519", "x": x},
            }],
        })

        assert document.get_verification_method().public_key_bytes() == identity.public_key_bytes

    def test_did_key_document(self):
        identity = Identity.generate()
        document = resolve_did_key(identity.did)

        assert document.get_verification_method(identity.key_id) is not None

    def test_invalid_did_key(self):
        with pytest.raises(DIDResolutionError):
            resolve_did_key("did:key:zNotAKey")


class TestDIDWebUrl:

    def test_bare_domain(self):
        assert did_web_url("did:web:example.com") == "https://example.com/.well-known/did.json"

    def test_with_path(self):
        assert did_web_url("did:web:example.com:agents:a1") == "https://example.com/agents/a1/did.json"

    def test_encoded_port(self):
        assert did_web_url("did:web:localhost%3A8080", "http") == "http://localhost:8080/.well-known/did.json"

    def test_not_did_web(self):
        with pytest.raises(DIDResolutionError):
            did_web_url("did:key:z6Mk")


class TestDIDResolver:

    @pytest.mark.asyncio
    async def test_registered_document(self):
        identity = Identity.generate(did="did:web:offline.example")
        resolver = DIDResolver(documents=[DIDDocument.from_identity(identity)])

        key = await resolver.get_public_key(identity.did, identity.key_id)

        assert key == identity.public_key_bytes

    @pytest.mark.asyncio
    async def test_unknown_key_id(self):
        identity = Identity.generate()
        resolver = DIDResolver()

        with pytest.raises(DIDResolutionError):
            await resolver.get_public_key(identity.did, f"{identity.did}#other")

    @pytest.mark.asyncio
    async def test_resolves_did_web_and_caches(self):
        requests = []
        documents = {}

        async def did_json(request):
            requests.append(request.path)
            return web.json_response(documents["current"])

        app = web.Application()
        app.router.add_get("/.well-known/did.json", did_json)
        server = TestServer(app)
        await server.start_server()

        try:
            identity = Identity.generate(did=f"did:web:{server.host}%3A{server.port}")
            documents["current"] = DIDDocument.from_identity(identity).to_dict()
            resolver = DIDResolver(did_web_scheme="http")

            first = await resolver.get_public_key(identity.did, identity.key_id)
            second = await resolver.get_public_key(identity.did)

            assert first == second == identity.public_key_bytes
            assert requests == ["/.well-known/did.json"]

            resolver.clear_cache()
            await resolver.resolve(identity.did)
            assert len(requests) == 2
        finally:
            await server.close()

    @pytest.mark.asyncio
    async def test_did_web_document_must_match(self):
        async def did_json(request):
            other = Identity.generate(did="did:web:someone.else")
            return web.json_response(DIDDocument.from_identity(other).to_dict())

        app = web.Application()
        app.router.add_get("/.well-known/did.json", did_json)
        server = TestServer(app)
        await server.start_server()

        try:
            resolver = DIDResolver(did_web_scheme="http")
            with pytest.raises(DIDResolutionError, match="does not match"):
                await resolver.resolve(f"did:web:{server.host}%3A{server.port}")
        finally:
            await server.close()

    @pytest.mark.asyncio
    async def test_did_web_not_found(self):
        app = web.Application()
        server = TestServer(app)
        await server.start_server()

        try:
            resolver = DIDResolver(did_web_scheme="http")
            with pytest.raises(DIDResolutionError, match="HTTP 404"):
                await resolver.resolve(f"did:web:{server.host}%3A{server.port}")
        finally:
            await server.close()
