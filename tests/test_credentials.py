"""
Tests for credential verification and the trust evaluator.
"""

import pytest

from acklab.config import TrustPolicy
from acklab.credentials import (
    Credential,
    CredentialTrustEvaluator,
    Presentation,
    issue_credential,
    parse_credential,
    verify_credential,
    verify_presentation,
    verify_presentation_claims,
)
from acklab.errors import (
    InvalidMessage,
    SignatureVerificationFailed,
    UntrustedController,
    UntrustedCredential,
)
from acklab.identity import Identity
from acklab.signer import LocalSigner
from acklab.tokens import expiration, sign_jwt

ROOT_CONTROLLER = "did:web:root"
OTHER_CONTROLLER = "did:web:other"


def controller_credential(issuer, subject, controller=ROOT_CONTROLLER, expires_in=3600):
    return issue_credential(
        issuer,
        subject,
        types=["ControllerCredential"],
        controller=controller,
        expires_in=expires_in,
    )


class TestVerifyCredential:

    @pytest.mark.asyncio
    async def test_valid_credential(self, issuer, resolver):
        agent = Identity.generate()
        credential = controller_credential(issuer, agent.did)

        verified = await verify_credential(credential, resolver, [issuer.did])

        assert verified.controller == ROOT_CONTROLLER
        assert verified.subject_id == agent.did
        assert verified.has_type("ControllerCredential")

    @pytest.mark.asyncio
    async def test_tampered_controller_rejected(self, issuer, resolver):
        agent = Identity.generate()
        credential = controller_credential(issuer, agent.did, controller=OTHER_CONTROLLER)
        credential.credential_subject.controller = ROOT_CONTROLLER

        with pytest.raises(SignatureVerificationFailed, match="does not match"):
            await verify_credential(credential, resolver)

    @pytest.mark.asyncio
    async def test_expired_credential_rejected(self, issuer, resolver):
        agent = Identity.generate()
        credential = controller_credential(issuer, agent.did, expires_in=-60)

        assert credential.is_expired()
        with pytest.raises(SignatureVerificationFailed):
            await verify_credential(credential, resolver)

    @pytest.mark.asyncio
    async def test_untrusted_issuer_rejected(self, issuer, resolver):
        agent = Identity.generate()
        rogue = Identity.generate()
        credential = controller_credential(rogue, agent.did)

        with pytest.raises(UntrustedCredential):
            await verify_credential(credential, resolver, [issuer.did])

    @pytest.mark.asyncio
    async def test_issuer_swap_rejected(self, issuer, resolver):
        """Claiming a trusted issuer on a credential someone else signed."""
        agent = Identity.generate()
        rogue = Identity.generate()
        credential = controller_credential(rogue, agent.did)
        credential.issuer = issuer.did

        with pytest.raises(SignatureVerificationFailed):
            await verify_credential(credential, resolver, [issuer.did])

    @pytest.mark.asyncio
    async def test_missing_proof_rejected(self, issuer, resolver):
        agent = Identity.generate()
        credential = controller_credential(issuer, agent.did)
        credential.proof = None

        with pytest.raises(SignatureVerificationFailed, match="proof"):
            await verify_credential(credential, resolver)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("proof", ["garbage", {"type": "JwtProof2020", "jwt": 7}])
    async def test_malformed_proof_rejected(self, issuer, resolver, proof):
        agent = Identity.generate()
        credential = controller_credential(issuer, agent.did)
        credential.proof = proof

        with pytest.raises(SignatureVerificationFailed, match="proof"):
            await verify_credential(credential, resolver)


class TestParsing:

    def test_dict_round_trip(self, issuer):
        agent = Identity.generate()
        credential = controller_credential(issuer, agent.did)

        parsed = Credential.from_dict(credential.to_dict())

        assert parsed == credential

    def test_parse_vc_jwt(self, issuer):
        agent = Identity.generate()
        credential = controller_credential(issuer, agent.did)

        parsed = parse_credential(credential.proof["jwt"])

        assert parsed.to_dict() == credential.to_dict()

    def test_parse_malformed(self):
        with pytest.raises(InvalidMessage):
            parse_credential({"type": ["VerifiableCredential"]})

    @pytest.mark.parametrize("entry", [
        7,
        {"issuer": ["did:web:root"], "credentialSubject": {"id": "did:web:agent"}},
        {"issuer": "did:web:root", "credentialSubject": "did:web:agent"},
        {"issuer": "did:web:root", "credentialSubject": {"id": "did:web:agent"},
         "expirationDate": 12345},
        {"issuer": "did:web:root", "credentialSubject": {"id": "did:web:agent"},
         "expirationDate": "next tuesday"},
    ])
    def test_parse_malformed_fields(self, entry):
        with pytest.raises(InvalidMessage):
            parse_credential(entry)

    def test_parse_vc_jwt_without_issuer(self):
        agent = Identity.generate()
        token = sign_jwt({"vc": {"credentialSubject": {"id": agent.did}}}, agent)

        with pytest.raises(InvalidMessage):
            parse_credential(token)

    def test_presentation_round_trip(self, issuer):
        agent = Identity.generate()
        presentation = Presentation(
            holder=agent.did,
            verifiable_credential=[controller_credential(issuer, agent.did)],
        )

        parsed = Presentation.from_dict(presentation.to_dict())

        assert parsed == presentation


class TestVerifyPresentation:

    @pytest.mark.asyncio
    async def test_presentation_for_audience(self, issuer, resolver):
        agent = Identity.generate()
        signer = LocalSigner(agent, [controller_credential(issuer, agent.did)])

        token = await signer.generate_verifiable_presentation(
            aud="did:web:verifier",
            challenge="c-1",
            nonce="n-1",
        )
        verified = await verify_presentation(token, resolver, domain="did:web:verifier")

        assert verified.issuer == agent.did
        assert verified.payload["nonce"] == "c-1"
        assert verified.payload["jti"] == "n-1"
        assert len(verified.credentials) == 1

    @pytest.mark.asyncio
    async def test_wrong_domain_rejected(self, issuer, resolver):
        agent = Identity.generate()
        signer = LocalSigner(agent, [])
        token = await signer.generate_verifiable_presentation(aud="did:web:verifier")

        with pytest.raises(SignatureVerificationFailed):
            await verify_presentation(token, resolver, domain="did:web:someone-else")

    @pytest.mark.asyncio
    async def test_holder_must_sign(self, resolver):
        agent = Identity.generate()
        token = sign_jwt({
            "vp": Presentation(holder="did:web:victim").to_dict(),
            "exp": expiration(),
        }, agent)

        with pytest.raises(SignatureVerificationFailed, match="holder"):
            await verify_presentation(token, resolver)

    @pytest.mark.asyncio
    async def test_token_without_presentation(self, resolver):
        agent = Identity.generate()
        token = sign_jwt({"type": "message", "exp": expiration()}, agent)

        with pytest.raises(InvalidMessage):
            await verify_presentation(token, resolver)


class TestPresentationClaims:

    def _full_set(self, issuer, agent_did, controller="did:web:owner"):
        return [
            controller_credential(issuer, agent_did, controller=controller),
            issue_credential(
                issuer,
                controller,
                types=["EmailVerificationCredential"],
                claims={"email": "owner@example.com", "emailVerifiedAt": "2026-01-01T00:00:00Z"},
            ),
            issue_credential(
                issuer,
                agent_did,
                types=["LivenessCredential"],
                claims={"endpointUrl": "https://agent.example/chat"},
            ),
        ]

    def test_full_set_accepted(self, issuer):
        agent = Identity.generate()
        verify_presentation_claims(agent.did, self._full_set(issuer, agent.did))

    def test_missing_email_verification(self, issuer):
        agent = Identity.generate()
        credentials = self._full_set(issuer, agent.did)[::2]

        with pytest.raises(UntrustedCredential, match="email"):
            verify_presentation_claims(agent.did, credentials)

    def test_missing_liveness(self, issuer):
        agent = Identity.generate()
        credentials = self._full_set(issuer, agent.did)[:2]

        with pytest.raises(UntrustedCredential, match="liveness"):
            verify_presentation_claims(agent.did, credentials)

    def test_controller_credential_about_other_agent(self, issuer):
        agent = Identity.generate()
        other = Identity.generate()

        with pytest.raises(UntrustedCredential, match="controller"):
            verify_presentation_claims(agent.did, self._full_set(issuer, other.did))


class TestCredentialTrustEvaluator:

    @pytest.mark.asyncio
    async def test_trusted_controller_accepted(self, issuer, resolver, trust_policy):
        agent = Identity.generate()
        evaluator = CredentialTrustEvaluator(resolver, trust_policy)

        accepted = await evaluator.evaluate([controller_credential(issuer, agent.did)], agent.did)

        assert len(accepted) == 1

    @pytest.mark.asyncio
    async def test_untrusted_controller_rejected(self, issuer, resolver):
        """A validly signed credential with the wrong controller is still rejected."""
        agent = Identity.generate()
        evaluator = CredentialTrustEvaluator(
            resolver,
            TrustPolicy(trusted_agent_controllers=["did:web:root"]),
        )
        credential = controller_credential(issuer, agent.did, controller="did:web:other")

        await verify_credential(credential, resolver)
        with pytest.raises(UntrustedController):
            await evaluator.evaluate([credential], agent.did)

    @pytest.mark.asyncio
    async def test_missing_controller_rejected(self, issuer, resolver, trust_policy):
        agent = Identity.generate()
        evaluator = CredentialTrustEvaluator(resolver, trust_policy)
        credential = issue_credential(issuer, agent.did, types=["LivenessCredential"])

        with pytest.raises(UntrustedController, match="does not have a controller"):
            await evaluator.evaluate([credential], agent.did)

    @pytest.mark.asyncio
    async def test_no_credentials_with_controller_policy(self, resolver):
        agent = Identity.generate()
        evaluator = CredentialTrustEvaluator(
            resolver,
            TrustPolicy(trusted_agent_controllers=[ROOT_CONTROLLER]),
        )

        with pytest.raises(UntrustedController):
            await evaluator.evaluate([], agent.did)

    @pytest.mark.asyncio
    async def test_no_credentials_with_issuer_policy(self, issuer, resolver):
        agent = Identity.generate()
        evaluator = CredentialTrustEvaluator(resolver, TrustPolicy(trusted_issuers=[issuer.did]))

        with pytest.raises(UntrustedCredential):
            await evaluator.evaluate([], agent.did)

    @pytest.mark.asyncio
    async def test_borrowed_controller_credential_rejected(self, issuer, resolver, trust_policy):
        """Presenting another agent's controller credential does not help."""
        agent = Identity.generate()
        other = Identity.generate()
        evaluator = CredentialTrustEvaluator(resolver, trust_policy)

        with pytest.raises(UntrustedController):
            await evaluator.evaluate([controller_credential(issuer, other.did)], agent.did)

    @pytest.mark.asyncio
    async def test_open_policy_accepts_anything_valid(self, resolver):
        agent = Identity.generate()
        evaluator = CredentialTrustEvaluator(resolver)

        assert await evaluator.evaluate([], agent.did) == []

    @pytest.mark.asyncio
    async def test_verified_controller_required(self, issuer, resolver):
        agent = Identity.generate()
        evaluator = CredentialTrustEvaluator(
            resolver,
            TrustPolicy(require_verified_controller=True),
        )

        with pytest.raises(UntrustedCredential):
            await evaluator.evaluate([controller_credential(issuer, agent.did)], agent.did)
