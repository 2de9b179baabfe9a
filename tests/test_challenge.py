"""
Tests for challenge generation and per-counterparty binding.
"""

from unittest.mock import patch

import pytest

from acklab.challenge import ChallengeStore, generate_challenge
from acklab.errors import ChallengeMismatch

ALICE = "did:web:alice"
BOB = "did:web:bob"


class TestGenerateChallenge:

    def test_challenges_are_unique(self):
        challenges = {generate_challenge() for _ in range(100)}
        assert len(challenges) == 100

    def test_challenge_is_string(self):
        assert isinstance(generate_challenge(), str)


class TestChallengeStore:

    def test_issue_and_validate(self):
        store = ChallengeStore()
        challenge = store.issue(ALICE)

        assert store.is_valid(ALICE, challenge)
        store.validate(ALICE, challenge)
        assert ALICE in store

    def test_challenge_bound_to_counterparty(self):
        """A challenge issued to one DID is rejected for another."""
        store = ChallengeStore()
        alice_challenge = store.issue(ALICE)
        store.issue(BOB)

        assert not store.is_valid(BOB, alice_challenge)
        with pytest.raises(ChallengeMismatch):
            store.validate(BOB, alice_challenge)

    def test_missing_challenge_fails_closed(self):
        store = ChallengeStore()

        assert not store.is_valid(ALICE, None)
        with pytest.raises(ChallengeMismatch):
            store.validate(ALICE, "anything")

    def test_consumed_challenge_cannot_be_replayed(self):
        store = ChallengeStore()
        challenge = store.issue(ALICE)

        store.consume(ALICE, challenge)

        assert ALICE not in store
        with pytest.raises(ChallengeMismatch):
            store.consume(ALICE, challenge)

    def test_failed_validation_keeps_challenge(self):
        store = ChallengeStore()
        challenge = store.issue(ALICE)

        with pytest.raises(ChallengeMismatch):
            store.consume(ALICE, "wrong")

        assert store.get(ALICE) == challenge

    def test_reissue_replaces_previous(self):
        store = ChallengeStore()
        first = store.issue(ALICE)
        second = store.issue(ALICE)

        assert first != second
        assert not store.is_valid(ALICE, first)
        assert store.is_valid(ALICE, second)
        assert len(store) == 1

    def test_discard(self):
        store = ChallengeStore()
        store.issue(ALICE)
        store.discard(ALICE)
        store.discard(BOB)

        assert len(store) == 0


class TestChallengeExpiry:

    def test_expired_challenge_rejected(self):
        store = ChallengeStore(ttl_seconds=60)

        with patch("acklab.challenge.time.monotonic", return_value=1000.0) as clock:
            challenge = store.issue(ALICE)
            clock.return_value = 1059.0
            assert store.is_valid(ALICE, challenge)

            clock.return_value = 1060.0
            assert ALICE not in store
            with pytest.raises(ChallengeMismatch):
                store.consume(ALICE, challenge)

    def test_issue_prunes_expired_challenges(self):
        store = ChallengeStore(ttl_seconds=60)

        with patch("acklab.challenge.time.monotonic", return_value=1000.0) as clock:
            for i in range(200):
                store.issue(f"did:key:stranger-{i}")

            clock.return_value = 1100.0
            store.issue(ALICE)

            assert store._challenges.keys() == {ALICE}
            assert len(store) == 1

    def test_no_ttl_keeps_challenges(self):
        store = ChallengeStore()

        with patch("acklab.challenge.time.monotonic", return_value=1000.0) as clock:
            challenge = store.issue(ALICE)
            clock.return_value = 10 ** 9

            assert store.is_valid(ALICE, challenge)

    def test_cleanup_expired(self):
        store = ChallengeStore(ttl_seconds=60)

        with patch("acklab.challenge.time.monotonic", return_value=1000.0) as clock:
            store.issue(ALICE)
            clock.return_value = 1030.0
            store.issue(BOB)

            clock.return_value = 1070.0
            assert store.cleanup_expired() == 1
            assert BOB in store
