"""
Challenges: single-use random values bound to one counterparty DID.
"""

import time
import uuid
import logging
from typing import Dict, Optional, Tuple

from .errors import ChallengeMismatch

logger = logging.getLogger(__name__)


def generate_challenge() -> str:
    """Generate an unpredictable challenge value."""
    return str(uuid.uuid4())


class ChallengeStore:
    """
    Outstanding challenges, one per counterparty DID.

    Owned by a single handshake engine; nothing here is shared between
    agents. Issuing a new challenge for a counterparty replaces the old one.
    A challenge older than `ttl_seconds` counts as never issued; expired
    entries are pruned whenever a new challenge is issued.
    """

    def __init__(self, ttl_seconds: Optional[float] = None):
        self.ttl_seconds = ttl_seconds
        # counterparty -> (challenge, issued at, monotonic seconds)
        self._challenges: Dict[str, Tuple[str, float]] = {}

    def issue(self, counterparty: str) -> str:
        """Generate and remember a challenge for `counterparty`."""
        self.cleanup_expired()

        challenge = generate_challenge()
        self._challenges[counterparty] = (challenge, time.monotonic())
        return challenge

    def get(self, counterparty: str) -> Optional[str]:
        entry = self._challenges.get(counterparty)
        if entry is None:
            return None

        challenge, issued_at = entry
        if self._is_expired(issued_at, time.monotonic()):
            logger.debug(f"Challenge for {counterparty} expired")
            del self._challenges[counterparty]
            return None
        return challenge

    def is_valid(self, counterparty: str, challenge: Optional[str]) -> bool:
        """Whether `challenge` is the outstanding challenge for `counterparty`."""
        expected = self.get(counterparty)
        return expected is not None and challenge is not None and challenge == expected

    def validate(self, counterparty: str, challenge: Optional[str]) -> None:
        """
        Check a challenge echoed back by `counterparty` without consuming it.

        Raises:
            ChallengeMismatch: if no challenge is outstanding for the
                counterparty, or the echoed value differs.
        """
        if counterparty not in self:
            logger.warning(f"No outstanding challenge for {counterparty}")
            raise ChallengeMismatch(f"No outstanding challenge for {counterparty}")

        if not self.is_valid(counterparty, challenge):
            logger.warning(f"Challenge mismatch for {counterparty}")
            raise ChallengeMismatch(f"Challenge mismatch for {counterparty}")

    def consume(self, counterparty: str, challenge: Optional[str]) -> None:
        """Validate and then forget the challenge, so it can never be replayed."""
        self.validate(counterparty, challenge)
        del self._challenges[counterparty]

    def discard(self, counterparty: str) -> None:
        self._challenges.pop(counterparty, None)

    def cleanup_expired(self) -> int:
        """Remove expired challenges."""
        now = time.monotonic()
        expired = [
            counterparty for counterparty, (_, issued_at) in self._challenges.items()
            if self._is_expired(issued_at, now)
        ]
        for counterparty in expired:
            del self._challenges[counterparty]
        return len(expired)

    def _is_expired(self, issued_at: float, now: float) -> bool:
        return self.ttl_seconds is not None and now - issued_at >= self.ttl_seconds

    def __contains__(self, counterparty: str) -> bool:
        return self.get(counterparty) is not None

    def __len__(self) -> int:
        self.cleanup_expired()
        return len(self._challenges)
