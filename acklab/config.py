"""
Configuration management for the ACK Lab SDK.
"""

import os
import json
from pathlib import Path
from dataclasses import dataclass, field, asdict
from typing import List, Optional

# Hosted API endpoint
DEFAULT_API_URL = os.environ.get(
    "ACK_LAB_API_URL",
    "https://api.ack-lab.com"
)

# Validity window stamped on every token the SDK creates
DEFAULT_TOKEN_TTL_SECONDS = 300

# How long a counterparty stays authenticated after a handshake
DEFAULT_AUTHENTICATED_TTL_SECONDS = 24 * 60 * 60

DEFAULT_REQUEST_TIMEOUT = 30


@dataclass
class TrustPolicy:
    """Which credentials a counterparty must present during a handshake.

    ``None`` leaves a check unconfigured; an empty list trusts nothing.
    """
    trusted_issuers: Optional[List[str]] = None
    trusted_agent_controllers: Optional[List[str]] = None
    require_verified_controller: bool = False

    @classmethod
    def load(cls, path: Path) -> "TrustPolicy":
        """Load policy from file."""
        with open(path, 'r') as f:
            data = json.load(f)
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict) -> "TrustPolicy":
        """Create policy from dictionary."""
        return cls(
            trusted_issuers=data.get('trusted_issuers'),
            trusted_agent_controllers=data.get('trusted_agent_controllers'),
            require_verified_controller=data.get('require_verified_controller', False),
        )

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'trusted_issuers': self.trusted_issuers,
            'trusted_agent_controllers': self.trusted_agent_controllers,
            'require_verified_controller': self.require_verified_controller,
        }

    def save(self, path: Path) -> None:
        """Save policy to file."""
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

    def is_trusted_issuer(self, issuer: str) -> bool:
        """Check if an issuer DID is trusted by this policy."""
        if self.trusted_issuers is None:
            return True
        return issuer in self.trusted_issuers

    def is_trusted_controller(self, controller: Optional[str]) -> bool:
        """Check if a controller DID is trusted by this policy."""
        if self.trusted_agent_controllers is None:
            return True
        if not controller:
            return False
        return controller in self.trusted_agent_controllers


@dataclass
class SdkConfig:
    """ACK Lab SDK configuration."""
    base_url: str = DEFAULT_API_URL
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    agent_id: Optional[str] = None
    token_ttl_seconds: int = DEFAULT_TOKEN_TTL_SECONDS
    authenticated_ttl_seconds: Optional[int] = DEFAULT_AUTHENTICATED_TTL_SECONDS
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    log_level: str = "INFO"
    policy: TrustPolicy = field(default_factory=TrustPolicy)

    @classmethod
    def default(cls) -> "SdkConfig":
        """Create default configuration."""
        return cls()

    @classmethod
    def from_env(cls) -> "SdkConfig":
        """Create configuration from ACK_LAB_* environment variables."""
        return cls(
            base_url=os.environ.get("ACK_LAB_API_URL", DEFAULT_API_URL),
            client_id=os.environ.get("ACK_LAB_CLIENT_ID"),
            client_secret=os.environ.get("ACK_LAB_CLIENT_SECRET"),
            agent_id=os.environ.get("ACK_LAB_AGENT_ID"),
            log_level=os.environ.get("ACK_LAB_LOG_LEVEL", "INFO"),
        )

    @classmethod
    def load(cls, path: Path) -> "SdkConfig":
        """Load configuration from file."""
        with open(path, 'r') as f:
            data = json.load(f)
        policy = TrustPolicy.from_dict(data.pop('policy', {}))
        return cls(policy=policy, **data)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return asdict(self)

    def save(self, path: Path) -> None:
        """Save configuration to file (with restricted permissions)."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)
        # May hold the client secret
        path.chmod(0o600)
