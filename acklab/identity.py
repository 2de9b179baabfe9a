"""
Identity management for ACK Lab agents.
Handles key generation, DID derivation, and token signing keys.
"""

import json
import base64
import logging
from pathlib import Path
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Optional

from nacl.signing import SigningKey, VerifyKey
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

logger = logging.getLogger(__name__)

# Base58 encoding (Bitcoin-style alphabet)
BASE58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"

# Multicodec header for an Ed25519 public key
ED25519_MULTICODEC = b"\xed\x01"

DID_KEY_PREFIX = "did:key:"


def base58_encode(data: bytes) -> str:
    """Encode bytes as base58btc."""
    n = int.from_bytes(data, 'big')
    result = []
    while n > 0:
        n, remainder = divmod(n, 58)
        result.append(BASE58_ALPHABET[remainder])

    # Add leading zeros for leading zero bytes
    for byte in data:
        if byte == 0:
            result.append(BASE58_ALPHABET[0])
        else:
            break

    return ''.join(reversed(result))


def base58_decode(text: str) -> bytes:
    """Decode a base58btc string."""
    n = 0
    for char in text:
        index = BASE58_ALPHABET.find(char)
        if index < 0:
            raise ValueError(f"Invalid base58 character: {char!r}")
        n = n * 58 + index

    body = n.to_bytes((n.bit_length() + 7) // 8, 'big') if n else b''
    leading_zeros = len(text) - len(text.lstrip(BASE58_ALPHABET[0]))
    return b'\x00' * leading_zeros + body


def encode_multibase_key(public_key: bytes) -> str:
    """Encode an Ed25519 public key as multibase (z = base58btc) with multicodec header."""
    return 'z' + base58_encode(ED25519_MULTICODEC + public_key)


def decode_multibase_key(value: str) -> bytes:
    """Decode a multibase Ed25519 public key back to its 32 raw bytes."""
    if not value.startswith('z'):
        raise ValueError(f"Unsupported multibase encoding: {value[:1]!r}")

    data = base58_decode(value[1:])
    if not data.startswith(ED25519_MULTICODEC) or len(data) != 34:
        raise ValueError("Not an Ed25519 public key")

    return data[len(ED25519_MULTICODEC):]


def derive_did_key(public_key: bytes) -> str:
    """
    Derive a did:key identifier from an Ed25519 public key.
    DID = did:key:z<base58btc(0xed01 || public_key)>
    """
    return DID_KEY_PREFIX + encode_multibase_key(public_key)


@dataclass
class Identity:
    """Cryptographic identity for an ACK Lab agent."""

    # Ed25519 signing keys
    signing_private_key: SigningKey
    signing_public_key: VerifyKey

    # did:key by default, or a did:web published by the agent
    did: str

    created_at: datetime

    @classmethod
    def generate(cls, did: Optional[str] = None) -> "Identity":
        """Generate a new cryptographic identity."""
        signing_private = SigningKey.generate()
        return cls._from_signing_key(signing_private, did)

    @classmethod
    def from_seed_hex(cls, seed_hex: str, did: Optional[str] = None) -> "Identity":
        """Rebuild an identity from a hex-encoded 32 byte Ed25519 seed."""
        try:
            seed = bytes.fromhex(seed_hex)
        except ValueError as e:
            raise ValueError("Seed must be hex encoded") from e

        return cls._from_signing_key(SigningKey(seed), did)

    @classmethod
    def _from_signing_key(cls, signing_private: SigningKey, did: Optional[str]) -> "Identity":
        signing_public = signing_private.verify_key
        return cls(
            signing_private_key=signing_private,
            signing_public_key=signing_public,
            did=did or derive_did_key(bytes(signing_public)),
            created_at=datetime.now(timezone.utc),
        )

    @classmethod
    def load(cls, path: Path) -> "Identity":
        """Load identity from file."""
        with open(path, 'r') as f:
            data = json.load(f)

        key_b64 = data['signing_private_key']
        if key_b64.startswith('ed25519:'):
            key_b64 = key_b64[len('ed25519:'):]
        else:
            logger.warning("Key without type prefix detected, expected 'ed25519:'")

        signing_private = SigningKey(base64.b64decode(key_b64))

        return cls(
            signing_private_key=signing_private,
            signing_public_key=signing_private.verify_key,
            did=data['did'],
            created_at=datetime.fromisoformat(data['created_at']),
        )

    def save(self, path: Path) -> None:
        """Save identity to file (with restricted permissions)."""
        data = {
            'did': self.did,
            'signing_private_key': 'ed25519:' + base64.b64encode(
                bytes(self.signing_private_key)
            ).decode(),
            'signing_public_key': 'ed25519:' + base64.b64encode(
                bytes(self.signing_public_key)
            ).decode(),
            'created_at': self.created_at.isoformat(),
        }

        # Write with restrictive permissions
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            json.dump(data, f, indent=2)
        path.chmod(0o600)

    @property
    def public_key_bytes(self) -> bytes:
        return bytes(self.signing_public_key)

    @property
    def public_key_multibase(self) -> str:
        return encode_multibase_key(self.public_key_bytes)

    @property
    def key_id(self) -> str:
        """Verification method id placed in the `kid` header of signed tokens."""
        if self.did.startswith(DID_KEY_PREFIX):
            return f"{self.did}#{self.did[len(DID_KEY_PREFIX):]}"
        return f"{self.did}#signing-key"

    @property
    def jwt_signing_key(self) -> Ed25519PrivateKey:
        """The signing key in the form PyJWT expects for EdDSA."""
        return Ed25519PrivateKey.from_private_bytes(bytes(self.signing_private_key))
