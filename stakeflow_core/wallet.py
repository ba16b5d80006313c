"""
Caller identities for StakeFlow.

A wallet wraps a secp256k1 key-pair and provides:
  - Address derivation (``sf`` + first 40 hex chars of SHA-256(pubkey))
  - Deterministic (RFC 6979) signing of request bodies
  - Signature verification for the HTTP layer

The engine itself only sees addresses; the API uses
``verify_signature`` to decide who the caller of a POST is.
"""

from __future__ import annotations

import hashlib

from ecdsa import BadSignatureError, SECP256k1, SigningKey, VerifyingKey
from ecdsa.errors import MalformedPointError

ADDRESS_PREFIX = "sf"


def derive_address(public_key: bytes) -> str:
    """Address for a 64-byte raw or 65-byte uncompressed public key."""
    return ADDRESS_PREFIX + hashlib.sha256(_raw_point(public_key)).hexdigest()[:40]


def _raw_point(public_key: bytes) -> bytes:
    if len(public_key) == 65 and public_key[0] == 4:
        return public_key[1:]
    return public_key


def verify_signature(public_key: bytes, signature: bytes, message: bytes) -> bool:
    """True when *signature* over *message* was made by *public_key*."""
    try:
        vk = VerifyingKey.from_string(_raw_point(public_key), curve=SECP256k1)
        return vk.verify(signature, message, hashfunc=hashlib.sha256)
    except (BadSignatureError, MalformedPointError, ValueError):
        return False


class Wallet:
    """secp256k1 key-pair with a derived StakeFlow address."""

    def __init__(self, private_key: bytes):
        self._sk = SigningKey.from_string(private_key, curve=SECP256k1)
        self.private_key = private_key
        self.public_key: bytes = b"\x04" + self._sk.get_verifying_key().to_string()
        self.address: str = derive_address(self.public_key)

    @classmethod
    def create(cls) -> Wallet:
        sk = SigningKey.generate(curve=SECP256k1)
        return cls(sk.to_string())

    @classmethod
    def from_seed(cls, seed: str) -> Wallet:
        """Deterministic wallet — the same seed always yields the same key."""
        digest = int.from_bytes(hashlib.sha256(seed.encode("utf-8")).digest(), "big")
        secret = digest % (SECP256k1.order - 1) + 1
        return cls(secret.to_bytes(32, "big"))

    def sign(self, message: bytes) -> bytes:
        return self._sk.sign_deterministic(message, hashfunc=hashlib.sha256)

    def sign_request(self, body: bytes) -> dict[str, str]:
        """Headers authenticating *body* as coming from this wallet."""
        return {
            "X-Public-Key": self.public_key.hex(),
            "X-Signature": self.sign(body).hex(),
        }

    def __repr__(self) -> str:
        return f"Wallet({self.address})"
