"""Solana signer capability for x402 payments."""

import json
from abc import ABC, abstractmethod
from typing import Optional

import base58
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature

from .errors import ConfigurationError


class Signer(ABC):
    """A key pair exposed as an address plus the ability to sign bytes."""

    @property
    @abstractmethod
    def pubkey(self) -> Pubkey:
        """Public key of the signer."""

    @property
    def address(self) -> str:
        """Base58-encoded address."""
        return str(self.pubkey)

    @abstractmethod
    def sign(self, message: bytes) -> Signature:
        """Produce an Ed25519 signature over message."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.address})"


class KeypairSigner(Signer):
    """Signer backed by an in-process solders Keypair."""

    def __init__(self, keypair: Keypair):
        self._keypair = keypair

    @property
    def pubkey(self) -> Pubkey:
        return self._keypair.pubkey()

    def sign(self, message: bytes) -> Signature:
        return self._keypair.sign_message(message)

    @classmethod
    def generate(cls) -> "KeypairSigner":
        return cls(Keypair())


def load_signer(key_material: str) -> Optional[Signer]:
    """
    Build a signer from configured key material.

    Args:
        key_material: JSON byte array (Solana CLI keypair file contents)
            or a base58-encoded 64-byte secret key

    Returns:
        KeypairSigner, or None when no key material is configured

    Raises:
        ConfigurationError: If the key material cannot be parsed
    """
    key_material = key_material.strip()
    if not key_material:
        return None

    try:
        if key_material.startswith("["):
            secret_bytes = bytes(json.loads(key_material))
        else:
            secret_bytes = base58.b58decode(key_material)
        return KeypairSigner(Keypair.from_bytes(secret_bytes))
    except Exception as e:
        raise ConfigurationError(f"Invalid signer key material: {type(e).__name__}")


def verify_signature(address: str, message: bytes, signature: str) -> bool:
    """Check a base58 Ed25519 signature by address over message. Never raises."""
    try:
        pubkey = Pubkey.from_string(address)
        parsed = Signature.from_string(signature)
    except ValueError:
        return False
    return parsed.verify(pubkey, message)
