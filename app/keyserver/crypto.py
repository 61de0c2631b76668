"""Key derivation seams.

The identity-based key extraction and the ElGamal encryption of the
extracted key are provided by a backend bound at deployment time. This
module defines that interface, the full-id derivation every component
must agree on, and the loader that resolves a configured backend.
"""

import importlib
from typing import Protocol, runtime_checkable

PADDED_ADDRESS_LENGTH = 32


def pad_address(address: bytes) -> bytes:
    """Left-pad a 20-byte address to 32 bytes (12 zero bytes + address)."""
    if len(address) > PADDED_ADDRESS_LENGTH:
        raise ValueError(f"address longer than {PADDED_ADDRESS_LENGTH} bytes")
    return address.rjust(PADDED_ADDRESS_LENGTH, b"\x00")


def create_full_id(package_id: bytes, inner_id: bytes) -> bytes:
    """Canonical full key id: 32-byte package id followed by the inner id."""
    if len(package_id) != PADDED_ADDRESS_LENGTH:
        raise ValueError(f"package id must be {PADDED_ADDRESS_LENGTH} bytes")
    return package_id + inner_id


@runtime_checkable
class KeyCryptoBackend(Protocol):
    """IBE extraction and ElGamal encryption primitives."""

    def extract(self, master_key: bytes, key_id: bytes) -> bytes:
        """Deterministically derive the IBE private key for key_id."""
        ...

    def encrypt(self, derived_key: bytes, enc_key: bytes) -> bytes:
        """Encrypt derived_key to enc_key with fresh randomness."""
        ...


def load_crypto_backend(path: str) -> KeyCryptoBackend:
    """Resolve a backend from "package.module:attribute".

    A class attribute is instantiated with no arguments; any other
    attribute is used as-is.

    Raises:
        ValueError: Path is empty or malformed, or the target lacks
            extract/encrypt.
        ImportError: Module cannot be imported.
    """
    if not path or ":" not in path:
        raise ValueError(f"Crypto backend must be 'module:attribute', got {path!r}")
    module_name, attr = path.split(":", 1)
    target = getattr(importlib.import_module(module_name), attr)
    backend = target() if isinstance(target, type) else target
    if not isinstance(backend, KeyCryptoBackend):
        raise ValueError(f"{path} does not provide extract() and encrypt()")
    return backend
