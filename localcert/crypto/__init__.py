"""Cryptographic operations for the local certificate service."""

from .token import SoftwareToken, KeySlot, key_id_for
from .provider import (
    CryptoProvider,
    SoftwareCryptoProvider,
    KeyPair,
    PrivateKeyHandle,
    SIGNATURE_HASHES,
)

__all__ = [
    "SoftwareToken",
    "KeySlot",
    "key_id_for",
    "CryptoProvider",
    "SoftwareCryptoProvider",
    "KeyPair",
    "PrivateKeyHandle",
    "SIGNATURE_HASHES",
]
