"""Cryptographic provider: key slots, key generation, signing, randomness."""

import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional, Type

import nacl.utils
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import ObjectIdentifier, SignatureAlgorithmOID

from ..errors import ProviderUnavailableError
from .token import KeySlot, SoftwareToken


logger = logging.getLogger(__name__)


SIGNATURE_HASHES: Dict[ObjectIdentifier, Type[hashes.HashAlgorithm]] = {
    SignatureAlgorithmOID.ECDSA_WITH_SHA256: hashes.SHA256,
}


class PrivateKeyHandle:
    """
    Reference to a private key living on a token.

    The key material is never exposed; the handle only carries the key
    id and can be released or used for signing through the provider.
    """

    def __init__(self, token: SoftwareToken, key_id: str):
        self._token: Optional[SoftwareToken] = token
        self.key_id = key_id

    @property
    def token(self) -> SoftwareToken:
        if self._token is None:
            raise ProviderUnavailableError(f"Key handle {self.key_id[:16]} already released")
        return self._token

    def release(self):
        self._token = None

    def __repr__(self) -> str:
        return f"PrivateKeyHandle(key_id={self.key_id[:16]}...)"


class KeyPair:
    """Private key handle plus public key, released as a unit."""

    def __init__(self, private_key: PrivateKeyHandle, public_key: ec.EllipticCurvePublicKey):
        self.private_key = private_key
        self.public_key = public_key

    @property
    def subject_public_key_info(self) -> bytes:
        return self.public_key.public_bytes(
            serialization.Encoding.DER,
            serialization.PublicFormat.SubjectPublicKeyInfo
        )

    def discard(self):
        """Delete the key from its token (the certificate was never stored)."""
        self.private_key.token.delete_key(self.private_key.key_id)

    def release(self):
        self.private_key.release()

    def __enter__(self) -> "KeyPair":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False


class CryptoProvider(ABC):
    """Interface to the cryptographic primitives used by the generator."""

    @abstractmethod
    def acquire_key_slot(self) -> KeySlot:
        """Return a scoped handle on the key slot."""

    @abstractmethod
    def generate_key_pair(self, slot: KeySlot, curve: ec.EllipticCurve) -> KeyPair:
        """Generate a persistent, non-exportable key pair on the slot."""

    @abstractmethod
    def sign(
        self,
        private_key: PrivateKeyHandle,
        builder: x509.CertificateBuilder,
        algorithm: ObjectIdentifier
    ) -> bytes:
        """Encode and sign a certificate body, returning the signed DER."""

    @abstractmethod
    def random_bytes(self, slot: KeySlot, length: int) -> bytes:
        """Draw random bytes from the slot's generator."""


class SoftwareCryptoProvider(CryptoProvider):
    """Provider backed by a SoftwareToken and the cryptography library."""

    def __init__(self, token: SoftwareToken):
        """
        Initialize provider.

        Args:
            token: Token holding credentials and keys
        """
        self.token = token

    def acquire_key_slot(self) -> KeySlot:
        if self.token.closed:
            raise ProviderUnavailableError("Internal key slot unavailable: token closed")
        return KeySlot(self.token)

    def generate_key_pair(self, slot: KeySlot, curve: ec.EllipticCurve) -> KeyPair:
        token = slot.token
        private_key = ec.generate_private_key(curve)
        key_id = token.store_private_key(private_key)
        logger.debug(f"Generated {curve.name} key {key_id[:16]} on slot '{slot.name}'")
        return KeyPair(PrivateKeyHandle(token, key_id), private_key.public_key())

    def sign(
        self,
        private_key: PrivateKeyHandle,
        builder: x509.CertificateBuilder,
        algorithm: ObjectIdentifier
    ) -> bytes:
        hash_type = SIGNATURE_HASHES.get(algorithm)
        if hash_type is None:
            raise ValueError(f"Unsupported signature algorithm: {algorithm.dotted_string}")

        key = private_key.token.private_key(private_key.key_id)
        cert = builder.sign(key, hash_type())
        if cert.signature_algorithm_oid != algorithm:
            raise ValueError(
                f"Signed with {cert.signature_algorithm_oid.dotted_string}, "
                f"expected {algorithm.dotted_string}"
            )
        return cert.public_bytes(serialization.Encoding.DER)

    def random_bytes(self, slot: KeySlot, length: int) -> bytes:
        if slot.released:
            raise ProviderUnavailableError(f"Key slot '{slot.name}' already released")
        return nacl.utils.random(length)
