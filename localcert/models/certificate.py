"""Certificate record model and validity policy."""

import hashlib
from datetime import datetime, timedelta
from typing import Tuple

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from pydantic import BaseModel, Field


# New certificates are backdated to absorb clock skew between issuance and later checks.
ISSUE_BACKDATE = timedelta(days=1)
ISSUE_LIFETIME = timedelta(days=365)
# An existing certificate stays acceptable until this long after notAfter.
EXPIRY_GRACE = timedelta(days=1)

COMMON_NAME_PREFIX = "CN="


def subject_for_nickname(nickname: str) -> str:
    """Return the subject/issuer string expected for a nickname."""
    return COMMON_NAME_PREFIX + nickname


def issuance_window(now: datetime) -> Tuple[datetime, datetime]:
    """
    Compute the validity window for a certificate issued at ``now``.

    Returns:
        Tuple of (not_before, not_after)
    """
    return now - ISSUE_BACKDATE, now + ISSUE_LIFETIME


def is_self_signed(cert: x509.Certificate) -> bool:
    """Check that the certificate is its own issuer and its signature verifies."""
    if cert.subject != cert.issuer:
        return False
    try:
        cert.verify_directly_issued_by(cert)
    except (ValueError, TypeError, InvalidSignature):
        return False
    return True


class CertificateRecord(BaseModel):
    """
    A certificate as held by a certificate store.

    Records are snapshots; the store stays the source of truth and
    every operation reads it again instead of keeping records around.
    """
    nickname: str = Field(..., description="Store lookup key")
    subject_name: str = Field(..., description="Subject DN (RFC 4514)")
    issuer_name: str = Field(..., description="Issuer DN (RFC 4514)")
    is_self_signed: bool = Field(..., description="Issuer is subject and signature verifies")
    not_before: datetime = Field(..., description="Validity start (UTC)")
    not_after: datetime = Field(..., description="Validity end (UTC)")
    serial_number: int = Field(..., description="Certificate serial number")
    fingerprint: str = Field(..., description="SHA-256 of the DER encoding (hex)")
    der: bytes = Field(default=b"", repr=False, description="DER-encoded certificate")

    @classmethod
    def from_certificate(cls, cert: x509.Certificate, nickname: str) -> "CertificateRecord":
        """Build a record from a parsed certificate."""
        der = cert.public_bytes(serialization.Encoding.DER)
        return cls(
            nickname=nickname,
            subject_name=cert.subject.rfc4514_string(),
            issuer_name=cert.issuer.rfc4514_string(),
            is_self_signed=is_self_signed(cert),
            not_before=cert.not_valid_before_utc,
            not_after=cert.not_valid_after_utc,
            serial_number=cert.serial_number,
            fingerprint=hashlib.sha256(der).hexdigest(),
            der=der,
        )

    @classmethod
    def from_der(cls, der: bytes, nickname: str) -> "CertificateRecord":
        """Build a record from DER bytes."""
        return cls.from_certificate(x509.load_der_x509_certificate(der), nickname)

    @property
    def certificate(self) -> x509.Certificate:
        """Parsed certificate."""
        return x509.load_der_x509_certificate(self.der)

    @property
    def pem(self) -> str:
        """PEM encoding of the certificate."""
        return self.certificate.public_bytes(serialization.Encoding.PEM).decode("ascii")

    def to_summary(self) -> dict:
        """JSON-friendly summary without the encoded certificate."""
        return self.model_dump(exclude={"der"}, mode="json")
