"""Self-signed certificate generation and cleanup."""

import logging
from dataclasses import dataclass
from typing import Optional

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID, SignatureAlgorithmOID

from ..audit import AuditLogger
from ..crypto import CryptoProvider, KeyPair, KeySlot
from ..errors import (
    GenerationError,
    GenerationStage,
    LocalCertError,
    ProviderUnavailableError,
    UnexpectedExistingCertificateError,
)
from ..models import CertificateRecord, issuance_window, subject_for_nickname
from ..store import CertificateStore
from .validator import Clock, utc_now


logger = logging.getLogger(__name__)


# Well-known NIST P-256
KEY_CURVE_OID = ec.EllipticCurveOID.SECP256R1
SIGNATURE_ALGORITHM = SignatureAlgorithmOID.ECDSA_WITH_SHA256
# 20 octets shifted right once: positive and within the 20-octet DER limit
SERIAL_BYTES = 20


@dataclass(frozen=True)
class CertificateRequest:
    """Unsigned request: subject plus public key."""
    subject: x509.Name
    public_key: ec.EllipticCurvePublicKey


class CertificateGenerator:
    """
    Creates the single self-signed certificate for a nickname.

    Generation purges earlier certificates this service created under
    the nickname, makes a P-256 key on the provider's key slot, signs a
    certificate valid from one day ago to 365 days ahead, imports it and
    returns the record read back from the store.
    """

    def __init__(
        self,
        store: CertificateStore,
        provider: CryptoProvider,
        clock: Optional[Clock] = None,
        audit: Optional[AuditLogger] = None
    ):
        """
        Initialize generator.

        Args:
            store: Certificate store to purge, import into and read back from
            provider: Cryptographic provider
            clock: Time source for validity windows
            audit: Optional audit logger
        """
        self.store = store
        self.provider = provider
        self.clock = clock or utc_now
        self.audit = audit

    def generate(self, nickname: str) -> CertificateRecord:
        """
        Generate, store and return a fresh certificate.

        Raises:
            ProviderUnavailableError: Key slot not available
            UnexpectedExistingCertificateError: Foreign certificate under nickname
            GenerationError: Any later step failed (see ``stage``)
        """
        try:
            slot = self.provider.acquire_key_slot()
        except ProviderUnavailableError:
            raise
        except Exception as e:
            raise ProviderUnavailableError(f"Cannot acquire key slot: {e}") from e

        with slot:
            self.purge_existing(nickname)

            subject = self._subject_name(nickname)
            curve = self._curve()

            try:
                key_pair = self.provider.generate_key_pair(slot, curve)
            except Exception as e:
                raise GenerationError(GenerationStage.KEY_GENERATION, str(e)) from e

            with key_pair:
                try:
                    request = self._request(subject, key_pair)
                    der = self._sign(slot, key_pair, request)
                    imported = self._import(der, nickname)
                except BaseException:
                    self._discard_key(key_pair)
                    raise

        record = self._read_back(nickname, imported)
        logger.info(
            f"Generated certificate '{nickname}' "
            f"(serial {record.serial_number:x}, valid until {record.not_after.isoformat()})"
        )
        if self.audit:
            self.audit.log_certificate_generated(record)
        return record

    def purge_existing(self, nickname: str) -> int:
        """
        Delete every certificate (and key) this service created for a nickname.

        Returns:
            Number of certificates deleted

        Raises:
            UnexpectedExistingCertificateError: A certificate under the
                nickname is not self-signed with ``CN=<nickname>``
            GenerationError: Deletion failed (stage PURGE)
        """
        expected = subject_for_nickname(nickname)
        removed = 0
        last_deleted: Optional[str] = None

        while True:
            record = self.store.find_by_nickname(nickname)
            if record is None:
                if removed:
                    logger.info(f"Purged {removed} certificate(s) for '{nickname}'")
                return removed

            if (not record.is_self_signed
                    or record.subject_name != expected
                    or record.issuer_name != expected):
                logger.error(
                    f"Certificate under '{nickname}' was not created by this service "
                    f"(subject={record.subject_name!r}, issuer={record.issuer_name!r})"
                )
                if self.audit:
                    self.audit.log_foreign_certificate(nickname, record.subject_name, record.issuer_name)
                raise UnexpectedExistingCertificateError(
                    nickname, record.subject_name, record.issuer_name, record.is_self_signed
                )

            if record.fingerprint == last_deleted:
                raise GenerationError(
                    GenerationStage.PURGE,
                    f"Certificate {record.fingerprint[:16]} still present after deletion"
                )

            try:
                self.store.delete(record)
            except (LocalCertError, OSError) as e:
                raise GenerationError(GenerationStage.PURGE, f"Cannot delete '{nickname}': {e}") from e

            if self.audit:
                self.audit.log_certificate_removed(nickname, record)
            last_deleted = record.fingerprint
            removed += 1

    def _subject_name(self, nickname: str) -> x509.Name:
        """Parse ``CN=<nickname>``; it must round-trip to a single common name."""
        subject_str = subject_for_nickname(nickname)
        try:
            name = x509.Name.from_rfc4514_string(subject_str)
        except ValueError as e:
            raise GenerationError(GenerationStage.SUBJECT_NAME, f"{subject_str!r}: {e}") from e

        attributes = list(name)
        if (len(attributes) != 1
                or attributes[0].oid != NameOID.COMMON_NAME
                or name.rfc4514_string() != subject_str):
            raise GenerationError(
                GenerationStage.SUBJECT_NAME,
                f"{subject_str!r} is not a single common name"
            )
        return name

    def _curve(self) -> ec.EllipticCurve:
        try:
            return ec.get_curve_for_oid(KEY_CURVE_OID)()
        except LookupError as e:
            raise GenerationError(GenerationStage.CURVE, f"Curve {KEY_CURVE_OID.dotted_string} unavailable") from e

    def _request(self, subject: x509.Name, key_pair: KeyPair) -> CertificateRequest:
        try:
            public_key = serialization.load_der_public_key(key_pair.subject_public_key_info)
        except (ValueError, TypeError) as e:
            raise GenerationError(GenerationStage.REQUEST, f"Invalid public key: {e}") from e
        return CertificateRequest(subject=subject, public_key=public_key)

    def _serial_number(self, slot: KeySlot) -> int:
        # Collisions are possible in principle and accepted
        try:
            raw = self.provider.random_bytes(slot, SERIAL_BYTES)
        except Exception as e:
            raise GenerationError(GenerationStage.SERIAL_NUMBER, str(e)) from e
        return int.from_bytes(raw, "big") >> 1

    def _sign(self, slot: KeySlot, key_pair: KeyPair, request: CertificateRequest) -> bytes:
        not_before, not_after = issuance_window(self.clock())
        serial = self._serial_number(slot)

        try:
            builder = (
                x509.CertificateBuilder()
                .subject_name(request.subject)
                .issuer_name(request.subject)
                .public_key(request.public_key)
                .serial_number(serial)
                .not_valid_before(not_before)
                .not_valid_after(not_after)
            )
            return self.provider.sign(key_pair.private_key, builder, SIGNATURE_ALGORITHM)
        except Exception as e:
            raise GenerationError(GenerationStage.SIGNING, str(e)) from e

    def _import(self, der: bytes, nickname: str) -> CertificateRecord:
        try:
            cert = x509.load_der_x509_certificate(der)
            return self.store.import_certificate(
                cert.public_bytes(serialization.Encoding.DER), nickname
            )
        except Exception as e:
            raise GenerationError(GenerationStage.STORE_IMPORT, str(e)) from e

    def _read_back(self, nickname: str, imported: CertificateRecord) -> CertificateRecord:
        try:
            record = self.store.find_by_nickname(nickname)
        except Exception as e:
            raise GenerationError(GenerationStage.POST_GENERATION_READ, str(e)) from e

        if record is None:
            raise GenerationError(
                GenerationStage.POST_GENERATION_READ,
                f"Certificate '{nickname}' not found after import"
            )
        if record.fingerprint != imported.fingerprint:
            raise GenerationError(
                GenerationStage.POST_GENERATION_READ,
                f"Store returned a different certificate for '{nickname}' after import"
            )
        return record

    def _discard_key(self, key_pair: KeyPair):
        try:
            key_pair.discard()
        except Exception as e:
            logger.error(f"Failed to discard key {key_pair.private_key.key_id[:16]}: {e}")
