"""Certificate store interface."""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from ..crypto.token import SoftwareToken, key_id_for
from ..models import CertificateRecord


logger = logging.getLogger(__name__)


class CertificateStore(ABC):
    """
    Trust store holding certificates by nickname.

    Stores do not enforce one certificate per nickname; that is the
    service's job. Deleting a certificate also deletes its private key
    from the associated token, if the token holds one.
    """

    def __init__(self, token: Optional[SoftwareToken] = None):
        """
        Initialize store.

        Args:
            token: Token holding the private keys of stored certificates
        """
        self.token = token

    @abstractmethod
    def find_all(self, nickname: str) -> List[CertificateRecord]:
        """All certificates stored under a nickname, oldest first."""

    @abstractmethod
    def import_certificate(self, der: bytes, nickname: str) -> CertificateRecord:
        """Store a DER certificate permanently under a nickname."""

    @abstractmethod
    def _remove_entry(self, record: CertificateRecord) -> bool:
        """Remove the certificate entry; False if it was already gone."""

    @abstractmethod
    def nicknames(self) -> List[str]:
        """Distinct nicknames present in the store."""

    def find_by_nickname(self, nickname: str) -> Optional[CertificateRecord]:
        records = self.find_all(nickname)
        return records[0] if records else None

    def delete(self, record: CertificateRecord):
        """
        Delete a certificate and its private key.

        The entry is removed before the key, so a key is never deleted
        while its certificate is still stored.
        """
        if self._remove_entry(record):
            logger.info(f"Deleted certificate '{record.nickname}' (serial {record.serial_number:x})")
        else:
            logger.debug(f"Certificate {record.fingerprint[:16]} for '{record.nickname}' already gone")

        if self.token is not None:
            key_id = key_id_for(record.certificate.public_key())
            if self.token.delete_key(key_id):
                logger.debug(f"Deleted private key for '{record.nickname}'")
