"""In-memory certificate store."""

import threading
from typing import List, Optional, Tuple

from ..crypto.token import SoftwareToken
from ..errors import StoreUnavailableError
from ..models import CertificateRecord
from .base import CertificateStore


class MemoryCertificateStore(CertificateStore):
    """Certificate store kept in process memory."""

    def __init__(self, token: Optional[SoftwareToken] = None):
        super().__init__(token)
        self._lock = threading.Lock()
        self._entries: List[Tuple[str, bytes]] = []

    def find_all(self, nickname: str) -> List[CertificateRecord]:
        with self._lock:
            entries = [der for name, der in self._entries if name == nickname]
        return [CertificateRecord.from_der(der, nickname) for der in entries]

    def import_certificate(self, der: bytes, nickname: str) -> CertificateRecord:
        try:
            record = CertificateRecord.from_der(der, nickname)
        except ValueError as e:
            raise StoreUnavailableError(f"Cannot import certificate '{nickname}': {e}") from e

        with self._lock:
            if (nickname, record.der) not in self._entries:
                self._entries.append((nickname, record.der))
        return record

    def _remove_entry(self, record: CertificateRecord) -> bool:
        with self._lock:
            for index, (name, der) in enumerate(self._entries):
                if name == record.nickname and der == record.der:
                    del self._entries[index]
                    return True
        return False

    def nicknames(self) -> List[str]:
        with self._lock:
            return list(dict.fromkeys(name for name, _ in self._entries))
