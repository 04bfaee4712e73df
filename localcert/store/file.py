"""Directory-backed certificate store."""

import json
import logging
import threading
from pathlib import Path
from typing import List, Optional

from ..crypto.token import SoftwareToken
from ..errors import StoreUnavailableError
from ..models import CertificateRecord
from .base import CertificateStore


logger = logging.getLogger(__name__)


class FileCertificateStore(CertificateStore):
    """
    Certificate store persisted under a directory.

    Layout::

        <directory>/index.json           nickname -> fingerprint entries
        <directory>/certs/<sha256>.der   certificates

    The index is re-read on every call so changes made by another
    process are observed.
    """

    def __init__(self, directory: Path, token: Optional[SoftwareToken] = None):
        """
        Initialize store.

        Args:
            directory: Store directory (created on first write)
            token: Token holding the private keys of stored certificates
        """
        super().__init__(token)
        self.directory = Path(directory)
        self._lock = threading.Lock()

    @property
    def index_path(self) -> Path:
        return self.directory / "index.json"

    def _cert_path(self, fingerprint: str) -> Path:
        return self.directory / "certs" / f"{fingerprint}.der"

    def find_all(self, nickname: str) -> List[CertificateRecord]:
        with self._lock:
            entries = [e for e in self._read_index() if e["nickname"] == nickname]
            try:
                return [
                    CertificateRecord.from_der(self._cert_path(e["fingerprint"]).read_bytes(), nickname)
                    for e in entries
                ]
            except (OSError, ValueError) as e:
                raise StoreUnavailableError(f"Cannot read certificate '{nickname}': {e}") from e

    def import_certificate(self, der: bytes, nickname: str) -> CertificateRecord:
        try:
            record = CertificateRecord.from_der(der, nickname)
        except ValueError as e:
            raise StoreUnavailableError(f"Cannot import certificate '{nickname}': {e}") from e

        with self._lock:
            index = self._read_index()
            entry = {"nickname": nickname, "fingerprint": record.fingerprint}
            if entry in index:
                return record
            try:
                path = self._cert_path(record.fingerprint)
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_bytes(record.der)
            except OSError as e:
                raise StoreUnavailableError(f"Cannot write certificate '{nickname}': {e}") from e
            index.append(entry)
            self._write_index(index)

        logger.debug(f"Stored certificate '{nickname}' at {path}")
        return record

    def _remove_entry(self, record: CertificateRecord) -> bool:
        entry = {"nickname": record.nickname, "fingerprint": record.fingerprint}
        with self._lock:
            index = self._read_index()
            if entry not in index:
                return False
            index.remove(entry)
            self._write_index(index)
            # The same DER may still be referenced under another nickname
            if not any(e["fingerprint"] == record.fingerprint for e in index):
                try:
                    self._cert_path(record.fingerprint).unlink(missing_ok=True)
                except OSError as e:
                    raise StoreUnavailableError(f"Cannot delete certificate file: {e}") from e
        return True

    def nicknames(self) -> List[str]:
        with self._lock:
            return list(dict.fromkeys(e["nickname"] for e in self._read_index()))

    def _read_index(self) -> List[dict]:
        if not self.index_path.exists():
            return []
        try:
            with open(self.index_path, "r") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StoreUnavailableError(f"Cannot read store index {self.index_path}: {e}") from e
        return data.get("certificates", [])

    def _write_index(self, index: List[dict]):
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            tmp_path = self.index_path.with_suffix(".tmp")
            with open(tmp_path, "w") as f:
                json.dump({"certificates": index}, f, indent=2)
            tmp_path.replace(self.index_path)
        except OSError as e:
            raise StoreUnavailableError(f"Cannot write store index {self.index_path}: {e}") from e
