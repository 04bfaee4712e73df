"""Certificate lifecycle audit logging with tamper-evident chaining."""

import hashlib
import json
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from ..models import CertificateRecord


logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Audit event types."""
    # Certificate events
    CERTIFICATE_GENERATED = "certificate_generated"
    CERTIFICATE_REUSED = "certificate_reused"
    CERTIFICATE_REJECTED = "certificate_rejected"
    CERTIFICATE_REMOVED = "certificate_removed"
    FOREIGN_CERTIFICATE_REFUSED = "foreign_certificate_refused"
    OPERATION_FAILED = "operation_failed"

    # Store events
    STORE_UNLOCKED = "store_unlocked"
    STORE_UNLOCK_FAILED = "store_unlock_failed"


@dataclass
class AuditEvent:
    """
    Tamper-evident audit event.

    Includes chain hash to detect tampering.
    """
    event_id: str
    event_type: EventType
    timestamp: datetime
    service_id: str
    target: Optional[str]  # Nickname affected
    action: str
    result: str  # success, failure, refused
    details: Dict[str, Any] = field(default_factory=dict)
    previous_hash: Optional[str] = None
    event_hash: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dictionary (without the event's own hash)."""
        return {
            "event_id": self.event_id,
            "event_type": self.event_type.value,
            "timestamp": self.timestamp.isoformat(),
            "service_id": self.service_id,
            "target": self.target,
            "action": self.action,
            "result": self.result,
            "details": self.details,
            "previous_hash": self.previous_hash,
        }

    def compute_hash(self) -> str:
        """Compute event hash for chaining."""
        return _hash_event_dict(self.to_dict())


def _hash_event_dict(data: dict) -> str:
    canonical = json.dumps(data, sort_keys=True)
    return hashlib.sha256(canonical.encode()).hexdigest()


class AuditLogger:
    """
    Audit logger for certificate lifecycle events.

    Each event includes hash of previous event, creating a chain
    that makes tampering detectable. Safe to call from worker threads.
    """

    def __init__(
        self,
        service_id: str = "localcert",
        log_file: Optional[Path] = None,
        enable_chaining: bool = True
    ):
        """
        Initialize audit logger.

        Args:
            service_id: Identifier recorded on every event
            log_file: Path to JSON-lines audit log (optional)
            enable_chaining: Enable hash chaining for tamper detection
        """
        self.service_id = service_id
        self.log_file = Path(log_file) if log_file else None
        self.enable_chaining = enable_chaining

        self._lock = threading.Lock()
        self._last_hash: Optional[str] = None
        self._event_count = 0

        if self.log_file:
            self.log_file.parent.mkdir(parents=True, exist_ok=True)
            self._last_hash = self._read_last_hash()

    def log_event(
        self,
        event_type: EventType,
        action: str,
        result: str,
        target: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ) -> AuditEvent:
        """
        Log an audit event.

        Args:
            event_type: Type of event
            action: Action description
            result: Result (success, failure, refused)
            target: Nickname affected
            details: Additional details

        Returns:
            Created audit event
        """
        with self._lock:
            event = AuditEvent(
                event_id=str(uuid.uuid4()),
                event_type=event_type,
                timestamp=datetime.now(timezone.utc),
                service_id=self.service_id,
                target=target,
                action=action,
                result=result,
                details=details or {},
                previous_hash=self._last_hash if self.enable_chaining else None
            )

            if self.enable_chaining:
                event.event_hash = event.compute_hash()
                self._last_hash = event.event_hash

            self._event_count += 1
            self._write_event(event)

        logger.info(
            f"AUDIT: {event.event_type.value} | {event.action} | {event.result} | "
            f"target={event.target}"
        )
        return event

    def _write_event(self, event: AuditEvent):
        """Append event to the audit log file."""
        if not self.log_file:
            return

        data = event.to_dict()
        data["event_hash"] = event.event_hash
        try:
            with open(self.log_file, "a") as f:
                json.dump(data, f)
                f.write("\n")
        except OSError as e:
            logger.error(f"Failed to write audit event: {e}")

    def _read_last_hash(self) -> Optional[str]:
        """Continue an existing chain across restarts."""
        if not self.log_file.exists():
            return None
        last_line = None
        with open(self.log_file, "r") as f:
            for line in f:
                if line.strip():
                    last_line = line
        if last_line is None:
            return None
        return json.loads(last_line).get("event_hash")

    # Convenience methods for lifecycle events

    def log_certificate_generated(self, record: CertificateRecord):
        return self.log_event(
            EventType.CERTIFICATE_GENERATED,
            action=f"Generated self-signed certificate {record.subject_name}",
            result="success",
            target=record.nickname,
            details={
                "serial": f"{record.serial_number:x}",
                "fingerprint": record.fingerprint,
                "not_after": record.not_after.isoformat(),
            }
        )

    def log_certificate_reused(self, record: CertificateRecord):
        return self.log_event(
            EventType.CERTIFICATE_REUSED,
            action="Existing certificate accepted",
            result="success",
            target=record.nickname,
            details={"fingerprint": record.fingerprint}
        )

    def log_certificate_rejected(self, nickname: str, reason: str):
        return self.log_event(
            EventType.CERTIFICATE_REJECTED,
            action="Existing certificate rejected, regenerating",
            result="rejected",
            target=nickname,
            details={"reason": reason}
        )

    def log_certificate_removed(self, nickname: str, record: CertificateRecord):
        return self.log_event(
            EventType.CERTIFICATE_REMOVED,
            action="Removed certificate and key",
            result="success",
            target=nickname,
            details={"serial": f"{record.serial_number:x}", "fingerprint": record.fingerprint}
        )

    def log_foreign_certificate(self, nickname: str, subject_name: str, issuer_name: str):
        return self.log_event(
            EventType.FOREIGN_CERTIFICATE_REFUSED,
            action="Refused to replace certificate not created by this service",
            result="refused",
            target=nickname,
            details={"subject": subject_name, "issuer": issuer_name}
        )

    def log_operation_failed(self, nickname: str, operation: str, error: str):
        return self.log_event(
            EventType.OPERATION_FAILED,
            action=f"{operation} failed",
            result="failure",
            target=nickname,
            details={"error": error}
        )

    def log_unlock(self, success: bool, reason: Optional[str] = None):
        return self.log_event(
            EventType.STORE_UNLOCKED if success else EventType.STORE_UNLOCK_FAILED,
            action="Key slot unlock",
            result="success" if success else "failure",
            details={"reason": reason} if reason else {}
        )

    def verify_chain(self) -> bool:
        """
        Verify audit log chain integrity.

        Returns:
            True if chain is intact, False if tampered
        """
        if not self.log_file or not self.enable_chaining or not self.log_file.exists():
            return True

        try:
            with open(self.log_file, "r") as f:
                events = [json.loads(line) for line in f if line.strip()]
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Error reading audit chain: {e}")
            return False

        previous_hash = None
        for i, event_data in enumerate(events):
            if event_data.get("previous_hash") != previous_hash:
                logger.error(f"Chain break at event {i}")
                return False

            event_data = dict(event_data)
            event_hash = event_data.pop("event_hash", None)
            if _hash_event_dict(event_data) != event_hash:
                logger.error(f"Hash mismatch at event {i}")
                return False

            previous_hash = event_hash

        return True

    def get_event_count(self) -> int:
        """Get event count for this logger instance."""
        return self._event_count

    def get_last_hash(self) -> Optional[str]:
        """Get hash of last event."""
        return self._last_hash
