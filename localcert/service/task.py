"""Certificate tasks: get-or-create and remove as single units of work."""

import logging
import threading
from typing import Callable, Optional

from ..audit import AuditLogger
from ..errors import CertificateValidationError, ErrorKind, LocalCertError
from ..models import CertificateRecord, TaskKind, TaskOutcome, TaskState
from ..store import CertificateStore
from .generator import CertificateGenerator
from .validator import CertificateValidator


logger = logging.getLogger(__name__)


OutcomeCallback = Callable[[TaskOutcome], None]

TASK_NAMES = {
    TaskKind.GET_OR_CREATE: "LocalCertGet",
    TaskKind.REMOVE: "LocalCertRm",
}


class CertificateTask:
    """
    One get-or-create or remove request for a nickname.

    ``calculate()`` does the work and never raises; ``complete()``
    hands the outcome to the callback and may only happen once.
    """

    def __init__(
        self,
        kind: TaskKind,
        nickname: str,
        callback: OutcomeCallback,
        store: CertificateStore,
        generator: CertificateGenerator,
        validator: CertificateValidator,
        audit: Optional[AuditLogger] = None
    ):
        self.kind = kind
        self.nickname = nickname
        self.callback = callback
        self.store = store
        self.generator = generator
        self.validator = validator
        self.audit = audit

        self.state = TaskState.CREATED
        self._lock = threading.Lock()
        self._delivered = False

    @property
    def name(self) -> str:
        return TASK_NAMES[self.kind]

    @property
    def delivered(self) -> bool:
        return self._delivered

    def calculate(self) -> TaskOutcome:
        """Run the task body and wrap its result."""
        self.state = TaskState.RUNNING
        try:
            if self.kind == TaskKind.GET_OR_CREATE:
                return TaskOutcome.success(self.kind, self.nickname, self._get_or_create())
            self.generator.purge_existing(self.nickname)
            return TaskOutcome.success(self.kind, self.nickname)

        except LocalCertError as e:
            logger.error(f"{self.name} for '{self.nickname}' failed: {e}")
            if self.audit:
                self.audit.log_operation_failed(self.nickname, self.kind.value, str(e))
            return TaskOutcome.failure(self.kind, self.nickname, e)

        except Exception as e:
            logger.exception(f"Unexpected error in {self.name} for '{self.nickname}'")
            error = LocalCertError(f"Unexpected error: {e}", kind=ErrorKind.INTERNAL)
            error.__cause__ = e
            return TaskOutcome.failure(self.kind, self.nickname, error)

    def _get_or_create(self) -> CertificateRecord:
        record = self.store.find_by_nickname(self.nickname)

        if record is None:
            logger.info(f"No certificate for '{self.nickname}', generating one")
        else:
            try:
                self.validator.validate(record, self.nickname)
                logger.debug(f"Reusing certificate '{self.nickname}' (serial {record.serial_number:x})")
                if self.audit:
                    self.audit.log_certificate_reused(record)
                return record
            except CertificateValidationError as e:
                logger.warning(f"Certificate '{self.nickname}' rejected ({e.reason.value}): {e}")
                if self.audit:
                    self.audit.log_certificate_rejected(self.nickname, e.reason.value)

        return self.generator.generate(self.nickname)

    def complete(self, outcome: TaskOutcome):
        """
        Deliver the outcome to the callback.

        Raises:
            RuntimeError: The outcome was already delivered
        """
        with self._lock:
            if self._delivered:
                raise RuntimeError(f"{self.name} for '{self.nickname}' already delivered its outcome")
            self._delivered = True
            self.state = TaskState.COMPLETED

        try:
            self.callback(outcome)
        except Exception as e:
            logger.error(f"Error in {self.name} callback for '{self.nickname}': {e}")

    def fail(self, error: LocalCertError):
        """Deliver a failure without running the task."""
        self.complete(TaskOutcome.failure(self.kind, self.nickname, error))
