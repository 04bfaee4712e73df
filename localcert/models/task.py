"""Task kinds, states and outcomes."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..errors import LocalCertError
from .certificate import CertificateRecord


class TaskKind(str, Enum):
    """Unit of work performed by a certificate task."""
    GET_OR_CREATE = "get_or_create"
    REMOVE = "remove"


class TaskState(str, Enum):
    """Certificate task lifecycle."""
    CREATED = "created"
    AUTHENTICATING = "authenticating"
    RUNNING = "running"
    COMPLETED = "completed"


@dataclass(frozen=True)
class TaskOutcome:
    """
    Terminal result of a certificate task.

    Carries either a record (successful get-or-create), nothing
    (successful removal) or an error, never a record and an error.
    """
    kind: TaskKind
    nickname: str
    record: Optional[CertificateRecord] = None
    error: Optional[LocalCertError] = None

    def __post_init__(self):
        if self.record is not None and self.error is not None:
            raise ValueError("Outcome cannot carry both a record and an error")

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> Optional[CertificateRecord]:
        """Return the record, raising the error if the task failed."""
        if self.error is not None:
            raise self.error
        return self.record

    @classmethod
    def success(cls, kind: TaskKind, nickname: str, record: Optional[CertificateRecord] = None) -> "TaskOutcome":
        return cls(kind=kind, nickname=nickname, record=record)

    @classmethod
    def failure(cls, kind: TaskKind, nickname: str, error: LocalCertError) -> "TaskOutcome":
        return cls(kind=kind, nickname=nickname, error=error)
