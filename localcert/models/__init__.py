"""Data models for the local certificate service."""

from .certificate import (
    CertificateRecord,
    EXPIRY_GRACE,
    ISSUE_BACKDATE,
    ISSUE_LIFETIME,
    issuance_window,
    is_self_signed,
    subject_for_nickname,
)
from .task import TaskKind, TaskState, TaskOutcome

__all__ = [
    "CertificateRecord",
    "EXPIRY_GRACE",
    "ISSUE_BACKDATE",
    "ISSUE_LIFETIME",
    "issuance_window",
    "is_self_signed",
    "subject_for_nickname",
    "TaskKind",
    "TaskState",
    "TaskOutcome",
]
