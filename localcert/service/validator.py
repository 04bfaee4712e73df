"""Acceptance checks for existing certificates."""

from datetime import datetime, timezone
from typing import Callable, Optional

from ..errors import CertificateValidationError, ValidationFailure
from ..models import CertificateRecord, EXPIRY_GRACE, subject_for_nickname


Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CertificateValidator:
    """
    Decides whether a stored certificate can be handed out as-is.

    A certificate passes when it is self-signed, its subject equals its
    issuer, the subject is ``CN=<nickname>`` and ``now`` lies within
    ``[not_before, not_after + 1 day]``.
    """

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or utc_now

    def validate(self, record: CertificateRecord, nickname: str, now: Optional[datetime] = None):
        """
        Check a record for the given nickname.

        Args:
            record: Certificate read from the store
            nickname: Nickname it was looked up under
            now: Evaluation time (defaults to the validator clock)

        Raises:
            CertificateValidationError: First failing check
        """
        if not record.is_self_signed:
            raise CertificateValidationError(
                ValidationFailure.NOT_SELF_SIGNED,
                f"Certificate '{nickname}' is not self-signed"
            )

        if record.subject_name != record.issuer_name:
            raise CertificateValidationError(
                ValidationFailure.SUBJECT_ISSUER_MISMATCH,
                f"Subject {record.subject_name!r} differs from issuer {record.issuer_name!r}"
            )

        expected = subject_for_nickname(nickname)
        if record.subject_name != expected:
            raise CertificateValidationError(
                ValidationFailure.NICKNAME_MISMATCH,
                f"Subject {record.subject_name!r} does not match {expected!r}"
            )

        if now is None:
            now = self.clock()
        if record.not_before > now or record.not_after < now - EXPIRY_GRACE:
            raise CertificateValidationError(
                ValidationFailure.OUTSIDE_VALIDITY_WINDOW,
                f"Certificate '{nickname}' valid {record.not_before.isoformat()} to "
                f"{record.not_after.isoformat()}, evaluated at {now.isoformat()}"
            )

    def is_valid(self, record: CertificateRecord, nickname: str, now: Optional[datetime] = None) -> bool:
        try:
            self.validate(record, nickname, now)
        except CertificateValidationError:
            return False
        return True
