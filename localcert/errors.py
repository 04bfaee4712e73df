"""Exception hierarchy for the local certificate service."""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Error categories delivered to callers."""
    INVALID_ARGUMENT = "invalid_argument"
    STORE_UNAVAILABLE = "store_unavailable"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    UNEXPECTED_EXISTING_CERTIFICATE = "unexpected_existing_certificate"
    GENERATION_FAILED = "generation_failed"
    VALIDATION_FAILED = "validation_failed"
    AUTHENTICATION_FAILED = "authentication_failed"
    INTERNAL = "internal"


class GenerationStage(str, Enum):
    """Generator step that failed."""
    PURGE = "purge"
    SUBJECT_NAME = "subject_name"
    CURVE = "curve"
    KEY_GENERATION = "key_generation"
    REQUEST = "request"
    SERIAL_NUMBER = "serial_number"
    SIGNING = "signing"
    STORE_IMPORT = "store_import"
    POST_GENERATION_READ = "post_generation_read"


class ValidationFailure(str, Enum):
    """Reason an existing certificate was not accepted."""
    NOT_SELF_SIGNED = "not_self_signed"
    SUBJECT_ISSUER_MISMATCH = "subject_issuer_mismatch"
    NICKNAME_MISMATCH = "nickname_mismatch"
    OUTSIDE_VALIDITY_WINDOW = "outside_validity_window"


class LocalCertError(Exception):
    """Base class for all service errors."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str, kind: Optional[ErrorKind] = None):
        super().__init__(message)
        if kind is not None:
            self.kind = kind


class InvalidArgumentError(LocalCertError):
    """Empty nickname or missing callback."""
    kind = ErrorKind.INVALID_ARGUMENT


class StoreUnavailableError(LocalCertError):
    """Certificate store could not be read or written."""
    kind = ErrorKind.STORE_UNAVAILABLE


class ProviderUnavailableError(LocalCertError):
    """Cryptographic provider or its key slot is not reachable."""
    kind = ErrorKind.PROVIDER_UNAVAILABLE


class AuthenticationError(LocalCertError):
    """Store unlock failed or was declined."""
    kind = ErrorKind.AUTHENTICATION_FAILED


class UnexpectedExistingCertificateError(LocalCertError):
    """
    A certificate under the nickname was not created by this service.

    Raised instead of deleting or overwriting it.
    """
    kind = ErrorKind.UNEXPECTED_EXISTING_CERTIFICATE

    def __init__(self, nickname: str, subject_name: str, issuer_name: str, self_signed: bool):
        super().__init__(
            f"Refusing to replace certificate '{nickname}' "
            f"(subject={subject_name!r}, issuer={issuer_name!r}, self_signed={self_signed})"
        )
        self.nickname = nickname
        self.subject_name = subject_name
        self.issuer_name = issuer_name
        self.self_signed = self_signed


class GenerationError(LocalCertError):
    """A generator step failed."""
    kind = ErrorKind.GENERATION_FAILED

    def __init__(self, stage: GenerationStage, message: str):
        super().__init__(f"{stage.value}: {message}")
        self.stage = stage


class CertificateValidationError(LocalCertError):
    """Existing certificate rejected; only used internally."""
    kind = ErrorKind.VALIDATION_FAILED

    def __init__(self, reason: ValidationFailure, message: str):
        super().__init__(message)
        self.reason = reason
