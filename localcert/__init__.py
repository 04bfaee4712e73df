"""Local self-signed certificate lifecycle manager."""

from .errors import (
    ErrorKind,
    GenerationStage,
    ValidationFailure,
    LocalCertError,
    InvalidArgumentError,
    StoreUnavailableError,
    ProviderUnavailableError,
    AuthenticationError,
    UnexpectedExistingCertificateError,
    GenerationError,
    CertificateValidationError,
)
from .models import CertificateRecord, TaskKind, TaskOutcome
from .service import LocalCertService
from .config import ServiceConfig, load_config, build_service

__version__ = "0.1.0"

__all__ = [
    "ErrorKind",
    "GenerationStage",
    "ValidationFailure",
    "LocalCertError",
    "InvalidArgumentError",
    "StoreUnavailableError",
    "ProviderUnavailableError",
    "AuthenticationError",
    "UnexpectedExistingCertificateError",
    "GenerationError",
    "CertificateValidationError",
    "CertificateRecord",
    "TaskKind",
    "TaskOutcome",
    "LocalCertService",
    "ServiceConfig",
    "load_config",
    "build_service",
]
