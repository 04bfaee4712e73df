"""Certificate validation, generation and the service facade."""

from .validator import CertificateValidator, utc_now
from .generator import CertificateGenerator, CertificateRequest, KEY_CURVE_OID, SIGNATURE_ALGORITHM
from .task import CertificateTask, TASK_NAMES
from .executor import TaskExecutor
from .service import LocalCertService

__all__ = [
    "CertificateValidator",
    "utc_now",
    "CertificateGenerator",
    "CertificateRequest",
    "KEY_CURVE_OID",
    "SIGNATURE_ALGORITHM",
    "CertificateTask",
    "TASK_NAMES",
    "TaskExecutor",
    "LocalCertService",
]
