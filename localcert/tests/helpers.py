"""Shared test helpers."""

import threading
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from localcert.models import TaskOutcome


T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta):
        self.now = self.now + delta


class OutcomeRecorder:
    """Callback that records every outcome and the thread it arrived on."""

    def __init__(self):
        self.outcomes: List[TaskOutcome] = []
        self.threads: List[str] = []

    def __call__(self, outcome: TaskOutcome):
        self.outcomes.append(outcome)
        self.threads.append(threading.current_thread().name)

    @property
    def single(self) -> TaskOutcome:
        assert len(self.outcomes) == 1, f"expected one outcome, got {len(self.outcomes)}"
        return self.outcomes[0]


def run_request(method, nickname: str) -> TaskOutcome:
    """Call a service operation and wait for its single outcome."""
    recorder = OutcomeRecorder()
    future = method(nickname, recorder)
    if future is not None:
        future.result(timeout=30)
    return recorder.single


def _name(common_name: str) -> x509.Name:
    return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])


def build_certificate(
    subject_cn: str,
    issuer_cn: Optional[str] = None,
    not_before: datetime = T0 - timedelta(days=1),
    not_after: datetime = T0 + timedelta(days=365),
    issuer_key: Optional[ec.EllipticCurvePrivateKey] = None,
    serial: int = 1000
) -> Tuple[bytes, ec.EllipticCurvePrivateKey]:
    """
    Build a DER certificate outside the service.

    Self-signed unless ``issuer_key`` is given.
    """
    key = ec.generate_private_key(ec.SECP256R1())
    cert = (
        x509.CertificateBuilder()
        .subject_name(_name(subject_cn))
        .issuer_name(_name(issuer_cn or subject_cn))
        .public_key(key.public_key())
        .serial_number(serial)
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .sign(issuer_key or key, hashes.SHA256())
    )
    return cert.public_bytes(serialization.Encoding.DER), key
