"""Tests for data models."""

import pytest
from datetime import timedelta

from localcert.errors import GenerationError, GenerationStage
from localcert.models import (
    CertificateRecord,
    TaskKind,
    TaskOutcome,
    issuance_window,
    subject_for_nickname,
)

from .helpers import T0, build_certificate


def test_record_from_self_signed_certificate():
    """Test record fields derived from a certificate."""
    der, _ = build_certificate("alice", serial=77)
    record = CertificateRecord.from_der(der, "alice")

    assert record.subject_name == "CN=alice"
    assert record.issuer_name == "CN=alice"
    assert record.is_self_signed
    assert record.serial_number == 77
    assert record.not_before == T0 - timedelta(days=1)
    assert record.der == der
    assert "BEGIN CERTIFICATE" in record.pem


def test_record_detects_foreign_issuer():
    """Test a certificate with a different issuer is not self-signed."""
    from cryptography.hazmat.primitives.asymmetric import ec

    ca_key = ec.generate_private_key(ec.SECP256R1())
    der, _ = build_certificate("alice", issuer_cn="Issuing CA", issuer_key=ca_key)

    assert not CertificateRecord.from_der(der, "alice").is_self_signed


def test_record_detects_bad_self_signature():
    """Test matching names with a signature from another key is not self-signed."""
    from cryptography.hazmat.primitives.asymmetric import ec

    other_key = ec.generate_private_key(ec.SECP256R1())
    der, _ = build_certificate("alice", issuer_key=other_key)

    assert not CertificateRecord.from_der(der, "alice").is_self_signed


def test_summary_excludes_der():
    """Test the JSON summary leaves out the encoded certificate."""
    der, _ = build_certificate("alice")
    summary = CertificateRecord.from_der(der, "alice").to_summary()

    assert "der" not in summary
    assert summary["subject_name"] == "CN=alice"


def test_issuance_window():
    """Test new certificates are backdated a day and last a year."""
    not_before, not_after = issuance_window(T0)

    assert not_before == T0 - timedelta(days=1)
    assert not_after == T0 + timedelta(days=365)
    assert subject_for_nickname("alice") == "CN=alice"


def test_outcome_success_and_failure():
    """Test outcome helpers."""
    removed = TaskOutcome.success(TaskKind.REMOVE, "alice")
    assert removed.ok
    assert removed.unwrap() is None

    error = GenerationError(GenerationStage.SIGNING, "device error")
    failed = TaskOutcome.failure(TaskKind.GET_OR_CREATE, "alice", error)
    assert not failed.ok
    with pytest.raises(GenerationError):
        failed.unwrap()


def test_outcome_cannot_carry_record_and_error():
    """Test an outcome is either a success or a failure."""
    der, _ = build_certificate("alice")
    record = CertificateRecord.from_der(der, "alice")

    with pytest.raises(ValueError):
        TaskOutcome(
            kind=TaskKind.GET_OR_CREATE,
            nickname="alice",
            record=record,
            error=GenerationError(GenerationStage.SIGNING, "x")
        )
