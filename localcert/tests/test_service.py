"""Tests for the local certificate service facade."""

import asyncio
import threading
import pytest
from datetime import timedelta

from localcert.audit import AuditLogger
from localcert.crypto import SoftwareCryptoProvider, SoftwareToken, key_id_for
from localcert.errors import (
    AuthenticationError,
    ErrorKind,
    GenerationError,
    GenerationStage,
    InvalidArgumentError,
    StoreUnavailableError,
    UnexpectedExistingCertificateError,
)
from localcert.models import TaskKind, TaskOutcome, TaskState
from localcert.service import CertificateTask, CertificateValidator, LocalCertService, TaskExecutor
from localcert.store import MemoryCertificateStore, TokenAuthenticator

from .helpers import OutcomeRecorder, T0, build_certificate, run_request


def get(service, nickname):
    return run_request(service.get_or_create_certificate, nickname)


def remove(service, nickname):
    return run_request(service.remove_certificate, nickname)


class CountingStore(MemoryCertificateStore):
    def __init__(self, token):
        super().__init__(token)
        self.calls = 0

    def find_all(self, nickname):
        self.calls += 1
        return super().find_all(nickname)

    def import_certificate(self, der, nickname):
        self.calls += 1
        return super().import_certificate(der, nickname)


def test_get_or_create_creates_certificate(service, store):
    """Test first request generates and stores a certificate."""
    outcome = get(service, "alice")

    assert outcome.ok
    assert outcome.kind == TaskKind.GET_OR_CREATE
    assert outcome.record.subject_name == "CN=alice"
    assert store.find_by_nickname("alice").fingerprint == outcome.record.fingerprint


def test_get_or_create_is_idempotent(service):
    """Test repeated requests return the same certificate."""
    first = get(service, "alice").unwrap()
    second = get(service, "alice").unwrap()

    assert first.fingerprint == second.fingerprint
    assert first.serial_number == second.serial_number


def test_at_most_one_certificate(service, store, clock):
    """Test any sequence of requests leaves zero or one certificate."""
    get(service, "alice")
    assert len(store.find_all("alice")) == 1

    clock.advance(timedelta(days=400))
    get(service, "alice")
    assert len(store.find_all("alice")) == 1

    remove(service, "alice")
    assert store.find_all("alice") == []

    get(service, "alice")
    get(service, "alice")
    assert len(store.find_all("alice")) == 1


def test_regenerates_expired_certificate(service, store, token, clock):
    """Test an expired certificate is replaced by a valid new one."""
    der, key = build_certificate(
        "alice",
        not_before=T0 - timedelta(days=400),
        not_after=T0 - timedelta(days=2),
        serial=42
    )
    token.store_private_key(key)
    store.import_certificate(der, "alice")

    record = get(service, "alice").unwrap()

    assert record.serial_number != 42
    assert CertificateValidator(clock).is_valid(record, "alice")
    assert [r.fingerprint for r in store.find_all("alice")] == [record.fingerprint]
    assert key_id_for(key.public_key()) not in token.key_ids()


def test_reuses_certificate_within_grace(service, store, clock):
    """Test a certificate expired less than a day ago is still handed out."""
    der, _ = build_certificate("alice", not_after=T0 - timedelta(hours=23))
    existing = store.import_certificate(der, "alice")

    assert get(service, "alice").unwrap().fingerprint == existing.fingerprint


def test_foreign_certificate_is_not_replaced(service, store):
    """Test a certificate not created by the service fails the request."""
    der, _ = build_certificate("mallory")
    store.import_certificate(der, "alice")

    outcome = get(service, "alice")

    assert not outcome.ok
    assert isinstance(outcome.error, UnexpectedExistingCertificateError)
    assert outcome.error.kind == ErrorKind.UNEXPECTED_EXISTING_CERTIFICATE
    assert store.find_by_nickname("alice").subject_name == "CN=mallory"
    with pytest.raises(UnexpectedExistingCertificateError):
        outcome.unwrap()


def test_remove_existing_certificate(service, store, token):
    """Test removal deletes certificate and key."""
    get(service, "alice")

    outcome = remove(service, "alice")

    assert outcome.ok
    assert outcome.kind == TaskKind.REMOVE
    assert outcome.record is None
    assert store.find_all("alice") == []
    assert token.key_ids() == []


def test_remove_missing_certificate_succeeds(service):
    """Test removing an unknown nickname is not an error."""
    assert remove(service, "nobody").ok


def test_remove_refuses_foreign_certificate(service, store):
    """Test removal does not delete certificates it did not create."""
    der, _ = build_certificate("alice", issuer_cn="Corporate CA")
    store.import_certificate(der, "alice")

    outcome = remove(service, "alice")

    assert isinstance(outcome.error, UnexpectedExistingCertificateError)
    assert len(store.find_all("alice")) == 1


def test_empty_nickname_rejected_synchronously():
    """Test invalid arguments raise before any store or slot access."""
    token = SoftwareToken()
    store = CountingStore(token)
    service = LocalCertService(store, SoftwareCryptoProvider(token), TokenAuthenticator())
    recorder = OutcomeRecorder()

    try:
        with pytest.raises(InvalidArgumentError):
            service.get_or_create_certificate("", recorder)
        with pytest.raises(InvalidArgumentError):
            service.remove_certificate("", recorder)
        with pytest.raises(InvalidArgumentError):
            service.get_or_create_certificate("alice", None)
    finally:
        service.close()

    assert store.calls == 0
    assert recorder.outcomes == []
    # Authentication never ran either
    assert token.needs_user_init()


def test_fresh_slot_gets_empty_credential():
    """Test is_unlock_required initializes a never-used slot."""
    token = SoftwareToken()
    service = LocalCertService(MemoryCertificateStore(token), SoftwareCryptoProvider(token), TokenAuthenticator())

    assert token.needs_user_init()
    assert service.is_unlock_required() is False
    assert not token.needs_user_init()
    assert not token.needs_login()
    service.close()


def test_unlock_required_with_password():
    """Test a password-protected, logged-out slot requires unlocking."""
    token = SoftwareToken()
    token.init_pin("s3cret")
    token.logout()
    service = LocalCertService(MemoryCertificateStore(token), SoftwareCryptoProvider(token), TokenAuthenticator())

    assert service.is_unlock_required()
    token.login("s3cret")
    assert not service.is_unlock_required()
    service.close()


def test_declined_unlock_fails_without_dispatch():
    """Test a declined unlock reaches the callback synchronously."""
    token = SoftwareToken()
    token.init_pin("s3cret")
    token.logout()
    store = CountingStore(token)
    service = LocalCertService(
        store,
        SoftwareCryptoProvider(token),
        TokenAuthenticator(prompt=lambda message: None)
    )
    recorder = OutcomeRecorder()

    future = service.get_or_create_certificate("alice", recorder)
    service.close()

    assert future is None
    assert isinstance(recorder.single.error, AuthenticationError)
    assert recorder.threads == [threading.current_thread().name]
    assert store.calls == 0


def test_prompted_unlock_then_generate():
    """Test the prompt unlocks the slot before the task runs."""
    token = SoftwareToken()
    token.init_pin("s3cret")
    token.logout()
    prompts = []

    def prompt(message):
        prompts.append(message)
        return "wrong" if len(prompts) == 1 else "s3cret"

    service = LocalCertService(
        MemoryCertificateStore(token),
        SoftwareCryptoProvider(token),
        TokenAuthenticator(prompt=prompt)
    )
    outcome = get(service, "alice")
    service.close()

    assert outcome.ok
    assert len(prompts) == 2
    assert token.is_logged_in()


def test_unlock_gives_up_after_max_attempts():
    """Test repeated wrong passwords fail authentication."""
    token = SoftwareToken()
    token.init_pin("s3cret")
    token.logout()
    service = LocalCertService(
        MemoryCertificateStore(token),
        SoftwareCryptoProvider(token),
        TokenAuthenticator(prompt=lambda message: "wrong", max_attempts=2)
    )

    outcome = remove(service, "alice")
    service.close()

    assert outcome.error.kind == ErrorKind.AUTHENTICATION_FAILED


def test_callback_runs_on_calling_event_loop(service):
    """Test results are delivered on the loop that issued the request."""
    recorder = OutcomeRecorder()

    async def main():
        future = service.get_or_create_certificate("alice", recorder)
        await asyncio.wrap_future(future)
        await asyncio.sleep(0)
        return threading.current_thread().name

    loop_thread = asyncio.run(main())

    assert recorder.single.ok
    assert recorder.threads == [loop_thread]


def test_async_wrappers(service, store):
    """Test awaitable get-or-create and removal."""
    async def main():
        first = await service.get_or_create_certificate_async("alice")
        second = await service.get_or_create_certificate_async("alice")
        await service.remove_certificate_async("alice")
        return first, second

    first, second = asyncio.run(main())

    assert first.fingerprint == second.fingerprint
    assert store.find_all("alice") == []


def test_async_wrapper_raises_errors(service, store):
    """Test failures surface as exceptions from the awaitable form."""
    der, _ = build_certificate("mallory")
    store.import_certificate(der, "alice")

    with pytest.raises(UnexpectedExistingCertificateError):
        asyncio.run(service.get_or_create_certificate_async("alice"))


def test_dispatch_after_close_still_calls_back(service):
    """Test a request the executor refuses fails through the callback."""
    service.close()
    recorder = OutcomeRecorder()

    assert service.get_or_create_certificate("alice", recorder) is None
    assert recorder.single.error.kind == ErrorKind.INTERNAL


def test_unexpected_error_still_calls_back(token, provider):
    """Test unexpected exceptions are delivered as internal errors."""
    class BrokenStore(MemoryCertificateStore):
        def find_all(self, nickname):
            raise KeyError(nickname)

    service = LocalCertService(BrokenStore(token), provider, TokenAuthenticator())
    outcome = get(service, "alice")
    service.close()

    assert outcome.error.kind == ErrorKind.INTERNAL
    assert isinstance(outcome.error.__cause__, KeyError)


def test_task_outcome_delivered_once(store, generator):
    """Test a task refuses to deliver a second outcome."""
    recorder = OutcomeRecorder()
    task = CertificateTask(TaskKind.REMOVE, "alice", recorder, store, generator, CertificateValidator())
    assert task.state == TaskState.CREATED

    task.complete(task.calculate())
    assert task.state == TaskState.COMPLETED

    with pytest.raises(RuntimeError):
        task.complete(TaskOutcome.success(TaskKind.REMOVE, "alice"))
    assert len(recorder.outcomes) == 1


def test_callback_errors_do_not_escape(store, generator):
    """Test an exception raised by the callback is logged, not propagated."""
    def callback(outcome):
        raise ValueError("boom")

    task = CertificateTask(TaskKind.REMOVE, "alice", callback, store, generator, CertificateValidator())
    task.complete(task.calculate())
    assert task.delivered


def test_audit_trail(store, provider, clock, tmp_path):
    """Test lifecycle events are written to a verifiable audit chain."""
    audit = AuditLogger(log_file=tmp_path / "audit.jsonl")
    service = LocalCertService(store, provider, TokenAuthenticator(), audit=audit, clock=clock)

    get(service, "alice")
    get(service, "alice")
    remove(service, "alice")
    service.close()

    assert audit.get_event_count() == 3
    assert audit.verify_chain()


class FailingRemovalStore(MemoryCertificateStore):
    def __init__(self, token):
        super().__init__(token)
        self.fail_removal = False

    def _remove_entry(self, record):
        if self.fail_removal:
            raise StoreUnavailableError("disk full")
        return super()._remove_entry(record)


def test_failed_removal_keeps_certificate_and_key(token, provider, clock):
    """Test a store that cannot drop the entry leaves certificate and key together."""
    store = FailingRemovalStore(token)
    service = LocalCertService(store, provider, TokenAuthenticator(), clock=clock)
    try:
        record = get(service, "alice").unwrap()
        key_id = key_id_for(record.certificate.public_key())

        store.fail_removal = True
        outcome = remove(service, "alice")
        assert isinstance(outcome.error, GenerationError)
        assert outcome.error.stage == GenerationStage.PURGE
        assert store.find_by_nickname("alice").fingerprint == record.fingerprint
        assert key_id in token.key_ids()

        store.fail_removal = False
        assert get(service, "alice").unwrap().fingerprint == record.fingerprint
        assert remove(service, "alice").ok
        assert store.find_all("alice") == []
        assert token.key_ids() == []
    finally:
        service.close()


def test_callback_on_worker_when_loop_stopped(store, generator):
    """Test a result is delivered on the worker if the caller's loop is not running."""
    recorder = OutcomeRecorder()
    task = CertificateTask(TaskKind.REMOVE, "alice", recorder, store, generator, CertificateValidator())
    executor = TaskExecutor(max_workers=1)
    loop = asyncio.new_event_loop()
    try:
        future = executor._pool.submit(executor._run, task, task.name, loop)
        future.result(timeout=30)
    finally:
        executor.shutdown()
        loop.close()

    assert recorder.single.ok
    assert recorder.threads[0].startswith("localcert")
