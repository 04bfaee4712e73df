"""Public entry points of the local certificate service."""

import asyncio
import logging
from concurrent.futures import Future
from typing import Optional

from ..audit import AuditLogger
from ..crypto import CryptoProvider, KeySlot
from ..errors import (
    AuthenticationError,
    InvalidArgumentError,
    LocalCertError,
    ProviderUnavailableError,
    StoreUnavailableError,
)
from ..models import CertificateRecord, TaskKind, TaskOutcome, TaskState
from ..store import CertificateStore, StoreAuthenticator
from .executor import TaskExecutor
from .generator import CertificateGenerator
from .task import CertificateTask, OutcomeCallback
from .validator import CertificateValidator, Clock


logger = logging.getLogger(__name__)


class LocalCertService:
    """
    Get-or-create and removal of self-signed certificates by nickname.

    Store authentication happens synchronously on the caller's context
    before a task is dispatched; an authentication failure is handed to
    the callback right away and nothing is dispatched. Every accepted
    request calls its callback exactly once.

    Requests for the same nickname are not serialized against each
    other. Callers needing mutual exclusion per nickname must provide it.
    """

    def __init__(
        self,
        store: CertificateStore,
        provider: CryptoProvider,
        authenticator: StoreAuthenticator,
        executor: Optional[TaskExecutor] = None,
        validator: Optional[CertificateValidator] = None,
        audit: Optional[AuditLogger] = None,
        clock: Optional[Clock] = None
    ):
        """
        Initialize service.

        Args:
            store: Certificate store
            provider: Cryptographic provider
            authenticator: Store authenticator used before dispatching work
            executor: Task executor, shut down by close() (default: two workers)
            validator: Certificate validator
            audit: Optional audit logger
            clock: Time source shared by validator and generator
        """
        self.store = store
        self.provider = provider
        self.authenticator = authenticator
        self.audit = audit

        self.executor = executor or TaskExecutor()
        self.validator = validator or CertificateValidator(clock)
        self.generator = CertificateGenerator(store, provider, clock=clock, audit=audit)

    # Public operations

    def get_or_create_certificate(self, nickname: str, callback: OutcomeCallback) -> Optional[Future]:
        """
        Return the valid certificate for ``nickname``, creating it if needed.

        Args:
            nickname: Certificate nickname (non-empty)
            callback: Receives the TaskOutcome exactly once

        Returns:
            Future of the dispatched task, or None if the callback
            already received a failure

        Raises:
            InvalidArgumentError: Empty nickname or missing callback
        """
        return self._submit(TaskKind.GET_OR_CREATE, nickname, callback)

    def remove_certificate(self, nickname: str, callback: OutcomeCallback) -> Optional[Future]:
        """
        Remove the certificate and key stored for ``nickname``.

        Removing a nickname with no certificate succeeds. A certificate
        not created by this service is left alone and reported as
        UnexpectedExistingCertificateError.
        """
        return self._submit(TaskKind.REMOVE, nickname, callback)

    def is_unlock_required(self) -> bool:
        """
        Check whether the key slot needs interactive unlocking now.

        A slot that never had a credential gets an empty one first.
        """
        with self._acquire_slot() as slot:
            self._init_credential_if_needed(slot)
            return self.authenticator.needs_login(slot) and not self.authenticator.is_logged_in(slot)

    def ensure_store_unlocked(self):
        """
        Make the key slot usable, prompting for its password if required.

        Raises:
            ProviderUnavailableError: Key slot not available
            AuthenticationError: Unlock failed or was declined
        """
        with self._acquire_slot() as slot:
            self._init_credential_if_needed(slot)

            if self.authenticator.needs_login(slot) and not self.authenticator.is_logged_in(slot):
                logger.info("Key slot locked, prompting for password")
                try:
                    self.authenticator.prompt_login(slot)
                except AuthenticationError as e:
                    if self.audit:
                        self.audit.log_unlock(False, str(e))
                    raise
                if self.audit:
                    self.audit.log_unlock(True)

    async def get_or_create_certificate_async(self, nickname: str) -> CertificateRecord:
        """Awaitable form of get_or_create_certificate."""
        return await self._await_outcome(TaskKind.GET_OR_CREATE, nickname)

    async def remove_certificate_async(self, nickname: str):
        """Awaitable form of remove_certificate."""
        await self._await_outcome(TaskKind.REMOVE, nickname)

    def close(self):
        """Wait for dispatched tasks and stop the executor."""
        self.executor.shutdown(wait=True)

    def __enter__(self) -> "LocalCertService":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    # Internals

    def _submit(self, kind: TaskKind, nickname: str, callback: OutcomeCallback) -> Optional[Future]:
        if not isinstance(nickname, str) or not nickname:
            raise InvalidArgumentError("Nickname must be a non-empty string")
        if not callable(callback):
            raise InvalidArgumentError("Callback is required")

        task = CertificateTask(
            kind,
            nickname,
            callback,
            store=self.store,
            generator=self.generator,
            validator=self.validator,
            audit=self.audit
        )

        task.state = TaskState.AUTHENTICATING
        try:
            self.ensure_store_unlocked()
        except LocalCertError as e:
            logger.warning(f"{task.name} for '{nickname}' not dispatched: {e}")
            task.fail(e)
            return None

        try:
            return self.executor.dispatch(task, task.name)
        except LocalCertError as e:
            logger.error(f"{task.name} for '{nickname}' could not be dispatched: {e}")
            task.fail(e)
            return None

    async def _await_outcome(self, kind: TaskKind, nickname: str) -> Optional[CertificateRecord]:
        loop = asyncio.get_running_loop()
        result: asyncio.Future = loop.create_future()

        def deliver(outcome: TaskOutcome):
            if result.done():
                return
            if outcome.error is not None:
                result.set_exception(outcome.error)
            else:
                result.set_result(outcome.record)

        self._submit(kind, nickname, deliver)
        return await result

    def _acquire_slot(self) -> KeySlot:
        try:
            return self.provider.acquire_key_slot()
        except LocalCertError:
            raise
        except Exception as e:
            raise ProviderUnavailableError(f"Cannot acquire key slot: {e}") from e

    def _init_credential_if_needed(self, slot: KeySlot):
        if not self.authenticator.needs_credential_init(slot):
            return
        logger.info("Key slot has no credential, initializing an empty one")
        try:
            self.authenticator.init_empty_credential(slot)
        except OSError as e:
            raise StoreUnavailableError(f"Cannot initialize key slot credential: {e}") from e
