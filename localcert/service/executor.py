"""Runs certificate tasks off the calling context."""

import asyncio
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Optional

from ..errors import ErrorKind, LocalCertError
from ..models import TaskOutcome
from .task import CertificateTask


logger = logging.getLogger(__name__)


class TaskExecutor:
    """
    Thread-pool dispatcher for certificate tasks.

    Work runs on a worker thread. If ``dispatch`` is called from a
    running asyncio event loop, the callback is scheduled back onto
    that loop; otherwise (or if the loop has stopped or closed in the
    meantime) it runs on the worker thread.

    A callback already queued on a loop that then stops without running
    it again is not delivered; callers on a loop must keep it running
    until their callback has fired.
    """

    def __init__(self, max_workers: int = 2):
        """
        Initialize executor.

        Args:
            max_workers: Worker thread count
        """
        self.max_workers = max_workers
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="localcert")

    def dispatch(self, task: CertificateTask, name: str) -> Future:
        """
        Queue a task.

        Raises:
            LocalCertError: Executor no longer accepts work
        """
        try:
            loop: Optional[asyncio.AbstractEventLoop] = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        try:
            future = self._pool.submit(self._run, task, name, loop)
        except RuntimeError as e:
            raise LocalCertError(f"Cannot dispatch {name}: {e}", kind=ErrorKind.INTERNAL) from e

        logger.debug(f"Dispatched {name} for '{task.nickname}'")
        return future

    def _run(
        self,
        task: CertificateTask,
        name: str,
        loop: Optional[asyncio.AbstractEventLoop]
    ) -> TaskOutcome:
        outcome = task.calculate()

        if loop is not None and loop.is_running():
            try:
                loop.call_soon_threadsafe(task.complete, outcome)
                return outcome
            except RuntimeError:
                logger.warning(f"Event loop closed, delivering {name} result on worker thread")
        elif loop is not None:
            logger.debug(f"Event loop stopped, delivering {name} result on worker thread")

        task.complete(outcome)
        return outcome

    def shutdown(self, wait: bool = True):
        """Stop accepting tasks; optionally wait for queued ones."""
        self._pool.shutdown(wait=wait)
