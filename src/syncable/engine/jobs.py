"""
Asynchronous execution of outbound syncs.

A job runs `push` at least once. Raised faults are retried with a fixed
delay until the attempt budget is spent; a returned False is final, since
the remote side already rejected the data.
"""

import time
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Optional

from ..core.config import SyncSettings
from ..models.records import SyncAction

logger = logging.getLogger(__name__)

PushFunction = Callable[..., bool]


class SyncJob:
    """One outbound sync of one object."""

    def __init__(self, push: PushFunction, obj: Any, action: SyncAction,
                 tries: int = 3, retry_delay: float = 5, delay: float = 0,
                 origin_system_id: Optional[str] = None):
        """
        Args:
            push: The orchestrator's push operation
            obj: Domain object to sync
            action: create, update or delete
            tries: Maximum number of attempts
            retry_delay: Seconds between attempts after a raised fault
            delay: Seconds to wait before the first attempt (throttling)
            origin_system_id: Passed through to push for loop detection
        """
        self.push = push
        self.obj = obj
        self.action = SyncAction(action)
        self.tries = max(1, tries)
        self.retry_delay = retry_delay
        self.delay = delay
        self.origin_system_id = origin_system_id
        self.attempts = 0

    def run(self) -> bool:
        """
        Execute the job.

        Returns:
            The push result, or False once every attempt raised
        """
        if self.delay > 0:
            time.sleep(self.delay)

        while True:
            self.attempts += 1
            try:
                result = self.push(self.obj, self.action, self.origin_system_id)
                if not result:
                    logger.warning(f"Sync job failed for {self.obj!r} ({self.action.value})")
                return bool(result)

            except Exception as e:
                logger.error(
                    f"Sync job exception for {self.obj!r} ({self.action.value}), "
                    f"attempt {self.attempts}/{self.tries}: {e}"
                )
                if self.attempts >= self.tries:
                    logger.error(f"Giving up on sync of {self.obj!r} after {self.attempts} attempts")
                    return False
                time.sleep(self.retry_delay)


class SyncDispatcher:
    """
    Schedules SyncJobs on a thread pool, or runs them inline when the
    queue is disabled.
    """

    def __init__(self, push: PushFunction, settings: SyncSettings):
        self.push = push
        self.settings = settings
        self._executor: Optional[ThreadPoolExecutor] = None
        if settings.queue.enabled:
            self._executor = ThreadPoolExecutor(
                max_workers=settings.queue.max_workers,
                thread_name_prefix="syncable-worker",
            )

    def make_job(self, obj: Any, action: SyncAction, origin_system_id: Optional[str] = None) -> SyncJob:
        throttling = self.settings.throttling
        return SyncJob(
            self.push,
            obj,
            action,
            tries=self.settings.api.retry_attempts,
            retry_delay=self.settings.api.retry_delay,
            delay=throttling.delay_seconds if throttling.enabled else 0,
            origin_system_id=origin_system_id,
        )

    def dispatch(self, obj: Any, action: SyncAction, origin_system_id: Optional[str] = None) -> Future:
        """
        Schedule a sync job.

        Returns:
            Future resolving to the job result. Already completed when the
            queue is disabled.
        """
        job = self.make_job(obj, action, origin_system_id)

        if self._executor is not None:
            logger.debug(f"Queued sync of {obj!r} ({job.action.value})")
            return self._executor.submit(job.run)

        future: Future = Future()
        future.set_result(job.run())
        return future

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None
