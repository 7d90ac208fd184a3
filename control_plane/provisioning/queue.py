"""
Provisioning Queue

In-process worker pool that runs one provisioning saga per enqueued tenant,
redelivering the whole saga with backoff after retryable failures.
"""

import asyncio
from typing import Optional

from structlog import get_logger
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_chain,
    wait_fixed,
    wait_none,
)

from ..config import PlatformConfig, get_config
from .errors import ProvisioningError, is_retryable
from .saga import ProvisioningSaga

logger = get_logger()


class ProvisioningQueue:
    """
    Dispatches provisioning sagas to a fixed pool of asyncio workers.

    Retryable provisioning errors are redelivered up to ``max_attempts`` times.
    Errors outside the provisioning taxonomy count against ``max_exceptions``;
    once that budget is spent the job fails without further attempts.
    """

    def __init__(
        self,
        saga: ProvisioningSaga,
        platform_config: Optional[PlatformConfig] = None,
        workers: Optional[int] = None,
        max_attempts: Optional[int] = None,
        backoff_seconds: Optional[list[float]] = None,
        max_exceptions: Optional[int] = None,
    ):
        self.config = platform_config or get_config()
        self.saga = saga
        self.workers = workers if workers is not None else self.config.provisioning_workers
        self.max_attempts = max_attempts if max_attempts is not None else self.config.provisioning_max_attempts
        self.backoff_seconds = (
            backoff_seconds if backoff_seconds is not None else self.config.provisioning_backoff_seconds
        )
        self.max_exceptions = (
            max_exceptions if max_exceptions is not None else self.config.provisioning_max_exceptions
        )
        if self.workers < 1 or self.max_attempts < 1 or self.max_exceptions < 1:
            raise ValueError("workers, max_attempts and max_exceptions must be at least 1")

        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._tasks: list[asyncio.Task] = []
        self._scheduled: set[str] = set()

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def start(self) -> None:
        """Spawn the worker tasks. Must be called from a running event loop."""
        if self.running:
            return
        self._tasks = [
            asyncio.create_task(self._worker(index), name=f"provisioning-worker-{index}")
            for index in range(self.workers)
        ]
        logger.info("provisioning_workers_started", workers=self.workers)

    async def stop(self) -> None:
        """Cancel the workers. A saga in flight is interrupted between awaits."""
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("provisioning_workers_stopped")

    async def enqueue(self, tenant_id: str) -> bool:
        """
        Queue a tenant for provisioning.

        Returns:
            False if the tenant is already queued or being provisioned
        """
        if tenant_id in self._scheduled:
            logger.info("provisioning_already_scheduled", tenant_id=tenant_id)
            return False

        self._scheduled.add(tenant_id)
        await self._queue.put(tenant_id)
        logger.info("provisioning_enqueued", tenant_id=tenant_id, queued=self._queue.qsize())
        return True

    async def drain(self) -> None:
        """Wait until every queued tenant has been processed."""
        await self._queue.join()

    async def _worker(self, index: int) -> None:
        while True:
            tenant_id = await self._queue.get()
            try:
                await self.process(tenant_id)
            except Exception as e:
                logger.error("provisioning_worker_error", worker=index, tenant_id=tenant_id, error=str(e))
            finally:
                self._scheduled.discard(tenant_id)
                self._queue.task_done()

    def _wait_strategy(self):
        if not self.backoff_seconds:
            return wait_none()
        return wait_chain(*[wait_fixed(delay) for delay in self.backoff_seconds])

    async def process(self, tenant_id: str) -> bool:
        """
        Run the saga for one tenant with redelivery.

        Args:
            tenant_id: Tenant to provision

        Returns:
            True if the saga finished without error, False if the job failed
        """
        attempts = 0
        unexpected = 0

        def should_retry(exc: BaseException) -> bool:
            nonlocal unexpected
            if isinstance(exc, ProvisioningError):
                return is_retryable(exc)
            unexpected += 1
            return unexpected < self.max_exceptions

        def log_retry(retry_state: RetryCallState) -> None:
            logger.warning(
                "provisioning_retry_scheduled",
                tenant_id=tenant_id,
                attempt=retry_state.attempt_number,
                delay=retry_state.next_action.sleep if retry_state.next_action else 0,
                error=str(retry_state.outcome.exception()),
            )

        @retry(
            stop=stop_after_attempt(self.max_attempts),
            wait=self._wait_strategy(),
            retry=retry_if_exception(should_retry),
            before_sleep=log_retry,
            reraise=True,
        )
        async def _attempt():
            nonlocal attempts
            attempts += 1
            return await self.saga.handle(tenant_id, attempt=attempts, max_attempts=self.max_attempts)

        try:
            tenant = await _attempt()
        except Exception as e:
            logger.error("provisioning_job_failed", tenant_id=tenant_id, attempts=attempts, error=str(e))
            await self.saga.failed(tenant_id, e)
            return False

        if tenant is None and attempts > 1:
            # Removed between deliveries; nothing was provisioned
            logger.warning("provisioning_tenant_vanished", tenant_id=tenant_id, attempts=attempts)
            return False

        return True
