"""Per-queue worker pools: bounded concurrency, shared rate limit, ack/nack."""

from __future__ import annotations

import logging
import signal
import socket
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Protocol
from uuid import uuid4

from jobflow.queue.failure_classifier import classify_processor_failure, describe_failure
from jobflow.queue.models import NackOutcome, QueueName, TaskView
from jobflow.queue.payloads import decode_payload
from jobflow.queue.rate_limit import RateLimiter
from jobflow.queue.repository import QueueRepository

logger = logging.getLogger(__name__)


class TaskProcessor(Protocol):
    def __call__(self, task: TaskView, payload: Any) -> dict[str, object]: ...


@dataclass(slots=True)
class PoolRunSummary:
    """Counters for one pool run."""

    processed: int = 0
    succeeded: int = 0
    retried: int = 0
    dead_lettered: int = 0
    lease_lost: int = 0
    released: int = 0
    idle_polls: int = 0
    poll_errors: int = 0

    def add(self, other: PoolRunSummary) -> None:
        self.processed += other.processed
        self.succeeded += other.succeeded
        self.retried += other.retried
        self.dead_lettered += other.dead_lettered
        self.lease_lost += other.lease_lost
        self.released += other.released
        self.idle_polls += other.idle_polls
        self.poll_errors += other.poll_errors


class WorkerPool:
    """Consume one queue with ``concurrency`` threads sharing one rate limiter.

    Each slot loops: sweep stalled leases, claim, wait for a rate-limit slot,
    run the processor, then ack on return or nack on exception. The lease
    length doubles as the per-task runtime limit.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        queue_name: QueueName,
        repository: QueueRepository,
        processor: TaskProcessor,
        concurrency: int = 1,
        rate_limiter: RateLimiter | None = None,
        lease_seconds: float = 30.0,
        max_stalled_count: int = 1,
        poll_interval_seconds: float = 1.0,
        worker_id: str | None = None,
    ) -> None:
        if concurrency <= 0:
            raise ValueError("concurrency must be > 0")
        self.queue_name = queue_name
        self.repository = repository
        self.processor = processor
        self.concurrency = concurrency
        self.rate_limiter = rate_limiter
        self.lease_seconds = lease_seconds
        self.max_stalled_count = max_stalled_count
        self.poll_interval_seconds = poll_interval_seconds
        self.worker_id = worker_id or f"{socket.gethostname()}-{uuid4().hex[:8]}"
        self._stop_event = threading.Event()
        self._lock = threading.Lock()
        self._claimed = 0

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def stop(self) -> None:
        self._stop_event.set()

    def run_once(self, *, slot: int = 0) -> PoolRunSummary:
        """Process at most one task from the queue."""

        summary = PoolRunSummary()
        if self.stop_requested:
            summary.idle_polls = 1
            return summary

        self.repository.recover_stalled(
            self.queue_name,
            max_stalled_count=self.max_stalled_count,
        )
        task = self.repository.claim(
            self.queue_name,
            worker_id=f"{self.worker_id}/{self.queue_name.value}/{slot}",
            lease_seconds=self.lease_seconds,
        )
        if task is None:
            summary.idle_polls = 1
            return summary

        summary.processed = 1
        if self.rate_limiter is not None and not self.rate_limiter.acquire(
            stop_requested=self._stop_event.is_set,
        ):
            if self.repository.release(task):
                summary.released = 1
            return summary

        self._execute(task, summary)
        return summary

    def run_loop(
        self,
        *,
        max_tasks: int | None = None,
        max_idle_polls: int | None = 1,
    ) -> PoolRunSummary:
        """Run all slots until each is idle, ``max_tasks`` is reached, or stop is requested.

        Args:
            max_tasks: Stop after this many claims across all slots (None = unlimited).
            max_idle_polls: Consecutive empty polls after which a slot exits
                (None = keep polling until stopped).
        """

        aggregate = PoolRunSummary()
        self._claimed = 0
        threads = [
            threading.Thread(
                target=self._slot_loop,
                kwargs={
                    "slot": slot,
                    "aggregate": aggregate,
                    "max_tasks": max_tasks,
                    "max_idle_polls": max_idle_polls,
                },
                name=f"{self.queue_name.value}-{slot}",
                daemon=True,
            )
            for slot in range(self.concurrency)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        return aggregate

    def _slot_loop(
        self,
        *,
        slot: int,
        aggregate: PoolRunSummary,
        max_tasks: int | None,
        max_idle_polls: int | None,
    ) -> None:
        consecutive_idle = 0
        while not self.stop_requested:
            if max_tasks is not None:
                with self._lock:
                    if self._claimed >= max_tasks:
                        return
                    self._claimed += 1

            try:
                summary = self.run_once(slot=slot)
            except Exception:  # noqa: BLE001
                logger.exception(
                    "Slot %d of %s failed a poll cycle; backing off",
                    slot,
                    self.queue_name.value,
                )
                summary = PoolRunSummary(idle_polls=1, poll_errors=1)
            with self._lock:
                aggregate.add(summary)
                if max_tasks is not None and summary.processed == 0:
                    self._claimed -= 1

            if summary.processed == 0:
                consecutive_idle += 1
                if max_idle_polls is not None and consecutive_idle >= max_idle_polls:
                    return
                self._stop_event.wait(self.poll_interval_seconds)
                continue
            consecutive_idle = 0

    def _execute(self, task: TaskView, summary: PoolRunSummary) -> None:
        logger.info(
            "Processing task %s from %s (attempt %d/%d)",
            task.task_id,
            task.queue_name.value,
            task.attempts_made + 1,
            task.max_attempts,
        )
        try:
            payload = decode_payload(task.queue_name, task.raw_payload)
            result = self.processor(task, payload)
        except Exception as error:  # noqa: BLE001
            classification = classify_processor_failure(error)
            outcome = self.repository.nack(
                task,
                error=describe_failure(error),
                failure_class=classification.failure_class,
            )
            if outcome is NackOutcome.RETRY_SCHEDULED:
                summary.retried = 1
            elif outcome is NackOutcome.DEAD_LETTERED:
                summary.dead_lettered = 1
            else:
                summary.lease_lost = 1
            logger.debug(
                "Task %s failure classified: %s",
                task.task_id,
                classification.to_event_details(),
            )
            return

        if self.repository.ack(task):
            summary.succeeded = 1
            logger.info("Task %s completed: %s", task.task_id, result)
        else:
            summary.lease_lost = 1


class WorkerRuntime:
    """Run several pools side by side until idle or interrupted by SIGINT/SIGTERM."""

    def __init__(self, pools: list[WorkerPool]) -> None:
        self.pools = pools
        self._stop_signal_name: str | None = None

    def run_once(self) -> dict[QueueName, PoolRunSummary]:
        return {pool.queue_name: pool.run_once() for pool in self.pools}

    def run(self, *, max_idle_polls: int | None = None) -> dict[QueueName, PoolRunSummary]:
        summaries = {pool.queue_name: PoolRunSummary() for pool in self.pools}

        def _run_pool(pool: WorkerPool) -> None:
            summaries[pool.queue_name].add(pool.run_loop(max_idle_polls=max_idle_polls))

        threads = [
            threading.Thread(
                target=_run_pool,
                args=(pool,),
                name=f"pool-{pool.queue_name.value}",
                daemon=True,
            )
            for pool in self.pools
        ]
        with self._signal_handlers():
            for thread in threads:
                thread.start()
            while any(thread.is_alive() for thread in threads):
                for thread in threads:
                    thread.join(timeout=0.2)
        if self._stop_signal_name is not None:
            logger.info("Worker runtime stopped by %s", self._stop_signal_name)
        return summaries

    def stop(self) -> None:
        for pool in self.pools:
            pool.stop()

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if not hasattr(signal, "SIGINT"):
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            self._stop_signal_name = name
            logger.info("Received %s, finishing in-flight tasks", name)
            self.stop()

        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
        except ValueError:
            # Signal handlers can only be installed in main thread.
            yield
            return
        try:
            yield
        finally:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)
