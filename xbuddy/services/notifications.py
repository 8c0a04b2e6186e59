"""
Best-effort outbound notification queue.

A small pool of worker threads drains a FIFO of NotificationTasks:
1. Each worker sends one task at a time
2. Each worker waits ``delay`` seconds after a delivery before taking the next
3. Failed sends are retried with exponential backoff up to ``max_attempts``,
   then the task is marked failed and logged

Failures never leave the worker: callers that enqueue a batch are not
blocked and never see an exception.
"""
from __future__ import annotations

import enum
import queue
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from ..logging_config import get_logger, mask_email

logger = get_logger(__name__)

_STOP = object()


class DeliveryStatus(str, enum.Enum):
    QUEUED = "queued"
    IN_FLIGHT = "in_flight"
    DELIVERED = "delivered"
    FAILED = "failed"


@dataclass
class OutboundEmail:
    """Rendered message handed to the transport"""
    to: str
    subject: str
    html: str
    text: str = ""


@dataclass
class NotificationTask:
    """One message to one giver about one draw"""
    group_id: Any
    giver_id: Any
    receiver_id: Any
    message: OutboundEmail
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    status: DeliveryStatus = DeliveryStatus.QUEUED
    attempts: int = 0
    last_error: str | None = None
    created_at: float = field(default_factory=time.time)

    @property
    def done(self) -> bool:
        return self.status in (DeliveryStatus.DELIVERED, DeliveryStatus.FAILED)


class NotificationBatch:
    """Tasks enqueued together, with an optional completion signal for diagnostics."""

    def __init__(self, tasks: list[NotificationTask]):
        self.tasks = tasks
        self._remaining = len(tasks)
        self._lock = threading.Lock()
        self._done = threading.Event()
        if not tasks:
            self._done.set()

    def _task_finished(self) -> None:
        with self._lock:
            self._remaining -= 1
            if self._remaining <= 0:
                self._done.set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until every task is delivered or failed. Returns False on timeout."""
        return self._done.wait(timeout)

    @property
    def delivered(self) -> int:
        return sum(1 for t in self.tasks if t.status == DeliveryStatus.DELIVERED)

    @property
    def failed(self) -> int:
        return sum(1 for t in self.tasks if t.status == DeliveryStatus.FAILED)

    @property
    def pending(self) -> int:
        return sum(1 for t in self.tasks if not t.done)

    def summary(self) -> dict:
        return {
            "total": len(self.tasks),
            "delivered": self.delivered,
            "failed": self.failed,
            "pending": self.pending,
        }


class NotificationDispatcher:
    """
    Fixed-size worker pool over a FIFO queue.

    ``send`` is the transport capability: it takes an OutboundEmail and
    raises on failure. Throughput is roughly ``concurrency / delay`` messages
    per second.
    """

    def __init__(
        self,
        send: Callable[[OutboundEmail], Any],
        concurrency: int = 2,
        delay: float = 0.6,
        max_attempts: int = 1,
        retry_backoff: float = 1.0,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self._send = send
        self.concurrency = concurrency
        self.delay = delay
        self.max_attempts = max_attempts
        self.retry_backoff = retry_backoff

        self._queue: queue.Queue = queue.Queue()
        self._workers: list[threading.Thread] = []
        self._lock = threading.Lock()
        self._abort = threading.Event()
        self._closed = False

    # -- lifecycle ---------------------------------------------------------

    def start(self) -> None:
        with self._lock:
            if not self._closed:
                self._start_workers()

    def _start_workers(self) -> None:
        # caller holds self._lock
        if self._workers:
            return
        for i in range(self.concurrency):
            worker = threading.Thread(
                target=self._worker_loop,
                name=f"notify-worker-{i}",
                daemon=True,
            )
            worker.start()
            self._workers.append(worker)
        logger.info("Notification dispatcher started: workers=%d, delay=%.3fs", self.concurrency, self.delay)

    @property
    def running(self) -> bool:
        return any(w.is_alive() for w in self._workers)

    @property
    def queue_size(self) -> int:
        return self._queue.qsize()

    def shutdown(self, drain: bool = True, timeout: float | None = None) -> None:
        """
        Stop the workers.

        With ``drain`` the queued tasks are delivered first; otherwise they
        are abandoned and marked failed.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
            workers = list(self._workers)

        if not drain:
            self._abort.set()
            self._abandon_queued()

        for _ in workers:
            self._queue.put(_STOP)

        deadline = None if timeout is None else time.monotonic() + timeout
        for worker in workers:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            worker.join(remaining)

        if not workers:
            self._abandon_queued()

        logger.info("Notification dispatcher stopped (drain=%s)", drain)

    # -- producer side -----------------------------------------------------

    def enqueue(self, tasks: Iterable[NotificationTask]) -> NotificationBatch:
        """Queue tasks for background delivery. Never raises, never blocks on sending."""
        batch = NotificationBatch(list(tasks))
        if not batch.tasks:
            return batch

        with self._lock:
            closed = self._closed
            if not closed:
                self._start_workers()
                for task in batch.tasks:
                    task.status = DeliveryStatus.QUEUED
                    self._queue.put((task, batch))

        if closed:
            logger.warning("Dispatcher is shut down; dropping %d notifications", len(batch.tasks))
            for task in batch.tasks:
                self._finish(task, DeliveryStatus.FAILED, batch, error="dispatcher shut down")
            return batch

        logger.info(
            "Queued %d notifications, queue_size=%d",
            len(batch.tasks), self._queue.qsize(),
            extra={"group_id": batch.tasks[0].group_id},
        )
        return batch

    def deliver(self, task: NotificationTask, timeout: float | None = None) -> NotificationTask:
        """
        Queue a single task and wait for its outcome.

        The task goes through the worker pool like any other, so the
        concurrency and delay limits still apply. If ``timeout`` expires
        first the task is returned still queued or in flight.
        """
        batch = self.enqueue([task])
        if not batch.wait(timeout):
            logger.warning("Delivery still pending after %.1fs: task=%s", timeout, task.id,
                           extra={"group_id": task.group_id})
        return task

    # -- unit of work ------------------------------------------------------

    def send_one(self, task: NotificationTask) -> DeliveryStatus:
        """Deliver one task, retrying per policy. Failures are recorded, not raised."""
        task.status = DeliveryStatus.IN_FLIGHT

        while task.attempts < self.max_attempts:
            task.attempts += 1
            try:
                self._send(task.message)
            except Exception as e:  # transport errors are per-task
                task.last_error = f"{type(e).__name__}: {e}"
                logger.warning(
                    "Notification send failed: id=%s, to=%s, attempt=%d/%d, error=%s",
                    task.id, mask_email(task.message.to), task.attempts, self.max_attempts, task.last_error,
                    extra={"task_id": task.id, "group_id": task.group_id},
                )
                if task.attempts < self.max_attempts:
                    backoff = self.retry_backoff * (2 ** (task.attempts - 1))
                    if self._abort.wait(backoff):
                        break
                continue

            task.status = DeliveryStatus.DELIVERED
            task.last_error = None
            logger.info(
                "Notification delivered: id=%s, to=%s, attempts=%d",
                task.id, mask_email(task.message.to), task.attempts,
                extra={"task_id": task.id, "group_id": task.group_id},
            )
            return task.status

        task.status = DeliveryStatus.FAILED
        logger.error(
            "Notification failed permanently: id=%s, to=%s, attempts=%d, error=%s",
            task.id, mask_email(task.message.to), task.attempts, task.last_error,
            extra={"task_id": task.id, "group_id": task.group_id},
        )
        return task.status

    # -- worker side -------------------------------------------------------

    def _worker_loop(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                task, batch = item
                if self._abort.is_set():
                    self._finish(task, DeliveryStatus.FAILED, batch, error="abandoned at shutdown")
                    continue
                try:
                    self.send_one(task)
                except Exception:
                    logger.exception("Unexpected error delivering notification id=%s", task.id)
                    task.status = DeliveryStatus.FAILED
                batch._task_finished()
            finally:
                self._queue.task_done()

            # Outbound rate limit: per-worker gap between deliveries.
            if self.delay > 0:
                self._abort.wait(self.delay)

    def _abandon_queued(self) -> None:
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return
            try:
                if item is not _STOP:
                    task, batch = item
                    self._finish(task, DeliveryStatus.FAILED, batch, error="abandoned at shutdown")
            finally:
                self._queue.task_done()

    @staticmethod
    def _finish(task: NotificationTask, status: DeliveryStatus, batch: NotificationBatch, error: str | None = None) -> None:
        task.status = status
        if error:
            task.last_error = error
        batch._task_finished()
