"""Background Audit Writer - non-blocking audit writes for high throughput."""

import atexit
import logging
import queue
import threading
from typing import Optional

from firm_governance.common.constants import AuditConstants
from firm_governance.governance.audit.store import AuditStore
from firm_governance.governance.schemas import AuditEvent

logger = logging.getLogger(__name__)


class BackgroundAuditWriter:
    """Background writer in front of an AuditStore.

    Usable as the ``sink`` of an AuditTrail. Events are queued and written
    by a daemon thread; the queue is drained on shutdown.
    """

    DEFAULT_QUEUE_SIZE = AuditConstants.QUEUE_SIZE
    DEFAULT_FLUSH_TIMEOUT = AuditConstants.FLUSH_TIMEOUT_SECONDS

    def __init__(
        self,
        store: AuditStore,
        max_queue_size: int = DEFAULT_QUEUE_SIZE,
        flush_timeout: float = DEFAULT_FLUSH_TIMEOUT,
        sync_fallback: bool = True,
    ):
        """Initialize background audit writer.

        Args:
            store: Audit store backend.
            max_queue_size: Maximum number of events to buffer.
            flush_timeout: Timeout for flushing queue on shutdown.
            sync_fallback: Whether to write synchronously when queue is full.
        """
        self.store = store
        self.max_queue_size = max_queue_size
        self.flush_timeout = flush_timeout
        self.sync_fallback = sync_fallback

        self._queue: queue.Queue[Optional[AuditEvent]] = queue.Queue(
            maxsize=max_queue_size
        )

        self._shutdown_event = threading.Event()
        self._writer_thread: Optional[threading.Thread] = None

        self._events_written = 0
        self._events_dropped = 0
        self._write_failures = 0
        self._sync_fallback_count = 0
        self._stats_lock = threading.Lock()

        self._start_writer()
        atexit.register(self.shutdown)

    def _start_writer(self) -> None:
        self._writer_thread = threading.Thread(
            target=self._writer_loop,
            name="GovernanceAuditWriter",
            daemon=True,
        )
        self._writer_thread.start()
        logger.info("Background audit writer started")

    def _write(self, event: AuditEvent) -> None:
        try:
            self.store.append_event(event)
            with self._stats_lock:
                self._events_written += 1
        except Exception as e:
            with self._stats_lock:
                self._write_failures += 1
            logger.error(
                f"Failed to write audit event {event.action} "
                f"for {event.resource_id} (seq {event.sequence}): {e}"
            )

    def _writer_loop(self) -> None:
        """Background loop that writes events from the queue."""
        while not self._shutdown_event.is_set():
            try:
                event = self._queue.get(timeout=AuditConstants.QUEUE_GET_TIMEOUT)
            except queue.Empty:
                continue

            if event is None:
                self._queue.task_done()
                break

            try:
                self._write(event)
            finally:
                self._queue.task_done()

        self._drain_queue()
        logger.info("Background audit writer stopped")

    def _drain_queue(self) -> None:
        drained = 0
        while True:
            try:
                event = self._queue.get_nowait()
            except queue.Empty:
                break
            if event is not None:
                self._write(event)
                drained += 1
            self._queue.task_done()

        if drained > 0:
            logger.info(f"Drained {drained} audit events during shutdown")

    def append_event(self, event: AuditEvent) -> AuditEvent:
        """Queue an audit event for writing.

        If the queue is full and sync_fallback is True, writes synchronously;
        otherwise the event is dropped and counted.
        """
        if self._shutdown_event.is_set():
            return self.store.append_event(event)

        try:
            self._queue.put_nowait(event)
            return event
        except queue.Full:
            if self.sync_fallback:
                with self._stats_lock:
                    self._sync_fallback_count += 1
                logger.warning("Audit queue full, writing synchronously")
                return self.store.append_event(event)
            with self._stats_lock:
                self._events_dropped += 1
            logger.error(
                f"Audit queue full, dropped {event.action} "
                f"for {event.resource_id} (seq {event.sequence})"
            )
            return event

    def flush(self) -> None:
        """Block until every queued event has been processed."""
        self._queue.join()

    def shutdown(self, timeout: Optional[float] = None) -> None:
        """Shutdown the background writer gracefully.

        Args:
            timeout: Maximum time to wait for queue drain. Uses default if None.
        """
        if self._shutdown_event.is_set():
            return

        timeout = timeout if timeout is not None else self.flush_timeout

        self._shutdown_event.set()
        try:
            self._queue.put_nowait(None)
        except queue.Full:
            pass  # writer sees the shutdown event instead

        if self._writer_thread and self._writer_thread.is_alive():
            self._writer_thread.join(timeout=timeout)
            if self._writer_thread.is_alive():
                logger.warning("Audit writer did not stop cleanly")

        logger.info(
            f"Audit writer shutdown complete. "
            f"Written: {self._events_written}, "
            f"Dropped: {self._events_dropped}, "
            f"Failed: {self._write_failures}, "
            f"Sync fallbacks: {self._sync_fallback_count}"
        )

    def get_stats(self) -> dict:
        with self._stats_lock:
            return {
                "events_written": self._events_written,
                "events_dropped": self._events_dropped,
                "write_failures": self._write_failures,
                "sync_fallback_count": self._sync_fallback_count,
                "queue_size": self._queue.qsize(),
                "max_queue_size": self.max_queue_size,
            }

    @property
    def is_running(self) -> bool:
        return not self._shutdown_event.is_set()
