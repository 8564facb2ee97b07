"""Audit Trail - best-effort recording of every governing decision.

A failed audit write never fails the operation it describes. Instead the
failure is logged, counted and kept for monitoring. Each event carries a
per-resource sequence number so a downstream consumer can detect gaps
left by lost writes (see ``find_sequence_gaps``).
"""

from collections import deque
from typing import Any, Deque, Dict, Iterable, List, Optional, Protocol
import threading

from firm_governance.common.constants import AuditConstants
from firm_governance.common.logging import get_logger
from firm_governance.governance.audit.store import AuditStore, InMemoryAuditStore
from firm_governance.governance.schemas import AuditEvent

logger = get_logger(__name__)


class AuditSink(Protocol):
    """Anything that accepts audit events (a store or a background writer)."""

    def append_event(self, event: AuditEvent) -> AuditEvent: ...


class AuditTrail:
    """Records audit events and assigns per-resource sequence numbers."""

    def __init__(
        self,
        store: Optional[AuditStore] = None,
        sink: Optional[AuditSink] = None,
        max_failed_events: int = AuditConstants.FAILED_EVENTS_RETAINED,
    ):
        """Initialize the trail.

        Args:
            store: Store used for reads and, without a sink, for writes.
                Defaults to an in-memory store.
            sink: Optional write path, e.g. a BackgroundAuditWriter
                wrapping ``store``.
            max_failed_events: How many failed events to retain.
        """
        # An empty store is falsy, so test against None
        self.store = store if store is not None else InMemoryAuditStore()
        self.sink: AuditSink = sink if sink is not None else self.store
        self._sequences: Dict[str, int] = {}
        self._lock = threading.Lock()
        self._failure_count = 0
        self._failed_events: Deque[AuditEvent] = deque(maxlen=max_failed_events)

    def _next_sequence(self, resource_id: str) -> int:
        """Next sequence number for ``resource_id``.

        The counter resumes from the store on first use. If the store
        cannot be read the counter starts at zero and is not cached, so a
        later call retries the read.
        """
        with self._lock:
            if resource_id not in self._sequences:
                try:
                    last = max(
                        (e.sequence for e in self.store.get_events(resource_id=resource_id)),
                        default=0,
                    )
                except Exception as e:
                    self._failure_count += 1
                    logger.error(f"Failed to read audit sequence for {resource_id}: {e}")
                    return 1
                self._sequences[resource_id] = last
            self._sequences[resource_id] += 1
            return self._sequences[resource_id]

    def record(
        self,
        action: str,
        actor_id: str,
        resource_type: str,
        resource_id: str,
        details: Optional[Dict[str, Any]] = None,
        previous_state: Optional[str] = None,
        new_state: Optional[str] = None,
    ) -> Optional[AuditEvent]:
        """Record an audit event.

        Returns:
            The stored event, or None if the write failed
        """
        event = AuditEvent(
            action=action,
            actor_id=actor_id,
            resource_type=resource_type,
            resource_id=resource_id,
            sequence=self._next_sequence(resource_id),
            details=details or {},
            previous_state=previous_state,
            new_state=new_state,
        )

        try:
            return self.sink.append_event(event)
        except Exception as e:
            with self._lock:
                self._failure_count += 1
                self._failed_events.append(event)
            logger.error(
                f"Failed to record audit event {action} for "
                f"{resource_type}:{resource_id} (seq {event.sequence}): {e}"
            )
            return None

    def history(self, resource_id: str) -> List[AuditEvent]:
        """All recorded events for a resource, ordered by sequence."""
        return sorted(
            self.store.get_events(resource_id=resource_id),
            key=lambda e: e.sequence,
        )

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def failed_events(self) -> List[AuditEvent]:
        with self._lock:
            return list(self._failed_events)


def find_sequence_gaps(events: Iterable[AuditEvent]) -> Dict[str, List[int]]:
    """Find missing sequence numbers per resource.

    Args:
        events: Audit events, in any order

    Returns:
        Mapping of resource id to the sequence numbers missing between 1
        and the highest one seen. Resources without gaps are omitted.
    """
    seen: Dict[str, set] = {}
    for event in events:
        seen.setdefault(event.resource_id, set()).add(event.sequence)

    gaps: Dict[str, List[int]] = {}
    for resource_id, sequences in seen.items():
        missing = [n for n in range(1, max(sequences) + 1) if n not in sequences]
        if missing:
            gaps[resource_id] = missing
    return gaps
