"""Audit Store - Abstraction for audit event persistence.

This module provides an interface for audit storage backends,
decoupling audit logic from specific persistence mechanisms.

Design principles:
- Append-only: events are never updated or deleted
- Thread-safe operations
- Hash chain integrity for the file backend
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Generator, List, Optional
import fcntl
import hashlib
import json
import logging
import os
import threading

from firm_governance.common.constants import AuditConstants
from firm_governance.common.exceptions import AuditError
from firm_governance.governance.schemas import AuditEvent

logger = logging.getLogger(__name__)


class AuditLogIntegrityError(AuditError):
    """Raised when audit log integrity check fails."""

    def __init__(self, message: str):
        super().__init__(message)


class AuditStore(ABC):
    """Abstract base class for audit storage backends.

    Implementations must provide thread-safe, append-only storage.
    """

    @abstractmethod
    def append_event(self, event: AuditEvent) -> AuditEvent:
        """Append an audit event to the store.

        Args:
            event: The audit event to append

        Returns:
            The event as stored (hash chain fields populated where supported)

        Raises:
            IOError: If write fails
        """
        pass

    @abstractmethod
    def get_events(
        self,
        resource_id: Optional[str] = None,
        resource_type: Optional[str] = None,
        action: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> Generator[AuditEvent, None, None]:
        """Retrieve audit events with optional filtering.

        Args:
            resource_id: Filter by resource id
            resource_type: Filter by resource type
            action: Filter by action name
            actor_id: Filter by actor

        Yields:
            Matching AuditEvent objects in write order
        """
        pass

    def verify_integrity(self) -> bool:
        """Verify stored events have not been tampered with.

        Backends without integrity metadata return True.
        """
        return True


def _matches(
    event: AuditEvent,
    resource_id: Optional[str],
    resource_type: Optional[str],
    action: Optional[str],
    actor_id: Optional[str],
) -> bool:
    if resource_id and event.resource_id != resource_id:
        return False
    if resource_type and event.resource_type != resource_type:
        return False
    if action and event.action != action:
        return False
    if actor_id and event.actor_id != actor_id:
        return False
    return True


class InMemoryAuditStore(AuditStore):
    """Process-local audit store for tests and single-process use."""

    def __init__(self):
        self._events: List[AuditEvent] = []
        self._lock = threading.Lock()

    def append_event(self, event: AuditEvent) -> AuditEvent:
        with self._lock:
            self._events.append(event)
        return event

    def get_events(
        self,
        resource_id: Optional[str] = None,
        resource_type: Optional[str] = None,
        action: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> Generator[AuditEvent, None, None]:
        with self._lock:
            snapshot = list(self._events)
        for event in snapshot:
            if _matches(event, resource_id, resource_type, action, actor_id):
                yield event

    def __len__(self) -> int:
        return len(self._events)


class FileAuditStore(AuditStore):
    """File-based audit store with JSONL format and hash chain integrity.

    Features:
    - Append-only JSONL file
    - Hash chain for tamper detection
    - Atomic appends with file locking
    """

    DEFAULT_FILENAME = "governance_audit.jsonl"

    def __init__(
        self,
        log_dir: Optional[str] = None,
        filename: str = DEFAULT_FILENAME,
        enable_hash_chain: bool = True,
        hash_algorithm: str = AuditConstants.HASH_ALGORITHM,
        fsync_on_write: bool = False,
    ):
        """Initialize file audit store.

        Args:
            log_dir: Directory for audit logs. Uses FIRMGOV_AUDIT_LOG_DIR if not provided.
            filename: Log file name inside ``log_dir``.
            enable_hash_chain: Whether to enable hash chain integrity.
            hash_algorithm: Hash algorithm for integrity checks.
            fsync_on_write: Whether to fsync after each write (slower but safer).
        """
        if log_dir is None:
            from firm_governance.common.config import get_config
            log_dir = str(get_config().audit_log_dir)
        self.log_dir = Path(log_dir)
        self.log_path = self.log_dir / filename
        self.enable_hash_chain = enable_hash_chain
        self.hash_algorithm = hash_algorithm
        self.fsync_on_write = fsync_on_write

        self._lock = threading.Lock()
        self._last_hash: Optional[str] = None

        self.log_dir.mkdir(parents=True, exist_ok=True)

        if self.enable_hash_chain:
            self._last_hash = self._scan_log_for_last_hash()

    def _scan_log_for_last_hash(self) -> Optional[str]:
        """Read the last hash from the log file."""
        if not self.log_path.exists():
            return None

        last_hash = None
        with open(self.log_path, "r") as f:
            for line in f:
                line = line.strip()
                if line:
                    last_hash = json.loads(line).get("entry_hash")
        return last_hash

    def _compute_hash(self, content: str) -> str:
        hasher = hashlib.new(self.hash_algorithm)
        hasher.update(content.encode("utf-8"))
        return hasher.hexdigest()

    @staticmethod
    def _serialize_for_hash(event_dict: dict) -> str:
        """Serialize an event dict canonically for hash computation."""
        return json.dumps(event_dict, sort_keys=True, ensure_ascii=False, default=str)

    def _chain(self, event: AuditEvent) -> AuditEvent:
        if not self.enable_hash_chain:
            return event

        event_dict = event.model_dump(mode="json")
        event_dict["previous_hash"] = self._last_hash
        event_dict["entry_hash"] = None
        event_dict["entry_hash"] = self._compute_hash(
            self._serialize_for_hash(event_dict)
        )
        return AuditEvent.model_validate(event_dict)

    def append_event(self, event: AuditEvent) -> AuditEvent:
        """Append event to log file with file locking."""
        with self._lock:
            event = self._chain(event)

            fd = os.open(
                str(self.log_path),
                os.O_WRONLY | os.O_CREAT | os.O_APPEND,
                0o600
            )
            try:
                fcntl.flock(fd, fcntl.LOCK_EX)
                try:
                    os.write(fd, (event.to_jsonl() + "\n").encode("utf-8"))
                    if self.fsync_on_write:
                        os.fsync(fd)
                finally:
                    fcntl.flock(fd, fcntl.LOCK_UN)
            finally:
                os.close(fd)

            if self.enable_hash_chain:
                self._last_hash = event.entry_hash

            return event

    def get_events(
        self,
        resource_id: Optional[str] = None,
        resource_type: Optional[str] = None,
        action: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> Generator[AuditEvent, None, None]:
        if not self.log_path.exists():
            return

        with open(self.log_path, "r") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    event = AuditEvent.from_jsonl(line)
                except ValueError as e:
                    logger.warning(f"Skipped malformed audit entry: {e}")
                    continue
                if _matches(event, resource_id, resource_type, action, actor_id):
                    yield event

    def verify_integrity(self) -> bool:
        """Verify hash chain integrity of the log file.

        Raises:
            AuditLogIntegrityError: If the chain is broken or an entry was altered
        """
        if not self.enable_hash_chain or not self.log_path.exists():
            return True

        previous_hash = None
        with open(self.log_path, "r") as f:
            for line_number, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue

                try:
                    event_dict = json.loads(line)
                except json.JSONDecodeError as e:
                    raise AuditLogIntegrityError(
                        f"Malformed JSON at line {line_number}: {e}"
                    )

                if event_dict.get("previous_hash") != previous_hash:
                    raise AuditLogIntegrityError(
                        f"Hash chain broken at line {line_number}. "
                        f"Expected previous_hash={previous_hash}, "
                        f"got {event_dict.get('previous_hash')}"
                    )

                stored_hash = event_dict.get("entry_hash")
                event_dict["entry_hash"] = None
                if self._compute_hash(self._serialize_for_hash(event_dict)) != stored_hash:
                    raise AuditLogIntegrityError(
                        f"Entry hash mismatch at line {line_number}. "
                        f"Entry may have been tampered with."
                    )
                previous_hash = stored_hash

        return True

    def get_last_hash(self) -> Optional[str]:
        return self._last_hash

    def get_entry_count(self) -> int:
        if not self.log_path.exists():
            return 0
        with open(self.log_path, "r") as f:
            return sum(1 for line in f if line.strip())



def create_audit_store(config=None) -> AuditStore:
    """Build the audit store selected by FIRMGOV_AUDIT_STORAGE_TYPE."""
    from firm_governance.common.config import AuditStorageType, get_config

    config = config or get_config()
    if config.audit_storage_type == AuditStorageType.FILE:
        return FileAuditStore(log_dir=str(config.audit_log_dir))
    return InMemoryAuditStore()
