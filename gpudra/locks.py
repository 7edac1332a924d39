"""Per-node mutual exclusion for NodeAllocationState read-modify-write cycles."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Dict

logger = logging.getLogger(__name__)


@dataclass
class _NodeLockEntry:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0  # handles handed out and not yet released


class NodeLockHandle:
    """
    One caller's use of a node lock.

    A handle counts as a user of the node from ``get`` until its first
    ``release``, whether or not it has acquired the lock yet, so the
    registry never prunes a lock someone may still wait on.
    """

    def __init__(self, registry: "NodeLockRegistry", node: str, entry: _NodeLockEntry) -> None:
        self._registry = registry
        self._node = node
        self._entry = entry
        self._done = False

    @property
    def lock(self) -> threading.Lock:
        return self._entry.lock

    def acquire(self, blocking: bool = True, timeout: float = -1) -> bool:
        return self._entry.lock.acquire(blocking, timeout)

    def release(self) -> None:
        self._entry.lock.release()
        self.close()

    def close(self) -> None:
        """Give up the handle without touching the lock."""
        if not self._done:
            self._done = True
            self._registry._release_user(self._entry)

    def locked(self) -> bool:
        return self._entry.lock.locked()

    def __enter__(self) -> "NodeLockHandle":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


class NodeLockRegistry:
    """
    Hands out handles on one lock per node name.

    Locks are created on first use and live until ``forget`` is called for the
    node (the driver does this when a node is deleted from the cluster).
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: Dict[str, _NodeLockEntry] = {}

    def get(self, node: str) -> NodeLockHandle:
        with self._lock:
            entry = self._entries.get(node)
            if entry is None:
                entry = _NodeLockEntry()
                self._entries[node] = entry
                logger.debug(f"Created lock for node {node}")
            entry.users += 1
            return NodeLockHandle(self, node, entry)

    def _release_user(self, entry: _NodeLockEntry) -> None:
        with self._lock:
            entry.users -= 1

    def forget(self, node: str) -> bool:
        """
        Drop the lock for a node.

        Returns:
            True if the lock was removed, False if it was unknown or still in use
        """
        with self._lock:
            entry = self._entries.get(node)
            if entry is None:
                return False
            if entry.users > 0 or entry.lock.locked():
                logger.warning(f"Not pruning lock for node {node}: {entry.users} handle(s) outstanding")
                return False
            del self._entries[node]
            logger.debug(f"Pruned lock for node {node}")
            return True

    def users(self, node: str) -> int:
        with self._lock:
            entry = self._entries.get(node)
            return entry.users if entry is not None else 0

    def __contains__(self, node: object) -> bool:
        with self._lock:
            return node in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
