"""In-memory staging of speculative allocations between filter and commit."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Tuple

from gpudra.state import AllocatedDevices

logger = logging.getLogger(__name__)


@dataclass
class StagingEntry:
    node: str
    devices: AllocatedDevices


class StagingCache:
    """
    Pending allocations keyed by claim UID.

    A claim is staged on at most one node at a time; staging it again on any
    node replaces the previous entry. Entries are never persisted.
    """

    def __init__(self) -> None:
        # Re-entrant so a visit callback may remove entries.
        self._lock = threading.RLock()
        self._entries: Dict[str, StagingEntry] = {}

    def exists(self, claim_uid: str, node: str) -> bool:
        with self._lock:
            entry = self._entries.get(claim_uid)
            return entry is not None and entry.node == node

    def get(self, claim_uid: str, node: str) -> AllocatedDevices:
        with self._lock:
            entry = self._entries.get(claim_uid)
            if entry is None or entry.node != node:
                raise KeyError(f"no staged allocation for claim '{claim_uid}' on node '{node}'")
            return entry.devices

    def set(self, claim_uid: str, node: str, devices: AllocatedDevices) -> None:
        with self._lock:
            previous = self._entries.get(claim_uid)
            if previous is not None and previous.node != node:
                logger.debug(f"Claim {claim_uid} restaged from {previous.node} to {node}")
            self._entries[claim_uid] = StagingEntry(node=node, devices=devices)

    def remove(self, claim_uid: str) -> None:
        with self._lock:
            self._entries.pop(claim_uid, None)

    def visit(self, node: str, fn: Callable[[str, AllocatedDevices], None]) -> None:
        with self._lock:
            staged: List[Tuple[str, AllocatedDevices]] = [
                (uid, entry.devices) for uid, entry in self._entries.items() if entry.node == node
            ]
            for claim_uid, devices in staged:
                fn(claim_uid, devices)

    def remove_node(self, node: str) -> int:
        with self._lock:
            stale = [uid for uid, entry in self._entries.items() if entry.node == node]
            for uid in stale:
                del self._entries[uid]
            return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
