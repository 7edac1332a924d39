"""Greedy GPU assignment for a batch of claims on one node."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from gpudra.state import AllocatableDevice, DeviceType


@dataclass
class DeviceRequest:
    claim_uid: str
    count: int
    existing: Optional[List[str]] = None  # UUIDs already committed for this claim on the node


def free_gpus(inventory: Iterable[AllocatableDevice], committed: Iterable[str]) -> List[str]:
    """Inventory GPU UUIDs minus the committed ones, sorted by UUID."""
    available = set()
    for device in inventory:
        kind = device.type()
        if kind is DeviceType.GPU:
            available.add(device.gpu.uuid)
        else:
            raise ValueError(f"unknown device type: {kind}")
    available.difference_update(committed)
    return sorted(available)


def allocate_devices(
    inventory: Iterable[AllocatableDevice],
    committed: Iterable[str],
    requests: List[DeviceRequest],
) -> Dict[str, List[str]]:
    """
    Assign GPUs to each request in batch order.

    A request with an existing assignment gets it back unchanged. Any other
    request takes up to ``count`` devices from the free pool; a shorter list
    means the node could not satisfy it. Earlier requests win, there is no
    backtracking.

    Args:
        inventory: every device on the node
        committed: UUIDs already bound to other claims (durable or staged)
        requests: claims in priority order

    Returns:
        claim UID -> assigned GPU UUIDs
    """
    pool = free_gpus(inventory, committed)
    allocated: Dict[str, List[str]] = {}

    for request in requests:
        if request.existing is not None:
            allocated[request.claim_uid] = list(request.existing)
            continue

        take = max(0, min(request.count, len(pool)))
        allocated[request.claim_uid] = pool[:take]
        del pool[:take]

    return allocated
