"""Error taxonomy for the allocation engine."""

from __future__ import annotations

from typing import Optional


class AllocationError(Exception):
    """Base class for every error the engine surfaces to its caller."""

    def __init__(self, message: str, node: Optional[str] = None, claim: Optional[str] = None) -> None:
        super().__init__(message)
        self.node = node
        self.claim = claim

    def context(self) -> dict:
        return {"node": self.node, "claim": self.claim}


class NotFoundError(AllocationError):
    """The NodeAllocationState for a node does not exist."""


class StoreError(AllocationError):
    """Generic failure talking to the durable store."""


class NodeNotReadyError(AllocationError):
    """The node record exists but inventory discovery has not completed."""


class ValidationError(AllocationError):
    """Malformed claim/class parameters or an unsupported request."""


class ConsistencyError(AllocationError):
    """Commit found no staged allocation for the claim on the selected node."""
