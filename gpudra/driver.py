"""Allocation engine: filter, commit and release of GPU claims per node."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

from kubernetes import client

from gpudra.allocator import DeviceRequest, allocate_devices
from gpudra.client import NodeStateClient
from gpudra.errors import (
    AllocationError,
    ConsistencyError,
    NodeNotReadyError,
    ValidationError,
)
from gpudra.locks import NodeLockRegistry
from gpudra.staging import StagingCache
from gpudra.state import (
    GPU_CLAIM_PARAMETERS_KIND,
    AllocatedDevices,
    AllocationResult,
    ClaimAllocation,
    DeviceClassParameters,
    DeviceType,
    GpuClaimParameters,
    NodeAllocationState,
    NodeAllocationStateStatus,
    ResourceClaim,
    unique,
)

logger = logging.getLogger(__name__)

OnSuccessCallback = Callable[[], None]


def _claim_kind(claim_parameters: Any) -> str:
    if isinstance(claim_parameters, GpuClaimParameters):
        return GPU_CLAIM_PARAMETERS_KIND
    raise ValidationError(f"unknown ResourceClaimParameters kind: {type(claim_parameters).__name__}")


class GpuDriver:
    """GPU-specific half of the engine. Owns the staging cache."""

    def __init__(self, pending: Optional[StagingCache] = None) -> None:
        self.pending = pending or StagingCache()

    def validate_claim_parameters(self, claim_params: GpuClaimParameters) -> None:
        if claim_params.count < 1:
            raise ValidationError(f"invalid number of GPUs requested: {claim_params.count}")

    def allocate(
        self,
        crd: NodeAllocationState,
        claim: ResourceClaim,
        claim_params: GpuClaimParameters,
        class_params: Optional[DeviceClassParameters],
        selected_node: str,
    ) -> OnSuccessCallback:
        claim_uid = claim.uid

        if not self.pending.exists(claim_uid, selected_node):
            raise ConsistencyError(
                f"no allocations generated for claim '{claim_uid}' on node '{selected_node}' yet",
                node=selected_node,
                claim=claim_uid,
            )

        crd.spec.allocated_claims[claim_uid] = self.pending.get(claim_uid, selected_node)

        def on_success() -> None:
            self.pending.remove(claim_uid)

        return on_success

    def deallocate(self, crd: NodeAllocationState, claim: ResourceClaim) -> None:
        self.pending.remove(claim.uid)

    def unsuitable_node(
        self,
        crd: NodeAllocationState,
        pod: Optional[Dict[str, Any]],
        gpucas: List[ClaimAllocation],
        allcas: List[ClaimAllocation],
        potential_node: str,
    ) -> None:
        """
        Fit the GPU claims of a batch onto ``potential_node``.

        ``crd`` is a working copy: staged-but-uncommitted claims are folded
        into its allocated claims so their devices count as taken. If any claim
        comes up short, the node is marked unsuitable for every claim in
        ``allcas`` and nothing is staged.
        """
        def reconcile(claim_uid: str, allocation: AllocatedDevices) -> None:
            if claim_uid in crd.spec.allocated_claims:
                logger.debug(f"Dropping staged claim {claim_uid} on {potential_node}: already committed")
                self.pending.remove(claim_uid)
            else:
                crd.spec.allocated_claims[claim_uid] = allocation

        self.pending.visit(potential_node, reconcile)

        allocated = self._allocate(crd, gpucas)

        for ca in gpucas:
            claim_uid = ca.claim.uid
            if ca.claim_parameters.count != len(allocated[claim_uid]):
                logger.info(
                    f"Node {potential_node} cannot satisfy claim {claim_uid}: "
                    f"requested {ca.claim_parameters.count}, available {len(allocated[claim_uid])}"
                )
                for other in allcas:
                    other.unsuitable_nodes.append(potential_node)
                return

        for ca in gpucas:
            claim_uid = ca.claim.uid
            self.pending.set(claim_uid, potential_node, AllocatedDevices.for_gpus(allocated[claim_uid]))
            logger.info(f"Staged claim {claim_uid} on {potential_node}: {allocated[claim_uid]}")

    def _allocate(self, crd: NodeAllocationState, gpucas: List[ClaimAllocation]) -> Dict[str, List[str]]:
        committed: List[str] = []
        for allocation in crd.spec.allocated_claims.values():
            kind = allocation.type()
            if kind is DeviceType.GPU:
                committed.extend(allocation.uuids())
            else:
                raise ValueError(f"unknown device type: {kind}")

        requests = []
        for ca in gpucas:
            existing = crd.spec.allocated_claims.get(ca.claim.uid)
            requests.append(DeviceRequest(
                claim_uid=ca.claim.uid,
                count=ca.claim_parameters.count,
                existing=existing.uuids() if existing is not None else None,
            ))

        return allocate_devices(crd.spec.allocatable_devices, committed, requests)


class Driver:
    """
    Entry points called by the scheduling authority.

    Every read-modify-write of a NodeAllocationState happens while holding
    that node's lock from ``self.lock``.
    """

    def __init__(
        self,
        api: client.CustomObjectsApi,
        namespace: str,
        timeout: Optional[float] = None,
        gpu: Optional[GpuDriver] = None,
    ) -> None:
        self.api = api
        self.namespace = namespace
        self.timeout = timeout
        self.lock = NodeLockRegistry()
        self.gpu = gpu or GpuDriver()

    def _client(self, node: str) -> NodeStateClient:
        crd = NodeAllocationState(name=node, namespace=self.namespace)
        return NodeStateClient(crd, self.api, timeout=self.timeout)

    def validate_claim_parameters(self, claim_parameters: Any) -> None:
        kind = _claim_kind(claim_parameters)
        if kind == GPU_CLAIM_PARAMETERS_KIND:
            self.gpu.validate_claim_parameters(claim_parameters)

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------
    def allocate(self, cas: List[ClaimAllocation], selected_node: str) -> None:
        """Commit every claim of a batch, recording the result or error on each."""
        for ca in cas:
            try:
                ca.allocation = self.allocate_claim(
                    ca.claim, ca.claim_parameters, ca.class_parameters, selected_node
                )
                ca.error = None
            except AllocationError as e:
                logger.error(f"Allocation of claim {ca.claim.uid} on '{selected_node}' failed: {e}")
                ca.allocation = None
                ca.error = e

    def allocate_claim(
        self,
        claim: ResourceClaim,
        claim_parameters: Any,
        class_parameters: Optional[DeviceClassParameters],
        selected_node: str,
    ) -> AllocationResult:
        if not selected_node:
            raise ValidationError("immediate allocations are not supported", claim=claim.uid)

        with self.lock.get(selected_node):
            nas = self._client(selected_node)
            crd = nas.get()

            if crd.status != NodeAllocationStateStatus.READY:
                raise NodeNotReadyError(
                    f"NodeAllocationStateStatus: {crd.status.value}", node=selected_node, claim=claim.uid
                )

            if claim.uid in crd.spec.allocated_claims:
                logger.debug(f"Claim {claim.uid} already allocated on {selected_node}")
                return AllocationResult.for_node(selected_node, shareable=True)

            kind = _claim_kind(claim_parameters)
            if kind == GPU_CLAIM_PARAMETERS_KIND:
                on_success = self.gpu.allocate(crd, claim, claim_parameters, class_parameters, selected_node)
            else:
                raise ValidationError(f"unknown ResourceClaimParameters kind: {kind}", claim=claim.uid)

            # StoreError propagates and leaves the staged entry for a retry.
            nas.update(crd.spec)
            on_success()

        logger.info(f"Allocated claim {claim.uid} on {selected_node}")
        return AllocationResult.for_node(selected_node, shareable=True)

    # ------------------------------------------------------------------
    # Release
    # ------------------------------------------------------------------
    def deallocate(self, claim: ResourceClaim) -> None:
        # No speculative hold may outlive the claim, whatever node it names.
        self.gpu.pending.remove(claim.uid)

        selected_node = claim.selected_node()
        if not selected_node:
            return

        with self.lock.get(selected_node):
            nas = self._client(selected_node)
            crd = nas.get()

            devices = crd.spec.allocated_claims.get(claim.uid)
            if devices is None:
                return

            kind = devices.type()
            if kind is DeviceType.GPU:
                self.gpu.deallocate(crd, claim)
            else:
                raise ValidationError(f"unknown AllocatedDevices type: {kind}", node=selected_node, claim=claim.uid)

            del crd.spec.allocated_claims[claim.uid]
            nas.update(crd.spec)

        logger.info(f"Deallocated claim {claim.uid} from {selected_node}")

    # ------------------------------------------------------------------
    # Filter
    # ------------------------------------------------------------------
    def unsuitable_nodes(
        self,
        pod: Optional[Dict[str, Any]],
        cas: List[ClaimAllocation],
        potential_nodes: List[str],
    ) -> None:
        for node in potential_nodes:
            try:
                self.unsuitable_node(pod, cas, node)
            except AllocationError as e:
                raise type(e)(f"error processing node '{node}': {e}", node=node, claim=e.claim) from e

        for ca in cas:
            ca.unsuitable_nodes = unique(ca.unsuitable_nodes)

    def unsuitable_node(
        self,
        pod: Optional[Dict[str, Any]],
        allcas: List[ClaimAllocation],
        potential_node: str,
    ) -> None:
        with self.lock.get(potential_node):
            nas = self._client(potential_node)
            try:
                crd = nas.get()
            except AllocationError as e:
                logger.warning(f"Marking {potential_node} unsuitable: {e}")
                for ca in allcas:
                    ca.unsuitable_nodes.append(potential_node)
                return

            if crd.status != NodeAllocationStateStatus.READY:
                logger.info(f"Marking {potential_node} unsuitable: status {crd.status.value}")
                for ca in allcas:
                    ca.unsuitable_nodes.append(potential_node)
                return

            per_kind_cas: Dict[str, List[ClaimAllocation]] = {GPU_CLAIM_PARAMETERS_KIND: []}
            for ca in allcas:
                per_kind_cas[_claim_kind(ca.claim_parameters)].append(ca)

            for kind, kind_cas in per_kind_cas.items():
                if kind == GPU_CLAIM_PARAMETERS_KIND:
                    self.gpu.unsuitable_node(crd, pod, kind_cas, allcas, potential_node)
                else:
                    raise ValidationError(f"unknown ResourceClaimParameters kind: {kind}", node=potential_node)

    # ------------------------------------------------------------------
    # Node lifecycle
    # ------------------------------------------------------------------
    def forget_node(self, node: str) -> None:
        """Drop staged claims and the lock for a node that left the cluster."""
        dropped = self.gpu.pending.remove_node(node)
        self.lock.forget(node)
        logger.info(f"Forgot node {node} ({dropped} staged claims dropped)")
