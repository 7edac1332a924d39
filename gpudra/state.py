"""NodeAllocationState record, device kinds, claims and parameter types."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


# ----------------------------- API identifiers -----------------------------

GROUP_NAME = "gpu.resource.example.com"
NAS_GROUP_NAME = f"nas.{GROUP_NAME}"
VERSION = "v1alpha1"

NAS_KIND = "NodeAllocationState"
NAS_PLURAL = "nodeallocationstates"

GPU_CLAIM_PARAMETERS_KIND = "GpuClaimParameters"
GPU_CLAIM_PARAMETERS_PLURAL = "gpuclaimparameters"
DEVICE_CLASS_PARAMETERS_KIND = "DeviceClassParameters"
DEVICE_CLASS_PARAMETERS_PLURAL = "deviceclassparameters"


class DeviceType(Enum):
    """Closed set of device kinds. Every match site raises on anything else."""
    GPU = "gpu"


class NodeAllocationStateStatus(Enum):
    NOT_READY = "NotReady"
    READY = "Ready"


# ----------------------------- devices -----------------------------

@dataclass(frozen=True)
class AllocatableGpu:
    uuid: str
    product_name: str = ""


@dataclass(frozen=True)
class AllocatableDevice:
    gpu: Optional[AllocatableGpu] = None

    def type(self) -> DeviceType:
        if self.gpu is not None:
            return DeviceType.GPU
        raise ValueError("allocatable device carries no known device type")

    def to_dict(self) -> Dict[str, Any]:
        kind = self.type()
        if kind is DeviceType.GPU:
            return {"gpu": {"uuid": self.gpu.uuid, "productName": self.gpu.product_name}}
        raise ValueError(f"unknown device type: {kind}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AllocatableDevice":
        if "gpu" in data:
            gpu = data["gpu"] or {}
            return cls(gpu=AllocatableGpu(uuid=gpu["uuid"], product_name=gpu.get("productName", "")))
        raise ValueError(f"unknown allocatable device: {sorted(data)}")


@dataclass(frozen=True)
class AllocatedGpu:
    uuid: str


@dataclass
class AllocatedGpus:
    devices: List[AllocatedGpu] = field(default_factory=list)


@dataclass
class AllocatedDevices:
    """Devices bound to a single claim, tagged by kind."""
    gpu: Optional[AllocatedGpus] = None

    def type(self) -> DeviceType:
        if self.gpu is not None:
            return DeviceType.GPU
        raise ValueError("allocated devices carry no known device type")

    def uuids(self) -> List[str]:
        kind = self.type()
        if kind is DeviceType.GPU:
            return [d.uuid for d in self.gpu.devices]
        raise ValueError(f"unknown device type: {kind}")

    @classmethod
    def for_gpus(cls, uuids: List[str]) -> "AllocatedDevices":
        return cls(gpu=AllocatedGpus(devices=[AllocatedGpu(uuid=u) for u in uuids]))

    def to_dict(self) -> Dict[str, Any]:
        kind = self.type()
        if kind is DeviceType.GPU:
            return {"gpu": {"devices": [{"uuid": d.uuid} for d in self.gpu.devices]}}
        raise ValueError(f"unknown device type: {kind}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AllocatedDevices":
        if "gpu" in data:
            gpu = data["gpu"] or {}
            return cls.for_gpus([d["uuid"] for d in gpu.get("devices") or []])
        raise ValueError(f"unknown allocated devices: {sorted(data)}")


# ----------------------------- node record -----------------------------

@dataclass
class NodeAllocationStateSpec:
    allocatable_devices: List[AllocatableDevice] = field(default_factory=list)
    allocated_claims: Dict[str, AllocatedDevices] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allocatableDevices": [d.to_dict() for d in self.allocatable_devices],
            "allocatedClaims": {uid: a.to_dict() for uid, a in self.allocated_claims.items()},
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "NodeAllocationStateSpec":
        data = data or {}
        return cls(
            allocatable_devices=[AllocatableDevice.from_dict(d) for d in data.get("allocatableDevices") or []],
            allocated_claims={
                uid: AllocatedDevices.from_dict(a) for uid, a in (data.get("allocatedClaims") or {}).items()
            },
        )


@dataclass
class NodeAllocationState:
    """Durable per-node record: inventory plus the claims committed against it."""
    name: str
    namespace: str
    status: NodeAllocationStateStatus = NodeAllocationStateStatus.NOT_READY
    spec: NodeAllocationStateSpec = field(default_factory=NodeAllocationStateSpec)
    # Carried through from the store, never compared on write.
    resource_version: Optional[str] = None

    def deep_copy(self) -> "NodeAllocationState":
        return copy.deepcopy(self)

    def allocated_uuids(self) -> List[str]:
        uuids: List[str] = []
        for allocation in self.spec.allocated_claims.values():
            uuids.extend(allocation.uuids())
        return uuids

    def to_dict(self) -> Dict[str, Any]:
        metadata: Dict[str, Any] = {"name": self.name, "namespace": self.namespace}
        if self.resource_version:
            metadata["resourceVersion"] = self.resource_version
        return {
            "apiVersion": f"{NAS_GROUP_NAME}/{VERSION}",
            "kind": NAS_KIND,
            "metadata": metadata,
            "spec": self.spec.to_dict(),
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NodeAllocationState":
        metadata = data.get("metadata") or {}
        return cls(
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace", ""),
            status=NodeAllocationStateStatus(data.get("status") or NodeAllocationStateStatus.NOT_READY.value),
            spec=NodeAllocationStateSpec.from_dict(data.get("spec")),
            resource_version=metadata.get("resourceVersion"),
        )


# ----------------------------- parameters -----------------------------

@dataclass
class GpuClaimParameters:
    count: int = 1


@dataclass
class DeviceSelector:
    type: DeviceType = DeviceType.GPU
    name: str = "*"


@dataclass
class DeviceClassParameters:
    device_selector: List[DeviceSelector] = field(default_factory=lambda: [DeviceSelector()])


# ----------------------------- claims -----------------------------

@dataclass
class ParametersRef:
    api_group: str
    kind: str
    name: str


@dataclass
class ResourceClass:
    name: str
    parameters_ref: Optional[ParametersRef] = None


@dataclass
class AllocationResult:
    """Where a claim was allocated. Encoded as a node selector on metadata.name."""
    available_on_nodes: Dict[str, Any]
    shareable: bool = True

    @classmethod
    def for_node(cls, node: str, shareable: bool = True) -> "AllocationResult":
        selector = {
            "nodeSelectorTerms": [
                {"matchFields": [{"key": "metadata.name", "operator": "In", "values": [node]}]}
            ]
        }
        return cls(available_on_nodes=selector, shareable=shareable)

    def selected_node(self) -> str:
        try:
            return self.available_on_nodes["nodeSelectorTerms"][0]["matchFields"][0]["values"][0]
        except (KeyError, IndexError, TypeError):
            return ""

    def to_dict(self) -> Dict[str, Any]:
        return {"availableOnNodes": self.available_on_nodes, "shareable": self.shareable}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AllocationResult":
        return cls(available_on_nodes=data.get("availableOnNodes") or {}, shareable=bool(data.get("shareable", True)))


@dataclass
class ResourceClaim:
    uid: str
    namespace: str = "default"
    name: str = ""
    parameters_ref: Optional[ParametersRef] = None
    allocation: Optional[AllocationResult] = None

    def selected_node(self) -> str:
        if self.allocation is None:
            return ""
        return self.allocation.selected_node()


@dataclass
class ClaimAllocation:
    """One claim of a scheduling batch, with the per-node verdicts filled in."""
    claim: ResourceClaim
    claim_parameters: Any = None
    resource_class: Optional[ResourceClass] = None
    class_parameters: Optional[DeviceClassParameters] = None
    unsuitable_nodes: List[str] = field(default_factory=list)
    allocation: Optional[AllocationResult] = None
    error: Optional[Exception] = None


def unique(items: List[str]) -> List[str]:
    seen = set()
    out: List[str] = []
    for item in items:
        if item not in seen:
            seen.add(item)
            out.append(item)
    return out
