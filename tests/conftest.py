import copy
import sys
import threading
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

import pytest
from kubernetes.client.exceptions import ApiException

from gpudra.driver import Driver
from gpudra.state import (
    NAS_PLURAL,
    AllocatableDevice,
    AllocatableGpu,
    ClaimAllocation,
    GpuClaimParameters,
    NodeAllocationState,
    NodeAllocationStateSpec,
    NodeAllocationStateStatus,
    ResourceClaim,
)

NAMESPACE = "gpu-system"


class FakeCustomObjectsApi:
    """In-memory stand-in for kubernetes.client.CustomObjectsApi."""

    def __init__(self):
        self._lock = threading.Lock()
        self.objects = {}
        self.writes = 0
        self.fail_writes = 0
        self.fail_reads = 0
        self._rv = 0

    def _key(self, plural, namespace, name):
        return (plural, namespace, name)

    def _bump(self, body):
        self._rv += 1
        body.setdefault("metadata", {})["resourceVersion"] = str(self._rv)

    def put(self, plural, namespace, name, body):
        with self._lock:
            body = copy.deepcopy(body)
            self._bump(body)
            self.objects[self._key(plural, namespace, name)] = body

    def get_namespaced_custom_object(self, group, version, namespace, plural, name, **kwargs):
        with self._lock:
            if self.fail_reads:
                self.fail_reads -= 1
                raise ApiException(status=500, reason="Internal Server Error")
            obj = self.objects.get(self._key(plural, namespace, name))
            if obj is None:
                raise ApiException(status=404, reason="Not Found")
            return copy.deepcopy(obj)

    def get_cluster_custom_object(self, group, version, plural, name, **kwargs):
        return self.get_namespaced_custom_object(group, version, None, plural, name, **kwargs)

    def create_namespaced_custom_object(self, group, version, namespace, plural, body, **kwargs):
        with self._lock:
            key = self._key(plural, namespace, body["metadata"]["name"])
            if key in self.objects:
                raise ApiException(status=409, reason="AlreadyExists")
            body = copy.deepcopy(body)
            self._bump(body)
            self.objects[key] = body
            self.writes += 1
            return copy.deepcopy(body)

    def replace_namespaced_custom_object(self, group, version, namespace, plural, name, body, **kwargs):
        with self._lock:
            if self.fail_writes:
                self.fail_writes -= 1
                raise ApiException(status=500, reason="Internal Server Error")
            key = self._key(plural, namespace, name)
            if key not in self.objects:
                raise ApiException(status=404, reason="Not Found")
            body = copy.deepcopy(body)
            self._bump(body)
            self.objects[key] = body
            self.writes += 1
            return copy.deepcopy(body)

    def delete_namespaced_custom_object(self, group, version, namespace, plural, name, body=None, **kwargs):
        with self._lock:
            key = self._key(plural, namespace, name)
            if key not in self.objects:
                raise ApiException(status=404, reason="Not Found")
            del self.objects[key]
            self.writes += 1

    def nas(self, node, namespace=NAMESPACE):
        obj = self.objects[self._key(NAS_PLURAL, namespace, node)]
        return NodeAllocationState.from_dict(copy.deepcopy(obj))


def make_nas(node, uuids, status=NodeAllocationStateStatus.READY, allocated=None, namespace=NAMESPACE):
    return NodeAllocationState(
        name=node,
        namespace=namespace,
        status=status,
        spec=NodeAllocationStateSpec(
            allocatable_devices=[AllocatableDevice(gpu=AllocatableGpu(uuid=u)) for u in uuids],
            allocated_claims=dict(allocated or {}),
        ),
    )


def gpu_claim(uid, count=1):
    return ClaimAllocation(claim=ResourceClaim(uid=uid), claim_parameters=GpuClaimParameters(count=count))


@pytest.fixture
def api():
    return FakeCustomObjectsApi()


@pytest.fixture
def add_node(api):
    def _add(node, uuids, **kwargs):
        nas = make_nas(node, uuids, **kwargs)
        api.put(NAS_PLURAL, nas.namespace, node, nas.to_dict())
        return nas
    return _add


@pytest.fixture
def driver(api):
    return Driver(api, namespace=NAMESPACE)
