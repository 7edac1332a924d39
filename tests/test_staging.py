import pytest

from gpudra.staging import StagingCache
from gpudra.state import AllocatedDevices


def test_set_get_exists():
    cache = StagingCache()
    devices = AllocatedDevices.for_gpus(["GPU-a"])
    cache.set("c1", "node-a", devices)

    assert cache.exists("c1", "node-a")
    assert not cache.exists("c1", "node-b")
    assert cache.get("c1", "node-a").uuids() == ["GPU-a"]
    with pytest.raises(KeyError):
        cache.get("c1", "node-b")


def test_staging_on_new_node_supersedes_previous():
    cache = StagingCache()
    cache.set("c1", "node-a", AllocatedDevices.for_gpus(["GPU-a"]))
    cache.set("c1", "node-b", AllocatedDevices.for_gpus(["GPU-b"]))

    assert len(cache) == 1
    assert not cache.exists("c1", "node-a")
    assert cache.get("c1", "node-b").uuids() == ["GPU-b"]


def test_remove_is_noop_when_absent():
    cache = StagingCache()
    cache.remove("missing")
    cache.set("c1", "node-a", AllocatedDevices.for_gpus(["GPU-a"]))
    cache.remove("c1")
    assert len(cache) == 0


def test_visit_only_sees_node_and_may_remove():
    cache = StagingCache()
    cache.set("c1", "node-a", AllocatedDevices.for_gpus(["GPU-1"]))
    cache.set("c2", "node-a", AllocatedDevices.for_gpus(["GPU-2"]))
    cache.set("c3", "node-b", AllocatedDevices.for_gpus(["GPU-3"]))

    seen = {}

    def fn(claim_uid, devices):
        seen[claim_uid] = devices.uuids()
        cache.remove(claim_uid)

    cache.visit("node-a", fn)

    assert seen == {"c1": ["GPU-1"], "c2": ["GPU-2"]}
    assert len(cache) == 1
    assert cache.exists("c3", "node-b")


def test_remove_node():
    cache = StagingCache()
    cache.set("c1", "node-a", AllocatedDevices.for_gpus(["GPU-1"]))
    cache.set("c2", "node-b", AllocatedDevices.for_gpus(["GPU-2"]))

    assert cache.remove_node("node-a") == 1
    assert not cache.exists("c1", "node-a")
    assert cache.exists("c2", "node-b")
