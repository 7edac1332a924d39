import pytest

from gpudra.allocator import DeviceRequest, allocate_devices, free_gpus
from gpudra.state import AllocatableDevice, AllocatableGpu


def inventory(*uuids):
    return [AllocatableDevice(gpu=AllocatableGpu(uuid=u)) for u in uuids]


def test_free_pool_excludes_committed_and_is_sorted():
    assert free_gpus(inventory("GPU-c", "GPU-a", "GPU-b"), ["GPU-b"]) == ["GPU-a", "GPU-c"]


def test_batch_order_is_priority_and_no_device_is_shared():
    result = allocate_devices(
        inventory("GPU-a", "GPU-b", "GPU-c"),
        [],
        [DeviceRequest("c1", 2), DeviceRequest("c2", 2)],
    )
    assert result["c1"] == ["GPU-a", "GPU-b"]
    assert result["c2"] == ["GPU-c"]
    assert not set(result["c1"]) & set(result["c2"])


def test_existing_assignment_returned_unchanged():
    result = allocate_devices(
        inventory("GPU-a", "GPU-b"),
        ["GPU-b"],
        [DeviceRequest("c1", 1, existing=["GPU-b"]), DeviceRequest("c2", 1)],
    )
    assert result == {"c1": ["GPU-b"], "c2": ["GPU-a"]}


def test_shortfall_returns_short_list():
    result = allocate_devices(inventory("GPU-a", "GPU-b"), [], [DeviceRequest("c2", 3)])
    assert result["c2"] == ["GPU-a", "GPU-b"]


def test_unknown_device_type_raises():
    with pytest.raises(ValueError):
        allocate_devices([AllocatableDevice()], [], [DeviceRequest("c1", 1)])
