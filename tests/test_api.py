import pytest

from app import build_app
from conftest import NAMESPACE
from gpudra.config import Config
from gpudra.state import GPU_CLAIM_PARAMETERS_PLURAL, GROUP_NAME


@pytest.fixture
def http(api):
    app = build_app(Config(namespace=NAMESPACE), api=api)
    return app.test_client()


def test_healthz(http):
    assert http.get("/healthz").get_json() == {"status": "ok"}


def test_filter_commit_release_over_http(api, http, add_node):
    add_node("node-a", ["GPU-a"])
    add_node("node-b", ["GPU-b", "GPU-c"])
    api.put(GPU_CLAIM_PARAMETERS_PLURAL, NAMESPACE, "two", {"metadata": {"name": "two"}, "spec": {"count": 2}})
    claim = {
        "uid": "c1",
        "namespace": NAMESPACE,
        "parametersRef": {"apiGroup": GROUP_NAME, "kind": "GpuClaimParameters", "name": "two"},
    }

    resp = http.post("/unsuitable-nodes", json={"claims": [claim], "potentialNodes": ["node-a", "node-b"]})
    assert resp.status_code == 200
    assert resp.get_json()["claims"] == [{"uid": "c1", "unsuitableNodes": ["node-a"]}]

    resp = http.post("/allocate", json={"claims": [claim], "selectedNode": "node-b"})
    assert resp.status_code == 200
    result = resp.get_json()["claims"][0]
    assert "error" not in result
    assert result["allocation"]["availableOnNodes"]["nodeSelectorTerms"][0]["matchFields"][0]["values"] == ["node-b"]
    assert api.nas("node-b").spec.allocated_claims["c1"].uuids() == ["GPU-b", "GPU-c"]

    resp = http.post("/deallocate", json={"claim": dict(claim, allocation=result["allocation"])})
    assert resp.status_code == 200
    assert api.nas("node-b").spec.allocated_claims == {}


def test_allocate_without_staging_reports_error(http, add_node):
    add_node("node-a", ["GPU-a"])
    resp = http.post("/allocate", json={"claims": [{"uid": "c1"}], "selectedNode": "node-a"})
    assert resp.status_code == 200
    assert "no allocations generated" in resp.get_json()["claims"][0]["error"]


def test_validation_errors_map_to_400(http):
    resp = http.post("/unsuitable-nodes", json={"claims": [{"namespace": NAMESPACE}], "potentialNodes": ["n"]})
    assert resp.status_code == 400
    assert http.post("/allocate", json={}).status_code == 400


def test_release_on_missing_record_maps_to_404(http):
    claim = {
        "uid": "c1",
        "allocation": {"availableOnNodes": {"nodeSelectorTerms": [{"matchFields": [{"values": ["ghost"]}]}]}},
    }
    resp = http.post("/deallocate", json={"claim": claim})
    assert resp.status_code == 404
    assert resp.get_json()["node"] == "ghost"


def test_forget_node(http):
    resp = http.delete("/nodes/node-a")
    assert resp.get_json() == {"status": "ok", "node": "node-a"}
