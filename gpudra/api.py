from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from flask import Flask, jsonify, request

from gpudra.driver import Driver
from gpudra.errors import (
    AllocationError,
    ConsistencyError,
    NodeNotReadyError,
    NotFoundError,
    StoreError,
    ValidationError,
)
from gpudra.params import ParametersResolver
from gpudra.state import (
    AllocationResult,
    ClaimAllocation,
    ParametersRef,
    ResourceClaim,
    ResourceClass,
)

logger = logging.getLogger(__name__)

# Most specific first.
ERROR_STATUS = [
    (ValidationError, 400),
    (NotFoundError, 404),
    (ConsistencyError, 409),
    (NodeNotReadyError, 503),
    (StoreError, 502),
]


def error_status(e: AllocationError) -> int:
    for cls, status in ERROR_STATUS:
        if isinstance(e, cls):
            return status
    return 500


def create_app(driver: Driver, resolver: ParametersResolver) -> Flask:
    app = Flask(__name__)
    app.config['driver'] = driver
    app.config['resolver'] = resolver

    @app.errorhandler(AllocationError)
    def handle_allocation_error(e: AllocationError) -> Any:
        body = {"error": str(e)}
        body.update({k: v for k, v in e.context().items() if v})
        return jsonify(body), error_status(e)

    def claim_allocations(specs: List[Dict[str, Any]]) -> List[ClaimAllocation]:
        cas = []
        for spec in specs:
            claim = _claim_from_dict(spec)
            resource_class = _class_from_dict(spec.get("class"))
            class_params = resolver.get_class_parameters(resource_class)
            claim_params = resolver.get_claim_parameters(claim, resource_class, class_params)
            cas.append(ClaimAllocation(
                claim=claim,
                claim_parameters=claim_params,
                resource_class=resource_class,
                class_parameters=class_params,
            ))
        return cas

    @app.get("/healthz")
    def healthz() -> Any:
        return jsonify({"status": "ok"})

    @app.post("/unsuitable-nodes")
    def unsuitable_nodes() -> Any:
        body: Dict[str, Any] = request.get_json(force=True) or {}
        specs = body.get("claims")
        if not specs:
            return jsonify({"error": "missing claims"}), 400
        potential_nodes = list(body.get("potentialNodes") or [])

        cas = claim_allocations(specs)
        driver.unsuitable_nodes(body.get("pod"), cas, potential_nodes)
        return jsonify({
            "claims": [
                {"uid": ca.claim.uid, "unsuitableNodes": ca.unsuitable_nodes}
                for ca in cas
            ]
        })

    @app.post("/allocate")
    def allocate() -> Any:
        body: Dict[str, Any] = request.get_json(force=True) or {}
        specs = body.get("claims")
        if not specs:
            return jsonify({"error": "missing claims"}), 400
        selected_node = body.get("selectedNode") or ""

        cas = claim_allocations(specs)
        driver.allocate(cas, selected_node)

        results = []
        for ca in cas:
            entry: Dict[str, Any] = {"uid": ca.claim.uid}
            if ca.error is not None:
                entry["error"] = str(ca.error)
            else:
                entry["allocation"] = ca.allocation.to_dict()
            results.append(entry)
        return jsonify({"claims": results})

    @app.post("/deallocate")
    def deallocate() -> Any:
        body: Dict[str, Any] = request.get_json(force=True) or {}
        spec = body.get("claim")
        if not spec:
            return jsonify({"error": "missing claim"}), 400

        claim = _claim_from_dict(spec)
        driver.deallocate(claim)
        return jsonify({"status": "ok", "uid": claim.uid})

    @app.delete("/nodes/<name>")
    def forget_node(name: str) -> Any:
        driver.forget_node(name)
        return jsonify({"status": "ok", "node": name})

    return app


def _ref_from_dict(data: Optional[Dict[str, Any]]) -> Optional[ParametersRef]:
    if not data:
        return None
    try:
        return ParametersRef(api_group=data["apiGroup"], kind=data.get("kind", ""), name=data["name"])
    except KeyError as e:
        raise ValidationError(f"parametersRef missing field {e}") from e


def _claim_from_dict(data: Dict[str, Any]) -> ResourceClaim:
    uid = data.get("uid")
    if not uid:
        raise ValidationError("claim is missing 'uid'")
    allocation = data.get("allocation")
    return ResourceClaim(
        uid=uid,
        namespace=data.get("namespace", "default"),
        name=data.get("name", ""),
        parameters_ref=_ref_from_dict(data.get("parametersRef")),
        allocation=AllocationResult.from_dict(allocation) if allocation else None,
    )


def _class_from_dict(data: Optional[Dict[str, Any]]) -> Optional[ResourceClass]:
    if not data:
        return None
    return ResourceClass(name=data.get("name", ""), parameters_ref=_ref_from_dict(data.get("parametersRef")))
