"""Lookup of claim and class parameter objects referenced by claims."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from kubernetes import client

from gpudra.errors import StoreError, ValidationError
from gpudra.state import (
    DEVICE_CLASS_PARAMETERS_PLURAL,
    GPU_CLAIM_PARAMETERS_KIND,
    GPU_CLAIM_PARAMETERS_PLURAL,
    GROUP_NAME,
    VERSION,
    DeviceClassParameters,
    DeviceSelector,
    DeviceType,
    GpuClaimParameters,
    ResourceClaim,
    ResourceClass,
)

logger = logging.getLogger(__name__)


def default_device_class_parameters() -> DeviceClassParameters:
    return DeviceClassParameters(device_selector=[DeviceSelector(type=DeviceType.GPU, name="*")])


def default_gpu_claim_parameters() -> GpuClaimParameters:
    return GpuClaimParameters(count=1)


def gpu_claim_parameters_from_spec(spec: Dict[str, Any]) -> GpuClaimParameters:
    count = spec.get("count", 1)
    # bool is an int subclass; floats and strings are not coerced.
    if isinstance(count, bool) or not isinstance(count, int):
        raise ValidationError(f"invalid GpuClaimParameters count: {count!r}")
    return GpuClaimParameters(count=count)


def device_class_parameters_from_spec(spec: Dict[str, Any]) -> DeviceClassParameters:
    selectors = []
    for entry in spec.get("deviceSelector") or []:
        try:
            kind = DeviceType(entry.get("type", DeviceType.GPU.value))
        except ValueError as e:
            raise ValidationError(f"unknown device type in selector: {entry.get('type')!r}") from e
        selectors.append(DeviceSelector(type=kind, name=entry.get("name", "*")))
    if not selectors:
        return default_device_class_parameters()
    return DeviceClassParameters(device_selector=selectors)


class ParametersResolver:
    """Resolves a claim's class and claim parameters through the custom objects API."""

    def __init__(self, api: client.CustomObjectsApi, driver, timeout: Optional[float] = None) -> None:
        self.api = api
        self.driver = driver
        self.timeout = timeout

    def _kwargs(self) -> Dict[str, Any]:
        return {"_request_timeout": self.timeout} if self.timeout else {}

    def get_class_parameters(self, resource_class: Optional[ResourceClass]) -> DeviceClassParameters:
        if resource_class is None or resource_class.parameters_ref is None:
            return default_device_class_parameters()

        ref = resource_class.parameters_ref
        if ref.api_group != GROUP_NAME:
            raise ValidationError(f"incorrect API group: {ref.api_group}")

        try:
            obj = self.api.get_cluster_custom_object(
                GROUP_NAME, VERSION, DEVICE_CLASS_PARAMETERS_PLURAL, ref.name, **self._kwargs()
            )
        except Exception as e:
            raise StoreError(f"error getting DeviceClassParameters called '{ref.name}': {e}") from e

        return device_class_parameters_from_spec(obj.get("spec") or {})

    def get_claim_parameters(
        self,
        claim: ResourceClaim,
        resource_class: Optional[ResourceClass] = None,
        class_parameters: Optional[DeviceClassParameters] = None,
    ) -> GpuClaimParameters:
        if claim.parameters_ref is None:
            return default_gpu_claim_parameters()

        ref = claim.parameters_ref
        if ref.api_group != GROUP_NAME:
            raise ValidationError(f"incorrect API group: {ref.api_group}", claim=claim.uid)

        if ref.kind == GPU_CLAIM_PARAMETERS_KIND:
            logger.debug(f"Fetching GpuClaimParameters {claim.namespace}/{ref.name} for claim {claim.uid}")
            try:
                obj = self.api.get_namespaced_custom_object(
                    GROUP_NAME, VERSION, claim.namespace, GPU_CLAIM_PARAMETERS_PLURAL, ref.name, **self._kwargs()
                )
            except Exception as e:
                raise StoreError(
                    f"error getting GpuClaimParameters called '{ref.name}' in namespace '{claim.namespace}': {e}",
                    claim=claim.uid,
                ) from e

            params = gpu_claim_parameters_from_spec(obj.get("spec") or {})
            try:
                self.driver.validate_claim_parameters(params)
            except ValidationError as e:
                raise ValidationError(
                    f"error validating GpuClaimParameters called '{ref.name}' in namespace '{claim.namespace}': {e}",
                    claim=claim.uid,
                ) from e
            return params

        raise ValidationError(f"unknown ResourceClaim.ParametersRef.Kind: {ref.kind}", claim=claim.uid)
