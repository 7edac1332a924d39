"""NodeAllocationState client backed by the Kubernetes custom objects API."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from kubernetes import client
from kubernetes.client.exceptions import ApiException

from gpudra.errors import NotFoundError, StoreError
from gpudra.state import (
    NAS_GROUP_NAME,
    NAS_PLURAL,
    VERSION,
    NodeAllocationState,
    NodeAllocationStateSpec,
    NodeAllocationStateStatus,
)

logger = logging.getLogger(__name__)


class NodeStateClient:
    """
    Get/create/update/delete for one node's NodeAllocationState.

    ``nas`` is the working copy. Every successful call replaces it with the
    object the API server returned. Writes always send the whole object, no
    resourceVersion precondition is enforced beyond what the server applies.
    """

    def __init__(
        self,
        nas: NodeAllocationState,
        api: client.CustomObjectsApi,
        timeout: Optional[float] = None,
    ) -> None:
        self.nas = nas
        self.api = api
        self.timeout = timeout

    # -------- helpers --------

    def _kwargs(self) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {}
        if self.timeout:
            kwargs["_request_timeout"] = self.timeout
        return kwargs

    def _store_error(self, action: str, e: Exception) -> StoreError:
        logger.error(f"Failed to {action} NodeAllocationState {self.nas.namespace}/{self.nas.name}: {e}")
        return StoreError(
            f"error trying to {action} NodeAllocationState '{self.nas.name}': {e}",
            node=self.nas.name,
        )

    def _replace(self, obj: Dict[str, Any]) -> None:
        try:
            self.nas = NodeAllocationState.from_dict(obj)
        except (KeyError, TypeError, ValueError) as e:
            raise StoreError(f"malformed NodeAllocationState '{self.nas.name}': {e}", node=self.nas.name) from e

    # -------- operations --------

    def get(self) -> NodeAllocationState:
        try:
            obj = self.api.get_namespaced_custom_object(
                NAS_GROUP_NAME, VERSION, self.nas.namespace, NAS_PLURAL, self.nas.name, **self._kwargs()
            )
        except ApiException as e:
            if e.status == 404:
                raise NotFoundError(
                    f"NodeAllocationState '{self.nas.name}' not found in namespace '{self.nas.namespace}'",
                    node=self.nas.name,
                ) from e
            raise self._store_error("get", e) from e
        except Exception as e:
            raise self._store_error("get", e) from e
        self._replace(obj)
        return self.nas

    def create(self) -> NodeAllocationState:
        body = self.nas.deep_copy().to_dict()
        body["metadata"].pop("resourceVersion", None)
        try:
            obj = self.api.create_namespaced_custom_object(
                NAS_GROUP_NAME, VERSION, self.nas.namespace, NAS_PLURAL, body, **self._kwargs()
            )
        except Exception as e:
            raise self._store_error("create", e) from e
        self._replace(obj)
        logger.info(f"Created NodeAllocationState {self.nas.namespace}/{self.nas.name}")
        return self.nas

    def get_or_create(self) -> NodeAllocationState:
        try:
            return self.get()
        except NotFoundError:
            return self.create()

    def update(self, spec: NodeAllocationStateSpec) -> NodeAllocationState:
        crd = self.nas.deep_copy()
        crd.spec = spec
        return self._write(crd)

    def update_status(self, status: NodeAllocationStateStatus) -> NodeAllocationState:
        crd = self.nas.deep_copy()
        crd.status = status
        return self._write(crd)

    def _write(self, crd: NodeAllocationState) -> NodeAllocationState:
        try:
            obj = self.api.replace_namespaced_custom_object(
                NAS_GROUP_NAME, VERSION, crd.namespace, NAS_PLURAL, crd.name, crd.to_dict(), **self._kwargs()
            )
        except Exception as e:
            raise self._store_error("update", e) from e
        self._replace(obj)
        return self.nas

    def delete(self) -> None:
        options = client.V1DeleteOptions(propagation_policy="Foreground")
        try:
            self.api.delete_namespaced_custom_object(
                NAS_GROUP_NAME, VERSION, self.nas.namespace, NAS_PLURAL, self.nas.name,
                body=options, **self._kwargs()
            )
        except ApiException as e:
            if e.status == 404:
                return
            raise self._store_error("delete", e) from e
        except Exception as e:
            raise self._store_error("delete", e) from e
        logger.info(f"Deleted NodeAllocationState {self.nas.namespace}/{self.nas.name}")
