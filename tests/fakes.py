"""테스트용 인메모리 컨트롤 플레인."""

from __future__ import annotations

import copy
from typing import Any

from yurtctl.errors import ApiErrorKind, ControlPlaneError
from yurtctl.kube import ControlPlaneClient
from yurtctl.models import ResourceKind, ResourceRef

_SKIP_INVENTORY = {ResourceKind.NODE, ResourceKind.JOB}


class FakeControlPlane(ControlPlaneClient):
    def __init__(self, git_version: str = "v1.16.6") -> None:
        self.version: dict[str, Any] = {"major": "1", "minor": "16", "gitVersion": git_version}
        self.objects: dict[ResourceRef, dict[str, Any]] = {}
        self.calls: list[tuple[str, ResourceRef]] = []
        self.failures: dict[tuple[str, ResourceRef], ControlPlaneError] = {}
        self.job_scripts: dict[str, list[dict[str, Any]]] = {}
        self.job_polls: dict[str, int] = {}

    # 테스트 준비 ---------------------------------------------------------

    def add_node(
        self,
        name: str,
        labels: dict[str, str] | None = None,
        annotations: dict[str, str] | None = None,
    ) -> None:
        self.objects[ResourceRef(ResourceKind.NODE, name)] = {
            "apiVersion": "v1",
            "kind": "Node",
            "metadata": {
                "name": name,
                "labels": dict(labels or {}),
                "annotations": dict(annotations or {}),
                "resourceVersion": "1",
            },
        }

    def add_object(self, ref: ResourceRef, body: dict[str, Any] | None = None) -> None:
        self.objects[ref] = body or {"metadata": {"name": ref.name, "namespace": ref.namespace}}

    def fail_on(self, op: str, ref: ResourceRef, kind: ApiErrorKind = ApiErrorKind.FORBIDDEN) -> None:
        self.failures[(op, ref)] = ControlPlaneError(kind, f"injected {op} failure on {ref}")

    def node(self, name: str) -> dict[str, Any]:
        return self.objects[ResourceRef(ResourceKind.NODE, name)]["metadata"]

    def inventory(self) -> set[ResourceRef]:
        return {ref for ref in self.objects if ref.kind not in _SKIP_INVENTORY}

    def mutations(self) -> list[tuple[str, ResourceRef]]:
        return [call for call in self.calls if call[0] in {"create", "update", "delete"}]

    def jobs(self) -> list[dict[str, Any]]:
        return [obj for ref, obj in self.objects.items() if ref.kind is ResourceKind.JOB]

    # ControlPlaneClient ----------------------------------------------------

    def _record(self, op: str, ref: ResourceRef) -> None:
        self.calls.append((op, ref))
        failure = self.failures.get((op, ref))
        if failure is not None:
            raise failure

    async def server_version(self) -> dict[str, Any]:
        return dict(self.version)

    async def get(self, ref: ResourceRef) -> dict[str, Any]:
        self._record("get", ref)
        if ref not in self.objects:
            raise ControlPlaneError(ApiErrorKind.NOT_FOUND, f"{ref} not found")
        if ref.kind is ResourceKind.JOB:
            self._advance_job(ref)
        return copy.deepcopy(self.objects[ref])

    async def list(self, kind: ResourceKind, namespace: str | None = None) -> list[dict[str, Any]]:
        return [
            copy.deepcopy(obj)
            for ref, obj in self.objects.items()
            if ref.kind is kind and (namespace is None or ref.namespace == namespace)
        ]

    async def create(self, ref: ResourceRef, body: dict[str, Any]) -> dict[str, Any]:
        self._record("create", ref)
        if ref in self.objects:
            raise ControlPlaneError(ApiErrorKind.ALREADY_EXISTS, f"{ref} already exists")
        self.objects[ref] = copy.deepcopy(body)
        return copy.deepcopy(body)

    async def update(self, ref: ResourceRef, body: dict[str, Any]) -> dict[str, Any]:
        self._record("update", ref)
        if ref not in self.objects:
            raise ControlPlaneError(ApiErrorKind.NOT_FOUND, f"{ref} not found")
        self.objects[ref] = copy.deepcopy(body)
        return copy.deepcopy(body)

    async def delete(self, ref: ResourceRef, *, propagation: str | None = None) -> None:
        self._record("delete", ref)
        if ref not in self.objects:
            raise ControlPlaneError(ApiErrorKind.NOT_FOUND, f"{ref} not found")
        del self.objects[ref]

    def _advance_job(self, ref: ResourceRef) -> None:
        obj = self.objects[ref]
        node = obj["spec"]["template"]["spec"]["nodeName"]
        self.job_polls[node] = self.job_polls.get(node, 0) + 1
        script = self.job_scripts.get(node)
        if script is None:
            obj["status"] = {"succeeded": 1}
        elif script:
            obj["status"] = script.pop(0) if len(script) > 1 else script[0]
