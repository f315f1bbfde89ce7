"""쿠버네티스 API 서버 클라이언트."""

from __future__ import annotations

import abc
import asyncio
import copy
import logging
from typing import Any

import aiohttp

from .errors import ApiErrorKind, ControlPlaneError, classify_status
from .kubeconfig import KubeConfig
from .models import NodeRecord, ResourceKind, ResourceRef

LOGGER = logging.getLogger(__name__)

# kind -> (API 그룹 경로, 복수형 리소스 이름, namespace 소속 여부)
_KIND_PATHS: dict[ResourceKind, tuple[str, str, bool]] = {
    ResourceKind.CONFIG_MAP: ("/api/v1", "configmaps", True),
    ResourceKind.NODE: ("/api/v1", "nodes", False),
    ResourceKind.SERVICE_ACCOUNT: ("/api/v1", "serviceaccounts", True),
    ResourceKind.SERVICE: ("/api/v1", "services", True),
    ResourceKind.DEPLOYMENT: ("/apis/apps/v1", "deployments", True),
    ResourceKind.DAEMON_SET: ("/apis/apps/v1", "daemonsets", True),
    ResourceKind.CLUSTER_ROLE: ("/apis/rbac.authorization.k8s.io/v1", "clusterroles", False),
    ResourceKind.CLUSTER_ROLE_BINDING: ("/apis/rbac.authorization.k8s.io/v1", "clusterrolebindings", False),
    ResourceKind.JOB: ("/apis/batch/v1", "jobs", True),
}


def collection_path(kind: ResourceKind, namespace: str | None = None) -> str:
    prefix, plural, namespaced = _KIND_PATHS[kind]
    if namespaced:
        if not namespace:
            raise ValueError(f"{kind.value} requires a namespace")
        return f"{prefix}/namespaces/{namespace}/{plural}"
    return f"{prefix}/{plural}"


def resource_path(ref: ResourceRef) -> str:
    return f"{collection_path(ref.kind, ref.namespace)}/{ref.name}"


class ControlPlaneClient(abc.ABC):
    """yurtctl 이 사용하는 컨트롤 플레인 API 추상화.

    모든 실패는 ``ControlPlaneError`` 로 올라오며 ``kind`` 로 구분한다.
    """

    @abc.abstractmethod
    async def server_version(self) -> dict[str, Any]:
        """``/version`` 응답."""

    @abc.abstractmethod
    async def get(self, ref: ResourceRef) -> dict[str, Any]:
        ...

    @abc.abstractmethod
    async def list(self, kind: ResourceKind, namespace: str | None = None) -> list[dict[str, Any]]:
        ...

    @abc.abstractmethod
    async def create(self, ref: ResourceRef, body: dict[str, Any]) -> dict[str, Any]:
        ...

    @abc.abstractmethod
    async def update(self, ref: ResourceRef, body: dict[str, Any]) -> dict[str, Any]:
        ...

    @abc.abstractmethod
    async def delete(self, ref: ResourceRef, *, propagation: str | None = None) -> None:
        ...

    async def list_nodes(self) -> list[NodeRecord]:
        return [NodeRecord.from_object(obj) for obj in await self.list(ResourceKind.NODE)]

    async def update_node(self, node: NodeRecord) -> NodeRecord:
        ref = ResourceRef(ResourceKind.NODE, node.name)
        return NodeRecord.from_object(await self.update(ref, node.to_object()))


class KubeApiClient(ControlPlaneClient):
    """aiohttp 기반 REST 클라이언트."""

    def __init__(self, config: KubeConfig, *, timeout: float = 30.0) -> None:
        self._config = config
        self._timeout = timeout
        self._session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> "KubeApiClient":
        await self.open()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def open(self) -> None:
        if self._session is not None:
            return
        connector = aiohttp.TCPConnector(ssl=self._config.ssl_context())
        self._session = aiohttp.ClientSession(
            connector=connector,
            headers=self._config.headers(),
            timeout=aiohttp.ClientTimeout(total=self._timeout),
        )

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def server_version(self) -> dict[str, Any]:
        return await self._request("GET", "/version")

    async def get(self, ref: ResourceRef) -> dict[str, Any]:
        return await self._request("GET", resource_path(ref))

    async def list(self, kind: ResourceKind, namespace: str | None = None) -> list[dict[str, Any]]:
        payload = await self._request("GET", collection_path(kind, namespace))
        return list(payload.get("items") or [])

    async def create(self, ref: ResourceRef, body: dict[str, Any]) -> dict[str, Any]:
        return await self._request("POST", collection_path(ref.kind, ref.namespace), body=body)

    async def update(self, ref: ResourceRef, body: dict[str, Any]) -> dict[str, Any]:
        return await self._request("PUT", resource_path(ref), body=body)

    async def delete(self, ref: ResourceRef, *, propagation: str | None = None) -> None:
        body = None
        if propagation:
            body = {"kind": "DeleteOptions", "apiVersion": "v1", "propagationPolicy": propagation}
        await self._request("DELETE", resource_path(ref), body=body)

    async def _request(self, method: str, path: str, *, body: dict[str, Any] | None = None) -> dict[str, Any]:
        if self._session is None:
            raise RuntimeError("client is not opened; use 'async with KubeApiClient(...)'")
        LOGGER.debug("%s %s", method, path)
        try:
            async with self._session.request(method, self._config.server + path, json=body) as response:
                if response.status >= 400:
                    status = await self._read_status(response)
                    message = status.get("message") or response.reason or "request failed"
                    raise ControlPlaneError(
                        classify_status(response.status, status.get("reason")),
                        f"{method} {path}: {message}",
                        status=response.status,
                    )
                if response.content_type != "application/json":
                    return {}
                try:
                    payload = await response.json()
                except ValueError as exc:
                    raise ControlPlaneError(
                        ApiErrorKind.UNKNOWN, f"{method} {path}: malformed response body: {exc}", status=response.status
                    ) from exc
                if not isinstance(payload, dict):
                    raise ControlPlaneError(
                        ApiErrorKind.UNKNOWN,
                        f"{method} {path}: expected an object, got {type(payload).__name__}",
                        status=response.status,
                    )
                return payload
        except asyncio.TimeoutError as exc:
            raise ControlPlaneError(ApiErrorKind.TIMEOUT, f"{method} {path}: request timed out") from exc
        except aiohttp.ClientError as exc:
            raise ControlPlaneError(ApiErrorKind.UNAVAILABLE, f"{method} {path}: {exc}") from exc

    @staticmethod
    async def _read_status(response: aiohttp.ClientResponse) -> dict[str, Any]:
        try:
            payload = await response.json(content_type=None)
        except ValueError:
            return {}
        return payload if isinstance(payload, dict) else {}


class DryRunClient(ControlPlaneClient):
    """읽기는 실제 클라이언트로 보내고 쓰기는 로그만 남기는 래퍼.

    쓰기 결과는 메모리 오버레이에 기록되어 이후 읽기에 반영된다. 이번 실행에서
    생성한 Job 은 즉시 성공한 것으로 보인다.
    """

    def __init__(self, delegate: ControlPlaneClient) -> None:
        self._delegate = delegate
        self._written: dict[ResourceRef, dict[str, Any]] = {}
        self._deleted: set[ResourceRef] = set()

    async def server_version(self) -> dict[str, Any]:
        return await self._delegate.server_version()

    async def get(self, ref: ResourceRef) -> dict[str, Any]:
        if ref in self._deleted:
            raise ControlPlaneError(ApiErrorKind.NOT_FOUND, f"{ref} not found (dry-run)")
        if ref in self._written:
            return copy.deepcopy(self._written[ref])
        return await self._delegate.get(ref)

    async def list(self, kind: ResourceKind, namespace: str | None = None) -> list[dict[str, Any]]:
        items = []
        seen: set[ResourceRef] = set()
        for obj in await self._delegate.list(kind, namespace):
            metadata = obj.get("metadata") or {}
            ref = ResourceRef(kind, metadata.get("name", ""), metadata.get("namespace") or namespace)
            seen.add(ref)
            if ref in self._deleted:
                continue
            items.append(copy.deepcopy(self._written.get(ref, obj)))
        for ref, obj in self._written.items():
            if ref.kind is kind and ref.namespace == namespace and ref not in seen:
                items.append(copy.deepcopy(obj))
        return items

    async def create(self, ref: ResourceRef, body: dict[str, Any]) -> dict[str, Any]:
        if await self._exists(ref):
            raise ControlPlaneError(ApiErrorKind.ALREADY_EXISTS, f"{ref} already exists (dry-run)")
        LOGGER.info("[dry-run] 생성 %s", ref)
        obj = copy.deepcopy(body)
        if ref.kind is ResourceKind.JOB:
            obj["status"] = {"succeeded": 1}
        self._written[ref] = obj
        self._deleted.discard(ref)
        return copy.deepcopy(obj)

    async def update(self, ref: ResourceRef, body: dict[str, Any]) -> dict[str, Any]:
        if not await self._exists(ref):
            raise ControlPlaneError(ApiErrorKind.NOT_FOUND, f"{ref} not found (dry-run)")
        LOGGER.info("[dry-run] 갱신 %s", ref)
        self._written[ref] = copy.deepcopy(body)
        return copy.deepcopy(body)

    async def delete(self, ref: ResourceRef, *, propagation: str | None = None) -> None:
        if not await self._exists(ref):
            raise ControlPlaneError(ApiErrorKind.NOT_FOUND, f"{ref} not found (dry-run)")
        LOGGER.info("[dry-run] 삭제 %s", ref)
        self._written.pop(ref, None)
        self._deleted.add(ref)

    async def _exists(self, ref: ResourceRef) -> bool:
        try:
            await self.get(ref)
        except ControlPlaneError as exc:
            if exc.kind is ApiErrorKind.NOT_FOUND:
                return False
            raise
        return True
