"""관리 대상 리소스 카탈로그와 멱등 변경 실행기."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable

from . import manifests
from .constants import (
    CONTROLLER_MANAGER_NAME,
    NODE_CONTROLLER_SA_NAME,
    SYSTEM_NAMESPACE,
    TUNNEL_AGENT_NAME,
    TUNNEL_NAMESPACE,
    TUNNEL_SERVER_NAME,
    TUNNEL_SERVER_SVC_NAME,
)
from .errors import ApiErrorKind, ControlPlaneError, ResourceMutationFailed, TransitionCancelled
from .kube import ControlPlaneClient
from .manifests import ComponentImages
from .models import Direction, MutationAction, MutationStep, ResourceKind, ResourceRef

LOGGER = logging.getLogger(__name__)

Renderer = Callable[[ComponentImages], dict[str, Any]]

_BACKGROUND_PROPAGATION = {ResourceKind.DEPLOYMENT, ResourceKind.DAEMON_SET}

# 오류를 무시해도 되는 조합. 그 외의 모든 오류는 치명적이다.
_IGNORABLE: dict[MutationAction, ApiErrorKind] = {
    MutationAction.CREATE_IF_ABSENT: ApiErrorKind.ALREADY_EXISTS,
    MutationAction.UPDATE_IF_PRESENT: ApiErrorKind.NOT_FOUND,
    MutationAction.DELETE_IF_EXISTS: ApiErrorKind.NOT_FOUND,
}


@dataclass(frozen=True, slots=True)
class ManagedResource:
    """카탈로그 항목.

    ``installed`` 가 참이면 convert 가 만들고 revert 가 지운다. 거짓이면 반대로
    convert 가 지우고 revert 가 되살린다.
    """

    ref: ResourceRef
    render: Renderer
    installed: bool = True


MANAGED_RESOURCES: tuple[ManagedResource, ...] = (
    ManagedResource(
        ResourceRef(ResourceKind.SERVICE_ACCOUNT, NODE_CONTROLLER_SA_NAME, SYSTEM_NAMESPACE),
        manifests.node_controller_service_account,
        installed=False,
    ),
    ManagedResource(
        ResourceRef(ResourceKind.CLUSTER_ROLE, TUNNEL_SERVER_NAME),
        manifests.tunnel_server_cluster_role,
    ),
    ManagedResource(
        ResourceRef(ResourceKind.SERVICE_ACCOUNT, TUNNEL_SERVER_NAME, TUNNEL_NAMESPACE),
        manifests.tunnel_server_service_account,
    ),
    ManagedResource(
        ResourceRef(ResourceKind.CLUSTER_ROLE_BINDING, TUNNEL_SERVER_NAME),
        manifests.tunnel_server_cluster_role_binding,
    ),
    ManagedResource(
        ResourceRef(ResourceKind.SERVICE, TUNNEL_SERVER_SVC_NAME, TUNNEL_NAMESPACE),
        manifests.tunnel_server_service,
    ),
    ManagedResource(
        ResourceRef(ResourceKind.DAEMON_SET, TUNNEL_SERVER_NAME, TUNNEL_NAMESPACE),
        manifests.tunnel_server_daemon_set,
    ),
    ManagedResource(
        ResourceRef(ResourceKind.CLUSTER_ROLE, TUNNEL_AGENT_NAME),
        manifests.tunnel_agent_cluster_role,
    ),
    ManagedResource(
        ResourceRef(ResourceKind.CLUSTER_ROLE_BINDING, TUNNEL_AGENT_NAME),
        manifests.tunnel_agent_cluster_role_binding,
    ),
    ManagedResource(
        ResourceRef(ResourceKind.DAEMON_SET, TUNNEL_AGENT_NAME, TUNNEL_NAMESPACE),
        manifests.tunnel_agent_daemon_set,
    ),
    ManagedResource(
        ResourceRef(ResourceKind.DEPLOYMENT, CONTROLLER_MANAGER_NAME, SYSTEM_NAMESPACE),
        manifests.controller_manager_deployment,
    ),
)


def managed_resources() -> tuple[ManagedResource, ...]:
    return MANAGED_RESOURCES


def plan(
    direction: Direction,
    images: ComponentImages | None = None,
    catalog: Iterable[ManagedResource] | None = None,
) -> list[MutationStep]:
    """방향에 맞는 변경 단계 목록을 만든다.

    convert 는 카탈로그 순서대로, revert 는 역순으로 반대 동작을 수행한다.
    그래서 다른 오브젝트를 참조하는 오브젝트(binding 등)는 참조 대상보다 늦게
    만들어지고 먼저 지워진다.
    """
    images = images or ComponentImages()
    entries = list(managed_resources() if catalog is None else catalog)
    if direction is Direction.REVERT:
        entries.reverse()

    steps = []
    for index, entry in enumerate(entries, start=1):
        if entry.installed == (direction is Direction.CONVERT):
            steps.append(MutationStep(index, MutationAction.CREATE_IF_ABSENT, entry.ref, entry.render(images)))
        else:
            steps.append(MutationStep(index, MutationAction.DELETE_IF_EXISTS, entry.ref))
    return steps


class ResourceMutator:
    """변경 단계를 순서대로 적용하고 첫 번째 치명적 오류에서 멈춘다.

    이미 적용한 단계는 되돌리지 않는다. 같은 방향으로 다시 실행하면 각 단계가
    멱등이므로 안전하게 이어서 진행된다.
    """

    def __init__(self, client: ControlPlaneClient) -> None:
        self._client = client

    async def apply(
        self,
        steps: Iterable[MutationStep],
        stop_event: asyncio.Event | None = None,
    ) -> list[MutationStep]:
        """적용된 단계 목록을 돌려준다."""
        applied: list[MutationStep] = []
        for step in steps:
            if stop_event is not None and stop_event.is_set():
                raise TransitionCancelled(f"step {step.index} ({step.describe()})")
            await self.apply_step(step)
            applied.append(step)
        return applied

    async def apply_step(self, step: MutationStep) -> bool:
        """변경이 일어났으면 True, 이미 원하는 상태였으면 False."""
        try:
            await self._execute(step)
        except ControlPlaneError as exc:
            if exc.kind is _IGNORABLE[step.action]:
                LOGGER.debug("단계 %d: %s 건너뜀 (%s)", step.index, step.describe(), exc.kind.value)
                return False
            LOGGER.error("단계 %d: %s 실패: %s", step.index, step.describe(), exc)
            raise ResourceMutationFailed(step, exc) from exc
        LOGGER.info("단계 %d: %s 완료", step.index, step.describe())
        return True

    async def _execute(self, step: MutationStep) -> None:
        if step.action is MutationAction.DELETE_IF_EXISTS:
            propagation = "Background" if step.ref.kind in _BACKGROUND_PROPAGATION else None
            await self._client.delete(step.ref, propagation=propagation)
            return
        if step.body is None:
            raise ValueError(f"step {step.index} ({step.describe()}) has no body")
        if step.action is MutationAction.CREATE_IF_ABSENT:
            await self._client.create(step.ref, step.body)
        else:
            await self._client.update(step.ref, step.body)
