"""노드 분류: edge 레이블과 autonomy 어노테이션 관리."""

from __future__ import annotations

import logging
from typing import Callable

from .constants import AUTONOMY_ANNOTATION, EDGE_WORKER_LABEL, LABEL_FALSE, LABEL_TRUE
from .errors import ControlPlaneError, NodeUpdateFailed
from .kube import ControlPlaneClient
from .models import NodeRecord

LOGGER = logging.getLogger(__name__)

NodePredicate = Callable[[NodeRecord], bool]


def select_by_name(names: set[str] | frozenset[str]) -> NodePredicate:
    return lambda node: node.name in names


def exclude_by_name(names: set[str] | frozenset[str]) -> NodePredicate:
    return lambda node: node.name not in names


def select_none(_: NodeRecord) -> bool:
    return False


class NodeClassifier:
    """노드를 edge/cloud 로 나누고 레이블을 붙이거나 떼어낸다.

    노드 하나라도 갱신에 실패하면 ``NodeUpdateFailed`` 로 전체 전환을 중단한다.
    레이블이 절반만 붙은 클러스터는 autonomy 동작에 안전하지 않다.
    """

    def __init__(self, client: ControlPlaneClient) -> None:
        self._client = client

    async def _list(self) -> list[NodeRecord]:
        try:
            return await self._client.list_nodes()
        except ControlPlaneError as exc:
            raise NodeUpdateFailed(None, exc) from exc

    async def _update(self, node: NodeRecord) -> None:
        try:
            await self._client.update_node(node)
        except ControlPlaneError as exc:
            raise NodeUpdateFailed(node.name, exc) from exc

    async def edge_nodes(self) -> list[str]:
        return [node.name for node in await self._list() if node.is_edge]

    async def classify_for_convert(
        self,
        is_edge: NodePredicate,
        is_autonomous: NodePredicate = select_none,
    ) -> list[str]:
        edge_node_names: list[str] = []
        for node in await self._list():
            edge = is_edge(node)
            desired = LABEL_TRUE if edge else LABEL_FALSE
            changed = node.labels.get(EDGE_WORKER_LABEL) != desired
            node.labels[EDGE_WORKER_LABEL] = desired
            if edge:
                edge_node_names.append(node.name)
                if is_autonomous(node) and node.annotations.get(AUTONOMY_ANNOTATION) != LABEL_TRUE:
                    node.annotations[AUTONOMY_ANNOTATION] = LABEL_TRUE
                    changed = True
            elif AUTONOMY_ANNOTATION in node.annotations:
                del node.annotations[AUTONOMY_ANNOTATION]
                changed = True
            if not changed:
                LOGGER.debug("노드 %s 는 이미 %s=%s 입니다.", node.name, EDGE_WORKER_LABEL, desired)
                continue
            await self._update(node)
            LOGGER.info("노드 %s 에 %s=%s 레이블 적용", node.name, EDGE_WORKER_LABEL, desired)
        return edge_node_names

    async def classify_for_revert(self) -> list[str]:
        edge_node_names: list[str] = []
        for node in await self._list():
            if EDGE_WORKER_LABEL not in node.labels:
                continue
            if node.is_edge:
                # servant job 을 돌려야 하므로 edge 노드는 기억해 둔다
                edge_node_names.append(node.name)
            node.annotations.pop(AUTONOMY_ANNOTATION, None)
            del node.labels[EDGE_WORKER_LABEL]
            await self._update(node)
            LOGGER.info("레이블 %s 를 노드 %s 에서 제거", EDGE_WORKER_LABEL, node.name)
        return edge_node_names
