from __future__ import annotations

import pytest

from yurtctl.constants import EDGE_WORKER_LABEL
from yurtctl.servant import ServantJobDispatcher

from .fakes import FakeControlPlane


@pytest.fixture
def control_plane() -> FakeControlPlane:
    """cloud 노드 하나와 아직 분류되지 않은 노드 둘."""
    plane = FakeControlPlane()
    plane.add_node("master-1")
    plane.add_node("edge-1")
    plane.add_node("edge-2")
    return plane


@pytest.fixture
def yurt_plane() -> FakeControlPlane:
    """이미 레이블이 붙은 노드들."""
    plane = FakeControlPlane()
    plane.add_node("a", labels={EDGE_WORKER_LABEL: "true"})
    plane.add_node("b", labels={EDGE_WORKER_LABEL: "false"})
    plane.add_node("c")
    return plane


@pytest.fixture
def fast_dispatcher_factory():
    def _factory(client, timeout: float = 1.0) -> ServantJobDispatcher:
        return ServantJobDispatcher(client, timeout=timeout, poll_interval=0.001)

    return _factory
