from __future__ import annotations

import asyncio

import pytest

from yurtctl.constants import EDGE_WORKER_LABEL, NODE_CONTROLLER_SA_NAME, SYSTEM_NAMESPACE
from yurtctl.errors import (
    ApiErrorKind,
    JobDispatchFailed,
    LockHeld,
    NodeUpdateFailed,
    ResourceMutationFailed,
    TransitionCancelled,
    UnsupportedVersion,
)
from yurtctl.lock import LOCK_REF, LockManager
from yurtctl.models import Direction, ResourceKind, ResourceRef, TransitionState
from yurtctl.nodes import exclude_by_name
from yurtctl.resources import plan
from yurtctl.transition import TransitionOptions, TransitionSequencer

from .fakes import FakeControlPlane

NODE_CONTROLLER_SA = ResourceRef(ResourceKind.SERVICE_ACCOUNT, NODE_CONTROLLER_SA_NAME, SYSTEM_NAMESPACE)


def _sequencer(plane, dispatcher_factory, stop_event=None, **options) -> TransitionSequencer:
    opts = TransitionOptions(is_edge=exclude_by_name({"master-1"}), **options)
    return TransitionSequencer(
        plane,
        opts,
        lock=LockManager(plane, holder="test-runner"),
        dispatcher=dispatcher_factory(plane),
        stop_event=stop_event,
    )


@pytest.mark.asyncio
async def test_convert_walks_every_state(control_plane, fast_dispatcher_factory) -> None:
    control_plane.add_object(NODE_CONTROLLER_SA)

    result = await _sequencer(control_plane, fast_dispatcher_factory).convert()

    assert result.succeeded
    assert result.history == [
        TransitionState.IDLE,
        TransitionState.LOCK_ACQUIRED,
        TransitionState.VALIDATED,
        TransitionState.NODES_CLASSIFIED,
        TransitionState.RESOURCES_MUTATED,
        TransitionState.JOBS_DISPATCHED,
        TransitionState.COMPLETED,
        TransitionState.LOCK_RELEASED,
    ]
    assert result.edge_nodes == ("edge-1", "edge-2")
    assert NODE_CONTROLLER_SA not in control_plane.objects
    assert LOCK_REF not in control_plane.objects
    actions = {job["metadata"]["labels"]["openyurt.io/servant-action"] for job in control_plane.jobs()}
    assert actions == {"convert"}


@pytest.mark.asyncio
async def test_convert_then_revert_restores_the_cluster(control_plane, fast_dispatcher_factory) -> None:
    control_plane.add_object(NODE_CONTROLLER_SA)
    before = control_plane.inventory()

    converted = await _sequencer(control_plane, fast_dispatcher_factory).convert()
    reverted = await _sequencer(control_plane, fast_dispatcher_factory).revert()

    assert converted.succeeded and reverted.succeeded
    assert converted.edge_nodes == reverted.edge_nodes == ("edge-1", "edge-2")
    assert control_plane.inventory() == before
    for name in ("master-1", "edge-1", "edge-2"):
        assert EDGE_WORKER_LABEL not in control_plane.node(name)["labels"]


@pytest.mark.asyncio
async def test_revert_twice_is_idempotent(yurt_plane, fast_dispatcher_factory) -> None:
    first = await _sequencer(yurt_plane, fast_dispatcher_factory).revert()
    yurt_plane.calls.clear()

    second = await _sequencer(yurt_plane, fast_dispatcher_factory).revert()

    assert first.succeeded and second.succeeded
    assert first.edge_nodes == ("a",)
    assert second.edge_nodes == ()
    touched = {ref for _, ref in yurt_plane.mutations() if ref != LOCK_REF}
    # 두 번째 실행은 이미 없는 오브젝트 삭제와 이미 있는 SA 생성만 시도한다
    assert touched == {step.ref for step in plan(Direction.REVERT)}
    assert EDGE_WORKER_LABEL not in yurt_plane.node("c")["labels"]


@pytest.mark.asyncio
async def test_held_lock_blocks_transition_without_mutations(control_plane, fast_dispatcher_factory) -> None:
    await LockManager(control_plane, holder="someone-else").acquire()
    control_plane.calls.clear()

    result = await _sequencer(control_plane, fast_dispatcher_factory).convert()

    assert result.state is TransitionState.FAILED
    assert isinstance(result.error, LockHeld)
    assert result.history == [TransitionState.IDLE, TransitionState.FAILED]
    assert control_plane.mutations() == [("create", LOCK_REF)]
    assert control_plane.objects[LOCK_REF]["metadata"]["annotations"]
    assert all(EDGE_WORKER_LABEL not in control_plane.node(n)["labels"] for n in ("edge-1", "edge-2"))


def _inject_version(plane: FakeControlPlane) -> None:
    plane.version = {"gitVersion": "v1.10.0"}


def _inject_node(plane: FakeControlPlane) -> None:
    plane.fail_on("update", ResourceRef(ResourceKind.NODE, "edge-2"), ApiErrorKind.CONFLICT)


def _inject_resource(plane: FakeControlPlane) -> None:
    plane.fail_on("create", plan(Direction.CONVERT)[4].ref, ApiErrorKind.INVALID)


def _inject_job(plane: FakeControlPlane) -> None:
    plane.job_scripts["edge-1"] = [{"failed": 1}]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("inject", "error_type", "last_state"),
    [
        (_inject_version, UnsupportedVersion, TransitionState.LOCK_ACQUIRED),
        (_inject_node, NodeUpdateFailed, TransitionState.VALIDATED),
        (_inject_resource, ResourceMutationFailed, TransitionState.NODES_CLASSIFIED),
        (_inject_job, JobDispatchFailed, TransitionState.RESOURCES_MUTATED),
    ],
)
async def test_lock_is_released_after_every_failure(
    control_plane, fast_dispatcher_factory, inject, error_type, last_state
) -> None:
    inject(control_plane)

    result = await _sequencer(control_plane, fast_dispatcher_factory).convert()

    assert isinstance(result.error, error_type)
    assert result.state is TransitionState.FAILED
    assert result.history[-3:] == [last_state, TransitionState.FAILED, TransitionState.LOCK_RELEASED]
    assert LOCK_REF not in control_plane.objects


@pytest.mark.asyncio
async def test_unsupported_version_mutates_nothing(control_plane, fast_dispatcher_factory) -> None:
    _inject_version(control_plane)

    result = await _sequencer(control_plane, fast_dispatcher_factory).convert()

    assert result.failed_step == "validate-version"
    assert [ref for _, ref in control_plane.mutations()] == [LOCK_REF, LOCK_REF]


@pytest.mark.asyncio
async def test_skip_version_check(control_plane, fast_dispatcher_factory) -> None:
    _inject_version(control_plane)

    result = await _sequencer(control_plane, fast_dispatcher_factory, validate_version=False).convert()

    assert result.succeeded


@pytest.mark.asyncio
async def test_resource_failure_names_the_step(control_plane, fast_dispatcher_factory) -> None:
    control_plane.add_object(NODE_CONTROLLER_SA)
    steps = plan(Direction.CONVERT)
    control_plane.fail_on("create", steps[2].ref, ApiErrorKind.FORBIDDEN)

    result = await _sequencer(control_plane, fast_dispatcher_factory).convert()

    assert isinstance(result.error, ResourceMutationFailed)
    assert result.error.mutation.index == 3
    assert NODE_CONTROLLER_SA not in control_plane.objects
    assert steps[1].ref in control_plane.objects
    assert all(step.ref not in control_plane.objects for step in steps[2:])
    assert control_plane.jobs() == []


@pytest.mark.asyncio
async def test_job_failure_reports_failing_nodes(control_plane, fast_dispatcher_factory) -> None:
    _inject_job(control_plane)

    result = await _sequencer(control_plane, fast_dispatcher_factory).convert()

    assert result.failed_nodes == ("edge-1",)
    assert result.failed_step == "dispatch-jobs"
    # 리소스 변경은 그대로 남는다
    assert plan(Direction.CONVERT)[-1].ref in control_plane.objects


@pytest.mark.asyncio
async def test_stop_before_start_skips_the_lock(control_plane, fast_dispatcher_factory) -> None:
    stop_event = asyncio.Event()
    stop_event.set()

    result = await _sequencer(control_plane, fast_dispatcher_factory, stop_event).convert()

    assert isinstance(result.error, TransitionCancelled)
    assert control_plane.calls == []


@pytest.mark.asyncio
async def test_stop_between_steps_releases_the_lock(control_plane, fast_dispatcher_factory) -> None:
    stop_event = asyncio.Event()
    original_version = control_plane.server_version

    async def _version_then_stop():
        stop_event.set()
        return await original_version()

    control_plane.server_version = _version_then_stop

    result = await _sequencer(control_plane, fast_dispatcher_factory, stop_event).convert()

    assert isinstance(result.error, TransitionCancelled)
    assert result.failed_step == "classify-nodes"
    assert result.history[-3:] == [TransitionState.VALIDATED, TransitionState.FAILED, TransitionState.LOCK_RELEASED]
    assert LOCK_REF not in control_plane.objects
    assert all(EDGE_WORKER_LABEL not in control_plane.node(n)["labels"] for n in ("edge-1", "edge-2"))


@pytest.mark.asyncio
async def test_lock_api_failure_is_reported(control_plane, fast_dispatcher_factory) -> None:
    control_plane.fail_on("create", LOCK_REF, ApiErrorKind.FORBIDDEN)

    result = await _sequencer(control_plane, fast_dispatcher_factory).revert()

    assert result.failed_step == "acquire-lock"
    assert result.history == [TransitionState.IDLE, TransitionState.FAILED]
