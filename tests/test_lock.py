from __future__ import annotations

import logging

import pytest

from yurtctl.constants import ANNOTATION_LOCK_HOLDER
from yurtctl.errors import ApiErrorKind, ControlPlaneError, LockHeld, LockReleaseFailed, NotOwner
from yurtctl.lock import LOCK_REF, LockManager

from .fakes import FakeControlPlane


@pytest.mark.asyncio
async def test_acquire_creates_lock_record() -> None:
    plane = FakeControlPlane()
    lock = LockManager(plane, holder="runner-1")

    record = await lock.acquire()

    assert record.holder == "runner-1"
    annotations = plane.objects[LOCK_REF]["metadata"]["annotations"]
    assert annotations[ANNOTATION_LOCK_HOLDER] == "runner-1"


@pytest.mark.asyncio
async def test_second_holder_gets_lock_held() -> None:
    plane = FakeControlPlane()
    await LockManager(plane, holder="runner-1").acquire()

    with pytest.raises(LockHeld) as excinfo:
        await LockManager(plane, holder="runner-2").acquire()

    assert excinfo.value.holder == "runner-1"
    assert excinfo.value.acquired_at is not None


@pytest.mark.asyncio
async def test_acquire_is_reentrant_for_the_same_holder() -> None:
    plane = FakeControlPlane()
    lock = LockManager(plane, holder="runner-1")
    await lock.acquire()

    record = await lock.acquire()

    assert record.holder == "runner-1"


@pytest.mark.asyncio
async def test_release_by_other_holder_is_rejected() -> None:
    plane = FakeControlPlane()
    await LockManager(plane, holder="runner-1").acquire()

    with pytest.raises(NotOwner):
        await LockManager(plane, holder="runner-2").release()
    assert LOCK_REF in plane.objects


@pytest.mark.asyncio
async def test_release_without_record_is_noop() -> None:
    plane = FakeControlPlane()

    await LockManager(plane, holder="runner-1").release()

    assert plane.mutations() == []


@pytest.mark.asyncio
async def test_release_delete_failure_is_lock_release_failed() -> None:
    plane = FakeControlPlane()
    lock = LockManager(plane, holder="runner-1")
    await lock.acquire()
    plane.fail_on("delete", LOCK_REF, ApiErrorKind.UNAVAILABLE)

    with pytest.raises(LockReleaseFailed):
        await lock.release()


@pytest.mark.asyncio
async def test_acquire_propagates_unexpected_api_errors() -> None:
    plane = FakeControlPlane()
    plane.fail_on("create", LOCK_REF, ApiErrorKind.FORBIDDEN)

    with pytest.raises(ControlPlaneError) as excinfo:
        await LockManager(plane).acquire()
    assert excinfo.value.kind is ApiErrorKind.FORBIDDEN


@pytest.mark.asyncio
async def test_held_releases_on_error() -> None:
    plane = FakeControlPlane()
    lock = LockManager(plane, holder="runner-1")

    with pytest.raises(RuntimeError):
        async with lock.held():
            assert LOCK_REF in plane.objects
            raise RuntimeError("boom")

    assert LOCK_REF not in plane.objects


@pytest.mark.asyncio
async def test_held_logs_release_failure(caplog: pytest.LogCaptureFixture) -> None:
    plane = FakeControlPlane()
    lock = LockManager(plane, holder="runner-1")

    with caplog.at_level(logging.ERROR, logger="yurtctl.lock"):
        async with lock.held():
            plane.fail_on("delete", LOCK_REF, ApiErrorKind.UNAVAILABLE)

    assert "직접 삭제하세요" in caplog.text
    assert LOCK_REF in plane.objects
