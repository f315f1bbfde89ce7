"""클러스터 범위의 advisory lock.

``kube-system/yurtctl-lock`` ConfigMap 하나를 락 레코드로 사용한다. 생성이
원자적이므로 동시에 두 yurtctl 이 실행되어도 하나만 성공한다. 고아가 된 락은
운영자가 직접 지워야 한다.
"""

from __future__ import annotations

import logging
import os
import socket
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from .constants import ANNOTATION_LOCK_ACQUIRED, ANNOTATION_LOCK_HOLDER, LOCK_NAME, LOCK_NAMESPACE
from .errors import ApiErrorKind, ControlPlaneError, LockHeld, LockReleaseFailed, NotOwner
from .kube import ControlPlaneClient
from .models import LockRecord, ResourceKind, ResourceRef

LOGGER = logging.getLogger(__name__)

LOCK_REF = ResourceRef(ResourceKind.CONFIG_MAP, LOCK_NAME, LOCK_NAMESPACE)


def default_holder_identity() -> str:
    return f"{socket.gethostname()}-{os.getpid()}-{uuid.uuid4().hex[:8]}"


def _record_of(obj: dict) -> LockRecord:
    annotations = (obj.get("metadata") or {}).get("annotations") or {}
    return LockRecord(
        holder=annotations.get(ANNOTATION_LOCK_HOLDER),
        acquired_at=annotations.get(ANNOTATION_LOCK_ACQUIRED),
    )


class LockManager:
    """전환이 한 번에 하나만 실행되도록 보장한다."""

    def __init__(self, client: ControlPlaneClient, holder: str | None = None) -> None:
        self._client = client
        self._holder = holder or default_holder_identity()

    @property
    def holder(self) -> str:
        return self._holder

    async def current(self) -> LockRecord | None:
        try:
            return _record_of(await self._client.get(LOCK_REF))
        except ControlPlaneError as exc:
            if exc.kind is ApiErrorKind.NOT_FOUND:
                return None
            raise

    async def acquire(self) -> LockRecord:
        """락 레코드를 생성한다. 다른 holder 가 잡고 있으면 ``LockHeld``."""
        acquired_at = datetime.now(timezone.utc).isoformat(timespec="seconds")
        body = {
            "apiVersion": "v1",
            "kind": "ConfigMap",
            "metadata": {
                "name": LOCK_REF.name,
                "namespace": LOCK_REF.namespace,
                "annotations": {
                    ANNOTATION_LOCK_HOLDER: self._holder,
                    ANNOTATION_LOCK_ACQUIRED: acquired_at,
                },
            },
        }
        try:
            await self._client.create(LOCK_REF, body)
        except ControlPlaneError as exc:
            if exc.kind is not ApiErrorKind.ALREADY_EXISTS:
                raise
            record = await self.current()
            if record is not None and record.holder == self._holder:
                LOGGER.debug("이미 %s 가 잠금을 보유 중입니다.", self._holder)
                return record
            raise LockHeld(
                record.holder if record else None,
                record.acquired_at if record else None,
            ) from exc
        LOGGER.debug("잠금 %s 획득 (holder=%s)", LOCK_REF, self._holder)
        return LockRecord(holder=self._holder, acquired_at=acquired_at)

    async def release(self) -> None:
        """자신이 잡은 락만 삭제한다. 이미 없으면 아무 일도 하지 않는다."""
        try:
            record = await self.current()
        except ControlPlaneError as exc:
            raise LockReleaseFailed(f"fail to read {LOCK_REF}: {exc}") from exc
        if record is None:
            LOGGER.debug("잠금 %s 는 이미 해제되었습니다.", LOCK_REF)
            return
        if record.holder != self._holder:
            raise NotOwner(record.holder, self._holder)
        try:
            await self._client.delete(LOCK_REF)
        except ControlPlaneError as exc:
            if exc.kind is ApiErrorKind.NOT_FOUND:
                return
            raise LockReleaseFailed(f"fail to delete {LOCK_REF}: {exc}") from exc
        LOGGER.debug("잠금 %s 해제 (holder=%s)", LOCK_REF, self._holder)

    @asynccontextmanager
    async def held(self) -> AsyncIterator[LockRecord]:
        """락을 잡고, 어떤 경로로 빠져나가든 해제를 시도한다."""
        record = await self.acquire()
        try:
            yield record
        finally:
            try:
                await self.release()
            except (LockReleaseFailed, NotOwner) as exc:
                LOGGER.error(
                    "잠금 %s 해제 실패. 다음 실행 전에 직접 삭제하세요: %s",
                    LOCK_REF,
                    exc,
                )
