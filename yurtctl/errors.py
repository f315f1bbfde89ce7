"""yurtctl 예외 계층."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from .models import JobResult, MutationStep


class ApiErrorKind(str, Enum):
    """컨트롤 플레인 API 오류 분류."""

    NOT_FOUND = "not-found"
    ALREADY_EXISTS = "already-exists"
    CONFLICT = "conflict"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    INVALID = "invalid"
    TIMEOUT = "timeout"
    UNAVAILABLE = "unavailable"
    UNKNOWN = "unknown"


_REASON_KINDS = {
    "NotFound": ApiErrorKind.NOT_FOUND,
    "AlreadyExists": ApiErrorKind.ALREADY_EXISTS,
    "Conflict": ApiErrorKind.CONFLICT,
    "Unauthorized": ApiErrorKind.UNAUTHORIZED,
    "Forbidden": ApiErrorKind.FORBIDDEN,
    "Invalid": ApiErrorKind.INVALID,
    "Timeout": ApiErrorKind.TIMEOUT,
    "ServerTimeout": ApiErrorKind.TIMEOUT,
    "ServiceUnavailable": ApiErrorKind.UNAVAILABLE,
}

_STATUS_KINDS = {
    401: ApiErrorKind.UNAUTHORIZED,
    403: ApiErrorKind.FORBIDDEN,
    404: ApiErrorKind.NOT_FOUND,
    409: ApiErrorKind.CONFLICT,
    422: ApiErrorKind.INVALID,
    503: ApiErrorKind.UNAVAILABLE,
    504: ApiErrorKind.TIMEOUT,
}


def classify_status(status: int, reason: str | None = None) -> ApiErrorKind:
    """HTTP 상태 코드와 Status.reason 으로 오류 종류를 결정한다."""
    if reason and reason in _REASON_KINDS:
        return _REASON_KINDS[reason]
    return _STATUS_KINDS.get(status, ApiErrorKind.UNKNOWN)


class YurtctlError(Exception):
    """yurtctl 최상위 예외."""


class ConfigError(YurtctlError):
    """kubeconfig 등 설정이 올바르지 않음."""


class ControlPlaneError(YurtctlError):
    """컨트롤 플레인 호출 실패."""

    def __init__(self, kind: ApiErrorKind, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.status = status

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.args[0]}"


class TransitionError(YurtctlError):
    """전환을 중단시키는 치명적 오류."""

    step = "transition"

    def __init__(self, message: str, *, step: str | None = None) -> None:
        super().__init__(message)
        if step is not None:
            self.step = step


class LockHeld(TransitionError):
    step = "acquire-lock"

    def __init__(self, holder: str | None, acquired_at: str | None = None) -> None:
        super().__init__(f"lock is held by {holder or 'unknown holder'} since {acquired_at or 'unknown time'}")
        self.holder = holder
        self.acquired_at = acquired_at


class NotOwner(TransitionError):
    step = "release-lock"

    def __init__(self, holder: str | None, caller: str) -> None:
        super().__init__(f"lock is held by {holder}, not by {caller}")
        self.holder = holder
        self.caller = caller


class LockReleaseFailed(TransitionError):
    step = "release-lock"


class UnsupportedVersion(TransitionError):
    step = "validate-version"

    def __init__(self, version: str, floor: tuple[int, int]) -> None:
        super().__init__(f"server version {version!r} is not supported (requires >= {floor[0]}.{floor[1]})")
        self.version = version
        self.floor = floor


class NodeUpdateFailed(TransitionError):
    step = "classify-nodes"

    def __init__(self, node: str | None, cause: Exception) -> None:
        target = f"node/{node}" if node else "node list"
        super().__init__(f"fail to update {target}: {cause}")
        self.node = node
        self.cause = cause


class ResourceMutationFailed(TransitionError):
    step = "mutate-resources"

    def __init__(self, mutation: "MutationStep", cause: Exception) -> None:
        super().__init__(f"step {mutation.index} ({mutation.describe()}) failed: {cause}")
        self.mutation = mutation
        self.cause = cause


class JobDispatchFailed(TransitionError):
    step = "dispatch-jobs"

    def __init__(self, failed_nodes: Iterable[str], results: Iterable["JobResult"] = ()) -> None:
        self.failed_nodes = tuple(sorted(failed_nodes))
        self.results = tuple(results)
        super().__init__(f"servant job failed on node(s): {', '.join(self.failed_nodes)}")


class TransitionCancelled(TransitionError):
    def __init__(self, before: str) -> None:
        super().__init__(f"cancelled before {before}", step=before)
