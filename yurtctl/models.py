"""yurtctl 도메인 모델."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .constants import EDGE_WORKER_LABEL, LABEL_TRUE
from .errors import TransitionError


class Direction(str, Enum):
    """전환 방향."""

    CONVERT = "convert"
    REVERT = "revert"


class TransitionState(str, Enum):
    """전환 상태 머신의 상태."""

    IDLE = "idle"
    LOCK_ACQUIRED = "lock-acquired"
    VALIDATED = "validated"
    NODES_CLASSIFIED = "nodes-classified"
    RESOURCES_MUTATED = "resources-mutated"
    JOBS_DISPATCHED = "jobs-dispatched"
    COMPLETED = "completed"
    FAILED = "failed"
    LOCK_RELEASED = "lock-released"


class MutationAction(str, Enum):
    """리소스 변경 단계의 종류."""

    CREATE_IF_ABSENT = "create-if-absent"
    UPDATE_IF_PRESENT = "update-if-present"
    DELETE_IF_EXISTS = "delete-if-exists"


class JobOutcome(str, Enum):
    """servant job 종료 상태."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed-out"


class ResourceKind(str, Enum):
    """yurtctl 이 다루는 오브젝트 종류."""

    CONFIG_MAP = "ConfigMap"
    NODE = "Node"
    SERVICE_ACCOUNT = "ServiceAccount"
    SERVICE = "Service"
    DEPLOYMENT = "Deployment"
    DAEMON_SET = "DaemonSet"
    CLUSTER_ROLE = "ClusterRole"
    CLUSTER_ROLE_BINDING = "ClusterRoleBinding"
    JOB = "Job"


@dataclass(frozen=True, slots=True)
class ResourceRef:
    """오브젝트 식별자."""

    kind: ResourceKind
    name: str
    namespace: str | None = None

    def __str__(self) -> str:
        if self.namespace:
            return f"{self.kind.value.lower()}/{self.namespace}/{self.name}"
        return f"{self.kind.value.lower()}/{self.name}"


@dataclass(slots=True)
class NodeRecord:
    """노드 정보. raw 는 API 서버가 돌려준 원본 오브젝트."""

    name: str
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    resource_version: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def is_edge(self) -> bool:
        return self.labels.get(EDGE_WORKER_LABEL) == LABEL_TRUE

    @classmethod
    def from_object(cls, obj: dict[str, Any]) -> "NodeRecord":
        metadata = obj.get("metadata") or {}
        return cls(
            name=metadata.get("name", ""),
            labels=dict(metadata.get("labels") or {}),
            annotations=dict(metadata.get("annotations") or {}),
            resource_version=metadata.get("resourceVersion"),
            raw=obj,
        )

    def to_object(self) -> dict[str, Any]:
        obj = dict(self.raw)
        metadata = dict(obj.get("metadata") or {})
        metadata["name"] = self.name
        metadata["labels"] = dict(self.labels)
        metadata["annotations"] = dict(self.annotations)
        if self.resource_version is not None:
            metadata["resourceVersion"] = self.resource_version
        obj["metadata"] = metadata
        obj.setdefault("apiVersion", "v1")
        obj.setdefault("kind", "Node")
        return obj


@dataclass(frozen=True, slots=True)
class LockRecord:
    holder: str | None
    acquired_at: str | None


@dataclass(frozen=True, slots=True)
class MutationStep:
    """순서가 정해진 리소스 변경 단계 하나."""

    index: int
    action: MutationAction
    ref: ResourceRef
    body: dict[str, Any] | None = field(default=None, compare=False)

    def describe(self) -> str:
        return f"{self.action.value} {self.ref}"


@dataclass(slots=True)
class ServantJob:
    """노드 하나에서 실행되는 servant job 명세."""

    node: str
    action: str
    image: str
    params: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class JobResult:
    node: str
    outcome: JobOutcome
    detail: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.outcome is JobOutcome.SUCCEEDED


@dataclass(slots=True)
class TransitionResult:
    """한 번의 convert/revert 실행 결과."""

    direction: Direction
    state: TransitionState
    history: list[TransitionState] = field(default_factory=list)
    edge_nodes: tuple[str, ...] = ()
    error: TransitionError | None = None
    failed_nodes: tuple[str, ...] = ()

    @property
    def succeeded(self) -> bool:
        return self.state is TransitionState.COMPLETED

    @property
    def failed_step(self) -> str | None:
        return self.error.step if self.error is not None else None
