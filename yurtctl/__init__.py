"""쿠버네티스 클러스터와 edge autonomy 클러스터 사이를 전환하는 도구."""

from .errors import (
    ApiErrorKind,
    ControlPlaneError,
    JobDispatchFailed,
    LockHeld,
    NodeUpdateFailed,
    ResourceMutationFailed,
    TransitionError,
    UnsupportedVersion,
)
from .kube import ControlPlaneClient, DryRunClient, KubeApiClient
from .lock import LockManager
from .models import Direction, TransitionResult, TransitionState
from .transition import TransitionOptions, TransitionSequencer

__all__ = [
    "ApiErrorKind",
    "ControlPlaneClient",
    "ControlPlaneError",
    "Direction",
    "DryRunClient",
    "JobDispatchFailed",
    "KubeApiClient",
    "LockHeld",
    "LockManager",
    "NodeUpdateFailed",
    "ResourceMutationFailed",
    "TransitionError",
    "TransitionOptions",
    "TransitionResult",
    "TransitionSequencer",
    "TransitionState",
    "UnsupportedVersion",
]
