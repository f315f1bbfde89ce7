"""convert/revert 전환 상태 머신."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from .constants import DEFAULT_SERVANT_IMAGE, DEFAULT_YURTHUB_IMAGE, MIN_SERVER_VERSION
from .errors import ControlPlaneError, JobDispatchFailed, TransitionCancelled, TransitionError
from .kube import ControlPlaneClient
from .lock import LockManager
from .manifests import ComponentImages
from .models import Direction, TransitionResult, TransitionState
from .nodes import NodeClassifier, NodePredicate, select_none
from .resources import ResourceMutator, plan
from .servant import ServantJobDispatcher
from .version import validate_server_version

LOGGER = logging.getLogger(__name__)

_FORWARD = (
    TransitionState.IDLE,
    TransitionState.LOCK_ACQUIRED,
    TransitionState.VALIDATED,
    TransitionState.NODES_CLASSIFIED,
    TransitionState.RESOURCES_MUTATED,
    TransitionState.JOBS_DISPATCHED,
    TransitionState.COMPLETED,
)


@dataclass(slots=True)
class TransitionOptions:
    """전환 한 번에 필요한 입력."""

    servant_image: str = DEFAULT_SERVANT_IMAGE
    yurthub_image: str = DEFAULT_YURTHUB_IMAGE
    images: ComponentImages = field(default_factory=ComponentImages)
    is_edge: NodePredicate = select_none
    is_autonomous: NodePredicate = select_none
    validate_version: bool = True
    version_floor: tuple[int, int] = MIN_SERVER_VERSION

    def servant_params(self, direction: Direction) -> dict[str, str]:
        if direction is Direction.CONVERT:
            return {"yurthub_image": self.yurthub_image}
        return {}


class TransitionSequencer:
    """락 → 버전 검사 → 노드 분류 → 리소스 변경 → servant job 순서로 진행한다.

    첫 번째 치명적 오류에서 멈추고, 락을 잡았다면 어떤 경우에도 해제를 시도한
    뒤 결과를 돌려준다. 자동 롤백과 재시도는 없다. 실패한 전환은 같은 방향으로
    다시 실행하면 된다.
    """

    def __init__(
        self,
        client: ControlPlaneClient,
        options: TransitionOptions | None = None,
        *,
        lock: LockManager | None = None,
        dispatcher: ServantJobDispatcher | None = None,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        self._client = client
        self._options = options or TransitionOptions()
        self._lock = lock or LockManager(client)
        self._classifier = NodeClassifier(client)
        self._mutator = ResourceMutator(client)
        self._dispatcher = dispatcher or ServantJobDispatcher(client)
        self._stop_event = stop_event or asyncio.Event()

    async def convert(self) -> TransitionResult:
        return await self.run(Direction.CONVERT)

    async def revert(self) -> TransitionResult:
        return await self.run(Direction.REVERT)

    async def run(self, direction: Direction) -> TransitionResult:
        result = TransitionResult(direction=direction, state=TransitionState.IDLE, history=[TransitionState.IDLE])
        LOGGER.info("클러스터 %s 시작", direction.value)
        try:
            self._check_stop("acquire-lock")
            async with self._lock.held():
                self._advance(result, TransitionState.LOCK_ACQUIRED)
                LOGGER.debug("잠금 획득")
                try:
                    await self._run_steps(direction, result)
                except TransitionError as exc:
                    self._fail(result, exc)
                else:
                    self._advance(result, TransitionState.COMPLETED)
            result.history.append(TransitionState.LOCK_RELEASED)
        except ControlPlaneError as exc:
            self._fail(result, TransitionError(f"fail to acquire the lock: {exc}", step="acquire-lock"))
        except TransitionError as exc:
            self._fail(result, exc)

        if result.succeeded:
            LOGGER.info("클러스터 %s 완료", direction.value)
        return result

    async def _run_steps(self, direction: Direction, result: TransitionResult) -> None:
        # 1. check the server version
        self._check_stop("validate-version")
        if self._options.validate_version:
            try:
                await validate_server_version(self._client, self._options.version_floor)
            except ControlPlaneError as exc:
                raise TransitionError(f"fail to read the server version: {exc}", step="validate-version") from exc
            LOGGER.debug("서버 버전 확인 완료")
        else:
            LOGGER.warning("서버 버전 확인을 건너뜁니다.")
        self._advance(result, TransitionState.VALIDATED)

        # 2. label or unlabel nodes
        self._check_stop("classify-nodes")
        if direction is Direction.CONVERT:
            edge_nodes = await self._classifier.classify_for_convert(
                self._options.is_edge,
                self._options.is_autonomous,
            )
        else:
            edge_nodes = await self._classifier.classify_for_revert()
        result.edge_nodes = tuple(edge_nodes)
        self._advance(result, TransitionState.NODES_CLASSIFIED)
        LOGGER.info("edge 노드 %d 개: %s", len(edge_nodes), ", ".join(edge_nodes) or "-")

        # 3. create or remove the managed resources
        self._check_stop("mutate-resources")
        await self._mutator.apply(plan(direction, self._options.images), self._stop_event)
        self._advance(result, TransitionState.RESOURCES_MUTATED)

        # 4. run servant jobs on every edge node
        self._check_stop("dispatch-jobs")
        try:
            await self._dispatcher.dispatch(
                edge_nodes,
                direction.value,
                self._options.servant_image,
                self._options.servant_params(direction),
            )
        except JobDispatchFailed as exc:
            result.failed_nodes = exc.failed_nodes
            raise
        self._advance(result, TransitionState.JOBS_DISPATCHED)

    def _check_stop(self, before: str) -> None:
        if self._stop_event.is_set():
            raise TransitionCancelled(before)

    def _advance(self, result: TransitionResult, state: TransitionState) -> None:
        if _FORWARD.index(state) <= _FORWARD.index(result.state):
            raise RuntimeError(f"invalid transition {result.state.value} -> {state.value}")
        result.state = state
        result.history.append(state)

    def _fail(self, result: TransitionResult, exc: TransitionError) -> None:
        LOGGER.error("클러스터 %s 실패 (단계 %s): %s", result.direction.value, exc.step, exc)
        result.error = exc
        result.state = TransitionState.FAILED
        result.history.append(TransitionState.FAILED)
