"""yurtctl convert/revert 진입점."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
from contextlib import suppress
from typing import Sequence

from .constants import (
    DEFAULT_CONTROLLER_MANAGER_IMAGE,
    DEFAULT_JOB_POLL_INTERVAL,
    DEFAULT_JOB_TIMEOUT,
    DEFAULT_SERVANT_IMAGE,
    DEFAULT_TUNNEL_AGENT_IMAGE,
    DEFAULT_TUNNEL_SERVER_IMAGE,
    DEFAULT_YURTHUB_IMAGE,
)
from .errors import ConfigError, TransitionCancelled
from .kube import ControlPlaneClient, DryRunClient, KubeApiClient
from .kubeconfig import resolve_config
from .manifests import ComponentImages
from .models import Direction, TransitionResult
from .nodes import exclude_by_name, select_by_name, select_none
from .servant import ServantJobDispatcher
from .transition import TransitionOptions, TransitionSequencer

LOGGER = logging.getLogger(__name__)


def _split_csv(value: str | None) -> frozenset[str]:
    if not value:
        return frozenset()
    return frozenset(item for part in value.split(",") if (item := part.strip()))


def _common_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument("--kubeconfig", default=os.getenv("KUBECONFIG"), help="kubeconfig 파일 경로")
    parser.add_argument("--context", default=None, help="사용할 kubeconfig context (기본: current-context)")
    parser.add_argument("--log-level", default=os.getenv("YURTCTL_LOG_LEVEL", "INFO"), help="로그 레벨")
    parser.add_argument("--verbose", action="store_true", help="디버그 로그 활성화")
    parser.add_argument("--dry-run", action="store_true", help="변경 없이 수행할 작업만 출력")
    parser.add_argument("--skip-version-check", action="store_true", help="API 서버 버전 검사를 건너뜀")
    parser.add_argument(
        "--yurtctl-servant-image",
        default=os.getenv("YURTCTL_SERVANT_IMAGE", DEFAULT_SERVANT_IMAGE),
        help="노드 작업에 사용할 yurtctl-servant 이미지",
    )
    parser.add_argument("--job-timeout", type=float, default=DEFAULT_JOB_TIMEOUT, help="servant job 타임아웃(초)")
    parser.add_argument(
        "--job-poll-interval",
        type=float,
        default=DEFAULT_JOB_POLL_INTERVAL,
        help="servant job 상태 확인 주기(초)",
    )
    parser.add_argument("--request-timeout", type=float, default=30.0, help="API 요청 타임아웃(초)")
    return parser


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    common = _common_parser()
    parser = argparse.ArgumentParser(prog="yurtctl", description="쿠버네티스 클러스터를 edge autonomy 클러스터로 전환")
    subparsers = parser.add_subparsers(dest="command", required=True)

    convert = subparsers.add_parser(
        "convert",
        parents=[common],
        help="쿠버네티스 클러스터를 yurt 클러스터로 전환",
    )
    convert.add_argument("--cloud-nodes", required=True, help="cloud 노드 이름 목록(콤마 구분). 나머지는 edge 노드")
    convert.add_argument("--autonomous-nodes", default=None, help="autonomy 를 켤 edge 노드 목록(콤마 구분)")
    convert.add_argument("--all-autonomous", action="store_true", help="모든 edge 노드에 autonomy 를 켬")
    convert.add_argument(
        "--yurthub-image",
        default=os.getenv("YURTHUB_IMAGE", DEFAULT_YURTHUB_IMAGE),
        help="edge 노드에 설치할 yurthub 이미지",
    )
    convert.add_argument(
        "--yurt-controller-manager-image",
        default=os.getenv("YURT_CONTROLLER_MANAGER_IMAGE", DEFAULT_CONTROLLER_MANAGER_IMAGE),
        help="yurt-controller-manager 이미지",
    )
    convert.add_argument(
        "--yurt-tunnel-server-image",
        default=os.getenv("YURT_TUNNEL_SERVER_IMAGE", DEFAULT_TUNNEL_SERVER_IMAGE),
        help="yurt-tunnel-server 이미지",
    )
    convert.add_argument(
        "--yurt-tunnel-agent-image",
        default=os.getenv("YURT_TUNNEL_AGENT_IMAGE", DEFAULT_TUNNEL_AGENT_IMAGE),
        help="yurt-tunnel-agent 이미지",
    )

    subparsers.add_parser(
        "revert",
        parents=[common],
        help="yurt 클러스터를 쿠버네티스 클러스터로 되돌림",
    )
    return parser.parse_args(argv)


def configure_logging(level_name: str, verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(level=level, format="[%(asctime)s] %(levelname)s %(name)s: %(message)s")


def build_options(args: argparse.Namespace) -> TransitionOptions:
    options = TransitionOptions(
        servant_image=args.yurtctl_servant_image,
        validate_version=not args.skip_version_check,
    )
    if args.command != Direction.CONVERT.value:
        return options

    options.yurthub_image = args.yurthub_image
    options.images = ComponentImages(
        controller_manager=args.yurt_controller_manager_image,
        tunnel_server=args.yurt_tunnel_server_image,
        tunnel_agent=args.yurt_tunnel_agent_image,
    )
    options.is_edge = exclude_by_name(_split_csv(args.cloud_nodes))
    if args.all_autonomous:
        options.is_autonomous = lambda _: True
    elif args.autonomous_nodes:
        options.is_autonomous = select_by_name(_split_csv(args.autonomous_nodes))
    else:
        options.is_autonomous = select_none
    return options


async def run_transition(
    args: argparse.Namespace,
    client: ControlPlaneClient,
    stop_event: asyncio.Event | None = None,
) -> TransitionResult:
    if args.dry_run:
        client = DryRunClient(client)
    dispatcher = ServantJobDispatcher(client, timeout=args.job_timeout, poll_interval=args.job_poll_interval)
    sequencer = TransitionSequencer(client, build_options(args), dispatcher=dispatcher, stop_event=stop_event)
    return await sequencer.run(Direction(args.command))


async def _run(args: argparse.Namespace) -> TransitionResult:
    config = resolve_config(args.kubeconfig, args.context)
    stop_event = asyncio.Event()

    def _handle_signal(*_: signal.Signals) -> None:
        LOGGER.warning("종료 시그널을 받았습니다. 현재 단계가 끝나면 멈춥니다.")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with suppress(NotImplementedError):
            loop.add_signal_handler(sig, _handle_signal)

    async with KubeApiClient(config, timeout=args.request_timeout) as client:
        return await run_transition(args, client, stop_event)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level, args.verbose)
    try:
        result = asyncio.run(_run(args))
    except ConfigError as exc:
        LOGGER.error("설정 오류: %s", exc)
        return 2
    except KeyboardInterrupt:
        LOGGER.info("사용자 요청으로 중단되었습니다.")
        return 130
    except Exception:  # noqa: BLE001
        LOGGER.exception("%s 실행 중 치명적 오류", args.command)
        return 1

    if result.succeeded:
        return 0
    if isinstance(result.error, TransitionCancelled):
        LOGGER.warning("%s 중단됨: %s", args.command, result.error)
        return 130
    if result.failed_nodes:
        LOGGER.error("servant job 이 실패한 노드: %s", ", ".join(result.failed_nodes))
    LOGGER.error("클러스터 %s 실패: %s", args.command, result.error)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
