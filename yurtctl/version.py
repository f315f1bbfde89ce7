"""API 서버 버전 검사."""

from __future__ import annotations

import logging
import re
from typing import Any

from .constants import MIN_SERVER_VERSION
from .errors import UnsupportedVersion
from .kube import ControlPlaneClient

LOGGER = logging.getLogger(__name__)

_VERSION_RE = re.compile(r"^v?(\d+)\.(\d+)")


def parse_server_version(info: dict[str, Any]) -> tuple[int, int] | None:
    """``/version`` 응답에서 (major, minor) 를 뽑는다."""
    match = _VERSION_RE.match(str(info.get("gitVersion", "")))
    if match:
        return int(match.group(1)), int(match.group(2))
    # EKS/GKE 는 minor 에 "16+" 처럼 접미사를 붙인다
    major = re.match(r"\d+", str(info.get("major", "")))
    minor = re.match(r"\d+", str(info.get("minor", "")))
    if major and minor:
        return int(major.group()), int(minor.group())
    return None


async def validate_server_version(
    client: ControlPlaneClient,
    floor: tuple[int, int] = MIN_SERVER_VERSION,
) -> tuple[int, int]:
    info = await client.server_version()
    label = str(info.get("gitVersion") or f"{info.get('major', '?')}.{info.get('minor', '?')}")
    version = parse_server_version(info)
    if version is None or version < floor:
        raise UnsupportedVersion(label, floor)
    LOGGER.debug("지원되는 서버 버전 %s", label)
    return version
