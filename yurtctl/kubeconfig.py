"""kubeconfig 및 in-cluster 인증 정보 로더."""

from __future__ import annotations

import base64
import logging
import os
import ssl
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError

LOGGER = logging.getLogger(__name__)

_SERVICE_ACCOUNT_DIR = Path("/var/run/secrets/kubernetes.io/serviceaccount")


@dataclass(slots=True)
class KubeConfig:
    """API 서버 접속 정보."""

    server: str
    token: str | None = None
    ca_file: str | None = None
    ca_data: bytes | None = None
    client_cert_file: str | None = None
    client_key_file: str | None = None
    client_cert_data: bytes | None = None
    client_key_data: bytes | None = None
    insecure: bool = False

    def headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def ssl_context(self) -> ssl.SSLContext | bool:
        if not self.server.startswith("https://"):
            return False
        try:
            return self._build_ssl_context()
        except OSError as exc:
            raise ConfigError(f"fail to load TLS credentials: {exc}") from exc

    def _build_ssl_context(self) -> ssl.SSLContext:
        if self.insecure:
            context = ssl.create_default_context()
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        elif self.ca_data is not None:
            context = ssl.create_default_context(cadata=self.ca_data.decode())
        else:
            context = ssl.create_default_context(cafile=self.ca_file)

        if self.client_cert_file and self.client_key_file:
            context.load_cert_chain(self.client_cert_file, self.client_key_file)
        elif self.client_cert_data is not None and self.client_key_data is not None:
            _load_cert_chain_data(context, self.client_cert_data, self.client_key_data)
        return context


def _load_cert_chain_data(context: ssl.SSLContext, cert: bytes, key: bytes) -> None:
    # ssl 모듈은 파일 경로만 받는다
    with tempfile.TemporaryDirectory(prefix="yurtctl-") as tmpdir:
        cert_path = Path(tmpdir) / "client.crt"
        key_path = Path(tmpdir) / "client.key"
        cert_path.write_bytes(cert)
        key_path.write_bytes(key)
        key_path.chmod(0o600)
        context.load_cert_chain(str(cert_path), str(key_path))


def _decode(value: str | None) -> bytes | None:
    if not value:
        return None
    try:
        return base64.b64decode(value)
    except ValueError as exc:
        raise ConfigError(f"invalid base64 data in kubeconfig: {exc}") from exc


def _resolve_path(base: Path, value: str | None) -> str | None:
    if not value:
        return None
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = base / path
    return str(path)


def _named(items: list[dict[str, Any]] | None, name: str, section: str) -> dict[str, Any]:
    for item in items or []:
        if item.get("name") == name:
            return item.get(section) or {}
    raise ConfigError(f"{section} {name!r} not found in kubeconfig")


def load_kubeconfig(path: str | Path, context: str | None = None) -> KubeConfig:
    """kubeconfig 파일에서 지정한(또는 현재) context 의 접속 정보를 읽는다."""
    config_path = Path(path).expanduser()
    try:
        data = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    except OSError as exc:
        raise ConfigError(f"fail to read kubeconfig {config_path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"fail to parse kubeconfig {config_path}: {exc}") from exc

    context_name = context or data.get("current-context")
    if not context_name:
        raise ConfigError(f"no context selected in kubeconfig {config_path}")
    ctx = _named(data.get("contexts"), context_name, "context")
    cluster = _named(data.get("clusters"), ctx.get("cluster", ""), "cluster")
    user = _named(data.get("users"), ctx["user"], "user") if ctx.get("user") else {}

    server = cluster.get("server")
    if not server:
        raise ConfigError(f"cluster of context {context_name!r} has no server address")

    base = config_path.parent
    token = user.get("token")
    token_file = _resolve_path(base, user.get("tokenFile"))
    if token is None and token_file:
        try:
            token = Path(token_file).read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise ConfigError(f"fail to read token file {token_file}: {exc}") from exc

    LOGGER.debug("context %s 사용 (server %s)", context_name, server)
    return KubeConfig(
        server=server.rstrip("/"),
        token=token,
        ca_file=_resolve_path(base, cluster.get("certificate-authority")),
        ca_data=_decode(cluster.get("certificate-authority-data")),
        client_cert_file=_resolve_path(base, user.get("client-certificate")),
        client_key_file=_resolve_path(base, user.get("client-key")),
        client_cert_data=_decode(user.get("client-certificate-data")),
        client_key_data=_decode(user.get("client-key-data")),
        insecure=bool(cluster.get("insecure-skip-tls-verify", False)),
    )


def in_cluster_config(sa_dir: Path = _SERVICE_ACCOUNT_DIR) -> KubeConfig:
    host = os.getenv("KUBERNETES_SERVICE_HOST")
    port = os.getenv("KUBERNETES_SERVICE_PORT", "443")
    if not host:
        raise ConfigError("KUBERNETES_SERVICE_HOST is not set; not running inside a cluster")
    try:
        token = (sa_dir / "token").read_text(encoding="utf-8").strip()
    except OSError as exc:
        raise ConfigError(f"fail to read service account token: {exc}") from exc
    if ":" in host:
        host = f"[{host}]"
    return KubeConfig(server=f"https://{host}:{port}", token=token, ca_file=str(sa_dir / "ca.crt"))


def resolve_config(path: str | None = None, context: str | None = None) -> KubeConfig:
    """--kubeconfig, $KUBECONFIG, ~/.kube/config, in-cluster 순서로 접속 정보를 찾는다."""
    if path:
        return load_kubeconfig(path, context)
    env_paths = [item for item in os.getenv("KUBECONFIG", "").split(os.pathsep) if item]
    if env_paths:
        return load_kubeconfig(env_paths[0], context)
    default_path = Path.home() / ".kube" / "config"
    if default_path.exists():
        return load_kubeconfig(default_path, context)
    return in_cluster_config()
