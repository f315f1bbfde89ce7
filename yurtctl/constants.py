"""yurtctl 전역 상수."""

from __future__ import annotations

# 노드 레이블/어노테이션
EDGE_WORKER_LABEL = "alibabacloud.com/is-edge-worker"
AUTONOMY_ANNOTATION = "node.beta.alibabacloud.com/autonomy"
LABEL_TRUE = "true"
LABEL_FALSE = "false"

# 관리 대상 오브젝트
SYSTEM_NAMESPACE = "kube-system"
CONTROLLER_MANAGER_NAME = "yurt-controller-manager"
NODE_CONTROLLER_SA_NAME = "node-controller"
TUNNEL_NAMESPACE = SYSTEM_NAMESPACE
TUNNEL_SERVER_NAME = "yurt-tunnel-server"
TUNNEL_AGENT_NAME = "yurt-tunnel-agent"
TUNNEL_SERVER_SVC_NAME = "x-tunnel-server-svc"
TUNNEL_SERVER_AGENT_PORT = 10262
TUNNEL_SERVER_MASTER_PORT = 10263

# 전역 락
LOCK_NAME = "yurtctl-lock"
LOCK_NAMESPACE = SYSTEM_NAMESPACE
ANNOTATION_LOCK_HOLDER = "openyurt.io/yurtctllock.holder"
ANNOTATION_LOCK_ACQUIRED = "openyurt.io/yurtctllock.acquire.time"

# servant job
SERVANT_NAMESPACE = SYSTEM_NAMESPACE
SERVANT_JOB_PREFIX = "yurtctl-servant"
SERVANT_APP_LABEL = "yurtctl-servant"
SERVANT_ACTION_LABEL = "openyurt.io/servant-action"
SERVANT_JOB_TTL_SECONDS = 100
DEFAULT_JOB_TIMEOUT = 300.0
DEFAULT_JOB_POLL_INTERVAL = 2.0

# 기본 이미지
DEFAULT_SERVANT_IMAGE = "openyurt/yurtctl-servant:latest"
DEFAULT_YURTHUB_IMAGE = "openyurt/yurthub:latest"
DEFAULT_CONTROLLER_MANAGER_IMAGE = "openyurt/yurt-controller-manager:latest"
DEFAULT_TUNNEL_SERVER_IMAGE = "openyurt/yurt-tunnel-server:latest"
DEFAULT_TUNNEL_AGENT_IMAGE = "openyurt/yurt-tunnel-agent:latest"

# 지원하는 최소 쿠버네티스 버전
MIN_SERVER_VERSION = (1, 12)
