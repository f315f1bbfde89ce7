"""관리 대상 오브젝트의 매니페스트."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .constants import (
    CONTROLLER_MANAGER_NAME,
    DEFAULT_CONTROLLER_MANAGER_IMAGE,
    DEFAULT_TUNNEL_AGENT_IMAGE,
    DEFAULT_TUNNEL_SERVER_IMAGE,
    EDGE_WORKER_LABEL,
    LABEL_FALSE,
    LABEL_TRUE,
    NODE_CONTROLLER_SA_NAME,
    SYSTEM_NAMESPACE,
    TUNNEL_AGENT_NAME,
    TUNNEL_NAMESPACE,
    TUNNEL_SERVER_AGENT_PORT,
    TUNNEL_SERVER_MASTER_PORT,
    TUNNEL_SERVER_NAME,
    TUNNEL_SERVER_SVC_NAME,
)

_RBAC_API = "rbac.authorization.k8s.io"


@dataclass(slots=True)
class ComponentImages:
    controller_manager: str = DEFAULT_CONTROLLER_MANAGER_IMAGE
    tunnel_server: str = DEFAULT_TUNNEL_SERVER_IMAGE
    tunnel_agent: str = DEFAULT_TUNNEL_AGENT_IMAGE


def _metadata(name: str, namespace: str | None = None, app: str | None = None) -> dict[str, Any]:
    metadata: dict[str, Any] = {"name": name}
    if namespace:
        metadata["namespace"] = namespace
    if app:
        metadata["labels"] = {"k8s-app": app}
    return metadata


def _node_env() -> list[dict[str, Any]]:
    return [
        {"name": "NODE_NAME", "valueFrom": {"fieldRef": {"fieldPath": "spec.nodeName"}}},
        {"name": "NODE_IP", "valueFrom": {"fieldRef": {"fieldPath": "status.hostIP"}}},
    ]


def node_controller_service_account(_: ComponentImages) -> dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "ServiceAccount",
        "metadata": _metadata(NODE_CONTROLLER_SA_NAME, SYSTEM_NAMESPACE),
    }


# yurt-tunnel-server ---------------------------------------------------------


def tunnel_server_cluster_role(_: ComponentImages) -> dict[str, Any]:
    return {
        "apiVersion": f"{_RBAC_API}/v1",
        "kind": "ClusterRole",
        "metadata": _metadata(TUNNEL_SERVER_NAME),
        "rules": [
            {
                "apiGroups": ["certificates.k8s.io"],
                "resources": ["certificatesigningrequests"],
                "verbs": ["create", "get", "list", "watch"],
            },
            {
                "apiGroups": ["certificates.k8s.io"],
                "resources": ["certificatesigningrequests/approval"],
                "verbs": ["update"],
            },
            {"apiGroups": [""], "resources": ["endpoints", "nodes", "services"], "verbs": ["get", "list", "watch"]},
        ],
    }


def tunnel_server_service_account(_: ComponentImages) -> dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "ServiceAccount",
        "metadata": _metadata(TUNNEL_SERVER_NAME, TUNNEL_NAMESPACE),
    }


def tunnel_server_cluster_role_binding(_: ComponentImages) -> dict[str, Any]:
    return {
        "apiVersion": f"{_RBAC_API}/v1",
        "kind": "ClusterRoleBinding",
        "metadata": _metadata(TUNNEL_SERVER_NAME),
        "roleRef": {"apiGroup": _RBAC_API, "kind": "ClusterRole", "name": TUNNEL_SERVER_NAME},
        "subjects": [{"kind": "ServiceAccount", "name": TUNNEL_SERVER_NAME, "namespace": TUNNEL_NAMESPACE}],
    }


def tunnel_server_service(_: ComponentImages) -> dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": _metadata(TUNNEL_SERVER_SVC_NAME, TUNNEL_NAMESPACE, app=TUNNEL_SERVER_NAME),
        "spec": {
            "type": "NodePort",
            "selector": {"k8s-app": TUNNEL_SERVER_NAME},
            "ports": [
                {"name": "tcp", "port": TUNNEL_SERVER_AGENT_PORT, "targetPort": TUNNEL_SERVER_AGENT_PORT},
                {"name": "https", "port": TUNNEL_SERVER_MASTER_PORT, "targetPort": TUNNEL_SERVER_MASTER_PORT},
            ],
        },
    }


def tunnel_server_daemon_set(images: ComponentImages) -> dict[str, Any]:
    labels = {"k8s-app": TUNNEL_SERVER_NAME}
    return {
        "apiVersion": "apps/v1",
        "kind": "DaemonSet",
        "metadata": _metadata(TUNNEL_SERVER_NAME, TUNNEL_NAMESPACE, app=TUNNEL_SERVER_NAME),
        "spec": {
            "selector": {"matchLabels": labels},
            "template": {
                "metadata": {"labels": labels},
                "spec": {
                    "serviceAccountName": TUNNEL_SERVER_NAME,
                    "hostNetwork": True,
                    "nodeSelector": {EDGE_WORKER_LABEL: LABEL_FALSE},
                    "tolerations": [{"operator": "Exists"}],
                    "containers": [
                        {
                            "name": TUNNEL_SERVER_NAME,
                            "image": images.tunnel_server,
                            "imagePullPolicy": "IfNotPresent",
                            "command": ["yurt-tunnel-server"],
                            "args": ["--bind-address=$(NODE_IP)", "--v=2"],
                            "env": _node_env(),
                            "securityContext": {"capabilities": {"add": ["NET_ADMIN", "NET_RAW"]}},
                        }
                    ],
                },
            },
        },
    }


# yurt-tunnel-agent ----------------------------------------------------------


def tunnel_agent_cluster_role(_: ComponentImages) -> dict[str, Any]:
    return {
        "apiVersion": f"{_RBAC_API}/v1",
        "kind": "ClusterRole",
        "metadata": _metadata(TUNNEL_AGENT_NAME),
        "rules": [
            {
                "apiGroups": ["certificates.k8s.io"],
                "resources": ["certificatesigningrequests"],
                "verbs": ["create", "get", "list", "watch"],
            },
        ],
    }


def tunnel_agent_cluster_role_binding(_: ComponentImages) -> dict[str, Any]:
    return {
        "apiVersion": f"{_RBAC_API}/v1",
        "kind": "ClusterRoleBinding",
        "metadata": _metadata(TUNNEL_AGENT_NAME),
        "roleRef": {"apiGroup": _RBAC_API, "kind": "ClusterRole", "name": TUNNEL_AGENT_NAME},
        "subjects": [{"apiGroup": _RBAC_API, "kind": "Group", "name": "system:nodes"}],
    }


def tunnel_agent_daemon_set(images: ComponentImages) -> dict[str, Any]:
    labels = {"k8s-app": TUNNEL_AGENT_NAME}
    return {
        "apiVersion": "apps/v1",
        "kind": "DaemonSet",
        "metadata": _metadata(TUNNEL_AGENT_NAME, TUNNEL_NAMESPACE, app=TUNNEL_AGENT_NAME),
        "spec": {
            "selector": {"matchLabels": labels},
            "template": {
                "metadata": {"labels": labels},
                "spec": {
                    "hostNetwork": True,
                    "nodeSelector": {EDGE_WORKER_LABEL: LABEL_TRUE},
                    "tolerations": [{"operator": "Exists"}],
                    "containers": [
                        {
                            "name": TUNNEL_AGENT_NAME,
                            "image": images.tunnel_agent,
                            "imagePullPolicy": "IfNotPresent",
                            "command": ["yurt-tunnel-agent"],
                            "args": ["--node-name=$(NODE_NAME)", "--v=2"],
                            "env": _node_env(),
                            "volumeMounts": [{"name": "k8s-dir", "mountPath": "/etc/kubernetes"}],
                        }
                    ],
                    "volumes": [{"name": "k8s-dir", "hostPath": {"path": "/etc/kubernetes", "type": "Directory"}}],
                },
            },
        },
    }


# yurt-controller-manager ----------------------------------------------------


def controller_manager_deployment(images: ComponentImages) -> dict[str, Any]:
    labels = {"app": CONTROLLER_MANAGER_NAME}
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": _metadata(CONTROLLER_MANAGER_NAME, SYSTEM_NAMESPACE),
        "spec": {
            "replicas": 1,
            "selector": {"matchLabels": labels},
            "template": {
                "metadata": {"labels": labels},
                "spec": {
                    "nodeSelector": {EDGE_WORKER_LABEL: LABEL_FALSE},
                    "tolerations": [{"operator": "Exists", "effect": "NoSchedule"}],
                    "containers": [
                        {
                            "name": CONTROLLER_MANAGER_NAME,
                            "image": images.controller_manager,
                            "imagePullPolicy": "IfNotPresent",
                            "command": ["yurt-controller-manager"],
                        }
                    ],
                },
            },
        },
    }
