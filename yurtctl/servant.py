"""노드별 servant job 배포와 결과 수집."""

from __future__ import annotations

import asyncio
import hashlib
import logging
import uuid
from typing import Any, Iterable, Mapping, Sequence

from .constants import (
    DEFAULT_JOB_POLL_INTERVAL,
    DEFAULT_JOB_TIMEOUT,
    SERVANT_ACTION_LABEL,
    SERVANT_APP_LABEL,
    SERVANT_JOB_PREFIX,
    SERVANT_JOB_TTL_SECONDS,
    SERVANT_NAMESPACE,
)
from .errors import ControlPlaneError, JobDispatchFailed
from .kube import ControlPlaneClient
from .models import JobOutcome, JobResult, ResourceKind, ResourceRef, ServantJob

LOGGER = logging.getLogger(__name__)

_MAX_NAME_LENGTH = 63


def servant_job_name(action: str, node: str, suffix: str) -> str:
    """DNS label 길이 제한에 맞춘 job 이름."""
    name = f"{SERVANT_JOB_PREFIX}-{action}-{node}-{suffix}".lower()
    if len(name) <= _MAX_NAME_LENGTH:
        return name
    digest = hashlib.sha1(node.encode("utf-8")).hexdigest()[:8]
    head = f"{SERVANT_JOB_PREFIX}-{action}-"
    tail = f"-{digest}-{suffix}"
    room = _MAX_NAME_LENGTH - len(head) - len(tail)
    return f"{head}{node[:room].rstrip('-.')}{tail}".lower()


def render_job(job: ServantJob, name: str, timeout: float, namespace: str = SERVANT_NAMESPACE) -> dict[str, Any]:
    env = [{"name": "ACTION", "value": job.action}, {"name": "NODE_NAME", "value": job.node}]
    env.extend({"name": key.upper(), "value": value} for key, value in sorted(job.params.items()))
    labels = {"app": SERVANT_APP_LABEL, SERVANT_ACTION_LABEL: job.action}
    return {
        "apiVersion": "batch/v1",
        "kind": "Job",
        "metadata": {"name": name, "namespace": namespace, "labels": labels},
        "spec": {
            "backoffLimit": 0,
            "activeDeadlineSeconds": max(int(timeout), 1),
            "ttlSecondsAfterFinished": SERVANT_JOB_TTL_SECONDS,
            "template": {
                "metadata": {"labels": labels},
                "spec": {
                    "nodeName": job.node,
                    "hostPID": True,
                    "hostNetwork": True,
                    "restartPolicy": "Never",
                    "tolerations": [{"operator": "Exists"}],
                    "containers": [
                        {
                            "name": SERVANT_APP_LABEL,
                            "image": job.image,
                            "imagePullPolicy": "IfNotPresent",
                            "command": ["/usr/local/bin/entry.sh"],
                            "args": [job.action],
                            "env": env,
                            "securityContext": {"privileged": True},
                        }
                    ],
                },
            },
        },
    }


def job_outcome(obj: Mapping[str, Any]) -> JobOutcome | None:
    """Job 오브젝트의 종료 상태. 아직 실행 중이면 None."""
    status = obj.get("status") or {}
    conditions = {
        cond.get("type"): cond
        for cond in status.get("conditions") or []
        if str(cond.get("status", "")).lower() == "true"
    }
    if (status.get("succeeded") or 0) >= 1 or "Complete" in conditions:
        return JobOutcome.SUCCEEDED
    failed = conditions.get("Failed")
    if failed is not None and failed.get("reason") == "DeadlineExceeded":
        return JobOutcome.TIMED_OUT
    if (status.get("failed") or 0) >= 1 or failed is not None:
        return JobOutcome.FAILED
    return None


class ServantJobDispatcher:
    """edge 노드마다 job 하나를 만들고 모두 끝날 때까지 기다린다.

    한 노드의 실패가 다른 노드의 작업을 막거나 취소하지 않는다. 모든 job 이
    종료(또는 타임아웃)된 뒤에 결과를 합산한다.
    """

    def __init__(
        self,
        client: ControlPlaneClient,
        *,
        timeout: float = DEFAULT_JOB_TIMEOUT,
        poll_interval: float = DEFAULT_JOB_POLL_INTERVAL,
        namespace: str = SERVANT_NAMESPACE,
    ) -> None:
        self._client = client
        self._timeout = timeout
        self._poll_interval = poll_interval
        self._namespace = namespace

    async def dispatch(
        self,
        nodes: Iterable[str],
        action: str,
        image: str,
        params: Mapping[str, str] | None = None,
    ) -> tuple[JobResult, ...]:
        jobs = [ServantJob(node=node, action=action, image=image, params=dict(params or {})) for node in nodes]
        results = await self.run(jobs)
        failed = [result.node for result in results if not result.succeeded]
        if failed:
            for result in results:
                if not result.succeeded:
                    LOGGER.error("노드 %s 의 servant job %s: %s", result.node, result.outcome.value, result.detail)
            raise JobDispatchFailed(failed, results)
        return results

    async def run(self, jobs: Sequence[ServantJob]) -> tuple[JobResult, ...]:
        if not jobs:
            LOGGER.info("edge 노드가 없어 servant job 을 건너뜁니다.")
            return ()
        suffix = uuid.uuid4().hex[:5]
        results = await asyncio.gather(*(self._run_one(job, suffix) for job in jobs), return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return tuple(results)

    async def _run_one(self, job: ServantJob, suffix: str) -> JobResult:
        name = servant_job_name(job.action, job.node, suffix)
        ref = ResourceRef(ResourceKind.JOB, name, self._namespace)
        try:
            await self._client.create(ref, render_job(job, name, self._timeout, self._namespace))
        except ControlPlaneError as exc:
            return JobResult(job.node, JobOutcome.FAILED, f"fail to create {ref}: {exc}")
        LOGGER.info("servant job %s 생성 (node=%s)", name, job.node)
        return await self._wait(ref, job.node)

    async def _wait(self, ref: ResourceRef, node: str) -> JobResult:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._timeout
        while True:
            try:
                obj = await self._client.get(ref)
            except ControlPlaneError as exc:
                return JobResult(node, JobOutcome.FAILED, f"fail to read {ref}: {exc}")
            outcome = job_outcome(obj)
            if outcome is not None:
                LOGGER.info("servant job %s (node=%s) 종료: %s", ref.name, node, outcome.value)
                return JobResult(node, outcome, None if outcome is JobOutcome.SUCCEEDED else f"{ref} {outcome.value}")
            if loop.time() >= deadline:
                return JobResult(node, JobOutcome.TIMED_OUT, f"{ref} did not finish within {self._timeout:g}s")
            await asyncio.sleep(self._poll_interval)
