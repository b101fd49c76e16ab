"""Kubernetes Pod 发现器。

1. kubectl get pods -l <selector> -o json 得到 Pod 列表（只保留 Running）
2. 每个 Pod 生成 kubectl exec <pod> -- sh -c <command>

组名可以是完整的 label selector（如 "app=web,tier=front"），
不含 "=" 时视为 "app=<组名>"。
"""

from __future__ import annotations

import logging

from ..runtime.process_runner import CommandSpec
from .base import TargetDiscovery
from .models import PodList

__all__ = ["PodDiscovery", "to_selector"]

logger = logging.getLogger(__name__)

RUNNING_PHASE = "Running"


def to_selector(group: str) -> str:
    """把组名转换为 label selector。"""
    if "=" in group:
        return group
    return f"app={group}"


class PodDiscovery(TargetDiscovery):
    """Kubernetes Pod 发现器。"""

    kind = "pod"

    def _namespace_args(self) -> list[str]:
        if self.config.namespace:
            return ["-n", self.config.namespace]
        return []

    def build_command(self, pod: str, command: str) -> CommandSpec:
        """构造到单个 Pod 的 kubectl exec 命令。"""
        args = ["exec", *self._namespace_args(), pod, "--", "sh", "-c", command]
        return CommandSpec(identifier=pod, executable="kubectl", args=tuple(args))

    async def _resolve(self, group: str, command: str) -> list[CommandSpec]:
        output = await self._lookup(
            group,
            [
                "kubectl",
                "get",
                "pods",
                *self._namespace_args(),
                "-l",
                to_selector(group),
                "-o",
                "json",
            ],
        )
        pods = self._parse(group, output, PodList)

        specs = []
        for pod in pods.items:
            name = pod.metadata.name
            if not name:
                continue
            if pod.status.phase != RUNNING_PHASE:
                logger.debug(f"Skipping pod {name} in phase {pod.status.phase or 'unknown'}")
                continue
            specs.append(self.build_command(name, command))
        return specs
