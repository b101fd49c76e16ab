"""目标发现模块。

把目标组名解析为 CommandSpec 列表，核心编排器不关心来源：
- asg: AWS Auto Scaling Group（aws CLI + ssh）
- mig: GCP Managed Instance Group（gcloud CLI）
- pod: Kubernetes Pods（kubectl）

工厂函数:
    from g_ssh_cmd.discovery import create_discovery, TargetKind

    discovery = create_discovery(TargetKind.MIG, config)
    specs = await discovery.discover("web-mig", "uptime", pattern="web-*")
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

from .asg import AsgDiscovery
from .base import CommandRunner, TargetDiscovery, match_pattern
from .mig import MigDiscovery
from .pods import PodDiscovery

if TYPE_CHECKING:
    from ..config import Config
    from ..runtime.multiplexer import LogSink

__all__ = [
    "TargetKind",
    "TargetDiscovery",
    "CommandRunner",
    "AsgDiscovery",
    "MigDiscovery",
    "PodDiscovery",
    "match_pattern",
    "create_discovery",
]


class TargetKind(str, Enum):
    """目标组类型。"""

    ASG = "asg"
    MIG = "mig"
    POD = "pod"


def create_discovery(
    kind: TargetKind | str,
    config: "Config",
    runner: CommandRunner | None = None,
    sink: "LogSink | None" = None,
) -> TargetDiscovery:
    """创建指定类型的发现器实例。

    Args:
        kind: 目标组类型
        config: 运行配置
        runner: 可选的查询命令执行器
        sink: 可选的输出 sink

    Returns:
        对应的发现器实例

    Raises:
        ValueError: 不支持的类型
    """
    if isinstance(kind, str):
        kind = TargetKind(kind.lower())

    if kind == TargetKind.ASG:
        return AsgDiscovery(config, runner=runner, sink=sink)
    elif kind == TargetKind.MIG:
        return MigDiscovery(config, runner=runner, sink=sink)
    elif kind == TargetKind.POD:
        return PodDiscovery(config, runner=runner, sink=sink)
    else:
        raise ValueError(f"Unsupported target kind: {kind}")
