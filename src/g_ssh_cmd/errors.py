"""g-ssh-cmd 异常类。

分为两类：
- 致命错误（DiscoveryError, StreamAttachError）：整个运行中止
- 目标级错误（SpawnError, SignalDeliveryError）：只影响单个目标，其余目标继续
"""

from __future__ import annotations

__all__ = [
    "GsshError",
    "DiscoveryError",
    "SpawnError",
    "StreamAttachError",
    "SignalDeliveryError",
]


class GsshError(Exception):
    """g-ssh-cmd 基础异常。"""
    pass


class DiscoveryError(GsshError):
    """目标发现失败（查询命令失败、响应格式错误等）。

    Attributes:
        group: 目标组名称
        message: 错误消息
        output: 查询命令的原始输出（可选）
    """

    def __init__(self, group: str, message: str, output: str = "") -> None:
        self.group = group
        self.message = message
        self.output = output
        text = f"{group}: {message}"
        if output:
            text = f"{text} --> {output.strip()}"
        super().__init__(text)


class _TargetError(GsshError):
    """带目标标识符的异常基类。"""

    def __init__(self, identifier: str, message: str) -> None:
        self.identifier = identifier
        self.message = message
        super().__init__(f"{identifier}: {message}")


class SpawnError(_TargetError):
    """目标进程无法启动。"""
    pass


class StreamAttachError(_TargetError):
    """无法获取进程的输出流。"""
    pass


class SignalDeliveryError(_TargetError):
    """无法向进程投递终止信号（进程已退出、句柄无效或系统错误）。"""
    pass
