"""运行编排模块。

把注册表、启动器、多路复用器和完成屏障组合成一次运行：
- 零个目标：输出 "no detected targets" 并立即返回
- 否则并发启动所有目标，等待所有进程退出、所有输出流读完
- 致命错误（StreamAttachError）：终止已登记的进程后向上抛出
"""

from __future__ import annotations

import logging
from typing import Optional

from .errors import StreamAttachError
from .registry import ProcessRegistry
from .runtime.barrier import CompletionBarrier
from .runtime.launcher import Launcher, RunSummary
from .runtime.multiplexer import LogSink, StreamMultiplexer
from .runtime.process_runner import DEFAULT_LINE_LIMIT, CommandSpec
from .signal_manager import ShutdownCoordinator

__all__ = ["Orchestrator"]

logger = logging.getLogger(__name__)


class Orchestrator:
    """一次运行的编排器。

    Example:
        ```python
        registry = ProcessRegistry()
        orchestrator = Orchestrator(registry, LogSink())
        summary = await orchestrator.run(specs)
        print(summary.failed)
        ```

    Attributes:
        registry: 进程注册表（与 ShutdownCoordinator 共享）
        sink: 输出 sink
        coordinator: 关闭协调器（可选，用于致命错误时终止进程）
    """

    def __init__(
        self,
        registry: ProcessRegistry,
        sink: LogSink,
        *,
        primary_enabled: bool = True,
        error_enabled: bool = True,
        line_limit: int = DEFAULT_LINE_LIMIT,
        coordinator: Optional[ShutdownCoordinator] = None,
    ) -> None:
        self.registry = registry
        self.sink = sink
        self.coordinator = coordinator
        self.multiplexer = StreamMultiplexer(
            sink,
            primary_enabled=primary_enabled,
            error_enabled=error_enabled,
        )
        self.line_limit = line_limit

    async def run(self, specs: list[CommandSpec]) -> RunSummary:
        """启动所有目标并等待完成屏障。

        Args:
            specs: 发现阶段产出的命令列表

        Returns:
            本次运行的结果汇总

        Raises:
            StreamAttachError: 无法获取某个进程的输出流
        """
        summary = RunSummary()

        if not specs:
            self.sink.info("no detected targets")
            return summary

        launcher = Launcher(
            self.registry,
            self.multiplexer,
            line_limit=self.line_limit,
            summary=summary,
        )

        logger.debug(f"Launching {len(specs)} target(s)")
        try:
            async with CompletionBarrier() as barrier:
                launcher.launch_all(specs, barrier)
        except StreamAttachError as e:
            logger.error(f"Run aborted: {e}")
            self._terminate_registered()
            raise

        logger.debug(
            f"All targets finished: launched={len(summary.launched)}, "
            f"spawn_failures={len(summary.spawn_failures)}, rejected={len(summary.rejected)}"
        )
        return summary

    def _terminate_registered(self) -> None:
        """终止已登记的进程（不退出程序）。"""
        coordinator = self.coordinator or ShutdownCoordinator(self.registry, sink=self.sink)
        coordinator.terminate_all()
