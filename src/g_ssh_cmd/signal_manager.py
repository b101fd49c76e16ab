"""关闭协调模块。

将 OS 信号转换为关闭级联：
- SIGINT / SIGTERM: 对注册表中的每个进程发送终止信号，然后立即退出程序

状态机: RUNNING -> TERMINATION_REQUESTED -> DONE
- 第一次信号触发级联，之后的信号不再处理
- 终止信号投递失败时，只对该进程升级为强制杀死
- 不等待子进程真正退出，也不等待完成屏障
- 只等待已 fork 但尚未登记的启动结束，这些进程由 Launcher 自行终止
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
from enum import Enum
from typing import TYPE_CHECKING, Callable, Optional

from .errors import SignalDeliveryError
from .registry import ProcessRegistry

if TYPE_CHECKING:
    from .runtime.multiplexer import LogSink

__all__ = ["ShutdownCoordinator", "ShutdownState", "TerminationOutcome"]

logger = logging.getLogger(__name__)


class ShutdownState(Enum):
    """关闭状态。"""

    RUNNING = "running"
    TERMINATION_REQUESTED = "termination_requested"
    DONE = "done"


class TerminationOutcome(Enum):
    """单个进程的终止结果。

    - TERMINATED: 终止信号投递成功
    - KILLED: 终止信号投递失败，已强制杀死
    - KILL_FAILED: 强制杀死也失败
    """

    TERMINATED = "terminated"
    KILLED = "killed"
    KILL_FAILED = "kill_failed"


class ShutdownCoordinator:
    """关闭协调器。

    订阅外部中断信号，收到后遍历注册表快照终止所有进程并退出程序。
    测试可以直接调用 request_termination() 注入合成中断，无需真实信号。

    Example:
        ```python
        registry = ProcessRegistry()
        coordinator = ShutdownCoordinator(registry, sink=sink)

        async def main():
            await coordinator.start()
            try:
                await orchestrator.run(specs)
            finally:
                await coordinator.stop()

        asyncio.run(main())
        ```

    Attributes:
        registry: 进程注册表
        exit_code: 级联完成后的退出码
    """

    def __init__(
        self,
        registry: ProcessRegistry,
        sink: Optional["LogSink"] = None,
        exit_func: Optional[Callable[[int], None]] = None,
        on_shutdown: Optional[Callable[[], None]] = None,
        exit_code: int = 0,
    ) -> None:
        """初始化关闭协调器。

        Args:
            registry: 进程注册表
            sink: 输出 [info]/[error] 记录的 sink（可选）
            exit_func: 退出函数（默认 os._exit，测试可替换）
            on_shutdown: 退出前的回调函数（刷新输出等）
            exit_code: 退出码
        """
        self.registry = registry
        self.exit_code = exit_code
        self._sink = sink
        self._exit_func = exit_func if exit_func is not None else os._exit
        self._on_shutdown = on_shutdown

        # 内部状态
        self._state = ShutdownState.RUNNING
        self._running: bool = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._original_sigint_handler: Optional[signal.Handlers] = None

    @property
    def state(self) -> ShutdownState:
        """当前状态。"""
        return self._state

    @property
    def is_termination_requested(self) -> bool:
        """是否已请求终止。"""
        return self._state != ShutdownState.RUNNING

    async def start(self) -> None:
        """启动信号监听。

        设置 SIGINT 和 SIGTERM 的处理器。
        必须在 asyncio 事件循环中调用。
        """
        if self._running:
            logger.warning("ShutdownCoordinator already running")
            return

        self._loop = asyncio.get_running_loop()
        self._running = True

        if sys.platform != "win32":
            for signum in (signal.SIGINT, signal.SIGTERM):
                self._loop.add_signal_handler(signum, self._handle_signal, signum)
            logger.debug("Signal handlers installed (SIGINT, SIGTERM)")
        else:
            # Windows: 使用 signal.signal() 设置处理器
            self._original_sigint_handler = signal.signal(
                signal.SIGINT,
                lambda sig, frame: self._handle_signal(sig),
            )
            logger.debug("SIGINT handler installed on Windows")

    async def stop(self) -> None:
        """停止信号监听。

        恢复原始信号处理器。
        """
        if not self._running:
            return

        self._running = False

        if sys.platform != "win32" and self._loop:
            for signum in (signal.SIGINT, signal.SIGTERM):
                try:
                    self._loop.remove_signal_handler(signum)
                except (ValueError, RuntimeError) as e:
                    logger.debug(f"Error removing signal handler {signum}: {e}")
        elif sys.platform == "win32" and self._original_sigint_handler is not None:
            try:
                signal.signal(signal.SIGINT, self._original_sigint_handler)
            except (ValueError, OSError) as e:
                logger.debug(f"Error restoring SIGINT handler: {e}")

        logger.debug("Signal handlers removed")

    def _handle_signal(self, signum: int) -> None:
        """处理 SIGINT / SIGTERM 信号。"""
        name = signal.Signals(signum).name
        self.request_termination(reason=name)

    def request_termination(self, reason: str = "interrupt") -> None:
        """请求终止。

        只有第一次调用生效：终止所有已登记进程并关闭注册表。
        没有进行中的启动时立即进入 DONE 并退出程序；否则等最后一个
        启动结束（其进程已被 Launcher 终止）后再退出。
        之后的调用被忽略。

        Args:
            reason: 触发原因（信号名称等），仅用于日志
        """
        if self._state != ShutdownState.RUNNING:
            logger.debug(f"Termination already {self._state.value}, ignoring {reason}")
            return

        self._state = ShutdownState.TERMINATION_REQUESTED
        logger.info(f"{reason} received, terminating {len(self.registry)} process(es)")

        pending = self.registry.close()
        self.terminate_all()

        if pending:
            logger.info(f"Waiting for {pending} spawn(s) in flight before exit")
            self.registry.add_on_settled_callback(self._finish)
            return

        self._finish()

    def _finish(self) -> None:
        """进入 DONE，调用退出回调，然后退出程序。"""
        self._state = ShutdownState.DONE

        if self._on_shutdown:
            try:
                self._on_shutdown()
            except Exception as e:
                logger.warning(f"Error in shutdown callback: {e}")

        self._exit_func(self.exit_code)

    def terminate_all(self) -> dict[str, TerminationOutcome]:
        """对注册表快照中的每个进程发送终止信号。

        投递失败的进程立即强制杀死，只影响该进程。
        不等待任何进程退出。

        Returns:
            标识符到终止结果的映射
        """
        outcomes: dict[str, TerminationOutcome] = {}

        for identifier, handle in self.registry.snapshot():
            try:
                handle.terminate()
                outcomes[identifier] = TerminationOutcome.TERMINATED
                continue
            except SignalDeliveryError as e:
                self._report(f"failed to terminate {identifier} ({e.message}), force kill...")

            try:
                handle.kill()
                outcomes[identifier] = TerminationOutcome.KILLED
            except SignalDeliveryError as e:
                outcomes[identifier] = TerminationOutcome.KILL_FAILED
                logger.error(f"Force kill failed: {e}")
                if self._sink:
                    self._sink.error("failed to kill", identifier, "-->", e.message)

        logger.debug(f"Termination outcomes: {outcomes}")
        return outcomes

    def _report(self, message: str) -> None:
        if self._sink:
            logger.debug(message)
            self._sink.info(message)
        else:
            logger.warning(message)
