"""进程注册表模块。

记录当前正在运行的目标进程，是"哪些进程在运行"的唯一来源：
- Launcher 在进程启动后登记句柄
- ShutdownCoordinator 读取快照并逐个终止

这是关闭级联的核心组件之一。
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from .runtime.process_runner import ProcessHandle

__all__ = ["ProcessRegistry"]

logger = logging.getLogger(__name__)


class ProcessRegistry:
    """目标进程的注册表。

    同一标识符最多只有一个句柄：首次登记生效，重复登记被拒绝并记录冲突。
    登记在启动阶段只追加不删除，关闭时只读取快照。
    收到中断后注册表被关闭，之后的登记全部被拒绝；
    已 fork 但尚未登记的进程由 spawn_started/spawn_finished 计数。

    线程安全：登记和快照都在同一把锁下进行，信号处理器中读取快照
    不会与并发的登记产生竞争。

    Example:
        ```python
        registry = ProcessRegistry()

        # 登记进程
        handle = await spawn(spec)
        if not registry.register(spec.identifier, handle):
            ...  # 重复标识符

        # 关闭时遍历快照
        for identifier, handle in registry.snapshot():
            handle.terminate()
        ```
    """

    def __init__(self) -> None:
        """初始化进程注册表。"""
        self._handles: dict[str, ProcessHandle] = {}
        self._lock = threading.Lock()
        self._pending_spawns = 0
        self._closed = False
        self._on_settled_callbacks: list[Callable[[], None]] = []

    def register(self, identifier: str, handle: ProcessHandle) -> bool:
        """登记进程句柄。

        已登记的句柄永远不会被替换。

        Args:
            identifier: 目标标识符
            handle: 进程句柄

        Returns:
            是否登记成功（标识符已存在则返回 False）
        """
        with self._lock:
            if self._closed:
                logger.debug(f"Registry closed, rejected {handle!r}")
                return False
            existing = self._handles.get(identifier)
            if existing is None:
                self._handles[identifier] = handle
                accepted = True
            else:
                accepted = False

        if accepted:
            logger.debug(f"Registered process: {handle!r}")
        else:
            logger.warning(
                f"Identifier conflict: {identifier} already registered as {existing!r}, "
                f"rejected {handle!r}"
            )
        return accepted

    def get(self, identifier: str) -> ProcessHandle | None:
        """获取进程句柄。

        Args:
            identifier: 目标标识符

        Returns:
            进程句柄，如果不存在则返回 None
        """
        with self._lock:
            return self._handles.get(identifier)

    def snapshot(self) -> list[tuple[str, ProcessHandle]]:
        """获取当前所有 (标识符, 句柄) 的时间点副本。

        遍历副本时不持有锁，信号投递等慢操作不会阻塞登记。

        Returns:
            按登记顺序排列的列表
        """
        with self._lock:
            return list(self._handles.items())

    def spawn_started(self) -> None:
        """记录一个正在启动、尚未登记的进程。

        进程在 fork 之后、句柄返回之前不在注册表中，
        关闭协调器通过这个计数等待它们。
        """
        with self._lock:
            self._pending_spawns += 1

    def spawn_finished(self) -> None:
        """结束一次启动（无论成功、失败还是被拒绝）。

        注册表已关闭且没有进行中的启动时，触发 on_settled 回调。
        """
        with self._lock:
            self._pending_spawns -= 1
            settled = self._closed and self._pending_spawns == 0
            callbacks = self._on_settled_callbacks[:] if settled else []
            if settled:
                self._on_settled_callbacks.clear()

        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.warning(f"Error in on_settled callback: {e}")

    def close(self) -> int:
        """关闭注册表，之后的登记全部被拒绝。

        Returns:
            关闭时仍在进行中的启动数量
        """
        with self._lock:
            self._closed = True
            return self._pending_spawns

    @property
    def closed(self) -> bool:
        """注册表是否已关闭。"""
        with self._lock:
            return self._closed

    @property
    def pending_spawns(self) -> int:
        """正在启动、尚未结束的进程数量。"""
        with self._lock:
            return self._pending_spawns

    def add_on_settled_callback(self, callback: Callable[[], None]) -> None:
        """添加启动全部结束时的回调。

        注册表关闭后，最后一个进行中的启动结束时调用一次。
        用于 ShutdownCoordinator 推迟退出。已经关闭且没有进行中的启动时立即调用。

        Args:
            callback: 无参数的回调函数
        """
        with self._lock:
            settled = self._closed and self._pending_spawns == 0
            if not settled:
                self._on_settled_callbacks.append(callback)

        if settled:
            callback()

    @property
    def identifiers(self) -> list[str]:
        """已登记的标识符列表。"""
        return [identifier for identifier, _ in self.snapshot()]

    @property
    def active_count(self) -> int:
        """尚未退出的进程数量。"""
        return sum(1 for _, handle in self.snapshot() if not handle.has_exited())

    def __len__(self) -> int:
        """返回注册表中的句柄数量。"""
        with self._lock:
            return len(self._handles)

    def __contains__(self, identifier: object) -> bool:
        """检查标识符是否已登记。"""
        with self._lock:
            return identifier in self._handles
