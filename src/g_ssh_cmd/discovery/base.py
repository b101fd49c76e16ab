"""目标发现基础抽象。

定义发现器的协议、过滤匹配规则和查询命令的执行方式。
"""

from __future__ import annotations

import fnmatch
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Sequence
from typing import TYPE_CHECKING, Any

from pydantic import TypeAdapter, ValidationError

from ..errors import DiscoveryError
from ..runtime.process_runner import CommandSpec, run_process

if TYPE_CHECKING:
    from ..config import Config
    from ..runtime.multiplexer import LogSink

__all__ = [
    "CommandRunner",
    "TargetDiscovery",
    "match_pattern",
]

logger = logging.getLogger(__name__)

# (argv) -> (combined_output, returncode)
CommandRunner = Callable[[Sequence[str]], Awaitable[tuple[bytes, int]]]

_WILDCARDS = ("*", "?")


def match_pattern(name: str, pattern: str | None) -> bool:
    """检查目标名称是否匹配过滤模式。

    规则（按顺序）：
    1. 空模式匹配全部
    2. 完全相等
    3. glob 匹配（* 和 ?，区分大小写）
    4. 模式不含通配符时，子串包含也算匹配

    Args:
        name: 目标标识符
        pattern: 过滤模式

    Returns:
        是否匹配
    """
    if not pattern:
        return True

    if pattern == name:
        return True

    if fnmatch.fnmatchcase(name, pattern):
        return True

    if not any(w in pattern for w in _WILDCARDS):
        return pattern in name

    return False


class TargetDiscovery(ABC):
    """目标发现器协议。

    子类实现 _resolve()，把组名解析为 CommandSpec 列表；
    过滤和错误包装由基类统一处理。
    """

    #: 发现器类型名称（asg / mig / pod）
    kind: str = ""

    def __init__(
        self,
        config: "Config",
        runner: CommandRunner | None = None,
        sink: "LogSink | None" = None,
    ) -> None:
        """初始化发现器。

        Args:
            config: 运行配置
            runner: 查询命令执行器（默认 run_process，测试可替换）
            sink: 输出 [error] 记录的 sink（可选）
        """
        self.config = config
        self._runner = runner or run_process
        self._sink = sink

    async def discover(
        self,
        group: str,
        command: str,
        pattern: str | None = None,
    ) -> list[CommandSpec]:
        """解析目标组并生成每个目标的命令。

        Args:
            group: 目标组名称
            command: 在每个目标上执行的命令
            pattern: 过滤模式（None 表示全部）

        Returns:
            CommandSpec 列表，没有目标时为空列表

        Raises:
            DiscoveryError: 无法得到目标列表
        """
        specs = await self._resolve(group, command)
        matched = [spec for spec in specs if match_pattern(spec.identifier, pattern)]

        if pattern:
            logger.debug(f"Filter {pattern!r} kept {len(matched)}/{len(specs)} target(s)")
        return matched

    @abstractmethod
    async def _resolve(self, group: str, command: str) -> list[CommandSpec]:
        """解析目标组（不做过滤）。"""
        ...

    async def _lookup(self, group: str, argv: Sequence[str]) -> bytes:
        """执行查询命令并返回输出。

        Raises:
            DiscoveryError: 命令无法启动或返回非零
        """
        logger.debug(f"Lookup: {list(argv)}")
        try:
            output, returncode = await self._runner(argv)
        except OSError as e:
            raise DiscoveryError(group, f"failed to run {argv[0]}: {e}") from e

        if returncode != 0:
            raise DiscoveryError(
                group,
                f"{argv[0]} exited with status {returncode}",
                output.decode("utf-8", errors="replace"),
            )
        return output

    @staticmethod
    def _parse(group: str, output: bytes, model: Any) -> Any:
        """用 pydantic 解析 JSON 响应。

        Raises:
            DiscoveryError: 响应不是合法 JSON 或不符合模型
        """
        try:
            return TypeAdapter(model).validate_json(output)
        except ValidationError as e:
            raise DiscoveryError(group, f"malformed response: {e}") from e

    def _report_error(self, *parts: object) -> None:
        """输出目标级 [error]，不中止发现。"""
        message = " ".join(str(p) for p in parts)
        if self._sink:
            logger.debug(message)
            self._sink.error(*parts)
        else:
            logger.error(message)
