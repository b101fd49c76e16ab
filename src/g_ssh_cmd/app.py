"""g-ssh-cmd 应用入口。

包含一次运行的生命周期管理和主入口点。

用法:
    g-ssh-cmd <asg|mig|pod> <group-name> <cmd...> [options]
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import sys
from collections.abc import Sequence

from . import __version__
from .colors import Palette
from .config import ColorMode, Config, get_config
from .discovery import TargetDiscovery, TargetKind, create_discovery
from .errors import DiscoveryError, StreamAttachError
from .orchestrator import Orchestrator
from .registry import ProcessRegistry
from .runtime.multiplexer import LogSink
from .signal_manager import ShutdownCoordinator

__all__ = ["run", "main", "build_parser", "apply_overrides"]

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1


async def run(
    config: Config,
    kind: TargetKind | str,
    group: str,
    command: str,
    *,
    sink: LogSink | None = None,
    coordinator: ShutdownCoordinator | None = None,
    discovery: TargetDiscovery | None = None,
) -> int:
    """执行一次运行。

    流程：
    1. 启动关闭协调器（从此刻起 SIGINT/SIGTERM 会终止所有已登记进程并退出）
    2. 发现目标
    3. 并发启动并等待完成屏障

    Args:
        config: 运行配置
        kind: 目标组类型
        group: 目标组名称
        command: 在每个目标上执行的命令
        sink: 输出 sink（默认输出到 stdout）
        coordinator: 关闭协调器（默认新建，测试可替换）
        discovery: 发现器（默认按 kind 创建，测试可替换）

    Returns:
        进程退出码
    """
    if sink is None:
        sink = LogSink(
            sys.stdout,
            palette=Palette(config.use_color(sys.stdout.isatty())),
            timestamps=config.timestamps,
        )

    registry = coordinator.registry if coordinator else ProcessRegistry()
    if coordinator is None:
        coordinator = ShutdownCoordinator(
            registry,
            sink=sink,
            on_shutdown=lambda: _flush_outputs(sink),
        )

    if discovery is None:
        discovery = create_discovery(kind, config, sink=sink)

    logger.info(f"Starting run: kind={kind} group={group} {config!r}")
    await coordinator.start()
    try:
        try:
            specs = await discovery.discover(group, command, config.filter_pattern)
        except DiscoveryError as e:
            logger.debug(f"Discovery failed: {e}")
            sink.error(e)
            return EXIT_FAILURE

        orchestrator = Orchestrator(
            registry,
            sink,
            primary_enabled=config.primary_stream_enabled,
            error_enabled=config.error_stream_enabled,
            line_limit=config.line_limit,
            coordinator=coordinator,
        )

        try:
            summary = await orchestrator.run(specs)
        except StreamAttachError as e:
            sink.error(e)
            return EXIT_FAILURE

        if summary.failed:
            logger.info(f"Failed targets: {', '.join(summary.failed)}")
        return EXIT_OK

    finally:
        await coordinator.stop()
        logger.debug("run: cleanup completed")


def _flush_outputs(sink: LogSink) -> None:
    """退出前刷新输出和日志。"""
    sink.flush()
    logging.shutdown()


def build_parser() -> argparse.ArgumentParser:
    """构造命令行解析器。"""
    parser = argparse.ArgumentParser(
        prog="g-ssh-cmd",
        description=(
            "A simple wrapper to [ssh user@host -t 'cmd'] for AWS ASGs, "
            "GCP MIGs and Kubernetes pods"
        ),
    )
    parser.add_argument("kind", choices=[k.value for k in TargetKind], help="target group type")
    parser.add_argument("group", help="group name (label selector for 'pod')")
    parser.add_argument("command", nargs="+", help="command to run on every target")
    parser.add_argument("--key", help="identity file, input to -i in ssh (asg only)")
    parser.add_argument("--user", help="ssh user (asg only, default ec2-user)")
    parser.add_argument(
        "--stdout",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="print stdout output (default: true)",
    )
    parser.add_argument(
        "--stderr",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="print stderr output (default: true)",
    )
    parser.add_argument("--profile", help="AWS profile (asg only)")
    parser.add_argument("--project", help="GCP project (mig only)")
    parser.add_argument("--namespace", help="Kubernetes namespace (pod only)")
    parser.add_argument(
        "--only",
        help="filter: only these targets (exact, glob/wildcards, or substring)",
    )
    parser.add_argument(
        "--color",
        choices=[m.value for m in ColorMode],
        help="colorize output (default: auto)",
    )
    parser.add_argument(
        "--no-timestamps",
        action="store_true",
        help="do not prefix output lines with a timestamp",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def apply_overrides(config: Config, args: argparse.Namespace) -> Config:
    """用命令行参数覆盖环境变量配置。"""
    overrides: dict[str, object] = {}
    if args.key:
        overrides["ssh_key"] = args.key
    if args.user:
        overrides["ssh_user"] = args.user
    if args.stdout is not None:
        overrides["primary_stream_enabled"] = args.stdout
    if args.stderr is not None:
        overrides["error_stream_enabled"] = args.stderr
    if args.profile:
        overrides["aws_profile"] = args.profile
    if args.project:
        overrides["gcp_project"] = args.project
    if args.namespace:
        overrides["namespace"] = args.namespace
    if args.only:
        overrides["filter_pattern"] = args.only
    if args.color:
        overrides["color"] = ColorMode(args.color)
    if args.no_timestamps:
        overrides["timestamps"] = False
    return dataclasses.replace(config, **overrides)


def _configure_logging(config: Config) -> None:
    """配置诊断日志输出。"""
    log_handlers: list[logging.Handler] = []

    if config.log_debug and config.log_file:
        # LOG_DEBUG 模式：输出到临时文件
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
        log_handlers.append(file_handler)
        log_level = logging.DEBUG
    else:
        # 默认模式：输出到 stderr，stdout 留给目标输出
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
        log_handlers.append(stderr_handler)
        log_level = config.log_level

    # 配置 root logger（第三方库）为 WARNING，减少噪音
    logging.basicConfig(
        level=logging.WARNING,
        handlers=log_handlers,
    )
    # 只对 g_ssh_cmd 命名空间启用配置的级别
    logging.getLogger("g_ssh_cmd").setLevel(log_level)


def main(argv: Sequence[str] | None = None) -> int:
    """主入口点。"""
    args = build_parser().parse_args(argv)
    config = apply_overrides(get_config(), args)

    _configure_logging(config)

    return asyncio.run(run(config, args.kind, args.group, " ".join(args.command)))


if __name__ == "__main__":
    sys.exit(main())
