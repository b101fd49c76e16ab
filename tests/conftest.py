"""Pytest 配置和 fixtures。"""

from __future__ import annotations

import io
import sys
from pathlib import Path

import pytest

# 项目根目录
PROJECT_ROOT = Path(__file__).parent.parent

# 添加 src 目录到 Python 路径
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

# 假目标脚本
FIXTURES_DIR = PROJECT_ROOT / "tests" / "fixtures"
FAKE_TARGET_PATH = FIXTURES_DIR / "fake_target.py"

from g_ssh_cmd.config import Config  # noqa: E402
from g_ssh_cmd.runtime.multiplexer import LogSink  # noqa: E402
from g_ssh_cmd.runtime.process_runner import CommandSpec  # noqa: E402


def fake_target_spec(identifier: str, *args: str) -> CommandSpec:
    """构造运行假目标脚本的 CommandSpec。"""
    return CommandSpec(
        identifier=identifier,
        executable=sys.executable,
        args=(str(FAKE_TARGET_PATH), *args),
    )


def records(buffer: io.StringIO) -> list[str]:
    """返回 sink 写出的所有记录（不含换行）。"""
    return buffer.getvalue().splitlines()


@pytest.fixture
def project_root() -> Path:
    """项目根目录。"""
    return PROJECT_ROOT


@pytest.fixture
def output() -> io.StringIO:
    """收集 sink 输出的缓冲区。"""
    return io.StringIO()


@pytest.fixture
def sink(output: io.StringIO) -> LogSink:
    """无颜色、无时间戳的 sink，便于断言。"""
    return LogSink(output, timestamps=False)


@pytest.fixture
def config() -> Config:
    """默认配置。"""
    return Config()
