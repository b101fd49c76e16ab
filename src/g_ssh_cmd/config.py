"""GSC 环境变量配置管理。

环境变量:
    GSC_STDOUT: 是否转发目标进程的 stdout
        - true/1/yes = 转发 (默认)
        - false/0/no = 不转发（仍然读取管道，避免阻塞进程）

    GSC_STDERR: 是否转发目标进程的 stderr
        - true/1/yes = 转发 (默认)
        - false/0/no = 不转发

    GSC_ONLY: 目标过滤模式
        - 空/未设置 = 全部目标
        - 支持精确匹配、glob 通配符 (* ?)、无通配符时的子串匹配

    GSC_KEY: SSH 私钥路径，作为 ssh -i 的参数（仅 asg）
    GSC_SSH_USER: SSH 用户名（仅 asg，默认 ec2-user）
    GSC_PROFILE: AWS profile（仅 asg）
    GSC_PROJECT: GCP project（仅 mig）
    GSC_NAMESPACE: Kubernetes namespace（仅 pod）

    GSC_COLOR: 终端颜色
        - auto = 输出为终端且未设置 NO_COLOR 时启用 (默认)
        - always / never

    GSC_TIMESTAMPS: 每行输出是否带时间戳前缀 (默认 true)

    GSC_LINE_LIMIT: 单行最大字节数（默认 1 MiB，限制在 4 KiB - 64 MiB）

    GSC_LOG_LEVEL: g_ssh_cmd 诊断日志级别 (默认 WARNING，输出到 stderr)

    GSC_LOG_DEBUG: 日志调试模式
        - true/1/yes = 开启 (DEBUG 日志输出到临时文件)
        - false/0/no = 关闭 (默认)
"""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path

__all__ = ["Config", "ColorMode", "load_config", "get_config", "reload_config"]

DEFAULT_SSH_USER = "ec2-user"
DEFAULT_LINE_LIMIT = 1024 * 1024
MIN_LINE_LIMIT = 4 * 1024
MAX_LINE_LIMIT = 64 * 1024 * 1024


class ColorMode(Enum):
    """终端颜色模式。"""

    AUTO = "auto"
    ALWAYS = "always"
    NEVER = "never"

    @classmethod
    def from_string(cls, value: str) -> "ColorMode":
        """从字符串解析模式，无效值返回 AUTO。"""
        value = value.lower().strip()
        for mode in cls:
            if mode.value == value:
                return mode
        return cls.AUTO


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """解析布尔值环境变量。"""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_optional(value: str | None) -> str | None:
    """空字符串视为未设置。"""
    if value is None or not value.strip():
        return None
    return value.strip()


def _parse_line_limit(value: str | None) -> int:
    """解析单行字节上限。"""
    if not value:
        return DEFAULT_LINE_LIMIT
    try:
        limit = int(value)
    except ValueError:
        return DEFAULT_LINE_LIMIT
    return max(MIN_LINE_LIMIT, min(limit, MAX_LINE_LIMIT))


def _parse_log_level(value: str | None) -> int:
    """解析日志级别名称，无效值返回 WARNING。"""
    if not value:
        return logging.WARNING
    level = logging.getLevelName(value.strip().upper())
    return level if isinstance(level, int) else logging.WARNING


@dataclass(frozen=True)
class Config:
    """运行配置。

    Attributes:
        primary_stream_enabled: 是否转发 stdout
        error_stream_enabled: 是否转发 stderr
        filter_pattern: 目标过滤模式，None 表示全部
        ssh_key: SSH 私钥路径
        ssh_user: SSH 用户名
        aws_profile: AWS profile
        gcp_project: GCP project
        namespace: Kubernetes namespace
        color: 颜色模式
        timestamps: 输出是否带时间戳
        line_limit: 单行最大字节数
        log_level: 诊断日志级别
        log_debug: 日志调试模式（输出到临时文件）
        log_file: 日志文件路径（当 log_debug=True 时自动设置）
    """

    primary_stream_enabled: bool = True
    error_stream_enabled: bool = True
    filter_pattern: str | None = None
    ssh_key: str | None = None
    ssh_user: str = DEFAULT_SSH_USER
    aws_profile: str | None = None
    gcp_project: str | None = None
    namespace: str | None = None
    color: ColorMode = ColorMode.AUTO
    timestamps: bool = True
    line_limit: int = DEFAULT_LINE_LIMIT
    log_level: int = logging.WARNING
    log_debug: bool = False
    log_file: str | None = None

    def use_color(self, isatty: bool) -> bool:
        """根据模式和输出终端判断是否启用颜色。"""
        if self.color == ColorMode.ALWAYS:
            return True
        if self.color == ColorMode.NEVER:
            return False
        return isatty and "NO_COLOR" not in os.environ

    def __repr__(self) -> str:
        return (
            f"Config(stdout={self.primary_stream_enabled}, "
            f"stderr={self.error_stream_enabled}, "
            f"only={self.filter_pattern or 'all'}, "
            f"ssh_user={self.ssh_user}, "
            f"profile={self.aws_profile}, "
            f"project={self.gcp_project}, "
            f"namespace={self.namespace}, "
            f"color={self.color.value}, "
            f"line_limit={self.line_limit}, "
            f"log_level={logging.getLevelName(self.log_level)}, "
            f"log_file={self.log_file})"
        )


def _generate_log_file_path() -> str:
    """生成临时目录下带时间戳的日志文件路径。"""
    log_dir = Path(tempfile.gettempdir()) / "g-ssh-cmd"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"gsc_debug_{timestamp}.log"

    return str(log_file.resolve())


def load_config() -> Config:
    """从环境变量加载配置。"""
    log_debug = _parse_bool(os.environ.get("GSC_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    return Config(
        primary_stream_enabled=_parse_bool(os.environ.get("GSC_STDOUT"), default=True),
        error_stream_enabled=_parse_bool(os.environ.get("GSC_STDERR"), default=True),
        filter_pattern=_parse_optional(os.environ.get("GSC_ONLY")),
        ssh_key=_parse_optional(os.environ.get("GSC_KEY")),
        ssh_user=_parse_optional(os.environ.get("GSC_SSH_USER")) or DEFAULT_SSH_USER,
        aws_profile=_parse_optional(os.environ.get("GSC_PROFILE")),
        gcp_project=_parse_optional(os.environ.get("GSC_PROJECT")),
        namespace=_parse_optional(os.environ.get("GSC_NAMESPACE")),
        color=ColorMode.from_string(os.environ.get("GSC_COLOR", "auto")),
        timestamps=_parse_bool(os.environ.get("GSC_TIMESTAMPS"), default=True),
        line_limit=_parse_line_limit(os.environ.get("GSC_LINE_LIMIT")),
        log_level=_parse_log_level(os.environ.get("GSC_LOG_LEVEL")),
        log_debug=log_debug,
        log_file=log_file,
    )


# 全局配置实例（延迟加载）
_config: Config | None = None


def get_config() -> Config:
    """获取全局配置实例。"""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """重新加载配置（用于测试）。"""
    global _config
    _config = load_config()
    return _config
