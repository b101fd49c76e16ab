"""终端颜色方案。

ANSI 转义码，用于区分目标标识符、stdout/stderr 和 [info]/[error] 前缀。
"""

from __future__ import annotations

__all__ = [
    "COLORS",
    "Palette",
]

# 基础颜色方案
COLORS = {
    "green": "\033[32m",
    "red": "\033[31m",
    "reset": "\033[0m",
}


class Palette:
    """按开关着色的调色板。

    禁用时所有方法原样返回文本，便于测试和重定向到文件。
    """

    def __init__(self, enabled: bool = False) -> None:
        self.enabled = enabled

    def _paint(self, color: str, text: object) -> str:
        if not self.enabled:
            return str(text)
        return f"{COLORS[color]}{text}{COLORS['reset']}"

    def green(self, text: object) -> str:
        return self._paint("green", text)

    def red(self, text: object) -> str:
        return self._paint("red", text)
