"""Runtime module for target process management and output streaming.

This module provides isolated process execution, concurrent launch,
per-line output multiplexing and the completion barrier.
"""

from __future__ import annotations

from .barrier import CompletionBarrier
from .launcher import Launcher, RunSummary
from .multiplexer import LogLine, LogSink, StreamKind, StreamMultiplexer
from .process_runner import CommandSpec, ProcessHandle, run_process, spawn

__all__ = [
    "CommandSpec",
    "CompletionBarrier",
    "Launcher",
    "LogLine",
    "LogSink",
    "ProcessHandle",
    "RunSummary",
    "StreamKind",
    "StreamMultiplexer",
    "run_process",
    "spawn",
]
