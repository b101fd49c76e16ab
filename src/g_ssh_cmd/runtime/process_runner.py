"""Process spawning and signalling for remote target commands.

This module provides:
- CommandSpec: the immutable (identifier, executable, args) triple produced by discovery
- ProcessHandle: a spawned process plus its stdout/stderr readers
- spawn(): start a target command in an isolated process group/session
- run_process(): run a short lookup command and collect its combined output

Key design points:
- POSIX: start_new_session=True, so signals go to the whole process group
- Windows: CREATE_NEW_PROCESS_GROUP for signal isolation
- stdin is bound to DEVNULL; target commands never read the operator's terminal
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import subprocess
import sys
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from ..errors import SignalDeliveryError, SpawnError

__all__ = [
    "CommandSpec",
    "ProcessHandle",
    "spawn",
    "run_process",
    "IS_WINDOWS",
]

logger = logging.getLogger(__name__)

# Platform detection
IS_WINDOWS = sys.platform == "win32"

# asyncio.StreamReader default is 64 KiB; remote commands routinely print longer lines
DEFAULT_LINE_LIMIT = 1024 * 1024


@dataclass(frozen=True)
class CommandSpec:
    """Specification for one target command.

    Attributes:
        identifier: Unique target key (instance id, instance name, pod name)
        executable: Program to run (ssh, gcloud, kubectl, ...)
        args: Ordered arguments passed to the executable
    """

    identifier: str
    executable: str
    args: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        # args may be any sequence
        object.__setattr__(self, "args", tuple(self.args))

    @property
    def argv(self) -> list[str]:
        return [self.executable, *self.args]


def _build_subprocess_kwargs() -> dict[str, Any]:
    """Build platform-specific isolation kwargs for asyncio.create_subprocess_exec."""
    if IS_WINDOWS:
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
    return {"start_new_session": True}


@dataclass
class ProcessHandle:
    """A running target process.

    The handle owns the OS process and its two readable stream endpoints.
    It is created the instant the process has been spawned.
    """

    spec: CommandSpec
    process: asyncio.subprocess.Process
    exit_code: int | None = field(default=None, init=False)

    @property
    def identifier(self) -> str:
        return self.spec.identifier

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def stdout(self) -> asyncio.StreamReader | None:
        return self.process.stdout

    @property
    def stderr(self) -> asyncio.StreamReader | None:
        return self.process.stderr

    @property
    def returncode(self) -> int | None:
        return self.process.returncode

    def has_exited(self) -> bool:
        return self.process.returncode is not None

    async def wait(self) -> int:
        """Wait for the process to exit and return its exit code."""
        self.exit_code = await self.process.wait()
        return self.exit_code

    def terminate(self) -> None:
        """Deliver the graceful terminate signal.

        Sends SIGTERM to the process group on POSIX, CTRL_BREAK_EVENT on Windows.

        Raises:
            SignalDeliveryError: If the process already exited or the OS refused delivery
        """
        if self.has_exited():
            raise SignalDeliveryError(
                self.identifier,
                f"process already exited (pid={self.pid}, returncode={self.returncode})",
            )

        try:
            if IS_WINDOWS:
                os.kill(self.pid, signal.CTRL_BREAK_EVENT)
            else:
                # pgid == pid because of start_new_session
                os.killpg(self.pid, signal.SIGTERM)
        except OSError as e:
            raise SignalDeliveryError(
                self.identifier, f"failed to send terminate signal to pid={self.pid}: {e}"
            ) from e

        logger.debug(f"Sent terminate signal to {self.identifier} pid={self.pid}")

    def kill(self) -> bool:
        """Force kill the process group.

        Returns:
            True if the kill signal was delivered, False if there was nothing to kill

        Raises:
            SignalDeliveryError: If the OS refused delivery for another reason
        """
        try:
            if IS_WINDOWS:
                self.process.kill()
            else:
                os.killpg(self.pid, signal.SIGKILL)
        except ProcessLookupError:
            logger.debug(f"Nothing to kill for {self.identifier} pid={self.pid}")
            return False
        except OSError as e:
            raise SignalDeliveryError(
                self.identifier, f"failed to kill pid={self.pid}: {e}"
            ) from e

        logger.debug(f"Sent kill signal to {self.identifier} pid={self.pid}")
        return True

    def __repr__(self) -> str:
        status = "running" if not self.has_exited() else f"exited({self.returncode})"
        return f"ProcessHandle(id={self.identifier}, pid={self.pid}, status={status})"


async def spawn(spec: CommandSpec, *, limit: int = DEFAULT_LINE_LIMIT) -> ProcessHandle:
    """Start the command described by spec.

    Args:
        spec: Command specification
        limit: Per-line buffer limit of the stdout/stderr readers

    Returns:
        Handle of the started process

    Raises:
        SpawnError: If the process could not be started
    """
    try:
        process = await asyncio.create_subprocess_exec(
            *spec.argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            limit=limit,
            **_build_subprocess_kwargs(),
        )
    except (OSError, ValueError) as e:
        raise SpawnError(spec.identifier, f"failed to start {spec.executable}: {e}") from e

    logger.debug(f"Started {spec.identifier} pid={process.pid} argv={spec.argv}")
    return ProcessHandle(spec=spec, process=process)


async def run_process(argv: Sequence[str]) -> tuple[bytes, int]:
    """Run a lookup command and collect stdout and stderr together.

    This is the convenience runner used by discovery, where streaming is not needed.

    Args:
        argv: Command line (first element is the executable)

    Returns:
        Tuple of (combined_output, returncode)

    Raises:
        OSError: If the executable could not be started
    """
    process = await asyncio.create_subprocess_exec(
        *argv,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.STDOUT,
    )
    output, _ = await process.communicate()
    logger.debug(f"Lookup completed argv={list(argv)} returncode={process.returncode}")
    return output, process.returncode if process.returncode is not None else -1
