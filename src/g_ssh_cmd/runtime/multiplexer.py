"""Stream multiplexing for target process output.

Every spawned process gets two readers, one per stream kind. Each completed
line is wrapped as a LogLine and written through the shared LogSink, which is
the single serialization point: whole records may interleave across
processes, fragments never do.

Readers stop only when their pipe reaches EOF. A disabled stream kind is
still drained so the process never blocks on a full pipe. A line longer
than the reader limit is dropped whole, up to and including its newline.
"""

from __future__ import annotations

import asyncio
import logging
import sys
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, TextIO

from ..colors import Palette
from ..errors import StreamAttachError

if TYPE_CHECKING:
    from .barrier import CompletionBarrier
    from .process_runner import ProcessHandle

__all__ = [
    "StreamKind",
    "LogLine",
    "LogSink",
    "StreamMultiplexer",
]

logger = logging.getLogger(__name__)

# Chunk size used when draining a disabled stream
DRAIN_CHUNK_SIZE = 64 * 1024

TIMESTAMP_FORMAT = "%Y/%m/%d %H:%M:%S"


class StreamKind(str, Enum):
    """Which pipe of the process a line came from."""

    PRIMARY = "stdout"
    ERROR = "stderr"


@dataclass(frozen=True)
class LogLine:
    """One line of target output, tagged with its origin."""

    identifier: str
    kind: StreamKind
    text: str


class LogSink:
    """Serialized writer for process output and orchestrator messages.

    Records look like:
        2024/01/02 15:04:05 web-1|stdout: hello
        2024/01/02 15:04:05 [info] connecting to web-1 through [...]

    The lock makes a record the unit of interleaving, both for event-loop
    tasks and for signal handlers running outside them.
    """

    def __init__(
        self,
        stream: TextIO | None = None,
        *,
        palette: Palette | None = None,
        timestamps: bool = True,
    ) -> None:
        self._stream = stream if stream is not None else sys.stdout
        self._palette = palette or Palette(enabled=False)
        self._timestamps = timestamps
        self._lock = threading.Lock()
        self._records = 0

    @property
    def records(self) -> int:
        """Number of records written so far."""
        return self._records

    def format_line(self, line: LogLine) -> str:
        if line.kind == StreamKind.ERROR:
            kind = self._palette.red(line.kind.value)
        else:
            kind = self._palette.green(line.kind.value)
        return f"{self._palette.green(line.identifier)}|{kind}: {line.text}"

    def emit(self, line: LogLine) -> None:
        """Write one LogLine."""
        self._write(self.format_line(line))

    def info(self, *parts: object) -> None:
        """Write an orchestrator-level [info] record."""
        self._write(f"{self._palette.green('[info]')} {_join(parts)}")

    def error(self, *parts: object) -> None:
        """Write an orchestrator-level [error] record."""
        self._write(f"{self._palette.red('[error]')} {_join(parts)}")

    def flush(self) -> None:
        with self._lock:
            self._stream.flush()

    def _write(self, record: str) -> None:
        if self._timestamps:
            record = f"{time.strftime(TIMESTAMP_FORMAT)} {record}"
        with self._lock:
            self._stream.write(record + "\n")
            self._stream.flush()
            self._records += 1


def _join(parts: tuple[object, ...]) -> str:
    return " ".join(str(part) for part in parts)


def _decode(raw: bytes) -> str:
    return raw.decode("utf-8", errors="replace").rstrip("\r\n")


class StreamMultiplexer:
    """Attaches line readers to process pipes and forwards lines to a LogSink.

    Attributes:
        sink: Shared output sink
        primary_enabled: Forward stdout lines
        error_enabled: Forward stderr lines
    """

    def __init__(
        self,
        sink: LogSink,
        *,
        primary_enabled: bool = True,
        error_enabled: bool = True,
    ) -> None:
        self.sink = sink
        self.primary_enabled = primary_enabled
        self.error_enabled = error_enabled

    def is_enabled(self, kind: StreamKind) -> bool:
        if kind == StreamKind.PRIMARY:
            return self.primary_enabled
        return self.error_enabled

    def attach(self, handle: "ProcessHandle", barrier: "CompletionBarrier") -> None:
        """Start both readers of handle as barrier tasks.

        Raises:
            StreamAttachError: handle is missing a pipe
        """
        if handle.stdout is None or handle.stderr is None:
            raise StreamAttachError(handle.identifier, f"output pipes unavailable for pid={handle.pid}")
        barrier.start_soon(
            self.pump,
            handle.identifier,
            StreamKind.PRIMARY,
            handle.stdout,
            name=f"read:{handle.identifier}:stdout",
        )
        barrier.start_soon(
            self.pump,
            handle.identifier,
            StreamKind.ERROR,
            handle.stderr,
            name=f"read:{handle.identifier}:stderr",
        )

    async def pump(
        self,
        identifier: str,
        kind: StreamKind,
        stream: asyncio.StreamReader,
    ) -> int:
        """Read stream until EOF.

        Returns:
            Number of lines forwarded to the sink
        """
        if not self.is_enabled(kind):
            await self._drain(stream)
            logger.debug(f"Drained disabled {kind.value} of {identifier}")
            return 0

        forwarded = 0
        while True:
            try:
                raw = await stream.readuntil(b"\n")
            except asyncio.IncompleteReadError as e:
                # EOF; the last line may lack its newline
                if e.partial:
                    self.sink.emit(LogLine(identifier, kind, _decode(e.partial)))
                    forwarded += 1
                break
            except asyncio.LimitOverrunError:
                logger.warning(f"{identifier}|{kind.value}: over-limit line dropped")
                if not await self._discard_line(stream):
                    break
                continue

            self.sink.emit(LogLine(identifier, kind, _decode(raw)))
            forwarded += 1

        logger.debug(f"{identifier}|{kind.value} reached EOF after {forwarded} line(s)")
        return forwarded

    @staticmethod
    async def _discard_line(stream: asyncio.StreamReader) -> bool:
        """Consume input through the next newline.

        Returns:
            False if EOF came before a newline
        """
        while True:
            try:
                await stream.readuntil(b"\n")
                return True
            except asyncio.LimitOverrunError as e:
                await stream.readexactly(e.consumed)
            except asyncio.IncompleteReadError:
                return False

    @staticmethod
    async def _drain(stream: asyncio.StreamReader) -> None:
        while await stream.read(DRAIN_CHUNK_SIZE):
            pass
