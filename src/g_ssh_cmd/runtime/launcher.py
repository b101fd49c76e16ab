"""Concurrent launcher for target commands.

For each CommandSpec, independently and without any concurrency cap:
1. spawn the process (a spawn failure only abandons that target)
2. check both stream endpoints (a missing one aborts the whole run)
3. register the handle (a duplicate identifier is rejected and terminated,
   as is a process that finished spawning after shutdown began)
4. attach the stream multiplexer
5. wait for the process to exit and report a non-zero exit code
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from ..errors import SignalDeliveryError, SpawnError, StreamAttachError
from .process_runner import DEFAULT_LINE_LIMIT, CommandSpec, ProcessHandle, spawn

if TYPE_CHECKING:
    from ..registry import ProcessRegistry
    from .barrier import CompletionBarrier
    from .multiplexer import LogSink, StreamMultiplexer

__all__ = ["Launcher", "RunSummary"]

logger = logging.getLogger(__name__)


@dataclass
class RunSummary:
    """What happened to each spec of one run.

    Attributes:
        launched: Identifiers whose process was spawned and registered
        spawn_failures: Identifier -> error message
        rejected: Identifiers whose duplicate process was rejected by the registry
        exit_codes: Identifier -> exit code of the registered process
    """

    launched: list[str] = field(default_factory=list)
    spawn_failures: dict[str, str] = field(default_factory=dict)
    rejected: list[str] = field(default_factory=list)
    exit_codes: dict[str, int] = field(default_factory=dict)

    @property
    def failed(self) -> list[str]:
        """Identifiers that could not be started or exited non-zero."""
        nonzero = [k for k, code in self.exit_codes.items() if code != 0]
        return list(self.spawn_failures) + nonzero


class Launcher:
    """Starts one process per CommandSpec and wires it to the multiplexer."""

    def __init__(
        self,
        registry: "ProcessRegistry",
        multiplexer: "StreamMultiplexer",
        *,
        line_limit: int = DEFAULT_LINE_LIMIT,
        summary: RunSummary | None = None,
    ) -> None:
        self.registry = registry
        self.multiplexer = multiplexer
        self.line_limit = line_limit
        self.summary = summary if summary is not None else RunSummary()

    @property
    def sink(self) -> "LogSink":
        return self.multiplexer.sink

    def launch_all(self, specs: list[CommandSpec], barrier: "CompletionBarrier") -> None:
        """Start one launch task per spec on the barrier; does not wait."""
        for spec in specs:
            barrier.start_soon(self.launch, spec, barrier, name=f"launch:{spec.identifier}")

    async def launch(self, spec: CommandSpec, barrier: "CompletionBarrier") -> None:
        """Run one target from spawn to exit."""
        if self.registry.closed:
            logger.debug(f"Registry closed, not launching {spec.identifier}")
            return

        self.sink.info("connecting to", spec.identifier, "through", spec.argv)

        # Between fork and register the child is not in the registry; the
        # pending count lets the shutdown path wait for it.
        self.registry.spawn_started()
        try:
            try:
                handle = await spawn(spec, limit=self.line_limit)
            except SpawnError as e:
                self.summary.spawn_failures[spec.identifier] = e.message
                logger.debug(f"Spawn failed: {e}")
                self.sink.error(spec.identifier, "-->", e.message)
                return

            if handle.stdout is None or handle.stderr is None:
                self._discard(handle)
                barrier.abort(
                    StreamAttachError(spec.identifier, f"output pipes unavailable for pid={handle.pid}")
                )
                return

            tracked = self.registry.register(spec.identifier, handle)
            if tracked:
                self.summary.launched.append(spec.identifier)
            elif self.registry.closed:
                logger.debug(f"Terminating {spec.identifier}, spawned during shutdown")
                self._discard(handle)
                return
            else:
                self.summary.rejected.append(spec.identifier)
                self.sink.error(
                    "duplicate identifier", spec.identifier, "--> already running, terminating the new process"
                )
                self._discard(handle)
        finally:
            self.registry.spawn_finished()

        self.multiplexer.attach(handle, barrier)

        code = await handle.wait()
        if not tracked:
            logger.debug(f"Rejected duplicate {spec.identifier} exited with {code}")
            return

        self.summary.exit_codes[spec.identifier] = code
        if code != 0:
            self.sink.error(spec.identifier, "exited with status", code)
        else:
            logger.debug(f"{spec.identifier} exited normally")

    def _discard(self, handle: ProcessHandle) -> None:
        """Terminate a process nothing will track, escalating to kill."""
        try:
            handle.terminate()
        except SignalDeliveryError as e:
            logger.debug(f"Terminate of untracked {handle.identifier} failed ({e}), killing")
            try:
                handle.kill()
            except SignalDeliveryError as kill_error:
                logger.error(f"Kill of untracked {handle.identifier} failed: {kill_error}")
