"""Concurrent I/O pump for a running gpg child.

One task per channel, all in a single anyio task group:

- stdin writer: writes the queued input blocks, then closes stdin
- stdout / stderr / attribute readers: append to their channel buffer until EOF
- status reader: feeds the StatusParser and, for interactive events, waits
  for the DelegateBridge before reading further
- exit waiter: reaps the child

Every channel is drained at the same time. gpg can block writing stderr or
status while we are still feeding stdin; any sequential scheme deadlocks
once a pipe buffer fills up.

The pump is done when the child has exited and every read channel hit EOF.
cancel() stops all workers at their next await point. Captured bytes stay
in the buffers, and the child is terminated under a shielded scope.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING, Any

import anyio

from ..config import DEFAULT_READ_SIZE
from ..protocol import StatusEvent, StatusParser
from .channels import Channel, ChannelSet
from .process_runner import ProcessHandle, ProcessRunner

if TYPE_CHECKING:
    from ..delegate import DelegateBridge

__all__ = ["IOPump"]

logger = logging.getLogger(__name__)

# Bytes of each chunk shown in verbose traces
TRACE_PREVIEW = 120


class IOPump:
    """Moves bytes between a ChannelSet and the task until the child is done.

    Attributes:
        exit_status: Child exit status once known (None before exit, or if it
            could not be reaped)
    """

    def __init__(
        self,
        runner: ProcessRunner,
        channels: ChannelSet,
        parser: StatusParser,
        bridge: DelegateBridge,
        *,
        context: Any = None,
        on_event: Callable[[StatusEvent], None] | None = None,
        read_size: int = DEFAULT_READ_SIZE,
        verbose: bool = False,
    ) -> None:
        """Create a pump for one run.

        Args:
            runner: Runner that spawned the child (used to wait / terminate)
            channels: Channels of this run, child ends already closed
            parser: Status parser of this run
            bridge: Bridge answering interactive events
            context: Passed to the bridge as the owning task
            on_event: Called for every status event before any bridge call
            read_size: Maximum bytes per read
            verbose: Trace every chunk at debug level
        """
        self._runner = runner
        self._channels = channels
        self._parser = parser
        self._bridge = bridge
        self._context = context
        self._on_event = on_event
        self._read_size = read_size
        self._verbose = verbose
        self._cancel_requested = False
        self._scope: anyio.CancelScope | None = None
        self.exit_status: int | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancel_requested

    def cancel(self) -> None:
        """Stop every worker. Call from the pump's event loop thread."""
        if self._cancel_requested:
            return
        self._cancel_requested = True
        logger.debug("Pump cancel requested")
        if self._scope is not None:
            self._scope.cancel()

    async def run(self, handle: ProcessHandle, inputs: Iterable[bytes] = ()) -> int | None:
        """Pump all channels until the child exits and every reader hits EOF.

        Args:
            handle: The spawned child
            inputs: Blocks to write to stdin, in order

        Returns:
            The child's exit status, or None if it could not be reaped
        """
        channels = self._channels
        queue = deque(inputs)
        try:
            stdin_writer = await channels.stdin.open_writer()
            command_writer = await channels.command.open_writer()
            self._bridge.attach(command_writer)
            readers = [
                (channel, await channel.open_reader())
                for channel in channels.output_channels
            ]
            status_reader = await channels.status.open_reader()

            async with anyio.create_task_group() as tg:
                self._scope = tg.cancel_scope
                if self._cancel_requested:
                    tg.cancel_scope.cancel()
                tg.start_soon(self._write_input, stdin_writer, queue)
                for channel, reader in readers:
                    tg.start_soon(self._drain, channel, reader)
                tg.start_soon(self._pump_status, status_reader)
                tg.start_soon(self._wait_exit, handle)
        finally:
            with anyio.CancelScope(shield=True):
                if handle.returncode is None:
                    await self._runner.terminate(handle)
                if self.exit_status is None:
                    self.exit_status = handle.returncode
                self._bridge.close()
                channels.close()
            self._scope = None

        return self.exit_status

    async def _write_input(self, writer: asyncio.StreamWriter, queue: deque[bytes]) -> None:
        """Feed stdin, discarding each block once written, then close it once."""
        try:
            while queue:
                block = queue.popleft()
                self._trace("stdin", ">", block)
                writer.write(block)
                await writer.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            logger.debug(f"stdin closed by child with {len(queue)} block(s) unsent: {e}")
        finally:
            writer.close()

    async def _drain(self, channel: Channel, reader: asyncio.StreamReader) -> None:
        try:
            while True:
                chunk = await reader.read(self._read_size)
                if not chunk:
                    break
                channel.append(chunk)
                self._trace(channel.name, "<", chunk)
        finally:
            channel.close()

    async def _pump_status(self, reader: asyncio.StreamReader) -> None:
        channel = self._channels.status
        try:
            while True:
                chunk = await reader.read(self._read_size)
                if not chunk:
                    break
                channel.append(chunk)
                self._trace(channel.name, "<", chunk)
                for event in self._parser.feed(chunk):
                    await self._dispatch(event)
            for event in self._parser.finish():
                await self._dispatch(event)
        finally:
            channel.close()
            # no more prompts can arrive without a status channel
            self._bridge.close()

    async def _dispatch(self, event: StatusEvent) -> None:
        if self._on_event is not None:
            self._on_event(event)
        if event.interactive:
            await self._bridge.respond(event, self._context)

    async def _wait_exit(self, handle: ProcessHandle) -> None:
        self.exit_status = await self._runner.wait(handle)

    def _trace(self, name: str, direction: str, chunk: bytes) -> None:
        if not self._verbose:
            return
        preview = chunk[:TRACE_PREVIEW]
        more = "..." if len(chunk) > TRACE_PREVIEW else ""
        logger.debug(f"{name} {direction} {len(chunk)} bytes: {preview!r}{more}")
