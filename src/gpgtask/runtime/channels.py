"""Pipes connecting a task to its gpg child.

A ChannelSet owns every descriptor for one run:

- stdin: parent writes, child reads
- stdout / stderr: child writes, parent reads
- status: child writes --status-fd lines, parent reads
- command: parent writes answers, child reads --command-fd
- attribute (optional): child writes --attribute-fd data, parent reads

Parent ends are non-inheritable and get wrapped in asyncio pipe transports
once the child is running. Child ends are passed to the runner and closed
in the parent right after spawn, so EOF propagates when the child exits.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from enum import Enum

__all__ = [
    "Channel",
    "ChannelBindings",
    "ChannelSet",
    "Direction",
]

logger = logging.getLogger(__name__)


class Direction(str, Enum):
    """Data direction, seen from the parent."""

    WRITE_ONLY = "write_only"
    READ_ONLY = "read_only"
    BIDIRECTIONAL = "bidirectional"  # command channel, answers to status lines


@dataclass(frozen=True)
class ChannelBindings:
    """Child-side descriptors handed to the process runner.

    Attributes:
        stdin: Descriptor to become the child's fd 0
        stdout: Descriptor to become the child's fd 1
        stderr: Descriptor to become the child's fd 2
        pass_fds: Extra descriptors inherited under their own numbers
    """

    stdin: int
    stdout: int
    stderr: int
    pass_fds: tuple[int, ...] = ()


@dataclass(eq=False)
class Channel:
    """One pipe between parent and child.

    Attributes:
        name: Channel role (stdin, stdout, ...)
        direction: Data direction seen from the parent
        parent_fd: Our end of the pipe
        child_fd: End inherited by the child
        buffer: Captured bytes, read channels only
    """

    name: str
    direction: Direction
    parent_fd: int
    child_fd: int
    buffer: bytearray | None = None
    _transport: asyncio.BaseTransport | None = field(default=None, repr=False)
    _parent_open: bool = field(default=True, repr=False)
    _child_open: bool = field(default=True, repr=False)

    @classmethod
    def pipe(cls, name: str, direction: Direction) -> "Channel":
        """Create a pipe with ends assigned according to direction."""
        read_fd, write_fd = os.pipe()
        if direction is Direction.READ_ONLY:
            return cls(name, direction, read_fd, write_fd, buffer=bytearray())
        return cls(name, direction, write_fd, read_fd)

    @property
    def readable(self) -> bool:
        return self.direction is Direction.READ_ONLY

    @property
    def closed(self) -> bool:
        if self._transport is not None:
            return self._transport.is_closing()
        return not self._parent_open

    @property
    def data(self) -> bytes:
        """Snapshot of the captured bytes."""
        return bytes(self.buffer) if self.buffer is not None else b""

    def append(self, chunk: bytes) -> None:
        if self.buffer is None:
            raise TypeError(f"{self.name} channel has no capture buffer")
        self.buffer.extend(chunk)

    def close_child_end(self) -> None:
        if self._child_open:
            self._child_open = False
            _close_fd(self.child_fd)

    def close(self) -> None:
        """Close our end, through the transport once one is attached."""
        if self._transport is not None:
            if not self._transport.is_closing():
                self._transport.close()
        elif self._parent_open:
            self._parent_open = False
            _close_fd(self.parent_fd)

    async def open_reader(self) -> asyncio.StreamReader:
        """Attach a read transport to our end and return its stream."""
        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader(loop=loop)
        protocol = asyncio.StreamReaderProtocol(reader, loop=loop)
        transport, _ = await loop.connect_read_pipe(
            lambda: protocol, self._take_file("rb")
        )
        self._transport = transport
        return reader

    async def open_writer(self) -> asyncio.StreamWriter:
        """Attach a write transport to our end and return its stream."""
        loop = asyncio.get_running_loop()
        transport, protocol = await loop.connect_write_pipe(
            asyncio.streams.FlowControlMixin, self._take_file("wb")
        )
        self._transport = transport
        return asyncio.StreamWriter(transport, protocol, None, loop)

    def _take_file(self, mode: str):
        # the transport owns the descriptor from here on
        if not self._parent_open:
            raise ValueError(f"{self.name} channel is closed")
        self._parent_open = False
        return os.fdopen(self.parent_fd, mode, buffering=0)


def _close_fd(fd: int) -> None:
    try:
        os.close(fd)
    except OSError as e:
        logger.debug(f"close({fd}) failed: {e}")


class ChannelSet:
    """All channels of a single run. Never reused across runs."""

    def __init__(self, with_attribute: bool = False) -> None:
        """Create the pipes.

        Args:
            with_attribute: Also create the attribute channel

        Raises:
            OSError: descriptor allocation failed (already-created pipes
                are closed first)
        """
        self._channels: list[Channel] = []
        try:
            self.stdin = self._add("stdin", Direction.WRITE_ONLY)
            self.stdout = self._add("stdout", Direction.READ_ONLY)
            self.stderr = self._add("stderr", Direction.READ_ONLY)
            self.status = self._add("status", Direction.READ_ONLY)
            self.command = self._add("command", Direction.BIDIRECTIONAL)
            self.attribute: Channel | None = (
                self._add("attribute", Direction.READ_ONLY) if with_attribute else None
            )
        except OSError:
            self.close()
            raise

    def _add(self, name: str, direction: Direction) -> Channel:
        channel = Channel.pipe(name, direction)
        self._channels.append(channel)
        return channel

    def __iter__(self):
        return iter(self._channels)

    @property
    def status_fd(self) -> int:
        """Child-side descriptor number for --status-fd."""
        return self.status.child_fd

    @property
    def command_fd(self) -> int:
        """Child-side descriptor number for --command-fd."""
        return self.command.child_fd

    @property
    def attribute_fd(self) -> int | None:
        """Child-side descriptor number for --attribute-fd, if requested."""
        return self.attribute.child_fd if self.attribute is not None else None

    @property
    def output_channels(self) -> list[Channel]:
        """Plain capture channels (stdout, stderr, attribute)."""
        channels = [self.stdout, self.stderr]
        if self.attribute is not None:
            channels.append(self.attribute)
        return channels

    def bindings(self) -> ChannelBindings:
        extra = [self.status.child_fd, self.command.child_fd]
        if self.attribute is not None:
            extra.append(self.attribute.child_fd)
        return ChannelBindings(
            stdin=self.stdin.child_fd,
            stdout=self.stdout.child_fd,
            stderr=self.stderr.child_fd,
            pass_fds=tuple(extra),
        )

    def close_child_ends(self) -> None:
        for channel in self._channels:
            channel.close_child_end()

    def close(self) -> None:
        for channel in self._channels:
            channel.close_child_end()
            channel.close()
