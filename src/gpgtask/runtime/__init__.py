"""Runtime: pipes, process spawning and the concurrent I/O pump.

This module owns everything that touches file descriptors or the child
process, so the task layer only deals with bytes and events.
"""

from __future__ import annotations

from .channels import Channel, ChannelBindings, ChannelSet, Direction
from .process_runner import AsyncioProcessRunner, ProcessHandle, ProcessRunner
from .pump import IOPump

__all__ = [
    "AsyncioProcessRunner",
    "Channel",
    "ChannelBindings",
    "ChannelSet",
    "Direction",
    "IOPump",
    "ProcessHandle",
    "ProcessRunner",
]
