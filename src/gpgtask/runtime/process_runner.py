"""Process creation for gpg tasks.

This module provides:
- ProcessRunner: the capability a task uses to create, stop and reap its child
- AsyncioProcessRunner: the default implementation on asyncio subprocesses

Key design points:
- POSIX only: extra channels are inherited through pass_fds
- start_new_session=True puts the child in its own process group, so a
  Ctrl+C aimed at the caller does not reach gpg and cancellation can signal
  the whole group (gpg-agent helpers included)
- Termination is graceful first (SIGTERM -> timeout -> SIGKILL)
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from ..errors import LaunchError
from .channels import ChannelBindings

__all__ = [
    "AsyncioProcessRunner",
    "ProcessHandle",
    "ProcessRunner",
]

logger = logging.getLogger(__name__)

# Default timeouts
DEFAULT_TERM_TIMEOUT = 2.0  # seconds to wait after SIGTERM
DEFAULT_KILL_TIMEOUT = 1.0  # seconds to wait after SIGKILL


@runtime_checkable
class ProcessHandle(Protocol):
    """What a task needs to know about a spawned child."""

    pid: int
    returncode: int | None


class ProcessRunner(Protocol):
    """Process creation capability consumed by GPGTask."""

    async def spawn(
        self,
        executable: str,
        arguments: Sequence[str],
        environment: Mapping[str, str] | None,
        bindings: ChannelBindings,
    ) -> ProcessHandle:
        """Start the child with the given descriptors bound.

        Raises:
            LaunchError: the process could not be created
        """
        ...

    async def terminate(self, handle: ProcessHandle) -> None:
        """Stop the child, best effort. Must not raise if it already exited."""
        ...

    async def wait(self, handle: ProcessHandle) -> int:
        """Wait for the child to exit and return its exit status."""
        ...


@dataclass
class AsyncioProcessRunner:
    """Default runner with process-group isolation and reliable termination.

    Example:
        runner = AsyncioProcessRunner(term_timeout=0.5)
        handle = await runner.spawn("/usr/bin/gpg", ["--version"], None, bindings)
        status = await runner.wait(handle)
    """

    term_timeout: float = DEFAULT_TERM_TIMEOUT
    kill_timeout: float = DEFAULT_KILL_TIMEOUT

    async def spawn(
        self,
        executable: str,
        arguments: Sequence[str],
        environment: Mapping[str, str] | None,
        bindings: ChannelBindings,
    ) -> asyncio.subprocess.Process:
        kwargs = self._build_subprocess_kwargs(environment, bindings)
        try:
            process = await asyncio.create_subprocess_exec(
                executable,
                *arguments,
                stdin=bindings.stdin,
                stdout=bindings.stdout,
                stderr=bindings.stderr,
                **kwargs,
            )
        except FileNotFoundError as e:
            raise LaunchError(f"executable not found: {executable}", executable) from e
        except PermissionError as e:
            raise LaunchError(f"executable not runnable: {executable}", executable) from e
        except (OSError, ValueError) as e:
            raise LaunchError(f"failed to start {executable}: {e}", executable) from e

        logger.debug(
            f"Started subprocess pid={process.pid} "
            f"argv0={executable} pass_fds={bindings.pass_fds}"
        )
        return process

    async def wait(self, handle: asyncio.subprocess.Process) -> int:
        returncode = await handle.wait()
        logger.debug(f"Subprocess exited pid={handle.pid} returncode={returncode}")
        return returncode

    def _build_subprocess_kwargs(
        self,
        environment: Mapping[str, str] | None,
        bindings: ChannelBindings,
    ) -> dict[str, Any]:
        """Build subprocess kwargs.

        Args:
            environment: Child environment (None = inherit parent)
            bindings: Descriptors to bind

        Returns:
            Dict of kwargs for asyncio.create_subprocess_exec
        """
        kwargs: dict[str, Any] = {
            "pass_fds": bindings.pass_fds,
            # equivalent to setsid
            "start_new_session": True,
        }
        if environment is not None:
            kwargs["env"] = dict(environment)
        return kwargs

    async def terminate(self, handle: asyncio.subprocess.Process) -> None:
        """Terminate subprocess gracefully, then forcefully if needed.

        Termination strategy:
        1. Send SIGTERM to the process group
        2. Wait up to term_timeout for graceful exit
        3. If still running, send SIGKILL to the process group
        4. Wait up to kill_timeout for forced exit
        """
        if handle.returncode is not None:
            return

        pid = handle.pid
        logger.debug(f"Terminating subprocess pid={pid}")

        try:
            self._signal_group(handle, signal.SIGTERM)

            try:
                await asyncio.wait_for(handle.wait(), timeout=self.term_timeout)
                logger.debug(
                    f"Subprocess terminated gracefully pid={pid} "
                    f"returncode={handle.returncode}"
                )
                return
            except asyncio.TimeoutError:
                pass

            logger.debug(f"Force killing subprocess pid={pid}")
            self._signal_group(handle, signal.SIGKILL)

            try:
                await asyncio.wait_for(handle.wait(), timeout=self.kill_timeout)
                logger.debug(
                    f"Subprocess killed pid={pid} "
                    f"returncode={handle.returncode}"
                )
            except asyncio.TimeoutError:
                logger.warning(f"Subprocess did not exit after kill pid={pid}")

        except ProcessLookupError:
            logger.debug(f"Subprocess already exited pid={pid}")

    def _signal_group(self, handle: asyncio.subprocess.Process, signum: int) -> None:
        """Signal the child's process group, falling back to the child alone."""
        try:
            # pgid == pid because of start_new_session
            pgid = os.getpgid(handle.pid)
            os.killpg(pgid, signum)
            logger.debug(f"Sent {signal.Signals(signum).name} to process group pgid={pgid}")
        except ProcessLookupError:
            pass
        except OSError as e:
            logger.debug(f"killpg failed, signalling pid only: {e}")
            handle.send_signal(signum)
