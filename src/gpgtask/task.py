"""A single gpg invocation.

GPGTask ties everything together: it collects arguments and input, creates
the channels, has the runner spawn gpg with them, runs the I/O pump and turns
what happened into exit/error codes and a SessionResult.

Lifecycle (forward only):

    NOT_STARTED -> RUNNING -> TERMINATED
                           -> CANCELLED
    NOT_STARTED -> CANCELLED        (cancel() before gpg was spawned)

Error code derivation, in status arrival order:
1. ERROR / FAILURE lines carry a gpg-error value; its code overrides
2. BAD_PASSPHRASE, NO_SECKEY, ... set a mapped code while none is set
3. a declined prompt sets CANCELED while none is set
4. after exit: non-zero exit without a code -> GENERAL; exit 0 after a
   FAILURE line -> exit code 2
5. cancellation forces CANCELED
"""

from __future__ import annotations

import asyncio
import logging
import signal
import threading
from collections.abc import Iterable, Mapping
from enum import Enum
from types import MappingProxyType
from typing import Any

import anyio

from .config import Config, get_config
from .delegate import DelegateBridge, Responder
from .errors import LaunchError, TaskStateError
from .locate import ExecutableResolver, default_resolver
from .protocol import NeedPassphrase, StatusCode, StatusEvent, StatusParser, UserIDHint
from .result import STATUS_ERROR_CODES, ErrorCode, SessionResult, decode_gpg_error
from .runtime import AsyncioProcessRunner, ChannelSet, IOPump, ProcessRunner

__all__ = [
    "GPGTask",
    "TaskState",
    "FAILURE_EXIT_CODE",
]

logger = logging.getLogger(__name__)

# gpg's own exit status for "an error occurred"
FAILURE_EXIT_CODE = 2

# Reported for cancelled tasks whose child never ran or could not be reaped
CANCEL_SIGNAL = signal.SIGTERM


class TaskState(str, Enum):
    """Task lifecycle states."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    CANCELLED = "cancelled"
    TERMINATED = "terminated"


def _normalize_exit_status(status: int) -> int:
    """Map a negative (killed by signal) return code to 128 + signal."""
    return 128 - status if status < 0 else status


class GPGTask:
    """Runs gpg once with status, command and optional attribute channels.

    Example:
        class Passphrase(Responder):
            def on_prompt(self, code, prompt, task):
                return "secret" if code is StatusCode.NEED_PASSPHRASE else None

        task = GPGTask(["--decrypt"], responder=Passphrase())
        task.add_input_data(ciphertext)
        if task.start() == 0:
            plaintext = task.out_data

    Configuration (arguments, input, responder, user info, flags) is only
    accepted before start. cancel() may be called from any thread.
    """

    def __init__(
        self,
        arguments: Iterable[str] | None = None,
        batch_mode: bool = False,
        *,
        responder: Responder | None = None,
        runner: ProcessRunner | None = None,
        resolver: ExecutableResolver | None = None,
        executable: str | None = None,
        environment: Mapping[str, str] | None = None,
        config: Config | None = None,
    ) -> None:
        """Create a task.

        Args:
            arguments: gpg arguments (protocol flags are added at start)
            batch_mode: Run gpg with --batch --no-tty
            responder: Receives prompts and lifecycle notifications
            runner: Process runner (AsyncioProcessRunner by default)
            resolver: Returns the gpg path (default: config, then search)
            executable: Fixed gpg path, shortcut for a constant resolver
            environment: Child environment (None = inherit)
            config: Settings (global config by default)
        """
        self._config = config or get_config()
        self._arguments: list[str] = list(arguments or [])
        self._batch_mode = batch_mode
        self._verbose = self._config.verbose
        self._wants_attribute_channel = False
        self._responder = responder
        self._runner: ProcessRunner = runner or AsyncioProcessRunner(
            term_timeout=self._config.term_timeout,
            kill_timeout=self._config.kill_timeout,
        )
        if executable is not None:
            self._resolver: ExecutableResolver = lambda: executable
        else:
            self._resolver = resolver or default_resolver(self._config)
        self._environment = environment
        self._user_info: Mapping[str, Any] = MappingProxyType({})
        self._inputs: list[bytes] = []

        # guarded by _lock; the status worker is the only writer while running
        self._lock = threading.Lock()
        self._state = TaskState.NOT_STARTED
        self._started = False
        self._cancelled = False
        self._running = False
        self._pid: int | None = None
        self._exit_code: int | None = None
        self._error_code = 0
        self._failure_seen = False
        self._last_user_id_hint: UserIDHint | None = None
        self._last_need_passphrase: NeedPassphrase | None = None
        self._events: list[StatusEvent] = []

        self._executable: str | None = None
        self._command_line: tuple[str, ...] = ()
        self._channels: ChannelSet | None = None
        self._pump: IOPump | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._result: SessionResult | None = None

    def __repr__(self) -> str:
        return (
            f"GPGTask(arguments={self._arguments!r}, "
            f"state={self._state.value}, "
            f"exit_code={self._exit_code}, "
            f"error_code={self._error_code})"
        )

    # =========================================================================
    # Configuration (before start only)
    # =========================================================================

    def _require_configurable(self, operation: str) -> None:
        if self._started or self._state is not TaskState.NOT_STARTED:
            raise TaskStateError(operation, self._state.value)

    def configure(
        self,
        arguments: Iterable[str] | None = None,
        batch_mode: bool | None = None,
        verbose: bool | None = None,
        wants_attribute_channel: bool | None = None,
    ) -> None:
        """Set arguments and mode flags. None leaves a setting unchanged.

        Raises:
            TaskStateError: task already started or cancelled
        """
        self._require_configurable("configure")
        if arguments is not None:
            self._arguments = list(arguments)
        if batch_mode is not None:
            self._batch_mode = batch_mode
        if verbose is not None:
            self._verbose = verbose
        if wants_attribute_channel is not None:
            self._wants_attribute_channel = wants_attribute_channel

    def add_argument(self, argument: str) -> None:
        self._require_configurable("add argument")
        self._arguments.append(argument)

    def add_arguments(self, arguments: Iterable[str]) -> None:
        self._require_configurable("add arguments")
        self._arguments.extend(arguments)

    def add_input_data(self, data: bytes) -> None:
        """Queue a block for gpg's stdin."""
        self._require_configurable("add input")
        self._inputs.append(bytes(data))

    def add_input_text(self, text: str) -> None:
        """Queue UTF-8 text for gpg's stdin."""
        self.add_input_data(text.encode("utf-8"))

    def set_responder(self, responder: Responder | None) -> None:
        self._require_configurable("set responder")
        self._responder = responder

    def set_user_info(self, user_info: Mapping[str, Any]) -> None:
        """Attach caller data, readable by the responder via task.user_info."""
        self._require_configurable("set user info")
        self._user_info = MappingProxyType(dict(user_info))

    # =========================================================================
    # Read-only state
    # =========================================================================

    @property
    def arguments(self) -> tuple[str, ...]:
        """Caller arguments, without protocol flags."""
        return tuple(self._arguments)

    @property
    def command_line(self) -> tuple[str, ...]:
        """Full argument vector passed to gpg (empty before start)."""
        return self._command_line

    @property
    def batch_mode(self) -> bool:
        return self._batch_mode

    @property
    def verbose(self) -> bool:
        return self._verbose

    @property
    def wants_attribute_channel(self) -> bool:
        return self._wants_attribute_channel

    @property
    def user_info(self) -> Mapping[str, Any]:
        return self._user_info

    @property
    def executable(self) -> str | None:
        return self._executable

    @property
    def state(self) -> TaskState:
        return self._state

    @property
    def is_running(self) -> bool:
        """True while the child is alive or being torn down."""
        return self._running

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def pid(self) -> int | None:
        """Child pid, only while running."""
        return self._pid

    @property
    def exit_code(self) -> int | None:
        """Exit code once the task finished, None before."""
        return self._exit_code

    @property
    def error_code(self) -> int:
        return self._error_code

    @property
    def last_user_id_hint(self) -> UserIDHint | None:
        with self._lock:
            return self._last_user_id_hint

    @property
    def last_need_passphrase(self) -> NeedPassphrase | None:
        with self._lock:
            return self._last_need_passphrase

    @property
    def events(self) -> tuple[StatusEvent, ...]:
        with self._lock:
            return tuple(self._events)

    @property
    def result(self) -> SessionResult | None:
        """Snapshot of the finished run, None until then."""
        return self._result

    def _channel_data(self, name: str) -> bytes:
        if self._result is not None:
            return getattr(self._result, f"{name}_data")
        channels = self._channels
        if channels is None:
            return b""
        channel = {
            "out": channels.stdout,
            "err": channels.stderr,
            "status": channels.status,
            "attribute": channels.attribute,
        }[name]
        return channel.data if channel is not None else b""

    @property
    def out_data(self) -> bytes:
        return self._channel_data("out")

    @property
    def err_data(self) -> bytes:
        return self._channel_data("err")

    @property
    def status_data(self) -> bytes:
        return self._channel_data("status")

    @property
    def attribute_data(self) -> bytes:
        return self._channel_data("attribute")

    @property
    def out_text(self) -> str:
        return self.out_data.decode("utf-8", errors="replace")

    @property
    def err_text(self) -> str:
        return self.err_data.decode("utf-8", errors="replace")

    @property
    def status_text(self) -> str:
        return self.status_data.decode("utf-8", errors="replace")

    @property
    def attribute_text(self) -> str:
        return self.attribute_data.decode("utf-8", errors="replace")

    # =========================================================================
    # Running
    # =========================================================================

    def start(self) -> int:
        """Run gpg and block until it finished.

        Starts its own event loop; from async code use ``await task.run()``.

        Returns:
            The exit code

        Raises:
            LaunchError: gpg could not be started
            TaskStateError: task was already started
        """
        return anyio.run(self.run, backend="asyncio")

    async def run(self) -> int:
        """Async variant of start(). Needs the asyncio backend."""
        with self._lock:
            if self._started:
                raise TaskStateError("start", self._state.value)
            self._started = True
            cancelled_early = self._state is TaskState.CANCELLED

        bridge = DelegateBridge(
            self._responder,
            self._config.no_response_policy,
            on_declined=self._on_declined,
        )
        if cancelled_early:
            logger.debug("Task cancelled before start, not spawning")
            return self._finish(bridge, None)

        self._loop = asyncio.get_running_loop()
        executable = self._resolver()
        self._executable = executable

        bridge.notify_start(self)
        if self._cancelled:
            logger.debug("Task cancelled during on_start, not spawning")
            return self._finish(bridge, None)

        try:
            channels = ChannelSet(with_attribute=self._wants_attribute_channel)
        except OSError as e:
            raise LaunchError(f"could not create channels: {e}", executable) from e

        self._command_line = tuple(self._build_arguments(channels))
        pump = IOPump(
            self._runner,
            channels,
            StatusParser(),
            bridge,
            context=self,
            on_event=self._on_event,
            read_size=self._config.read_size,
            verbose=self._verbose,
        )
        with self._lock:
            self._channels = channels
            self._pump = pump
            cancelled_before_spawn = self._cancelled
        if cancelled_before_spawn:
            channels.close()
            return self._finish(bridge, None)

        logger.debug(f"Executing: {executable} {' '.join(self._command_line)}")
        try:
            handle = await self._runner.spawn(
                executable, self._command_line, self._environment, channels.bindings()
            )
        except LaunchError:
            channels.close()
            raise
        except OSError as e:
            channels.close()
            raise LaunchError(f"failed to start {executable}: {e}", executable) from e
        channels.close_child_ends()

        with self._lock:
            self._pid = handle.pid
            self._running = True
            cancel_now = self._cancelled
            self._state = TaskState.CANCELLED if cancel_now else TaskState.RUNNING
        if cancel_now:
            pump.cancel()

        try:
            exit_status = await pump.run(handle, self._inputs)
        except Exception as e:
            logger.error(f"Run of {executable} failed: {e!r}")
            with self._lock:
                self._running = False
                self._pid = None
                self._error_code = ErrorCode.GENERAL
            self._finish(bridge, handle.returncode)
            raise
        finally:
            with self._lock:
                self._running = False
                self._pid = None

        return self._finish(bridge, exit_status)

    def cancel(self) -> None:
        """Cancel the task. Idempotent, safe from any thread.

        Before spawn the task goes straight to CANCELLED and gpg never runs.
        While running, gpg is terminated and captured output is kept.
        """
        with self._lock:
            if self._cancelled or self._state in (TaskState.TERMINATED, TaskState.CANCELLED):
                return
            self._cancelled = True
            state = self._state
            if state is TaskState.NOT_STARTED:
                if self._pump is None:
                    self._state = TaskState.CANCELLED
                # else spawn is in flight; run() sees the flag afterwards
                return
            self._state = TaskState.CANCELLED
            pump, loop = self._pump, self._loop

        logger.debug(f"Cancelling task pid={self._pid}")
        if pump is not None and loop is not None:
            try:
                loop.call_soon_threadsafe(pump.cancel)
            except RuntimeError as e:
                # loop already closed, the run is over
                logger.debug(f"Cancel after loop shutdown: {e}")

    def _build_arguments(self, channels: ChannelSet) -> list[str]:
        """Protocol flags first, then the caller arguments.

        gpg stops option parsing at the first operand, so the flags cannot
        trail file names given by the caller.
        """
        arguments = [
            "--no-greeting",
            "--status-fd", str(channels.status_fd),
            "--command-fd", str(channels.command_fd),
        ]
        if channels.attribute_fd is not None:
            arguments += ["--attribute-fd", str(channels.attribute_fd)]
        if self._config.pinentry_loopback:
            arguments += ["--pinentry-mode", "loopback"]
        if self._batch_mode:
            arguments += ["--batch", "--no-tty"]
        arguments += self._arguments
        return arguments

    # =========================================================================
    # Status bookkeeping (status worker)
    # =========================================================================

    def _on_event(self, event: StatusEvent) -> None:
        if self._verbose:
            logger.debug(f"status: {event.line}")
        with self._lock:
            self._events.append(event)
            if isinstance(event.detail, UserIDHint):
                self._last_user_id_hint = event.detail
            elif isinstance(event.detail, NeedPassphrase):
                self._last_need_passphrase = event.detail
            self._apply_status_error(event)

    def _apply_status_error(self, event: StatusEvent) -> None:
        if event.code in (StatusCode.ERROR, StatusCode.FAILURE):
            args = event.args
            code = decode_gpg_error(args[1]) if len(args) > 1 else None
            if code:
                self._error_code = code
                if event.code is StatusCode.FAILURE:
                    self._failure_seen = True
                logger.debug(f"{event.keyword} {args[0]}: error code {code}")
        elif self._error_code == 0 and event.code in STATUS_ERROR_CODES:
            self._error_code = STATUS_ERROR_CODES[event.code]

    def _on_declined(self, event: StatusEvent) -> None:
        with self._lock:
            if self._error_code == 0:
                self._error_code = ErrorCode.CANCELED

    # =========================================================================
    # Completion
    # =========================================================================

    def _finish(self, bridge: DelegateBridge, exit_status: int | None) -> int:
        with self._lock:
            if self._cancelled:
                self._state = TaskState.CANCELLED
                self._error_code = ErrorCode.CANCELED
                if exit_status is None:
                    exit_code = 128 + CANCEL_SIGNAL
                else:
                    exit_code = _normalize_exit_status(exit_status)
            else:
                if exit_status is None:
                    exit_code = FAILURE_EXIT_CODE
                else:
                    exit_code = _normalize_exit_status(exit_status)
                if exit_code != 0 and self._error_code == 0:
                    self._error_code = ErrorCode.GENERAL
                if exit_code == 0 and self._failure_seen:
                    exit_code = FAILURE_EXIT_CODE
                self._state = TaskState.TERMINATED
            self._exit_code = exit_code

            channels = self._channels
            attribute = channels.attribute if channels is not None else None
            self._result = SessionResult(
                out_data=channels.stdout.data if channels is not None else b"",
                err_data=channels.stderr.data if channels is not None else b"",
                status_data=channels.status.data if channels is not None else b"",
                attribute_data=attribute.data if attribute is not None else b"",
                exit_code=exit_code,
                error_code=int(self._error_code),
                cancelled=self._cancelled,
                events=tuple(self._events),
                arguments=self._command_line,
            )
            self._inputs.clear()
            self._pump = None

        logger.debug(
            f"Task finished state={self._state.value} "
            f"exit_code={exit_code} error_code={self._error_code}"
        )
        bridge.notify_terminate(self)
        return exit_code
