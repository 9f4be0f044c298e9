"""Bridge between interactive status events and the caller's responder.

gpg announces prompts on the status channel (GET_HIDDEN, GET_BOOL,
NEED_PASSPHRASE, ...) and then blocks reading the command channel. The bridge
asks the responder for an answer, frames it as a single line and writes it to
the command channel before the status worker reads on.

The responder may block for as long as it likes (it might be asking a
human). It runs in a worker thread, so only the status worker waits while
the other channels keep draining.

NEED_PASSPHRASE is answered before gpg asks for the passphrase. If gpg never
asks (the agent had it cached), the line stays in the command pipe and gpg
reads it for its next prompt. The bridge cannot take it back; it only logs a
warning when that happens.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import anyio

from .config import NoResponsePolicy
from .protocol import PASSPHRASE_CODES, StatusCode, StatusEvent

if TYPE_CHECKING:
    from .task import GPGTask

__all__ = [
    "DelegateBridge",
    "Responder",
    "ResponseValue",
    "frame_response",
]

logger = logging.getLogger(__name__)

# Text answers are encoded, binary answers are written as given.
ResponseValue = str | bytes | None

# Prompt gpg issues for the passphrase itself in loopback mode
PASSPHRASE_PROMPT = "passphrase.enter"


class Responder:
    """Callbacks a task relays events to. Override what you need.

    Example:
        class AskOnce(Responder):
            def on_prompt(self, code, prompt, task):
                if code is StatusCode.NEED_PASSPHRASE:
                    return getpass.getpass(f"Passphrase for {task.last_need_passphrase.key_id}: ")
                return None
    """

    def on_prompt(self, code: StatusCode, prompt: str, task: GPGTask) -> ResponseValue:
        """Answer an interactive prompt.

        Called from a worker thread. Return str (sent as UTF-8), bytes
        (sent verbatim) or None to decline.
        """
        return None

    def on_start(self, task: GPGTask) -> None:
        """The task is about to spawn gpg."""

    def on_terminate(self, task: GPGTask) -> None:
        """The task finished (terminated or cancelled)."""


def frame_response(value: str | bytes) -> bytes:
    """Frame an answer as exactly one command line.

    One trailing line terminator is dropped, embedded CR/LF are escaped
    as %0D/%0A, and a single LF is appended.
    """
    if isinstance(value, str):
        data = value.encode("utf-8")
    else:
        data = bytes(value)

    if data.endswith(b"\r\n"):
        data = data[:-2]
    elif data.endswith(b"\n"):
        data = data[:-1]

    data = data.replace(b"\r", b"%0D").replace(b"\n", b"%0A")
    return data + b"\n"


class DelegateBridge:
    """Relays interactive events of one run to a Responder.

    Attributes:
        policy: Applied when the responder declines or fails
        round_trips: Number of respond() calls so far
    """

    def __init__(
        self,
        responder: Responder | None,
        policy: NoResponsePolicy = NoResponsePolicy.DENY,
        on_declined: Callable[[StatusEvent], None] | None = None,
    ) -> None:
        """Create a bridge.

        Args:
            responder: Caller's responder (None declines every prompt)
            policy: No-response policy
            on_declined: Called with the event whenever a prompt is declined
        """
        self._responder = responder
        self.policy = policy
        self._on_declined = on_declined
        self._writer: asyncio.StreamWriter | None = None
        self._passphrase_sent = False
        self.round_trips = 0

    def attach(self, writer: asyncio.StreamWriter) -> None:
        """Use writer as the command channel."""
        self._writer = writer

    def close(self) -> None:
        """Close the command channel. gpg reads EOF on its next prompt."""
        if self._writer is not None and not self._writer.is_closing():
            self._writer.close()

    async def respond(self, event: StatusEvent, task: GPGTask) -> bytes | None:
        """Handle one interactive event.

        Returns:
            The bytes written to the command channel, or None if nothing was
            written
        """
        self.round_trips += 1

        if self._passphrase_sent:
            self._passphrase_sent = False
            if (
                event.code is StatusCode.GET_HIDDEN
                and event.payload.strip() == PASSPHRASE_PROMPT
            ):
                # the line written for NEED_PASSPHRASE answers this prompt
                logger.debug("Passphrase already queued on command channel")
                return None
            # gpg did not ask for the queued line; it answers this prompt
            logger.warning(
                f"{event.keyword} {event.payload!r} arrived instead of "
                f"{PASSPHRASE_PROMPT}, the queued passphrase line is still unread"
            )

        value = await self._ask(event, task)
        if value is None:
            return await self._decline(event)

        try:
            framed = frame_response(value)
        except UnicodeEncodeError as e:
            logger.warning(f"Answer for {event.keyword} cannot be encoded: {e}")
            return await self._decline(event)
        if not await self._write(framed):
            return None
        if event.code in PASSPHRASE_CODES:
            self._passphrase_sent = True
        logger.debug(f"Answered {event.keyword} ({len(framed) - 1} bytes)")
        return framed

    async def _ask(self, event: StatusEvent, task: GPGTask) -> ResponseValue:
        if self._responder is None:
            return None
        try:
            value: Any = await anyio.to_thread.run_sync(
                self._responder.on_prompt,
                event.code,
                event.payload,
                task,
                abandon_on_cancel=True,
            )
        except Exception as e:
            logger.warning(f"Responder failed on {event.keyword}: {e}")
            return None

        if value is None or isinstance(value, (str, bytes)):
            return value
        if isinstance(value, (bytearray, memoryview)):
            return bytes(value)
        logger.warning(
            f"Responder returned {type(value).__name__} for {event.keyword}, "
            f"expected str, bytes or None"
        )
        return None

    async def _decline(self, event: StatusEvent) -> bytes | None:
        logger.warning(
            f"No answer for {event.keyword} {event.payload!r}, "
            f"applying policy={self.policy.value}"
        )
        if self._on_declined is not None:
            self._on_declined(event)

        if self.policy is NoResponsePolicy.CANCEL:
            self.close()
            return None

        if not await self._write(b"\n"):
            return None
        if event.code in PASSPHRASE_CODES:
            self._passphrase_sent = True
        return b"\n"

    async def _write(self, data: bytes) -> bool:
        writer = self._writer
        if writer is None or writer.is_closing():
            logger.warning("Command channel closed, answer dropped")
            return False
        try:
            writer.write(data)
            await writer.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            logger.warning(f"Command channel write failed: {e}")
            return False
        return True

    def notify_start(self, task: GPGTask) -> None:
        if self._responder is None:
            return
        try:
            self._responder.on_start(task)
        except Exception as e:
            logger.warning(f"Error in on_start callback: {e}")

    def notify_terminate(self, task: GPGTask) -> None:
        if self._responder is None:
            return
        try:
            self._responder.on_terminate(task)
        except Exception as e:
            logger.warning(f"Error in on_terminate callback: {e}")
