"""DelegateBridge tests.

Test coverage:
- Answer framing
- Responder round trips and return value handling
- No-response policies
- Passphrase prompt de-duplication in loopback mode
- Lifecycle notifications
"""

from __future__ import annotations

import logging

import pytest

from gpgtask.config import NoResponsePolicy
from gpgtask.delegate import DelegateBridge, Responder, frame_response
from gpgtask.protocol import StatusCode, StatusEvent, StatusParser


class MemoryWriter:
    """Stands in for the command channel's StreamWriter."""

    def __init__(self, broken: bool = False) -> None:
        self.data = bytearray()
        self.closed = False
        self.broken = broken

    def write(self, data: bytes) -> None:
        if self.broken:
            raise BrokenPipeError("child went away")
        self.data.extend(data)

    async def drain(self) -> None:
        pass

    def close(self) -> None:
        self.closed = True

    def is_closing(self) -> bool:
        return self.closed


class RecordingResponder(Responder):
    """Returns canned answers and records every call."""

    def __init__(self, *answers) -> None:
        self.answers = list(answers)
        self.calls: list[tuple[StatusCode, str]] = []
        self.started = 0
        self.terminated = 0

    def on_prompt(self, code, prompt, task):
        self.calls.append((code, prompt))
        return self.answers.pop(0) if self.answers else None

    def on_start(self, task):
        self.started += 1

    def on_terminate(self, task):
        self.terminated += 1


def event(line: bytes) -> StatusEvent:
    return next(StatusParser().feed(line + b"\n"))


# =============================================================================
# Framing
# =============================================================================


class TestFrameResponse:
    """Test single-line framing of answers."""

    def test_text(self):
        assert frame_response("secret123") == b"secret123\n"

    def test_bytes_verbatim(self):
        assert frame_response(b"\x00\xffraw") == b"\x00\xffraw\n"

    def test_utf8(self):
        assert frame_response("pässword") == "pässword\n".encode("utf-8")

    def test_single_trailing_newline_dropped(self):
        assert frame_response("yes\n") == b"yes\n"
        assert frame_response("yes\r\n") == b"yes\n"

    def test_embedded_newlines_escaped(self):
        assert frame_response("a\nb\rc") == b"a%0Ab%0Dc\n"

    def test_only_one_terminator_stripped(self):
        assert frame_response("x\n\n") == b"x%0A\n"

    def test_empty(self):
        assert frame_response("") == b"\n"


# =============================================================================
# Round trips
# =============================================================================


class TestRespond:
    """Test responder round trips."""

    @pytest.mark.asyncio
    async def test_answer_written(self):
        responder = RecordingResponder("y")
        bridge = DelegateBridge(responder)
        writer = MemoryWriter()
        bridge.attach(writer)

        written = await bridge.respond(event(b"[GNUPG:] GET_BOOL keyedit.save.okay"), None)

        assert written == b"y\n"
        assert bytes(writer.data) == b"y\n"
        assert responder.calls == [(StatusCode.GET_BOOL, "keyedit.save.okay")]
        assert bridge.round_trips == 1

    @pytest.mark.asyncio
    async def test_responder_gets_task(self):
        seen = []

        class Capture(Responder):
            def on_prompt(self, code, prompt, task):
                seen.append(task)
                return "ok"

        bridge = DelegateBridge(Capture())
        bridge.attach(MemoryWriter())
        marker = object()
        await bridge.respond(event(b"[GNUPG:] GET_LINE keygen.name"), marker)
        assert seen == [marker]

    @pytest.mark.asyncio
    async def test_responder_exception_counts_as_decline(self):
        class Failing(Responder):
            def on_prompt(self, code, prompt, task):
                raise RuntimeError("boom")

        declined = []
        bridge = DelegateBridge(Failing(), on_declined=declined.append)
        writer = MemoryWriter()
        bridge.attach(writer)

        await bridge.respond(event(b"[GNUPG:] GET_LINE keygen.name"), None)

        assert len(declined) == 1
        assert bytes(writer.data) == b"\n"

    @pytest.mark.asyncio
    async def test_wrong_return_type_counts_as_decline(self):
        declined = []
        bridge = DelegateBridge(RecordingResponder(42), on_declined=declined.append)
        bridge.attach(MemoryWriter())
        await bridge.respond(event(b"[GNUPG:] GET_LINE keygen.name"), None)
        assert len(declined) == 1

    @pytest.mark.asyncio
    async def test_unencodable_answer_counts_as_decline(self):
        declined = []
        bridge = DelegateBridge(RecordingResponder("secret\ud800"), on_declined=declined.append)
        writer = MemoryWriter()
        bridge.attach(writer)

        written = await bridge.respond(event(b"[GNUPG:] GET_HIDDEN passphrase.enter"), None)

        assert written == b"\n"
        assert bytes(writer.data) == b"\n"
        assert len(declined) == 1

    @pytest.mark.asyncio
    async def test_broken_command_channel(self):
        bridge = DelegateBridge(RecordingResponder("y"))
        bridge.attach(MemoryWriter(broken=True))
        assert await bridge.respond(event(b"[GNUPG:] GET_BOOL x"), None) is None

    @pytest.mark.asyncio
    async def test_closed_command_channel(self):
        bridge = DelegateBridge(RecordingResponder("y"))
        writer = MemoryWriter()
        bridge.attach(writer)
        bridge.close()
        assert writer.closed
        assert await bridge.respond(event(b"[GNUPG:] GET_BOOL x"), None) is None


# =============================================================================
# No-response policy
# =============================================================================


class TestNoResponsePolicy:
    """Test what happens when no answer is given."""

    @pytest.mark.asyncio
    async def test_deny_writes_empty_line(self):
        declined = []
        bridge = DelegateBridge(None, NoResponsePolicy.DENY, on_declined=declined.append)
        writer = MemoryWriter()
        bridge.attach(writer)

        written = await bridge.respond(event(b"[GNUPG:] GET_BOOL keyedit.save.okay"), None)

        assert written == b"\n"
        assert bytes(writer.data) == b"\n"
        assert not writer.closed
        assert [e.code for e in declined] == [StatusCode.GET_BOOL]

    @pytest.mark.asyncio
    async def test_cancel_closes_channel(self):
        declined = []
        bridge = DelegateBridge(
            RecordingResponder(None), NoResponsePolicy.CANCEL, on_declined=declined.append
        )
        writer = MemoryWriter()
        bridge.attach(writer)

        written = await bridge.respond(event(b"[GNUPG:] GET_HIDDEN passphrase.enter"), None)

        assert written is None
        assert writer.closed
        assert bytes(writer.data) == b""
        assert len(declined) == 1


# =============================================================================
# Passphrase handling
# =============================================================================


class TestPassphrasePrompts:
    """NEED_PASSPHRASE answers double as the following GET_HIDDEN answer."""

    @pytest.mark.asyncio
    async def test_get_hidden_after_need_passphrase_skipped(self):
        responder = RecordingResponder("secret123")
        bridge = DelegateBridge(responder)
        writer = MemoryWriter()
        bridge.attach(writer)

        await bridge.respond(event(b"[GNUPG:] NEED_PASSPHRASE 1 2 3"), None)
        skipped = await bridge.respond(event(b"[GNUPG:] GET_HIDDEN passphrase.enter"), None)

        assert skipped is None
        assert bytes(writer.data) == b"secret123\n"
        assert len(responder.calls) == 1

    @pytest.mark.asyncio
    async def test_next_get_hidden_asks_again(self):
        """Only one GET_HIDDEN is covered; a retry asks again."""
        responder = RecordingResponder("wrong", "right")
        bridge = DelegateBridge(responder)
        writer = MemoryWriter()
        bridge.attach(writer)

        await bridge.respond(event(b"[GNUPG:] NEED_PASSPHRASE 1 2 3"), None)
        await bridge.respond(event(b"[GNUPG:] GET_HIDDEN passphrase.enter"), None)
        await bridge.respond(event(b"[GNUPG:] GET_HIDDEN passphrase.enter"), None)

        assert bytes(writer.data) == b"wrong\nright\n"
        assert len(responder.calls) == 2

    @pytest.mark.asyncio
    async def test_other_hidden_prompt_not_skipped(self):
        responder = RecordingResponder("secret", "1234")
        bridge = DelegateBridge(responder)
        bridge.attach(MemoryWriter())

        await bridge.respond(event(b"[GNUPG:] NEED_PASSPHRASE 1 2 3"), None)
        await bridge.respond(event(b"[GNUPG:] GET_HIDDEN passphrase.pin.ask"), None)

        assert [prompt for _, prompt in responder.calls] == ["1 2 3", "passphrase.pin.ask"]

    @pytest.mark.asyncio
    async def test_unrelated_prompt_clears_queued_passphrase(self, caplog):
        """gpg skipped the passphrase prompt; the next ones are asked normally."""
        responder = RecordingResponder("secret123", "n", "again")
        bridge = DelegateBridge(responder)
        writer = MemoryWriter()
        bridge.attach(writer)

        await bridge.respond(event(b"[GNUPG:] NEED_PASSPHRASE 1 2 3"), None)
        with caplog.at_level(logging.WARNING, logger="gpgtask.delegate"):
            await bridge.respond(event(b"[GNUPG:] GET_BOOL openfile.overwrite.okay"), None)
        await bridge.respond(event(b"[GNUPG:] GET_HIDDEN passphrase.enter"), None)

        assert [code for code, _ in responder.calls] == [
            StatusCode.NEED_PASSPHRASE,
            StatusCode.GET_BOOL,
            StatusCode.GET_HIDDEN,
        ]
        assert bytes(writer.data) == b"secret123\nn\nagain\n"
        assert "still unread" in caplog.text


# =============================================================================
# Notifications
# =============================================================================


class TestNotifications:
    """on_start / on_terminate relays."""

    def test_notifications_relayed(self):
        responder = RecordingResponder()
        bridge = DelegateBridge(responder)
        bridge.notify_start(None)
        bridge.notify_terminate(None)
        assert (responder.started, responder.terminated) == (1, 1)

    def test_notification_errors_swallowed(self):
        class Failing(Responder):
            def on_start(self, task):
                raise RuntimeError("boom")

        DelegateBridge(Failing()).notify_start(None)

    def test_no_responder(self):
        bridge = DelegateBridge(None)
        bridge.notify_start(None)
        bridge.notify_terminate(None)
