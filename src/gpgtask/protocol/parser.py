"""Incremental status channel parser.

Bytes arrive from the status pipe in arbitrary chunks. The parser keeps the
trailing partial line between feed() calls and turns every complete line into
a StatusEvent. It never blocks and never raises on bad input: lines that do
not look like ``MARKER KEYWORD [payload]`` come out as UNKNOWN events.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator

from .codes import PASSPHRASE_CODES, StatusCode, code_for_name
from .events import NeedPassphrase, StatusEvent, UserIDHint

__all__ = ["StatusParser"]

logger = logging.getLogger(__name__)


class StatusParser:
    """Line splitter and decoder for one status channel.

    One instance per task. After finish() the parser is closed and further
    feed() calls raise ValueError.

    Attributes:
        last_user_id_hint: Most recent USERID_HINT record
        last_need_passphrase: Most recent NEED_PASSPHRASE* record
    """

    def __init__(self) -> None:
        self._pending = bytearray()
        self._closed = False
        self.last_user_id_hint: UserIDHint | None = None
        self.last_need_passphrase: NeedPassphrase | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> bytes:
        """Bytes of the partial line not yet terminated."""
        return bytes(self._pending)

    def feed(self, data: bytes) -> Iterator[StatusEvent]:
        """Add bytes and return the events for every completed line.

        Lines are cut here; decoding (and hint bookkeeping) happens lazily
        as the returned iterator is consumed, in line order.

        Raises:
            ValueError: parser already finished
        """
        if self._closed:
            raise ValueError("status parser is closed")
        self._pending.extend(data)
        # only the new bytes can complete a line
        if b"\n" not in data:
            return iter(())
        cut = self._pending.rfind(b"\n")
        complete = bytes(self._pending[:cut])
        del self._pending[: cut + 1]
        return self._decode_lines(complete.split(b"\n"))

    def finish(self) -> Iterator[StatusEvent]:
        """Close the parser, emitting an event for an unterminated last line."""
        if self._closed:
            return iter(())
        self._closed = True
        rest = bytes(self._pending)
        self._pending.clear()
        if not rest:
            return iter(())
        logger.debug(f"Status stream ended without newline ({len(rest)} bytes)")
        return self._decode_lines([rest])

    def _decode_lines(self, lines: Iterable[bytes]) -> Iterator[StatusEvent]:
        for raw in lines:
            yield self._decode(raw)

    def _decode(self, raw: bytes) -> StatusEvent:
        if raw.endswith(b"\r"):
            raw = raw[:-1]
        line = raw.decode("utf-8", errors="replace")

        # <marker> <KEYWORD> [payload]; the marker itself is not checked
        parts = line.split(" ", 2)
        if len(parts) < 2 or not parts[1]:
            logger.debug(f"Malformed status line: {line!r}")
            return StatusEvent(code=StatusCode.UNKNOWN, line=line)

        keyword = parts[1]
        payload = parts[2] if len(parts) > 2 else ""
        code = code_for_name(keyword)
        if code is StatusCode.UNKNOWN:
            logger.debug(f"Unknown status keyword: {keyword}")

        detail: UserIDHint | NeedPassphrase | None = None
        if code is StatusCode.USERID_HINT:
            detail = self._parse_user_id_hint(payload)
        elif code in PASSPHRASE_CODES:
            detail = self._parse_need_passphrase(code, payload)

        return StatusEvent(
            code=code,
            keyword=keyword,
            payload=payload,
            line=line,
            detail=detail,
        )

    def _parse_user_id_hint(self, payload: str) -> UserIDHint | None:
        fields = payload.split(" ", 1)
        if not fields[0]:
            logger.debug("USERID_HINT without key id")
            return None
        hint = UserIDHint(
            key_id=fields[0],
            user_id=fields[1] if len(fields) > 1 else "",
        )
        self.last_user_id_hint = hint
        return hint

    def _parse_need_passphrase(self, code: StatusCode, payload: str) -> NeedPassphrase:
        fields = payload.split()
        fields += [None] * (4 - len(fields))
        main_key_id, key_id, key_type, key_length = fields[:4]

        user_id = None
        hint = self.last_user_id_hint
        if hint is not None and hint.key_id in (main_key_id, key_id):
            user_id = hint.user_id

        record = NeedPassphrase(
            main_key_id=main_key_id,
            key_id=key_id,
            key_type=key_type,
            key_length=key_length,
            user_id=user_id,
            symmetric=code is StatusCode.NEED_PASSPHRASE_SYM,
            pin=code is StatusCode.NEED_PASSPHRASE_PIN,
        )
        self.last_need_passphrase = record
        return record
