"""Post-run snapshot of a task."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum

from .protocol import StatusCode, StatusEvent

__all__ = [
    "ErrorCode",
    "SessionResult",
    "STATUS_ERROR_CODES",
    "decode_gpg_error",
]


class ErrorCode(IntEnum):
    """Error codes recorded on a task (libgpg-error numbering)."""

    NONE = 0
    GENERAL = 1
    BAD_SIGNATURE = 8
    NO_PUBKEY = 9
    BAD_PASSPHRASE = 11
    NO_SECKEY = 17
    NO_DATA = 58
    CANCELED = 99
    DECRYPT_FAILED = 152


# Status keywords that imply an error code when nothing more specific arrived
STATUS_ERROR_CODES: dict[StatusCode, ErrorCode] = {
    StatusCode.BAD_PASSPHRASE: ErrorCode.BAD_PASSPHRASE,
    StatusCode.MISSING_PASSPHRASE: ErrorCode.BAD_PASSPHRASE,
    StatusCode.NO_SECKEY: ErrorCode.NO_SECKEY,
    StatusCode.NO_PUBKEY: ErrorCode.NO_PUBKEY,
    StatusCode.BADSIG: ErrorCode.BAD_SIGNATURE,
    StatusCode.NODATA: ErrorCode.NO_DATA,
    StatusCode.DECRYPTION_FAILED: ErrorCode.DECRYPT_FAILED,
}


def decode_gpg_error(value: str) -> int | None:
    """Extract the error code from a gpg-error value.

    ERROR and FAILURE lines carry the full gpg_error_t (source << 24 | code).
    Only the low 16 bits are the code.
    """
    try:
        return int(value) & 0xFFFF
    except ValueError:
        return None


def _decode(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


@dataclass(frozen=True)
class SessionResult:
    """Immutable record of a finished (or cancelled) run.

    Attributes:
        out_data: Captured stdout
        err_data: Captured stderr
        status_data: Raw status channel bytes
        attribute_data: Captured attribute channel bytes
        exit_code: Exit code after derivation (see GPGTask)
        error_code: Error code, 0 if none
        cancelled: Whether the run was cancelled
        events: Status events in arrival order
        arguments: Full argument vector passed to gpg
    """

    out_data: bytes = b""
    err_data: bytes = b""
    status_data: bytes = b""
    attribute_data: bytes = b""
    exit_code: int = 0
    error_code: int = 0
    cancelled: bool = False
    events: tuple[StatusEvent, ...] = field(default_factory=tuple)
    arguments: tuple[str, ...] = field(default_factory=tuple)

    @property
    def out_text(self) -> str:
        return _decode(self.out_data)

    @property
    def err_text(self) -> str:
        return _decode(self.err_data)

    @property
    def status_text(self) -> str:
        return _decode(self.status_data)

    @property
    def attribute_text(self) -> str:
        return _decode(self.attribute_data)

    @property
    def success(self) -> bool:
        return not self.cancelled and self.exit_code == 0 and self.error_code == 0
