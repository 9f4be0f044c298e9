"""gpg status protocol: keyword table, event models and the line parser."""

from __future__ import annotations

from .codes import (
    INTERACTIVE_CODES,
    PASSPHRASE_CODES,
    STATUS_MARKER,
    StatusCode,
    code_for_name,
    is_interactive,
    name_for_code,
)
from .events import NeedPassphrase, StatusEvent, UserIDHint
from .parser import StatusParser

__all__ = [
    "INTERACTIVE_CODES",
    "PASSPHRASE_CODES",
    "STATUS_MARKER",
    "StatusCode",
    "code_for_name",
    "is_interactive",
    "name_for_code",
    "NeedPassphrase",
    "StatusEvent",
    "UserIDHint",
    "StatusParser",
]
