"""Status event models.

One StatusEvent is produced per line of the status channel. A couple of
keywords carry payloads that get decoded into structured hint records.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from .codes import INTERACTIVE_CODES, StatusCode

__all__ = [
    "StatusEvent",
    "UserIDHint",
    "NeedPassphrase",
]


class UserIDHint(BaseModel):
    """Decoded ``USERID_HINT <long keyid> <user id>`` payload.

    Attributes:
        key_id: Long key id the next passphrase prompt refers to
        user_id: Primary user id of that key, percent-escaped by gpg
    """

    model_config = ConfigDict(frozen=True)

    key_id: str
    user_id: str = ""


class NeedPassphrase(BaseModel):
    """Decoded ``NEED_PASSPHRASE`` family payload.

    ``NEED_PASSPHRASE <main keyid> <keyid> <keytype> <keylength>`` for key
    passphrases, ``NEED_PASSPHRASE_SYM <cipher> <s2k mode> <s2k hash>`` for
    symmetric ones. Missing fields stay None.

    Attributes:
        main_key_id: Primary key id (or cipher algo for symmetric)
        key_id: Subkey id (or s2k mode for symmetric)
        key_type: Public key algorithm (or s2k hash for symmetric)
        key_length: Key length in bits
        user_id: User id from the matching USERID_HINT, if any
        symmetric: True for NEED_PASSPHRASE_SYM
        pin: True for NEED_PASSPHRASE_PIN
    """

    model_config = ConfigDict(frozen=True)

    main_key_id: str | None = None
    key_id: str | None = None
    key_type: str | None = None
    key_length: str | None = None
    user_id: str | None = None
    symmetric: bool = False
    pin: bool = False


class StatusEvent(BaseModel):
    """A single decoded status line.

    Attributes:
        code: Table code, UNKNOWN when the keyword is not recognised
        keyword: Keyword exactly as received (empty for malformed lines)
        payload: Rest of the line after the keyword
        line: Whole decoded line without its terminator
        detail: Structured payload for USERID_HINT / NEED_PASSPHRASE*
    """

    model_config = ConfigDict(frozen=True)

    code: StatusCode
    keyword: str = ""
    payload: str = ""
    line: str = ""
    detail: UserIDHint | NeedPassphrase | None = None

    @property
    def interactive(self) -> bool:
        """Whether gpg waits for an answer on the command channel."""
        return self.code in INTERACTIVE_CODES

    @property
    def args(self) -> list[str]:
        """Payload split on whitespace."""
        return self.payload.split()
