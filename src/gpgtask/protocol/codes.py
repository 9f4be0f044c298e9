"""Status keyword table for the gpg status protocol.

Every line gpg writes to --status-fd looks like ``[GNUPG:] KEYWORD args``.
This module maps keywords to stable numeric codes and marks the ones that
need an answer on the command channel.
"""

from __future__ import annotations

from enum import IntEnum
from typing import Final

__all__ = [
    "StatusCode",
    "INTERACTIVE_CODES",
    "PASSPHRASE_CODES",
    "STATUS_MARKER",
    "code_for_name",
    "name_for_code",
    "is_interactive",
]

STATUS_MARKER: Final[str] = "[GNUPG:]"


class StatusCode(IntEnum):
    """Known status keywords.

    UNKNOWN is used for keywords missing from this table and for lines
    that do not have the ``MARKER KEYWORD`` shape.
    """

    UNKNOWN = 0

    # Signatures
    NEWSIG = 1
    GOODSIG = 2
    EXPSIG = 3
    EXPKEYSIG = 4
    REVKEYSIG = 5
    BADSIG = 6
    ERRSIG = 7
    VALIDSIG = 8
    SIG_ID = 9
    SIG_CREATED = 10
    SIGEXPIRED = 11
    KEYEXPIRED = 12
    KEYREVOKED = 13
    NOTATION_NAME = 14
    NOTATION_FLAGS = 15
    NOTATION_DATA = 16
    POLICY_URL = 17
    ALREADY_SIGNED = 18

    # Trust
    TRUST_UNDEFINED = 20
    TRUST_NEVER = 21
    TRUST_MARGINAL = 22
    TRUST_FULLY = 23
    TRUST_ULTIMATE = 24
    PKA_TRUST_GOOD = 25
    PKA_TRUST_BAD = 26
    KEY_CONSIDERED = 27

    # Encryption / decryption
    ENC_TO = 30
    BEGIN_DECRYPTION = 31
    END_DECRYPTION = 32
    DECRYPTION_INFO = 33
    DECRYPTION_FAILED = 34
    DECRYPTION_OKAY = 35
    DECRYPTION_KEY = 36
    BEGIN_ENCRYPTION = 37
    END_ENCRYPTION = 38
    BEGIN_SIGNING = 39
    SESSION_KEY = 40
    NO_PUBKEY = 41
    NO_SECKEY = 42
    INV_RECP = 43
    INV_SGNR = 44
    NO_RECP = 45
    NO_SGNR = 46
    GOODMDC = 47
    BADMDC = 48
    PLAINTEXT = 49
    PLAINTEXT_LENGTH = 50
    BADARMOR = 51

    # Interactive prompts
    GET_BOOL = 60
    GET_LINE = 61
    GET_HIDDEN = 62
    GOT_IT = 63

    # Passphrases
    USERID_HINT = 70
    NEED_PASSPHRASE = 71
    NEED_PASSPHRASE_SYM = 72
    NEED_PASSPHRASE_PIN = 73
    MISSING_PASSPHRASE = 74
    BAD_PASSPHRASE = 75
    GOOD_PASSPHRASE = 76
    PINENTRY_LAUNCHED = 77

    # Keys
    KEY_CREATED = 80
    KEY_NOT_CREATED = 81
    IMPORT_CHECK = 82
    IMPORTED = 83
    IMPORT_OK = 84
    IMPORT_PROBLEM = 85
    IMPORT_RES = 86
    EXPORTED = 87
    EXPORT_RES = 88
    DELETE_PROBLEM = 89
    BACKUP_KEY_CREATED = 90
    KEYRING_CHANGED = 91

    # Smartcards
    CARDCTRL = 100
    SC_OP_FAILURE = 101
    SC_OP_SUCCESS = 102

    # Files and progress
    FILE_START = 110
    FILE_DONE = 111
    FILE_ERROR = 112
    PROGRESS = 113
    ATTRIBUTE = 114
    NODATA = 115
    UNEXPECTED = 116

    # Results
    ERROR = 120
    WARNING = 121
    FAILURE = 122
    SUCCESS = 123
    NOTE = 124


# Codes whose events need an answer on the command channel.
INTERACTIVE_CODES: Final[frozenset[StatusCode]] = frozenset({
    StatusCode.GET_BOOL,
    StatusCode.GET_LINE,
    StatusCode.GET_HIDDEN,
    StatusCode.NEED_PASSPHRASE,
    StatusCode.NEED_PASSPHRASE_SYM,
    StatusCode.NEED_PASSPHRASE_PIN,
})

PASSPHRASE_CODES: Final[frozenset[StatusCode]] = frozenset({
    StatusCode.NEED_PASSPHRASE,
    StatusCode.NEED_PASSPHRASE_SYM,
    StatusCode.NEED_PASSPHRASE_PIN,
})


def code_for_name(name: str) -> StatusCode:
    """Look up a keyword, returning UNKNOWN for names not in the table.

    Keywords are case sensitive on the wire, so is the lookup.
    """
    return StatusCode.__members__.get(name.strip(), StatusCode.UNKNOWN)


def name_for_code(code: int) -> str:
    """Return the keyword for a numeric code.

    Raises:
        ValueError: code is not in the table
    """
    return StatusCode(code).name


def is_interactive(code: int) -> bool:
    return code in INTERACTIVE_CODES
