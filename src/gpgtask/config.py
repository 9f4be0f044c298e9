"""gpgtask environment configuration.

Environment variables:
    GPGTASK_GPG_PATH: gpg executable to run
        - unset = search PATH and the usual install locations

    GPGTASK_VERBOSE: trace channel traffic at debug level
        - true/1/yes/on = enabled
        - false/0/no/off = disabled (default)

    GPGTASK_NO_RESPONSE_POLICY: what to do when a prompt gets no answer
        - deny = write an empty line and keep going (default)
        - cancel = close the command channel so gpg aborts the prompt

    GPGTASK_PINENTRY_LOOPBACK: pass --pinentry-mode loopback
        - true (default), so passphrases go through the command channel

    GPGTASK_TERM_TIMEOUT / GPGTASK_KILL_TIMEOUT: seconds to wait after
        SIGTERM / SIGKILL when cancelling (defaults 2.0 / 1.0, range 0.1-30)

    GPGTASK_READ_SIZE: bytes per read on each channel (default 65536)

    GPGTASK_LOG_DEBUG: log to a temp file at DEBUG level
        - false (default) = log to stderr at INFO level
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path

__all__ = ["Config", "NoResponsePolicy", "load_config", "get_config", "reload_config"]

DEFAULT_READ_SIZE = 65536


class NoResponsePolicy(Enum):
    """Policy applied when the responder declines an interactive prompt.

    - DENY: answer with an empty line (a "no" for GET_BOOL)
    - CANCEL: close the command channel, gpg sees EOF and cancels
    """

    DENY = "deny"
    CANCEL = "cancel"

    @classmethod
    def from_string(cls, value: str) -> "NoResponsePolicy":
        """Parse a policy name, falling back to DENY on unknown values."""
        value = value.lower().strip()
        for policy in cls:
            if policy.value == value:
                return policy
        return cls.DENY


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """Parse a boolean environment variable."""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_timeout(value: str | None, default: float) -> float:
    """Parse a timeout in seconds, clamped to 0.1-30."""
    if not value:
        return default
    try:
        timeout = float(value)
        return max(0.1, min(timeout, 30.0))
    except ValueError:
        return default


def _parse_read_size(value: str | None) -> int:
    if not value:
        return DEFAULT_READ_SIZE
    try:
        size = int(value)
    except ValueError:
        return DEFAULT_READ_SIZE
    return size if size > 0 else DEFAULT_READ_SIZE


def _generate_log_file_path() -> str:
    """Build a timestamped log file path under the temp directory."""
    log_dir = Path(tempfile.gettempdir()) / "gpgtask"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"gpgtask_debug_{timestamp}.log"

    return str(log_file.resolve())


@dataclass
class Config:
    """gpgtask settings.

    Attributes:
        gpg_path: Explicit gpg executable, None to search for one
        verbose: Default verbose flag for new tasks
        no_response_policy: Policy for declined prompts
        pinentry_loopback: Route passphrase prompts through the command channel
        term_timeout: Seconds to wait after SIGTERM
        kill_timeout: Seconds to wait after SIGKILL
        read_size: Bytes per read call on each channel
        log_debug: Log to a temp file at DEBUG level
        log_file: Log file path (set when log_debug is True)
    """

    gpg_path: str | None = None
    verbose: bool = False
    no_response_policy: NoResponsePolicy = NoResponsePolicy.DENY
    pinentry_loopback: bool = True
    term_timeout: float = 2.0
    kill_timeout: float = 1.0
    read_size: int = DEFAULT_READ_SIZE
    log_debug: bool = False
    log_file: str | None = None

    def __repr__(self) -> str:
        return (
            f"Config(gpg_path={self.gpg_path or 'auto'}, "
            f"verbose={self.verbose}, "
            f"no_response_policy={self.no_response_policy.value}, "
            f"pinentry_loopback={self.pinentry_loopback}, "
            f"term_timeout={self.term_timeout}, "
            f"kill_timeout={self.kill_timeout}, "
            f"read_size={self.read_size}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file})"
        )


def load_config() -> Config:
    """Load configuration from the environment."""
    log_debug = _parse_bool(os.environ.get("GPGTASK_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    return Config(
        gpg_path=os.environ.get("GPGTASK_GPG_PATH") or None,
        verbose=_parse_bool(os.environ.get("GPGTASK_VERBOSE"), default=False),
        no_response_policy=NoResponsePolicy.from_string(
            os.environ.get("GPGTASK_NO_RESPONSE_POLICY", "")
        ),
        pinentry_loopback=_parse_bool(
            os.environ.get("GPGTASK_PINENTRY_LOOPBACK"), default=True
        ),
        term_timeout=_parse_timeout(os.environ.get("GPGTASK_TERM_TIMEOUT"), 2.0),
        kill_timeout=_parse_timeout(os.environ.get("GPGTASK_KILL_TIMEOUT"), 1.0),
        read_size=_parse_read_size(os.environ.get("GPGTASK_READ_SIZE")),
        log_debug=log_debug,
        log_file=log_file,
    )


# Global config, loaded lazily
_config: Config | None = None


def get_config() -> Config:
    """Return the global configuration."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """Reload the global configuration (for tests)."""
    global _config
    _config = load_config()
    return _config
