"""gpgtask - run gpg with status, command and attribute channels.

Environment variables: see gpgtask.config

Usage:
    task = GPGTask(["--decrypt"], responder=MyResponder())
    task.add_input_data(ciphertext)
    exit_code = task.start()

    python -m gpgtask -- --decrypt < message.asc
"""

__version__ = "0.1.0"

from .config import Config, NoResponsePolicy, get_config
from .delegate import DelegateBridge, Responder, frame_response
from .errors import GPGTaskError, LaunchError, TaskStateError
from .locate import default_resolver, find_executable
from .protocol import (
    NeedPassphrase,
    StatusCode,
    StatusEvent,
    StatusParser,
    UserIDHint,
    code_for_name,
    name_for_code,
)
from .result import ErrorCode, SessionResult
from .task import GPGTask, TaskState

__all__ = [
    "__version__",
    "Config",
    "DelegateBridge",
    "ErrorCode",
    "GPGTask",
    "GPGTaskError",
    "LaunchError",
    "NeedPassphrase",
    "NoResponsePolicy",
    "Responder",
    "SessionResult",
    "StatusCode",
    "StatusEvent",
    "StatusParser",
    "TaskState",
    "TaskStateError",
    "UserIDHint",
    "code_for_name",
    "default_resolver",
    "find_executable",
    "frame_response",
    "get_config",
    "name_for_code",
]
