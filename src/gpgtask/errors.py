"""gpgtask exception classes.

Only launch failures and misuse of the task API raise. Protocol oddities
and declined prompts are recorded on the task instead.
"""

from __future__ import annotations

__all__ = [
    "GPGTaskError",
    "LaunchError",
    "TaskStateError",
]


class GPGTaskError(Exception):
    """Base exception for gpgtask."""
    pass


class LaunchError(GPGTaskError):
    """The child process could not be created.

    Covers a missing or non-executable binary and descriptor setup failures.

    Attributes:
        executable: Path that was (or would have been) executed
    """

    def __init__(self, message: str, executable: str = "") -> None:
        self.executable = executable
        super().__init__(message)


class TaskStateError(GPGTaskError):
    """Operation not allowed in the task's current lifecycle state."""

    def __init__(self, operation: str, state: str) -> None:
        self.operation = operation
        self.state = state
        super().__init__(f"cannot {operation} while task is {state}")
