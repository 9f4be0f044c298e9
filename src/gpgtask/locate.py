"""Locating the gpg executable.

GPGTask takes a resolver (any callable returning a path) so callers and
tests can decide which binary runs. default_resolver() honours the
configured path and otherwise searches PATH and the usual install
locations.
"""

from __future__ import annotations

import logging
import os
import shutil
from collections.abc import Callable, Iterable, Sequence

from .config import Config, get_config
from .errors import LaunchError

__all__ = [
    "ExecutableResolver",
    "GPG_NAMES",
    "SEARCH_PATHS",
    "default_resolver",
    "find_executable",
]

logger = logging.getLogger(__name__)

ExecutableResolver = Callable[[], str]

GPG_NAMES: tuple[str, ...] = ("gpg2", "gpg")

# Checked after PATH; GUI-launched processes often get a minimal PATH
SEARCH_PATHS: tuple[str, ...] = (
    "/usr/local/gnupg-2.4/bin",
    "/usr/local/gnupg-2.2/bin",
    "/usr/local/MacGPG2/bin",
    "/opt/homebrew/bin",
    "/usr/local/bin",
    "/opt/local/bin",
    "/usr/bin",
    "/bin",
)


def find_executable(name: str, paths: Iterable[str] | None = None) -> str | None:
    """Find an executable by name.

    Args:
        name: Executable name
        paths: Directories to search; None means PATH, then SEARCH_PATHS

    Returns:
        Absolute path, or None if not found
    """
    if paths is None:
        found = shutil.which(name)
        if found:
            return os.path.abspath(found)
        paths = SEARCH_PATHS

    for directory in paths:
        candidate = os.path.join(os.path.expanduser(directory), name)
        if os.path.isfile(candidate) and os.access(candidate, os.X_OK):
            return candidate
    return None


def default_resolver(
    config: Config | None = None,
    names: Sequence[str] = GPG_NAMES,
) -> ExecutableResolver:
    """Build the default resolver.

    Args:
        config: Configuration (global config if None)
        names: Executable names to try, in order

    Returns:
        Callable returning the gpg path, raising LaunchError if none is found
    """
    config = config or get_config()

    def resolve() -> str:
        if config.gpg_path:
            if os.path.isfile(config.gpg_path) and os.access(config.gpg_path, os.X_OK):
                return config.gpg_path
            raise LaunchError(
                f"configured gpg is not executable: {config.gpg_path}",
                config.gpg_path,
            )
        for name in names:
            path = find_executable(name)
            if path:
                logger.debug(f"Using gpg at {path}")
                return path
        raise LaunchError(f"none of {', '.join(names)} found")

    return resolve
