"""Pytest configuration and fixtures."""

from __future__ import annotations

import os
import stat
import sys
from pathlib import Path

import pytest

# Project root
PROJECT_ROOT = Path(__file__).parent.parent

# Add src to the Python path (development checkouts)
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

FIXTURES_DIR = Path(__file__).parent / "fixtures"
FAKE_GPG = FIXTURES_DIR / "fake_gpg.py"

from gpgtask.config import Config  # noqa: E402
from gpgtask.task import GPGTask  # noqa: E402


@pytest.fixture
def fake_gpg(tmp_path: Path) -> str:
    """Executable wrapper running fake_gpg.py with this interpreter.

    Tasks put protocol flags first, so the executable itself has to be the
    fake gpg rather than the Python interpreter.
    """
    wrapper = tmp_path / "gpg"
    wrapper.write_text(f'#!/bin/sh\nexec "{sys.executable}" "{FAKE_GPG}" "$@"\n')
    wrapper.chmod(wrapper.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(wrapper)


@pytest.fixture
def test_config() -> Config:
    """Config with short termination timeouts."""
    return Config(term_timeout=0.5, kill_timeout=0.5)


@pytest.fixture
def make_task(fake_gpg: str, test_config: Config):
    """Factory for tasks running the fake gpg."""

    def _make(arguments=None, **kwargs) -> GPGTask:
        kwargs.setdefault("executable", fake_gpg)
        kwargs.setdefault("config", test_config)
        return GPGTask(arguments, **kwargs)

    return _make


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove GPGTASK_* variables from the environment."""
    for key in list(os.environ):
        if key.startswith("GPGTASK_"):
            monkeypatch.delenv(key)
