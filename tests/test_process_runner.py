"""AsyncioProcessRunner unit tests.

Test coverage:
- Spawning with bound descriptors (stdio and pass_fds)
- Launch failures
- Process isolation (new session/process group)
- Termination (SIGTERM, SIGKILL escalation)
- Environment handling
"""

from __future__ import annotations

import asyncio
import os
import sys
import time

import pytest

from gpgtask.errors import LaunchError
from gpgtask.runtime.channels import ChannelSet
from gpgtask.runtime.process_runner import AsyncioProcessRunner, ProcessHandle

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="POSIX-only runner")


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def runner() -> AsyncioProcessRunner:
    """Create runner with short timeouts for testing."""
    return AsyncioProcessRunner(term_timeout=0.5, kill_timeout=0.3)


@pytest.fixture
def channels():
    channel_set = ChannelSet()
    yield channel_set
    channel_set.close()


def read_all(fd: int) -> bytes:
    chunks = []
    while True:
        chunk = os.read(fd, 65536)
        if not chunk:
            return b"".join(chunks)
        chunks.append(chunk)


async def spawn_sh(runner, channels, script: str, environment=None):
    handle = await runner.spawn("/bin/sh", ["-c", script], environment, channels.bindings())
    channels.close_child_ends()
    channels.stdin.close()
    return handle


# =============================================================================
# Spawning
# =============================================================================


class TestSpawn:
    """Test spawning with bound descriptors."""

    @pytest.mark.asyncio
    async def test_stdout_and_exit_status(self, runner, channels):
        handle = await spawn_sh(runner, channels, "echo hello; exit 3")
        assert isinstance(handle, ProcessHandle)
        assert await runner.wait(handle) == 3
        assert read_all(channels.stdout.parent_fd) == b"hello\n"

    @pytest.mark.asyncio
    async def test_stderr(self, runner, channels):
        handle = await spawn_sh(runner, channels, "echo oops >&2")
        assert await runner.wait(handle) == 0
        assert read_all(channels.stderr.parent_fd) == b"oops\n"

    @pytest.mark.asyncio
    async def test_status_fd_inherited(self, runner, channels):
        """Extra channels keep their descriptor numbers in the child."""
        handle = await spawn_sh(
            runner, channels, f"echo '[GNUPG:] NEWSIG' >&{channels.status_fd}"
        )
        assert await runner.wait(handle) == 0
        assert read_all(channels.status.parent_fd) == b"[GNUPG:] NEWSIG\n"

    @pytest.mark.asyncio
    async def test_command_fd_inherited(self, runner, channels):
        handle = await runner.spawn(
            "/bin/sh",
            ["-c", f"read answer <&{channels.command_fd}; echo got=$answer"],
            None,
            channels.bindings(),
        )
        channels.close_child_ends()
        channels.stdin.close()
        os.write(channels.command.parent_fd, b"yes\n")
        assert await runner.wait(handle) == 0
        assert read_all(channels.stdout.parent_fd) == b"got=yes\n"

    @pytest.mark.asyncio
    async def test_stdin(self, runner, channels):
        handle = await runner.spawn("/bin/cat", [], None, channels.bindings())
        channels.close_child_ends()
        os.write(channels.stdin.parent_fd, b"piped input")
        channels.stdin.close()
        assert await runner.wait(handle) == 0
        assert read_all(channels.stdout.parent_fd) == b"piped input"


# =============================================================================
# Launch failures
# =============================================================================


class TestLaunchErrors:
    """Test launch failure mapping."""

    @pytest.mark.asyncio
    async def test_missing_executable(self, runner, channels):
        with pytest.raises(LaunchError) as exc_info:
            await runner.spawn("/nonexistent/gpg", [], None, channels.bindings())
        assert exc_info.value.executable == "/nonexistent/gpg"

    @pytest.mark.asyncio
    async def test_not_executable(self, runner, channels, tmp_path):
        script = tmp_path / "gpg"
        script.write_text("#!/bin/sh\n")
        script.chmod(0o644)
        with pytest.raises(LaunchError):
            await runner.spawn(str(script), [], None, channels.bindings())


# =============================================================================
# Isolation
# =============================================================================


class TestProcessIsolation:
    """Test process isolation (new session/process group)."""

    @pytest.mark.asyncio
    async def test_own_process_group(self, runner, channels):
        """Process group ID equals the pid with start_new_session."""
        handle = await spawn_sh(runner, channels, "sleep 5")
        try:
            assert os.getpgid(handle.pid) == handle.pid
            assert os.getsid(handle.pid) != os.getsid(os.getpid())
        finally:
            await runner.terminate(handle)


# =============================================================================
# Termination
# =============================================================================


class TestTermination:
    """Test process termination."""

    @pytest.mark.asyncio
    async def test_sigterm(self, runner, channels):
        handle = await spawn_sh(runner, channels, "exec sleep 100")
        await asyncio.sleep(0.1)
        start = time.monotonic()
        await runner.terminate(handle)
        assert handle.returncode == -15
        assert time.monotonic() - start < 0.5

    @pytest.mark.asyncio
    async def test_sigkill_escalation(self, runner, channels):
        """A child ignoring SIGTERM is killed after term_timeout."""
        handle = await spawn_sh(
            runner, channels, "trap '' TERM; echo ready; while :; do sleep 0.05; done"
        )
        # wait until the trap is installed
        assert os.read(channels.stdout.parent_fd, 6) == b"ready\n"
        await runner.terminate(handle)
        assert handle.returncode == -9

    @pytest.mark.asyncio
    async def test_terminate_after_exit(self, runner, channels):
        handle = await spawn_sh(runner, channels, "exit 0")
        await runner.wait(handle)
        await runner.terminate(handle)
        assert handle.returncode == 0


# =============================================================================
# Environment
# =============================================================================


class TestEnvironment:
    """Test environment variable handling."""

    @pytest.mark.asyncio
    async def test_custom_environment(self, runner, channels):
        handle = await spawn_sh(
            runner, channels, 'echo "$TEST_VAR"', {"TEST_VAR": "test_value_123"}
        )
        await runner.wait(handle)
        assert read_all(channels.stdout.parent_fd) == b"test_value_123\n"

    @pytest.mark.asyncio
    async def test_inherit_environment(self, runner, channels, monkeypatch):
        monkeypatch.setenv("GPGTASK_INHERITED", "yes")
        handle = await spawn_sh(runner, channels, 'echo "$GPGTASK_INHERITED"')
        await runner.wait(handle)
        assert read_all(channels.stdout.parent_fd) == b"yes\n"

    def test_subprocess_kwargs(self, runner, channels):
        kwargs = runner._build_subprocess_kwargs({"A": "1"}, channels.bindings())
        assert kwargs["start_new_session"] is True
        assert kwargs["pass_fds"] == (channels.status_fd, channels.command_fd)
        assert kwargs["env"] == {"A": "1"}
