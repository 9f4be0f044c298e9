"""gpgtask command line.

Runs gpg once with the given arguments, feeding our stdin to it and copying
its stdout/stderr back. Passphrases and questions are asked on the terminal.

    python -m gpgtask [--batch] [--verbose] [--gpg PATH] -- --decrypt < msg.asc
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import getpass
import logging
import signal
import sys
from collections.abc import Sequence

import anyio

from . import __version__
from .config import Config, get_config
from .delegate import Responder, ResponseValue
from .errors import LaunchError
from .protocol import StatusCode
from .task import FAILURE_EXIT_CODE, GPGTask

__all__ = ["TerminalResponder", "configure_logging", "main"]

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

TTY_PATH = "/dev/tty"


def configure_logging(config: Config, verbose: bool = False) -> None:
    """Set up log handlers.

    LOG_DEBUG mode logs everything to the temp file named in config.log_file.
    Otherwise logs go to stderr at INFO (DEBUG with verbose). Third-party
    loggers stay at WARNING.
    """
    log_handlers: list[logging.Handler] = []

    if config.log_debug and config.log_file:
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        log_handlers.append(file_handler)
        log_level = logging.DEBUG
    else:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        log_handlers.append(stderr_handler)
        log_level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=logging.WARNING,
        handlers=log_handlers,
    )
    logging.getLogger("gpgtask").setLevel(log_level)


class TerminalResponder(Responder):
    """Answers prompts on the controlling terminal.

    Passphrases are read with getpass; GET_BOOL and GET_LINE questions are
    read from the terminal directly, since stdin carries the input data.
    Without a terminal every prompt is declined.
    """

    def __init__(self, tty_path: str = TTY_PATH) -> None:
        self.tty_path = tty_path

    def on_prompt(self, code: StatusCode, prompt: str, task: GPGTask) -> ResponseValue:
        if code in (
            StatusCode.NEED_PASSPHRASE,
            StatusCode.NEED_PASSPHRASE_SYM,
            StatusCode.NEED_PASSPHRASE_PIN,
        ):
            return self._read_secret(self._describe_passphrase(task))
        if code is StatusCode.GET_HIDDEN:
            return self._read_secret(f"{prompt}: ")
        if code is StatusCode.GET_BOOL:
            answer = self._read_line(f"{prompt} (y/N) ")
            if answer is None:
                return None
            return "y" if answer.strip().lower() in ("y", "yes") else "n"
        if code is StatusCode.GET_LINE:
            return self._read_line(f"{prompt}: ")
        return None

    @staticmethod
    def _describe_passphrase(task: GPGTask) -> str:
        need = task.last_need_passphrase
        if need is None:
            return "Passphrase: "
        if need.symmetric:
            return "Passphrase (symmetric): "
        who = need.user_id or need.key_id or "unknown key"
        return f"Passphrase for {who}: "

    def _read_secret(self, prompt: str) -> str | None:
        try:
            return getpass.getpass(prompt)
        except (EOFError, OSError) as e:
            logger.warning(f"Cannot read passphrase: {e}")
            return None

    def _read_line(self, prompt: str) -> str | None:
        try:
            with open(self.tty_path, "r+", encoding="utf-8") as tty:
                tty.write(prompt)
                tty.flush()
                line = tty.readline()
        except OSError as e:
            logger.warning(f"No terminal for prompt {prompt.strip()!r}: {e}")
            return None
        if not line:
            return None
        return line.rstrip("\r\n")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gpgtask",
        description="Run gpg with status and command channels.",
        epilog="Arguments after -- are passed to gpg unchanged.",
    )
    parser.add_argument("--batch", action="store_true", help="run gpg with --batch --no-tty")
    parser.add_argument("--verbose", action="store_true", help="trace channel traffic")
    parser.add_argument("--gpg", metavar="PATH", help="gpg executable to run")
    parser.add_argument(
        "--attribute-file",
        metavar="PATH",
        help="open the attribute channel and write its data to PATH",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    """Split our options from gpg's.

    Everything after the first ``--`` goes to gpg. Without ``--``, options
    we do not know are passed through.
    """
    parser = _build_parser()
    argv = list(argv)
    if "--" in argv:
        index = argv.index("--")
        args = parser.parse_args(argv[:index])
        args.gpg_args = argv[index + 1:]
    else:
        args, gpg_args = parser.parse_known_args(argv)
        args.gpg_args = gpg_args
    return args


async def run_task(task: GPGTask) -> int:
    """Run task, cancelling it on SIGINT."""
    loop = asyncio.get_running_loop()
    installed = False
    if sys.platform != "win32":
        loop.add_signal_handler(signal.SIGINT, task.cancel)
        installed = True
        logger.debug("SIGINT handler installed")
    try:
        return await task.run()
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)


def main(argv: Sequence[str] | None = None) -> None:
    """Main entry point."""
    args = parse_args(sys.argv[1:] if argv is None else argv)
    config = get_config()
    if args.gpg:
        config = dataclasses.replace(config, gpg_path=args.gpg)
    configure_logging(config, verbose=args.verbose)

    task = GPGTask(
        args.gpg_args,
        batch_mode=args.batch,
        responder=TerminalResponder(),
        config=config,
    )
    task.configure(
        verbose=args.verbose or config.verbose,
        wants_attribute_channel=args.attribute_file is not None,
    )
    if not sys.stdin.isatty():
        task.add_input_data(sys.stdin.buffer.read())

    try:
        exit_code = anyio.run(run_task, task, backend="asyncio")
    except LaunchError as e:
        logger.error(f"{e}")
        sys.exit(FAILURE_EXIT_CODE)

    sys.stdout.buffer.write(task.out_data)
    sys.stdout.flush()
    sys.stderr.buffer.write(task.err_data)
    sys.stderr.flush()
    if args.attribute_file is not None:
        with open(args.attribute_file, "wb") as f:
            f.write(task.attribute_data)

    logger.debug(
        f"gpg finished: state={task.state.value} exit_code={exit_code} "
        f"error_code={task.error_code} status_lines={len(task.events)}"
    )
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
