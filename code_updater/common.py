"""
Common utilities shared across code_updater modules.

Holds the process runner every module uses to invoke external commands
(editor CLIs, npm) and the friendly error descriptions used in reports.
"""

from __future__ import annotations

import errno
import os
import re
import subprocess
import sys
from dataclasses import dataclass
from typing import Any, Sequence

ANSI_ESCAPE_RE = re.compile(r'\x1b\[[0-9;]*m|\033\[[0-9;]*m')


@dataclass(frozen=True)
class CommandResult:
    """
    Outcome of a single external command invocation.

    Attributes:
        args: Command that was executed
        returncode: Process exit code (-1 when the process never completed)
        stdout: Captured standard output (ANSI escapes stripped)
        stderr: Captured standard error
        timed_out: Whether the timeout fired
        error_message: Human-readable failure reason, if any
    """
    args: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    error_message: str | None = None

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out


def is_ci_environment() -> bool:
    """
    Check if running in a CI/CD environment.

    Returns:
        True if CI indicators are present, False otherwise.
    """
    ci_indicators = [
        "CI",
        "CONTINUOUS_INTEGRATION",
        "GITHUB_ACTIONS",
        "GITLAB_CI",
        "CIRCLECI",
        "TRAVIS",
        "JENKINS_HOME",
        "BUILDKITE",
        "TF_BUILD",  # Azure Pipelines
    ]
    return any(os.environ.get(var) for var in ci_indicators)


def command_env() -> dict[str, str]:
    """Environment for child processes: no color, and a DISPLAY for editor CLIs."""
    env = {**os.environ, "TERM": "dumb"}
    env.setdefault("DISPLAY", ":0")
    return env


def run_command(args: Sequence[str], timeout: float) -> CommandResult:
    """
    Run an external command with a timeout and capture its output.

    The timeout is the only cancellation mechanism; a timed-out call is
    reported as a failed result rather than raised.

    Args:
        args: Command and arguments
        timeout: Timeout in seconds

    Returns:
        CommandResult describing the outcome
    """
    argv = tuple(str(a) for a in args)
    try:
        proc = subprocess.run(
            list(argv),
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            stdin=subprocess.DEVNULL,  # Isolate stdin
            text=True,
            timeout=timeout,
            check=False,
            env=command_env(),
        )
    except subprocess.TimeoutExpired:
        return CommandResult(
            args=argv,
            returncode=-1,
            timed_out=True,
            error_message=f"Command timed out after {timeout}s",
        )
    except FileNotFoundError:
        return CommandResult(
            args=argv,
            returncode=-1,
            error_message=f"Command not found: {argv[0]}",
        )
    except OSError as e:
        return CommandResult(
            args=argv,
            returncode=-1,
            error_message=f"Could not execute {argv[0]}: {e}",
        )

    stdout = ANSI_ESCAPE_RE.sub("", proc.stdout or "")
    error_msg = None
    if proc.returncode != 0:
        error_msg = f"Command failed with exit code {proc.returncode}"
        if proc.stderr:
            error_msg += f": {proc.stderr.strip()[:200]}"

    return CommandResult(
        args=argv,
        returncode=proc.returncode,
        stdout=stdout,
        stderr=proc.stderr or "",
        error_message=error_msg,
    )


# errno name -> (message, suggestion)
COMMON_ERRORS: dict[str, tuple[str, str]] = {
    "ENOENT": ("File or directory not found", "Check if the path exists and you have proper permissions"),
    "EACCES": ("Permission denied", "Check file ownership or run with elevated permissions"),
    "EBUSY": ("Resource busy or locked", "Close applications that may be using this file (a sync client may be in progress)"),
    "EPERM": ("Operation not permitted", "Check system permissions"),
    "ETIMEDOUT": ("Connection timed out", "Check your internet connection and try again"),
    "ECONNREFUSED": ("Connection refused", "The server may be down, try again later"),
    "ECONNRESET": ("Connection reset", "Network instability, try again"),
    "ENOSPC": ("No space left on device", "Free disk space and re-run the update"),
}

NETWORK_ERRNOS = {"ETIMEDOUT", "ECONNREFUSED", "ECONNRESET", "ENETUNREACH", "EHOSTUNREACH"}


def describe_error(exc: BaseException) -> dict[str, Any]:
    """
    Build an operator-facing description of an exception.

    Args:
        exc: Exception to describe

    Returns:
        Dict with code, message, suggestion and the original text
    """
    code = None
    err_no = getattr(exc, "errno", None)
    if isinstance(err_no, int):
        code = errno.errorcode.get(err_no)

    if code in COMMON_ERRORS:
        message, suggestion = COMMON_ERRORS[code]
        return {"code": code, "message": message, "suggestion": suggestion, "original": str(exc)}

    if code in NETWORK_ERRNOS or "network" in str(exc).lower() or isinstance(exc, TimeoutError):
        return {
            "code": "NETWORK",
            "message": "Network error",
            "suggestion": "Check your internet connection and try again",
            "original": str(exc),
        }

    return {
        "code": code or "UNKNOWN",
        "message": str(exc) or "An unexpected error occurred",
        "suggestion": "Try again or re-run with --verbose for details",
        "original": str(exc),
    }


def format_error(exc: BaseException, verbose: bool = False) -> str:
    """Format an exception as a one-line message with a suggestion."""
    friendly = describe_error(exc)
    message = f"{friendly['message']} ({friendly['suggestion']})"
    if verbose and friendly["original"] and friendly["original"] != friendly["message"]:
        message += f" [{friendly['original']}]"
    return message


def vlog(msg: str, verbose: bool = False) -> None:
    """
    Log verbose message using structured logging.

    Args:
        msg: Message to log
        verbose: Whether verbose mode is enabled
    """
    if verbose or os.environ.get("CODE_UPDATER_DEBUG", "0") == "1":
        try:
            from .logging_config import get_logger
            logger = get_logger()
            logger.info(msg)
        except Exception:
            # Fallback to stderr if logging fails
            print(f"[code_updater] {msg}", file=sys.stderr)
