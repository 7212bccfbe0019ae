"""Utility functions for the Mission Control installer."""

import logging
import shlex
import shutil
import subprocess
from datetime import datetime
from typing import Any, Callable, Mapping, Optional, Sequence

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from tenacity import (
    Retrying,
    retry_if_result,
    stop_after_attempt,
    stop_after_delay,
    stop_never,
    wait_fixed,
)

console = Console()
logger = logging.getLogger(__name__)


class InstallError(Exception):
    """A step failed and the installation cannot continue."""


class StepSkipped(Exception):
    """A step was abandoned without failing the whole sequence."""


LEVELS = {
    "info": ("green", ""),
    "success": ("green", "✓ "),
    "warning": ("yellow", "WARNING: "),
    "error": ("red", "ERROR: "),
    "step": ("cyan", ""),
}


def log(msg: str, level: str = "info") -> None:
    """Print a timestamped, colored log message."""
    style, prefix = LEVELS.get(level, LEVELS["info"])
    timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    console.print(Text(f"[{timestamp}] {prefix}{msg}", style=style))


def log_header(msg: str) -> None:
    """Print a header panel."""
    console.print(Panel.fit(Text(msg, style="bold cyan"), border_style="cyan"))


def echo(msg: str = "") -> None:
    """Print plain text without markup processing."""
    console.print(Text(msg))


def print_table(title: str, columns: Sequence[str], rows: Sequence[Sequence[Any]]) -> None:
    """Print rows as a rich table, with a "(none)" row when empty."""
    table = Table(title=title)
    for column in columns:
        table.add_column(column)
    for row in rows:
        table.add_row(*(str(cell) if cell is not None else "" for cell in row))
    if not rows:
        table.add_row("(none)", *([""] * (len(columns) - 1)))
    console.print(table)


def format_cmd(cmd: Sequence[str]) -> str:
    """Render a command the way it would be typed in a shell."""
    return " ".join(shlex.quote(str(part)) for part in cmd)


def run(
    cmd: Sequence[str],
    check: bool = True,
    capture: bool = False,
    timeout: Optional[int] = None,
    cwd: Optional[Any] = None,
    env: Optional[Mapping[str, str]] = None,
    input: Optional[str] = None,
) -> subprocess.CompletedProcess:
    """Run an external command.

    Args:
        cmd: Command and arguments
        check: Raise exception on non-zero exit
        capture: Capture stdout/stderr
        timeout: Timeout in seconds
        cwd: Working directory
        env: Full environment for the child process
        input: Text passed on stdin

    Returns:
        CompletedProcess instance
    """
    logger.debug("Running: %s", format_cmd(cmd))
    return subprocess.run(
        [str(part) for part in cmd],
        check=check,
        capture_output=capture,
        text=True,
        timeout=timeout,
        cwd=cwd,
        env=env,
        input=input,
    )


def run_quiet(
    cmd: Sequence[str],
    timeout: Optional[int] = None,
    cwd: Optional[Any] = None,
) -> tuple[bool, str]:
    """Run command and return success status and output.

    Args:
        cmd: Command and arguments
        timeout: Timeout in seconds
        cwd: Working directory

    Returns:
        Tuple of (success, output). Output is stderr on failure when present.
    """
    logger.debug("Running: %s", format_cmd(cmd))
    try:
        result = subprocess.run(
            [str(part) for part in cmd],
            check=False,
            capture_output=True,
            text=True,
            timeout=timeout,
            cwd=cwd,
        )
    except subprocess.TimeoutExpired:
        return False, "Command timed out"
    except FileNotFoundError:
        return False, f"{cmd[0]} not found"

    if result.returncode == 0:
        return True, result.stdout
    return False, result.stderr or result.stdout


def run_streamed(cmd: Sequence[str], cwd: Optional[Any] = None) -> tuple[int, str]:
    """Run a long command, echoing its output while collecting it.

    Args:
        cmd: Command and arguments
        cwd: Working directory

    Returns:
        Tuple of (return code, combined stdout/stderr)
    """
    logger.debug("Running: %s", format_cmd(cmd))
    lines = []
    with subprocess.Popen(
        [str(part) for part in cmd],
        cwd=cwd,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True,
    ) as proc:
        for line in proc.stdout:
            console.out(line, end="", highlight=False)
            lines.append(line)
        returncode = proc.wait()
    return returncode, "".join(lines)


def poll(
    fn: Callable[[], Any],
    interval: float,
    timeout: Optional[float] = None,
    attempts: Optional[int] = None,
) -> Any:
    """Call fn until it returns something truthy.

    Stops after `timeout` seconds or `attempts` calls, whichever is given,
    and never stops when neither is. Returns the last result.
    """
    if timeout is not None:
        stop = stop_after_delay(timeout)
    elif attempts is not None:
        stop = stop_after_attempt(attempts)
    else:
        stop = stop_never

    retrying = Retrying(
        stop=stop,
        wait=wait_fixed(interval),
        retry=retry_if_result(lambda result: not result),
        retry_error_callback=lambda state: state.outcome.result(),
    )
    return retrying(fn)


def confirm(msg: str, default: bool = False) -> bool:
    """Ask for user confirmation.

    Args:
        msg: Message to display
        default: Default value if user just presses Enter

    Returns:
        True if confirmed, False otherwise
    """
    try:
        return click.confirm(msg, default=default)
    except click.Abort:
        console.print()
        return False


def ask(msg: str, default: Optional[str] = None) -> str:
    """Prompt for a value, returning `default` when the user presses Enter."""
    value = click.prompt(
        msg,
        default=default if default is not None else "",
        show_default=default is not None,
    )
    return str(value).strip()


def choose(msg: str, options: Sequence[str]) -> Optional[int]:
    """Show numbered options and return the chosen number.

    Returns:
        The 1-based choice, or None if the answer was not a valid option
    """
    for number, option in enumerate(options, start=1):
        echo(f"{number}. {option}")
    answer = ask(f"{msg} [1-{len(options)}]")
    try:
        choice = int(answer)
    except ValueError:
        return None
    if 1 <= choice <= len(options):
        return choice
    return None


def confirm_delete(msg: str) -> bool:
    """Require the user to type DELETE."""
    return ask(f"{msg} Type 'DELETE' to confirm") == "DELETE"


def command_exists(name: str) -> bool:
    """Check if an executable is on PATH."""
    return shutil.which(name) is not None
