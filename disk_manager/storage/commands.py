"""External command execution shared by every storage component."""

from __future__ import annotations

import contextlib
import shutil
import subprocess
import time
from typing import TYPE_CHECKING, Callable, Optional, Sequence

from disk_manager.logging import LoggerFactory

if TYPE_CHECKING:
    from loguru import Logger


log = LoggerFactory.for_system()


def command_exists(name: str) -> bool:
    return shutil.which(name) is not None


def run_command(
    command: Sequence[str],
    check: bool = True,
    log_output: bool = True,
    log_command: bool = True,
    logger: Optional[Logger] = None,
) -> subprocess.CompletedProcess:
    """Run a command to completion, capturing text output.

    Raises:
        subprocess.CalledProcessError: If check is True and the command fails
        FileNotFoundError: If the executable does not exist
    """
    out = logger or log
    command = list(command)
    if log_command:
        out.debug(f"Running command: {' '.join(command)}")
    try:
        result = subprocess.run(command, check=check, text=True, capture_output=True)
    except subprocess.CalledProcessError as error:
        out.debug(f"Command failed: {' '.join(command)}")
        if error.stdout:
            out.debug(f"stdout: {error.stdout.strip()}")
        if error.stderr:
            out.debug(f"stderr: {error.stderr.strip()}")
        raise
    if result.stdout and (log_output or result.returncode != 0):
        out.debug(f"stdout: {result.stdout.strip()}")
    if result.stderr and (log_output or result.returncode != 0):
        out.debug(f"stderr: {result.stderr.strip()}")
    if log_command:
        out.debug(f"Command completed with return code {result.returncode}")
    return result


def command_succeeds(command: Sequence[str], logger: Optional[Logger] = None) -> bool:
    """Run a command without raising; True on exit status 0."""
    try:
        result = run_command(command, check=False, logger=logger)
    except OSError as error:
        (logger or log).debug(f"{command[0]} could not be started: {error}")
        return False
    return result.returncode == 0


def settle(
    device_path: Optional[str] = None,
    delay: float = 0.0,
    sleep: Callable[[float], None] = time.sleep,
    rescan: bool = False,
) -> None:
    """Flush buffers and wait for udev; optionally ask the kernel to rescan.

    Best-effort: missing tools and failures are logged, never raised.
    """
    commands: list[list[str]] = [["sync"]]
    if rescan and device_path:
        commands.append(["partprobe", device_path])
    commands.append(["udevadm", "settle", "--timeout=10"])
    for command in commands:
        if not command_exists(command[0]):
            log.debug("Skipping {}: command not found", command[0])
            continue
        with contextlib.suppress(subprocess.CalledProcessError, OSError):
            run_command(command, check=False, log_output=False)
    if delay > 0:
        sleep(delay)
