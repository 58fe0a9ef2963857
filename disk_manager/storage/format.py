"""Filesystem creation and post-format verification.

Supported Filesystems:
    ext4:   Linux native journaling filesystem
    ntfs:   Windows compatible (mkfs.ntfs, mounted via ntfs-3g)
    fat32:  FAT32 for universal compatibility (4GB file limit)
    xfs:    Large files, high throughput
    exfat:  Cross-platform external storage

Every format is followed by the kind's check/repair tool (e2fsck, ntfsfix,
fsck.vfat, xfs_repair, fsck.exfat). A non-zero exit from either step is a
``FormatError``; nothing is retried.

Example:
    >>> from disk_manager.storage.format import FilesystemFormatter
    >>> FilesystemFormatter().format("/dev/sdb1", FilesystemKind.EXT4, label="DATA")
"""

from __future__ import annotations

from typing import Callable, List, Optional

from disk_manager.domain.models import FilesystemKind
from disk_manager.logging import LoggerFactory
from disk_manager.storage.commands import command_exists, run_command
from disk_manager.storage.exceptions import FormatError


# Create logger for format operations
log = LoggerFactory.for_format()

ProgressCallback = Callable[[List[str], Optional[float]], None]


def missing_tools(kind: FilesystemKind) -> list[str]:
    """Executables ``kind`` needs that are not on PATH."""
    tools = [kind.spec.format_command[0], kind.spec.verify_command[0]]
    return [tool for tool in dict.fromkeys(tools) if not command_exists(tool)]


class FilesystemFormatter:
    """Creates a filesystem on a partition node and verifies it."""

    def __init__(self, progress_callback: Optional[ProgressCallback] = None):
        self.progress_callback = progress_callback

    def _progress(self, lines: List[str], fraction: Optional[float]) -> None:
        if self.progress_callback:
            self.progress_callback(lines, fraction)

    def format(self, partition: str, kind: FilesystemKind, label: Optional[str] = None) -> None:
        """Format ``partition`` as ``kind`` and run its verify step.

        Args:
            partition: Partition (or raw device) path, e.g. /dev/sdb1
            kind: Filesystem to create
            label: Optional volume label

        Raises:
            FormatError: If a tool is missing, or format/verify exits non-zero
        """
        missing = missing_tools(kind)
        if missing:
            raise FormatError(
                f"Required tool(s) for {kind.key} not installed: {', '.join(missing)}",
                device=partition,
            )

        log.info(f"Formatting {partition} as {kind.key}" + (f" (label {label})" if label else ""))
        self._progress([f"Formatting {kind.key}..."], 0.1)
        self._run_step(kind.format_args(partition, label), partition, "format")

        self._progress([f"Verifying {kind.key}..."], 0.7)
        self._run_step(kind.verify_args(partition), partition, "verify")

        self._progress(["Format complete"], 1.0)
        log.info(f"Formatted and verified {partition} as {kind.key}")

    def _run_step(self, command: list[str], partition: str, step: str) -> None:
        try:
            result = run_command(command, check=False, logger=log)
        except OSError as error:
            raise FormatError(f"{command[0]} could not be started: {error}", device=partition) from error
        if result.returncode != 0:
            log.error(f"{step.capitalize()} command failed with code {result.returncode}")
            log.error(f"Command: {' '.join(command)}")
            if result.stderr:
                log.error(f"Error output: {result.stderr.strip()}")
            raise FormatError(
                f"{step.capitalize()} of {partition} failed ({command[0]} exited {result.returncode})",
                device=partition,
            )
