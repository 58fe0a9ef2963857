"""Persistent mount entries in the system mount table (fstab).

Entries are keyed by filesystem UUID and written in the form::

    # Added by disk-manager on 2026-01-31 12:00:00
    UUID=<uuid> <mountpoint> <driver> <options> 0 0

Recording a mount is verified before it is accepted: the mount point is
released, then re-mounted strictly from the freshly written table. If that
(and a direct mount retry) fails, the previous table text is restored and
``VerificationFailedError`` is raised. The table is therefore either the
verified new version or byte-identical to the old one.

A copy of the previous table is also left at ``<fstab>.backup``.
"""

from __future__ import annotations

import os
import shutil
import time
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from disk_manager.domain.models import FilesystemKind, MountRecord
from disk_manager.logging import LoggerFactory
from disk_manager.storage.commands import command_succeeds
from disk_manager.storage.exceptions import (
    LedgerError,
    LedgerIOError,
    MountError,
    NoUuidError,
    VerificationFailedError,
)
from disk_manager.storage.mount import release_mountpoint, reload_systemd
from disk_manager.storage.probe import BlockProbe


log = LoggerFactory.for_ledger()

ENTRY_COMMENT = "# Added by disk-manager on {timestamp}"


class LedgerOutcome(Enum):
    RECORDED = "recorded"
    ALREADY_PRESENT = "already_present"


def active_lines(text: str) -> list[str]:
    """Non-blank, non-comment lines of a mount table."""
    lines = []
    for line in text.splitlines():
        stripped = line.strip()
        if stripped and not stripped.startswith("#"):
            lines.append(stripped)
    return lines


def has_uuid_entry(text: str, uuid: str) -> bool:
    wanted = f"UUID={uuid}"
    return any(line.split()[0] == wanted for line in active_lines(text))


def atomic_write(path: str, text: str) -> None:
    """Replace ``path`` with ``text`` via a sibling temp file and rename."""
    target = Path(path)
    tmp = target.with_name(f".{target.name}.tmp")
    with open(tmp, "w", encoding="utf-8") as handle:
        handle.write(text)
        handle.flush()
        os.fsync(handle.fileno())
    if target.exists():
        shutil.copymode(target, tmp)
    os.replace(tmp, target)


class PersistenceLedger:
    """Adds verified UUID-keyed entries to the mount table."""

    def __init__(
        self,
        probe: BlockProbe,
        fstab_path: str = "/etc/fstab",
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.probe = probe
        self.fstab_path = fstab_path
        self.sleep = sleep
        self.clock = clock

    @property
    def backup_path(self) -> str:
        return f"{self.fstab_path}.backup"

    def read(self) -> str:
        try:
            with open(self.fstab_path, "r", encoding="utf-8") as handle:
                return handle.read()
        except OSError as error:
            raise LedgerIOError(self.fstab_path, str(error)) from error

    def has_entry(self, uuid: str) -> bool:
        return has_uuid_entry(self.read(), uuid)

    def build_record(
        self,
        uuid: str,
        mountpoint: str,
        kind: FilesystemKind,
        uid: Optional[int] = None,
        gid: Optional[int] = None,
    ) -> MountRecord:
        return MountRecord(
            uuid=uuid,
            mountpoint=os.path.normpath(mountpoint),
            kind=kind,
            options=tuple(kind.ledger_option_list(uid, gid)),
        )

    def record_mount(
        self,
        device: str,
        mountpoint: str,
        kind: FilesystemKind,
        uid: Optional[int] = None,
        gid: Optional[int] = None,
    ) -> LedgerOutcome:
        """Persist ``device`` at ``mountpoint`` and verify the entry mounts.

        Raises:
            LedgerError: If the device or mount point is missing
            NoUuidError: If blkid reports no UUID for the device
            VerificationFailedError: If the new entry would not mount (the
                previous table has been restored)
            LedgerIOError: If the table cannot be read, written or restored
        """
        mountpoint = os.path.normpath(mountpoint)
        if not self.probe.is_block_device(device):
            raise LedgerError(f"{device} is not a block device")
        if not os.path.isdir(mountpoint):
            raise LedgerError(f"Mount point {mountpoint} does not exist")

        uuid = self.probe.uuid_of(device)
        if not uuid:
            raise NoUuidError(device)

        original = self.read()
        if has_uuid_entry(original, uuid):
            log.info(f"fstab already has an entry for UUID={uuid}; nothing to do")
            return LedgerOutcome.ALREADY_PRESENT

        self._write(self.backup_path, original)
        log.debug(f"Backed up {self.fstab_path} to {self.backup_path}")

        record = self.build_record(uuid, mountpoint, kind, uid, gid)
        stamp = self.clock().strftime("%Y-%m-%d %H:%M:%S")
        prefix = original if (not original or original.endswith("\n")) else original + "\n"
        updated = f"{prefix}{ENTRY_COMMENT.format(timestamp=stamp)}\n{record.to_fstab_line()}\n"
        self._write(self.fstab_path, updated)
        log.info(f"Added fstab entry: {record.to_fstab_line()}")

        reason = self._verify(device, record)
        if reason:
            log.error(f"fstab entry for {device} failed verification: {reason}")
            try:
                atomic_write(self.fstab_path, original)
            except OSError as error:
                raise LedgerIOError(self.fstab_path, f"restore failed: {error}") from error
            log.warning(f"Restored previous {self.fstab_path}")
            raise VerificationFailedError(device, mountpoint, reason)

        reload_systemd()
        log.info(f"{device} will be mounted at {mountpoint} on boot")
        return LedgerOutcome.RECORDED

    def _write(self, path: str, text: str) -> None:
        try:
            atomic_write(path, text)
        except OSError as error:
            raise LedgerIOError(path, str(error)) from error

    def _verify(self, device: str, record: MountRecord) -> str:
        """Remount from the new table; returns a failure reason or ''."""
        mountpoint = record.mountpoint
        try:
            release_mountpoint(mountpoint, self.probe, device=device, kind=record.kind, sleep=self.sleep)
        except MountError as error:
            return str(error)

        if not command_succeeds(["mount", "--fstab", self.fstab_path, mountpoint], logger=log):
            log.warning(f"mount from {self.fstab_path} failed, retrying with explicit options")
            options = ",".join(record.options)
            if not command_succeeds(
                ["mount", "-t", record.driver, "-o", options, device, mountpoint], logger=log
            ):
                return "mount from the new entry failed"

        if not self.probe.is_mountpoint(mountpoint):
            return f"{mountpoint} is not mounted after remount"
        source = self.probe.mount_source(mountpoint)
        if not self._is_recorded_device(source, device, record.uuid):
            return f"{mountpoint} is backed by {source}, not {device}"
        return ""

    def _is_recorded_device(self, source: Optional[str], device: str, uuid: str) -> bool:
        if not source:
            return False
        if os.path.realpath(source) == os.path.realpath(device):
            return True
        return source.startswith("/") and self.probe.uuid_of(source) == uuid
