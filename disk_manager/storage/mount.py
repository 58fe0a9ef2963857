"""Mount attachment, release, and conflict preemption.

The controller walks a small state machine for every attach request:

    IDLE -> CONFLICT_CHECK -> {ATTACH | PREEMPT_THEN_ATTACH} -> ATTACHED | FAILED

A conflict exists when the target path is already a mount point, the device
is already in the live mount table, or the device has active holders. The
operator must agree before holders are terminated and the device is forcibly
unmounted; declining leaves the system untouched.

NTFS volumes get a second chance at every step through the forced ntfs-3g
driver (remove_hiberfile,force), which clears Windows hibernation/dirty
state that makes the kernel driver refuse the volume.

Functions:
    - MountController.mount(): attach a device at a path
    - release_mountpoint(): force-unmount one path, NTFS fallback included
    - unmount_partition(): force-unmount every live mount of a node
    - unmount_all_partitions(): unmount a disk's partitions, collecting failures
"""

from __future__ import annotations

import os
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from disk_manager.domain.models import BlockDevice, FilesystemKind
from disk_manager.logging import LoggerFactory
from disk_manager.storage.commands import command_exists, run_command
from disk_manager.storage.exceptions import MountError, UserCancelledError
from disk_manager.storage.preemption import ConfirmCallback
from disk_manager.storage.probe import BlockProbe


# Module logger
log = LoggerFactory.for_mount()


class MountState(Enum):
    IDLE = "idle"
    CONFLICT_CHECK = "conflict_check"
    ATTACH = "attach"
    PREEMPT_THEN_ATTACH = "preempt_then_attach"
    ATTACHED = "attached"
    FAILED = "failed"


@dataclass
class MountResult:
    device: str
    mountpoint: str
    kind: FilesystemKind
    state: MountState
    used_fallback: bool = False
    preempted: list[int] = field(default_factory=list)


@dataclass
class UnmountReport:
    unmounted: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


def _run(command: list[str]) -> bool:
    try:
        return run_command(command, check=False, logger=log).returncode == 0
    except OSError as error:
        log.debug(f"{command[0]} could not be started: {error}")
        return False


def reload_systemd() -> None:
    """Let systemd regenerate mount units; best-effort."""
    if command_exists("systemctl"):
        _run(["systemctl", "daemon-reload"])


def release_mountpoint(
    target: str,
    probe: BlockProbe,
    device: Optional[str] = None,
    kind: Optional[FilesystemKind] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """Force-unmount ``target``; NTFS kinds retry via the forced driver.

    Raises:
        MountError: If the path is still a mount point afterwards
    """
    if not probe.is_mountpoint(target):
        return
    log.info(f"Unmounting {target}")
    if _run(["umount", "-f", target]) and not probe.is_mountpoint(target):
        return
    fallback = kind.fallback_args(device, target) if (kind and device) else None
    if fallback:
        log.warning(f"Plain unmount of {target} failed, retrying via {fallback[0]}")
        _run(fallback)
        sleep(1)
        _run(["umount", "-f", target])
    if probe.is_mountpoint(target):
        raise MountError(f"Failed to unmount {target}", device=device, mountpoint=target)


def unmount_partition(partition: str, probe: BlockProbe) -> bool:
    """Unmount every live mount of ``partition``.

    Returns:
        True if something was unmounted, False if nothing was mounted

    Raises:
        MountError: If a mount could not be released
    """
    entries = probe.mounts_of(partition)
    if not entries:
        log.debug(f"{partition} already unmounted")
        return False
    for entry in entries:
        if not _run(["umount", "-f", entry.target]):
            raise MountError(
                f"Failed to unmount {partition} from {entry.target}",
                device=partition,
                mountpoint=entry.target,
            )
        log.info(f"Unmounted {partition} from {entry.target}")
    return True


def unmount_all_partitions(device: BlockDevice, probe: BlockProbe) -> UnmountReport:
    """Unmount each partition (or the raw disk), continuing past failures."""
    report = UnmountReport()
    nodes = [p.path for p in device.partitions] or [device.path]
    for node in nodes:
        try:
            if unmount_partition(node, probe):
                report.unmounted.append(node)
        except MountError as error:
            log.error(str(error))
            report.failed[node] = str(error)
    return report


class MountController:
    """Attach a device to a path, resolving conflicts with operator consent."""

    def __init__(
        self,
        probe: BlockProbe,
        confirm: ConfirmCallback,
        preempt_delay: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.probe = probe
        self.confirm = confirm
        self.preempt_delay = preempt_delay
        self.sleep = sleep
        self.state = MountState.IDLE

    def mount(self, device: str, mountpoint: str, kind: FilesystemKind) -> MountResult:
        """Attach ``device`` at ``mountpoint`` using ``kind``'s options.

        Raises:
            UserCancelledError: If a conflict exists and preemption is declined
            MountError: If the device cannot be released or attached
        """
        mountpoint = os.path.normpath(mountpoint)
        self.state = MountState.IDLE
        result = MountResult(device=device, mountpoint=mountpoint, kind=kind, state=self.state)
        self.state = MountState.CONFLICT_CHECK

        target_busy = self.probe.is_mountpoint(mountpoint)
        live = self.probe.mounts_of(device)
        holder_paths = [device]
        other_source = self.probe.mount_source(mountpoint) if target_busy else None
        if other_source and other_source != device:
            holder_paths.append(other_source)
        holders = self.probe.holders(holder_paths)

        if target_busy or live or holders:
            reasons = []
            if target_busy:
                reasons.append(f"{mountpoint} is already a mount point")
            if live:
                reasons.append(f"{device} is mounted at {', '.join(e.target for e in live)}")
            if holders:
                reasons.append(f"held by PIDs {', '.join(str(p) for p in holders)}")
            log.warning(f"Mount conflict for {device}: {'; '.join(reasons)}")
            if not self.confirm(
                f"{'; '.join(reasons)}. Terminate holders and force unmount?"
            ):
                self.state = MountState.FAILED
                result.state = self.state
                raise UserCancelledError(f"mount preemption declined for {device}")
            self.state = MountState.PREEMPT_THEN_ATTACH
            self._preempt(device, mountpoint, kind, holders, live, target_busy, result)
        else:
            self.state = MountState.ATTACH

        try:
            result.used_fallback = self._attach(device, mountpoint, kind)
        except MountError:
            self.state = MountState.FAILED
            result.state = self.state
            raise
        self.state = MountState.ATTACHED
        result.state = self.state
        reload_systemd()
        log.info(f"Mounted {device} at {mountpoint} ({kind.key})")
        return result

    def _preempt(self, device, mountpoint, kind, holders, live, target_busy, result) -> None:
        if holders:
            self.probe.terminate(holders)
            result.preempted = list(holders)
            self.sleep(self.preempt_delay)
        targets = {entry.target for entry in live}
        if target_busy:
            targets.add(mountpoint)
        try:
            for target in sorted(targets):
                release_mountpoint(
                    target, self.probe, device=device, kind=kind, sleep=self.sleep
                )
        except MountError:
            self.state = MountState.FAILED
            result.state = self.state
            raise

    def _attach(self, device: str, mountpoint: str, kind: FilesystemKind) -> bool:
        try:
            Path(mountpoint).mkdir(parents=True, exist_ok=True)
        except OSError as error:
            raise MountError(
                f"Failed to create mount point {mountpoint}: {error}",
                device=device,
                mountpoint=mountpoint,
            ) from error

        options = ",".join(kind.mount_option_list())
        log.info(f"Mounting {device} at {mountpoint}")
        if _run(["mount", "-t", kind.driver, "-o", options, device, mountpoint]):
            return False

        fallback = kind.fallback_args(device, mountpoint)
        if fallback:
            log.warning(f"Regular mount failed, retrying via {fallback[0]}")
            if _run(fallback):
                return True
        raise MountError(
            f"Failed to mount {device} at {mountpoint}",
            device=device,
            mountpoint=mountpoint,
        )

