"""Block device discovery and safety classification.

This module enumerates whole disks and classifies each one before any
destructive workflow may touch it. It uses the lsblk tree, the live mount
table and fuser (through ``BlockProbe``) on every call; results are never
cached across a mutation.

Classification:
    SYSTEM: the disk, or any partition / device-mapper child below it, backs
        one of the active system mounts (/, /boot, /home, /var, /usr).
    CANDIDATE: every other disk.

    Busy: a process holds the disk or one of its partitions open, or the
    disk or a partition backs a live mount.

Operations:
    - DeviceInventory.enumerate(): all disks, fresh, ProbeError if no candidate
    - DeviceInventory.get_device(): one disk by path or short name
    - DeviceInventory.resolve_target_partition(): first partition or raw disk
    - human_size() / format_device_label(): display helpers
    - partition_path(): node name for partition N of a disk

Example:
    >>> from disk_manager.storage.devices import DeviceInventory
    >>> for device in DeviceInventory().enumerate():
    ...     print(format_device_label(device), device.role.value)
    sdb 14.9GB candidate
"""

from __future__ import annotations

import os
import re
from typing import Optional

from disk_manager.domain.models import BlockDevice, DeviceRole
from disk_manager.logging import LoggerFactory
from disk_manager.storage.exceptions import DeviceNotFoundError, ProbeError
from disk_manager.storage.probe import BlockProbe, MountEntry, walk_tree


log = LoggerFactory.for_inventory()

SYSTEM_MOUNTPOINTS = frozenset({"/", "/boot", "/home", "/var", "/usr"})
DISK_NAME_PATTERN = re.compile(r"^(sd[a-z]+|vd[a-z]+|xvd[a-z]+|nvme\d+n\d+|mmcblk\d+)$")


def human_size(size_bytes):
    if size_bytes is None:
        return "0B"
    size = float(size_bytes)
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if size < 1024.0:
            return f"{size:.1f}{unit}"
        size /= 1024.0
    return f"{size:.1f}PB"


def format_device_label(device):
    if isinstance(device, BlockDevice):
        name = device.name
        size_label = human_size(device.size)
    else:
        name = str(device or "")
        size_label = ""
    if size_label:
        size_label = re.sub(r"\.0([A-Z])", r"\1", size_label)
        return f"{name} {size_label}".strip()
    return name


def partition_path(device_path: str, number: int) -> str:
    """Node path of partition ``number`` (nvme0n1 -> nvme0n1p1, sdb -> sdb1)."""
    suffix = "p" if device_path[-1].isdigit() else ""
    return f"{device_path}{suffix}{number}"


def _node_path(node: dict) -> str:
    return node.get("path") or f"/dev/{node.get('name')}"


class DeviceInventory:
    """Enumerates disks and classifies them as SYSTEM/CANDIDATE and busy."""

    def __init__(self, probe: Optional[BlockProbe] = None):
        self.probe = probe or BlockProbe()

    def enumerate(self) -> list[BlockDevice]:
        """Return every whole disk, freshly probed.

        Raises:
            ProbeError: If the probe fails or no candidate device exists
        """
        mounts = self.probe.live_mounts()
        devices = [
            self._build(node, mounts)
            for node in self.probe.block_tree()
            if node.get("type") == "disk" and DISK_NAME_PATTERN.match(node.get("name") or "")
        ]
        names = ", ".join(device.name for device in devices) or "none"
        log.debug(f"Found {len(devices)} disk(s): {names}")
        if not any(device.role is DeviceRole.CANDIDATE for device in devices):
            raise ProbeError("No candidate disks found")
        return devices

    def get_device(self, identifier: str) -> BlockDevice:
        """Fresh lookup of one disk by path (/dev/sdb) or short name (sdb).

        Raises:
            DeviceNotFoundError: If no such disk exists
        """
        path = identifier if identifier.startswith("/dev/") else f"/dev/{identifier}"
        for node in self.probe.block_tree():
            if node.get("type") == "disk" and _node_path(node) == path:
                return self._build(node, self.probe.live_mounts())
        raise DeviceNotFoundError(identifier)

    def refresh(self, device: BlockDevice) -> BlockDevice:
        return self.get_device(device.path)

    def resolve_target_partition(self, device: BlockDevice) -> str:
        """First existing partition, else the raw device (unpartitioned disk)."""
        if device.partitions:
            return device.partitions[0].path
        return device.path

    def _build(self, node: dict, mounts: list[MountEntry]) -> BlockDevice:
        subtree = list(walk_tree(node))
        role = DeviceRole.SYSTEM if self._is_system(subtree, mounts) else DeviceRole.CANDIDATE
        device = BlockDevice.from_lsblk_dict(node, role=role)
        busy = self._is_busy(device, subtree, mounts)
        if busy:
            device = BlockDevice.from_lsblk_dict(node, role=role, busy=True)
        return device

    @staticmethod
    def _is_system(subtree: list[dict], mounts: list[MountEntry]) -> bool:
        if any(n.get("mountpoint") in SYSTEM_MOUNTPOINTS for n in subtree):
            return True
        paths = {_node_path(n) for n in subtree}
        for entry in mounts:
            if entry.target in SYSTEM_MOUNTPOINTS:
                source = os.path.realpath(entry.source) if entry.source.startswith("/") else entry.source
                if entry.source in paths or source in paths:
                    return True
        return False

    def _is_busy(self, device: BlockDevice, subtree: list[dict], mounts: list[MountEntry]) -> bool:
        if any(n.get("mountpoint") for n in subtree):
            return True
        paths = {_node_path(n) for n in subtree}
        if any(entry.source in paths for entry in mounts):
            return True
        holders = self.probe.holders(device.nodes)
        if holders:
            log.debug(f"{device.path} held by PIDs {holders}")
        return bool(holders)
