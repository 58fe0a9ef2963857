"""Domain model for disk lifecycle operations.

Type-safe objects replace the raw lsblk dicts and the string-keyed
per-filesystem tables: every device is re-probed into a fresh
``BlockDevice`` each workflow cycle, and everything specific to one
filesystem lives on its ``FilesystemKind`` member.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


# ==============================================================================
# Filesystem Domain
# ==============================================================================


@dataclass(frozen=True)
class FilesystemSpec:
    """Per-filesystem tooling and mount policy."""

    key: str  # e.g., "ext4"
    description: str
    format_command: tuple[str, ...]  # partition path is appended
    label_flag: str  # flag preceding the volume label
    verify_command: tuple[str, ...]  # partition path is appended
    driver: str  # mount -t type and fstab driver name
    mount_options: tuple[str, ...]  # may contain {uid}/{gid}
    ledger_options: tuple[str, ...] = ()  # extra fstab-only options
    removable: bool = False  # fstab entry must not block boot
    fallback_command: tuple[str, ...] | None = None  # forced driver: device, path appended
    aliases: tuple[str, ...] = ()


_USER_OPTIONS = ("defaults", "uid={uid}", "gid={gid}", "umask=0022")


class FilesystemKind(Enum):
    """Supported filesystems."""

    EXT4 = FilesystemSpec(
        key="ext4",
        description="Linux default journaling filesystem, stable and reliable",
        format_command=("mkfs.ext4", "-F"),
        label_flag="-L",
        verify_command=("e2fsck", "-f", "-p"),
        driver="ext4",
        mount_options=("defaults",),
    )
    NTFS = FilesystemSpec(
        key="ntfs",
        description="Windows compatible, large files and permissions",
        format_command=("mkfs.ntfs", "-f"),
        label_flag="-L",
        verify_command=("ntfsfix",),
        driver="ntfs-3g",
        mount_options=_USER_OPTIONS,
        removable=True,
        fallback_command=("ntfs-3g", "-o", "remove_hiberfile,force"),
        aliases=("ntfs-3g", "ntfs3"),
    )
    FAT32 = FilesystemSpec(
        key="fat32",
        description="Universal compatibility, 4GB file size limit",
        format_command=("mkfs.vfat", "-F", "32"),
        label_flag="-n",
        verify_command=("fsck.vfat", "-a"),
        driver="vfat",
        mount_options=_USER_OPTIONS,
        ledger_options=("iocharset=utf8", "rw"),
        removable=True,
        aliases=("vfat", "fat"),
    )
    XFS = FilesystemSpec(
        key="xfs",
        description="Suited to large files, high-throughput storage",
        format_command=("mkfs.xfs", "-f"),
        label_flag="-L",
        verify_command=("xfs_repair",),
        driver="xfs",
        mount_options=("defaults",),
    )
    EXFAT = FilesystemSpec(
        key="exfat",
        description="Cross-platform, large files, external storage",
        format_command=("mkfs.exfat",),
        label_flag="-n",
        verify_command=("fsck.exfat",),
        driver="exfat",
        mount_options=_USER_OPTIONS,
        removable=True,
    )

    @property
    def spec(self) -> FilesystemSpec:
        return self.value

    @property
    def key(self) -> str:
        return self.value.key

    @property
    def description(self) -> str:
        return self.value.description

    @property
    def driver(self) -> str:
        return self.value.driver

    @property
    def is_ntfs(self) -> bool:
        """NTFS-like kinds get forced fallback driver retries."""
        return self.value.fallback_command is not None

    def mount_option_list(self, uid: int | None = None, gid: int | None = None) -> list[str]:
        """Resolve live mount options for the invoking user."""
        uid = os.getuid() if uid is None else uid
        gid = os.getgid() if gid is None else gid
        return [opt.format(uid=uid, gid=gid) for opt in self.value.mount_options]

    def ledger_option_list(self, uid: int | None = None, gid: int | None = None) -> list[str]:
        """fstab options: live options plus nofail for removable kinds."""
        options = self.mount_option_list(uid, gid)
        if self.value.removable and "nofail" not in options:
            options.insert(1 if options and options[0] == "defaults" else 0, "nofail")
        options.extend(opt for opt in self.value.ledger_options if opt not in options)
        return options

    def format_args(self, partition: str, label: str | None = None) -> list[str]:
        command = list(self.value.format_command)
        if label:
            command.extend([self.value.label_flag, label])
        command.append(partition)
        return command

    def verify_args(self, partition: str) -> list[str]:
        return [*self.value.verify_command, partition]

    def fallback_args(self, device: str, mountpoint: str) -> list[str] | None:
        if self.value.fallback_command is None:
            return None
        return [*self.value.fallback_command, device, mountpoint]

    @classmethod
    def from_fstype(cls, fstype: str | None) -> FilesystemKind | None:
        """Map a blkid/lsblk TYPE (or a user-facing key) to a kind."""
        if not fstype:
            return None
        wanted = fstype.strip().lower()
        for kind in cls:
            if wanted == kind.value.key or wanted in kind.value.aliases:
                return kind
        return None


class FilesystemStatus(Enum):
    """What is on a partition."""

    UNFORMATTED = "unformatted"
    KNOWN = "known"  # one of FilesystemKind
    FOREIGN = "foreign"  # a signature we do not manage (swap, btrfs, LVM...)


# ==============================================================================
# Device Domain
# ==============================================================================


class DeviceRole(Enum):
    """Safety classification of a whole disk."""

    SYSTEM = "system"  # backs /, /boot, /home, /var or /usr
    CANDIDATE = "candidate"


@dataclass(frozen=True)
class Partition:
    """A partition node of a disk."""

    path: str  # e.g., "/dev/sdb1"
    parent: str  # owning disk path, e.g., "/dev/sdb"
    fstype: str | None = None
    mountpoint: str | None = None

    @property
    def name(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    @property
    def kind(self) -> FilesystemKind | None:
        return FilesystemKind.from_fstype(self.fstype)

    @property
    def filesystem_status(self) -> FilesystemStatus:
        if not self.fstype:
            return FilesystemStatus.UNFORMATTED
        if self.kind is None:
            return FilesystemStatus.FOREIGN
        return FilesystemStatus.KNOWN

    @property
    def is_mounted(self) -> bool:
        return self.mountpoint is not None


@dataclass(frozen=True)
class BlockDevice:
    """A whole disk, probed fresh for one workflow cycle."""

    path: str  # e.g., "/dev/sdb"
    size: int  # bytes
    model: str | None = None
    role: DeviceRole = DeviceRole.CANDIDATE
    busy: bool = False
    partitions: tuple[Partition, ...] = ()
    fstype: str | None = None  # raw device signature (unpartitioned disks)
    mountpoint: str | None = None

    @property
    def name(self) -> str:
        """Short name (e.g., sdb)."""
        return self.path.rsplit("/", 1)[-1]

    @property
    def is_system(self) -> bool:
        return self.role is DeviceRole.SYSTEM

    @property
    def mountpoints(self) -> list[str]:
        points = [p.mountpoint for p in self.partitions if p.mountpoint]
        if self.mountpoint:
            points.append(self.mountpoint)
        return points

    @property
    def nodes(self) -> list[str]:
        """Device path followed by every partition path."""
        return [self.path, *(p.path for p in self.partitions)]

    @classmethod
    def from_lsblk_dict(
        cls,
        device: dict[str, Any],
        role: DeviceRole = DeviceRole.CANDIDATE,
        busy: bool = False,
    ) -> BlockDevice:
        """Convert an lsblk JSON disk entry to a BlockDevice.

        Raises:
            KeyError: If the name key is missing
            ValueError: If size cannot be converted to int
        """
        name = device["name"]
        path = device.get("path") or f"/dev/{name}"
        model = device.get("model")
        if model:
            model = model.strip()
        partitions = tuple(
            Partition(
                path=child.get("path") or f"/dev/{child['name']}",
                parent=path,
                fstype=child.get("fstype") or None,
                mountpoint=child.get("mountpoint") or None,
            )
            for child in device.get("children", []) or []
            if child.get("type") == "part"
        )
        return cls(
            path=path,
            size=int(device.get("size") or 0),
            model=model or None,
            role=role,
            busy=busy,
            partitions=partitions,
            fstype=device.get("fstype") or None,
            mountpoint=device.get("mountpoint") or None,
        )


# ==============================================================================
# Partition Plan Domain
# ==============================================================================


class PlanMode(Enum):
    """How a format workflow lays out the disk."""

    SINGLE = "single"  # one partition, whole disk
    MANUAL = "manual"  # 1-4 operator-sized partitions
    NONE = "none"  # no partition table, format the raw device


MAX_MANUAL_PARTITIONS = 4
PERCENT_PATTERN = re.compile(r"^(\d{1,3})%$")
ABSOLUTE_PATTERN = re.compile(r"^(\d+(?:\.\d+)?)(MB|GB|TB|MiB|GiB|TiB)$", re.IGNORECASE)

_UNIT_BYTES = {
    "mb": 1000**2,
    "gb": 1000**3,
    "tb": 1000**4,
    "mib": 1024**2,
    "gib": 1024**3,
    "tib": 1024**4,
}


def offset_to_bytes(offset: str, disk_size: int) -> int | None:
    """Resolve a parted offset to bytes; None if it cannot be resolved."""
    match = PERCENT_PATTERN.match(offset)
    if match:
        if disk_size <= 0:
            return None
        return disk_size * int(match.group(1)) // 100
    match = ABSOLUTE_PATTERN.match(offset)
    if match:
        return int(float(match.group(1)) * _UNIT_BYTES[match.group(2).lower()])
    return None


@dataclass(frozen=True)
class PlanEntry:
    """One partition as parted start/end offsets."""

    start: str  # e.g., "0%", "10GB"
    end: str  # e.g., "50%", "100%"


@dataclass(frozen=True)
class PartitionPlan:
    """Validated, ordered partition layout."""

    mode: PlanMode
    entries: tuple[PlanEntry, ...] = field(default_factory=tuple)

    @property
    def count(self) -> int:
        return len(self.entries)


# ==============================================================================
# Ledger Domain
# ==============================================================================


@dataclass(frozen=True)
class MountRecord:
    """A persisted (fstab) mount entry keyed by filesystem UUID."""

    uuid: str
    mountpoint: str
    kind: FilesystemKind
    options: tuple[str, ...]

    @property
    def driver(self) -> str:
        return self.kind.driver

    def to_fstab_line(self) -> str:
        return f"UUID={self.uuid} {self.mountpoint} {self.driver} {','.join(self.options)} 0 0"
