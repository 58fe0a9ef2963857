"""Domain models for disk lifecycle operations.

This package contains type-safe domain objects that replace raw lsblk dicts
and string-keyed per-filesystem tables.
"""

from __future__ import annotations

from .models import (
    BlockDevice,
    DeviceRole,
    FilesystemKind,
    FilesystemSpec,
    FilesystemStatus,
    MountRecord,
    Partition,
    PartitionPlan,
    PlanEntry,
    PlanMode,
)


__all__ = [
    "BlockDevice",
    "DeviceRole",
    "FilesystemKind",
    "FilesystemSpec",
    "FilesystemStatus",
    "MountRecord",
    "Partition",
    "PartitionPlan",
    "PlanEntry",
    "PlanMode",
]
