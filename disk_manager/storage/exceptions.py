"""Custom exceptions for disk lifecycle operations.

This module defines a hierarchy of exceptions for storage operations so that
workflows can surface the first fatal error with a precise type.

Exception Hierarchy:
    StorageError (base)
        ├── ProbeError
        │   └── DeviceNotFoundError
        ├── PartitionError
        │   ├── InvalidPlanError
        │   └── PartitionTimeoutError
        ├── FormatError
        ├── MountError
        ├── LedgerError
        │   ├── NoUuidError
        │   ├── VerificationFailedError
        │   └── LedgerIOError
        └── UserCancelledError

Usage:
    from disk_manager.storage.exceptions import UserCancelledError

    if not operator.confirm("Kill processes holding /dev/sdb?"):
        raise UserCancelledError("preemption declined for /dev/sdb")
"""

from __future__ import annotations


class StorageError(Exception):
    """Base exception for all storage operations."""


class ProbeError(StorageError):
    """Block devices could not be enumerated, or none are usable."""


class DeviceNotFoundError(ProbeError):
    """Device was not found or does not exist."""

    def __init__(self, device_name: str):
        self.device_name = device_name
        super().__init__(f"Device not found: {device_name}")


class PartitionError(StorageError):
    """Partition table could not be written.

    ``table_modified`` is True once the leading sector has been wiped; the
    device is then left in a new, possibly incomplete, partitioned state.
    """

    def __init__(self, message: str, device: str | None = None, table_modified: bool = False):
        self.device = device
        self.table_modified = table_modified
        super().__init__(message)


class InvalidPlanError(PartitionError):
    """A manual partition plan failed validation."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid partition plan: {reason}")


class PartitionTimeoutError(PartitionError):
    """Partition device node did not appear after a table rescan."""

    def __init__(self, device: str, node: str, attempts: int):
        self.node = node
        self.attempts = attempts
        super().__init__(
            f"Partition node {node} did not appear after {attempts} attempts",
            device=device,
            table_modified=True,
        )


class FormatError(StorageError):
    """Filesystem creation or post-format verification failed."""

    def __init__(self, message: str, device: str | None = None):
        self.device = device
        super().__init__(message)


class MountError(StorageError):
    """Device could not be attached to or released from a mount path."""

    def __init__(self, message: str, device: str | None = None, mountpoint: str | None = None):
        self.device = device
        self.mountpoint = mountpoint
        super().__init__(message)


class LedgerError(StorageError):
    """Base exception for persisted mount table (fstab) operations."""


class NoUuidError(LedgerError):
    """Device has no resolvable filesystem UUID."""

    def __init__(self, device: str):
        self.device = device
        super().__init__(f"Cannot resolve UUID for {device}")


class VerificationFailedError(LedgerError):
    """New fstab entry could not be mounted; the table was restored."""

    def __init__(self, device: str, mountpoint: str, reason: str = ""):
        self.device = device
        self.mountpoint = mountpoint
        self.reason = reason
        msg = f"Mount verification failed for {device} at {mountpoint}; fstab restored"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class LedgerIOError(LedgerError):
    """Reading, writing, or restoring the fstab file failed."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"fstab I/O error on {path}: {reason}")


class UserCancelledError(StorageError):
    """Operator declined, or did not give, a required confirmation."""

    def __init__(self, action: str = ""):
        self.action = action
        msg = "Operation cancelled by operator"
        if action:
            msg += f": {action}"
        super().__init__(msg)
