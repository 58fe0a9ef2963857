"""Read-only disk details: layout, identity, usage, holders and SMART health.

Every section is best-effort. A missing tool or a failing command yields an
"unavailable" section instead of an exception, so the details view can be
shown for any disk, including ones that are about to be reformatted.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Optional

import psutil

from disk_manager.domain.models import BlockDevice
from disk_manager.logging import LoggerFactory
from disk_manager.storage.commands import command_exists, run_command
from disk_manager.storage.probe import BlockProbe


log = LoggerFactory.for_inventory()

UNAVAILABLE = "unavailable"

SMART_ATTRIBUTES = (
    "Raw_Read_Error_Rate",
    "Reallocated_Sector_Ct",
    "Power_On_Hours",
    "Temperature_Celsius",
    "Current_Pending_Sector",
)


@dataclass
class HealthReport:
    available: bool
    overall: str = UNAVAILABLE
    attributes: dict[str, str] = field(default_factory=dict)

    @property
    def passed(self) -> Optional[bool]:
        if not self.available:
            return None
        return "PASSED" in self.overall or "OK" in self.overall


@dataclass
class MountUsage:
    """Space usage of one mounted filesystem."""

    mountpoint: str
    total_gb: float
    used_gb: float
    percent: float


@dataclass
class DiskDetails:
    device: BlockDevice
    layout: str = UNAVAILABLE
    identities: dict[str, str] = field(default_factory=dict)
    usage: list[MountUsage] = field(default_factory=list)
    holders: list[int] = field(default_factory=list)
    health: HealthReport = field(default_factory=lambda: HealthReport(available=False))


def _output(command: list[str]) -> Optional[str]:
    if not command_exists(command[0]):
        log.debug(f"{command[0]} not installed")
        return None
    try:
        result = run_command(command, check=False, log_output=False, logger=log)
    except OSError as error:
        log.debug(f"{command[0]} could not be started: {error}")
        return None
    if result.returncode != 0 and not result.stdout:
        return None
    return (result.stdout or "").strip()


def parse_smart_attributes(text: str) -> dict[str, str]:
    """Raw values of the tracked attributes from ``smartctl -A`` output."""
    values: dict[str, str] = {}
    for line in text.splitlines():
        parts = line.split()
        if len(parts) >= 10 and parts[1] in SMART_ATTRIBUTES:
            values[parts[1]] = " ".join(parts[9:])
    return values


def mount_usage(mountpoint: str) -> Optional[MountUsage]:
    try:
        disk = psutil.disk_usage(mountpoint)
    except OSError as error:
        log.debug(f"No usage for {mountpoint}: {error}")
        return None
    return MountUsage(
        mountpoint=mountpoint,
        total_gb=disk.total / (1024**3),
        used_gb=disk.used / (1024**3),
        percent=disk.percent,
    )


def check_disk_health(device: BlockDevice) -> HealthReport:
    if not command_exists("smartctl"):
        return HealthReport(available=False)
    overall_text = _output(["smartctl", "-H", device.path])
    if overall_text is None:
        return HealthReport(available=False)
    overall = UNAVAILABLE
    for line in overall_text.splitlines():
        if re.search(r"overall-health|SMART Health Status", line):
            overall = line.split(":", 1)[-1].strip()
            break
    attributes = parse_smart_attributes(_output(["smartctl", "-A", device.path]) or "")
    return HealthReport(available=True, overall=overall, attributes=attributes)


def describe_device(device: BlockDevice, probe: BlockProbe) -> DiskDetails:
    """Collect every details section for ``device``."""
    details = DiskDetails(device=device)
    details.layout = _output(["parted", "-s", device.path, "print"]) or UNAVAILABLE
    for node in device.nodes:
        identity = _output(["blkid", node])
        if identity:
            details.identities[node] = identity
    for mountpoint in device.mountpoints:
        usage = mount_usage(mountpoint)
        if usage:
            details.usage.append(usage)
    details.holders = probe.holders(device.nodes)
    details.health = check_disk_health(device)
    return details
