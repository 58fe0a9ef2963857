"""Line-oriented console front-end.

``ConsoleOperator`` answers the workflows' questions from stdin, and
``run_menu`` drives the select-then-act loop. All output goes through an
injectable ``output`` callable so the menu can be exercised without a tty.
"""

from __future__ import annotations

from typing import Callable, List, Optional, Sequence

from disk_manager.domain.models import BlockDevice, FilesystemKind
from disk_manager.logging import LoggerFactory
from disk_manager.services.lifecycle import (
    DetailsResult,
    DiskLifecycleOrchestrator,
    FormatResult,
    MountWorkflowResult,
    UnmountResult,
)
from disk_manager.storage.devices import human_size
from disk_manager.storage.exceptions import StorageError, UserCancelledError


log = LoggerFactory.for_system()

InputFn = Callable[[str], str]
OutputFn = Callable[[str], None]

MENU_ENTRIES = (
    ("format", "Format disk"),
    ("mount", "Mount disk"),
    ("unmount", "Unmount disk"),
    ("details", "Disk details"),
    ("refresh", "Refresh device list"),
    ("quit", "Quit"),
)


class ConsoleOperator:
    """Operator backed by ``input()``; y/N questions default to no."""

    def __init__(self, input_fn: InputFn = input, output: OutputFn = print):
        self.input_fn = input_fn
        self.output = output

    def _read(self, prompt: str) -> Optional[str]:
        try:
            return self.input_fn(prompt)
        except EOFError:
            return None

    def confirm(self, message: str) -> bool:
        answer = self._read(f"{message} [y/N]: ")
        return (answer or "").strip().lower() in ("y", "yes")

    def ask(self, prompt: str) -> Optional[str]:
        answer = self._read(f"{prompt}: ")
        if answer is None or not answer.strip():
            return None
        return answer.strip()

    def choose(self, prompt: str, options: Sequence[str]) -> Optional[int]:
        self.output(prompt)
        for number, option in enumerate(options, start=1):
            self.output(f"  {number}) {option}")
        while True:
            answer = self.ask("Choice")
            if answer is None:
                return None
            if answer.isdigit() and 1 <= int(answer) <= len(options):
                return int(answer) - 1
            self.output(f"Enter a number between 1 and {len(options)}")


def render_device_table(devices: Sequence[BlockDevice]) -> List[str]:
    lines = [f"{'#':>2}  {'DEVICE':<14} {'SIZE':>9}  {'MODEL':<24} STATUS"]
    for number, device in enumerate(devices, start=1):
        flags = []
        if device.is_system:
            flags.append("SYSTEM")
        if device.busy:
            flags.append("BUSY")
        status = ",".join(flags) or "available"
        lines.append(
            f"{number:>2}  {device.path:<14} {human_size(device.size):>9}  "
            f"{(device.model or '-')[:24]:<24} {status}"
        )
        for partition in device.partitions:
            where = partition.mountpoint or "not mounted"
            lines.append(f"      {partition.name:<12} {partition.fstype or 'unformatted':<10} {where}")
    return lines


def render_format_result(result: FormatResult) -> List[str]:
    if result.ok:
        nodes = ", ".join(outcome.partition for outcome in result.partitions)
        return [f"Formatted {result.device} as {result.kind.key}: {nodes}"]
    lines = []
    if result.error:
        lines.append(f"Format failed: {result.error}")
    for outcome in result.partitions:
        if not outcome.ok:
            lines.append(f"  {outcome.partition}: {outcome.error}")
    if result.table_modified:
        lines.append(
            f"NOTE: the partition table on {result.device} was already rewritten; "
            "the disk is in a new, possibly incomplete, state."
        )
    return lines


def render_mount_result(result: MountWorkflowResult) -> List[str]:
    lines = []
    if result.mount is not None:
        lines.append(f"Mounted {result.partition} at {result.mountpoint}")
    if result.ledger is not None:
        lines.append(f"fstab: {result.ledger.value.replace('_', ' ')}")
    if result.error:
        lines.append(f"Mount failed: {result.error}")
    return lines


def render_unmount_result(result: UnmountResult) -> List[str]:
    if result.error:
        return [f"Unmount failed: {result.error}"]
    lines = [f"Unmounted {node}" for node in result.report.unmounted]
    lines.extend(f"Could not unmount {node}: {reason}" for node, reason in result.report.failed.items())
    return lines or ["Nothing was mounted"]


def render_details(result: DetailsResult) -> List[str]:
    if result.error or result.details is None:
        return [f"Details unavailable: {result.error}"]
    details = result.details
    lines = ["== Layout ==", details.layout, "== Filesystems =="]
    lines.extend(details.identities.values() or ["none"])
    lines.append("== Usage ==")
    lines.extend(
        f"{u.mountpoint}: {u.used_gb:.1f}GB of {u.total_gb:.1f}GB used ({u.percent:.0f}%)"
        for u in details.usage
    )
    if not details.usage:
        lines.append("not mounted")
    lines.append("== Holders ==")
    lines.append(", ".join(str(pid) for pid in details.holders) or "none")
    lines.append("== SMART ==")
    if not details.health.available:
        lines.append("unavailable")
    else:
        lines.append(f"Overall: {details.health.overall}")
        lines.extend(f"{name}: {value}" for name, value in details.health.attributes.items())
    return lines


def _pick_device(devices, operator: ConsoleOperator) -> Optional[BlockDevice]:
    answer = operator.ask("Device number")
    if answer is None or not answer.isdigit():
        return None
    index = int(answer) - 1
    return devices[index] if 0 <= index < len(devices) else None


def _pick_kind(operator: ConsoleOperator) -> Optional[FilesystemKind]:
    kinds = list(FilesystemKind)
    choice = operator.choose(
        "Filesystem", [f"{kind.key:<6} {kind.description}" for kind in kinds]
    )
    return None if choice is None else kinds[choice]


def run_menu(
    orchestrator: DiskLifecycleOrchestrator,
    operator: ConsoleOperator,
    output: OutputFn = print,
) -> int:
    """Interactive loop; returns a process exit code."""
    devices: List[BlockDevice] = []
    refresh = True
    try:
        while True:
            if refresh:
                inventory = orchestrator.enumerate()
                if not inventory.ok:
                    output(f"Error: {inventory.error}")
                    return 1
                devices = inventory.devices
                refresh = False
            for line in render_device_table(devices):
                output(line)

            choice = operator.choose("Action", [text for _, text in MENU_ENTRIES])
            action = MENU_ENTRIES[choice][0] if choice is not None else "quit"
            if action == "quit":
                return 0
            if action == "refresh":
                refresh = True
                continue

            device = _pick_device(devices, operator)
            if device is None:
                output("No device selected")
                continue
            try:
                orchestrator.select_device(device)
            except UserCancelledError as error:
                output(str(error))
                continue

            if action == "format":
                kind = _pick_kind(operator)
                if kind is None:
                    output("No filesystem selected")
                    continue
                label = operator.ask("Volume label (optional)")
                lines = render_format_result(orchestrator.format_disk(device, kind, label=label))
            elif action == "mount":
                path = operator.ask(f"Mount point [{orchestrator.mount_root}/{device.name}]")
                lines = render_mount_result(orchestrator.mount_disk(device, path))
            elif action == "unmount":
                lines = render_unmount_result(orchestrator.unmount_disk(device))
            else:
                lines = render_details(orchestrator.describe_disk(device))
            for line in lines:
                output(line)
            refresh = action != "details"
    except KeyboardInterrupt:
        log.info("Session interrupted by operator")
        output("")
        return 130
    except StorageError as error:
        log.error(f"Unexpected storage error: {error}")
        output(f"Error: {error}")
        return 1
