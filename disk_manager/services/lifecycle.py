"""Disk lifecycle workflows: format, mount, unmount, describe.

The orchestrator composes the storage components and owns every operator
interaction that gates a destructive step. Each workflow takes the target
device explicitly, re-probes it, and returns a result object carrying either
the outcome or the first fatal error. Nothing here prints.

Format failures are handled asymmetrically: with a MANUAL plan a failing
partition is recorded and the remaining partitions are still formatted,
while SINGLE and NONE plans stop at the first failure. A ``table_modified``
flag on the result tells the operator when the disk was left repartitioned
even though the workflow failed.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional, Sequence

from disk_manager.domain.models import (
    MAX_MANUAL_PARTITIONS,
    BlockDevice,
    FilesystemKind,
    PartitionPlan,
    PlanMode,
)
from disk_manager.logging import LoggerFactory, operation_context
from disk_manager.services.operator import Operator
from disk_manager.storage.devices import DeviceInventory, format_device_label
from disk_manager.storage.exceptions import (
    FormatError,
    InvalidPlanError,
    MountError,
    PartitionError,
    StorageError,
    UserCancelledError,
)
from disk_manager.storage.format import FilesystemFormatter
from disk_manager.storage.fstab import LedgerOutcome, PersistenceLedger
from disk_manager.storage.health import DiskDetails, describe_device
from disk_manager.storage.mount import MountController, MountResult, UnmountReport, unmount_all_partitions
from disk_manager.storage.partition import PartitionTableBuilder
from disk_manager.storage.preemption import preempt_holders


log = LoggerFactory.for_system()

PLAN_CHOICES = (
    (PlanMode.SINGLE, "Single partition (whole disk)"),
    (PlanMode.MANUAL, f"Manual (1-{MAX_MANUAL_PARTITIONS} partitions)"),
    (PlanMode.NONE, "No partition table (format the raw device)"),
)


@dataclass
class InventoryResult:
    devices: list[BlockDevice] = field(default_factory=list)
    error: Optional[StorageError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class PartitionFormatOutcome:
    partition: str
    error: Optional[FormatError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class FormatResult:
    device: str
    kind: FilesystemKind
    plan: Optional[PartitionPlan] = None
    partitions: list[PartitionFormatOutcome] = field(default_factory=list)
    table_modified: bool = False
    error: Optional[StorageError] = None

    @property
    def failed_partitions(self) -> list[str]:
        return [outcome.partition for outcome in self.partitions if not outcome.ok]

    @property
    def ok(self) -> bool:
        return self.error is None and not self.failed_partitions


@dataclass
class MountWorkflowResult:
    device: str
    partition: Optional[str] = None
    mountpoint: Optional[str] = None
    kind: Optional[FilesystemKind] = None
    mount: Optional[MountResult] = None
    ledger: Optional[LedgerOutcome] = None
    error: Optional[StorageError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class UnmountResult:
    device: str
    report: UnmountReport = field(default_factory=UnmountReport)
    error: Optional[StorageError] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.report.ok


@dataclass
class DetailsResult:
    device: str
    details: Optional[DiskDetails] = None
    error: Optional[StorageError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class DiskLifecycleOrchestrator:
    """Runs the operator-attended disk workflows."""

    def __init__(
        self,
        inventory: DeviceInventory,
        builder: PartitionTableBuilder,
        formatter: FilesystemFormatter,
        mounter: MountController,
        ledger: PersistenceLedger,
        operator: Operator,
        mount_root: str = "/mnt",
    ):
        self.inventory = inventory
        self.builder = builder
        self.formatter = formatter
        self.mounter = mounter
        self.ledger = ledger
        self.operator = operator
        self.mount_root = mount_root

    @property
    def probe(self):
        return self.inventory.probe

    # -- selection ---------------------------------------------------------

    def enumerate(self) -> InventoryResult:
        try:
            return InventoryResult(devices=self.inventory.enumerate())
        except StorageError as error:
            return InventoryResult(error=error)

    def select_device(self, device: BlockDevice) -> BlockDevice:
        """Gate a selection: SYSTEM and busy disks need explicit consent.

        Raises:
            UserCancelledError: If the operator declines a warning
        """
        label = format_device_label(device)
        if device.is_system and not self.operator.confirm(
            f"WARNING: {label} holds system mounts. Modifying it can make this machine unbootable. Continue?"
        ):
            raise UserCancelledError(f"selection of system disk {device.name}")
        if device.busy and not self.operator.confirm(
            f"WARNING: {label} is in use (mounted or held open). Continue?"
        ):
            raise UserCancelledError(f"selection of busy disk {device.name}")
        return device

    # -- format ------------------------------------------------------------

    def format_disk(
        self,
        device: BlockDevice,
        kind: FilesystemKind,
        plan_mode: Optional[PlanMode] = None,
        sizes: Optional[Sequence[str]] = None,
        label: Optional[str] = None,
    ) -> FormatResult:
        """Repartition (per plan mode) and format ``device`` as ``kind``."""
        result = FormatResult(device=device.path, kind=kind)
        try:
            with operation_context("format", device=device.path, kind=kind.key):
                self._format(device, kind, plan_mode, sizes, label, result)
        except StorageError as error:
            result.error = error
            if isinstance(error, PartitionError) and error.table_modified:
                result.table_modified = True
        return result

    def _format(self, device, kind, plan_mode, sizes, label, result: FormatResult) -> None:
        typed = self.operator.ask(
            f"ALL DATA ON {format_device_label(device)} WILL BE LOST. "
            f"Type the device name ({device.name}) to confirm"
        )
        if (typed or "").strip() != device.name:
            raise UserCancelledError(f"device name confirmation for {device.name} did not match")

        device = self.inventory.refresh(device)
        # best effort; held mounts are released again after holder preemption
        report = unmount_all_partitions(device, self.probe)
        if not report.ok:
            log.warning(f"Still mounted before preemption: {', '.join(report.failed)}")

        mode = plan_mode or self._ask_plan_mode()
        if mode is PlanMode.NONE:
            preempt_holders(
                self.probe,
                device.path,
                device.nodes,
                self.operator.confirm,
                delay=self.builder.preempt_delay,
                sleep=self.builder.sleep,
            )
            report = unmount_all_partitions(device, self.probe)
            if not report.ok:
                raise MountError(
                    f"Could not unmount {', '.join(report.failed)}; format aborted",
                    device=device.path,
                )
            nodes = [device.path]
        else:
            if mode is PlanMode.MANUAL and sizes is None:
                sizes = self._ask_sizes()
            result.plan = self.builder.create_plan(device, mode, sizes)
            try:
                nodes = self.builder.apply(device, result.plan)
            except PartitionError as error:
                result.table_modified = error.table_modified
                raise
            result.table_modified = True

        for node in nodes:
            try:
                self.formatter.format(node, kind, label)
                result.partitions.append(PartitionFormatOutcome(partition=node))
            except FormatError as error:
                if mode is not PlanMode.MANUAL:
                    raise
                result.partitions.append(PartitionFormatOutcome(partition=node, error=error))

    def _ask_plan_mode(self) -> PlanMode:
        choice = self.operator.choose("Partition layout", [text for _, text in PLAN_CHOICES])
        if choice is None or not 0 <= choice < len(PLAN_CHOICES):
            raise UserCancelledError("no partition layout chosen")
        return PLAN_CHOICES[choice][0]

    def _ask_sizes(self) -> list[str]:
        answer = self.operator.ask(f"Number of partitions (1-{MAX_MANUAL_PARTITIONS})")
        if answer is None:
            raise UserCancelledError("no partition count given")
        try:
            count = int(answer.strip())
        except ValueError:
            raise InvalidPlanError(f"partition count '{answer.strip()}' is not a number") from None
        if not 1 <= count <= MAX_MANUAL_PARTITIONS:
            raise InvalidPlanError(
                f"partition count must be between 1 and {MAX_MANUAL_PARTITIONS}, got {count}"
            )
        sizes = []
        for number in range(1, count):
            size = self.operator.ask(f"End of partition {number} (e.g. 50%, 10GB)")
            if size is None:
                raise UserCancelledError(f"no size given for partition {number}")
            sizes.append(size)
        # the final partition always takes the rest of the disk
        sizes.append("max")
        return sizes

    # -- mount / unmount ---------------------------------------------------

    def mount_disk(self, device: BlockDevice, mount_path: Optional[str] = None) -> MountWorkflowResult:
        """Mount the disk's first partition (or raw device) and offer persistence."""
        result = MountWorkflowResult(device=device.path)
        try:
            with operation_context("mount", device=device.path):
                self._mount(device, mount_path, result)
        except StorageError as error:
            result.error = error
        return result

    def _mount(self, device, mount_path, result: MountWorkflowResult) -> None:
        device = self.inventory.refresh(device)
        partition = self.inventory.resolve_target_partition(device)
        result.partition = partition
        result.mountpoint = os.path.normpath(mount_path or os.path.join(self.mount_root, device.name))

        fstype = self.probe.fstype_of(partition)
        if not fstype:
            fstype = next((p.fstype for p in device.partitions if p.path == partition), device.fstype)
        kind = FilesystemKind.from_fstype(fstype)
        if kind is None:
            detail = f"an unsupported filesystem ({fstype})" if fstype else "no filesystem"
            raise MountError(f"{partition} has {detail}", device=partition)
        result.kind = kind

        result.mount = self.mounter.mount(partition, result.mountpoint, kind)
        if self.operator.confirm(
            f"Add {partition} to {self.ledger.fstab_path} so it mounts at {result.mountpoint} on boot?"
        ):
            result.ledger = self.ledger.record_mount(partition, result.mountpoint, kind)

    def unmount_disk(self, device: BlockDevice) -> UnmountResult:
        """Unmount every partition, reporting per-partition failures."""
        result = UnmountResult(device=device.path)
        try:
            with operation_context("unmount", device=device.path):
                result.report = unmount_all_partitions(self.inventory.refresh(device), self.probe)
        except StorageError as error:
            result.error = error
        return result

    def describe_disk(self, device: BlockDevice) -> DetailsResult:
        result = DetailsResult(device=device.path)
        try:
            result.details = describe_device(self.inventory.refresh(device), self.probe)
        except StorageError as error:
            result.error = error
        return result
