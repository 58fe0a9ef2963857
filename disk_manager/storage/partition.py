"""Partition table planning and writing.

A plan is validated up front, then applied in a fixed sequence:

    1. preempt holders of the disk and its partitions (operator consent)
    2. unmount every existing partition, tolerating already-unmounted ones
    3. zero the leading sector so no stale signature survives
    4. write a fresh label (GPT by default)
    5. create each plan entry in order, syncing and settling between entries
    6. ask the kernel to rescan and poll for the new device nodes

Table rescans complete asynchronously with no completion signal, so step 6
polls at a fixed interval for at most ``PARTITION_POLL_ATTEMPTS`` attempts.

Nothing here is transactional at the device level: once step 3 has run, a
later failure leaves the disk in a new, possibly incomplete, state. Raised
``PartitionError``s carry ``table_modified=True`` so the caller can say so.

Plan Syntax (manual mode):
    N%        end offset as a percentage of the disk (e.g. "50%")
    N<unit>   absolute end offset, unit MB/GB/TB/MiB/GiB/TiB (e.g. "10GB")
    max       rest of the disk, final entry only
    The final entry always ends at 100%, whatever was typed for it.
"""

from __future__ import annotations

import subprocess
import time
from typing import Callable, Optional, Sequence

from disk_manager.config.settings import PARTITION_POLL_ATTEMPTS
from disk_manager.domain.models import (
    ABSOLUTE_PATTERN,
    MAX_MANUAL_PARTITIONS,
    PERCENT_PATTERN,
    BlockDevice,
    PartitionPlan,
    PlanEntry,
    PlanMode,
    offset_to_bytes,
)
from disk_manager.logging import LoggerFactory
from disk_manager.storage.commands import run_command, settle
from disk_manager.storage.devices import format_device_label, partition_path
from disk_manager.storage.exceptions import InvalidPlanError, PartitionError, PartitionTimeoutError
from disk_manager.storage.mount import unmount_all_partitions
from disk_manager.storage.preemption import ConfirmCallback, preempt_holders
from disk_manager.storage.probe import BlockProbe
from disk_manager.storage.retry import PollConfig, poll_until


log = LoggerFactory.for_partition(job_id="-")


def _parse_end(size: str, index: int) -> str:
    if size.lower() == "max":
        raise InvalidPlanError(f"partition {index}: 'max' is only valid for the final partition")
    match = PERCENT_PATTERN.match(size)
    if match:
        percent = int(match.group(1))
        if not 0 < percent < 100:
            raise InvalidPlanError(
                f"partition {index}: {size} must be between 1% and 99% before the final partition"
            )
        return size
    if ABSOLUTE_PATTERN.match(size):
        return size
    raise InvalidPlanError(f"partition {index}: unrecognised size '{size}'")


class PartitionTableBuilder:
    """Wipes and rewrites a disk's partition table per a validated plan."""

    def __init__(
        self,
        probe: BlockProbe,
        confirm: ConfirmCallback,
        label: str = "gpt",
        settle_delay: float = 2.0,
        poll: Optional[PollConfig] = None,
        preempt_delay: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.probe = probe
        self.confirm = confirm
        self.label = label
        self.settle_delay = settle_delay
        self.poll = poll or PollConfig(interval=1.0, max_attempts=PARTITION_POLL_ATTEMPTS)
        self.preempt_delay = preempt_delay
        self.sleep = sleep

    def create_plan(
        self,
        device: BlockDevice,
        mode: PlanMode,
        sizes: Optional[Sequence[str]] = None,
    ) -> PartitionPlan:
        """Build a validated plan.

        Args:
            device: Target disk (its size bounds absolute offsets)
            mode: SINGLE (whole disk) or MANUAL
            sizes: End offsets for MANUAL mode, one per partition

        Raises:
            InvalidPlanError: If the mode or any size is invalid
        """
        if mode is PlanMode.SINGLE:
            return PartitionPlan(mode=mode, entries=(PlanEntry("0%", "100%"),))
        if mode is not PlanMode.MANUAL:
            raise InvalidPlanError(f"mode '{mode.value}' does not create a partition table")

        sizes = [str(size).strip() for size in (sizes or [])]
        if not 1 <= len(sizes) <= MAX_MANUAL_PARTITIONS:
            raise InvalidPlanError(
                f"partition count must be between 1 and {MAX_MANUAL_PARTITIONS}, got {len(sizes)}"
            )

        entries: list[PlanEntry] = []
        start = "0%"
        start_bytes: Optional[int] = 0
        for index, size in enumerate(sizes, start=1):
            if index == len(sizes):
                if size.lower() not in ("max", "100%"):
                    log.debug(f"Final partition size '{size}' normalized to 100%")
                end = "100%"
            else:
                end = _parse_end(size, index)
            end_bytes = offset_to_bytes(end, device.size)
            if start_bytes is not None and end_bytes is not None:
                if end_bytes <= start_bytes:
                    raise InvalidPlanError(f"partition {index}: end {end} is not after start {start}")
                if device.size > 0 and end_bytes > device.size:
                    raise InvalidPlanError(f"partition {index}: end {end} exceeds the disk size")
            entries.append(PlanEntry(start, end))
            start, start_bytes = end, end_bytes
        return PartitionPlan(mode=mode, entries=tuple(entries))

    def apply(self, device: BlockDevice, plan: PartitionPlan) -> list[str]:
        """Write ``plan`` to ``device``.

        Returns:
            The partition node paths, in plan order

        Raises:
            UserCancelledError: If holders exist and preemption is declined
            PartitionError: If any step fails (``table_modified`` tells
                whether the disk was already changed)
            PartitionTimeoutError: If the new nodes never appear
        """
        path = device.path
        device_label = format_device_label(device)
        log.info(f"Partitioning {device_label}: {plan.count} partition(s), label {self.label}")

        preempt_holders(
            self.probe, path, device.nodes, self.confirm, delay=self.preempt_delay, sleep=self.sleep
        )

        report = unmount_all_partitions(device, self.probe)
        if not report.ok:
            raise PartitionError(
                f"Could not unmount {', '.join(report.failed)} on {device_label}", device=path
            )
        settle(delay=self.settle_delay, sleep=self.sleep)

        self._step(
            ["dd", "if=/dev/zero", f"of={path}", "bs=512", "count=1", "conv=notrunc"],
            path,
            table_modified=False,
        )
        settle(delay=self.settle_delay, sleep=self.sleep)

        self._step(["parted", "-s", path, "mklabel", self.label], path)
        settle(delay=self.settle_delay, sleep=self.sleep)

        for number, entry in enumerate(plan.entries, start=1):
            log.info(f"Creating partition {number}: {entry.start} -> {entry.end}")
            self._step(["parted", "-s", path, "mkpart", "primary", entry.start, entry.end], path)
            settle(delay=self.settle_delay, sleep=self.sleep)

        settle(path, rescan=True, sleep=self.sleep)
        nodes = [partition_path(path, number) for number in range(1, plan.count + 1)]
        missing = list(nodes)

        def nodes_present() -> bool:
            missing[:] = [node for node in nodes if not self.probe.is_block_device(node)]
            return not missing

        stats = poll_until(
            nodes_present,
            self.poll,
            sleep=self.sleep,
            description=f"partition nodes on {path}",
        )
        if not stats.success:
            raise PartitionTimeoutError(path, missing[0], stats.attempts)

        log.info(f"Partition table written on {device_label}: {', '.join(nodes)}")
        return nodes

    def _step(self, command: list[str], device: str, table_modified: bool = True) -> None:
        try:
            run_command(command, logger=log)
        except (subprocess.CalledProcessError, OSError) as error:
            detail = getattr(error, "stderr", None) or str(error)
            log.error(f"{command[0]} failed on {device}: {str(detail).strip()}")
            raise PartitionError(
                f"{' '.join(command[:4])} failed on {device}: {str(detail).strip()}",
                device=device,
                table_modified=table_modified,
            ) from error
