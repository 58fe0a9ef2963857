import argparse
import os
import sys

from disk_manager.config import settings
from disk_manager.domain.models import FilesystemKind
from disk_manager.logging import LoggerFactory, setup_logging
from disk_manager.services.lifecycle import DiskLifecycleOrchestrator
from disk_manager.storage.commands import command_exists
from disk_manager.storage.devices import DeviceInventory
from disk_manager.storage.format import FilesystemFormatter
from disk_manager.storage.fstab import PersistenceLedger
from disk_manager.storage.mount import MountController
from disk_manager.storage.partition import PartitionTableBuilder
from disk_manager.storage.probe import BlockProbe
from disk_manager.storage.retry import PollConfig
from disk_manager.ui.console import ConsoleOperator, run_menu


CORE_COMMANDS = (
    "lsblk",
    "blkid",
    "parted",
    "partprobe",
    "dd",
    "mount",
    "umount",
    "fuser",
    "udevadm",
)
OPTIONAL_COMMANDS = ("smartctl", "ntfs-3g", "systemctl")


def check_required_commands():
    """Return (missing core tools, missing optional tools)."""
    optional = list(OPTIONAL_COMMANDS)
    for kind in FilesystemKind:
        optional.extend([kind.spec.format_command[0], kind.spec.verify_command[0]])
    missing_core = [name for name in CORE_COMMANDS if not command_exists(name)]
    missing_optional = [name for name in dict.fromkeys(optional) if not command_exists(name)]
    return missing_core, missing_optional


def build_orchestrator(operator, fstab_path=None):
    probe = BlockProbe()
    settle_delay = settings.get_float("settle_delay_seconds", settings.DEFAULT_SETTLE_DELAY)
    preempt_delay = settings.get_float("preempt_delay_seconds", settings.DEFAULT_PREEMPT_DELAY)
    poll = PollConfig(
        interval=settings.get_float(
            "partition_poll_interval_seconds", settings.DEFAULT_PARTITION_POLL_INTERVAL
        ),
        max_attempts=settings.PARTITION_POLL_ATTEMPTS,
    )
    builder = PartitionTableBuilder(
        probe,
        operator.confirm,
        label=settings.get_setting("partition_label", settings.DEFAULT_PARTITION_LABEL),
        settle_delay=settle_delay,
        poll=poll,
        preempt_delay=preempt_delay,
    )
    return DiskLifecycleOrchestrator(
        inventory=DeviceInventory(probe),
        builder=builder,
        formatter=FilesystemFormatter(),
        mounter=MountController(probe, operator.confirm, preempt_delay=preempt_delay),
        ledger=PersistenceLedger(
            probe, fstab_path or settings.get_setting("fstab_path", settings.DEFAULT_FSTAB_PATH)
        ),
        operator=operator,
        mount_root=settings.get_setting("mount_root", settings.DEFAULT_MOUNT_ROOT),
    )


def main(argv=None):
    parser = argparse.ArgumentParser(description="Interactive disk partition, format and mount manager")
    parser.add_argument("-d", "--debug", action="store_true", help="Enable verbose debug output")
    parser.add_argument("--trace", action="store_true", help="Also log low-level probe commands")
    parser.add_argument("--fstab", help="Mount table to record persistent mounts in")
    parser.add_argument("--log-dir", help="Directory for log files")
    args = parser.parse_args(argv)

    setup_logging(debug=args.debug, trace=args.trace, log_dir=args.log_dir)
    log = LoggerFactory.for_system()

    if os.geteuid() != 0:
        print("disk-manager must be run as root", file=sys.stderr)
        return 1

    missing_core, missing_optional = check_required_commands()
    if missing_optional:
        log.warning(f"Optional tools not installed: {', '.join(missing_optional)}")
    if missing_core:
        log.error(f"Required tools not installed: {', '.join(missing_core)}")
        print(f"Missing required tools: {', '.join(missing_core)}", file=sys.stderr)
        return 1

    operator = ConsoleOperator()
    log.info("disk-manager started")
    exit_code = run_menu(build_orchestrator(operator, args.fstab), operator)
    log.info(f"disk-manager exiting with code {exit_code}")
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
