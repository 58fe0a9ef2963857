"""Holder preemption shared by partitioning and mounting.

The tool never locks a device. It can only observe competing holders and,
with the operator's consent, terminate them before proceeding. A holder that
appears between the check and the action is not defended against.
"""

from __future__ import annotations

import time
from typing import Callable, Iterable

from disk_manager.logging import LoggerFactory
from disk_manager.storage.exceptions import UserCancelledError
from disk_manager.storage.probe import BlockProbe

log = LoggerFactory.for_system()

ConfirmCallback = Callable[[str], bool]


def preempt_holders(
    probe: BlockProbe,
    target: str,
    paths: Iterable[str],
    confirm: ConfirmCallback,
    delay: float = 2.0,
    sleep: Callable[[float], None] = time.sleep,
) -> list[int]:
    """Terminate processes holding ``paths`` once the operator agrees.

    Returns:
        The PIDs that were signalled (empty when nothing held the device)

    Raises:
        UserCancelledError: If holders exist and the operator declines
    """
    pids = probe.holders(paths)
    if not pids:
        return []
    pid_list = ", ".join(str(pid) for pid in pids)
    log.warning(f"{target} is held by process(es): {pid_list}")
    if not confirm(f"{target} is in use by process(es) {pid_list}. Terminate them?"):
        log.info(f"Preemption of {target} declined")
        raise UserCancelledError(f"preemption declined for {target}")
    probe.terminate(pids)
    sleep(delay)
    return pids
