"""Bounded polling for conditions the kernel completes asynchronously.

Partition table rescans have no synchronous completion signal, so callers
poll for the resulting device node with a fixed interval and a hard attempt
limit. The sleep function is injectable for deterministic tests.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable

from disk_manager.logging import LoggerFactory

log = LoggerFactory.for_system()


@dataclass(frozen=True)
class PollConfig:
    """Configuration for bounded polling.

    Attributes:
        interval: Seconds to wait between attempts
        max_attempts: Maximum number of checks (including the first)
    """

    interval: float = 1.0
    max_attempts: int = 10

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.interval < 0:
            raise ValueError("interval must not be negative")


@dataclass
class PollStats:
    """Outcome of a poll."""

    attempts: int = 0
    total_delay: float = 0.0
    success: bool = False


def poll_until(
    predicate: Callable[[], bool],
    config: PollConfig,
    sleep: Callable[[float], None] = time.sleep,
    description: str = "condition",
) -> PollStats:
    """Check ``predicate`` up to ``config.max_attempts`` times.

    Sleeps ``config.interval`` between attempts, never after the last one.

    Returns:
        PollStats with ``success`` set when the predicate became true
    """
    stats = PollStats()
    for attempt in range(1, config.max_attempts + 1):
        stats.attempts = attempt
        if predicate():
            stats.success = True
            log.debug(f"{description} satisfied after {attempt} attempt(s)")
            return stats
        if attempt < config.max_attempts:
            sleep(config.interval)
            stats.total_delay += config.interval
    log.warning(f"{description} not satisfied after {stats.attempts} attempts")
    return stats
