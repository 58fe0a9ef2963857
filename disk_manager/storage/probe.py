"""Structured queries against the running system's block layer.

Every method goes to the source (lsblk, /proc/mounts, fuser, blkid) on each
call. Nothing is cached: callers re-probe after any mutation.
"""

from __future__ import annotations

import json
import os
import re
import signal
import stat
import subprocess
from dataclasses import dataclass
from typing import Iterable, Iterator, Optional

from disk_manager.logging import LoggerFactory
from disk_manager.storage.commands import command_exists, run_command
from disk_manager.storage.exceptions import ProbeError


log = LoggerFactory.for_inventory()

LSBLK_COLUMNS = "NAME,PATH,TYPE,SIZE,MODEL,FSTYPE,MOUNTPOINT"
PROC_MOUNTS = "/proc/mounts"
_OCTAL_ESCAPE = re.compile(r"\\([0-7]{3})")


@dataclass(frozen=True)
class MountEntry:
    """One row of the live mount table."""

    source: str
    target: str
    fstype: str
    options: str = ""


def _unescape(field: str) -> str:
    # /proc/mounts encodes spaces and tabs as \040, \011
    return _OCTAL_ESCAPE.sub(lambda m: chr(int(m.group(1), 8)), field)


def walk_tree(node: dict) -> Iterator[dict]:
    """Yield an lsblk node and all of its descendants."""
    yield node
    for child in node.get("children", []) or []:
        yield from walk_tree(child)


class BlockProbe:
    """Typed access to devices, mounts, holders and filesystem identity."""

    def __init__(self, mounts_path: str = PROC_MOUNTS):
        self.mounts_path = mounts_path

    # -- device tree -------------------------------------------------------

    def block_tree(self) -> list[dict]:
        """Return the lsblk device tree.

        Raises:
            ProbeError: If lsblk is missing, fails, or returns invalid JSON
        """
        try:
            result = run_command(
                ["lsblk", "-J", "-b", "-o", LSBLK_COLUMNS],
                log_output=False,
                logger=log,
            )
            data = json.loads(result.stdout)
        except (subprocess.CalledProcessError, json.JSONDecodeError, OSError) as error:
            log.error(f"lsblk failed: {error}")
            raise ProbeError(f"Unable to list block devices: {error}") from error
        return data.get("blockdevices", []) or []

    def find_node(self, path: str) -> Optional[dict]:
        for root in self.block_tree():
            for node in walk_tree(root):
                node_path = node.get("path") or f"/dev/{node.get('name')}"
                if node_path == path:
                    return node
        return None

    # -- mounts ------------------------------------------------------------

    def live_mounts(self) -> list[MountEntry]:
        entries: list[MountEntry] = []
        try:
            with open(self.mounts_path, "r", encoding="utf-8") as mounts_file:
                for line in mounts_file:
                    parts = line.split()
                    if len(parts) < 3:
                        continue
                    entries.append(
                        MountEntry(
                            source=_unescape(parts[0]),
                            target=_unescape(parts[1]),
                            fstype=parts[2],
                            options=parts[3] if len(parts) > 3 else "",
                        )
                    )
        except FileNotFoundError:
            log.warning(f"{self.mounts_path} not available; live mount table is empty")
        return entries

    def mounts_of(self, device_path: str) -> list[MountEntry]:
        """Live mounts whose source is ``device_path`` (symlinks resolved)."""
        wanted = os.path.realpath(device_path)
        return [
            entry
            for entry in self.live_mounts()
            if entry.source == device_path
            or (entry.source.startswith("/") and os.path.realpath(entry.source) == wanted)
        ]

    def mount_source(self, target: str) -> Optional[str]:
        target = os.path.normpath(target)
        for entry in reversed(self.live_mounts()):
            if entry.target == target:
                return entry.source
        return None

    def is_mountpoint(self, path: str) -> bool:
        path = os.path.normpath(path)
        if any(entry.target == path for entry in self.live_mounts()):
            return True
        return os.path.ismount(path)

    # -- holders -----------------------------------------------------------

    def holders(self, paths: Iterable[str]) -> list[int]:
        """PIDs holding any of ``paths`` open or using a filesystem they back."""
        paths = list(paths)
        if not command_exists("fuser"):
            log.warning("fuser not installed; holder detection skipped")
            return []
        queries: list[list[str]] = [["fuser", path] for path in paths if os.path.exists(path)]
        for path in paths:
            for entry in self.mounts_of(path):
                queries.append(["fuser", "-m", entry.target])
        pids: set[int] = set()
        for query in queries:
            try:
                result = run_command(query, check=False, log_output=False, logger=log)
            except OSError as error:
                log.debug(f"fuser failed for {query[-1]}: {error}")
                continue
            # PIDs go to stdout, file names and access codes to stderr
            pids.update(int(pid) for pid in re.findall(r"\d+", result.stdout or ""))
        pids.discard(os.getpid())
        return sorted(pids)

    def terminate(self, pids: Iterable[int], sig: int = signal.SIGKILL) -> int:
        """Signal each PID; returns how many were signalled."""
        count = 0
        for pid in pids:
            try:
                os.kill(pid, sig)
                count += 1
                log.info(f"Sent signal {sig} to process {pid}")
            except ProcessLookupError:
                log.debug(f"Process {pid} already gone")
            except PermissionError as error:
                log.warning(f"Not permitted to signal process {pid}: {error}")
        return count

    # -- identity ----------------------------------------------------------

    def _blkid_value(self, path: str, tag: str) -> Optional[str]:
        try:
            result = run_command(
                ["blkid", "-s", tag, "-o", "value", path],
                check=False,
                log_output=False,
                logger=log,
            )
        except OSError as error:
            log.warning(f"blkid unavailable: {error}")
            return None
        value = (result.stdout or "").strip()
        if result.returncode != 0 or not value:
            return None
        return value

    def uuid_of(self, path: str) -> Optional[str]:
        return self._blkid_value(path, "UUID")

    def fstype_of(self, path: str) -> Optional[str]:
        return self._blkid_value(path, "TYPE")

    def is_block_device(self, path: str) -> bool:
        try:
            return stat.S_ISBLK(os.stat(path).st_mode)
        except OSError:
            return False
