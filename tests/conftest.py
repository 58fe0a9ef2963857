"""
Pytest configuration and shared fixtures for disk-manager tests.

This module provides common fixtures and test doubles used across all test
modules. No test ever runs a real external command: ``commands`` replaces
``subprocess.run`` and ``shutil.which`` inside the command layer, and
``FakeProbe`` stands in for the live block layer.
"""

import copy
import os
import subprocess
from typing import Any, Callable, Dict, List, Optional
from unittest.mock import Mock

import pytest

from disk_manager.domain.models import BlockDevice, DeviceRole
from disk_manager.storage.probe import MountEntry


# ==============================================================================
# lsblk Fixtures
# ==============================================================================


@pytest.fixture
def candidate_disk() -> Dict[str, Any]:
    """
    Fixture providing an lsblk entry for a removable data disk.

    Returns:
        Dict representing a 16GB disk with one unmounted ext4 partition.
    """
    return {
        "name": "sdb",
        "path": "/dev/sdb",
        "type": "disk",
        "size": 16106127360,
        "model": "USB Flash Drive  ",
        "fstype": None,
        "mountpoint": None,
        "children": [
            {
                "name": "sdb1",
                "path": "/dev/sdb1",
                "type": "part",
                "size": 16105078784,
                "model": None,
                "fstype": "ext4",
                "mountpoint": None,
            }
        ],
    }


@pytest.fixture
def blank_disk() -> Dict[str, Any]:
    """Fixture providing a disk with no partition table."""
    return {
        "name": "sdc",
        "path": "/dev/sdc",
        "type": "disk",
        "size": 32212254720,
        "model": "Portable SSD",
        "fstype": None,
        "mountpoint": None,
    }


@pytest.fixture
def system_disk() -> Dict[str, Any]:
    """
    Fixture providing the disk the running system boots from.

    Returns:
        Dict representing an NVMe disk backing /boot and /.
    """
    return {
        "name": "nvme0n1",
        "path": "/dev/nvme0n1",
        "type": "disk",
        "size": 512110190592,
        "model": "Samsung SSD 980",
        "fstype": None,
        "mountpoint": None,
        "children": [
            {
                "name": "nvme0n1p1",
                "path": "/dev/nvme0n1p1",
                "type": "part",
                "size": 536870912,
                "fstype": "vfat",
                "mountpoint": "/boot",
            },
            {
                "name": "nvme0n1p2",
                "path": "/dev/nvme0n1p2",
                "type": "part",
                "size": 511571132416,
                "fstype": "ext4",
                "mountpoint": "/",
            },
        ],
    }


@pytest.fixture
def lsblk_tree(system_disk, candidate_disk, blank_disk) -> List[Dict[str, Any]]:
    """Fixture providing a full lsblk ``blockdevices`` list."""
    loop = {"name": "loop0", "path": "/dev/loop0", "type": "loop", "size": 4096}
    return [system_disk, candidate_disk, blank_disk, loop]


@pytest.fixture
def candidate_device(candidate_disk) -> BlockDevice:
    return BlockDevice.from_lsblk_dict(candidate_disk, role=DeviceRole.CANDIDATE)


@pytest.fixture
def blank_device(blank_disk) -> BlockDevice:
    return BlockDevice.from_lsblk_dict(blank_disk, role=DeviceRole.CANDIDATE)


# ==============================================================================
# Command Layer Double
# ==============================================================================


class CommandRecorder:
    """Records every command and answers with configured results.

    Responses are matched on the longest configured command prefix. When a
    prefix has several queued responses they are used in order, and the last
    one repeats.
    A handler registered with ``respond_with`` takes precedence and computes
    the (returncode, stdout, stderr) triple from the command when it runs.
    """

    def __init__(self):
        self.calls: List[List[str]] = []
        self.responses: Dict[tuple, List[tuple]] = {}
        self.hooks: List[Callable[[List[str], int], None]] = []
        self.handlers: Dict[tuple, Callable[[List[str]], tuple]] = {}

    def respond(self, *prefix: str, returncode: int = 0, stdout: str = "", stderr: str = ""):
        self.responses.setdefault(tuple(prefix), []).append((returncode, stdout, stderr))

    def respond_with(self, *prefix: str, handler: Callable[[List[str]], tuple]):
        self.handlers[tuple(prefix)] = handler

    def _lookup(self, command: List[str]) -> tuple:
        for length in range(len(command), 0, -1):
            handler = self.handlers.get(tuple(command[:length]))
            if handler:
                return handler(command)
        for length in range(len(command), 0, -1):
            queue = self.responses.get(tuple(command[:length]))
            if queue:
                return queue.pop(0) if len(queue) > 1 else queue[0]
        return (0, "", "")

    def __call__(self, command, check=False, text=True, capture_output=True, **kwargs):
        command = list(command)
        self.calls.append(command)
        returncode, stdout, stderr = self._lookup(command)
        for hook in self.hooks:
            hook(command, returncode)
        if check and returncode != 0:
            raise subprocess.CalledProcessError(returncode, command, output=stdout, stderr=stderr)
        return subprocess.CompletedProcess(command, returncode, stdout, stderr)

    def named(self, name: str) -> List[List[str]]:
        return [call for call in self.calls if call[0] == name]

    def ran(self, *prefix: str) -> bool:
        return any(call[: len(prefix)] == list(prefix) for call in self.calls)


@pytest.fixture
def missing_tools() -> set:
    """Names ``shutil.which`` should report as not installed."""
    return set()


@pytest.fixture
def commands(mocker, missing_tools) -> CommandRecorder:
    """
    Fixture replacing subprocess execution in the command layer.

    Returns:
        CommandRecorder collecting every command run through run_command.
    """
    recorder = CommandRecorder()
    mocker.patch("disk_manager.storage.commands.subprocess.run", side_effect=recorder)
    mocker.patch(
        "disk_manager.storage.commands.shutil.which",
        side_effect=lambda name: None if name in missing_tools else f"/usr/bin/{name}",
    )
    return recorder


# ==============================================================================
# Block Layer Double
# ==============================================================================


class FakeProbe:
    """In-memory stand-in for ``BlockProbe``.

    When linked to a ``CommandRecorder`` it follows successful mount and
    umount commands so that live-mount checks see their effect.
    """

    def __init__(self, tree: Optional[List[Dict[str, Any]]] = None):
        self.tree = tree or []
        self.mounts: List[MountEntry] = []
        self.holder_pids: Dict[str, List[int]] = {}
        self.block_devices: set = set()
        self.uuids: Dict[str, str] = {}
        self.fstypes: Dict[str, str] = {}
        self.terminated: List[int] = []
        self.sticky_mounts: set = set()

    def link(self, recorder: CommandRecorder) -> "FakeProbe":
        recorder.hooks.append(self._follow)
        return self

    def _follow(self, command: List[str], returncode: int) -> None:
        if returncode != 0:
            return
        name = command[0]
        if name == "umount":
            target = command[-1]
            if target in self.sticky_mounts:
                return
            self.mounts = [m for m in self.mounts if target not in (m.target, m.source)]
        elif name == "mount" and command[1] == "-t":
            self.mounts.append(MountEntry(command[-2], command[-1], command[2]))
        elif name == "mount" and command[1] == "--fstab":
            source = self._fstab_source(command[2], command[-1])
            if source:
                self.mounts.append(MountEntry(source, command[-1], "fstab"))
        elif name == "ntfs-3g":
            self.mounts.append(MountEntry(command[-2], command[-1], "fuseblk"))

    def _fstab_source(self, fstab_path: str, target: str) -> Optional[str]:
        with open(fstab_path, encoding="utf-8") as handle:
            for line in handle:
                fields = line.split()
                if len(fields) >= 2 and not fields[0].startswith("#") and fields[1] == target:
                    uuid = fields[0].split("=", 1)[-1]
                    for device, known in self.uuids.items():
                        if known == uuid:
                            return device
        return None

    def add_mount(self, source: str, target: str, fstype: str = "ext4") -> None:
        self.mounts.append(MountEntry(source, os.path.normpath(target), fstype))

    def block_tree(self):
        return copy.deepcopy(self.tree)

    def live_mounts(self):
        return list(self.mounts)

    def mounts_of(self, device_path):
        return [m for m in self.mounts if m.source == device_path]

    def mount_source(self, target):
        target = os.path.normpath(target)
        for entry in reversed(self.mounts):
            if entry.target == target:
                return entry.source
        return None

    def is_mountpoint(self, path):
        path = os.path.normpath(path)
        return any(m.target == path for m in self.mounts)

    def holders(self, paths):
        pids = set()
        for path in paths:
            pids.update(self.holder_pids.get(path, []))
        return sorted(pids)

    def terminate(self, pids, sig=9):
        pids = list(pids)
        self.terminated.extend(pids)
        for path in self.holder_pids:
            self.holder_pids[path] = [p for p in self.holder_pids[path] if p not in pids]
        return len(pids)

    def uuid_of(self, path):
        return self.uuids.get(path)

    def fstype_of(self, path):
        return self.fstypes.get(path)

    def is_block_device(self, path):
        return path in self.block_devices


@pytest.fixture
def probe(lsblk_tree, commands) -> FakeProbe:
    """Fixture providing a FakeProbe over ``lsblk_tree`` linked to ``commands``."""
    return FakeProbe(lsblk_tree).link(commands)


# ==============================================================================
# Operator Double
# ==============================================================================


class ScriptedOperator:
    """Operator that answers from pre-loaded queues and records prompts.

    An exhausted queue behaves like an operator who gives no answer.
    """

    def __init__(self, confirms=None, answers=None, choices=None):
        self.confirms = list(confirms or [])
        self.answers = list(answers or [])
        self.choices = list(choices or [])
        self.prompts: List[str] = []

    def confirm(self, message: str) -> bool:
        self.prompts.append(message)
        return self.confirms.pop(0) if self.confirms else False

    def ask(self, prompt: str) -> Optional[str]:
        self.prompts.append(prompt)
        return self.answers.pop(0) if self.answers else None

    def choose(self, prompt: str, options) -> Optional[int]:
        self.prompts.append(prompt)
        return self.choices.pop(0) if self.choices else None


@pytest.fixture
def operator() -> ScriptedOperator:
    return ScriptedOperator()


@pytest.fixture
def no_sleep() -> Mock:
    """Fixture providing a sleep replacement that records requested delays."""
    return Mock(name="sleep")


# ==============================================================================
# Settings / Filesystem Fixtures
# ==============================================================================


@pytest.fixture
def temp_settings_file(tmp_path):
    """
    Fixture providing a temporary settings file path.

    Args:
        tmp_path: pytest's built-in temporary directory fixture.

    Returns:
        Path to a temporary settings.json file (not created).
    """
    return tmp_path / "settings.json"


@pytest.fixture
def fstab_file(tmp_path):
    """Fixture providing a small existing mount table."""
    path = tmp_path / "fstab"
    path.write_text(
        "# /etc/fstab: static file system information.\n"
        "UUID=1111-aaaa / ext4 errors=remount-ro 0 1\n"
        "UUID=2222-BBBB /boot vfat umask=0077 0 1\n",
        encoding="utf-8",
    )
    return path


@pytest.fixture
def mount_dir(tmp_path):
    path = tmp_path / "mnt" / "sdb"
    path.mkdir(parents=True)
    return path
