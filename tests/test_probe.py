"""Tests for storage/probe.py - structured block layer queries."""

import json
import os
import subprocess
from unittest.mock import Mock, patch

import pytest

from disk_manager.storage.exceptions import ProbeError
from disk_manager.storage.probe import BlockProbe, MountEntry, walk_tree


@pytest.fixture
def mounts_file(tmp_path):
    path = tmp_path / "mounts"
    path.write_text(
        "/dev/nvme0n1p2 / ext4 rw,relatime 0 0\n"
        "proc /proc proc rw 0 0\n"
        "/dev/sdb1 /media/My\\040Drive vfat rw,uid=1000 0 0\n"
    )
    return path


class TestBlockTree:
    """Tests for BlockProbe.block_tree()."""

    @patch("disk_manager.storage.probe.run_command")
    def test_parses_lsblk_json(self, mock_run, lsblk_tree):
        mock_run.return_value = Mock(returncode=0, stdout=json.dumps({"blockdevices": lsblk_tree}))

        tree = BlockProbe().block_tree()

        assert [node["name"] for node in tree] == ["nvme0n1", "sdb", "sdc", "loop0"]
        command = mock_run.call_args.args[0]
        assert command[:3] == ["lsblk", "-J", "-b"]

    @patch("disk_manager.storage.probe.run_command")
    def test_invalid_json(self, mock_run):
        mock_run.return_value = Mock(returncode=0, stdout="not json")

        with pytest.raises(ProbeError):
            BlockProbe().block_tree()

    @patch("disk_manager.storage.probe.run_command")
    def test_lsblk_failure(self, mock_run):
        mock_run.side_effect = subprocess.CalledProcessError(1, ["lsblk"])

        with pytest.raises(ProbeError, match="Unable to list block devices"):
            BlockProbe().block_tree()

    @patch("disk_manager.storage.probe.run_command")
    def test_lsblk_missing(self, mock_run):
        mock_run.side_effect = FileNotFoundError("lsblk")

        with pytest.raises(ProbeError):
            BlockProbe().block_tree()

    @patch("disk_manager.storage.probe.run_command")
    def test_find_node_searches_children(self, mock_run, lsblk_tree):
        mock_run.return_value = Mock(returncode=0, stdout=json.dumps({"blockdevices": lsblk_tree}))

        node = BlockProbe().find_node("/dev/nvme0n1p2")

        assert node["mountpoint"] == "/"
        assert BlockProbe().find_node("/dev/sdz") is None

    def test_walk_tree_depth_first(self, system_disk):
        names = [node["name"] for node in walk_tree(system_disk)]

        assert names == ["nvme0n1", "nvme0n1p1", "nvme0n1p2"]


class TestMounts:
    """Tests for the live mount table queries."""

    def test_live_mounts_unescapes_paths(self, mounts_file):
        entries = BlockProbe(str(mounts_file)).live_mounts()

        assert entries[2] == MountEntry("/dev/sdb1", "/media/My Drive", "vfat", "rw,uid=1000")

    def test_missing_mount_table(self, tmp_path):
        assert BlockProbe(str(tmp_path / "absent")).live_mounts() == []

    def test_mounts_of(self, mounts_file):
        probe = BlockProbe(str(mounts_file))

        assert [e.target for e in probe.mounts_of("/dev/sdb1")] == ["/media/My Drive"]
        assert probe.mounts_of("/dev/sdc1") == []

    def test_mount_source(self, mounts_file):
        probe = BlockProbe(str(mounts_file))

        assert probe.mount_source("/media/My Drive/") == "/dev/sdb1"
        assert probe.mount_source("/srv") is None

    def test_is_mountpoint(self, mounts_file, tmp_path):
        probe = BlockProbe(str(mounts_file))

        assert probe.is_mountpoint("/media/My Drive")
        assert not probe.is_mountpoint(str(tmp_path))


class TestHolders:
    """Tests for BlockProbe.holders() and terminate()."""

    @patch("disk_manager.storage.probe.command_exists", return_value=True)
    @patch("disk_manager.storage.probe.run_command")
    def test_collects_pids_from_fuser(self, mock_run, mock_exists, tmp_path):
        node = tmp_path / "sdb"
        node.write_text("")
        mock_run.return_value = Mock(returncode=0, stdout=" 1234 5678", stderr=f"{node}:")

        pids = BlockProbe(str(tmp_path / "mounts")).holders([str(node)])

        assert pids == [1234, 5678]
        mock_run.assert_called_once()
        assert mock_run.call_args.args[0] == ["fuser", str(node)]

    @patch("disk_manager.storage.probe.command_exists", return_value=True)
    @patch("disk_manager.storage.probe.run_command")
    def test_queries_mount_targets(self, mock_run, mock_exists, mounts_file):
        mock_run.return_value = Mock(returncode=0, stdout=" 42")

        pids = BlockProbe(str(mounts_file)).holders(["/dev/sdb1"])

        assert pids == [42]
        assert ["fuser", "-m", "/media/My Drive"] in [c.args[0] for c in mock_run.call_args_list]

    @patch("disk_manager.storage.probe.command_exists", return_value=True)
    @patch("disk_manager.storage.probe.run_command")
    def test_own_pid_excluded(self, mock_run, mock_exists, tmp_path):
        node = tmp_path / "sdb"
        node.write_text("")
        mock_run.return_value = Mock(returncode=0, stdout=f" {os.getpid()} 99")

        assert BlockProbe(str(tmp_path / "mounts")).holders([str(node)]) == [99]

    @patch("disk_manager.storage.probe.command_exists", return_value=False)
    @patch("disk_manager.storage.probe.run_command")
    def test_no_fuser(self, mock_run, mock_exists):
        assert BlockProbe().holders(["/dev/sdb"]) == []
        mock_run.assert_not_called()

    @patch("disk_manager.storage.probe.os.kill")
    def test_terminate_tolerates_gone_processes(self, mock_kill):
        mock_kill.side_effect = [None, ProcessLookupError(), PermissionError()]

        assert BlockProbe().terminate([10, 11, 12]) == 1
        assert mock_kill.call_count == 3


class TestIdentity:
    """Tests for blkid lookups."""

    @patch("disk_manager.storage.probe.run_command")
    def test_uuid_of(self, mock_run):
        mock_run.return_value = Mock(returncode=0, stdout="abcd-1234\n")

        assert BlockProbe().uuid_of("/dev/sdb1") == "abcd-1234"
        assert mock_run.call_args.args[0] == ["blkid", "-s", "UUID", "-o", "value", "/dev/sdb1"]

    @patch("disk_manager.storage.probe.run_command")
    def test_uuid_missing(self, mock_run):
        mock_run.return_value = Mock(returncode=2, stdout="")

        assert BlockProbe().uuid_of("/dev/sdb1") is None

    @patch("disk_manager.storage.probe.run_command")
    def test_fstype_of(self, mock_run):
        mock_run.return_value = Mock(returncode=0, stdout="ntfs\n")

        assert BlockProbe().fstype_of("/dev/sdb1") == "ntfs"

    def test_regular_file_is_not_block_device(self, tmp_path):
        path = tmp_path / "file"
        path.write_text("")

        assert BlockProbe().is_block_device(str(path)) is False
        assert BlockProbe().is_block_device(str(tmp_path / "absent")) is False
