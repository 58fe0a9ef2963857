"""Tests for logging setup and helpers."""

from __future__ import annotations

import json

import pytest

from disk_manager import logging as logging_module


@pytest.fixture
def records():
    logging_module.logger.remove()
    captured: list[dict] = []
    logging_module.logger.add(lambda message: captured.append(message.record), level="TRACE")
    yield captured
    logging_module.logger.remove()


def test_setup_logging_creates_log_files(tmp_path):
    """Test file sinks are created in the requested directory."""
    log_dir = tmp_path / "logs"
    logging_module.setup_logging(debug=True, log_dir=str(log_dir))

    logging_module.get_logger(source="test").info("Written to files")
    logging_module.logger.complete()

    assert (log_dir / "operations.log").exists()
    assert (log_dir / "debug.log").exists()
    lines = (log_dir / "structured.jsonl").read_text().splitlines()
    assert json.loads(lines[-1])["record"]["message"] == "Written to files"
    logging_module.logger.remove()


def test_debug_log_only_with_debug(tmp_path):
    logging_module.setup_logging(log_dir=tmp_path)

    assert not (tmp_path / "debug.log").exists()
    logging_module.logger.remove()


def test_get_logger_preserves_context_metadata(records):
    """Test bound logger keeps job_id, tags, and source metadata."""
    log = logging_module.get_logger(job_id="job-123", tags=["format"], source="format")
    log.info("Context test")

    record = records[0]
    assert record["extra"]["job_id"] == "job-123"
    assert record["extra"]["tags"] == ["format"]
    assert record["extra"]["source"] == "format"


@pytest.mark.parametrize(
    "factory,source",
    [
        (logging_module.LoggerFactory.for_inventory, "inventory"),
        (logging_module.LoggerFactory.for_format, "format"),
        (logging_module.LoggerFactory.for_mount, "mount"),
        (logging_module.LoggerFactory.for_ledger, "ledger"),
        (logging_module.LoggerFactory.for_system, "system"),
    ],
)
def test_factory_sources(records, factory, source):
    factory().info("hello")

    assert records[0]["extra"]["source"] == source


def test_partition_logger_gets_job_id(records):
    logging_module.LoggerFactory.for_partition().info("hello")

    assert records[0]["extra"]["job_id"].startswith("partition-")


def test_operation_context_logs_completion(records):
    with logging_module.operation_context("mount", device="/dev/sdb") as log:
        log.info("inside")

    messages = [r["message"] for r in records]
    assert messages == ["Mount started", "inside", "Mount completed"]
    assert records[-1]["extra"]["job_id"].startswith("mount-")
    assert records[-1]["extra"]["device"] == "/dev/sdb"


def test_operation_context_logs_failure_and_reraises(records):
    with pytest.raises(RuntimeError):
        with logging_module.operation_context("format"):
            raise RuntimeError("boom")

    assert records[-1]["message"] == "Format failed"
    assert records[-1]["extra"]["error_type"] == "RuntimeError"


def test_probe_filter_hides_probe_commands_above_trace():
    """Test probe command logs only pass at TRACE level."""
    record = {
        "message": "Running command: lsblk -J -b",
        "extra": {"tags": ["inventory", "probe"]},
        "level": logging_module.logger.level("DEBUG"),
    }

    assert logging_module._should_log_probe(record) is False

    record["level"] = logging_module.logger.level("TRACE")
    assert logging_module._should_log_probe(record) is True


def test_probe_filter_passes_other_messages():
    record = {
        "message": "Found 3 disk(s)",
        "extra": {"tags": ["inventory", "probe"]},
        "level": logging_module.logger.level("DEBUG"),
    }

    assert logging_module._should_log_probe(record) is True
