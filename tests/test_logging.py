"""Tests for the structured logging subsystem."""
from __future__ import annotations

import json
from pathlib import Path

import pytest

from padctl.logging import StructuredLogger


def _records(path: Path) -> list[dict[str, object]]:
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


def test_structured_logger_disables_when_directory_unavailable(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Logger gracefully disables itself when log directory cannot be created."""
    log_dir = tmp_path / "logs"

    original_mkdir = Path.mkdir

    def fail_mkdir(self: Path, *args: object, **kwargs: object) -> None:
        if self == log_dir:
            raise PermissionError("no access")
        original_mkdir(self, *args, **kwargs)

    monkeypatch.setattr(Path, "mkdir", fail_mkdir)

    logger = StructuredLogger(log_dir)
    assert logger.enabled is False

    with logger.operation("demo", args={"foo": "bar"}) as op:
        op.success("done")
    logger.info("still fine")


def test_structured_logger_disables_after_write_failure(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Write failures mark the logger disabled so subsequent writes are skipped."""
    logger = StructuredLogger(tmp_path / "logs")
    operations_path = logger._operations_log_path  # type: ignore[attr-defined]

    original_open = Path.open

    def fail_once(self: Path, *args: object, **kwargs: object) -> object:
        if self == operations_path:
            raise OSError("disk full")
        return original_open(self, *args, **kwargs)

    monkeypatch.setattr(Path, "open", fail_once)

    with logger.operation("demo") as op:
        op.success("done")

    assert logger.enabled is False

    with logger.operation("demo-2") as op:
        op.success("done")


def test_operation_records_steps_and_result(tmp_path: Path) -> None:
    """Operation records carry command, args, steps and the final result."""
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation("snapshot create", args={"name": "nightly"}, target={"instance": "gaming"}) as op:
        op.add_step("snapshot.create", status="success", detail="snap-1")
        op.success("Snapshot created.", changed=1, context={"path": Path("/tmp/x")})

    (record,) = _records(tmp_path / "logs" / "operations.jsonl")
    assert record["command"] == "snapshot create"
    assert record["args"] == {"name": "nightly"}
    assert record["target"] == {"instance": "gaming"}
    steps = record["steps"]
    assert isinstance(steps, list)
    assert steps[0]["name"] == "snapshot.create"
    assert steps[0]["detail"] == "snap-1"
    assert record["result"] == {
        "status": "success",
        "message": "Snapshot created.",
        "changed": 1,
        "warnings": [],
        "errors": [],
        "context": {"path": "/tmp/x"},
    }


def test_operation_records_unhandled_exception(tmp_path: Path) -> None:
    """An exception escaping the block is recorded as an error and re-raised."""
    logger = StructuredLogger(tmp_path / "logs")

    with pytest.raises(ValueError), logger.operation("demo"):
        raise ValueError("broken")

    (record,) = _records(tmp_path / "logs" / "operations.jsonl")
    result = record["result"]
    assert isinstance(result, dict)
    assert result["status"] == "error"
    assert result["errors"] == ["broken"]


def test_operation_defaults_to_success(tmp_path: Path) -> None:
    """Blocks that set no result are recorded as completed."""
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation("demo"):
        pass

    (record,) = _records(tmp_path / "logs" / "operations.jsonl")
    result = record["result"]
    assert isinstance(result, dict)
    assert result["status"] == "success"


def test_operation_scope_error_sanitises_context(tmp_path: Path) -> None:
    """Errors default to the message and context becomes JSON-safe."""
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation("demo") as op:
        op.error("boom", rc=4, context={"value": {1, 2}})

    (record,) = _records(tmp_path / "logs" / "operations.jsonl")
    result = record["result"]
    assert isinstance(result, dict)
    assert result["errors"] == ["boom"]
    assert result["rc"] == 4
    assert result["context"] == {"value": "{1, 2}"}


def test_events_are_written_with_level(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    """Leveled events land in events.jsonl and the stdlib logger."""
    logger = StructuredLogger(tmp_path / "logs")

    with caplog.at_level("WARNING", logger="padctl"):
        logger.warning("Volume detach timed out.", volume="vol-1")
        logger.info("Instance started.")

    records = _records(logger.events_path)
    assert records[0]["level"] == "warning"
    assert records[0]["context"] == {"volume": "vol-1"}
    assert "context" not in records[1]
    assert any("Volume detach timed out." in message for message in caplog.messages)
