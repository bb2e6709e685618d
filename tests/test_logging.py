"""Tests for the structured operations log."""
from __future__ import annotations

import json
from pathlib import Path

import pytest

from miniosetup.logging import StructuredLogger


def _records(logger: StructuredLogger) -> list[dict[str, object]]:
    lines = logger.path.read_text(encoding="utf-8").splitlines()
    return [json.loads(line) for line in lines]


def test_operation_writes_steps_and_result(tmp_path: Path) -> None:
    """A completed operation is one JSON line with ordered steps."""
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation("install", args={"domain": "storage.example.test"}) as op:
        op.add_step("probe", detail="clean host")
        op.add_step("firewall", status="skipped")
        op.success("Installed", changed=3)

    (record,) = _records(logger)
    assert record["op"] == "install"
    assert record["args"] == {"domain": "storage.example.test"}
    assert [step["name"] for step in record["steps"]] == ["probe", "firewall"]
    assert record["steps"][1]["status"] == "skipped"
    assert "detail" not in record["steps"][1]
    assert record["result"]["status"] == "success"
    assert record["result"]["changed"] == 3
    assert record["result"]["rc"] == 0


def test_exception_marks_operation_failed(tmp_path: Path) -> None:
    """An escaping exception is logged as an error and re-raised."""
    logger = StructuredLogger(tmp_path / "logs")

    with pytest.raises(ValueError):
        with logger.operation("install"):
            raise ValueError("bad input")

    (record,) = _records(logger)
    assert record["result"]["status"] == "error"
    assert record["result"]["message"] == "ValueError: bad input"
    assert record["result"]["rc"] == 1


def test_result_set_before_exception_is_kept(tmp_path: Path) -> None:
    logger = StructuredLogger(tmp_path / "logs")

    with pytest.raises(RuntimeError):
        with logger.operation("cleanup") as op:
            op.error("Port 9000 is still bound", rc=4)
            raise RuntimeError("port")

    (record,) = _records(logger)
    assert record["result"]["rc"] == 4


def test_missing_result_is_incomplete(tmp_path: Path) -> None:
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation("probe"):
        pass

    (record,) = _records(logger)
    assert record["result"]["status"] == "incomplete"


def test_warning_sanitises_context(tmp_path: Path) -> None:
    """Warnings are recorded with JSON-safe context values."""
    logger = StructuredLogger(tmp_path / "logs")

    class Custom:
        def __str__(self) -> str:
            return "<custom>"

    with logger.operation("install", args={"data_dir": Path("/mnt/data")}) as op:
        op.warning(
            "Installation aborted",
            errors=("existing installation kept",),
            rc=1,
            context={"path": Path("/etc/minio"), "obj": Custom(), "ports": (9000, 9001)},
        )

    (record,) = _records(logger)
    assert record["args"] == {"data_dir": "/mnt/data"}
    result = record["result"]
    assert result["status"] == "warning"
    assert result["warnings"] == ["Installation aborted"]
    assert result["errors"] == ["existing installation kept"]
    assert result["rc"] == 1
    assert result["context"] == {"path": "/etc/minio", "obj": "<custom>", "ports": [9000, 9001]}


def test_logger_disables_when_directory_unavailable(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """The logger disables itself when the log directory cannot be created."""
    log_dir = tmp_path / "logs"

    original_mkdir = Path.mkdir

    def fail_mkdir(self: Path, *args: object, **kwargs: object) -> None:
        if self == log_dir:
            raise PermissionError("no access")
        original_mkdir(self, *args, **kwargs)

    monkeypatch.setattr(Path, "mkdir", fail_mkdir)

    logger = StructuredLogger(log_dir)
    assert logger._enabled is False  # type: ignore[attr-defined]

    with logger.operation("install") as op:
        op.success("done")


def test_logger_disables_after_write_failure(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Write failures disable the logger so later writes are skipped."""
    logger = StructuredLogger(tmp_path / "logs")

    original_open = Path.open

    def fail_open(self: Path, *args: object, **kwargs: object) -> object:
        if self == logger.path:
            raise OSError("disk full")
        return original_open(self, *args, **kwargs)

    monkeypatch.setattr(Path, "open", fail_open)

    with logger.operation("install") as op:
        op.success("done")

    assert logger._enabled is False  # type: ignore[attr-defined]

    with logger.operation("probe") as op:
        op.success("done")
