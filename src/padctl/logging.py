"""Structured JSON-lines logging for CLI operations and workflow events.

Two append-only files live under the configured log directory:

``operations.jsonl``
    One record per CLI operation (command, arguments, steps, final result).
``events.jsonl``
    Free-form leveled events emitted by workflows (``info``, ``warning``...).

Events are mirrored to the standard :mod:`logging` hierarchy under the
``padctl`` logger so ``--verbose`` can surface them on stderr. Logging must
never break a command: when the directory cannot be created or a write fails
the logger disables itself and keeps going.
"""
from __future__ import annotations

import json
import logging
import threading
import time
import uuid
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def _now_iso() -> str:
    return datetime.now(tz=UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _sanitize(value: object) -> object:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Mapping):
        return {str(key): _sanitize(item) for key, item in value.items()}
    if isinstance(value, Sequence) and not isinstance(value, (bytes, bytearray)):
        return [_sanitize(item) for item in value]
    return str(value)


class OperationScope:
    """Collects steps and the final result for a single CLI operation."""

    def __init__(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> None:
        """Initialise an empty scope for *command*."""
        self.id = uuid.uuid4().hex[:12]
        self.command = command
        self.args = dict(args or {})
        self.target = dict(target or {})
        self.steps: list[dict[str, object]] = []
        self.result: dict[str, object] | None = None
        self._started = time.perf_counter()

    def add_step(self, name: str, *, status: str, detail: str | None = None) -> None:
        """Record an intermediate step."""
        step: dict[str, object] = {"name": name, "status": status, "at": _now_iso()}
        if detail:
            step["detail"] = detail
        self.steps.append(step)

    def success(
        self,
        message: str,
        *,
        changed: int = 0,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation successful."""
        self._set_result("success", message, changed=changed, context=context)

    def warning(
        self,
        message: str,
        *,
        warnings: Sequence[str] | None = None,
        errors: Sequence[str] | None = None,
        changed: int = 0,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation complete with warnings."""
        self._set_result(
            "warning",
            message,
            changed=changed,
            warnings=list(warnings or [message]),
            errors=list(errors or []),
            context=context,
        )

    def error(
        self,
        message: str,
        *,
        errors: Sequence[str] | None = None,
        rc: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation failed."""
        self._set_result(
            "error",
            message,
            errors=list(errors or [message]),
            rc=rc,
            context=context,
        )

    @property
    def duration_ms(self) -> int:
        """Return elapsed milliseconds since the scope opened."""
        return int((time.perf_counter() - self._started) * 1000)

    def _set_result(
        self,
        status: str,
        message: str,
        *,
        changed: int = 0,
        warnings: Sequence[str] | None = None,
        errors: Sequence[str] | None = None,
        rc: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        result: dict[str, object] = {
            "status": status,
            "message": message,
            "changed": changed,
            "warnings": list(warnings or []),
            "errors": list(errors or []),
        }
        if rc is not None:
            result["rc"] = rc
        if context:
            result["context"] = _sanitize(context)
        self.result = result

    def to_record(self) -> dict[str, object]:
        """Return the JSON-serialisable record for this operation."""
        return {
            "id": self.id,
            "timestamp": _now_iso(),
            "command": self.command,
            "args": _sanitize(self.args),
            "target": _sanitize(self.target),
            "steps": list(self.steps),
            "duration_ms": self.duration_ms,
            "result": self.result,
        }


class StructuredLogger:
    """Append operation records and workflow events as JSON lines."""

    def __init__(self, log_dir: Path, *, name: str = "padctl") -> None:
        """Prepare *log_dir*; disable file output when it is unusable."""
        self._log_dir = Path(log_dir).expanduser()
        self._operations_log_path = self._log_dir / "operations.jsonl"
        self._events_log_path = self._log_dir / "events.jsonl"
        self._stdlib = logging.getLogger(name)
        self._write_lock = threading.Lock()
        self._enabled = True
        try:
            self._log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            self._enabled = False
            self._stdlib.debug("Structured logging disabled: %s", exc)

    @property
    def enabled(self) -> bool:
        """Return ``True`` while file output is active."""
        return self._enabled

    @property
    def events_path(self) -> Path:
        """Return the path of the events file."""
        return self._events_log_path

    @contextmanager
    def operation(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Open an operation scope and persist it when the block exits."""
        scope = OperationScope(command, args=args, target=target)
        try:
            yield scope
        except Exception as exc:
            if scope.result is None:
                scope.error(str(exc) or exc.__class__.__name__)
            raise
        finally:
            if scope.result is None:
                scope.success("Completed.")
            self._append(self._operations_log_path, scope.to_record())

    # Leveled events ------------------------------------------------------
    def debug(self, message: str, **context: object) -> None:
        """Record a debug event."""
        self.event("debug", message, context)

    def info(self, message: str, **context: object) -> None:
        """Record an informational event."""
        self.event("info", message, context)

    def warning(self, message: str, **context: object) -> None:
        """Record a warning event."""
        self.event("warning", message, context)

    def error(self, message: str, **context: object) -> None:
        """Record an error event."""
        self.event("error", message, context)

    def event(self, level: str, message: str, context: Mapping[str, object] | None = None) -> None:
        """Record *message* at *level* with JSON-safe *context*."""
        payload = _sanitize(dict(context or {}))
        self._stdlib.log(_LEVELS.get(level, logging.INFO), "%s %s", message, payload or "")
        record = {"timestamp": _now_iso(), "level": level, "message": message}
        if payload:
            record["context"] = payload
        self._append(self._events_log_path, record)

    def _append(self, path: Path, record: Mapping[str, object]) -> None:
        if not self._enabled:
            return
        line = json.dumps(record, sort_keys=False, default=str)
        with self._write_lock:
            try:
                with path.open("a", encoding="utf-8") as handle:
                    handle.write(line + "\n")
            except OSError as exc:
                self._enabled = False
                self._stdlib.debug("Structured logging disabled after write failure: %s", exc)


__all__ = ["OperationScope", "StructuredLogger"]
