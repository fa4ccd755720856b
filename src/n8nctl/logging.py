"""Structured operations journal for n8nctl.

Every CLI command runs inside :meth:`StructuredLogger.operation`. The scope
collects the outcome of the command and appends one JSON document per line to
``operations.jsonl`` inside the configured log directory. Logging is best
effort: if the directory cannot be created or a write fails the logger
disables itself and the command carries on.
"""
from __future__ import annotations

import json
import time
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Literal

Status = Literal["success", "warning", "error"]


class OperationScope:
    """Collects the result of a single logged operation."""

    def __init__(
        self,
        name: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> None:
        """Initialise the scope for operation *name*."""
        self.name = name
        self.args = dict(args or {})
        self.target = dict(target or {})
        self.result: dict[str, object] | None = None

    def success(
        self,
        message: str,
        *,
        changed: int = 0,
        warnings: Iterable[str] = (),
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Record a successful outcome."""
        self._record("success", message, changed=changed, warnings=warnings, context=context)

    def warning(
        self,
        message: str,
        *,
        warnings: Iterable[str] = (),
        errors: Iterable[str] = (),
        changed: int = 0,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Record an outcome that completed with problems."""
        self._record(
            "warning",
            message,
            changed=changed,
            warnings=warnings,
            errors=errors,
            context=context,
        )

    def error(
        self,
        message: str,
        *,
        errors: Iterable[str] | None = None,
        rc: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Record a failed outcome; *errors* defaults to ``[message]``."""
        self._record(
            "error",
            message,
            errors=[message] if errors is None else errors,
            rc=rc,
            context=context,
        )

    def _record(
        self,
        status: Status,
        message: str,
        *,
        changed: int = 0,
        warnings: Iterable[str] = (),
        errors: Iterable[str] = (),
        rc: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        result: dict[str, object] = {
            "status": status,
            "message": message,
            "changed": changed,
            "warnings": [str(item) for item in warnings],
            "errors": [str(item) for item in errors],
        }
        if rc is not None:
            result["rc"] = rc
        if context:
            result["context"] = _sanitise(context)
        self.result = result


class StructuredLogger:
    """Append-only JSON-lines journal of CLI operations."""

    def __init__(self, log_dir: Path) -> None:
        """Prepare the journal under *log_dir*, disabling it on failure."""
        self._log_dir = log_dir
        self._operations_log_path = log_dir / "operations.jsonl"
        self._enabled = True
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
        except OSError:
            self._enabled = False

    @property
    def enabled(self) -> bool:
        """Return whether records are still being written."""
        return self._enabled

    @contextmanager
    def operation(
        self,
        name: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Yield a scope for *name* and journal its result on exit."""
        scope = OperationScope(name, args=args, target=target)
        started = time.monotonic()
        try:
            yield scope
        except BaseException as exc:
            if scope.result is None:
                scope.error(f"{type(exc).__name__}: {exc}")
            raise
        finally:
            if scope.result is None:
                scope.success("Completed.")
            self._write(scope, duration_ms=int((time.monotonic() - started) * 1000))

    def _write(self, scope: OperationScope, *, duration_ms: int) -> None:
        if not self._enabled:
            return
        record = {
            "timestamp": datetime.now(UTC).isoformat(),
            "operation": scope.name,
            "args": _sanitise(scope.args),
            "target": _sanitise(scope.target),
            "duration_ms": duration_ms,
            "result": scope.result,
        }
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, sort_keys=True) + "\n")
        except OSError:
            self._enabled = False


def _sanitise(value: object) -> object:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Mapping):
        return {str(key): _sanitise(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_sanitise(item) for item in value]
    return str(value)


__all__ = ["OperationScope", "StructuredLogger"]
