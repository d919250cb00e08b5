"""File-backed infrastructure reconciler.

Stack state is persisted under ``stacks_dir`` using the layout of a local
state backend::

    stacks/<project>/<stack>.json            current deployment
    stacks/<project>/<stack>.json.bak        previous deployment
    stacks/<project>/<stack>.json.attrs      metadata of the current file
    history/<project>/<stack>/               one file per update
    backups/<project>/<stack>/               timestamped copies
    locks/organization/<project>/<stack>/    lock files held during ``up``

:meth:`LocalReconciler.up` is idempotent per :class:`~padctl.models.StackKey`:
when the declared resource is already recorded and still exists in the cloud
its id is returned instead of creating a duplicate.
"""
from __future__ import annotations

import json
import os
import shutil
import socket
import tempfile
import uuid
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from .errors import StackStoreError
from .logging import StructuredLogger
from .models import StackKey

STACK_SUFFIXES: tuple[str, ...] = (".json", ".json.bak", ".json.attrs", ".json.bak.attrs")


def _timestamp() -> str:
    return datetime.now(tz=UTC).strftime("%Y%m%dT%H%M%S%fZ")


@dataclass(slots=True, frozen=True)
class ResourceProgram:
    """Declarative description of the single resource a stack manages."""

    type: str
    name: str
    create: Callable[[], str]
    exists: Callable[[str], bool]
    inputs: Mapping[str, object] = field(default_factory=dict)

    @property
    def urn(self) -> str:
        """Return the stable identifier of the resource within its stack."""
        return f"{self.type}::{self.name}"


@dataclass(frozen=True)
class StackStore:
    """Read and write persisted stack files below *root*."""

    root: Path

    def __post_init__(self) -> None:
        """Normalise the root path after initialisation."""
        object.__setattr__(self, "root", self.root.expanduser())

    # Paths ---------------------------------------------------------------
    def stack_path(self, key: StackKey) -> Path:
        """Return the current deployment file for *key*."""
        return self.root / "stacks" / key.project / f"{key.stack}.json"

    def history_dir(self, key: StackKey) -> Path:
        """Return the history directory for *key*."""
        return self.root / "history" / key.project / key.stack

    def backup_dir(self, key: StackKey) -> Path:
        """Return the backup directory for *key*."""
        return self.root / "backups" / key.project / key.stack

    def lock_dir(self, key: StackKey) -> Path:
        """Return the lock directory for *key*."""
        return self.root / "locks" / "organization" / key.project / key.stack

    # Reading -------------------------------------------------------------
    def exists(self, key: StackKey) -> bool:
        """Return ``True`` when a deployment file is present for *key*."""
        return self.stack_path(key).exists()

    def load(self, key: StackKey) -> dict[str, Any]:
        """Return the deployment document for *key* (empty when absent)."""
        path = self.stack_path(key)
        if not path.exists():
            return _empty_document(key)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise StackStoreError(
                f"Failed to read stack file {path}: {exc}",
                context={"stack": str(key), "path": str(path)},
            ) from exc
        if not isinstance(data, dict):
            raise StackStoreError(
                f"Stack file {path} must contain a JSON object.",
                context={"stack": str(key), "path": str(path)},
            )
        data.setdefault("deployment", {}).setdefault("resources", [])
        return data

    def resources(self, key: StackKey) -> list[dict[str, Any]]:
        """Return the resources recorded for *key*."""
        resources = self.load(key).get("deployment", {}).get("resources", [])
        return [dict(item) for item in resources if isinstance(item, Mapping)]

    def lock_files(self, key: StackKey) -> list[Path]:
        """Return lock files currently present for *key*."""
        directory = self.lock_dir(key)
        if not directory.is_dir():
            return []
        return sorted(directory.glob("*.json"))

    # Writing -------------------------------------------------------------
    def save(self, key: StackKey, document: Mapping[str, Any]) -> None:
        """Persist *document*, keeping the previous file as ``.json.bak``."""
        try:
            self._write_document(key, document)
        except OSError as exc:
            raise StackStoreError(
                f"Failed to write stack {key}: {exc}",
                context={"stack": str(key)},
            ) from exc

    def _write_document(self, key: StackKey, document: Mapping[str, Any]) -> None:
        path = self.stack_path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        stamp = _timestamp()
        if path.exists():
            shutil.copy2(path, path.with_name(path.name + ".bak"))
            attrs = path.with_name(path.name + ".attrs")
            if attrs.exists():
                shutil.copy2(attrs, path.with_name(path.name + ".bak.attrs"))
        payload = json.dumps(document, indent=2, sort_keys=False)
        _atomic_write(path, payload)
        resources = document.get("deployment", {}).get("resources", [])
        _atomic_write(
            path.with_name(path.name + ".attrs"),
            json.dumps({"updated": stamp, "resource_count": len(resources)}),
        )

        history = self.history_dir(key)
        history.mkdir(parents=True, exist_ok=True)
        _atomic_write(history / f"{key.stack}-{stamp}.history.json", payload)
        backups = self.backup_dir(key)
        backups.mkdir(parents=True, exist_ok=True)
        _atomic_write(backups / f"{key.stack}.{stamp}.json", payload)

    def remove_stack_files(self, key: StackKey) -> list[Path]:
        """Delete the deployment file and its companions; return what was removed."""
        path = self.stack_path(key)
        removed: list[Path] = []
        for suffix in STACK_SUFFIXES:
            candidate = path.with_name(f"{key.stack}{suffix}")
            try:
                candidate.unlink()
            except FileNotFoundError:
                continue
            removed.append(candidate)
        _remove_empty_dir(path.parent)
        return removed

    def remove_lock_files(self, key: StackKey) -> list[Path]:
        """Delete every lock file for *key*; return the removed paths."""
        removed: list[Path] = []
        for lock in self.lock_files(key):
            lock.unlink(missing_ok=True)
            removed.append(lock)
        _remove_empty_dir(self.lock_dir(key))
        return removed

    def purge(self, key: StackKey) -> list[Path]:
        """Remove stack, history, backup and lock files for *key*."""
        removed = self.remove_stack_files(key)
        for directory in (self.history_dir(key), self.backup_dir(key), self.lock_dir(key)):
            if directory.exists():
                shutil.rmtree(directory)
                removed.append(directory)
        return removed

    @contextmanager
    def lock(self, key: StackKey) -> Iterator[Path]:
        """Hold a lock file for *key* for the duration of the block."""
        directory = self.lock_dir(key)
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / f"{uuid.uuid4().hex}.json"
        details = {
            "pid": os.getpid(),
            "host": socket.gethostname(),
            "timestamp": datetime.now(tz=UTC).isoformat(),
            "stack": str(key),
        }
        _atomic_write(path, json.dumps(details))
        try:
            yield path
        finally:
            path.unlink(missing_ok=True)
            _remove_empty_dir(directory)


@dataclass(slots=True)
class LocalReconciler:
    """Realise a :class:`ResourceProgram` idempotently per stack key."""

    store: StackStore
    logger: StructuredLogger

    def up(self, key: StackKey, program: ResourceProgram) -> str:
        """Ensure *program*'s resource exists and return its id."""
        with self.store.lock(key):
            document = self.store.load(key)
            resources: list[dict[str, Any]] = document["deployment"]["resources"]
            recorded = next((item for item in resources if item.get("urn") == program.urn), None)
            if recorded is not None and recorded.get("id"):
                resource_id = str(recorded["id"])
                if program.exists(resource_id):
                    self.logger.info(
                        "Stack resource already realised.",
                        stack=str(key),
                        urn=program.urn,
                        id=resource_id,
                    )
                    return resource_id
                self.logger.warning(
                    "Recorded stack resource no longer exists; recreating.",
                    stack=str(key),
                    urn=program.urn,
                    id=resource_id,
                )

            resource_id = program.create()
            entry = {
                "urn": program.urn,
                "type": program.type,
                "name": program.name,
                "id": resource_id,
                "inputs": dict(program.inputs),
                "created": datetime.now(tz=UTC).isoformat(),
            }
            document["deployment"]["resources"] = [
                item for item in resources if item.get("urn") != program.urn
            ] + [entry]
            self.store.save(key, document)
            self.logger.info(
                "Stack resource created.",
                stack=str(key),
                urn=program.urn,
                id=resource_id,
            )
            return resource_id


def _empty_document(key: StackKey) -> dict[str, Any]:
    return {"version": 1, "stack": str(key), "deployment": {"resources": []}}


def _atomic_write(path: Path, payload: str) -> None:
    tmp_fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.")
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
            handle.write(payload)
        os.replace(tmp_path, path)
    finally:
        tmp_path.unlink(missing_ok=True)


def _remove_empty_dir(path: Path) -> None:
    try:
        path.rmdir()
    except OSError:
        return


__all__ = ["LocalReconciler", "ResourceProgram", "STACK_SUFFIXES", "StackStore"]
