"""Helpers for interacting with the padctl instance registry.

The registry directory (``~/.local/state/padctl/registry`` by default) stores
``instances.yml``: one entry per managed instance with its cloud id, current
data disk and SSH details. Workflows read the entry before running and the
CLI writes back the new data disk id after a restore. Writes are atomic.
"""
from __future__ import annotations

import os
import tempfile
from collections.abc import Iterable, Mapping
from copy import deepcopy
from dataclasses import dataclass
from pathlib import Path
from typing import Any

try:  # PyYAML is a runtime dependency declared in pyproject.toml
    import yaml
except Exception as exc:  # pragma: no cover - import failure handled in tests
    raise RuntimeError(
        "PyYAML is required to manage padctl state. Install with `pip install padctl`."
    ) from exc

INSTANCES_FILE = "instances.yml"
_OPTIONAL_FIELDS = ("zone", "data_disk_id", "host", "ssh_user", "ssh_private_key")


class StateRegistryError(RuntimeError):
    """Raised when state registry operations fail."""


@dataclass(frozen=True)
class StateRegistry:
    """High-level interface to the YAML registry."""

    root: Path

    def __post_init__(self) -> None:
        """Normalise the root path after initialisation."""
        object.__setattr__(self, "root", self.root.expanduser())

    def ensure_root(self) -> None:
        """Create the registry directory if it does not yet exist."""
        self.root.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Public helpers
    # ------------------------------------------------------------------
    def path_for(self, name: str) -> Path:
        """Return the filesystem path for a named registry file."""
        return self.root / name

    def read(self, name: str, *, default: object | None = None) -> object | None:
        """Read a registry file, returning *default* when missing."""
        path = self.path_for(name)
        if not path.exists():
            return deepcopy(default)
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:  # pragma: no cover - delegated to PyYAML
            raise StateRegistryError(f"Failed to parse registry file {path}: {exc}") from exc
        return data if data is not None else deepcopy(default)

    def write(self, name: str, payload: Mapping[str, object]) -> None:
        """Atomically write *payload* to the given registry file."""
        self.ensure_root()
        path = self.path_for(name)

        tmp_fd, tmp_name = tempfile.mkstemp(dir=str(self.root), prefix=f".{path.name}.")
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
                yaml.safe_dump(payload, handle, sort_keys=False)
            os.replace(tmp_path, path)
            os.chmod(path, 0o600)
        finally:
            tmp_path.unlink(missing_ok=True)

    # Instance helpers -------------------------------------------------
    def read_instances(self) -> Mapping[str, object]:
        """Return the contents of ``instances.yml`` (empty mapping if missing)."""
        value = self.read(INSTANCES_FILE, default={"instances": []})
        return value if isinstance(value, Mapping) else {"instances": []}

    def write_instances(self, instances: Iterable[object]) -> None:
        """Persist instance entries to ``instances.yml``."""
        self.write(INSTANCES_FILE, {"instances": list(instances)})

    def list_instances(self) -> list[dict[str, Any]]:
        """Return every registered instance entry."""
        raw_instances = self.read_instances().get("instances", [])
        if not isinstance(raw_instances, list):
            return []
        return [_normalize_instance_entry(entry) for entry in raw_instances if isinstance(entry, Mapping)]

    def get_instance(self, name: str) -> dict[str, Any] | None:
        """Return the instance mapping for *name* if registered."""
        for entry in self.list_instances():
            if entry.get("name") == name:
                return entry
        return None

    def require_instance(self, name: str) -> dict[str, Any]:
        """Return the instance mapping for *name* or raise :class:`StateRegistryError`."""
        entry = self.get_instance(name)
        if entry is None:
            raise StateRegistryError(
                f"Instance '{name}' not found in registry. Register it with `padctl instance register`."
            )
        return entry

    def upsert_instance(self, entry: Mapping[str, object]) -> None:
        """Add or replace an instance entry."""
        normalized = _normalize_instance_entry(entry)
        instances: list[dict[str, Any]] = []
        replaced = False
        for existing in self.list_instances():
            if existing.get("name") == normalized["name"]:
                merged = dict(existing)
                merged.update(normalized)
                instances.append(merged)
                replaced = True
            else:
                instances.append(existing)
        if not replaced:
            instances.append(normalized)
        self.write_instances(instances)

    def update_instance(self, name: str, updates: Mapping[str, object]) -> None:
        """Apply *updates* to the registered instance named *name*."""
        instances: list[dict[str, Any]] = []
        found = False
        for entry in self.list_instances():
            if entry.get("name") == name:
                merged = dict(entry)
                merged.update(updates)
                instances.append(_normalize_instance_entry(merged))
                found = True
            else:
                instances.append(entry)
        if not found:
            raise StateRegistryError(f"Instance '{name}' not found in registry")
        self.write_instances(instances)

    def remove_instance(self, name: str) -> None:
        """Remove the instance named *name* from the registry."""
        entries = self.list_instances()
        filtered = [entry for entry in entries if entry.get("name") != name]
        if len(filtered) == len(entries):
            raise StateRegistryError(f"Instance '{name}' not found in registry")
        self.write_instances(filtered)


def _normalize_instance_entry(entry: Mapping[str, object]) -> dict[str, Any]:
    """Validate and normalise an instance registry entry."""
    if not isinstance(entry, Mapping):
        raise StateRegistryError("Instance entry must be a mapping.")

    name_raw = entry.get("name")
    name = str(name_raw).strip() if name_raw is not None else ""
    if not name:
        raise StateRegistryError("Instance entry missing 'name'.")
    instance_id_raw = entry.get("instance_id")
    instance_id = str(instance_id_raw).strip() if instance_id_raw is not None else ""
    if not instance_id:
        raise StateRegistryError(f"Instance entry '{name}' missing 'instance_id'.")

    normalized: dict[str, Any] = {"name": name, "instance_id": instance_id}
    for key in _OPTIONAL_FIELDS:
        value = entry.get(key)
        if value is None:
            normalized[key] = None
            continue
        text = str(value).strip()
        normalized[key] = text or None
    return normalized


__all__ = ["INSTANCES_FILE", "StateRegistry", "StateRegistryError"]
