"""Typed views over provider responses and workflow results."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class VolumeStatus(str, Enum):
    """Lifecycle status of a block volume."""

    AVAILABLE = "available"
    IN_USE = "in_use"
    CREATING = "creating"
    DELETING = "deleting"
    ERROR = "error"
    UNKNOWN = "unknown"


class InstanceStatus(str, Enum):
    """Power state of an instance."""

    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    UNKNOWN = "unknown"


@dataclass(slots=True, frozen=True)
class VolumeInfo:
    """Block volume as reported by the provider."""

    id: str
    status: VolumeStatus
    storage_class: str | None = None
    iops: int | None = None
    zone: str | None = None


@dataclass(slots=True, frozen=True)
class InstanceInfo:
    """Instance metadata needed by the snapshot workflows."""

    id: str
    status: InstanceStatus
    root_volume_id: str | None = None
    volume_ids: tuple[str, ...] = field(default_factory=tuple)
    zone: str | None = None


@dataclass(slots=True, frozen=True)
class SnapshotRecord:
    """Snapshot created from a data volume."""

    id: str
    name: str
    source_volume_id: str


@dataclass(slots=True, frozen=True)
class RestoreResult:
    """Outcome of a successful restore; the caller persists it."""

    new_data_disk_id: str


@dataclass(slots=True, frozen=True)
class SSHTarget:
    """Connection details used by the configuration runner."""

    host: str
    user: str = "ubuntu"
    private_key: Path | None = None


@dataclass(slots=True, frozen=True)
class StackKey:
    """Deterministic idempotency key for the infrastructure reconciler.

    ``stack`` is always the instance name so that repeated runs reconcile
    against the same logical resource.
    """

    project: str
    stack: str

    def __str__(self) -> str:
        """Return ``project/stack``."""
        return f"{self.project}/{self.stack}"


SNAPSHOT_PROJECT = "snapshot"
RESTORE_VOLUME_PROJECT = "restore-volume"
STACK_PROJECTS: tuple[str, ...] = (RESTORE_VOLUME_PROJECT, SNAPSHOT_PROJECT)


def snapshot_stack(instance: str) -> StackKey:
    """Return the stack key used for snapshot creation on *instance*."""
    return StackKey(project=SNAPSHOT_PROJECT, stack=instance)


def restore_volume_stack(instance: str) -> StackKey:
    """Return the stack key used for restored volumes on *instance*."""
    return StackKey(project=RESTORE_VOLUME_PROJECT, stack=instance)


__all__ = [
    "InstanceInfo",
    "InstanceStatus",
    "RESTORE_VOLUME_PROJECT",
    "RestoreResult",
    "SNAPSHOT_PROJECT",
    "STACK_PROJECTS",
    "SSHTarget",
    "SnapshotRecord",
    "StackKey",
    "VolumeInfo",
    "VolumeStatus",
    "restore_volume_stack",
    "snapshot_stack",
]
