"""Provider-neutral interface consumed by the snapshot workflows."""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from ..models import InstanceInfo, SnapshotRecord, SSHTarget, VolumeInfo


@runtime_checkable
class CloudClient(Protocol):
    """Block-storage and instance operations exposed by a cloud adapter.

    Implementations raise :class:`padctl.errors.CloudError` for every failure,
    tagged with the :class:`padctl.errors.ErrorKind` decided at the adapter
    boundary.
    """

    def get_instance(self, instance_id: str) -> InstanceInfo:
        """Return metadata for *instance_id*."""
        ...

    def stop_instance(self, instance_id: str) -> None:
        """Issue a stop command."""
        ...

    def start_instance(self, instance_id: str) -> None:
        """Issue a start command."""
        ...

    def reboot_instance(self, instance_id: str) -> None:
        """Issue a reboot command."""
        ...

    def get_volume(self, volume_id: str) -> VolumeInfo:
        """Return metadata for *volume_id*."""
        ...

    def attach_volume(self, instance_id: str, volume_id: str, attach_type: str) -> None:
        """Attach *volume_id* to *instance_id* using the provider attach parameter."""
        ...

    def detach_volume(self, instance_id: str, volume_id: str) -> None:
        """Detach *volume_id* from *instance_id*."""
        ...

    def delete_volume(self, volume_id: str) -> None:
        """Delete *volume_id*."""
        ...

    def create_snapshot(
        self,
        volume_id: str,
        name: str,
        *,
        tags: Mapping[str, str] | None = None,
    ) -> str:
        """Snapshot *volume_id* and return the new snapshot id."""
        ...

    def create_volume_from_snapshot(
        self,
        snapshot_id: str,
        name: str,
        *,
        zone: str | None = None,
        iops: int | None = None,
        volume_type: str | None = None,
        tags: Mapping[str, str] | None = None,
    ) -> str:
        """Create a volume from *snapshot_id* and return its id.

        *volume_type* defaults to the adapter's own default; *iops* the
        volume type cannot take is adjusted or dropped by the adapter.
        """
        ...

    def find_snapshot_by_name(self, name: str) -> SnapshotRecord | None:
        """Return the snapshot tagged with *name*, if any."""
        ...

    def get_snapshot(self, snapshot_id: str) -> SnapshotRecord:
        """Return metadata for *snapshot_id*."""
        ...

    def delete_snapshot(self, snapshot_id: str) -> None:
        """Delete *snapshot_id*."""
        ...


class ConfigurationRunner(Protocol):
    """Runs the post-restore disk-mount configuration on an instance."""

    def run_data_disk(self, instance: str, target: SSHTarget, data_disk_id: str) -> None:
        """Mount *data_disk_id* on *target* or raise ``ConfigurationRunError``."""
        ...


@dataclass(slots=True, frozen=True)
class StorageClassMapping:
    """Map a volume storage class to the attach parameter an instance needs.

    AWS expects a device name, other providers a volume type; the mapping is
    therefore configuration, with ``default`` used for unknown classes or
    when the storage class cannot be read.
    """

    default: str
    mapping: Mapping[str, str] = field(default_factory=dict)

    def resolve(self, storage_class: str | None) -> str:
        """Return the attach parameter for *storage_class*."""
        if storage_class is None:
            return self.default
        return self.mapping.get(storage_class, self.default)


__all__ = ["CloudClient", "ConfigurationRunner", "StorageClassMapping"]
