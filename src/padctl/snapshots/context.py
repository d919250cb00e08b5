"""Collaborators shared by the snapshot workflows."""
from __future__ import annotations

from dataclasses import dataclass

from ..errors import CloudError
from ..logging import StructuredLogger
from ..providers.base import CloudClient
from ..stacks import LocalReconciler
from ..validation import DEFAULT_RESOURCE_PREFIX
from .instances import DEFAULT_INSTANCE_TIMEOUT, InstanceOperations
from .volumes import VolumeOperations

DEFAULT_IOPS = 5000


@dataclass(slots=True)
class WorkflowContext:
    """Everything a workflow needs, built once per process and passed in."""

    client: CloudClient
    reconciler: LocalReconciler
    volumes: VolumeOperations
    instances: InstanceOperations
    logger: StructuredLogger
    resource_prefix: str = DEFAULT_RESOURCE_PREFIX
    default_iops: int = DEFAULT_IOPS
    root_guard_fail_closed: bool = False
    instance_timeout: float = DEFAULT_INSTANCE_TIMEOUT

    def snapshot_exists(self, snapshot_id: str) -> bool:
        """Return ``True`` when *snapshot_id* is still present in the cloud."""
        try:
            self.client.get_snapshot(snapshot_id)
        except CloudError as exc:
            if exc.is_not_found:
                return False
            raise
        return True

    def volume_exists(self, volume_id: str) -> bool:
        """Return ``True`` when *volume_id* is still present in the cloud."""
        try:
            self.client.get_volume(volume_id)
        except CloudError as exc:
            if exc.is_not_found:
                return False
            raise
        return True


__all__ = ["DEFAULT_IOPS", "WorkflowContext"]
