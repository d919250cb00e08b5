"""Data-disk snapshot, archive and restore workflows."""
from __future__ import annotations

from .archive import snapshot_and_delete_data_disk
from .context import DEFAULT_IOPS, WorkflowContext
from .create import create_data_disk_snapshot
from .guard import assert_not_root_volume
from .instances import InstanceOperations
from .restore import RestoreRequest, restore_data_disk_snapshot
from .volumes import VolumeOperations, VolumeTimeouts

__all__ = [
    "DEFAULT_IOPS",
    "InstanceOperations",
    "RestoreRequest",
    "VolumeOperations",
    "VolumeTimeouts",
    "WorkflowContext",
    "assert_not_root_volume",
    "create_data_disk_snapshot",
    "restore_data_disk_snapshot",
    "snapshot_and_delete_data_disk",
]
