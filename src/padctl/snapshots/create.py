"""Create a snapshot of an instance's data disk."""
from __future__ import annotations

from datetime import UTC, datetime

from ..errors import CloudError, SnapshotSourceMissingError
from ..models import SnapshotRecord, snapshot_stack
from ..stacks import ResourceProgram
from ..validation import (
    require_value,
    require_volume_id,
    snapshot_resource_name,
    validate_snapshot_name,
)
from .context import WorkflowContext

SNAPSHOT_RESOURCE_TYPE = "padctl:block/snapshot"


def create_data_disk_snapshot(
    ctx: WorkflowContext,
    *,
    instance_name: str,
    snapshot_name: str,
    data_disk_id: str,
) -> SnapshotRecord:
    """Snapshot *data_disk_id* under a name derived from the instance and snapshot name.

    Re-running with the same instance and name reconciles against the same
    stack and returns the existing snapshot.
    """
    validate_snapshot_name(snapshot_name)
    instance_name = require_value(instance_name, "Instance name")
    volume_id = require_volume_id(data_disk_id, "Data disk ID")

    try:
        ctx.client.get_volume(volume_id)
    except CloudError as exc:
        raise SnapshotSourceMissingError(
            f"Data disk {volume_id} of instance '{instance_name}' no longer exists; it was "
            "probably archived or deleted already. Restore a snapshot or attach a new data "
            "disk before creating another snapshot.",
            context={"instance": instance_name, "volume_id": volume_id},
        ) from exc

    key = snapshot_stack(instance_name)
    resource_name = snapshot_resource_name(instance_name, snapshot_name, prefix=ctx.resource_prefix)
    tags = {
        "padctl:instance": instance_name,
        "padctl:stack": str(key),
        "padctl:created": datetime.now(tz=UTC).isoformat(timespec="seconds"),
    }
    program = ResourceProgram(
        type=SNAPSHOT_RESOURCE_TYPE,
        name=resource_name,
        create=lambda: ctx.client.create_snapshot(volume_id, resource_name, tags=tags),
        exists=ctx.snapshot_exists,
        inputs={"volume_id": volume_id, "instance": instance_name},
    )
    ctx.logger.info(
        "Creating data disk snapshot.",
        instance=instance_name,
        volume_id=volume_id,
        snapshot=resource_name,
    )
    snapshot_id = ctx.reconciler.up(key, program)
    ctx.logger.info("Snapshot ready.", snapshot=resource_name, snapshot_id=snapshot_id)
    return SnapshotRecord(id=snapshot_id, name=resource_name, source_volume_id=volume_id)


__all__ = ["SNAPSHOT_RESOURCE_TYPE", "create_data_disk_snapshot"]
