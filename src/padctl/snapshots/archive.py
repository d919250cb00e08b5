"""Snapshot a data disk, then delete it to stop paying for the volume."""
from __future__ import annotations

from ..errors import CriticalError, PadctlError
from ..models import SnapshotRecord
from ..validation import require_value, require_volume_id, validate_snapshot_name
from .context import WorkflowContext
from .create import create_data_disk_snapshot
from .guard import assert_not_root_volume


def snapshot_and_delete_data_disk(
    ctx: WorkflowContext,
    *,
    instance_name: str,
    instance_id: str,
    snapshot_name: str,
    data_disk_id: str,
) -> SnapshotRecord:
    """Snapshot *data_disk_id* and delete it.

    The instance is stopped and the disk detached before deletion; failures
    in those two steps are logged and deletion is attempted regardless. The
    instance is always started again exactly once, even when deletion raised
    :class:`CriticalError`.
    """
    validate_snapshot_name(snapshot_name)
    instance_id = require_value(instance_id, "Instance ID")
    volume_id = require_volume_id(data_disk_id, "Data disk ID")

    record = create_data_disk_snapshot(
        ctx,
        instance_name=instance_name,
        snapshot_name=snapshot_name,
        data_disk_id=volume_id,
    )

    assert_not_root_volume(
        ctx.client,
        ctx.logger,
        instance_id,
        volume_id,
        fail_closed=ctx.root_guard_fail_closed,
    )

    try:
        ctx.instances.stop(instance_id, timeout=ctx.instance_timeout)
    except PadctlError as exc:
        ctx.logger.warning(
            "Instance stop failed before data disk deletion; continuing.",
            instance_id=instance_id,
            error=str(exc),
        )
    try:
        ctx.volumes.detach(instance_id, volume_id)
    except PadctlError as exc:
        ctx.logger.warning(
            "Data disk detach failed before deletion; continuing.",
            instance_id=instance_id,
            volume_id=volume_id,
            error=str(exc),
        )

    try:
        ctx.volumes.delete_with_retry(
            volume_id,
            {"instance_id": instance_id, "snapshot_id": record.id, "workflow": "archive"},
        )
    except CriticalError:
        ctx.logger.error(
            "Data disk deletion failed after snapshot; the volume needs manual cleanup.",
            volume_id=volume_id,
            snapshot_id=record.id,
        )
        raise
    finally:
        _start_quietly(ctx, instance_id)

    ctx.logger.info(
        "Data disk archived.",
        instance=instance_name,
        volume_id=volume_id,
        snapshot_id=record.id,
    )
    return record


def _start_quietly(ctx: WorkflowContext, instance_id: str) -> None:
    try:
        ctx.instances.start(instance_id, timeout=ctx.instance_timeout)
    except PadctlError as exc:
        ctx.logger.warning("Instance start after archive failed.", instance_id=instance_id, error=str(exc))


__all__ = ["snapshot_and_delete_data_disk"]
