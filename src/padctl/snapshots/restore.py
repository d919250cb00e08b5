"""Restore an instance's data disk from a snapshot without leaving orphans.

The restored volume is created through the reconciler under the stack
``restore-volume/<instance>``, so a re-run after a partial failure finds the
volume created by the earlier attempt instead of creating another one. The
sequence is::

    create volume -> stop -> detach old -> attach new -> start -> configure
        -> [delete old disk] -> [delete snapshot]

When configuration fails the attachments are swapped back. Nothing is ever
deleted on that path: both the old and the new volume stay recoverable.
"""
from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TypeVar

from ..errors import (
    CloudError,
    ErrorKind,
    PadctlError,
    RestoreConfigurationError,
    RestoreError,
)
from ..models import RestoreResult, SSHTarget, restore_volume_stack
from ..providers.base import ConfigurationRunner
from ..stacks import ResourceProgram
from ..validation import (
    normalize_volume_id,
    require_value,
    require_volume_id,
    restored_volume_resource_name,
    snapshot_resource_name,
    validate_snapshot_name,
)
from .context import WorkflowContext
from .guard import assert_not_root_volume

RESTORED_VOLUME_RESOURCE_TYPE = "padctl:block/volume"

T = TypeVar("T")


@dataclass(slots=True, frozen=True)
class RestoreRequest:
    """Inputs of a restore."""

    instance_name: str
    instance_id: str
    snapshot_name: str
    host: str
    ssh_user: str = "ubuntu"
    ssh_private_key: Path | None = None
    old_data_disk_id: str | None = None
    delete_old_disk: bool = False
    delete_snapshot: bool = False


def restore_data_disk_snapshot(
    ctx: WorkflowContext,
    runner: ConfigurationRunner,
    request: RestoreRequest,
) -> RestoreResult:
    """Restore the data disk described by *request* and return the new disk id."""
    validate_snapshot_name(request.snapshot_name)
    instance_name = require_value(request.instance_name, "Instance name")
    instance_id = require_value(request.instance_id, "Instance ID")
    host = require_value(request.host, "Host")
    old_id = normalize_volume_id(request.old_data_disk_id)

    snapshot_resource = snapshot_resource_name(
        instance_name, request.snapshot_name, prefix=ctx.resource_prefix
    )
    volume_resource = restored_volume_resource_name(
        instance_name, request.snapshot_name, prefix=ctx.resource_prefix
    )
    iops, zone, volume_type = _discover_volume_spec(ctx, instance_id, old_id)

    key = restore_volume_stack(instance_name)

    def _create_volume() -> str:
        snapshot = ctx.client.find_snapshot_by_name(snapshot_resource)
        if snapshot is None:
            raise CloudError(
                f"Snapshot '{snapshot_resource}' not found.",
                kind=ErrorKind.NOT_FOUND,
                context={"snapshot": snapshot_resource},
            )
        return ctx.client.create_volume_from_snapshot(
            snapshot.id,
            volume_resource,
            zone=zone,
            iops=iops,
            volume_type=volume_type,
            tags={"padctl:instance": instance_name, "padctl:stack": str(key)},
        )

    program = ResourceProgram(
        type=RESTORED_VOLUME_RESOURCE_TYPE,
        name=volume_resource,
        create=_create_volume,
        exists=ctx.volume_exists,
        inputs={"snapshot": snapshot_resource, "iops": iops, "zone": zone, "volume_type": volume_type},
    )
    ctx.logger.info(
        "Restoring data disk from snapshot.",
        instance=instance_name,
        snapshot=snapshot_resource,
        volume=volume_resource,
        iops=iops,
    )
    raw_new_id = _phase("create", False, lambda: ctx.reconciler.up(key, program))
    new_id = require_volume_id(raw_new_id, "Restored volume ID")

    swap = old_id is not None and old_id != new_id
    if old_id != new_id:
        _phase("stop", True, lambda: ctx.instances.stop(instance_id, timeout=ctx.instance_timeout))
    if old_id is None:
        ctx.logger.info("No previous data disk recorded; skipping detach.", instance_id=instance_id)
    elif not swap:
        ctx.logger.info("Restored volume is already the current data disk.", volume_id=new_id)
    else:
        _phase("detach", True, lambda: ctx.volumes.detach(instance_id, old_id, role="old-data"))
    if old_id != new_id:
        _phase("attach", True, lambda: ctx.volumes.attach(instance_id, new_id))
    _phase("start", True, lambda: ctx.instances.start(instance_id, timeout=ctx.instance_timeout))

    target = SSHTarget(host=host, user=request.ssh_user, private_key=request.ssh_private_key)
    try:
        runner.run_data_disk(instance_name, target, new_id)
    except Exception as exc:
        ctx.logger.error(
            "Data disk configuration failed; rolling back attachments.",
            instance_id=instance_id,
            new_volume_id=new_id,
            old_volume_id=old_id,
            error=str(exc),
        )
        rolled_back = _rollback(ctx, instance_id, new_id, old_id)
        raise RestoreConfigurationError(
            f"Configuration of restored disk {new_id} failed: {exc}. The snapshot and the "
            "restored volume were kept for manual recovery.",
            rollback_succeeded=rolled_back,
            context={"instance_id": instance_id, "new_volume_id": new_id, "old_volume_id": old_id},
        ) from exc

    if request.delete_old_disk:
        if swap and old_id is not None:
            _delete_old_disk(ctx, instance_id, old_id)
        else:
            ctx.logger.info("No separate old data disk to delete.", instance_id=instance_id)
    if request.delete_snapshot:
        _delete_snapshot(ctx, snapshot_resource)

    ctx.logger.info("Data disk restored.", instance=instance_name, volume_id=new_id)
    return RestoreResult(new_data_disk_id=new_id)


def _phase(phase: str, cleanup_required: bool, action: Callable[[], T]) -> T:
    try:
        return action()
    except RestoreError:
        raise
    except PadctlError as exc:
        hint = (
            " The restored volume was kept; re-run the restore or clean it up manually."
            if cleanup_required
            else ""
        )
        raise RestoreError(
            f"Restore failed during '{phase}': {exc}.{hint}",
            phase=phase,
            cleanup_required=cleanup_required,
            context=exc.context,
        ) from exc


def _discover_volume_spec(
    ctx: WorkflowContext,
    instance_id: str,
    old_id: str | None,
) -> tuple[int, str | None, str | None]:
    """Read IOPS, zone and volume type from the old disk, falling back to defaults."""
    iops: int | None = None
    zone: str | None = None
    volume_type: str | None = None
    if old_id is not None:
        try:
            info = ctx.client.get_volume(old_id)
            iops, zone, volume_type = info.iops, info.zone, info.storage_class
        except CloudError as exc:
            ctx.logger.warning("Could not read old data disk.", volume_id=old_id, error=str(exc))
    if iops is None:
        ctx.logger.warning("Using default IOPS for restored volume.", iops=ctx.default_iops)
        iops = ctx.default_iops
    if zone is None:
        try:
            zone = ctx.client.get_instance(instance_id).zone
        except CloudError as exc:
            ctx.logger.warning("Could not read instance zone.", instance_id=instance_id, error=str(exc))
    return iops, zone, volume_type


def _rollback(ctx: WorkflowContext, instance_id: str, new_id: str, old_id: str | None) -> bool:
    """Swap the old disk back in; return ``True`` when every step succeeded."""
    if old_id == new_id:
        ctx.logger.info("Nothing to roll back; restored volume was already attached.", volume_id=new_id)
        return True

    succeeded = True
    steps: list[tuple[str, Callable[[], None]]] = [
        ("stop", lambda: ctx.instances.stop(instance_id, timeout=ctx.instance_timeout)),
        ("detach-new", lambda: ctx.volumes.detach(instance_id, new_id, role="restored-data")),
    ]
    if old_id is not None:
        steps.append(("attach-old", lambda: ctx.volumes.attach(instance_id, old_id)))
    steps.append(("start", lambda: ctx.instances.start(instance_id, timeout=ctx.instance_timeout)))

    for name, step in steps:
        try:
            step()
        except Exception as exc:
            succeeded = False
            ctx.logger.error("Rollback step failed.", step=name, instance_id=instance_id, error=str(exc))
    if old_id is None:
        ctx.logger.warning(
            "Partial rollback: no previous data disk is known to re-attach.",
            instance_id=instance_id,
        )
        succeeded = False
    return succeeded


def _delete_old_disk(ctx: WorkflowContext, instance_id: str, old_id: str) -> None:
    try:
        assert_not_root_volume(
            ctx.client,
            ctx.logger,
            instance_id,
            old_id,
            fail_closed=ctx.root_guard_fail_closed,
        )
        ctx.volumes.delete_with_retry(old_id, {"instance_id": instance_id, "workflow": "restore"})
    except PadctlError as exc:
        ctx.logger.error("Old data disk was not deleted.", volume_id=old_id, error=str(exc))


def _delete_snapshot(ctx: WorkflowContext, snapshot_resource: str) -> None:
    try:
        snapshot = ctx.client.find_snapshot_by_name(snapshot_resource)
        if snapshot is None:
            ctx.logger.warning("Snapshot already gone.", snapshot=snapshot_resource)
            return
        ctx.client.delete_snapshot(snapshot.id)
    except PadctlError as exc:
        ctx.logger.warning("Snapshot was not deleted.", snapshot=snapshot_resource, error=str(exc))
        return
    ctx.logger.info("Snapshot deleted.", snapshot=snapshot_resource, snapshot_id=snapshot.id)


__all__ = ["RESTORED_VOLUME_RESOURCE_TYPE", "RestoreRequest", "restore_data_disk_snapshot"]
