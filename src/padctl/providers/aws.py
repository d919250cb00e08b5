"""AWS EC2/EBS adapter implementing :class:`padctl.providers.base.CloudClient`.

Every botocore failure is classified here, once, into a
:class:`padctl.errors.CloudError`:

* ``*.NotFound`` codes and HTTP 404 become ``NOT_FOUND``;
* busy/protected codes (``VolumeInUse``, ``IncorrectState``...) and HTTP 412
  become ``CONFLICT``;
* throttling and connection failures become ``TRANSPORT``;
* anything else is ``UNKNOWN``.
"""
from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..errors import CloudError, ErrorKind
from ..models import InstanceInfo, InstanceStatus, SnapshotRecord, VolumeInfo, VolumeStatus

_CONFLICT_CODES = frozenset(
    {
        "VolumeInUse",
        "IncorrectState",
        "IncorrectInstanceState",
        "InvalidSnapshot.InUse",
        "InvalidVolume.ZoneMismatch",
        "ConcurrentTagAccess",
    }
)
_TRANSPORT_CODES = frozenset(
    {
        "Throttling",
        "ThrottlingException",
        "RequestLimitExceeded",
        "RequestTimeout",
        "ServiceUnavailable",
        "InternalError",
    }
)

_VOLUME_STATES = {
    "creating": VolumeStatus.CREATING,
    "available": VolumeStatus.AVAILABLE,
    "in-use": VolumeStatus.IN_USE,
    "deleting": VolumeStatus.DELETING,
    "deleted": VolumeStatus.DELETING,
    "error": VolumeStatus.ERROR,
}
_INSTANCE_STATES = {
    "pending": InstanceStatus.STARTING,
    "running": InstanceStatus.RUNNING,
    "stopping": InstanceStatus.STOPPING,
    "shutting-down": InstanceStatus.STOPPING,
    "stopped": InstanceStatus.STOPPED,
}
# Inclusive provisioned IOPS range per EBS volume type; other types take no Iops.
_IOPS_RANGES: dict[str, tuple[int, int]] = {
    "gp3": (3000, 16000),
    "io1": (100, 64000),
    "io2": (100, 256000),
}


def provisioned_iops(volume_type: str, iops: int | None) -> int | None:
    """Return *iops* clamped to what *volume_type* accepts, or ``None`` when it takes none."""
    bounds = _IOPS_RANGES.get(volume_type)
    if bounds is None or iops is None:
        return None
    low, high = bounds
    return min(max(iops, low), high)


def classify_client_error(exc: ClientError, *, operation: str) -> CloudError:
    """Translate a botocore :class:`ClientError` into a tagged :class:`CloudError`."""
    error = exc.response.get("Error", {})
    code = str(error.get("Code") or "Unknown")
    message = str(error.get("Message") or exc)
    status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")

    if code.endswith(".NotFound") or status == 404:
        kind = ErrorKind.NOT_FOUND
    elif code in _CONFLICT_CODES or status == 412:
        kind = ErrorKind.CONFLICT
    elif code in _TRANSPORT_CODES:
        kind = ErrorKind.TRANSPORT
    else:
        kind = ErrorKind.UNKNOWN
    return CloudError(
        f"{operation} failed ({code}): {message}",
        kind=kind,
        code=code,
        status=status,
        context={"operation": operation},
    )


@dataclass(slots=True)
class AWSCloudClient:
    """Thin wrapper over a boto3 EC2 client."""

    ec2: Any
    default_volume_type: str = "gp3"

    @classmethod
    def from_session(
        cls,
        *,
        profile: str | None = None,
        region: str | None = None,
        default_volume_type: str = "gp3",
    ) -> AWSCloudClient:
        """Build an adapter from a boto3 session (profile/region optional)."""
        session = boto3.Session(profile_name=profile, region_name=region)
        return cls(ec2=session.client("ec2"), default_volume_type=default_volume_type)

    # Instances -----------------------------------------------------------
    def get_instance(self, instance_id: str) -> InstanceInfo:
        """Return metadata for *instance_id*."""
        response = self._call(
            "describe_instances", self.ec2.describe_instances, InstanceIds=[instance_id]
        )
        instances = [
            instance
            for reservation in response.get("Reservations", [])
            for instance in reservation.get("Instances", [])
        ]
        if not instances:
            raise CloudError(
                f"Instance {instance_id} not found.",
                kind=ErrorKind.NOT_FOUND,
                code="InvalidInstanceID.NotFound",
                context={"instance_id": instance_id},
            )
        raw = instances[0]
        state = str(raw.get("State", {}).get("Name", ""))
        root_device = raw.get("RootDeviceName")
        root_volume_id: str | None = None
        volume_ids: list[str] = []
        for mapping in raw.get("BlockDeviceMappings", []):
            volume_id = mapping.get("Ebs", {}).get("VolumeId")
            if not volume_id:
                continue
            volume_ids.append(volume_id)
            if root_device and mapping.get("DeviceName") == root_device:
                root_volume_id = volume_id
        return InstanceInfo(
            id=str(raw.get("InstanceId", instance_id)),
            status=_INSTANCE_STATES.get(state, InstanceStatus.UNKNOWN),
            root_volume_id=root_volume_id,
            volume_ids=tuple(volume_ids),
            zone=raw.get("Placement", {}).get("AvailabilityZone"),
        )

    def stop_instance(self, instance_id: str) -> None:
        """Issue a stop command."""
        self._call("stop_instances", self.ec2.stop_instances, InstanceIds=[instance_id])

    def start_instance(self, instance_id: str) -> None:
        """Issue a start command."""
        self._call("start_instances", self.ec2.start_instances, InstanceIds=[instance_id])

    def reboot_instance(self, instance_id: str) -> None:
        """Issue a reboot command."""
        self._call("reboot_instances", self.ec2.reboot_instances, InstanceIds=[instance_id])

    # Volumes -------------------------------------------------------------
    def get_volume(self, volume_id: str) -> VolumeInfo:
        """Return metadata for *volume_id*."""
        response = self._call(
            "describe_volumes", self.ec2.describe_volumes, VolumeIds=[volume_id]
        )
        volumes = response.get("Volumes", [])
        if not volumes:
            raise CloudError(
                f"Volume {volume_id} not found.",
                kind=ErrorKind.NOT_FOUND,
                code="InvalidVolume.NotFound",
                context={"volume_id": volume_id},
            )
        raw = volumes[0]
        iops = raw.get("Iops")
        return VolumeInfo(
            id=str(raw.get("VolumeId", volume_id)),
            status=_VOLUME_STATES.get(str(raw.get("State", "")), VolumeStatus.UNKNOWN),
            storage_class=raw.get("VolumeType"),
            iops=int(iops) if iops is not None else None,
            zone=raw.get("AvailabilityZone"),
        )

    def attach_volume(self, instance_id: str, volume_id: str, attach_type: str) -> None:
        """Attach *volume_id* as device *attach_type*."""
        self._call(
            "attach_volume",
            self.ec2.attach_volume,
            InstanceId=instance_id,
            VolumeId=volume_id,
            Device=attach_type,
        )

    def detach_volume(self, instance_id: str, volume_id: str) -> None:
        """Detach *volume_id*; a volume that is not attached reports ``NOT_FOUND``."""
        try:
            self._call(
                "detach_volume",
                self.ec2.detach_volume,
                InstanceId=instance_id,
                VolumeId=volume_id,
            )
        except CloudError as exc:
            # EC2 answers IncorrectState when the volume is already 'available'.
            if exc.code == "IncorrectState" and "available" in str(exc):
                raise CloudError(
                    f"Volume {volume_id} is not attached to {instance_id}.",
                    kind=ErrorKind.NOT_FOUND,
                    code=exc.code,
                    status=exc.status,
                    context={"volume_id": volume_id, "instance_id": instance_id},
                ) from exc
            raise

    def delete_volume(self, volume_id: str) -> None:
        """Delete *volume_id*."""
        self._call("delete_volume", self.ec2.delete_volume, VolumeId=volume_id)

    # Snapshots -----------------------------------------------------------
    def create_snapshot(
        self,
        volume_id: str,
        name: str,
        *,
        tags: Mapping[str, str] | None = None,
    ) -> str:
        """Snapshot *volume_id* and return the snapshot id."""
        response = self._call(
            "create_snapshot",
            self.ec2.create_snapshot,
            VolumeId=volume_id,
            Description=name,
            TagSpecifications=[_tag_specification("snapshot", name, tags)],
        )
        return str(response["SnapshotId"])

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
        """Create a volume from *snapshot_id* in *zone* and return its id."""
        if not zone:
            raise CloudError(
                "An availability zone is required to create an EBS volume.",
                kind=ErrorKind.UNKNOWN,
                context={"snapshot_id": snapshot_id},
            )
        effective_type = volume_type or self.default_volume_type
        params: dict[str, object] = {
            "SnapshotId": snapshot_id,
            "AvailabilityZone": zone,
            "VolumeType": effective_type,
            "TagSpecifications": [_tag_specification("volume", name, tags)],
        }
        accepted_iops = provisioned_iops(effective_type, iops)
        if accepted_iops is not None:
            params["Iops"] = accepted_iops
        response = self._call("create_volume", self.ec2.create_volume, **params)
        return str(response["VolumeId"])

    def find_snapshot_by_name(self, name: str) -> SnapshotRecord | None:
        """Return the most recent snapshot whose ``Name`` tag equals *name*."""
        response = self._call(
            "describe_snapshots",
            self.ec2.describe_snapshots,
            OwnerIds=["self"],
            Filters=[{"Name": "tag:Name", "Values": [name]}],
        )
        snapshots = sorted(
            response.get("Snapshots", []),
            key=lambda item: str(item.get("StartTime", "")),
            reverse=True,
        )
        if not snapshots:
            return None
        return _snapshot_record(snapshots[0], name)

    def get_snapshot(self, snapshot_id: str) -> SnapshotRecord:
        """Return metadata for *snapshot_id*."""
        response = self._call(
            "describe_snapshots", self.ec2.describe_snapshots, SnapshotIds=[snapshot_id]
        )
        snapshots = response.get("Snapshots", [])
        if not snapshots:
            raise CloudError(
                f"Snapshot {snapshot_id} not found.",
                kind=ErrorKind.NOT_FOUND,
                code="InvalidSnapshot.NotFound",
                context={"snapshot_id": snapshot_id},
            )
        return _snapshot_record(snapshots[0], None)

    def delete_snapshot(self, snapshot_id: str) -> None:
        """Delete *snapshot_id*."""
        self._call("delete_snapshot", self.ec2.delete_snapshot, SnapshotId=snapshot_id)

    # ------------------------------------------------------------------
    def _call(self, operation: str, func: Callable[..., Any], **params: object) -> Any:
        try:
            return func(**params)
        except ClientError as exc:
            raise classify_client_error(exc, operation=operation) from exc
        except BotoCoreError as exc:
            raise CloudError(
                f"{operation} failed: {exc}",
                kind=ErrorKind.TRANSPORT,
                code=exc.__class__.__name__,
                context={"operation": operation},
            ) from exc


def credentials_problem(*, profile: str | None = None, region: str | None = None) -> str | None:
    """Return why AWS credentials cannot be resolved, or ``None`` when they can."""
    try:
        session = boto3.Session(profile_name=profile, region_name=region)
        credentials = session.get_credentials()
    except BotoCoreError as exc:
        return str(exc)
    if credentials is None:
        return "no credentials found in the environment, shared files or instance metadata"
    if session.region_name is None:
        return "no region configured; set aws.region or AWS_DEFAULT_REGION"
    return None


def _tag_specification(
    resource_type: str,
    name: str,
    tags: Mapping[str, str] | None,
) -> dict[str, object]:
    merged = {"Name": name}
    merged.update(dict(tags or {}))
    return {
        "ResourceType": resource_type,
        "Tags": [{"Key": key, "Value": str(value)} for key, value in merged.items()],
    }


def _snapshot_record(raw: Mapping[str, Any], fallback_name: str | None) -> SnapshotRecord:
    name = fallback_name
    for tag in raw.get("Tags", []) or []:
        if tag.get("Key") == "Name":
            name = str(tag.get("Value"))
            break
    return SnapshotRecord(
        id=str(raw["SnapshotId"]),
        name=name or str(raw.get("Description") or raw["SnapshotId"]),
        source_volume_id=str(raw.get("VolumeId", "")),
    )


__all__ = ["AWSCloudClient", "classify_client_error", "credentials_problem", "provisioned_iops"]
