"""Tests for the EC2/EBS adapter using botocore's Stubber."""
from __future__ import annotations

from collections.abc import Iterator
from datetime import UTC, datetime
from typing import Any

import boto3
import pytest
from botocore.exceptions import ClientError, EndpointConnectionError
from botocore.stub import Stubber

from padctl.errors import CloudError, ErrorKind
from padctl.models import InstanceStatus, VolumeStatus
from padctl.providers.aws import AWSCloudClient, classify_client_error, provisioned_iops


@pytest.fixture()
def ec2() -> Any:
    return boto3.client(
        "ec2",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


@pytest.fixture()
def stubber(ec2: Any) -> Iterator[Stubber]:
    with Stubber(ec2) as stub:
        yield stub
        stub.assert_no_pending_responses()


@pytest.fixture()
def client(ec2: Any) -> AWSCloudClient:
    return AWSCloudClient(ec2=ec2)


def _client_error(code: str, status: int = 400) -> ClientError:
    return ClientError(
        {"Error": {"Code": code, "Message": "boom"}, "ResponseMetadata": {"HTTPStatusCode": status}},
        "Operation",
    )


@pytest.mark.parametrize(
    ("code", "status", "kind"),
    [
        ("InvalidVolume.NotFound", 400, ErrorKind.NOT_FOUND),
        ("InvalidInstanceID.NotFound", 400, ErrorKind.NOT_FOUND),
        ("Whatever", 404, ErrorKind.NOT_FOUND),
        ("VolumeInUse", 400, ErrorKind.CONFLICT),
        ("IncorrectState", 400, ErrorKind.CONFLICT),
        ("PreconditionFailed", 412, ErrorKind.CONFLICT),
        ("RequestLimitExceeded", 503, ErrorKind.TRANSPORT),
        ("UnauthorizedOperation", 403, ErrorKind.UNKNOWN),
    ],
)
def test_classify_client_error(code: str, status: int, kind: ErrorKind) -> None:
    """Provider error codes map onto a single error kind."""
    error = classify_client_error(_client_error(code, status), operation="delete_volume")

    assert error.kind is kind
    assert error.code == code
    assert error.status == status
    assert "delete_volume" in str(error)


def test_get_instance_reports_root_volume(client: AWSCloudClient, stubber: Stubber) -> None:
    """The root volume is the mapping whose device matches RootDeviceName."""
    stubber.add_response(
        "describe_instances",
        {
            "Reservations": [
                {
                    "Instances": [
                        {
                            "InstanceId": "i-1",
                            "State": {"Name": "stopped"},
                            "RootDeviceName": "/dev/xvda",
                            "Placement": {"AvailabilityZone": "us-east-1b"},
                            "BlockDeviceMappings": [
                                {"DeviceName": "/dev/xvda", "Ebs": {"VolumeId": "vol-root"}},
                                {"DeviceName": "/dev/sdf", "Ebs": {"VolumeId": "vol-data"}},
                            ],
                        }
                    ]
                }
            ]
        },
        {"InstanceIds": ["i-1"]},
    )

    info = client.get_instance("i-1")

    assert info.status is InstanceStatus.STOPPED
    assert info.root_volume_id == "vol-root"
    assert info.volume_ids == ("vol-root", "vol-data")
    assert info.zone == "us-east-1b"


def test_get_instance_empty_response_is_not_found(client: AWSCloudClient, stubber: Stubber) -> None:
    stubber.add_response("describe_instances", {"Reservations": []}, {"InstanceIds": ["i-gone"]})

    with pytest.raises(CloudError) as excinfo:
        client.get_instance("i-gone")

    assert excinfo.value.is_not_found


def test_get_volume_maps_fields(client: AWSCloudClient, stubber: Stubber) -> None:
    """Volume state, type, iops and zone are exposed."""
    stubber.add_response(
        "describe_volumes",
        {
            "Volumes": [
                {
                    "VolumeId": "vol-data",
                    "State": "in-use",
                    "VolumeType": "io2",
                    "Iops": 6000,
                    "AvailabilityZone": "us-east-1a",
                }
            ]
        },
        {"VolumeIds": ["vol-data"]},
    )

    volume = client.get_volume("vol-data")

    assert volume.status is VolumeStatus.IN_USE
    assert volume.storage_class == "io2"
    assert volume.iops == 6000
    assert volume.zone == "us-east-1a"


def test_delete_volume_in_use_is_conflict(client: AWSCloudClient, stubber: Stubber) -> None:
    stubber.add_client_error(
        "delete_volume",
        service_error_code="VolumeInUse",
        service_message="Volume vol-data is currently attached",
        http_status_code=400,
        expected_params={"VolumeId": "vol-data"},
    )

    with pytest.raises(CloudError) as excinfo:
        client.delete_volume("vol-data")

    assert excinfo.value.is_conflict
    assert isinstance(excinfo.value.__cause__, ClientError)


def test_detach_of_available_volume_is_not_found(client: AWSCloudClient, stubber: Stubber) -> None:
    """EC2 reports IncorrectState for a detached volume; the adapter calls it NOT_FOUND."""
    stubber.add_client_error(
        "detach_volume",
        service_error_code="IncorrectState",
        service_message="Volume 'vol-data' is in the 'available' state.",
        http_status_code=400,
        expected_params={"InstanceId": "i-1", "VolumeId": "vol-data"},
    )

    with pytest.raises(CloudError) as excinfo:
        client.detach_volume("i-1", "vol-data")

    assert excinfo.value.kind is ErrorKind.NOT_FOUND


def test_detach_of_busy_volume_stays_conflict(client: AWSCloudClient, stubber: Stubber) -> None:
    stubber.add_client_error(
        "detach_volume",
        service_error_code="IncorrectState",
        service_message="Volume is busy detaching.",
        http_status_code=400,
    )

    with pytest.raises(CloudError) as excinfo:
        client.detach_volume("i-1", "vol-data")

    assert excinfo.value.kind is ErrorKind.CONFLICT


def test_create_volume_from_snapshot_sends_tags(client: AWSCloudClient, stubber: Stubber) -> None:
    """Restored volumes carry a Name tag, the zone and requested iops."""
    stubber.add_response(
        "create_volume",
        {"VolumeId": "vol-new"},
        {
            "SnapshotId": "snap-1",
            "AvailabilityZone": "us-east-1a",
            "VolumeType": "gp3",
            "Iops": 5000,
            "TagSpecifications": [
                {
                    "ResourceType": "volume",
                    "Tags": [{"Key": "Name", "Value": "cloudypad-gaming-data-from-nightly"}],
                }
            ],
        },
    )

    volume_id = client.create_volume_from_snapshot(
        "snap-1", "cloudypad-gaming-data-from-nightly", zone="us-east-1a", iops=5000
    )

    assert volume_id == "vol-new"


def test_create_volume_requires_zone(client: AWSCloudClient) -> None:
    with pytest.raises(CloudError, match="availability zone"):
        client.create_volume_from_snapshot("snap-1", "name")


def test_find_snapshot_by_name_returns_newest(client: AWSCloudClient, stubber: Stubber) -> None:
    """When several snapshots share a name the most recent one wins."""
    stubber.add_response(
        "describe_snapshots",
        {
            "Snapshots": [
                {
                    "SnapshotId": "snap-old",
                    "VolumeId": "vol-data",
                    "StartTime": datetime(2025, 10, 1, tzinfo=UTC),
                    "Tags": [{"Key": "Name", "Value": "cloudypad-gaming-data-nightly"}],
                },
                {
                    "SnapshotId": "snap-new",
                    "VolumeId": "vol-data",
                    "StartTime": datetime(2025, 10, 6, tzinfo=UTC),
                    "Tags": [{"Key": "Name", "Value": "cloudypad-gaming-data-nightly"}],
                },
            ]
        },
        {
            "OwnerIds": ["self"],
            "Filters": [{"Name": "tag:Name", "Values": ["cloudypad-gaming-data-nightly"]}],
        },
    )

    record = client.find_snapshot_by_name("cloudypad-gaming-data-nightly")

    assert record is not None
    assert record.id == "snap-new"
    assert record.source_volume_id == "vol-data"


def test_find_snapshot_by_name_missing(client: AWSCloudClient, stubber: Stubber) -> None:
    stubber.add_response("describe_snapshots", {"Snapshots": []})

    assert client.find_snapshot_by_name("absent") is None


def test_connection_failures_are_transport_errors() -> None:
    """botocore transport exceptions are classified as TRANSPORT."""

    class Unreachable:
        def delete_snapshot(self, **_: object) -> None:
            raise EndpointConnectionError(endpoint_url="https://ec2.us-east-1.amazonaws.com")

    client = AWSCloudClient(ec2=Unreachable())

    with pytest.raises(CloudError) as excinfo:
        client.delete_snapshot("snap-1")

    assert excinfo.value.kind is ErrorKind.TRANSPORT
    assert excinfo.value.code == "EndpointConnectionError"


def test_create_volume_keeps_type_and_drops_unsupported_iops(client: AWSCloudClient, stubber: Stubber) -> None:
    """A gp2 restore keeps gp2 and sends no Iops, which gp2 does not accept."""
    stubber.add_response(
        "create_volume",
        {"VolumeId": "vol-new"},
        {
            "SnapshotId": "snap-1",
            "AvailabilityZone": "us-east-1a",
            "VolumeType": "gp2",
            "TagSpecifications": [
                {"ResourceType": "volume", "Tags": [{"Key": "Name", "Value": "restored"}]}
            ],
        },
    )

    assert client.create_volume_from_snapshot(
        "snap-1", "restored", zone="us-east-1a", iops=300, volume_type="gp2"
    ) == "vol-new"


def test_create_volume_clamps_iops_to_type_range(client: AWSCloudClient, stubber: Stubber) -> None:
    """Baseline iops below the gp3 floor are raised to it."""
    stubber.add_response(
        "create_volume",
        {"VolumeId": "vol-new"},
        {
            "SnapshotId": "snap-1",
            "AvailabilityZone": "us-east-1a",
            "VolumeType": "gp3",
            "Iops": 3000,
            "TagSpecifications": [
                {"ResourceType": "volume", "Tags": [{"Key": "Name", "Value": "restored"}]}
            ],
        },
    )

    client.create_volume_from_snapshot("snap-1", "restored", zone="us-east-1a", iops=300)


@pytest.mark.parametrize(
    ("volume_type", "iops", "expected"),
    [
        ("gp3", 5000, 5000),
        ("gp3", 20000, 16000),
        ("io2", 50, 100),
        ("gp2", 300, None),
        ("st1", 500, None),
        ("gp3", None, None),
    ],
)
def test_provisioned_iops(volume_type: str, iops: int | None, expected: int | None) -> None:
    assert provisioned_iops(volume_type, iops) == expected
