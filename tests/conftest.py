"""Shared fixtures: an in-memory EC2 client answering the calls ebscrypt makes."""

import copy
import itertools
from types import SimpleNamespace
from unittest.mock import patch

import pytest
from botocore.exceptions import ClientError

from ebscrypt.config import Settings
from ebscrypt.provider import EC2Gateway


def client_error(operation: str, code: str = "InternalError", message: str = "boom") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": message}}, operation)


def _matches(volume: dict, filters: list[dict]) -> bool:
    for f in filters:
        if f["Name"] == "encrypted" and str(volume["Encrypted"]).lower() not in f["Values"]:
            return False
        if f["Name"] == "status" and volume["State"] not in f["Values"]:
            return False
    return True


class _VolumePaginator:
    def __init__(self, client: "FakeEC2Client") -> None:
        self._client = client

    def paginate(self, Filters):
        self._client._record("describe_volumes", Filters=Filters)
        matches = [v for v in self._client.volumes.values() if _matches(v, Filters)]
        size = self._client.page_size
        if not matches:
            yield {"Volumes": []}
        for i in range(0, len(matches), size):
            yield {"Volumes": copy.deepcopy(matches[i : i + size])}


class FakeEC2Client:
    """
    Stateful stand-in for a boto3 EC2 client.

    State changes requested by stop/start/snapshot/create/attach/detach settle
    only after `lag` describe calls on that resource, so waits actually poll.
    Every call is recorded in `calls` as (operation, kwargs).
    """

    def __init__(self, regions=("us-west-2", "us-east-1", "eu-west-1"), lag: int = 1, page_size: int = 2):
        self.region_names = list(regions)
        self.lag = lag
        self.page_size = page_size
        self.meta = SimpleNamespace(region_name="us-west-2")
        self.calls: list[tuple[str, dict]] = []
        self.volumes: dict[str, dict] = {}
        self.auto_enable_io: dict[str, bool] = {}
        self.instances: dict[str, str] = {}
        self.snapshots: dict[str, dict] = {}
        self._pending: dict[str, list] = {}
        self._failures: dict[str, list] = {}
        self._ids = itertools.count(100)

    # Setup helpers

    def add_instance(self, instance_id: str, state: str = "running") -> None:
        self.instances[instance_id] = state

    def add_volume(
        self,
        volume_id: str,
        *,
        size: int = 8,
        volume_type: str = "gp3",
        zone: str = "us-west-2a",
        iops: int | None = 3000,
        name: str | None = None,
        attachments=(),
        encrypted: bool = False,
        multi_attach: bool = False,
        auto_enable_io: bool = False,
        throughput: int | None = None,
        state: str | None = None,
    ) -> dict:
        raw = {
            "VolumeId": volume_id,
            "Size": size,
            "VolumeType": volume_type,
            "AvailabilityZone": zone,
            "Encrypted": encrypted,
            "MultiAttachEnabled": multi_attach,
            "State": state or ("in-use" if attachments else "available"),
            "Attachments": [
                {"VolumeId": volume_id, "InstanceId": i, "Device": d, "State": "attached"}
                for i, d in attachments
            ],
        }
        if iops is not None:
            raw["Iops"] = iops
        if throughput is not None:
            raw["Throughput"] = throughput
        if name is not None:
            raw["Tags"] = [{"Key": "Name", "Value": name}]
        self.volumes[volume_id] = raw
        self.auto_enable_io[volume_id] = auto_enable_io
        return raw

    def fail_on(self, operation: str, error=None, after: int = 0) -> None:
        """Make the (after + 1)-th call of `operation` raise (once)."""
        self._failures[operation] = [after, error or client_error(operation)]

    def ops(self, *names: str) -> list[str]:
        return [op for op, _ in self.calls if not names or op in names]

    def calls_of(self, name: str) -> list[dict]:
        return [kwargs for op, kwargs in self.calls if op == name]

    def attachments_of(self, volume_id: str) -> list[tuple[str, str, str]]:
        return [
            (a["InstanceId"], a["Device"], a["State"])
            for a in self.volumes[volume_id]["Attachments"]
        ]

    # Internals

    def _record(self, operation: str, **kwargs) -> None:
        self.calls.append((operation, kwargs))
        failure = self._failures.get(operation)
        if failure is not None:
            if failure[0] == 0:
                del self._failures[operation]
                raise failure[1]
            failure[0] -= 1

    def _defer(self, key: str, apply) -> None:
        if self.lag <= 0:
            apply()
        else:
            self._pending[key] = [self.lag, apply]

    def _settle(self, key: str) -> None:
        pending = self._pending.get(key)
        if pending is None:
            return
        if pending[0] <= 0:
            del self._pending[key]
            pending[1]()
        else:
            pending[0] -= 1

    def _volume(self, volume_id: str, operation: str) -> dict:
        if volume_id not in self.volumes:
            raise client_error(operation, "InvalidVolume.NotFound", f"{volume_id} not found")
        return self.volumes[volume_id]

    # EC2 API

    def get_paginator(self, name: str):
        assert name == "describe_volumes"
        return _VolumePaginator(self)

    def describe_regions(self):
        self._record("describe_regions")
        return {"Regions": [{"RegionName": r} for r in self.region_names]}

    def describe_volumes(self, VolumeIds):
        self._record("describe_volumes", VolumeIds=VolumeIds)
        out = []
        for volume_id in VolumeIds:
            self._volume(volume_id, "DescribeVolumes")
            self._settle(volume_id)
            out.append(copy.deepcopy(self.volumes[volume_id]))
        return {"Volumes": out}

    def describe_volume_attribute(self, VolumeId, Attribute):
        self._record("describe_volume_attribute", VolumeId=VolumeId, Attribute=Attribute)
        self._volume(VolumeId, "DescribeVolumeAttribute")
        return {"VolumeId": VolumeId, "AutoEnableIO": {"Value": self.auto_enable_io[VolumeId]}}

    def modify_volume_attribute(self, VolumeId, AutoEnableIO):
        self._record("modify_volume_attribute", VolumeId=VolumeId, AutoEnableIO=AutoEnableIO)
        self._volume(VolumeId, "ModifyVolumeAttribute")
        self.auto_enable_io[VolumeId] = AutoEnableIO["Value"]

    def create_volume(self, **kwargs):
        self._record("create_volume", **kwargs)
        volume_id = f"vol-enc{next(self._ids)}"
        raw = {
            "VolumeId": volume_id,
            "Size": kwargs["Size"],
            "VolumeType": kwargs["VolumeType"],
            "AvailabilityZone": kwargs["AvailabilityZone"],
            "Encrypted": kwargs.get("Encrypted", False),
            "MultiAttachEnabled": kwargs.get("MultiAttachEnabled", False),
            "SnapshotId": kwargs["SnapshotId"],
            "State": "creating",
            "Attachments": [],
            "Tags": kwargs["TagSpecifications"][0]["Tags"],
        }
        if "Iops" in kwargs:
            raw["Iops"] = kwargs["Iops"]
        if "Throughput" in kwargs:
            raw["Throughput"] = kwargs["Throughput"]
        self.volumes[volume_id] = raw
        self.auto_enable_io[volume_id] = False
        self._defer(volume_id, lambda: raw.update(State="available"))
        return copy.deepcopy(raw)

    def attach_volume(self, VolumeId, InstanceId, Device):
        self._record("attach_volume", VolumeId=VolumeId, InstanceId=InstanceId, Device=Device)
        volume = self._volume(VolumeId, "AttachVolume")
        for other in self.volumes.values():
            for a in other["Attachments"]:
                if a["InstanceId"] == InstanceId and a["Device"] == Device:
                    raise client_error("AttachVolume", "InvalidParameterValue", f"{Device} is already in use")
        attachment = {"VolumeId": VolumeId, "InstanceId": InstanceId, "Device": Device, "State": "attaching"}
        volume["Attachments"].append(attachment)

        def done():
            attachment["State"] = "attached"
            volume["State"] = "in-use"

        self._defer(VolumeId, done)
        return dict(attachment)

    def detach_volume(self, VolumeId, InstanceId, Device):
        self._record("detach_volume", VolumeId=VolumeId, InstanceId=InstanceId, Device=Device)
        volume = self._volume(VolumeId, "DetachVolume")
        matching = [a for a in volume["Attachments"] if a["InstanceId"] == InstanceId and a["Device"] == Device]
        if not matching:
            raise client_error("DetachVolume", "IncorrectState", f"{VolumeId} is not attached to {InstanceId}")
        attachment = matching[0]
        attachment["State"] = "detaching"

        def done():
            volume["Attachments"].remove(attachment)
            if not volume["Attachments"]:
                volume["State"] = "available"

        self._defer(VolumeId, done)
        return dict(attachment)

    def delete_volume(self, VolumeId):
        self._record("delete_volume", VolumeId=VolumeId)
        volume = self._volume(VolumeId, "DeleteVolume")
        if volume["Attachments"]:
            raise client_error("DeleteVolume", "VolumeInUse", f"{VolumeId} is attached")
        del self.volumes[VolumeId]

    def create_snapshot(self, VolumeId, TagSpecifications):
        self._record("create_snapshot", VolumeId=VolumeId, TagSpecifications=TagSpecifications)
        self._volume(VolumeId, "CreateSnapshot")
        snapshot_id = f"snap-{next(self._ids)}"
        snapshot = {
            "SnapshotId": snapshot_id,
            "VolumeId": VolumeId,
            "State": "pending",
            "Tags": TagSpecifications[0]["Tags"],
        }
        self.snapshots[snapshot_id] = snapshot
        self._defer(snapshot_id, lambda: snapshot.update(State="completed"))
        return {"SnapshotId": snapshot_id, "State": "pending"}

    def describe_snapshots(self, SnapshotIds):
        self._record("describe_snapshots", SnapshotIds=SnapshotIds)
        out = []
        for snapshot_id in SnapshotIds:
            if snapshot_id not in self.snapshots:
                raise client_error("DescribeSnapshots", "InvalidSnapshot.NotFound")
            self._settle(snapshot_id)
            out.append(copy.deepcopy(self.snapshots[snapshot_id]))
        return {"Snapshots": out}

    def delete_snapshot(self, SnapshotId):
        self._record("delete_snapshot", SnapshotId=SnapshotId)
        if SnapshotId not in self.snapshots:
            raise client_error("DeleteSnapshot", "InvalidSnapshot.NotFound")
        del self.snapshots[SnapshotId]

    def _transition_instances(self, instance_ids, transient, final, skip):
        for instance_id in instance_ids:
            if self.instances[instance_id] == skip:
                continue
            self.instances[instance_id] = transient
            self._defer(instance_id, lambda i=instance_id: self.instances.__setitem__(i, final))

    def stop_instances(self, InstanceIds):
        self._record("stop_instances", InstanceIds=InstanceIds)
        self._transition_instances(InstanceIds, "stopping", "stopped", skip="stopped")
        return {"StoppingInstances": [{"InstanceId": i} for i in InstanceIds]}

    def start_instances(self, InstanceIds):
        self._record("start_instances", InstanceIds=InstanceIds)
        self._transition_instances(InstanceIds, "pending", "running", skip="running")
        return {"StartingInstances": [{"InstanceId": i} for i in InstanceIds]}

    def describe_instances(self, InstanceIds):
        self._record("describe_instances", InstanceIds=InstanceIds)
        instances = []
        for instance_id in InstanceIds:
            self._settle(instance_id)
            instances.append({"InstanceId": instance_id, "State": {"Name": self.instances[instance_id]}})
        return {"Reservations": [{"Instances": instances}]}


@pytest.fixture(autouse=True)
def no_sleep():
    """Polling waits return immediately in tests."""
    with patch("ebscrypt.remediation.waiters.time.sleep") as mock_sleep:
        yield mock_sleep


@pytest.fixture
def settings():
    return Settings(_env_file=None, aws_profile=None, default_region="us-west-2", log_level="DEBUG")


@pytest.fixture
def make_client():
    """Factory for extra in-memory EC2 clients."""
    return FakeEC2Client


@pytest.fixture
def ec2_client(make_client):
    return make_client()


@pytest.fixture
def gateway(ec2_client):
    return EC2Gateway(ec2_client, region="us-west-2")


@pytest.fixture
def regional_clients(make_client):
    """One FakeEC2Client per region, served to ebscrypt.workflow as its gateways."""
    clients: dict[str, FakeEC2Client] = {}

    def gateway_for_region(session, region, settings):
        client = clients.setdefault(region, make_client())
        return EC2Gateway(client, region=region)

    with patch("ebscrypt.workflow.gateway_for_region", side_effect=gateway_for_region):
        yield clients
