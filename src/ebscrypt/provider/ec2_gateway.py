"""EC2 gateway: the boto3 calls the discovery and remediation layers consume."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from ebscrypt.config import Settings
from ebscrypt.errors import ProviderError

logger = logging.getLogger(__name__)

# Volume types that accept an explicit Iops / Throughput on create_volume
IOPS_VOLUME_TYPES = ("io1", "io2", "gp3")
THROUGHPUT_VOLUME_TYPES = ("gp3",)


def _name_tag(resource_type: str, value: str) -> list[dict[str, Any]]:
    return [
        {
            "ResourceType": resource_type,
            "Tags": [{"Key": "Name", "Value": value}],
        }
    ]


class EC2Gateway:
    """
    Thin wrapper around one regional EC2 client.

    Every call is funnelled through _call so that botocore failures surface as
    ProviderError naming the operation. The client is passed in explicitly;
    one gateway per region, nothing is shared between them.
    """

    def __init__(self, client: Any, region: str | None = None) -> None:
        self._client = client
        self.region = region or getattr(getattr(client, "meta", None), "region_name", None)

    def _call(self, operation: str, **kwargs: Any) -> dict[str, Any]:
        try:
            return getattr(self._client, operation)(**kwargs)
        except (ClientError, BotoCoreError) as e:
            raise ProviderError(operation, str(e)) from e

    # Regions

    def describe_regions(self) -> set[str]:
        response = self._call("describe_regions")
        return {r["RegionName"] for r in response.get("Regions") or []}

    # Volumes

    def iter_volumes(self, filters: list[dict[str, Any]]) -> Iterator[dict[str, Any]]:
        """Yield raw volumes matching filters across all describe_volumes pages."""
        try:
            paginator = self._client.get_paginator("describe_volumes")
            for page in paginator.paginate(Filters=filters):
                yield from page.get("Volumes") or []
        except (ClientError, BotoCoreError) as e:
            raise ProviderError("describe_volumes", str(e)) from e

    def describe_volume(self, volume_id: str) -> dict[str, Any]:
        response = self._call("describe_volumes", VolumeIds=[volume_id])
        volumes = response.get("Volumes") or []
        if not volumes:
            raise ProviderError("describe_volumes", f"volume {volume_id} not found")
        return volumes[0]

    def get_auto_enable_io(self, volume_id: str) -> bool:
        response = self._call(
            "describe_volume_attribute",
            VolumeId=volume_id,
            Attribute="autoEnableIO",
        )
        return bool((response.get("AutoEnableIO") or {}).get("Value", False))

    def set_auto_enable_io(self, volume_id: str, value: bool) -> None:
        self._call(
            "modify_volume_attribute",
            VolumeId=volume_id,
            AutoEnableIO={"Value": value},
        )

    def create_volume(
        self,
        snapshot_id: str,
        volume_type: str,
        zone: str,
        size: int,
        name: str,
        iops: int | None = None,
        throughput: int | None = None,
        multi_attach_enabled: bool = False,
    ) -> dict[str, Any]:
        """Create an encrypted volume from a snapshot. Returns the create_volume response."""
        kwargs: dict[str, Any] = {
            "SnapshotId": snapshot_id,
            "VolumeType": volume_type,
            "AvailabilityZone": zone,
            "Size": size,
            "MultiAttachEnabled": multi_attach_enabled,
            "Encrypted": True,
            "TagSpecifications": _name_tag("volume", name),
        }
        if iops and volume_type in IOPS_VOLUME_TYPES:
            kwargs["Iops"] = iops
        if throughput and volume_type in THROUGHPUT_VOLUME_TYPES:
            kwargs["Throughput"] = throughput
        return self._call("create_volume", **kwargs)

    def attach_volume(self, volume_id: str, instance_id: str, device: str) -> None:
        self._call("attach_volume", VolumeId=volume_id, InstanceId=instance_id, Device=device)

    def detach_volume(self, volume_id: str, instance_id: str, device: str) -> None:
        self._call("detach_volume", VolumeId=volume_id, InstanceId=instance_id, Device=device)

    def delete_volume(self, volume_id: str) -> None:
        self._call("delete_volume", VolumeId=volume_id)

    # Snapshots

    def create_snapshot(self, volume_id: str, name: str) -> str:
        response = self._call(
            "create_snapshot",
            VolumeId=volume_id,
            TagSpecifications=_name_tag("snapshot", name),
        )
        return response["SnapshotId"]

    def describe_snapshot(self, snapshot_id: str) -> dict[str, Any]:
        response = self._call("describe_snapshots", SnapshotIds=[snapshot_id])
        snapshots = response.get("Snapshots") or []
        if not snapshots:
            raise ProviderError("describe_snapshots", f"snapshot {snapshot_id} not found")
        return snapshots[0]

    def delete_snapshot(self, snapshot_id: str) -> None:
        self._call("delete_snapshot", SnapshotId=snapshot_id)

    # Instances

    def stop_instances(self, instance_ids: list[str]) -> None:
        self._call("stop_instances", InstanceIds=instance_ids)

    def start_instances(self, instance_ids: list[str]) -> None:
        self._call("start_instances", InstanceIds=instance_ids)

    def describe_instance_states(self, instance_ids: list[str]) -> dict[str, str]:
        """Return {instance_id: state name} for the given instances."""
        response = self._call("describe_instances", InstanceIds=instance_ids)
        states: dict[str, str] = {}
        for reservation in response.get("Reservations") or []:
            for instance in reservation.get("Instances") or []:
                states[instance["InstanceId"]] = (instance.get("State") or {}).get("Name", "")
        return states


def session_for(settings: Settings) -> boto3.Session:
    """boto3 session from the configured credentials profile (or the default chain)."""
    try:
        return boto3.Session(profile_name=settings.aws_profile or None)
    except BotoCoreError as e:
        raise ProviderError("load credentials", str(e)) from e


def gateway_for_region(session: boto3.Session, region: str, settings: Settings) -> EC2Gateway:
    """Create a gateway bound to a fresh EC2 client for `region`."""
    config = Config(read_timeout=settings.aws_read_timeout_seconds)
    client = session.client("ec2", region_name=region, config=config)
    logger.debug("Created EC2 client", extra={"region": region})
    return EC2Gateway(client, region=region)
