"""Discovery of unencrypted EBS volumes in one region."""

from __future__ import annotations

import logging
from typing import Any

from ebscrypt.models import ACTIONABLE_STATES, Attachment, Volume
from ebscrypt.provider import EC2Gateway

logger = logging.getLogger(__name__)

UNENCRYPTED_FILTERS = [
    {"Name": "encrypted", "Values": ["false"]},
    {"Name": "status", "Values": list(ACTIONABLE_STATES)},
]


def _name_from_tags(tags: list[dict[str, Any]] | None) -> str:
    for tag in tags or []:
        if tag.get("Key") == "Name":
            return tag.get("Value") or ""
    return ""


def _raw_to_volume(raw: dict[str, Any], auto_enable_io: bool) -> Volume:
    """Convert a describe_volumes entry into a Volume."""
    attachments = [
        Attachment(instance_id=a["InstanceId"], device=a["Device"])
        for a in raw.get("Attachments") or []
        if a.get("InstanceId")
    ]
    return Volume(
        volume_id=raw["VolumeId"],
        name=_name_from_tags(raw.get("Tags")),
        volume_type=raw.get("VolumeType") or "",
        zone=raw.get("AvailabilityZone") or "",
        state=raw.get("State") or "",
        iops=raw.get("Iops"),
        multi_attach_enabled=bool(raw.get("MultiAttachEnabled", False)),
        auto_enable_io=auto_enable_io,
        size=raw["Size"],
        attachments=attachments,
        throughput=raw.get("Throughput"),
    )


def get_unencrypted_volumes(gateway: EC2Gateway) -> list[Volume]:
    """
    Return every unencrypted volume in the gateway's region that is available or in-use.

    Each volume costs a second call (describe_volume_attribute autoEnableIO).
    Any failed call raises ProviderError; no partial list is returned.
    """
    volumes: list[Volume] = []
    for raw in gateway.iter_volumes(UNENCRYPTED_FILTERS):
        auto_enable_io = gateway.get_auto_enable_io(raw["VolumeId"])
        volumes.append(_raw_to_volume(raw, auto_enable_io))
    logger.info(
        "Discovered %d unencrypted volume(s)",
        len(volumes),
        extra={"region": gateway.region},
    )
    return volumes
