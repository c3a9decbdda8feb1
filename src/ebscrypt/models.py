"""Shared data models for the ebscrypt workflow."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class VolumeState(str, Enum):
    """EBS volume lifecycle states (as reported by describe_volumes)."""

    CREATING = "creating"
    AVAILABLE = "available"
    IN_USE = "in-use"
    DELETING = "deleting"
    DELETED = "deleted"
    ERROR = "error"


# Discovery filter: only these states are actionable
ACTIONABLE_STATES = (VolumeState.AVAILABLE.value, VolumeState.IN_USE.value)


class Attachment(BaseModel):
    """Binding of a volume to a device path on one instance."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    instance_id: str = Field(alias="instanceId")
    device: str


class Volume(BaseModel):
    """Unencrypted volume as read during discovery. Never mutated in place."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    volume_id: str = Field(alias="volumeId")
    name: str = ""
    volume_type: str = Field(alias="volume-type")
    zone: str
    state: str
    iops: int | None = None
    multi_attach_enabled: bool = Field(default=False, alias="multi-attach-enabled")
    auto_enable_io: bool = Field(default=False, alias="auto-enable-io")
    size: int
    attachments: tuple[Attachment, ...] = ()
    # gp3 only; needed to clone faithfully but not part of the printed listing
    throughput: int | None = Field(default=None, exclude=True)

    @property
    def instance_ids(self) -> list[str]:
        """Distinct attached instance ids, in attachment order."""
        seen: list[str] = []
        for attachment in self.attachments:
            if attachment.instance_id and attachment.instance_id not in seen:
                seen.append(attachment.instance_id)
        return seen

    @property
    def encrypted_name(self) -> str:
        return f"{self.name} (encrypted)"


class RemediationStep(str, Enum):
    """Per-volume workflow states, in execution order."""

    QUIESCE = "quiesce"
    SNAPSHOT = "snapshot"
    CLONE = "clone"
    REBIND = "rebind"
    RETIRE = "retire"
    RESUME = "resume"
    DONE = "done"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (RemediationStep.DONE, RemediationStep.FAILED)


class RemediationResult(BaseModel):
    """Outcome of one volume's remediation (complete or partial)."""

    source_volume_id: str
    encrypted_volume_id: str | None = None
    snapshot_id: str | None = None
    instance_ids: list[str] = Field(default_factory=list)
    final_step: RemediationStep = RemediationStep.QUIESCE
    duration_seconds: float = 0.0
    timeline: list[str] = Field(default_factory=list)


_VOLUME_LIST = TypeAdapter(list[Volume])


def dump_volumes(volumes: list[Volume]) -> str:
    """Serialize discovered volumes as a single JSON line using the listing field names."""
    return _VOLUME_LIST.dump_json(volumes, by_alias=True).decode("utf-8")
