"""
Per-volume remediation: replace an unencrypted volume with an encrypted copy.

  Quiesce → Snapshot → Clone → Rebind → Retire → Resume → Done

Each step is a transition function that takes the RemediationContext, talks
to the gateway, blocks until the provider reports the target state, and
returns the next step. Any failure moves the context to FAILED and aborts.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, Field

from ebscrypt.config import Settings, get_settings
from ebscrypt.errors import EbscryptError, RemediationError, WaitFailedError
from ebscrypt.models import (
    Attachment,
    RemediationResult,
    RemediationStep,
    Volume,
    VolumeState,
)
from ebscrypt.provider import EC2Gateway
from ebscrypt.remediation.waiters import wait_for

logger = logging.getLogger(__name__)

# Instance states from which the wait target can no longer be reached
_STOP_FAILURE_STATES = frozenset({"shutting-down", "terminated"})
_START_FAILURE_STATES = frozenset({"shutting-down", "terminated", "stopping"})
# Instances in these states before Quiesce are restarted by Resume
_RESUMABLE_STATES = frozenset({"pending", "running"})


class RemediationContext(BaseModel):
    """Mutable state of one volume's workflow; what has been done so far."""

    volume: Volume
    step: RemediationStep = RemediationStep.QUIESCE
    instances_to_resume: list[str] = Field(default_factory=list)
    snapshot_id: str | None = None
    encrypted_volume_id: str | None = None
    detached: list[Attachment] = Field(default_factory=list)
    attached: list[Attachment] = Field(default_factory=list)
    snapshot_deleted: bool = False
    source_deleted: bool = False
    timeline: list[str] = Field(default_factory=list)

    def note(self, message: str) -> None:
        self.timeline.append(message)
        logger.info(message, extra={"volume_id": self.volume.volume_id, "step": self.step.value})


def _attachment_state(raw_volume: dict[str, Any], attachment: Attachment) -> str | None:
    """State of `attachment` on a describe_volumes entry, or None if it is gone."""
    for a in raw_volume.get("Attachments") or []:
        if a.get("InstanceId") == attachment.instance_id and a.get("Device") == attachment.device:
            return a.get("State")
    return None


def _volume_state(raw_volume: dict[str, Any], description: str) -> str:
    state = raw_volume.get("State") or ""
    if state == VolumeState.ERROR.value:
        raise WaitFailedError(description, state)
    return state


class Remediator:
    """
    Runs the replacement workflow for volumes in one region, strictly serially.

    The gateway is bound to a single region. With settings.rollback_on_failure
    a failure before Retire re-attaches the source volume and restarts the
    instances that were stopped; the snapshot and any encrypted copy are kept.
    """

    def __init__(self, gateway: EC2Gateway, settings: Settings | None = None) -> None:
        self._gateway = gateway
        self._settings = settings or get_settings()
        self._transitions: dict[RemediationStep, Callable[[RemediationContext], RemediationStep]] = {
            RemediationStep.QUIESCE: self._quiesce,
            RemediationStep.SNAPSHOT: self._snapshot,
            RemediationStep.CLONE: self._clone,
            RemediationStep.REBIND: self._rebind,
            RemediationStep.RETIRE: self._retire,
            RemediationStep.RESUME: self._resume,
        }

    def remediate_all(self, volumes: list[Volume]) -> list[RemediationResult]:
        """Remediate volumes one after another; the first failure halts the batch."""
        results = []
        for volume in volumes:
            results.append(self.remediate(volume))
        return results

    def remediate(self, volume: Volume) -> RemediationResult:
        """Replace `volume` with an encrypted copy. Raises RemediationError on failure."""
        ctx = RemediationContext(volume=volume)
        start = time.monotonic()
        logger.info(
            "Remediating unencrypted volume %s",
            volume.volume_id,
            extra={"volume_id": volume.volume_id, "attachments": len(volume.attachments)},
        )
        while not ctx.step.terminal:
            step = ctx.step
            try:
                ctx.step = self.advance(ctx)
            except EbscryptError as e:
                ctx.step = RemediationStep.FAILED
                logger.error(
                    "Remediation of %s failed during %s: %s",
                    volume.volume_id,
                    step.value,
                    e,
                    extra={"volume_id": volume.volume_id, "step": step.value},
                )
                if self._settings.rollback_on_failure:
                    self._compensate(ctx, step)
                raise RemediationError(
                    volume.volume_id, step, self._result(ctx, start), e
                ) from e

        ctx.note(
            f"Replaced unencrypted volume {volume.volume_id} "
            f"with encrypted volume {ctx.encrypted_volume_id}"
        )
        return self._result(ctx, start)

    def advance(self, ctx: RemediationContext) -> RemediationStep:
        """Run the transition for ctx.step and return the step that follows it."""
        return self._transitions[ctx.step](ctx)

    # Transitions

    def _quiesce(self, ctx: RemediationContext) -> RemediationStep:
        instance_ids = ctx.volume.instance_ids
        if not instance_ids:
            ctx.note(f"Volume {ctx.volume.volume_id} is not attached; no instances to stop")
            return RemediationStep.SNAPSHOT

        prior = self._gateway.describe_instance_states(instance_ids)
        self._gateway.stop_instances(instance_ids)
        ctx.instances_to_resume = [i for i in instance_ids if prior.get(i) in _RESUMABLE_STATES]
        self._wait_for_instances(instance_ids, "stopped", _STOP_FAILURE_STATES)
        ctx.note(f"Stopped instances {', '.join(instance_ids)}")
        return RemediationStep.SNAPSHOT

    def _snapshot(self, ctx: RemediationContext) -> RemediationStep:
        volume_id = ctx.volume.volume_id
        ctx.snapshot_id = self._gateway.create_snapshot(volume_id, name=volume_id)
        description = f"snapshot {ctx.snapshot_id} to complete"

        def completed(snapshot: dict[str, Any]) -> bool:
            state = snapshot.get("State")
            if state == "error":
                raise WaitFailedError(description, state)
            return state == "completed"

        wait_for(
            lambda: self._gateway.describe_snapshot(ctx.snapshot_id),
            completed,
            interval=self._settings.snapshot_poll_interval_seconds,
            description=description,
        )
        ctx.note(f"Snapshot {ctx.snapshot_id} created")
        return RemediationStep.CLONE

    def _clone(self, ctx: RemediationContext) -> RemediationStep:
        volume = ctx.volume
        response = self._gateway.create_volume(
            snapshot_id=ctx.snapshot_id,
            volume_type=volume.volume_type,
            zone=volume.zone,
            size=volume.size,
            name=volume.encrypted_name,
            iops=volume.iops,
            throughput=volume.throughput,
            multi_attach_enabled=volume.multi_attach_enabled,
        )
        ctx.encrypted_volume_id = response["VolumeId"]
        self._wait_for_volume(
            ctx.encrypted_volume_id,
            lambda raw, d: _volume_state(raw, d) == VolumeState.AVAILABLE.value,
            "available",
        )
        # autoEnableIO cannot be passed to create_volume
        self._gateway.set_auto_enable_io(ctx.encrypted_volume_id, volume.auto_enable_io)
        ctx.note(
            f"Created encrypted volume {ctx.encrypted_volume_id} from snapshot {ctx.snapshot_id}"
        )
        return RemediationStep.REBIND

    def _rebind(self, ctx: RemediationContext) -> RemediationStep:
        source_id = ctx.volume.volume_id
        attachments = list(ctx.volume.attachments)

        # Detach everything before attaching anything: no device is ever claimed twice
        for index, attachment in enumerate(attachments):
            self._gateway.detach_volume(source_id, attachment.instance_id, attachment.device)
            ctx.detached.append(attachment)
            last = index == len(attachments) - 1
            self._wait_for_detached(source_id, attachment, require_available=last)
            ctx.note(f"Detached {source_id} from {attachment.instance_id} ({attachment.device})")

        for attachment in attachments:
            self._gateway.attach_volume(
                ctx.encrypted_volume_id, attachment.instance_id, attachment.device
            )
            ctx.attached.append(attachment)
            self._wait_for_attached(ctx.encrypted_volume_id, attachment)
            ctx.note(
                f"Attached {ctx.encrypted_volume_id} to {attachment.instance_id} "
                f"({attachment.device})"
            )

        if attachments:
            ctx.note(
                f"Redirected volume {source_id} attachments to "
                f"encrypted volume {ctx.encrypted_volume_id}"
            )
        return RemediationStep.RETIRE

    def _retire(self, ctx: RemediationContext) -> RemediationStep:
        self._gateway.delete_snapshot(ctx.snapshot_id)
        ctx.snapshot_deleted = True
        ctx.note(f"Snapshot {ctx.snapshot_id} deleted")
        self._gateway.delete_volume(ctx.volume.volume_id)
        ctx.source_deleted = True
        ctx.note(f"Deleted unencrypted volume {ctx.volume.volume_id}")
        return RemediationStep.RESUME

    def _resume(self, ctx: RemediationContext) -> RemediationStep:
        instance_ids = ctx.instances_to_resume
        if instance_ids:
            self._gateway.start_instances(instance_ids)
            self._wait_for_instances(instance_ids, "running", _START_FAILURE_STATES)
            ctx.note(f"Started instances {', '.join(instance_ids)}")
        return RemediationStep.DONE

    # Waits

    def _wait_for_instances(
        self, instance_ids: list[str], target: str, failure_states: frozenset[str]
    ) -> None:
        description = f"instances {', '.join(instance_ids)} to be {target}"

        def reached(states: dict[str, str]) -> bool:
            for instance_id in instance_ids:
                state = states.get(instance_id, "")
                if state in failure_states:
                    raise WaitFailedError(f"instance {instance_id} to be {target}", state)
            return all(states.get(i) == target for i in instance_ids)

        wait_for(
            lambda: self._gateway.describe_instance_states(instance_ids),
            reached,
            interval=self._settings.instance_poll_delay_seconds,
            timeout=self._settings.instance_wait_timeout_seconds,
            max_interval=self._settings.instance_poll_max_delay_seconds,
            backoff=2.0,
            description=description,
        )

    def _wait_for_volume(
        self,
        volume_id: str,
        predicate: Callable[[dict[str, Any], str], bool],
        target: str,
    ) -> dict[str, Any]:
        description = f"volume {volume_id} to be {target}"
        return wait_for(
            lambda: self._gateway.describe_volume(volume_id),
            lambda raw: predicate(raw, description),
            interval=self._settings.volume_poll_interval_seconds,
            description=description,
        )

    def _wait_for_detached(
        self, volume_id: str, attachment: Attachment, require_available: bool
    ) -> None:
        def detached(raw: dict[str, Any], description: str) -> bool:
            state = _volume_state(raw, description)
            if _attachment_state(raw, attachment) not in (None, "detached"):
                return False
            return not require_available or state == VolumeState.AVAILABLE.value

        target = "available" if require_available else f"detached from {attachment.instance_id}"
        self._wait_for_volume(volume_id, detached, target)

    def _wait_for_attached(self, volume_id: str, attachment: Attachment) -> None:
        def attached(raw: dict[str, Any], description: str) -> bool:
            state = _volume_state(raw, description)
            return (
                state == VolumeState.IN_USE.value
                and _attachment_state(raw, attachment) == "attached"
            )

        self._wait_for_volume(volume_id, attached, f"in-use on {attachment.instance_id}")

    # Failure handling

    def _compensate(self, ctx: RemediationContext, failed_step: RemediationStep) -> None:
        """
        Undo Rebind and Quiesce after a failure, as far as possible.

        Attachments are only restored while Rebind is unfinished. Stops at the
        first failed action; leftover resources are logged for manual cleanup.
        """
        volume_id = ctx.volume.volume_id
        try:
            if failed_step == RemediationStep.REBIND:
                for attachment in ctx.attached:
                    self._gateway.detach_volume(
                        ctx.encrypted_volume_id, attachment.instance_id, attachment.device
                    )
                    self._wait_for_detached(
                        ctx.encrypted_volume_id, attachment, require_available=False
                    )
                    logger.info(
                        "Rollback: detached %s from %s",
                        ctx.encrypted_volume_id,
                        attachment.instance_id,
                        extra={"volume_id": volume_id},
                    )
                for attachment in ctx.detached:
                    self._wait_for_detached(volume_id, attachment, require_available=False)
                    self._gateway.attach_volume(volume_id, attachment.instance_id, attachment.device)
                    self._wait_for_attached(volume_id, attachment)
                    logger.info(
                        "Rollback: re-attached %s to %s (%s)",
                        volume_id,
                        attachment.instance_id,
                        attachment.device,
                        extra={"volume_id": volume_id},
                    )
            # A failed Resume is not retried
            if ctx.instances_to_resume and failed_step != RemediationStep.RESUME:
                self._gateway.start_instances(ctx.instances_to_resume)
                self._wait_for_instances(ctx.instances_to_resume, "running", _START_FAILURE_STATES)
                logger.info(
                    "Rollback: restarted instances %s",
                    ", ".join(ctx.instances_to_resume),
                    extra={"volume_id": volume_id},
                )
        except EbscryptError as e:
            logger.error(
                "Rollback of %s incomplete: %s",
                volume_id,
                e,
                extra={"volume_id": volume_id},
                exc_info=True,
            )
        leftovers = []
        if ctx.snapshot_id and not ctx.snapshot_deleted:
            leftovers.append(f"snapshot {ctx.snapshot_id}")
        if ctx.encrypted_volume_id and failed_step in (RemediationStep.CLONE, RemediationStep.REBIND):
            leftovers.append(f"encrypted volume {ctx.encrypted_volume_id}")
        if failed_step == RemediationStep.RETIRE and not ctx.source_deleted:
            leftovers.append(f"unencrypted volume {volume_id}")
        if leftovers:
            logger.warning(
                "Resources left in place after failed remediation of %s: %s",
                volume_id,
                ", ".join(leftovers),
                extra={"volume_id": volume_id},
            )

    def _result(self, ctx: RemediationContext, start: float) -> RemediationResult:
        return RemediationResult(
            source_volume_id=ctx.volume.volume_id,
            encrypted_volume_id=ctx.encrypted_volume_id,
            snapshot_id=ctx.snapshot_id,
            instance_ids=ctx.volume.instance_ids,
            final_step=ctx.step,
            duration_seconds=time.monotonic() - start,
            timeline=list(ctx.timeline),
        )
