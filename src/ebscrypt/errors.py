"""Exception types raised by ebscrypt components."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ebscrypt.models import RemediationResult, RemediationStep


class EbscryptError(Exception):
    """Base class for all errors the CLI reports and exits on."""


class RegionValidationError(EbscryptError):
    """A requested region is not in the provider's region list."""

    def __init__(self, region: str) -> None:
        super().__init__(f"'{region}' is not a valid region")
        self.region = region


class ProviderError(EbscryptError):
    """An EC2 API call failed. The botocore exception is chained as __cause__."""

    def __init__(self, operation: str, message: str) -> None:
        super().__init__(f"{operation} failed: {message}")
        self.operation = operation


class WaitTimeoutError(EbscryptError):
    """A bounded wait exceeded its ceiling."""

    def __init__(self, description: str, timeout_seconds: float) -> None:
        super().__init__(f"timed out after {timeout_seconds:.0f}s waiting for {description}")
        self.description = description
        self.timeout_seconds = timeout_seconds


class WaitFailedError(EbscryptError):
    """A polled resource reached a state from which the target is unreachable."""

    def __init__(self, description: str, state: str) -> None:
        super().__init__(f"{description}: resource entered state '{state}'")
        self.description = description
        self.state = state


class RemediationError(EbscryptError):
    """Remediation of one volume aborted at `step`; `result` holds what was produced."""

    def __init__(
        self,
        volume_id: str,
        step: RemediationStep,
        result: RemediationResult,
        cause: Exception,
    ) -> None:
        super().__init__(f"remediation of {volume_id} failed during {step.value}: {cause}")
        self.volume_id = volume_id
        self.step = step
        self.result = result
