"""
Remediation layer: replace unencrypted volumes with encrypted copies via EC2 APIs.

The Remediator runs the per-volume workflow; wait_for is the polling
primitive behind every state-transition wait.
"""

from ebscrypt.remediation.engine import RemediationContext, Remediator
from ebscrypt.remediation.waiters import wait_for

__all__ = ["RemediationContext", "Remediator", "wait_for"]
