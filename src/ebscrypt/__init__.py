"""
ebscrypt — Unencrypted EBS volume remediation.

Finds unencrypted EBS volumes and replaces each with an encrypted copy,
keeping its attachments and stopping attached instances only as long as
the swap takes.
"""

__version__ = "0.1.0"
