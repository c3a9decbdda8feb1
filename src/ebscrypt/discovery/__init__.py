"""
Volume discovery.

Lists unencrypted, actionable EBS volumes in a region and enriches them with
attachment and autoEnableIO metadata.
"""

from ebscrypt.discovery.volumes import UNENCRYPTED_FILTERS, get_unencrypted_volumes

__all__ = ["UNENCRYPTED_FILTERS", "get_unencrypted_volumes"]
