"""
Region selection.

Resolves the user-supplied region list against the regions EC2 reports.
"""

from ebscrypt.region_selector.selector import parse_regions, select_regions

__all__ = ["parse_regions", "select_regions"]
