"""Region selection: parse the --regions value and validate it against EC2's region list."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from ebscrypt.errors import RegionValidationError

logger = logging.getLogger(__name__)


def parse_regions(value: str | None, default_region: str) -> list[str]:
    """
    Split a comma-separated region list, keeping first-seen order.

    No value (None or "") means [default_region]. Entries are kept exactly as
    given, so padded or empty entries fail validation.
    """
    if not value:
        return [default_region]
    regions: list[str] = []
    for region in value.split(","):
        if region not in regions:
            regions.append(region)
    return regions


def select_regions(
    value: str | None,
    known_regions: Iterable[str],
    default_region: str,
) -> list[str]:
    """Return the regions to operate in. Raises RegionValidationError on the first unknown one."""
    known = set(known_regions)
    regions = parse_regions(value, default_region)
    for region in regions:
        if region not in known:
            raise RegionValidationError(region)
    logger.info("Selected regions: %s", ", ".join(regions))
    return regions
