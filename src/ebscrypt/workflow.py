"""
Region-by-region remediation run.

  Select regions → per region: discover unencrypted volumes → print listing
    → remediate each volume serially
"""

from __future__ import annotations

import logging
import sys
from typing import TextIO

import boto3

from ebscrypt.config import Settings, get_settings
from ebscrypt.discovery import get_unencrypted_volumes
from ebscrypt.models import RemediationResult, dump_volumes
from ebscrypt.provider import gateway_for_region, session_for
from ebscrypt.region_selector import select_regions
from ebscrypt.remediation import Remediator

logger = logging.getLogger(__name__)


def run(
    regions: str | None = None,
    settings: Settings | None = None,
    session: boto3.Session | None = None,
    out: TextIO | None = None,
) -> list[RemediationResult]:
    """
    Discover and remediate unencrypted volumes in every selected region.

    `regions` is the raw comma-separated flag value. All regions are validated
    before any discovery call. Each region's volume listing is written to
    `out` (stdout) as one JSON line before its remediation starts. Any error
    propagates and halts the run.
    """
    settings = settings or get_settings()
    session = session or session_for(settings)
    out = out or sys.stdout

    bootstrap = gateway_for_region(session, settings.default_region, settings)
    selected = select_regions(regions, bootstrap.describe_regions(), settings.default_region)

    results: list[RemediationResult] = []
    for region in selected:
        gateway = gateway_for_region(session, region, settings)
        volumes = get_unencrypted_volumes(gateway)
        out.write(dump_volumes(volumes) + "\n")
        out.flush()

        logger.info(
            "Remediating %d volume(s) in %s",
            len(volumes),
            region,
            extra={"region": region},
        )
        results.extend(Remediator(gateway, settings).remediate_all(volumes))
    return results
