"""CLI entry point for ebscrypt."""

import argparse
import logging
import sys

from pydantic import ValidationError

from ebscrypt.config import get_settings
from ebscrypt.errors import EbscryptError
from ebscrypt.workflow import run

logger = logging.getLogger("ebscrypt")


def main(argv: list[str] | None = None) -> int:
    try:
        settings = get_settings()
    except ValidationError as e:
        # logging is not configured yet; this reaches stderr via the last-resort handler
        logger.error("Invalid configuration: %s", e)
        return 1

    parser = argparse.ArgumentParser(
        description="ebscrypt — replace unencrypted EBS volumes with encrypted copies"
    )
    parser.add_argument(
        "-r",
        "--regions",
        default=None,
        help=f"Comma-separated regions to remediate (default: {settings.default_region})",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        stream=sys.stderr,
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        results = run(regions=args.regions, settings=settings)
    except EbscryptError as e:
        logger.error("%s", e, exc_info=logger.isEnabledFor(logging.DEBUG))
        return 1
    logger.info("Remediated %d volume(s)", len(results))
    return 0


if __name__ == "__main__":
    sys.exit(main())
