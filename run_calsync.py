#!/usr/bin/env python3
"""
calsync - mirror a read-only ICS feed into a CalDAV calendar.

This is the main entry point for the command line tool.
"""

import sys
import argparse
import logging
from datetime import date
from pathlib import Path

from calsync.config import Config, ConfigError
from calsync.ics_parser import FormatError
from calsync.ics_subscription import ICSSubscription, SourceFetchError
from calsync.remote_client import RemoteOperationFailure, build_remote_client
from calsync.sync_runner import SyncRunner
from calsync.timezone_utils import TimezoneResolver


logger = logging.getLogger("calsync")

EXAMPLE_CONFIG = """
[General]
password_program = "/usr/bin/pass"

[Source]
url = "https://example.com/calendar.ics"

[Remote]
backend = "caldav"
url = "https://nextcloud.example.com/remote.php/dav"
username = "your_username"
password_key = "nextcloud/password"
calendar = "Work"

[Sync]
default_timezone = "Europe/Moscow"
window_days = 30
"""


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="calsync - one-way sync of an ICS feed into a CalDAV calendar"
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        help="Path to configuration file (default: $XDG_CONFIG_HOME/calsync/calsync.toml)"
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug output"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        default=None,
        help="Show the planned changes without writing to the remote calendar"
    )
    parser.add_argument(
        "--start",
        type=date.fromisoformat,
        help="First day of the sync window (YYYY-MM-DD, default: today)"
    )
    parser.add_argument(
        "--days",
        type=int,
        help="Length of the sync window in days"
    )
    return parser.parse_args(argv)


def main(argv=None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    try:
        config = Config.load(args.config)
    except FileNotFoundError as e:
        logger.error("%s", e)
        logger.error("Create a configuration file at %s, for example:\n%s",
                     Config.get_default_config_path(), EXAMPLE_CONFIG)
        return 1
    except ConfigError as e:
        logger.error("Error loading configuration: %s", e)
        return 1

    if not args.debug:
        logging.getLogger().setLevel(config.log_level.upper())

    resolver = TimezoneResolver(config.sync.default_timezone, config.timezone_aliases)

    try:
        source = ICSSubscription(
            url=config.source.url,
            username=config.source.username,
            password=config.source.get_password(config.password_program),
            timeout=config.source.timeout,
        )
        client = build_remote_client(config, resolver)
        report = SyncRunner(config, source, client, resolver).run(
            start=args.start,
            days=args.days,
            dry_run=args.dry_run,
        )
    except (ConfigError, SourceFetchError, FormatError, RemoteOperationFailure) as e:
        logger.error("Sync aborted: %s", e)
        return 1

    logger.info("Plan: %s", report.plan.summary())
    logger.info("Result: %s", report.stats)
    if not report.ok:
        logger.error("%d operation(s) failed", report.stats.errors)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
