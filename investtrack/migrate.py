"""One-shot migration command.

Upgrades the legacy ``userData.json`` snapshot into the local data
store, then exits. Run it before starting the sidecar.

Usage:
    investtrack-migrate --snapshot client/userData.json [--db PATH]
"""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path

from investtrack import log_config
from investtrack.config import Settings, validate_rounds
from investtrack.db.datastore import LocalDataStore
from investtrack.errors import DataStoreError
from investtrack.migration.legacy import MigrationReport, migrate_legacy_snapshot

logger = logging.getLogger(__name__)


def run(settings: Settings) -> MigrationReport:
    """Open the store and migrate the configured snapshot.

    Raises:
        ValueError: If no snapshot path is configured.
        DataStoreError: If the store cannot be opened or the migration
            hits a fatal error.

    """
    if settings.legacy_snapshot is None:
        msg = "No legacy snapshot configured (--snapshot or INVESTTRACK_LEGACY_SNAPSHOT)"
        raise ValueError(msg)

    with LocalDataStore.from_settings(settings) as store:
        return migrate_legacy_snapshot(store, settings.legacy_snapshot)


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="InvestTrack legacy data migration")
    parser.add_argument(
        "--snapshot",
        type=Path,
        default=None,
        help="Path to the legacy userData.json (default: INVESTTRACK_LEGACY_SNAPSHOT)",
    )
    parser.add_argument(
        "--db",
        type=Path,
        default=None,
        help="Path to the DuckDB file (default: INVESTTRACK_DB_PATH)",
    )
    parser.add_argument(
        "--rounds",
        type=int,
        default=None,
        help="bcrypt cost for plaintext passwords (default: 12)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """CLI entry point. Returns the process exit status."""
    args = _parse_args(argv)
    log_config.setup(verbose=args.verbose)

    try:
        settings = Settings.from_env()
        if args.snapshot is not None:
            settings = replace(settings, legacy_snapshot=args.snapshot)
        if args.db is not None:
            settings = replace(settings, db_path=args.db)
        if args.rounds is not None:
            settings = replace(settings, bcrypt_rounds=validate_rounds(args.rounds))
        report = run(settings)
    except (DataStoreError, ValueError) as exc:
        logger.error("Migration failed: %s", exc)
        return 1

    logger.info("Migration finished: %s", report.outcome.value)
    return 0


if __name__ == "__main__":
    sys.exit(main())
