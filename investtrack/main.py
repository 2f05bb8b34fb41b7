"""InvestTrack data store sidecar entry point.

Serves the table CRUD contract to the UI shell over stdin/stdout
using newline-delimited JSON messages. When a legacy snapshot is
configured it is migrated before the first request is read.

Protocol:
    Request:  {"id": "uuid", "method": "string", "params": {}}
    Response: {"id": "uuid", "result": {}}
    Error:    {"id": "uuid", "error": {"type": "string", "message": "string"}}
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import traceback
from dataclasses import replace
from datetime import date, datetime
from pathlib import Path
from typing import Any

from investtrack import log_config
from investtrack.auth.passwords import verify_password
from investtrack.config import Settings
from investtrack.db.datastore import LocalDataStore
from investtrack.db.query import TableFilter
from investtrack.errors import DataStoreError
from investtrack.migration.legacy import migrate_legacy_snapshot

logger = logging.getLogger(__name__)


class _StoreEncoder(json.JSONEncoder):
    """JSON encoder that handles timestamps and paths."""

    def default(self, o: Any) -> Any:
        """Convert non-serializable types to JSON-safe values."""
        if isinstance(o, datetime | date):
            return o.isoformat()
        if isinstance(o, Path):
            return str(o)
        return super().default(o)


def _handle_verify_credentials(
    store: LocalDataStore,
    email: str,
    password: str,
) -> dict[str, Any]:
    """Check a login attempt against the stored bcrypt hash.

    Args:
        store: Active data store.
        email: Account email.
        password: Plaintext password entered by the user.

    Returns:
        Dict with ``valid`` and, when valid, the account's display name.

    """
    rows = store.users.search(TableFilter.by_email(email))
    if not rows or not verify_password(password, rows[0]["password_hash"]):
        return {"valid": False}
    return {"valid": True, "display_name": rows[0]["display_name"]}


def dispatch(store: LocalDataStore, method: str, params: dict[str, Any]) -> Any:
    """Route a method call to the appropriate handler.

    Args:
        store: Active data store.
        method: The method name (e.g., "datastore.search").
        params: The parameters for the method.

    Returns:
        The result of the method call.

    Raises:
        ValueError: If the method is not recognized.

    """
    handlers: dict[str, Any] = {
        # Table CRUD
        "datastore.insert_row": store.insert_row,
        "datastore.update_row": lambda table, criteria, patch: {
            "changes": store.update_row(table, criteria, patch),
        },
        "datastore.search": store.search,
        "datastore.delete_rows": lambda table, criteria: {
            "deleted_rows": store.delete_rows(table, criteria),
        },
        # Portfolio
        "portfolio.save": store.portfolios.save,
        # Auth
        "auth.verify_credentials": lambda email, password: _handle_verify_credentials(
            store, email, password
        ),
        # Health
        "health": lambda: {"status": "ok"},
    }
    if method not in handlers:
        msg = f"Unknown method: {method}"
        raise ValueError(msg)
    return handlers[method](**params)


def _error_payload(exc: Exception) -> dict[str, Any]:
    if isinstance(exc, DataStoreError):
        return {"type": exc.kind, "message": str(exc)}
    if isinstance(exc, ValueError | TypeError | KeyError):
        return {"type": "invalid_request", "message": str(exc)}
    return {
        "type": "internal",
        "message": str(exc),
        "traceback": traceback.format_exc(),
    }


def serve(store: LocalDataStore) -> None:
    """Run the sidecar message loop.

    Reads newline-delimited JSON from stdin, dispatches to handlers,
    and writes JSON responses to stdout. Runs until stdin is closed.
    """
    for raw_line in sys.stdin:
        stripped = raw_line.strip()
        if not stripped:
            continue

        request: dict[str, Any] = {}
        try:
            request = json.loads(stripped)
            request_id = request.get("id", "unknown")
            method = request["method"]
            params = request.get("params", {})
            result = dispatch(store, method, params)
            response: dict[str, Any] = {"id": request_id, "result": result}
        except Exception as exc:  # noqa: BLE001
            request_id = (
                request.get("id", "unknown") if isinstance(request, dict) else "unknown"
            )
            logger.debug("Request %s failed: %s", request_id, exc)
            response = {"id": request_id, "error": _error_payload(exc)}
        sys.stdout.write(json.dumps(response, cls=_StoreEncoder) + "\n")
        sys.stdout.flush()


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="InvestTrack data store sidecar")
    parser.add_argument(
        "--db",
        type=Path,
        default=None,
        help="Path to the DuckDB file (default: INVESTTRACK_DB_PATH)",
    )
    parser.add_argument(
        "--snapshot",
        type=Path,
        default=None,
        help="Legacy userData.json to migrate before serving",
    )
    parser.add_argument(
        "--allow-raw-queries",
        action="store_true",
        help="Pass unrecognized queries through untranslated (transitional)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Start the sidecar. Returns the process exit status."""
    args = _parse_args(argv)
    log_config.setup(verbose=args.verbose)

    try:
        settings = Settings.from_env()
    except ValueError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 1
    if args.db is not None:
        settings = replace(settings, db_path=args.db)
    if args.snapshot is not None:
        settings = replace(settings, legacy_snapshot=args.snapshot)
    if args.allow_raw_queries:
        settings = replace(settings, allow_raw_queries=True)

    try:
        with LocalDataStore.from_settings(settings) as store:
            if settings.legacy_snapshot is not None:
                migrate_legacy_snapshot(store, settings.legacy_snapshot)
            serve(store)
    except DataStoreError as exc:
        logger.error("Sidecar stopped: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
