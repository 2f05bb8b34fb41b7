"""Legacy snapshot migration.

Moves accounts out of the flat ``userData.json`` document the old
file-based server wrote into the ``Users`` and ``Portfolios`` tables.
The document looks like::

    {
      "users": {
        "a@x.com": {"password": "...", "fullName": "A", "portfolio": {...}}
      },
      "sessions": {},
      "appSettings": {}
    }

A bare ``{email: account}`` mapping is accepted too.

Re-running is safe: pre-hashed passwords are kept as they are and
accounts that already exist are skipped along with their portfolio.
Per-account failures are logged and recorded; only an unreadable
snapshot or a failed backup stops the job.

"""

from __future__ import annotations

import json
import logging
import shutil
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from investtrack.auth.passwords import hash_password, is_hashed
from investtrack.db.tables import DEFAULT_DISPLAY_NAME
from investtrack.errors import ConflictError, DataStoreError, MigrationError

if TYPE_CHECKING:
    from investtrack.db.datastore import LocalDataStore

logger = logging.getLogger(__name__)


class MigrationOutcome(Enum):
    """Terminal states of a migration run."""

    NOTHING_TO_MIGRATE = "nothing_to_migrate"
    COMPLETED = "completed"


@dataclass
class MigrationReport:
    """Summary of a migration run.

    Attributes:
        outcome: How the run ended.
        migrated: Emails inserted as new accounts.
        skipped: Emails that already existed.
        failed: Email to error message for records that could not be
            migrated.
        portfolios: Number of portfolio snapshots carried over.
        backup_path: Where the original snapshot was copied.

    """

    outcome: MigrationOutcome
    migrated: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    portfolios: int = 0
    backup_path: Path | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-safe dictionary."""
        return {
            "outcome": self.outcome.value,
            "migrated": list(self.migrated),
            "skipped": list(self.skipped),
            "failed": dict(self.failed),
            "portfolios": self.portfolios,
            "backup_path": str(self.backup_path) if self.backup_path else None,
        }


def load_legacy_snapshot(path: str | Path) -> dict[str, Any] | None:
    """Read and parse the legacy snapshot.

    Args:
        path: Location of ``userData.json``.

    Returns:
        The parsed document, or None if the file does not exist.

    Raises:
        MigrationError: If the file cannot be read or is not a JSON object.

    """
    snapshot_path = Path(path)
    try:
        text = snapshot_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as exc:
        msg = f"Cannot read legacy snapshot {snapshot_path}: {exc}"
        raise MigrationError(msg) from exc

    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        msg = f"Legacy snapshot {snapshot_path} is not valid JSON: {exc}"
        raise MigrationError(msg) from exc

    if not isinstance(data, dict):
        msg = f"Legacy snapshot {snapshot_path} must contain a JSON object"
        raise MigrationError(msg)
    return data


def legacy_accounts(snapshot: Mapping[str, Any]) -> Mapping[str, Any]:
    """Return the email-to-account mapping from a legacy document."""
    users = snapshot.get("users")
    if isinstance(users, Mapping):
        return users
    return snapshot


def backup_snapshot(path: str | Path, now: datetime | None = None) -> Path:
    """Copy the snapshot to a timestamped file beside it.

    Args:
        path: The snapshot to back up.
        now: Timestamp for the file name. Defaults to the current UTC time.

    Returns:
        Path of the backup copy.

    Raises:
        MigrationError: If the copy fails.

    """
    source = Path(path)
    stamp = (now or datetime.now(UTC)).strftime("%Y%m%dT%H%M%S%fZ")
    backup = source.with_name(f"{source.stem}_backup_{stamp}{source.suffix}")
    try:
        shutil.copy2(source, backup)
    except OSError as exc:
        msg = f"Failed to back up {source} to {backup}: {exc}"
        raise MigrationError(msg) from exc
    logger.info("Original snapshot backed up to %s", backup.name)
    return backup


def _account_record(email: str, account: Any, rounds: int) -> dict[str, Any]:
    """Build a ``Users`` record from a legacy account entry.

    Raises:
        ValueError: If the entry is malformed or has no password.

    """
    if not isinstance(account, Mapping):
        msg = "account entry must be a JSON object"
        raise ValueError(msg)

    password = account.get("password")
    if not isinstance(password, str) or not password:
        msg = "account has no password"
        raise ValueError(msg)
    if not is_hashed(password):
        password = hash_password(password, rounds)
        logger.debug("Password hashed for %s", email)

    record: dict[str, Any] = {
        "email": email,
        "password_hash": password,
        "display_name": (
            account.get("fullName") or account.get("name") or DEFAULT_DISPLAY_NAME
        ),
    }
    if account.get("created_at"):
        record["created_at"] = account["created_at"]
    return record


def _migrate_account(
    store: LocalDataStore,
    email: str,
    account: Any,
    rounds: int,
    report: MigrationReport,
) -> None:
    try:
        store.users.insert_row(_account_record(email, account, rounds))
    except ConflictError:
        logger.warning("Account %s already exists in database - skipping", email)
        report.skipped.append(email)
        return
    except (DataStoreError, ValueError) as exc:
        logger.error("Failed to migrate account %s: %s", email, exc)
        report.failed[email] = str(exc)
        return

    report.migrated.append(email)
    logger.info("Account %s migrated", email)

    portfolio = account.get("portfolio")
    if not portfolio:
        return
    try:
        store.portfolios.insert_row(
            {
                "owner_email": email,
                "payload": json.dumps(portfolio),
                "last_updated": account.get("last_updated"),
            }
        )
    except (DataStoreError, ValueError) as exc:
        logger.error("Failed to migrate portfolio for %s: %s", email, exc)
        report.failed[email] = f"portfolio: {exc}"
        return

    report.portfolios += 1
    logger.info("Portfolio for %s migrated", email)


def migrate_legacy_snapshot(
    store: LocalDataStore,
    snapshot_path: str | Path,
    *,
    rounds: int | None = None,
    now: datetime | None = None,
) -> MigrationReport:
    """Migrate every account in the legacy snapshot into the store.

    Runs single-threaded and should finish before the store serves
    regular traffic.

    Args:
        store: An initialized data store.
        snapshot_path: Location of ``userData.json``.
        rounds: bcrypt cost for plaintext passwords. Defaults to the
            store's setting.
        now: Timestamp used for the backup file name.

    Returns:
        Report of what was migrated, skipped and failed.

    Raises:
        MigrationError: If the snapshot cannot be read or backed up.

    """
    path = Path(snapshot_path)
    cost = store.bcrypt_rounds if rounds is None else rounds

    snapshot = load_legacy_snapshot(path)
    if snapshot is None:
        logger.info("No legacy snapshot at %s - nothing to migrate", path)
        return MigrationReport(outcome=MigrationOutcome.NOTHING_TO_MIGRATE)

    accounts = legacy_accounts(snapshot)
    if not accounts:
        logger.info("No accounts found in %s", path)
        return MigrationReport(outcome=MigrationOutcome.NOTHING_TO_MIGRATE)

    logger.info("Found %d account(s) to migrate", len(accounts))
    report = MigrationReport(outcome=MigrationOutcome.COMPLETED)
    for email, account in accounts.items():
        _migrate_account(store, email, account, cost, report)

    report.backup_path = backup_snapshot(path, now)
    logger.info(
        "Migration completed: %d migrated, %d skipped, %d failed, %d portfolio(s)",
        len(report.migrated),
        len(report.skipped),
        len(report.failed),
        report.portfolios,
    )
    return report
