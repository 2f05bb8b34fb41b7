"""Runtime settings for the data store and migration job.

Values come from ``INVESTTRACK_*`` environment variables; entry points
layer their command-line flags on top with ``dataclasses.replace``::

    ~/.investtrack/
      data/
        investment_tracker.duckdb

"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

_DEFAULT_DATA_DIR = Path.home() / ".investtrack" / "data"
_DEFAULT_DB_NAME = "investment_tracker.duckdb"

# bcrypt's accepted cost range
_MIN_ROUNDS = 4
_MAX_ROUNDS = 31
DEFAULT_BCRYPT_ROUNDS = 12

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"", "0", "false", "no", "off"}


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUTHY:
        return True
    if value in _FALSY:
        return False
    msg = f"{name} must be a boolean flag, got '{raw}'"
    raise ValueError(msg)


def _parse_rounds(raw: str) -> int:
    try:
        rounds = int(raw)
    except ValueError as exc:
        msg = f"INVESTTRACK_BCRYPT_ROUNDS must be an integer, got '{raw}'"
        raise ValueError(msg) from exc
    return validate_rounds(rounds)


def validate_rounds(rounds: int) -> int:
    """Check a bcrypt cost factor is within bcrypt's accepted range.

    Raises:
        ValueError: If rounds is outside 4..31.

    """
    if not _MIN_ROUNDS <= rounds <= _MAX_ROUNDS:
        msg = (
            f"bcrypt rounds must be between {_MIN_ROUNDS} and {_MAX_ROUNDS}, "
            f"got {rounds}"
        )
        raise ValueError(msg)
    return rounds


@dataclass(frozen=True)
class Settings:
    """Resolved configuration.

    Attributes:
        db_path: DuckDB file backing the store. None means in-memory.
        legacy_snapshot: Path to the legacy ``userData.json``, if any.
        bcrypt_rounds: Cost factor used when hashing plaintext passwords.
        allow_raw_queries: Enable the transitional raw SQL pass-through.

    """

    db_path: Path | None
    legacy_snapshot: Path | None = None
    bcrypt_rounds: int = DEFAULT_BCRYPT_ROUNDS
    allow_raw_queries: bool = False

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        """Build settings from environment variables.

        Args:
            environ: Mapping to read from. Defaults to ``os.environ``.

        Returns:
            Populated Settings.

        Raises:
            ValueError: If a variable holds an invalid value.

        """
        env = os.environ if environ is None else environ

        data_dir = Path(env.get("INVESTTRACK_DATA_DIR") or _DEFAULT_DATA_DIR)
        db_path = Path(env.get("INVESTTRACK_DB_PATH") or data_dir / _DEFAULT_DB_NAME)

        snapshot = env.get("INVESTTRACK_LEGACY_SNAPSHOT", "").strip()

        rounds_raw = env.get("INVESTTRACK_BCRYPT_ROUNDS", "").strip()
        rounds = _parse_rounds(rounds_raw) if rounds_raw else DEFAULT_BCRYPT_ROUNDS

        return cls(
            db_path=db_path.expanduser(),
            legacy_snapshot=Path(snapshot).expanduser() if snapshot else None,
            bcrypt_rounds=rounds,
            allow_raw_queries=_parse_bool(
                "INVESTTRACK_ALLOW_RAW_QUERIES",
                env.get("INVESTTRACK_ALLOW_RAW_QUERIES", ""),
            ),
        )
