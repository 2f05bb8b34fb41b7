"""Shared pytest fixtures for the InvestTrack data store tests."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from investtrack.auth.passwords import hash_password
from investtrack.db.datastore import LocalDataStore

# bcrypt's minimum cost keeps hashing fast in tests
FAST_ROUNDS = 4


@pytest.fixture
def store():
    """Provide an initialized in-memory data store."""
    with LocalDataStore(bcrypt_rounds=FAST_ROUNDS) as data_store:
        yield data_store


@pytest.fixture
def hashed_password() -> str:
    """Provide a pre-computed bcrypt hash of "secret123"."""
    return hash_password("secret123", rounds=FAST_ROUNDS)


@pytest.fixture
def account(store, hashed_password):
    """Insert and return a registered account for a@x.com."""
    return store.insert_row(
        "Users",
        {
            "email": "a@x.com",
            "password_hash": hashed_password,
            "display_name": "Alice",
        },
    )


@pytest.fixture
def write_snapshot(tmp_path: Path):
    """Return a helper that writes a legacy userData.json into tmp_path."""

    def _write(data: object, name: str = "userData.json") -> Path:
        path = tmp_path / name
        path.write_text(json.dumps(data), encoding="utf-8")
        return path

    return _write
