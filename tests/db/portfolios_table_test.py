"""Tests for the Portfolios table adapter."""

from __future__ import annotations

import json
from datetime import datetime

import pytest
from investtrack.db.datastore import LocalDataStore
from investtrack.db.query import TableFilter
from investtrack.errors import ConflictError, StorageError, UnsupportedQueryError

PAYLOAD = {
    "holdings": [{"symbol": "VTI", "shares": 12.5}, {"symbol": "BND", "shares": 40}],
    "cash": 1500.25,
    "notes": None,
}


def _current(store, owner="a@x.com"):
    rows = store.search("Portfolios", TableFilter.by_owner(owner))
    return rows[0] if rows else None


class TestInsertRow:
    """Tests for inserting portfolio snapshots."""

    def test_payload_round_trips(self, store, account):
        store.insert_row("Portfolios", {"owner_email": "a@x.com", "payload": PAYLOAD})
        assert _current(store)["payload"] == PAYLOAD

    def test_returns_decoded_row(self, store, account):
        row = store.insert_row("Portfolios", {"owner_email": "a@x.com", "payload": [1, 2]})
        assert row["owner_email"] == "a@x.com"
        assert row["payload"] == [1, 2]
        assert isinstance(row["row_id"], int)
        assert isinstance(row["last_updated"], datetime)

    def test_json_text_payload_stored_verbatim(self, store, account):
        text = json.dumps(PAYLOAD)
        store.insert_row("Portfolios", {"owner_email": "a@x.com", "payload": text})
        raw = store.fetch("SELECT payload FROM portfolios WHERE owner_email = ?", ["a@x.com"])
        assert raw[0]["payload"] == text

    def test_legacy_column_names(self, store, account):
        store.insert_row("Portfolios", {"user_id": "a@x.com", "portfolio_data": {"cash": 5}})
        assert _current(store)["payload"] == {"cash": 5}

    def test_invalid_json_text_raises(self, store, account):
        with pytest.raises(ValueError, match="not valid JSON"):
            store.insert_row("Portfolios", {"owner_email": "a@x.com", "payload": "{oops"})

    def test_unserializable_payload_raises(self, store, account):
        with pytest.raises(ValueError, match="not JSON serializable"):
            store.insert_row("Portfolios", {"owner_email": "a@x.com", "payload": {1, 2}})

    def test_missing_payload_raises(self, store, account):
        with pytest.raises(ValueError, match="payload is required"):
            store.insert_row("Portfolios", {"owner_email": "a@x.com"})

    def test_unknown_owner_conflicts(self, store):
        with pytest.raises(ConflictError, match="No account registered"):
            store.insert_row("Portfolios", {"owner_email": "ghost@x.com", "payload": {}})
        assert store.search("Portfolios", TableFilter.by_owner("ghost@x.com")) == []


class TestSearch:
    """Tests for owner lookups ordered by last_updated."""

    def test_newest_snapshot_wins(self, store, account):
        for day, label in ((1, "t1"), (3, "t3"), (2, "t2")):
            store.insert_row(
                "Portfolios",
                {
                    "owner_email": "a@x.com",
                    "payload": {"label": label},
                    "last_updated": datetime(2024, 1, day),
                },
            )
        rows = store.search("Portfolios", TableFilter.by_owner("a@x.com"))
        assert [row["payload"]["label"] for row in rows] == ["t3"]

    def test_history_is_newest_first(self, store, account):
        for day in (1, 3, 2):
            store.insert_row(
                "Portfolios",
                {
                    "owner_email": "a@x.com",
                    "payload": {"day": day},
                    "last_updated": f"2024-01-0{day}T00:00:00",
                },
            )
        rows = store.search("Portfolios", TableFilter.by_owner("a@x.com", limit=None))
        assert [row["payload"]["day"] for row in rows] == [3, 2, 1]

    def test_mapping_query_returns_current_snapshot(self, store, account):
        store.insert_row("Portfolios", {"owner_email": "a@x.com", "payload": {"n": 1}})
        store.insert_row("Portfolios", {"owner_email": "a@x.com", "payload": {"n": 2}})
        rows = store.search("Portfolios", {"field": "owner_email", "value": "a@x.com"})
        assert len(rows) == 1

    def test_legacy_user_id_query(self, store, account):
        store.insert_row("Portfolios", {"owner_email": "a@x.com", "payload": {"n": 1}})
        rows = store.search(
            "Portfolios", "SELECT * FROM Portfolios WHERE user_id='a@x.com'"
        )
        assert rows[0]["payload"] == {"n": 1}

    def test_no_snapshot_returns_empty(self, store, account):
        assert store.search("Portfolios", TableFilter.by_owner("a@x.com")) == []


class TestUpdateRow:
    """Tests for replacing snapshot payloads."""

    def test_updates_payload(self, store, account):
        store.insert_row("Portfolios", {"owner_email": "a@x.com", "payload": {"v": 1}})
        changed = store.update_row(
            "Portfolios", {"owner_email": "a@x.com"}, {"payload": {"v": 2}}
        )
        assert changed == 1
        assert _current(store)["payload"] == {"v": 2}

    def test_missing_owner_returns_zero(self, store, account):
        changed = store.update_row(
            "Portfolios", {"owner_email": "a@x.com"}, {"payload": {"v": 2}}
        )
        assert changed == 0
        assert _current(store) is None

    def test_rejects_other_columns(self, store, account):
        with pytest.raises(ValueError, match="Unknown column"):
            store.update_row(
                "Portfolios", {"owner_email": "a@x.com"}, {"owner_email": "b@x.com"}
            )

    def test_rejects_unsupported_criteria(self, store, account):
        with pytest.raises(UnsupportedQueryError):
            store.update_row("Portfolios", {"row_id": 1}, {"payload": {}})


class TestSave:
    """Tests for the portfolio upsert."""

    def test_creates_first_snapshot(self, store, account):
        row = store.portfolios.save("a@x.com", {"cash": 10})
        assert row["payload"] == {"cash": 10}
        assert len(store.search("Portfolios", TableFilter.by_owner("a@x.com", limit=None))) == 1

    def test_replaces_existing_snapshot(self, store, account):
        store.portfolios.save("a@x.com", {"cash": 10})
        row = store.portfolios.save("a@x.com", {"cash": 20})
        assert row["payload"] == {"cash": 20}
        history = store.search("Portfolios", TableFilter.by_owner("a@x.com", limit=None))
        assert len(history) == 1

    def test_unknown_owner_conflicts(self, store):
        with pytest.raises(ConflictError):
            store.portfolios.save("ghost@x.com", {"cash": 10})


class TestDeleteRows:
    """Tests for deleting an owner's snapshots."""

    def test_deletes_all_snapshots(self, store, account):
        for n in range(2):
            store.insert_row("Portfolios", {"owner_email": "a@x.com", "payload": {"n": n}})
        assert store.delete_rows("Portfolios", {"owner_email": "a@x.com"}) == 2
        assert _current(store) is None

    def test_account_survives(self, store, account):
        store.insert_row("Portfolios", {"owner_email": "a@x.com", "payload": {}})
        store.delete_rows("Portfolios", {"user_id": "a@x.com"})
        assert store.search("Users", TableFilter.by_email("a@x.com"))

    def test_nothing_to_delete(self, store, account):
        assert store.delete_rows("Portfolios", {"owner_email": "a@x.com"}) == 0


class TestRawRows:
    """Tests for decoding rows from the raw pass-through."""

    def test_non_json_payload_is_storage_error(self):
        with LocalDataStore(allow_raw_queries=True) as store:
            with pytest.raises(StorageError, match="not valid JSON"):
                store.search("Portfolios", "SELECT 'abc' AS payload")

    def test_raw_rows_are_decoded(self, hashed_password):
        with LocalDataStore(allow_raw_queries=True) as store:
            store.insert_row("Users", {"email": "a@x.com", "password_hash": hashed_password})
            store.insert_row("Portfolios", {"owner_email": "a@x.com", "payload": {"n": 1}})
            rows = store.search("Portfolios", "SELECT payload FROM portfolios")
        assert rows == [{"payload": {"n": 1}}]
