"""
Tests for the snapshot store.
"""

from datetime import datetime, timedelta

from specwatch.core.canonical import canonicalize, content_hash
from specwatch.snapshots import SnapshotStore

from helpers import users_api


def version(n):
    doc = users_api()
    doc["info"]["version"] = f"1.0.{n}"
    return canonicalize(doc)


class TestSnapshotStore:
    """Test snapshot persistence."""

    def test_record_and_get(self, db_path):
        store = SnapshotStore(db_path)
        document = version(0)

        snapshot_id = store.record("users", document)
        snapshot = store.get(snapshot_id)

        assert snapshot.target_id == "users"
        assert snapshot.document == document
        assert snapshot.content_hash == content_hash(document)

    def test_unchanged_hash_returns_existing_snapshot(self, db_path):
        store = SnapshotStore(db_path)

        first = store.record("users", version(0))
        second = store.record("users", version(0))

        assert first == second
        assert store.count("users") == 1

    def test_returning_to_older_content_is_a_new_snapshot(self, db_path):
        store = SnapshotStore(db_path)

        first = store.record("users", version(0))
        store.record("users", version(1))
        third = store.record("users", version(0))

        assert third != first
        assert store.count("users") == 3

    def test_latest_two(self, db_path):
        store = SnapshotStore(db_path)
        assert store.latest_two("users") is None

        first = store.record("users", version(0))
        assert store.latest_two("users") is None
        assert store.latest("users").snapshot_id == first

        second = store.record("users", version(1))
        previous, latest = store.latest_two("users")

        assert (previous.snapshot_id, latest.snapshot_id) == (first, second)

    def test_ordered_by_capture_time(self, db_path):
        store = SnapshotStore(db_path)
        now = datetime.utcnow()

        newer = store.record("users", version(1), captured_at=now)
        older = store.record("users", version(0), captured_at=now - timedelta(hours=1))

        previous, latest = store.latest_two("users")
        assert (previous.snapshot_id, latest.snapshot_id) == (older, newer)

    def test_targets_are_independent(self, db_path):
        store = SnapshotStore(db_path)

        store.record("users", version(0))
        store.record("orders", version(0))

        assert store.count("users") == 1
        assert store.count("orders") == 1

    def test_retention_invariant(self, db_path):
        store = SnapshotStore(db_path, retention=3)
        recorded = [store.record("users", version(n)) for n in range(7)]

        kept = [s.snapshot_id for s in store.list_snapshots("users")]

        assert store.count("users") == 3
        assert kept == list(reversed(recorded[-3:]))

    def test_retention_clamped_to_two(self, db_path):
        store = SnapshotStore(db_path, retention=1)
        recorded = [store.record("users", version(n)) for n in range(4)]

        assert store.retention == 2
        previous, latest = store.latest_two("users")
        assert (previous.snapshot_id, latest.snapshot_id) == (recorded[-2], recorded[-1])
        assert store.get(recorded[0]) is None

    def test_order_significant_fields_survive_storage(self, db_path):
        store = SnapshotStore(db_path, order_significant_fields=["servers"])
        doc = users_api()
        doc["servers"] = [{"url": "https://a"}, {"url": "https://b"}]

        snapshot_id = store.record("users", canonicalize(doc, ["servers"]))

        assert store.get(snapshot_id).document["servers"].ordered is True
