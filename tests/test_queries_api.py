"""
Tests for the changelog query service and API endpoints.
"""

from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from specwatch.change_monitor.changelog import ChangelogWriter
from specwatch.change_monitor.health import HealthStatus, HealthStore
from specwatch.change_monitor.queries import ChangelogQueryService, SnapshotNotFound
from specwatch.core.canonical import canonicalize
from specwatch.core.errors import InvariantViolation
from specwatch.core.models import ChangeKind, Severity
from specwatch.notifications import InAppProvider, Notification
from specwatch.snapshots import SnapshotStore
from specwatch.ui.changelog_api import get_feed, get_health_store, get_query_service
from specwatch.ui.http_server import app

from helpers import classified_record, users_api


def without_post():
    doc = users_api()
    del doc["paths"]["/users"]["post"]
    return doc


@pytest.fixture
def service(db_path):
    changelog = ChangelogWriter(db_path)
    changelog.write("users", "s1", "s2", [classified_record("info.version")])
    changelog.write(
        "users",
        "s2",
        "s3",
        [
            classified_record("paths./users.post", ChangeKind.REMOVED, Severity.CRITICAL, True),
            classified_record("paths./orders", ChangeKind.ADDED, Severity.MEDIUM),
        ],
    )
    changelog.write(
        "orders", "o1", "o2", [classified_record("paths./orders.get", ChangeKind.ADDED, Severity.MEDIUM)]
    )
    return ChangelogQueryService(changelog, SnapshotStore(db_path))


@pytest.fixture
def client(service, db_path):
    app.dependency_overrides[get_query_service] = lambda: service
    app.dependency_overrides[get_health_store] = lambda: HealthStore(db_path)
    app.dependency_overrides[get_feed] = lambda: InAppProvider(db_path)
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestQueryService:
    """Test query projections."""

    def test_list_newest_first(self, service):
        page = service.list_entries("users")

        assert page.total == 2
        assert [e.to_snapshot_id for e in page.items] == ["s3", "s2"]

    def test_filters(self, service):
        assert service.list_entries("users", breaking=True).total == 1
        assert service.list_entries("users", breaking=False).total == 1
        assert service.list_entries("users", severity=Severity.CRITICAL).total == 1
        assert service.list_entries(kind=ChangeKind.ADDED).total == 2
        assert service.list_entries(kind=ChangeKind.REMOVED).total == 1
        assert service.list_entries(search="USERS.POST").total == 1
        assert service.list_entries(since=datetime.utcnow() + timedelta(days=1)).total == 0
        assert service.list_entries(until=datetime.utcnow() - timedelta(days=1)).total == 0

    def test_pagination(self, service):
        first = service.list_entries(page=1, limit=2)
        second = service.list_entries(page=2, limit=2)

        assert first.total == 3
        assert first.total_pages == 2
        assert len(first.items) == 2
        assert len(second.items) == 1
        assert service.list_entries(limit=1000).limit == 100

    def test_stats(self, service):
        stats = service.stats()

        assert stats["total_entries"] == 3
        assert stats["total_changes"] == 4
        assert stats["breaking_entries"] == 1
        assert stats["by_severity"] == {"low": 1, "medium": 1, "high": 0, "critical": 1}
        assert stats["by_kind"] == {"added": 2, "removed": 1, "modified": 1}
        assert stats["by_target"] == {"users": 2, "orders": 1}
        assert stats["last_change_at"] is not None

        assert service.stats(target_id="orders")["total_entries"] == 1

    def test_compare_on_demand(self, service):
        first = service.store.record("users", canonicalize(users_api()))
        second = service.store.record("users", canonicalize(without_post()))

        comparison = service.compare_snapshots(first, second)

        assert comparison.entry_id is None
        assert [r.location for r in comparison.records] == ["paths./users.post"]
        assert comparison.severity == Severity.CRITICAL
        assert comparison.breaking is True

    def test_compare_uses_stored_entry(self, service):
        first = service.store.record("users", canonicalize(users_api()))
        second = service.store.record("users", canonicalize(without_post()))
        records = [classified_record("paths./users.post", ChangeKind.REMOVED, Severity.CRITICAL, True)]
        entry = service.changelog.write("users", first, second, records)

        comparison = service.compare_snapshots(first, second)

        assert comparison.entry_id == entry.entry_id
        assert comparison.summary == entry.summary

    def test_compare_errors(self, service):
        users = service.store.record("users", canonicalize(users_api()))
        orders = service.store.record("orders", canonicalize(users_api()))

        with pytest.raises(SnapshotNotFound):
            service.compare_snapshots(users, "missing")
        with pytest.raises(InvariantViolation):
            service.compare_snapshots(users, orders)


class TestChangelogAPI:
    """Test HTTP endpoints."""

    def test_root_and_health(self, client):
        assert client.get("/health").json() == {"status": "healthy"}
        assert client.get("/").json()["name"] == "specwatch API"

    def test_list_changelog(self, client):
        response = client.get("/api/targets/users/changelog", params={"limit": 1})

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 2
        assert data["total_pages"] == 2
        assert data["items"][0]["severity"] == "critical"
        assert data["items"][0]["records"][0]["kind"] == "removed"

    def test_list_changelog_filters(self, client):
        response = client.get(
            "/api/targets/users/changelog",
            params={"breaking": "false", "severity": "low", "days": 7},
        )
        assert response.json()["total"] == 1

    def test_invalid_filter_rejected(self, client):
        response = client.get("/api/targets/users/changelog", params={"severity": "urgent"})
        assert response.status_code == 422

    def test_get_entry(self, client, service):
        entry = service.list_entries("orders").items[0]

        response = client.get(f"/api/changelog/{entry.entry_id}")

        assert response.status_code == 200
        assert response.json()["entry_id"] == entry.entry_id
        assert client.get("/api/changelog/missing").status_code == 404

    def test_compare(self, client, service):
        first = service.store.record("users", canonicalize(users_api()))
        second = service.store.record("users", canonicalize(without_post()))
        orders = service.store.record("orders", canonicalize(users_api()))

        response = client.get("/api/compare", params={"from_snapshot": first, "to_snapshot": second})
        assert response.status_code == 200
        assert response.json()["breaking"] is True

        response = client.get("/api/compare", params={"from_snapshot": first, "to_snapshot": "nope"})
        assert response.status_code == 404

        response = client.get("/api/compare", params={"from_snapshot": first, "to_snapshot": orders})
        assert response.status_code == 400

    def test_snapshots(self, client, service):
        first = service.store.record("users", canonicalize(users_api()))
        second = service.store.record("users", canonicalize(without_post()))

        snapshots = client.get("/api/targets/users/snapshots").json()

        assert [s["snapshot_id"] for s in snapshots] == [second, first]
        assert "document" not in snapshots[0]

    def test_stats(self, client):
        data = client.get("/api/stats", params={"target_id": "users"}).json()
        assert data["total_entries"] == 2
        assert data["breaking_entries"] == 1

    def test_target_health(self, client, db_path):
        health = HealthStore(db_path)
        health.record_success("users")
        health.record_failure("orders", HealthStatus.UNREACHABLE, "connection refused")

        data = client.get("/api/targets/health").json()

        assert [(h["target_id"], h["status"]) for h in data] == [
            ("orders", "unreachable"),
            ("users", "healthy"),
        ]

    def test_feed(self, client, db_path):
        InAppProvider(db_path).send("alice", Notification("Users API Updated", "...", task_id="t1"))

        feed = client.get("/api/subscribers/alice/feed").json()
        assert len(feed) == 1

        response = client.post("/api/subscribers/alice/feed/read")
        assert response.json() == {"updated": 1}
        assert client.get("/api/subscribers/alice/feed", params={"unread_only": True}).json() == []
