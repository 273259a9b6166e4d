"""
Tests for the diff engine.
"""

from datetime import datetime

import pytest

from specwatch.change_monitor.analyzer import ChangeAnalyzer
from specwatch.core.canonical import canonicalize, content_hash
from specwatch.core.errors import InvariantViolation
from specwatch.core.models import ChangeKind, Snapshot

from helpers import users_api


def diff(previous, current, **kwargs):
    return ChangeAnalyzer().diff(canonicalize(previous, **kwargs), canonicalize(current, **kwargs))


def make_snapshot(snapshot_id, target_id, doc):
    document = canonicalize(doc)
    return Snapshot(
        snapshot_id=snapshot_id,
        target_id=target_id,
        captured_at=datetime.utcnow(),
        content_hash=content_hash(document),
        document=document,
    )


class TestDiff:
    """Test structural diffing."""

    def test_identical_documents_have_no_changes(self, api_doc):
        assert diff(api_doc, users_api()) == []

    def test_removed_parameter(self, api_doc):
        current = users_api()
        current["paths"]["/users"]["get"]["parameters"] = [
            p for p in current["paths"]["/users"]["get"]["parameters"] if p["name"] != "id"
        ]

        changes = diff(api_doc, current)

        assert len(changes) == 1
        assert changes[0].kind == ChangeKind.REMOVED
        assert changes[0].location == "paths./users.get.parameters.id"
        assert changes[0].old_value["required"] is True
        assert changes[0].new_value is None
        assert changes[0].severity is None
        assert changes[0].description == "Required parameter 'id' removed from GET /users"

    def test_modified_reported_at_deepest_leaf(self, api_doc):
        current = users_api()
        current["components"]["schemas"]["User"]["properties"]["age"]["type"] = "string"

        changes = diff(api_doc, current)

        assert len(changes) == 1
        assert changes[0].kind == ChangeKind.MODIFIED
        assert changes[0].location == "components.schemas.User.properties.age.type"
        assert changes[0].segments == ("components", "schemas", "User", "properties", "age", "type")
        assert (changes[0].old_value, changes[0].new_value) == ("integer", "string")

    def test_type_change_is_single_record(self, api_doc):
        current = users_api()
        current["info"]["version"] = {"major": 1}

        changes = diff(api_doc, current)

        assert len(changes) == 1
        assert changes[0].kind == ChangeKind.MODIFIED
        assert changes[0].location == "info.version"
        assert changes[0].new_value == {"major": 1}

    def test_scalar_type_change_is_single_record(self):
        changes = diff({"maximum": "10"}, {"maximum": 10})
        assert [(c.kind, c.location) for c in changes] == [(ChangeKind.MODIFIED, "maximum")]

    def test_set_members_are_individual_records(self, api_doc):
        current = users_api()
        current["components"]["schemas"]["User"]["required"] = ["age", "id", "name"]

        changes = diff(api_doc, current)

        assert [(c.kind, c.location) for c in changes] == [
            (ChangeKind.ADDED, "components.schemas.User.required.age"),
            (ChangeKind.ADDED, "components.schemas.User.required.name"),
        ]

    def test_set_reordering_is_not_a_change(self, api_doc):
        current = users_api()
        schema = current["paths"]["/users"]["get"]["responses"]["200"]["content"]["application/json"]["schema"]
        schema["required"] = ["email", "id"]
        assert diff(api_doc, current) == []

    def test_sequence_reordering_is_not_a_change(self):
        previous = {"servers": [{"url": "https://a"}, {"url": "https://b"}]}
        current = {"servers": [{"url": "https://b"}, {"url": "https://a"}]}
        assert diff(previous, current) == []

    def test_order_significant_sequence_reports_reordering(self):
        previous = {"servers": [{"url": "https://a"}, {"url": "https://b"}]}
        current = {"servers": [{"url": "https://b"}, {"url": "https://a"}]}

        changes = diff(previous, current, order_significant_fields=["servers"])

        assert [c.location for c in changes] == ["servers.0.url", "servers.1.url"]

    def test_sequence_trailing_items(self):
        previous = {"servers": [{"url": "https://a"}]}
        current = {"servers": [{"url": "https://a"}, {"url": "https://b"}]}

        changes = diff(previous, current)

        assert [(c.kind, c.location) for c in changes] == [(ChangeKind.ADDED, "servers.1")]
        assert diff(current, previous)[0].kind == ChangeKind.REMOVED

    def test_depth_first_alphabetical_order(self, api_doc):
        current = users_api()
        current["info"]["version"] = "2.0.0"
        current["paths"]["/zeta"] = {"get": {"responses": {"200": {"description": "OK"}}}}
        current["paths"]["/alpha"] = {"get": {"responses": {"200": {"description": "OK"}}}}
        del current["components"]["schemas"]["User"]

        changes = diff(api_doc, current)

        assert [c.location for c in changes] == [
            "components.schemas.User",
            "info.version",
            "paths./alpha",
            "paths./zeta",
        ]

    def test_operation_added_description(self, api_doc):
        current = users_api()
        current["paths"]["/users"]["delete"] = {"responses": {"204": {"description": "Deleted"}}}

        changes = diff(api_doc, current)

        assert changes[0].location == "paths./users.delete"
        assert changes[0].description == "HTTP method DELETE added to /users"


class TestDiffProperties:
    """Test determinism and symmetry."""

    def _changed_document(self):
        current = users_api()
        current["paths"]["/users"]["get"]["parameters"].append({"name": "sort", "in": "query"})
        current["paths"]["/users"]["get"]["responses"].pop("404")
        current["components"]["schemas"]["User"]["properties"]["age"]["type"] = "number"
        current["info"]["description"] = "Manage all users"
        current["tags"] = [{"name": "users"}]
        return current

    def test_determinism(self, api_doc):
        current = self._changed_document()
        first = diff(api_doc, current)
        second = diff(users_api(), self._changed_document())
        assert first == second
        assert [c.model_dump_json() for c in first] == [c.model_dump_json() for c in second]

    def test_symmetry(self, api_doc):
        current = self._changed_document()
        forward = diff(api_doc, current)
        backward = diff(current, api_doc)

        def by_kind(changes, kind):
            return {(c.location, repr(c.old_value), repr(c.new_value)) for c in changes if c.kind == kind}

        assert {loc for loc, _, _ in by_kind(forward, ChangeKind.REMOVED)} == {
            loc for loc, _, _ in by_kind(backward, ChangeKind.ADDED)
        }
        assert {loc for loc, _, _ in by_kind(forward, ChangeKind.ADDED)} == {
            loc for loc, _, _ in by_kind(backward, ChangeKind.REMOVED)
        }
        assert {(loc, new, old) for loc, old, new in by_kind(forward, ChangeKind.MODIFIED)} == (
            by_kind(backward, ChangeKind.MODIFIED)
        )

    def test_no_op_stability(self):
        doc = canonicalize(self._changed_document())
        assert ChangeAnalyzer().diff(doc, doc) == []


class TestCompareSnapshots:
    """Test snapshot comparison."""

    def test_different_targets_rejected(self, api_doc):
        previous = make_snapshot("s1", "users", api_doc)
        current = make_snapshot("s2", "orders", users_api())

        with pytest.raises(InvariantViolation):
            ChangeAnalyzer().compare_snapshots(previous, current)

    def test_equal_hash_short_circuits(self, api_doc):
        previous = make_snapshot("s1", "users", api_doc)
        current = make_snapshot("s2", "users", users_api())
        assert ChangeAnalyzer().compare_snapshots(previous, current) == []

    def test_changes_between_snapshots(self, api_doc):
        current_doc = users_api()
        current_doc["info"]["version"] = "1.1.0"

        changes = ChangeAnalyzer().compare_snapshots(
            make_snapshot("s1", "users", api_doc),
            make_snapshot("s2", "users", current_doc),
        )

        assert [c.location for c in changes] == ["info.version"]
