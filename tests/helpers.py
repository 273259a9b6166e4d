"""
Reference interface descriptions used across tests.
"""

import copy
from typing import Any, Dict, List

from specwatch.change_monitor.analyzer import ChangeAnalyzer
from specwatch.change_monitor.classifier import SeverityClassifier
from specwatch.core.canonical import canonicalize
from specwatch.core.models import ChangeKind, ChangeRecord, Severity

USERS_API: Dict[str, Any] = {
    "openapi": "3.0.3",
    "info": {"title": "Users API", "version": "1.0.0", "description": "Manage users"},
    "paths": {
        "/users": {
            "get": {
                "summary": "List users",
                "parameters": [
                    {"name": "id", "in": "query", "required": True, "schema": {"type": "string"}},
                    {"name": "limit", "in": "query", "required": False, "schema": {"type": "integer"}},
                ],
                "responses": {
                    "200": {
                        "description": "OK",
                        "content": {
                            "application/json": {
                                "schema": {
                                    "type": "object",
                                    "required": ["id", "email"],
                                    "properties": {
                                        "id": {"type": "string"},
                                        "email": {"type": "string"},
                                        "name": {"type": "string"},
                                    },
                                }
                            }
                        },
                    },
                    "404": {"description": "Not found"},
                },
            },
            "post": {
                "summary": "Create user",
                "responses": {"201": {"description": "Created"}},
            },
        },
    },
    "components": {
        "schemas": {
            "User": {
                "type": "object",
                "required": ["id"],
                "properties": {"id": {"type": "string"}, "age": {"type": "integer"}},
            }
        }
    },
}


def users_api() -> Dict[str, Any]:
    """Fresh deep copy of the reference document."""
    return copy.deepcopy(USERS_API)


def classify(previous: Dict[str, Any], current: Dict[str, Any]) -> List[ChangeRecord]:
    """Diff and classify two plain documents."""
    records = ChangeAnalyzer().diff(canonicalize(previous), canonicalize(current))
    return SeverityClassifier().classify_all(records)


def classified_record(
    location: str,
    kind: ChangeKind = ChangeKind.MODIFIED,
    severity: Severity = Severity.LOW,
    breaking: bool = False,
) -> ChangeRecord:
    """Build a classified record by hand."""
    return ChangeRecord(
        kind=kind,
        location=location,
        segments=tuple(location.split(".")),
        old_value="old" if kind != ChangeKind.ADDED else None,
        new_value="new" if kind != ChangeKind.REMOVED else None,
        description=f"{kind.value} {location}",
        severity=severity,
        breaking=breaking,
        rule="test",
    )
