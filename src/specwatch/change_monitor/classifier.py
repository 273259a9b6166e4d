"""
Severity classification of change records.

A static, ordered rule table maps every change record to exactly one
severity tier and a breaking flag. The first matching rule wins and its name
is stored on the record so each classification can be audited.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Optional, Tuple

from specwatch.change_monitor.analyzer import HTTP_METHODS
from specwatch.core.models import ChangeKind, ChangeRecord, Severity

logger = logging.getLogger(__name__)

# Schema containers whose required-member removals count as response-field removals
_SHARED_SCHEMA_ROOTS = (("components", "schemas"), ("components", "responses"), ("definitions",))

_METADATA_KEYS = frozenset({"description", "summary", "example", "examples", "externalDocs", "title"})

# Containers whose child keys are user-chosen names
_NAMING_CONTAINERS = frozenset({"properties", "parameters", "required", "responses", "schemas", "paths"})


@dataclass(frozen=True)
class Location:
    """
    Structural interpretation of a canonical path.

    Attributes:
        segments: Raw path segments
        operation_index: Index of the HTTP method segment, if under an operation
        parameter_index: Index of the ``parameters`` segment, if under a parameter list
    """
    segments: Tuple[str, ...]
    operation_index: Optional[int]
    parameter_index: Optional[int]

    @classmethod
    def parse(cls, segments: Iterable[str]) -> "Location":
        segments = tuple(segments)
        operation_index = None
        if len(segments) >= 3 and segments[0] == "paths" and segments[2] in HTTP_METHODS:
            operation_index = 2

        parameter_index = None
        if len(segments) >= 3 and segments[0] == "paths":
            if operation_index is not None and len(segments) > 3 and segments[3] == "parameters":
                parameter_index = 3
            elif segments[2] == "parameters":
                # Path-level parameters apply to every operation of the path
                parameter_index = 2
        return cls(segments, operation_index, parameter_index)

    @property
    def is_path(self) -> bool:
        return len(self.segments) == 2 and self.segments[0] == "paths"

    @property
    def is_operation(self) -> bool:
        return self.operation_index is not None and len(self.segments) == 3

    @property
    def is_parameter_list(self) -> bool:
        return self.parameter_index is not None and len(self.segments) == self.parameter_index + 1

    @property
    def is_parameter(self) -> bool:
        return self.parameter_index is not None and len(self.segments) == self.parameter_index + 2

    @property
    def parameter_field(self) -> Optional[str]:
        if self.parameter_index is not None and len(self.segments) == self.parameter_index + 3:
            return self.segments[-1]
        return None

    @property
    def response_code(self) -> Optional[str]:
        if (
            self.operation_index is not None
            and len(self.segments) >= 5
            and self.segments[3] == "responses"
        ):
            return self.segments[4]
        return None

    @property
    def is_response(self) -> bool:
        return self.response_code is not None and len(self.segments) == 5

    @property
    def in_response_body(self) -> bool:
        return self.response_code is not None and len(self.segments) > 5

    @property
    def in_shared_schema(self) -> bool:
        return any(self.segments[: len(root)] == root for root in _SHARED_SCHEMA_ROOTS)

    @property
    def is_property(self) -> bool:
        """Location names one schema property (``...properties.<name>``)."""
        return len(self.segments) >= 2 and self.segments[-2] == "properties"

    @property
    def is_required_member(self) -> bool:
        """Location names one member of a schema ``required`` set."""
        return len(self.segments) >= 2 and self.segments[-2] == "required"

    @property
    def is_required_set(self) -> bool:
        """Location names a whole schema ``required`` set."""
        return (
            len(self.segments) >= 2
            and self.segments[-1] == "required"
            and self.segments[-2] not in _NAMING_CONTAINERS
            and self.parameter_index is None
        )

    @property
    def is_metadata(self) -> bool:
        """Location lies inside documentation-only content (descriptions, examples, extensions)."""
        for index, segment in enumerate(self.segments):
            if segment not in _METADATA_KEYS and not segment.startswith("x-"):
                continue
            # A property or parameter merely named "title" is not metadata
            if index > 0 and self.segments[index - 1] in _NAMING_CONTAINERS:
                continue
            return True
        return False

    @property
    def in_security(self) -> bool:
        if self.segments[:1] == ("security",):
            return True
        return (
            self.operation_index is not None
            and len(self.segments) > 3
            and self.segments[3] == "security"
        )


def _json_kind(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, dict):
        return "object"
    return "array"


def _is_required_parameter(value: Any) -> bool:
    return isinstance(value, dict) and (value.get("required") is True or value.get("in") == "path")


def _has_required_parameter(params: Any) -> bool:
    """Whether a canonical parameter map contains a required parameter."""
    return isinstance(params, dict) and any(_is_required_parameter(p) for p in params.values())


def _is_success_code(code: str) -> bool:
    return code.upper().startswith("2")


# Rule predicates receive the record and its parsed location

def _removes_operation(record: ChangeRecord, loc: Location) -> bool:
    return record.kind == ChangeKind.REMOVED and (loc.is_operation or loc.is_path)


def _removes_required_parameter(record: ChangeRecord, loc: Location) -> bool:
    if record.kind != ChangeKind.REMOVED:
        return False
    if loc.is_parameter_list:
        return _has_required_parameter(record.old_value)
    return loc.is_parameter and _is_required_parameter(record.old_value)


def _removes_required_response_field(record: ChangeRecord, loc: Location) -> bool:
    if record.kind != ChangeKind.REMOVED or not (loc.in_response_body or loc.in_shared_schema):
        return False
    if loc.is_required_set:
        return bool(record.old_value)
    return loc.is_required_member


def _removes_success_response(record: ChangeRecord, loc: Location) -> bool:
    return (
        record.kind == ChangeKind.REMOVED
        and loc.is_response
        and _is_success_code(loc.response_code)
    )


def _changes_type(record: ChangeRecord, loc: Location) -> bool:
    if record.kind != ChangeKind.MODIFIED or loc.is_metadata:
        return False
    if loc.segments and loc.segments[-1] == "type":
        return True
    return _json_kind(record.old_value) != _json_kind(record.new_value)


def _adds_required_parameter(record: ChangeRecord, loc: Location) -> bool:
    if record.kind == ChangeKind.ADDED and loc.is_parameter:
        return _is_required_parameter(record.new_value)
    if record.kind == ChangeKind.ADDED and loc.is_parameter_list:
        return _has_required_parameter(record.new_value)
    # An existing parameter becoming required
    return (
        record.kind in (ChangeKind.ADDED, ChangeKind.MODIFIED)
        and loc.parameter_field == "required"
        and record.new_value is True
        and record.old_value is not True
    )


def _adds_optional_parameter(record: ChangeRecord, loc: Location) -> bool:
    if record.kind != ChangeKind.ADDED:
        return False
    if loc.is_parameter_list:
        return bool(record.new_value) and not _has_required_parameter(record.new_value)
    return loc.is_parameter and not _is_required_parameter(record.new_value)


def _adds_response_field(record: ChangeRecord, loc: Location) -> bool:
    return record.kind == ChangeKind.ADDED and loc.in_response_body and loc.is_property


def _adds_operation(record: ChangeRecord, loc: Location) -> bool:
    return record.kind == ChangeKind.ADDED and (loc.is_operation or loc.is_path)


def _changes_security(record: ChangeRecord, loc: Location) -> bool:
    return loc.in_security


@dataclass(frozen=True)
class Rule:
    """One row of the classification table."""
    name: str
    matches: Callable[[ChangeRecord, Location], bool]
    severity: Severity
    breaking: bool


DEFAULT_RULE = Rule("other_change", lambda record, loc: True, Severity.LOW, False)

RULES: List[Rule] = [
    Rule("operation_removed", _removes_operation, Severity.CRITICAL, True),
    Rule("required_parameter_removed", _removes_required_parameter, Severity.CRITICAL, True),
    Rule("required_response_field_removed", _removes_required_response_field, Severity.CRITICAL, True),
    Rule("success_response_removed", _removes_success_response, Severity.HIGH, True),
    Rule("type_changed", _changes_type, Severity.HIGH, True),
    Rule("required_parameter_added", _adds_required_parameter, Severity.HIGH, True),
    Rule("optional_parameter_added", _adds_optional_parameter, Severity.MEDIUM, False),
    Rule("response_field_added", _adds_response_field, Severity.MEDIUM, False),
    Rule("operation_added", _adds_operation, Severity.MEDIUM, False),
    Rule("security_changed", _changes_security, Severity.MEDIUM, True),
    DEFAULT_RULE,
]


class SeverityClassifier:
    """
    Maps change records to (severity, breaking) using the rule table.
    """

    def __init__(self, rules: Optional[List[Rule]] = None):
        """
        Initialize classifier.

        Args:
            rules: Optional rule table (default: RULES). A catch-all rule is
                appended when missing so every record maps to a tier.
        """
        rules = list(rules) if rules is not None else list(RULES)
        if not rules or rules[-1] is not DEFAULT_RULE:
            rules.append(DEFAULT_RULE)
        self.rules = rules

    def match(self, record: ChangeRecord) -> Rule:
        """Return the first rule matching a record."""
        loc = Location.parse(record.segments)
        for rule in self.rules:
            if rule.matches(record, loc):
                return rule
        return DEFAULT_RULE

    def classify(self, record: ChangeRecord) -> Tuple[Severity, bool]:
        """
        Classify one change record.

        Args:
            record: Change record (kind/location/old/new)

        Returns:
            (severity, is_breaking) tuple
        """
        rule = self.match(record)
        return rule.severity, rule.breaking

    def classify_all(self, records: Iterable[ChangeRecord]) -> List[ChangeRecord]:
        """
        Return classified copies of change records, preserving order.

        Args:
            records: Unclassified change records

        Returns:
            Records with severity, breaking flag and rule name set
        """
        classified = []
        for record in records:
            rule = self.match(record)
            classified.append(
                record.model_copy(
                    update={"severity": rule.severity, "breaking": rule.breaking, "rule": rule.name}
                )
            )

        if classified:
            breaking = sum(1 for r in classified if r.breaking)
            logger.debug(f"Classified {len(classified)} changes ({breaking} breaking)")
        return classified
