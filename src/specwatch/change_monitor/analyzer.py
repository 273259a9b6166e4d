"""
Change analysis and detection.

Walks two canonical documents and emits one atomic change record per
structural difference. Output order is depth-first with siblings visited
alphabetically, so identical inputs always produce identical output.
"""

import logging
from typing import Any, List, Tuple

from specwatch.core.canonical import (
    CanonicalDocument,
    MapNode,
    Node,
    SeqNode,
    SetNode,
    node_kind,
)
from specwatch.core.errors import InvariantViolation
from specwatch.core.models import ChangeKind, ChangeRecord, Snapshot

logger = logging.getLogger(__name__)

HTTP_METHODS = frozenset({"get", "put", "post", "delete", "options", "head", "patch", "trace"})

Path = Tuple[str, ...]


class ChangeAnalyzer:
    """
    Diff engine over canonical documents.

    Pure: no I/O, no clock, no randomness.
    """

    def diff(self, previous: CanonicalDocument, current: CanonicalDocument) -> List[ChangeRecord]:
        """
        Compare two canonical documents.

        Args:
            previous: Previously observed document
            current: Newly observed document

        Returns:
            Unclassified change records in depth-first, alphabetical order
        """
        changes: List[ChangeRecord] = []
        self._walk(previous, current, (), changes)
        return changes

    def compare_snapshots(self, previous: Snapshot, current: Snapshot) -> List[ChangeRecord]:
        """
        Compare two snapshots of the same target.

        Args:
            previous: Older snapshot
            current: Newer snapshot

        Returns:
            Unclassified change records

        Raises:
            InvariantViolation: If the snapshots belong to different targets
        """
        if previous.target_id != current.target_id:
            raise InvariantViolation(
                f"Cannot diff snapshots of different targets: "
                f"{previous.snapshot_id} ({previous.target_id}) vs "
                f"{current.snapshot_id} ({current.target_id})"
            )

        if previous.content_hash == current.content_hash:
            return []

        changes = self.diff(previous.document, current.document)
        logger.info(
            f"Detected {len(changes)} changes between {previous.snapshot_id} "
            f"and {current.snapshot_id}"
        )
        return changes

    def _walk(self, old: Node, new: Node, path: Path, out: List[ChangeRecord]) -> None:
        if old == new:
            return

        if node_kind(old) != node_kind(new):
            # Type change: one record, not remove + add
            out.append(_record(ChangeKind.MODIFIED, path, old.to_plain(), new.to_plain()))
            return

        if isinstance(old, MapNode):
            self._diff_map(old, new, path, out)
        elif isinstance(old, SetNode):
            self._diff_set(old, new, path, out)
        elif isinstance(old, SeqNode):
            self._diff_sequence(old, new, path, out)
        else:
            out.append(_record(ChangeKind.MODIFIED, path, old.to_plain(), new.to_plain()))

    def _diff_map(self, old: MapNode, new: MapNode, path: Path, out: List[ChangeRecord]) -> None:
        for key in sorted(set(old.entries) | set(new.entries)):
            child = path + (key,)
            if key not in new.entries:
                out.append(_record(ChangeKind.REMOVED, child, old.entries[key].to_plain(), None))
            elif key not in old.entries:
                out.append(_record(ChangeKind.ADDED, child, None, new.entries[key].to_plain()))
            else:
                self._walk(old.entries[key], new.entries[key], child, out)

    def _diff_set(self, old: SetNode, new: SetNode, path: Path, out: List[ChangeRecord]) -> None:
        for key in sorted(set(old.members) | set(new.members)):
            child = path + (key,)
            if key not in new.members:
                out.append(_record(ChangeKind.REMOVED, child, old.members[key].to_plain(), None))
            elif key not in old.members:
                out.append(_record(ChangeKind.ADDED, child, None, new.members[key].to_plain()))
            else:
                self._walk(old.members[key], new.members[key], child, out)

    def _diff_sequence(self, old: SeqNode, new: SeqNode, path: Path, out: List[ChangeRecord]) -> None:
        ordered = old.ordered or new.ordered
        if not ordered and old.multiset_key() == new.multiset_key():
            # Reordering only
            return

        for index in range(max(len(old.items), len(new.items))):
            child = path + (str(index),)
            if index >= len(new.items):
                out.append(_record(ChangeKind.REMOVED, child, old.items[index].to_plain(), None))
            elif index >= len(old.items):
                out.append(_record(ChangeKind.ADDED, child, None, new.items[index].to_plain()))
            else:
                self._walk(old.items[index], new.items[index], child, out)


def _record(kind: ChangeKind, path: Path, old_value: Any, new_value: Any) -> ChangeRecord:
    return ChangeRecord(
        kind=kind,
        location=".".join(path),
        segments=path,
        old_value=old_value,
        new_value=new_value,
        description=describe(kind, path, old_value, new_value),
    )


def _short(value: Any, limit: int = 60) -> str:
    text = repr(value)
    return text if len(text) <= limit else text[: limit - 3] + "..."


def describe(kind: ChangeKind, path: Path, old_value: Any = None, new_value: Any = None) -> str:
    """
    Build a human-readable sentence for a change.

    Args:
        kind: Change kind
        path: Canonical path segments
        old_value: Previous value
        new_value: New value

    Returns:
        Description string
    """
    verb = kind.value
    location = ".".join(path)

    if len(path) >= 2 and path[0] == "paths":
        endpoint = path[1]
        if len(path) == 2:
            if kind == ChangeKind.MODIFIED:
                return f"Endpoint {endpoint} changed"
            return f"Endpoint {verb}: {endpoint}"

        if len(path) >= 3 and path[2] in HTTP_METHODS:
            operation = f"{path[2].upper()} {endpoint}"
            if len(path) == 3:
                if kind == ChangeKind.ADDED:
                    return f"HTTP method {path[2].upper()} added to {endpoint}"
                if kind == ChangeKind.REMOVED:
                    return f"HTTP method {path[2].upper()} removed from {endpoint}"
                return f"Operation {operation} changed"

            rest = path[3:]
            if len(rest) == 2 and rest[0] == "parameters":
                value = old_value if kind == ChangeKind.REMOVED else new_value
                qualifier = "Required parameter" if isinstance(value, dict) and value.get("required") else "Parameter"
                if kind == ChangeKind.ADDED:
                    return f"{qualifier} '{rest[1]}' added to {operation}"
                if kind == ChangeKind.REMOVED:
                    return f"{qualifier} '{rest[1]}' removed from {operation}"
            if len(rest) == 2 and rest[0] == "responses":
                if kind == ChangeKind.ADDED:
                    return f"New response code {rest[1]} added to {operation}"
                if kind == ChangeKind.REMOVED:
                    return f"Response code {rest[1]} removed from {operation}"

    if path[:2] == ("components", "schemas") and len(path) == 3 and kind != ChangeKind.MODIFIED:
        return f"Schema '{path[2]}' {verb}"

    if kind == ChangeKind.MODIFIED:
        return f"Value changed at {location}: {_short(old_value)} -> {_short(new_value)}"
    return f"Field {verb}: {location}"
