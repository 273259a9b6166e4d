"""
Canonical document tree.

An interface description is normalized into a tagged-variant tree so that the
diff engine can walk it without caring about key order or about arrays that
are really unordered sets:

- ``MapNode``: JSON object, key order irrelevant
- ``SetNode``: unordered collection (``required``, ``enum``, ``tags``, ...)
- ``SeqNode``: ordered collection; reordering is only meaningful when the
  node is flagged ``ordered``
- ``ScalarNode``: string, number, boolean or null

``canonicalize(to_plain(doc))`` yields ``doc`` again, so the plain form is
what gets persisted and hashed.
"""

import hashlib
import json
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional, Tuple, Union

# Array-valued keys whose members form an unordered set
SET_FIELDS: FrozenSet[str] = frozenset({
    "required",
    "enum",
    "tags",
    "schemes",
    "consumes",
    "produces",
})

# Vendor extension listing sibling keys whose array order is significant
ORDER_EXTENSION = "x-order-significant"

# Parameter locations keyed by bare name
_BARE_LOCATIONS = frozenset({"path", "query", ""})

Scalar = Union[str, int, float, bool, None]


def canonical_json(value: Any) -> str:
    """Serialize a plain value deterministically (sorted keys, no whitespace)."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _scalar_kind(value: Scalar) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    return "string"


@dataclass(frozen=True, eq=False)
class ScalarNode:
    """Leaf value. Equality is type-aware: ``1`` and ``True`` differ."""

    value: Scalar

    @property
    def kind(self) -> str:
        return _scalar_kind(self.value)

    def to_plain(self) -> Scalar:
        return self.value

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ScalarNode):
            return NotImplemented
        return self.kind == other.kind and self.value == other.value

    def __hash__(self) -> int:
        return hash((self.kind, self.value))


@dataclass(frozen=True)
class MapNode:
    """Object node keyed by string."""

    entries: Dict[str, "Node"] = field(default_factory=dict)

    def keys(self) -> Iterable[str]:
        return self.entries.keys()

    def get(self, key: str) -> Optional["Node"]:
        return self.entries.get(key)

    def __contains__(self, key: str) -> bool:
        return key in self.entries

    def __getitem__(self, key: str) -> "Node":
        return self.entries[key]

    def to_plain(self) -> Dict[str, Any]:
        return {key: self.entries[key].to_plain() for key in sorted(self.entries)}


@dataclass(frozen=True)
class SetNode:
    """Unordered collection; members are keyed by a stable member key."""

    members: Dict[str, "Node"] = field(default_factory=dict)

    def to_plain(self) -> list:
        return [self.members[key].to_plain() for key in sorted(self.members)]


@dataclass(frozen=True)
class SeqNode:
    """Ordered collection. ``ordered`` marks order as semantically significant."""

    items: Tuple["Node", ...] = ()
    ordered: bool = False

    def to_plain(self) -> list:
        return [item.to_plain() for item in self.items]

    def multiset_key(self) -> Tuple[str, ...]:
        """Order-insensitive fingerprint of the items."""
        return tuple(sorted(canonical_json(item.to_plain()) for item in self.items))


Node = Union[MapNode, SetNode, SeqNode, ScalarNode]

# A canonical document is always an object at the root
CanonicalDocument = MapNode


def node_kind(node: Node) -> str:
    """Return the variant name of a node (map, set, sequence or the scalar kind)."""
    if isinstance(node, MapNode):
        return "map"
    if isinstance(node, SetNode):
        return "set"
    if isinstance(node, SeqNode):
        return "sequence"
    return node.kind


def canonicalize(
    raw: Mapping[str, Any],
    order_significant_fields: Iterable[str] = (),
) -> CanonicalDocument:
    """
    Normalize a parsed interface description into a canonical tree.

    Args:
        raw: Parsed JSON/YAML document (must be a mapping)
        order_significant_fields: Array keys whose order is significant

    Returns:
        Canonical document

    Raises:
        TypeError: If the document root is not a mapping
    """
    if not isinstance(raw, Mapping):
        raise TypeError(f"Document root must be an object, got {type(raw).__name__}")
    return _convert_mapping(raw, frozenset(order_significant_fields))


def content_hash(document: CanonicalDocument) -> str:
    """SHA-256 over the canonical JSON form of a document."""
    return hashlib.sha256(canonical_json(document.to_plain()).encode("utf-8")).hexdigest()


def _convert(value: Any, key: str, ordered_keys: FrozenSet[str]) -> Node:
    if isinstance(value, Mapping):
        return _convert_mapping(value, ordered_keys)
    if isinstance(value, (list, tuple)):
        if key == "parameters" and all(isinstance(item, Mapping) for item in value):
            return _convert_parameters(value, ordered_keys)
        if key in SET_FIELDS:
            return _convert_set(value, ordered_keys)
        return SeqNode(
            items=tuple(_convert(item, key, ordered_keys) for item in value),
            ordered=key in ordered_keys,
        )
    if isinstance(value, (set, frozenset)):
        return _convert_set(sorted(value, key=canonical_json), ordered_keys)
    return ScalarNode(_normalize_scalar(value))


def _convert_mapping(mapping: Mapping[Any, Any], inherited: FrozenSet[str]) -> MapNode:
    ordered_keys = inherited
    extension = mapping.get(ORDER_EXTENSION)
    if isinstance(extension, (list, tuple)):
        ordered_keys = inherited | frozenset(str(item) for item in extension)

    entries: Dict[str, Node] = {}
    for raw_key, value in mapping.items():
        key = str(raw_key)
        entries[key] = _convert(value, key, ordered_keys)
    return MapNode(entries=entries)


def parameter_key(param: Mapping[str, Any]) -> str:
    """
    Identity of one parameter, derived from its own name and location only.

    Path and query parameters are keyed by bare name; parameters in any other
    location are qualified as ``name[in]``.
    """
    name = param["name"]
    location = param.get("in", "")
    if location in _BARE_LOCATIONS:
        return name
    return f"{name}[{location}]"


def _convert_parameters(params: Iterable[Mapping[str, Any]], ordered_keys: FrozenSet[str]) -> MapNode:
    """Key operation parameters by identity so they are matched regardless of position."""
    params = list(params)
    path_names = {p.get("name") for p in params if p.get("in") == "path"}
    entries: Dict[str, Node] = {}

    for param in params:
        name = param.get("name")
        if isinstance(name, str):
            key = parameter_key(param)
            # Only a path parameter of the same name can displace a query parameter
            if param.get("in") == "query" and name in path_names:
                key = f"{name}[query]"
        elif isinstance(param.get("$ref"), str):
            key = param["$ref"]
        else:
            key = canonical_json(_plain_copy(param))

        if param.get("in") == "path":
            # Path parameters are always required
            param = dict(param)
            param["required"] = True

        entries[key] = _convert_mapping(param, ordered_keys)
    return MapNode(entries=entries)


def _convert_set(values: Iterable[Any], ordered_keys: FrozenSet[str]) -> SetNode:
    values = list(values)
    names = [v.get("name") if isinstance(v, Mapping) else None for v in values]
    members: Dict[str, Node] = {}

    for value, name in zip(values, names):
        if isinstance(value, str):
            key = value
        elif isinstance(name, str) and names.count(name) == 1:
            key = name
        else:
            key = canonical_json(_plain_copy(value))
        members[key] = _convert(value, "", ordered_keys)
    return SetNode(members=members)


def _normalize_scalar(value: Any) -> Scalar:
    if value is None or isinstance(value, (bool, str, int)):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else value
    if isinstance(value, (datetime, date)):
        # YAML loaders turn unquoted dates into date objects
        return value.isoformat()
    return str(value)


def _plain_copy(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {str(k): _plain_copy(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain_copy(v) for v in value]
    return _normalize_scalar(value)
