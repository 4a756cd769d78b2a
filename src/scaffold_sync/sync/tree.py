"""Generic value tree used by the structured mergers.

Parsed YAML and JSON documents are converted into a closed set of node
types so that every merge rule can pattern-match exhaustively:

* ``Scalar``   -- a leaf value (string, number, boolean, null, date).
* ``Mapping``  -- an ordered map of string keys to nodes.
* ``Sequence`` -- an ordered list of nodes.

Nodes are frozen; merges always build new trees and never touch their
inputs.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Iterator, Union


@dataclass(frozen=True)
class Scalar:
    value: Any = None

    @property
    def text(self) -> str:
        """String-normalised form used for equality checks."""
        match self.value:
            case None:
                return ""
            case bool() as flag:
                return "true" if flag else "false"
            case _:
                return str(self.value)


@dataclass(frozen=True)
class Sequence:
    items: tuple[Node, ...] = ()

    def __iter__(self) -> Iterator[Node]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)


@dataclass(frozen=True)
class Mapping:
    """Ordered string-keyed map of nodes."""

    items: tuple[tuple[str, Node], ...] = ()

    def __contains__(self, key: object) -> bool:
        return any(k == key for k, _ in self.items)

    def __len__(self) -> int:
        return len(self.items)

    def keys(self) -> list[str]:
        return [k for k, _ in self.items]

    def get(self, key: str) -> Node | None:
        for k, v in self.items:
            if k == key:
                return v
        return None

    def as_dict(self) -> dict[str, Node]:
        return dict(self.items)


Node = Union[Scalar, Mapping, Sequence]

EMPTY = Mapping()


def from_python(data: Any) -> Node:
    """Convert parsed YAML/JSON data into a node tree.

    Non-string mapping keys (YAML allows ints and booleans) are
    stringified so that every ``Mapping`` is keyed by ``str``.
    """
    match data:
        case dict():
            return Mapping(
                tuple(
                    (_key_text(k), from_python(v)) for k, v in data.items()
                )
            )
        case list() | tuple():
            return Sequence(tuple(from_python(item) for item in data))
        case _:
            return Scalar(data)


def to_python(node: Node) -> Any:
    """Convert a node tree back into plain dicts, lists and scalars."""
    match node:
        case Scalar(value=value):
            return value
        case Mapping(items=items):
            return {k: to_python(v) for k, v in items}
        case Sequence(items=items):
            return [to_python(item) for item in items]


def normalized(node: Node | None) -> str | None:
    """Return a canonical string for *node*, ``None`` for a missing node.

    Scalars use their string form (``1`` and ``"1"`` compare equal);
    containers are serialised as sorted JSON.
    """
    match node:
        case None:
            return None
        case Scalar() as scalar:
            return scalar.text
        case Mapping() | Sequence():
            return json.dumps(to_python(node), sort_keys=True, default=str)


def is_mapping(node: Node | None) -> bool:
    return isinstance(node, Mapping)


def _key_text(key: Any) -> str:
    if isinstance(key, bool):
        return "true" if key else "false"
    return str(key)
