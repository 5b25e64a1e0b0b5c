"""Structural facts extracted from one source unit."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Literal

FactKind = Literal["class", "route-list", "migration", "view", "unparseable"]


@dataclass(frozen=True, slots=True)
class MethodFact:
    """A method declared in a class body."""

    name: str
    line: int
    relation: str | None = None
    returns_relation: bool = False


@dataclass(frozen=True, slots=True)
class RouteFact:
    """A single route declaration in a route file."""

    line: int
    verb: str
    uri: str
    named: bool
    closure: bool


@dataclass(frozen=True, slots=True)
class FactSet:
    """Read-only summary of one class, route file, migration, or view."""

    kind: FactKind
    name: str
    path: str
    line: int = 1
    attributes: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "attributes", MappingProxyType(dict(self.attributes)))

    def get(self, key: str, default: Any = None) -> Any:
        return self.attributes.get(key, default)


def unparseable(path: str, reason: str) -> FactSet:
    """Build the fact set emitted for a file that could not be scanned."""
    return FactSet(kind="unparseable", name=path, path=path, line=1, attributes={"reason": reason})
