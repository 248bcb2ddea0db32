"""Logical operations, route templates and the immutable mapping table."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterator, Mapping, Optional, Tuple
from urllib.parse import quote

from .pagination import PaginationDescriptor
from .rules import FieldRule, ordered

_PARAM = re.compile(r"^\{(?P<name>[A-Za-z_][A-Za-z0-9_]*)(?::(?P<type>int))?\}$")

# Specificity rank of a segment kind; lower is more specific
LITERAL, TYPED, UNTYPED = 0, 1, 2


@dataclass(frozen=True)
class RouteSegment:
    kind: int
    value: str

    @property
    def is_param(self) -> bool:
        return self.kind != LITERAL

    def accepts(self, raw: str) -> bool:
        if self.kind == LITERAL:
            return raw == self.value
        if self.kind == TYPED:
            return raw.isascii() and raw.isdigit()
        return bool(raw)

    def convert(self, raw: str) -> Any:
        return int(raw) if self.kind == TYPED else raw


def split_path(path: str) -> Tuple[str, ...]:
    """Split a URL path into segments; a trailing slash is ignored."""
    return tuple(seg for seg in path.strip("/").split("/") if seg)


@dataclass(frozen=True)
class RouteTemplate:
    """A route such as ``/post/{id:int}`` or ``/community/{name}``."""

    text: str
    segments: Tuple[RouteSegment, ...]

    @classmethod
    def parse(cls, text: str) -> "RouteTemplate":
        if not text.startswith("/"):
            raise ValueError(f"route template '{text}' must start with '/'")
        segments = []
        seen = set()
        for raw in split_path(text):
            param = _PARAM.match(raw)
            if param:
                name = param.group("name")
                if name in seen:
                    raise ValueError(f"duplicate parameter '{name}' in '{text}'")
                seen.add(name)
                kind = TYPED if param.group("type") else UNTYPED
                segments.append(RouteSegment(kind, name))
            elif "{" in raw or "}" in raw:
                raise ValueError(f"invalid segment '{raw}' in route template '{text}'")
            else:
                segments.append(RouteSegment(LITERAL, raw))
        return cls(text=text, segments=tuple(segments))

    @property
    def params(self) -> Tuple[str, ...]:
        return tuple(seg.value for seg in self.segments if seg.is_param)

    @property
    def specificity(self) -> Tuple[int, ...]:
        return tuple(seg.kind for seg in self.segments)

    @property
    def shape(self) -> Tuple[str, ...]:
        """The template with parameter names erased, used for ambiguity checks."""
        return tuple(
            seg.value if seg.kind == LITERAL else ("{int}" if seg.kind == TYPED else "{}")
            for seg in self.segments
        )

    def match(self, segments: Tuple[str, ...]) -> Optional[Dict[str, Any]]:
        if len(segments) != len(self.segments):
            return None
        params: Dict[str, Any] = {}
        for template_seg, raw in zip(self.segments, segments):
            if not template_seg.accepts(raw):
                return None
            if template_seg.is_param:
                params[template_seg.value] = template_seg.convert(raw)
        return params

    def render(self, params: Mapping[str, Any]) -> str:
        parts = []
        for seg in self.segments:
            if seg.kind == LITERAL:
                parts.append(seg.value)
                continue
            if seg.value not in params or params[seg.value] is None:
                raise KeyError(seg.value)
            parts.append(quote(str(params[seg.value]), safe=""))
        return "/" + "/".join(parts)

    def __str__(self) -> str:
        return self.text


@dataclass(frozen=True)
class LogicalOperation:
    """One API capability, independent of the API version.

    ``captures`` lists request envelope paths (``body.form_id``) whose values
    are remembered for the response side of the same exchange.
    """

    operation_id: str
    method: str
    old_route: str
    new_route: str
    new_method: Optional[str] = None
    request_rules: Tuple[FieldRule, ...] = ()
    response_rules: Tuple[FieldRule, ...] = ()
    captures: Tuple[str, ...] = ()
    pagination: Optional[PaginationDescriptor] = None
    description: str = ""
    old_template: RouteTemplate = field(init=False, repr=False, compare=False)
    new_template: RouteTemplate = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", self.method.upper())
        if self.new_method:
            object.__setattr__(self, "new_method", self.new_method.upper())
        object.__setattr__(self, "old_template", RouteTemplate.parse(self.old_route))
        object.__setattr__(self, "new_template", RouteTemplate.parse(self.new_route))
        object.__setattr__(self, "request_rules", ordered(tuple(self.request_rules)))
        object.__setattr__(self, "response_rules", ordered(tuple(self.response_rules)))
        object.__setattr__(self, "captures", tuple(self.captures))

    @property
    def upstream_method(self) -> str:
        return self.new_method or self.method

    def describe(self) -> Dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "method": self.method,
            "old_route": self.old_route,
            "new_method": self.upstream_method,
            "new_route": self.new_route,
            "pagination": self.pagination.style.value if self.pagination else None,
            "request_rules": [rule.describe() for rule in self.request_rules],
            "response_rules": [rule.describe() for rule in self.response_rules],
        }


class MappingTable:
    """Immutable, ordered collection of logical operations.

    Declaration order is kept; it breaks routing ties. Two operations with
    the same method and route shape, or the same id, are rejected.

    ``reserved_routes`` are literal legacy routes without a translation of
    their own. They are always passed through, even where a parameterised
    template (``/user/{username}``) would otherwise capture them.
    """

    def __init__(
        self,
        operations: Tuple[LogicalOperation, ...],
        reserved_routes: Tuple[str, ...] = (),
    ):
        by_id: Dict[str, LogicalOperation] = {}
        shapes: Dict[Tuple[str, Tuple[str, ...]], str] = {}
        for op in operations:
            if op.operation_id in by_id:
                raise ValueError(f"duplicate operation id '{op.operation_id}'")
            key = (op.method, op.old_template.shape)
            if key in shapes:
                raise ValueError(
                    f"operations '{shapes[key]}' and '{op.operation_id}' both match "
                    f"{op.method} {op.old_route}"
                )
            by_id[op.operation_id] = op
            shapes[key] = op.operation_id
        literal_shapes = {shape for _, shape in shapes}
        reserved = set()
        for route in reserved_routes:
            template = RouteTemplate.parse(route)
            if template.params:
                raise ValueError(f"reserved route '{route}' must be literal")
            if template.shape in literal_shapes:
                raise ValueError(f"reserved route '{route}' is declared by an operation")
            reserved.add(template.shape)
        self._operations = tuple(operations)
        self._by_id = MappingProxyType(by_id)
        self._reserved = frozenset(reserved)

    @property
    def operations(self) -> Tuple[LogicalOperation, ...]:
        return self._operations

    def is_reserved(self, segments: Tuple[str, ...]) -> bool:
        return segments in self._reserved

    def get(self, operation_id: str) -> Optional[LogicalOperation]:
        return self._by_id.get(operation_id)

    def __getitem__(self, operation_id: str) -> LogicalOperation:
        return self._by_id[operation_id]

    def __contains__(self, operation_id: object) -> bool:
        return operation_id in self._by_id

    def __iter__(self) -> Iterator[LogicalOperation]:
        return iter(self._operations)

    def __len__(self) -> int:
        return len(self._operations)
