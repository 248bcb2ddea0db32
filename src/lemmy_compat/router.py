from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .errors import RouteNotFound
from .mapping.operations import LogicalOperation, MappingTable, split_path


@dataclass(frozen=True)
class RouteMatch:
    operation: LogicalOperation
    params: Dict[str, Any] = field(default_factory=dict)

    @property
    def operation_id(self) -> str:
        return self.operation.operation_id


class PathRouter:
    """Resolve legacy ``(method, path)`` pairs to logical operations.

    Paths outside ``prefix`` never match. Among matching templates the most
    specific one wins: comparing segment by segment, a literal beats a typed
    parameter, which beats an untyped one. Equal candidates resolve to the
    operation declared first. Routes the table reserves never match.
    """

    def __init__(self, table: MappingTable, prefix: str = "/api/v3"):
        self.table = table
        self.prefix = "/" + prefix.strip("/") if prefix.strip("/") else ""
        self._by_method: Dict[str, List[Tuple[int, LogicalOperation]]] = {}
        for index, op in enumerate(table):
            self._by_method.setdefault(op.method, []).append((index, op))

    def strip_prefix(self, path: str) -> Optional[str]:
        if not self.prefix:
            return path
        if path == self.prefix or path == self.prefix + "/":
            return "/"
        if path.startswith(self.prefix + "/"):
            return path[len(self.prefix):]
        return None

    def match(self, method: str, path: str) -> Optional[RouteMatch]:
        local = self.strip_prefix(path)
        if local is None:
            return None
        segments = split_path(local)
        if self.table.is_reserved(segments):
            return None

        best: Optional[Tuple[Tuple[int, ...], int, LogicalOperation, Dict[str, Any]]] = None
        for index, op in self._by_method.get(method.upper(), []):
            params = op.old_template.match(segments)
            if params is None:
                continue
            rank = (op.old_template.specificity, index)
            if best is None or rank < best[:2]:
                best = (op.old_template.specificity, index, op, params)
        if best is None:
            return None
        return RouteMatch(operation=best[2], params=best[3])

    def resolve(self, method: str, path: str) -> RouteMatch:
        matched = self.match(method, path)
        if matched is None:
            raise RouteNotFound(method.upper(), path)
        return matched
