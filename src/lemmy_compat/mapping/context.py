"""Per-request translation state shared by the request and response transformers."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from ..errors import TranslationError, UpstreamUnexpectedShape

if TYPE_CHECKING:
    from .operations import LogicalOperation
    from .pagination import PageState


class Direction(str, Enum):
    REQUEST = "request"  # old -> new
    RESPONSE = "response"  # new -> old


@dataclass
class TranslationContext:
    operation: "LogicalOperation"
    max_page_walk: int = 10
    captured: Dict[str, Any] = field(default_factory=dict)
    page: Optional["PageState"] = None
    errors: List[TranslationError] = field(default_factory=list)
    enum_fallbacks: List[Tuple[str, Any]] = field(default_factory=list)

    @property
    def operation_id(self) -> str:
        return self.operation.operation_id

    def fail(self, direction: Direction, field_path: str, reason: str, required: bool = False) -> None:
        """Record a request-side error, or raise for a response-side shape mismatch."""
        if direction is Direction.RESPONSE:
            raise UpstreamUnexpectedShape(self.operation_id, field_path, reason)
        self.errors.append(TranslationError(field_path, reason, required=required))

    def record_fallback(self, field_path: str, value: Any) -> None:
        self.enum_fallbacks.append((field_path, value))
