"""Declarative mapping between the legacy and the current API schema."""

from .context import Direction, TranslationContext
from .operations import LogicalOperation, MappingTable, RouteTemplate
from .pagination import PageState, PaginationDescriptor, PaginationStyle
from .rules import Coerce, Default, Drop, EnumRemap, FieldRule, Move, Rename, Restructure, Stage

__all__ = [
    "Direction",
    "TranslationContext",
    "LogicalOperation",
    "MappingTable",
    "RouteTemplate",
    "PageState",
    "PaginationDescriptor",
    "PaginationStyle",
    "Coerce",
    "Default",
    "Drop",
    "EnumRemap",
    "FieldRule",
    "Move",
    "Rename",
    "Restructure",
    "Stage",
]
