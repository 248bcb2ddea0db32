"""Field mapping rules.

Every rule relates a field of the old schema to a field of the new schema and
is direction neutral: applied in ``Direction.REQUEST`` it rewrites old into
new, applied in ``Direction.RESPONSE`` it rewrites new back into old. Paths
are parsed when the rule is built, so a malformed table fails at import.

Rules mutate the document they are given; transformers hand them a copy.
"""

from __future__ import annotations

import copy
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import IntEnum
from types import MappingProxyType
from typing import Any, Callable, ClassVar, Dict, Mapping, Optional, Tuple

from .context import Direction, TranslationContext
from .payload import (
    FieldPath,
    PathShapeError,
    anchors,
    delete_in,
    get_in,
    rename_key,
    set_in,
    split_anchor,
    walk_objects,
)


class Stage(IntEnum):
    """Fixed application order of rules inside one transformation."""

    PARAMS = 1
    RESHAPE = 2
    ENUM = 3
    DEFAULT = 4
    DROP = 5


@dataclass(frozen=True)
class Coercion:
    """A pair of value conversions, old -> new and new -> old."""

    name: str
    to_new: Callable[[Any], Any]
    to_old: Callable[[Any], Any]

    def convert(self, value: Any, direction: Direction) -> Any:
        if direction is Direction.REQUEST:
            return self.to_new(value)
        return self.to_old(value)


def _identity(value: Any) -> Any:
    return value


def to_int(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"expected an integer, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and re.fullmatch(r"-?\d+", value.strip()):
        return int(value.strip())
    raise ValueError(f"expected an integer, got {value!r}")


def to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "false"):
        return value.lower() == "true"
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    raise ValueError(f"expected a boolean, got {value!r}")


_TIMESTAMP = re.compile(
    r"^(?P<base>\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})"
    r"(?P<frac>\.\d+)?"
    r"(?P<tz>Z|[+-]\d{2}:?\d{2})?$"
)


def _parse_timestamp(value: Any) -> re.Match:
    if not isinstance(value, str):
        raise ValueError(f"expected a timestamp string, got {value!r}")
    match = _TIMESTAMP.match(value)
    if not match:
        raise ValueError(f"invalid timestamp {value!r}")
    try:
        datetime.strptime(match.group("base"), "%Y-%m-%dT%H:%M:%S")
    except ValueError as exc:
        raise ValueError(f"invalid timestamp {value!r}") from exc
    return match


def naive_to_utc(value: Any) -> str:
    """``2023-06-01T12:00:00.5`` -> ``2023-06-01T12:00:00.5Z``."""
    match = _parse_timestamp(value)
    if match.group("tz"):
        return value
    return f"{value}Z"


def utc_to_naive(value: Any) -> str:
    """Render an RFC 3339 timestamp as a naive UTC timestamp, keeping its precision."""
    match = _parse_timestamp(value)
    tz = match.group("tz")
    base, frac = match.group("base"), match.group("frac") or ""
    if not tz or tz in ("Z", "+00:00", "+0000", "-00:00"):
        return f"{base}{frac}"
    sign = 1 if tz[0] == "+" else -1
    digits = tz[1:].replace(":", "")
    offset = timedelta(hours=int(digits[:2]), minutes=int(digits[2:]))
    local = datetime.strptime(base, "%Y-%m-%dT%H:%M:%S").replace(
        tzinfo=timezone(sign * offset)
    )
    utc = local.astimezone(timezone.utc).replace(tzinfo=None)
    return f"{utc.strftime('%Y-%m-%dT%H:%M:%S')}{frac}"


def _to_bearer(value: Any) -> str:
    if not isinstance(value, str) or not value:
        raise ValueError("expected a non-empty token")
    return f"Bearer {value}"


def _from_bearer(value: Any) -> Any:
    if isinstance(value, str) and value.lower().startswith("bearer "):
        return value[7:]
    return value


INT = Coercion("int", to_int, _identity)
BOOL = Coercion("bool", to_bool, _identity)
TIMESTAMP = Coercion("timestamp", naive_to_utc, utc_to_naive)
BEARER = Coercion("bearer", _to_bearer, _from_bearer)


class FieldRule:
    """Base class of all field mapping rules."""

    stage: ClassVar[Stage]
    kind: ClassVar[str]
    required: bool = False

    def apply(self, doc: Any, direction: Direction, ctx: TranslationContext) -> None:
        raise NotImplementedError

    def describe(self) -> Dict[str, Any]:
        raise NotImplementedError


@dataclass(frozen=True)
class Move(FieldRule):
    """Relocate one field, optionally converting its value.

    ``old`` and ``new`` may live in different containers (path parameter to
    query, body property to header) as long as they share every ``[]``
    fan-out segment. With ``overwrite=False`` an existing target wins and the
    source is only removed.
    """

    stage: ClassVar[Stage] = Stage.PARAMS
    kind: ClassVar[str] = "move"

    old: str
    new: str
    coercion: Optional[Coercion] = None
    overwrite: bool = True
    required: bool = False
    _old_path: FieldPath = field(init=False, repr=False, compare=False)
    _new_path: FieldPath = field(init=False, repr=False, compare=False)
    _split: Tuple[Any, FieldPath, FieldPath] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        old_path, new_path = FieldPath(self.old), FieldPath(self.new)
        object.__setattr__(self, "_old_path", old_path)
        object.__setattr__(self, "_new_path", new_path)
        object.__setattr__(self, "_split", split_anchor(old_path, new_path))

    def apply(self, doc: Any, direction: Direction, ctx: TranslationContext) -> None:
        anchor, old_tail, new_tail = self._split
        if direction is Direction.REQUEST:
            source, src_tail, dst_tail = self.old, old_tail, new_tail
        else:
            source, src_tail, dst_tail = self.new, new_tail, old_tail
        try:
            for node in anchors(doc, anchor):
                found, value = get_in(node, src_tail)
                if not found:
                    if self.required:
                        ctx.fail(direction, source, "required field is missing", True)
                    continue
                if self.coercion is not None and value is not None:
                    try:
                        value = self.coercion.convert(value, direction)
                    except (TypeError, ValueError) as exc:
                        ctx.fail(direction, source, str(exc), self.required)
                        continue
                self._place(node, src_tail, dst_tail, value)
        except PathShapeError as exc:
            ctx.fail(direction, source, str(exc), self.required)

    def _place(self, node: Dict[str, Any], src: FieldPath, dst: FieldPath, value: Any) -> None:
        if src == dst:
            set_in(node, dst, value)
            return
        exists, _ = get_in(node, dst)
        if exists and not self.overwrite:
            delete_in(node, src)
            return
        if src.parent_segments == dst.parent_segments:
            for container in walk_objects(node, src.parent_segments):
                rename_key(container, src.name, dst.name, value)
            return
        delete_in(node, src)
        set_in(node, dst, value)

    def describe(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"kind": self.kind, "old": self.old, "new": self.new}
        if self.coercion is not None:
            out["coercion"] = self.coercion.name
        if self.required:
            out["required"] = True
        return out


@dataclass(frozen=True)
class Rename(Move):
    """Rename a field in place; the key keeps its position in the object."""

    stage: ClassVar[Stage] = Stage.RESHAPE
    kind: ClassVar[str] = "rename"


@dataclass(frozen=True)
class Coerce(Move):
    """Type coercion, optionally combined with a rename."""

    stage: ClassVar[Stage] = Stage.RESHAPE
    kind: ClassVar[str] = "coerce"

    def __post_init__(self) -> None:
        if self.coercion is None:
            raise ValueError(f"coerce rule for '{self.old}' needs a coercion")
        super().__post_init__()


def _array_to_object(key_field: str, value_field: Optional[str]) -> Callable[[Any], Any]:
    def convert(value: Any) -> Dict[str, Any]:
        if not isinstance(value, list):
            raise ValueError(f"expected an array, got {type(value).__name__}")
        out: Dict[str, Any] = {}
        for item in value:
            if not isinstance(item, dict) or key_field not in item:
                raise ValueError(f"array items need a '{key_field}' property")
            if value_field is None:
                out[str(item[key_field])] = {k: v for k, v in item.items() if k != key_field}
            else:
                out[str(item[key_field])] = item.get(value_field)
        return out

    return convert


def _object_to_array(
    key_field: str, value_field: Optional[str], key_type: Callable[[str], Any]
) -> Callable[[Any], Any]:
    def convert(value: Any) -> list:
        if not isinstance(value, dict):
            raise ValueError(f"expected an object, got {type(value).__name__}")
        out = []
        for key, item in value.items():
            if value_field is None:
                if not isinstance(item, dict):
                    raise ValueError("object values must be objects")
                out.append({key_field: key_type(key), **item})
            else:
                out.append({key_field: key_type(key), value_field: item})
        return out

    return convert


_KEY_TYPES: Dict[str, Callable[[str], Any]] = {"str": str, "int": to_int}


@dataclass(frozen=True)
class Restructure(Move):
    """Convert between an array of objects and an object keyed by one of their fields.

    ``old_shape`` names the old side's shape (``"object"`` or ``"array"``);
    the new side has the other one. ``value_field`` selects the property kept
    as the object value; when omitted the remaining properties are kept.
    """

    stage: ClassVar[Stage] = Stage.RESHAPE
    kind: ClassVar[str] = "restructure"

    old_shape: str = "object"
    key_field: str = "id"
    value_field: Optional[str] = None
    key_type: str = "str"

    def __post_init__(self) -> None:
        if self.old_shape not in ("object", "array"):
            raise ValueError(f"unknown shape '{self.old_shape}'")
        if self.key_type not in _KEY_TYPES:
            raise ValueError(f"unknown key type '{self.key_type}'")
        to_object = _array_to_object(self.key_field, self.value_field)
        to_array = _object_to_array(self.key_field, self.value_field, _KEY_TYPES[self.key_type])
        if self.old_shape == "object":
            coercion = Coercion("object->array", to_array, to_object)
        else:
            coercion = Coercion("array->object", to_object, to_array)
        object.__setattr__(self, "coercion", coercion)
        super().__post_init__()

    def describe(self) -> Dict[str, Any]:
        out = super().describe()
        out["key_field"] = self.key_field
        return out


@dataclass(frozen=True)
class EnumRemap(FieldRule):
    """Remap enum vocabulary between versions.

    ``values`` are spelled the same in both versions, ``renamed`` maps old
    spellings to new ones. In the request direction an unknown value is a
    translation error; in the response direction it becomes ``fallback``.
    ``path`` is where the field lives once renames have run.
    """

    stage: ClassVar[Stage] = Stage.ENUM
    kind: ClassVar[str] = "enum"

    path: str
    values: Tuple[str, ...]
    fallback: str
    renamed: Mapping[str, str] = field(default_factory=dict)
    nullable: bool = True
    required: bool = False
    _path: FieldPath = field(init=False, repr=False, compare=False)
    _to_new: Mapping[str, str] = field(init=False, repr=False, compare=False)
    _to_old: Mapping[str, str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        to_new = {value: value for value in self.values}
        to_new.update(self.renamed)
        to_old = {new: old for old, new in to_new.items()}
        if len(to_old) != len(to_new):
            raise ValueError(f"enum mapping for '{self.path}' is not one-to-one")
        if self.fallback not in to_new:
            raise ValueError(f"fallback '{self.fallback}' is not an old value of '{self.path}'")
        object.__setattr__(self, "_path", FieldPath(self.path))
        object.__setattr__(self, "_to_new", MappingProxyType(to_new))
        object.__setattr__(self, "_to_old", MappingProxyType(to_old))

    @property
    def old_values(self) -> Tuple[str, ...]:
        return tuple(self._to_new)

    def apply(self, doc: Any, direction: Direction, ctx: TranslationContext) -> None:
        try:
            for container, key in list(self._path.slots(doc)):
                value = container[key]
                if value is None and self.nullable:
                    continue
                if direction is Direction.REQUEST:
                    if isinstance(value, str) and value in self._to_new:
                        container[key] = self._to_new[value]
                    else:
                        ctx.fail(direction, self.path, f"unknown value {value!r}", self.required)
                elif isinstance(value, str) and value in self._to_old:
                    container[key] = self._to_old[value]
                else:
                    container[key] = self.fallback
                    ctx.record_fallback(self.path, value)
        except PathShapeError as exc:
            ctx.fail(direction, self.path, str(exc), self.required)

    def describe(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "path": self.path,
            "renamed": dict(self.renamed),
            "fallback": self.fallback,
        }


@dataclass(frozen=True)
class Default(FieldRule):
    """Fill a field the target side requires when the source omitted it.

    ``from_capture`` names a request value remembered on the context, used
    before the static ``value``. Nothing is filled when neither is available.
    """

    stage: ClassVar[Stage] = Stage.DEFAULT
    kind: ClassVar[str] = "default"

    path: str
    value: Any = None
    from_capture: Optional[str] = None
    _path: FieldPath = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_path", FieldPath(self.path))

    def apply(self, doc: Any, direction: Direction, ctx: TranslationContext) -> None:
        if self.from_capture is not None and self.from_capture in ctx.captured:
            value = ctx.captured[self.from_capture]
        elif self.from_capture is not None and self.value is None:
            return
        else:
            value = self.value
        try:
            for container in self._path.containers(doc):
                if self._path.name not in container:
                    container[self._path.name] = copy.deepcopy(value)
        except PathShapeError as exc:
            ctx.fail(direction, self.path, str(exc))

    def describe(self) -> Dict[str, Any]:
        out = {"kind": self.kind, "path": self.path, "value": self.value}
        if self.from_capture:
            out["from_capture"] = self.from_capture
        return out


@dataclass(frozen=True)
class Drop(FieldRule):
    """Remove a field the target side does not know."""

    stage: ClassVar[Stage] = Stage.DROP
    kind: ClassVar[str] = "drop"

    path: str
    _path: FieldPath = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_path", FieldPath(self.path))

    def apply(self, doc: Any, direction: Direction, ctx: TranslationContext) -> None:
        try:
            for container in self._path.containers(doc):
                container.pop(self._path.name, None)
        except PathShapeError as exc:
            ctx.fail(direction, self.path, str(exc))

    def describe(self) -> Dict[str, Any]:
        return {"kind": self.kind, "path": self.path}


def ordered(rules: Tuple[FieldRule, ...]) -> Tuple[FieldRule, ...]:
    """Rules in stage order; declaration order is kept within a stage."""
    return tuple(sorted(rules, key=lambda rule: rule.stage))
