"""Raw payload helpers and field path addressing.

Payloads are plain JSON values (dict, list, str, int, float, bool, None).
A field path addresses one field, optionally fanning out over array items:

    post_view.creator_display_name
    posts[].post.published
    body.auth

Missing keys and ``null`` intermediates simply yield no match; an
intermediate of the wrong container type raises ``PathShapeError``.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

JsonValue = Union[None, bool, int, float, str, List[Any], Dict[str, Any]]


class _Each:
    """Path segment that fans out over every item of an array."""

    def __repr__(self) -> str:
        return "[]"


EACH = _Each()

Segment = Union[str, _Each]


class PathShapeError(ValueError):
    """Raised when a path walks through a value of the wrong container type."""

    def __init__(self, path: str, expected: str, found: Any):
        self.path = path
        self.expected = expected
        self.found = type(found).__name__
        super().__init__(f"expected {expected} at '{path}', found {self.found}")


def _render(segments: Tuple[Segment, ...]) -> str:
    out = ""
    for seg in segments:
        if seg is EACH:
            out += "[]"
        else:
            out = f"{out}.{seg}" if out else str(seg)
    return out or "$"


class FieldPath:
    """Parsed, immutable field path."""

    __slots__ = ("text", "segments")

    def __init__(self, text: str):
        if not text:
            raise ValueError("field path must not be empty")
        segments: List[Segment] = []
        for part in text.split("."):
            name = part
            fan_out = 0
            while name.endswith("[]"):
                name = name[:-2]
                fan_out += 1
            if not name or "[" in name or "]" in name:
                raise ValueError(f"invalid field path segment '{part}' in '{text}'")
            segments.append(name)
            segments.extend([EACH] * fan_out)
        if segments[-1] is EACH:
            raise ValueError(f"field path '{text}' must end with a key")
        self.text = text
        self.segments: Tuple[Segment, ...] = tuple(segments)

    @classmethod
    def from_segments(cls, segments: Tuple[Segment, ...]) -> "FieldPath":
        path = cls.__new__(cls)
        path.segments = tuple(segments)
        path.text = _render(path.segments)
        return path

    @property
    def name(self) -> str:
        return str(self.segments[-1])

    @property
    def parent_segments(self) -> Tuple[Segment, ...]:
        return self.segments[:-1]

    @property
    def fans_out(self) -> bool:
        return any(seg is EACH for seg in self.segments)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, FieldPath) and other.segments == self.segments

    def __hash__(self) -> int:
        return hash(self.text)

    def __repr__(self) -> str:
        return f"FieldPath({self.text!r})"

    def __str__(self) -> str:
        return self.text

    def containers(self, doc: JsonValue) -> Iterator[Dict[str, Any]]:
        """Yield every object that should hold the last key of this path."""
        yield from walk_objects(doc, self.parent_segments)

    def slots(self, doc: JsonValue) -> Iterator[Tuple[Dict[str, Any], str]]:
        """Yield ``(container, key)`` for every location where the field is present."""
        for container in self.containers(doc):
            if self.name in container:
                yield container, self.name

    def first(self, doc: JsonValue, default: Any = None) -> Any:
        for container, key in self.slots(doc):
            return container[key]
        return default


def walk_objects(
    doc: JsonValue, segments: Tuple[Segment, ...], trail: Tuple[Segment, ...] = ()
) -> Iterator[Dict[str, Any]]:
    """Walk ``segments`` from ``doc`` and yield the objects reached."""

    if doc is None:
        return
    if not segments:
        if not isinstance(doc, dict):
            raise PathShapeError(_render(trail), "object", doc)
        yield doc
        return
    seg, rest = segments[0], segments[1:]
    if seg is EACH:
        if not isinstance(doc, list):
            raise PathShapeError(_render(trail), "array", doc)
        for item in doc:
            yield from walk_objects(item, rest, trail + (EACH,))
        return
    if not isinstance(doc, dict):
        raise PathShapeError(_render(trail), "object", doc)
    if seg not in doc:
        return
    yield from walk_objects(doc[seg], rest, trail + (seg,))


def split_anchor(old: FieldPath, new: FieldPath) -> Tuple[FieldPath, FieldPath, FieldPath]:
    """Split two paths into a shared anchor and two relative, non fan-out tails.

    Every ``[]`` segment of both paths must sit inside the shared prefix, so a
    value can be moved between the tails inside each anchor object.
    """

    limit = min(len(old.segments), len(new.segments)) - 1
    common = 0
    while common < limit and old.segments[common] == new.segments[common]:
        common += 1
    old_tail = old.segments[common:]
    new_tail = new.segments[common:]
    if any(seg is EACH for seg in old_tail + new_tail):
        raise ValueError(
            f"paths '{old}' and '{new}' must share every array fan-out segment"
        )
    anchor = FieldPath.from_segments(old.segments[:common]) if common else None
    return (
        anchor,  # type: ignore[return-value]
        FieldPath.from_segments(old_tail),
        FieldPath.from_segments(new_tail),
    )


def anchors(doc: JsonValue, anchor: Optional[FieldPath]) -> Iterator[Dict[str, Any]]:
    """Yield the anchor objects of a split path; the document itself when unanchored."""
    segments = anchor.segments if anchor is not None else ()
    yield from walk_objects(doc, segments)


def get_in(node: Dict[str, Any], tail: FieldPath) -> Tuple[bool, Any]:
    """Look up a non fan-out tail below ``node``."""
    for container in walk_objects(node, tail.parent_segments):
        if tail.name in container:
            return True, container[tail.name]
    return False, None


def delete_in(node: Dict[str, Any], tail: FieldPath) -> None:
    for container in walk_objects(node, tail.parent_segments):
        container.pop(tail.name, None)


def set_in(node: Dict[str, Any], tail: FieldPath, value: Any) -> None:
    """Set a non fan-out tail below ``node``, creating intermediate objects."""
    current = node
    trail: Tuple[Segment, ...] = ()
    for seg in tail.parent_segments:
        trail += (seg,)
        nxt = current.get(seg)  # type: ignore[arg-type]
        if nxt is None:
            nxt = {}
            current[seg] = nxt  # type: ignore[index]
        elif not isinstance(nxt, dict):
            raise PathShapeError(_render(trail), "object", nxt)
        current = nxt
    current[tail.name] = value


def rename_key(container: Dict[str, Any], old: str, new: str, value: Any) -> None:
    """Replace key ``old`` by ``new`` in place, keeping its position."""
    items = [(k, v) for k, v in container.items() if k != new]
    container.clear()
    for key, current in items:
        if key == old:
            container[new] = value
        else:
            container[key] = current


def encode_payload(payload: JsonValue) -> bytes:
    """Serialise compactly, matching the backend's JSON output."""
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def decode_payload(raw: bytes) -> JsonValue:
    return json.loads(raw.decode("utf-8"))
