from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import parse_qsl, urlencode

from pydantic import BaseModel

Headers = List[Tuple[str, str]]

# Connection-scoped headers never forwarded in either direction
HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailer",
        "trailers",
        "transfer-encoding",
        "upgrade",
    }
)


class ExchangeState(str, Enum):
    RECEIVED = "received"
    ROUTED = "routed"
    REQUEST_TRANSFORMED = "request_transformed"
    FORWARDED = "forwarded"
    RESPONSE_TRANSFORMED = "response_transformed"
    SENT = "sent"
    ERRORED = "errored"


class ErrorBody(BaseModel):
    """Error document returned for proxy-side failures.

    ``error`` carries the code, which is the key legacy clients read.
    """

    error: str
    message: Optional[str] = None
    request_id: Optional[str] = None


class HealthStatus(BaseModel):
    status: str
    version: str
    environment: str
    upstream: str
    operations: int


def header_value(headers: Headers, name: str) -> Optional[str]:
    wanted = name.lower()
    for key, value in headers:
        if key.lower() == wanted:
            return value
    return None


def without_headers(headers: Headers, names: frozenset | set) -> Headers:
    return [(k, v) for k, v in headers if k.lower() not in names]


def encode_query(params: Dict[str, Any]) -> str:
    pairs = []
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            value = "true" if value else "false"
        pairs.append((key, str(value)))
    return urlencode(pairs)


def parse_query(query_string: str) -> Dict[str, str]:
    """Parse a query string; the first occurrence of a key wins."""
    params: Dict[str, str] = {}
    for key, value in parse_qsl(query_string, keep_blank_values=True):
        params.setdefault(key, value)
    return params


@dataclass
class LegacyRequest:
    """An inbound request in the old API's shape."""

    method: str
    path: str
    raw_path: str = ""
    query_string: str = ""
    headers: Headers = field(default_factory=list)
    body: bytes = b""

    def __post_init__(self) -> None:
        self.method = self.method.upper()
        if not self.raw_path:
            self.raw_path = self.path

    def header(self, name: str) -> Optional[str]:
        return header_value(self.headers, name)

    @property
    def is_json(self) -> bool:
        return "application/json" in (self.header("content-type") or "")

    def query_params(self) -> Dict[str, str]:
        return parse_query(self.query_string)

    def json_body(self) -> Any:
        """Decode the body; ``None`` when empty. Raises ``ValueError`` if not JSON."""
        if not self.body.strip():
            return None
        return json.loads(self.body.decode("utf-8"))


@dataclass
class UpstreamRequest:
    """A request in the new API's shape, ready to be sent upstream."""

    method: str
    path: str
    query_string: str = ""
    headers: Headers = field(default_factory=list)
    content: Optional[bytes] = None

    @property
    def target(self) -> str:
        return f"{self.path}?{self.query_string}" if self.query_string else self.path

    def with_query(self, **updates: Any) -> "UpstreamRequest":
        params: Dict[str, Any] = dict(parse_query(self.query_string))
        params.update(updates)
        return replace(self, query_string=encode_query(params))


@dataclass
class UpstreamReply:
    status_code: int
    headers: Headers = field(default_factory=list)
    content: bytes = b""
    elapsed_ms: int = 0

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300

    def json(self) -> Any:
        return json.loads(self.content.decode("utf-8"))


# Headers recomputed by the server for every relayed body
_RELAY_DROPPED = HOP_BY_HOP_HEADERS | {"content-length", "content-encoding"}


@dataclass
class ProxyResponse:
    """What the proxy sends back to the legacy client."""

    status_code: int
    headers: Headers = field(default_factory=list)
    content: bytes = b""

    @classmethod
    def relay(cls, reply: UpstreamReply, keep_length: bool = False) -> "ProxyResponse":
        """Relay an upstream reply as is.

        ``keep_length`` keeps the upstream ``content-length``, the only
        length a reply to ``HEAD`` can carry.
        """
        dropped = _RELAY_DROPPED - {"content-length"} if keep_length else _RELAY_DROPPED
        return cls(
            status_code=reply.status_code,
            headers=without_headers(reply.headers, dropped),
            content=reply.content,
        )

    @classmethod
    def translated(cls, reply: UpstreamReply, content: bytes) -> "ProxyResponse":
        headers = without_headers(reply.headers, _RELAY_DROPPED | {"content-type"})
        headers.append(("content-type", "application/json"))
        return cls(status_code=reply.status_code, headers=headers, content=content)

    @classmethod
    def error(cls, status_code: int, body: ErrorBody) -> "ProxyResponse":
        return cls(
            status_code=status_code,
            headers=[("content-type", "application/json")],
            content=body.model_dump_json(exclude_none=True).encode("utf-8"),
        )

    def header(self, name: str) -> Optional[str]:
        return header_value(self.headers, name)
