from __future__ import annotations

import json
from typing import Any, Callable, List, Optional, Tuple

import pytest

from lemmy_compat.config import ProxySettings
from lemmy_compat.mapping.context import TranslationContext
from lemmy_compat.mapping.table import DEFAULT_MAPPING_TABLE
from lemmy_compat.metrics import ProxyMetricsCollector
from lemmy_compat.models import LegacyRequest
from lemmy_compat.orchestrator import ProxyOrchestrator
from lemmy_compat.upstream import UpstreamClient

from tests.fixtures.upstream import FakeLemmy


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("LEMMY_UPSTREAM", "COMPAT_UPSTREAM", "UPSTREAM", "COMPAT_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def settings() -> ProxySettings:
    return ProxySettings(upstream="lemmy.test:8536")


@pytest.fixture
def fake_lemmy() -> FakeLemmy:
    return FakeLemmy()


@pytest.fixture
def metrics() -> ProxyMetricsCollector:
    return ProxyMetricsCollector()


@pytest.fixture
def orchestrator(
    settings: ProxySettings, fake_lemmy: FakeLemmy, metrics: ProxyMetricsCollector
) -> ProxyOrchestrator:
    upstream = UpstreamClient(settings, transport=fake_lemmy.transport)
    return ProxyOrchestrator(settings, DEFAULT_MAPPING_TABLE, upstream, metrics)


@pytest.fixture
def make_request() -> Callable[..., LegacyRequest]:
    """Build a legacy request; ``body`` objects are sent as JSON."""

    def build(
        method: str,
        path: str,
        query: str = "",
        body: Any = None,
        headers: Optional[List[Tuple[str, str]]] = None,
    ) -> LegacyRequest:
        all_headers = list(headers or [])
        raw = b""
        if isinstance(body, bytes):
            raw = body
        elif body is not None:
            raw = json.dumps(body).encode("utf-8")
            all_headers.append(("content-type", "application/json"))
        return LegacyRequest(
            method=method, path=path, query_string=query, headers=all_headers, body=raw
        )

    return build


@pytest.fixture
def context_for() -> Callable[[str], TranslationContext]:
    def build(operation_id: str) -> TranslationContext:
        return TranslationContext(DEFAULT_MAPPING_TABLE[operation_id])

    return build
