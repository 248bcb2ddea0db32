from prometheus_client import REGISTRY

from lemmy_compat.metrics import ProxyMetricsCollector


def _sample(name, labels=None):
    return REGISTRY.get_sample_value(name, labels or {}) or 0.0


class TestProxyMetricsCollector:
    def test_request_mirrors(self):
        metrics = ProxyMetricsCollector()

        metrics.record_request("GetPost", "translated", 10.0)
        metrics.record_request("GetPost", "translated", 30.0)
        metrics.record_request("passthrough", "passthrough", 5.0)

        assert metrics.get_total_requests() == 3
        assert metrics.get_outcome_count("translated") == 2
        assert metrics.get_average_latency() == 15.0

    def test_prometheus_counters_increase(self):
        """Test the exported collectors move with the local mirrors."""
        metrics = ProxyMetricsCollector()
        labels = {"operation": "ListPosts", "field": "posts[].subscribed"}
        before = _sample("compat_enum_fallbacks_total", labels)

        metrics.record_enum_fallback("ListPosts", "posts[].subscribed")

        assert _sample("compat_enum_fallbacks_total", labels) == before + 1

    def test_summary_and_reset(self):
        metrics = ProxyMetricsCollector()
        metrics.record_request("CreatePost", "translation_failed", 2.0)
        metrics.record_translation_error("CreatePost", "body.community_id", "required")
        metrics.record_unexpected_shape("GetPost", "post_view.post.published")
        metrics.record_disconnect()

        summary = metrics.summary()
        assert summary["requests"] == {"CreatePost:translation_failed": 1}
        assert summary["translation_errors"] == 1
        assert summary["unexpected_shapes"] == 1
        assert summary["client_disconnects"] == 1

        metrics.reset_metrics()
        assert metrics.get_total_requests() == 0
        assert metrics.get_average_latency() == 0.0
        assert metrics.summary()["client_disconnects"] == 0
