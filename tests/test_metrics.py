from __future__ import annotations

from nftgate import metrics


def test_counters_and_prometheus_text() -> None:
    metrics.inc_counter("uploads_ok")
    metrics.inc_counter("uploads_ok", 2)
    metrics.inc_counter("  ")

    snap = metrics.snapshot()
    assert snap["counters"] == {"uploads_ok": 3}
    assert snap["uptime_ms"] >= 0

    text = metrics.format_prometheus()
    assert "nftgate_uploads_ok 3\n" in text
    assert text.endswith("\n")

    metrics.reset()
    assert metrics.snapshot()["counters"] == {}


def test_metrics_enabled_flag(monkeypatch) -> None:
    assert metrics.metrics_enabled() is False
    monkeypatch.setenv("NFTGATE_METRICS_ENABLED", "yes")
    assert metrics.metrics_enabled() is True
    monkeypatch.setenv("NFTGATE_METRICS_ENABLED", "0")
    assert metrics.metrics_enabled() is False
