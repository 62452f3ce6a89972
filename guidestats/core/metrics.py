from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    generate_latest,
    CONTENT_TYPE_LATEST,
)

# ---------------------------------------------------------------------------
# Request-level metrics
# ---------------------------------------------------------------------------
profile_fetch_total = Counter(
    "profile_fetch_total",
    "Profile stats requests by outcome",
    ["status"],
)
profile_fetch_duration_seconds = Histogram(
    "profile_fetch_duration_seconds",
    "Time spent producing a profile stats record (cache misses only)",
    buckets=[1, 2, 5, 10, 20, 30, 60, 90, 180],
)
cache_hits_total = Counter(
    "cache_hits_total",
    "Profile stats served from the result cache",
)
inflight_joins_total = Counter(
    "inflight_joins_total",
    "Requests that attached to an execution already in flight",
)

# ---------------------------------------------------------------------------
# Scrape internals
# ---------------------------------------------------------------------------
candidate_attempts_total = Counter(
    "candidate_attempts_total",
    "Session driver attempts by outcome",
    ["outcome"],
)

# ---------------------------------------------------------------------------
# Browser
# ---------------------------------------------------------------------------
active_browser_sessions = Gauge(
    "active_browser_sessions",
    "Number of currently open browser sessions",
)
browser_launches_total = Counter(
    "browser_launches_total",
    "Number of times the browser process was launched",
)


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
