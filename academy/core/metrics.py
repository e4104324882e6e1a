"""Every Prometheus metric the service exports, in one place.

Modules import the metric they own and update it where the event
happens.  Label values are closed sets (listed beside each metric);
ids never become labels.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---- HTTP (MetricsMiddleware) ----

REQUEST_COUNT = Counter(
    "http_requests_total",
    "HTTP requests by method, route template and status code",
    ["method", "endpoint", "status_code"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency by method and route template",
    ["method", "endpoint"],
    # Sign-in waits on the identity provider for up to 10s per attempt,
    # plus one fallback attempt.
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0),
)

ACTIVE_REQUESTS = Gauge("http_active_requests", "HTTP requests in flight")

# ---- Identity and membership ----

TOKEN_VALIDATIONS = Counter(
    "token_validations_total",
    "External token validations by terminal state",
    ["outcome"],  # validated|rejected|timed_out|unreachable
)

MEMBERSHIP_FETCHES = Counter(
    "membership_fetches_total",
    "Live group membership fetches by result",
    ["outcome"],  # ok|not_member|rate_limited|cooling_down|error
)

# ---- Progress ----

PROGRESS_WRITES = Counter(
    "progress_writes_total",
    "Progress record writes by command",
    ["kind"],  # upsert|position|mark_read|toggle
)

AUTO_COMPLETIONS = Counter(
    "auto_completions_total",
    "Lessons marked completed by a position event",
    ["media_kind"],  # text|video|audio
)

# ---- Throttling ----

RATE_LIMIT_HITS = Counter(
    "rate_limit_hits_total",
    "Requests rejected by our own rate limits",
    ["key_type"],  # principal|ip
)
