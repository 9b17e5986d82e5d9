"""Prometheus metric inventory.

Every metric the service exports is declared here; the modules that own
the behaviour import the metric and increment or observe it in place.

HTTP metrics are filled in by MetricsMiddleware.  The activity metrics
describe the classification pipeline:

  activity_events_ingested_total{derived_status}
      One increment per stored event, labelled with the classifier's
      verdict ("unknown" when no rule matched).  rate() over this shows
      the live mix of engaged / drifting / struggling learners.

  activity_ingest_batches_total{result}
      One increment per ingestion request: "ok", "empty" or "error".
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# HTTP metrics (populated by the MetricsMiddleware)
# ---------------------------------------------------------------------------

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests by method, endpoint, and status code",
    ["method", "endpoint", "status_code"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

# ---------------------------------------------------------------------------
# Activity pipeline metrics
# ---------------------------------------------------------------------------

EVENTS_INGESTED = Counter(
    "activity_events_ingested_total",
    "Learner activity events stored, by derived status",
    ["derived_status"],  # engaged|attention_drift|content_friction|unknown
)

INGEST_BATCHES = Counter(
    "activity_ingest_batches_total",
    "Activity ingestion requests by outcome",
    ["result"],  # ok|empty|error
)

DUPLICATE_EVENTS = Counter(
    "activity_duplicate_events_total",
    "Events skipped because their idempotency key was already stored",
)

RATE_LIMIT_HITS = Counter(
    "rate_limit_hits_total",
    "Requests rejected by rate limiting (429s)",
    ["key_type"],  # "user" or "ip"
)
