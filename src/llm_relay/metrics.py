"""Метрики Prometheus (локальный registry)."""

from prometheus_client import CollectorRegistry, Counter, Histogram

registry = CollectorRegistry()

relay_requests_total = Counter(
    "relay_requests_total",
    "Total number of relayed requests",
    ["channel", "mode", "status"],
    registry=registry,
)

relay_latency_seconds = Histogram(
    "relay_latency_seconds",
    "Relay latency in seconds (until usage is known)",
    ["channel", "mode"],
    registry=registry,
)

tokens_total = Counter(
    "tokens_total",
    "Total tokens",
    ["channel", "model", "kind"],
    registry=registry,
)

tools_cost_total = Counter(
    "tools_cost_total",
    "Total tools cost in quota units (web search, structured output)",
    ["channel", "model"],
    registry=registry,
)
