"""Prometheus metrics for frame routing and upload observability.

Counters and histograms at each stage of the bridge.
Exposed over HTTP by the CLI when a metrics port is configured.
"""

from prometheus_client import Counter, Histogram, start_http_server

# Routing counters
frames_received_total = Counter(
    "frames_received_total",
    "Total notification frames routed",
    ["tag"],
)

frames_rejected_total = Counter(
    "frames_rejected_total",
    "Total notification frames rejected by the router",
    ["reason"],  # reason: frame_too_short, unknown_tag
)

# Upload counters
uploads_total = Counter(
    "uploads_total",
    "Total uploads by protocol and outcome",
    ["protocol", "status"],  # status: success, network, decode
)

accumulator_bytes_dropped_total = Counter(
    "accumulator_bytes_dropped_total",
    "Buffered bytes discarded at session teardown without being uploaded",
    ["protocol"],
)

# Histograms
upload_duration_seconds = Histogram(
    "upload_duration_seconds",
    "Duration of backend upload calls",
    ["protocol"],
)


def start_metrics_server(port: int) -> None:
    """Serve /metrics on the given port from a background thread."""
    start_http_server(port)
