"""Prometheus metrics for the query/call lifecycle.

Metrics are exposed via HTTP on METRICS_PORT when it is non-zero.

Metrics exported:
- desk_calls_started_total: Counter of call sessions opened, by origin (direct, request)
- desk_calls_ended_total: Counter of call sessions ended, by reason
- desk_call_requests_total: Counter of donor call requests, by outcome (requested, accepted, rejected)
- desk_query_transitions_total: Counter of query status changes, by new status
- desk_gateway_connections: Gauge of live notification WebSockets

Usage:
    from app.services.metrics import start_metrics_server, calls_ended

    start_metrics_server(port=8001)
    calls_ended.labels(reason='expired').inc()
"""

from prometheus_client import Counter, Gauge, start_http_server
import logging

logger = logging.getLogger(__name__)

calls_started = Counter(
    'desk_calls_started_total',
    'Call sessions opened',
    labelnames=['origin']  # origin: direct, request
)

calls_ended = Counter(
    'desk_calls_ended_total',
    'Call sessions ended',
    labelnames=['reason']  # reason: ended, expired, query_resolved, query_transferred, query_closed, query_deleted
)

call_requests = Counter(
    'desk_call_requests_total',
    'Donor call requests by outcome',
    labelnames=['outcome']
)

query_transitions = Counter(
    'desk_query_transitions_total',
    'Query status changes',
    labelnames=['status']
)

gateway_connections = Gauge(
    'desk_gateway_connections',
    'Number of live notification WebSocket connections'
)


def start_metrics_server(port: int = 8001):
    """Start Prometheus metrics HTTP server."""
    try:
        start_http_server(port)
        logger.info(f"✅ Metrics server started on port {port}")
    except OSError as e:
        logger.error(f"❌ Failed to start metrics server: {e}")
