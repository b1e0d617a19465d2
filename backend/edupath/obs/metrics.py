"""Central registry for Prometheus metrics used across the backend."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, Summary

REQUEST_COUNTER = Counter(
	"edupath_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"edupath_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

WS_CONNECTIONS = Gauge(
	"edupath_ws_connections_active",
	"Live WebSocket connections held by the registry",
)

WS_AUTHENTICATED = Gauge(
	"edupath_ws_connections_authenticated",
	"Live WebSocket connections bound to a verified user",
)

WS_INBOUND = Counter(
	"edupath_ws_inbound_messages_total",
	"Inbound WebSocket messages by type",
	["type"],
)

WS_OUTBOUND = Counter(
	"edupath_ws_outbound_messages_total",
	"Outbound WebSocket messages delivered by type",
	["type"],
)

WS_SEND_FAILURES = Counter(
	"edupath_ws_send_failures_total",
	"Outbound WebSocket deliveries that raised",
	["type"],
)

WS_AUTH_RESULTS = Counter(
	"edupath_ws_auth_total",
	"Socket authentication attempts by result",
	["result"],
)

HANDLER_FAILURES = Counter(
	"edupath_realtime_handler_failures_total",
	"Domain handler calls that raised and were swallowed",
	["operation"],
)

POLL_FANOUT_RECIPIENTS = Histogram(
	"edupath_poll_fanout_recipients",
	"Recipients per privacy-aware poll fan-out",
	buckets=(0, 1, 5, 10, 25, 50, 100, 250, 500, 1000),
)

COUNTER_SYNC = Counter(
	"edupath_counter_sync_total",
	"Transactional aggregate recounts by operation and result",
	["operation", "result"],
)

POSTGRES_UP = Gauge("edupath_postgres_up", "Postgres availability (1=up,0=down)")
POSTGRES_LATENCY = Summary("edupath_postgres_latency_seconds", "Postgres ping latency (seconds)")


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def ws_connected() -> None:
	WS_CONNECTIONS.inc()


def ws_disconnected(*, authenticated: bool) -> None:
	WS_CONNECTIONS.dec()
	if authenticated:
		WS_AUTHENTICATED.dec()


def ws_authenticated() -> None:
	WS_AUTHENTICATED.inc()


def ws_inbound(message_type: str) -> None:
	WS_INBOUND.labels(type=message_type).inc()


def ws_outbound(message_type: str) -> None:
	WS_OUTBOUND.labels(type=message_type).inc()


def ws_send_failed(message_type: str) -> None:
	WS_SEND_FAILURES.labels(type=message_type).inc()


def ws_auth(result: str) -> None:
	WS_AUTH_RESULTS.labels(result=result).inc()


def handler_failed(operation: str) -> None:
	HANDLER_FAILURES.labels(operation=operation).inc()


def poll_fanout(recipients: int) -> None:
	POLL_FANOUT_RECIPIENTS.observe(recipients)


def counter_sync(operation: str, *, ok: bool) -> None:
	COUNTER_SYNC.labels(operation=operation, result="ok" if ok else "error").inc()


def mark_postgres(ok: bool, *, latency_seconds: float | None = None) -> None:
	POSTGRES_UP.set(1 if ok else 0)
	if latency_seconds is not None:
		POSTGRES_LATENCY.observe(latency_seconds)
