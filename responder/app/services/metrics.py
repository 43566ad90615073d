"""Aggregate request metrics for the responder.

Hot totals are independent counters with their own locks; per-client
request counts live in a separately locked dict so that bumping a total
never waits on the client map.
"""

import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

TOP_CLIENTS_LIMIT = 10


class _Counter:
    """Monotonic counter safe for concurrent increments."""

    def __init__(self) -> None:
        self._value = 0
        self._lock = threading.Lock()

    def add(self, n: int = 1) -> None:
        with self._lock:
            self._value += n

    def store(self, value: int) -> None:
        with self._lock:
            self._value = value

    def load(self) -> int:
        with self._lock:
            return self._value


@dataclass(frozen=True)
class ClientCount:
    """Request count for one client IP."""

    client_ip: str
    count: int


@dataclass(frozen=True)
class MetricsSnapshot:
    """Point-in-time view of the server counters."""

    started_at: Optional[datetime]
    total_requests: int
    total_responses: int
    total_errors: int
    last_request_at: Optional[datetime]
    last_request_ip: str
    unique_clients: int
    top_clients: Tuple[ClientCount, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "total_requests": self.total_requests,
            "total_responses": self.total_responses,
            "total_errors": self.total_errors,
            "last_request_at": (
                self.last_request_at.isoformat() if self.last_request_at else None
            ),
            "last_request_ip": self.last_request_ip,
            "unique_clients": self.unique_clients,
            "top_clients": [
                {"client_ip": c.client_ip, "count": c.count} for c in self.top_clients
            ],
        }


class MetricsCollector:
    """Collects request, response and error counts.

    Thread-safe. ``reset`` is called once per successful server start.
    """

    def __init__(self) -> None:
        self._requests = _Counter()
        self._responses = _Counter()
        self._errors = _Counter()

        # (time, ip) replaced as one object so readers see a matching pair
        self._started_at: Optional[datetime] = None
        self._last_request: Tuple[Optional[datetime], str] = (None, "")

        self._clients_lock = threading.Lock()
        self._by_ip: Dict[str, int] = {}

    def reset(self, started_at: datetime) -> None:
        """Clear all counters and record a new start time."""
        self._requests.store(0)
        self._responses.store(0)
        self._errors.store(0)
        self._started_at = started_at
        self._last_request = (None, "")
        with self._clients_lock:
            self._by_ip = {}

    def inc_request(self, ip: str, at: datetime) -> None:
        """Record a received datagram.

        Args:
            ip: Client IP (empty if unknown; not counted per client)
            at: Receive time
        """
        self._requests.add()
        self._last_request = (at, ip)
        if not ip:
            return
        with self._clients_lock:
            self._by_ip[ip] = self._by_ip.get(ip, 0) + 1

    def inc_response(self) -> None:
        self._responses.add()

    def inc_error(self) -> None:
        self._errors.add()

    def snapshot(self) -> MetricsSnapshot:
        """Build a snapshot with the top clients by request count."""
        last_at, last_ip = self._last_request

        with self._clients_lock:
            counts = [ClientCount(ip, n) for ip, n in self._by_ip.items()]
        unique = len(counts)

        counts.sort(key=lambda c: (-c.count, c.client_ip))

        return MetricsSnapshot(
            started_at=self._started_at,
            total_requests=self._requests.load(),
            total_responses=self._responses.load(),
            total_errors=self._errors.load(),
            last_request_at=last_at,
            last_request_ip=last_ip,
            unique_clients=unique,
            top_clients=tuple(counts[:TOP_CLIENTS_LIMIT]),
        )


def render_prometheus(snapshot: MetricsSnapshot, now: Optional[datetime] = None) -> str:
    """Render a snapshot in Prometheus text exposition format.

    Args:
        snapshot: Metrics snapshot to render
        now: Reference time for the uptime gauge (defaults to current UTC time)

    Returns:
        Prometheus-formatted metrics string
    """
    lines: List[str] = []

    lines.append("# HELP ntp_requests_total Total number of datagrams received")
    lines.append("# TYPE ntp_requests_total counter")
    lines.append(f"ntp_requests_total {snapshot.total_requests}")

    lines.append("\n# HELP ntp_responses_total Total number of replies sent")
    lines.append("# TYPE ntp_responses_total counter")
    lines.append(f"ntp_responses_total {snapshot.total_responses}")

    lines.append("\n# HELP ntp_errors_total Total number of dropped or failed requests")
    lines.append("# TYPE ntp_errors_total counter")
    lines.append(f"ntp_errors_total {snapshot.total_errors}")

    lines.append("\n# HELP ntp_unique_clients Number of distinct client IPs seen")
    lines.append("# TYPE ntp_unique_clients gauge")
    lines.append(f"ntp_unique_clients {snapshot.unique_clients}")

    lines.append("\n# HELP ntp_client_requests_total Requests from the busiest clients")
    lines.append("# TYPE ntp_client_requests_total counter")
    for client in snapshot.top_clients:
        lines.append(
            f'ntp_client_requests_total{{client_ip="{client.client_ip}"}} {client.count}'
        )

    if snapshot.started_at is not None:
        now = now or datetime.now(timezone.utc)
        uptime = max(0.0, (now - snapshot.started_at).total_seconds())
        lines.append("\n# HELP ntp_uptime_seconds Seconds since the server started")
        lines.append("# TYPE ntp_uptime_seconds gauge")
        lines.append(f"ntp_uptime_seconds {round(uptime, 2)}")

    return "\n".join(lines) + "\n"
