"""UDP server core for the NTP responder.

The server owns one UDP socket and one worker thread. The worker reads
datagrams with a short timeout so it notices shutdown promptly, and handles
each datagram to completion before reading the next one: admission control,
decoding, the optional hook, the reply, then an event and metrics update.

Per-datagram failures are never fatal. They are counted as errors and
published as events, and the loop moves on to the next datagram.

Example:
    server = Server(ServerConfig(listen_addr="127.0.0.1:1123"))
    server.start()
    try:
        with server.subscribe() as events:
            for event in events:
                print(event.client_ip, event.responded)
    finally:
        server.stop()
"""

import enum
import logging
import socket
import threading
import time
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from responder.app.core.clock import Clock, SystemClock
from responder.app.exceptions import AlreadyRunningError, BindError, PacketError
from responder.app.middleware.rate_limit import Limiter
from responder.app.protocol.packet import (
    MODE_CLIENT,
    Packet,
    ResponseConfig,
    build_response,
    parse_packet,
    ref_id_from_ascii,
)
from responder.app.services.events import (
    DEFAULT_BUFFER_SIZE,
    DEFAULT_HISTORY_SIZE,
    EventHub,
    RequestEvent,
    Subscription,
)
from responder.app.services.metrics import MetricsCollector, MetricsSnapshot

DEFAULT_LISTEN_ADDR = "0.0.0.0:123"
DEFAULT_NETWORK = "udp"
DEFAULT_STRATUM = 2
DEFAULT_REF_ID = "LOCL"
DEFAULT_PRECISION = -20
DEFAULT_RATE_LIMIT_BURST = 5
DEFAULT_READ_TIMEOUT = 0.5

READ_BUFFER_SIZE = 1024

ERROR_RATE_LIMITED = "rate_limited"
ERROR_INVALID_REQUEST = "invalid_request"
ERROR_HOOK_FAILED = "hook_error"

_FAMILIES = {
    "udp": socket.AF_UNSPEC,
    "udp4": socket.AF_INET,
    "udp6": socket.AF_INET6,
}


@dataclass(frozen=True)
class RequestMeta:
    """Request details passed to the packet hook."""

    received_at: datetime
    client_ip: str
    client_port: int
    raw_len: int


# Returns a drop reason; empty (or None) accepts the request
PacketHook = Callable[[Packet, RequestMeta], Optional[str]]


@dataclass
class ServerConfig:
    """Server configuration.

    Zero, empty or negative values are replaced by defaults in
    ``normalized()``, so a bare ``ServerConfig()`` is a usable config.
    """

    listen_addr: str = DEFAULT_LISTEN_ADDR
    network: str = DEFAULT_NETWORK  # udp | udp4 | udp6
    clock: Optional[Clock] = None

    stratum: int = DEFAULT_STRATUM  # 16 means unsynchronized
    ref_id: Union[str, int] = DEFAULT_REF_ID
    leap_indicator: int = 0
    precision: int = DEFAULT_PRECISION
    root_delay: int = 0
    root_dispersion: int = 0

    rate_limit_per_second: float = 0.0  # 0 disables the per-IP limiter
    rate_limit_burst: int = DEFAULT_RATE_LIMIT_BURST

    event_buffer: int = DEFAULT_BUFFER_SIZE
    history_size: int = DEFAULT_HISTORY_SIZE

    hook: Optional[PacketHook] = None
    logger: Optional[logging.Logger] = None  # None means silent
    debug: bool = False

    read_timeout: float = DEFAULT_READ_TIMEOUT

    def normalized(self) -> "ServerConfig":
        """Return a copy with defaults applied and ``ref_id`` as an int.

        Raises:
            ValueError: If a reply header field does not fit its wire size
        """
        ref_id = self.ref_id
        if isinstance(ref_id, str):
            ref_id = ref_id_from_ascii(ref_id) if ref_id else 0
        config = replace(
            self,
            listen_addr=self.listen_addr or DEFAULT_LISTEN_ADDR,
            network=(self.network or DEFAULT_NETWORK).lower(),
            clock=self.clock or SystemClock(),
            stratum=self.stratum or DEFAULT_STRATUM,
            ref_id=ref_id or ref_id_from_ascii(DEFAULT_REF_ID),
            precision=self.precision or DEFAULT_PRECISION,
            rate_limit_burst=(
                self.rate_limit_burst if self.rate_limit_burst > 0 else DEFAULT_RATE_LIMIT_BURST
            ),
            event_buffer=self.event_buffer if self.event_buffer > 0 else DEFAULT_BUFFER_SIZE,
            history_size=self.history_size if self.history_size > 0 else DEFAULT_HISTORY_SIZE,
            read_timeout=self.read_timeout if self.read_timeout > 0 else DEFAULT_READ_TIMEOUT,
        )
        _check_range("stratum", config.stratum, 0, 0xFF)
        _check_range("leap_indicator", config.leap_indicator, 0, 3)
        _check_range("precision", config.precision, -128, 127)
        _check_range("root_delay", config.root_delay, 0, 0xFFFFFFFF)
        _check_range("root_dispersion", config.root_dispersion, 0, 0xFFFFFFFF)
        _check_range("ref_id", config.ref_id, 0, 0xFFFFFFFF)
        return config


def _check_range(name: str, value: int, low: int, high: int) -> None:
    if not low <= value <= high:
        raise ValueError(f"{name} must be between {low} and {high}, got {value}")


class ServerState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPING = "stopping"


def split_host_port(address: str) -> Tuple[str, int]:
    """Split "host:port" or "[v6-host]:port" into its parts.

    Raises:
        ValueError: If the port is missing or not a number
    """
    host, sep, port = address.rpartition(":")
    if not sep:
        raise ValueError(f"missing port in address {address!r}")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    return host, int(port)


def format_host_port(host: str, port: int) -> str:
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def _open_socket(address: str, network: str) -> socket.socket:
    """Resolve ``address`` for ``network`` and bind a UDP socket to it."""
    if network not in _FAMILIES:
        raise BindError(address, f"unknown network {network!r}")
    family = _FAMILIES[network]

    try:
        host, port = split_host_port(address)
    except ValueError as e:
        raise BindError(address, str(e)) from e
    if not host:
        host = "::" if family == socket.AF_INET6 else "0.0.0.0"

    try:
        infos = socket.getaddrinfo(
            host, port, family, socket.SOCK_DGRAM, 0, socket.AI_PASSIVE
        )
    except OSError as e:
        raise BindError(address, str(e)) from e
    if not infos:
        raise BindError(address, "no usable address")

    af, socktype, proto, _, sockaddr = infos[0]
    sock = socket.socket(af, socktype, proto)
    try:
        if af == socket.AF_INET6 and network == "udp6":
            sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 1)
        sock.bind(sockaddr)
    except OSError as e:
        sock.close()
        raise BindError(address, str(e)) from e
    return sock


class Server:
    """NTP responder bound to a single UDP socket.

    ``start`` and ``stop`` may be called repeatedly, but only one run is
    active at a time. All public methods are safe to call from any thread.
    """

    def __init__(self, config: Optional[ServerConfig] = None):
        self.config = (config or ServerConfig()).normalized()
        self._clock: Clock = self.config.clock  # type: ignore[assignment]
        self._logger = self.config.logger

        self.events = EventHub(self.config.history_size)
        self.limiter = Limiter(self.config.rate_limit_per_second, self.config.rate_limit_burst)
        self._metrics = MetricsCollector()

        self._response_fields: Dict[str, Any] = {
            "leap_indicator": self.config.leap_indicator,
            "stratum": self.config.stratum,
            "precision": self.config.precision,
            "root_delay": self.config.root_delay,
            "root_dispersion": self.config.root_dispersion,
            "ref_id": self.config.ref_id,
        }

        # Guards the socket, thread and state across start/stop/loop exit
        self._lock = threading.Lock()
        # Notified when a stop has finished and the server is idle again
        self._stopped = threading.Condition(self._lock)
        self._state = ServerState.IDLE
        self._sock: Optional[socket.socket] = None
        self._thread: Optional[threading.Thread] = None
        self._stop_event: Optional[threading.Event] = None

    @property
    def state(self) -> ServerState:
        with self._lock:
            return self._state

    @property
    def running(self) -> bool:
        return self.state is ServerState.RUNNING

    @property
    def addr(self) -> str:
        """Bound local address while running, otherwise the configured one."""
        with self._lock:
            if self._sock is not None:
                sockname = self._sock.getsockname()
                return format_host_port(sockname[0], sockname[1])
            return self.config.listen_addr

    def start(self, cancel: Optional[threading.Event] = None) -> None:
        """Bind the socket and start the receive loop.

        Waits for an in-progress ``stop`` to finish first.

        Args:
            cancel: Optional external signal; once set, the loop releases
                the socket and exits within one read timeout

        Raises:
            AlreadyRunningError: If the server is already running
            BindError: If the listen address cannot be resolved or bound
        """
        with self._lock:
            while self._state is ServerState.STOPPING:
                self._stopped.wait()
            if self._state is ServerState.RUNNING:
                raise AlreadyRunningError()

            sock = _open_socket(self.config.listen_addr, self.config.network)
            sock.settimeout(self.config.read_timeout)

            stop_event = threading.Event()
            thread = threading.Thread(
                target=self._serve,
                args=(sock, stop_event, cancel),
                name="ntp-responder",
                daemon=True,
            )
            self._sock = sock
            self._stop_event = stop_event
            self._thread = thread
            self._state = ServerState.RUNNING
            self._metrics.reset(self._clock.now())
            thread.start()

        if self._logger is not None:
            sockname = sock.getsockname()
            self._logger.info(
                "NTP server started on %s (stratum %d)",
                format_host_port(sockname[0], sockname[1]),
                self.config.stratum,
            )

    def stop(self) -> None:
        """Stop the receive loop and close the socket.

        Idempotent. Every call waits for the loop to exit, so no reply is
        sent after this returns. The server stays in ``STOPPING`` until the
        loop has exited and the socket is closed.
        """
        with self._lock:
            sock, self._sock = self._sock, None
            thread = self._thread
            if self._stop_event is not None:
                self._stop_event.set()
            # A hook may call stop() from inside the loop
            join = (
                thread is not None
                and thread is not threading.current_thread()
                and thread.is_alive()
            )
            if join:
                self._state = ServerState.STOPPING
            elif self._state is not ServerState.STOPPING:
                self._state = ServerState.IDLE

        if join:
            thread.join()

        if sock is not None:
            sock.close()
            if self._logger is not None:
                self._logger.info("NTP server stopped")

        with self._lock:
            if join and self._state is ServerState.STOPPING:
                self._state = ServerState.IDLE
                self._stopped.notify_all()

    def subscribe(self, buffer_size: Optional[int] = None) -> Subscription:
        """Subscribe to request events (buffer defaults to ``event_buffer``)."""
        if buffer_size is None:
            buffer_size = self.config.event_buffer
        return self.events.subscribe(buffer_size)

    def history(self) -> List[RequestEvent]:
        """Recent request events, oldest first."""
        return self.events.snapshot_history()

    def metrics(self) -> MetricsSnapshot:
        return self._metrics.snapshot()

    def __enter__(self) -> "Server":
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()

    def _release(self, sock: socket.socket) -> None:
        """Drop the socket after the loop exited on its own."""
        with self._lock:
            if self._sock is not sock:
                return
            self._sock = None
            self._state = ServerState.IDLE
        sock.close()

    def _serve(
        self,
        sock: socket.socket,
        stop_event: threading.Event,
        cancel: Optional[threading.Event],
    ) -> None:
        try:
            while not stop_event.is_set():
                if cancel is not None and cancel.is_set():
                    if self._logger is not None:
                        self._logger.info("NTP server cancelled")
                    return
                try:
                    data, addr = sock.recvfrom(READ_BUFFER_SIZE)
                except socket.timeout:
                    continue
                except OSError:
                    # Socket closed underneath us
                    return
                self._handle_datagram(sock, data, addr)
        finally:
            self._release(sock)

    def _handle_datagram(self, sock: socket.socket, data: bytes, addr: Tuple) -> None:
        received_at = self._clock.now()
        started = time.perf_counter()

        client_ip, client_port = str(addr[0]), int(addr[1])
        self._metrics.inc_request(client_ip, received_at)
        self._log_request(client_ip, client_port)

        fields: Dict[str, Any] = {
            "at": received_at,
            "client_addr": format_host_port(client_ip, client_port),
            "client_ip": client_ip,
            "client_port": client_port,
        }

        if not self.limiter.allow(client_ip, time.monotonic()):
            self._reject(fields, started, ERROR_RATE_LIMITED, packet_valid=True)
            return

        try:
            request = parse_packet(data)
        except PacketError:
            self._reject(fields, started, ERROR_INVALID_REQUEST, packet_valid=False)
            return

        fields["version"] = request.vn
        fields["mode"] = request.mode
        if request.mode != MODE_CLIENT:
            self._reject(fields, started, ERROR_INVALID_REQUEST, packet_valid=False)
            return
        fields["packet_valid"] = True

        if self.config.hook is not None:
            meta = RequestMeta(
                received_at=received_at,
                client_ip=client_ip,
                client_port=client_port,
                raw_len=len(data),
            )
            try:
                drop_reason = self.config.hook(request, meta)
            except Exception:
                if self._logger is not None:
                    self._logger.exception("Packet hook failed", extra={"client_ip": client_ip})
                drop_reason = ERROR_HOOK_FAILED
            if drop_reason:
                self._reject(fields, started, str(drop_reason))
                return

        now = self._clock.now()
        response = build_response(
            request,
            ResponseConfig(reference_time=now, **self._response_fields),
            received_at,
            now,
        )

        try:
            sock.sendto(response.to_bytes(), addr)
        except (OSError, PacketError) as e:
            self._reject(fields, started, str(e) or e.__class__.__name__)
            return

        self._metrics.inc_response()
        self._publish(fields, started, responded=True)

    def _reject(
        self,
        fields: Dict[str, Any],
        started: float,
        error: str,
        packet_valid: Optional[bool] = None,
    ) -> None:
        self._metrics.inc_error()
        if packet_valid is not None:
            fields["packet_valid"] = packet_valid
        self._publish(fields, started, error=error)

    def _publish(self, fields: Dict[str, Any], started: float, **updates: Any) -> None:
        elapsed_usec = int((time.perf_counter() - started) * 1_000_000)
        event = RequestEvent(processing_usec=elapsed_usec, **fields, **updates)

        if self._logger is not None and self.config.debug:
            self._logger.debug(
                "NTP request from %s handled (responded=%s error=%s)",
                event.client_ip,
                event.responded,
                event.error or "-",
                extra={"processing_usec": event.processing_usec},
            )

        self.events.publish(event)

    def _log_request(self, client_ip: str, client_port: int) -> None:
        if self._logger is None:
            return
        if self.config.debug:
            self._logger.debug(
                "NTP request from %s:%d",
                client_ip,
                client_port,
                extra={"client_ip": client_ip, "client_port": client_port},
            )
        else:
            self._logger.info("NTP request from %s", client_ip, extra={"client_ip": client_ip})
