"""One-shot SNTP query, used for health checks."""

import socket
from datetime import datetime, timezone
from typing import Optional

from responder.app.exceptions import PacketError
from responder.app.protocol.packet import (
    MODE_CLIENT,
    MODE_SERVER,
    Packet,
    parse_packet,
    time_to_timestamp,
)
from responder.app.server import split_host_port

DEFAULT_TIMEOUT = 2.0


def build_request(version: int = 4, transmitted_at: Optional[datetime] = None) -> Packet:
    """Build a client-mode request stamped with ``transmitted_at`` (default: now)."""
    transmitted_at = transmitted_at or datetime.now(timezone.utc)
    return Packet(vn=version, mode=MODE_CLIENT, transmit=time_to_timestamp(transmitted_at))


def query(address: str, timeout: float = DEFAULT_TIMEOUT, version: int = 4) -> Packet:
    """Send one request to ``address`` ("host:port") and return the reply.

    Raises:
        OSError: On socket errors, including ``socket.timeout``
        PacketError: If the reply is malformed, is not a server-mode reply
            or does not echo our transmit timestamp
    """
    host, port = split_host_port(address)
    family, socktype, proto, _, sockaddr = socket.getaddrinfo(
        host, port, 0, socket.SOCK_DGRAM
    )[0]

    request = build_request(version)
    with socket.socket(family, socktype, proto) as sock:
        sock.settimeout(timeout)
        sock.sendto(request.to_bytes(), sockaddr)
        data, _ = sock.recvfrom(512)

    reply = parse_packet(data)
    if reply.mode != MODE_SERVER:
        raise PacketError(f"Unexpected mode in reply: {reply.mode}")
    if reply.originate != request.transmit:
        raise PacketError("Reply does not match request")
    return reply
