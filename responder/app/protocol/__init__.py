"""NTP wire protocol helpers."""

from responder.app.protocol.packet import (
    MODE_CLIENT,
    MODE_SERVER,
    NTP_EPOCH_OFFSET,
    PACKET_SIZE,
    Packet,
    ResponseConfig,
    build_response,
    parse_packet,
    ref_id_from_ascii,
    ref_id_to_ascii,
    time_to_timestamp,
    timestamp_to_time,
)

__all__ = [
    "MODE_CLIENT",
    "MODE_SERVER",
    "NTP_EPOCH_OFFSET",
    "PACKET_SIZE",
    "Packet",
    "ResponseConfig",
    "build_response",
    "parse_packet",
    "ref_id_from_ascii",
    "ref_id_to_ascii",
    "time_to_timestamp",
    "timestamp_to_time",
]
