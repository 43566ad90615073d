"""NTPv4 (RFC 5905) header codec.

Only the fixed 48-byte header is handled. Extension fields and MACs that may
follow it on the wire are ignored when parsing and never produced.
"""

import struct
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from responder.app.exceptions import PacketError

PACKET_SIZE = 48

MODE_CLIENT = 3
MODE_SERVER = 4

# Seconds between the NTP epoch (1900-01-01) and the Unix epoch (1970-01-01)
NTP_EPOCH_OFFSET = 2208988800

DEFAULT_VERSION = 4

# LI/VN/mode, stratum, poll, precision, root delay, root dispersion,
# reference ID, then the four 64-bit timestamps
_PACKET_FORMAT = "!B B b b I I I Q Q Q Q"

_UNIX_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass
class Packet:
    """The fixed NTP header.

    Timestamps are raw 64-bit NTP values: seconds since 1900 in the high
    32 bits and a binary fraction of a second in the low 32 bits.
    """

    li: int = 0
    vn: int = 0
    mode: int = 0
    stratum: int = 0
    poll: int = 0
    precision: int = 0
    root_delay: int = 0
    root_dispersion: int = 0
    ref_id: int = 0
    reference: int = 0
    originate: int = 0
    receive: int = 0
    transmit: int = 0

    def to_bytes(self) -> bytes:
        """Serialize the header into exactly 48 bytes.

        Raises:
            PacketError: If a field does not fit its wire width
        """
        try:
            return struct.pack(
                _PACKET_FORMAT,
                (self.li & 0x3) << 6 | (self.vn & 0x7) << 3 | (self.mode & 0x7),
                self.stratum,
                self.poll,
                self.precision,
                self.root_delay,
                self.root_dispersion,
                self.ref_id,
                self.reference,
                self.originate,
                self.receive,
                self.transmit,
            )
        except struct.error as e:
            raise PacketError(f"Invalid NTP packet fields: {e}") from e


def parse_packet(data: bytes) -> Packet:
    """Decode an NTP header from the first 48 bytes of ``data``.

    Raises:
        PacketError: If fewer than 48 bytes are supplied
    """
    if len(data) < PACKET_SIZE:
        raise PacketError(f"Invalid NTP packet: too short ({len(data)} bytes)")

    (
        first,
        stratum,
        poll,
        precision,
        root_delay,
        root_dispersion,
        ref_id,
        reference,
        originate,
        receive,
        transmit,
    ) = struct.unpack(_PACKET_FORMAT, bytes(data[:PACKET_SIZE]))

    return Packet(
        li=(first >> 6) & 0x3,
        vn=(first >> 3) & 0x7,
        mode=first & 0x7,
        stratum=stratum,
        poll=poll,
        precision=precision,
        root_delay=root_delay,
        root_dispersion=root_dispersion,
        ref_id=ref_id,
        reference=reference,
        originate=originate,
        receive=receive,
        transmit=transmit,
    )


def time_to_timestamp(at: datetime) -> int:
    """Convert a wall-clock time to a 64-bit NTP timestamp.

    Naive datetimes are interpreted as UTC.
    """
    if at.tzinfo is None:
        at = at.replace(tzinfo=timezone.utc)
    delta = at - _UNIX_EPOCH
    unix_seconds = delta.days * 86400 + delta.seconds
    nanoseconds = delta.microseconds * 1000

    seconds = (unix_seconds + NTP_EPOCH_OFFSET) & 0xFFFFFFFF
    fraction = (nanoseconds << 32) // 1_000_000_000
    return (seconds << 32) | (fraction & 0xFFFFFFFF)


def timestamp_to_time(timestamp: int) -> datetime:
    """Convert a 64-bit NTP timestamp (era 0) to a UTC datetime."""
    seconds = (timestamp >> 32) & 0xFFFFFFFF
    fraction = timestamp & 0xFFFFFFFF
    microseconds = (fraction * 1_000_000) >> 32
    return _UNIX_EPOCH + timedelta(
        seconds=seconds - NTP_EPOCH_OFFSET, microseconds=microseconds
    )


def ref_id_from_ascii(text: str) -> int:
    """Pack up to four ASCII characters into a reference ID, zero padded."""
    raw = text.encode("ascii")[:4]
    return int.from_bytes(raw.ljust(4, b"\x00"), "big")


def ref_id_to_ascii(ref_id: int) -> str:
    """Render a reference ID as text, dropping trailing NUL padding."""
    return ref_id.to_bytes(4, "big").rstrip(b"\x00").decode("ascii", errors="replace")


@dataclass(frozen=True)
class ResponseConfig:
    """Server-side values copied into every reply."""

    leap_indicator: int
    stratum: int
    precision: int
    root_delay: int
    root_dispersion: int
    ref_id: int
    reference_time: datetime


def build_response(
    request: Packet,
    config: ResponseConfig,
    received_at: datetime,
    transmitted_at: datetime,
) -> Packet:
    """Build a server-mode reply for a client request.

    The request's transmit timestamp becomes the reply's originate
    timestamp so the client can match the reply and compute delay.
    """
    return Packet(
        li=config.leap_indicator,
        vn=request.vn or DEFAULT_VERSION,
        mode=MODE_SERVER,
        stratum=config.stratum,
        poll=request.poll,
        precision=config.precision,
        root_delay=config.root_delay,
        root_dispersion=config.root_dispersion,
        ref_id=config.ref_id,
        reference=time_to_timestamp(config.reference_time),
        originate=request.transmit,
        receive=time_to_timestamp(received_at),
        transmit=time_to_timestamp(transmitted_at),
    )
