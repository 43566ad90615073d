"""Tests for the NTP packet codec."""

from datetime import datetime, timedelta, timezone

import pytest

from responder.app.exceptions import PacketError
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


@pytest.fixture
def sample_packet():
    return Packet(
        li=3,
        vn=4,
        mode=MODE_CLIENT,
        stratum=2,
        poll=-6,
        precision=-20,
        root_delay=0x00010002,
        root_dispersion=0x00030004,
        ref_id=ref_id_from_ascii("GPS"),
        reference=0x0102030405060708,
        originate=0x1112131415161718,
        receive=0x2122232425262728,
        transmit=0xF1F2F3F4F5F6F7F8,
    )


class TestTimestamps:
    """Tests for wall-clock to NTP timestamp conversion."""

    def test_unix_epoch(self):
        epoch = datetime(1970, 1, 1, tzinfo=timezone.utc)
        assert time_to_timestamp(epoch) == NTP_EPOCH_OFFSET << 32

    def test_naive_datetime_is_utc(self):
        assert time_to_timestamp(datetime(1970, 1, 1)) == NTP_EPOCH_OFFSET << 32

    def test_other_timezones_are_converted(self):
        plus_two = timezone(timedelta(hours=2))
        local = datetime(1970, 1, 1, 2, 0, tzinfo=plus_two)
        assert time_to_timestamp(local) == NTP_EPOCH_OFFSET << 32

    def test_half_second_fraction(self):
        at = datetime(1970, 1, 1, 0, 0, 1, 500000, tzinfo=timezone.utc)
        ts = time_to_timestamp(at)
        assert ts >> 32 == NTP_EPOCH_OFFSET + 1
        assert ts & 0xFFFFFFFF == 1 << 31

    def test_timestamp_to_time_inverse(self):
        at = datetime(2024, 5, 17, 12, 30, 45, 123456, tzinfo=timezone.utc)
        back = timestamp_to_time(time_to_timestamp(at))
        assert abs(back - at) <= timedelta(microseconds=1)


class TestPacketCodec:
    """Tests for parse_packet and Packet.to_bytes."""

    def test_serialized_size(self, sample_packet):
        assert len(sample_packet.to_bytes()) == PACKET_SIZE

    def test_round_trip_packet(self, sample_packet):
        assert parse_packet(sample_packet.to_bytes()) == sample_packet

    def test_round_trip_bytes(self):
        raw = bytes(range(PACKET_SIZE))
        assert parse_packet(raw).to_bytes() == raw

    def test_first_byte_bit_layout(self, sample_packet):
        data = sample_packet.to_bytes()
        assert data[0] == (3 << 6) | (4 << 3) | MODE_CLIENT

    def test_signed_poll_and_precision(self):
        data = bytearray(PACKET_SIZE)
        data[2] = 0xFA
        data[3] = 0xEC
        packet = parse_packet(bytes(data))
        assert packet.poll == -6
        assert packet.precision == -20

    def test_big_endian_fields(self, sample_packet):
        data = sample_packet.to_bytes()
        assert data[4:8] == b"\x00\x01\x00\x02"
        assert data[12:16] == b"GPS\x00"
        assert data[40:48] == bytes.fromhex("f1f2f3f4f5f6f7f8")

    def test_short_input_fails(self):
        with pytest.raises(PacketError):
            parse_packet(b"\x00" * (PACKET_SIZE - 1))

    def test_packet_error_is_value_error(self):
        with pytest.raises(ValueError):
            parse_packet(b"")

    def test_trailing_bytes_ignored(self, sample_packet):
        data = sample_packet.to_bytes() + b"\xff" * 20
        assert parse_packet(data) == sample_packet

    def test_out_of_range_field_fails(self):
        with pytest.raises(PacketError):
            Packet(stratum=256).to_bytes()


class TestRefId:
    """Tests for reference ID helpers."""

    def test_four_chars(self):
        assert ref_id_from_ascii("LOCL") == 0x4C4F434C

    def test_short_is_zero_padded(self):
        assert ref_id_from_ascii("GPS") == 0x47505300

    def test_to_ascii_strips_padding(self):
        assert ref_id_to_ascii(ref_id_from_ascii("GPS")) == "GPS"


class TestBuildResponse:
    """Tests for building server replies."""

    @pytest.fixture
    def config(self):
        return ResponseConfig(
            leap_indicator=0,
            stratum=2,
            precision=-20,
            root_delay=5,
            root_dispersion=7,
            ref_id=ref_id_from_ascii("LOCL"),
            reference_time=datetime(2024, 1, 1, tzinfo=timezone.utc),
        )

    def test_basic_fields(self, config):
        received = datetime(2024, 1, 1, 0, 0, 1, tzinfo=timezone.utc)
        transmitted = datetime(2024, 1, 1, 0, 0, 2, tzinfo=timezone.utc)
        request = Packet(vn=3, mode=MODE_CLIENT, poll=6, transmit=0x1234567890ABCDEF)

        resp = build_response(request, config, received, transmitted)

        assert resp.mode == MODE_SERVER
        assert resp.vn == 3
        assert resp.poll == 6
        assert resp.stratum == 2
        assert resp.precision == -20
        assert resp.root_delay == 5
        assert resp.root_dispersion == 7
        assert resp.ref_id == ref_id_from_ascii("LOCL")
        assert resp.originate == request.transmit
        assert resp.reference == time_to_timestamp(config.reference_time)
        assert resp.receive == time_to_timestamp(received)
        assert resp.transmit == time_to_timestamp(transmitted)

    def test_version_zero_falls_back_to_four(self, config):
        now = datetime.now(timezone.utc)
        resp = build_response(Packet(vn=0, mode=MODE_CLIENT), config, now, now)
        assert resp.vn == 4
