"""Tests for the query helper and the command-line entry point."""

import socket
from unittest.mock import patch

import pytest

from responder.app import cli
from responder.app.client import build_request, query
from responder.app.exceptions import PacketError
from responder.app.protocol.packet import MODE_CLIENT, MODE_SERVER, Packet
from responder.app.server import Server, ServerConfig


@pytest.fixture
def server():
    srv = Server(ServerConfig(listen_addr="127.0.0.1:0", network="udp4", read_timeout=0.05, stratum=3))
    srv.start()
    yield srv
    srv.stop()


class TestQuery:
    """Tests for the one-shot query helper."""

    def test_build_request(self):
        request = build_request(version=3)
        assert request.mode == MODE_CLIENT
        assert request.vn == 3
        assert request.transmit != 0

    def test_query_running_server(self, server):
        reply = query(server.addr, timeout=1.0)
        assert reply.mode == MODE_SERVER
        assert reply.stratum == 3
        assert server.metrics().total_responses == 1

    def test_query_timeout(self):
        # Bind a socket that never answers
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as silent:
            silent.bind(("127.0.0.1", 0))
            host, port = silent.getsockname()
            with pytest.raises(OSError):
                query(f"{host}:{port}", timeout=0.1)

    def test_query_rejects_non_server_reply(self):
        reply = Packet(mode=MODE_CLIENT)
        with patch("responder.app.client.socket.socket") as mock_socket:
            sock = mock_socket.return_value.__enter__.return_value
            sock.recvfrom.return_value = (reply.to_bytes(), ("127.0.0.1", 123))
            with pytest.raises(PacketError):
                query("127.0.0.1:123")


class TestCli:
    """Tests for the command-line entry point."""

    def test_check_success(self, server, capsys):
        assert cli.main(["--check", server.addr]) == 0
        assert "OK stratum=3 ref_id=LOCL" in capsys.readouterr().out

    def test_check_failure(self, capsys):
        with patch("responder.app.cli.query", side_effect=socket.timeout("timed out")):
            assert cli.main(["--check", "127.0.0.1:9"]) == 1
        assert "Healthcheck failure" in capsys.readouterr().out

    def test_parser_defaults_follow_settings(self):
        from responder.app.core.config import Settings

        args = cli.build_parser(Settings(_env_file=None)).parse_args([])
        assert args.listen == "0.0.0.0:123"
        assert args.stratum == 2
        assert args.burst == 5
        assert args.rate == 0.0
