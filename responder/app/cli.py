"""Command-line entry point for the responder.

Run a server:
    python -m responder --listen 0.0.0.0:123 --rate 5 --burst 10

Check a running server:
    python -m responder --check 127.0.0.1:123
"""

import argparse
import signal
import threading
from typing import List, Optional

from responder.app.client import query
from responder.app.core.config import Settings, settings
from responder.app.core.logging import get_logger, setup_logging
from responder.app.exceptions import ResponderError
from responder.app.protocol.packet import ref_id_to_ascii
from responder.app.server import Server, split_host_port
from responder.app.version import version_info

logger = get_logger("responder.cli")


def build_parser(defaults: Settings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ntp-responder",
        description="Minimal NTPv4 time-stamping responder",
    )
    parser.add_argument("--listen", default=defaults.listen_addr, help="UDP listen address (host:port)")
    parser.add_argument("--network", default=defaults.network, choices=["udp", "udp4", "udp6"])
    parser.add_argument("--stratum", type=int, default=defaults.stratum, help="NTP stratum (16 = unsynchronized)")
    parser.add_argument("--rate", type=float, default=defaults.rate_limit_per_second,
                        help="Per-IP request rate limit (requests/sec), 0=disabled")
    parser.add_argument("--burst", type=int, default=defaults.rate_limit_burst, help="Per-IP rate limit burst")
    parser.add_argument("--debug", action="store_true", default=defaults.debug, help="Log every request")
    parser.add_argument("--status-addr", default=defaults.status_addr,
                        help="Serve the HTTP status API on host:port")
    parser.add_argument("--check", metavar="HOST:PORT", help="Query a server once and exit")
    parser.add_argument("--version", action="version", version=version_info())
    return parser


def check(address: str) -> int:
    try:
        reply = query(address)
    except (OSError, ResponderError, ValueError) as e:
        print(f"Healthcheck failure: {e}")
        return 1
    print(f"OK stratum={reply.stratum} ref_id={ref_id_to_ascii(reply.ref_id)}")
    return 0


def _start_status_api(server: Server, address: str):
    import uvicorn

    from responder.app.main import create_app

    host, port = split_host_port(address)
    config = uvicorn.Config(create_app(server), host=host, port=port, log_config=None)
    status_server = uvicorn.Server(config)
    thread = threading.Thread(target=status_server.run, name="status-api", daemon=True)
    thread.start()
    logger.info("Status API listening on http://%s", address)
    return status_server, thread


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser(settings).parse_args(argv)

    if args.check:
        return check(args.check)

    setup_logging()

    config = settings.to_server_config(
        listen_addr=args.listen,
        network=args.network,
        stratum=args.stratum,
        rate_limit_per_second=args.rate,
        rate_limit_burst=args.burst,
        debug=args.debug,
        logger=get_logger("responder.server"),
    )
    server = Server(config)

    shutdown = threading.Event()

    def _on_signal(signum, frame):
        logger.info("Received signal %d, stopping", signum)
        shutdown.set()

    signal.signal(signal.SIGINT, _on_signal)
    signal.signal(signal.SIGTERM, _on_signal)

    try:
        server.start(cancel=shutdown)
    except ResponderError as e:
        logger.error("Failed to start: %s", e)
        return 1

    logger.info("%s listening on udp://%s", version_info(), server.addr)

    status = None
    if args.status_addr:
        status = _start_status_api(server, args.status_addr)

    try:
        while not shutdown.wait(settings.metrics_log_interval):
            m = server.metrics()
            logger.info(
                "requests=%d responses=%d errors=%d unique_clients=%d last_ip=%s",
                m.total_requests,
                m.total_responses,
                m.total_errors,
                m.unique_clients,
                m.last_request_ip or "-",
            )
    finally:
        server.stop()
        if status is not None:
            status_server, thread = status
            status_server.should_exit = True
            thread.join(timeout=5.0)

    return 0
