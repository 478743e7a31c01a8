"""Ping/pong over a conduit Unix socket.

Usage:
  python -m conduit.scripts.pingpong server
  python -m conduit.scripts.pingpong client
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading

from conduit.config import ClientConfig, ServerConfig
from conduit.errors import ConduitError
from conduit.ipc import Client, Server
from conduit.logger import new_logger

SOCKET_PATH = "/tmp/pingpong.sock"


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Ping/pong server and client.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("mode", choices=["server", "client"], help="Which side to run")
    parser.add_argument(
        "--socket",
        dest="socket_path",
        type=str,
        default=SOCKET_PATH,
        help="Path of the Unix socket",
    )
    parser.add_argument(
        "--wait",
        dest="wait_seconds",
        type=float,
        default=1.0,
        help="Seconds the client waits for the pong",
    )
    return parser.parse_args()


def run_server(socket_path: str) -> int:
    config = ServerConfig.default(socket_path)
    config.logger = new_logger(logging.INFO, sys.stdout, name="pingpong.server")
    server = Server(config)
    server.handle("ping", lambda conn, msg: conn.send("pong", "pong"))

    try:
        server.start()
    except ConduitError as exc:
        print(f"[pingpong] Failed to start server: {exc}")
        return 1

    stop = threading.Event()
    signal.signal(signal.SIGINT, lambda *_: stop.set())
    signal.signal(signal.SIGTERM, lambda *_: stop.set())
    while not stop.wait(0.5):
        pass

    server.stop()
    return 0


def run_client(socket_path: str, wait_seconds: float) -> int:
    config = ClientConfig.default(socket_path)
    config.logger = new_logger(logging.INFO, sys.stdout, name="pingpong.client")
    client = Client(config)

    got_pong = threading.Event()

    @client.handle("pong")
    def _on_pong(_, msg) -> None:
        print("Received from server:", msg.decode_payload(str))
        got_pong.set()

    try:
        client.connect()
        client.send("ping", "ping")
    except ConduitError as exc:
        print(f"[pingpong] {exc}")
        return 1
    else:
        got_pong.wait(wait_seconds)
    finally:
        client.close()

    return 0 if got_pong.is_set() else 2


def main() -> int:
    args = _parse_args()
    if args.mode == "server":
        return run_server(args.socket_path)
    return run_client(args.socket_path, args.wait_seconds)


if __name__ == "__main__":
    sys.exit(main())
