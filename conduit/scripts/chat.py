"""Minimal chat room over a conduit Unix socket.

The server rebroadcasts every ``chat`` message to all connected clients; each
client prints what it receives and sends lines typed on stdin.

Usage:
  python -m conduit.scripts.chat server [--socket /tmp/chat.sock]
  python -m conduit.scripts.chat client <username> [--socket /tmp/chat.sock]
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from dataclasses import dataclass

from conduit.config import ClientConfig, ServerConfig
from conduit.errors import ConduitError
from conduit.ipc import Client, Connection, Server
from conduit.logger import new_logger
from conduit.message import Message
from conduit.utils import local_timestamp, string_to_timestamp

SOCKET_PATH = "/tmp/chat.sock"


@dataclass
class ChatMessage:
    username: str
    message: str
    time: str


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Chat server/client over a Unix domain socket.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("mode", choices=["server", "client"], help="Which side to run")
    parser.add_argument("username", nargs="?", default=None, help="Name shown to others (client)")
    parser.add_argument(
        "--socket",
        dest="socket_path",
        type=str,
        default=SOCKET_PATH,
        help="Path of the Unix socket",
    )
    return parser.parse_args()


def _wait_for_signal() -> None:
    stop = threading.Event()
    signal.signal(signal.SIGINT, lambda *_: stop.set())
    signal.signal(signal.SIGTERM, lambda *_: stop.set())
    while not stop.wait(0.5):
        pass


def run_server(socket_path: str) -> int:
    config = ServerConfig.default(socket_path)
    config.logger = new_logger(logging.DEBUG, sys.stdout, name="chat.server")
    server = Server(config)

    @server.handle("chat")
    def _on_chat(conn: Connection, msg: Message) -> None:
        chat = msg.decode_payload(ChatMessage)
        # Remember who is behind this connection.
        conn.set_context("username", chat.username)
        server.broadcast("chat", chat)

    try:
        server.start()
    except ConduitError as exc:
        print(f"[chat] Failed to start server: {exc}")
        return 1

    _wait_for_signal()
    server.stop()
    return 0


def run_client(socket_path: str, username: str) -> int:
    config = ClientConfig.default(socket_path)
    config.logger = new_logger(logging.INFO, sys.stdout, name="chat.client")
    client = Client(config)

    @client.handle("chat")
    def _on_chat(_: Client, msg: Message) -> None:
        chat = msg.decode_payload(ChatMessage)
        sent_at = string_to_timestamp(chat.time)
        stamp = sent_at.strftime("%H:%M:%S") if sent_at else "--:--:--"
        print(f"[{stamp}] {chat.username}: {chat.message}")

    try:
        client.connect_with_retry()
    except ConduitError as exc:
        print(f"[chat] Failed to connect: {exc}")
        return 1

    client.set_context("username", username)
    print("Connected to chat server. Type your messages (Ctrl+C to quit):")

    try:
        for line in sys.stdin:
            chat = ChatMessage(username=username, message=line.rstrip("\n"), time=local_timestamp())
            try:
                client.send("chat", chat)
            except ConduitError as exc:
                print(f"Error sending message: {exc}")
                if not client.is_connected:
                    print("Lost connection to server. Waiting for reconnection...")
    except KeyboardInterrupt:
        print("\nDisconnecting...")
    finally:
        client.close()
    return 0


def main() -> int:
    args = _parse_args()
    if args.mode == "server":
        return run_server(args.socket_path)
    if not args.username:
        print("Please provide a username")
        return 1
    return run_client(args.socket_path, args.username)


if __name__ == "__main__":
    sys.exit(main())
