"""
Tests for conduit.ipc.Client: request/response against a live server,
state handling, close semantics and automatic reconnection.
"""

import queue
import socket
import threading
import time

import pytest

from conduit.errors import ClientClosedError, ConnectError, NotConnectedError, SendError
from conduit.ipc import ClientState
from tests.helpers import wait_for


def echo_handler(conn, msg):
    conn.send("echo_response", msg.decode_payload() + "_response")


def collect(client, msg_type):
    """Register a handler that pushes decoded payloads of ``msg_type`` onto a queue."""
    received = queue.Queue()
    client.handle(msg_type, lambda _, msg: received.put(msg.decode_payload()))
    return received


@pytest.fixture
def silent_listener(socket_path):
    """A bound socket that accepts into its backlog and never reads."""
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    sock.bind(socket_path)
    sock.listen()
    yield sock
    sock.close()


@pytest.fixture
def echo_server(make_server):
    server = make_server()
    server.handle("echo", echo_handler)
    server.start()
    return server


# ── Request / response ──────────────────────────────────────────


class TestMessaging:
    def test_echo_round_trip(self, echo_server, make_client):
        client = make_client()
        responses = collect(client, "echo_response")
        client.connect()

        client.send("echo", "hello")
        assert responses.get(timeout=1) == "hello_response"

    def test_server_push(self, echo_server, make_client):
        client = make_client()
        pushed = collect(client, "notice")
        client.connect()
        assert wait_for(lambda: echo_server.connection_count == 1)

        echo_server.broadcast("notice", {"level": "info"})
        assert pushed.get(timeout=1) == {"level": "info"}

    def test_decorator_registration(self, echo_server, make_client):
        client = make_client()
        got = queue.Queue()

        @client.handle("echo_response")
        def on_echo(_, msg):
            got.put(msg.decode_payload())

        client.connect()
        client.send("echo", "deco")
        assert got.get(timeout=1) == "deco_response"

    def test_handler_error_keeps_reading(self, echo_server, make_client, capture_logger, caplog):
        client = make_client(logger=capture_logger)
        calls = queue.Queue()

        def flaky(_, msg):
            payload = msg.decode_payload()
            calls.put(payload)
            if payload == "first_response":
                raise RuntimeError("boom")

        client.handle("echo_response", flaky)
        client.connect()
        client.send("echo", "first")
        client.send("echo", "second")
        assert calls.get(timeout=1) == "first_response"
        assert calls.get(timeout=1) == "second_response"
        assert "Handler error for message type 'echo_response'" in caplog.text

    def test_unhandled_type_is_logged(self, echo_server, make_client, capture_logger, caplog):
        client = make_client(logger=capture_logger)
        client.connect()
        assert wait_for(lambda: echo_server.connection_count == 1)
        echo_server.broadcast("mystery")
        assert wait_for(lambda: "No handler for message type 'mystery'" in caplog.text)

    def test_send_when_not_connected(self, make_client):
        client = make_client()
        with pytest.raises(NotConnectedError):
            client.send("echo", "nobody")

    def test_context(self, make_client):
        client = make_client()
        assert client.get_context("user") == (None, False)
        client.set_context("user", "ada")
        assert client.get_context("user") == ("ada", True)

    def test_each_broadcast_handled_exactly_once(self, echo_server, make_client):
        client = make_client()
        received = collect(client, "tick")
        client.connect()
        assert wait_for(lambda: echo_server.connection_count == 1)

        for i in range(50):
            echo_server.broadcast("tick", i)
        assert [received.get(timeout=1) for _ in range(50)] == list(range(50))
        time.sleep(0.1)
        assert received.empty()

    def test_send_failure_raises_send_error(self, silent_listener, make_client):
        client = make_client(write_timeout=0.2)
        client.connect()

        with pytest.raises(SendError, match="timed out"):
            for _ in range(200):
                client.send("flood", "x" * 65536)
        assert client.is_connected

    def test_send_on_locally_closed_connection(self, echo_server, make_client):
        client = make_client()
        client.connect()
        client._conn.close()

        with pytest.raises(NotConnectedError):
            client.send("echo", "late")

    def test_send_after_server_stop(self, echo_server, make_client):
        client = make_client()
        client.connect()
        echo_server.stop()
        assert wait_for(lambda: not client.is_connected)

        with pytest.raises(NotConnectedError):
            client.send("echo", "late")


# ── Connect / close ─────────────────────────────────────────────


class TestConnectClose:
    def test_states(self, echo_server, make_client):
        client = make_client()
        assert client.state is ClientState.DISCONNECTED
        client.connect()
        assert client.state is ClientState.CONNECTED
        assert client.is_connected
        client.close()
        assert client.state is ClientState.CLOSED
        assert client.is_closed
        assert not client.is_connected

    def test_connect_without_server(self, make_client):
        client = make_client()
        with pytest.raises(ConnectError):
            client.connect()
        assert client.state is ClientState.DISCONNECTED

    def test_connect_with_retry_without_reconnect(self, make_client):
        client = make_client()
        with pytest.raises(ConnectError):
            client.connect_with_retry()

    def test_connect_twice_is_noop(self, echo_server, make_client):
        client = make_client()
        client.connect()
        client.connect()
        time.sleep(0.1)
        assert echo_server.connection_count == 1

    def test_close_is_idempotent(self, echo_server, make_client):
        client = make_client()
        client.connect()
        client.close()
        client.close()

    def test_connect_after_close(self, echo_server, make_client):
        client = make_client()
        client.close()
        with pytest.raises(ClientClosedError):
            client.connect()

    def test_close_disconnects_from_server(self, echo_server, make_client):
        client = make_client()
        client.connect()
        assert wait_for(lambda: echo_server.connection_count == 1)
        client.close()
        assert wait_for(lambda: echo_server.connection_count == 0)

    def test_close_releases_socket(self, echo_server, make_client):
        client = make_client(read_timeout=None)
        client.connect()
        conn = client._conn
        client.close()
        assert wait_for(lambda: conn.sock.fileno() == -1, timeout=1.0)

    def test_send_after_close(self, echo_server, make_client):
        client = make_client()
        client.connect()
        client.close()
        with pytest.raises(NotConnectedError):
            client.send("echo", "late")

    def test_context_manager(self, echo_server, make_client):
        client = make_client()
        responses = collect(client, "echo_response")
        with client:
            client.send("echo", "ctx")
            assert responses.get(timeout=1) == "ctx_response"
        assert client.is_closed

    def test_server_gone_without_reconnect(self, echo_server, make_client):
        client = make_client()
        client.connect()
        echo_server.stop()
        assert wait_for(lambda: not client.is_connected)
        assert client.state is ClientState.DISCONNECTED

    def test_oversize_message_drops_connection(self, echo_server, make_client):
        client = make_client(max_message_size=256)
        received = collect(client, "big")
        client.connect()
        assert wait_for(lambda: echo_server.connection_count == 1)

        echo_server.broadcast("big", "x" * 1000)
        assert wait_for(lambda: not client.is_connected)
        assert wait_for(lambda: echo_server.connection_count == 0)
        assert client.state is ClientState.DISCONNECTED
        assert received.empty()

    def test_oversize_message_triggers_reconnect(self, echo_server, make_client):
        client = make_client(max_message_size=256, reconnect=True, reconnect_delay=0.05)
        big = collect(client, "big")
        responses = collect(client, "echo_response")
        client.connect()
        assert wait_for(lambda: echo_server.connection_count == 1)
        first_id = echo_server.connections()[0].id

        echo_server.broadcast("big", "x" * 1000)
        assert wait_for(
            lambda: client.is_connected
            and any(c.id != first_id for c in echo_server.connections()),
            timeout=3.0,
        )

        client.send("echo", "again")
        assert responses.get(timeout=1) == "again_response"
        assert big.empty()


# ── Reconnect ───────────────────────────────────────────────────


class TestReconnect:
    def test_reconnects_after_server_restart(self, make_server, make_client):
        first = make_server()
        first.start()

        client = make_client(reconnect=True, reconnect_delay=0.1)
        responses = collect(client, "check_response")
        client.connect()
        assert wait_for(lambda: first.connection_count == 1)

        first.stop()
        assert wait_for(lambda: not client.is_connected)

        second = make_server()
        second.handle("check", lambda conn, msg: conn.send("check_response", "ok_reconnected"))
        second.start()

        assert wait_for(lambda: client.is_connected, timeout=3.0)
        client.send("check")
        assert responses.get(timeout=1) == "ok_reconnected"

    def test_connect_with_retry_waits_for_server(self, make_server, make_client):
        client = make_client(reconnect=True, reconnect_delay=0.1)
        errors = []

        def connect():
            try:
                client.connect_with_retry()
            except Exception as e:
                errors.append(e)

        t = threading.Thread(target=connect)
        t.start()
        time.sleep(0.2)
        assert not client.is_connected

        server = make_server()
        server.handle("echo", echo_handler)
        server.start()

        assert client.wait_connected(timeout=3.0)
        t.join(timeout=2.0)
        assert errors == []

    def test_close_interrupts_retry(self, make_client):
        client = make_client(reconnect=True, reconnect_delay=10.0)
        errors = []

        def connect():
            try:
                client.connect_with_retry()
            except Exception as e:
                errors.append(e)

        t = threading.Thread(target=connect)
        t.start()
        time.sleep(0.2)
        client.close()
        t.join(timeout=2.0)

        assert not t.is_alive()
        assert len(errors) == 1
        assert isinstance(errors[0], ClientClosedError)

    def test_wait_connected_returns_false_on_close(self, make_client):
        client = make_client()
        threading.Timer(0.1, client.close).start()
        assert client.wait_connected(timeout=2.0) is False

    def test_close_stops_reconnecting(self, make_server, make_client):
        server = make_server()
        server.start()
        client = make_client(reconnect=True, reconnect_delay=0.05)
        client.connect()
        server.stop()
        assert wait_for(lambda: not client.is_connected)

        client.close()
        assert client.state is ClientState.CLOSED

        revived = make_server()
        revived.start()
        time.sleep(0.3)
        assert revived.connection_count == 0
