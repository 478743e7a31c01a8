from __future__ import annotations

import os
import shutil
import tempfile

import pytest

from conduit.config import ClientConfig, ServerConfig
from conduit.ipc import Client, Server
from conduit.logger import get_logger, get_noop_logger

from tests.helpers import RawPeer


@pytest.fixture
def socket_path():
    # AF_UNIX paths are limited to ~100 bytes, so stay out of pytest's deep tmp_path.
    directory = tempfile.mkdtemp(prefix="cdt", dir="/tmp")
    yield os.path.join(directory, "test.sock")
    shutil.rmtree(directory, ignore_errors=True)


@pytest.fixture
def server_config(socket_path) -> ServerConfig:
    config = ServerConfig.default(socket_path)
    config.logger = get_noop_logger()
    return config


@pytest.fixture
def client_config(socket_path) -> ClientConfig:
    config = ClientConfig.default(socket_path)
    config.logger = get_noop_logger()
    config.reconnect = False
    return config


@pytest.fixture
def make_server(server_config):
    servers = []

    def _make(**overrides) -> Server:
        config = ServerConfig(**{**server_config.__dict__, **overrides})
        server = Server(config)
        servers.append(server)
        return server

    yield _make

    for server in servers:
        server.stop()


@pytest.fixture
def make_client(client_config):
    clients = []

    def _make(**overrides) -> Client:
        config = ClientConfig(**{**client_config.__dict__, **overrides})
        client = Client(config)
        clients.append(client)
        return client

    yield _make

    for client in clients:
        client.close()


@pytest.fixture
def make_peer(socket_path):
    peers = []

    def _make() -> RawPeer:
        peer = RawPeer(socket_path)
        peers.append(peer)
        return peer

    yield _make

    for peer in peers:
        peer.close()


@pytest.fixture
def capture_logger(caplog):
    """A logger inside the conduit hierarchy whose records reach caplog."""
    logger = get_logger("test")
    caplog.set_level("DEBUG", logger=logger.name)
    return logger
