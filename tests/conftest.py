from __future__ import annotations

import socket
from typing import Iterator

import pytest


@pytest.fixture
def listener() -> Iterator[int]:
    """A loopback port with a live TCP acceptor. The kernel completes handshakes from the backlog."""
    srv = socket.create_server(("127.0.0.1", 0), backlog=128)
    try:
        yield srv.getsockname()[1]
    finally:
        srv.close()


@pytest.fixture
def closed_port() -> int:
    s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    s.bind(("127.0.0.1", 0))
    port = s.getsockname()[1]
    s.close()
    return port
