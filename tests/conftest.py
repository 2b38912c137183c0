"""
Shared pytest fixtures for the mock IRC tests.
"""

import socket

import pytest

from line_client import LineClient
from mock_irc import MockIRC


@pytest.fixture
def free_port():
    """A TCP port that was free on 127.0.0.1 a moment ago."""
    s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    s.bind(("127.0.0.1", 0))
    port = s.getsockname()[1]
    s.close()
    return port


@pytest.fixture
def make_server(free_port):
    """Factory for servers on ``free_port`` with a short grace period.

    Every server created is stopped on teardown.
    """
    servers = []

    def _make(name="mockirc.test", port=None, **kw):
        kw.setdefault("shutdown_grace", 0.05)
        srv = MockIRC(name, free_port if port is None else port, **kw)
        servers.append(srv)
        return srv

    yield _make
    for srv in servers:
        srv.stop()


@pytest.fixture
def make_client():
    """Factory for connected LineClients, closed on teardown."""
    clients = []

    def _make(port, **kw):
        c = LineClient(**kw)
        c.connect("127.0.0.1", port, timeout=3.0)
        clients.append(c)
        return c

    yield _make
    for c in clients:
        c.close()
