"""Shared fixtures for the memftp test-suite.

Two ways of driving the server are provided:

- ``session``: an FTPSession wired to one end of a socket pair, for calling
  the dispatcher directly without any threads.
- ``server`` / ``client`` / ``raw_connection``: a real FTPServer listening
  on an ephemeral loopback port in a background thread.
"""

import contextlib
import socket
import threading

import pytest

from memftp_client import FTPConnection
from memftp_fs import sample_filesystem
from memftp_server import FTPConfig, FTPServer, FTPSession


def make_config(**overrides):
    settings = dict(host="127.0.0.1", port=0, idle_timeout=5.0, data_timeout=2.0)
    settings.update(overrides)
    return FTPConfig(**settings)


@contextlib.contextmanager
def running_server(config, filesystem):
    server = FTPServer(config, filesystem)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield server
    finally:
        server.shutdown()
        thread.join(timeout=5)


@contextlib.contextmanager
def paired_session(config, filesystem):
    ours, theirs = socket.socketpair()
    session = FTPSession(ours, ("socketpair", 0), config, filesystem)
    try:
        yield session, theirs
    finally:
        session.close()
        theirs.close()


def recv_all(sock):
    chunks = []
    while True:
        buf = sock.recv(4096)
        if not buf:
            break
        chunks.append(buf)
    return b"".join(chunks)


@pytest.fixture
def filesystem():
    return sample_filesystem()


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def session(config, filesystem):
    with paired_session(config, filesystem) as (sess, _peer):
        yield sess


@pytest.fixture
def server(config, filesystem):
    with running_server(config, filesystem) as srv:
        yield srv


@pytest.fixture
def client(server):
    conn = FTPConnection(timeout=5)
    conn.connect(*server.address)
    conn.login()
    yield conn
    conn.close()


@pytest.fixture
def raw_connection(server):
    """A bare control socket plus a line reader, with the banner consumed."""
    sock = socket.create_connection(server.address, timeout=5)
    reader = sock.makefile("rb")
    banner = reader.readline()
    yield sock, reader, banner
    reader.close()
    sock.close()
