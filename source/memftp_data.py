#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Passive-mode data channel.

Each session owns one listening socket, bound to an ephemeral port when the
session starts and kept until the session ends. PASV only reports its
address; LIST and RETR each accept exactly one connection on it, use it once
and close it. The listener itself is never rebound.
"""

from __future__ import annotations

import socket
from typing import Optional, Tuple


class DataChannelError(Exception):
    """Raised when no data connection can be obtained."""


class AcceptFailed(DataChannelError):
    pass


class DataChannel:
    def __init__(self, host: str = "127.0.0.1", accept_timeout: Optional[float] = None) -> None:
        self.accept_timeout = accept_timeout
        self.listener: Optional[socket.socket] = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            self.listener.bind((host, 0))
            self.listener.listen(1)
        except OSError:
            self.listener.close()
            raise
        self.listener.settimeout(accept_timeout)
        # Names like "localhost" are reported as the dotted address PASV needs
        self.host = self.listener.getsockname()[0]

    def address(self) -> Tuple[str, int]:
        if self.listener is None:
            raise DataChannelError("data channel is closed")
        port = self.listener.getsockname()[1]
        return self.host, port

    def accept_once(self) -> socket.socket:
        """Block until the client opens the data connection.

        The caller owns the returned socket and must close it after its
        single use.
        """
        if self.listener is None:
            raise AcceptFailed("data channel is closed")
        try:
            conn, peer = self.listener.accept()
        except socket.timeout:
            raise AcceptFailed(f"no data connection within {self.accept_timeout}s")
        except OSError as e:
            raise AcceptFailed(str(e)) from e
        print(f"[PASV] data connection accepted from {peer}")
        # Writes on the data connection are bounded the same way as the accept
        conn.settimeout(self.accept_timeout)
        return conn

    def close(self) -> None:
        if self.listener is None:
            return
        try:
            self.listener.close()
        finally:
            self.listener = None

    def __enter__(self) -> "DataChannel":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
