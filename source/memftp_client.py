#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Minimal passive-mode FTP client on raw TCP sockets.

It speaks exactly the commands memftp_server understands: login, SYST,
FEAT, PWD/CWD, TYPE, SIZE/MDTM, NOOP, and LIST/RETR over a PASV data
connection. It is used by the test-suite and is handy for poking at a
running server from a Python shell:

    conn = FTPConnection()
    conn.connect("127.0.0.1", 2121)
    conn.login()
    print(conn.list_lines())
    print(conn.retr_bytes("/dir/file1"))
    conn.quit()
"""

from __future__ import annotations

import socket
from typing import Callable, List, Optional, Tuple


class FTPProtocolError(Exception):
    """Raised when the FTP server returns an unexpected reply."""


def parse_pasv_reply(text: str) -> Tuple[str, int]:
    """Decode "Entering Passive Mode (h1,h2,h3,h4,p1,p2)" into (host, port).

    Data port = p1*256 + p2 on host h1.h2.h3.h4.
    """
    start = text.find('(')
    end = text.find(')', start + 1)
    if start == -1 or end == -1:
        raise FTPProtocolError(f"Invalid PASV reply: {text}")
    nums = text[start + 1 : end].split(',')
    if len(nums) != 6:
        raise FTPProtocolError(f"Invalid PASV address: {text}")
    try:
        h1, h2, h3, h4, p1, p2 = (int(n) for n in nums)
    except ValueError:
        raise FTPProtocolError(f"Invalid PASV address: {text}")
    return f"{h1}.{h2}.{h3}.{h4}", p1 * 256 + p2


class FTPConnection:
    def __init__(self, timeout: Optional[float] = 10) -> None:
        self.sock: Optional[socket.socket] = None
        # Buffered file-like object wrapping the control socket for readline()
        self.file = None
        self.timeout = timeout
        self.encoding: str = "utf-8"
        self.welcome: str = ""

    # ----------- Basic socket helpers -----------
    def _readline(self) -> str:
        if self.file is None:
            raise FTPProtocolError("Control connection not open")
        line = self.file.readline()
        if not line:
            raise FTPProtocolError("Connection closed by server")
        return line.decode(self.encoding, errors="ignore").rstrip("\r\n")

    def read_reply(self) -> Tuple[int, List[str]]:
        """Read one reply and return (code, lines).

        For a multi-line reply every line is returned with its "code-" or
        "code " prefix stripped.
        """
        line = self._readline()
        if len(line) < 3 or not line[:3].isdigit():
            raise FTPProtocolError(f"Invalid reply: {line}")
        code = int(line[:3])
        lines = [line[4:]]
        if line[3:4] == "-":
            prefix = f"{code} "
            while True:
                next_line = self._readline()
                if next_line.startswith(prefix):
                    lines.append(next_line[4:])
                    break
                if next_line.startswith(f"{code}-"):
                    next_line = next_line[4:]
                lines.append(next_line)
        return code, lines

    def send_command_lines(self, cmd: str) -> Tuple[int, List[str]]:
        if self.sock is None:
            raise FTPProtocolError("Not connected")
        self.sock.sendall((cmd + "\r\n").encode(self.encoding))
        return self.read_reply()

    def send_command(self, cmd: str) -> Tuple[int, str]:
        """Send a raw command line and return (code, text of the last line)."""
        code, lines = self.send_command_lines(cmd)
        return code, lines[-1]

    def _expect(self, cmd: str, *codes: int) -> str:
        code, text = self.send_command(cmd)
        if code not in codes:
            raise FTPProtocolError(f"{cmd.split(' ', 1)[0]} failed: {code} {text}")
        return text

    # ----------- Public high-level API -----------
    def connect(self, host: str, port: int = 21) -> str:
        """Open the control connection and return the welcome text."""
        self.sock = socket.create_connection((host, port), timeout=self.timeout)
        self.file = self.sock.makefile('rb')
        code, lines = self.read_reply()
        if code != 220:
            raise FTPProtocolError(f"Unexpected welcome reply: {code} {lines[-1]}")
        self.welcome = lines[-1]
        return self.welcome

    def login(self, user: str = "anonymous", password: str = "") -> None:
        code, text = self.send_command(f"USER {user}")
        if code == 230:
            return
        if code != 331:
            raise FTPProtocolError(f"USER command failed: {code} {text}")
        self._expect(f"PASS {password}", 230, 202)

    def syst(self) -> str:
        return self._expect("SYST", 215)

    def feat(self) -> List[str]:
        """Return the advertised features (the lines between header and End)."""
        code, lines = self.send_command_lines("FEAT")
        if code != 211:
            raise FTPProtocolError(f"FEAT failed: {code} {lines[-1]}")
        return [line.strip() for line in lines[1:-1]]

    def pwd(self) -> str:
        """Return the current working directory using PWD."""
        text = self._expect("PWD", 257)
        # Typical response: 257 /dir (a quoted path is accepted as well)
        if text.startswith('"'):
            end = text.find('"', 1)
            while end != -1 and text[end + 1 : end + 2] == '"':
                end = text.find('"', end + 2)
            if end != -1:
                return text[1:end].replace('""', '"')
        return text

    def cwd(self, path: str) -> None:
        self._expect(f"CWD {path}", 250)

    def set_type(self, code: str = "I") -> None:
        self._expect(f"TYPE {code}", 200)

    def size(self, path: str) -> int:
        text = self._expect(f"SIZE {path}", 213)
        try:
            return int(text)
        except ValueError:
            raise FTPProtocolError(f"Invalid SIZE reply: {text}")

    def mdtm(self, path: str) -> str:
        return self._expect(f"MDTM {path}", 213)

    def noop(self) -> None:
        self._expect("NOOP", 200)

    def quit(self) -> None:
        """Politely close the FTP session and underlying socket."""
        if self.sock is None:
            return
        try:
            self._expect("QUIT", 221)
        finally:
            self.close()

    def close(self) -> None:
        try:
            if self.file is not None:
                self.file.close()
        finally:
            self.file = None
        try:
            if self.sock is not None:
                self.sock.close()
        finally:
            self.sock = None

    # ----------- Passive mode data connection helpers -----------
    def _enter_passive_mode(self) -> socket.socket:
        """Send PASV and open a data connection to the returned address."""
        text = self._expect("PASV", 227)
        host, port = parse_pasv_reply(text)
        return socket.create_connection((host, port), timeout=self.timeout)

    def _transfer(self, cmd: str, callback: Callable[[bytes], None]) -> None:
        data_sock = self._enter_passive_mode()
        with data_sock:
            code, text = self.send_command(cmd)
            if code not in (125, 150):
                raise FTPProtocolError(f"{cmd.split(' ', 1)[0]} failed: {code} {text}")
            while True:
                buf = data_sock.recv(4096)
                if not buf:
                    break
                callback(buf)

        code2, lines = self.read_reply()
        if code2 not in (226, 250):
            raise FTPProtocolError(f"{cmd.split(' ', 1)[0]} did not complete correctly: {code2} {lines[-1]}")

    def list_lines(self, path: str = "") -> List[str]:
        """Return the directory listing as a list of lines of text."""
        chunks: List[bytes] = []
        self._transfer(f"LIST {path}".rstrip(), chunks.append)
        text_data = b"".join(chunks).decode(self.encoding, errors="ignore")
        return [line for line in text_data.splitlines() if line.strip()]

    def retr_binary(self, path: str, callback: Callable[[bytes], None]) -> None:
        """Download a file and pass each data chunk to callback(chunk: bytes)."""
        self._transfer(f"RETR {path}", callback)

    def retr_bytes(self, path: str) -> bytes:
        chunks: List[bytes] = []
        self.retr_binary(path, chunks.append)
        return b"".join(chunks)
