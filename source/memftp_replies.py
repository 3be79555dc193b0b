#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""FTP reply catalog (RFC 959 section 4.2).

Every reply the server sends is a :class:`Reply` value. Fixed replies are
module constants; replies that carry a value are built by the small helper
functions below. ``Reply.format()`` produces the exact wire text:

- Single-line:  "226 Closing data connection.\\r\\n"
- Multi-line:   "211-Features:\\r\\n"
                "211 End\\r\\n"
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

EOL = "\r\n"


@dataclass(frozen=True)
class Reply:
    code: int
    lines: Tuple[str, ...]

    def __post_init__(self) -> None:
        if not self.lines:
            raise ValueError("a reply needs at least one line of text")

    @property
    def text(self) -> str:
        # Text of the terminal line, which is what clients usually look at
        return self.lines[-1]

    def format(self) -> str:
        *head, last = self.lines
        out = [f"{self.code}-{line}{EOL}" for line in head]
        out.append(f"{self.code} {last}{EOL}")
        return "".join(out)

    def encode(self) -> bytes:
        return self.format().encode("utf-8")


def reply(code: int, *lines: str) -> Reply:
    return Reply(code, tuple(lines))


FILE_STATUS_OK = reply(150, "File status okay; about to open data connection.")
COMMAND_OK = reply(200, "Command okay.")
FEATURES = reply(211, "Features:", "End")
SYSTEM_TYPE = reply(215, "UNIX Type: L8")
CLOSING_CONTROL = reply(221, "Service closing control connection.")
CLOSING_DATA = reply(226, "Closing data connection.")
LOGGED_IN = reply(230, "User logged in, proceed.")
FILE_ACTION_OK = reply(250, "Requested file action okay completed.")
NEED_PASSWORD = reply(331, "User name okay, need password.")
CANNOT_OPEN_DATA = reply(425, "Can't open data connection.")
ACTION_ABORTED = reply(450, "Requested file action aborted.")
NOT_IMPLEMENTED = reply(502, "Command not implemented.")
FILE_UNAVAILABLE = reply(550, "File unavailable.")

# MDTM has no real timestamps to report
PLACEHOLDER_MTIME = "19700101000000"


def service_ready(banner: str = "Service ready for new user.") -> Reply:
    return reply(220, banner)


def file_status(value) -> Reply:
    """213 reply carrying a size or a modification time."""
    return reply(213, str(value))


def pathname(path: str) -> Reply:
    return reply(257, path)


def passive_mode(host: str, port: int) -> Reply:
    h1, h2, h3, h4 = host.split(".")
    p1 = port // 256
    p2 = port % 256
    return reply(227, f"Entering Passive Mode ({h1},{h2},{h3},{h4},{p1},{p2})")
