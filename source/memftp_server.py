#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""A minimal FTP server over a read-only in-memory filesystem.

The server only implements the subset of FTP needed to browse and download
from the virtual tree with a passive-mode client:

- USER / PASS       : login (any name and password are accepted)
- SYST / FEAT       : system type and (empty) feature list
- PWD / CWD         : print / change working directory
- TYPE              : recorded, otherwise ignored
- SIZE / MDTM       : file size / placeholder modification time
- PASV              : report the session's data port
- LIST              : list a directory over the data connection
- RETR              : download a file over the data connection
- NOOP              : do nothing
- QUIT              : close the session

Each control connection gets its own thread and its own data channel, which
is bound as soon as the session starts. Commands are handled one at a time:
a LIST or RETR finishes its whole data transfer before the next command line
is read.

There is no authentication and nothing can be written. DO NOT treat the
login as a security boundary.
"""

from __future__ import annotations

import argparse
import socket
import threading
import traceback
from dataclasses import dataclass
from typing import Callable, Dict, List, NamedTuple, Optional, Tuple

import memftp_replies as replies
from memftp_data import DataChannel, DataChannelError
from memftp_fs import (
    Directory,
    FileSystem,
    Kind,
    Node,
    PathError,
    canonical_path,
    join_path,
    sample_filesystem,
)
from memftp_replies import Reply


@dataclass
class FTPConfig:
    host: str = "0.0.0.0"           # Listen on all interfaces
    port: int = 2121                # Control port (avoid 21 which may need root)
    data_host: str = "127.0.0.1"    # Where data channels bind; advertised by PASV
    idle_timeout: Optional[float] = 60.0   # Seconds without a command line
    data_timeout: Optional[float] = 30.0   # Seconds LIST/RETR wait for the client
    banner: str = "Service ready for new user."


class ControlConnectionError(Exception):
    """The control connection can no longer be used; the session ends."""


class ReadFailed(ControlConnectionError):
    pass


class WriteFailed(ControlConnectionError):
    pass


class IdleTimeout(ControlConnectionError):
    pass


class ProtocolError(Exception):
    pass


class UnknownCommand(ProtocolError):
    def __init__(self, verb: str) -> None:
        super().__init__(f"unknown command {verb!r}")
        self.verb = verb


class Command(NamedTuple):
    verb: str
    argument: str


def parse_command(line: str) -> Command:
    # VERB[ SP ARGUMENT]; the verb is taken as is, no case folding
    verb, _, argument = line.partition(" ")
    return Command(verb, argument)


def format_list_line(name: str, node: Node) -> str:
    # Only the type flag and the name come from the tree
    if isinstance(node, Directory):
        return f"drwxr-xr-x  1 owner group 4096 Jan 01 00:00 {name}\r\n"
    return f"-rwxr-xr-x  1 owner group 4096 Jan 01 00:00 {name}\r\n"


class FTPSession:
    """Represents one FTP control connection (one client)."""

    def __init__(
        self,
        conn: socket.socket,
        addr: Tuple[str, int],
        config: FTPConfig,
        filesystem: FileSystem,
    ) -> None:
        self.conn = conn
        self.addr = addr
        self.config = config
        self.filesystem = filesystem

        # Bound for the whole session, whether or not PASV is ever sent
        self.data_channel = DataChannel(config.data_host, config.data_timeout)

        self.conn.settimeout(config.idle_timeout)
        self.control_file = conn.makefile("rwb")  # for readline/write
        self.username = ""
        self.working_directory = "/"  # always an existing directory
        self.transfer_type = ""
        self.closing = False

    # ---------- Utility helpers ----------
    def send(self, reply: Reply) -> None:
        try:
            self.control_file.write(reply.encode())
            self.control_file.flush()
        except OSError as e:
            raise WriteFailed(str(e)) from e

    def read_command(self) -> Optional[str]:
        try:
            line = self.control_file.readline()
        except socket.timeout:
            raise IdleTimeout(f"no command within {self.config.idle_timeout}s")
        except OSError as e:
            raise ReadFailed(str(e)) from e
        if not line:
            return None
        # CRLF is the terminator but a bare LF is tolerated
        return line.decode("utf-8", errors="ignore").rstrip("\r\n")

    def absolute(self, path: str) -> str:
        return join_path(self.working_directory, path)

    def resolve(self, path: str, expect: Kind) -> Node:
        return self.filesystem.resolve(self.absolute(path), expect)

    def open_data_connection(self) -> Optional[socket.socket]:
        try:
            print("[PASV] waiting for data connection...")
            return self.data_channel.accept_once()
        except DataChannelError as e:
            print(f"[PASV] accept failed: {e}")
            return None

    # ---------- Dispatch ----------
    def lookup(self, verb: str) -> Callable[["FTPSession", str], Reply]:
        handler = self.handlers.get(verb)
        if handler is None:
            raise UnknownCommand(verb)
        return handler

    def dispatch(self, verb: str, argument: str = "") -> Reply:
        try:
            handler = self.lookup(verb)
        except UnknownCommand as e:
            print(f"[SESSION] {self.addr}: {e}")
            return replies.NOT_IMPLEMENTED
        return handler(self, argument)

    # ---------- Command handlers ----------
    def handle_USER(self, arg: str) -> Reply:
        self.username = arg
        return replies.NEED_PASSWORD

    def handle_PASS(self, arg: str) -> Reply:
        return replies.LOGGED_IN

    def handle_SYST(self, arg: str) -> Reply:
        return replies.SYSTEM_TYPE

    def handle_FEAT(self, arg: str) -> Reply:
        return replies.FEATURES

    def handle_NOOP(self, arg: str) -> Reply:
        return replies.COMMAND_OK

    def handle_PWD(self, arg: str) -> Reply:
        return replies.pathname(self.working_directory)

    def handle_CWD(self, arg: str) -> Reply:
        target = self.absolute(arg)
        try:
            self.filesystem.resolve(target, Kind.DIRECTORY)
        except PathError as e:
            print(f"[CWD] {e}")
            return replies.FILE_UNAVAILABLE
        self.working_directory = canonical_path(target)
        return replies.FILE_ACTION_OK

    def handle_TYPE(self, arg: str) -> Reply:
        self.transfer_type = arg
        return replies.COMMAND_OK

    def handle_SIZE(self, arg: str) -> Reply:
        try:
            node = self.resolve(arg, Kind.FILE)
        except PathError as e:
            print(f"[SIZE] {e}")
            return replies.FILE_UNAVAILABLE
        return replies.file_status(node.size)

    def handle_MDTM(self, arg: str) -> Reply:
        try:
            self.resolve(arg, Kind.FILE)
        except PathError as e:
            print(f"[MDTM] {e}")
            return replies.FILE_UNAVAILABLE
        return replies.file_status(replies.PLACEHOLDER_MTIME)

    # ---- Passive mode ----
    def handle_PASV(self, arg: str) -> Reply:
        host, port = self.data_channel.address()
        print(f"[PASV] listening on {host}:{port}")
        return replies.passive_mode(host, port)

    # ---- LIST ----
    def handle_LIST(self, arg: str) -> Reply:
        data_conn = self.open_data_connection()
        if data_conn is None:
            return replies.CANNOT_OPEN_DATA

        with data_conn:
            self.send(replies.FILE_STATUS_OK)
            try:
                directory = self.resolve(arg or self.working_directory, Kind.DIRECTORY)
            except PathError as e:
                print(f"[LIST] {e}")
                return replies.ACTION_ABORTED

            listing = "".join(
                format_list_line(name, node) for name, node in directory.children.items()
            )
            try:
                data_conn.sendall(listing.encode("utf-8"))
            except OSError as e:
                print(f"[LIST] sendall error: {e}")
                return replies.ACTION_ABORTED
        return replies.CLOSING_DATA

    # ---- RETR ----
    def handle_RETR(self, arg: str) -> Reply:
        data_conn = self.open_data_connection()
        if data_conn is None:
            return replies.CANNOT_OPEN_DATA

        with data_conn:
            self.send(replies.FILE_STATUS_OK)
            try:
                node = self.resolve(arg, Kind.FILE)
            except PathError as e:
                print(f"[RETR] {e}")
                return replies.ACTION_ABORTED

            try:
                print(f"[RETR] sending {node.size} bytes of {self.absolute(arg)}")
                data_conn.sendall(node.content)
            except OSError as e:
                print(f"[RETR] sendall error: {e}")
                return replies.ACTION_ABORTED
        return replies.CLOSING_DATA

    def handle_QUIT(self, arg: str) -> Reply:
        self.closing = True
        return replies.CLOSING_CONTROL

    handlers: Dict[str, Callable[["FTPSession", str], Reply]] = {
        "CWD": handle_CWD,
        "FEAT": handle_FEAT,
        "LIST": handle_LIST,
        "MDTM": handle_MDTM,
        "NOOP": handle_NOOP,
        "PASS": handle_PASS,
        "PASV": handle_PASV,
        "PWD": handle_PWD,
        "QUIT": handle_QUIT,
        "RETR": handle_RETR,
        "SIZE": handle_SIZE,
        "SYST": handle_SYST,
        "TYPE": handle_TYPE,
        "USER": handle_USER,
    }

    # ---------- Main loop ----------
    def serve(self) -> None:
        try:
            self.send(replies.service_ready(self.config.banner))
            while not self.closing:
                cmdline = self.read_command()
                if cmdline is None:
                    break
                command = parse_command(cmdline)
                shown = "****" if command.verb == "PASS" else command.argument
                print(f"[SESSION] {self.addr} -> {command.verb} {shown}".rstrip())
                self.send(self.dispatch(command.verb, command.argument))
        except ControlConnectionError as e:
            print(f"[SESSION] {self.addr} dropped: {e}")
        except Exception as e:
            print(f"[SESSION] {self.addr} failed: {e}")
            traceback.print_exc()
        finally:
            self.close()

    def close(self) -> None:
        try:
            self.data_channel.close()
        finally:
            try:
                self.control_file.close()
            except OSError:
                pass
            try:
                self.conn.close()
            except OSError:
                pass


class FTPServer:
    """Accepts control connections and serves each one in its own thread."""

    poll_interval = 0.5

    def __init__(self, config: FTPConfig, filesystem: FileSystem) -> None:
        self.config = config
        self.filesystem = filesystem
        self._stopped = threading.Event()

        self.sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            self.sock.bind((config.host, config.port))
            self.sock.listen(5)
        except OSError:
            self.sock.close()
            raise
        # Lets serve_forever notice shutdown() without a pending connection
        self.sock.settimeout(self.poll_interval)

    @property
    def address(self) -> Tuple[str, int]:
        return self.sock.getsockname()[:2]

    def serve_forever(self) -> None:
        host, port = self.address
        print(f"[SERVER] listening on {host}:{port}")
        try:
            while not self._stopped.is_set():
                try:
                    conn, addr = self.sock.accept()
                except socket.timeout:
                    continue
                except OSError:
                    if self._stopped.is_set():
                        break
                    raise
                print(f"[SERVER] new connection from {addr}")
                self.start_session(conn, addr)
        finally:
            self.sock.close()

    def start_session(self, conn: socket.socket, addr: Tuple[str, int]) -> None:
        try:
            session = FTPSession(conn, addr, self.config, self.filesystem)
        except OSError as e:
            # No data port could be bound for this client
            print(f"[SERVER] cannot start session for {addr}: {e}")
            conn.close()
            return
        threading.Thread(target=session.serve, daemon=True).start()

    def shutdown(self) -> None:
        self._stopped.set()


def start_ftp_server(config: FTPConfig, filesystem: FileSystem) -> None:
    """Start the FTP server and accept connections forever."""
    server = FTPServer(config, filesystem)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        print("[SERVER] stopped")


def build_parser() -> argparse.ArgumentParser:
    defaults = FTPConfig()
    parser = argparse.ArgumentParser(description="Serve a read-only in-memory tree over FTP.")
    parser.add_argument("--host", default=defaults.host, help="Control address to listen on")
    parser.add_argument("--port", type=int, default=defaults.port, help="Control port")
    parser.add_argument("--data-host", default=defaults.data_host,
                        help="IPv4 address data channels bind to and PASV reports")
    parser.add_argument("--idle-timeout", type=float, default=defaults.idle_timeout,
                        help="Seconds a client may stay silent before it is dropped")
    parser.add_argument("--data-timeout", type=float, default=defaults.data_timeout,
                        help="Seconds LIST/RETR wait for the data connection")
    parser.add_argument("--tree", help="JSON file describing the tree to serve")
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    cfg = FTPConfig(
        host=args.host,
        port=args.port,
        data_host=args.data_host,
        idle_timeout=args.idle_timeout,
        data_timeout=args.data_timeout,
    )
    filesystem = FileSystem.load_json(args.tree) if args.tree else sample_filesystem()
    start_ftp_server(cfg, filesystem)


if __name__ == "__main__":
    main()
