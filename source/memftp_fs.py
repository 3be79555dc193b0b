#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Read-only in-memory filesystem served over FTP.

The tree is built once (from nested dicts, a JSON file, or the bundled
sample) and then shared by every session without locking: nodes are frozen
dataclasses and directory children are exposed through a read-only mapping.

Paths are resolved from the root:

    "/dir/file1"  -> File
    "dir/./"      -> Directory   (empty and "." segments are ignored)
    ""  or  "/"   -> root Directory

There is no ".." support; such a segment is looked up like any other name.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Dict, List, Mapping, Union


@dataclass(frozen=True)
class File:
    content: bytes

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass(frozen=True)
class Directory:
    children: Mapping[str, "Node"]

    def __post_init__(self) -> None:
        # Copy so later changes to the caller's dict can't leak into the tree
        object.__setattr__(self, "children", MappingProxyType(dict(self.children)))


Node = Union[File, Directory]


class Kind(Enum):
    FILE = "file"
    DIRECTORY = "directory"
    ANY = "any"


class PathError(Exception):
    """Base class for path resolution failures."""

    def __init__(self, path: str, message: str) -> None:
        super().__init__(f"{path}: {message}")
        self.path = path


class NotFound(PathError):
    def __init__(self, path: str) -> None:
        super().__init__(path, "no such file or directory")


class NotADirectory(PathError):
    def __init__(self, path: str) -> None:
        super().__init__(path, "not a directory")


class TypeMismatch(PathError):
    def __init__(self, path: str, expect: Kind) -> None:
        super().__init__(path, f"expected a {expect.value}")
        self.expect = expect


def split_path(path: str) -> List[str]:
    """Split a path into the names it walks through.

    e.g. "/dir/./file1" -> ["dir", "file1"]
    """
    if path.startswith("/"):
        path = path[1:]
    return [part for part in path.split("/") if part not in ("", ".")]


def canonical_path(path: str) -> str:
    return "/" + "/".join(split_path(path))


def join_path(cwd: str, path: str) -> str:
    """Make ``path`` absolute by anchoring relative paths at ``cwd``."""
    if path.startswith("/"):
        return path
    return cwd.rstrip("/") + "/" + path


def _node_from_value(value) -> Node:
    if isinstance(value, bytes):
        return File(value)
    if isinstance(value, str):
        return File(value.encode("utf-8"))
    if isinstance(value, Mapping):
        return Directory({str(name): _node_from_value(item) for name, item in value.items()})
    raise TypeError(f"unsupported tree entry: {value!r}")


class FileSystem:
    """An immutable tree rooted at a Directory."""

    def __init__(self, root: Directory) -> None:
        self.root = root

    @classmethod
    def from_dict(cls, tree: Mapping) -> "FileSystem":
        """Build a filesystem from nested dicts.

        Values that are ``str`` or ``bytes`` become files, dicts become
        directories.
        """
        root = _node_from_value(tree)
        if not isinstance(root, Directory):
            raise TypeError("the root of a tree must be a mapping")
        return cls(root)

    @classmethod
    def load_json(cls, filename: str) -> "FileSystem":
        with open(filename, "r", encoding="utf-8") as f:
            return cls.from_dict(json.load(f))

    def resolve(self, path: str, expect: Kind = Kind.ANY) -> Node:
        node: Node = self.root
        names = split_path(path)
        for i, name in enumerate(names):
            if not isinstance(node, Directory):
                # A file was reached but there are names left to walk
                raise NotADirectory("/" + "/".join(names[:i]))
            child = node.children.get(name)
            if child is None:
                raise NotFound(path)
            node = child

        if expect is Kind.FILE and not isinstance(node, File):
            raise TypeMismatch(path, expect)
        if expect is Kind.DIRECTORY and not isinstance(node, Directory):
            raise TypeMismatch(path, expect)
        return node


def sample_filesystem() -> FileSystem:
    tree: Dict[str, object] = {
        "test": "Test file",
        "asdf": "asdf file",
        "dir": {
            "file1": "file1",
            "file2": "file2",
        },
    }
    return FileSystem.from_dict(tree)
