"""
Path tree of stored requests.

Request paths are "/" separated. All segments but the last are directories;
requests sit in the directory their path names, with duplicates allowed.
"""

from dataclasses import dataclass, field
from typing import Any, Iterable

from apiary.plugins.http import HTTPRequest
from apiary.plugins.sources import SQLSourceRequest
from apiary.plugins.sql import SQLRequest
from apiary.schema import Request


@dataclass
class PathTree:
    """
    A directory of the tree.

    Attributes:
        ids: Requests directly in this directory, in insertion order
        dirs: Subdirectories by name
    """

    ids: list[str] = field(default_factory=list)
    dirs: dict[str, "PathTree"] = field(default_factory=dict)

    def add(self, parts: list[str], request_id: str) -> None:
        if len(parts) <= 1:
            self.ids.append(request_id)
            return
        self.dirs.setdefault(parts[0], PathTree()).add(parts[1:], request_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ids": list(self.ids),
            "dirs": {name: self.dirs[name].to_dict() for name in sorted(self.dirs)},
        }


def build_path_tree(requests: Iterable[Request]) -> PathTree:
    """Group requests into a directory tree by path."""
    tree = PathTree()
    for request in sorted(requests, key=lambda r: (r.path, r.id)):
        tree.add(request.path.split("/"), request.id)
    return tree


def sub_kind(request: Request) -> str:
    """Short qualifier shown next to a request's kind (HTTP method, SQL engine)."""
    data = request.data
    if isinstance(data, HTTPRequest):
        return data.method
    if isinstance(data, (SQLRequest, SQLSourceRequest)):
        return data.database
    return ""


def leaf_name(request: Request) -> str:
    """Last path segment of a request."""
    return request.path.rsplit("/", 1)[-1] or request.id
