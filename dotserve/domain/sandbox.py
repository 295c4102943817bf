"""Filesystem sandbox utilities for safe path resolution."""

from pathlib import Path
from typing import Union


class ForbiddenPath(Exception):
    """Raised when a requested path escapes the served directory."""


def resolve_sandbox_path(directory: Union[str, Path], url_path: str) -> Path:
    """Map a URL path onto a filesystem entry inside the served directory.

    An empty path (or ``/``) resolves to the directory itself. Symlinks that
    point outside the directory are rejected like ``..`` segments.
    """
    if "\x00" in url_path:
        raise ForbiddenPath

    directory_root = Path(directory).resolve()
    relative_part = url_path.lstrip("/")
    if not relative_part:
        return directory_root

    if ".." in Path(relative_part).parts:
        raise ForbiddenPath

    target = (directory_root / relative_part).resolve()
    if not (target == directory_root or directory_root in target.parents):
        raise ForbiddenPath

    return target
