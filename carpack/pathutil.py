from __future__ import annotations

import os
import stat
from typing import List, Optional, Tuple

from .constants import KIND_DIRECTORY, KIND_FILE
from .errors import CarIOError, ConstraintError, FormatError


def check_entry_name(name: str) -> str:
    """Validate a single directory entry name read from an archive.

    Rules:
    - Non-empty, and not '.' or '..'
    - No '/' or '\\' separators and no NUL bytes
    """
    if name in ("", ".", ".."):
        raise FormatError(f"Invalid entry name {name!r}")
    if "/" in name or "\\" in name or "\x00" in name:
        raise FormatError(f"Entry name may not contain separators or NUL: {name!r}")
    return name


def join_path(parent: str, name: str) -> str:
    return f"{parent}/{name}" if parent else name


def entry_name(fs_path: str) -> str:
    """Archive name for an input path (its basename), required to be valid UTF-8."""
    name = os.path.basename(os.path.normpath(fs_path))
    if name in ("", ".", ".."):
        name = os.path.basename(os.path.abspath(fs_path))
    try:
        name.encode("utf-8")
    except UnicodeEncodeError:
        raise ConstraintError(f"File name is not valid UTF-8: {fs_path!r}") from None
    return name


def path_kind(fs_path: str) -> Optional[str]:
    """Return 'file' or 'directory' for packable paths, None for anything else.

    Symlinks to files are followed; symlinked directories are not, to avoid
    walking into cycles.
    """
    try:
        st = os.stat(fs_path)
    except FileNotFoundError:
        return None
    except OSError as exc:
        raise CarIOError(f"Cannot stat {fs_path}: {exc}") from exc
    if stat.S_ISREG(st.st_mode):
        return KIND_FILE
    if stat.S_ISDIR(st.st_mode) and not os.path.islink(fs_path):
        return KIND_DIRECTORY
    return None


def scan_dir(fs_path: str) -> List[Tuple[str, str, str]]:
    """Children of a directory as sorted (name, path, kind) triples.

    Entries that are neither regular files nor directories (sockets, FIFOs,
    devices, symlinked directories, dangling links) are left out.
    """
    try:
        with os.scandir(fs_path) as it:
            names = sorted(de.name for de in it)
    except OSError as exc:
        raise CarIOError(f"Cannot list {fs_path}: {exc}") from exc
    children = []
    for name in names:
        full = os.path.join(fs_path, name)
        kind = path_kind(full)
        if kind is None:
            continue
        children.append((entry_name(full), full, kind))
    return children
