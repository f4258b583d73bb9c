"""Copy a project tree under a new service name, rewriting names on the way."""

from __future__ import annotations

import logging
import os
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

_LOG = logging.getLogger(__name__)

TEMPLATE_MODULE = "github.com/openshift-online/rh-trex"
FILE_MODE = 0o777


@dataclass
class CloneOptions:
    """Where a new instance goes and what it is called."""

    name: str = "rh-trex"
    repo: str = "github.com/openshift-online"
    destination: str = "/tmp/clone-test"


def rename_content(content: str, name: str, repo: str) -> str:
    """Replace every spelling of the template's name with ``name``."""
    lower = name.lower()
    replacements = (
        (TEMPLATE_MODULE, f"{repo}/{lower}"),
        ("RHTrex", name),
        ("rh-trex", lower),
        ("rhtrex", lower),
        ("trex", lower),
        ("TRex", name),
    )
    for old, new in replacements:
        content = content.replace(old, new)
    return content


def destination_path(path: str, destination: str, name: str) -> str:
    """The target of a source path, with ``trex`` renamed anywhere in it."""
    return f"{destination}/{path}".replace("trex", name.lower())


def _is_git(path: str) -> bool:
    return path == ".git" or ".git/" in path


def _walk(root: Path, rel: str = ".") -> Iterator[tuple[str, bool]]:
    """Yield relative paths in lexical order, parents before children."""
    full = root if rel == "." else root / rel
    is_dir = stat.S_ISDIR(os.lstat(full).st_mode)
    if _is_git(rel):
        return
    yield rel, is_dir
    if is_dir:
        for entry in sorted(os.listdir(full)):
            yield from _walk(root, entry if rel == "." else f"{rel}/{entry}")


def _write(dest: str, data: bytes) -> int:
    if os.path.lexists(dest):
        os.remove(dest)
    fd = os.open(dest, os.O_APPEND | os.O_CREAT | os.O_RDWR, FILE_MODE)
    with os.fdopen(fd, "wb") as handle:
        written = handle.write(data)
        handle.flush()
        os.fsync(handle.fileno())
    return written


def clone_tree(source, options: CloneOptions) -> list[str]:
    """Copy ``source`` to ``options.destination`` renamed; return the files written."""
    root = Path(source)
    _LOG.info(
        "creating new TRex instance as %s in directory %s", options.name, options.destination
    )
    written_files: list[str] = []
    for rel, is_dir in _walk(root):
        dest = destination_path(rel, options.destination, options.name)
        if is_dir:
            if not os.path.exists(dest):
                _LOG.info("Directory does not exist, creating: %s", dest)
            os.makedirs(dest, mode=FILE_MODE, exist_ok=True)
            continue
        raw = (root / rel).read_bytes()
        content = raw.decode("utf-8", "surrogateescape")
        renamed = rename_content(content, options.name, options.repo)
        if renamed != content:
            _LOG.info("find/replace required for file: %s", rel)
        count = _write(dest, renamed.encode("utf-8", "surrogateescape"))
        _LOG.info("wrote %d bytes for file %s", count, dest)
        written_files.append(dest)
    return written_files