from __future__ import annotations

import fcntl
import os
import re
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

_LOCK_SUFFIX = ".lock"


def lock_path_for(path: Path) -> Path:
    """Sidecar lock of a store file: ``versions/v1.json`` -> ``versions/v1.json.lock``."""
    return path.with_name(path.name + _LOCK_SUFFIX)


@contextmanager
def locked_file(path: Path, *, blocking: bool = True) -> Iterator[None]:
    """Serialize access to one store file across processes.

    Version documents, project integration documents and version run markers
    each get their own sidecar, so holding a version's run lock never blocks
    record updates on that version.

    Raises:
        BlockingIOError: If *blocking* is false and another holder has the
            lock. ``FileInstallationStore.version_lock`` turns this into
            ``VersionLocked``.
    """
    lock_path = lock_path_for(path)
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    operation = fcntl.LOCK_EX if blocking else fcntl.LOCK_EX | fcntl.LOCK_NB
    fd = os.open(lock_path, os.O_RDWR | os.O_CREAT, 0o644)
    try:
        fcntl.flock(fd, operation)
        try:
            yield
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
    finally:
        os.close(fd)


def atomic_write_text(path: Path, content: str) -> None:
    """Replace a store document with a single rename.

    Readers holding no lock see either the previous document or the new one.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path: Path | None = None
    try:
        with tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
        ) as handle:
            tmp_path = Path(handle.name)
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        if tmp_path is not None:
            tmp_path.unlink(missing_ok=True)
        raise


def read_store_document(path: Path, label: str) -> str:
    """Raw text of a version, project or catalog document.

    Pydantic validation is left to the caller, which knows the model.

    Raises:
        FileNotFoundError: If the document does not exist.
        ValueError: If it is empty or not UTF-8.
    """
    try:
        raw = path.read_bytes()
    except FileNotFoundError:
        raise FileNotFoundError(f"{label} not found: {path}") from None
    if not raw.strip():
        raise ValueError(f"{label} at {path} is empty")
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise ValueError(f"{label} at {path} contains invalid UTF-8 data") from exc


def sanitize_identifier(value: str, *, label: str = "identifier") -> str:
    """Make an id safe to use as a single path component (max 128 chars)."""
    cleaned = value.strip()
    if not cleaned:
        raise ValueError(f"{label} must be non-empty")
    cleaned = re.sub(r"[^A-Za-z0-9._-]+", "-", cleaned).strip("-.")
    if not cleaned:
        raise ValueError(f"{label} contains no filesystem-safe characters")
    return cleaned[:128]
