"""Atomic artifact writes: a target file is either the old version or the new one."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path


class ArtifactWriteError(OSError):
    """An output artifact could not be written."""

    def __init__(self, path: Path, cause: BaseException) -> None:
        self.path = path
        self.cause = cause
        super().__init__(f"cannot write {path}: {cause}")


def write_artifact(path: Path, content: str) -> Path:
    """Write ``content`` to ``path`` via a temporary file in the same directory.

    The temporary file is renamed over the target only after it has been fully
    written and flushed, and is removed on every failure path.
    """
    tmp_name: str | None = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
        tmp_name = None
    except OSError as e:
        raise ArtifactWriteError(path, e) from e
    finally:
        if tmp_name is not None:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
    return path
