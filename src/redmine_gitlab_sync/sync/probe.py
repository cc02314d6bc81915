"""Filesystem access used by the repository linker."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol


class FilesystemProbe(Protocol):
    def glob(self, root: str, pattern: str) -> list[str]: ...

    def mtime(self, path: str) -> float: ...

    def exists(self, path: str) -> bool: ...

    def is_dir(self, path: str) -> bool: ...


class LocalFilesystemProbe:
    """:class:`FilesystemProbe` over the local disk.

    ``glob`` returns absolute path strings.  ``mtime`` raises ``OSError``
    for a missing path; the linker treats that as "not ready".
    """

    def glob(self, root: str, pattern: str) -> list[str]:
        base = Path(root)
        if not base.is_dir():
            return []
        return [str(p) for p in base.glob(pattern)]

    def mtime(self, path: str) -> float:
        return Path(path).stat().st_mtime

    def exists(self, path: str) -> bool:
        return Path(path).exists()

    def is_dir(self, path: str) -> bool:
        return Path(path).is_dir()
