"""FileStoragePort: the four raw file operations the lifecycle depends on."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol, runtime_checkable


@runtime_checkable
class FileStoragePort(Protocol):
    """Byte-level storage on absolute paths. Implementations raise StorageError."""

    def read(self, path: Path) -> bytes: ...

    def write(self, path: Path, data: bytes) -> None: ...

    def copy(self, src: Path, dst: Path) -> None: ...

    def remove(self, path: Path) -> None: ...

    def exists(self, path: Path) -> bool: ...
