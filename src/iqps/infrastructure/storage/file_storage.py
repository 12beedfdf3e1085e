from __future__ import annotations

import hashlib
import shutil
from pathlib import Path

from iqps.domain.errors import StorageError

_HASH_CHUNK = 8192


class LocalFileStorage:
    """Raw byte I/O on absolute paths of the local filesystem."""

    def read(self, path: Path) -> bytes:
        try:
            return Path(path).read_bytes()
        except OSError as exc:
            raise StorageError(f"Failed to read {path}: {exc}") from exc

    def write(self, path: Path, data: bytes) -> None:
        path = Path(path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as exc:
            raise StorageError(f"Failed to write {path}: {exc}") from exc

    def copy(self, src: Path, dst: Path) -> None:
        dst = Path(dst)
        try:
            dst.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(src, dst)
        except OSError as exc:
            raise StorageError(f"Failed to copy {src} to {dst}: {exc}") from exc

    def remove(self, path: Path) -> None:
        try:
            Path(path).unlink()
        except FileNotFoundError:
            return
        except OSError as exc:
            raise StorageError(f"Failed to remove {path}: {exc}") from exc

    def exists(self, path: Path) -> bool:
        return Path(path).is_file()


def sha256_file(path: Path) -> str:
    """Hex SHA-256 digest of a file, read in chunks."""
    hasher = hashlib.sha256()
    try:
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(_HASH_CHUNK), b""):
                hasher.update(chunk)
    except OSError as exc:
        raise StorageError(f"Failed to hash {path}: {exc}") from exc
    return hasher.hexdigest()
