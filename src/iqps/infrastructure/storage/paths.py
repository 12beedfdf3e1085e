"""
Paper path resolution.

A "slug" is the storage-relative part of a paper's location, e.g.
`iqps/uploaded/approved/12_CS10001_PDS_2023_autumn_midsem.pdf`. Only slugs
are persisted in the catalog. Prepending the static files URL gives the
public URL sent to clients; prepending the static files storage location
gives the absolute path used for file I/O.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from enum import Enum
from pathlib import Path, PurePath, PurePosixPath
from urllib.parse import urljoin, urlsplit

from iqps.domain.errors import ConfigError, InvalidURL

# Characters allowed unescaped in a URL path (RFC 3986 unreserved + sub-delims + ':@/').
_URL_PATH_SAFE_RE = re.compile(r"^[A-Za-z0-9\-._~!$&'()*+,;=:@/%]*$")
_SEPARATOR_RE = re.compile(r"[\s\-]+")
_UNSAFE_CHAR_RE = re.compile(r"[^A-Za-z0-9_-]")


class PaperCategory(str, Enum):
    """A category of papers, which is also the directory they are stored in."""

    UNAPPROVED = "unapproved"
    APPROVED = "approved"
    # Papers scraped from the library archive
    LIBRARY = "library"


@dataclass(frozen=True)
class PathTriad:
    unapproved: PurePath
    approved: PurePath
    library: PurePath

    def get(self, category: PaperCategory) -> PurePath:
        return getattr(self, category.value)


def _relative(path: str | PurePosixPath) -> PurePosixPath:
    # Configured relative paths are usually written as `/iqps/uploaded`
    return PurePosixPath(str(path).lstrip("/"))


class Paths:
    """
    All the roots needed to build a paper's slug, absolute path or URL.

    Set once at startup and never mutated afterwards.
    """

    def __init__(
        self,
        static_files_url: str,
        static_file_storage_location: str | Path,
        uploaded_qps_relative_path: str | PurePosixPath,
        library_qps_relative_path: str | PurePosixPath,
    ) -> None:
        parsed = urlsplit(static_files_url or "")
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ConfigError(f"Invalid static files URL: {static_files_url!r}")

        storage_root = Path(static_file_storage_location).expanduser().resolve()
        uploaded = _relative(uploaded_qps_relative_path)

        self._slugs = PathTriad(
            unapproved=uploaded / "unapproved",
            approved=uploaded / "approved",
            library=_relative(library_qps_relative_path),
        )
        self._system = PathTriad(
            unapproved=storage_root / self._slugs.unapproved,
            approved=storage_root / self._slugs.approved,
            library=storage_root / self._slugs.library,
        )

        uploaded_root = storage_root / uploaded
        if not uploaded_root.is_dir():
            raise ConfigError(f"Path for uploaded papers does not exist: {uploaded_root}")
        library_root = Path(self._system.library)
        if not library_root.is_dir():
            raise ConfigError(f"Path for library papers does not exist: {library_root}")

        for category in (PaperCategory.UNAPPROVED, PaperCategory.APPROVED):
            Path(self._system.get(category)).mkdir(exist_ok=True)

        self._static_files_url = static_files_url if static_files_url.endswith("/") else f"{static_files_url}/"
        self._storage_root = storage_root

    @property
    def static_files_url(self) -> str:
        return self._static_files_url

    @property
    def storage_root(self) -> Path:
        return self._storage_root

    def directory(self, category: PaperCategory) -> Path:
        return Path(self._system.get(category))

    def slug(self, filename: str, category: PaperCategory) -> str:
        """Slug for `filename` in the given category. Never touches the disk."""
        return str(self._slugs.get(category) / filename)

    def absolute_path(self, filename: str, category: PaperCategory) -> Path:
        return self.directory(category) / filename

    def path_from_slug(self, slug: str) -> Path:
        return self._storage_root / _relative(slug)

    def url_from_slug(self, slug: str) -> str:
        relative = str(_relative(slug))
        if not _URL_PATH_SAFE_RE.match(relative):
            raise InvalidURL(f"Slug cannot be used in a URL: {slug!r}")
        return urljoin(self._static_files_url, relative)

    def url(self, filename: str, category: PaperCategory) -> str:
        return self.url_from_slug(self.slug(filename, category))

    @staticmethod
    def sanitize(raw_name: str) -> str:
        """
        Make a string safe for use as a filename and in a URL.

        Accented letters are transliterated to their ASCII base ("Mécanique"
        becomes "Mecanique") because slugs must be URL-safe without escaping.
        Path separators become hyphens, runs of whitespace/hyphens collapse to
        one hyphen, and anything other than ASCII letters, digits, `-` and `_`
        is dropped, which includes letters of non-Latin scripts. Deterministic,
        so re-deriving a name from unchanged paper fields gives back the same
        file name.
        """
        text = unicodedata.normalize("NFKD", raw_name).encode("ascii", "ignore").decode("ascii")
        text = text.replace("/", "-").replace("\\", "-")
        parts = (_UNSAFE_CHAR_RE.sub("", part) for part in _SEPARATOR_RE.split(text))
        return "-".join(part for part in parts if part)
