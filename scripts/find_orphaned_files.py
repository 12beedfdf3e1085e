#!/usr/bin/env python3
"""List paper files that no catalog row points at.

Uploads interrupted between the file write and the commit can leave such
files behind. Report only: nothing is deleted.

Usage:
    python scripts/find_orphaned_files.py [--db-url sqlite:///...] [--json]
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

# Ensure src/ is importable
SRC = Path(__file__).resolve().parents[1] / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from iqps.config import IqpsSettings  # noqa: E402
from iqps.infrastructure.storage.paths import PaperCategory, Paths  # noqa: E402
from iqps.infrastructure.stores.catalog_store import CatalogStore  # noqa: E402


def find_orphaned_files(store: CatalogStore, paths: Paths) -> list[str]:
    """Slugs of files in the uploaded directories with no catalog row."""
    referenced = store.list_filelinks(include_deleted=True)
    orphans: list[str] = []
    for category in (PaperCategory.UNAPPROVED, PaperCategory.APPROVED):
        directory = paths.directory(category)
        for path in sorted(directory.iterdir()):
            if not path.is_file():
                continue
            slug = paths.slug(path.name, category)
            if slug not in referenced:
                orphans.append(slug)
    return orphans


def main() -> int:
    parser = argparse.ArgumentParser(description="Report paper files without a catalog row")
    parser.add_argument("--db-url", default=None, help="overrides IQPS_DB_URL")
    parser.add_argument("--json", action="store_true")
    args = parser.parse_args()

    settings = IqpsSettings.from_env()
    store = CatalogStore(args.db_url or settings.db_url, auto_create_schema=False)
    paths = Paths(
        settings.static_files_url,
        settings.static_file_storage_location,
        settings.uploaded_qps_path,
        settings.library_qps_path,
    )
    try:
        orphans = find_orphaned_files(store, paths)
    finally:
        store.close()

    if args.json:
        print(json.dumps({"orphans": orphans, "count": len(orphans)}, indent=2))
    else:
        for slug in orphans:
            print(slug)
        print(f"{len(orphans)} orphaned file(s)", file=sys.stderr)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
