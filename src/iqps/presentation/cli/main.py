"""
CLI entry point: serve the API, create the schema, import library papers and
run ad-hoc searches.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Optional

from dotenv import find_dotenv, load_dotenv

from iqps.config import IqpsSettings
from iqps.domain.errors import IqpsError
from iqps.domain.qp import ExamFilter

load_dotenv(find_dotenv(usecwd=True), override=False)


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="iqps",
        description="IQPS - question paper search and moderation",
    )
    parser.add_argument("--version", action="store_true", help="print the version and exit")

    subparsers = parser.add_subparsers(dest="command", help="available commands")

    serve_parser = subparsers.add_parser("serve", help="run the HTTP API")
    serve_parser.add_argument("--host", default="0.0.0.0")
    serve_parser.add_argument("--port", type=int, default=None, help="defaults to IQPS_SERVER_PORT")

    subparsers.add_parser("init-db", help="create the catalog schema and search indexes")

    import_parser = subparsers.add_parser("import-library", help="bulk import library papers")
    import_parser.add_argument("--manifest", default="qp.json", help="JSON list of papers")
    import_parser.add_argument("--archive", default="qp.tar.gz", help="tar.gz with qp/<filename> PDFs")
    import_parser.add_argument("--json", action="store_true", help="print the report as JSON")

    search_parser = subparsers.add_parser("search", help="search approved papers")
    search_parser.add_argument("query")
    search_parser.add_argument("--exam", default="", help="e.g. midsem,endsem,ct")
    search_parser.add_argument("--json", action="store_true", help="print full JSON results")

    return parser


def run_cli(args: Optional[list] = None) -> int:
    parser = create_parser()
    parsed = parser.parse_args(args)

    if parsed.version:
        from iqps import __version__

        print(f"iqps v{__version__}")
        return 0

    if not parsed.command:
        parser.print_help()
        return 0

    try:
        settings = IqpsSettings.from_env()
        if parsed.command == "serve":
            return _run_serve(parsed, settings)
        if parsed.command == "init-db":
            return _run_init_db(settings)
        if parsed.command == "import-library":
            return _run_import_library(parsed, settings)
        if parsed.command == "search":
            return _run_search(parsed, settings)
        return 0
    except IqpsError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def _run_serve(parsed: argparse.Namespace, settings: IqpsSettings) -> int:
    import uvicorn

    uvicorn.run("iqps.api.main:app", host=parsed.host, port=parsed.port or settings.server_port)
    return 0


def _run_init_db(settings: IqpsSettings) -> int:
    from iqps.infrastructure.stores.catalog_store import CatalogStore

    store = CatalogStore(settings.db_url, auto_create_schema=True)
    print(f"Catalog schema ready ({store.dialect_name}).")
    store.close()
    return 0


def _run_import_library(parsed: argparse.Namespace, settings: IqpsSettings) -> int:
    from iqps.api.dependencies import build_services
    from iqps.application.workflows.library_import import LibraryImportWorkflow

    services = build_services(settings)
    try:
        workflow = LibraryImportWorkflow(services.coordinator, services.notifier)
        report = workflow.run(Path(parsed.manifest), Path(parsed.archive))
    finally:
        services.store.close()

    if parsed.json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        print(f"imported: {len(report.imported)}")
        print(f"skipped (already present): {len(report.skipped)}")
        print(f"flagged for review: {len(report.flagged)}")
        if not report.ok:
            print(f"stopped at {report.failed_filename}: {report.error}", file=sys.stderr)
    return 0 if report.ok else 1


def _run_search(parsed: argparse.Namespace, settings: IqpsSettings) -> int:
    from iqps.api.dependencies import build_services

    services = build_services(settings)
    try:
        hits = services.ranker.search(parsed.query, ExamFilter.parse(parsed.exam))
    finally:
        services.store.close()

    if parsed.json:
        print(json.dumps([h.to_dict() for h in hits], ensure_ascii=False, indent=2))
        return 0

    for hit in hits:
        p = hit.paper
        exam = p.exam.format() or "-"
        semester = p.semester.format() or "-"
        print(f"{hit.score:.4f}  {p.course_code} {p.course_name} {p.year} {semester} {exam}  {p.filelink}")
    print(f"{len(hits)} papers")
    return 0


if __name__ == "__main__":
    sys.exit(run_cli())
