"""
Bulk import of library papers.

Input is a JSON manifest (a list of entries with course_code, course_name,
year, exam, semester, filename and optionally approve_status) plus a
`.tar.gz` archive holding the PDFs under `qp/<filename>`. Papers are
imported one at a time, in manifest order, and the run stops at the first
failure so an operator can see exactly how far it got.
"""

from __future__ import annotations

import json
import logging
import tarfile
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from iqps.application.ports.notifier_port import NotifierPort, NullNotifier
from iqps.application.services.lifecycle_coordinator import ImportOutcome, LifecycleCoordinator
from iqps.domain.errors import IqpsError, ValidationError
from iqps.domain.qp import LibraryPaper
from iqps.utils.logging_config import LogFiles, Logger

logger = logging.getLogger(__name__)

ARCHIVE_PAPER_DIR = "qp"


@dataclass
class ImportReport:
    outcomes: List[ImportOutcome] = field(default_factory=list)
    failed_filename: Optional[str] = None
    error: Optional[str] = None

    @property
    def imported(self) -> List[int]:
        return [o.id for o in self.outcomes if o.action == "imported" and o.id is not None]

    @property
    def skipped(self) -> List[str]:
        return [o.filename for o in self.outcomes if o.action == "skipped"]

    @property
    def flagged(self) -> List[int]:
        return [o.id for o in self.outcomes if o.flagged and o.id is not None]

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "imported": self.imported,
            "skipped": self.skipped,
            "flagged": self.flagged,
            "failed_filename": self.failed_filename,
            "error": self.error,
        }


def load_manifest(manifest_path: Path) -> List[LibraryPaper]:
    try:
        raw = json.loads(Path(manifest_path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ValidationError(f"Could not read manifest {manifest_path}: {exc}") from exc
    if not isinstance(raw, list):
        raise ValidationError("The manifest must be a JSON list of papers.")
    return [LibraryPaper.from_dict(item) for item in raw]


def extract_archive(archive_path: Path, dest: Path) -> Path:
    """Unpack the archive into `dest` and return the directory holding the PDFs."""
    try:
        with tarfile.open(archive_path, "r:gz") as tar:
            tar.extractall(dest, filter="data")
    except (OSError, tarfile.TarError) as exc:
        raise ValidationError(f"Could not unpack archive {archive_path}: {exc}") from exc
    return dest / ARCHIVE_PAPER_DIR


class LibraryImportWorkflow:
    def __init__(self, coordinator: LifecycleCoordinator, notifier: Optional[NotifierPort] = None):
        self._coordinator = coordinator
        self._notifier = notifier or NullNotifier()

    def run_directory(self, papers: List[LibraryPaper], paper_dir: Path) -> ImportReport:
        report = ImportReport()
        for paper in papers:
            source = Path(paper_dir) / paper.filename
            try:
                if not source.is_file():
                    raise ValidationError(f"File {paper.filename!r} is missing from the archive.")
                outcome = self._coordinator.import_library_paper(paper, source)
            except IqpsError as exc:
                report.failed_filename = paper.filename
                report.error = str(exc)
                Logger.exception(f"library import stopped at {paper.filename!r}", exc, file=LogFiles.IMPORT)
                break
            report.outcomes.append(outcome)
            if outcome.action == "skipped":
                Logger.info(f"skipped {paper.filename!r}: {outcome.reason}", file=LogFiles.IMPORT)
            elif outcome.flagged:
                Logger.warning(
                    f"imported {paper.filename!r} as {outcome.id} pending review: {outcome.reason}",
                    file=LogFiles.IMPORT,
                )

        Logger.info(
            f"library import finished: imported={len(report.imported)} skipped={len(report.skipped)} "
            f"flagged={len(report.flagged)} failed={report.failed_filename or '-'}",
            file=LogFiles.IMPORT,
        )
        if report.imported:
            self._notifier.notify_imported(len(report.imported), len(report.flagged))
        return report

    def run(self, manifest_path: Path, archive_path: Path) -> ImportReport:
        papers = load_manifest(manifest_path)
        with tempfile.TemporaryDirectory(prefix="iqps-import-") as tmp:
            paper_dir = extract_archive(Path(archive_path), Path(tmp))
            return self.run_directory(papers, paper_dir)
