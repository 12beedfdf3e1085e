"""
LifecycleCoordinator: keeps catalog rows and paper files in agreement.

Every transition that touches both runs in one catalog transaction and
follows the same order: database write, file operation, commit. A failed
file operation rolls the transaction back; a commit that fails after a file
was written removes that file again. Filesystems are not transactional, so
nothing else is attempted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Optional, Sequence

from iqps.application.ports.storage_port import FileStoragePort
from iqps.domain.errors import IqpsError, NotFoundError, StorageError, ValidationError
from iqps.domain.qp import (
    AuthContext,
    CatalogPaper,
    EditRequest,
    Exam,
    LibraryPaper,
    Semester,
    UploadDetails,
)
from iqps.infrastructure.storage.file_storage import sha256_file
from iqps.infrastructure.storage.paths import PaperCategory, Paths
from iqps.infrastructure.stores.catalog_store import PLACEHOLDER_PREFIX, CatalogStore, CatalogTransaction
from iqps.utils.logging_config import LogFiles, Logger

logger = logging.getLogger(__name__)

MAX_FILE_SIZE = 10 << 20  # 10 MiB
DEFAULT_MAX_UPLOAD_LIMIT = 10
PDF_CONTENT_TYPE = "application/pdf"


@dataclass
class UploadFile:
    """One file part of an upload request."""

    filename: str
    data: bytes
    content_type: Optional[str] = None


@dataclass
class UploadStatus:
    filename: str
    status: str
    message: str
    id: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.status == "success"

    def to_dict(self) -> Dict[str, Any]:
        return {"filename": self.filename, "status": self.status, "message": self.message}


@dataclass
class PermanentDeleteResult:
    paper: CatalogPaper
    file_removed: bool


@dataclass
class ImportOutcome:
    """What happened to one library paper during bulk import."""

    filename: str
    action: str  # "imported" | "skipped"
    id: Optional[int] = None
    flagged: bool = False
    reason: str = ""


@dataclass
class _FileEffect:
    """A file written during a transaction, removed again if the commit fails."""

    path: Path
    created: bool = field(default=True)


class LifecycleCoordinator:
    def __init__(
        self,
        store: CatalogStore,
        paths: Paths,
        storage: FileStoragePort,
        *,
        max_upload_limit: int = DEFAULT_MAX_UPLOAD_LIMIT,
        max_file_size: int = MAX_FILE_SIZE,
    ):
        self._store = store
        self._paths = paths
        self._storage = storage
        self._max_upload_limit = max_upload_limit
        self._max_file_size = max_file_size

    @property
    def paths(self) -> Paths:
        return self._paths

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    def upload(
        self,
        files: Sequence[UploadFile],
        details: Sequence[Dict[str, Any]],
    ) -> List[UploadStatus]:
        """
        Store a batch of uploaded papers as unapproved.

        Batch-level problems (too many files, files and details out of step)
        raise ValidationError. Everything else is reported per file, and one
        bad file never stops the rest of the batch.
        """
        if len(files) > self._max_upload_limit:
            raise ValidationError(
                f"Only upto {self._max_upload_limit} files can be uploaded. Found {len(files)}."
            )
        if len(files) != len(details):
            raise ValidationError("Number of files and file details array length do not match.")

        statuses: List[UploadStatus] = []
        for upload_file, raw in zip(files, details):
            name = upload_file.filename
            if isinstance(raw, dict) and raw.get("filename"):
                name = str(raw["filename"])
            statuses.append(self._upload_one(upload_file, raw, name))

        ok = sum(1 for s in statuses if s.ok)
        Logger.info(f"upload batch: {ok}/{len(statuses)} stored", file=LogFiles.LIFECYCLE)
        return statuses

    def _upload_one(self, upload_file: UploadFile, raw: Dict[str, Any], name: str) -> UploadStatus:
        if len(upload_file.data) > self._max_file_size:
            return UploadStatus(
                name,
                "error",
                f"File size too big. Only files upto {self._max_file_size >> 20} MiB are allowed.",
            )
        if not upload_file.content_type:
            return UploadStatus(
                name, "error", "`content-type` header not found. File type could not be determined."
            )
        if upload_file.content_type.split(";")[0].strip().lower() != PDF_CONTENT_TYPE:
            return UploadStatus(name, "error", "Only PDFs are supported.")

        try:
            details = UploadDetails.from_dict(raw)
            paper_id = self.store_upload(details, upload_file.data)
        except ValidationError as exc:
            return UploadStatus(name, "error", str(exc))
        except IqpsError as exc:
            Logger.exception(f"upload of {name!r} failed", exc, file=LogFiles.ERROR)
            return UploadStatus(name, "error", exc.public_message)
        return UploadStatus(name, "success", "Successfully uploaded file.", id=paper_id)

    def store_upload(self, details: UploadDetails, data: bytes) -> int:
        """Insert an unapproved paper and write its file. Returns the new id."""
        with self._store.begin() as tx:
            paper_id = tx.insert_placeholder(
                course_code=details.course_code,
                course_name=details.course_name,
                year=details.year,
                semester=details.semester,
                exam=details.exam,
                note=details.note,
            )
            slug = self._paths.slug(f"{paper_id}.pdf", PaperCategory.UNAPPROVED)
            tx.update_filelink(paper_id, slug)

            path = self._paths.path_from_slug(slug)
            self._storage.write(path, data)
            self._commit_or_compensate(tx, _FileEffect(path))

        Logger.info(f"paper {paper_id} uploaded to {slug}", file=LogFiles.LIFECYCLE)
        return paper_id

    # ------------------------------------------------------------------
    # Edit / approve
    # ------------------------------------------------------------------

    def edit(self, request: EditRequest, auth: AuthContext) -> CatalogPaper:
        """
        Apply a partial edit and re-file the paper when its filelink changes.

        Uploaded papers live at `approved/<sanitized details>.pdf` once
        approved and at `unapproved/<id>.pdf` otherwise. Library papers keep
        their filelink. Ids in `request.replace` are soft-deleted in the same
        transaction.
        """
        if not auth.username:
            raise ValidationError("An authenticated username is required to edit papers.")

        with self._store.begin() as tx:
            current = tx.get(request.id)
            if current is None:
                raise NotFoundError(f"Paper {request.id} not found.")

            updated = self._apply_edit(current, request, auth)
            tx.update_paper(updated)

            for replace_id in request.replace_ids:
                if not tx.soft_delete(replace_id):
                    logger.info("Replaced paper %s was already gone", replace_id)

            effect: Optional[_FileEffect] = None
            if updated.filelink != current.filelink:
                src = self._paths.path_from_slug(current.filelink)
                dst = self._paths.path_from_slug(updated.filelink)
                existed = self._storage.exists(dst)
                # Raises StorageError; leaving the block rolls the edit back.
                self._storage.copy(src, dst)
                effect = _FileEffect(dst, created=not existed)

            self._commit_or_compensate(tx, effect)

        Logger.info(
            f"paper {updated.id} edited by {auth.username}: approved={updated.approve_status} "
            f"filelink={updated.filelink} replaced={request.replace_ids}",
            file=LogFiles.LIFECYCLE,
        )
        return updated

    def _apply_edit(self, current: CatalogPaper, request: EditRequest, auth: AuthContext) -> CatalogPaper:
        course_code = request.course_code if request.course_code is not None else current.course_code
        course_name = request.course_name if request.course_name is not None else current.course_name
        year = int(request.year) if request.year is not None else current.year
        semester = Semester.parse(request.semester) if request.semester is not None else current.semester
        exam = Exam.parse(request.exam) if request.exam is not None else current.exam
        note = request.note if request.note is not None else current.note
        approve_status = (
            request.approve_status if request.approve_status is not None else current.approve_status
        )

        if current.from_library:
            filelink = current.filelink
        elif approve_status:
            filelink = self.approved_slug(current.id, course_code, course_name, year, semester, exam)
        else:
            filelink = self._paths.slug(f"{current.id}.pdf", PaperCategory.UNAPPROVED)

        return CatalogPaper(
            id=current.id,
            course_code=course_code,
            course_name=course_name,
            year=year,
            semester=semester,
            exam=exam,
            filelink=filelink,
            from_library=current.from_library,
            approve_status=approve_status,
            is_deleted=False,
            note=note,
            approved_by=auth.username if approve_status else current.approved_by,
            upload_timestamp=current.upload_timestamp,
        )

    def approved_slug(
        self,
        paper_id: int,
        course_code: str,
        course_name: str,
        year: int,
        semester: Semester,
        exam: Exam,
    ) -> str:
        name = Paths.sanitize(f"{paper_id}_{course_code}_{course_name}_{year}_{semester}_{exam}")
        return self._paths.slug(f"{name}.pdf", PaperCategory.APPROVED)

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def soft_delete(self, paper_id: int) -> bool:
        """Hide a paper. The file stays on disk so the paper can be recovered."""
        deleted = self._store.soft_delete(paper_id)
        if deleted:
            Logger.info(f"paper {paper_id} soft-deleted", file=LogFiles.LIFECYCLE)
        return deleted

    def permanent_delete(self, paper_id: int) -> PermanentDeleteResult:
        """
        Delete the row for good, then remove its file.

        The row deletion is committed first. File removal afterwards is best
        effort: a failure is logged and reported, the row stays deleted.
        """
        with self._store.begin() as tx:
            paper = tx.permanent_delete(paper_id)
            shared = tx.count_filelink_references(paper.filelink) > 0
            tx.commit()

        file_removed = False
        if paper.filelink.startswith(PLACEHOLDER_PREFIX) or shared:
            logger.info("Not removing file %s of paper %s", paper.filelink, paper_id)
        else:
            path = self._paths.path_from_slug(paper.filelink)
            try:
                self._storage.remove(path)
                file_removed = True
            except StorageError as exc:
                Logger.exception(
                    f"paper {paper_id} deleted but its file {path} could not be removed",
                    exc,
                    file=LogFiles.ERROR,
                )

        Logger.info(
            f"paper {paper_id} permanently deleted (file_removed={file_removed})",
            file=LogFiles.LIFECYCLE,
        )
        return PermanentDeleteResult(paper=paper, file_removed=file_removed)

    # ------------------------------------------------------------------
    # Library import
    # ------------------------------------------------------------------

    def import_library_paper(self, paper: LibraryPaper, source: Path) -> ImportOutcome:
        """
        Import one library paper from `source`.

        Skipped when an identical library paper (same metadata and file hash)
        is already catalogued. Any other metadata collision imports the paper
        unapproved so an admin can resolve it.
        """
        digest = sha256_file(source)
        approve_status = paper.approve_status
        flagged = False
        reason = ""

        similar = self._store.fetch_similar(
            paper.course_code,
            year=paper.year,
            semester=paper.semester,
            exam=paper.exam,
        )
        for other in similar:
            if other.from_library and self._same_file(other, digest):
                return ImportOutcome(
                    paper.filename, "skipped", id=other.id, reason=f"identical to paper {other.id}"
                )
        if similar and approve_status:
            other = similar[0]
            approve_status = False
            flagged = True
            if other.from_library:
                reason = f"different file for the same paper as library paper {other.id}"
            else:
                reason = f"collides with uploaded paper {other.id}"

        with self._store.begin() as tx:
            paper_id = tx.insert_placeholder(
                course_code=paper.course_code,
                course_name=paper.course_name,
                year=paper.year,
                semester=paper.semester,
                exam=paper.exam,
                from_library=True,
                approve_status=approve_status,
            )
            slug = self._paths.slug(self.library_filename(paper_id, paper.filename), PaperCategory.LIBRARY)
            tx.update_filelink(paper_id, slug)

            path = self._paths.path_from_slug(slug)
            self._storage.copy(source, path)
            self._commit_or_compensate(tx, _FileEffect(path))

        Logger.info(
            f"library paper {paper.filename!r} imported as {paper_id} (flagged={flagged})",
            file=LogFiles.IMPORT,
        )
        return ImportOutcome(paper.filename, "imported", id=paper_id, flagged=flagged, reason=reason)

    @staticmethod
    def library_filename(paper_id: int, filename: str) -> str:
        """`{id}_{sanitized stem}.pdf`, so the slug is always usable in a URL."""
        stem = Paths.sanitize(PurePosixPath(filename).stem) or "paper"
        return f"{paper_id}_{stem}.pdf"

    def _same_file(self, other: CatalogPaper, digest: str) -> bool:
        path = self._paths.path_from_slug(other.filelink)
        if not self._storage.exists(path):
            return False
        return sha256_file(path) == digest

    # ------------------------------------------------------------------

    def _commit_or_compensate(self, tx: CatalogTransaction, effect: Optional[_FileEffect]) -> None:
        try:
            tx.commit()
        except Exception:
            if effect is not None and effect.created:
                try:
                    self._storage.remove(effect.path)
                except StorageError as cleanup_exc:
                    Logger.exception(
                        f"commit failed and orphaned file {effect.path} could not be removed",
                        cleanup_exc,
                        file=LogFiles.ERROR,
                    )
            raise
