from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterator, List, Mapping, Optional, Set
from uuid import uuid4

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from iqps.domain.errors import ConsistencyError, NotFoundError, SearchUnavailableError, StoreBusyError
from iqps.domain.qp import CatalogPaper, Exam, ExamFilter, Semester
from iqps.infrastructure.stores.models import Base, PaperModel
from iqps.infrastructure.stores.search_query import (
    CANDIDATE_CAP,
    RANK_DAMPING,
    build_search_statement,
)
from iqps.infrastructure.stores.sqlalchemy_db import (
    DEFAULT_POOL_SIZE,
    DEFAULT_POOL_TIMEOUT,
    SessionProvider,
    get_db_url,
)

PLACEHOLDER_PREFIX = "placeholder/"

_PAPER_COLUMNS = tuple(c.name for c in PaperModel.__table__.columns)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_placeholder_filelink() -> str:
    # Unique so the live-filelink index holds even while rows await finalization.
    return f"{PLACEHOLDER_PREFIX}{uuid4().hex}"


@dataclass
class RankedRow:
    paper: CatalogPaper
    score: float
    fuzzy_rank: Optional[int] = None
    full_text_rank: Optional[int] = None
    partial_rank: Optional[int] = None


def _paper_from_mapping(row: Mapping[str, Any]) -> CatalogPaper:
    return PaperModel(**{name: row[name] for name in _PAPER_COLUMNS}).to_paper()


@contextmanager
def _translate_errors() -> Iterator[None]:
    try:
        yield
    except PoolTimeoutError as exc:
        raise StoreBusyError() from exc
    except IntegrityError as exc:
        raise ConsistencyError(f"Catalog constraint violated: {exc.orig}") from exc


def _expect_single_row(rowcount: int, action: str, paper_id: int) -> None:
    if rowcount == 0:
        raise NotFoundError(f"Paper {paper_id} not found.")
    if rowcount > 1:
        raise ConsistencyError(f"{action} of paper {paper_id} affected {rowcount} rows.")


class CatalogTransaction:
    """
    One explicit database transaction over the catalog.

    Nothing is committed until `commit()` is called, which lets the caller
    perform a filesystem step between a write and its commit. Leaving the
    `with` block without committing rolls everything back.
    """

    def __init__(self, session: Session):
        self._session = session
        self._done = False

    def __enter__(self) -> "CatalogTransaction":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        try:
            if not self._done:
                self._session.rollback()
        finally:
            self._session.close()

    def get(self, paper_id: int, *, include_deleted: bool = False) -> Optional[CatalogPaper]:
        """Read a paper and lock its row until the transaction ends."""
        stmt = select(PaperModel).where(PaperModel.id == paper_id).with_for_update()
        if not include_deleted:
            stmt = stmt.where(PaperModel.is_deleted.is_(False))
        with _translate_errors():
            row = self._session.execute(stmt).scalar_one_or_none()
        return row.to_paper() if row else None

    def insert_placeholder(
        self,
        *,
        course_code: str,
        course_name: str,
        year: int,
        semester: Semester,
        exam: Exam,
        note: str = "",
        from_library: bool = False,
        approve_status: bool = False,
    ) -> int:
        """Insert a row whose filelink is a placeholder and return its new id."""
        row = PaperModel(
            course_code=course_code,
            course_name=course_name,
            year=year,
            semester=semester.format(),
            exam=exam.format(),
            note=note,
            filelink=new_placeholder_filelink(),
            from_library=from_library,
            upload_timestamp=_utcnow(),
            approve_status=approve_status,
            is_deleted=False,
        )
        with _translate_errors():
            self._session.add(row)
            self._session.flush()
        return int(row.id)

    def update_filelink(self, paper_id: int, filelink: str) -> None:
        stmt = (
            PaperModel.__table__.update()
            .where(PaperModel.id == paper_id)
            .values(filelink=filelink)
        )
        with _translate_errors():
            result = self._session.execute(stmt)
        _expect_single_row(result.rowcount, "Filelink update", paper_id)

    def update_paper(self, paper: CatalogPaper) -> None:
        """Write every mutable field of `paper` onto its live row."""
        stmt = (
            PaperModel.__table__.update()
            .where(PaperModel.id == paper.id, PaperModel.is_deleted.is_(False))
            .values(
                course_code=paper.course_code,
                course_name=paper.course_name,
                year=paper.year,
                semester=paper.semester.format(),
                exam=paper.exam.format(),
                note=paper.note,
                filelink=paper.filelink,
                approve_status=paper.approve_status,
                approved_by=paper.approved_by,
            )
        )
        with _translate_errors():
            result = self._session.execute(stmt)
        _expect_single_row(result.rowcount, "Edit", paper.id)

    def soft_delete(self, paper_id: int) -> bool:
        """
        Hide a user-uploaded paper. Library papers are never soft-deleted.

        True when exactly one row changed, False when none did (already
        deleted, library paper or unknown id).
        """
        stmt = (
            PaperModel.__table__.update()
            .where(
                PaperModel.id == paper_id,
                PaperModel.from_library.is_(False),
                PaperModel.is_deleted.is_(False),
            )
            .values(approve_status=False, is_deleted=True)
        )
        with _translate_errors():
            result = self._session.execute(stmt)
        if result.rowcount > 1:
            raise ConsistencyError(f"Soft delete of paper {paper_id} affected {result.rowcount} rows.")
        return result.rowcount == 1

    def permanent_delete(self, paper_id: int) -> CatalogPaper:
        """Delete the row outright and return what it held."""
        paper = self.get(paper_id, include_deleted=True)
        if paper is None:
            raise NotFoundError(f"Paper {paper_id} not found.")
        stmt = PaperModel.__table__.delete().where(PaperModel.id == paper_id)
        with _translate_errors():
            result = self._session.execute(stmt)
        _expect_single_row(result.rowcount, "Permanent delete", paper_id)
        return paper

    def count_filelink_references(self, filelink: str) -> int:
        """Rows (deleted or not) whose filelink is `filelink`."""
        stmt = select(func.count()).select_from(PaperModel).where(PaperModel.filelink == filelink)
        with _translate_errors():
            return int(self._session.execute(stmt).scalar_one())

    def commit(self) -> None:
        with _translate_errors():
            self._session.commit()
        self._done = True

    def rollback(self) -> None:
        self._session.rollback()
        self._done = True


class CatalogStore:
    """Relational catalog of question papers."""

    def __init__(
        self,
        db_url: Optional[str] = None,
        *,
        pool_size: int = DEFAULT_POOL_SIZE,
        pool_timeout: float = DEFAULT_POOL_TIMEOUT,
        auto_create_schema: bool = True,
    ):
        self.db_url = db_url or get_db_url()
        self._provider = SessionProvider(self.db_url, pool_size=pool_size, pool_timeout=pool_timeout)
        if auto_create_schema:
            Base.metadata.create_all(self._provider.engine)

    @property
    def dialect_name(self) -> str:
        return self._provider.dialect_name

    def begin(self) -> CatalogTransaction:
        return CatalogTransaction(self._provider.open_session())

    def fetch_by_id(self, paper_id: int, *, include_deleted: bool = False) -> Optional[CatalogPaper]:
        stmt = select(PaperModel).where(PaperModel.id == paper_id)
        if not include_deleted:
            stmt = stmt.where(PaperModel.is_deleted.is_(False))
        with self._provider.session() as session:
            row = session.execute(stmt).scalar_one_or_none()
            return row.to_paper() if row else None

    def fetch_unapproved(self) -> List[CatalogPaper]:
        """Moderation queue, oldest upload first."""
        stmt = (
            select(PaperModel)
            .where(PaperModel.approve_status.is_(False), PaperModel.is_deleted.is_(False))
            .order_by(PaperModel.upload_timestamp.asc(), PaperModel.id.asc())
        )
        with self._provider.session() as session:
            return [row.to_paper() for row in session.execute(stmt).scalars()]

    def count_unapproved(self) -> int:
        stmt = (
            select(func.count())
            .select_from(PaperModel)
            .where(PaperModel.approve_status.is_(False), PaperModel.is_deleted.is_(False))
        )
        with self._provider.session() as session:
            return int(session.execute(stmt).scalar_one())

    def fetch_similar(
        self,
        course_code: str,
        *,
        year: Optional[int] = None,
        course_name: Optional[str] = None,
        semester: Optional[Semester] = None,
        exam: Optional[Exam] = None,
    ) -> List[CatalogPaper]:
        """Live papers with this course code, matching every other field that is given."""
        stmt = select(PaperModel).where(
            PaperModel.course_code == course_code,
            PaperModel.is_deleted.is_(False),
        )
        if year is not None:
            stmt = stmt.where(PaperModel.year == year)
        if course_name is not None:
            stmt = stmt.where(PaperModel.course_name == course_name)
        if semester is not None:
            stmt = stmt.where(PaperModel.semester == semester.format())
        if exam is not None:
            stmt = stmt.where(PaperModel.exam == exam.format())
        stmt = stmt.order_by(PaperModel.id.asc())
        with self._provider.session() as session:
            return [row.to_paper() for row in session.execute(stmt).scalars()]

    def fetch_soft_deleted(self) -> List[CatalogPaper]:
        stmt = (
            select(PaperModel)
            .where(PaperModel.is_deleted.is_(True))
            .order_by(PaperModel.id.asc())
        )
        with self._provider.session() as session:
            return [row.to_paper() for row in session.execute(stmt).scalars()]

    def search(
        self,
        query: str,
        exam_filter: ExamFilter,
        *,
        damping: int = RANK_DAMPING,
        cap: int = CANDIDATE_CAP,
    ) -> List[RankedRow]:
        if self.dialect_name != "postgresql":
            raise SearchUnavailableError(
                f"Hybrid search needs PostgreSQL, the catalog runs on {self.dialect_name}."
            )
        stmt = build_search_statement(query, exam_filter, damping=damping, cap=cap)
        with self._provider.session() as session:
            rows = session.execute(stmt).mappings().all()
        return [
            RankedRow(
                paper=_paper_from_mapping(row),
                score=float(row["score"]),
                fuzzy_rank=row["fuzzy_rank"],
                full_text_rank=row["full_text_rank"],
                partial_rank=row["partial_rank"],
            )
            for row in rows
        ]

    def soft_delete(self, paper_id: int) -> bool:
        with self.begin() as tx:
            deleted = tx.soft_delete(paper_id)
            tx.commit()
        return deleted

    def list_filelinks(self, *, include_deleted: bool = True) -> Set[str]:
        stmt = select(PaperModel.filelink)
        if not include_deleted:
            stmt = stmt.where(PaperModel.is_deleted.is_(False))
        with self._provider.session() as session:
            return set(session.execute(stmt).scalars())

    def close(self) -> None:
        self._provider.dispose()
