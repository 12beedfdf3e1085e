from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DDL, Boolean, DateTime, Index, Integer, String, Text, event, text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from iqps.domain.errors import ValidationError
from iqps.domain.qp import CatalogPaper, Exam, Semester


class Base(DeclarativeBase):
    pass


class PaperModel(Base):
    """One question paper. `filelink` holds a storage-relative slug."""

    __tablename__ = "iqps"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    course_code: Mapped[str] = mapped_column(Text, default="", server_default="")
    course_name: Mapped[str] = mapped_column(Text)
    year: Mapped[int] = mapped_column(Integer)
    semester: Mapped[str] = mapped_column(String(16), default="", server_default="")
    exam: Mapped[str] = mapped_column(String(16), default="", server_default="")
    note: Mapped[str] = mapped_column(Text, default="", server_default="")

    filelink: Mapped[str] = mapped_column(Text)
    from_library: Mapped[bool] = mapped_column(Boolean, default=False, server_default=text("false"))

    upload_timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    approve_status: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false")
    )
    approved_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, server_default=text("false"))

    __table_args__ = (
        Index("ix_iqps_course_code", "course_code"),
        Index("ix_iqps_status", "approve_status", "is_deleted"),
        # Two live papers never point at the same file.
        Index(
            "uq_iqps_live_filelink",
            "filelink",
            unique=True,
            postgresql_where=text("is_deleted = false"),
            sqlite_where=text("is_deleted = 0"),
        ),
        # Ids are never reused, even after the newest row is deleted.
        {"sqlite_autoincrement": True},
    )

    def to_paper(self) -> CatalogPaper:
        return CatalogPaper(
            id=self.id,
            course_code=self.course_code or "",
            course_name=self.course_name or "",
            year=int(self.year),
            semester=_parse_or_unknown(Semester, self.semester, Semester.UNKNOWN),
            exam=_parse_or_unknown(Exam, self.exam, Exam.UNKNOWN),
            filelink=self.filelink,
            from_library=bool(self.from_library),
            approve_status=bool(self.approve_status),
            is_deleted=bool(self.is_deleted),
            note=self.note or "",
            approved_by=self.approved_by,
            upload_timestamp=self.upload_timestamp,
        )


def _parse_or_unknown(kind, raw, unknown):
    # Rows written by older schema generations may hold values we no longer accept.
    try:
        return kind.parse(raw)
    except ValidationError:
        return unknown


# Search indexes only exist on PostgreSQL (pg_trgm + tsvector).
FTS_DOCUMENT_SQL = "to_tsvector('english', course_code || ' ' || course_name)"

event.listen(
    PaperModel.__table__,
    "before_create",
    DDL("CREATE EXTENSION IF NOT EXISTS pg_trgm").execute_if(dialect="postgresql"),
)
event.listen(
    PaperModel.__table__,
    "after_create",
    DDL(
        "CREATE INDEX IF NOT EXISTS ix_iqps_course_name_trgm "
        "ON iqps USING gin (course_name gin_trgm_ops)"
    ).execute_if(dialect="postgresql"),
)
event.listen(
    PaperModel.__table__,
    "after_create",
    DDL(
        f"CREATE INDEX IF NOT EXISTS ix_iqps_fts_course_details ON iqps USING gin (({FTS_DOCUMENT_SQL}))"
    ).execute_if(dialect="postgresql"),
)
