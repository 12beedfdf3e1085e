"""
Question paper domain models.

Contains:
- Semester / Exam: parsed paper fields sharing one parse/format interface
- ExamFilter: the exam restriction applied to search
- CatalogPaper: a catalog row as seen by the rest of the application
- UploadDetails / LibraryPaper / EditRequest: inputs to lifecycle transitions
- AuthContext: the authenticated identity of one request
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from pathlib import PurePosixPath
from typing import Any, ClassVar, Dict, FrozenSet, Iterable, List, Optional, Protocol, TypeVar

from iqps.domain.errors import ValidationError

T = TypeVar("T", bound="QPField")


class QPField(Protocol):
    """A paper field stored as a string and parsed into a richer value."""

    @classmethod
    def parse(cls: type[T], value: Optional[str]) -> T: ...

    def format(self) -> str: ...


class Semester(str, Enum):
    AUTUMN = "autumn"
    SPRING = "spring"
    # Wildcard for papers whose semester was never recorded. Not a parse error.
    UNKNOWN = ""

    @classmethod
    def parse(cls, value: Optional[str]) -> "Semester":
        text = (value or "").strip().lower()
        try:
            return cls(text)
        except ValueError:
            raise ValidationError(f"Error parsing semester: invalid value {value!r}.") from None

    def format(self) -> str:
        return self.value

    def __str__(self) -> str:
        return self.value


class ExamKind(str, Enum):
    MIDSEM = "midsem"
    ENDSEM = "endsem"
    CLASS_TEST = "ct"
    UNKNOWN = ""


_CT_RE = re.compile(r"^ct(\d*)$")


@dataclass(frozen=True)
class Exam:
    """
    Exam type of a paper.

    `Exam.class_test(None)` is a class test with an unknown number and matches
    any class test in a filter; `Exam.class_test(3)` is class test 3.
    """

    kind: ExamKind
    number: Optional[int] = None

    MIDSEM: ClassVar["Exam"]
    ENDSEM: ClassVar["Exam"]
    UNKNOWN: ClassVar["Exam"]

    @classmethod
    def class_test(cls, number: Optional[int] = None) -> "Exam":
        return cls(ExamKind.CLASS_TEST, number)

    @classmethod
    def parse(cls, value: Optional[str]) -> "Exam":
        text = (value or "").strip().lower()
        if text == "midsem":
            return cls.MIDSEM
        if text == "endsem":
            return cls.ENDSEM
        if not text:
            return cls.UNKNOWN
        match = _CT_RE.match(text)
        if match:
            digits = match.group(1)
            return cls.class_test(int(digits) if digits else None)
        if text.startswith("ct"):
            raise ValidationError("Error parsing exam: invalid class test number.")
        raise ValidationError(f"Error parsing exam: unknown exam type {value!r}.")

    @property
    def is_class_test(self) -> bool:
        return self.kind is ExamKind.CLASS_TEST

    def format(self) -> str:
        if self.kind is ExamKind.CLASS_TEST and self.number is not None:
            return f"ct{self.number}"
        return self.kind.value

    def __str__(self) -> str:
        return self.format()


Exam.MIDSEM = Exam(ExamKind.MIDSEM)
Exam.ENDSEM = Exam(ExamKind.ENDSEM)
Exam.UNKNOWN = Exam(ExamKind.UNKNOWN)


@dataclass(frozen=True)
class ExamFilter:
    """
    Exam restriction for search.

    An empty filter is unrestricted. Papers whose exam is unknown always pass,
    whatever the filter says.
    """

    exams: FrozenSet[str] = frozenset()
    all_class_tests: bool = False

    @classmethod
    def unrestricted(cls) -> "ExamFilter":
        return cls()

    @classmethod
    def exact(cls, exam: Exam) -> "ExamFilter":
        if exam.kind is ExamKind.UNKNOWN:
            return cls()
        if exam.is_class_test and exam.number is None:
            return cls.any_class_test()
        return cls(exams=frozenset({exam.format()}))

    @classmethod
    def any_class_test(cls) -> "ExamFilter":
        return cls(all_class_tests=True)

    @classmethod
    def midsem_or_endsem(cls) -> "ExamFilter":
        return cls(exams=frozenset({Exam.MIDSEM.format(), Exam.ENDSEM.format()}))

    @classmethod
    def parse(cls, value: Optional[str]) -> "ExamFilter":
        """Parse `midsem,endsem,ct` style query values."""
        exams: set[str] = set()
        any_ct = False
        for part in (value or "").split(","):
            if not part.strip():
                continue
            exam = Exam.parse(part)
            if exam.kind is ExamKind.UNKNOWN:
                continue
            if exam.is_class_test and exam.number is None:
                any_ct = True
            else:
                exams.add(exam.format())
        return cls(exams=frozenset(exams), all_class_tests=any_ct)

    @property
    def is_unrestricted(self) -> bool:
        return not self.exams and not self.all_class_tests

    def matches(self, exam: Exam) -> bool:
        if self.is_unrestricted or exam.kind is ExamKind.UNKNOWN:
            return True
        if self.all_class_tests and exam.is_class_test:
            return True
        return exam.format() in self.exams

    def format(self) -> str:
        parts = sorted(self.exams)
        if self.all_class_tests:
            parts.append("ct")
        return ",".join(parts)


@dataclass
class CatalogPaper:
    """A catalog row. `filelink` is always a storage-relative slug here."""

    id: int
    course_code: str
    course_name: str
    year: int
    semester: Semester
    exam: Exam
    filelink: str
    from_library: bool = False
    approve_status: bool = False
    is_deleted: bool = False
    note: str = ""
    approved_by: Optional[str] = None
    upload_timestamp: Optional[datetime] = None

    def with_filelink(self, filelink: str) -> "CatalogPaper":
        return replace(self, filelink=filelink)

    def to_search_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "filelink": self.filelink,
            "from_library": self.from_library,
            "course_code": self.course_code,
            "course_name": self.course_name,
            "year": self.year,
            "semester": self.semester.format(),
            "exam": self.exam.format(),
            "note": self.note,
        }

    def to_admin_dict(self) -> Dict[str, Any]:
        data = self.to_search_dict()
        data.update(
            {
                "upload_timestamp": (
                    self.upload_timestamp.isoformat() if self.upload_timestamp else None
                ),
                "approve_status": self.approve_status,
                "approved_by": self.approved_by,
                "is_deleted": self.is_deleted,
            }
        )
        return data


@dataclass
class UploadDetails:
    """Metadata sent alongside one uploaded file."""

    course_code: str
    course_name: str
    year: int
    exam: Exam
    semester: Semester
    filename: str
    note: str = ""

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "UploadDetails":
        if not isinstance(raw, dict):
            raise ValidationError("File details must be JSON objects.")
        missing = [k for k in ("course_code", "course_name", "year", "filename") if k not in raw]
        if missing:
            raise ValidationError(f"Missing required field(s): {', '.join(missing)}.")
        try:
            year = int(raw["year"])
        except (TypeError, ValueError):
            raise ValidationError("`year` must be an integer.") from None
        return cls(
            course_code=str(raw["course_code"]).strip(),
            course_name=str(raw["course_name"]).strip(),
            year=year,
            exam=Exam.parse(raw.get("exam")),
            semester=Semester.parse(raw.get("semester")),
            filename=str(raw["filename"]),
            note=str(raw.get("note") or ""),
        )


@dataclass
class LibraryPaper:
    """One entry of a bulk-import manifest."""

    course_code: str
    course_name: str
    year: int
    exam: Exam
    semester: Semester
    filename: str
    approve_status: bool = True

    def __post_init__(self) -> None:
        name = self.filename
        # Joined onto the archive and library directories, so it must stay a bare name.
        if not name or name in (".", "..") or "\\" in name or PurePosixPath(name).name != name:
            raise ValidationError(f"Library filename must be a plain file name, got {name!r}.")

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "LibraryPaper":
        try:
            return cls(
                course_code=str(raw["course_code"]).strip(),
                course_name=str(raw["course_name"]).strip(),
                year=int(raw["year"]),
                exam=Exam.parse(raw.get("exam")),
                semester=Semester.parse(raw.get("semester")),
                filename=str(raw["filename"]),
                approve_status=bool(raw.get("approve_status", True)),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationError(f"Invalid library manifest entry: {exc}") from exc


@dataclass
class EditRequest:
    """Partial edit keyed by id. `None` means keep the current value."""

    id: int
    course_code: Optional[str] = None
    course_name: Optional[str] = None
    year: Optional[int] = None
    semester: Optional[str] = None
    exam: Optional[str] = None
    note: Optional[str] = None
    approve_status: Optional[bool] = None
    replace: List[int] = field(default_factory=list)

    @property
    def replace_ids(self) -> List[int]:
        return [i for i in dedupe_ids(int(v) for v in self.replace) if i != self.id]


@dataclass(frozen=True)
class AuthContext:
    """Identity of the caller, injected once per request by the auth layer."""

    username: str
    token: str = ""


def dedupe_ids(values: Iterable[int]) -> List[int]:
    seen: set[int] = set()
    out: List[int] = []
    for v in values:
        if v not in seen:
            seen.add(v)
            out.append(v)
    return out
