"""Domain types and the error taxonomy."""

from .errors import (
    AuthError,
    ConfigError,
    ConsistencyError,
    InvalidURL,
    IqpsError,
    NotFoundError,
    SearchUnavailableError,
    StorageError,
    StoreBusyError,
    ValidationError,
)
from .qp import (
    AuthContext,
    CatalogPaper,
    EditRequest,
    Exam,
    ExamFilter,
    ExamKind,
    LibraryPaper,
    Semester,
    UploadDetails,
)

__all__ = [
    "AuthContext",
    "AuthError",
    "CatalogPaper",
    "ConfigError",
    "ConsistencyError",
    "EditRequest",
    "Exam",
    "ExamFilter",
    "ExamKind",
    "InvalidURL",
    "IqpsError",
    "LibraryPaper",
    "NotFoundError",
    "SearchUnavailableError",
    "Semester",
    "StorageError",
    "StoreBusyError",
    "UploadDetails",
    "ValidationError",
]
