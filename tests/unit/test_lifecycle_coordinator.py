from __future__ import annotations

from pathlib import Path

import pytest

from iqps.application.services.lifecycle_coordinator import LifecycleCoordinator, UploadFile
from iqps.domain.errors import ConsistencyError, NotFoundError, StorageError, ValidationError
from iqps.domain.qp import AuthContext, EditRequest, Exam, LibraryPaper, Semester
from iqps.infrastructure.storage.file_storage import LocalFileStorage
from iqps.infrastructure.storage.paths import PaperCategory, Paths
from iqps.infrastructure.stores.catalog_store import CatalogStore, CatalogTransaction

PDF = b"%PDF-1.4 test paper"
ADMIN = AuthContext(username="alice", token="t")


def _details(**overrides) -> dict:
    details = {
        "course_code": "CS10001",
        "course_name": "Programming and Data Structures",
        "year": 2023,
        "exam": "midsem",
        "semester": "autumn",
        "filename": "pds.pdf",
    }
    details.update(overrides)
    return details


def _pdf(name: str = "pds.pdf", data: bytes = PDF) -> UploadFile:
    return UploadFile(filename=name, data=data, content_type="application/pdf")


def _upload_one(coordinator: LifecycleCoordinator, **overrides) -> int:
    [status] = coordinator.upload([_pdf()], [_details(**overrides)])
    assert status.ok, status.message
    return status.id


class _FailingCopy(LocalFileStorage):
    def copy(self, src, dst):
        raise StorageError("disk full")


class _FailingWrite(LocalFileStorage):
    def write(self, path, data):
        raise StorageError("disk full")


class _FailingRemove(LocalFileStorage):
    def remove(self, path):
        raise StorageError("permission denied")


class TestUpload:
    def test_file_lands_at_id_named_unapproved_slug(self, coordinator, store, paths: Paths):
        paper_id = _upload_one(coordinator)
        paper = store.fetch_by_id(paper_id)

        assert paper.filelink == paths.slug(f"{paper_id}.pdf", PaperCategory.UNAPPROVED)
        assert paper.approve_status is False
        assert paths.path_from_slug(paper.filelink).read_bytes() == PDF

    def test_bad_files_do_not_stop_the_batch(self, coordinator, store):
        files = [
            _pdf("big.pdf", b"x" * ((10 << 20) + 1)),
            UploadFile(filename="notes.txt", data=b"hi", content_type="text/plain"),
            UploadFile(filename="mystery", data=PDF, content_type=None),
            _pdf("bad-exam.pdf"),
            _pdf("good.pdf"),
        ]
        details = [
            _details(filename="big.pdf"),
            _details(filename="notes.txt"),
            _details(filename="mystery"),
            _details(filename="bad-exam.pdf", exam="finals"),
            _details(filename="good.pdf"),
        ]
        statuses = coordinator.upload(files, details)

        assert [s.status for s in statuses] == ["error", "error", "error", "error", "success"]
        assert "10 MiB" in statuses[0].message
        assert statuses[1].message == "Only PDFs are supported."
        assert "content-type" in statuses[2].message
        assert "exam" in statuses[3].message
        assert [p.id for p in store.fetch_unapproved()] == [statuses[4].id]

    def test_too_many_files_is_batch_fatal(self, store, paths):
        coordinator = LifecycleCoordinator(store, paths, LocalFileStorage(), max_upload_limit=2)
        with pytest.raises(ValidationError):
            coordinator.upload([_pdf()] * 3, [_details()] * 3)
        assert store.fetch_unapproved() == []

    def test_details_count_mismatch_is_batch_fatal(self, coordinator, store):
        with pytest.raises(ValidationError):
            coordinator.upload([_pdf(), _pdf()], [_details()])
        assert store.fetch_unapproved() == []

    def test_failed_write_leaves_no_row(self, store, paths):
        coordinator = LifecycleCoordinator(store, paths, _FailingWrite())
        [status] = coordinator.upload([_pdf()], [_details()])
        assert status.status == "error"
        assert store.fetch_unapproved() == []

    def test_failed_commit_removes_written_file(self, coordinator, store, paths, monkeypatch):
        def _boom(self):
            raise ConsistencyError("commit failed")

        monkeypatch.setattr(CatalogTransaction, "commit", _boom)
        [status] = coordinator.upload([_pdf()], [_details()])

        assert status.status == "error"
        assert list(paths.directory(PaperCategory.UNAPPROVED).iterdir()) == []
        assert store.fetch_unapproved() == []


class TestEdit:
    def test_approval_refiles_under_approved(self, coordinator, store, paths):
        paper_id = _upload_one(coordinator)
        old_slug = store.fetch_by_id(paper_id).filelink

        edited = coordinator.edit(EditRequest(id=paper_id, approve_status=True), ADMIN)

        expected = paths.slug(
            f"{paper_id}_CS10001_Programming-and-Data-Structures_2023_autumn_midsem.pdf",
            PaperCategory.APPROVED,
        )
        assert edited.filelink == expected
        row = store.fetch_by_id(paper_id)
        assert row.approve_status is True
        assert row.approved_by == "alice"
        assert row.filelink == expected
        assert paths.path_from_slug(expected).read_bytes() == PDF
        # The old file is copied, not moved.
        assert paths.path_from_slug(old_slug).exists()

    def test_unchanged_fields_keep_current_values(self, coordinator, store):
        paper_id = _upload_one(coordinator, note="scan is blurry")
        coordinator.edit(EditRequest(id=paper_id, course_name="PDS"), ADMIN)

        row = store.fetch_by_id(paper_id)
        assert row.course_name == "PDS"
        assert row.course_code == "CS10001"
        assert row.semester is Semester.AUTUMN
        assert row.exam == Exam.MIDSEM
        assert row.note == "scan is blurry"
        assert row.approved_by is None

    def test_failed_copy_rolls_back(self, coordinator, store, paths):
        paper_id = _upload_one(coordinator)
        before = store.fetch_by_id(paper_id)

        failing = LifecycleCoordinator(store, paths, _FailingCopy())
        with pytest.raises(StorageError):
            failing.edit(EditRequest(id=paper_id, approve_status=True, year=2024), ADMIN)

        after = store.fetch_by_id(paper_id)
        assert after.filelink == before.filelink
        assert after.approve_status is False
        assert after.year == 2023
        assert list(paths.directory(PaperCategory.APPROVED).iterdir()) == []

    def test_unapproving_moves_back_to_unapproved_slug(self, coordinator, store, paths):
        paper_id = _upload_one(coordinator)
        coordinator.edit(EditRequest(id=paper_id, approve_status=True), ADMIN)
        edited = coordinator.edit(EditRequest(id=paper_id, approve_status=False), ADMIN)

        assert edited.filelink == paths.slug(f"{paper_id}.pdf", PaperCategory.UNAPPROVED)
        assert store.fetch_by_id(paper_id).approved_by == "alice"

    def test_library_paper_keeps_filelink(self, coordinator, store, paths, tmp_path):
        source = tmp_path / "lib.pdf"
        source.write_bytes(PDF)
        outcome = coordinator.import_library_paper(
            LibraryPaper("MA10001", "Maths", 2019, Exam.ENDSEM, Semester.SPRING, "lib.pdf"), source
        )
        before = store.fetch_by_id(outcome.id).filelink

        edited = coordinator.edit(EditRequest(id=outcome.id, course_name="Mathematics I"), ADMIN)
        assert edited.filelink == before

    def test_replace_soft_deletes_in_same_transaction(self, coordinator, store):
        keep = _upload_one(coordinator)
        dup = _upload_one(coordinator)

        coordinator.edit(EditRequest(id=keep, approve_status=True, replace=[dup]), ADMIN)

        assert store.fetch_by_id(dup) is None
        assert store.fetch_by_id(dup, include_deleted=True).is_deleted is True

    def test_failed_copy_also_undoes_replace(self, coordinator, store, paths):
        keep = _upload_one(coordinator)
        dup = _upload_one(coordinator)

        failing = LifecycleCoordinator(store, paths, _FailingCopy())
        with pytest.raises(StorageError):
            failing.edit(EditRequest(id=keep, approve_status=True, replace=[dup]), ADMIN)
        assert store.fetch_by_id(dup) is not None

    def test_missing_or_deleted_paper(self, coordinator, store):
        with pytest.raises(NotFoundError):
            coordinator.edit(EditRequest(id=404), ADMIN)

        paper_id = _upload_one(coordinator)
        coordinator.soft_delete(paper_id)
        with pytest.raises(NotFoundError):
            coordinator.edit(EditRequest(id=paper_id, approve_status=True), ADMIN)

    def test_invalid_exam_is_validation_error(self, coordinator):
        paper_id = _upload_one(coordinator)
        with pytest.raises(ValidationError):
            coordinator.edit(EditRequest(id=paper_id, exam="finals"), ADMIN)


def test_live_filelinks_stay_unique(coordinator, store):
    ids = [_upload_one(coordinator) for _ in range(3)]
    for paper_id in ids:
        coordinator.edit(EditRequest(id=paper_id, approve_status=True), ADMIN)

    links = [store.fetch_by_id(i).filelink for i in ids]
    assert len(set(links)) == len(links)


class TestDelete:
    def test_soft_delete_keeps_file(self, coordinator, store, paths):
        paper_id = _upload_one(coordinator)
        slug = store.fetch_by_id(paper_id).filelink

        assert coordinator.soft_delete(paper_id) is True
        assert coordinator.soft_delete(paper_id) is False
        assert paths.path_from_slug(slug).exists()

    def test_permanent_delete_removes_row_and_file(self, coordinator, store, paths):
        paper_id = _upload_one(coordinator)
        slug = store.fetch_by_id(paper_id).filelink
        coordinator.soft_delete(paper_id)

        result = coordinator.permanent_delete(paper_id)

        assert result.file_removed is True
        assert result.paper.id == paper_id
        assert store.fetch_by_id(paper_id, include_deleted=True) is None
        assert not paths.path_from_slug(slug).exists()

    def test_permanent_delete_keeps_row_deleted_when_file_removal_fails(self, coordinator, store, paths):
        paper_id = _upload_one(coordinator)
        slug = store.fetch_by_id(paper_id).filelink

        failing = LifecycleCoordinator(store, paths, _FailingRemove())
        result = failing.permanent_delete(paper_id)

        assert result.file_removed is False
        assert store.fetch_by_id(paper_id, include_deleted=True) is None
        assert paths.path_from_slug(slug).exists()

    def test_permanent_delete_of_missing_paper(self, coordinator):
        with pytest.raises(NotFoundError):
            coordinator.permanent_delete(31337)


class TestLibraryImport:
    def _paper(self, filename="qp1.pdf", approve_status=True) -> LibraryPaper:
        return LibraryPaper(
            course_code="EE10001",
            course_name="Basic Electrical",
            year=2018,
            exam=Exam.ENDSEM,
            semester=Semester.AUTUMN,
            filename=filename,
            approve_status=approve_status,
        )

    def _source(self, tmp_path: Path, name: str, data: bytes) -> Path:
        path = tmp_path / "src" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return path

    def test_import_files_under_library_slug(self, coordinator, store, paths, tmp_path):
        outcome = coordinator.import_library_paper(self._paper(), self._source(tmp_path, "qp1.pdf", PDF))

        row = store.fetch_by_id(outcome.id)
        assert outcome.action == "imported"
        assert row.from_library is True
        assert row.approve_status is True
        assert row.filelink == paths.slug(f"{outcome.id}_qp1.pdf", PaperCategory.LIBRARY)
        assert paths.path_from_slug(row.filelink).read_bytes() == PDF

    def test_importing_the_same_paper_twice_keeps_one_row(self, coordinator, store, tmp_path):
        source = self._source(tmp_path, "qp1.pdf", PDF)
        first = coordinator.import_library_paper(self._paper(), source)
        second = coordinator.import_library_paper(self._paper(), source)

        assert first.action == "imported"
        assert second.action == "skipped"
        assert second.id == first.id
        assert len(store.fetch_similar("EE10001")) == 1

    def test_different_file_for_same_metadata_is_flagged(self, coordinator, store, tmp_path):
        coordinator.import_library_paper(self._paper(), self._source(tmp_path, "a.pdf", PDF))
        other = coordinator.import_library_paper(
            self._paper("b.pdf"), self._source(tmp_path, "b.pdf", b"%PDF-1.4 another scan")
        )

        assert other.action == "imported"
        assert other.flagged is True
        assert store.fetch_by_id(other.id).approve_status is False

    def test_collision_with_uploaded_paper_is_flagged(self, coordinator, store, tmp_path):
        _upload_one(
            coordinator,
            course_code="EE10001",
            course_name="Basic Electrical",
            year=2018,
            exam="endsem",
            semester="autumn",
        )
        outcome = coordinator.import_library_paper(self._paper(), self._source(tmp_path, "qp1.pdf", PDF))

        assert outcome.flagged is True
        assert store.fetch_by_id(outcome.id).approve_status is False

    def test_failed_copy_leaves_no_row(self, store, paths, tmp_path):
        failing = LifecycleCoordinator(store, paths, _FailingCopy())
        with pytest.raises(StorageError):
            failing.import_library_paper(self._paper(), self._source(tmp_path, "qp1.pdf", PDF))
        assert store.fetch_similar("EE10001") == []

    def test_library_slug_is_sanitized(self, coordinator, store, paths, tmp_path):
        name = "CS10001 Programming ES 2023.pdf"
        outcome = coordinator.import_library_paper(self._paper(name), self._source(tmp_path, name, PDF))

        row = store.fetch_by_id(outcome.id)
        assert row.filelink == paths.slug(f"{outcome.id}_CS10001-Programming-ES-2023.pdf", PaperCategory.LIBRARY)
        assert paths.url_from_slug(row.filelink).endswith(f"/peqp/qp/{outcome.id}_CS10001-Programming-ES-2023.pdf")
        assert paths.path_from_slug(row.filelink).read_bytes() == PDF

    @pytest.mark.parametrize("name", ["/../../../escaped.pdf", "../escaped.pdf", "sub/qp1.pdf", "..", ""])
    def test_filenames_with_path_parts_are_rejected(self, coordinator, store, name):
        with pytest.raises(ValidationError):
            self._paper(name)
        assert store.fetch_similar("EE10001") == []
