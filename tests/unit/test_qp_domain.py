from __future__ import annotations

import pytest

from iqps.domain.errors import ValidationError
from iqps.domain.qp import EditRequest, Exam, ExamFilter, ExamKind, LibraryPaper, Semester, UploadDetails


class TestSemester:
    def test_parse_known_values(self):
        assert Semester.parse("autumn") is Semester.AUTUMN
        assert Semester.parse(" Spring ") is Semester.SPRING

    def test_empty_is_unknown_not_an_error(self):
        assert Semester.parse("") is Semester.UNKNOWN
        assert Semester.parse(None) is Semester.UNKNOWN
        assert Semester.UNKNOWN.format() == ""

    def test_invalid_value(self):
        with pytest.raises(ValidationError):
            Semester.parse("summer")


class TestExam:
    def test_parse_and_format(self):
        assert Exam.parse("midsem") == Exam.MIDSEM
        assert Exam.parse("ENDSEM") == Exam.ENDSEM
        assert Exam.parse("ct3") == Exam.class_test(3)
        assert Exam.parse("ct") == Exam.class_test(None)
        assert Exam.parse("") == Exam.UNKNOWN
        assert Exam.class_test(3).format() == "ct3"
        assert Exam.class_test(None).format() == "ct"
        assert str(Exam.MIDSEM) == "midsem"

    def test_bad_class_test_number(self):
        with pytest.raises(ValidationError):
            Exam.parse("ctx")

    def test_unknown_exam_type(self):
        with pytest.raises(ValidationError):
            Exam.parse("quiz")


class TestExamFilter:
    def test_parse_comma_separated(self):
        f = ExamFilter.parse("midsem,endsem,ct")
        assert f.exams == frozenset({"midsem", "endsem"})
        assert f.all_class_tests is True

    def test_empty_is_unrestricted(self):
        assert ExamFilter.parse("").is_unrestricted
        assert ExamFilter.parse(None) == ExamFilter.unrestricted()

    def test_invalid_member(self):
        with pytest.raises(ValidationError):
            ExamFilter.parse("midsem,finals")

    def test_unknown_exam_always_matches(self):
        for f in (ExamFilter.exact(Exam.MIDSEM), ExamFilter.any_class_test(), ExamFilter.midsem_or_endsem()):
            assert f.matches(Exam.UNKNOWN)

    def test_class_test_matching(self):
        ct3 = Exam.class_test(3)
        assert ExamFilter.any_class_test().matches(ct3)
        assert not ExamFilter.exact(Exam.MIDSEM).matches(ct3)
        assert ExamFilter.exact(ct3).matches(ct3)
        assert not ExamFilter.exact(ct3).matches(Exam.class_test(2))

    def test_exact_constructors(self):
        assert ExamFilter.exact(Exam.class_test(None)) == ExamFilter.any_class_test()
        assert ExamFilter.exact(Exam.UNKNOWN).is_unrestricted
        assert ExamFilter.midsem_or_endsem().matches(Exam.ENDSEM)
        assert ExamFilter.midsem_or_endsem().format() == "endsem,midsem"

    def test_exam_kind_values(self):
        assert ExamKind.CLASS_TEST.value == "ct"


def test_edit_request_replace_ids_are_deduped_and_exclude_self():
    req = EditRequest(id=4, replace=[5, 4, 5, 6])
    assert req.replace_ids == [5, 6]


def test_upload_details_validation():
    details = UploadDetails.from_dict(
        {
            "course_code": " CS10001 ",
            "course_name": "Programming",
            "year": "2023",
            "exam": "ct1",
            "semester": "autumn",
            "filename": "a.pdf",
        }
    )
    assert details.course_code == "CS10001"
    assert details.year == 2023
    assert details.exam == Exam.class_test(1)

    with pytest.raises(ValidationError):
        UploadDetails.from_dict({"course_code": "CS10001"})
    with pytest.raises(ValidationError):
        UploadDetails.from_dict(
            {"course_code": "X", "course_name": "Y", "year": "twenty", "filename": "a.pdf"}
        )


def test_library_paper_filename_must_be_a_bare_name():
    entry = {
        "course_code": "EE10001",
        "course_name": "Basic Electrical",
        "year": 2018,
        "exam": "endsem",
        "semester": "autumn",
        "filename": "ee_2018.pdf",
    }
    assert LibraryPaper.from_dict(entry).filename == "ee_2018.pdf"

    for bad in ("/../../../escaped.pdf", "qp/ee.pdf", r"..\ee.pdf", ".."):
        with pytest.raises(ValidationError):
            LibraryPaper.from_dict({**entry, "filename": bad})
