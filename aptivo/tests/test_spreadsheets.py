"""
MCQ and exam-question spreadsheet imports.
"""
import io

import pytest
from openpyxl import Workbook
from sqlalchemy import select

from aptivo.orm.curriculum import Subject, Subtopic, Topic
from aptivo.orm.mcq import MCQ, Upload
from aptivo.services.spreadsheet_service import (
    SpreadsheetError, exam_correct_option, extract_correct_option, normalize_column, read_rows,
    validate_exam_rows, validate_file, validate_mcq_rows
)
from aptivo.tests.conftest import auth_headers

MCQ_HEADER = "Question,Option A,Option B,Option C,Option D,Correct Option,Explanation,Difficulty\n"


def csv_bytes(*lines: str) -> bytes:
    return "".join(lines).encode("utf-8")


class TestReading:

    def test_normalize_column(self):
        assert normalize_column(" Option  A ") == "option_a"
        assert normalize_column(None) == ""

    def test_csv_headers_are_normalised_and_blank_rows_dropped(self):
        rows = read_rows("bank.csv", csv_bytes(MCQ_HEADER, "What?,1,2,3,4,B,,easy\n", ",,,,,,,\n"))
        assert len(rows) == 1
        assert rows[0]["option_a"] == "1"
        assert rows[0]["correct_option"] == "B"

    def test_xlsx(self):
        workbook = Workbook()
        sheet = workbook.active
        sheet.append(["question", "option_a", "option_b", "option_c", "option_d", "correct_option"])
        sheet.append(["2+2?", 3, 4.0, 5, 6, "b"])
        buffer = io.BytesIO()
        workbook.save(buffer)

        rows = read_rows("bank.xlsx", buffer.getvalue())
        assert rows == [{
            "question": "2+2?", "option_a": "3", "option_b": "4",
            "option_c": "5", "option_d": "6", "correct_option": "b",
        }]

    def test_empty_file(self):
        with pytest.raises(SpreadsheetError):
            read_rows("bank.csv", csv_bytes(MCQ_HEADER))

    def test_corrupt_xlsx(self):
        with pytest.raises(SpreadsheetError):
            read_rows("bank.xlsx", b"definitely not a zip")

    def test_file_type_and_size(self):
        with pytest.raises(SpreadsheetError):
            validate_file("bank.pdf", 10)
        with pytest.raises(SpreadsheetError):
            validate_file("bank.csv", 50 * 1024 * 1024)
        validate_file("BANK.XLSX", 10)


class TestMCQValidation:

    @pytest.mark.parametrize("raw,expected", [
        ("B", "B"), ("b", "B"), ("Option c", "C"), (" d ", "D"), ("E", None), ("", None),
    ])
    def test_extract_correct_option(self, raw, expected):
        assert extract_correct_option(raw) == expected

    def test_missing_columns_reported_as_structure_error(self):
        valid, errors = validate_mcq_rows([{"question": "x"}])
        assert valid == []
        assert errors[0]["row"] == 0
        assert errors[0]["field"] == "structure"
        assert "option_a" in errors[0]["message"]

    def test_row_errors_and_defaults(self):
        rows = read_rows("bank.csv", csv_bytes(
            MCQ_HEADER,
            "Good,1,2,3,4,a,because,HARD\n",
            "No answer,1,2,3,4,Z,,\n",
            ",1,2,3,,C,,weird\n",
            "Defaulted,1,2,3,4,D,,weird\n",
        ))
        valid, errors = validate_mcq_rows(rows)

        assert [v["question"] for v in valid] == ["Good", "Defaulted"]
        assert valid[0]["difficulty"] == "hard"
        assert valid[0]["correct_option"] == "A"
        assert valid[1]["difficulty"] == "medium"

        assert {(e["row"], e["field"]) for e in errors} == {
            (3, "correct_option"), (4, "question"), (4, "option_d"),
        }

    def test_invalid_urls(self):
        rows = [{
            "question": "q", "option_a": "1", "option_b": "2", "option_c": "3", "option_d": "4",
            "correct_option": "A", "explanation_url": "ftp://nope",
        }]
        valid, errors = validate_mcq_rows(rows)
        assert valid == []
        assert errors[0]["field"] == "explanation_url"


class TestExamQuestionValidation:

    @pytest.mark.parametrize("raw,count,expected", [
        ("1", 4, "a"), ("B", 4, "b"), ("4", 3, None), ("x", 4, None), ("3", 3, "c"),
    ])
    def test_exam_correct_option(self, raw, count, expected):
        assert exam_correct_option(raw, count) == expected

    def test_rows_become_id_text_options(self):
        rows = [
            {"question": "Capital?", "option1": "Paris", "option2": "Rome", "option3": "",
             "option4": "", "correct_option": "2", "marks": "2"},
            {"question": "Broken", "option1": "Only one", "option2": "", "correct_option": "1"},
        ]
        valid, errors = validate_exam_rows(rows)
        assert valid[0]["options"] == [{"id": "a", "text": "Paris"}, {"id": "b", "text": "Rome"}]
        assert valid[0]["correct_answer"] == "b"
        assert valid[0]["marks"] == 2.0
        assert errors == [{"row": 3, "field": "options", "message": "At least two options are required"}]


class TestUploadRoute:

    async def _subtopic(self, db):
        subject = Subject(name="Physics")
        db.add(subject)
        await db.flush()
        topic = Topic(subject_id=subject.id, name="Motion")
        db.add(topic)
        await db.flush()
        subtopic = Subtopic(topic_id=topic.id, name="Velocity")
        db.add(subtopic)
        await db.flush()
        return subtopic

    async def test_partial_upload_keeps_valid_rows(self, client, db_session, super_admin):
        subtopic = await self._subtopic(db_session)
        content = csv_bytes(MCQ_HEADER, "v = d/t?,yes,no,maybe,never,A,,easy\n", "Bad,1,2,3,4,Q,,\n")

        response = await client.post(
            f"/api/subtopics/{subtopic.id}/mcqs/upload",
            files={"file": ("bank.csv", content, "text/csv")},
            headers=auth_headers(super_admin),
        )
        assert response.status_code == 200, response.text
        body = response.json()
        assert body["inserted"] == 1
        assert body["upload"]["status"] == "partial"
        assert body["upload"]["failed_rows"] == 1

        mcqs = (await db_session.execute(select(MCQ).where(MCQ.subtopic_id == subtopic.id))).scalars().all()
        assert [m.correct_option for m in mcqs] == ["A"]
        upload = (await db_session.execute(select(Upload))).scalar_one()
        assert upload.created_by == super_admin.id

    async def test_wrong_extension(self, client, db_session, super_admin):
        subtopic = await self._subtopic(db_session)
        response = await client.post(
            f"/api/subtopics/{subtopic.id}/mcqs/upload",
            files={"file": ("bank.txt", b"hello", "text/plain")},
            headers=auth_headers(super_admin),
        )
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_FILE"
