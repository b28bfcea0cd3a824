"""
aptivo/services/spreadsheet_service.py
Spreadsheet imports: practice MCQs into a subtopic and exam questions
into a section.

Accepted formats are .xlsx (read with openpyxl) and .csv. Column headers are
normalised to lower_snake_case before validation, and rows are reported with
their spreadsheet row number (the header is row 1).
"""
import csv
import io
import logging
import re
import zipfile
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException
from sqlalchemy.ext.asyncio import AsyncSession

from aptivo.config import settings
from aptivo.errors import BadRequestError, NotFoundError, ErrorCode
from aptivo.orm.curriculum import Subtopic
from aptivo.orm.exam import ExamQuestion, ExamSection, QuestionType
from aptivo.orm.mcq import MCQ, Upload
from aptivo.services.activity_logger import log_activity, ActivityType

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = (".xlsx", ".csv")

REQUIRED_MCQ_COLUMNS = ["question", "option_a", "option_b", "option_c", "option_d", "correct_option"]
REQUIRED_EXAM_COLUMNS = ["question", "option1", "option2", "correct_option"]

DIFFICULTIES = ("easy", "medium", "hard")
EXAM_OPTION_IDS = ("a", "b", "c", "d")


class SpreadsheetError(BadRequestError):
    """The file itself is unusable (type, size, structure)."""

    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message, code=ErrorCode.INVALID_FILE, details=details)


# ================= READING =================


def normalize_column(name: Any) -> str:
    """'Option A ' -> 'option_a'"""
    return re.sub(r"\s+", "_", str(name or "").strip().lower())


def validate_file(file_name: str, size: int) -> None:
    lowered = (file_name or "").lower()
    if not lowered.endswith(ALLOWED_EXTENSIONS):
        raise SpreadsheetError("Invalid file type. Please upload an .xlsx or .csv file.")
    if size > settings.UPLOAD_MAX_BYTES:
        raise SpreadsheetError(
            f"File is too large. Maximum size is {settings.UPLOAD_MAX_BYTES // (1024 * 1024)}MB."
        )


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _read_xlsx(content: bytes) -> List[List[Any]]:
    workbook = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    try:
        sheet = workbook.worksheets[0]
        return [list(row) for row in sheet.iter_rows(values_only=True)]
    finally:
        workbook.close()


def _read_csv(content: bytes) -> List[List[Any]]:
    text = content.decode("utf-8-sig")
    return [row for row in csv.reader(io.StringIO(text))]


def read_rows(file_name: str, content: bytes) -> List[Dict[str, str]]:
    """
    Parse the first sheet into dicts keyed by normalised header.
    Fully blank rows are dropped.
    """
    try:
        if file_name.lower().endswith(".csv"):
            grid = _read_csv(content)
        else:
            grid = _read_xlsx(content)
    except (ValueError, KeyError, OSError, csv.Error, zipfile.BadZipFile, InvalidFileException) as e:
        logger.warning(f"Unreadable spreadsheet {file_name}: {e}")
        raise SpreadsheetError("Could not read the spreadsheet file") from e

    if not grid:
        raise SpreadsheetError("Excel file is empty")

    headers = [normalize_column(h) for h in grid[0]]
    rows = []
    for raw in grid[1:]:
        values = [_cell_text(v) for v in raw]
        if not any(values):
            continue
        rows.append({h: (values[i] if i < len(values) else "") for i, h in enumerate(headers) if h})

    if not rows:
        raise SpreadsheetError("Excel file is empty")
    return rows


def missing_columns(rows: List[Dict[str, str]], required: List[str]) -> List[str]:
    present = set(rows[0].keys()) if rows else set()
    return [c for c in required if c not in present]


# ================= MCQ VALIDATION =================


def extract_correct_option(value: str) -> Optional[str]:
    """First A-D letter of the upper-cased cell ('Option b' -> 'B')."""
    match = re.search(r"[A-D]", (value or "").upper())
    return match.group(0) if match else None


def is_valid_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def validate_mcq_rows(rows: List[Dict[str, str]]) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    """
    Split rows into valid MCQ payloads and error entries
    ``{"row": n, "field": name, "message": text}``.
    """
    missing = missing_columns(rows, REQUIRED_MCQ_COLUMNS)
    if missing:
        return [], [{
            "row": 0,
            "field": "structure",
            "message": f"Missing required columns: {', '.join(missing)}",
        }]

    valid: List[Dict[str, Any]] = []
    errors: List[Dict[str, Any]] = []

    for index, row in enumerate(rows):
        row_number = index + 2
        row_errors = []

        for field in ("question", "option_a", "option_b", "option_c", "option_d"):
            if not row.get(field):
                row_errors.append({"row": row_number, "field": field, "message": f"{field} is required"})

        raw_correct = row.get("correct_option", "")
        correct = extract_correct_option(raw_correct)
        if correct is None:
            row_errors.append({
                "row": row_number,
                "field": "correct_option",
                "message": f'Invalid correct option: "{raw_correct}". Must be A, B, C, or D.',
            })

        for field in ("image_url", "explanation_url"):
            value = row.get(field)
            if value and not is_valid_url(value):
                row_errors.append({"row": row_number, "field": field, "message": f"Invalid URL: {value}"})

        difficulty = (row.get("difficulty") or "medium").lower()
        if difficulty not in DIFFICULTIES:
            difficulty = "medium"

        if row_errors:
            errors.extend(row_errors)
            continue

        valid.append({
            "question": row["question"],
            "question_image_url": row.get("image_url") or None,
            "option_a": row["option_a"],
            "option_b": row["option_b"],
            "option_c": row["option_c"],
            "option_d": row["option_d"],
            "correct_option": correct,
            "explanation": row.get("explanation") or None,
            "explanation_url": row.get("explanation_url") or None,
            "difficulty": difficulty,
        })

    return valid, errors


# ================= EXAM QUESTION VALIDATION =================


def exam_correct_option(value: str, option_count: int) -> Optional[str]:
    """'2' or 'B' -> 'b', limited to the options that exist."""
    text = (value or "").strip().lower()
    if text.isdigit():
        index = int(text) - 1
    elif len(text) == 1 and text in EXAM_OPTION_IDS:
        index = EXAM_OPTION_IDS.index(text)
    else:
        return None
    if 0 <= index < option_count:
        return EXAM_OPTION_IDS[index]
    return None


def validate_exam_rows(rows: List[Dict[str, str]]) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    missing = missing_columns(rows, REQUIRED_EXAM_COLUMNS)
    if missing:
        return [], [{
            "row": 0,
            "field": "structure",
            "message": f"Missing required columns: {', '.join(missing)}",
        }]

    valid, errors = [], []
    for index, row in enumerate(rows):
        row_number = index + 2
        texts = [row.get(f"option{i}", "") for i in range(1, 5)]
        texts = [t for t in texts if t]
        options = [{"id": EXAM_OPTION_IDS[i], "text": t} for i, t in enumerate(texts)]

        if not row.get("question"):
            errors.append({"row": row_number, "field": "question", "message": "question is required"})
            continue
        if len(options) < 2:
            errors.append({"row": row_number, "field": "options", "message": "At least two options are required"})
            continue

        correct = exam_correct_option(row.get("correct_option", ""), len(options))
        if correct is None:
            errors.append({
                "row": row_number,
                "field": "correct_option",
                "message": f'Invalid correct option: "{row.get("correct_option", "")}"',
            })
            continue

        try:
            marks = float(row["marks"]) if row.get("marks") else None
        except ValueError:
            errors.append({"row": row_number, "field": "marks", "message": "marks must be a number"})
            continue

        valid.append({
            "question_text": row["question"],
            "options": options,
            "correct_answer": correct,
            "marks": marks,
            "explanation": row.get("explanation") or None,
        })
    return valid, errors


# ================= IMPORTS =================


class MCQUploadService:
    """Imports practice MCQs and exam questions from spreadsheets"""

    @classmethod
    async def upload_mcqs(
        cls,
        db: AsyncSession,
        subtopic_id: int,
        file_name: str,
        content: bytes,
        user_id: Optional[int],
    ) -> Dict[str, Any]:
        """
        Validate and insert MCQs. Valid rows are kept even when other rows
        fail; the Upload record ends ``completed``, ``partial`` or ``failed``.
        """
        validate_file(file_name, len(content))

        subtopic = await db.get(Subtopic, subtopic_id)
        if subtopic is None:
            raise NotFoundError("Subtopic", subtopic_id)

        rows = read_rows(file_name, content)
        valid, errors = validate_mcq_rows(rows)

        upload = Upload(
            upload_type="mcq_excel",
            file_name=file_name,
            subtopic_id=subtopic_id,
            status="processing",
            total_rows=len(rows),
            created_by=user_id,
        )
        db.add(upload)
        await db.flush()

        batch_size = settings.UPLOAD_BATCH_SIZE
        inserted = 0
        for start in range(0, len(valid), batch_size):
            batch = valid[start:start + batch_size]
            db.add_all([
                MCQ(subtopic_id=subtopic_id, upload_id=upload.id, created_by=user_id, **item)
                for item in batch
            ])
            await db.flush()
            inserted += len(batch)

        failed_rows = len({e["row"] for e in errors if e["row"] > 0})
        if any(e["row"] == 0 for e in errors):
            failed_rows = len(rows)

        upload.processed_rows = inserted
        upload.failed_rows = failed_rows
        upload.errors = errors[:200]
        if inserted == 0:
            upload.status = "failed"
        elif errors:
            upload.status = "partial"
        else:
            upload.status = "completed"

        if inserted:
            await log_activity(db, user_id, ActivityType.MCQ_UPLOAD, {
                "count": inserted,
                "subtopic_id": subtopic_id,
                "subject": subtopic.name,
            })

        await db.commit()
        logger.info(f"MCQ upload {upload.id}: {inserted} inserted, {failed_rows} failed rows")

        return {
            "success": inserted > 0,
            "upload": upload.to_dict(),
            "inserted": inserted,
            "errors": errors,
        }

    @classmethod
    async def upload_exam_questions(
        cls,
        db: AsyncSession,
        section: ExamSection,
        file_name: str,
        content: bytes,
    ) -> Dict[str, Any]:
        validate_file(file_name, len(content))
        rows = read_rows(file_name, content)
        valid, errors = validate_exam_rows(rows)

        next_order = section.num_questions or 0
        for offset, item in enumerate(valid):
            db.add(ExamQuestion(
                section_id=section.id,
                question_type=QuestionType.mcq_single,
                order_index=next_order + offset,
                **item,
            ))
        section.num_questions = next_order + len(valid)
        await db.commit()

        logger.info(f"Exam section {section.id}: {len(valid)} questions uploaded, {len(errors)} errors")
        return {"success": bool(valid), "inserted": len(valid), "errors": errors}
