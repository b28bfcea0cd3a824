"""
aptivo/services/exam_service.py
Exam authoring for admins: exams, sections, passages, questions and results.

Institution admins author exams for their own institution only; super
admins may author university-wide exams (institution_id NULL).
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from aptivo.errors import BadRequestError, ForbiddenError, NotFoundError, ErrorCode
from aptivo.orm.exam import ExamAttempt, ExamQuestion, ExamSection, Passage, QuestionType, UniversityExam
from aptivo.orm.university import University
from aptivo.orm.user import User, UserRole

logger = logging.getLogger(__name__)

EXAM_FIELDS = (
    "name", "exam_type", "total_duration", "allow_continue_after_time_up", "allow_reattempt",
    "auto_submit", "result_release_setting", "negative_marking", "is_active", "start_time", "end_time",
)
SECTION_FIELDS = (
    "name", "num_questions", "weightage", "order_index", "section_duration",
    "negative_marking", "default_marks_per_question",
)
QUESTION_FIELDS = (
    "passage_id", "question_text", "question_type", "image_url", "options",
    "correct_answer", "marks", "explanation", "order_index",
)

# Section fields that may be explicitly cleared back to "inherit"
NULLABLE_SECTION_FIELDS = ("section_duration", "negative_marking")


def _apply(instance, data: Dict[str, Any], fields, nullable=()) -> None:
    for key in fields:
        if key not in data:
            continue
        if data[key] is None and key not in nullable:
            continue
        setattr(instance, key, data[key])


def ensure_exam_access(user: User, exam: UniversityExam) -> None:
    """Institution admins only see their institution's exams."""
    if user.role == UserRole.super_admin:
        return
    if exam.institution_id is None or exam.institution_id != user.institution_id:
        raise ForbiddenError("You can only manage your own institution's exams", code=ErrorCode.SCOPE_VIOLATION)


def validate_question(data: Dict[str, Any]) -> None:
    """
    Choice questions need at least two ``{"id", "text"}`` options and an
    answer that names one of them (a list of them for mcq_multiple).
    """
    qtype = data.get("question_type") or QuestionType.mcq_single
    qtype = QuestionType(qtype)
    answer = data.get("correct_answer")

    if qtype == QuestionType.short_answer:
        if answer is not None and not isinstance(answer, str):
            raise BadRequestError("Short answer questions need a text answer")
        return

    options = data.get("options") or []
    if qtype == QuestionType.true_false and not options:
        options = [{"id": "true", "text": "True"}, {"id": "false", "text": "False"}]
        data["options"] = options
    if len(options) < 2:
        raise BadRequestError("At least two options are required")
    ids = []
    for option in options:
        if not isinstance(option, dict) or not option.get("id") or option.get("text") is None:
            raise BadRequestError('Each option needs an "id" and a "text"')
        ids.append(str(option["id"]))

    if answer is None:
        return
    if qtype == QuestionType.mcq_multiple:
        if not isinstance(answer, list) or not answer:
            raise BadRequestError("Multiple choice questions need a list of correct option ids")
        unknown = [a for a in answer if str(a) not in ids]
    else:
        unknown = [] if str(answer) in ids else [answer]
    if unknown:
        raise BadRequestError(f"Correct answer does not match any option: {unknown[0]}")


class ExamService:
    def __init__(self, db: AsyncSession, user: User):
        self.db = db
        self.user = user

    # ---------- exams ----------

    async def get_exam(self, exam_id: int) -> UniversityExam:
        exam = await self.db.get(UniversityExam, exam_id)
        if exam is None:
            raise NotFoundError("Exam", exam_id, code=ErrorCode.EXAM_NOT_FOUND)
        ensure_exam_access(self.user, exam)
        return exam

    async def list_exams(self, university_id: Optional[int] = None) -> List[UniversityExam]:
        query = select(UniversityExam).order_by(UniversityExam.created_at.desc(), UniversityExam.id.desc())
        if university_id is not None:
            query = query.where(UniversityExam.university_id == university_id)
        if self.user.role != UserRole.super_admin:
            query = query.where(UniversityExam.institution_id == self.user.institution_id)
        return list((await self.db.execute(query)).scalars().all())

    async def create_exam(self, university_id: int, data: Dict[str, Any]) -> UniversityExam:
        if await self.db.get(University, university_id) is None:
            raise NotFoundError("University", university_id)
        self._check_window(data.get("start_time"), data.get("end_time"))

        exam = UniversityExam(
            university_id=university_id,
            institution_id=self.user.institution_id if self.user.role == UserRole.institution_admin else None,
            created_by=self.user.id,
        )
        _apply(exam, data, EXAM_FIELDS)
        self.db.add(exam)
        await self.db.commit()
        logger.info(f"Exam {exam.id} created for university {university_id} by user {self.user.id}")
        return exam

    async def update_exam(self, exam_id: int, data: Dict[str, Any]) -> UniversityExam:
        exam = await self.get_exam(exam_id)
        _apply(exam, data, EXAM_FIELDS, nullable=("start_time", "end_time"))
        self._check_window(exam.start_time, exam.end_time)
        await self.db.commit()
        return exam

    async def delete_exam(self, exam_id: int) -> None:
        exam = await self.get_exam(exam_id)
        await self.db.delete(exam)
        await self.db.commit()
        logger.info(f"Exam {exam_id} deleted by user {self.user.id}")

    @staticmethod
    def _check_window(start, end) -> None:
        if start and end and end <= start:
            raise BadRequestError("end_time must be after start_time")

    async def get_exam_detail(self, exam_id: int) -> Dict[str, Any]:
        exam = await self.get_exam(exam_id)
        sections = await self._sections(exam_id)
        questions = await self._questions([s.id for s in sections])
        passages = (await self.db.execute(
            select(Passage).where(Passage.exam_id == exam_id).order_by(Passage.id)
        )).scalars().all()

        by_section: Dict[int, List[Dict[str, Any]]] = {s.id: [] for s in sections}
        for q in questions:
            by_section[q.section_id].append(q.to_dict(include_answer=True))
        return {
            **exam.to_dict(),
            "sections": [{**s.to_dict(), "questions": by_section[s.id]} for s in sections],
            "passages": [p.to_dict() for p in passages],
        }

    async def _sections(self, exam_id: int) -> List[ExamSection]:
        return list((await self.db.execute(
            select(ExamSection)
            .where(ExamSection.exam_id == exam_id)
            .order_by(ExamSection.order_index, ExamSection.id)
        )).scalars().all())

    async def _questions(self, section_ids: List[int]) -> List[ExamQuestion]:
        if not section_ids:
            return []
        return list((await self.db.execute(
            select(ExamQuestion)
            .where(ExamQuestion.section_id.in_(section_ids))
            .order_by(ExamQuestion.order_index, ExamQuestion.id)
        )).scalars().all())

    # ---------- sections ----------

    async def get_section(self, section_id: int) -> ExamSection:
        section = await self.db.get(ExamSection, section_id)
        if section is None:
            raise NotFoundError("Section", section_id)
        await self.get_exam(section.exam_id)
        return section

    async def create_section(self, exam_id: int, data: Dict[str, Any]) -> ExamSection:
        await self.get_exam(exam_id)
        if "order_index" not in data or data["order_index"] is None:
            data["order_index"] = len(await self._sections(exam_id))
        section = ExamSection(exam_id=exam_id)
        _apply(section, data, SECTION_FIELDS)
        self.db.add(section)
        await self.db.commit()
        return section

    async def update_section(self, section_id: int, data: Dict[str, Any]) -> ExamSection:
        section = await self.get_section(section_id)
        _apply(section, data, SECTION_FIELDS, nullable=NULLABLE_SECTION_FIELDS)
        await self.db.commit()
        return section

    async def delete_section(self, section_id: int) -> None:
        section = await self.get_section(section_id)
        await self.db.delete(section)
        await self.db.commit()

    # ---------- passages ----------

    async def create_passage(self, exam_id: int, title: Optional[str], content: str) -> Passage:
        await self.get_exam(exam_id)
        passage = Passage(exam_id=exam_id, title=title, content=content)
        self.db.add(passage)
        await self.db.commit()
        return passage

    async def _get_passage(self, passage_id: int) -> Passage:
        passage = await self.db.get(Passage, passage_id)
        if passage is None:
            raise NotFoundError("Passage", passage_id)
        await self.get_exam(passage.exam_id)
        return passage

    async def update_passage(self, passage_id: int, data: Dict[str, Any]) -> Passage:
        passage = await self._get_passage(passage_id)
        _apply(passage, data, ("title", "content"))
        await self.db.commit()
        return passage

    async def delete_passage(self, passage_id: int) -> None:
        passage = await self._get_passage(passage_id)
        await self.db.delete(passage)
        await self.db.commit()

    # ---------- questions ----------

    async def _check_passage(self, section: ExamSection, passage_id: Optional[int]) -> None:
        if passage_id is None:
            return
        passage = await self.db.get(Passage, passage_id)
        if passage is None or passage.exam_id != section.exam_id:
            raise BadRequestError("Passage does not belong to this exam")

    async def create_question(self, section_id: int, data: Dict[str, Any]) -> ExamQuestion:
        section = await self.get_section(section_id)
        validate_question(data)
        await self._check_passage(section, data.get("passage_id"))
        if data.get("order_index") is None:
            data["order_index"] = section.num_questions or 0

        question = ExamQuestion(section_id=section_id)
        _apply(question, data, QUESTION_FIELDS)
        self.db.add(question)
        section.num_questions = (section.num_questions or 0) + 1
        await self.db.commit()
        return question

    async def _get_question(self, question_id: int) -> ExamQuestion:
        question = await self.db.get(ExamQuestion, question_id)
        if question is None:
            raise NotFoundError("Question", question_id)
        return question

    async def update_question(self, question_id: int, data: Dict[str, Any]) -> ExamQuestion:
        question = await self._get_question(question_id)
        section = await self.get_section(question.section_id)
        merged = {**question.to_dict(include_answer=True), **{k: v for k, v in data.items() if v is not None}}
        validate_question(merged)
        await self._check_passage(section, merged.get("passage_id"))
        if "options" in merged:
            data["options"] = merged["options"]
        _apply(question, data, QUESTION_FIELDS, nullable=("passage_id", "marks"))
        await self.db.commit()
        return question

    async def delete_question(self, question_id: int) -> None:
        question = await self._get_question(question_id)
        section = await self.get_section(question.section_id)
        await self.db.delete(question)
        section.num_questions = max(0, (section.num_questions or 0) - 1)
        await self.db.commit()

    # ---------- results ----------

    async def get_results(self, exam_id: int) -> List[Dict[str, Any]]:
        """Attempts with the student's name and email, newest first."""
        exam = await self.get_exam(exam_id)
        rows = (await self.db.execute(
            select(ExamAttempt, User.full_name, User.email)
            .join(User, User.id == ExamAttempt.student_id)
            .where(ExamAttempt.exam_id == exam.id)
            .order_by(ExamAttempt.start_time.desc(), ExamAttempt.id.desc())
        )).all()
        results = []
        for attempt, name, email in rows:
            percentage = None
            if attempt.total_marks:
                percentage = round((attempt.score or 0) / attempt.total_marks * 100, 2)
            results.append({
                **attempt.to_dict(),
                "student_name": name,
                "student_email": email,
                "percentage": percentage,
            })
        return results
