"""
Exam Attempt State Machine

Timers are never ticked by the server. Every read or write of an attempt
first calls `reconcile(now)`, which replays what the clock implies since the
last access:

- an active section whose own timer ran out is locked and the next open
  section becomes active, starting at the moment the previous one expired
  (several expiries can be resolved in one call)
- finishing the last section finalises the attempt
- when the exam's total time is up the attempt is auto-submitted, or flagged
  late when the exam allows continuing after time up

State Flow: in_progress → completed (student submit) | auto_submitted (timer)
"""
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

from aptivo.errors import InvalidStateError, ErrorCode
from aptivo.orm.exam import (
    AttemptStatus, ExamAttempt, ExamQuestion, ExamSection, QuestionType, UniversityExam
)

logger = logging.getLogger(__name__)

# (seconds left, message); checked most urgent first
WARNING_THRESHOLDS = [
    (60, "1 minute remaining"),
    (600, "10 minutes remaining"),
]


class InvalidTransitionError(InvalidStateError):
    """Raised when an attempt is asked to move to a state it cannot reach."""

    def __init__(self, current: AttemptStatus, target: AttemptStatus):
        super().__init__(
            f"Invalid transition: {current.value} → {target.value}",
            code=ErrorCode.ALREADY_COMPLETED,
        )


@dataclass
class TimerSnapshot:
    time_left: int
    section_time_left: Optional[int]
    time_up: bool
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "time_left": self.time_left,
            "section_time_left": self.section_time_left,
            "time_up": self.time_up,
            "warnings": self.warnings,
        }


def warnings_for(seconds_left: int) -> List[str]:
    for threshold, message in WARNING_THRESHOLDS:
        if seconds_left <= threshold:
            return [message]
    return []


class ExamAttemptMachine:
    """
    Drives one ExamAttempt against its exam and ordered sections.

    The machine only mutates the attempt row; scoring and persistence are the
    caller's job (see services/exam_attempt_service.py).
    """

    TRANSITIONS = {
        AttemptStatus.in_progress: [AttemptStatus.completed, AttemptStatus.auto_submitted],
        AttemptStatus.completed: [],
        AttemptStatus.auto_submitted: [],
    }

    def __init__(self, exam: UniversityExam, sections: Iterable[ExamSection], attempt: ExamAttempt):
        self.exam = exam
        self.sections = sorted(sections, key=lambda s: (s.order_index, s.id))
        self.attempt = attempt

    # ----------------------------------------------------------- lookups

    @property
    def locked_ids(self) -> List[int]:
        return [int(i) for i in (self.attempt.completed_section_ids or [])]

    def section(self, section_id: Optional[int]) -> Optional[ExamSection]:
        for s in self.sections:
            if s.id == section_id:
                return s
        return None

    @property
    def active_section(self) -> Optional[ExamSection]:
        return self.section(self.attempt.active_section_id)

    def is_locked(self, section_id: int) -> bool:
        return section_id in self.locked_ids

    def next_open_section(self, after: Optional[ExamSection] = None) -> Optional[ExamSection]:
        """First unlocked section after ``after`` in order, wrapping to earlier ones."""
        candidates = self.sections
        if after is not None and after in self.sections:
            pos = self.sections.index(after)
            candidates = self.sections[pos + 1:] + self.sections[:pos]
        for s in candidates:
            if not self.is_locked(s.id) and s.id != self.attempt.active_section_id:
                return s
        return None

    # ----------------------------------------------------------- clocks

    @property
    def deadline(self) -> datetime:
        return self.attempt.start_time + timedelta(minutes=self.exam.total_duration)

    def time_left(self, now: datetime) -> int:
        return max(0, int((self.deadline - now).total_seconds()))

    def section_spent(self, section_id: int, now: datetime) -> int:
        banked = int((self.attempt.section_elapsed or {}).get(str(section_id), 0))
        if section_id == self.attempt.active_section_id and self.attempt.section_started_at:
            banked += max(0, int((now - self.attempt.section_started_at).total_seconds()))
        return banked

    def section_time_left(self, now: datetime) -> Optional[int]:
        active = self.active_section
        if active is None or not active.section_duration:
            return None
        return max(0, active.section_duration * 60 - self.section_spent(active.id, now))

    def snapshot(self, now: datetime) -> TimerSnapshot:
        left = self.time_left(now)
        return TimerSnapshot(
            time_left=left,
            section_time_left=self.section_time_left(now),
            time_up=left <= 0,
            warnings=warnings_for(left) if not self.attempt.is_finished else [],
        )

    # ----------------------------------------------------------- transitions

    def can_transition(self, target: AttemptStatus) -> bool:
        return target in self.TRANSITIONS.get(self.attempt.status, [])

    def start(self, now: datetime) -> None:
        """Enter the first section. Called once for a new attempt."""
        first = self.sections[0] if self.sections else None
        self.attempt.start_time = now
        self.attempt.section_elapsed = {}
        self.attempt.completed_section_ids = []
        self.attempt.active_section_id = first.id if first else None
        self.attempt.section_started_at = now if first else None

    def _bank_active(self, at: datetime) -> None:
        active_id = self.attempt.active_section_id
        if active_id is None:
            return
        spent = self.section_spent(active_id, at)
        elapsed = dict(self.attempt.section_elapsed or {})
        elapsed[str(active_id)] = spent
        self.attempt.section_elapsed = elapsed
        self.attempt.section_started_at = at

    def select_section(self, section_id: int, now: datetime) -> ExamSection:
        self.ensure_open()
        target = self.section(section_id)
        if target is None:
            raise InvalidStateError("Section does not belong to this exam")
        if self.is_locked(section_id):
            raise InvalidStateError("This section is locked", code=ErrorCode.SECTION_LOCKED)
        if section_id != self.attempt.active_section_id:
            self._bank_active(now)
            self.attempt.active_section_id = section_id
            self.attempt.section_started_at = now
        return target

    def finish_section(self, now: datetime) -> Optional[ExamSection]:
        """
        Lock the active section and move to the next open one.
        Returns the new active section, or None when no open section is left
        (the caller then finalises).
        """
        self.ensure_open()
        active = self.active_section
        if active is None:
            return None

        self._bank_active(now)
        locked = self.locked_ids
        if active.id not in locked:
            locked.append(active.id)
        self.attempt.completed_section_ids = locked

        nxt = self.next_open_section(active)
        if nxt is None:
            self.attempt.active_section_id = None
            self.attempt.section_started_at = None
            return None

        self.attempt.active_section_id = nxt.id
        self.attempt.section_started_at = now
        logger.info(f"Attempt {self.attempt.id}: section {active.id} finished, now in {nxt.id}")
        return nxt

    def finalize(self, status: AttemptStatus, at: datetime) -> None:
        if not self.can_transition(status):
            raise InvalidTransitionError(self.attempt.status, status)
        if self.attempt.active_section_id is not None:
            self._bank_active(at)
        self.attempt.status = status
        self.attempt.end_time = at
        self.attempt.active_section_id = None
        self.attempt.section_started_at = None
        logger.info(f"Attempt {self.attempt.id} finalised as {status.value}")

    def ensure_open(self) -> None:
        if self.attempt.is_finished:
            raise InvalidStateError("This attempt has already been submitted", code=ErrorCode.ALREADY_COMPLETED)

    def answers_frozen(self, now: datetime) -> bool:
        """Time is up and the exam neither continues late nor auto-submits."""
        return self.time_left(now) <= 0 and not self.attempt.is_late

    # ----------------------------------------------------------- reconcile

    def reconcile(self, now: datetime) -> List[str]:
        """
        Apply every timer expiry due by ``now``. Returns event names for logging:
        ``section_expired:<id>``, ``late``, ``auto_submitted``.
        """
        events: List[str] = []
        if self.attempt.is_finished:
            return events

        # Sections first, each expiring at its own moment. Late attempts keep
        # running, so their sections go on expiring past the deadline.
        runs_late = self.exam.allow_continue_after_time_up
        while True:
            active = self.active_section
            if active is None or not active.section_duration:
                break
            limit = active.section_duration * 60
            spent = self.section_spent(active.id, now)
            if spent < limit:
                break
            expired_at = now - timedelta(seconds=spent - limit)
            if expired_at > self.deadline and not runs_late:
                break
            events.append(f"section_expired:{active.id}")
            if self.finish_section(expired_at) is None:
                self.finalize(AttemptStatus.auto_submitted, expired_at)
                events.append("auto_submitted")
                return events

        if self.time_left(now) <= 0:
            if self.exam.allow_continue_after_time_up:
                if not self.attempt.is_late:
                    self.attempt.is_late = True
                    events.append("late")
            elif self.exam.auto_submit:
                self.finalize(AttemptStatus.auto_submitted, min(now, self.deadline))
                events.append("auto_submitted")

        if events:
            logger.info(f"Attempt {self.attempt.id} reconciled: {events}")
        return events


# ================= SCORING =================


def is_answered(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip() != ""
    if isinstance(value, (list, tuple)):
        return len(value) > 0
    return True


def canonical_answer(value: Any, question_type: Optional[QuestionType] = None) -> str:
    """
    Comparable form of an answer. Multi-select answers ignore order; text
    answers ignore surrounding whitespace; everything else compares as JSON.
    """
    if isinstance(value, (list, tuple)):
        items = [str(v).strip() for v in value]
        if question_type == QuestionType.mcq_multiple:
            items = sorted(items)
        return json.dumps(items)
    if isinstance(value, bool):
        return json.dumps(str(value).lower())
    if isinstance(value, (int, float)):
        return json.dumps(str(value))
    if isinstance(value, str):
        return json.dumps(value.strip())
    return json.dumps(value, sort_keys=True)


def is_correct(question: ExamQuestion, answer: Any) -> bool:
    if not is_answered(answer) or question.correct_answer is None:
        return False
    return canonical_answer(answer, question.question_type) == \
        canonical_answer(question.correct_answer, question.question_type)


def question_marks(question: ExamQuestion, section: Optional[ExamSection]) -> float:
    if question.marks:
        return float(question.marks)
    if section is not None and section.default_marks_per_question:
        return float(section.default_marks_per_question)
    return 1.0


def question_penalty(exam: UniversityExam, section: Optional[ExamSection]) -> float:
    if section is not None and section.negative_marking is not None:
        return float(section.negative_marking)
    return float(exam.negative_marking or 0)


def score_attempt(
    exam: UniversityExam,
    sections: Iterable[ExamSection],
    questions: Iterable[ExamQuestion],
    answers: Dict[int, Any],
) -> Tuple[float, float]:
    """
    Returns ``(score, total_marks)``.

    A correct answer earns the question's marks (question marks, else the
    section default, else 1); a wrong non-empty answer loses the penalty
    (section negative marking when set, else the exam's). Unanswered
    questions score 0. The score never goes below 0.
    """
    by_id = {s.id: s for s in sections}
    score = 0.0
    total = 0.0
    for q in questions:
        section = by_id.get(q.section_id)
        marks = question_marks(q, section)
        total += marks
        answer = answers.get(q.id)
        if not is_answered(answer):
            continue
        if is_correct(q, answer):
            score += marks
        else:
            score -= question_penalty(exam, section)
    return max(0.0, round(score, 2)), round(total, 2)
