"""Per-student CO attainment.

Only questions the student actually attempted count: a question with no mark
row, or with a NULL score, is left out of both the obtained and the maximum
totals. It is never scored as zero.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from .config import DEFAULT_TARGET_PERCENTAGE
from .models import Question
from .results import Attempted, NoResult, StudentCOAttainment
from .store import CourseSnapshot

logger = logging.getLogger(__name__)


def met_target(percentage: float, target: float | None) -> bool:
    if target is None:
        target = DEFAULT_TARGET_PERCENTAGE
    return percentage >= target


@dataclass
class _Tally:
    obtained: float = 0.0
    maximum: float = 0.0
    attempted: int = 0

    def add(self, outcome: Attempted) -> None:
        self.obtained += outcome.obtained
        self.maximum += outcome.max_marks
        self.attempted += 1


def _tally_attempted(
    snapshot: CourseSnapshot,
    student_id: int,
    questions: Iterable[Question],
) -> tuple[_Tally, dict[int, _Tally]]:
    """Totals over attempted questions, overall and per assessment."""
    overall = _Tally()
    by_assessment: dict[int, _Tally] = {}
    for question in questions:
        outcome = snapshot.mark_outcome(student_id, question)
        if not isinstance(outcome, Attempted):
            continue
        overall.add(outcome)
        by_assessment.setdefault(question.assessment_id, _Tally()).add(outcome)
    return overall, by_assessment


def _resolve(
    snapshot: CourseSnapshot,
    co_id: int,
    student_id: int,
    section_id: int | None,
) -> tuple[list[Question], NoResult | None]:
    course = snapshot.course
    if co_id not in snapshot.outcomes:
        return [], NoResult(f"CO {co_id} not found in course {course.code}")
    if student_id not in snapshot.students:
        return [], NoResult(f"student {student_id} is not enrolled in course {course.code}")

    questions = snapshot.questions_for_co(co_id, section_id)
    if not questions:
        co_code = snapshot.outcomes[co_id].code
        return [], NoResult(f"no questions mapped to {co_code} in course {course.code}")
    return questions, None


def calculate_student_co_attainment(
    snapshot: CourseSnapshot,
    co_id: int,
    student_id: int,
) -> StudentCOAttainment | NoResult:
    """Plain attempted-only percentage for one student on one CO."""
    questions, missing = _resolve(snapshot, co_id, student_id, None)
    if missing is not None:
        logger.debug("No result for student %s, CO %s: %s", student_id, co_id, missing.reason)
        return missing

    tally, _ = _tally_attempted(snapshot, student_id, questions)
    co_code = snapshot.outcomes[co_id].code
    if tally.maximum == 0:
        logger.debug("Student %s attempted none of the %s questions", student_id, co_code)
        return NoResult(f"student {student_id} attempted no questions mapped to {co_code}")

    percentage = round(tally.obtained / tally.maximum * 100.0, 2)
    student = snapshot.students[student_id]

    logger.debug(
        "Student %s %s: %.2f%% (%d/%d questions attempted)",
        student.roll_no,
        co_code,
        percentage,
        tally.attempted,
        len(questions),
    )

    return StudentCOAttainment(
        student_id=student_id,
        student_name=student.name,
        roll_no=student.roll_no,
        co_id=co_id,
        co_code=co_code,
        percentage=percentage,
        met_target=met_target(percentage, snapshot.thresholds.target),
        total_obtained_marks=tally.obtained,
        total_max_marks=tally.maximum,
        attempted_questions=tally.attempted,
        total_questions=len(questions),
        section_id=student.section_id,
        section_name=snapshot.section_name(student.section_id),
    )


def calculate_weighted_student_co_attainment(
    snapshot: CourseSnapshot,
    co_id: int,
    student_id: int,
    section_id: int | None = None,
) -> StudentCOAttainment | NoResult:
    """Attempted-only percentage weighted by each assessment's weightage.

    Every assessment contributes ``obtained / max`` times ``weightage / 100``;
    the sum is divided by the weightages that actually took part, so a course
    whose weightages do not add up to 100 is still scored on a 0-100 scale.
    Without any weightage the plain percentage is used.
    """
    questions, missing = _resolve(snapshot, co_id, student_id, section_id)
    if missing is not None:
        logger.debug("No result for student %s, CO %s: %s", student_id, co_id, missing.reason)
        return missing

    tally, by_assessment = _tally_attempted(snapshot, student_id, questions)
    co_code = snapshot.outcomes[co_id].code
    if tally.maximum == 0:
        logger.debug("Student %s attempted none of the %s questions", student_id, co_code)
        return NoResult(f"student {student_id} attempted no questions mapped to {co_code}")

    weighted_score = 0.0
    max_weighted_score = 0.0
    for assessment_id, group in by_assessment.items():
        weight = (snapshot.assessments[assessment_id].weightage or 0.0) / 100.0
        if group.maximum <= 0 or weight <= 0:
            continue
        weighted_score += group.obtained / group.maximum * weight
        max_weighted_score += weight

    simple = tally.obtained / tally.maximum * 100.0
    if max_weighted_score > 0:
        weighted = weighted_score / max_weighted_score * 100.0
    else:
        weighted = simple
    percentage = round(weighted, 2)

    student = snapshot.students[student_id]
    scope_section = section_id if section_id is not None else student.section_id

    logger.debug(
        "Student %s %s: weighted %.2f%%, simple %.2f%% (%d/%d questions attempted)",
        student.roll_no,
        co_code,
        weighted,
        simple,
        tally.attempted,
        len(questions),
    )

    return StudentCOAttainment(
        student_id=student_id,
        student_name=student.name,
        roll_no=student.roll_no,
        co_id=co_id,
        co_code=co_code,
        percentage=percentage,
        met_target=met_target(percentage, snapshot.thresholds.target),
        total_obtained_marks=tally.obtained,
        total_max_marks=tally.maximum,
        attempted_questions=tally.attempted,
        total_questions=len(questions),
        section_id=scope_section,
        section_name=snapshot.section_name(scope_section),
        weighted_score=weighted_score,
        max_weighted_score=max_weighted_score,
        simple_percentage=round(simple, 2),
    )
