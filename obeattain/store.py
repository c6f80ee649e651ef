"""Record store adapter: every query and write the engine performs.

The calculators never touch the session themselves. They receive a
:class:`CourseSnapshot` (all rows for one course, fetched with a handful of
queries and indexed in memory) or plain row lists from the functions below.
"""
from __future__ import annotations

import datetime as dt
import logging
from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from sqlalchemy import func, select
from sqlalchemy.orm import Session, joinedload

from .config import DEFAULT_TARGET_PERCENTAGE
from .models import (
    COURSE_LEVEL_SECTION,
    Assessment,
    Batch,
    COAttainment,
    COPOMapping,
    Course,
    CourseOutcome,
    CourseStatus,
    Enrollment,
    ProgramOutcome,
    Question,
    QuestionCOMapping,
    Section,
    Student,
    StudentMark,
)
from .results import CourseThresholds, MarkOutcome, classify_mark

logger = logging.getLogger(__name__)


def thresholds_for(course: Course) -> CourseThresholds:
    target = course.target_percentage
    return CourseThresholds(
        target=float(target) if target is not None else DEFAULT_TARGET_PERCENTAGE,
        level1=float(course.level1_threshold),
        level2=float(course.level2_threshold),
        level3=float(course.level3_threshold),
    )


def assessment_in_section(assessment: Assessment, section_id: int | None) -> bool:
    """Shared (unsectioned) assessments count for every section."""
    if section_id is None:
        return True
    return assessment.section_id is None or assessment.section_id == section_id


# -----------------
# Read contract
# -----------------


def get_course(session: Session, course_id: int) -> Course | None:
    return session.get(Course, course_id)


def get_course_thresholds(session: Session, course_id: int) -> CourseThresholds | None:
    course = session.get(Course, course_id)
    if course is None:
        return None
    return thresholds_for(course)


def list_questions_for_co(
    session: Session,
    course_id: int,
    co_id: int,
    section_id: int | None = None,
) -> list[Question]:
    stmt = (
        select(Question)
        .join(QuestionCOMapping, QuestionCOMapping.question_id == Question.id)
        .join(Assessment, Assessment.id == Question.assessment_id)
        .where(QuestionCOMapping.co_id == co_id)
        .where(Assessment.course_id == course_id)
        .options(joinedload(Question.assessment))
        .order_by(Question.id)
    )
    if section_id is not None:
        stmt = stmt.where((Assessment.section_id.is_(None)) | (Assessment.section_id == section_id))
    return list(session.execute(stmt).scalars().all())


def list_marks_for_questions(
    session: Session,
    student_id: int,
    question_ids: Sequence[int],
    academic_year: str | None = None,
) -> list[StudentMark]:
    if not question_ids:
        return []
    stmt = (
        select(StudentMark)
        .where(StudentMark.student_id == student_id)
        .where(StudentMark.question_id.in_(list(question_ids)))
        .order_by(StudentMark.id)
    )
    if academic_year is not None:
        stmt = stmt.where(StudentMark.academic_year == academic_year)
    return list(session.execute(stmt).scalars().all())


def list_enrollments(
    session: Session,
    course_id: int,
    section_id: int | None = None,
) -> list[Student]:
    stmt = (
        select(Student)
        .join(Enrollment, Enrollment.student_id == Student.id)
        .where(Enrollment.course_id == course_id)
        .where(Enrollment.is_active.is_(True))
        .options(joinedload(Student.section))
        .order_by(Student.roll_no)
    )
    if section_id is not None:
        stmt = stmt.where(Student.section_id == section_id)
    return list(session.execute(stmt).scalars().all())


def list_sections_for_course(session: Session, course: Course) -> list[Section]:
    if course.batch_id is None:
        return []
    stmt = select(Section).where(Section.batch_id == course.batch_id).order_by(Section.name)
    return list(session.execute(stmt).scalars().all())


def list_copo_mappings(
    session: Session,
    course_ids: Iterable[int],
    po_id: int | None = None,
) -> list[COPOMapping]:
    ids = list(course_ids)
    if not ids:
        return []
    stmt = (
        select(COPOMapping)
        .join(CourseOutcome, CourseOutcome.id == COPOMapping.co_id)
        .where(COPOMapping.course_id.in_(ids))
        .where(COPOMapping.is_active.is_(True))
        .where(CourseOutcome.is_active.is_(True))
        .order_by(COPOMapping.id)
    )
    if po_id is not None:
        stmt = stmt.where(COPOMapping.po_id == po_id)
    return list(session.execute(stmt).scalars().all())


def list_course_outcome_ids(session: Session, course_ids: Iterable[int]) -> set[int]:
    ids = list(course_ids)
    if not ids:
        return set()
    stmt = (
        select(CourseOutcome.id)
        .where(CourseOutcome.course_id.in_(ids))
        .where(CourseOutcome.is_active.is_(True))
    )
    return set(session.execute(stmt).scalars().all())


def list_program_outcomes(session: Session, program_id: int) -> list[ProgramOutcome]:
    stmt = (
        select(ProgramOutcome)
        .where(ProgramOutcome.program_id == program_id)
        .where(ProgramOutcome.is_active.is_(True))
        .order_by(ProgramOutcome.code)
    )
    return list(session.execute(stmt).scalars().all())


def list_completed_courses(
    session: Session,
    *,
    batch_id: int | None = None,
    program_id: int | None = None,
    statuses: Sequence[CourseStatus] = (CourseStatus.COMPLETED,),
    include_inactive: bool = False,
) -> list[Course]:
    """Courses of a batch or a whole program, filtered by lifecycle status.

    Only COMPLETED courses count towards PO attainment unless the caller
    passes other statuses.
    """
    if (batch_id is None) == (program_id is None):
        raise ValueError("Pass exactly one of batch_id or program_id.")

    stmt = select(Course).where(Course.status.in_(list(statuses))).order_by(Course.code)
    if batch_id is not None:
        stmt = stmt.where(Course.batch_id == batch_id)
    else:
        stmt = stmt.join(Batch, Batch.id == Course.batch_id).where(Batch.program_id == program_id)
    if not include_inactive:
        stmt = stmt.where(Course.is_active.is_(True))
    return list(session.execute(stmt).scalars().all())


def count_courses(session: Session, *, batch_id: int | None = None, program_id: int | None = None) -> int:
    stmt = select(func.count(Course.id)).select_from(Course)
    if batch_id is not None:
        stmt = stmt.where(Course.batch_id == batch_id)
    elif program_id is not None:
        stmt = stmt.join(Batch, Batch.id == Course.batch_id).where(Batch.program_id == program_id)
    return int(session.execute(stmt).scalar_one())


# -----------------
# Batch fetch
# -----------------


@dataclass
class CourseSnapshot:
    """All rows the CO calculators need for one course, indexed in memory."""

    course: Course
    thresholds: CourseThresholds
    outcomes: dict[int, CourseOutcome]
    assessments: dict[int, Assessment]
    questions: dict[int, Question]
    question_ids_by_co: dict[int, list[int]]
    students: dict[int, Student]
    sections: dict[int, Section]
    marks: dict[tuple[int, int], StudentMark] = field(default_factory=dict)

    def questions_for_co(self, co_id: int, section_id: int | None = None) -> list[Question]:
        result: list[Question] = []
        for qid in self.question_ids_by_co.get(co_id, []):
            question = self.questions[qid]
            if assessment_in_section(self.assessments[question.assessment_id], section_id):
                result.append(question)
        return result

    def mark_outcome(self, student_id: int, question: Question) -> MarkOutcome:
        mark = self.marks.get((student_id, question.id))
        if mark is None:
            return classify_mark(None, question.max_marks)
        return classify_mark(mark.obtained_marks, mark.max_marks)

    def enrolled_students(self, section_id: int | None = None) -> list[Student]:
        students = sorted(self.students.values(), key=lambda s: s.roll_no)
        if section_id is None:
            return students
        return [s for s in students if s.section_id == section_id]

    def section_name(self, section_id: int | None) -> str | None:
        if section_id is None:
            return None
        section = self.sections.get(section_id)
        return section.name if section is not None else f"Section {section_id}"


def load_course_snapshot(
    session: Session,
    course_id: int,
    *,
    student_ids: Sequence[int] | None = None,
    academic_year: str | None = None,
) -> CourseSnapshot | None:
    """Fetch everything for one course up front instead of per student.

    When a student has several rows for the same question (for example from
    different academic years and no year filter) the most recent row wins.
    """
    course = session.get(Course, course_id)
    if course is None:
        return None

    outcomes = {
        co.id: co
        for co in session.execute(
            select(CourseOutcome)
            .where(CourseOutcome.course_id == course_id)
            .where(CourseOutcome.is_active.is_(True))
            .order_by(CourseOutcome.code)
        ).scalars()
    }

    assessments = {
        a.id: a
        for a in session.execute(select(Assessment).where(Assessment.course_id == course_id)).scalars()
    }

    questions: dict[int, Question] = {}
    question_ids_by_co: dict[int, list[int]] = defaultdict(list)
    if assessments:
        rows = session.execute(
            select(Question, QuestionCOMapping.co_id)
            .join(QuestionCOMapping, QuestionCOMapping.question_id == Question.id)
            .where(Question.assessment_id.in_(list(assessments)))
            .order_by(Question.id)
        ).all()
        for question, co_id in rows:
            questions[question.id] = question
            question_ids_by_co[co_id].append(question.id)

    enrolled_stmt = (
        select(Student)
        .join(Enrollment, Enrollment.student_id == Student.id)
        .where(Enrollment.course_id == course_id)
        .where(Enrollment.is_active.is_(True))
    )
    if student_ids is not None:
        enrolled_stmt = enrolled_stmt.where(Student.id.in_(list(student_ids)))
    students = {s.id: s for s in session.execute(enrolled_stmt).scalars()}

    marks: dict[tuple[int, int], StudentMark] = {}
    if questions and students:
        marks_stmt = (
            select(StudentMark)
            .where(StudentMark.question_id.in_(list(questions)))
            .where(StudentMark.student_id.in_(list(students)))
            .order_by(StudentMark.id)
        )
        if academic_year is not None:
            marks_stmt = marks_stmt.where(StudentMark.academic_year == academic_year)
        for mark in session.execute(marks_stmt).scalars():
            marks[(mark.student_id, mark.question_id)] = mark

    sections = {s.id: s for s in list_sections_for_course(session, course)}

    logger.debug(
        "Loaded course %s: %d COs, %d assessments, %d questions, %d students, %d marks",
        course.code,
        len(outcomes),
        len(assessments),
        len(questions),
        len(students),
        len(marks),
    )

    return CourseSnapshot(
        course=course,
        thresholds=thresholds_for(course),
        outcomes=outcomes,
        assessments=assessments,
        questions=questions,
        question_ids_by_co=dict(question_ids_by_co),
        students=students,
        sections=sections,
        marks=marks,
    )


# -----------------
# Write contract
# -----------------


def upsert_co_attainment(
    session: Session,
    *,
    course_id: int,
    section_id: int | None,
    co_id: int,
    student_id: int,
    academic_year: str,
    percentage: float,
    met_target: bool,
) -> COAttainment:
    """Insert or overwrite the row for this natural key. Never duplicates."""
    key_section = section_id if section_id is not None else COURSE_LEVEL_SECTION
    stmt = select(COAttainment).where(
        COAttainment.course_id == course_id,
        COAttainment.section_id == key_section,
        COAttainment.co_id == co_id,
        COAttainment.student_id == student_id,
        COAttainment.academic_year == academic_year,
    )
    row = session.execute(stmt).scalar_one_or_none()
    if row is None:
        row = COAttainment(
            course_id=course_id,
            section_id=key_section,
            co_id=co_id,
            student_id=student_id,
            academic_year=academic_year,
        )
        session.add(row)

    row.percentage = percentage
    row.met_target = met_target
    row.calculated_at = dt.datetime.now(dt.timezone.utc)
    session.flush()
    return row


def replace_co_attainment_rows(
    session: Session,
    *,
    course_id: int,
    section_id: int | None,
    academic_year: str,
    results: Iterable[tuple[int, int, float, bool]],
) -> tuple[int, int]:
    """Make the stored rows for one (course, section, year) match ``results``.

    ``results`` holds ``(co_id, student_id, percentage, met_target)``. Existing
    rows are loaded once and updated in place, new keys are inserted, and rows
    whose key is no longer measured are deleted. Flushes once; the caller owns
    the transaction. Returns ``(written, removed)``.
    """
    existing = {
        (row.co_id, row.student_id): row
        for row in list_co_attainment_rows(
            session, course_id=course_id, academic_year=academic_year, section_id=section_id
        )
    }
    key_section = section_id if section_id is not None else COURSE_LEVEL_SECTION
    now = dt.datetime.now(dt.timezone.utc)

    written = 0
    seen: set[tuple[int, int]] = set()
    for co_id, student_id, percentage, met_target in results:
        key = (co_id, student_id)
        seen.add(key)
        row = existing.get(key)
        if row is None:
            row = COAttainment(
                course_id=course_id,
                section_id=key_section,
                co_id=co_id,
                student_id=student_id,
                academic_year=academic_year,
            )
            session.add(row)
            existing[key] = row
        row.percentage = percentage
        row.met_target = met_target
        row.calculated_at = now
        written += 1

    removed = 0
    for key, row in existing.items():
        if key not in seen:
            session.delete(row)
            removed += 1

    session.flush()
    return written, removed


def list_co_attainment_rows(
    session: Session,
    *,
    course_id: int,
    academic_year: str,
    section_id: int | None = None,
) -> list[COAttainment]:
    key_section = section_id if section_id is not None else COURSE_LEVEL_SECTION
    stmt = (
        select(COAttainment)
        .where(COAttainment.course_id == course_id)
        .where(COAttainment.academic_year == academic_year)
        .where(COAttainment.section_id == key_section)
        .order_by(COAttainment.co_id, COAttainment.student_id)
    )
    return list(session.execute(stmt).scalars().all())
