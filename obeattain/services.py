from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from . import class_attainment, store
from .config import DEFAULT_ACADEMIC_YEAR
from .models import Batch, COAttainment, Course, CourseStatus, Program
from .po_attainment import NBA_POLICY, POStatusPolicy, calculate_po_attainments, summarize_pos
from .results import (
    ClassCOAttainment,
    COReport,
    CourseSummary,
    NoResult,
    POScope,
    POSummary,
    StudentCOAttainment,
)
from .student_attainment import (
    calculate_student_co_attainment as _student_co_attainment,
    calculate_weighted_student_co_attainment as _weighted_student_co_attainment,
)

logger = logging.getLogger(__name__)


class ServiceError(RuntimeError):
    pass


@dataclass(frozen=True)
class AttainmentFilters:
    section_id: int | None = None
    academic_year: str | None = None
    weighted: bool = False
    by_section: bool = False


@dataclass(frozen=True)
class POFilters:
    course_statuses: tuple[CourseStatus, ...] = (CourseStatus.COMPLETED,)
    include_inactive_courses: bool = False
    policy: POStatusPolicy = NBA_POLICY


_NO_FILTERS = AttainmentFilters()
_DEFAULT_PO_FILTERS = POFilters()


def _snapshot(
    session: Session,
    course_id: int,
    filters: AttainmentFilters,
    student_ids: list[int] | None = None,
) -> store.CourseSnapshot | NoResult:
    snapshot = store.load_course_snapshot(
        session,
        course_id,
        student_ids=student_ids,
        academic_year=filters.academic_year,
    )
    if snapshot is None:
        return NoResult(f"course {course_id} not found")
    return snapshot


# -----------------
# CO attainment
# -----------------


def calculate_student_co_attainment(
    session: Session,
    *,
    course_id: int,
    co_id: int,
    student_id: int,
    filters: AttainmentFilters | None = None,
) -> StudentCOAttainment | NoResult:
    filters = filters or _NO_FILTERS
    snapshot = _snapshot(session, course_id, filters, student_ids=[student_id])
    if isinstance(snapshot, NoResult):
        return snapshot
    student = snapshot.students.get(student_id)
    if filters.section_id is not None and student is not None and student.section_id != filters.section_id:
        return NoResult(f"student {student_id} is not in section {snapshot.section_name(filters.section_id)}")
    if filters.weighted or filters.section_id is not None:
        return _weighted_student_co_attainment(snapshot, co_id, student_id, filters.section_id)
    return _student_co_attainment(snapshot, co_id, student_id)


def calculate_class_co_attainment(
    session: Session,
    *,
    course_id: int,
    co_id: int,
    filters: AttainmentFilters | None = None,
) -> ClassCOAttainment | NoResult:
    filters = filters or _NO_FILTERS
    snapshot = _snapshot(session, course_id, filters)
    if isinstance(snapshot, NoResult):
        return snapshot
    if filters.by_section and filters.section_id is None:
        return class_attainment.calculate_sectioned_co_attainment(snapshot, co_id)
    return class_attainment.calculate_class_co_attainment(
        snapshot,
        co_id,
        section_id=filters.section_id,
        weighted=filters.weighted or filters.section_id is not None,
    )


def calculate_course_attainment(
    session: Session,
    *,
    course_id: int,
    filters: AttainmentFilters | None = None,
) -> CourseSummary | NoResult:
    filters = filters or _NO_FILTERS
    snapshot = _snapshot(session, course_id, filters)
    if isinstance(snapshot, NoResult):
        return snapshot
    return class_attainment.calculate_course_attainment(
        snapshot,
        section_id=filters.section_id,
        weighted=filters.weighted or filters.section_id is not None,
        by_section=filters.by_section,
    )


def generate_co_report(
    session: Session,
    *,
    course_id: int,
    co_id: int,
    filters: AttainmentFilters | None = None,
) -> COReport | NoResult:
    filters = filters or _NO_FILTERS
    snapshot = _snapshot(session, course_id, filters)
    if isinstance(snapshot, NoResult):
        return snapshot
    return class_attainment.generate_co_report(snapshot, co_id)


# -----------------
# Write-back
# -----------------


def recalculate_course_attainment(
    session: Session,
    *,
    course_id: int,
    academic_year: str | None = None,
    filters: AttainmentFilters | None = None,
) -> int:
    """Recompute every student's CO results for a course and store them.

    Stored rows for the same course, section and year that are no longer
    measured (mark cleared, enrollment or CO deactivated) are deleted.

    Rows are flushed but not committed; run this inside ``session_scope()`` so
    a failure leaves nothing half-written. Returns the number of rows written.
    Marks edited afterwards are not picked up until the next recalculation.
    """
    filters = filters or _NO_FILTERS
    year = academic_year or filters.academic_year or DEFAULT_ACADEMIC_YEAR

    summary = calculate_course_attainment(session, course_id=course_id, filters=filters)
    if summary:
        results = [
            (a.co_id, a.student_id, a.percentage, a.met_target) for a in summary.student_attainments
        ]
    else:
        logger.info("Nothing to save for course %s: %s", course_id, summary.reason)
        results = []

    written, removed = store.replace_co_attainment_rows(
        session,
        course_id=course_id,
        section_id=filters.section_id,
        academic_year=year,
        results=results,
    )

    logger.info(
        "Saved %d CO attainment rows for course %s (%s), removed %d stale",
        written,
        course_id,
        year,
        removed,
    )
    return written


def get_course_attainment_rows(
    session: Session,
    *,
    course_id: int,
    academic_year: str | None = None,
    section_id: int | None = None,
    compute_if_absent: bool = True,
) -> list[COAttainment]:
    """Stored results for a course, computing and saving them on first read.

    Stored rows are only refreshed by an explicit recalculation.
    """
    year = academic_year or DEFAULT_ACADEMIC_YEAR
    rows = store.list_co_attainment_rows(
        session, course_id=course_id, academic_year=year, section_id=section_id
    )
    if rows or not compute_if_absent:
        return rows

    logger.info("No stored attainment for course %s (%s); calculating", course_id, year)
    recalculate_course_attainment(
        session,
        course_id=course_id,
        academic_year=year,
        filters=AttainmentFilters(section_id=section_id),
    )
    return store.list_co_attainment_rows(
        session, course_id=course_id, academic_year=year, section_id=section_id
    )


# -----------------
# PO attainment
# -----------------


def _po_summary(
    session: Session,
    *,
    courses: list[Course],
    program_id: int,
    scope: POScope,
    scope_id: int,
    scope_name: str,
    total_courses: int,
    policy: POStatusPolicy,
) -> POSummary | NoResult:
    pos = store.list_program_outcomes(session, program_id)
    if not pos:
        return NoResult(f"program {program_id} has no active POs")
    if not courses:
        return NoResult(f"{scope.value} {scope_name} has no courses eligible for PO attainment")

    course_ids = [c.id for c in courses]
    mappings = store.list_copo_mappings(session, course_ids)
    if not mappings:
        return NoResult(f"{scope.value} {scope_name} has no CO-PO mappings")

    scope_co_ids = store.list_course_outcome_ids(session, course_ids)
    po_results = calculate_po_attainments(pos, mappings, scope_co_ids, policy)
    return summarize_pos(
        po_results,
        scope=scope,
        scope_id=scope_id,
        scope_name=scope_name,
        program_id=program_id,
        total_courses=total_courses,
        completed_courses=len(courses),
        policy=policy,
    )


def calculate_course_po_attainment(
    session: Session,
    *,
    course_id: int,
    filters: POFilters | None = None,
) -> POSummary | NoResult:
    filters = filters or _DEFAULT_PO_FILTERS
    course = store.get_course(session, course_id)
    if course is None:
        return NoResult(f"course {course_id} not found")
    if course.batch is None:
        return NoResult(f"course {course.code} is not attached to a batch")

    program_id = course.batch.program_id
    if course.status not in filters.course_statuses:
        logger.info("Course %s is %s; PO attainment skipped", course.code, course.status.value)
        return summarize_pos(
            [],
            scope=POScope.COURSE,
            scope_id=course.id,
            scope_name=course.code,
            program_id=program_id,
            total_courses=1,
            completed_courses=0,
            policy=filters.policy,
            message="PO attainment calculation only available for completed courses",
        )

    return _po_summary(
        session,
        courses=[course],
        program_id=program_id,
        scope=POScope.COURSE,
        scope_id=course.id,
        scope_name=course.code,
        total_courses=1,
        policy=filters.policy,
    )


def calculate_batch_po_attainment(
    session: Session,
    *,
    batch_id: int,
    filters: POFilters | None = None,
) -> POSummary | NoResult:
    filters = filters or _DEFAULT_PO_FILTERS
    batch = session.get(Batch, batch_id)
    if batch is None:
        return NoResult(f"batch {batch_id} not found")

    courses = store.list_completed_courses(
        session,
        batch_id=batch_id,
        statuses=filters.course_statuses,
        include_inactive=filters.include_inactive_courses,
    )
    logger.info("Batch %s: %d courses in scope for PO attainment", batch.name, len(courses))
    return _po_summary(
        session,
        courses=courses,
        program_id=batch.program_id,
        scope=POScope.BATCH,
        scope_id=batch.id,
        scope_name=batch.name,
        total_courses=store.count_courses(session, batch_id=batch_id),
        policy=filters.policy,
    )


def calculate_program_po_attainment(
    session: Session,
    *,
    program_id: int,
    filters: POFilters | None = None,
) -> POSummary | NoResult:
    filters = filters or _DEFAULT_PO_FILTERS
    program = session.get(Program, program_id)
    if program is None:
        return NoResult(f"program {program_id} not found")

    courses = store.list_completed_courses(
        session,
        program_id=program_id,
        statuses=filters.course_statuses,
        include_inactive=filters.include_inactive_courses,
    )
    logger.info("Program %s: %d courses in scope for PO attainment", program.code, len(courses))
    return _po_summary(
        session,
        courses=courses,
        program_id=program.id,
        scope=POScope.PROGRAM,
        scope_id=program.id,
        scope_name=program.code,
        total_courses=store.count_courses(session, program_id=program_id),
        policy=filters.policy,
    )


# -----------------
# Course configuration
# -----------------


def update_course_thresholds(
    session: Session,
    *,
    course_id: int,
    target_percentage: float,
    level1: float,
    level2: float,
    level3: float,
) -> Course:
    """Validate and store a course's CO target and level thresholds.

    The calculators never check these; this is where bad values are stopped.
    """
    course = session.get(Course, course_id)
    if not course:
        raise ServiceError("Course not found.")

    for value in (target_percentage, level1, level2, level3):
        if value < 0 or value > 100:
            raise ServiceError("Target and thresholds must be between 0 and 100.")
    if not (level1 <= level2 <= level3):
        raise ServiceError("Thresholds must be in ascending order: Level 1 <= Level 2 <= Level 3.")

    course.target_percentage = float(target_percentage)
    course.level1_threshold = float(level1)
    course.level2_threshold = float(level2)
    course.level3_threshold = float(level3)
    session.flush()
    return course


def set_course_status(session: Session, *, course_id: int, status: CourseStatus) -> Course:
    course = session.get(Course, course_id)
    if not course:
        raise ServiceError("Course not found.")
    course.status = status
    session.flush()
    return course
