"""Class, section and course level CO attainment.

A class result is the share of students who met the course target, bucketed
into a 0-3 level with the course's thresholds. Section results roll up to the
course by recounting over the union of every section's students; section
percentages are never averaged.
"""
from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Sequence

from .results import (
    AssessmentWeightage,
    ClassCOAttainment,
    COReport,
    CourseSummary,
    CourseThresholds,
    NoResult,
    StudentCOAttainment,
    UnmeasuredCO,
)
from .store import CourseSnapshot, assessment_in_section
from .student_attainment import (
    calculate_student_co_attainment,
    calculate_weighted_student_co_attainment,
)

logger = logging.getLogger(__name__)


def attainment_level(percentage_meeting_target: float, thresholds: CourseThresholds) -> int:
    """Top-down bucketing; each threshold is an inclusive lower bound.

    Threshold order is not checked here, so misconfigured values still give a
    deterministic level.
    """
    if percentage_meeting_target >= thresholds.level3:
        return 3
    if percentage_meeting_target >= thresholds.level2:
        return 2
    if percentage_meeting_target >= thresholds.level1:
        return 1
    return 0


def _mean(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    return round(sum(values) / len(values), 2)


def summarize_co(
    snapshot: CourseSnapshot,
    co_id: int,
    attainments: Sequence[StudentCOAttainment],
    *,
    section_id: int | None = None,
    section_breakdown: Sequence[ClassCOAttainment] = (),
    assessment_weightages: Sequence[AssessmentWeightage] = (),
) -> ClassCOAttainment | NoResult:
    co = snapshot.outcomes[co_id]
    if not attainments:
        return NoResult(f"no student could be measured on {co.code}")

    thresholds = snapshot.thresholds
    total = len(attainments)
    meeting = sum(1 for a in attainments if a.met_target)
    percentage = meeting / total * 100.0
    level = attainment_level(percentage, thresholds)

    logger.info(
        "%s %s%s: %d/%d students met target (%.2f%%), level %d",
        snapshot.course.code,
        co.code,
        f" [{snapshot.section_name(section_id)}]" if section_id is not None else "",
        meeting,
        total,
        percentage,
        level,
    )

    return ClassCOAttainment(
        co_id=co.id,
        co_code=co.code,
        co_description=co.description,
        total_students=total,
        students_meeting_target=meeting,
        percentage_meeting_target=round(percentage, 2),
        attainment_level=level,
        thresholds=thresholds,
        average_attainment=_mean([a.percentage for a in attainments]),
        weighted_average_attainment=_mean([a.weighted_percentage for a in attainments]),
        student_attainments=tuple(attainments),
        section_id=section_id,
        section_name=snapshot.section_name(section_id),
        section_breakdown=tuple(section_breakdown),
        assessment_weightages=tuple(assessment_weightages),
    )


def _student_results(
    snapshot: CourseSnapshot,
    co_id: int,
    section_id: int | None,
    weighted: bool,
) -> list[StudentCOAttainment]:
    results: list[StudentCOAttainment] = []
    for student in snapshot.enrolled_students(section_id):
        if weighted:
            result = calculate_weighted_student_co_attainment(snapshot, co_id, student.id, section_id)
        else:
            result = calculate_student_co_attainment(snapshot, co_id, student.id)
        if result:
            results.append(result)
    return results


def assessment_weightages_for(
    snapshot: CourseSnapshot,
    co_id: int,
    section_id: int | None,
) -> list[AssessmentWeightage]:
    assessment_ids = {q.assessment_id for q in snapshot.questions_for_co(co_id, section_id)}
    return [
        AssessmentWeightage(
            assessment_id=a.id,
            assessment_name=a.name,
            assessment_type=a.type,
            weightage=a.weightage,
            max_marks=a.max_marks,
        )
        for a in sorted(snapshot.assessments.values(), key=lambda a: a.id)
        if a.id in assessment_ids and assessment_in_section(a, section_id)
    ]


def calculate_class_co_attainment(
    snapshot: CourseSnapshot,
    co_id: int,
    *,
    section_id: int | None = None,
    weighted: bool = False,
) -> ClassCOAttainment | NoResult:
    """Share of in-scope students meeting target on one CO.

    Students that could not be measured are left out of the denominator.
    """
    if co_id not in snapshot.outcomes:
        return NoResult(f"CO {co_id} not found in course {snapshot.course.code}")
    if not snapshot.enrolled_students(section_id):
        scope = f"section {snapshot.section_name(section_id)}" if section_id is not None else "course"
        return NoResult(f"no active enrollments in {scope} {snapshot.course.code}")

    attainments = _student_results(snapshot, co_id, section_id, weighted)
    weightages = assessment_weightages_for(snapshot, co_id, section_id) if section_id is not None else []
    return summarize_co(
        snapshot,
        co_id,
        attainments,
        section_id=section_id,
        assessment_weightages=weightages,
    )


def calculate_section_co_attainment(
    snapshot: CourseSnapshot,
    co_id: int,
    section_id: int,
) -> ClassCOAttainment | NoResult:
    return calculate_class_co_attainment(snapshot, co_id, section_id=section_id, weighted=True)


def calculate_sectioned_co_attainment(
    snapshot: CourseSnapshot,
    co_id: int,
) -> ClassCOAttainment | NoResult:
    """Weighted class result with a per-section breakdown.

    The course figure is recomputed over the union of every section's measured
    students (plus students without a section), so unequal section sizes
    weigh in proportionally.
    """
    if co_id not in snapshot.outcomes:
        return NoResult(f"CO {co_id} not found in course {snapshot.course.code}")
    if not snapshot.sections:
        return calculate_class_co_attainment(snapshot, co_id, weighted=True)

    breakdown: list[ClassCOAttainment] = []
    union: list[StudentCOAttainment] = []
    for section_id in sorted(snapshot.sections, key=lambda sid: snapshot.sections[sid].name):
        result = calculate_section_co_attainment(snapshot, co_id, section_id)
        if not result:
            logger.info("Section %s skipped for CO %s: %s", snapshot.section_name(section_id), co_id, result.reason)
            continue
        breakdown.append(result)
        union.extend(result.student_attainments)

    for student in snapshot.enrolled_students():
        if student.section_id is not None and student.section_id in snapshot.sections:
            continue
        result = calculate_weighted_student_co_attainment(snapshot, co_id, student.id)
        if result:
            union.append(result)

    if not union:
        return NoResult(f"no section of {snapshot.course.code} could be measured on CO {co_id}")
    return summarize_co(snapshot, co_id, union, section_breakdown=breakdown)


def calculate_course_attainment(
    snapshot: CourseSnapshot,
    *,
    section_id: int | None = None,
    weighted: bool = False,
    by_section: bool = False,
) -> CourseSummary | NoResult:
    course = snapshot.course
    if not snapshot.outcomes:
        return NoResult(f"course {course.code} has no active COs")

    co_results: list[ClassCOAttainment] = []
    unmeasured: list[UnmeasuredCO] = []
    for co in snapshot.outcomes.values():
        if by_section and section_id is None:
            result = calculate_sectioned_co_attainment(snapshot, co.id)
        else:
            result = calculate_class_co_attainment(snapshot, co.id, section_id=section_id, weighted=weighted)
        if result:
            co_results.append(result)
        else:
            unmeasured.append(UnmeasuredCO(co_id=co.id, co_code=co.code, reason=result.reason))

    students = {a.student_id for r in co_results for a in r.student_attainments}
    logger.info(
        "Course %s: %d COs measured, %d unmeasured, %d students",
        course.code,
        len(co_results),
        len(unmeasured),
        len(students),
    )

    return CourseSummary(
        course_id=course.id,
        course_code=course.code,
        course_name=course.name,
        thresholds=snapshot.thresholds,
        total_students=len(students),
        co_attainments=tuple(co_results),
        unmeasured_cos=tuple(unmeasured),
        calculated_at=dt.datetime.now(dt.timezone.utc),
    )


def generate_co_report(snapshot: CourseSnapshot, co_id: int) -> COReport | NoResult:
    """Class result plus the per-student breakdown and two worked examples."""
    result = calculate_class_co_attainment(snapshot, co_id)
    if not result:
        return result

    students = result.student_attainments
    standard = next(
        (s for s in students if s.attempted_questions == s.total_questions and s.met_target),
        None,
    )
    unattempted = next((s for s in students if s.attempted_questions < s.total_questions), None)
    return COReport(
        class_attainment=result,
        student_breakdown=students,
        standard_case=standard,
        unattempted_case=unattempted,
    )
