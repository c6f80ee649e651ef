from __future__ import annotations

import pytest

from obeattain import services
from obeattain.class_attainment import attainment_level
from obeattain.results import CourseThresholds, NoResult


@pytest.mark.parametrize(
    ("percentage", "level"),
    [(59.9, 0), (60.0, 1), (74.9, 1), (75.0, 2), (84.99, 2), (85.0, 3), (100.0, 3), (0.0, 0)],
)
def test_attainment_level_buckets_inclusively(percentage, level):
    thresholds = CourseThresholds(target=60, level1=60, level2=75, level3=85)
    assert attainment_level(percentage, thresholds) == level


def test_attainment_level_is_monotonic():
    thresholds = CourseThresholds(target=60, level1=40, level2=55, level3=70)
    levels = [attainment_level(p / 10, thresholds) for p in range(0, 1001)]
    assert levels == sorted(levels)


def test_misordered_thresholds_still_resolve():
    thresholds = CourseThresholds(target=60, level1=80, level2=70, level3=60)
    assert attainment_level(65.0, thresholds) == 3
    assert attainment_level(10.0, thresholds) == 0


def _simple_course(factory, scores):
    course = factory.course(target=60.0, thresholds=(60.0, 70.0, 80.0))
    co = factory.co(course)
    question = factory.question(factory.assessment(course), 10, [co])
    students = []
    for score in scores:
        student = factory.student(courses=[course])
        factory.mark(student, question, score)
        students.append(student)
    return course, co, question


def test_class_attainment_end_to_end(factory, session):
    course = factory.course(target=60.0, thresholds=(60.0, 75.0, 85.0))
    co = factory.co(course)
    mid = factory.assessment(course)
    q1 = factory.question(mid, 5, [co])
    q2 = factory.question(mid, 5, [co])
    for first, second in [(5, 4), (4, 4), (3, 2), (5, 5)]:
        student = factory.student(courses=[course])
        factory.mark(student, q1, first)
        factory.mark(student, q2, second)

    result = services.calculate_class_co_attainment(session, course_id=course.id, co_id=co.id)

    assert [a.percentage for a in result.student_attainments] == [90.0, 80.0, 50.0, 100.0]
    assert result.total_students == 4
    assert result.students_meeting_target == 3
    assert result.percentage_meeting_target == 75.0
    assert result.attainment_level == 2
    assert result.average_attainment == 80.0
    assert result.target_percentage == 60.0


def test_class_attainment_is_stable_across_runs(factory, session):
    course, co, _ = _simple_course(factory, [9, 8, 5, 10])

    first = services.calculate_class_co_attainment(session, course_id=course.id, co_id=co.id)
    second = services.calculate_class_co_attainment(session, course_id=course.id, co_id=co.id)

    assert first.percentage_meeting_target == second.percentage_meeting_target == 75.0
    assert first.attainment_level == second.attainment_level == 2
    assert first.student_attainments == second.student_attainments


def test_unmeasured_students_leave_the_denominator(factory, session):
    course, co, question = _simple_course(factory, [9, 8, 5, 10])
    absent = factory.student(courses=[course])
    factory.mark(absent, question, None)
    factory.student(courses=[course])  # no marks at all

    result = services.calculate_class_co_attainment(session, course_id=course.id, co_id=co.id)

    assert result.total_students == 4
    assert result.percentage_meeting_target == 75.0


def test_class_with_nobody_measured_is_no_result(factory, session):
    course, co, _ = _simple_course(factory, [None, None])

    result = services.calculate_class_co_attainment(session, course_id=course.id, co_id=co.id)

    assert isinstance(result, NoResult)


def test_class_without_enrollments_is_no_result(factory, session):
    course = factory.course()
    co = factory.co(course)
    factory.question(factory.assessment(course), 10, [co])

    result = services.calculate_class_co_attainment(session, course_id=course.id, co_id=co.id)

    assert isinstance(result, NoResult)


def test_default_target_when_course_has_none(factory, session):
    course = factory.course(target=None)
    co = factory.co(course)
    question = factory.question(factory.assessment(course), 10, [co])
    for score in (5, 4):
        factory.mark(factory.student(courses=[course]), question, score)

    result = services.calculate_class_co_attainment(session, course_id=course.id, co_id=co.id)

    assert result.target_percentage == 50.0
    assert result.students_meeting_target == 1


def _sectioned_course(factory):
    """Section A: 1 of 1 meets target; section B: 1 of 3."""
    program = factory.program()
    batch = factory.batch(program)
    sec_a = factory.section(batch, "A")
    sec_b = factory.section(batch, "B")
    course = factory.course(batch=batch, target=60.0, thresholds=(40.0, 60.0, 80.0))
    co = factory.co(course)
    question = factory.question(factory.assessment(course), 10, [co])
    for section, score in [(sec_a, 9), (sec_b, 9), (sec_b, 3), (sec_b, 2)]:
        factory.mark(factory.student(section=section, courses=[course]), question, score)
    return course, co, sec_a, sec_b


def test_course_rollup_recounts_over_union_of_sections(factory, session):
    course, co, sec_a, sec_b = _sectioned_course(factory)

    result = services.calculate_class_co_attainment(
        session,
        course_id=course.id,
        co_id=co.id,
        filters=services.AttainmentFilters(by_section=True),
    )

    by_name = {s.section_name: s for s in result.section_breakdown}
    assert by_name["A"].percentage_meeting_target == 100.0
    assert by_name["B"].percentage_meeting_target == pytest.approx(33.33)
    # 2 of 4 students, not the 66.67 mean of the two sections
    assert result.total_students == 4
    assert result.percentage_meeting_target == 50.0
    assert result.attainment_level == 1


def test_section_filter_limits_students(factory, session):
    course, co, sec_a, sec_b = _sectioned_course(factory)

    result = services.calculate_class_co_attainment(
        session,
        course_id=course.id,
        co_id=co.id,
        filters=services.AttainmentFilters(section_id=sec_b.id),
    )

    assert result.section_name == "B"
    assert result.total_students == 3
    assert result.students_meeting_target == 1
    assert [w.assessment_name for w in result.assessment_weightages] == ["Mid Sem"]


def test_by_section_without_sections_falls_back_to_course(factory, session):
    course, co, _ = _simple_course(factory, [9, 8, 5, 10])

    result = services.calculate_class_co_attainment(
        session,
        course_id=course.id,
        co_id=co.id,
        filters=services.AttainmentFilters(by_section=True),
    )

    assert result.section_breakdown == ()
    assert result.percentage_meeting_target == 75.0


def test_course_summary_lists_unmeasured_cos(factory, session):
    course, co, _ = _simple_course(factory, [9, 8, 5, 10])
    factory.co(course, "CO2")
    factory.co(course, "CO3", is_active=False)

    summary = services.calculate_course_attainment(session, course_id=course.id)

    assert [r.co_code for r in summary.co_attainments] == ["CO1"]
    assert [u.co_code for u in summary.unmeasured_cos] == ["CO2"]
    assert summary.total_students == 4
    assert len(summary.student_attainments) == 4


def test_course_without_outcomes_is_no_result(factory, session):
    course = factory.course()

    assert isinstance(services.calculate_course_attainment(session, course_id=course.id), NoResult)


def test_co_report_picks_worked_examples(factory, session):
    course = factory.course()
    co = factory.co(course)
    mid = factory.assessment(course)
    q1 = factory.question(mid, 10, [co])
    q2 = factory.question(mid, 10, [co])
    full = factory.student(courses=[course])
    partial = factory.student(courses=[course])
    factory.mark(full, q1, 8)
    factory.mark(full, q2, 9)
    factory.mark(partial, q1, 7)
    factory.mark(partial, q2, None)

    report = services.generate_co_report(session, course_id=course.id, co_id=co.id)

    assert len(report.student_breakdown) == 2
    assert report.standard_case.student_id == full.id
    assert report.unattempted_case.student_id == partial.id
    assert report.unattempted_case.percentage == 70.0
