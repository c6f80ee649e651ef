from __future__ import annotations

import pytest
from sqlalchemy import func, select

from obeattain import services
from obeattain.config import DEFAULT_ACADEMIC_YEAR
from obeattain.db import session_scope
from obeattain.models import COURSE_LEVEL_SECTION, COAttainment, CourseStatus


def _row_count(session):
    return session.execute(select(func.count(COAttainment.id))).scalar_one()


def _course_with_marks(factory):
    course = factory.course()
    co1 = factory.co(course, "CO1")
    co2 = factory.co(course, "CO2")
    mid = factory.assessment(course)
    q1 = factory.question(mid, 10, [co1])
    q2 = factory.question(mid, 10, [co2])
    s1 = factory.student(courses=[course])
    s2 = factory.student(courses=[course])
    graded = factory.mark(s1, q1, 9)
    factory.mark(s1, q2, 4)
    factory.mark(s2, q1, 6)
    factory.mark(s2, q2, None)
    return course, co1, co2, graded, s1, s2


def test_recalculate_is_idempotent(factory, session):
    course, co1, _, _, s1, _ = _course_with_marks(factory)

    first = services.recalculate_course_attainment(session, course_id=course.id, academic_year="2023-24")
    second = services.recalculate_course_attainment(session, course_id=course.id, academic_year="2023-24")

    # s2 never attempted CO2, so three rows rather than four
    assert first == second == 3
    assert _row_count(session) == 3

    row = session.execute(
        select(COAttainment).where(COAttainment.student_id == s1.id, COAttainment.co_id == co1.id)
    ).scalar_one()
    assert row.percentage == 90.0
    assert row.met_target
    assert row.section_id == COURSE_LEVEL_SECTION
    assert row.academic_year == "2023-24"


def test_recalculate_overwrites_changed_marks(factory, session):
    course, co1, _, graded, s1, _ = _course_with_marks(factory)
    services.recalculate_course_attainment(session, course_id=course.id)

    graded.obtained_marks = 3
    session.flush()
    services.recalculate_course_attainment(session, course_id=course.id)

    row = session.execute(
        select(COAttainment).where(COAttainment.student_id == s1.id, COAttainment.co_id == co1.id)
    ).scalar_one()
    assert row.percentage == 30.0
    assert not row.met_target
    assert row.academic_year == DEFAULT_ACADEMIC_YEAR
    assert _row_count(session) == 3


def test_years_and_sections_are_separate_keys(factory, session):
    course, *_ = _course_with_marks(factory)

    services.recalculate_course_attainment(session, course_id=course.id, academic_year="2022-23")
    services.recalculate_course_attainment(session, course_id=course.id, academic_year="2023-24")

    assert _row_count(session) == 6


def test_failed_recalculation_writes_nothing(factory, session, engine):
    course, *_ = _course_with_marks(factory)
    session.commit()

    with pytest.raises(RuntimeError):
        with session_scope(bind=engine) as scoped:
            services.recalculate_course_attainment(scoped, course_id=course.id)
            assert _row_count(scoped) == 3
            raise RuntimeError("boom")

    assert _row_count(session) == 0


def test_successful_scope_commits(factory, session, engine):
    course, *_ = _course_with_marks(factory)
    session.commit()

    with session_scope(bind=engine) as scoped:
        services.recalculate_course_attainment(scoped, course_id=course.id)

    assert _row_count(session) == 3


def test_nothing_to_recalculate(factory, session):
    course = factory.course()

    assert services.recalculate_course_attainment(session, course_id=course.id) == 0
    assert services.recalculate_course_attainment(session, course_id=404) == 0


def test_read_through_computes_once(factory, session):
    course, *_ = _course_with_marks(factory)

    assert services.get_course_attainment_rows(session, course_id=course.id, compute_if_absent=False) == []

    rows = services.get_course_attainment_rows(session, course_id=course.id)
    assert len(rows) == 3

    again = services.get_course_attainment_rows(session, course_id=course.id)
    assert [r.id for r in again] == [r.id for r in rows]


def test_update_course_thresholds(factory, session):
    course = factory.course()

    services.update_course_thresholds(
        session, course_id=course.id, target_percentage=55, level1=50, level2=60, level3=70
    )

    assert course.target_percentage == 55.0
    assert (course.level1_threshold, course.level2_threshold, course.level3_threshold) == (50.0, 60.0, 70.0)


@pytest.mark.parametrize(
    "values",
    [
        {"target_percentage": 120, "level1": 50, "level2": 60, "level3": 70},
        {"target_percentage": 60, "level1": -1, "level2": 60, "level3": 70},
        {"target_percentage": 60, "level1": 70, "level2": 60, "level3": 80},
        {"target_percentage": 60, "level1": 50, "level2": 90, "level3": 80},
    ],
)
def test_update_course_thresholds_rejects_bad_values(factory, session, values):
    course = factory.course()

    with pytest.raises(services.ServiceError):
        services.update_course_thresholds(session, course_id=course.id, **values)

    assert course.level1_threshold == 60.0


def test_update_unknown_course(session):
    with pytest.raises(services.ServiceError):
        services.update_course_thresholds(
            session, course_id=404, target_percentage=60, level1=60, level2=70, level3=80
        )
    with pytest.raises(services.ServiceError):
        services.set_course_status(session, course_id=404, status=CourseStatus.COMPLETED)


def test_set_course_status_moves_course_into_po_scope(factory, session):
    program = factory.program(po_count=1)
    (po,) = factory.program_outcomes(program)
    batch = factory.batch(program)
    course = factory.course(batch=batch, status=CourseStatus.ACTIVE)
    co = factory.co(course)
    factory.mapping(course, co, po, 3)

    assert not services.calculate_batch_po_attainment(session, batch_id=batch.id)

    services.set_course_status(session, course_id=course.id, status=CourseStatus.COMPLETED)
    summary = services.calculate_batch_po_attainment(session, batch_id=batch.id)

    assert summary.po_attainments[0].actual_attainment == 100


def _stored(session, course_id):
    rows = services.get_course_attainment_rows(session, course_id=course_id, compute_if_absent=False)
    return sorted((r.student_id, r.co_id, r.percentage) for r in rows)


def test_recalculate_drops_rows_for_cleared_marks(factory, session):
    course, co1, _, graded, s1, s2 = _course_with_marks(factory)
    services.recalculate_course_attainment(session, course_id=course.id)

    graded.obtained_marks = None
    session.flush()
    services.recalculate_course_attainment(session, course_id=course.id)

    assert (s1.id, co1.id) not in {(s, c) for s, c, _ in _stored(session, course.id)}
    assert _row_count(session) == 2


def test_recalculate_drops_rows_for_inactive_enrollments(factory, session):
    course, co1, _, _, s1, s2 = _course_with_marks(factory)
    services.recalculate_course_attainment(session, course_id=course.id)

    enrollment = next(e for e in s2.enrollments if e.course_id == course.id)
    enrollment.is_active = False
    session.flush()
    services.recalculate_course_attainment(session, course_id=course.id)

    assert {s for s, _, _ in _stored(session, course.id)} == {s1.id}


def test_recalculate_drops_rows_for_deactivated_outcomes(factory, session):
    course, co1, co2, _, s1, _ = _course_with_marks(factory)
    services.recalculate_course_attainment(session, course_id=course.id)

    co2.is_active = False
    session.flush()
    services.recalculate_course_attainment(session, course_id=course.id)

    assert {c for _, c, _ in _stored(session, course.id)} == {co1.id}


def test_recalculate_clears_rows_when_nothing_is_measurable(factory, session):
    course, co1, co2, _, _, _ = _course_with_marks(factory)
    services.recalculate_course_attainment(session, course_id=course.id)
    services.recalculate_course_attainment(session, course_id=course.id, academic_year="2022-23")

    co1.is_active = False
    co2.is_active = False
    session.flush()

    assert services.recalculate_course_attainment(session, course_id=course.id) == 0
    assert _stored(session, course.id) == []
    # other academic years are a separate key and stay untouched
    assert _row_count(session) == 3
