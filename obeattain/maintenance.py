from __future__ import annotations

import logging

from sqlalchemy import delete, func, select, text
from sqlalchemy.orm import Session

from .models import COAttainment, Enrollment, QuestionCOMapping, StudentMark

logger = logging.getLogger(__name__)


def cleanup_duplicates(session: Session) -> dict[str, int]:
    """Best-effort cleanup for historical duplicates.

    Why this exists:
    - SQLAlchemy `create_all()` does not retrofit constraints into an existing SQLite DB.
    - Attainment rows written before the natural-key constraint existed may repeat a key,
      and duplicate question/CO links would count a question twice.

    Strategy:
    - `COAttainment` by (course, section, CO, student, year): keep the most recently
      calculated row.
    - `Enrollment` by (`student_id`, `course_id`): keep the oldest row, active if any copy was.
    - `QuestionCOMapping` by (`question_id`, `co_id`): keep the oldest row.

    Returns the number of rows removed per table.
    """
    removed = {"co_attainments": 0, "enrollments": 0, "question_co_mappings": 0}

    # -----------------
    # CO attainment (natural key)
    # -----------------
    key = (
        COAttainment.course_id,
        COAttainment.section_id,
        COAttainment.co_id,
        COAttainment.student_id,
        COAttainment.academic_year,
    )
    dup_keys = session.execute(
        select(*key).group_by(*key).having(func.count(COAttainment.id) > 1)
    ).all()

    for course_id, section_id, co_id, student_id, academic_year in dup_keys:
        rows = (
            session.execute(
                select(COAttainment)
                .where(COAttainment.course_id == course_id)
                .where(COAttainment.section_id == section_id)
                .where(COAttainment.co_id == co_id)
                .where(COAttainment.student_id == student_id)
                .where(COAttainment.academic_year == academic_year)
                .order_by(COAttainment.calculated_at.desc(), COAttainment.id.desc())
            )
            .scalars()
            .all()
        )
        for dup in rows[1:]:
            session.delete(dup)
            removed["co_attainments"] += 1

    session.flush()

    # -----------------
    # Enrollments (student_id, course_id)
    # -----------------
    dup_pairs = session.execute(
        select(Enrollment.student_id, Enrollment.course_id)
        .group_by(Enrollment.student_id, Enrollment.course_id)
        .having(func.count(Enrollment.id) > 1)
    ).all()

    for student_id, course_id in dup_pairs:
        enrollments = (
            session.execute(
                select(Enrollment)
                .where(Enrollment.student_id == student_id)
                .where(Enrollment.course_id == course_id)
                .order_by(Enrollment.id)
            )
            .scalars()
            .all()
        )
        if len(enrollments) < 2:
            continue

        keep = enrollments[0]
        for dup in enrollments[1:]:
            keep.is_active = keep.is_active or dup.is_active
            session.delete(dup)
            removed["enrollments"] += 1

    session.flush()

    # -----------------
    # Question -> CO links (question_id, co_id)
    # -----------------
    dup_links = session.execute(
        select(QuestionCOMapping.question_id, QuestionCOMapping.co_id)
        .group_by(QuestionCOMapping.question_id, QuestionCOMapping.co_id)
        .having(func.count(QuestionCOMapping.id) > 1)
    ).all()

    for question_id, co_id in dup_links:
        keep_id = session.execute(
            select(func.min(QuestionCOMapping.id))
            .where(QuestionCOMapping.question_id == question_id)
            .where(QuestionCOMapping.co_id == co_id)
        ).scalar_one()
        result = session.execute(
            delete(QuestionCOMapping)
            .where(QuestionCOMapping.question_id == question_id)
            .where(QuestionCOMapping.co_id == co_id)
            .where(QuestionCOMapping.id != keep_id)
        )
        removed["question_co_mappings"] += result.rowcount or 0

    session.flush()

    if any(removed.values()):
        logger.warning("Removed duplicate rows: %s", removed)
    return removed


def count_unattempted_marks(session: Session) -> int:
    """Mark rows stored without a score (not attempted)."""
    return int(
        session.execute(
            select(func.count(StudentMark.id)).where(StudentMark.obtained_marks.is_(None))
        ).scalar_one()
    )


def ensure_sqlite_unique_indexes(session: Session) -> None:
    """Ensure key unique indexes exist for SQLite DBs.

    Note: This is only applied to SQLite because adding constraints in-place is not
    something `create_all()` handles for existing DBs.
    """

    bind = session.get_bind()
    if bind is None or bind.dialect.name != "sqlite":
        return

    # If duplicates still exist for any of these, SQLite will error here. By the time we
    # get here, `cleanup_duplicates()` should have removed them.
    session.execute(
        text(
            "CREATE UNIQUE INDEX IF NOT EXISTS ux_co_attainments_key ON co_attainments "
            "(course_id, section_id, co_id, student_id, academic_year)"
        )
    )
    session.execute(
        text(
            "CREATE UNIQUE INDEX IF NOT EXISTS ux_enrollments_student_course ON enrollments (student_id, course_id)"
        )
    )
    session.execute(
        text(
            "CREATE UNIQUE INDEX IF NOT EXISTS ux_question_co ON question_co_mappings (question_id, co_id)"
        )
    )
