from __future__ import annotations

from contextlib import contextmanager

import pytest
from sqlalchemy import func, select

from obeattain import cli, seed
from obeattain.db import init_db, session_scope
from obeattain.models import Batch, COAttainment, Course, CourseStatus, Program, StudentMark


@pytest.fixture()
def bound(engine, monkeypatch, tmp_path):
    """Point the command-line entry points at the test database."""

    @contextmanager
    def scope():
        with session_scope(bind=engine) as s:
            yield s

    monkeypatch.setattr(cli, "session_scope", scope)
    monkeypatch.setattr(seed, "session_scope", scope)
    monkeypatch.setattr(seed, "engine", engine)
    monkeypatch.setattr(seed, "init_db", lambda: init_db(bind=engine))
    monkeypatch.setattr(seed, "PROJECT_ROOT", tmp_path)
    return engine


def test_seed_is_idempotent(bound):
    first = seed.seed_demo_data(rng_seed=7)
    second = seed.seed_demo_data(rng_seed=7)

    assert first["courses_created"] == 3
    assert first["students_created"] == 16
    assert first["marks_created"] > 0
    assert all(v == 0 for v in second.values())

    with session_scope(bind=bound) as s:
        assert s.execute(select(func.count(Program.id))).scalar_one() == 1
        statuses = set(s.execute(select(Course.status)).scalars())
        unattempted = s.execute(
            select(func.count(StudentMark.id)).where(StudentMark.obtained_marks.is_(None))
        ).scalar_one()

    assert statuses == {CourseStatus.COMPLETED, CourseStatus.ACTIVE}
    assert unattempted == first["unattempted_marks"]


def test_reports_on_seeded_data(bound, capsys):
    seed.seed_demo_data(rng_seed=42)
    with session_scope(bind=bound) as s:
        course_id = s.execute(select(Course.id).where(Course.code == "CS301")).scalar_one()
        batch_id = s.execute(select(Batch.id)).scalar_one()

    assert cli.main(["co-report", "--course", str(course_id), "--by-section"]) == 0
    out = capsys.readouterr().out
    assert "CS301" in out
    assert "CO1" in out
    assert "[A]" in out

    assert cli.main(["po-report", "--batch", str(batch_id)]) == 0
    out = capsys.readouterr().out
    assert "NBA compliance" in out
    # The last PO is never mapped by the demo data.
    assert "PO6: no data" in out

    assert cli.main(["recalc", "--course", str(course_id), "--year", "2024-25"]) == 0
    assert "Saved" in capsys.readouterr().out
    with session_scope(bind=bound) as s:
        saved = s.execute(
            select(func.count(COAttainment.id)).where(COAttainment.academic_year == "2024-25")
        ).scalar_one()
    assert saved > 0


def test_po_report_for_unfinished_course(bound, capsys):
    seed.seed_demo_data(rng_seed=42)
    with session_scope(bind=bound) as s:
        course_id = s.execute(select(Course.id).where(Course.code == "CS303")).scalar_one()

    assert cli.main(["po-report", "--course", str(course_id)]) == 0
    assert "only available for completed courses" in capsys.readouterr().out


def test_missing_course_prints_no_data(bound, capsys):
    assert cli.main(["co-report", "--course", "404"]) == 1
    assert capsys.readouterr().out.startswith("no data:")


def test_po_report_needs_exactly_one_scope():
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(["po-report", "--course", "1", "--batch", "2"])
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(["po-report"])
