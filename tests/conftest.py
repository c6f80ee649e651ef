from __future__ import annotations

from collections.abc import Iterable, Iterator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from obeattain.db import init_db
from obeattain.models import (
    Assessment,
    Batch,
    COPOMapping,
    Course,
    CourseOutcome,
    CourseStatus,
    Enrollment,
    Program,
    ProgramOutcome,
    Question,
    QuestionCOMapping,
    Section,
    Student,
    StudentMark,
)


@pytest.fixture()
def engine(tmp_path) -> Iterator[Engine]:
    eng = create_engine(f"sqlite:///{(tmp_path / 'test.db').as_posix()}")
    init_db(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session(engine: Engine) -> Iterator[Session]:
    with Session(engine) as s:
        yield s


class Factory:
    """Small row builders; every helper flushes so ids are available."""

    def __init__(self, session: Session) -> None:
        self.session = session
        self._roll = 0

    def _add(self, obj):
        self.session.add(obj)
        self.session.flush()
        return obj

    def program(self, code: str = "BTECH", po_count: int = 0) -> Program:
        program = self._add(Program(code=code, name=f"{code} programme"))
        for i in range(1, po_count + 1):
            self._add(ProgramOutcome(program_id=program.id, code=f"PO{i}", description=f"PO {i}"))
        return program

    def program_outcomes(self, program: Program) -> list[ProgramOutcome]:
        self.session.refresh(program)
        return sorted(program.outcomes, key=lambda po: po.code)

    def batch(self, program: Program, name: str = "2021-25") -> Batch:
        return self._add(Batch(program_id=program.id, name=name, start_year=2021, end_year=2025))

    def section(self, batch: Batch, name: str) -> Section:
        return self._add(Section(batch_id=batch.id, name=name))

    def course(
        self,
        *,
        batch: Batch | None = None,
        code: str = "CS101",
        status: CourseStatus = CourseStatus.COMPLETED,
        target: float | None = 60.0,
        thresholds: tuple[float, float, float] = (60.0, 70.0, 80.0),
    ) -> Course:
        l1, l2, l3 = thresholds
        return self._add(
            Course(
                batch_id=batch.id if batch is not None else None,
                code=code,
                name=f"Course {code}",
                status=status,
                target_percentage=target,
                level1_threshold=l1,
                level2_threshold=l2,
                level3_threshold=l3,
            )
        )

    def co(self, course: Course, code: str = "CO1", *, is_active: bool = True) -> CourseOutcome:
        return self._add(
            CourseOutcome(course_id=course.id, code=code, description=f"{code} outcome", is_active=is_active)
        )

    def assessment(
        self,
        course: Course,
        name: str = "Mid Sem",
        *,
        weightage: float = 0.0,
        max_marks: float = 100.0,
        section: Section | None = None,
    ) -> Assessment:
        return self._add(
            Assessment(
                course_id=course.id,
                section_id=section.id if section is not None else None,
                name=name,
                max_marks=max_marks,
                weightage=weightage,
            )
        )

    def question(
        self,
        assessment: Assessment,
        max_marks: float = 10.0,
        cos: Iterable[CourseOutcome] = (),
        code: str = "Q",
    ) -> Question:
        question = self._add(Question(assessment_id=assessment.id, code=code, max_marks=max_marks))
        for co in cos:
            self._add(QuestionCOMapping(question_id=question.id, co_id=co.id))
        return question

    def student(
        self,
        *,
        section: Section | None = None,
        courses: Iterable[Course] = (),
        name: str | None = None,
    ) -> Student:
        self._roll += 1
        roll_no = f"R{self._roll:03d}"
        student = self._add(
            Student(
                roll_no=roll_no,
                name=name or f"Student {self._roll}",
                section_id=section.id if section is not None else None,
            )
        )
        for course in courses:
            self.enroll(student, course)
        return student

    def enroll(self, student: Student, course: Course, *, is_active: bool = True) -> Enrollment:
        return self._add(Enrollment(student_id=student.id, course_id=course.id, is_active=is_active))

    def mark(
        self,
        student: Student,
        question: Question,
        obtained: float | None,
        *,
        academic_year: str | None = None,
    ) -> StudentMark:
        return self._add(
            StudentMark(
                question_id=question.id,
                student_id=student.id,
                obtained_marks=obtained,
                max_marks=question.max_marks,
                academic_year=academic_year,
            )
        )

    def mapping(self, course: Course, co: CourseOutcome, po: ProgramOutcome, level: int) -> COPOMapping:
        return self._add(COPOMapping(course_id=course.id, co_id=co.id, po_id=po.id, level=level))


@pytest.fixture()
def factory(session: Session) -> Factory:
    return Factory(session)
