from __future__ import annotations

import argparse
import random

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .config import DEFAULT_ACADEMIC_YEAR, PROJECT_ROOT
from .db import engine, init_db, session_scope
from .models import (
    Assessment,
    Base,
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

PROGRAM_CODE = "BTECH-CSE"
BATCH_NAME = "2021-25"

# (code, name, status, level thresholds)
COURSES_SEED = [
    ("CS301", "Data Structures & Algorithms", CourseStatus.COMPLETED, (60.0, 70.0, 80.0)),
    ("CS302", "Database Management Systems", CourseStatus.COMPLETED, (50.0, 60.0, 70.0)),
    ("CS303", "Operating Systems", CourseStatus.ACTIVE, (60.0, 70.0, 80.0)),
]

# (name, type, max marks, weightage, per-question marks)
ASSESSMENTS_SEED = [
    ("Mid Sem", "EXAM", 30.0, 30.0, [10.0, 10.0, 10.0]),
    ("Assignment", "ASSIGNMENT", 20.0, 20.0, [10.0, 10.0]),
    ("End Sem", "EXAM", 50.0, 50.0, [10.0, 10.0, 10.0, 10.0, 10.0]),
]

PO_COUNT = 6
CO_COUNT = 4

FIRST_NAMES = [
    "Aarav",
    "Aditya",
    "Ananya",
    "Ayesha",
    "Diya",
    "Ishaan",
    "Kavya",
    "Meera",
    "Neha",
    "Nikhil",
    "Priya",
    "Rahul",
    "Riya",
    "Rohit",
    "Sanya",
    "Shreya",
]

LAST_NAMES = ["Sharma", "Verma", "Gupta", "Singh", "Patel", "Mishra", "Jain", "Joshi"]


def _get_program(session: Session, code: str) -> Program | None:
    return session.execute(select(Program).where(Program.code == code)).scalar_one_or_none()


def _get_batch(session: Session, program_id: int, name: str) -> Batch | None:
    stmt = select(Batch).where(Batch.program_id == program_id, Batch.name == name)
    return session.execute(stmt).scalar_one_or_none()


def _get_section(session: Session, batch_id: int, name: str) -> Section | None:
    stmt = select(Section).where(Section.batch_id == batch_id, Section.name == name)
    return session.execute(stmt).scalar_one_or_none()


def _get_course(session: Session, batch_id: int, code: str) -> Course | None:
    stmt = select(Course).where(Course.batch_id == batch_id, Course.code == code)
    return session.execute(stmt).scalar_one_or_none()


def _get_student_by_roll(session: Session, roll_no: str) -> Student | None:
    return session.execute(select(Student).where(Student.roll_no == roll_no)).scalar_one_or_none()


def _get_enrollment(session: Session, student_id: int, course_id: int) -> Enrollment | None:
    stmt = select(Enrollment).where(
        Enrollment.student_id == student_id,
        Enrollment.course_id == course_id,
    )
    return session.execute(stmt).scalar_one_or_none()


def _marks_count(session: Session, student_id: int, question_ids: list[int]) -> int:
    if not question_ids:
        return 0
    return int(
        session.execute(
            select(func.count(StudentMark.id))
            .where(StudentMark.student_id == student_id)
            .where(StudentMark.question_id.in_(question_ids))
        ).scalar_one()
    )


def _seed_course_structure(
    session: Session,
    course: Course,
    pos: list[ProgramOutcome],
    rng: random.Random,
    counts: dict[str, int],
) -> list[Question]:
    """COs, CO-PO matrix, assessments and questions for a new course."""
    cos: list[CourseOutcome] = []
    for i in range(1, CO_COUNT + 1):
        co = CourseOutcome(
            course_id=course.id,
            code=f"CO{i}",
            description=f"{course.name}: outcome {i}",
        )
        session.add(co)
        cos.append(co)
    session.flush()

    # Each CO correlates with two or three POs; the last PO stays unmapped.
    for co in cos:
        for po in rng.sample(pos[:-1], k=rng.randint(2, 3)):
            session.add(
                COPOMapping(course_id=course.id, co_id=co.id, po_id=po.id, level=rng.randint(1, 3))
            )
            counts["copo_mappings_created"] += 1

    questions: list[Question] = []
    for name, kind, max_marks, weightage, parts in ASSESSMENTS_SEED:
        assessment = Assessment(
            course_id=course.id,
            name=name,
            type=kind,
            max_marks=max_marks,
            weightage=weightage,
        )
        session.add(assessment)
        session.flush()
        counts["assessments_created"] += 1

        for qi, part_marks in enumerate(parts, start=1):
            question = Question(assessment_id=assessment.id, code=f"Q{qi}", max_marks=part_marks)
            session.add(question)
            session.flush()
            co = cos[(qi - 1) % len(cos)]
            session.add(QuestionCOMapping(question_id=question.id, co_id=co.id))
            questions.append(question)

    session.flush()
    return questions


def seed_demo_data(*, reset: bool = False, rng_seed: int = 42) -> dict[str, int]:
    """Seed the database with a deterministic demo program.

    - Safe to run multiple times: programs, courses, students and enrollments are
      looked up by their codes before being created.
    - Marks are only created for a student/course pair with no marks yet.
    - A few marks are left unattempted (NULL) so reports show that case.

    Returns counts of inserted records.
    """

    # Ensure local data dir exists for SQLite default.
    (PROJECT_ROOT / "data").mkdir(parents=True, exist_ok=True)

    if reset:
        Base.metadata.drop_all(engine)

    init_db()

    rng = random.Random(rng_seed)

    counts = {
        "programs_created": 0,
        "courses_created": 0,
        "copo_mappings_created": 0,
        "assessments_created": 0,
        "students_created": 0,
        "enrollments_created": 0,
        "marks_created": 0,
        "unattempted_marks": 0,
    }

    with session_scope() as session:
        program = _get_program(session, PROGRAM_CODE)
        if program is None:
            program = Program(code=PROGRAM_CODE, name="B.Tech Computer Science & Engineering")
            session.add(program)
            session.flush()
            for i in range(1, PO_COUNT + 1):
                session.add(
                    ProgramOutcome(program_id=program.id, code=f"PO{i}", description=f"Program outcome {i}")
                )
            counts["programs_created"] += 1

        batch = _get_batch(session, program.id, BATCH_NAME)
        if batch is None:
            batch = Batch(program_id=program.id, name=BATCH_NAME, start_year=2021, end_year=2025)
            session.add(batch)
            session.flush()

        sections: list[Section] = []
        for name in ("A", "B"):
            section = _get_section(session, batch.id, name)
            if section is None:
                section = Section(batch_id=batch.id, name=name)
                session.add(section)
                session.flush()
            sections.append(section)

        session.flush()
        pos = list(
            session.execute(
                select(ProgramOutcome)
                .where(ProgramOutcome.program_id == program.id)
                .order_by(ProgramOutcome.code)
            ).scalars()
        )

        # Courses
        course_questions: list[tuple[Course, list[Question]]] = []
        for code, name, status, (l1, l2, l3) in COURSES_SEED:
            course = _get_course(session, batch.id, code)
            if course is None:
                course = Course(
                    batch_id=batch.id,
                    code=code,
                    name=name,
                    status=status,
                    target_percentage=60.0,
                    level1_threshold=l1,
                    level2_threshold=l2,
                    level3_threshold=l3,
                )
                session.add(course)
                session.flush()
                _seed_course_structure(session, course, pos, rng, counts)
                counts["courses_created"] += 1

            questions = list(
                session.execute(
                    select(Question)
                    .join(Assessment, Assessment.id == Question.assessment_id)
                    .where(Assessment.course_id == course.id)
                    .order_by(Question.id)
                ).scalars()
            )
            course_questions.append((course, questions))

        # Students: uneven section sizes so section roll-ups differ from their mean.
        students: list[Student] = []
        for i in range(1, 17):
            roll_no = f"DEMO-{i:03d}"
            student = _get_student_by_roll(session, roll_no)
            if student is None:
                student = Student(
                    roll_no=roll_no,
                    name=f"{rng.choice(FIRST_NAMES)} {rng.choice(LAST_NAMES)}",
                    section_id=sections[0].id if i <= 10 else sections[1].id,
                )
                session.add(student)
                session.flush()
                counts["students_created"] += 1
            students.append(student)

        # Enrollments + marks
        for student in students:
            # Stronger and weaker cohorts so levels spread across the scale.
            ability = rng.uniform(0.35, 0.95)

            for course, questions in course_questions:
                if _get_enrollment(session, student.id, course.id) is None:
                    session.add(Enrollment(student_id=student.id, course_id=course.id))
                    counts["enrollments_created"] += 1

                question_ids = [q.id for q in questions]
                if _marks_count(session, student.id, question_ids) > 0:
                    continue

                for question in questions:
                    obtained: float | None = round(
                        min(question.max_marks, max(0.0, rng.gauss(ability, 0.15) * question.max_marks)),
                        1,
                    )
                    if rng.random() < 0.08:
                        obtained = None
                        counts["unattempted_marks"] += 1
                    session.add(
                        StudentMark(
                            question_id=question.id,
                            student_id=student.id,
                            obtained_marks=obtained,
                            max_marks=question.max_marks,
                            academic_year=DEFAULT_ACADEMIC_YEAR,
                        )
                    )
                    counts["marks_created"] += 1

        session.flush()

    return counts


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Seed the attainment database with demo data")
    parser.add_argument(
        "--reset",
        action="store_true",
        help="Drop all tables before seeding (DANGEROUS: deletes existing data).",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=42,
        help="Random seed for deterministic demo data (default: 42).",
    )

    args = parser.parse_args(argv)

    counts = seed_demo_data(reset=args.reset, rng_seed=args.seed)
    print("Demo data ready:")
    for k, v in counts.items():
        print(f"- {k}: {v}")

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
