from __future__ import annotations

import datetime as dt
import enum

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# Section id stored on course-level attainment rows (no section scope).
COURSE_LEVEL_SECTION = 0


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class Base(DeclarativeBase):
    pass


class CourseStatus(str, enum.Enum):
    FUTURE = "FUTURE"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"


# -----------------
# Academic structure
# -----------------


class Program(Base):
    __tablename__ = "programs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(160))

    batches: Mapped[list[Batch]] = relationship(
        back_populates="program", cascade="all, delete-orphan"
    )
    outcomes: Mapped[list[ProgramOutcome]] = relationship(
        back_populates="program", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"Program(id={self.id!r}, code={self.code!r})"


class Batch(Base):
    __tablename__ = "batches"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    program_id: Mapped[int] = mapped_column(ForeignKey("programs.id", ondelete="CASCADE"), index=True)
    name: Mapped[str] = mapped_column(String(80))
    start_year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    end_year: Mapped[int | None] = mapped_column(Integer, nullable=True)

    program: Mapped[Program] = relationship(back_populates="batches")
    sections: Mapped[list[Section]] = relationship(
        back_populates="batch", cascade="all, delete-orphan"
    )
    courses: Mapped[list[Course]] = relationship(
        back_populates="batch", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"Batch(id={self.id!r}, name={self.name!r})"


class Section(Base):
    __tablename__ = "sections"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    batch_id: Mapped[int] = mapped_column(ForeignKey("batches.id", ondelete="CASCADE"), index=True)
    name: Mapped[str] = mapped_column(String(40))

    batch: Mapped[Batch] = relationship(back_populates="sections")
    students: Mapped[list[Student]] = relationship(back_populates="section")


class Student(Base):
    __tablename__ = "students"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    roll_no: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(120), index=True)
    section_id: Mapped[int | None] = mapped_column(
        ForeignKey("sections.id", ondelete="SET NULL"), nullable=True, index=True
    )

    section: Mapped[Section | None] = relationship(back_populates="students")
    enrollments: Mapped[list[Enrollment]] = relationship(
        back_populates="student", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"Student(id={self.id!r}, roll_no={self.roll_no!r}, name={self.name!r})"


class Course(Base):
    __tablename__ = "courses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    batch_id: Mapped[int | None] = mapped_column(
        ForeignKey("batches.id", ondelete="CASCADE"), nullable=True, index=True
    )
    code: Mapped[str] = mapped_column(String(32), index=True)
    name: Mapped[str] = mapped_column(String(160))
    status: Mapped[CourseStatus] = mapped_column(
        Enum(CourseStatus, native_enum=False, length=16), default=CourseStatus.FUTURE
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # NULL falls back to DEFAULT_TARGET_PERCENTAGE.
    target_percentage: Mapped[float | None] = mapped_column(Float, nullable=True)
    level1_threshold: Mapped[float] = mapped_column(Float, default=60.0)
    level2_threshold: Mapped[float] = mapped_column(Float, default=70.0)
    level3_threshold: Mapped[float] = mapped_column(Float, default=80.0)

    batch: Mapped[Batch | None] = relationship(back_populates="courses")
    outcomes: Mapped[list[CourseOutcome]] = relationship(
        back_populates="course", cascade="all, delete-orphan"
    )
    assessments: Mapped[list[Assessment]] = relationship(
        back_populates="course", cascade="all, delete-orphan"
    )
    enrollments: Mapped[list[Enrollment]] = relationship(
        back_populates="course", cascade="all, delete-orphan"
    )
    copo_mappings: Mapped[list[COPOMapping]] = relationship(
        back_populates="course", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"Course(id={self.id!r}, code={self.code!r}, status={self.status!r})"


class Enrollment(Base):
    __tablename__ = "enrollments"
    __table_args__ = (UniqueConstraint("student_id", "course_id", name="uq_enroll"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    student_id: Mapped[int] = mapped_column(ForeignKey("students.id", ondelete="CASCADE"), index=True)
    course_id: Mapped[int] = mapped_column(ForeignKey("courses.id", ondelete="CASCADE"), index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    enrolled_on: Mapped[dt.datetime] = mapped_column(DateTime, default=_utcnow)

    student: Mapped[Student] = relationship(back_populates="enrollments")
    course: Mapped[Course] = relationship(back_populates="enrollments")

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"Enrollment(id={self.id!r}, student_id={self.student_id!r}, course_id={self.course_id!r})"
        )


# -----------------
# Outcomes
# -----------------


class CourseOutcome(Base):
    __tablename__ = "course_outcomes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    course_id: Mapped[int] = mapped_column(ForeignKey("courses.id", ondelete="CASCADE"), index=True)
    code: Mapped[str] = mapped_column(String(16))
    description: Mapped[str] = mapped_column(Text, default="")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    course: Mapped[Course] = relationship(back_populates="outcomes")

    def __repr__(self) -> str:  # pragma: no cover
        return f"CourseOutcome(id={self.id!r}, code={self.code!r})"


class ProgramOutcome(Base):
    __tablename__ = "program_outcomes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    program_id: Mapped[int] = mapped_column(ForeignKey("programs.id", ondelete="CASCADE"), index=True)
    code: Mapped[str] = mapped_column(String(16))
    description: Mapped[str] = mapped_column(Text, default="")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    program: Mapped[Program] = relationship(back_populates="outcomes")

    def __repr__(self) -> str:  # pragma: no cover
        return f"ProgramOutcome(id={self.id!r}, code={self.code!r})"


class COPOMapping(Base):
    """Articulation matrix cell: correlation 0 (none) to 3 (strong)."""

    __tablename__ = "co_po_mappings"
    __table_args__ = (UniqueConstraint("co_id", "po_id", name="uq_co_po"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    course_id: Mapped[int] = mapped_column(ForeignKey("courses.id", ondelete="CASCADE"), index=True)
    co_id: Mapped[int] = mapped_column(ForeignKey("course_outcomes.id", ondelete="CASCADE"), index=True)
    po_id: Mapped[int] = mapped_column(ForeignKey("program_outcomes.id", ondelete="CASCADE"), index=True)
    level: Mapped[int] = mapped_column(Integer, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    course: Mapped[Course] = relationship(back_populates="copo_mappings")


# -----------------
# Assessments & marks
# -----------------


class Assessment(Base):
    __tablename__ = "assessments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    course_id: Mapped[int] = mapped_column(ForeignKey("courses.id", ondelete="CASCADE"), index=True)
    section_id: Mapped[int | None] = mapped_column(
        ForeignKey("sections.id", ondelete="SET NULL"), nullable=True, index=True
    )
    name: Mapped[str] = mapped_column(String(80))
    type: Mapped[str] = mapped_column(String(32), default="EXAM")
    max_marks: Mapped[float] = mapped_column(Float, default=100.0)
    # Percentage share of the course; a course's assessments sum to roughly 100.
    weightage: Mapped[float] = mapped_column(Float, default=0.0)

    course: Mapped[Course] = relationship(back_populates="assessments")
    questions: Mapped[list[Question]] = relationship(
        back_populates="assessment", cascade="all, delete-orphan"
    )


class Question(Base):
    __tablename__ = "questions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    assessment_id: Mapped[int] = mapped_column(ForeignKey("assessments.id", ondelete="CASCADE"), index=True)
    code: Mapped[str] = mapped_column(String(20), default="")
    max_marks: Mapped[float] = mapped_column(Float)

    assessment: Mapped[Assessment] = relationship(back_populates="questions")
    co_mappings: Mapped[list[QuestionCOMapping]] = relationship(
        back_populates="question", cascade="all, delete-orphan"
    )


class QuestionCOMapping(Base):
    __tablename__ = "question_co_mappings"
    __table_args__ = (UniqueConstraint("question_id", "co_id", name="uq_question_co"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    question_id: Mapped[int] = mapped_column(ForeignKey("questions.id", ondelete="CASCADE"), index=True)
    co_id: Mapped[int] = mapped_column(ForeignKey("course_outcomes.id", ondelete="CASCADE"), index=True)

    question: Mapped[Question] = relationship(back_populates="co_mappings")


class StudentMark(Base):
    __tablename__ = "student_marks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    question_id: Mapped[int] = mapped_column(ForeignKey("questions.id", ondelete="CASCADE"), index=True)
    student_id: Mapped[int] = mapped_column(ForeignKey("students.id", ondelete="CASCADE"), index=True)
    # NULL means the question was not attempted; it is never read as zero.
    obtained_marks: Mapped[float | None] = mapped_column(Float, nullable=True)
    max_marks: Mapped[float] = mapped_column(Float)
    academic_year: Mapped[str | None] = mapped_column(String(16), nullable=True, index=True)


# -----------------
# Computed attainment
# -----------------


class COAttainment(Base):
    """Per-student CO result written back by the engine.

    The natural key is (course, section, CO, student, academic year);
    recalculation overwrites the row in place.
    """

    __tablename__ = "co_attainments"
    __table_args__ = (
        UniqueConstraint(
            "course_id",
            "section_id",
            "co_id",
            "student_id",
            "academic_year",
            name="uq_co_attainment_key",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    course_id: Mapped[int] = mapped_column(ForeignKey("courses.id", ondelete="CASCADE"), index=True)
    section_id: Mapped[int] = mapped_column(Integer, default=COURSE_LEVEL_SECTION)
    co_id: Mapped[int] = mapped_column(ForeignKey("course_outcomes.id", ondelete="CASCADE"), index=True)
    student_id: Mapped[int] = mapped_column(ForeignKey("students.id", ondelete="CASCADE"), index=True)
    academic_year: Mapped[str] = mapped_column(String(16))

    percentage: Mapped[float] = mapped_column(Float)
    met_target: Mapped[bool] = mapped_column(Boolean, default=False)
    calculated_at: Mapped[dt.datetime] = mapped_column(DateTime, default=_utcnow)

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"COAttainment(course_id={self.course_id!r}, co_id={self.co_id!r}, "
            f"student_id={self.student_id!r}, percentage={self.percentage!r})"
        )
