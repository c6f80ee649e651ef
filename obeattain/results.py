"""Value types passed between the calculation stages.

Everything here is immutable. "Could not be measured" is an explicit
:class:`NoResult` value rather than ``None`` or ``0`` so that callers have to
decide, at the type level, to leave it out of an aggregate.
"""
from __future__ import annotations

import datetime as dt
import enum
from dataclasses import dataclass


@dataclass(frozen=True)
class NoResult:
    """Nothing could be measured; ``reason`` says why.

    Falsy, so ``if result:`` reads the same as for a missing value, but it
    cannot be added to or compared with a number by accident.
    """

    reason: str

    def __bool__(self) -> bool:
        return False


# -----------------
# Marks
# -----------------


@dataclass(frozen=True)
class Attempted:
    obtained: float
    max_marks: float


@dataclass(frozen=True)
class Unattempted:
    max_marks: float


MarkOutcome = Attempted | Unattempted


def classify_mark(obtained: float | None, max_marks: float) -> MarkOutcome:
    """Turn a stored mark into its variant; a NULL score means not attempted."""
    if obtained is None:
        return Unattempted(max_marks=max_marks)
    return Attempted(obtained=float(obtained), max_marks=float(max_marks))


# -----------------
# Course-level configuration
# -----------------


@dataclass(frozen=True)
class CourseThresholds:
    """Per-course CO policy: student target and the three class-level cut-offs."""

    target: float
    level1: float
    level2: float
    level3: float


# -----------------
# Student / class results
# -----------------


@dataclass(frozen=True)
class StudentCOAttainment:
    student_id: int
    student_name: str
    roll_no: str
    co_id: int
    co_code: str
    percentage: float
    met_target: bool
    total_obtained_marks: float
    total_max_marks: float
    attempted_questions: int
    total_questions: int
    section_id: int | None = None
    section_name: str | None = None
    # Only filled in by the weighted calculator.
    weighted_score: float | None = None
    max_weighted_score: float | None = None
    simple_percentage: float | None = None

    @property
    def weighted_percentage(self) -> float:
        if self.weighted_score is None or not self.max_weighted_score:
            return self.percentage
        return self.weighted_score / self.max_weighted_score * 100.0


@dataclass(frozen=True)
class AssessmentWeightage:
    assessment_id: int
    assessment_name: str
    assessment_type: str
    weightage: float
    max_marks: float


@dataclass(frozen=True)
class ClassCOAttainment:
    co_id: int
    co_code: str
    co_description: str
    total_students: int
    students_meeting_target: int
    percentage_meeting_target: float
    attainment_level: int
    thresholds: CourseThresholds
    average_attainment: float
    weighted_average_attainment: float
    student_attainments: tuple[StudentCOAttainment, ...] = ()
    section_id: int | None = None
    section_name: str | None = None
    section_breakdown: tuple[ClassCOAttainment, ...] = ()
    assessment_weightages: tuple[AssessmentWeightage, ...] = ()

    @property
    def target_percentage(self) -> float:
        return self.thresholds.target


@dataclass(frozen=True)
class UnmeasuredCO:
    co_id: int
    co_code: str
    reason: str


@dataclass(frozen=True)
class CourseSummary:
    course_id: int
    course_code: str
    course_name: str
    thresholds: CourseThresholds
    total_students: int
    co_attainments: tuple[ClassCOAttainment, ...]
    unmeasured_cos: tuple[UnmeasuredCO, ...]
    calculated_at: dt.datetime

    @property
    def student_attainments(self) -> tuple[StudentCOAttainment, ...]:
        return tuple(s for co in self.co_attainments for s in co.student_attainments)


@dataclass(frozen=True)
class COReport:
    class_attainment: ClassCOAttainment
    student_breakdown: tuple[StudentCOAttainment, ...]
    standard_case: StudentCOAttainment | None
    unattempted_case: StudentCOAttainment | None


# -----------------
# Program outcomes
# -----------------


class POStatus(str, enum.Enum):
    NOT_ATTAINED = "Not Attained"
    LEVEL_1 = "Level 1"
    LEVEL_2 = "Level 2"
    LEVEL_3 = "Level 3"


class POScope(str, enum.Enum):
    COURSE = "course"
    BATCH = "batch"
    PROGRAM = "program"


@dataclass(frozen=True)
class POAttainment:
    po_id: int
    po_code: str
    po_description: str
    program_id: int
    target_attainment: float
    actual_attainment: int
    co_count: int
    mapped_cos: int
    avg_mapping_level: float
    base_attainment: int
    co_coverage_factor: float
    status: POStatus

    @property
    def co_coverage_percent(self) -> int:
        return round(self.co_coverage_factor * 100)

    @property
    def is_measured(self) -> bool:
        return self.mapped_cos > 0


@dataclass(frozen=True)
class POSummary:
    scope: POScope
    scope_id: int
    scope_name: str
    program_id: int
    target_attainment: float
    overall_attainment: float
    nba_compliance_score: float
    total_pos: int
    attained_pos: int
    level3_pos: int
    level2_pos: int
    level1_pos: int
    not_attained_pos: int
    is_compliant: bool
    po_attainments: tuple[POAttainment, ...]
    total_courses: int
    completed_courses: int
    calculated_at: dt.datetime
    recommendations: tuple[str, ...] = ()
    message: str | None = None
