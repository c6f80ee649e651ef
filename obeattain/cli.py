from __future__ import annotations

import argparse
import logging

from .config import APP_TITLE, DEFAULT_ACADEMIC_YEAR, PROJECT_ROOT, configure_logging
from .db import init_db, session_scope
from .models import CourseStatus
from .results import ClassCOAttainment, CourseSummary, NoResult, POSummary
from .seed import seed_demo_data
from . import services

logger = logging.getLogger(__name__)

NO_DATA = "no data"


def _fmt_pct(value: float | None) -> str:
    if value is None:
        return NO_DATA
    return f"{value:.2f}%"


def format_class_attainment(result: ClassCOAttainment, indent: str = "  ") -> list[str]:
    label = result.co_code
    if result.section_name:
        label = f"{label} [{result.section_name}]"
    lines = [
        f"{indent}{label}: level {result.attainment_level}  "
        f"{result.students_meeting_target}/{result.total_students} met target "
        f"({_fmt_pct(result.percentage_meeting_target)})  "
        f"avg {_fmt_pct(result.average_attainment)}"
    ]
    for section in result.section_breakdown:
        lines.extend(format_class_attainment(section, indent=indent + "    "))
    return lines


def format_course_summary(summary: CourseSummary) -> str:
    t = summary.thresholds
    lines = [
        f"{summary.course_code} - {summary.course_name}",
        f"  target {t.target:g}%  thresholds L1 {t.level1:g} / L2 {t.level2:g} / L3 {t.level3:g}",
        f"  students measured: {summary.total_students}",
    ]
    for result in summary.co_attainments:
        lines.extend(format_class_attainment(result))
    for co in summary.unmeasured_cos:
        lines.append(f"  {co.co_code}: {NO_DATA} ({co.reason})")
    return "\n".join(lines)


def format_po_summary(summary: POSummary) -> str:
    lines = [
        f"PO attainment for {summary.scope.value} {summary.scope_name}",
        f"  courses in scope: {summary.completed_courses}/{summary.total_courses}",
    ]
    if summary.message:
        lines.append(f"  {summary.message}")
    if not summary.po_attainments:
        return "\n".join(lines)

    lines.append(
        f"  overall {_fmt_pct(summary.overall_attainment)}  "
        f"NBA compliance {_fmt_pct(summary.nba_compliance_score)} "
        f"({'compliant' if summary.is_compliant else 'not compliant'})"
    )
    for po in summary.po_attainments:
        if not po.is_measured:
            lines.append(f"  {po.po_code}: {NO_DATA} (no CO mappings)")
            continue
        lines.append(
            f"  {po.po_code}: {po.actual_attainment}% {po.status.value}  "
            f"avg level {po.avg_mapping_level:.2f}  base {po.base_attainment}%  "
            f"coverage {po.mapped_cos}/{po.co_count} ({po.co_coverage_percent}%)"
        )
    if summary.recommendations:
        lines.append("  Recommendations:")
        lines.extend(f"  - {r}" for r in summary.recommendations)
    return "\n".join(lines)


def _print_no_result(result: NoResult) -> int:
    print(f"{NO_DATA}: {result.reason}")
    return 1


def _cmd_init_db(args: argparse.Namespace) -> int:
    (PROJECT_ROOT / "data").mkdir(parents=True, exist_ok=True)
    init_db()
    print("Database ready.")
    return 0


def _cmd_seed(args: argparse.Namespace) -> int:
    counts = seed_demo_data(reset=args.reset, rng_seed=args.seed)
    print("Demo data ready:")
    for k, v in counts.items():
        print(f"- {k}: {v}")
    return 0


def _cmd_recalc(args: argparse.Namespace) -> int:
    year = args.year or DEFAULT_ACADEMIC_YEAR
    filters = services.AttainmentFilters(section_id=args.section, academic_year=args.marks_year)
    with session_scope() as session:
        written = services.recalculate_course_attainment(
            session, course_id=args.course, academic_year=year, filters=filters
        )
    print(f"Saved {written} CO attainment rows for {year}.")
    return 0


def _cmd_co_report(args: argparse.Namespace) -> int:
    filters = services.AttainmentFilters(
        section_id=args.section,
        academic_year=args.marks_year,
        weighted=args.weighted,
        by_section=args.by_section,
    )
    with session_scope() as session:
        summary = services.calculate_course_attainment(session, course_id=args.course, filters=filters)
    if isinstance(summary, NoResult):
        return _print_no_result(summary)
    print(format_course_summary(summary))
    return 0


def _cmd_po_report(args: argparse.Namespace) -> int:
    statuses = tuple(CourseStatus(s) for s in args.status) if args.status else (CourseStatus.COMPLETED,)
    filters = services.POFilters(course_statuses=statuses)
    with session_scope() as session:
        if args.course is not None:
            summary = services.calculate_course_po_attainment(session, course_id=args.course, filters=filters)
        elif args.batch is not None:
            summary = services.calculate_batch_po_attainment(session, batch_id=args.batch, filters=filters)
        else:
            summary = services.calculate_program_po_attainment(
                session, program_id=args.program, filters=filters
            )
    if isinstance(summary, NoResult):
        return _print_no_result(summary)
    print(format_po_summary(summary))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="obeattain", description=APP_TITLE)
    parser.add_argument("--log-level", default=None, help="Override OBEATTAIN_LOG_LEVEL.")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("init-db", help="Create tables and repair duplicate rows.")
    p.set_defaults(func=_cmd_init_db)

    p = sub.add_parser("seed", help="Load deterministic demo data.")
    p.add_argument(
        "--reset",
        action="store_true",
        help="Drop all tables before seeding (DANGEROUS: deletes existing data).",
    )
    p.add_argument("--seed", type=int, default=42, help="Random seed (default: 42).")
    p.set_defaults(func=_cmd_seed)

    p = sub.add_parser("recalc", help="Recompute and save per-student CO attainment for a course.")
    p.add_argument("--course", type=int, required=True)
    p.add_argument("--section", type=int, default=None)
    p.add_argument("--year", default=None, help=f"Academic year to save under (default: {DEFAULT_ACADEMIC_YEAR}).")
    p.add_argument("--marks-year", default=None, help="Only use marks recorded for this academic year.")
    p.set_defaults(func=_cmd_recalc)

    p = sub.add_parser("co-report", help="Class-level CO attainment for a course.")
    p.add_argument("--course", type=int, required=True)
    p.add_argument("--section", type=int, default=None)
    p.add_argument("--marks-year", default=None, help="Only use marks recorded for this academic year.")
    p.add_argument("--weighted", action="store_true", help="Weight marks by assessment weightage.")
    p.add_argument("--by-section", action="store_true", help="Break each CO down by section.")
    p.set_defaults(func=_cmd_co_report)

    p = sub.add_parser("po-report", help="PO attainment for a course, batch or program.")
    scope = p.add_mutually_exclusive_group(required=True)
    scope.add_argument("--course", type=int)
    scope.add_argument("--batch", type=int)
    scope.add_argument("--program", type=int)
    p.add_argument(
        "--status",
        nargs="+",
        choices=[s.value for s in CourseStatus],
        help="Course statuses that count (default: COMPLETED).",
    )
    p.set_defaults(func=_cmd_po_report)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    try:
        return args.func(args)
    except services.ServiceError as exc:
        logger.error("%s", exc)
        print(f"Error: {exc}")
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
