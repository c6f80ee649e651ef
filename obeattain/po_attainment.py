"""Program outcome attainment from CO-PO correlation mappings.

For one PO over a set of courses::

    avg_mapping_level = mean(level of every mapping to the PO)
    base_attainment   = 100 / 75 / 50 / 0   for avg >= 3 / >= 2 / >= 1 / else
    coverage          = distinct mapped COs / distinct COs in the courses
    actual            = round(base_attainment * coverage)

Batch and program figures are recomputed from the union of all mappings of
the courses in scope, not averaged from per-course figures.

The status cut-offs are a program-wide policy, independent of
the per-course CO thresholds.
"""
from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Collection, Iterable, Sequence
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from .models import COPOMapping, ProgramOutcome
from .recommendations import generate_recommendations
from .results import POAttainment, POScope, POStatus, POSummary

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class POStatusPolicy:
    level3: float = 80.0
    level2: float = 65.0
    # NBA attainment target; also the Level 1 cut-off.
    target: float = 60.0
    # Share of POs that must reach the target for a scope to be compliant.
    compliance_threshold: float = 60.0


NBA_POLICY = POStatusPolicy()


def _round_half_up(value: float) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def base_attainment(avg_mapping_level: float) -> int:
    """Fixed lookup from mean correlation strength to a percentage."""
    if avg_mapping_level >= 3:
        return 100
    if avg_mapping_level >= 2:
        return 75
    if avg_mapping_level >= 1:
        return 50
    return 0


def po_status(actual_attainment: float, policy: POStatusPolicy = NBA_POLICY) -> POStatus:
    if actual_attainment >= policy.level3:
        return POStatus.LEVEL_3
    if actual_attainment >= policy.level2:
        return POStatus.LEVEL_2
    if actual_attainment >= policy.target:
        return POStatus.LEVEL_1
    return POStatus.NOT_ATTAINED


def calculate_po_attainment(
    po: ProgramOutcome,
    mappings: Iterable[COPOMapping],
    scope_co_ids: Collection[int],
    policy: POStatusPolicy = NBA_POLICY,
) -> POAttainment:
    """Attainment of one PO over the COs of the courses in scope.

    A PO with no mapping is reported as 0 / Not Attained with zero coverage;
    it is never an error.
    """
    rows = [m for m in mappings if m.po_id == po.id]
    co_count = len(set(scope_co_ids))

    if not rows:
        logger.info("PO %s has no CO mappings in scope", po.code)
        return POAttainment(
            po_id=po.id,
            po_code=po.code,
            po_description=po.description,
            program_id=po.program_id,
            target_attainment=policy.target,
            actual_attainment=0,
            co_count=co_count,
            mapped_cos=0,
            avg_mapping_level=0.0,
            base_attainment=0,
            co_coverage_factor=0.0,
            status=POStatus.NOT_ATTAINED,
        )

    avg_level = sum(m.level for m in rows) / len(rows)
    base = base_attainment(avg_level)

    mapped = {m.co_id for m in rows} & set(scope_co_ids)
    coverage = len(mapped) / co_count if co_count else 0.0
    actual = _round_half_up(base * coverage)
    status = po_status(actual, policy)

    logger.info(
        "PO %s: %d mappings, avg level %.2f, base %d, coverage %d/%d, actual %d (%s)",
        po.code,
        len(rows),
        avg_level,
        base,
        len(mapped),
        co_count,
        actual,
        status.value,
    )

    return POAttainment(
        po_id=po.id,
        po_code=po.code,
        po_description=po.description,
        program_id=po.program_id,
        target_attainment=policy.target,
        actual_attainment=actual,
        co_count=co_count,
        mapped_cos=len(mapped),
        avg_mapping_level=round(avg_level, 2),
        base_attainment=base,
        co_coverage_factor=coverage,
        status=status,
    )


def calculate_po_attainments(
    pos: Sequence[ProgramOutcome],
    mappings: Sequence[COPOMapping],
    scope_co_ids: Collection[int],
    policy: POStatusPolicy = NBA_POLICY,
) -> list[POAttainment]:
    by_po: dict[int, list[COPOMapping]] = {}
    for mapping in mappings:
        by_po.setdefault(mapping.po_id, []).append(mapping)
    return [calculate_po_attainment(po, by_po.get(po.id, []), scope_co_ids, policy) for po in pos]


def nba_compliance_score(po_results: Sequence[POAttainment], policy: POStatusPolicy = NBA_POLICY) -> float:
    if not po_results:
        return 0.0
    attained = sum(1 for po in po_results if po.actual_attainment >= policy.target)
    return round(attained / len(po_results) * 100.0, 2)


def summarize_pos(
    po_results: Sequence[POAttainment],
    *,
    scope: POScope,
    scope_id: int,
    scope_name: str,
    program_id: int,
    total_courses: int,
    completed_courses: int,
    policy: POStatusPolicy = NBA_POLICY,
    message: str | None = None,
) -> POSummary:
    overall = (
        round(sum(po.actual_attainment for po in po_results) / len(po_results), 2) if po_results else 0.0
    )
    compliance = nba_compliance_score(po_results, policy)

    def count(status: POStatus) -> int:
        return sum(1 for po in po_results if po.status is status)

    summary = POSummary(
        scope=scope,
        scope_id=scope_id,
        scope_name=scope_name,
        program_id=program_id,
        target_attainment=policy.target,
        overall_attainment=overall,
        nba_compliance_score=compliance,
        total_pos=len(po_results),
        attained_pos=sum(1 for po in po_results if po.actual_attainment >= policy.target),
        level3_pos=count(POStatus.LEVEL_3),
        level2_pos=count(POStatus.LEVEL_2),
        level1_pos=count(POStatus.LEVEL_1),
        not_attained_pos=count(POStatus.NOT_ATTAINED),
        is_compliant=compliance >= policy.compliance_threshold,
        po_attainments=tuple(po_results),
        total_courses=total_courses,
        completed_courses=completed_courses,
        calculated_at=dt.datetime.now(dt.timezone.utc),
        recommendations=tuple(generate_recommendations(po_results)) if po_results else (),
        message=message,
    )

    logger.info(
        "%s %s: overall %.2f%%, NBA compliance %.2f%% (%s)",
        scope.value.capitalize(),
        scope_name,
        summary.overall_attainment,
        summary.nba_compliance_score,
        "compliant" if summary.is_compliant else "not compliant",
    )
    return summary
