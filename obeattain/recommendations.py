from __future__ import annotations

from collections.abc import Sequence

from .results import POAttainment, POStatus

LOW_COVERAGE_PERCENT = 80
LOW_MAPPING_LEVEL = 2.0


def generate_recommendations(po_attainments: Sequence[POAttainment]) -> list[str]:
    """Plain-language guidance from a set of PO results."""
    if not po_attainments:
        return ["No program outcomes to evaluate."]

    recommendations: list[str] = []

    not_attained = [po for po in po_attainments if po.status is POStatus.NOT_ATTAINED]
    level1 = [po for po in po_attainments if po.status is POStatus.LEVEL_1]

    if not_attained:
        recommendations.append(
            f"{len(not_attained)} PO(s) not attained. Review mapping levels and CO coverage."
        )
    if level1:
        recommendations.append(
            f"{len(level1)} PO(s) at minimum level. Consider strengthening CO-PO correlations."
        )

    avg_coverage = sum(po.co_coverage_percent for po in po_attainments) / len(po_attainments)
    if avg_coverage < LOW_COVERAGE_PERCENT:
        recommendations.append("Low CO coverage detected. Map more COs to POs for better attainment.")

    avg_mapping = sum(po.avg_mapping_level for po in po_attainments) / len(po_attainments)
    if avg_mapping < LOW_MAPPING_LEVEL:
        recommendations.append(
            "Low mapping levels detected. Use stronger correlations (Level 2-3) where appropriate."
        )

    if not recommendations:
        recommendations.append("Excellent PO attainment! Consider maintaining current mapping strategy.")

    return recommendations
