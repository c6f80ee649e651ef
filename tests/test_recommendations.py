from __future__ import annotations

from obeattain.models import COPOMapping, ProgramOutcome
from obeattain.po_attainment import calculate_po_attainment
from obeattain.recommendations import generate_recommendations


def _result(level, covered, total, po_id=1):
    po = ProgramOutcome(id=po_id, program_id=1, code=f"PO{po_id}", description="")
    mappings = [COPOMapping(course_id=1, co_id=i, po_id=po_id, level=level) for i in range(covered)]
    return calculate_po_attainment(po, mappings, set(range(total)))


def test_empty_input():
    assert generate_recommendations([]) == ["No program outcomes to evaluate."]


def test_all_strong_and_covered():
    recs = generate_recommendations([_result(3, 4, 4, 1), _result(3, 2, 2, 2)])

    assert recs == ["Excellent PO attainment! Consider maintaining current mapping strategy."]


def test_weak_results_produce_each_hint():
    recs = generate_recommendations([_result(1, 1, 4, 1), _result(3, 1, 4, 2)])

    assert recs[0].startswith("2 PO(s) not attained")
    assert any("Low CO coverage" in r for r in recs)
    assert not any("Low mapping levels" in r for r in recs)


def test_minimum_level_and_low_mapping():
    # base 75 with full coverage sits at Level 2; base 50 never attains.
    level2 = _result(2, 4, 4, 1)
    weak = _result(1, 4, 4, 2)

    recs = generate_recommendations([level2, weak])

    assert any("1 PO(s) not attained" in r for r in recs)
    assert any("Low mapping levels" in r for r in recs)
    assert not any("Low CO coverage" in r for r in recs)
