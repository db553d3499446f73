import asyncio

import pytest

from oracle.models.schemas import ConflictSeverity
from oracle.tools.conflict_arbiter import ConflictArbiterTool, analyze_conflicts, latest_by_source
from oracle.tools.outcomes import DISPUTE_RESOLVED, NO_DATA, UNCERTAIN, YES

from helpers import make_subject, record


def _evaluate(evidence):
    return asyncio.run(ConflictArbiterTool().evaluate(evidence, make_subject()))


def test_identical_latest_values_mean_full_consensus():
    analysis = analyze_conflicts([record("a-price", 42000.0), record("b-price", 42000.0)])

    assert analysis.consensus_level == 1.0
    assert analysis.conflicts == []


def test_latest_record_per_source_is_compared():
    old = record("a", 10.0, age_minutes=30)
    new = record("a", 20.0, age_minutes=1)

    latest = latest_by_source([old, new, record("b", 20.0)])

    assert latest["a"] is new


def test_conflict_severity_thresholds():
    analysis = analyze_conflicts(
        [record("a", 100.0), record("b", 130.0), record("c", 300.0)]
    )
    by_pair = {(c.source_a, c.source_b): c for c in analysis.conflicts}

    # 30/115 ≈ 0.26 → medium; 200/200 = 1.0 → high; 170/215 ≈ 0.79 → high
    assert by_pair[("a", "b")].severity == ConflictSeverity.MEDIUM
    assert by_pair[("a", "c")].severity == ConflictSeverity.HIGH
    assert by_pair[("b", "c")].severity == ConflictSeverity.HIGH


def test_small_numeric_gap_is_not_a_conflict():
    analysis = analyze_conflicts([record("a", 100.0), record("b", 110.0)])

    assert analysis.conflicts == []
    assert analysis.consensus_level == 0.5


def test_text_comparison_is_case_insensitive():
    analysis = analyze_conflicts([record("a", "Approved"), record("b", "approved ")])

    assert analysis.conflicts == []
    assert analysis.consensus_level == 1.0


def test_high_consensus_returns_majority_outcome():
    result = _evaluate([record("a", True), record("b", True), record("c", True)])

    assert result.outcome == YES
    # level 1.0, no conflicts, reliability 0.9 → (1.0 + 0.9) / 2
    assert result.confidence == pytest.approx(0.95)


def test_conflicts_with_reliable_sources_fall_back_to_yes():
    result = _evaluate([record("a", True, reliability=0.9), record("b", False, reliability=0.8)])

    assert result.outcome == YES
    # level 0.5, one high conflict → 0.5 * 0.8 = 0.4, averaged with 0.85
    assert result.confidence == pytest.approx((0.4 + 0.85) / 2)


def test_conflicts_with_unreliable_sources_are_uncertain():
    result = _evaluate([record("a", True, reliability=0.5), record("b", False, reliability=0.6)])

    assert result.outcome == UNCERTAIN


def test_split_without_conflicts_is_uncertain():
    result = _evaluate([record("a", 100.0), record("b", 110.0)])

    assert result.outcome == UNCERTAIN


def test_no_sources_is_no_data_at_floor():
    result = _evaluate([])

    assert result.outcome == NO_DATA
    assert result.confidence == 0.1


def test_many_high_conflicts_floor_the_conflict_factor():
    evidence = [record(f"s{i}", float(10 ** i)) for i in range(1, 6)]

    result = _evaluate(evidence)

    # 10 high conflicts → factor max(0.3, 1 - 2.0) = 0.3; level 0.2
    assert result.confidence == pytest.approx((0.2 * 0.3 + 0.9) / 2)


def test_dispute_returns_fixed_confidence():
    decision = ConflictArbiterTool().resolve_dispute(["Official result differs"], make_subject())

    assert decision.outcome == DISPUTE_RESOLVED
    assert decision.confidence == 0.8
    assert decision.evidence == ["Official result differs"]
