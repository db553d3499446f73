import asyncio

import pytest

from oracle.tools.evidence_validator import (
    ISSUE_DIVERGENT,
    ISSUE_LOW_RELIABILITY,
    ISSUE_STALE,
    ISSUE_SUSPICIOUS,
    EvidenceValidatorTool,
    check_record,
    diverges,
)
from oracle.tools.outcomes import INSUFFICIENT_VALID_DATA

from helpers import make_subject, record


def _evaluate(evidence):
    return asyncio.run(EvidenceValidatorTool().evaluate(evidence, make_subject()))


def test_record_with_four_issues_is_invalid():
    # stale, unreliable, negative (suspicious) and far from the other sources
    bad = record("shady-price", -500.0, reliability=0.4, age_minutes=120)
    others = [record("a-price", 100.0), record("b-price", 101.0)]

    check = check_record(bad, [bad, *others])

    assert check.issues == [ISSUE_STALE, ISSUE_LOW_RELIABILITY, ISSUE_SUSPICIOUS, ISSUE_DIVERGENT]
    assert check.valid is False
    assert check.reliability == pytest.approx(0.4 * 0.8 * 0.5 * 0.6 * 0.7)


def test_two_issues_still_valid():
    rec = record("old-price", 100.0, reliability=0.5, age_minutes=90)

    check = check_record(rec, [rec])

    assert check.issues == [ISSUE_STALE, ISSUE_LOW_RELIABILITY]
    assert check.valid is True


def test_numeric_divergence_uses_ten_percent_of_mean():
    a = record("a-price", 100.0)
    b = record("b-price", 109.0)
    c = record("c-price", 111.0)

    assert diverges(b, [a, b]) is False
    assert diverges(c, [a, c]) is True


def test_divergence_only_compares_other_sources_of_same_kind():
    a = record("a", 100.0)
    same_source = record("a", 500.0)
    text = record("b", "completely different")

    assert diverges(a, [a, same_source, text]) is False


def test_text_divergence_needs_sixty_percent_agreement():
    target = record("a", "Yes")
    agreeing = [record("b", "yes"), record("c", "YES")]
    dissent = [record("d", "no"), record("e", "no")]

    assert diverges(target, [target, *agreeing, dissent[0]]) is False
    assert diverges(target, [target, *agreeing, *dissent]) is True


def test_five_agreeing_records_give_high_confidence():
    evidence = [
        record(f"source-{i}", value, reliability=0.9)
        for i, value in enumerate([100.0, 101.0, 100.5, 99.5, 102.0])
    ]

    result = _evaluate(evidence)

    assert result.outcome == "YES"
    assert result.confidence > 0.85
    assert len(result.evidence_used) == 5


def test_no_valid_records_gives_zero_confidence():
    bad = [
        record("x", -1.0, reliability=0.2, age_minutes=300),
        record("y", 50.0, reliability=0.2, age_minutes=300),
    ]

    result = _evaluate(bad)

    assert result.outcome == INSUFFICIENT_VALID_DATA
    assert result.confidence == 0.0
    assert any("Common validation issues" in line for line in result.reasoning)


def test_empty_evidence_is_insufficient():
    result = _evaluate([])

    assert result.outcome == INSUFFICIENT_VALID_DATA
    assert result.confidence == 0.0


def test_confidence_scales_with_valid_fraction():
    good = [record("a", True, reliability=0.9), record("b", True, reliability=0.9)]
    rejected = record("c", -3.0, reliability=0.1, age_minutes=600)

    result = _evaluate([*good, rejected])

    assert result.outcome == "YES"
    assert result.confidence == pytest.approx(0.9 * 2 / 3)


def test_majority_tie_goes_to_first_seen_label():
    evidence = [record("a", False), record("b", True)]

    result = _evaluate(evidence)

    assert result.outcome == "NO"


def test_nan_value_diverges():
    a = record("a-price", 100.0)
    b = record("b-price", 101.0)
    broken = record("c-price", float("nan"))

    assert diverges(broken, [a, b, broken]) is True
    assert diverges(a, [a, broken]) is True
