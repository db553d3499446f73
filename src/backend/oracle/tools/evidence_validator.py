"""
Tool: Evidence Validator

Checks every evidence record for freshness, source reliability, suspicious
values and divergence from other sources. Each failed check records an issue
and discounts the record's working reliability; a record with more than two
issues is dropped before the outcome is derived.
"""
from __future__ import annotations

import logging
import math
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from oracle.models.schemas import AgentKind, Assessment, EvidenceRecord, NumericValue, Subject, utcnow
from oracle.tools.outcomes import (
    INSUFFICIENT_VALID_DATA,
    CONFIDENCE_CEILING,
    CONFIDENCE_FLOOR,
    majority_label,
    mean,
)

logger = logging.getLogger(__name__)

MAX_AGE_SECONDS = 60 * 60
MIN_RELIABILITY = 0.7
MAX_ISSUES = 2

STALE_PENALTY = 0.8
LOW_RELIABILITY_PENALTY = 0.5
SUSPICIOUS_PENALTY = 0.6
DIVERGENT_PENALTY = 0.7

NUMERIC_DEVIATION_LIMIT = 0.1  # relative deviation from the mean of other sources
MIN_AGREEMENT_RATIO = 0.6

ISSUE_STALE = "Data is older than 1 hour"
ISSUE_LOW_RELIABILITY = "Source reliability below threshold"
ISSUE_SUSPICIOUS = "Suspicious data value detected"
ISSUE_DIVERGENT = "Value diverges significantly from other sources"


@dataclass
class RecordCheck:
    """Validation verdict for a single evidence record."""
    record: EvidenceRecord
    reliability: float
    issues: List[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return len(self.issues) <= MAX_ISSUES

    def flag(self, issue: str, penalty: float) -> None:
        self.issues.append(issue)
        self.reliability *= penalty


def diverges(record: EvidenceRecord, evidence: List[EvidenceRecord]) -> bool:
    """
    Whether ``record`` disagrees with same-kind records from other sources.

    Numeric values compare against the mean of the others; any other kind
    needs at least 60% of the others to agree with it. With nothing to compare
    against, a record never diverges.
    """
    comparable = [
        other
        for other in evidence
        if other.source != record.source and other.value.kind == record.value.kind
    ]
    if not comparable:
        return False

    if isinstance(record.value, NumericValue):
        avg = mean(other.value.value for other in comparable)
        if avg == 0:
            return record.value.value != 0
        deviation = abs(record.value.value - avg) / abs(avg)
        # NaN compares false against any limit
        return not math.isfinite(deviation) or deviation >= NUMERIC_DEVIATION_LIMIT

    matches = sum(1 for other in comparable if record.value.agrees_with(other.value))
    return matches / len(comparable) < MIN_AGREEMENT_RATIO


def check_record(
    record: EvidenceRecord,
    evidence: List[EvidenceRecord],
    now: Optional[datetime] = None,
) -> RecordCheck:
    check = RecordCheck(record=record, reliability=record.reliability)
    if record.age_seconds(now) > MAX_AGE_SECONDS:
        check.flag(ISSUE_STALE, STALE_PENALTY)
    if record.reliability < MIN_RELIABILITY:
        check.flag(ISSUE_LOW_RELIABILITY, LOW_RELIABILITY_PENALTY)
    if record.value.is_suspicious():
        check.flag(ISSUE_SUSPICIOUS, SUSPICIOUS_PENALTY)
    if diverges(record, evidence):
        check.flag(ISSUE_DIVERGENT, DIVERGENT_PENALTY)
    return check


class EvidenceValidatorTool:
    """
    Filters and down-weights low-quality evidence, then takes a majority vote
    over what survives.

    Confidence is ``min(0.95, avg_reliability_of_valid * valid / total)``; it
    is exactly 0 when nothing survives validation.
    """

    agent_id = "validator"
    kind = AgentKind.VALIDATOR
    name = "Evidence Validator"
    description = "Validates evidence quality and cross-source consistency"

    async def setup(self) -> None:
        logger.info("Evidence validator initializing")

    async def teardown(self) -> None:
        logger.info("Evidence validator cleaning up")

    def validate(self, evidence: List[EvidenceRecord]) -> List[RecordCheck]:
        now = utcnow()
        return [check_record(record, evidence, now) for record in evidence]

    async def evaluate(self, evidence: List[EvidenceRecord], subject: Subject) -> Assessment:
        logger.info(
            "Validator processing market %s with %d evidence records", subject.id, len(evidence)
        )
        checks = self.validate(evidence)
        valid = [c for c in checks if c.valid]

        reasoning = [f"Validated {len(checks)} data points, {len(valid)} passed validation"]
        rejected_issues = Counter(issue for c in checks if not c.valid for issue in c.issues)
        if rejected_issues:
            reasoning.append(
                "Common validation issues: "
                + ", ".join(f"{issue} ({count})" for issue, count in rejected_issues.items())
            )

        if not valid:
            reasoning.append("No evidence passed validation")
            return Assessment(outcome=INSUFFICIENT_VALID_DATA, confidence=0.0, reasoning=reasoning)

        avg_reliability = mean(c.reliability for c in valid)
        reasoning.append(f"Average reliability of valid data: {avg_reliability * 100:.1f}%")

        outcome = majority_label(c.record.value.outcome_label() for c in valid)
        confidence = min(CONFIDENCE_CEILING, avg_reliability * len(valid) / len(checks))
        return Assessment(
            outcome=outcome,
            confidence=max(CONFIDENCE_FLOOR, confidence),
            reasoning=reasoning,
            evidence_used=[c.record for c in valid],
        )
