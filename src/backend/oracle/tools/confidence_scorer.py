"""
Tool: Confidence Scorer

Estimates how trustworthy a resolution would be from five independent
factors: data quality, source reliability, temporal position, agreement
between records, and market characteristics. Each factor starts from a
baseline and is nudged by rule-based bonuses and penalties.
"""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from oracle.models.schemas import AgentKind, Assessment, EvidenceRecord, NumericValue, Subject, utcnow
from oracle.tools.outcomes import NO_DATA, clamp, clamp_confidence, majority_label, mean

logger = logging.getLogger(__name__)

HOUR = 60 * 60

FACTOR_WEIGHTS: Dict[str, float] = {
    "data_quality": 0.25,
    "source_reliability": 0.25,
    "temporal": 0.15,
    "consensus": 0.25,
    "market": 0.10,
}

VOLATILE_CATEGORIES = ("crypto", "sports", "weather")


@dataclass
class FactorScore:
    """One factor's score in [0, 1] plus the rules that fired."""
    score: float
    factors: List[str] = field(default_factory=list)
    details: Dict[str, float] = field(default_factory=dict)


@dataclass
class ConfidenceAnalysis:
    data_quality: FactorScore
    source_reliability: FactorScore
    temporal: FactorScore
    consensus: FactorScore
    market: FactorScore

    def weighted_score(self) -> float:
        return sum(getattr(self, name).score * weight for name, weight in FACTOR_WEIGHTS.items())

    def all_factors(self) -> List[str]:
        return [f for name in FACTOR_WEIGHTS for f in getattr(self, name).factors]


def _fraction_newer_than(evidence: List[EvidenceRecord], seconds: float, now: datetime) -> float:
    if not evidence:
        return 0.0
    return sum(1 for r in evidence if r.age_seconds(now) <= seconds) / len(evidence)


def assess_data_quality(evidence: List[EvidenceRecord], now: datetime) -> FactorScore:
    if not evidence:
        return FactorScore(0.0, ["No data available"], {"count": 0, "avg_reliability": 0.0})

    avg_reliability = mean(r.reliability for r in evidence)
    score = 0.5
    factors = []

    if len(evidence) >= 10:
        score += 0.1
        factors.append("Sufficient data volume")
    elif len(evidence) < 3:
        score -= 0.2
        factors.append("Limited data volume")

    if avg_reliability >= 0.8:
        score += 0.2
        factors.append("High source reliability")
    elif avg_reliability < 0.5:
        score -= 0.2
        factors.append("Low source reliability")

    freshness = _fraction_newer_than(evidence, 24 * HOUR, now)
    if freshness >= 0.7:
        score += 0.1
        factors.append("Recent data available")
    elif freshness < 0.3:
        score -= 0.1
        factors.append("Stale data")

    return FactorScore(
        clamp(score, 0.0, 1.0),
        factors,
        {"count": len(evidence), "avg_reliability": avg_reliability},
    )


def assess_source_reliability(evidence: List[EvidenceRecord]) -> FactorScore:
    per_source: Dict[str, List[float]] = {}
    for record in evidence:
        per_source.setdefault(record.source, []).append(record.reliability)
    source_reliability = {source: mean(values) for source, values in per_source.items()}

    avg = mean(source_reliability.values())
    score = avg
    factors = []

    if len(source_reliability) >= 5:
        score += 0.1
        factors.append("High source diversity")
    elif len(source_reliability) < 2:
        score -= 0.2
        factors.append("Limited source diversity")

    if sum(1 for r in source_reliability.values() if r >= 0.8) >= 3:
        score += 0.1
        factors.append("Multiple high-reliability sources")

    return FactorScore(
        clamp(score, 0.0, 1.0),
        factors,
        {"source_count": len(source_reliability), "avg_reliability": avg},
    )


def assess_temporal(evidence: List[EvidenceRecord], subject: Subject, now: datetime) -> FactorScore:
    score = 0.5
    factors = []

    hours_to_deadline = (subject.deadline - now).total_seconds() / HOUR
    if hours_to_deadline > 168:
        score -= 0.1
        factors.append("Deadline far in future")
    elif hours_to_deadline < 1:
        score += 0.2
        factors.append("Deadline imminent - high certainty window")

    recent_ratio = _fraction_newer_than(evidence, 6 * HOUR, now)
    if recent_ratio >= 0.5:
        score += 0.1
        factors.append("Good recent data coverage")
    elif recent_ratio < 0.2:
        score -= 0.1
        factors.append("Limited recent data")

    return FactorScore(
        clamp(score, 0.0, 1.0),
        factors,
        {"hours_to_deadline": hours_to_deadline, "recent_ratio": recent_ratio},
    )


def numeric_variance(evidence: List[EvidenceRecord]) -> float:
    """Population variance of the numeric values; reported, never scored."""
    values = [r.value.value for r in evidence if isinstance(r.value, NumericValue)]
    if len(values) < 2:
        return 0.0
    avg = mean(values)
    return sum((v - avg) ** 2 for v in values) / len(values)


def assess_consensus(evidence: List[EvidenceRecord]) -> FactorScore:
    if len(evidence) < 2:
        return FactorScore(
            0.3,
            ["Insufficient data for consensus analysis"],
            {"agreement": 0.0, "variance": 1.0},
        )

    groups = Counter(r.value.outcome_label() for r in evidence)
    agreement = max(groups.values()) / len(evidence)
    score = agreement
    factors = []

    if agreement >= 0.8:
        score += 0.1
        factors.append("Strong consensus")
    elif agreement < 0.5:
        score -= 0.2
        factors.append("Poor consensus")

    if len(groups) > 3:
        score -= 0.1
        factors.append("High outcome diversity")

    return FactorScore(
        clamp(score, 0.0, 1.0),
        factors,
        {"agreement": agreement, "variance": numeric_variance(evidence)},
    )


def assess_market(subject: Subject, now: datetime) -> FactorScore:
    score = 0.5
    factors = []

    if subject.category.lower() in VOLATILE_CATEGORIES:
        score -= 0.1
        factors.append("Complex/volatile market category")

    age_hours = (now - subject.created_at).total_seconds() / HOUR
    if age_hours > 720:
        score += 0.1
        factors.append("Mature market with historical data")
    elif age_hours < 24:
        score -= 0.1
        factors.append("New market - limited history")

    return FactorScore(clamp(score, 0.0, 1.0), factors, {"age_hours": age_hours})


class ConfidenceScorerTool:
    """
    Weighted five-factor confidence estimate.

    Weights: data quality 0.25, source reliability 0.25, temporal 0.15,
    consensus 0.25, market 0.10. The outcome is the most common normalised
    label among all records.
    """

    agent_id = "confidence_scorer"
    kind = AgentKind.SCORER
    name = "Confidence Scorer"
    description = "Scores how trustworthy a resolution would be"

    async def setup(self) -> None:
        logger.info("Confidence scorer initializing")

    async def teardown(self) -> None:
        logger.info("Confidence scorer cleaning up")

    def analyze(
        self,
        evidence: List[EvidenceRecord],
        subject: Subject,
        now: Optional[datetime] = None,
    ) -> ConfidenceAnalysis:
        now = now or utcnow()
        return ConfidenceAnalysis(
            data_quality=assess_data_quality(evidence, now),
            source_reliability=assess_source_reliability(evidence),
            temporal=assess_temporal(evidence, subject, now),
            consensus=assess_consensus(evidence),
            market=assess_market(subject, now),
        )

    async def evaluate(self, evidence: List[EvidenceRecord], subject: Subject) -> Assessment:
        logger.info(
            "Confidence scorer processing market %s with %d evidence records",
            subject.id,
            len(evidence),
        )
        analysis = self.analyze(evidence, subject)
        outcome = majority_label((r.value.outcome_label() for r in evidence), default=NO_DATA)

        reasoning = [
            f"Data Quality Score: {analysis.data_quality.score * 100:.1f}%",
            f"Source Reliability Score: {analysis.source_reliability.score * 100:.1f}%",
            f"Consensus Score: {analysis.consensus.score * 100:.1f}%",
        ]
        key_factors = analysis.all_factors()[:3]
        if key_factors:
            reasoning.append(f"Key factors: {', '.join(key_factors)}")

        return Assessment(
            outcome=outcome,
            confidence=clamp_confidence(analysis.weighted_score()),
            reasoning=reasoning,
            evidence_used=evidence,
        )
