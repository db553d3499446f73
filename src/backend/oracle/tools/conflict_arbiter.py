"""
Tool: Conflict Arbiter

Compares the latest observation from every evidence source against every other
source, classifies disagreements by severity, and makes a call that accounts
for how much the sources actually agree.

Also carries the manual dispute path: a fixed-confidence override that records
the disputing evidence without re-running any scoring.
"""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from itertools import combinations
from typing import Dict, List

from oracle.models.schemas import (
    AgentKind,
    Assessment,
    ConflictSeverity,
    DisputeDecision,
    EvidenceRecord,
    Subject,
)
from oracle.tools.outcomes import (
    DISPUTE_RESOLVED,
    NO_DATA,
    UNCERTAIN,
    YES,
    clamp_confidence,
    mean,
)

logger = logging.getLogger(__name__)

CONFLICT_THRESHOLD = 0.2
HIGH_SEVERITY_THRESHOLD = 0.5
HIGH_CONSENSUS_LEVEL = 0.8
RELIABLE_SOURCES_LEVEL = 0.7
HIGH_CONFLICT_PENALTY = 0.2
MIN_CONFLICT_FACTOR = 0.3

DISPUTE_CONFIDENCE = 0.8


@dataclass
class Conflict:
    source_a: str
    source_b: str
    divergence: float
    severity: ConflictSeverity


@dataclass
class ConflictAnalysis:
    latest: Dict[str, EvidenceRecord] = field(default_factory=dict)
    conflicts: List[Conflict] = field(default_factory=list)
    consensus_level: float = 0.0
    reliability: Dict[str, float] = field(default_factory=dict)

    @property
    def source_count(self) -> int:
        return len(self.latest)

    @property
    def high_severity_count(self) -> int:
        return sum(1 for c in self.conflicts if c.severity == ConflictSeverity.HIGH)

    @property
    def mean_reliability(self) -> float:
        return mean(self.reliability.values())


def latest_by_source(evidence: List[EvidenceRecord]) -> Dict[str, EvidenceRecord]:
    """Most recent record per source, in first-seen source order."""
    latest: Dict[str, EvidenceRecord] = {}
    for record in evidence:
        current = latest.get(record.source)
        if current is None or record.observed_at > current.observed_at:
            latest[record.source] = record
    return latest


def analyze_conflicts(evidence: List[EvidenceRecord]) -> ConflictAnalysis:
    latest = latest_by_source(evidence)

    conflicts = []
    for (source_a, rec_a), (source_b, rec_b) in combinations(latest.items(), 2):
        divergence = rec_a.value.divergence(rec_b.value)
        if divergence > CONFLICT_THRESHOLD:
            severity = (
                ConflictSeverity.HIGH
                if divergence > HIGH_SEVERITY_THRESHOLD
                else ConflictSeverity.MEDIUM
            )
            conflicts.append(Conflict(source_a, source_b, divergence, severity))

    groups = Counter(record.value.group_key() for record in latest.values())
    consensus_level = max(groups.values()) / len(latest) if latest else 0.0

    per_source: Dict[str, List[float]] = {}
    for record in evidence:
        per_source.setdefault(record.source, []).append(record.reliability)

    return ConflictAnalysis(
        latest=latest,
        conflicts=conflicts,
        consensus_level=consensus_level,
        reliability={source: mean(values) for source, values in per_source.items()},
    )


class ConflictArbiterTool:
    """
    Arbitrates between disagreeing evidence sources.

    Decision policy:
      - consensus level above 0.8: the outcome implied by the largest agreeing group
      - conflicts present: YES when mean source reliability exceeds 0.7, else UNCERTAIN
      - otherwise: UNCERTAIN, or NO_DATA when there are no sources at all
    """

    agent_id = "arbiter"
    kind = AgentKind.ARBITER
    name = "Conflict Arbiter"
    description = "Resolves conflicts between evidence sources"

    async def setup(self) -> None:
        logger.info("Conflict arbiter initializing")

    async def teardown(self) -> None:
        logger.info("Conflict arbiter cleaning up")

    async def evaluate(self, evidence: List[EvidenceRecord], subject: Subject) -> Assessment:
        logger.info(
            "Arbiter processing market %s with %d evidence records", subject.id, len(evidence)
        )
        analysis = analyze_conflicts(evidence)
        return Assessment(
            outcome=self._decide(analysis),
            confidence=self._confidence(analysis),
            reasoning=self._reasoning(analysis),
            evidence_used=list(analysis.latest.values()),
        )

    def _decide(self, analysis: ConflictAnalysis) -> str:
        if analysis.source_count == 0:
            return NO_DATA
        if analysis.consensus_level > HIGH_CONSENSUS_LEVEL:
            return self._majority_outcome(analysis)
        if analysis.conflicts:
            return YES if analysis.mean_reliability > RELIABLE_SOURCES_LEVEL else UNCERTAIN
        return UNCERTAIN

    def _majority_outcome(self, analysis: ConflictAnalysis) -> str:
        groups = Counter(record.value.group_key() for record in analysis.latest.values())
        winning_key = groups.most_common(1)[0][0]
        for record in analysis.latest.values():
            if record.value.group_key() == winning_key:
                return record.value.outcome_label()
        return UNCERTAIN

    def _confidence(self, analysis: ConflictAnalysis) -> float:
        if analysis.source_count == 0:
            return clamp_confidence(0.0)
        conflict_factor = max(
            MIN_CONFLICT_FACTOR, 1 - HIGH_CONFLICT_PENALTY * analysis.high_severity_count
        )
        confidence = analysis.consensus_level * conflict_factor
        return clamp_confidence((confidence + analysis.mean_reliability) / 2)

    def _reasoning(self, analysis: ConflictAnalysis) -> List[str]:
        reasoning = [
            f"Analyzed {analysis.source_count} data sources",
            f"Consensus level: {analysis.consensus_level * 100:.1f}%",
        ]
        if analysis.conflicts:
            reasoning.append(f"Found {len(analysis.conflicts)} conflicts between sources")
            if analysis.high_severity_count:
                reasoning.append(
                    f"{analysis.high_severity_count} high-severity conflicts detected"
                )
        else:
            reasoning.append("No significant conflicts detected between sources")
        reasoning.append(f"Average source reliability: {analysis.mean_reliability * 100:.1f}%")
        return reasoning

    def resolve_dispute(self, evidence: List[str], subject: Subject) -> DisputeDecision:
        """Manual override path. Confidence is fixed; the evidence is recorded, not scored."""
        logger.info("Resolving dispute for market %s", subject.id)
        return DisputeDecision(
            outcome=DISPUTE_RESOLVED,
            confidence=DISPUTE_CONFIDENCE,
            evidence=list(evidence),
            reasoning="Dispute resolved through arbitration",
        )
