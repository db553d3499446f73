"""
Consensus Engine — turns a set of disagreeing agent responses into one decision.

Decision algorithm, in priority order:
  1. No responses       → InsufficientData, no result
  2. One response       → single_agent, confidence × 0.7
  3. Same outcome from every agent with mean confidence ≥ 0.8 → unanimous
  4. Otherwise          → weighted_voting across outcome groups

One session per market: Idle → Collecting → Deciding → Complete | TimedOut.
A session that runs past its time budget is forced to decide on whatever
responses have arrived.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Awaitable, Dict, Iterable, List, Optional

from oracle.config import Settings, settings
from oracle.errors import ConsensusSessionActive, InsufficientData
from oracle.models.schemas import (
    AgentKind,
    AgentResponse,
    AgentVote,
    ConsensusMethod,
    ConsensusResult,
    ConsensusState,
)
from oracle.tools.outcomes import clamp, mean

logger = logging.getLogger(__name__)


@dataclass
class VotingPolicy:
    """Tuning constants for the voting protocol."""
    single_agent_penalty: float = 0.7
    unanimous_threshold: float = 0.8
    unanimous_boost: float = 1.1
    kind_weights: Dict[AgentKind, float] = field(
        default_factory=lambda: {
            AgentKind.COLLECTOR: 0.8,
            AgentKind.VALIDATOR: 1.0,
            AgentKind.ARBITER: 1.2,
            AgentKind.SCORER: 0.9,
        }
    )
    confidence_weight: float = 0.5
    fast_response_seconds: float = 5.0
    fast_response_bonus: float = 0.1
    min_weight: float = 0.1
    max_weight: float = 2.0
    high_margin: float = 0.7
    high_margin_boost: float = 1.1
    low_margin: float = 0.4
    low_margin_penalty: float = 0.8
    agent_bonus_step: float = 0.02
    agent_bonus_cap: float = 0.1
    diverse_outcome_limit: int = 2
    diverse_outcome_penalty: float = 0.9
    evidence_cap: int = 5
    min_confidence: float = 0.1
    max_confidence: float = 0.95

    @classmethod
    def from_settings(cls, s: Settings) -> "VotingPolicy":
        return cls(
            single_agent_penalty=s.consensus_single_agent_penalty,
            unanimous_threshold=s.consensus_unanimous_threshold,
            unanimous_boost=s.consensus_unanimous_boost,
            fast_response_seconds=s.consensus_fast_response_seconds,
            fast_response_bonus=s.consensus_fast_response_bonus,
            high_margin=s.consensus_high_margin,
            high_margin_boost=s.consensus_high_margin_boost,
            low_margin=s.consensus_low_margin,
            low_margin_penalty=s.consensus_low_margin_penalty,
            agent_bonus_step=s.consensus_agent_bonus_step,
            agent_bonus_cap=s.consensus_agent_bonus_cap,
            diverse_outcome_penalty=s.consensus_diverse_outcome_penalty,
        )

    def agent_weight(self, response: AgentResponse) -> float:
        weight = self.kind_weights.get(response.agent_kind, 1.0)
        weight += response.confidence * self.confidence_weight
        if response.duration_seconds < self.fast_response_seconds:
            weight += self.fast_response_bonus
        return clamp(weight, self.min_weight, self.max_weight)


@dataclass
class OutcomeGroup:
    outcome: str
    votes: List[AgentVote]

    @property
    def total_weight(self) -> float:
        return sum(v.weight for v in self.votes)

    @property
    def mean_confidence(self) -> float:
        return mean(v.confidence for v in self.votes)

    @property
    def score(self) -> float:
        return self.total_weight * self.mean_confidence


# ──────────────────────────────────────────────
# Decision algorithm (pure)
# ──────────────────────────────────────────────

def combine_evidence(responses: Iterable[AgentResponse], cap: int = 5) -> List[str]:
    """Deduplicated reasoning strings, first-seen order, capped."""
    seen: Dict[str, None] = {}
    for response in responses:
        for line in response.reasoning:
            seen.setdefault(line, None)
    return list(seen)[:cap]


def group_votes(votes: List[AgentVote]) -> List[OutcomeGroup]:
    groups: Dict[str, OutcomeGroup] = {}
    for vote in votes:
        groups.setdefault(vote.outcome, OutcomeGroup(vote.outcome, [])).votes.append(vote)
    return list(groups.values())


def _votes(responses: List[AgentResponse], policy: VotingPolicy) -> List[AgentVote]:
    return [
        AgentVote(
            agent_id=r.agent_id,
            outcome=r.outcome,
            weight=policy.agent_weight(r),
            confidence=r.confidence,
        )
        for r in responses
    ]


def single_agent_consensus(response: AgentResponse, policy: VotingPolicy) -> ConsensusResult:
    return ConsensusResult(
        outcome=response.outcome,
        confidence=response.confidence * policy.single_agent_penalty,
        evidence=list(response.reasoning)[: policy.evidence_cap],
        votes=[
            AgentVote(
                agent_id=response.agent_id,
                outcome=response.outcome,
                weight=1.0,
                confidence=response.confidence,
            )
        ],
        method=ConsensusMethod.SINGLE_AGENT,
    )


def unanimous_consensus(
    responses: List[AgentResponse], policy: VotingPolicy
) -> Optional[ConsensusResult]:
    """Result when every agent agrees with high enough confidence, else None."""
    outcomes = {r.outcome for r in responses}
    if len(outcomes) != 1:
        return None
    avg_confidence = mean(r.confidence for r in responses)
    if avg_confidence < policy.unanimous_threshold:
        return None
    return ConsensusResult(
        outcome=responses[0].outcome,
        confidence=min(policy.max_confidence, avg_confidence * policy.unanimous_boost),
        evidence=combine_evidence(responses, policy.evidence_cap),
        votes=_votes(responses, policy),
        method=ConsensusMethod.UNANIMOUS,
    )


def weighted_voting_consensus(
    responses: List[AgentResponse], policy: VotingPolicy
) -> ConsensusResult:
    votes = _votes(responses, policy)
    groups = group_votes(votes)
    # max() keeps the first-seen group on equal scores
    winner = max(groups, key=lambda g: g.score)
    total_score = sum(g.score for g in groups)
    margin = winner.score / total_score if total_score > 0 else 0.0

    confidence = winner.mean_confidence
    if margin > policy.high_margin:
        confidence *= policy.high_margin_boost
    elif margin < policy.low_margin:
        confidence *= policy.low_margin_penalty
    confidence += min(policy.agent_bonus_cap, policy.agent_bonus_step * (len(responses) - 1))
    if len(groups) > policy.diverse_outcome_limit:
        confidence *= policy.diverse_outcome_penalty

    return ConsensusResult(
        outcome=winner.outcome,
        confidence=clamp(confidence, policy.min_confidence, policy.max_confidence),
        evidence=combine_evidence(
            (r for r in responses if r.outcome == winner.outcome), policy.evidence_cap
        ),
        votes=votes,
        method=ConsensusMethod.WEIGHTED_VOTING,
    )


def compute_consensus(
    subject_id: str,
    responses: List[AgentResponse],
    policy: Optional[VotingPolicy] = None,
) -> ConsensusResult:
    """
    Run the decision algorithm over a response set.

    Raises:
        InsufficientData: no responses to decide on.
    """
    policy = policy or VotingPolicy()
    if not responses:
        raise InsufficientData(subject_id, f"No agent responses available for market {subject_id}")
    if len(responses) == 1:
        return single_agent_consensus(responses[0], policy)
    return unanimous_consensus(responses, policy) or weighted_voting_consensus(responses, policy)


# ──────────────────────────────────────────────
# Sessions
# ──────────────────────────────────────────────

@dataclass
class ConsensusSession:
    subject_id: str
    budget_seconds: float
    state: ConsensusState = ConsensusState.IDLE
    responses: List[AgentResponse] = field(default_factory=list)
    started_at: float = field(default_factory=time.monotonic)
    result: Optional[ConsensusResult] = None

    @property
    def open(self) -> bool:
        return self.state in (ConsensusState.COLLECTING, ConsensusState.DECIDING)

    def remaining(self) -> float:
        return max(0.0, self.budget_seconds - (time.monotonic() - self.started_at))


class ConsensusEngine:
    """
    Per-market consensus sessions over the voting protocol.

    Usage:
        engine = ConsensusEngine()
        engine.open_session(market_id)
        responses = await engine.gather_responses(market_id, scoring_calls)
        result = engine.decide(market_id)
    """

    def __init__(
        self,
        policy: Optional[VotingPolicy] = None,
        max_resolution_time: Optional[float] = None,
    ):
        self.policy = policy or VotingPolicy.from_settings(settings)
        self.max_resolution_time = (
            max_resolution_time
            if max_resolution_time is not None
            else settings.max_resolution_time_seconds
        )
        self._sessions: Dict[str, ConsensusSession] = {}

        self._total_reached = 0
        self._total_time = 0.0
        self._timeouts = 0
        self._method_counts: Counter = Counter()

    def session(self, subject_id: str) -> Optional[ConsensusSession]:
        return self._sessions.get(subject_id)

    def open_session(self, subject_id: str, budget_seconds: Optional[float] = None) -> ConsensusSession:
        existing = self._sessions.get(subject_id)
        if existing is not None and existing.open:
            raise ConsensusSessionActive(subject_id)
        session = ConsensusSession(
            subject_id=subject_id,
            budget_seconds=budget_seconds if budget_seconds is not None else self.max_resolution_time,
            state=ConsensusState.COLLECTING,
        )
        self._sessions[subject_id] = session
        return session

    def add_response(self, subject_id: str, response: AgentResponse) -> None:
        session = self._require(subject_id)
        if session.state != ConsensusState.COLLECTING:
            logger.info(
                "Ignoring late response from %s for market %s (%s)",
                response.agent_id,
                subject_id,
                session.state.value,
            )
            return
        session.responses.append(response)

    async def gather_responses(
        self,
        subject_id: str,
        calls: Iterable[Awaitable[Optional[AgentResponse]]],
    ) -> List[AgentResponse]:
        """
        Await scoring calls into the session until all settle or the budget runs out.

        Calls resolving to None are failed agents and are skipped. On timeout
        the session moves to TimedOut and pending calls are cancelled.
        """
        session = self._require(subject_id)
        tasks = [asyncio.ensure_future(call) for call in calls]
        try:
            for next_done in asyncio.as_completed(tasks, timeout=session.remaining()):
                response = await next_done
                if response is not None:
                    self.add_response(subject_id, response)
        except asyncio.TimeoutError:
            self._timeouts += 1
            session.state = ConsensusState.TIMED_OUT
            logger.warning(
                "Consensus timeout for market %s after %.1fs; forcing decision with %d responses",
                subject_id,
                session.budget_seconds,
                len(session.responses),
            )
        finally:
            pending = [task for task in tasks if not task.done()]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
        return list(session.responses)

    def decide(self, subject_id: str) -> ConsensusResult:
        """
        Run the decision algorithm on the session's responses and close it.

        Raises:
            InsufficientData: the session holds no responses.
        """
        session = self._require(subject_id)
        timed_out = session.state == ConsensusState.TIMED_OUT
        session.state = ConsensusState.DECIDING
        logger.info(
            "Starting consensus for market %s with %d agent responses",
            subject_id,
            len(session.responses),
        )
        try:
            result = compute_consensus(subject_id, session.responses, self.policy)
        except InsufficientData:
            self._sessions.pop(subject_id, None)
            raise

        if timed_out:
            result = result.model_copy(update={"timed_out": True})
        session.result = result
        session.state = ConsensusState.TIMED_OUT if timed_out else ConsensusState.COMPLETE

        elapsed = time.monotonic() - session.started_at
        self._total_reached += 1
        self._total_time += elapsed
        self._method_counts[result.method.value] += 1
        self._sessions.pop(subject_id, None)

        logger.info(
            "Consensus reached for market %s via %s: %s (%.1f%% confidence)",
            subject_id,
            result.method.value,
            result.outcome,
            result.confidence * 100,
        )
        return result

    def close_session(self, subject_id: str) -> None:
        """Drop a session without deciding (e.g. the run failed before consensus)."""
        self._sessions.pop(subject_id, None)

    async def form_consensus(self, subject_id: str, responses: List[AgentResponse]) -> ConsensusResult:
        """Open, fill and decide a session from an already-complete response set."""
        self.open_session(subject_id)
        for response in responses:
            self.add_response(subject_id, response)
        return self.decide(subject_id)

    def status(self) -> dict:
        return {
            "active": True,
            "active_sessions": sum(1 for s in self._sessions.values() if s.open),
            "total_consensus_reached": self._total_reached,
            "average_consensus_time_seconds": (
                self._total_time / self._total_reached if self._total_reached else 0.0
            ),
            "timeouts": self._timeouts,
            "methods": dict(self._method_counts),
        }

    def _require(self, subject_id: str) -> ConsensusSession:
        session = self._sessions.get(subject_id)
        if session is None:
            raise InsufficientData(subject_id, f"No consensus session open for market {subject_id}")
        return session
