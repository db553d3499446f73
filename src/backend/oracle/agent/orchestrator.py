"""
Resolution Orchestrator — sequences one market resolution end to end.

Pipeline per market:
  1. Look up the market in the settlement layer
  2. Evidence gathering (Evidence Collector, all relevant providers)
  3. Agent scoring (all four agents concurrently, each under its own timeout)
  4. Consensus (voting protocol over whatever responses arrived)
  5. Settlement (submit the packaged ResolutionOutcome)

Per-market stage: NotStarted → EvidenceGathering → AgentScoring → Consensus →
Settled | Failed. Only one run per market is ever in flight; concurrent
requests for the same market join the running one. Failures never escape
``resolve``: they come back as ``ResolutionOutcome(resolved=False)``.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Dict, List, Optional

from oracle.agent.base import AgentRunner
from oracle.agent.consensus import ConsensusEngine, VotingPolicy
from oracle.config import Settings, settings as default_settings
from oracle.errors import AgentError, DisputeWindowClosed
from oracle.models.schemas import (
    AgentHealth,
    AgentResponse,
    EventType,
    EvidenceRecord,
    LifecycleEvent,
    ResolutionOutcome,
    ResolutionStage,
    Subject,
)
from oracle.services.notifications import EventBus
from oracle.services.providers import default_providers
from oracle.services.settlement import (
    HttpSettlementClient,
    InMemorySettlementLedger,
    SettlementClient,
)
from oracle.tools.confidence_scorer import ConfidenceScorerTool
from oracle.tools.conflict_arbiter import ConflictArbiterTool
from oracle.tools.evidence_collector import EvidenceCollectorTool
from oracle.tools.evidence_validator import EvidenceValidatorTool
from oracle.tools.outcomes import CONFIDENCE_FLOOR, ERROR, NO_DATA_OUTCOMES

logger = logging.getLogger(__name__)


class ResolutionOrchestrator:
    """
    Runs resolutions against a settlement layer with four scoring agents.

    Usage:
        orchestrator = ResolutionOrchestrator(settlement=ledger)
        await orchestrator.start()
        outcome = await orchestrator.resolve(market_id)
        if outcome.resolved:
            ...
        await orchestrator.stop()
    """

    def __init__(
        self,
        settlement: SettlementClient,
        collector: Optional[EvidenceCollectorTool] = None,
        validator: Optional[EvidenceValidatorTool] = None,
        arbiter: Optional[ConflictArbiterTool] = None,
        scorer: Optional[ConfidenceScorerTool] = None,
        consensus: Optional[ConsensusEngine] = None,
        events: Optional[EventBus] = None,
        agent_timeout: Optional[float] = None,
        staleness_window: Optional[float] = None,
        dispute_window: Optional[float] = None,
        max_resolution_time: Optional[float] = None,
    ):
        cfg = default_settings
        self.settlement = settlement
        self.events = events or EventBus()
        self.dispute_window = (
            dispute_window if dispute_window is not None else cfg.dispute_window_seconds
        )
        self.max_resolution_time = (
            max_resolution_time
            if max_resolution_time is not None
            else cfg.max_resolution_time_seconds
        )
        self.consensus = consensus or ConsensusEngine(max_resolution_time=self.max_resolution_time)

        # Tools
        self.collector = collector or EvidenceCollectorTool()
        self.validator = validator or EvidenceValidatorTool()
        self.arbiter = arbiter or ConflictArbiterTool()
        self.scorer = scorer or ConfidenceScorerTool()

        timeout = agent_timeout if agent_timeout is not None else cfg.agent_timeout_seconds
        staleness = (
            staleness_window if staleness_window is not None else cfg.agent_staleness_seconds
        )
        self.agents: List[AgentRunner] = [
            AgentRunner(
                tool,
                timeout=timeout,
                staleness_window=staleness,
                on_event=self.events.publish,
            )
            for tool in (self.collector, self.validator, self.arbiter, self.scorer)
        ]

        # State
        self._initialized = False
        self._started_at: Optional[float] = None
        self._inflight: Dict[str, asyncio.Task] = {}
        self._inflight_lock = asyncio.Lock()
        self._stages: Dict[str, ResolutionStage] = {}
        self._settled_at: Dict[str, float] = {}

    # ──────────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────────

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def start(self) -> None:
        """Start every agent. An agent that fails to start is left out of scoring."""
        logger.info("Starting resolution orchestrator with %d agents", len(self.agents))
        results = await asyncio.gather(
            *[agent.start() for agent in self.agents], return_exceptions=True
        )
        for agent, result in zip(self.agents, results):
            if isinstance(result, Exception):
                logger.error("Agent %s unavailable: %s", agent.name, result)
        self._initialized = True
        self._started_at = time.monotonic()
        logger.info(
            "Resolution orchestrator started (%d/%d agents active)",
            sum(1 for agent in self.agents if agent.active),
            len(self.agents),
        )

    async def stop(self) -> None:
        """Wait for in-flight resolutions, then stop agents."""
        logger.info("Stopping resolution orchestrator")
        pending = list(self._inflight.values())
        if pending:
            logger.info("Waiting for %d in-flight resolutions", len(pending))
            await asyncio.gather(*pending, return_exceptions=True)
        await asyncio.gather(*[agent.stop() for agent in self.agents])
        if isinstance(self.settlement, HttpSettlementClient):
            await self.settlement.close()
        self._initialized = False
        logger.info("Resolution orchestrator stopped")

    # ──────────────────────────────────────────────
    # Resolution
    # ──────────────────────────────────────────────

    async def resolve(self, subject_id: str) -> ResolutionOutcome:
        """
        Resolve a market, joining the in-flight run if one exists.

        Concurrent callers for the same market receive the identical
        ResolutionOutcome object.
        """
        async with self._inflight_lock:
            task = self._inflight.get(subject_id)
            if task is not None:
                logger.info("Resolution already in progress for market %s; joining it", subject_id)
            else:
                task = asyncio.create_task(
                    self._run_resolution(subject_id), name=f"resolve-{subject_id}"
                )
                self._inflight[subject_id] = task
                task.add_done_callback(
                    lambda t, sid=subject_id: self._release(sid, t)
                )
        # A cancelled caller must not cancel the run other callers share
        return await asyncio.shield(task)

    def _release(self, subject_id: str, task: asyncio.Task) -> None:
        if self._inflight.get(subject_id) is task:
            del self._inflight[subject_id]

    def stage(self, subject_id: str) -> ResolutionStage:
        return self._stages.get(subject_id, ResolutionStage.NOT_STARTED)

    async def _run_resolution(self, subject_id: str) -> ResolutionOutcome:
        run_start = time.monotonic()
        self._stages[subject_id] = ResolutionStage.NOT_STARTED
        logger.info("Starting resolution for market %s", subject_id)
        self._publish(EventType.RESOLUTION_STARTED, subject_id)

        try:
            subject = await self.settlement.get_subject(subject_id)

            # ── Step 1: Evidence gathering ──
            self._stages[subject_id] = ResolutionStage.EVIDENCE_GATHERING
            evidence = await self._gather_evidence(subject)
            self._publish(EventType.EVIDENCE_COLLECTED, subject_id, {"count": len(evidence)})

            # ── Step 2: Agent scoring (parallel) ──
            self._stages[subject_id] = ResolutionStage.AGENT_SCORING
            budget = max(0.0, self.max_resolution_time - (time.monotonic() - run_start))
            self.consensus.open_session(subject_id, budget_seconds=budget)
            try:
                responses = await self.consensus.gather_responses(
                    subject_id,
                    [self._score_agent(agent, evidence, subject) for agent in self.agents],
                )
                logger.info(
                    "Generated %d agent responses for market %s", len(responses), subject_id
                )
                self._publish(
                    EventType.AGENT_RESPONSES_GENERATED, subject_id, {"count": len(responses)}
                )

                # ── Step 3: Consensus ──
                self._stages[subject_id] = ResolutionStage.CONSENSUS
                result = self.consensus.decide(subject_id)
            finally:
                self.consensus.close_session(subject_id)

            self._publish(
                EventType.CONSENSUS_FORMED,
                subject_id,
                {
                    "outcome": result.outcome,
                    "confidence": result.confidence,
                    "method": result.method.value,
                },
            )

            # A "no data" decision is reported at the documented floor
            confidence = (
                CONFIDENCE_FLOOR if result.outcome in NO_DATA_OUTCOMES else result.confidence
            )
            outcome = ResolutionOutcome(
                subject_id=subject_id,
                outcome=result.outcome,
                confidence=confidence,
                evidence=result.evidence,
                agent_responses=responses,
                resolved=True,
                consensus_method=result.method,
                dispute_window_seconds=self.dispute_window,
            )

            # ── Step 4: Settlement ──
            reference = await self.settlement.submit(outcome)
            outcome = outcome.model_copy(update={"settlement_reference": reference})
            self._settled_at[subject_id] = time.monotonic()
            self._stages[subject_id] = ResolutionStage.SETTLED

            logger.info(
                "Market %s resolved: %s (%.1f%% confidence, %d agents, %.2fs)",
                subject_id,
                outcome.outcome,
                outcome.confidence * 100,
                len(responses),
                time.monotonic() - run_start,
            )
            self._publish(
                EventType.RESOLUTION_COMPLETED,
                subject_id,
                {
                    "outcome": outcome.outcome,
                    "confidence": outcome.confidence,
                    "settlement_reference": reference,
                },
            )
            return outcome

        except Exception as e:
            logger.error("Resolution failed for market %s: %s", subject_id, e)
            self._stages[subject_id] = ResolutionStage.FAILED
            self._publish(EventType.RESOLUTION_FAILED, subject_id, {"error": str(e)})
            return self._failed(subject_id, str(e))

    async def _gather_evidence(self, subject: Subject) -> List[EvidenceRecord]:
        try:
            return await self.collector.collect(subject)
        except Exception as e:
            # Degrades to an empty batch; the agents report "no data"
            logger.warning("Evidence collection failed for market %s: %s", subject.id, e)
            return []

    async def _score_agent(
        self, agent: AgentRunner, evidence: List[EvidenceRecord], subject: Subject
    ) -> Optional[AgentResponse]:
        try:
            return await agent.score(evidence, subject)
        except AgentError as e:
            logger.warning("Dropping %s from market %s: %s", agent.name, subject.id, e)
        except Exception as e:
            logger.warning(
                "Dropping %s from market %s: %s: %s", agent.name, subject.id, type(e).__name__, e
            )
        return None

    def _failed(self, subject_id: str, error: str) -> ResolutionOutcome:
        return ResolutionOutcome(
            subject_id=subject_id,
            outcome=ERROR,
            confidence=0.0,
            resolved=False,
            error=error,
            dispute_window_seconds=self.dispute_window,
        )

    # ──────────────────────────────────────────────
    # Disputes
    # ──────────────────────────────────────────────

    async def handle_dispute(self, subject_id: str, evidence: List[str]) -> ResolutionOutcome:
        """
        Record a manual dispute decision for a market.

        Disputes against a resolution this process settled are only accepted
        within the dispute window.
        """
        try:
            settled_at = self._settled_at.get(subject_id)
            if settled_at is not None and time.monotonic() - settled_at > self.dispute_window:
                raise DisputeWindowClosed(subject_id, self.dispute_window)

            subject = await self.settlement.get_subject(subject_id)
            decision = self.arbiter.resolve_dispute(evidence, subject)
            reference = await self.settlement.submit_dispute_resolution(subject_id, decision)
        except Exception as e:
            logger.error("Dispute handling failed for market %s: %s", subject_id, e)
            return self._failed(subject_id, str(e))

        logger.info("Dispute resolved for market %s: %s", subject_id, reference)
        self._publish(
            EventType.DISPUTE_RESOLVED,
            subject_id,
            {"outcome": decision.outcome, "settlement_reference": reference},
        )
        return ResolutionOutcome(
            subject_id=subject_id,
            outcome=decision.outcome,
            confidence=decision.confidence,
            evidence=decision.evidence,
            resolved=True,
            dispute_resolved=True,
            settlement_reference=reference,
            dispute_window_seconds=self.dispute_window,
        )

    # ──────────────────────────────────────────────
    # Monitoring
    # ──────────────────────────────────────────────

    def agent(self, agent_id: str) -> Optional[AgentRunner]:
        for agent in self.agents:
            if agent.agent_id == agent_id:
                return agent
        return None

    def agent_health(self) -> List[AgentHealth]:
        return [agent.health() for agent in self.agents]

    def status(self) -> dict:
        return {
            "initialized": self._initialized,
            "uptime_seconds": (
                time.monotonic() - self._started_at if self._started_at is not None else 0.0
            ),
            "active_resolutions": len(self._inflight),
            "stages": {sid: stage.value for sid, stage in self._stages.items()},
            "agents": [h.model_dump() for h in self.agent_health()],
            "consensus": self.consensus.status(),
            "sources": {
                "total": len(self.collector.sources()),
                "healthy": len(self.collector.healthy_sources()),
            },
        }

    def _publish(
        self, event_type: EventType, subject_id: str, payload: Optional[dict] = None
    ) -> None:
        self.events.publish(
            LifecycleEvent(event_type=event_type, subject_id=subject_id, payload=payload or {})
        )


def build_settlement(cfg: Settings) -> SettlementClient:
    if cfg.settlement_base_url:
        return HttpSettlementClient(cfg.settlement_base_url, api_key=cfg.settlement_api_key)
    return InMemorySettlementLedger()


def build_orchestrator(
    cfg: Optional[Settings] = None,
    settlement: Optional[SettlementClient] = None,
) -> ResolutionOrchestrator:
    """Wire an orchestrator from settings: default providers, configured settlement."""
    cfg = cfg or default_settings
    return ResolutionOrchestrator(
        settlement=settlement or build_settlement(cfg),
        collector=EvidenceCollectorTool(
            providers=default_providers(),
            max_evidence_points=cfg.max_evidence_points,
            health_check_interval=cfg.health_check_interval_seconds,
        ),
        consensus=ConsensusEngine(
            policy=VotingPolicy.from_settings(cfg),
            max_resolution_time=cfg.max_resolution_time_seconds,
        ),
        agent_timeout=cfg.agent_timeout_seconds,
        staleness_window=cfg.agent_staleness_seconds,
        dispute_window=cfg.dispute_window_seconds,
        max_resolution_time=cfg.max_resolution_time_seconds,
    )
