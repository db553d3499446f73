"""
Agent Execution Contract.

Every scoring strategy is wrapped in an ``AgentRunner`` that gives it the same
lifecycle (start → score → stop), the same bounded-time guarantee, and the same
health bookkeeping, regardless of what the strategy actually computes.

Strategies are plain classes satisfying ``ScoringStrategy``; lifecycle events
go out through an explicit callback rather than an inherited emitter.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
import time
from typing import Awaitable, Callable, List, Optional, Protocol, Union, runtime_checkable

from oracle.errors import AgentNotReady, AgentTimeout
from oracle.models.schemas import (
    AgentHealth,
    AgentKind,
    AgentResponse,
    Assessment,
    EventType,
    EvidenceRecord,
    LifecycleEvent,
    Subject,
)

logger = logging.getLogger(__name__)

DEFAULT_AGENT_TIMEOUT = 30.0
STALENESS_WINDOW = 5 * 60.0  # seconds
MAX_ERROR_RATE = 0.5

EventCallback = Callable[[LifecycleEvent], Union[None, Awaitable[None]]]


@runtime_checkable
class ScoringStrategy(Protocol):
    """The strategy-specific half of an agent."""

    agent_id: str
    kind: AgentKind
    name: str
    description: str

    async def setup(self) -> None: ...

    async def evaluate(self, evidence: List[EvidenceRecord], subject: Subject) -> Assessment: ...

    async def teardown(self) -> None: ...


class AgentRunner:
    """
    Runs one scoring strategy under the agent contract.

    Usage:
        agent = AgentRunner(EvidenceValidatorTool(), timeout=10)
        await agent.start()
        response = await agent.score(evidence, subject)
        await agent.stop()
    """

    def __init__(
        self,
        strategy: ScoringStrategy,
        timeout: float = DEFAULT_AGENT_TIMEOUT,
        staleness_window: float = STALENESS_WINDOW,
        on_event: Optional[EventCallback] = None,
    ):
        self.strategy = strategy
        self.timeout = timeout
        self.staleness_window = staleness_window
        self._on_event = on_event

        # Counters are only touched from this agent's own call path
        self._active = False
        self._last_activity: Optional[float] = None
        self._tasks_completed = 0
        self._total_duration = 0.0
        self._error_count = 0

    @property
    def agent_id(self) -> str:
        return self.strategy.agent_id

    @property
    def kind(self) -> AgentKind:
        return self.strategy.kind

    @property
    def name(self) -> str:
        return self.strategy.name

    @property
    def active(self) -> bool:
        return self._active

    async def start(self) -> None:
        """One-time setup. On failure the agent stays not-ready and the error propagates."""
        logger.info("Starting agent %s", self.name)
        try:
            await self.strategy.setup()
        except Exception:
            self._active = False
            logger.exception("Failed to start agent %s", self.name)
            raise
        self._active = True
        self._last_activity = time.monotonic()
        logger.info("Agent %s started", self.name)
        await self._emit(EventType.AGENT_STARTED)

    async def score(self, evidence: List[EvidenceRecord], subject: Subject) -> AgentResponse:
        """
        Run the strategy against the evidence, bounded by ``self.timeout``.

        Raises:
            AgentNotReady: start() has not succeeded.
            AgentTimeout: the strategy did not finish within the budget.
        """
        if not self._active:
            raise AgentNotReady(self.agent_id)

        start = time.monotonic()
        try:
            assessment = await asyncio.wait_for(
                self.strategy.evaluate(evidence, subject), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            self._error_count += 1
            logger.warning(
                "Agent %s timed out on market %s after %.2fs", self.name, subject.id, self.timeout
            )
            await self._emit(
                EventType.AGENT_RESPONSE_FAILED, subject.id, {"error": "timeout"}
            )
            raise AgentTimeout(self.agent_id, self.timeout) from None
        except Exception as e:
            self._error_count += 1
            logger.warning("Agent %s failed on market %s: %s", self.name, subject.id, e)
            await self._emit(EventType.AGENT_RESPONSE_FAILED, subject.id, {"error": str(e)})
            raise

        duration = time.monotonic() - start
        self._tasks_completed += 1
        self._total_duration += duration
        self._last_activity = time.monotonic()

        response = AgentResponse(
            agent_id=self.agent_id,
            agent_kind=self.kind,
            outcome=assessment.outcome,
            confidence=assessment.confidence,
            reasoning=list(assessment.reasoning),
            evidence_used=list(assessment.evidence_used),
            duration_seconds=duration,
        )
        logger.info(
            "Agent %s scored market %s: %s (%.1f%% confidence, %.3fs)",
            self.name,
            subject.id,
            response.outcome,
            response.confidence * 100,
            duration,
        )
        await self._emit(
            EventType.AGENT_RESPONSE_GENERATED,
            subject.id,
            {
                "agent_id": self.agent_id,
                "outcome": response.outcome,
                "confidence": response.confidence,
                "duration_seconds": duration,
            },
        )
        return response

    async def stop(self) -> None:
        """Release resources. Failures are logged, never raised."""
        logger.info("Stopping agent %s", self.name)
        try:
            await self.strategy.teardown()
        except Exception:
            logger.exception("Failed to clean up agent %s", self.name)
        finally:
            self._active = False
        await self._emit(EventType.AGENT_STOPPED)

    def health(self) -> AgentHealth:
        attempts = self._tasks_completed + self._error_count
        error_rate = self._error_count / attempts if attempts else 0.0
        age = (
            time.monotonic() - self._last_activity
            if self._last_activity is not None
            else None
        )
        recently_active = age is not None and age < self.staleness_window
        return AgentHealth(
            agent_id=self.agent_id,
            kind=self.kind,
            name=self.name,
            active=self._active,
            healthy=self._active and recently_active and error_rate < MAX_ERROR_RATE,
            last_activity_age_seconds=age,
            tasks_completed=self._tasks_completed,
            error_count=self._error_count,
            avg_duration_seconds=(
                self._total_duration / self._tasks_completed if self._tasks_completed else 0.0
            ),
            error_rate=error_rate,
        )

    async def _emit(
        self,
        event_type: EventType,
        subject_id: Optional[str] = None,
        payload: Optional[dict] = None,
    ) -> None:
        if self._on_event is None:
            return
        event = LifecycleEvent(
            event_type=event_type,
            subject_id=subject_id,
            payload={"agent_id": self.agent_id, **(payload or {})},
        )
        try:
            result = self._on_event(event)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Event callback failed for agent %s", self.name)
