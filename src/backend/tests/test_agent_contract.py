import asyncio

import pytest

from oracle.agent.base import AgentRunner, ScoringStrategy
from oracle.errors import AgentNotReady, AgentTimeout
from oracle.models.schemas import AgentKind, EventType

from helpers import FixedStrategy, make_subject, record


def test_fixed_strategy_satisfies_protocol():
    assert isinstance(FixedStrategy(), ScoringStrategy)


def test_score_before_start_raises_not_ready():
    agent = AgentRunner(FixedStrategy())

    with pytest.raises(AgentNotReady):
        asyncio.run(agent.score([], make_subject()))
    assert agent.health().active is False


def test_failed_start_leaves_agent_not_ready():
    agent = AgentRunner(FixedStrategy(setup_error=RuntimeError("no handle")))

    async def scenario():
        with pytest.raises(RuntimeError):
            await agent.start()
        with pytest.raises(AgentNotReady):
            await agent.score([], make_subject())

    asyncio.run(scenario())
    assert agent.active is False


def test_score_stamps_response_and_counts():
    strategy = FixedStrategy(agent_id="validator", kind=AgentKind.VALIDATOR, outcome="NO", confidence=0.6)
    agent = AgentRunner(strategy)
    evidence = [record("coingecko-price", 100.0)]

    async def scenario():
        await agent.start()
        return await agent.score(evidence, make_subject())

    resp = asyncio.run(scenario())

    assert resp.agent_id == "validator"
    assert resp.agent_kind == AgentKind.VALIDATOR
    assert resp.outcome == "NO"
    assert resp.confidence == 0.6
    assert resp.duration_seconds >= 0
    assert resp.evidence_used == evidence

    health = agent.health()
    assert health.tasks_completed == 1
    assert health.error_count == 0
    assert health.healthy is True


def test_timeout_raises_and_counts_as_error():
    agent = AgentRunner(FixedStrategy(delay=1.0), timeout=0.05)

    async def scenario():
        await agent.start()
        with pytest.raises(AgentTimeout) as exc_info:
            await agent.score([], make_subject())
        return exc_info.value

    err = asyncio.run(scenario())

    assert err.timeout_seconds == 0.05
    health = agent.health()
    assert health.error_count == 1
    assert health.error_rate == 1.0
    assert health.healthy is False


def test_strategy_error_propagates_and_counts():
    agent = AgentRunner(FixedStrategy(error=ValueError("bad evidence")))

    async def scenario():
        await agent.start()
        with pytest.raises(ValueError):
            await agent.score([], make_subject())

    asyncio.run(scenario())
    assert agent.health().error_count == 1


def test_health_requires_error_rate_below_half():
    strategy = FixedStrategy()
    agent = AgentRunner(strategy)

    async def scenario():
        await agent.start()
        await agent.score([], make_subject())
        strategy.error = RuntimeError("flaky")
        with pytest.raises(RuntimeError):
            await agent.score([], make_subject())

    asyncio.run(scenario())
    health = agent.health()
    # one success, one failure: 50% is not below the limit
    assert health.error_rate == 0.5
    assert health.healthy is False


def test_stale_agent_is_unhealthy():
    agent = AgentRunner(FixedStrategy(), staleness_window=0.0)

    asyncio.run(agent.start())

    assert agent.health().healthy is False


def test_stop_swallows_teardown_failure_and_deactivates():
    agent = AgentRunner(FixedStrategy(teardown_error=RuntimeError("leak")))

    async def scenario():
        await agent.start()
        await agent.stop()

    asyncio.run(scenario())
    assert agent.active is False


def test_lifecycle_events_reach_callback():
    events = []
    agent = AgentRunner(FixedStrategy(agent_id="scorer"), on_event=events.append)

    async def scenario():
        await agent.start()
        await agent.score([], make_subject("m9"))
        await agent.stop()

    asyncio.run(scenario())

    assert [e.event_type for e in events] == [
        EventType.AGENT_STARTED,
        EventType.AGENT_RESPONSE_GENERATED,
        EventType.AGENT_STOPPED,
    ]
    assert events[1].subject_id == "m9"
    assert all(e.payload["agent_id"] == "scorer" for e in events)


def test_failing_callback_does_not_break_scoring():
    def boom(event):
        raise RuntimeError("subscriber down")

    agent = AgentRunner(FixedStrategy(), on_event=boom)

    async def scenario():
        await agent.start()
        return await agent.score([], make_subject())

    assert asyncio.run(scenario()).outcome == "YES"
