"""
Exception hierarchy for the resolution pipeline.

Agent-local errors (``AgentNotReady``, ``AgentTimeout``, ``ProviderUnavailable``)
are caught where they happen and only shrink the evidence or vote set.
Resolution-level errors (``InsufficientData``, ``InvalidSubject``) end one
resolution attempt and are packaged into a failed ``ResolutionOutcome`` by the
orchestrator.
"""
from __future__ import annotations


class OracleError(Exception):
    """Base class for oracle-originated errors."""


class AgentError(OracleError):
    """Base class for errors local to one agent."""

    def __init__(self, agent_id: str, message: str) -> None:
        super().__init__(message)
        self.agent_id = agent_id


class AgentNotReady(AgentError):
    """Raised when ``score`` is called before a successful ``start``."""

    def __init__(self, agent_id: str) -> None:
        super().__init__(agent_id, f"Agent {agent_id} is not ready (start() has not succeeded)")


class AgentTimeout(AgentError):
    """Raised when an agent exceeds its scoring budget."""

    def __init__(self, agent_id: str, timeout_seconds: float) -> None:
        super().__init__(
            agent_id, f"Agent {agent_id} timed out after {timeout_seconds:.2f}s"
        )
        self.timeout_seconds = timeout_seconds


class ProviderUnavailable(OracleError):
    """Raised when a data provider fetch or health check fails. Never fatal."""

    def __init__(self, provider_id: str, message: str) -> None:
        super().__init__(f"Provider {provider_id} unavailable: {message}")
        self.provider_id = provider_id


class ResolutionError(OracleError):
    """Base class for errors fatal to a single resolution attempt."""

    def __init__(self, subject_id: str, message: str) -> None:
        super().__init__(message)
        self.subject_id = subject_id


class InsufficientData(ResolutionError):
    """Raised when no valid evidence or no agent response is available."""


class InvalidSubject(ResolutionError):
    """Raised when the settlement layer does not know the subject id."""

    def __init__(self, subject_id: str) -> None:
        super().__init__(subject_id, f"Market {subject_id} not found")


class ConsensusSessionActive(ResolutionError):
    """Raised when a consensus session is opened twice for the same subject."""

    def __init__(self, subject_id: str) -> None:
        super().__init__(subject_id, f"Consensus already in progress for market {subject_id}")


class DisputeWindowClosed(ResolutionError):
    """Raised when a dispute arrives after the dispute window has elapsed."""

    def __init__(self, subject_id: str, window_seconds: float) -> None:
        super().__init__(
            subject_id,
            f"Dispute window of {window_seconds:.0f}s has closed for market {subject_id}",
        )
        self.window_seconds = window_seconds
