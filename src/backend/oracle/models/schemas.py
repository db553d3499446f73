"""
Domain models for the Resolution Oracle.

These Pydantic models define the structured data flowing through the resolution
pipeline. Every agent consumes and produces typed models: evidence values are a
closed tagged union, never loose dicts or untyped payloads.
"""
from __future__ import annotations

import math
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ──────────────────────────────────────────────
# Enums
# ──────────────────────────────────────────────

class SubjectStatus(str, Enum):
    OPEN = "open"
    PENDING_RESOLUTION = "pending_resolution"
    RESOLVED = "resolved"
    DISPUTED = "disputed"
    CANCELLED = "cancelled"


class AgentKind(str, Enum):
    COLLECTOR = "collector"
    VALIDATOR = "validator"
    ARBITER = "arbiter"
    SCORER = "scorer"


class ConsensusMethod(str, Enum):
    SINGLE_AGENT = "single_agent"
    UNANIMOUS = "unanimous"
    WEIGHTED_VOTING = "weighted_voting"


class ConsensusState(str, Enum):
    IDLE = "idle"
    COLLECTING = "collecting"
    DECIDING = "deciding"
    COMPLETE = "complete"
    TIMED_OUT = "timed_out"


class ResolutionStage(str, Enum):
    NOT_STARTED = "not_started"
    EVIDENCE_GATHERING = "evidence_gathering"
    AGENT_SCORING = "agent_scoring"
    CONSENSUS = "consensus"
    SETTLED = "settled"
    FAILED = "failed"


class ProviderKind(str, Enum):
    FINANCIAL = "financial"
    NEWS = "news"
    SOCIAL = "social"
    WEATHER = "weather"
    SPORTS = "sports"
    GOVERNMENT = "government"
    WEB = "web"


class ConflictSeverity(str, Enum):
    MEDIUM = "medium"
    HIGH = "high"


class EventType(str, Enum):
    RESOLUTION_STARTED = "resolution.started"
    EVIDENCE_COLLECTED = "evidence.collected"
    AGENT_RESPONSES_GENERATED = "agent.responses_generated"
    CONSENSUS_FORMED = "consensus.formed"
    RESOLUTION_COMPLETED = "resolution.completed"
    RESOLUTION_FAILED = "resolution.failed"
    DISPUTE_RESOLVED = "dispute.resolved"
    # Per-agent lifecycle, delivered through the agent event callback
    AGENT_STARTED = "agent.started"
    AGENT_RESPONSE_GENERATED = "agent.response_generated"
    AGENT_RESPONSE_FAILED = "agent.response_failed"
    AGENT_STOPPED = "agent.stopped"


# ──────────────────────────────────────────────
# Subject (market)
# ──────────────────────────────────────────────

class Subject(BaseModel):
    """A prediction-market question. Owned by the settlement layer; read-only here."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Market identifier")
    question: str = Field(..., description="Question text being resolved")
    category: str = Field("general", description="Market category, e.g. 'crypto', 'news'")
    deadline: datetime = Field(..., description="Resolution deadline")
    created_at: datetime = Field(default_factory=utcnow)
    status: SubjectStatus = SubjectStatus.OPEN
    description: Optional[str] = None
    outcomes: List[str] = Field(default_factory=lambda: ["YES", "NO"])

    @field_validator("deadline", "created_at")
    @classmethod
    def _normalise_tz(cls, v: datetime) -> datetime:
        return _as_utc(v)

    @field_validator("status", mode="before")
    @classmethod
    def _normalise_status(cls, v: str) -> str:
        return v.lower() if isinstance(v, str) else v

    @property
    def search_text(self) -> str:
        return f"{self.question} {self.category}".lower()


# ──────────────────────────────────────────────
# Evidence values (closed tagged union)
# ──────────────────────────────────────────────

_YES_WORDS = re.compile(r"\b(yes|true|positive)\b")
_NO_WORDS = re.compile(r"\b(no|false|negative)\b")


class NumericValue(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["numeric"] = "numeric"
    value: float

    def is_suspicious(self) -> bool:
        return not math.isfinite(self.value) or self.value < 0

    def agrees_with(self, other: EvidenceValue) -> bool:
        return isinstance(other, NumericValue) and self.value == other.value

    def divergence(self, other: EvidenceValue) -> float:
        """Relative difference against the pair's midpoint; 1.0 for any other variant."""
        if not isinstance(other, NumericValue):
            return 1.0
        if not (math.isfinite(self.value) and math.isfinite(other.value)):
            return 1.0
        if self.value == other.value:
            return 0.0
        midpoint = (self.value + other.value) / 2
        if midpoint == 0:
            return 1.0
        return abs(self.value - other.value) / abs(midpoint)

    def group_key(self) -> Tuple[str, Any]:
        return (self.kind, self.value)

    def outcome_label(self) -> str:
        return "YES" if self.value > 0.5 else "NO"


class BooleanValue(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["boolean"] = "boolean"
    value: bool

    def is_suspicious(self) -> bool:
        return False

    def agrees_with(self, other: EvidenceValue) -> bool:
        return isinstance(other, BooleanValue) and self.value == other.value

    def divergence(self, other: EvidenceValue) -> float:
        return 0.0 if self.agrees_with(other) else 1.0

    def group_key(self) -> Tuple[str, Any]:
        return (self.kind, self.value)

    def outcome_label(self) -> str:
        return "YES" if self.value else "NO"


class TextValue(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["text"] = "text"
    value: str

    @property
    def normalised(self) -> str:
        return self.value.strip().lower()

    def is_suspicious(self) -> bool:
        text = self.normalised
        return not text or "error" in text or "null" in text

    def agrees_with(self, other: EvidenceValue) -> bool:
        return isinstance(other, TextValue) and self.normalised == other.normalised

    def divergence(self, other: EvidenceValue) -> float:
        return 0.0 if self.agrees_with(other) else 1.0

    def group_key(self) -> Tuple[str, Any]:
        return (self.kind, self.normalised)

    def outcome_label(self) -> str:
        text = self.normalised
        if _YES_WORDS.search(text):
            return "YES"
        if _NO_WORDS.search(text):
            return "NO"
        return "UNCERTAIN"


EvidenceValue = Annotated[
    Union[NumericValue, BooleanValue, TextValue],
    Field(discriminator="kind"),
]


def evidence_value(raw: Union[bool, int, float, str]) -> Union[NumericValue, BooleanValue, TextValue]:
    """Wrap a plain Python value in its tagged variant."""
    # bool is a subclass of int, so it must be checked first
    if isinstance(raw, bool):
        return BooleanValue(value=raw)
    if isinstance(raw, (int, float)):
        return NumericValue(value=float(raw))
    if isinstance(raw, str):
        return TextValue(value=raw)
    raise TypeError(f"Unsupported evidence value type: {type(raw).__name__}")


class EvidenceRecord(BaseModel):
    """One timestamped, source-attributed observation. Immutable once created."""
    model_config = ConfigDict(frozen=True)

    source: str = Field(..., description="Source identifier, e.g. 'coingecko-price'")
    value: EvidenceValue
    observed_at: datetime = Field(default_factory=utcnow)
    reliability: float = Field(..., ge=0.0, le=1.0)
    url: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("observed_at")
    @classmethod
    def _normalise_tz(cls, v: datetime) -> datetime:
        return _as_utc(v)

    @classmethod
    def of(
        cls,
        source: str,
        raw_value: Union[bool, int, float, str],
        reliability: float,
        observed_at: Optional[datetime] = None,
        **metadata: Any,
    ) -> "EvidenceRecord":
        return cls(
            source=source,
            value=evidence_value(raw_value),
            observed_at=observed_at or utcnow(),
            reliability=reliability,
            metadata=metadata,
        )

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        return ((now or utcnow()) - self.observed_at).total_seconds()


# ──────────────────────────────────────────────
# Agent outputs
# ──────────────────────────────────────────────

class Assessment(BaseModel):
    """What a scoring strategy computes; the agent contract stamps the rest."""
    outcome: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    reasoning: List[str] = Field(default_factory=list)
    evidence_used: List[EvidenceRecord] = Field(default_factory=list)


class AgentResponse(BaseModel):
    """One agent's opinion for one resolution attempt."""
    model_config = ConfigDict(frozen=True)

    agent_id: str
    agent_kind: AgentKind
    outcome: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    reasoning: List[str] = Field(default_factory=list)
    evidence_used: List[EvidenceRecord] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=utcnow)
    duration_seconds: float = 0.0


class AgentVote(BaseModel):
    agent_id: str
    outcome: str
    weight: float
    confidence: float


class ConsensusResult(BaseModel):
    outcome: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    evidence: List[str] = Field(default_factory=list)
    votes: List[AgentVote] = Field(default_factory=list)
    method: ConsensusMethod
    timestamp: datetime = Field(default_factory=utcnow)
    timed_out: bool = Field(False, description="Decision was forced from a partial response set")


class DisputeDecision(BaseModel):
    outcome: str
    confidence: float
    evidence: List[str] = Field(default_factory=list)
    reasoning: str = ""
    timestamp: datetime = Field(default_factory=utcnow)


class ResolutionOutcome(BaseModel):
    """
    The settlement-bound record of one resolution attempt.

    A failed attempt has the same shape as a successful one; callers branch on
    ``resolved``, never on exception type.
    """
    subject_id: str
    outcome: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    evidence: List[str] = Field(default_factory=list)
    agent_responses: List[AgentResponse] = Field(default_factory=list)
    resolved: bool
    error: Optional[str] = None
    settlement_reference: Optional[str] = None
    consensus_method: Optional[ConsensusMethod] = None
    dispute_window_seconds: float = 0.0
    dispute_resolved: bool = False
    timestamp: datetime = Field(default_factory=utcnow)


# ──────────────────────────────────────────────
# Health / monitoring
# ──────────────────────────────────────────────

class AgentHealth(BaseModel):
    agent_id: str
    kind: AgentKind
    name: str
    active: bool
    healthy: bool
    last_activity_age_seconds: Optional[float] = None
    tasks_completed: int = 0
    error_count: int = 0
    avg_duration_seconds: float = 0.0
    error_rate: float = 0.0


class ProviderStatus(BaseModel):
    provider_id: str
    name: str
    kind: ProviderKind
    base_url: str
    reliability: float
    healthy: bool
    last_check: Optional[datetime] = None
    last_error: Optional[str] = None


class LifecycleEvent(BaseModel):
    """A notification pushed to subscribers. Delivery is fire-and-forget."""
    event_type: EventType
    subject_id: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)


# ──────────────────────────────────────────────
# API Request / Response Models
# ──────────────────────────────────────────────

class SubjectRegistration(BaseModel):
    """API request to register a market with the in-memory ledger."""
    id: Optional[str] = None
    question: str = Field(..., min_length=5)
    category: str = "general"
    deadline: datetime
    description: Optional[str] = None


class DisputeRequest(BaseModel):
    evidence: List[str] = Field(..., min_length=1)


class StageResponse(BaseModel):
    subject_id: str
    stage: ResolutionStage
