from __future__ import annotations

from dataclasses import dataclass, field

JOB_KIND_ANALYZE_ENTRY = "analyze_entry"

JOB_PENDING = "pending"
JOB_PROCESSING = "processing"
JOB_DONE = "done"
JOB_FAILED = "failed"
JOB_STATUSES = (JOB_PENDING, JOB_PROCESSING, JOB_DONE, JOB_FAILED)


@dataclass(frozen=True)
class Job:
    id: str
    kind: str
    target_id: str
    status: str
    attempts: int
    last_error: str | None
    locked_by: str | None
    created_at: str
    updated_at: str
    started_at: str | None
    finished_at: str | None


@dataclass(frozen=True)
class Entry:
    id: str
    owner_id: str
    entry_text: str
    mood_score: int | None
    tags: list[str]
    summary: str | None
    keywords: list[str]
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class NegativeThought:
    text: str


@dataclass(frozen=True)
class Emotion:
    name: str
    score: float


@dataclass(frozen=True)
class Distortion:
    type: str
    excerpt: str | None = None


@dataclass(frozen=True)
class Reframe:
    original_thought: str
    rational_response: str
    accepted_by_user: bool = False


@dataclass(frozen=True)
class SuggestedAction:
    text: str


@dataclass(frozen=True)
class NormalizedAnalysis:
    """Canonical shape of one analyzer response, before it is tied to an entry."""

    negative_thoughts: list[NegativeThought] = field(default_factory=list)
    emotions: list[Emotion] = field(default_factory=list)
    distortions: list[Distortion] = field(default_factory=list)
    evidence_for: list[str] = field(default_factory=list)
    evidence_against: list[str] = field(default_factory=list)
    reframes: list[Reframe] = field(default_factory=list)
    suggested_actions: list[SuggestedAction] = field(default_factory=list)
    worksheet_prefill: dict[str, str] = field(default_factory=dict)
    version: str | None = None
    summary: str | None = None
    keywords: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class AnalysisResult:
    id: str
    target_id: str
    owner_id: str
    negative_thoughts: list[NegativeThought]
    emotions: list[Emotion]
    distortions: list[Distortion]
    evidence_for: list[str]
    evidence_against: list[str]
    reframes: list[Reframe]
    suggested_actions: list[SuggestedAction]
    worksheet_prefill: dict[str, str]
    version: str | None
    created_at: str
    updated_at: str
