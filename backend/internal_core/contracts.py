from __future__ import annotations

from datetime import date
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

SessionStatus = Literal["PENDING", "PROCESSING", "COMPLETED", "FAILED"]

InteractionMode = Literal["child_directed", "parent_directed"]

SpeakerRole = Literal["adult", "child"]

UtteranceKind = Literal["speech", "silence"]

BehaviorTagValue = Literal[
    "labeled_praise",
    "unlabeled_praise",
    "behavioral_description",
    "reflection",
    "negative_talk",
    "direct_command",
    "indirect_command",
    "question",
    "acknowledgment",
    "idle",
]

DomainName = Literal["language", "cognitive", "social", "emotional", "connection"]

DOMAIN_NAMES: tuple[str, ...] = ("language", "cognitive", "social", "emotional", "connection")

MilestoneStatus = Literal["EMERGING", "ACHIEVED"]

MilestoneOutcome = Literal[
    "created_emerging",
    "created_achieved",
    "incremented",
    "promoted",
    "unchanged",
]


class UtteranceRecord(BaseModel):
    model_config = ConfigDict(extra="forbid")

    utterance_id: str
    session_id: str
    order: int = Field(ge=0)
    speaker: str
    kind: UtteranceKind = "speech"
    role: Optional[SpeakerRole] = None
    start: float = Field(ge=0.0)
    end: float = Field(ge=0.0)
    text: str
    tag: Optional[BehaviorTagValue] = None
    feedback: Optional[str] = None

    @model_validator(mode="after")
    def _validate_window(self) -> "UtteranceRecord":
        if self.end < self.start:
            raise ValueError("UtteranceRecord.end must be >= UtteranceRecord.start")
        return self


class MergeReport(BaseModel):
    model_config = ConfigDict(extra="forbid")

    mode: str
    pass_a_speaker_count: int = 0
    pass_b_speaker_count: int = 0
    utterance_count: int = 0
    reassigned_count: int = 0
    reassigned_ratio: float = 0.0
    diverged: bool = False
    reason_counts: Dict[str, int] = Field(default_factory=dict)
    fallback_rate: float = 0.0


class SpeakerRoleAssignment(BaseModel):
    model_config = ConfigDict(extra="forbid")

    role: Literal["ADULT", "CHILD"]
    confidence: float = Field(ge=0.0, le=1.0)
    rationale: str = ""
    utterance_count: int = Field(default=0, ge=0)


class RoleIdentification(BaseModel):
    model_config = ConfigDict(extra="forbid")

    speakers: Dict[str, SpeakerRoleAssignment] = Field(default_factory=dict)

    def role_map(self) -> Dict[str, SpeakerRole]:
        return {
            label: ("adult" if assignment.role == "ADULT" else "child")
            for label, assignment in self.speakers.items()
        }


class TagCounts(BaseModel):
    model_config = ConfigDict(extra="forbid")

    echo: int = 0
    labeled_praise: int = 0
    unlabeled_praise: int = 0
    praise: int = 0
    narration: int = 0
    direct_command: int = 0
    indirect_command: int = 0
    command: int = 0
    question: int = 0
    criticism: int = 0
    neutral: int = 0


class CodingResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    adult_utterance_count: int = 0
    tag_counts: TagCounts = Field(default_factory=TagCounts)
    overall_score: int = 0
    passed: bool = False


class DomainObservation(BaseModel):
    model_config = ConfigDict(extra="forbid")

    text: str = Field(min_length=1)
    evidence_utterance_ids: List[int] = Field(default_factory=list)


class DomainProfile(BaseModel):
    model_config = ConfigDict(extra="forbid")

    domain: DomainName
    current_level: str
    age_benchmark: str = ""
    observations: List[DomainObservation] = Field(default_factory=list)


class DevelopmentalProfile(BaseModel):
    model_config = ConfigDict(extra="forbid")

    summary: str
    domains: List[DomainProfile]
    session_metadata: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _validate_domains(self) -> "DevelopmentalProfile":
        names = [item.domain for item in self.domains]
        if sorted(names) != sorted(DOMAIN_NAMES):
            raise ValueError(
                f"DevelopmentalProfile.domains must cover each of {list(DOMAIN_NAMES)} exactly once"
            )
        return self

    def domain(self, name: str) -> Optional[DomainProfile]:
        for item in self.domains:
            if item.domain == name:
                return item
        return None


class CoachingItem(BaseModel):
    model_config = ConfigDict(extra="forbid")

    observed_pattern: str
    suggested_alternative: str
    worked_example: str = ""


class CoachingGuidance(BaseModel):
    model_config = ConfigDict(extra="forbid")

    summary: str
    items: List[CoachingItem] = Field(default_factory=list)
    tomorrow_goal: Optional[str] = None


class ChildContext(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = None
    birth_date: Optional[date] = None
    age_months: Optional[int] = Field(default=None, ge=0)
    gender: Optional[str] = None
    presenting_concern: Optional[str] = None

    def resolved_age_months(self, today: Optional[date] = None) -> Optional[int]:
        if self.birth_date is not None:
            today = today or date.today()
            months = (today.year - self.birth_date.year) * 12 + (today.month - self.birth_date.month)
            return max(0, months)
        return self.age_months


class ChildRecord(BaseModel):
    model_config = ConfigDict(extra="forbid")

    child_id: str
    user_id: str
    context: ChildContext = Field(default_factory=ChildContext)
    created_at: float


class ChildProfilingRecord(BaseModel):
    model_config = ConfigDict(extra="forbid")

    profiling_id: str
    child_id: str
    session_id: str
    profile: DevelopmentalProfile
    created_at: float
    updated_at: float


class MilestoneDefinition(BaseModel):
    model_config = ConfigDict(extra="forbid")

    key: str = Field(min_length=1)
    category: str
    grouping_stage: str
    display_title: str
    threshold: int = Field(ge=1)
    median_age_months: int = Field(ge=0)
    mastery_age_months: int = Field(ge=0)
    action_tip: str = ""


class ChildMilestoneRecord(BaseModel):
    model_config = ConfigDict(extra="forbid")

    child_id: str
    milestone_key: str
    status: MilestoneStatus
    evidence_count: int = Field(default=0, ge=0)
    evidence_session_ids: List[str] = Field(default_factory=list)
    first_observed_at: float
    achieved_at: Optional[float] = None


class MilestoneDelta(BaseModel):
    model_config = ConfigDict(extra="forbid")

    milestone_key: str
    outcome: MilestoneOutcome
    status: MilestoneStatus
    evidence_count: int
    category: str
    display_title: str
    action_tip: str = ""


class SessionRecord(BaseModel):
    model_config = ConfigDict(extra="forbid")

    session_id: str
    user_id: str
    mode: InteractionMode
    status: SessionStatus = "PENDING"
    created_at: float
    updated_at: float
    upload_target: str
    audio_ref: Optional[str] = None
    duration_sec: Optional[float] = None
    transcript_text: Optional[str] = None
    merge_report: Optional[MergeReport] = None
    role_identification: Optional[RoleIdentification] = None
    coding_result: Optional[CodingResult] = None
    coaching: Optional[CoachingGuidance] = None
    milestone_deltas: List[MilestoneDelta] = Field(default_factory=list)
    retry_count: int = 0
    last_retry_at: Optional[float] = None
    permanent_failure: bool = False
    last_error: Optional[str] = None
    completed_at: Optional[float] = None


class SessionStatusView(BaseModel):
    model_config = ConfigDict(extra="forbid")

    session_id: str
    status: SessionStatus
    permanent_failure: bool = False
    retry_count: int = 0
    last_retry_at: Optional[float] = None
    last_error: Optional[str] = None


class SessionReport(BaseModel):
    model_config = ConfigDict(extra="forbid")

    session_id: str
    mode: InteractionMode
    utterances: List[UtteranceRecord] = Field(default_factory=list)
    tag_display_names: Dict[str, str] = Field(default_factory=dict)
    tag_counts: TagCounts = Field(default_factory=TagCounts)
    overall_score: int = 0
    passed: bool = False
    merge_report: Optional[MergeReport] = None
    profile: Optional[DevelopmentalProfile] = None
    coaching: Optional[CoachingGuidance] = None
    milestone_deltas: List[MilestoneDelta] = Field(default_factory=list)


class FailureNotification(BaseModel):
    model_config = ConfigDict(extra="forbid")

    session_id: str
    user_id: str
    error_summary: str
    retry_count: int
    audio_ref: Optional[str] = None
    failed_at_iso: str


AuditEventType = Literal[
    "SESSION_CREATED",
    "UPLOAD_COMPLETED",
    "ATTEMPT_STARTED",
    "STAGE_DONE",
    "STAGE_FAILED",
    "MERGE_DIVERGENCE",
    "ATTEMPT_FAILED",
    "COMPLETED",
    "PERMANENT_FAILURE",
    "SESSION_DESTROYED",
]


class AuditEvent(BaseModel):
    model_config = ConfigDict(extra="forbid")

    ts_iso: str
    session_id: str
    type: AuditEventType
    code: str
    detail: str
    duration_ms: Optional[int] = None
