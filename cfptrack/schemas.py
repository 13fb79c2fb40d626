"""Pydantic request/response schemas for the cfptrack API."""
from __future__ import annotations

import re
from datetime import date
from typing import Any

from pydantic import BaseModel, field_validator, model_validator

from cfptrack.activity import MAX_COMMENT_LENGTH
from cfptrack.config import MAX_CFP_DAYS_BEFORE, MAX_SCORING_THRESHOLD
from cfptrack.models import (
    PARTICIPATION_STATUSES,
    PARTICIPATION_TYPES,
    PROPOSAL_STATUSES,
    TALK_TYPES,
    VALID_SCORES,
)


def _choice(value: str | None, choices: tuple[str, ...], label: str) -> str | None:
    if value is not None and value not in choices:
        raise ValueError(f"{label} must be one of: {', '.join(choices)}")
    return value


def _not_blank(value: str | None, label: str) -> str | None:
    if value is not None and not value.strip():
        raise ValueError(f"{label} must not be empty")
    return value


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserCreate(BaseModel):
    name: str
    email: str

    @field_validator("email")
    @classmethod
    def email_must_have_local_part(cls, v: str) -> str:
        if not re.match(r"^[^@\s]+@[^@\s]+$", v.strip()):
            raise ValueError("email must look like name@domain")
        return v.strip()


class UserOut(BaseModel):
    id: int
    name: str
    email: str
    username: str


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


class _EventFields(BaseModel):
    start_date: date | None = None
    end_date: date | None = None
    location: str | None = None
    description: str | None = None
    cfp_deadline: date | None = None
    cfp_url: str | None = None
    conference_website: str | None = None
    notes: str | None = None


class EventCreate(_EventFields):
    name: str

    @field_validator("name")
    @classmethod
    def name_required(cls, v: str) -> str:
        return _not_blank(v, "name")


class EventUpdate(_EventFields):
    name: str | None = None

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str | None) -> str | None:
        return _not_blank(v, "name")


class ScoreInfo(BaseModel):
    total_score: int
    max_score: int
    completion_count: int
    total_categories: int
    is_complete: bool
    meets_threshold: bool
    threshold: int


class ParticipationOut(BaseModel):
    id: int
    event_id: int
    user_id: int | None = None
    participation_type: str
    status: str
    budget: float | None = None
    sponsorship_tier: str | None = None
    booth_size: str | None = None
    details: str | None = None
    notes: str | None = None
    created_at: str | None = None


class EventOut(BaseModel):
    id: int
    name: str
    start_date: str | None = None
    end_date: str | None = None
    location: str | None = None
    description: str | None = None
    cfp_deadline: str | None = None
    cfp_url: str | None = None
    conference_website: str | None = None
    notes: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


class EventWithScores(EventOut):
    score_info: ScoreInfo
    participations: list[ParticipationOut] = []


class EventDetail(EventWithScores):
    proposal_count: int = 0


# ---------------------------------------------------------------------------
# Talks & tags
# ---------------------------------------------------------------------------


class TalkCreate(BaseModel):
    title: str
    abstract: str
    description: str | None = None

    @field_validator("title", "abstract")
    @classmethod
    def required_text(cls, v: str, info) -> str:
        return _not_blank(v, info.field_name)


class TalkUpdate(BaseModel):
    title: str | None = None
    abstract: str | None = None
    description: str | None = None

    @field_validator("title", "abstract")
    @classmethod
    def text_not_blank(cls, v: str | None, info) -> str | None:
        return _not_blank(v, info.field_name)


class TagCreate(BaseModel):
    name: str
    color: str | None = None
    description: str | None = None

    @field_validator("color")
    @classmethod
    def color_must_be_hex(cls, v: str | None) -> str | None:
        if v is not None and not re.match(r"^#[0-9A-Fa-f]{6}$", v):
            raise ValueError("color must look like #RRGGBB")
        return v

    @field_validator("name")
    @classmethod
    def name_required(cls, v: str) -> str:
        return _not_blank(v, "name")


class TagUpdate(TagCreate):
    name: str | None = None

    @field_validator("name")
    @classmethod
    def name_required(cls, v: str | None) -> str | None:
        return _not_blank(v, "name")


class TagOut(BaseModel):
    id: int
    name: str
    color: str | None = None
    description: str | None = None


class TagIds(BaseModel):
    tag_ids: list[int]


class TalkOut(BaseModel):
    id: int
    title: str
    abstract: str
    description: str | None = None
    created_by: UserOut
    tags: list[TagOut] = []
    created_at: str | None = None
    updated_at: str | None = None


# ---------------------------------------------------------------------------
# Proposals
# ---------------------------------------------------------------------------


class ProposalCreate(BaseModel):
    talk_id: int
    event_id: int
    status: str | None = None
    talk_type: str
    submission_date: date | None = None
    notes: str | None = None

    @field_validator("status")
    @classmethod
    def status_known(cls, v: str | None) -> str | None:
        return _choice(v, PROPOSAL_STATUSES, "status")

    @field_validator("talk_type")
    @classmethod
    def talk_type_known(cls, v: str) -> str:
        return _choice(v, TALK_TYPES, "talk_type")


class ProposalUpdate(BaseModel):
    talk_id: int | None = None
    event_id: int | None = None
    status: str | None = None
    talk_type: str | None = None
    submission_date: date | None = None
    notes: str | None = None

    @field_validator("status")
    @classmethod
    def status_known(cls, v: str | None) -> str | None:
        return _choice(v, PROPOSAL_STATUSES, "status")

    @field_validator("talk_type")
    @classmethod
    def talk_type_known(cls, v: str | None) -> str | None:
        return _choice(v, TALK_TYPES, "talk_type")


class _Ref(BaseModel):
    id: int
    title: str | None = None
    name: str | None = None


class ProposalOut(BaseModel):
    id: int
    status: str
    talk_type: str
    submission_date: str | None = None
    notes: str | None = None
    talk: _Ref
    event: _Ref
    user: UserOut
    created_at: str | None = None
    updated_at: str | None = None


# ---------------------------------------------------------------------------
# Participations
# ---------------------------------------------------------------------------


class ParticipationCreate(BaseModel):
    participation_type: str
    status: str | None = None
    budget: float | None = None
    sponsorship_tier: str | None = None
    booth_size: str | None = None
    details: str | None = None
    notes: str | None = None

    @field_validator("participation_type")
    @classmethod
    def type_known(cls, v: str) -> str:
        return _choice(v, PARTICIPATION_TYPES, "participation_type")

    @field_validator("status")
    @classmethod
    def status_known(cls, v: str | None) -> str | None:
        return _choice(v, PARTICIPATION_STATUSES, "status")

    @field_validator("budget")
    @classmethod
    def budget_positive(cls, v: float | None) -> float | None:
        if v is not None and v < 0:
            raise ValueError("budget cannot be negative")
        return v


class ParticipationUpdate(ParticipationCreate):
    participation_type: str | None = None

    @field_validator("participation_type")
    @classmethod
    def type_known(cls, v: str | None) -> str | None:
        return _choice(v, PARTICIPATION_TYPES, "participation_type")


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


class CategoryCreate(BaseModel):
    name: str
    weight: int
    display_order: int
    score_9_description: str
    score_3_description: str
    score_1_description: str
    score_0_description: str

    @field_validator("weight", "display_order")
    @classmethod
    def one_to_ten(cls, v: int, info) -> int:
        if not 1 <= v <= 10:
            raise ValueError(f"{info.field_name} must be between 1 and 10")
        return v


class CategoryUpdate(BaseModel):
    name: str | None = None
    weight: int | None = None
    display_order: int | None = None
    score_9_description: str | None = None
    score_3_description: str | None = None
    score_1_description: str | None = None
    score_0_description: str | None = None

    @field_validator("weight", "display_order")
    @classmethod
    def one_to_ten(cls, v: int | None, info) -> int | None:
        if v is not None and not 1 <= v <= 10:
            raise ValueError(f"{info.field_name} must be between 1 and 10")
        return v


class CategoryOut(BaseModel):
    id: int
    name: str
    weight: int
    display_order: int
    score_9_description: str
    score_3_description: str
    score_1_description: str
    score_0_description: str
    created_at: str | None = None


class ScoreIn(BaseModel):
    category_id: int
    score: int
    notes: str | None = None

    @field_validator("score")
    @classmethod
    def score_allowed(cls, v: int) -> int:
        if v not in VALID_SCORES:
            raise ValueError(f"score must be one of {', '.join(map(str, VALID_SCORES))}")
        return v


class ScoreBatch(BaseModel):
    scores: list[ScoreIn]


class ScoreOut(BaseModel):
    id: int
    event_id: int
    category_id: int
    score: int
    notes: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


class EventScoresOut(ScoreInfo):
    event_id: int
    categories: list[CategoryOut]
    scores: list[ScoreOut]


class ThresholdIn(BaseModel):
    threshold: int

    @field_validator("threshold")
    @classmethod
    def threshold_in_range(cls, v: int) -> int:
        if not 0 <= v <= MAX_SCORING_THRESHOLD:
            raise ValueError(f"threshold must be between 0 and {MAX_SCORING_THRESHOLD}")
        return v


class ThresholdOut(BaseModel):
    threshold: int


# ---------------------------------------------------------------------------
# Activity
# ---------------------------------------------------------------------------


class CommentCreate(BaseModel):
    proposal_id: int | None = None
    event_id: int | None = None
    talk_id: int | None = None
    content: str

    @field_validator("content")
    @classmethod
    def content_length(cls, v: str) -> str:
        if not 1 <= len(v) <= MAX_COMMENT_LENGTH:
            raise ValueError(f"content must be between 1 and {MAX_COMMENT_LENGTH} characters")
        return v

    @model_validator(mode="after")
    def exactly_one_parent(self) -> CommentCreate:
        given = [x for x in (self.proposal_id, self.event_id, self.talk_id) if x is not None]
        if len(given) != 1:
            raise ValueError("Exactly one of proposal_id, event_id, or talk_id must be provided")
        return self


class CommentUpdate(BaseModel):
    content: str

    @field_validator("content")
    @classmethod
    def content_length(cls, v: str) -> str:
        if not 1 <= len(v) <= MAX_COMMENT_LENGTH:
            raise ValueError(f"content must be between 1 and {MAX_COMMENT_LENGTH} characters")
        return v


class ParentRef(BaseModel):
    kind: str
    id: int
    link: str
    name: str | None = None


class ActivityOut(BaseModel):
    id: int
    activity_type: str
    user: UserOut
    parent: ParentRef
    content: str | None = None
    is_edited: bool
    edited_at: str | None = None
    old_status: str | None = None
    new_status: str | None = None
    mentions: list[UserOut] = []
    created_at: str | None = None


class ActivityPage(BaseModel):
    items: list[ActivityOut]
    next_cursor: int | None = None


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


class ActorOut(BaseModel):
    id: int
    name: str


class NotificationOut(BaseModel):
    id: int
    notification_type: str
    title: str
    message: str
    link_url: str
    actor: ActorOut | None = None
    activity_id: int | None = None
    event_id: int | None = None
    is_read: bool
    read_at: str | None = None
    delivery_method: str
    created_at: str | None = None


class NotificationPage(BaseModel):
    items: list[NotificationOut]
    next_cursor: int | None = None


class UnreadCount(BaseModel):
    count: int


class PreferencesUpdate(BaseModel):
    mentions_enabled: bool | None = None
    status_changes_enabled: bool | None = None
    comments_enabled: bool | None = None
    cfp_deadlines_enabled: bool | None = None
    cfp_deadline_days_before: int | None = None

    @field_validator("cfp_deadline_days_before")
    @classmethod
    def days_in_range(cls, v: int | None) -> int | None:
        if v is not None and not 1 <= v <= MAX_CFP_DAYS_BEFORE:
            raise ValueError(f"cfp_deadline_days_before must be between 1 and {MAX_CFP_DAYS_BEFORE}")
        return v


class PreferencesOut(BaseModel):
    mentions_enabled: bool
    status_changes_enabled: bool
    comments_enabled: bool
    cfp_deadlines_enabled: bool
    cfp_deadline_days_before: int
    email_mentions_enabled: bool = False
    email_status_changes_enabled: bool = False
    email_comments_enabled: bool = False
    email_cfp_deadlines_enabled: bool = False
    slack_mentions_enabled: bool = False
    slack_status_changes_enabled: bool = False
    slack_comments_enabled: bool = False
    slack_cfp_deadlines_enabled: bool = False
    slack_webhook_url: str | None = None


# ---------------------------------------------------------------------------
# Import & stats
# ---------------------------------------------------------------------------


class ImportResult(BaseModel):
    success: int
    failed: int
    errors: list[str] = []


class StatsOut(BaseModel):
    total_events: int
    total_talks: int
    total_proposals: int
    by_status: dict[str, int]
    accepted: int
    acceptance_rate: float
    talk_reuse: dict[str, Any]
    spending: dict[str, Any]
    upcoming_cfps: list[dict[str, Any]]
