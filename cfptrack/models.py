from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import (
    Boolean, Date, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint, func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from cfptrack.utils import username_from_email

PROPOSAL_STATUSES = ("draft", "submitted", "accepted", "rejected", "confirmed")
TALK_TYPES = ("keynote", "regular", "lightning", "workshop")
ACTIVITY_TYPES = ("comment", "status_change")
NOTIFICATION_TYPES = ("mention", "status_change", "comment", "cfp_deadline")
PARTICIPATION_TYPES = ("speak", "sponsor", "attend", "exhibit", "volunteer")
PARTICIPATION_STATUSES = ("interested", "applied", "confirmed", "not_going")
VALID_SCORES = (0, 1, 3, 9)


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    notification_preferences: Mapped[NotificationPreference | None] = relationship(
        "NotificationPreference", back_populates="user", uselist=False, cascade="all, delete-orphan",
    )

    @property
    def username(self) -> str:
        return username_from_email(self.email)


class Event(Base):
    __tablename__ = "events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(300), nullable=False, index=True)
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True, index=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    location: Mapped[str | None] = mapped_column(String(300), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    cfp_deadline: Mapped[date | None] = mapped_column(Date, nullable=True, index=True)
    cfp_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    conference_website: Mapped[str | None] = mapped_column(String(500), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, onupdate=func.now())

    proposals: Mapped[list[Proposal]] = relationship("Proposal", back_populates="event", cascade="all, delete-orphan")
    scores: Mapped[list[EventScore]] = relationship("EventScore", back_populates="event", cascade="all, delete-orphan")
    activities: Mapped[list[Activity]] = relationship("Activity", back_populates="event", cascade="all, delete-orphan")
    notifications: Mapped[list[Notification]] = relationship("Notification", back_populates="event", cascade="all, delete-orphan")
    participations: Mapped[list[EventParticipation]] = relationship(
        "EventParticipation", back_populates="event", cascade="all, delete-orphan",
    )


class Talk(Base):
    __tablename__ = "talks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(300), nullable=False, index=True)
    abstract: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, onupdate=func.now())

    created_by: Mapped[User] = relationship("User")
    proposals: Mapped[list[Proposal]] = relationship("Proposal", back_populates="talk", cascade="all, delete-orphan")
    activities: Mapped[list[Activity]] = relationship("Activity", back_populates="talk", cascade="all, delete-orphan")
    tag_assignments: Mapped[list[TalkTagAssignment]] = relationship(
        "TalkTagAssignment", back_populates="talk", cascade="all, delete-orphan",
    )


class TalkTag(Base):
    __tablename__ = "talk_tags"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    color: Mapped[str | None] = mapped_column(String(7), nullable=True)  # "#RRGGBB"
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    assignments: Mapped[list[TalkTagAssignment]] = relationship(
        "TalkTagAssignment", back_populates="tag", cascade="all, delete-orphan",
    )


class TalkTagAssignment(Base):
    __tablename__ = "talk_tag_assignments"
    __table_args__ = (UniqueConstraint("talk_id", "tag_id", name="uq_talk_tag"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    talk_id: Mapped[int] = mapped_column(Integer, ForeignKey("talks.id", ondelete="CASCADE"), nullable=False)
    tag_id: Mapped[int] = mapped_column(Integer, ForeignKey("talk_tags.id", ondelete="CASCADE"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    talk: Mapped[Talk] = relationship("Talk", back_populates="tag_assignments")
    tag: Mapped[TalkTag] = relationship("TalkTag", back_populates="assignments")


class Proposal(Base):
    __tablename__ = "proposals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    talk_id: Mapped[int] = mapped_column(Integer, ForeignKey("talks.id", ondelete="CASCADE"), nullable=False, index=True)
    event_id: Mapped[int] = mapped_column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft", index=True)
    talk_type: Mapped[str] = mapped_column(String(20), nullable=False)
    submission_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, onupdate=func.now())

    talk: Mapped[Talk] = relationship("Talk", back_populates="proposals")
    event: Mapped[Event] = relationship("Event", back_populates="proposals")
    user: Mapped[User] = relationship("User")
    activities: Mapped[list[Activity]] = relationship("Activity", back_populates="proposal", cascade="all, delete-orphan")


class ScoringCategory(Base):
    __tablename__ = "scoring_categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    weight: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)  # 1-10
    display_order: Mapped[int] = mapped_column(Integer, nullable=False)  # 1-10
    score_9_description: Mapped[str] = mapped_column(Text, nullable=False)
    score_3_description: Mapped[str] = mapped_column(Text, nullable=False)
    score_1_description: Mapped[str] = mapped_column(Text, nullable=False)
    score_0_description: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    scores: Mapped[list[EventScore]] = relationship("EventScore", back_populates="category", cascade="all, delete-orphan")


class EventScore(Base):
    __tablename__ = "event_scores"
    __table_args__ = (UniqueConstraint("event_id", "category_id", name="uq_event_score_category"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[int] = mapped_column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    category_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("scoring_categories.id", ondelete="CASCADE"), nullable=False,
    )
    score: Mapped[int] = mapped_column(Integer, nullable=False)  # 0 | 1 | 3 | 9
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, onupdate=func.now())

    event: Mapped[Event] = relationship("Event", back_populates="scores")
    category: Mapped[ScoringCategory] = relationship("ScoringCategory", back_populates="scores")


class ScoringSettings(Base):
    """Single-row table holding the recommendation threshold."""
    __tablename__ = "scoring_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    threshold: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())


class Activity(Base):
    __tablename__ = "activities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # Exactly one parent is set; see cfptrack.activity.ActivityTarget.
    proposal_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("proposals.id", ondelete="CASCADE"), nullable=True, index=True,
    )
    event_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=True, index=True)
    talk_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("talks.id", ondelete="CASCADE"), nullable=True, index=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    activity_type: Mapped[str] = mapped_column(String(20), nullable=False)
    content: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_edited: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    edited_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    old_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    new_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    user: Mapped[User] = relationship("User")
    proposal: Mapped[Proposal | None] = relationship("Proposal", back_populates="activities")
    event: Mapped[Event | None] = relationship("Event", back_populates="activities")
    talk: Mapped[Talk | None] = relationship("Talk", back_populates="activities")
    mentions: Mapped[list[Mention]] = relationship("Mention", back_populates="activity", cascade="all, delete-orphan")
    # No delete cascade: notifications outlive the activity with activity_id nulled.
    notifications: Mapped[list[Notification]] = relationship("Notification", back_populates="activity")


class Mention(Base):
    __tablename__ = "mentions"
    __table_args__ = (UniqueConstraint("activity_id", "mentioned_user_id", name="uq_mention_activity_user"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    activity_id: Mapped[int] = mapped_column(Integer, ForeignKey("activities.id", ondelete="CASCADE"), nullable=False, index=True)
    mentioned_user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    activity: Mapped[Activity] = relationship("Activity", back_populates="mentions")
    mentioned_user: Mapped[User] = relationship("User")


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    notification_type: Mapped[str] = mapped_column(String(20), nullable=False)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    link_url: Mapped[str] = mapped_column(String(500), nullable=False)
    actor_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("users.id"), nullable=True)
    activity_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("activities.id", ondelete="SET NULL"), nullable=True,
    )
    event_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=True, index=True)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    read_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    delivery_method: Mapped[str] = mapped_column(String(20), nullable=False, default="in_app")
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    user: Mapped[User] = relationship("User", foreign_keys=[user_id])
    actor: Mapped[User | None] = relationship("User", foreign_keys=[actor_id])
    activity: Mapped[Activity | None] = relationship("Activity", back_populates="notifications")
    event: Mapped[Event | None] = relationship("Event", back_populates="notifications")


class NotificationPreference(Base):
    __tablename__ = "notification_preferences"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, unique=True)
    mentions_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    status_changes_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    comments_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    cfp_deadlines_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    cfp_deadline_days_before: Mapped[int] = mapped_column(Integer, nullable=False, default=7)
    # Delivery channels beyond in-app are stored but never sent.
    email_mentions_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    email_status_changes_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    email_comments_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    email_cfp_deadlines_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    slack_mentions_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    slack_status_changes_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    slack_comments_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    slack_cfp_deadlines_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    slack_webhook_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, onupdate=func.now())

    user: Mapped[User] = relationship("User", back_populates="notification_preferences")


class EventParticipation(Base):
    __tablename__ = "event_participations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[int] = mapped_column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("users.id"), nullable=True)
    participation_type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="interested")
    budget: Mapped[float | None] = mapped_column(Float, nullable=True)
    sponsorship_tier: Mapped[str | None] = mapped_column(String(100), nullable=True)
    booth_size: Mapped[str | None] = mapped_column(String(100), nullable=True)
    details: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    event: Mapped[Event] = relationship("Event", back_populates="participations")
    user: Mapped[User | None] = relationship("User")
