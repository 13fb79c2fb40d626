"""Shared business logic for the cfptrack API, MCP server and CLI.

Functions here take a session, flush when they need generated ids, and never
commit: every route, tool or command commits its unit of work exactly once.
"""
from __future__ import annotations

import logging
import re
from collections import Counter
from datetime import date
from typing import Any, Iterable

from pydantic import ValidationError
from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from cfptrack.activity import record_status_change
from cfptrack.errors import InvalidInputError, NotFoundError, PermissionDeniedError
from cfptrack.models import (
    PARTICIPATION_STATUSES,
    PARTICIPATION_TYPES,
    PROPOSAL_STATUSES,
    TALK_TYPES,
    Event,
    EventParticipation,
    EventScore,
    Proposal,
    Talk,
    TalkTag,
    TalkTagAssignment,
    User,
)
from cfptrack.notifier import create_notification
from cfptrack.schemas import EventCreate, TalkCreate
from cfptrack.scorer import get_threshold, list_categories, summarize_scores
from cfptrack.utils import apply_updates, iso, utc_today

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Shared field tuples
# ---------------------------------------------------------------------------

EVENT_FIELDS = (
    "name", "start_date", "end_date", "location", "description",
    "cfp_deadline", "cfp_url", "conference_website", "notes",
)

TALK_FIELDS = ("title", "abstract", "description")

TAG_FIELDS = ("name", "color", "description")

# status is handled separately by update_proposal
PROPOSAL_FIELDS = ("talk_id", "event_id", "talk_type", "submission_date", "notes")

PARTICIPATION_FIELDS = (
    "participation_type", "status", "budget", "sponsorship_tier", "booth_size", "details", "notes",
)

TAG_COLOR_RE = re.compile(r"^#[0-9A-Fa-f]{6}$")

UPCOMING_CFP_LIMIT = 5


# ---------------------------------------------------------------------------
# Lookups and validation
# ---------------------------------------------------------------------------


def get_entity(session: Session, model, entity_id: int, label: str = "Entity"):
    obj = session.execute(select(model).where(model.id == entity_id)).scalars().first()
    if obj is None:
        raise NotFoundError(f"{label} not found")
    return obj


def _check_choice(value: str | None, choices: tuple[str, ...], label: str) -> None:
    if value is not None and value not in choices:
        raise InvalidInputError(f"Invalid {label} {value!r}; expected one of: {', '.join(choices)}")


def _check_color(color: str | None) -> None:
    if color is not None and not TAG_COLOR_RE.match(color):
        raise InvalidInputError("Tag color must look like #RRGGBB")


# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


def user_dict(u: User) -> dict:
    return {"id": u.id, "name": u.name, "email": u.email, "username": u.username}


def event_dict(e: Event) -> dict:
    return {
        "id": e.id, "name": e.name,
        "start_date": iso(e.start_date), "end_date": iso(e.end_date),
        "location": e.location, "description": e.description,
        "cfp_deadline": iso(e.cfp_deadline), "cfp_url": e.cfp_url,
        "conference_website": e.conference_website, "notes": e.notes,
        "created_at": iso(e.created_at), "updated_at": iso(e.updated_at),
    }


def tag_dict(t: TalkTag) -> dict:
    return {"id": t.id, "name": t.name, "color": t.color, "description": t.description}


def talk_dict(t: Talk) -> dict:
    return {
        "id": t.id, "title": t.title, "abstract": t.abstract, "description": t.description,
        "created_by": user_dict(t.created_by),
        "tags": sorted((tag_dict(a.tag) for a in t.tag_assignments), key=lambda d: d["name"]),
        "created_at": iso(t.created_at), "updated_at": iso(t.updated_at),
    }


def proposal_dict(p: Proposal) -> dict:
    return {
        "id": p.id, "status": p.status, "talk_type": p.talk_type,
        "submission_date": iso(p.submission_date), "notes": p.notes,
        "talk": {"id": p.talk.id, "title": p.talk.title},
        "event": {"id": p.event.id, "name": p.event.name},
        "user": user_dict(p.user),
        "created_at": iso(p.created_at), "updated_at": iso(p.updated_at),
    }


def participation_dict(p: EventParticipation) -> dict:
    return {
        "id": p.id, "event_id": p.event_id, "user_id": p.user_id,
        **{f: getattr(p, f) for f in PARTICIPATION_FIELDS},
        "created_at": iso(p.created_at),
    }


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


def list_users(session: Session) -> list[dict]:
    users = session.execute(select(User).order_by(User.name, User.id)).scalars().all()
    return [user_dict(u) for u in users]


def create_user(session: Session, name: str, email: str) -> User:
    name, email = (name or "").strip(), (email or "").strip()
    if not name:
        raise InvalidInputError("Name is required")
    local, at, domain = email.partition("@")
    if not local or not at or not domain:
        raise InvalidInputError(f"Invalid email address: {email!r}")
    if session.execute(select(User.id).where(User.email == email)).first() is not None:
        raise InvalidInputError(f"A user with email {email} already exists")
    user = User(name=name, email=email)
    session.add(user)
    session.flush()
    log.info("Registered user %s (@%s)", user.id, user.username)
    return user


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


def create_event(session: Session, data: dict[str, Any]) -> Event:
    event = Event(**{f: data.get(f) for f in EVENT_FIELDS})
    session.add(event)
    session.flush()
    return event


def update_event(session: Session, event_id: int, changes: dict[str, Any]) -> Event:
    event = get_entity(session, Event, event_id, "Event")
    apply_updates(event, changes, EVENT_FIELDS)
    session.flush()
    return event


def delete_event(session: Session, event_id: int) -> None:
    """Delete an event; proposals, scores, activities, notifications and participations go with it."""
    session.delete(get_entity(session, Event, event_id, "Event"))
    session.flush()


def list_events_with_scores(session: Session) -> list[dict]:
    """Events newest start date first, each with its score summary and participations."""
    events = session.execute(
        select(Event).order_by(Event.start_date.desc().nulls_last(), Event.id.desc())
    ).scalars().all()
    categories = list_categories(session)
    threshold = get_threshold(session)
    scores_by_event: dict[int, list[EventScore]] = {}
    for s in session.execute(select(EventScore)).scalars().all():
        scores_by_event.setdefault(s.event_id, []).append(s)
    return [
        {
            **event_dict(e),
            "score_info": summarize_scores(categories, scores_by_event.get(e.id, []), threshold).to_dict(),
            "participations": [participation_dict(p) for p in e.participations],
        }
        for e in events
    ]


def event_detail(session: Session, event_id: int) -> dict:
    event = get_entity(session, Event, event_id, "Event")
    summary = summarize_scores(list_categories(session), event.scores, get_threshold(session))
    return {
        **event_dict(event),
        "score_info": summary.to_dict(),
        "participations": [participation_dict(p) for p in event.participations],
        "proposal_count": len(event.proposals),
    }


def _bulk_import(session: Session, rows: Iterable[dict[str, Any]], schema, build, label: str) -> dict:
    success = failed = 0
    errors: list[str] = []
    for idx, row in enumerate(rows):
        try:
            item = schema.model_validate(row)
        except ValidationError as exc:
            failed += 1
            errors.append(f"row {idx + 1}: {exc.errors()[0]['msg']}")
            log.warning("Failed to import %s at row %d: %s", label, idx + 1, exc)
            continue
        session.add(build(item))
        success += 1
    session.flush()
    log.info("Imported %d %ss (%d failed)", success, label, failed)
    return {"success": success, "failed": failed, "errors": errors}


def bulk_import_events(session: Session, rows: Iterable[dict[str, Any]]) -> dict:
    """Import events from plain dicts; invalid rows are counted, not fatal (caller must commit)."""
    return _bulk_import(
        session, rows, EventCreate,
        lambda item: Event(**{f: getattr(item, f) for f in EVENT_FIELDS}), "event",
    )


# ---------------------------------------------------------------------------
# Talks
# ---------------------------------------------------------------------------


def _own_talk(session: Session, actor: User, talk_id: int, action: str) -> Talk:
    talk = get_entity(session, Talk, talk_id, "Talk")
    if talk.created_by_id != actor.id:
        raise PermissionDeniedError(f"You don't have permission to {action}")
    return talk


def create_talk(session: Session, actor: User, data: dict[str, Any]) -> Talk:
    talk = Talk(created_by_id=actor.id, **{f: data.get(f) for f in TALK_FIELDS})
    session.add(talk)
    session.flush()
    return talk


def update_talk(session: Session, actor: User, talk_id: int, changes: dict[str, Any]) -> Talk:
    talk = _own_talk(session, actor, talk_id, "update this talk")
    apply_updates(talk, changes, TALK_FIELDS)
    session.flush()
    return talk


def delete_talk(session: Session, actor: User, talk_id: int) -> None:
    session.delete(_own_talk(session, actor, talk_id, "delete this talk"))
    session.flush()


def list_talks(session: Session, created_by_id: int | None = None) -> list[dict]:
    query = select(Talk)
    if created_by_id is not None:
        query = query.where(Talk.created_by_id == created_by_id)
    talks = session.execute(query.order_by(Talk.created_at.desc(), Talk.id.desc())).scalars().all()
    return [talk_dict(t) for t in talks]


def bulk_import_talks(session: Session, actor: User, rows: Iterable[dict[str, Any]]) -> dict:
    return _bulk_import(
        session, rows, TalkCreate,
        lambda item: Talk(created_by_id=actor.id, **{f: getattr(item, f) for f in TALK_FIELDS}), "talk",
    )


# ---------------------------------------------------------------------------
# Tags
# ---------------------------------------------------------------------------


def _check_tag_name_free(session: Session, name: str, exclude_id: int | None = None) -> None:
    query = select(TalkTag.id).where(TalkTag.name == name)
    if exclude_id is not None:
        query = query.where(TalkTag.id != exclude_id)
    if session.execute(query).first() is not None:
        raise InvalidInputError(f"Tag {name!r} already exists")


def list_tags(session: Session) -> list[dict]:
    return [tag_dict(t) for t in session.execute(select(TalkTag).order_by(TalkTag.name)).scalars().all()]


def create_tag(session: Session, data: dict[str, Any]) -> TalkTag:
    _check_color(data.get("color"))
    _check_tag_name_free(session, data["name"])
    tag = TalkTag(**{f: data.get(f) for f in TAG_FIELDS})
    session.add(tag)
    session.flush()
    return tag


def update_tag(session: Session, tag_id: int, changes: dict[str, Any]) -> TalkTag:
    tag = get_entity(session, TalkTag, tag_id, "Tag")
    _check_color(changes.get("color"))
    if changes.get("name") is not None:
        _check_tag_name_free(session, changes["name"], exclude_id=tag_id)
    apply_updates(tag, changes, TAG_FIELDS)
    session.flush()
    return tag


def delete_tag(session: Session, tag_id: int) -> None:
    session.delete(get_entity(session, TalkTag, tag_id, "Tag"))
    session.flush()


def assign_tag(session: Session, actor: User, talk_id: int, tag_id: int) -> TalkTagAssignment:
    """Attach a tag to one of the actor's talks; assigning twice returns the existing row."""
    _own_talk(session, actor, talk_id, "modify tags for this talk")
    get_entity(session, TalkTag, tag_id, "Tag")
    existing = session.execute(
        select(TalkTagAssignment).where(TalkTagAssignment.talk_id == talk_id, TalkTagAssignment.tag_id == tag_id)
    ).scalars().first()
    if existing is not None:
        return existing
    assignment = TalkTagAssignment(talk_id=talk_id, tag_id=tag_id)
    session.add(assignment)
    session.flush()
    return assignment


def unassign_tag(session: Session, actor: User, talk_id: int, tag_id: int) -> None:
    _own_talk(session, actor, talk_id, "modify tags for this talk")
    session.execute(delete(TalkTagAssignment).where(
        TalkTagAssignment.talk_id == talk_id, TalkTagAssignment.tag_id == tag_id,
    ))


def set_talk_tags(session: Session, actor: User, talk_id: int, tag_ids: list[int]) -> Talk:
    """Replace a talk's tags with exactly *tag_ids*."""
    talk = _own_talk(session, actor, talk_id, "modify tags for this talk")
    wanted = list(dict.fromkeys(tag_ids))
    for tag_id in wanted:
        get_entity(session, TalkTag, tag_id, "Tag")
    session.execute(delete(TalkTagAssignment).where(TalkTagAssignment.talk_id == talk_id))
    for tag_id in wanted:
        session.add(TalkTagAssignment(talk_id=talk_id, tag_id=tag_id))
    session.flush()
    session.expire(talk, ["tag_assignments"])
    return talk


# ---------------------------------------------------------------------------
# Proposals
# ---------------------------------------------------------------------------


def _validate_proposal(session: Session, data: dict[str, Any]) -> None:
    _check_choice(data.get("status"), PROPOSAL_STATUSES, "status")
    _check_choice(data.get("talk_type"), TALK_TYPES, "talk type")
    if data.get("talk_id") is not None:
        get_entity(session, Talk, data["talk_id"], "Talk")
    if data.get("event_id") is not None:
        get_entity(session, Event, data["event_id"], "Event")


def create_proposal(session: Session, actor: User, data: dict[str, Any]) -> Proposal:
    if data.get("talk_id") is None or data.get("event_id") is None or not data.get("talk_type"):
        raise InvalidInputError("talk_id, event_id and talk_type are required")
    _validate_proposal(session, data)
    proposal = Proposal(
        user_id=actor.id, status=data.get("status") or "draft",
        **{f: data.get(f) for f in PROPOSAL_FIELDS},
    )
    session.add(proposal)
    session.flush()
    return proposal


def update_proposal(session: Session, actor: User, proposal_id: int, changes: dict[str, Any]) -> Proposal:
    """Update a proposal and record any status transition (caller must commit).

    A changed status writes one status_change activity and, when someone other
    than the owner made the change, notifies the owner. Re-sending the current
    status is a no-op.
    """
    proposal = get_entity(session, Proposal, proposal_id, "Proposal")
    _validate_proposal(session, changes)
    old_status = proposal.status
    new_status = changes.get("status")

    apply_updates(proposal, changes, PROPOSAL_FIELDS)
    if new_status is not None:
        proposal.status = new_status
    session.flush()
    session.expire(proposal, ["talk", "event"])

    if new_status is None or not old_status or new_status == old_status:
        return proposal

    activity = record_status_change(session, actor, proposal.id, old_status, new_status)
    if proposal.user_id != actor.id:
        create_notification(
            session, user_id=proposal.user_id, notification_type="status_change",
            title=f"{actor.name} updated your proposal",
            message=(
                f'Changed status from {old_status} to {new_status} '
                f'for "{proposal.talk.title}" at {proposal.event.name}'
            ),
            link_url=f"/proposals/{proposal.id}", actor_id=actor.id, activity_id=activity.id,
        )
    log.info("Proposal %s: %s -> %s by user %s", proposal.id, old_status, new_status, actor.id)
    return proposal


def delete_proposal(session: Session, actor: User, proposal_id: int) -> None:
    proposal = get_entity(session, Proposal, proposal_id, "Proposal")
    if proposal.user_id != actor.id:
        raise PermissionDeniedError("You don't have permission to delete this proposal")
    session.delete(proposal)
    session.flush()


def list_proposals(
    session: Session, *, event_id: int | None = None, talk_id: int | None = None, user_id: int | None = None,
) -> list[dict]:
    query = select(Proposal)
    if event_id is not None:
        query = query.where(Proposal.event_id == event_id)
    if talk_id is not None:
        query = query.where(Proposal.talk_id == talk_id)
    if user_id is not None:
        query = query.where(Proposal.user_id == user_id)
    rows = session.execute(query.order_by(Proposal.created_at.desc(), Proposal.id.desc())).scalars().all()
    return [proposal_dict(p) for p in rows]


# ---------------------------------------------------------------------------
# Participations
# ---------------------------------------------------------------------------


def _validate_participation(data: dict[str, Any]) -> None:
    _check_choice(data.get("participation_type"), PARTICIPATION_TYPES, "participation type")
    _check_choice(data.get("status"), PARTICIPATION_STATUSES, "participation status")
    budget = data.get("budget")
    if budget is not None and budget < 0:
        raise InvalidInputError("Budget cannot be negative")


def create_participation(session: Session, actor: User, event_id: int, data: dict[str, Any]) -> EventParticipation:
    get_entity(session, Event, event_id, "Event")
    if not data.get("participation_type"):
        raise InvalidInputError("participation_type is required")
    _validate_participation(data)
    values = {f: data.get(f) for f in PARTICIPATION_FIELDS}
    values["status"] = values["status"] or "interested"
    participation = EventParticipation(event_id=event_id, user_id=actor.id, **values)
    session.add(participation)
    session.flush()
    return participation


def update_participation(session: Session, participation_id: int, changes: dict[str, Any]) -> EventParticipation:
    participation = get_entity(session, EventParticipation, participation_id, "Participation")
    _validate_participation(changes)
    apply_updates(participation, changes, PARTICIPATION_FIELDS)
    session.flush()
    return participation


def delete_participation(session: Session, participation_id: int) -> None:
    session.delete(get_entity(session, EventParticipation, participation_id, "Participation"))
    session.flush()


def list_participations(session: Session, event_id: int | None = None) -> list[dict]:
    query = select(EventParticipation)
    if event_id is not None:
        get_entity(session, Event, event_id, "Event")
        query = query.where(EventParticipation.event_id == event_id)
    rows = session.execute(query.order_by(EventParticipation.id)).scalars().all()
    return [participation_dict(p) for p in rows]


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------


def compute_stats(session: Session, today: date | None = None) -> dict:
    today = today or utc_today()
    proposals = session.execute(select(Proposal)).scalars().all()
    by_status: Counter[str] = Counter({s: 0 for s in PROPOSAL_STATUSES})
    per_talk: Counter[int] = Counter()
    for p in proposals:
        by_status[p.status] += 1
        per_talk[p.talk_id] += 1
    accepted = by_status["accepted"] + by_status["confirmed"]
    total_talks = session.execute(select(func.count(Talk.id))).scalar_one()

    by_type: Counter[str] = Counter()
    by_participation_status: Counter[str] = Counter()
    for part in session.execute(select(EventParticipation)).scalars().all():
        if part.budget:
            by_type[part.participation_type] += part.budget
            by_participation_status[part.status] += part.budget

    upcoming = session.execute(
        select(Event).where(Event.cfp_deadline.is_not(None), Event.cfp_deadline >= today)
        .order_by(Event.cfp_deadline, Event.id).limit(UPCOMING_CFP_LIMIT)
    ).scalars().all()

    return {
        "total_events": session.execute(select(func.count(Event.id))).scalar_one(),
        "total_talks": total_talks,
        "total_proposals": len(proposals),
        "by_status": dict(by_status),
        "accepted": accepted,
        "acceptance_rate": round(accepted / len(proposals), 3) if proposals else 0.0,
        "talk_reuse": {
            "talks_submitted": len(per_talk),
            "reused_talks": sum(1 for n in per_talk.values() if n > 1),
            "average_reuse": round(len(proposals) / total_talks, 2) if total_talks else 0.0,
            "most_submitted": [talk_id for talk_id, _ in per_talk.most_common(10)],
        },
        "spending": {
            "total": sum(by_type.values()),
            "confirmed": by_participation_status["confirmed"],
            "interested": by_participation_status["interested"],
            "by_type": dict(by_type),
        },
        "upcoming_cfps": [
            {"id": e.id, "name": e.name, "cfp_deadline": iso(e.cfp_deadline),
             "days_left": (e.cfp_deadline - today).days}
            for e in upcoming
        ],
    }
