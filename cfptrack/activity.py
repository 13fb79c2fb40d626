"""Activity recording: comments with @mentions, status changes, and feeds.

Every activity hangs off exactly one parent. At the service boundary that
parent is an ``ActivityTarget`` value; the three nullable columns on
``Activity`` are only the storage form of it.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, ClassVar, Union

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from cfptrack.errors import InvalidInputError, NotFoundError, PermissionDeniedError
from cfptrack.mentions import extract_mentions, resolve_mentions
from cfptrack.models import Activity, Event, Mention, Proposal, Talk, User
from cfptrack.notifier import create_notification
from cfptrack.utils import iso, utc_now

log = logging.getLogger(__name__)

MAX_COMMENT_LENGTH = 5000


# ---------------------------------------------------------------------------
# Targets
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProposalTarget:
    id: int
    kind: ClassVar[str] = "proposal"
    column: ClassVar[str] = "proposal_id"

    @property
    def link(self) -> str:
        return f"/proposals/{self.id}"


@dataclass(frozen=True)
class EventTarget:
    id: int
    kind: ClassVar[str] = "event"
    column: ClassVar[str] = "event_id"

    @property
    def link(self) -> str:
        return f"/events/{self.id}"


@dataclass(frozen=True)
class TalkTarget:
    id: int
    kind: ClassVar[str] = "talk"
    column: ClassVar[str] = "talk_id"

    @property
    def link(self) -> str:
        return f"/talks/{self.id}"


ActivityTarget = Union[ProposalTarget, EventTarget, TalkTarget]


def target_from_ids(
    proposal_id: int | None = None, event_id: int | None = None, talk_id: int | None = None,
) -> ActivityTarget:
    given = [
        cls(value) for cls, value in
        ((ProposalTarget, proposal_id), (EventTarget, event_id), (TalkTarget, talk_id))
        if value is not None
    ]
    if len(given) != 1:
        raise InvalidInputError("Exactly one of proposal_id, event_id, or talk_id must be provided")
    return given[0]


def target_of(activity: Activity) -> ActivityTarget:
    return target_from_ids(activity.proposal_id, activity.event_id, activity.talk_id)


def _target_columns(target: ActivityTarget) -> dict[str, int]:
    return {target.column: target.id}


def load_parent(session: Session, target: ActivityTarget) -> Proposal | Event | Talk:
    model = {"proposal": Proposal, "event": Event, "talk": Talk}[target.kind]
    parent = session.get(model, target.id)
    if parent is None:
        raise NotFoundError(f"{target.kind.capitalize()} not found")
    return parent


def _parent_owner_id(parent: Proposal | Event | Talk) -> int | None:
    if isinstance(parent, Proposal):
        return parent.user_id
    if isinstance(parent, Talk):
        return parent.created_by_id
    # Events have no owner.
    return None


def _parent_name(parent: Proposal | Event | Talk) -> str:
    if isinstance(parent, Proposal):
        return f"{parent.talk.title} at {parent.event.name}"
    if isinstance(parent, Event):
        return parent.name
    return parent.title


# ---------------------------------------------------------------------------
# Comments
# ---------------------------------------------------------------------------


def _validate_content(content: str) -> str:
    if not content or len(content) > MAX_COMMENT_LENGTH:
        raise InvalidInputError(f"Comment must be between 1 and {MAX_COMMENT_LENGTH} characters")
    return content


def _store_mentions(session: Session, activity: Activity, content: str) -> list[User]:
    users = resolve_mentions(session, extract_mentions(content))
    for user in users:
        session.add(Mention(activity_id=activity.id, mentioned_user_id=user.id))
    session.flush()
    return users


def create_comment(session: Session, actor: User, target: ActivityTarget, content: str) -> Activity:
    """Record a comment, its mentions, and the resulting notifications (caller must commit)."""
    content = _validate_content(content)
    parent = load_parent(session, target)

    activity = Activity(
        user_id=actor.id, activity_type="comment", content=content, is_edited=False,
        **_target_columns(target),
    )
    session.add(activity)
    session.flush()

    mentioned = _store_mentions(session, activity, content)
    entity_name = _parent_name(parent)
    mentioned_ids = set()
    for user in mentioned:
        mentioned_ids.add(user.id)
        if user.id == actor.id:
            continue
        create_notification(
            session, user_id=user.id, notification_type="mention",
            title=f"{actor.name} mentioned you",
            message=f"in a comment on {entity_name}",
            link_url=target.link, actor_id=actor.id, activity_id=activity.id,
        )

    owner_id = _parent_owner_id(parent)
    if owner_id is not None and owner_id != actor.id and owner_id not in mentioned_ids:
        create_notification(
            session, user_id=owner_id, notification_type="comment",
            title=f"{actor.name} commented",
            message=f"on your {target.kind}: {entity_name}",
            link_url=target.link, actor_id=actor.id, activity_id=activity.id,
        )

    log.info("User %s commented on %s %s (%d mentions)", actor.id, target.kind, target.id, len(mentioned))
    return activity


def _own_comment(session: Session, actor: User, activity_id: int, verb: str) -> Activity:
    activity = session.execute(
        select(Activity).where(Activity.id == activity_id, Activity.activity_type == "comment")
    ).scalars().first()
    if activity is None:
        raise NotFoundError("Comment not found")
    if activity.user_id != actor.id:
        raise PermissionDeniedError(f"You can only {verb} your own comments")
    return activity


def update_comment(session: Session, actor: User, activity_id: int, content: str) -> Activity:
    """Replace a comment's text and re-derive its mentions from scratch.

    Mentions are deleted and re-inserted, never diffed. No notifications are sent.
    """
    content = _validate_content(content)
    activity = _own_comment(session, actor, activity_id, "edit")
    session.execute(delete(Mention).where(Mention.activity_id == activity.id))
    session.expire(activity, ["mentions"])
    activity.content = content
    activity.is_edited = True
    activity.edited_at = utc_now()
    session.flush()
    _store_mentions(session, activity, content)
    session.expire(activity, ["mentions"])
    return activity


def delete_comment(session: Session, actor: User, activity_id: int) -> None:
    activity = _own_comment(session, actor, activity_id, "delete")
    session.delete(activity)
    session.flush()


# ---------------------------------------------------------------------------
# Status changes
# ---------------------------------------------------------------------------


def record_status_change(
    session: Session, actor: User, proposal_id: int, old_status: str, new_status: str,
) -> Activity:
    if not old_status or not new_status:
        raise InvalidInputError("Status changes need both the old and the new status")
    activity = Activity(
        proposal_id=proposal_id, user_id=actor.id, activity_type="status_change",
        old_status=old_status, new_status=new_status, is_edited=False,
    )
    session.add(activity)
    session.flush()
    return activity


# ---------------------------------------------------------------------------
# Feeds
# ---------------------------------------------------------------------------


def _user_brief(user: User) -> dict[str, Any]:
    return {"id": user.id, "name": user.name, "email": user.email, "username": user.username}


def _parent_brief(activity: Activity) -> dict[str, Any]:
    target = target_of(activity)
    parent: dict[str, Any] = {"kind": target.kind, "id": target.id, "link": target.link}
    if activity.proposal is not None:
        parent["name"] = _parent_name(activity.proposal)
    elif activity.event is not None:
        parent["name"] = activity.event.name
    elif activity.talk is not None:
        parent["name"] = activity.talk.title
    return parent


def activity_dict(activity: Activity) -> dict[str, Any]:
    return {
        "id": activity.id,
        "activity_type": activity.activity_type,
        "user": _user_brief(activity.user),
        "parent": _parent_brief(activity),
        "content": activity.content,
        "is_edited": activity.is_edited,
        "edited_at": iso(activity.edited_at),
        "old_status": activity.old_status,
        "new_status": activity.new_status,
        "mentions": [_user_brief(m.mentioned_user) for m in activity.mentions],
        "created_at": iso(activity.created_at),
    }


def list_activities(
    session: Session, target: ActivityTarget | None = None, *, limit: int = 20, cursor: int | None = None,
) -> dict[str, Any]:
    """Newest-first page of activities, optionally for one parent; ``cursor`` is the last id seen."""
    query = select(Activity)
    if target is not None:
        query = query.where(getattr(Activity, target.column) == target.id)
    if cursor is not None:
        query = query.where(Activity.id < cursor)
    rows = list(session.execute(query.order_by(Activity.id.desc()).limit(limit + 1)).scalars().all())
    next_cursor = None
    if len(rows) > limit:
        rows = rows[:limit]
        next_cursor = rows[-1].id
    return {"items": [activity_dict(a) for a in rows], "next_cursor": next_cursor}


def recent_activities(session: Session, limit: int = 10) -> list[dict]:
    rows = session.execute(select(Activity).order_by(Activity.id.desc()).limit(limit)).scalars().all()
    return [activity_dict(a) for a in rows]


def my_mentions(session: Session, user_id: int, limit: int = 20) -> list[dict]:
    rows = session.execute(
        select(Activity).join(Mention, Mention.activity_id == Activity.id)
        .where(Mention.mentioned_user_id == user_id)
        .order_by(Mention.id.desc()).limit(limit)
    ).scalars().all()
    return [activity_dict(a) for a in rows]
