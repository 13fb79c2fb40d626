"""Notification preferences, the notification writer, and the in-app feed.

``create_notification`` is the only code path that inserts into the
notifications table. It consults the recipient's preferences on every call
and reports what happened as a ``NotificationOutcome``; a declined
notification is an expected outcome, not an error.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from cfptrack.config import DEFAULT_CFP_DAYS_BEFORE, MAX_CFP_DAYS_BEFORE
from cfptrack.errors import InvalidInputError
from cfptrack.models import NOTIFICATION_TYPES, Notification, NotificationPreference
from cfptrack.utils import apply_updates, iso, utc_now

log = logging.getLogger(__name__)


class NotificationOutcome(str, enum.Enum):
    SENT = "sent"
    SKIPPED_BY_PREFERENCE = "skipped_by_preference"
    SKIPPED_DUPLICATE = "skipped_duplicate"


# ---------------------------------------------------------------------------
# Preferences
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NotificationPrefs:
    mentions_enabled: bool = True
    status_changes_enabled: bool = True
    comments_enabled: bool = True
    cfp_deadlines_enabled: bool = True
    cfp_deadline_days_before: int = DEFAULT_CFP_DAYS_BEFORE


DEFAULT_PREFS = NotificationPrefs()

_CATEGORY_FLAGS = {
    "mention": "mentions_enabled",
    "status_change": "status_changes_enabled",
    "comment": "comments_enabled",
    "cfp_deadline": "cfp_deadlines_enabled",
}

PREFERENCE_TOGGLES = (
    "mentions_enabled", "status_changes_enabled", "comments_enabled", "cfp_deadlines_enabled",
)

_CHANNEL_FIELDS = (
    "email_mentions_enabled", "email_status_changes_enabled",
    "email_comments_enabled", "email_cfp_deadlines_enabled",
    "slack_mentions_enabled", "slack_status_changes_enabled",
    "slack_comments_enabled", "slack_cfp_deadlines_enabled",
)


def prefs_from_row(row: NotificationPreference | None) -> NotificationPrefs:
    if row is None:
        return DEFAULT_PREFS
    return NotificationPrefs(
        mentions_enabled=row.mentions_enabled,
        status_changes_enabled=row.status_changes_enabled,
        comments_enabled=row.comments_enabled,
        cfp_deadlines_enabled=row.cfp_deadlines_enabled,
        cfp_deadline_days_before=row.cfp_deadline_days_before,
    )


def _preference_row(session: Session, user_id: int) -> NotificationPreference | None:
    return session.execute(
        select(NotificationPreference).where(NotificationPreference.user_id == user_id)
    ).scalars().first()


def get_preferences(session: Session, user_id: int) -> NotificationPrefs:
    """Read the user's preferences, falling back to the all-on defaults."""
    return prefs_from_row(_preference_row(session, user_id))


def should_notify(prefs: NotificationPrefs, category: str) -> bool:
    flag = _CATEGORY_FLAGS.get(category)
    if flag is None:
        return False
    return bool(getattr(prefs, flag))


def preferences_dict(session: Session, user_id: int) -> dict[str, Any]:
    row = _preference_row(session, user_id)
    prefs = prefs_from_row(row)
    result: dict[str, Any] = {f: getattr(prefs, f) for f in PREFERENCE_TOGGLES}
    result["cfp_deadline_days_before"] = prefs.cfp_deadline_days_before
    for f in _CHANNEL_FIELDS:
        result[f] = getattr(row, f) if row is not None else False
    result["slack_webhook_url"] = row.slack_webhook_url if row is not None else None
    return result


def update_preferences(session: Session, user_id: int, changes: dict[str, Any]) -> dict[str, Any]:
    """Apply non-None preference changes, creating the row on first write (caller must commit)."""
    days = changes.get("cfp_deadline_days_before")
    if days is not None and not 1 <= days <= MAX_CFP_DAYS_BEFORE:
        raise InvalidInputError(f"cfp_deadline_days_before must be between 1 and {MAX_CFP_DAYS_BEFORE}")
    row = _preference_row(session, user_id)
    if row is None:
        row = NotificationPreference(
            user_id=user_id,
            mentions_enabled=True, status_changes_enabled=True,
            comments_enabled=True, cfp_deadlines_enabled=True,
            cfp_deadline_days_before=DEFAULT_CFP_DAYS_BEFORE,
        )
        session.add(row)
    apply_updates(row, changes, (*PREFERENCE_TOGGLES, "cfp_deadline_days_before"))
    session.flush()
    return preferences_dict(session, user_id)


# ---------------------------------------------------------------------------
# Writer
# ---------------------------------------------------------------------------


def create_notification(
    session: Session,
    *,
    user_id: int,
    notification_type: str,
    title: str,
    message: str,
    link_url: str,
    actor_id: int | None = None,
    activity_id: int | None = None,
    event_id: int | None = None,
) -> NotificationOutcome:
    """Persist one in-app notification if the recipient's preferences allow it.

    No deduplication happens here; callers that need idempotency check first.
    """
    if notification_type not in NOTIFICATION_TYPES:
        raise InvalidInputError(f"Unknown notification type: {notification_type!r}")
    prefs = get_preferences(session, user_id)
    if not should_notify(prefs, notification_type):
        log.debug("User %s declined %s notifications", user_id, notification_type)
        return NotificationOutcome.SKIPPED_BY_PREFERENCE
    session.add(Notification(
        user_id=user_id, notification_type=notification_type,
        title=title, message=message, link_url=link_url,
        actor_id=actor_id, activity_id=activity_id, event_id=event_id,
        is_read=False, delivery_method="in_app",
    ))
    session.flush()
    return NotificationOutcome.SENT


# ---------------------------------------------------------------------------
# Feed
# ---------------------------------------------------------------------------


def notification_dict(n: Notification) -> dict[str, Any]:
    return {
        "id": n.id, "notification_type": n.notification_type,
        "title": n.title, "message": n.message, "link_url": n.link_url,
        "actor": {"id": n.actor.id, "name": n.actor.name} if n.actor else None,
        "activity_id": n.activity_id, "event_id": n.event_id,
        "is_read": n.is_read, "read_at": iso(n.read_at),
        "delivery_method": n.delivery_method, "created_at": iso(n.created_at),
    }


def unread_count(session: Session, user_id: int) -> int:
    return session.execute(
        select(func.count(Notification.id)).where(
            Notification.user_id == user_id, Notification.is_read.is_(False),
        )
    ).scalar_one()


def recent_notifications(session: Session, user_id: int, limit: int = 5) -> list[dict]:
    rows = session.execute(
        select(Notification).where(Notification.user_id == user_id)
        .order_by(Notification.id.desc()).limit(limit)
    ).scalars().all()
    return [notification_dict(n) for n in rows]


def list_notifications(
    session: Session, user_id: int, *, limit: int = 20, cursor: int | None = None, unread_only: bool = False,
) -> dict[str, Any]:
    """Newest-first page of notifications; ``cursor`` is the last id already seen."""
    query = select(Notification).where(Notification.user_id == user_id)
    if unread_only:
        query = query.where(Notification.is_read.is_(False))
    if cursor is not None:
        query = query.where(Notification.id < cursor)
    rows = list(session.execute(query.order_by(Notification.id.desc()).limit(limit + 1)).scalars().all())
    next_cursor = None
    if len(rows) > limit:
        rows = rows[:limit]
        next_cursor = rows[-1].id
    return {"items": [notification_dict(n) for n in rows], "next_cursor": next_cursor}


def mark_as_read(session: Session, user_id: int, notification_id: int) -> None:
    """Mark one of the user's notifications read; other users' ids are ignored."""
    session.execute(
        update(Notification)
        .where(Notification.id == notification_id, Notification.user_id == user_id)
        .values(is_read=True, read_at=utc_now())
    )


def mark_all_as_read(session: Session, user_id: int) -> int:
    result = session.execute(
        update(Notification)
        .where(Notification.user_id == user_id, Notification.is_read.is_(False))
        .values(is_read=True, read_at=utc_now())
    )
    return result.rowcount or 0
