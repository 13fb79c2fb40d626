"""CFP deadline scanner.

Meant to run once a day from an external scheduler. For every user it looks
``cfp_deadline_days_before`` days ahead and writes one ``cfp_deadline``
notification per matching event, at most once per (user, event).
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import UTC, date, datetime, time, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from cfptrack.models import Event, Notification, User
from cfptrack.notifier import NotificationOutcome, create_notification, get_preferences
from cfptrack.utils import plural, utc_today

log = logging.getLogger(__name__)

WINDOW_BEFORE = timedelta(hours=12)
WINDOW_AFTER = timedelta(hours=36)


@dataclass
class ScanResult:
    users_checked: int = 0
    notifications_created: int = 0
    duplicates_skipped: int = 0
    users_skipped: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


def deadline_window(target: date) -> tuple[datetime, datetime]:
    """Half-open ``[start, end)`` window around midnight UTC of *target*."""
    midnight = datetime.combine(target, time.min, tzinfo=UTC)
    return midnight - WINDOW_BEFORE, midnight + WINDOW_AFTER


def _deadline_instant(deadline: date) -> datetime:
    # Date-only deadlines compare as noon UTC.
    return datetime.combine(deadline, time(12), tzinfo=UTC)


def events_in_window(session: Session, target: date) -> list[Event]:
    start, end = deadline_window(target)
    candidates = session.execute(
        select(Event).where(
            Event.cfp_deadline.is_not(None),
            Event.cfp_deadline >= start.date(),
            Event.cfp_deadline <= end.date(),
        ).order_by(Event.cfp_deadline, Event.id)
    ).scalars().all()
    return [e for e in candidates if start <= _deadline_instant(e.cfp_deadline) < end]


def _already_notified(session: Session, user_id: int, event_id: int) -> bool:
    return session.execute(
        select(Notification.id).where(
            Notification.user_id == user_id,
            Notification.event_id == event_id,
            Notification.notification_type == "cfp_deadline",
        )
    ).first() is not None


def notify_cfp_deadline(session: Session, user: User, event: Event, days_left: int) -> NotificationOutcome:
    if _already_notified(session, user.id, event.id):
        return NotificationOutcome.SKIPPED_DUPLICATE
    return create_notification(
        session, user_id=user.id, notification_type="cfp_deadline",
        title="CFP deadline approaching",
        message=f"{event.name} CFP closes in {plural(days_left, 'day')}",
        link_url=f"/events/{event.id}", actor_id=None, event_id=event.id,
    )


def check_cfp_deadlines(session: Session, today: date | None = None) -> ScanResult:
    """Scan every user for upcoming CFP deadlines (caller must commit).

    Users and events are processed serially. Any exception aborts the run and
    the caller's rollback discards the notifications written so far.
    """
    today = today or utc_today()
    result = ScanResult()
    users = session.execute(select(User).order_by(User.id)).scalars().all()
    log.info("Starting CFP deadline check for %d users (today=%s)", len(users), today)

    for user in users:
        result.users_checked += 1
        prefs = get_preferences(session, user.id)
        if not prefs.cfp_deadlines_enabled:
            result.users_skipped += 1
            continue

        days_before = prefs.cfp_deadline_days_before
        target = today + timedelta(days=days_before)
        events = events_in_window(session, target)
        log.debug("User %s: %d events with CFP deadline around %s", user.name, len(events), target)

        for event in events:
            days_left = (event.cfp_deadline - today).days
            outcome = notify_cfp_deadline(session, user, event, days_left)
            if outcome is NotificationOutcome.SENT:
                result.notifications_created += 1
                log.info("Notified %s about %s", user.name, event.name)
            elif outcome is NotificationOutcome.SKIPPED_DUPLICATE:
                result.duplicates_skipped += 1
                log.debug("Skipping duplicate notification for %s and %s", user.name, event.name)

    log.info("CFP deadline check completed: %d notifications created", result.notifications_created)
    return result
