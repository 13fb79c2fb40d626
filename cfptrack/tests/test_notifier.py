from __future__ import annotations

import pytest
from sqlalchemy import func, select

from cfptrack.errors import InvalidInputError
from cfptrack.models import Notification
from cfptrack.notifier import (
    DEFAULT_PREFS,
    NotificationOutcome,
    create_notification,
    get_preferences,
    list_notifications,
    mark_all_as_read,
    mark_as_read,
    preferences_dict,
    should_notify,
    unread_count,
    update_preferences,
)


def _notify(session, user, **overrides):
    kwargs = dict(
        user_id=user.id, notification_type="comment",
        title="Someone commented", message="on your talk", link_url="/talks/1",
    )
    kwargs.update(overrides)
    return create_notification(session, **kwargs)


def _count(session) -> int:
    return session.execute(select(func.count(Notification.id))).scalar_one()


def test_defaults_when_no_row(session, alice) -> None:
    prefs = get_preferences(session, alice.id)
    assert prefs == DEFAULT_PREFS
    assert prefs.cfp_deadline_days_before == 7
    for category in ("mention", "status_change", "comment", "cfp_deadline"):
        assert should_notify(prefs, category)


def test_unknown_category_is_never_notified() -> None:
    assert should_notify(DEFAULT_PREFS, "newsletter") is False


def test_sent_writes_one_unread_row(session, alice) -> None:
    assert _notify(session, alice) is NotificationOutcome.SENT
    session.commit()
    row = session.execute(select(Notification)).scalars().one()
    assert row.user_id == alice.id
    assert row.is_read is False
    assert row.delivery_method == "in_app"


def test_disabled_category_writes_nothing(session, alice) -> None:
    update_preferences(session, alice.id, {"comments_enabled": False})
    session.commit()
    assert _notify(session, alice) is NotificationOutcome.SKIPPED_BY_PREFERENCE
    assert _count(session) == 0
    # Other categories are unaffected.
    assert _notify(session, alice, notification_type="mention") is NotificationOutcome.SENT
    assert _count(session) == 1


def test_unknown_notification_type_rejected(session, alice) -> None:
    with pytest.raises(InvalidInputError):
        _notify(session, alice, notification_type="digest")


def test_update_preferences_creates_row_and_keeps_unset_fields(session, alice) -> None:
    prefs = update_preferences(session, alice.id, {"cfp_deadline_days_before": 14, "mentions_enabled": None})
    session.commit()
    assert prefs["cfp_deadline_days_before"] == 14
    assert prefs["mentions_enabled"] is True
    assert prefs["email_mentions_enabled"] is False

    prefs = update_preferences(session, alice.id, {"status_changes_enabled": False})
    session.commit()
    assert prefs["cfp_deadline_days_before"] == 14
    assert prefs["status_changes_enabled"] is False


@pytest.mark.parametrize("days", [0, 91])
def test_update_preferences_rejects_out_of_range_days(session, alice, days) -> None:
    with pytest.raises(InvalidInputError):
        update_preferences(session, alice.id, {"cfp_deadline_days_before": days})


def test_preferences_dict_without_row(session, alice) -> None:
    prefs = preferences_dict(session, alice.id)
    assert prefs["comments_enabled"] is True
    assert prefs["slack_webhook_url"] is None


def test_feed_pagination_and_read_state(session, alice, bob) -> None:
    for i in range(5):
        _notify(session, alice, title=f"n{i}")
    _notify(session, bob)
    session.commit()

    page = list_notifications(session, alice.id, limit=2)
    assert [n["title"] for n in page["items"]] == ["n4", "n3"]
    page2 = list_notifications(session, alice.id, limit=2, cursor=page["next_cursor"])
    assert [n["title"] for n in page2["items"]] == ["n2", "n1"]
    page3 = list_notifications(session, alice.id, limit=2, cursor=page2["next_cursor"])
    assert [n["title"] for n in page3["items"]] == ["n0"]
    assert page3["next_cursor"] is None

    assert unread_count(session, alice.id) == 5
    mark_as_read(session, alice.id, page["items"][0]["id"])
    session.commit()
    assert unread_count(session, alice.id) == 4
    assert len(list_notifications(session, alice.id, unread_only=True)["items"]) == 4

    assert mark_all_as_read(session, alice.id) == 4
    session.commit()
    assert unread_count(session, alice.id) == 0
    assert unread_count(session, bob.id) == 1


def test_mark_as_read_ignores_other_users(session, alice, bob) -> None:
    _notify(session, bob)
    session.commit()
    bob_notification = session.execute(select(Notification)).scalars().one()
    mark_as_read(session, alice.id, bob_notification.id)
    session.commit()
    assert unread_count(session, bob.id) == 1
