"""Service-layer behaviour: proposals and their status history, talks, tags, imports, stats."""
from __future__ import annotations

from datetime import date

import pytest
from sqlalchemy import select

from cfptrack import services
from cfptrack.errors import InvalidInputError, NotFoundError, PermissionDeniedError
from cfptrack.models import Activity, Event, EventParticipation, Notification, Proposal, Talk


def _status_changes(session, proposal_id: int) -> list[Activity]:
    return list(session.execute(
        select(Activity).where(Activity.proposal_id == proposal_id, Activity.activity_type == "status_change")
        .order_by(Activity.id)
    ).scalars().all())


def _notifications(session, user_id: int) -> list[Notification]:
    return list(session.execute(select(Notification).where(Notification.user_id == user_id)).scalars().all())


# ---------------------------------------------------------------------------
# Proposals
# ---------------------------------------------------------------------------


def test_create_proposal_defaults_to_draft(session, alice, talk, event) -> None:
    p = services.create_proposal(session, alice, {"talk_id": talk.id, "event_id": event.id, "talk_type": "lightning"})
    session.commit()
    assert p.status == "draft"
    assert p.user_id == alice.id
    assert services.proposal_dict(p)["talk"] == {"id": talk.id, "title": "Typed SQL"}


def test_create_proposal_validates(session, alice, talk, event) -> None:
    with pytest.raises(InvalidInputError):
        services.create_proposal(session, alice, {"talk_id": talk.id, "event_id": event.id, "talk_type": "panel"})
    with pytest.raises(NotFoundError):
        services.create_proposal(session, alice, {"talk_id": 999, "event_id": event.id, "talk_type": "regular"})
    with pytest.raises(InvalidInputError):
        services.create_proposal(session, alice, {"talk_id": talk.id, "event_id": event.id})


def test_owner_status_change_records_activity_without_notification(session, alice, proposal) -> None:
    services.update_proposal(session, alice, proposal.id, {"status": "submitted"})
    session.commit()
    (change,) = _status_changes(session, proposal.id)
    assert (change.old_status, change.new_status) == ("draft", "submitted")
    assert change.user_id == alice.id
    assert _notifications(session, alice.id) == []


def test_teammate_status_change_notifies_owner(session, alice, bob, proposal) -> None:
    services.update_proposal(session, bob, proposal.id, {"status": "accepted"})
    session.commit()
    (change,) = _status_changes(session, proposal.id)
    (note,) = _notifications(session, alice.id)
    assert note.notification_type == "status_change"
    assert note.title == "Bob Example updated your proposal"
    assert note.message == 'Changed status from draft to accepted for "Typed SQL" at PyCon Test'
    assert note.link_url == f"/proposals/{proposal.id}"
    assert note.activity_id == change.id
    assert note.actor_id == bob.id


def test_same_status_is_a_no_op(session, alice, bob, proposal) -> None:
    services.update_proposal(session, alice, proposal.id, {"status": "submitted"})
    session.commit()
    services.update_proposal(session, bob, proposal.id, {"status": "submitted"})
    session.commit()
    assert len(_status_changes(session, proposal.id)) == 1
    assert _notifications(session, alice.id) == []


def test_update_without_status_records_nothing(session, alice, proposal) -> None:
    p = services.update_proposal(session, alice, proposal.id, {"notes": "polish slides", "status": None})
    session.commit()
    assert p.notes == "polish slides"
    assert p.status == "draft"
    assert _status_changes(session, proposal.id) == []


def test_status_change_respects_preferences(session, alice, bob, proposal) -> None:
    from cfptrack.notifier import update_preferences
    update_preferences(session, alice.id, {"status_changes_enabled": False})
    services.update_proposal(session, bob, proposal.id, {"status": "rejected"})
    session.commit()
    assert len(_status_changes(session, proposal.id)) == 1
    assert _notifications(session, alice.id) == []


def test_invalid_status_rejected(session, alice, proposal) -> None:
    with pytest.raises(InvalidInputError):
        services.update_proposal(session, alice, proposal.id, {"status": "maybe"})


def test_only_owner_deletes_proposal(session, alice, bob, proposal) -> None:
    with pytest.raises(PermissionDeniedError):
        services.delete_proposal(session, bob, proposal.id)
    services.delete_proposal(session, alice, proposal.id)
    session.commit()
    assert session.get(Proposal, proposal.id) is None


def test_list_proposals_filters(session, alice, bob, talk, event, proposal) -> None:
    other = Event(name="Other Conf")
    session.add(other)
    session.flush()
    services.create_proposal(session, bob, {"talk_id": talk.id, "event_id": other.id, "talk_type": "regular"})
    session.commit()
    assert len(services.list_proposals(session)) == 2
    assert [p["event"]["name"] for p in services.list_proposals(session, event_id=other.id)] == ["Other Conf"]
    assert [p["user"]["username"] for p in services.list_proposals(session, user_id=alice.id)] == ["alice"]


# ---------------------------------------------------------------------------
# Talks & tags
# ---------------------------------------------------------------------------


def test_talk_owner_checks(session, alice, bob, talk) -> None:
    with pytest.raises(PermissionDeniedError):
        services.update_talk(session, bob, talk.id, {"title": "Stolen"})
    with pytest.raises(PermissionDeniedError):
        services.delete_talk(session, bob, talk.id)
    updated = services.update_talk(session, alice, talk.id, {"title": "Typed SQL, revisited", "abstract": None})
    assert updated.title == "Typed SQL, revisited"
    assert updated.abstract == "SQLAlchemy 2 in practice"


def test_deleting_talk_removes_its_proposals(session, alice, talk, proposal) -> None:
    services.delete_talk(session, alice, talk.id)
    session.commit()
    assert session.get(Talk, talk.id) is None
    assert session.execute(select(Proposal)).scalars().all() == []


def test_tags_assign_idempotent_and_replace(session, alice, bob, talk) -> None:
    python = services.create_tag(session, {"name": "python", "color": "#3776AB"})
    data = services.create_tag(session, {"name": "data"})
    session.commit()

    first = services.assign_tag(session, alice, talk.id, python.id)
    again = services.assign_tag(session, alice, talk.id, python.id)
    session.commit()
    assert first.id == again.id

    with pytest.raises(PermissionDeniedError):
        services.assign_tag(session, bob, talk.id, data.id)

    t = services.set_talk_tags(session, alice, talk.id, [data.id, python.id, data.id])
    session.commit()
    assert [tag["name"] for tag in services.talk_dict(t)["tags"]] == ["data", "python"]

    services.unassign_tag(session, alice, talk.id, python.id)
    session.commit()
    session.expire(t, ["tag_assignments"])
    assert [tag["name"] for tag in services.talk_dict(t)["tags"]] == ["data"]


def test_tag_validation(session) -> None:
    services.create_tag(session, {"name": "python"})
    session.commit()
    with pytest.raises(InvalidInputError):
        services.create_tag(session, {"name": "python"})
    with pytest.raises(InvalidInputError):
        services.create_tag(session, {"name": "rust", "color": "orange"})


# ---------------------------------------------------------------------------
# Users, imports, participations
# ---------------------------------------------------------------------------


def test_create_user_validates_and_derives_username(session, alice) -> None:
    user = services.create_user(session, " Dana ", "dana.lee@example.com")
    assert user.name == "Dana"
    assert user.username == "dana.lee"
    with pytest.raises(InvalidInputError):
        services.create_user(session, "Again", "alice@example.com")
    with pytest.raises(InvalidInputError):
        services.create_user(session, "No Domain", "dana@")


def test_bulk_import_counts_invalid_rows(session, alice) -> None:
    result = services.bulk_import_events(session, [
        {"name": "GoodConf", "cfp_deadline": "2030-03-01"},
        {"name": ""},
        {"name": "BadDate", "start_date": "not a date"},
        {"name": "AlsoGood"},
    ])
    session.commit()
    assert result["success"] == 2
    assert result["failed"] == 2
    assert len(result["errors"]) == 2
    names = sorted(e.name for e in session.execute(select(Event)).scalars().all())
    assert names == ["AlsoGood", "GoodConf"]

    talks = services.bulk_import_talks(session, alice, [{"title": "T", "abstract": "A"}, {"title": "No abstract"}])
    assert (talks["success"], talks["failed"]) == (1, 1)


def test_participation_validation(session, alice, event) -> None:
    part = services.create_participation(session, alice, event.id, {"participation_type": "sponsor", "budget": 500.0})
    session.commit()
    assert part.status == "interested"
    with pytest.raises(InvalidInputError):
        services.create_participation(session, alice, event.id, {"participation_type": "party"})
    with pytest.raises(InvalidInputError):
        services.update_participation(session, part.id, {"budget": -1})
    with pytest.raises(NotFoundError):
        services.create_participation(session, alice, 999, {"participation_type": "attend"})


def test_events_listed_with_score_info(session, event) -> None:
    session.add(Event(name="Undated"))
    session.commit()
    events = services.list_events_with_scores(session)
    assert [e["name"] for e in events] == ["PyCon Test", "Undated"]
    assert events[0]["score_info"]["max_score"] == 0
    assert events[0]["score_info"]["is_complete"] is True


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------


def test_compute_stats(session, alice, talk, event, proposal) -> None:
    later = Event(name="Later Conf", cfp_deadline=date(2030, 2, 1))
    past = Event(name="Past Conf", cfp_deadline=date(2029, 12, 1))
    spare = Talk(title="Spare", abstract="unused", created_by_id=alice.id)
    session.add_all([later, past, spare])
    session.flush()
    session.add_all([
        Proposal(talk_id=talk.id, event_id=later.id, user_id=alice.id, status="accepted", talk_type="regular"),
        Proposal(talk_id=talk.id, event_id=past.id, user_id=alice.id, status="confirmed", talk_type="keynote"),
        EventParticipation(event_id=event.id, participation_type="sponsor", status="confirmed", budget=1000.0),
        EventParticipation(event_id=later.id, participation_type="attend", status="interested", budget=250.0),
        EventParticipation(event_id=later.id, participation_type="attend", status="not_going", budget=50.0),
    ])
    session.commit()

    stats = services.compute_stats(session, today=date(2030, 1, 1))
    assert stats["total_events"] == 3
    assert stats["total_talks"] == 2
    assert stats["total_proposals"] == 3
    assert stats["by_status"] == {"draft": 1, "submitted": 0, "accepted": 1, "rejected": 0, "confirmed": 1}
    assert stats["accepted"] == 2
    assert stats["acceptance_rate"] == pytest.approx(0.667)
    assert stats["talk_reuse"]["reused_talks"] == 1
    assert stats["talk_reuse"]["average_reuse"] == 1.5
    assert stats["talk_reuse"]["most_submitted"] == [talk.id]
    assert stats["spending"]["total"] == 1300.0
    assert stats["spending"]["confirmed"] == 1000.0
    assert stats["spending"]["interested"] == 250.0
    assert stats["spending"]["by_type"] == {"sponsor": 1000.0, "attend": 300.0}
    assert stats["upcoming_cfps"] == [
        {"id": later.id, "name": "Later Conf", "cfp_deadline": "2030-02-01", "days_left": 31},
    ]


def test_compute_stats_empty(session) -> None:
    stats = services.compute_stats(session)
    assert stats["acceptance_rate"] == 0.0
    assert stats["talk_reuse"]["average_reuse"] == 0.0
    assert stats["spending"]["total"] == 0
