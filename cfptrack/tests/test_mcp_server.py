"""Tests for the MCP tools, called directly against an in-memory database."""
from __future__ import annotations

from datetime import timedelta

import pytest

from cfptrack import mcp_server
from cfptrack.db import init_db, session_scope
from cfptrack.models import Event, Proposal, Talk, User
from cfptrack.utils import utc_today


@pytest.fixture()
def ids():
    init_db("sqlite://")
    with session_scope() as session:
        alice = User(name="Alice Example", email="alice@example.com")
        bob = User(name="Bob Example", email="bob@example.com")
        event = Event(name="DevConf", cfp_deadline=utc_today() + timedelta(days=7))
        session.add_all([alice, bob, event])
        session.flush()
        talk = Talk(title="Typed SQL", abstract="...", created_by_id=alice.id)
        session.add(talk)
        session.flush()
        proposal = Proposal(talk_id=talk.id, event_id=event.id, user_id=alice.id,
                            status="draft", talk_type="regular")
        session.add(proposal)
        session.commit()
        return {"alice": alice.id, "bob": bob.id, "event": event.id, "talk": talk.id, "proposal": proposal.id}


class TestUpdateProposalStatus:
    def test_records_activity_and_notifies_owner(self, ids):
        result = mcp_server.update_proposal_status(ids["proposal"], "submitted", ids["bob"])
        assert result["status"] == "submitted"

        feed = mcp_server.list_activity(proposal_id=ids["proposal"])
        assert feed["items"][0]["activity_type"] == "status_change"
        assert feed["items"][0]["new_status"] == "submitted"

        notes = mcp_server.list_notifications(ids["alice"])
        assert notes["unread_count"] == 1
        assert notes["items"][0]["notification_type"] == "status_change"

    def test_owner_change_does_not_notify(self, ids):
        mcp_server.update_proposal_status(ids["proposal"], "submitted", ids["alice"])
        assert mcp_server.list_notifications(ids["alice"])["unread_count"] == 0

    def test_errors(self, ids):
        assert "error" in mcp_server.update_proposal_status(ids["proposal"], "submitted", 999)
        assert "error" in mcp_server.update_proposal_status(ids["proposal"], "bogus", ids["alice"])
        assert "error" in mcp_server.update_proposal_status(999, "submitted", ids["alice"])


class TestAddComment:
    def test_requires_exactly_one_parent(self, ids):
        assert "error" in mcp_server.add_comment(ids["alice"], "hi")
        both = mcp_server.add_comment(ids["alice"], "hi", event_id=ids["event"], talk_id=ids["talk"])
        assert "error" in both
        assert mcp_server.list_activity()["items"] == []

    def test_unknown_user(self, ids):
        assert mcp_server.add_comment(999, "hi", talk_id=ids["talk"]) == {"error": "User 999 not found"}

    def test_comment_with_mention(self, ids):
        comment = mcp_server.add_comment(ids["alice"], "@bob look", talk_id=ids["talk"])
        assert comment["activity_type"] == "comment"
        assert [m["username"] for m in comment["mentions"]] == ["bob"]

        notes = mcp_server.list_notifications(ids["bob"], unread_only=True)
        assert notes["unread_count"] == 1
        assert notes["items"][0]["notification_type"] == "mention"


class TestDeadlineCheck:
    def test_second_run_skips_duplicates(self, ids):
        first = mcp_server.run_cfp_deadline_check()
        assert first["users_checked"] == 2
        assert first["notifications_created"] == 2

        second = mcp_server.run_cfp_deadline_check()
        assert second["notifications_created"] == 0
        assert second["duplicates_skipped"] == 2
