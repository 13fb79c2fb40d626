from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from mcp.server.fastmcp import FastMCP

from cfptrack import activity, notifier, scorer, services
from cfptrack.config import configure_logging
from cfptrack.db import init_db, session_scope
from cfptrack.deadlines import check_cfp_deadlines
from cfptrack.errors import TrackerError
from cfptrack.models import PROPOSAL_STATUSES, User

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def cfptrack_lifespan(server: FastMCP) -> AsyncIterator[None]:
    configure_logging()
    init_db()
    yield


mcp = FastMCP(
    "cfptrack",
    instructions=(
        "cfptrack tracks conference talk proposals for a team. "
        "Start with get_stats() for an overview, then list_events() to see which "
        "events are worth submitting to, and list_proposals() to follow submissions. "
        "Write tools act on behalf of a user id; see list_users()."
    ),
    lifespan=cfptrack_lifespan,
    json_response=True,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _get_user(session, user_id: int):
    user = session.get(User, user_id)
    if user is None:
        return None, {"error": f"User {user_id} not found"}
    return user, None


# ---------------------------------------------------------------------------
# Resource
# ---------------------------------------------------------------------------


@mcp.resource("cfptrack://overview")
def cfptrack_overview() -> str:
    """Overview of cfptrack: data model, statuses, and scoring rules."""
    return json.dumps({
        "system": "cfptrack, a conference talk proposal tracker",
        "data_model": {
            "event": "A conference with dates, location and a CFP deadline.",
            "talk": "A reusable talk abstract owned by its author.",
            "proposal": "One talk submitted to one event, owned by the submitter.",
            "activity": "A comment or a status change attached to a proposal, event or talk.",
            "notification": "In-app notice for mentions, comments, status changes and CFP deadlines.",
        },
        "proposal_statuses": list(PROPOSAL_STATUSES),
        "scoring": (
            "Each event is scored 0, 1, 3 or 9 per category; the total is the weighted sum. "
            "An event is recommended when the total reaches the threshold."
        ),
        "mentions": "@name in a comment mentions the user whose email starts with name@.",
    }, indent=2)


# ---------------------------------------------------------------------------
# Tools: Overview
# ---------------------------------------------------------------------------


@mcp.tool()
def get_stats() -> dict:
    """Proposal counts by status, acceptance rate, talk reuse, spending and upcoming CFPs."""
    with session_scope() as session:
        return services.compute_stats(session)


@mcp.tool()
def list_users() -> list[dict]:
    """List team members with their ids and @usernames."""
    with session_scope() as session:
        return services.list_users(session)


# ---------------------------------------------------------------------------
# Tools: Events
# ---------------------------------------------------------------------------


@mcp.tool()
def list_events(recommended_only: bool = False) -> list[dict]:
    """List events newest first with their weighted score summary.

    Args:
        recommended_only: Only return events whose total score meets the threshold.
    """
    with session_scope() as session:
        events = services.list_events_with_scores(session)
        if recommended_only:
            events = [e for e in events if e["score_info"]["meets_threshold"]]
        return events


@mcp.tool()
def get_event(event_id: int) -> dict:
    """Get one event with its scores per category, participations and proposal count."""
    with session_scope() as session:
        try:
            detail = services.event_detail(session, event_id)
            detail["scores"] = scorer.event_score_detail(session, event_id)["scores"]
            return detail
        except TrackerError as exc:
            return {"error": str(exc)}


# ---------------------------------------------------------------------------
# Tools: Proposals & activity
# ---------------------------------------------------------------------------


@mcp.tool()
def list_proposals(event_id: int | None = None, talk_id: int | None = None, user_id: int | None = None) -> list[dict]:
    """List proposals, optionally filtered by event, talk or owner."""
    with session_scope() as session:
        return services.list_proposals(session, event_id=event_id, talk_id=talk_id, user_id=user_id)


@mcp.tool()
def update_proposal_status(proposal_id: int, status: str, acting_user_id: int) -> dict:
    """Change a proposal's status on behalf of a user.

    The change is recorded in the proposal's activity feed and the owner is
    notified when someone else made it.
    """
    with session_scope() as session:
        actor, err = _get_user(session, acting_user_id)
        if err:
            return err
        try:
            proposal = services.update_proposal(session, actor, proposal_id, {"status": status})
        except TrackerError as exc:
            return {"error": str(exc)}
        session.commit()
        return services.proposal_dict(proposal)


@mcp.tool()
def list_activity(
    proposal_id: int | None = None, event_id: int | None = None, talk_id: int | None = None, limit: int = 20,
) -> dict:
    """Activity feed, newest first. Pass at most one parent id; none means the global feed."""
    with session_scope() as session:
        try:
            target = None
            if any(x is not None for x in (proposal_id, event_id, talk_id)):
                target = activity.target_from_ids(proposal_id, event_id, talk_id)
            return activity.list_activities(session, target, limit=max(1, min(limit, 50)))
        except TrackerError as exc:
            return {"error": str(exc)}


@mcp.tool()
def add_comment(
    user_id: int, content: str,
    proposal_id: int | None = None, event_id: int | None = None, talk_id: int | None = None,
) -> dict:
    """Comment on exactly one proposal, event or talk as the given user. @name mentions notify that user."""
    with session_scope() as session:
        actor, err = _get_user(session, user_id)
        if err:
            return err
        try:
            target = activity.target_from_ids(proposal_id, event_id, talk_id)
            comment = activity.create_comment(session, actor, target, content)
        except TrackerError as exc:
            return {"error": str(exc)}
        session.commit()
        return activity.activity_dict(comment)


# ---------------------------------------------------------------------------
# Tools: Notifications
# ---------------------------------------------------------------------------


@mcp.tool()
def list_notifications(user_id: int, unread_only: bool = False, limit: int = 20) -> dict:
    """A user's notifications, newest first, with the unread count."""
    with session_scope() as session:
        _, err = _get_user(session, user_id)
        if err:
            return err
        page = notifier.list_notifications(
            session, user_id, limit=max(1, min(limit, 50)), unread_only=unread_only,
        )
        page["unread_count"] = notifier.unread_count(session, user_id)
        return page


@mcp.tool()
def run_cfp_deadline_check() -> dict:
    """Run the CFP deadline check now. Already-notified (user, event) pairs are skipped."""
    with session_scope() as session:
        result = check_cfp_deadlines(session)
        session.commit()
        return result.to_dict()


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main():
    """Run the cfptrack MCP server over stdio."""
    mcp.run()


if __name__ == "__main__":
    main()
