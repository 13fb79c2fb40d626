from __future__ import annotations

import hmac
import logging
from contextlib import asynccontextmanager
from typing import Any, Generator

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from cfptrack import activity, notifier, scorer, services
from cfptrack.config import configure_logging, get_settings
from cfptrack.db import init_db, session_generator
from cfptrack.deadlines import check_cfp_deadlines
from cfptrack.errors import TrackerError
from cfptrack.models import Proposal, Talk, User
from cfptrack.schemas import (
    ActivityOut,
    ActivityPage,
    CategoryCreate,
    CategoryOut,
    CategoryUpdate,
    CommentCreate,
    CommentUpdate,
    EventCreate,
    EventDetail,
    EventOut,
    EventScoresOut,
    EventUpdate,
    EventWithScores,
    ImportResult,
    NotificationOut,
    NotificationPage,
    ParticipationCreate,
    ParticipationOut,
    ParticipationUpdate,
    PreferencesOut,
    PreferencesUpdate,
    ProposalCreate,
    ProposalOut,
    ProposalUpdate,
    ScoreBatch,
    ScoreIn,
    ScoreOut,
    StatsOut,
    TagCreate,
    TagIds,
    TagOut,
    TagUpdate,
    TalkCreate,
    TalkOut,
    TalkUpdate,
    ThresholdIn,
    ThresholdOut,
    UnreadCount,
    UserCreate,
    UserOut,
)
from cfptrack.utils import utc_now

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    init_db()
    yield


app = FastAPI(
    title="cfptrack",
    version="0.1.0",
    description=(
        "Conference talk proposal tracker. Manage events, reusable talks, proposals, "
        "weighted event scoring, team comments with @mentions, and notifications. "
        "All endpoints return JSON. The acting user is identified by the X-User-Id header."
    ),
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Users", "description": "Team members. Usernames are the local part of the email."},
        {"name": "Events", "description": "Conferences, their CFP deadlines, and participations."},
        {"name": "Scoring", "description": "Weighted scoring matrix and recommendation threshold."},
        {"name": "Talks", "description": "Reusable talk abstracts and their tags."},
        {"name": "Proposals", "description": "Talks submitted to events, with a status lifecycle."},
        {"name": "Activity", "description": "Comments with @mentions and status-change history."},
        {"name": "Notifications", "description": "In-app notifications and per-user preferences."},
        {"name": "Stats", "description": "Aggregate statistics."},
        {"name": "Cron", "description": "Scheduled jobs, authenticated with the cron secret."},
    ],
)


# ---------------------------------------------------------------------------
# Dependencies & Helpers
# ---------------------------------------------------------------------------


def db_session() -> Generator[Session, None, None]:
    yield from session_generator()


def current_user(
    x_user_id: int | None = Header(None, description="Id of the signed-in user"),
    session: Session = Depends(db_session),
) -> User:
    if x_user_id is None:
        raise HTTPException(401, "Not authenticated")
    user = session.get(User, x_user_id)
    if user is None:
        raise HTTPException(401, "Unknown user")
    return user


@app.exception_handler(TrackerError)
async def tracker_error_handler(request: Request, exc: TrackerError):
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})


# ---------------------------------------------------------------------------
# Routes: Users
# ---------------------------------------------------------------------------


@app.get("/api/users", response_model=list[UserOut], tags=["Users"], summary="List users")
async def list_users(session: Session = Depends(db_session), user: User = Depends(current_user)):
    return services.list_users(session)


@app.post("/api/users", response_model=UserOut, status_code=201,
          tags=["Users"], summary="Register a user")
async def create_user(body: UserCreate, session: Session = Depends(db_session)):
    user = services.create_user(session, body.name, body.email)
    session.commit()
    return services.user_dict(user)


@app.get("/api/users/me", response_model=UserOut, tags=["Users"], summary="The signed-in user")
async def me(user: User = Depends(current_user)):
    return services.user_dict(user)


# ---------------------------------------------------------------------------
# Routes: Events (import before parameterized to avoid route shadowing)
# ---------------------------------------------------------------------------


@app.get("/api/events", response_model=list[EventWithScores],
         tags=["Events"], summary="List events, newest start date first, with score info")
async def list_events(session: Session = Depends(db_session), user: User = Depends(current_user)):
    return services.list_events_with_scores(session)


@app.post("/api/events", response_model=EventOut, status_code=201, tags=["Events"], summary="Create an event")
async def create_event(body: EventCreate, session: Session = Depends(db_session), user: User = Depends(current_user)):
    event = services.create_event(session, body.model_dump())
    session.commit()
    return services.event_dict(event)


@app.post("/api/events/import", response_model=ImportResult,
          tags=["Events"], summary="Bulk import events from a JSON list (invalid rows are skipped)")
async def import_events(
    rows: list[dict[str, Any]], session: Session = Depends(db_session), user: User = Depends(current_user),
):
    result = services.bulk_import_events(session, rows)
    session.commit()
    return result


@app.get("/api/events/{event_id}", response_model=EventDetail,
         tags=["Events"], summary="Get an event with its score summary and participations")
async def get_event(event_id: int, session: Session = Depends(db_session), user: User = Depends(current_user)):
    return services.event_detail(session, event_id)


@app.put("/api/events/{event_id}", response_model=EventOut,
         tags=["Events"], summary="Update event fields (partial update, null fields ignored)")
async def update_event(
    event_id: int, body: EventUpdate, session: Session = Depends(db_session), user: User = Depends(current_user),
):
    event = services.update_event(session, event_id, body.model_dump())
    session.commit()
    return services.event_dict(event)


@app.delete("/api/events/{event_id}", tags=["Events"],
            summary="Delete an event with its proposals, scores, activity and participations")
async def delete_event(event_id: int, session: Session = Depends(db_session), user: User = Depends(current_user)):
    services.delete_event(session, event_id)
    session.commit()
    return {"ok": True}


# ---------------------------------------------------------------------------
# Routes: Participations
# ---------------------------------------------------------------------------


@app.get("/api/participations", response_model=list[ParticipationOut],
         tags=["Events"], summary="List all event participations")
async def list_all_participations(session: Session = Depends(db_session), user: User = Depends(current_user)):
    return services.list_participations(session)


@app.get("/api/events/{event_id}/participations", response_model=list[ParticipationOut],
         tags=["Events"], summary="List participations for an event")
async def list_event_participations(
    event_id: int, session: Session = Depends(db_session), user: User = Depends(current_user),
):
    return services.list_participations(session, event_id)


@app.post("/api/events/{event_id}/participations", response_model=ParticipationOut, status_code=201,
          tags=["Events"], summary="Record how the team takes part in an event")
async def create_participation(
    event_id: int, body: ParticipationCreate,
    session: Session = Depends(db_session), user: User = Depends(current_user),
):
    part = services.create_participation(session, user, event_id, body.model_dump())
    session.commit()
    return services.participation_dict(part)


@app.put("/api/participations/{participation_id}", response_model=ParticipationOut,
         tags=["Events"], summary="Update a participation (partial update)")
async def update_participation(
    participation_id: int, body: ParticipationUpdate,
    session: Session = Depends(db_session), user: User = Depends(current_user),
):
    part = services.update_participation(session, participation_id, body.model_dump())
    session.commit()
    return services.participation_dict(part)


@app.delete("/api/participations/{participation_id}", tags=["Events"], summary="Delete a participation")
async def delete_participation(
    participation_id: int, session: Session = Depends(db_session), user: User = Depends(current_user),
):
    services.delete_participation(session, participation_id)
    session.commit()
    return {"ok": True}


# ---------------------------------------------------------------------------
# Routes: Scoring
# ---------------------------------------------------------------------------


@app.get("/api/scoring/categories", response_model=list[CategoryOut],
         tags=["Scoring"], summary="List scoring categories in display order")
async def list_categories(session: Session = Depends(db_session), user: User = Depends(current_user)):
    return [scorer.category_dict(c) for c in scorer.list_categories(session)]


@app.post("/api/scoring/categories", response_model=CategoryOut, status_code=201,
          tags=["Scoring"], summary="Create a scoring category (unique weight, at most 10)")
async def create_category(
    body: CategoryCreate, session: Session = Depends(db_session), user: User = Depends(current_user),
):
    category = scorer.create_category(session, body.model_dump())
    session.commit()
    return scorer.category_dict(category)


@app.put("/api/scoring/categories/{category_id}", response_model=CategoryOut,
         tags=["Scoring"], summary="Update a scoring category (partial update)")
async def update_category(
    category_id: int, body: CategoryUpdate,
    session: Session = Depends(db_session), user: User = Depends(current_user),
):
    category = scorer.update_category(session, category_id, body.model_dump())
    session.commit()
    return scorer.category_dict(category)


@app.delete("/api/scoring/categories/{category_id}", tags=["Scoring"],
            summary="Delete a scoring category and every score given in it")
async def delete_category(
    category_id: int, session: Session = Depends(db_session), user: User = Depends(current_user),
):
    scorer.delete_category(session, category_id)
    session.commit()
    return {"ok": True}


@app.get("/api/scoring/threshold", response_model=ThresholdOut,
         tags=["Scoring"], summary="Get the recommendation threshold")
async def get_threshold(session: Session = Depends(db_session), user: User = Depends(current_user)):
    return {"threshold": scorer.get_threshold(session)}


@app.put("/api/scoring/threshold", response_model=ThresholdOut,
         tags=["Scoring"], summary="Set the recommendation threshold (0-900)")
async def set_threshold(body: ThresholdIn, session: Session = Depends(db_session), user: User = Depends(current_user)):
    value = scorer.set_threshold(session, body.threshold)
    session.commit()
    return {"threshold": value}


@app.get("/api/events/{event_id}/scores", response_model=EventScoresOut,
         tags=["Scoring"], summary="Score summary, categories and scores for an event")
async def get_event_scores(event_id: int, session: Session = Depends(db_session), user: User = Depends(current_user)):
    return scorer.event_score_detail(session, event_id)


@app.put("/api/events/{event_id}/scores", response_model=EventScoresOut,
         tags=["Scoring"], summary="Upsert several category scores for an event in one transaction")
async def upsert_event_scores(
    event_id: int, body: ScoreBatch, session: Session = Depends(db_session), user: User = Depends(current_user),
):
    scorer.upsert_scores(session, event_id, [s.model_dump() for s in body.scores])
    session.commit()
    return scorer.event_score_detail(session, event_id)


@app.delete("/api/events/{event_id}/scores", tags=["Scoring"], summary="Delete every score of an event")
async def delete_event_scores(
    event_id: int, session: Session = Depends(db_session), user: User = Depends(current_user),
):
    deleted = scorer.delete_event_scores(session, event_id)
    session.commit()
    return {"deleted": deleted}


@app.put("/api/events/{event_id}/scores/{category_id}", response_model=ScoreOut,
         tags=["Scoring"], summary="Insert or overwrite one category score for an event")
async def upsert_event_score(
    event_id: int, category_id: int, body: ScoreIn,
    session: Session = Depends(db_session), user: User = Depends(current_user),
):
    if body.category_id != category_id:
        raise HTTPException(422, "category_id in the body does not match the URL")
    row = scorer.upsert_score(session, event_id, category_id, body.score, body.notes)
    session.commit()
    return scorer.score_dict(row)


@app.delete("/api/scores/{score_id}", tags=["Scoring"], summary="Delete a single score")
async def delete_score(score_id: int, session: Session = Depends(db_session), user: User = Depends(current_user)):
    scorer.delete_score(session, score_id)
    session.commit()
    return {"ok": True}


# ---------------------------------------------------------------------------
# Routes: Talks (mine/import before parameterized to avoid route shadowing)
# ---------------------------------------------------------------------------


@app.get("/api/talks", response_model=list[TalkOut], tags=["Talks"], summary="List all talks, newest first")
async def list_talks(session: Session = Depends(db_session), user: User = Depends(current_user)):
    return services.list_talks(session)


@app.get("/api/talks/mine", response_model=list[TalkOut], tags=["Talks"], summary="List my talks")
async def list_my_talks(session: Session = Depends(db_session), user: User = Depends(current_user)):
    return services.list_talks(session, created_by_id=user.id)


@app.post("/api/talks", response_model=TalkOut, status_code=201, tags=["Talks"], summary="Create a talk")
async def create_talk(body: TalkCreate, session: Session = Depends(db_session), user: User = Depends(current_user)):
    talk = services.create_talk(session, user, body.model_dump())
    session.commit()
    return services.talk_dict(talk)


@app.post("/api/talks/import", response_model=ImportResult,
          tags=["Talks"], summary="Bulk import talks from a JSON list (invalid rows are skipped)")
async def import_talks(
    rows: list[dict[str, Any]], session: Session = Depends(db_session), user: User = Depends(current_user),
):
    result = services.bulk_import_talks(session, user, rows)
    session.commit()
    return result


@app.get("/api/talks/{talk_id}", response_model=TalkOut, tags=["Talks"], summary="Get a talk with its tags")
async def get_talk(talk_id: int, session: Session = Depends(db_session), user: User = Depends(current_user)):
    return services.talk_dict(services.get_entity(session, Talk, talk_id, "Talk"))


@app.put("/api/talks/{talk_id}", response_model=TalkOut, tags=["Talks"], summary="Update one of my talks")
async def update_talk(
    talk_id: int, body: TalkUpdate, session: Session = Depends(db_session), user: User = Depends(current_user),
):
    talk = services.update_talk(session, user, talk_id, body.model_dump())
    session.commit()
    return services.talk_dict(talk)


@app.delete("/api/talks/{talk_id}", tags=["Talks"], summary="Delete one of my talks and its proposals")
async def delete_talk(talk_id: int, session: Session = Depends(db_session), user: User = Depends(current_user)):
    services.delete_talk(session, user, talk_id)
    session.commit()
    return {"ok": True}


@app.put("/api/talks/{talk_id}/tags", response_model=TalkOut, tags=["Talks"], summary="Replace a talk's tags")
async def set_talk_tags(
    talk_id: int, body: TagIds, session: Session = Depends(db_session), user: User = Depends(current_user),
):
    talk = services.set_talk_tags(session, user, talk_id, body.tag_ids)
    session.commit()
    return services.talk_dict(talk)


@app.post("/api/talks/{talk_id}/tags/{tag_id}", tags=["Talks"], summary="Assign a tag to a talk (idempotent)")
async def assign_tag(
    talk_id: int, tag_id: int, session: Session = Depends(db_session), user: User = Depends(current_user),
):
    assignment = services.assign_tag(session, user, talk_id, tag_id)
    session.commit()
    return {"id": assignment.id, "talk_id": assignment.talk_id, "tag_id": assignment.tag_id}


@app.delete("/api/talks/{talk_id}/tags/{tag_id}", tags=["Talks"], summary="Remove a tag from a talk")
async def unassign_tag(
    talk_id: int, tag_id: int, session: Session = Depends(db_session), user: User = Depends(current_user),
):
    services.unassign_tag(session, user, talk_id, tag_id)
    session.commit()
    return {"ok": True}


# ---------------------------------------------------------------------------
# Routes: Tags
# ---------------------------------------------------------------------------


@app.get("/api/tags", response_model=list[TagOut], tags=["Talks"], summary="List talk tags by name")
async def list_tags(session: Session = Depends(db_session), user: User = Depends(current_user)):
    return services.list_tags(session)


@app.post("/api/tags", response_model=TagOut, status_code=201, tags=["Talks"], summary="Create a talk tag")
async def create_tag(body: TagCreate, session: Session = Depends(db_session), user: User = Depends(current_user)):
    tag = services.create_tag(session, body.model_dump())
    session.commit()
    return services.tag_dict(tag)


@app.put("/api/tags/{tag_id}", response_model=TagOut, tags=["Talks"], summary="Update a talk tag")
async def update_tag(
    tag_id: int, body: TagUpdate, session: Session = Depends(db_session), user: User = Depends(current_user),
):
    tag = services.update_tag(session, tag_id, body.model_dump())
    session.commit()
    return services.tag_dict(tag)


@app.delete("/api/tags/{tag_id}", tags=["Talks"], summary="Delete a talk tag")
async def delete_tag(tag_id: int, session: Session = Depends(db_session), user: User = Depends(current_user)):
    services.delete_tag(session, tag_id)
    session.commit()
    return {"ok": True}


# ---------------------------------------------------------------------------
# Routes: Proposals
# ---------------------------------------------------------------------------


@app.get("/api/proposals", response_model=list[ProposalOut],
         tags=["Proposals"], summary="List proposals, optionally by event, talk, or only mine")
async def list_proposals(
    event_id: int | None = Query(None),
    talk_id: int | None = Query(None),
    mine: bool = Query(False, description="Only proposals owned by the signed-in user"),
    session: Session = Depends(db_session), user: User = Depends(current_user),
):
    return services.list_proposals(
        session, event_id=event_id, talk_id=talk_id, user_id=user.id if mine else None,
    )


@app.post("/api/proposals", response_model=ProposalOut, status_code=201,
          tags=["Proposals"], summary="Submit a talk to an event (owner is the signed-in user)")
async def create_proposal(
    body: ProposalCreate, session: Session = Depends(db_session), user: User = Depends(current_user),
):
    proposal = services.create_proposal(session, user, body.model_dump())
    session.commit()
    return services.proposal_dict(proposal)


@app.get("/api/proposals/{proposal_id}", response_model=ProposalOut, tags=["Proposals"], summary="Get a proposal")
async def get_proposal(proposal_id: int, session: Session = Depends(db_session), user: User = Depends(current_user)):
    return services.proposal_dict(services.get_entity(session, Proposal, proposal_id, "Proposal"))


@app.put("/api/proposals/{proposal_id}", response_model=ProposalOut,
         tags=["Proposals"], summary="Update a proposal; a status change is recorded and the owner notified")
async def update_proposal(
    proposal_id: int, body: ProposalUpdate, session: Session = Depends(db_session), user: User = Depends(current_user),
):
    proposal = services.update_proposal(session, user, proposal_id, body.model_dump())
    session.commit()
    return services.proposal_dict(proposal)


@app.delete("/api/proposals/{proposal_id}", tags=["Proposals"], summary="Delete one of my proposals")
async def delete_proposal(
    proposal_id: int, session: Session = Depends(db_session), user: User = Depends(current_user),
):
    services.delete_proposal(session, user, proposal_id)
    session.commit()
    return {"ok": True}


# ---------------------------------------------------------------------------
# Routes: Activity (static paths before parameterized to avoid route shadowing)
# ---------------------------------------------------------------------------


@app.get("/api/activity", response_model=ActivityPage, tags=["Activity"], summary="Global activity feed")
async def list_activity(
    limit: int = Query(20, ge=1, le=50),
    cursor: int | None = Query(None, description="Id of the last activity already seen"),
    session: Session = Depends(db_session), user: User = Depends(current_user),
):
    return activity.list_activities(session, limit=limit, cursor=cursor)


@app.get("/api/activity/recent", response_model=list[ActivityOut], tags=["Activity"], summary="Most recent activity")
async def recent_activity(
    limit: int = Query(10, ge=1, le=20),
    session: Session = Depends(db_session), user: User = Depends(current_user),
):
    return activity.recent_activities(session, limit)


@app.get("/api/activity/mentions", response_model=list[ActivityOut],
         tags=["Activity"], summary="Comments that mention the signed-in user")
async def my_mentions(
    limit: int = Query(20, ge=1, le=50),
    session: Session = Depends(db_session), user: User = Depends(current_user),
):
    return activity.my_mentions(session, user.id, limit)


@app.post("/api/activity/comments", response_model=ActivityOut, status_code=201,
          tags=["Activity"], summary="Comment on exactly one proposal, event or talk")
async def create_comment(
    body: CommentCreate, session: Session = Depends(db_session), user: User = Depends(current_user),
):
    target = activity.target_from_ids(body.proposal_id, body.event_id, body.talk_id)
    comment = activity.create_comment(session, user, target, body.content)
    session.commit()
    return activity.activity_dict(comment)


@app.put("/api/activity/comments/{activity_id}", response_model=ActivityOut,
         tags=["Activity"], summary="Edit one of my comments; mentions are re-derived")
async def update_comment(
    activity_id: int, body: CommentUpdate, session: Session = Depends(db_session), user: User = Depends(current_user),
):
    comment = activity.update_comment(session, user, activity_id, body.content)
    session.commit()
    return activity.activity_dict(comment)


@app.delete("/api/activity/comments/{activity_id}", tags=["Activity"], summary="Delete one of my comments")
async def delete_comment(
    activity_id: int, session: Session = Depends(db_session), user: User = Depends(current_user),
):
    activity.delete_comment(session, user, activity_id)
    session.commit()
    return {"ok": True}


def _feed(target: activity.ActivityTarget, session: Session, limit: int, cursor: int | None) -> dict:
    activity.load_parent(session, target)
    return activity.list_activities(session, target, limit=limit, cursor=cursor)


@app.get("/api/proposals/{proposal_id}/activity", response_model=ActivityPage,
         tags=["Activity"], summary="Activity feed of a proposal")
async def proposal_activity(
    proposal_id: int, limit: int = Query(20, ge=1, le=50), cursor: int | None = Query(None),
    session: Session = Depends(db_session), user: User = Depends(current_user),
):
    return _feed(activity.ProposalTarget(proposal_id), session, limit, cursor)


@app.get("/api/events/{event_id}/activity", response_model=ActivityPage,
         tags=["Activity"], summary="Activity feed of an event")
async def event_activity(
    event_id: int, limit: int = Query(20, ge=1, le=50), cursor: int | None = Query(None),
    session: Session = Depends(db_session), user: User = Depends(current_user),
):
    return _feed(activity.EventTarget(event_id), session, limit, cursor)


@app.get("/api/talks/{talk_id}/activity", response_model=ActivityPage,
         tags=["Activity"], summary="Activity feed of a talk")
async def talk_activity(
    talk_id: int, limit: int = Query(20, ge=1, le=50), cursor: int | None = Query(None),
    session: Session = Depends(db_session), user: User = Depends(current_user),
):
    return _feed(activity.TalkTarget(talk_id), session, limit, cursor)


# ---------------------------------------------------------------------------
# Routes: Notifications (static paths before parameterized to avoid route shadowing)
# ---------------------------------------------------------------------------


@app.get("/api/notifications", response_model=NotificationPage,
         tags=["Notifications"], summary="My notifications, newest first")
async def list_notifications(
    limit: int = Query(20, ge=1, le=50),
    cursor: int | None = Query(None, description="Id of the last notification already seen"),
    unread_only: bool = Query(False),
    session: Session = Depends(db_session), user: User = Depends(current_user),
):
    return notifier.list_notifications(session, user.id, limit=limit, cursor=cursor, unread_only=unread_only)


@app.get("/api/notifications/recent", response_model=list[NotificationOut],
         tags=["Notifications"], summary="My most recent notifications")
async def recent_notifications(
    limit: int = Query(5, ge=1, le=10),
    session: Session = Depends(db_session), user: User = Depends(current_user),
):
    return notifier.recent_notifications(session, user.id, limit)


@app.get("/api/notifications/unread-count", response_model=UnreadCount,
         tags=["Notifications"], summary="Number of unread notifications")
async def unread_count(session: Session = Depends(db_session), user: User = Depends(current_user)):
    return {"count": notifier.unread_count(session, user.id)}


@app.post("/api/notifications/read-all", tags=["Notifications"], summary="Mark all my notifications read")
async def mark_all_read(session: Session = Depends(db_session), user: User = Depends(current_user)):
    updated = notifier.mark_all_as_read(session, user.id)
    session.commit()
    return {"updated": updated}


@app.get("/api/notifications/preferences", response_model=PreferencesOut,
         tags=["Notifications"], summary="My notification preferences (defaults when never saved)")
async def get_preferences(session: Session = Depends(db_session), user: User = Depends(current_user)):
    return notifier.preferences_dict(session, user.id)


@app.put("/api/notifications/preferences", response_model=PreferencesOut,
         tags=["Notifications"], summary="Update my notification preferences (partial update)")
async def update_preferences(
    body: PreferencesUpdate, session: Session = Depends(db_session), user: User = Depends(current_user),
):
    prefs = notifier.update_preferences(session, user.id, body.model_dump())
    session.commit()
    return prefs


@app.post("/api/notifications/{notification_id}/read", tags=["Notifications"], summary="Mark a notification read")
async def mark_read(
    notification_id: int, session: Session = Depends(db_session), user: User = Depends(current_user),
):
    notifier.mark_as_read(session, user.id, notification_id)
    session.commit()
    return {"ok": True}


# ---------------------------------------------------------------------------
# Routes: Stats
# ---------------------------------------------------------------------------


@app.get("/api/stats", response_model=StatsOut, tags=["Stats"], summary="Get aggregate statistics")
async def get_stats(session: Session = Depends(db_session), user: User = Depends(current_user)):
    return services.compute_stats(session)


# ---------------------------------------------------------------------------
# Routes: Cron
# ---------------------------------------------------------------------------


@app.get("/api/cron/cfp-deadlines", tags=["Cron"], summary="Run the daily CFP deadline check")
async def cron_cfp_deadlines(
    authorization: str | None = Header(None), session: Session = Depends(db_session),
):
    secret = get_settings().cron_secret
    if not secret:
        log.error("CRON_SECRET not configured")
        return JSONResponse(status_code=500, content={"error": "Server configuration error"})
    if not hmac.compare_digest((authorization or "").encode(), f"Bearer {secret}".encode()):
        log.warning("Unauthorized CFP deadline cron request")
        return JSONResponse(status_code=401, content={"error": "Unauthorized"})

    try:
        result = check_cfp_deadlines(session)
        session.commit()
    except Exception as exc:
        session.rollback()
        log.exception("CFP deadline check failed")
        return JSONResponse(status_code=500, content={"error": "Internal server error", "message": str(exc)})
    log.info("CFP deadline check completed: %s", result.to_dict())
    return {"success": True, "timestamp": utc_now().isoformat(), **result.to_dict()}


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


def main():
    import uvicorn
    settings = get_settings()
    uvicorn.run("cfptrack.app:app", host=settings.host, port=settings.port, reload=True)


if __name__ == "__main__":
    main()
