"""Weighted event scoring: categories, per-event scores, and the recommendation threshold.

An event is scored against every scoring category with one of 0, 1, 3 or 9.
The weighted total is compared with a single global threshold to decide
whether the event is recommended.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Iterable, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from cfptrack.config import DEFAULT_SCORING_THRESHOLD, MAX_SCORING_THRESHOLD
from cfptrack.errors import InvalidInputError, NotFoundError
from cfptrack.models import VALID_SCORES, Event, EventScore, ScoringCategory, ScoringSettings
from cfptrack.utils import apply_updates, iso

log = logging.getLogger(__name__)

MAX_CATEGORIES = 10
MAX_SCORE_PER_CATEGORY = 9

CATEGORY_FIELDS = (
    "name", "weight", "display_order",
    "score_9_description", "score_3_description", "score_1_description", "score_0_description",
)

_SETTINGS_ROW_ID = 1


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ScoreSummary:
    total_score: int
    max_score: int
    completion_count: int
    total_categories: int
    is_complete: bool
    meets_threshold: bool
    threshold: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def summarize_scores(
    categories: Sequence[ScoringCategory], scores: Iterable[EventScore], threshold: int,
) -> ScoreSummary:
    """Aggregate one event's scores.

    Unscored categories add nothing to the total but still count towards the
    maximum, so ``max_score`` depends only on the category set.
    """
    weights = {c.id: c.weight for c in categories}
    scored = [s for s in scores if s.category_id in weights]
    total = sum(s.score * weights[s.category_id] for s in scored)
    max_score = sum(MAX_SCORE_PER_CATEGORY * w for w in weights.values())
    return ScoreSummary(
        total_score=total,
        max_score=max_score,
        completion_count=len(scored),
        total_categories=len(weights),
        is_complete=len(scored) == len(weights),
        meets_threshold=total >= threshold,
        threshold=threshold,
    )


def list_categories(session: Session) -> list[ScoringCategory]:
    return list(session.execute(
        select(ScoringCategory).order_by(ScoringCategory.display_order, ScoringCategory.id)
    ).scalars().all())


def _event_scores(session: Session, event_id: int) -> list[EventScore]:
    return list(session.execute(
        select(EventScore).where(EventScore.event_id == event_id).order_by(EventScore.id)
    ).scalars().all())


def _require_event(session: Session, event_id: int) -> Event:
    event = session.get(Event, event_id)
    if event is None:
        raise NotFoundError("Event not found")
    return event


def event_score_summary(session: Session, event_id: int) -> ScoreSummary:
    return summarize_scores(list_categories(session), _event_scores(session, event_id), get_threshold(session))


def event_score_detail(session: Session, event_id: int) -> dict[str, Any]:
    _require_event(session, event_id)
    categories = list_categories(session)
    scores = _event_scores(session, event_id)
    summary = summarize_scores(categories, scores, get_threshold(session))
    return {
        "event_id": event_id,
        **summary.to_dict(),
        "categories": [category_dict(c) for c in categories],
        "scores": [score_dict(s) for s in scores],
    }


# ---------------------------------------------------------------------------
# Scores
# ---------------------------------------------------------------------------


def score_dict(s: EventScore) -> dict[str, Any]:
    return {
        "id": s.id, "event_id": s.event_id, "category_id": s.category_id,
        "score": s.score, "notes": s.notes,
        "created_at": iso(s.created_at), "updated_at": iso(s.updated_at),
    }


def upsert_score(
    session: Session, event_id: int, category_id: int, score: int, notes: str | None = None,
) -> EventScore:
    """Insert or overwrite the score for one (event, category) pair (caller must commit)."""
    if score not in VALID_SCORES:
        raise InvalidInputError(f"Score must be one of {', '.join(map(str, VALID_SCORES))}")
    _require_event(session, event_id)
    if session.get(ScoringCategory, category_id) is None:
        raise NotFoundError("Scoring category not found")
    row = session.execute(
        select(EventScore).where(EventScore.event_id == event_id, EventScore.category_id == category_id)
    ).scalars().first()
    if row is None:
        row = EventScore(event_id=event_id, category_id=category_id, score=score, notes=notes)
        session.add(row)
    else:
        row.score = score
        row.notes = notes
    session.flush()
    return row


def upsert_scores(session: Session, event_id: int, items: Iterable[dict[str, Any]]) -> list[EventScore]:
    """Upsert several category scores for one event, row by row.

    The caller commits once, so a failure on any row discards the whole batch.
    """
    return [
        upsert_score(session, event_id, item["category_id"], item["score"], item.get("notes"))
        for item in items
    ]


def delete_score(session: Session, score_id: int) -> None:
    row = session.get(EventScore, score_id)
    if row is None:
        raise NotFoundError("Score not found")
    session.delete(row)
    session.flush()


def delete_event_scores(session: Session, event_id: int) -> int:
    result = session.execute(delete(EventScore).where(EventScore.event_id == event_id))
    return result.rowcount or 0


# ---------------------------------------------------------------------------
# Threshold
# ---------------------------------------------------------------------------


def get_threshold(session: Session) -> int:
    row = session.get(ScoringSettings, _SETTINGS_ROW_ID)
    return row.threshold if row is not None else DEFAULT_SCORING_THRESHOLD


def set_threshold(session: Session, value: int) -> int:
    if not 0 <= value <= MAX_SCORING_THRESHOLD:
        raise InvalidInputError(f"Threshold must be between 0 and {MAX_SCORING_THRESHOLD}")
    row = session.get(ScoringSettings, _SETTINGS_ROW_ID)
    if row is None:
        session.add(ScoringSettings(id=_SETTINGS_ROW_ID, threshold=value))
    else:
        row.threshold = value
    session.flush()
    log.info("Scoring threshold set to %d", value)
    return value


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------


def category_dict(c: ScoringCategory) -> dict[str, Any]:
    return {"id": c.id, **{f: getattr(c, f) for f in CATEGORY_FIELDS}, "created_at": iso(c.created_at)}


def _check_ranges(data: dict[str, Any]) -> None:
    for field in ("weight", "display_order"):
        val = data.get(field)
        if val is not None and not 1 <= val <= 10:
            raise InvalidInputError(f"{field} must be between 1 and 10")


def _check_weight_free(session: Session, weight: int, exclude_id: int | None = None) -> None:
    query = select(ScoringCategory.id).where(ScoringCategory.weight == weight)
    if exclude_id is not None:
        query = query.where(ScoringCategory.id != exclude_id)
    if session.execute(query).first() is not None:
        raise InvalidInputError(f"Another category already uses weight {weight}")


def create_category(session: Session, data: dict[str, Any]) -> ScoringCategory:
    _check_ranges(data)
    count = session.execute(select(func.count(ScoringCategory.id))).scalar_one()
    if count >= MAX_CATEGORIES:
        raise InvalidInputError(f"At most {MAX_CATEGORIES} scoring categories are allowed")
    _check_weight_free(session, data["weight"])
    category = ScoringCategory(**{f: data[f] for f in CATEGORY_FIELDS})
    session.add(category)
    session.flush()
    return category


def get_category(session: Session, category_id: int) -> ScoringCategory:
    category = session.get(ScoringCategory, category_id)
    if category is None:
        raise NotFoundError("Scoring category not found")
    return category


def update_category(session: Session, category_id: int, changes: dict[str, Any]) -> ScoringCategory:
    category = get_category(session, category_id)
    _check_ranges(changes)
    if changes.get("weight") is not None:
        _check_weight_free(session, changes["weight"], exclude_id=category_id)
    apply_updates(category, changes, CATEGORY_FIELDS)
    session.flush()
    return category


def delete_category(session: Session, category_id: int) -> None:
    session.delete(get_category(session, category_id))
    session.flush()
