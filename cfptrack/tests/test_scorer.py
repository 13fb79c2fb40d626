from __future__ import annotations

import pytest
from sqlalchemy import func, select

from cfptrack import scorer
from cfptrack.errors import InvalidInputError, NotFoundError
from cfptrack.models import EventScore


def _category(session, name: str, weight: int, order: int | None = None):
    return scorer.create_category(session, {
        "name": name, "weight": weight, "display_order": order or weight,
        "score_9_description": "great", "score_3_description": "good",
        "score_1_description": "meh", "score_0_description": "no",
    })


@pytest.fixture()
def categories(session):
    audience = _category(session, "Audience fit", 10, 1)
    reach = _category(session, "Reach", 5, 2)
    session.commit()
    return audience, reach


def test_empty_category_set_is_complete() -> None:
    summary = scorer.summarize_scores([], [], 70)
    assert summary.max_score == 0
    assert summary.total_score == 0
    assert summary.is_complete is True
    assert summary.meets_threshold is False


def test_max_score_ignores_which_categories_are_scored(session, event, categories) -> None:
    audience, _ = categories
    summary = scorer.event_score_summary(session, event.id)
    assert summary.max_score == 9 * 10 + 9 * 5
    assert summary.completion_count == 0
    assert summary.is_complete is False

    scorer.upsert_score(session, event.id, audience.id, 3)
    session.commit()
    summary = scorer.event_score_summary(session, event.id)
    assert summary.max_score == 135
    assert summary.total_score == 30
    assert summary.completion_count == 1


def test_weighted_total_and_threshold(session, event, categories) -> None:
    audience, reach = categories
    scorer.upsert_scores(session, event.id, [
        {"category_id": audience.id, "score": 9},
        {"category_id": reach.id, "score": 1, "notes": "small community"},
    ])
    session.commit()
    summary = scorer.event_score_summary(session, event.id)
    assert summary.total_score == 95
    assert summary.is_complete is True
    assert summary.threshold == 70
    assert summary.meets_threshold is True

    scorer.set_threshold(session, 96)
    session.commit()
    assert scorer.event_score_summary(session, event.id).meets_threshold is False


def test_upsert_overwrites_existing_row(session, event, categories) -> None:
    audience, _ = categories
    scorer.upsert_score(session, event.id, audience.id, 1, "first look")
    session.commit()
    scorer.upsert_score(session, event.id, audience.id, 9, "after talking to organisers")
    session.commit()
    rows = session.execute(select(EventScore)).scalars().all()
    assert len(rows) == 1
    assert rows[0].score == 9
    assert rows[0].notes == "after talking to organisers"


@pytest.mark.parametrize("value", [2, -1, 10])
def test_invalid_score_rejected(session, event, categories, value) -> None:
    with pytest.raises(InvalidInputError):
        scorer.upsert_score(session, event.id, categories[0].id, value)


def test_upsert_unknown_event_or_category(session, event, categories) -> None:
    with pytest.raises(NotFoundError):
        scorer.upsert_score(session, 999, categories[0].id, 3)
    with pytest.raises(NotFoundError):
        scorer.upsert_score(session, event.id, 999, 3)


def test_batch_failure_is_discarded_on_rollback(session, event, categories) -> None:
    audience, _ = categories
    with pytest.raises(NotFoundError):
        scorer.upsert_scores(session, event.id, [
            {"category_id": audience.id, "score": 9},
            {"category_id": 999, "score": 3},
        ])
    session.rollback()
    assert session.execute(select(func.count(EventScore.id))).scalar_one() == 0


def test_delete_scores(session, event, categories) -> None:
    audience, reach = categories
    row = scorer.upsert_score(session, event.id, audience.id, 3)
    scorer.upsert_score(session, event.id, reach.id, 3)
    session.commit()
    scorer.delete_score(session, row.id)
    session.commit()
    assert scorer.event_score_summary(session, event.id).completion_count == 1
    assert scorer.delete_event_scores(session, event.id) == 1
    with pytest.raises(NotFoundError):
        scorer.delete_score(session, row.id)


def test_threshold_default_and_bounds(session) -> None:
    assert scorer.get_threshold(session) == 70
    assert scorer.set_threshold(session, 0) == 0
    session.commit()
    assert scorer.get_threshold(session) == 0
    with pytest.raises(InvalidInputError):
        scorer.set_threshold(session, 901)


def test_category_weight_must_be_unique(session, categories) -> None:
    with pytest.raises(InvalidInputError):
        _category(session, "Clash", 10)
    audience, reach = categories
    with pytest.raises(InvalidInputError):
        scorer.update_category(session, reach.id, {"weight": 10})
    # Keeping its own weight is fine.
    scorer.update_category(session, audience.id, {"weight": 10, "name": "Audience"})
    assert audience.name == "Audience"


def test_at_most_ten_categories(session) -> None:
    for weight in range(1, 11):
        _category(session, f"c{weight}", weight)
    session.commit()
    with pytest.raises(InvalidInputError):
        _category(session, "eleventh", 1)


def test_categories_listed_in_display_order(session) -> None:
    _category(session, "second", 3, 2)
    _category(session, "first", 7, 1)
    session.commit()
    assert [c.name for c in scorer.list_categories(session)] == ["first", "second"]


def test_event_score_detail_404(session) -> None:
    with pytest.raises(NotFoundError):
        scorer.event_score_detail(session, 42)
