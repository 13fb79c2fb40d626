from __future__ import annotations

from cfptrack.mentions import extract_mentions, resolve_mentions
from cfptrack.models import User


def test_extract_keeps_order_and_duplicates() -> None:
    assert extract_mentions("@alice @bob @alice") == ["alice", "bob", "alice"]


def test_extract_handles_empty_and_plain_text() -> None:
    assert extract_mentions("") == []
    assert extract_mentions("no mentions here, mail me at someone") == []


def test_extract_stops_at_punctuation() -> None:
    assert extract_mentions("thanks @alice, ping @bob_2!") == ["alice", "bob_2"]


def test_extract_word_chars_are_ascii_only() -> None:
    assert extract_mentions("@jürgen and @zoë") == ["j", "zo"]


def test_resolve_collapses_duplicates_and_drops_unknown(session, alice, bob) -> None:
    users = resolve_mentions(session, ["alice", "bob", "alice", "nobody"])
    assert [u.id for u in users] == [alice.id, bob.id]


def test_resolve_is_exact_and_case_sensitive(session, alice) -> None:
    session.add_all([
        User(name="Alice Smith", email="alice.smith@example.com"),
        User(name="Upper Alice", email="Alice@other.org"),
    ])
    session.commit()
    users = resolve_mentions(session, ["alice"])
    assert [u.email for u in users] == ["alice@example.com"]


def test_resolve_treats_like_wildcards_literally(session, alice) -> None:
    session.add(User(name="Underscore", email="a_b@example.com"))
    session.commit()
    assert resolve_mentions(session, ["a_c"]) == []
    assert [u.email for u in resolve_mentions(session, ["a_b"])] == ["a_b@example.com"]


def test_resolve_empty_list(session) -> None:
    assert resolve_mentions(session, []) == []
