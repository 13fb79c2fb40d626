"""@mention extraction and resolution.

A username is the local part of a user's email address; there is no stored
username column. ``@alice`` resolves to ``alice@example.com`` but not to
``Alice@example.com`` or ``alice.smith@example.com``.
Tokens are ASCII word characters, so ``@jürgen`` yields ``j``.
"""
from __future__ import annotations

import re

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from cfptrack.models import User
from cfptrack.utils import username_from_email

MENTION_RE = re.compile(r"@(\w+)", re.ASCII)


def extract_mentions(content: str) -> list[str]:
    """Return every ``@token`` in *content*, in order, duplicates included."""
    return [m for m in MENTION_RE.findall(content or "") if m]


def _like_escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def resolve_mentions(session: Session, usernames: list[str]) -> list[User]:
    """Resolve usernames to users, one entry per matched user.

    Unknown usernames are dropped silently.
    """
    wanted = set(usernames)
    if not wanted:
        return []
    # LIKE narrows the candidates; the exact, case-sensitive comparison below decides.
    conditions = [User.email.like(f"{_like_escape(name)}@%", escape="\\") for name in wanted]
    candidates = session.execute(select(User).where(or_(*conditions)).order_by(User.id)).scalars().all()
    return [u for u in candidates if username_from_email(u.email) in wanted]
