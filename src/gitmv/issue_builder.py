"""Build and parse attribution headers of migrated issues and comments.

Destination providers assign their own issue numbers, authors and creation
timestamps. The header written above each migrated body keeps the source
values, and parsing it back when reading the destination gives the cache
stable identity keys across runs.
"""

from __future__ import annotations

import datetime as dt
import re
from typing import TYPE_CHECKING, Final

if TYPE_CHECKING:
    from .models import Comment, Issue, User

# Minimum time difference (in seconds) to consider showing "last edited" timestamp
LAST_EDITED_THRESHOLD_SECONDS: Final[int] = 60

HEADER_SEPARATOR: Final[str] = "\n\n---\n\n"

_SOURCE_NUMBER_RE: Final[re.Pattern[str]] = re.compile(r"^\*\*Migrated from issue #(\d+)\*\*", re.MULTILINE)
_CREATED_RE: Final[re.Pattern[str]] = re.compile(r"^\*\*Created:\*\* (\S+)$", re.MULTILINE)


def format_timestamp(timestamp: dt.datetime | None) -> str:
    """Format a timestamp to human-readable form (e.g., "2024-01-15 10:30:45Z")."""
    if timestamp is None:
        return ""
    return timestamp.isoformat(sep=" ", timespec="seconds").replace("+00:00", "Z")


def should_show_last_edited(created_at: dt.datetime | None, updated_at: dt.datetime | None) -> bool:
    """Check if updated_at differs from created_at by more than LAST_EDITED_THRESHOLD_SECONDS."""
    if created_at is None or updated_at is None:
        return False
    diff = abs((updated_at - created_at).total_seconds())
    return diff > LAST_EDITED_THRESHOLD_SECONDS


def format_author(user: User | None) -> str:
    if user is None:
        return "Unknown"
    if user.name and user.name != user.login:
        return f"{user.name} ({user.login})"
    return user.login


def build_issue_body(issue: Issue) -> str:
    """Build the destination issue body with a migration header.

    Args:
        issue: Source issue; ``number`` is the source issue number

    Returns:
        Complete issue body for the destination
    """
    header = f"**Migrated from issue #{issue.number}**\n"
    header += f"**Original Author:** {format_author(issue.user)}"
    if issue.created_at is not None:
        header += f"\n**Created:** {issue.created_at.isoformat()}"
    return header + HEADER_SEPARATOR + issue.body.strip()


def build_comment_body(comment: Comment) -> str:
    """Build the destination comment body with an attribution header.

    The exact source creation timestamp is written in ISO 8601 so that
    parse_created_at() returns a value equal to ``comment.created_at``.
    """
    header = f"**Comment by:** {format_author(comment.user)}\n"
    header += f"**Created:** {comment.created_at.isoformat()}"
    if should_show_last_edited(comment.created_at, comment.updated_at):
        header += f"\n**Last edited:** {format_timestamp(comment.updated_at)}"
    return header + HEADER_SEPARATOR + comment.body.strip()


def parse_source_number(body: str | None) -> int | None:
    """Return the source issue number recorded by build_issue_body(), if any."""
    if not body:
        return None
    match = _SOURCE_NUMBER_RE.search(body)
    return int(match.group(1)) if match else None


def parse_created_at(body: str | None) -> dt.datetime | None:
    """Return the source creation timestamp recorded in a migration header, if any."""
    if not body:
        return None
    head = body.split(HEADER_SEPARATOR, 1)[0]
    match = _CREATED_RE.search(head)
    if not match:
        return None
    try:
        return dt.datetime.fromisoformat(match.group(1))
    except ValueError:
        return None
