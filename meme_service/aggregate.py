"""
Meme aggregate: votes, flags, comment count, views and deletion.

The counters on a meme row (upvotes, downvotes, comment_count, flag_count,
views) are denormalized projections of the meme_votes, meme_flags and
comments tables. Every operation here runs in a single transaction and
changes counters with in-SQL deltas (``x = x + n``), never by writing back a
value computed in Python. Transitions that depend on current state take a
row lock on the meme first, so mutations against one meme are serialized
while different memes never wait on each other.

All functions take an open psycopg2 connection and leave it open.
"""

import logging
from typing import Any, Dict, Optional, Tuple

from meme_service.errors import Forbidden, InvalidInput, NotFound, Unauthorized
from meme_service.validation import (
    MAX_COMMENT_LENGTH,
    MAX_FLAG_REASON_LENGTH,
    sanitize_text,
    validate_comment,
    validate_flag_reason,
    validate_vote_type,
)

logger = logging.getLogger(__name__)

DEFAULT_FLAG_THRESHOLD = 1

MEME_COLUMNS = (
    "id", "user_id", "username", "image_url", "top_text", "bottom_text",
    "tags", "font_size", "font_color", "is_draft", "upvotes", "downvotes",
    "comment_count", "flag_count", "is_flagged", "views", "created_at",
    "updated_at",
)
MEME_SELECT = ", ".join(MEME_COLUMNS)

COMMENT_COLUMNS = ("id", "meme_id", "user_id", "username", "text", "created_at")
COMMENT_SELECT = ", ".join(COMMENT_COLUMNS)

# (current, requested) -> (next, delta upvotes, delta downvotes)
VOTE_TRANSITIONS = {
    (None, "up"): ("up", 1, 0),
    (None, "down"): ("down", 0, 1),
    ("up", "up"): (None, -1, 0),
    ("up", "down"): ("down", -1, 1),
    ("down", "down"): (None, 0, -1),
    ("down", "up"): ("up", 1, -1),
}


def _isoformat(value):
    return value.isoformat() if value else None


def row_to_meme(row) -> Dict[str, Any]:
    """Map a row selected with MEME_SELECT to its JSON shape."""
    meme = dict(zip(MEME_COLUMNS, row))
    meme["tags"] = list(meme["tags"] or [])
    meme["created_at"] = _isoformat(meme["created_at"])
    meme["updated_at"] = _isoformat(meme["updated_at"])
    return meme


def row_to_comment(row) -> Dict[str, Any]:
    comment = dict(zip(COMMENT_COLUMNS, row))
    comment["created_at"] = _isoformat(comment["created_at"])
    return comment


def vote_transition(current: Optional[str], requested: str) -> Tuple[Optional[str], int, int]:
    """
    Resolve a vote request against the caller's current vote.

    Repeating the current vote toggles it off; the opposite vote switches it.

    Returns:
        (next vote or None, upvotes delta, downvotes delta)
    """
    is_valid, error = validate_vote_type(requested)
    if not is_valid:
        raise InvalidInput(error)
    return VOTE_TRANSITIONS[(current, requested)]


def should_flag(flag_count: int, threshold: int = DEFAULT_FLAG_THRESHOLD) -> bool:
    """A meme shows the flagged banner once it collects `threshold` flags."""
    return flag_count >= max(1, threshold)


def _require_identity(user_id):
    if user_id is None:
        raise Unauthorized("Authentication required")


def _hidden_from(owner_id, is_draft, viewer_id) -> bool:
    return bool(is_draft) and owner_id != viewer_id


def _lock_meme(cur, meme_id, viewer_id):
    """
    Lock a meme row for the rest of the transaction.

    A draft only exists for its creator; anyone else gets NotFound.

    Returns:
        (user_id, image_handle)
    """
    cur.execute(
        "SELECT user_id, is_draft, image_handle FROM memes WHERE id = %s FOR UPDATE",
        (meme_id,),
    )
    row = cur.fetchone()
    if row is None or _hidden_from(row[0], row[1], viewer_id):
        raise NotFound("Meme not found")
    return row[0], row[2]


# ==================== READS ====================

def get_meme(conn, meme_id, viewer_id=None) -> Dict[str, Any]:
    """Fetch one meme. Drafts are only visible to their creator."""
    with conn.cursor() as cur:
        cur.execute(f"SELECT {MEME_SELECT} FROM memes WHERE id = %s", (meme_id,))
        row = cur.fetchone()
    if row is None:
        raise NotFound("Meme not found")
    meme = row_to_meme(row)
    if _hidden_from(meme["user_id"], meme["is_draft"], viewer_id):
        raise NotFound("Meme not found")
    return meme


def get_user_vote(conn, meme_id, user_id) -> Optional[str]:
    if user_id is None:
        return None
    with conn.cursor() as cur:
        cur.execute(
            "SELECT vote_type FROM meme_votes WHERE meme_id = %s AND user_id = %s",
            (meme_id, user_id),
        )
        row = cur.fetchone()
    return row[0] if row else None


# ==================== VOTES ====================

def cast_vote(conn, meme_id, user_id, vote_type) -> Dict[str, Any]:
    """
    Apply an up/down vote from `user_id`, following VOTE_TRANSITIONS.

    The meme_votes table holds at most one row per (meme_id, user_id), and
    upvotes/downvotes always move by the same delta as that row.

    Returns:
        {"upvotes", "downvotes", "user_vote"} where user_vote is None when
        the vote was toggled off.
    """
    _require_identity(user_id)
    is_valid, error = validate_vote_type(vote_type)
    if not is_valid:
        raise InvalidInput(error)

    with conn:
        with conn.cursor() as cur:
            _lock_meme(cur, meme_id, user_id)

            cur.execute(
                "SELECT vote_type FROM meme_votes WHERE meme_id = %s AND user_id = %s",
                (meme_id, user_id),
            )
            row = cur.fetchone()
            current = row[0] if row else None
            next_vote, d_up, d_down = vote_transition(current, vote_type)

            if next_vote is None:
                cur.execute(
                    "DELETE FROM meme_votes WHERE meme_id = %s AND user_id = %s",
                    (meme_id, user_id),
                )
            elif current is None:
                cur.execute(
                    "INSERT INTO meme_votes (meme_id, user_id, vote_type) VALUES (%s, %s, %s)",
                    (meme_id, user_id, next_vote),
                )
            else:
                cur.execute(
                    """UPDATE meme_votes SET vote_type = %s, updated_at = CURRENT_TIMESTAMP
                       WHERE meme_id = %s AND user_id = %s""",
                    (next_vote, meme_id, user_id),
                )

            cur.execute(
                """UPDATE memes SET upvotes = upvotes + %s, downvotes = downvotes + %s
                   WHERE id = %s RETURNING upvotes, downvotes""",
                (d_up, d_down, meme_id),
            )
            upvotes, downvotes = cur.fetchone()

    return {"upvotes": upvotes, "downvotes": downvotes, "user_vote": next_vote}


# ==================== FLAGS ====================

def flag_meme(conn, meme_id, user_id, reason, threshold: int = DEFAULT_FLAG_THRESHOLD) -> Dict[str, Any]:
    """
    Record an abuse report and apply the flagged-banner policy.

    Repeat flags from the same user are accepted. Once set, is_flagged is
    only cleared by moderation outside this service.
    """
    _require_identity(user_id)
    is_valid, error = validate_flag_reason(reason)
    if not is_valid:
        raise InvalidInput(error)
    safe_reason = sanitize_text(reason, MAX_FLAG_REASON_LENGTH)

    with conn:
        with conn.cursor() as cur:
            cur.execute(
                """UPDATE memes SET flag_count = flag_count + 1
                   WHERE id = %s AND (NOT is_draft OR user_id = %s)
                   RETURNING flag_count, is_flagged""",
                (meme_id, user_id),
            )
            row = cur.fetchone()
            if row is None:
                raise NotFound("Meme not found")
            flag_count, is_flagged = row

            cur.execute(
                "INSERT INTO meme_flags (meme_id, user_id, reason) VALUES (%s, %s, %s)",
                (meme_id, user_id, safe_reason),
            )

            if not is_flagged and should_flag(flag_count, threshold):
                cur.execute("UPDATE memes SET is_flagged = TRUE WHERE id = %s", (meme_id,))
                is_flagged = True

    logger.info(f"Meme {meme_id} flagged by user {user_id} (flag_count={flag_count})")
    return {"flag_count": flag_count, "is_flagged": is_flagged}


# ==================== COMMENT COUNT ====================

def _increment_comment_count(cur, meme_id) -> Optional[int]:
    cur.execute(
        "UPDATE memes SET comment_count = comment_count + 1 WHERE id = %s RETURNING comment_count",
        (meme_id,),
    )
    row = cur.fetchone()
    return row[0] if row else None


def _decrement_comment_count(cur, meme_id) -> Optional[int]:
    # Clamped at zero: out-of-band deletes may already have lowered it.
    cur.execute(
        "UPDATE memes SET comment_count = GREATEST(comment_count - 1, 0) WHERE id = %s RETURNING comment_count",
        (meme_id,),
    )
    row = cur.fetchone()
    return row[0] if row else None


def on_comment_created(conn, meme_id) -> Dict[str, int]:
    """Count a comment that has already been persisted."""
    with conn:
        with conn.cursor() as cur:
            count = _increment_comment_count(cur, meme_id)
    if count is None:
        raise NotFound("Meme not found")
    return {"comment_count": count}


def on_comment_deleted(conn, meme_id) -> Dict[str, int]:
    """Uncount a comment whose deletion has already succeeded."""
    with conn:
        with conn.cursor() as cur:
            count = _decrement_comment_count(cur, meme_id)
    if count is None:
        raise NotFound("Meme not found")
    return {"comment_count": count}


def list_comments(conn, meme_id, viewer_id=None, limit: int = 20, offset: int = 0):
    """Comments for a meme, newest first, with the total count."""
    with conn.cursor() as cur:
        cur.execute("SELECT user_id, is_draft FROM memes WHERE id = %s", (meme_id,))
        row = cur.fetchone()
        if row is None or _hidden_from(row[0], row[1], viewer_id):
            raise NotFound("Meme not found")
        cur.execute(
            f"""SELECT {COMMENT_SELECT} FROM comments WHERE meme_id = %s
                ORDER BY created_at DESC, id DESC LIMIT %s OFFSET %s""",
            (meme_id, limit, offset),
        )
        comments = [row_to_comment(row) for row in cur.fetchall()]
        cur.execute("SELECT COUNT(*) FROM comments WHERE meme_id = %s", (meme_id,))
        total = cur.fetchone()[0]
    return comments, total


def create_comment(conn, meme_id, user_id, username, text) -> Dict[str, Any]:
    """
    Insert a comment and count it in the same transaction.

    The counter only moves if the comment row commits.
    """
    _require_identity(user_id)
    is_valid, error = validate_comment(text)
    if not is_valid:
        raise InvalidInput(error)
    safe_text = sanitize_text(text, MAX_COMMENT_LENGTH)

    with conn:
        with conn.cursor() as cur:
            _lock_meme(cur, meme_id, user_id)
            cur.execute(
                f"""INSERT INTO comments (meme_id, user_id, username, text)
                    VALUES (%s, %s, %s, %s) RETURNING {COMMENT_SELECT}""",
                (meme_id, user_id, username, safe_text),
            )
            comment = row_to_comment(cur.fetchone())
            count = _increment_comment_count(cur, meme_id)

    return {"comment": comment, "comment_count": count}


def delete_comment(conn, meme_id, comment_id, requesting_user_id) -> Dict[str, int]:
    """Delete a comment by its author and uncount it in the same transaction."""
    _require_identity(requesting_user_id)

    with conn:
        with conn.cursor() as cur:
            cur.execute(
                "SELECT user_id FROM comments WHERE id = %s AND meme_id = %s FOR UPDATE",
                (comment_id, meme_id),
            )
            row = cur.fetchone()
            if row is None:
                raise NotFound("Comment not found")
            if row[0] != requesting_user_id:
                logger.warning(
                    f"Unauthorized comment delete attempt: user {requesting_user_id} on comment {comment_id}"
                )
                raise Forbidden("Not authorized to delete this comment")

            cur.execute("DELETE FROM comments WHERE id = %s", (comment_id,))
            count = _decrement_comment_count(cur, meme_id)

    return {"comment_count": count or 0}


# ==================== VIEWS ====================

def record_view(conn, meme_id) -> Dict[str, int]:
    """Count one detail fetch. Every call counts; viewers are not deduplicated."""
    with conn:
        with conn.cursor() as cur:
            cur.execute("UPDATE memes SET views = views + 1 WHERE id = %s RETURNING views", (meme_id,))
            row = cur.fetchone()
    if row is None:
        raise NotFound("Meme not found")
    return {"views": row[0]}


# ==================== DELETION ====================

def delete_meme(conn, meme_id, requesting_user_id, media_store=None) -> int:
    """
    Delete a meme on behalf of its creator, cascading to dependent rows.

    The stored image is released first on a best-effort basis: a media store
    failure is logged and does not stop the metadata from being removed.

    Returns:
        Number of comments removed along with the meme.
    """
    _require_identity(requesting_user_id)

    with conn:
        with conn.cursor() as cur:
            owner_id, image_handle = _lock_meme(cur, meme_id, requesting_user_id)
            if owner_id != requesting_user_id:
                logger.warning(f"Unauthorized delete attempt: user {requesting_user_id} on meme {meme_id}")
                raise Forbidden("Not authorized to delete this meme")

            # The image goes before the rows are deleted. If a DELETE below
            # fails, the transaction rolls back and the meme survives without
            # its image.
            if image_handle and media_store is not None:
                try:
                    if not media_store.remove(image_handle):
                        logger.warning(f"Media for meme {meme_id} was not removed: {image_handle}")
                except Exception as e:
                    logger.warning(f"Media store failed removing {image_handle} for meme {meme_id}: {e}")

            cur.execute("DELETE FROM comments WHERE meme_id = %s", (meme_id,))
            removed_comments = cur.rowcount
            cur.execute("DELETE FROM meme_votes WHERE meme_id = %s", (meme_id,))
            cur.execute("DELETE FROM meme_flags WHERE meme_id = %s", (meme_id,))
            cur.execute("DELETE FROM memes WHERE id = %s", (meme_id,))

    logger.info(f"Meme {meme_id} deleted by user {requesting_user_id} ({removed_comments} comments removed)")
    return removed_comments
