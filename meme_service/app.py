"""
Meme Service - Meme Sharing Microservice

Provides the meme feed and everything users do with a meme:
- Image upload with caption, tags and font styling (drafts supported)
- Up/down voting with toggle-off, one vote per user per meme
- Abuse flags with a flagged banner
- Comments with a maintained comment count
- View counting on detail fetches

Counters on a meme are maintained by meme_service.aggregate with atomic
in-SQL deltas. Identity comes from JWTs issued by auth_service.
"""

import datetime
import logging
import os
from functools import wraps
from typing import Any, Dict, Optional

import jwt
import psycopg2
from flask import Flask, jsonify, request, send_from_directory
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from psycopg2 import OperationalError

from meme_service import aggregate
from meme_service.errors import Forbidden, InvalidInput, MemeServiceError, NotFound
from meme_service.media import LocalMediaStore, is_stored_filename
from meme_service.validation import (
    DEFAULT_FONT_COLOR,
    DEFAULT_FONT_SIZE,
    MAX_CAPTION_LENGTH,
    normalize_tags,
    parse_bool,
    sanitize_text,
    validate_caption,
    validate_font_color,
    validate_font_size,
    validate_search_query,
    validate_tags,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

app = Flask(__name__)

# Limit request size (5MB for image uploads)
MAX_UPLOAD_SIZE = int(os.environ.get("MAX_UPLOAD_SIZE", 5 * 1024 * 1024))
app.config["MAX_CONTENT_LENGTH"] = MAX_UPLOAD_SIZE

# Configuration
DATABASE_URL = os.environ.get("DATABASE_URL")
SECRET_KEY = os.environ.get("SECRET_KEY")
UPLOAD_FOLDER = os.environ.get("UPLOAD_FOLDER", "/app/uploads")
PUBLIC_MEDIA_PREFIX = os.environ.get("PUBLIC_MEDIA_PREFIX", "/memes/uploads")
FLAG_THRESHOLD = int(os.environ.get("FLAG_THRESHOLD", aggregate.DEFAULT_FLAG_THRESHOLD))

media_store = LocalMediaStore(UPLOAD_FOLDER, PUBLIC_MEDIA_PREFIX, MAX_UPLOAD_SIZE)

# Rate Limiter Setup
limiter = Limiter(
    key_func=get_remote_address,
    app=app,
    default_limits=["1000 per day", "300 per hour"],
    storage_uri="memory://",
)

FEED_SORTS = {
    "new": "created_at DESC, id DESC",
    "top": "upvotes DESC, created_at DESC, id DESC",
}

FEED_WINDOWS = {
    "all": None,
    "24h": datetime.timedelta(days=1),
    "week": datetime.timedelta(days=7),
}


# ==================== DATABASE ====================

def get_db_connection():
    """Get database connection."""
    return psycopg2.connect(DATABASE_URL)


def init_db():
    """Initialize meme service tables."""
    try:
        conn = get_db_connection()
        cur = conn.cursor()

        cur.execute("""
            CREATE TABLE IF NOT EXISTS memes (
                id SERIAL PRIMARY KEY,
                user_id INTEGER NOT NULL,
                username VARCHAR(80) NOT NULL,
                image_url VARCHAR(500) NOT NULL,
                image_handle VARCHAR(255),
                top_text VARCHAR(1000) NOT NULL DEFAULT '',
                bottom_text VARCHAR(1000) NOT NULL DEFAULT '',
                tags TEXT[] NOT NULL DEFAULT '{}',
                font_size SMALLINT NOT NULL DEFAULT 40,
                font_color VARCHAR(7) NOT NULL DEFAULT '#FFFFFF',
                is_draft BOOLEAN NOT NULL DEFAULT FALSE,
                upvotes INTEGER NOT NULL DEFAULT 0 CHECK (upvotes >= 0),
                downvotes INTEGER NOT NULL DEFAULT 0 CHECK (downvotes >= 0),
                comment_count INTEGER NOT NULL DEFAULT 0 CHECK (comment_count >= 0),
                flag_count INTEGER NOT NULL DEFAULT 0 CHECK (flag_count >= 0),
                is_flagged BOOLEAN NOT NULL DEFAULT FALSE,
                views INTEGER NOT NULL DEFAULT 0 CHECK (views >= 0),
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );
            CREATE INDEX IF NOT EXISTS idx_memes_user_id ON memes(user_id);
            CREATE INDEX IF NOT EXISTS idx_memes_created_at ON memes(created_at DESC);
            CREATE INDEX IF NOT EXISTS idx_memes_upvotes ON memes(upvotes DESC);
        """)

        # One row per (meme, user): the vote uniqueness invariant lives here
        cur.execute("""
            CREATE TABLE IF NOT EXISTS meme_votes (
                id SERIAL PRIMARY KEY,
                meme_id INTEGER NOT NULL REFERENCES memes(id) ON DELETE CASCADE,
                user_id INTEGER NOT NULL,
                vote_type VARCHAR(4) NOT NULL CHECK (vote_type IN ('up', 'down')),
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                UNIQUE(meme_id, user_id)
            );
        """)

        cur.execute("""
            CREATE TABLE IF NOT EXISTS meme_flags (
                id SERIAL PRIMARY KEY,
                meme_id INTEGER NOT NULL REFERENCES memes(id) ON DELETE CASCADE,
                user_id INTEGER NOT NULL,
                reason TEXT NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );
            CREATE INDEX IF NOT EXISTS idx_meme_flags_meme_id ON meme_flags(meme_id);
        """)

        cur.execute("""
            CREATE TABLE IF NOT EXISTS comments (
                id SERIAL PRIMARY KEY,
                meme_id INTEGER NOT NULL REFERENCES memes(id) ON DELETE CASCADE,
                user_id INTEGER NOT NULL,
                username VARCHAR(80) NOT NULL,
                text TEXT NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );
            CREATE INDEX IF NOT EXISTS idx_comments_meme_id ON comments(meme_id);
            CREATE INDEX IF NOT EXISTS idx_comments_user_id ON comments(user_id);
        """)

        conn.commit()
        cur.close()
        conn.close()
        logger.info("Meme database initialized successfully.")
    except Exception as e:
        logger.error(f"Error initializing meme DB: {e}")


# Initialize DB on startup
if DATABASE_URL:
    with app.app_context():
        init_db()


# ==================== AUTHENTICATION ====================

def get_current_user() -> Optional[Dict[str, Any]]:
    """
    Extract and verify JWT token from Authorization header.

    Returns:
        User info dict with user_id and username, or None if absent/invalid.
    """
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None

    token = auth_header[7:]
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        logger.debug("Token expired")
        return None
    except jwt.InvalidTokenError as e:
        logger.debug(f"Invalid token: {e}")
        return None

    if payload.get("user_id") is None:
        return None
    return {
        "user_id": payload.get("user_id"),
        "username": payload.get("username"),
    }


def require_auth(f):
    """Decorator to require valid JWT authentication."""
    @wraps(f)
    def decorated(*args, **kwargs):
        user = get_current_user()
        if not user:
            return jsonify({"error": "Authentication required"}), 401
        request.current_user = user
        return f(*args, **kwargs)
    return decorated


def error_response(error: MemeServiceError):
    return jsonify({"error": error.message}), error.status_code


def get_pagination(default_limit=10, max_limit=50):
    try:
        page = max(1, int(request.args.get("page", 1)))
        limit = min(max_limit, max(1, int(request.args.get("limit", default_limit))))
    except ValueError:
        page, limit = 1, default_limit
    return page, limit


def pages_for(total, limit):
    return (total + limit - 1) // limit


# ==================== HEALTH CHECK ====================

@app.route("/health", methods=["GET"])
def health_check():
    """Health check endpoint."""
    status = {"service": "meme_service", "database": "unknown"}
    try:
        conn = get_db_connection()
        cur = conn.cursor()
        cur.execute("SELECT 1;")
        cur.close()
        conn.close()
        status["database"] = "connected"
        return jsonify(status), 200
    except OperationalError as e:
        status["database"] = "disconnected"
        status["error"] = str(e)
        return jsonify(status), 500


# ==================== FEED ====================

@app.route("/memes", methods=["GET"])
@limiter.limit("60 per minute")
def get_memes():
    """
    Public feed of published memes.

    Query params: page, limit, sort (new|top), time (all|24h|week), tag.
    """
    page, limit = get_pagination()
    sort = request.args.get("sort", "new")
    window = request.args.get("time", "all")
    tag = request.args.get("tag", "").strip().lower()

    if sort not in FEED_SORTS:
        return jsonify({"error": "Invalid sort option"}), 400
    if window not in FEED_WINDOWS:
        return jsonify({"error": "Invalid time filter"}), 400

    conditions = ["is_draft = FALSE"]
    params = []
    if FEED_WINDOWS[window] is not None:
        # created_at is a local timestamp of the database session
        conditions.append("created_at >= LOCALTIMESTAMP - %s")
        params.append(FEED_WINDOWS[window])
    if tag:
        conditions.append("%s = ANY(tags)")
        params.append(tag)
    where = " AND ".join(conditions)

    try:
        conn = get_db_connection()
        try:
            cur = conn.cursor()
            cur.execute(f"""
                SELECT {aggregate.MEME_SELECT} FROM memes
                WHERE {where}
                ORDER BY {FEED_SORTS[sort]}
                LIMIT %s OFFSET %s
            """, (*params, limit, (page - 1) * limit))
            memes = [aggregate.row_to_meme(row) for row in cur.fetchall()]

            cur.execute(f"SELECT COUNT(*) FROM memes WHERE {where}", tuple(params))
            total = cur.fetchone()[0]
            cur.close()
        finally:
            conn.close()

        return jsonify({
            "memes": memes,
            "total": total,
            "page": page,
            "pages": pages_for(total, limit)
        }), 200

    except Exception as e:
        logger.error(f"Error fetching memes: {e}")
        return jsonify({"error": "Failed to fetch memes"}), 500


@app.route("/memes/trending", methods=["GET"])
@limiter.limit("60 per minute")
def get_trending_memes():
    """Today's top published memes."""
    try:
        conn = get_db_connection()
        try:
            cur = conn.cursor()
            cur.execute(f"""
                SELECT {aggregate.MEME_SELECT} FROM memes
                WHERE is_draft = FALSE AND created_at >= CURRENT_DATE
                ORDER BY upvotes DESC, downvotes ASC, id DESC
                LIMIT 10
            """)
            memes = [aggregate.row_to_meme(row) for row in cur.fetchall()]
            cur.close()
        finally:
            conn.close()
        return jsonify({"memes": memes}), 200

    except Exception as e:
        logger.error(f"Error fetching trending memes: {e}")
        return jsonify({"error": "Failed to fetch trending memes"}), 500


@app.route("/memes/search", methods=["GET"])
@limiter.limit("30 per minute")
def search_memes():
    """
    Search published memes by caption or tag.
    Uses parameterized queries to prevent SQL injection.
    """
    query = request.args.get("q", "").strip()

    is_valid, error = validate_search_query(query)
    if not is_valid:
        return jsonify({"error": error}), 400

    page, limit = get_pagination()
    search_pattern = f"%{query}%"
    tag = query.lower()

    try:
        conn = get_db_connection()
        try:
            cur = conn.cursor()
            cur.execute(f"""
                SELECT {aggregate.MEME_SELECT} FROM memes
                WHERE is_draft = FALSE
                  AND (top_text ILIKE %s OR bottom_text ILIKE %s OR %s = ANY(tags))
                ORDER BY created_at DESC, id DESC
                LIMIT %s OFFSET %s
            """, (search_pattern, search_pattern, tag, limit, (page - 1) * limit))
            memes = [aggregate.row_to_meme(row) for row in cur.fetchall()]

            cur.execute("""
                SELECT COUNT(*) FROM memes
                WHERE is_draft = FALSE
                  AND (top_text ILIKE %s OR bottom_text ILIKE %s OR %s = ANY(tags))
            """, (search_pattern, search_pattern, tag))
            total = cur.fetchone()[0]
            cur.close()
        finally:
            conn.close()

        return jsonify({
            "memes": memes,
            "query": query,
            "total": total,
            "page": page,
            "pages": pages_for(total, limit)
        }), 200

    except Exception as e:
        logger.error(f"Error searching memes: {e}")
        return jsonify({"error": "Search failed"}), 500


@app.route("/memes/mine", methods=["GET"])
@require_auth
@limiter.limit("60 per minute")
def get_my_memes():
    """The caller's memes, drafts included."""
    user = request.current_user
    try:
        conn = get_db_connection()
        try:
            cur = conn.cursor()
            cur.execute(f"""
                SELECT {aggregate.MEME_SELECT} FROM memes
                WHERE user_id = %s
                ORDER BY created_at DESC, id DESC
            """, (user["user_id"],))
            memes = [aggregate.row_to_meme(row) for row in cur.fetchall()]
            cur.close()
        finally:
            conn.close()
        return jsonify({"memes": memes}), 200

    except Exception as e:
        logger.error(f"Error fetching memes for user {user['user_id']}: {e}")
        return jsonify({"error": "Failed to fetch memes"}), 500


@app.route("/memes/users/<int:user_id>", methods=["GET"])
@limiter.limit("60 per minute")
def get_user_memes(user_id):
    """A creator's published memes and profile stats."""
    try:
        conn = get_db_connection()
        try:
            cur = conn.cursor()
            cur.execute(f"""
                SELECT {aggregate.MEME_SELECT} FROM memes
                WHERE user_id = %s AND is_draft = FALSE
                ORDER BY created_at DESC, id DESC
            """, (user_id,))
            memes = [aggregate.row_to_meme(row) for row in cur.fetchall()]

            cur.execute("""
                SELECT COUNT(*) FILTER (WHERE NOT is_draft),
                       COUNT(*) FILTER (WHERE is_draft),
                       COALESCE(SUM(upvotes) FILTER (WHERE NOT is_draft), 0),
                       COALESCE(SUM(views) FILTER (WHERE NOT is_draft), 0)
                FROM memes WHERE user_id = %s
            """, (user_id,))
            row = cur.fetchone()
            cur.close()
        finally:
            conn.close()

        return jsonify({
            "memes": memes,
            "stats": {
                "memes_count": row[0],
                "drafts_count": row[1],
                "total_upvotes": int(row[2]),
                "total_views": int(row[3])
            }
        }), 200

    except Exception as e:
        logger.error(f"Error fetching memes for user {user_id}: {e}")
        return jsonify({"error": "Failed to fetch memes"}), 500


# ==================== MEME ENDPOINTS ====================

@app.route("/memes/<int:meme_id>", methods=["GET"])
@limiter.limit("60 per minute")
def get_meme(meme_id):
    """Meme detail. Every fetch counts as a view."""
    user = get_current_user()
    viewer_id = user["user_id"] if user else None
    try:
        conn = get_db_connection()
        try:
            meme = aggregate.get_meme(conn, meme_id, viewer_id)
            meme["views"] = aggregate.record_view(conn, meme_id)["views"]
            meme["user_vote"] = aggregate.get_user_vote(conn, meme_id, viewer_id)
        finally:
            conn.close()
        return jsonify(meme), 200

    except MemeServiceError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error fetching meme {meme_id}: {e}")
        return jsonify({"error": "Failed to fetch meme"}), 500


def read_meme_fields(data, partial=False) -> Dict[str, Any]:
    """
    Validate caption/style/tag fields from a form or JSON body.

    With partial=True only the fields present are returned.
    Raises InvalidInput on the first invalid field.
    """
    fields = {}

    for key, label in (("top_text", "Top text"), ("bottom_text", "Bottom text")):
        if key in data or not partial:
            value = data.get(key)
            is_valid, error = validate_caption(value, label)
            if not is_valid:
                raise InvalidInput(error)
            fields[key] = sanitize_text(value, MAX_CAPTION_LENGTH)

    if "tags" in data or not partial:
        tags = normalize_tags(data.get("tags"))
        is_valid, error = validate_tags(tags)
        if not is_valid:
            raise InvalidInput(error)
        fields["tags"] = [sanitize_text(tag) for tag in tags]

    if data.get("font_size") not in (None, ""):
        is_valid, error = validate_font_size(data.get("font_size"))
        if not is_valid:
            raise InvalidInput(error)
        fields["font_size"] = int(data.get("font_size"))
    elif not partial:
        fields["font_size"] = DEFAULT_FONT_SIZE

    if data.get("font_color") not in (None, ""):
        is_valid, error = validate_font_color(data.get("font_color"))
        if not is_valid:
            raise InvalidInput(error)
        fields["font_color"] = data.get("font_color").upper()
    elif not partial:
        fields["font_color"] = DEFAULT_FONT_COLOR

    if "is_draft" in data or not partial:
        fields["is_draft"] = parse_bool(data.get("is_draft"))

    return fields


@app.route("/memes", methods=["POST"])
@require_auth
@limiter.limit("10 per minute")
def create_meme():
    """Create a meme from an uploaded image (multipart form)."""
    user = request.current_user

    try:
        fields = read_meme_fields(request.form)
        image_url, image_handle = media_store.store(request.files.get("image"))
    except MemeServiceError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error saving upload: {e}")
        return jsonify({"error": "Failed to save image"}), 500

    try:
        conn = get_db_connection()
        try:
            with conn:
                with conn.cursor() as cur:
                    cur.execute(f"""
                        INSERT INTO memes (user_id, username, image_url, image_handle,
                                           top_text, bottom_text, tags, font_size,
                                           font_color, is_draft)
                        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                        RETURNING {aggregate.MEME_SELECT}
                    """, (user["user_id"], user["username"], image_url, image_handle,
                          fields["top_text"], fields["bottom_text"], fields["tags"],
                          fields["font_size"], fields["font_color"], fields["is_draft"]))
                    meme = aggregate.row_to_meme(cur.fetchone())
        finally:
            conn.close()

        logger.info(f"Meme created: {meme['id']} by user {user['username']}")
        return jsonify({"message": "Meme created successfully", "meme": meme}), 201

    except Exception as e:
        logger.error(f"Error creating meme: {e}")
        media_store.remove(image_handle)
        return jsonify({"error": "Failed to create meme"}), 500


@app.route("/memes/<int:meme_id>", methods=["PATCH"])
@require_auth
@limiter.limit("20 per minute")
def update_meme(meme_id):
    """Edit captions, tags, styling or draft state (creator only)."""
    user = request.current_user
    data = request.get_json(silent=True) or request.form

    try:
        fields = read_meme_fields(data, partial=True)
        conn = get_db_connection()
        try:
            with conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT user_id, is_draft FROM memes WHERE id = %s FOR UPDATE", (meme_id,))
                    row = cur.fetchone()
                    if row is None or (row[1] and row[0] != user["user_id"]):
                        raise NotFound("Meme not found")
                    if row[0] != user["user_id"]:
                        logger.warning(f"Unauthorized edit attempt: user {user['user_id']} on meme {meme_id}")
                        raise Forbidden("Not authorized to update this meme")

                    assignments = [f"{key} = %s" for key in fields]
                    assignments.append("updated_at = CURRENT_TIMESTAMP")
                    cur.execute(f"""
                        UPDATE memes SET {", ".join(assignments)}
                        WHERE id = %s RETURNING {aggregate.MEME_SELECT}
                    """, (*fields.values(), meme_id))
                    meme = aggregate.row_to_meme(cur.fetchone())
        finally:
            conn.close()

        return jsonify({"message": "Meme updated", "meme": meme}), 200

    except MemeServiceError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error updating meme {meme_id}: {e}")
        return jsonify({"error": "Failed to update meme"}), 500


@app.route("/memes/<int:meme_id>", methods=["DELETE"])
@require_auth
@limiter.limit("10 per minute")
def delete_meme(meme_id):
    """Delete a meme with its comments and image (creator only)."""
    user = request.current_user

    try:
        conn = get_db_connection()
        try:
            aggregate.delete_meme(conn, meme_id, user["user_id"], media_store)
        finally:
            conn.close()
        return jsonify({"message": "Meme deleted successfully"}), 200

    except MemeServiceError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error deleting meme {meme_id}: {e}")
        return jsonify({"error": "Failed to delete meme"}), 500


# ==================== VOTES & FLAGS ====================

@app.route("/memes/<int:meme_id>/vote", methods=["POST"])
@require_auth
@limiter.limit("30 per minute")
def vote_meme(meme_id):
    """Upvote or downvote; repeating the same vote removes it."""
    user = request.current_user
    data = request.get_json(silent=True) or {}

    try:
        conn = get_db_connection()
        try:
            result = aggregate.cast_vote(conn, meme_id, user["user_id"], data.get("vote_type"))
        finally:
            conn.close()
        return jsonify(result), 200

    except MemeServiceError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error voting on meme {meme_id}: {e}")
        return jsonify({"error": "Failed to record vote"}), 500


@app.route("/memes/<int:meme_id>/flag", methods=["POST"])
@require_auth
@limiter.limit("10 per minute")
def flag_meme(meme_id):
    """Report a meme for review."""
    user = request.current_user
    data = request.get_json(silent=True) or {}

    try:
        conn = get_db_connection()
        try:
            result = aggregate.flag_meme(conn, meme_id, user["user_id"], data.get("reason"), FLAG_THRESHOLD)
        finally:
            conn.close()
        return jsonify(result), 200

    except MemeServiceError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error flagging meme {meme_id}: {e}")
        return jsonify({"error": "Failed to flag meme"}), 500


# ==================== COMMENT ENDPOINTS ====================

@app.route("/memes/<int:meme_id>/comments", methods=["GET"])
@limiter.limit("60 per minute")
def get_comments(meme_id):
    """Comments on a meme, newest first."""
    page, limit = get_pagination(default_limit=20)
    user = get_current_user()
    viewer_id = user["user_id"] if user else None
    try:
        conn = get_db_connection()
        try:
            comments, total = aggregate.list_comments(conn, meme_id, viewer_id, limit, (page - 1) * limit)
        finally:
            conn.close()
        return jsonify({
            "comments": comments,
            "total": total,
            "page": page,
            "pages": pages_for(total, limit)
        }), 200

    except MemeServiceError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error fetching comments for meme {meme_id}: {e}")
        return jsonify({"error": "Failed to fetch comments"}), 500


@app.route("/memes/<int:meme_id>/comments", methods=["POST"])
@require_auth
@limiter.limit("20 per minute")
def add_comment(meme_id):
    """Add comment to a meme (authenticated users only)."""
    user = request.current_user
    data = request.get_json(silent=True) or {}

    try:
        conn = get_db_connection()
        try:
            result = aggregate.create_comment(conn, meme_id, user["user_id"], user["username"], data.get("text"))
        finally:
            conn.close()
        return jsonify({"message": "Comment added", **result}), 201

    except MemeServiceError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error adding comment: {e}")
        return jsonify({"error": "Failed to add comment"}), 500


@app.route("/memes/<int:meme_id>/comments/<int:comment_id>", methods=["DELETE"])
@require_auth
@limiter.limit("10 per minute")
def delete_comment(meme_id, comment_id):
    """Delete comment (author only)."""
    user = request.current_user

    try:
        conn = get_db_connection()
        try:
            result = aggregate.delete_comment(conn, meme_id, comment_id, user["user_id"])
        finally:
            conn.close()
        return jsonify({"message": "Comment deleted", **result}), 200

    except MemeServiceError as e:
        return error_response(e)
    except Exception as e:
        logger.error(f"Error deleting comment: {e}")
        return jsonify({"error": "Failed to delete comment"}), 500


# ==================== UPLOADS ROUTE ====================

@app.route("/memes/uploads/<filename>")
def serve_meme_upload(filename):
    """Serve uploaded meme images."""
    if not is_stored_filename(filename):
        return jsonify({"error": "Invalid filename"}), 400
    return send_from_directory(UPLOAD_FOLDER, filename)


if __name__ == "__main__":
    init_db()
    app.run(host="0.0.0.0", port=5000)
