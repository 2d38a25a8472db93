"""
Auth Service - Identity Microservice

Issues and verifies the bearer tokens every other service relies on:
- Registration and login (password hashes via werkzeug)
- Stateless HS256 JWT access tokens
- Public profiles, profile editing and avatar uploads

Tokens carry user_id and username; meme_service verifies them locally
with the shared SECRET_KEY.
"""

import datetime
import logging
import os
import re
import secrets
import time
import uuid
from functools import wraps
from typing import Any, Dict, Optional, Tuple

import jwt
import psycopg2
from flask import Flask, jsonify, request, send_from_directory
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from psycopg2 import OperationalError
from psycopg2.errors import UniqueViolation
from werkzeug.security import check_password_hash, generate_password_hash

from meme_service.errors import InvalidInput
from meme_service.media import LocalMediaStore, is_stored_filename

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

app = Flask(__name__)

# Security: Limit request size (prevent DoS); room for a 2MB avatar upload
app.config["MAX_CONTENT_LENGTH"] = 3 * 1024 * 1024  # 3MB

# Config
DATABASE_URL = os.environ.get("DATABASE_URL")
SECRET_KEY = os.environ.get("SECRET_KEY")
if not SECRET_KEY:
    logger.warning("SECRET_KEY not set - using random key (tokens won't validate across services or restarts)")
    SECRET_KEY = secrets.token_hex(32)
ACCESS_TOKEN_EXPIRY_MINUTES = int(os.environ.get("ACCESS_TOKEN_EXPIRY_MINUTES", 24 * 60))
AVATAR_FOLDER = os.environ.get("AVATAR_FOLDER", "/app/avatars")
MAX_AVATAR_SIZE = int(os.environ.get("MAX_AVATAR_SIZE", 2 * 1024 * 1024))

avatar_store = LocalMediaStore(AVATAR_FOLDER, "/profile/avatars", MAX_AVATAR_SIZE)

PROFILE_FIELD_LIMITS = {
    "display_name": 50,
    "bio": 500,
    "location": 100,
    "website": 200,
}

# Rate Limiter Setup (in-memory storage for simplicity)
limiter = Limiter(
    key_func=get_remote_address,
    app=app,
    default_limits=["200 per day", "50 per hour"],
    storage_uri="memory://",
)


# ==================== INPUT VALIDATION ====================

def validate_username(username: Optional[str]) -> Tuple[bool, Optional[str]]:
    """
    Validate username: 3-30 characters, alphanumeric and underscore only.

    Args:
        username: The username to validate.

    Returns:
        Tuple of (is_valid, error_message). error_message is None if valid.
    """
    if not username:
        return False, "Username is required"

    if len(username) < 3:
        return False, "Username must be at least 3 characters long"

    if len(username) > 30:
        return False, "Username must not exceed 30 characters"

    if not re.match(r'^[a-zA-Z0-9_]+$', username):
        return False, "Username can only contain letters, numbers, and underscores"

    return True, None


def validate_password(password: Optional[str]) -> Tuple[bool, Optional[str]]:
    """Validate password: at least 6 characters."""
    if not password:
        return False, "Password is required"

    if len(password) < 6:
        return False, "Password must be at least 6 characters long"

    if len(password) > 128:
        return False, "Password must not exceed 128 characters"

    return True, None


def validate_email(email: Optional[str]) -> Tuple[bool, Optional[str]]:
    """
    Validate email format.

    Args:
        email: The email address to validate.

    Returns:
        Tuple of (is_valid, error_message). error_message is None if valid.
    """
    if not email:
        return False, "Email is required"

    email_pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'

    if not re.match(email_pattern, email):
        return False, "Invalid email format"

    if len(email) > 254:
        return False, "Email must not exceed 254 characters"

    return True, None


# ==================== DATABASE ====================

def get_db_connection():
    conn = psycopg2.connect(DATABASE_URL)
    return conn


def init_db():
    """Initialize the users table if it doesn't exist."""
    try:
        conn = get_db_connection()
        cur = conn.cursor()

        cur.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id SERIAL PRIMARY KEY,
                username VARCHAR(30) UNIQUE NOT NULL,
                email VARCHAR(254) UNIQUE NOT NULL,
                password_hash TEXT NOT NULL,
                display_name VARCHAR(50),
                avatar_url VARCHAR(500) NOT NULL DEFAULT '',
                avatar_handle VARCHAR(255),
                bio VARCHAR(500) NOT NULL DEFAULT '',
                location VARCHAR(100) NOT NULL DEFAULT '',
                website VARCHAR(200) NOT NULL DEFAULT '',
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );
            ALTER TABLE users ADD COLUMN IF NOT EXISTS avatar_handle VARCHAR(255);
        """)

        conn.commit()
        cur.close()
        conn.close()
        logger.info("Database initialized successfully.")
    except Exception as e:
        logger.error(f"Error initializing DB: {e}")


# Initialize DB on startup
if DATABASE_URL:
    with app.app_context():
        init_db()


# ==================== TOKENS ====================

def generate_access_token(user_id, username):
    """Generate a JWT access token."""
    now = datetime.datetime.now(datetime.timezone.utc)
    return jwt.encode(
        {
            "user_id": user_id,
            "username": username,
            "jti": str(uuid.uuid4()),
            "exp": now + datetime.timedelta(minutes=ACCESS_TOKEN_EXPIRY_MINUTES),
            "iat": now,
        },
        SECRET_KEY,
        algorithm="HS256",
    )


def decode_bearer_token() -> Tuple[Optional[Dict[str, Any]], Optional[str]]:
    """
    Decode the bearer token of the current request.

    Returns:
        (payload, None) on success or (None, error_message).
    """
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None, "Authorization header required"

    try:
        payload = jwt.decode(auth_header[7:], SECRET_KEY, algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        return None, "Token has expired"
    except jwt.InvalidTokenError:
        return None, "Invalid token"

    if payload.get("user_id") is None:
        return None, "Invalid token"
    return payload, None


def require_auth(f):
    """Decorator to require valid JWT authentication."""
    @wraps(f)
    def decorated(*args, **kwargs):
        payload, error = decode_bearer_token()
        if not payload:
            return jsonify({"error": error}), 401
        request.current_user = {
            "user_id": payload["user_id"],
            "username": payload.get("username"),
        }
        return f(*args, **kwargs)
    return decorated


def user_to_public(row) -> Dict[str, Any]:
    """Map (id, username, display_name, avatar_url, bio, location, website, created_at)."""
    return {
        "id": row[0],
        "username": row[1],
        "display_name": row[2] or row[1],
        "avatar_url": row[3],
        "bio": row[4],
        "location": row[5],
        "website": row[6],
        "created_at": row[7].isoformat() if row[7] else None,
    }


PUBLIC_USER_COLUMNS = "id, username, display_name, avatar_url, bio, location, website, created_at"


# ==================== ENDPOINTS ====================

@app.route("/health", methods=["GET"])
def health_check():
    status = {"service": "auth_service", "database": "unknown"}
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


@app.route("/auth/register", methods=["POST"])
@limiter.limit("3 per minute")
def register():
    data = request.get_json(silent=True)
    if not data:
        return jsonify({"error": "Request body is required"}), 400

    username = (data.get("username") or "").strip()
    password = data.get("password") or ""
    email = (data.get("email") or "").strip().lower()

    # Validate all inputs
    errors = []

    is_valid, error = validate_username(username)
    if not is_valid:
        errors.append(error)

    is_valid, error = validate_password(password)
    if not is_valid:
        errors.append(error)

    is_valid, error = validate_email(email)
    if not is_valid:
        errors.append(error)

    if errors:
        return jsonify({"error": "Validation failed", "details": errors}), 400

    hashed_password = generate_password_hash(password)

    try:
        conn = get_db_connection()
        try:
            cur = conn.cursor()
            cur.execute(
                f"""INSERT INTO users (username, email, password_hash)
                    VALUES (%s, %s, %s) RETURNING {PUBLIC_USER_COLUMNS};""",
                (username, email, hashed_password),
            )
            user = user_to_public(cur.fetchone())
            conn.commit()
            cur.close()
        finally:
            conn.close()
    except UniqueViolation:
        return jsonify({"error": "Username or email already in use"}), 409
    except Exception as e:
        logger.error(f"Registration error: {e}")
        return jsonify({"error": "Registration failed"}), 500

    logger.info(f"User registered: {username}")
    return jsonify({
        "message": "User created",
        "user": user,
        "access_token": generate_access_token(user["id"], user["username"]),
        "token_type": "Bearer",
        "expires_in": ACCESS_TOKEN_EXPIRY_MINUTES * 60
    }), 201


@app.route("/auth/login", methods=["POST"])
@limiter.limit("5 per minute")
def login():
    data = request.get_json(silent=True)
    if not data:
        return jsonify({"error": "Request body is required"}), 400

    email = (data.get("email") or "").strip().lower()
    password = data.get("password")

    if not email or not password:
        return jsonify({"error": "Missing credentials"}), 400

    try:
        conn = get_db_connection()
        try:
            cur = conn.cursor()
            cur.execute(
                f"SELECT password_hash, {PUBLIC_USER_COLUMNS} FROM users WHERE email = %s;",
                (email,),
            )
            row = cur.fetchone()
            cur.close()
        finally:
            conn.close()
    except Exception as e:
        logger.error(f"Login error: {e}")
        return jsonify({"error": "Login failed. Please try again."}), 500

    if row and check_password_hash(row[0], password):
        user = user_to_public(row[1:])
        return jsonify({
            "message": "Login successful",
            "user": user,
            "access_token": generate_access_token(user["id"], user["username"]),
            "token_type": "Bearer",
            "expires_in": ACCESS_TOKEN_EXPIRY_MINUTES * 60
        }), 200

    # Add delay on failed login to slow down brute-force attacks
    time.sleep(0.5)
    return jsonify({"error": "Invalid credentials"}), 401


@app.route("/auth/me", methods=["GET"])
@app.route("/auth/verify-token", methods=["POST"])
@limiter.limit("30 per minute")
def verify_token():
    """Resolve a bearer token to the identity it was issued for."""
    payload, error = decode_bearer_token()
    if not payload:
        return jsonify({"valid": False, "error": error}), 401

    return jsonify({
        "valid": True,
        "user_id": payload["user_id"],
        "username": payload.get("username"),
        "expires_at": payload.get("exp")
    }), 200


@app.route("/profile/<int:user_id>", methods=["GET"])
@limiter.limit("60 per minute")
def get_profile(user_id):
    """Public profile of a user."""
    try:
        conn = get_db_connection()
        try:
            cur = conn.cursor()
            cur.execute(f"SELECT {PUBLIC_USER_COLUMNS} FROM users WHERE id = %s", (user_id,))
            row = cur.fetchone()
            cur.close()
        finally:
            conn.close()
    except Exception as e:
        logger.error(f"Error fetching profile {user_id}: {e}")
        return jsonify({"error": "Failed to fetch profile"}), 500

    if not row:
        return jsonify({"error": "User not found"}), 404
    return jsonify({"profile": user_to_public(row)}), 200


@app.route("/profile", methods=["PATCH"])
@require_auth
@limiter.limit("10 per minute")
def update_profile():
    """Update the caller's display name, bio, location or website."""
    user = request.current_user
    data = request.get_json(silent=True) or {}

    updates = {}
    for field, max_length in PROFILE_FIELD_LIMITS.items():
        value = data.get(field)
        if value is None:
            continue
        if not isinstance(value, str):
            return jsonify({"error": f"{field} must be a string"}), 400
        value = value.strip()
        if len(value) > max_length:
            return jsonify({"error": f"{field} must not exceed {max_length} characters"}), 400
        updates[field] = value

    if not updates:
        return jsonify({"error": "No profile fields to update"}), 400

    assignments = ", ".join(f"{field} = %s" for field in updates)
    try:
        conn = get_db_connection()
        try:
            cur = conn.cursor()
            cur.execute(
                f"UPDATE users SET {assignments} WHERE id = %s RETURNING {PUBLIC_USER_COLUMNS}",
                (*updates.values(), user["user_id"]),
            )
            row = cur.fetchone()
            conn.commit()
            cur.close()
        finally:
            conn.close()
    except Exception as e:
        logger.error(f"Error updating profile for user {user['user_id']}: {e}")
        return jsonify({"error": "Failed to update profile"}), 500

    if not row:
        return jsonify({"error": "User not found"}), 404
    return jsonify({"profile": user_to_public(row)}), 200


@app.route("/profile/avatar", methods=["POST"])
@require_auth
@limiter.limit("5 per minute")
def upload_avatar():
    """Replace the caller's avatar (multipart field "avatar", at most 2MB)."""
    user = request.current_user

    try:
        avatar_url, avatar_handle = avatar_store.store(request.files.get("avatar"))
    except InvalidInput as e:
        return jsonify({"error": e.message}), 400
    except Exception as e:
        logger.error(f"Error saving avatar for user {user['user_id']}: {e}")
        return jsonify({"error": "Failed to upload avatar"}), 500

    row = None
    try:
        conn = get_db_connection()
        try:
            with conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT avatar_handle FROM users WHERE id = %s FOR UPDATE", (user["user_id"],))
                    previous = cur.fetchone()
                    if previous is not None:
                        cur.execute(
                            f"""UPDATE users SET avatar_url = %s, avatar_handle = %s
                                WHERE id = %s RETURNING {PUBLIC_USER_COLUMNS}""",
                            (avatar_url, avatar_handle, user["user_id"]),
                        )
                        row = cur.fetchone()
        finally:
            conn.close()
    except Exception as e:
        logger.error(f"Error updating avatar for user {user['user_id']}: {e}")
        avatar_store.remove(avatar_handle)
        return jsonify({"error": "Failed to upload avatar"}), 500

    if row is None:
        avatar_store.remove(avatar_handle)
        return jsonify({"error": "User not found"}), 404

    # Released only after the new avatar is committed
    if previous[0]:
        avatar_store.remove(previous[0])

    logger.info(f"Avatar updated for user {user['user_id']}")
    return jsonify({"avatar_url": avatar_url, "profile": user_to_public(row)}), 200


@app.route("/profile/avatars/<filename>")
def serve_avatar(filename):
    """Serve uploaded avatar images."""
    if not is_stored_filename(filename):
        return jsonify({"error": "Invalid filename"}), 400
    return send_from_directory(avatar_store.upload_folder, filename)


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=5000)
