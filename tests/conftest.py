import datetime
import os

# Services read configuration at import time.
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-jwt-signing-only")
os.environ.pop("DATABASE_URL", None)

import jwt
import pytest

SECRET_KEY = os.environ["SECRET_KEY"]
NOW = datetime.datetime(2024, 5, 1, 12, 0, 0)


class FakeCursor:
    """
    Records executed SQL and hands back scripted results in order.

    Each fetchone()/fetchall() call consumes the next scripted result.
    """

    def __init__(self, conn):
        self.conn = conn
        self.rowcount = -1
        self.closed = False

    @property
    def executed(self):
        return self.conn.executed

    def execute(self, sql, params=None):
        self.conn.executed.append((" ".join(sql.split()), params))
        self.rowcount = self.conn.rowcounts.pop(0) if self.conn.rowcounts else -1

    def fetchone(self):
        return self.conn.results.pop(0)

    def fetchall(self):
        return self.conn.results.pop(0)

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


class FakeConnection:
    """Mimics psycopg2's connection: `with conn:` commits or rolls back."""

    def __init__(self, results=None, rowcounts=None):
        self.results = list(results or [])
        self.rowcounts = list(rowcounts or [])
        self.executed = []
        self.commits = 0
        self.rollbacks = 0
        self.closed = False

    def cursor(self):
        return FakeCursor(self)

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.commit()
        else:
            self.rollback()
        return False

    def sql(self, index):
        return self.executed[index][0]

    def params(self, index):
        return self.executed[index][1]


def make_token(user_id=1, username="alice", secret=SECRET_KEY, expires_in=3600):
    now = datetime.datetime.now(datetime.timezone.utc)
    return jwt.encode(
        {
            "user_id": user_id,
            "username": username,
            "exp": now + datetime.timedelta(seconds=expires_in),
            "iat": now,
        },
        secret,
        algorithm="HS256",
    )


def auth_header(user_id=1, username="alice"):
    return {"Authorization": f"Bearer {make_token(user_id, username)}"}


def meme_row(meme_id=1, user_id=1, username="alice", is_draft=False, upvotes=0,
             downvotes=0, comment_count=0, flag_count=0, is_flagged=False, views=0,
             tags=("cats",)):
    return (
        meme_id, user_id, username, f"/memes/uploads/{'a' * 32}.png", "TOP",
        "BOTTOM", list(tags), 40, "#FFFFFF", is_draft, upvotes, downvotes,
        comment_count, flag_count, is_flagged, views, NOW, NOW,
    )


def comment_row(comment_id=1, meme_id=1, user_id=2, username="bob", text="lol"):
    return (comment_id, meme_id, user_id, username, text, NOW)


@pytest.fixture
def fake_conn():
    return FakeConnection()
