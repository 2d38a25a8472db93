import importlib.util
import io
import os
import sys

import jwt
import psycopg2
import pytest
from psycopg2.errors import UniqueViolation
from werkzeug.security import generate_password_hash

from conftest import NOW, SECRET_KEY, FakeConnection, auth_header, make_token
from auth_service import app as auth_app
from meme_service.media import LocalMediaStore, is_stored_filename

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


def user_row(user_id=1, username="alice", display_name=None):
    return (user_id, username, display_name, "", "", "", "", NOW)


@pytest.fixture
def client(monkeypatch):
    auth_app.app.config["TESTING"] = True
    auth_app.limiter.enabled = False
    monkeypatch.setattr(auth_app, "SECRET_KEY", SECRET_KEY)
    monkeypatch.setattr(auth_app.time, "sleep", lambda seconds: None)
    with auth_app.app.test_client() as client:
        yield client


@pytest.fixture
def connect(monkeypatch):
    def install(results=None):
        conn = FakeConnection(results)
        monkeypatch.setattr(auth_app, "get_db_connection", lambda: conn)
        return conn
    return install


@pytest.mark.parametrize("username,expected", [
    ("bob", True), ("meme_lord_99", True), ("ab", False), ("x" * 31, False), ("bad name", False), ("", False),
])
def test_validate_username(username, expected):
    assert auth_app.validate_username(username)[0] is expected


@pytest.mark.parametrize("password,expected", [
    ("secret", True), ("short", False), ("", False), ("x" * 129, False),
])
def test_validate_password(password, expected):
    assert auth_app.validate_password(password)[0] is expected


def test_validate_email():
    assert auth_app.validate_email("a@example.com") == (True, None)
    assert auth_app.validate_email("not-an-email")[0] is False


def test_register_returns_token(client, connect):
    conn = connect(results=[user_row(user_id=4, username="bob")])

    response = client.post("/auth/register", json={
        "username": "bob", "email": "Bob@Example.com", "password": "hunter22"
    })

    assert response.status_code == 201
    body = response.get_json()
    assert body["user"]["id"] == 4
    assert body["user"]["display_name"] == "bob"
    payload = jwt.decode(body["access_token"], SECRET_KEY, algorithms=["HS256"])
    assert payload["user_id"] == 4
    assert payload["username"] == "bob"

    username, email, password_hash = conn.params(0)
    assert (username, email) == ("bob", "bob@example.com")
    assert password_hash != "hunter22"


def test_register_validation_errors(client, connect):
    conn = connect()
    response = client.post("/auth/register", json={"username": "x", "email": "nope", "password": "1"})
    assert response.status_code == 400
    assert len(response.get_json()["details"]) == 3
    assert conn.executed == []


def test_register_duplicate_is_conflict(client, monkeypatch):
    class DuplicateCursor:
        def execute(self, sql, params=None):
            raise UniqueViolation("duplicate key value violates unique constraint")

    conn = FakeConnection()
    conn.cursor = DuplicateCursor
    monkeypatch.setattr(auth_app, "get_db_connection", lambda: conn)

    response = client.post("/auth/register", json={
        "username": "bob", "email": "bob@example.com", "password": "hunter22"
    })

    assert response.status_code == 409
    assert conn.closed


def test_login(client, connect):
    stored = generate_password_hash("hunter22")
    connect(results=[(stored, *user_row(user_id=4, username="bob"))])

    response = client.post("/auth/login", json={"email": "bob@example.com", "password": "hunter22"})

    assert response.status_code == 200
    payload = jwt.decode(response.get_json()["access_token"], SECRET_KEY, algorithms=["HS256"])
    assert payload["user_id"] == 4


def test_login_wrong_password(client, connect):
    connect(results=[(generate_password_hash("hunter22"), *user_row())])
    response = client.post("/auth/login", json={"email": "alice@example.com", "password": "wrong"})
    assert response.status_code == 401
    assert response.get_json() == {"error": "Invalid credentials"}


def test_login_unknown_email(client, connect):
    connect(results=[None])
    response = client.post("/auth/login", json={"email": "ghost@example.com", "password": "whatever"})
    assert response.status_code == 401


def test_login_missing_fields(client, connect):
    connect()
    assert client.post("/auth/login", json={"email": "a@example.com"}).status_code == 400


def test_verify_token(client):
    response = client.get("/auth/me", headers=auth_header(user_id=4, username="bob"))
    assert response.status_code == 200
    body = response.get_json()
    assert (body["valid"], body["user_id"], body["username"]) == (True, 4, "bob")


def test_verify_token_rejects_bad_tokens(client):
    assert client.post("/auth/verify-token").status_code == 401
    expired = {"Authorization": f"Bearer {make_token(expires_in=-5)}"}
    response = client.post("/auth/verify-token", headers=expired)
    assert response.status_code == 401
    assert response.get_json()["error"] == "Token has expired"


def test_get_profile(client, connect):
    connect(results=[user_row(user_id=4, username="bob", display_name="Bobby")])
    response = client.get("/profile/4")
    assert response.status_code == 200
    assert response.get_json()["profile"]["display_name"] == "Bobby"


def test_get_missing_profile(client, connect):
    connect(results=[None])
    assert client.get("/profile/404").status_code == 404


def test_update_profile(client, connect):
    conn = connect(results=[user_row(user_id=4, username="bob", display_name="Bobby")])

    response = client.patch("/profile", json={"display_name": " Bobby ", "bio": "memes"},
                            headers=auth_header(user_id=4, username="bob"))

    assert response.status_code == 200
    assert conn.sql(0).startswith("UPDATE users SET display_name = %s, bio = %s WHERE id = %s")
    assert conn.params(0) == ("Bobby", "memes", 4)
    assert conn.commits == 1


def test_update_profile_rejects_long_fields(client, connect):
    connect()
    response = client.patch("/profile", json={"bio": "x" * 501}, headers=auth_header())
    assert response.status_code == 400


def test_update_profile_requires_auth(client, connect):
    connect()
    assert client.patch("/profile", json={"bio": "hi"}).status_code == 401


# ==================== STARTUP ====================

def test_users_table_created_on_import(monkeypatch):
    conn = FakeConnection()
    monkeypatch.setenv("DATABASE_URL", "postgresql://localhost/memeshare")
    monkeypatch.setattr(psycopg2, "connect", lambda dsn: conn)

    spec = importlib.util.spec_from_file_location("auth_service_startup", auth_app.__file__)
    module = importlib.util.module_from_spec(spec)
    monkeypatch.setitem(sys.modules, "auth_service_startup", module)
    spec.loader.exec_module(module)

    assert conn.sql(0).startswith("CREATE TABLE IF NOT EXISTS users")
    assert "avatar_handle" in conn.sql(0)
    assert conn.commits == 1
    assert conn.closed


# ==================== AVATAR ====================

@pytest.fixture
def avatar_store(monkeypatch, tmp_path):
    store = LocalMediaStore(str(tmp_path), "/profile/avatars", auth_app.MAX_AVATAR_SIZE)
    monkeypatch.setattr(auth_app, "avatar_store", store)
    return store


def avatar_row(user_id, url):
    return (user_id, "bob", None, url, "", "", "", NOW)


def stored_files(store):
    return sorted(os.listdir(store.upload_folder))


def test_upload_avatar_replaces_previous(client, connect, avatar_store, tmp_path):
    previous = "d" * 32 + ".png"
    (tmp_path / previous).write_bytes(PNG_BYTES)
    conn = connect(results=[(previous,), avatar_row(4, "/profile/avatars/new.png")])

    response = client.post(
        "/profile/avatar",
        data={"avatar": (io.BytesIO(PNG_BYTES), "me.png")},
        headers=auth_header(user_id=4, username="bob"),
        content_type="multipart/form-data",
    )

    assert response.status_code == 200
    avatar_url = response.get_json()["avatar_url"]
    handle = avatar_url.rsplit("/", 1)[1]
    assert avatar_url.startswith("/profile/avatars/")
    assert is_stored_filename(handle)
    assert stored_files(avatar_store) == [handle]
    assert "FOR UPDATE" in conn.sql(0)
    assert conn.params(1) == (avatar_url, handle, 4)
    assert conn.commits == 1


def test_upload_avatar_rejects_disguised_file(client, connect, avatar_store):
    conn = connect()
    response = client.post(
        "/profile/avatar",
        data={"avatar": (io.BytesIO(b"<?php echo 1; ?>"), "me.png")},
        headers=auth_header(user_id=4),
        content_type="multipart/form-data",
    )
    assert response.status_code == 400
    assert response.get_json() == {"error": "File content does not match declared type"}
    assert conn.executed == []


def test_upload_avatar_size_limit(client, connect, avatar_store):
    connect()
    too_big = PNG_BYTES + b"\x00" * (2 * 1024 * 1024)
    response = client.post(
        "/profile/avatar",
        data={"avatar": (io.BytesIO(too_big), "me.png")},
        headers=auth_header(user_id=4),
        content_type="multipart/form-data",
    )
    assert response.status_code == 400
    assert response.get_json() == {"error": "Image size should be less than 2MB"}
    assert stored_files(avatar_store) == []


def test_upload_avatar_database_failure_discards_file(client, avatar_store, monkeypatch):
    def broken():
        raise RuntimeError("connection refused")
    monkeypatch.setattr(auth_app, "get_db_connection", broken)

    response = client.post(
        "/profile/avatar",
        data={"avatar": (io.BytesIO(PNG_BYTES), "me.png")},
        headers=auth_header(user_id=4),
        content_type="multipart/form-data",
    )

    assert response.status_code == 500
    assert stored_files(avatar_store) == []


def test_upload_avatar_unknown_user(client, connect, avatar_store):
    connect(results=[None])
    response = client.post(
        "/profile/avatar",
        data={"avatar": (io.BytesIO(PNG_BYTES), "me.png")},
        headers=auth_header(user_id=404),
        content_type="multipart/form-data",
    )
    assert response.status_code == 404
    assert stored_files(avatar_store) == []


def test_upload_avatar_requires_auth(client, connect, avatar_store):
    connect()
    response = client.post(
        "/profile/avatar",
        data={"avatar": (io.BytesIO(PNG_BYTES), "me.png")},
        content_type="multipart/form-data",
    )
    assert response.status_code == 401
