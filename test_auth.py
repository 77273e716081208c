from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

import auth_utils
import config
import models
from errors import Unauthorized


def test_register_creates_plain_user(client):
    resp = client.post("/auth/register", json={"email": "clerk@example.com", "name": "Clerk", "password": "password123"})
    assert resp.status_code == 201
    body = resp.json()
    assert body["role"] == "User"
    assert "hashed_password" not in body

    dup = client.post("/auth/register", json={"email": "clerk@example.com", "name": "Clerk", "password": "password123"})
    assert dup.status_code == 409
    assert dup.json()["error"] == "Conflict"


def test_login_returns_token_usable_on_me(client, make_user):
    make_user("Librarian", email="lib@example.com", password="s3cretpass")
    resp = client.post("/auth/login", json={"email": "lib@example.com", "password": "s3cretpass"})
    assert resp.status_code == 200
    token = resp.json()["access_token"]
    assert resp.json()["role"] == "Librarian"

    me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["email"] == "lib@example.com"
    assert "lendings:create" in me.json()["permissions"]


def test_login_with_wrong_password_is_unauthorized(client, make_user):
    make_user(email="someone@example.com", password="rightpassword")
    resp = client.post("/auth/login", json={"email": "someone@example.com", "password": "wrongpassword"})
    assert resp.status_code == 401
    assert resp.json()["error"] == "Unauthorized"
    assert resp.headers["www-authenticate"] == "Bearer"


def test_missing_token_is_unauthorized(client):
    resp = client.get("/books")
    assert resp.status_code == 401
    assert resp.json()["error"] == "Unauthorized"


def test_garbage_token_is_unauthorized(client):
    resp = client.get("/books", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401


def test_expired_token_is_unauthorized(client, make_user):
    user = make_user("Super Admin")
    token = auth_utils.create_access_token(user, expires_delta=timedelta(minutes=-5))
    resp = client.get("/books", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 401


def test_authenticate_requires_both_claims():
    exp = datetime.now(timezone.utc) + timedelta(minutes=5)
    no_email = jwt.encode({"sub": "1", "exp": exp}, config.SECRET_KEY, algorithm=config.ALGORITHM)
    no_sub = jwt.encode({"email": "a@example.com", "exp": exp}, config.SECRET_KEY, algorithm=config.ALGORITHM)
    with pytest.raises(Unauthorized):
        auth_utils.authenticate(no_email)
    with pytest.raises(Unauthorized):
        auth_utils.authenticate(no_sub)
    with pytest.raises(Unauthorized):
        auth_utils.authenticate(None)

    ok = jwt.encode({"sub": "7", "email": "a@example.com", "exp": exp}, config.SECRET_KEY, algorithm=config.ALGORITHM)
    assert auth_utils.authenticate(ok) == auth_utils.Subject(id=7, email="a@example.com")


def test_token_signed_with_another_key_is_rejected():
    exp = datetime.now(timezone.utc) + timedelta(minutes=5)
    forged = jwt.encode({"sub": "1", "email": "a@example.com", "exp": exp}, "other-secret", algorithm="HS256")
    with pytest.raises(Unauthorized):
        auth_utils.authenticate(forged)


def test_forbidden_reports_required_and_held_permissions(client, make_user, auth_headers):
    librarian = make_user("Librarian")
    target = make_user("User")
    resp = client.delete(f"/users/{target.id}", headers=auth_headers(librarian))
    assert resp.status_code == 403
    body = resp.json()
    assert body["error"] == "Forbidden"
    assert body["required"] == "users:delete"
    assert "books:read" in body["has"]
    assert "users:delete" not in body["has"]


def test_explicit_grant_extends_role(client, make_user, auth_headers):
    librarian = make_user("Librarian", permissions=["users:delete"])
    target = make_user("User")
    resp = client.delete(f"/users/{target.id}", headers=auth_headers(librarian))
    assert resp.status_code == 204


def test_deleted_user_holds_no_permissions(client, make_user, auth_headers, session):
    user = make_user("Super Admin")
    headers = auth_headers(user)
    session.delete(user)
    session.commit()

    resp = client.get("/books", headers=headers)
    assert resp.status_code == 403
    assert resp.json()["has"] == []


def test_inactive_user_holds_no_permissions(client, make_user, auth_headers):
    user = make_user("Admin", is_active=False)
    resp = client.get("/books", headers=auth_headers(user))
    assert resp.status_code == 403


def test_role_change_applies_on_next_request(client, make_user, auth_headers, session):
    user = make_user("User")
    headers = auth_headers(user)
    assert client.get("/users", headers=headers).status_code == 403

    session.get(models.User, user.id).role = "Admin"
    session.commit()

    # same token, fresh permission lookup
    assert client.get("/users", headers=headers).status_code == 200


def test_logout(client):
    assert client.post("/auth/logout").json() == {"message": "Successfully logged out"}
