import itertools
import os
import tempfile

# Settings are read at import time, so they must be in place before the app is imported.
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="library-uploads-")
os.environ.pop("ADMIN_EMAIL", None)
os.environ.pop("ADMIN_PASSWORD", None)

import pytest
from fastapi.testclient import TestClient

import auth_utils
import crud
import main
from database import db
from notifier import get_notifier
from storage import LocalBlobStore, get_blob_store


class FakeNotifier:
    """Records outgoing mail instead of sending it. Addresses in `fail_for` report failure."""

    def __init__(self):
        self.sent = []
        self.fail_for = set()

    def send(self, to, subject, html):
        if to in self.fail_for:
            return False
        self.sent.append({"to": to, "subject": subject, "html": html})
        return True


@pytest.fixture
def database(tmp_path):
    db.configure(f"sqlite:///{tmp_path / 'library-test.db'}")
    db.create_all()
    yield db
    db.configure(f"sqlite:///{tmp_path / 'unused.db'}")


@pytest.fixture
def session(database):
    s = database.session()
    yield s
    s.close()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def blob_store(tmp_path):
    return LocalBlobStore(root=str(tmp_path / "uploads"), base_url="/uploads")


@pytest.fixture
def client(database, notifier, blob_store):
    main.app.dependency_overrides[get_notifier] = lambda: notifier
    main.app.dependency_overrides[get_blob_store] = lambda: blob_store
    with TestClient(main.app) as c:
        yield c
    main.app.dependency_overrides.clear()


@pytest.fixture
def make_user(session):
    counter = itertools.count(1)

    def _make(role="User", permissions=None, email=None, password="password123", is_active=True, name=None):
        n = next(counter)
        return crud.add_user(
            email or f"{role.lower().replace(' ', '')}{n}@example.com",
            session,
            name=name or f"{role} {n}",
            password=password,
            role=role,
            permissions=permissions or [],
            is_active=is_active,
        )

    return _make


@pytest.fixture
def auth_headers():
    def _headers(user):
        return {"Authorization": f"Bearer {auth_utils.create_access_token(user)}"}
    return _headers


@pytest.fixture
def headers_for(make_user, auth_headers):
    def _headers(role="User", permissions=None):
        return auth_headers(make_user(role, permissions))
    return _headers


@pytest.fixture
def librarian(headers_for):
    return headers_for("Librarian")


@pytest.fixture
def admin(headers_for):
    return headers_for("Admin")


@pytest.fixture
def super_admin(headers_for):
    return headers_for("Super Admin")


@pytest.fixture
def make_book(client, librarian):
    counter = itertools.count(1)

    def _make(total_copies=1, **fields):
        n = next(counter)
        payload = {
            "accession_number": f"ACC-{n:04d}",
            "title": f"Law of Contract Vol. {n}",
            "author": "E. Sagay",
            "category": "Textbook",
            "total_copies": total_copies,
        }
        payload.update(fields)
        resp = client.post("/books", json=payload, headers=librarian)
        assert resp.status_code == 201, resp.text
        return resp.json()

    return _make


@pytest.fixture
def make_borrower(client, librarian):
    counter = itertools.count(1)

    def _make(**fields):
        n = next(counter)
        payload = {
            "name": f"Associate {n}",
            "role": "Associate",
            "phone": "+234-800-000-000",
            "email": f"associate{n}@example.com",
            "member_id": f"MEM-{n:04d}",
        }
        payload.update(fields)
        resp = client.post("/borrowers", json=payload, headers=librarian)
        assert resp.status_code == 201, resp.text
        return resp.json()

    return _make
