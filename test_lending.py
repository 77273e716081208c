from datetime import datetime, timedelta

import pytest

import crud
import lending
from errors import Conflict, NoCopiesAvailable
from models import Book, Borrower, Lending, LendingStatus, utcnow
from schemas import BookUpdate, LendingCreate

FUTURE = "2099-01-01T00:00:00"
PAST = "2020-01-01T00:00:00"


def _borrow(client, headers, book, borrower, due=FUTURE):
    return client.post("/lendings", json={
        "book_id": book["id"], "borrower_id": borrower["id"], "due_date": due,
    }, headers=headers)


def _available(client, headers, book):
    return client.get(f"/books/{book['id']}", headers=headers).json()["available_copies"]


def test_effective_status_is_derived_from_due_date():
    now = datetime(2025, 6, 1, 12, 0)
    assert lending.effective_status("borrowed", now - timedelta(seconds=1), now) == "overdue"
    assert lending.effective_status("borrowed", now, now) == "borrowed"
    assert lending.effective_status("borrowed", now + timedelta(days=1), now) == "borrowed"
    assert lending.effective_status("returned", now - timedelta(days=9), now) == "returned"
    assert lending.effective_status("overdue", now + timedelta(days=1), now) == "overdue"


def test_three_copy_walkthrough(client, librarian, make_book, make_borrower):
    book = make_book(total_copies=3)
    borrowers = [make_borrower() for _ in range(4)]

    lendings = []
    for b in borrowers[:3]:
        resp = _borrow(client, librarian, book, b)
        assert resp.status_code == 201
        assert resp.json()["status"] == "borrowed"
        lendings.append(resp.json())
    assert _available(client, librarian, book) == 0

    resp = _borrow(client, librarian, book, borrowers[3])
    assert resp.status_code == 400
    assert resp.json()["error"] == "NoCopiesAvailable"
    assert _available(client, librarian, book) == 0

    resp = client.post("/lendings/return", json={"lending_id": lendings[0]["id"]}, headers=librarian)
    assert resp.status_code == 200
    assert resp.json()["status"] == "returned"
    assert resp.json()["return_date"] is not None
    assert _available(client, librarian, book) == 1

    # a second return neither succeeds nor restores another copy
    resp = client.post("/lendings/return", json={"lending_id": lendings[0]["id"]}, headers=librarian)
    assert resp.status_code == 409
    assert resp.json()["error"] == "AlreadyReturned"
    assert _available(client, librarian, book) == 1


def test_borrow_then_return_restores_stock(client, librarian, make_book, make_borrower):
    book = make_book(total_copies=2)
    record = _borrow(client, librarian, book, make_borrower()).json()
    assert _available(client, librarian, book) == 1
    assert record["book_title"] == book["title"]
    client.post("/lendings/return", json={"lending_id": record["id"]}, headers=librarian)
    assert _available(client, librarian, book) == 2


def test_borrow_unknown_book_or_borrower(client, librarian, make_book, make_borrower):
    book = make_book()
    borrower = make_borrower()
    assert _borrow(client, librarian, {"id": 999}, borrower).status_code == 404
    assert _borrow(client, librarian, book, {"id": 999}).status_code == 404
    assert _available(client, librarian, book) == 1


def test_return_unknown_lending(client, librarian):
    resp = client.post("/lendings/return", json={"lending_id": 12345}, headers=librarian)
    assert resp.status_code == 404


def test_offset_aware_due_date_is_stored_as_utc(client, librarian, make_book, make_borrower):
    resp = _borrow(client, librarian, make_book(), make_borrower(), due="2099-01-01T01:00:00+01:00")
    assert resp.status_code == 201
    assert resp.json()["due_date"].startswith("2099-01-01T00:00:00")


def test_last_copy_race_has_exactly_one_winner(database, session):
    book = Book(accession_number="RACE-1", title="Race", author="A", category="Textbook",
                total_copies=1, available_copies=1)
    borrower = Borrower(name="B", role="Intern", phone="1", member_id="RACE-B")
    session.add_all([book, borrower])
    session.commit()
    payload = LendingCreate(book_id=book.id, borrower_id=borrower.id, due_date=datetime(2099, 1, 1))

    other = database.session()
    try:
        # the second session still believes one copy is on the shelf
        assert other.get(Book, book.id).available_copies == 1
        lending.borrow_book(payload, session)
        with pytest.raises(NoCopiesAvailable):
            lending.borrow_book(payload, other)
    finally:
        other.close()

    session.expire_all()
    assert session.get(Book, book.id).available_copies == 0
    assert session.query(Lending).count() == 1


def test_stock_edit_keeps_concurrent_borrow(database, session):
    book = Book(accession_number="EDIT-1", title="Edit", author="A", category="Textbook",
                total_copies=1, available_copies=1)
    borrower = Borrower(name="B", role="Intern", phone="1", member_id="EDIT-B")
    session.add_all([book, borrower])
    session.commit()
    payload = LendingCreate(book_id=book.id, borrower_id=borrower.id, due_date=datetime(2099, 1, 1))

    editor = database.session()
    try:
        # the editor loads the book before the last copy goes out
        assert editor.get(Book, book.id).available_copies == 1
        lending.borrow_book(payload, session)
        edited = crud.update_book(book.id, BookUpdate(total_copies=2), editor)
        assert (edited.total_copies, edited.available_copies) == (2, 1)

        # an explicit count based on a stale read is refused
        lending.borrow_book(payload, session)
        with pytest.raises(Conflict):
            crud.update_book(book.id, BookUpdate(available_copies=2), editor)
    finally:
        editor.close()

    session.expire_all()
    stored = session.get(Book, book.id)
    assert (stored.total_copies, stored.available_copies) == (2, 0)


def test_return_never_exceeds_total(database, session):
    book = Book(accession_number="CLAMP-1", title="Clamp", author="A", category="Textbook",
                total_copies=1, available_copies=1)
    borrower = Borrower(name="B", role="Intern", phone="1", member_id="CLAMP-B")
    session.add_all([book, borrower])
    session.commit()
    record = lending.borrow_book(LendingCreate(book_id=book.id, borrower_id=borrower.id,
                                               due_date=datetime(2099, 1, 1)), session)

    # stock corrected by hand while the copy was out
    session.get(Book, book.id).available_copies = 1
    session.commit()

    lending.return_book(record.id, session)
    session.expire_all()
    assert session.get(Book, book.id).available_copies == 1
    assert session.get(Lending, record.id).status == LendingStatus.RETURNED


def test_listing_reports_derived_overdue(client, librarian, make_book, make_borrower):
    late = _borrow(client, librarian, make_book(), make_borrower(), due=PAST).json()
    on_time = _borrow(client, librarian, make_book(), make_borrower()).json()
    done = _borrow(client, librarian, make_book(), make_borrower()).json()
    client.post("/lendings/return", json={"lending_id": done["id"]}, headers=librarian)

    listing = client.get("/lendings", headers=librarian).json()
    assert listing["total"] == 3
    statuses = {row["id"]: row["status"] for row in listing["lendings"]}
    assert statuses == {late["id"]: "overdue", on_time["id"]: "borrowed", done["id"]: "returned"}

    overdue = client.get("/lendings", params={"status": "overdue"}, headers=librarian).json()
    assert [r["id"] for r in overdue["lendings"]] == [late["id"]]
    borrowed = client.get("/lendings", params={"status": "borrowed"}, headers=librarian).json()
    assert [r["id"] for r in borrowed["lendings"]] == [on_time["id"]]
    returned = client.get("/lendings", params={"status": "returned"}, headers=librarian).json()
    assert [r["id"] for r in returned["lendings"]] == [done["id"]]


def test_listing_joins_book_and_borrower(client, librarian, make_book, make_borrower):
    book = make_book(title="Criminal Procedure", author="Doherty")
    borrower = make_borrower(name="Ngozi Eze", role="Partner")
    _borrow(client, librarian, book, borrower)
    row = client.get("/lendings", headers=librarian).json()["lendings"][0]
    assert row["book_title"] == "Criminal Procedure"
    assert row["book_author"] == "Doherty"
    assert row["borrower_name"] == "Ngozi Eze"
    assert row["borrower_role"] == "Partner"


def test_notify_overdue_handles_each_lending_independently(client, librarian, notifier, session,
                                                          make_book, make_borrower):
    ok = _borrow(client, librarian, make_book(title="Torts"), make_borrower(email="ok@example.com"), due=PAST).json()
    failing = _borrow(client, librarian, make_book(), make_borrower(email="bounce@example.com"), due=PAST).json()
    no_mail = _borrow(client, librarian, make_book(), make_borrower(email=None), due=PAST).json()
    _borrow(client, librarian, make_book(), make_borrower(email="early@example.com"))
    notifier.fail_for.add("bounce@example.com")

    resp = client.post("/lendings/notify-overdue", headers=librarian)
    assert resp.status_code == 200
    body = resp.json()
    assert body["notified_count"] == 1
    assert body["failed_count"] == 1
    assert body["total_overdue"] == 3

    assert [m["to"] for m in notifier.sent] == ["ok@example.com"]
    assert "Torts" in notifier.sent[0]["subject"]

    session.expire_all()
    assert session.get(Lending, ok["id"]).status == "overdue"
    assert session.get(Lending, failing["id"]).status == "borrowed"
    assert session.get(Lending, no_mail["id"]).status == "borrowed"


def test_notify_overdue_with_nothing_overdue(client, librarian):
    body = client.post("/lendings/notify-overdue", headers=librarian).json()
    assert body == {"message": "No overdue books found", "notified_count": 0, "total_overdue": 0, "failed_count": 0}


def test_notify_overdue_requires_lendings_update(client, headers_for):
    resp = client.post("/lendings/notify-overdue", headers=headers_for("User"))
    assert resp.status_code == 403
    assert resp.json()["required"] == "lendings:update"


def test_notify_due_soon(client, librarian, notifier, make_book, make_borrower):
    soon = (utcnow() + timedelta(days=1)).isoformat()
    _borrow(client, librarian, make_book(), make_borrower(email="soon@example.com"), due=soon)
    _borrow(client, librarian, make_book(), make_borrower(email="later@example.com"))

    body = client.post("/lendings/notify-due-soon", headers=librarian).json()
    assert body["notified_count"] == 1
    assert body["total_due_soon"] == 1
    assert notifier.sent[0]["to"] == "soon@example.com"


def test_dashboard_stats(client, librarian, make_book, make_borrower):
    popular = make_book(title="Popular", total_copies=2)
    make_book(title="Idle")
    first = _borrow(client, librarian, popular, make_borrower()).json()
    client.post("/lendings/return", json={"lending_id": first["id"]}, headers=librarian)
    _borrow(client, librarian, popular, make_borrower(), due=PAST)

    stats = client.get("/dashboard/stats", headers=librarian).json()
    assert stats["total_books"] == 2
    assert stats["available_books"] == 2
    assert stats["total_borrowers"] == 2
    assert stats["active_lendings"] == 1
    assert stats["overdue_books"] == 1
    assert stats["most_borrowed_books"] == [
        {"book_id": popular["id"], "title": "Popular", "author": popular["author"], "count": 1},
    ]


def test_lending_permissions(client, headers_for, make_book, make_borrower):
    user = headers_for("User")
    assert client.get("/lendings", headers=user).status_code == 200
    resp = _borrow(client, user, make_book(), make_borrower())
    assert resp.status_code == 403
    assert resp.json()["required"] == "lendings:create"
