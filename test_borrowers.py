def test_create_and_fetch_borrower(client, librarian, make_borrower):
    borrower = make_borrower(name="Ada Obi", member_id="MEM-ADA")
    resp = client.get(f"/borrowers/{borrower['id']}", headers=librarian)
    assert resp.status_code == 200
    assert resp.json()["name"] == "Ada Obi"


def test_duplicate_member_id_conflicts(client, librarian, make_borrower):
    make_borrower(member_id="MEM-1")
    resp = client.post("/borrowers", json={
        "name": "Someone", "role": "Intern", "phone": "123", "member_id": "MEM-1",
    }, headers=librarian)
    assert resp.status_code == 409


def test_borrower_email_is_optional(client, librarian):
    resp = client.post("/borrowers", json={
        "name": "No Mail", "role": "Staff", "phone": "123", "member_id": "MEM-NM",
    }, headers=librarian)
    assert resp.status_code == 201
    assert resp.json()["email"] is None


def test_search_by_name_email_or_member_id(client, librarian, make_borrower):
    make_borrower(name="Chidi Okafor", email="chidi@example.com", member_id="MEM-CH")
    make_borrower(name="Bola Ade", email="bola@example.com", member_id="MEM-BO")

    assert client.get("/borrowers", params={"search": "okafor"}, headers=librarian).json()["total"] == 1
    assert client.get("/borrowers", params={"search": "bola@"}, headers=librarian).json()["total"] == 1
    assert client.get("/borrowers", params={"search": "MEM-"}, headers=librarian).json()["total"] == 2


def test_summary_list_is_a_projection(client, librarian, make_borrower):
    make_borrower()
    rows = client.get("/borrowers/list", headers=librarian).json()
    assert len(rows) == 1
    assert set(rows[0]) == {"id", "name", "member_id", "role"}


def test_update_member_id_conflict(client, librarian, make_borrower):
    make_borrower(member_id="MEM-A")
    other = make_borrower(member_id="MEM-B")
    resp = client.put(f"/borrowers/{other['id']}", json={"member_id": "MEM-A"}, headers=librarian)
    assert resp.status_code == 409

    resp = client.put(f"/borrowers/{other['id']}", json={"phone": "555"}, headers=librarian)
    assert resp.status_code == 200
    assert resp.json()["phone"] == "555"


def test_delete_blocked_while_borrower_holds_books(client, librarian, admin, make_book, make_borrower):
    book = make_book()
    borrower = make_borrower()
    lending = client.post("/lendings", json={
        "book_id": book["id"], "borrower_id": borrower["id"], "due_date": "2099-01-01T00:00:00",
    }, headers=librarian).json()

    resp = client.delete(f"/borrowers/{borrower['id']}", headers=admin)
    assert resp.status_code == 409
    assert resp.json()["active_lendings"] == 1

    client.post("/lendings/return", json={"lending_id": lending["id"]}, headers=librarian)
    assert client.delete(f"/borrowers/{borrower['id']}", headers=admin).status_code == 200


def test_missing_borrower_is_not_found(client, librarian):
    assert client.get("/borrowers/404", headers=librarian).status_code == 404
