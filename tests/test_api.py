import pytest
from fastapi.testclient import TestClient

from api import create_app
from config import settings

HEADERS = {"X-API-Key": settings.api_key}


@pytest.fixture
def client(lib):
    return TestClient(create_app(lib))


@pytest.fixture
def member_id(client):
    response = client.post(
        "/members", headers=HEADERS,
        json={"full_name": "Ada Lovelace", "email": "ada@example.org", "member_type": "student"},
    )
    assert response.status_code == 201
    return response.json()["member_id"]


@pytest.fixture
def book_id(client):
    response = client.post(
        "/books", headers=HEADERS,
        json={"title": "Dune", "accession_number": "ACC-0001", "author": "Frank Herbert"},
    )
    assert response.status_code == 201
    return response.json()["book"]["id"]


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_register_member_returns_privileges(client, member_id):
    response = client.get(f"/members/{member_id}")
    assert response.status_code == 200
    body = response.json()
    assert body["max_books_allowed"] == 5
    assert body["fine_rate_per_day"] == "5"
    assert body["status"] == "active"


def test_write_with_invalid_api_key(client):
    response = client.post(
        "/members", headers={"X-API-Key": "invalid-key"},
        json={"full_name": "Mallory", "email": "mallory@example.org"},
    )
    assert response.status_code == 403


def test_unknown_member_is_404(client):
    assert client.get("/members/LIB-1999-99999").status_code == 404
    assert client.get("/circulation/members/LIB-1999-99999").status_code == 404


def test_bad_email_is_400(client):
    response = client.post("/members", headers=HEADERS, json={"full_name": "Bob", "email": "nope"})
    assert response.status_code == 400


def test_borrow_and_return_flow(client, member_id, book_id):
    lookup = client.get(f"/circulation/members/{member_id}").json()
    assert lookup["current_borrowings"] == 0
    assert client.get("/circulation/copies/ACC-0001").json()["status"] == "available"
    assert client.get("/circulation/returns/ACC-0001").status_code == 404

    response = client.post(
        "/circulation/borrow", headers=HEADERS, json={"member_id": member_id, "accession_number": "ACC-0001"}
    )
    assert response.status_code == 201
    loan = response.json()
    assert loan["return_date"] is None

    assert client.get("/circulation/returns/ACC-0001").json()["id"] == loan["id"]
    assert len(client.get("/borrowings").json()) == 1

    again = client.post(
        "/circulation/borrow", headers=HEADERS, json={"member_id": member_id, "accession_number": "ACC-0001"}
    )
    assert again.status_code == 409

    returned = client.post("/circulation/return", headers=HEADERS, json={"accession_number": "ACC-0001"})
    assert returned.status_code == 200
    assert returned.json()["days_overdue"] == 0
    assert returned.json()["fine"] is None

    second = client.post("/circulation/return", headers=HEADERS, json={"accession_number": "ACC-0001"})
    assert second.status_code == 409


def test_borrowings_rejects_unknown_filter(client):
    assert client.get("/borrowings", params={"status": "lost"}).status_code == 400


def test_fine_endpoints(client, lib, member_id):
    member = lib.members.require(member_id)
    fine = lib.fines.create_overdue_fine(member.id, None, 4, member.fine_rate_per_day)

    assert client.get("/fines/total-unpaid").json()["total"] == "20"
    assert [f["id"] for f in client.get("/fines", params={"unpaid": True}).json()] == [fine.id]

    waived = client.post(f"/fines/{fine.id}/waive", headers=HEADERS, json={"reason": "First offence"})
    assert waived.status_code == 200
    assert waived.json()["waived"] is True
    assert waived.json()["waiver_reason"] == "First offence"

    assert client.post(f"/fines/{fine.id}/pay", headers=HEADERS).status_code == 409
    assert client.post("/fines/999/pay", headers=HEADERS).status_code == 404


def test_reservation_endpoints(client, member_id, book_id):
    created = client.post("/reservations", headers=HEADERS, json={"member_id": member_id, "book_id": book_id})
    assert created.status_code == 201
    reservation_id = created.json()["id"]

    duplicate = client.post("/reservations", headers=HEADERS, json={"member_id": member_id, "book_id": book_id})
    assert duplicate.status_code == 409

    assert len(client.get("/reservations").json()) == 1
    cancelled = client.post(f"/reservations/{reservation_id}/cancel", headers=HEADERS)
    assert cancelled.json()["status"] == "cancelled"
    assert client.post(f"/reservations/{reservation_id}/fulfill", headers=HEADERS).status_code == 409


def test_catalog_endpoints(client, book_id):
    copy = client.post(f"/books/{book_id}/copies", headers=HEADERS, json={"accession_number": "ACC-0002"})
    assert copy.status_code == 201
    assert len(client.get(f"/books/{book_id}/copies").json()) == 2
    assert client.get("/books", params={"q": "herbert"}).json()[0]["title"] == "Dune"

    damaged = client.put("/copies/ACC-0002/status", headers=HEADERS, json={"status": "damaged"})
    assert damaged.json()["status"] == "damaged"
    assert client.put("/copies/ACC-0002/status", headers=HEADERS, json={"status": "borrowed"}).status_code == 409


def test_stats(client, member_id, book_id):
    stats = client.get("/stats").json()
    assert stats["total_copies"] == 1
    assert stats["active_members"] == 1
    assert stats["unpaid_fines_total"] == "0"
