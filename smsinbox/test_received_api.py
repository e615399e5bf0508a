"""
Tests for the /users/{user_id}/received endpoints.

Tests cover:
- Creating, fetching and fully updating a received message
- Marking read / unread, including 404 for missing or foreign messages
- Unread listing with pagination and unread count
- Last-by-date, by-origin, since and last-for-origin queries
- Storage failures mapped to 500
"""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from smsinbox.main import app
from smsinbox.storage import Base, PersistenceError, SqlAlchemyBackend, engine


ORIGIN = "+33600000000"
OTHER_ORIGIN = "+33611111111"
DESTINATION = "+33700000000"


def create_received(client, user_id: int, received_at: str, text: str, origin: str = ORIGIN, **extra) -> dict:
    """Helper to create a received message via the API."""
    body = {
        "received_at": received_at,
        "text": text,
        "origin": origin,
        "destination": DESTINATION,
        **extra,
    }
    response = client.post(f"/users/{user_id}/received", json=body)
    assert response.status_code == 201
    return response.json()


@pytest.fixture(scope="function")
def client():
    """Create test client with fresh database for each test."""
    Base.metadata.create_all(bind=engine)

    with TestClient(app) as test_client:
        yield test_client

    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def seeded_client(client):
    """
    User 1: m1, m2 from ORIGIN (unread), m3 from OTHER_ORIGIN (unread),
    m4 from ORIGIN (read). User 2: one unread message from ORIGIN.
    """
    create_received(client, 1, "2024-01-01T10:00:00Z", "m1")
    create_received(client, 1, "2024-01-01T15:00:00Z", "m2")
    create_received(client, 1, "2024-01-02T09:00:00Z", "m3", origin=OTHER_ORIGIN)
    create_received(client, 1, "2024-01-03T08:00:00Z", "m4", status="read")
    create_received(client, 2, "2024-01-02T12:00:00Z", "foreign")
    return client


class TestCreateAndUpdate:
    """Test record endpoints."""

    def test_create_returns_record(self, client):
        data = create_received(client, 1, "2024-01-01T10:00:00Z", "hello")

        assert data["id"] >= 1
        assert data["owner_user_id"] == 1
        assert data["text"] == "hello"
        assert data["origin"] == ORIGIN
        assert data["destination"] == DESTINATION
        assert data["status"] == "unread"
        assert data["is_command"] is False
        assert data["received_at"].startswith("2024-01-01T10:00:00")

    def test_create_with_status_and_command(self, client):
        data = create_received(client, 1, "2024-01-01T10:00:00Z", "STOP", status="read", is_command=True)

        assert data["status"] == "read"
        assert data["is_command"] is True

    def test_received_at_is_returned_in_utc_with_offset(self, client):
        data = create_received(client, 1, "2024-01-01T10:00:00+02:00", "hello")

        assert data["received_at"] == "2024-01-01T08:00:00Z"
        fetched = client.get(f"/users/1/received/{data['id']}").json()
        assert fetched["received_at"] == "2024-01-01T08:00:00Z"

    def test_create_rejects_unknown_status(self, client):
        response = client.post("/users/1/received", json={
            "received_at": "2024-01-01T10:00:00Z",
            "text": "hello",
            "origin": ORIGIN,
            "destination": DESTINATION,
            "status": "archived",
        })
        assert response.status_code == 422

    def test_create_rejects_missing_fields(self, client):
        response = client.post("/users/1/received", json={"text": "hello"})
        assert response.status_code == 422

    def test_get_received(self, client):
        created = create_received(client, 1, "2024-01-01T10:00:00Z", "hello")

        response = client.get(f"/users/1/received/{created['id']}")

        assert response.status_code == 200
        assert response.json() == created

    def test_get_other_users_message_is_404(self, client):
        created = create_received(client, 2, "2024-01-01T10:00:00Z", "hello")

        response = client.get(f"/users/1/received/{created['id']}")

        assert response.status_code == 404

    def test_update_rewrites_fields(self, client):
        created = create_received(client, 1, "2024-01-01T10:00:00Z", "hello")

        response = client.put(f"/users/1/received/{created['id']}", json={
            "received_at": "2024-02-01T08:00:00Z",
            "text": "edited",
            "origin": OTHER_ORIGIN,
            "destination": DESTINATION,
            "status": "read",
            "is_command": True,
        })

        assert response.status_code == 200
        data = response.json()
        assert data["id"] == created["id"]
        assert data["text"] == "edited"
        assert data["origin"] == OTHER_ORIGIN
        assert data["status"] == "read"
        assert data["is_command"] is True
        assert data["received_at"].startswith("2024-02-01T08:00:00")

    def test_update_missing_is_404(self, client):
        response = client.put("/users/1/received/999", json={
            "received_at": "2024-02-01T08:00:00Z",
            "text": "edited",
            "origin": ORIGIN,
            "destination": DESTINATION,
            "status": "read",
            "is_command": False,
        })
        assert response.status_code == 404


class TestStatus:
    """Test read/unread endpoints."""

    def test_mark_read_and_unread(self, client):
        created = create_received(client, 1, "2024-01-01T10:00:00Z", "hello")
        url = f"/users/1/received/{created['id']}"

        assert client.post(f"{url}/read").json() == {"status": "ok"}
        assert client.get(url).json()["status"] == "read"

        assert client.post(f"{url}/unread").status_code == 200
        assert client.get(url).json()["status"] == "unread"

    def test_mark_read_twice(self, client):
        created = create_received(client, 1, "2024-01-01T10:00:00Z", "hello")
        url = f"/users/1/received/{created['id']}"

        client.post(f"{url}/read")
        response = client.post(f"{url}/read")

        assert response.status_code == 200
        assert client.get(url).json()["status"] == "read"

    def test_mark_read_keeps_other_fields(self, client):
        created = create_received(client, 1, "2024-01-01T10:00:00Z", "hello", is_command=True)
        url = f"/users/1/received/{created['id']}"

        client.post(f"{url}/read")

        after = client.get(url).json()
        assert after.pop("status") == "read"
        created.pop("status")
        assert after == created

    def test_mark_read_missing_is_404(self, client):
        response = client.post("/users/1/received/999/read")
        assert response.status_code == 404

    def test_mark_read_foreign_message_is_404(self, seeded_client):
        foreign_id = seeded_client.get("/users/2/received/unread").json()["data"][0]["id"]

        response = seeded_client.post(f"/users/1/received/{foreign_id}/read")

        assert response.status_code == 404
        assert seeded_client.get("/users/2/received/unread/count").json() == {"count": 1}


class TestQueries:
    """Test listing endpoints."""

    def test_list_unread_newest_first(self, seeded_client):
        response = seeded_client.get("/users/1/received/unread")

        assert response.status_code == 200
        data = response.json()
        assert [m["text"] for m in data["data"]] == ["m3", "m2", "m1"]
        assert data["count"] == 3

    def test_list_unread_paginated(self, client):
        for i in range(25):
            create_received(client, 1, f"2024-01-01T10:{i:02d}:00Z", f"m{i}")

        response = client.get("/users/1/received/unread", params={"page_size": 10, "page": 1})

        texts = [m["text"] for m in response.json()["data"]]
        assert texts == [f"m{i}" for i in range(14, 4, -1)]

    def test_list_unread_rejects_bad_page_size(self, client):
        response = client.get("/users/1/received/unread", params={"page_size": 0, "page": 0})
        assert response.status_code == 422

    def test_count_all_statuses(self, seeded_client):
        assert seeded_client.get("/users/1/received/count").json() == {"count": 4}
        assert seeded_client.get("/users/2/received/count").json() == {"count": 1}
        assert seeded_client.get("/users/3/received/count").json() == {"count": 0}

    def test_count_unread(self, seeded_client):
        assert seeded_client.get("/users/1/received/unread/count").json() == {"count": 3}
        assert seeded_client.get("/users/3/received/unread/count").json() == {"count": 0}

    def test_last_by_date(self, seeded_client):
        response = seeded_client.get("/users/1/received/last", params={"n": 2})

        assert [m["text"] for m in response.json()["data"]] == ["m4", "m3"]

    def test_last_by_date_zero(self, seeded_client):
        response = seeded_client.get("/users/1/received/last", params={"n": 0})

        assert response.json() == {"data": [], "count": 0}

    def test_by_origin(self, seeded_client):
        response = seeded_client.get("/users/1/received", params={"origin": ORIGIN})

        assert [m["text"] for m in response.json()["data"]] == ["m1", "m2", "m4"]

    def test_since(self, seeded_client):
        response = seeded_client.get("/users/1/received", params={"since": "2024-01-01T15:00:00Z"})

        assert [m["text"] for m in response.json()["data"]] == ["m2", "m3", "m4"]

    def test_since_by_origin(self, seeded_client):
        response = seeded_client.get(
            "/users/1/received", params={"since": "2024-01-01T12:00:00Z", "origin": ORIGIN}
        )

        assert [m["text"] for m in response.json()["data"]] == ["m2", "m4"]

    def test_list_requires_a_filter(self, seeded_client):
        response = seeded_client.get("/users/1/received")
        assert response.status_code == 422

    def test_last_for_origin(self, seeded_client):
        response = seeded_client.get(f"/users/1/received/origins/{ORIGIN}/last")

        assert response.status_code == 200
        assert response.json()["text"] == "m4"

    def test_last_for_unknown_origin_is_404(self, seeded_client):
        response = seeded_client.get("/users/1/received/origins/+10000000000/last")
        assert response.status_code == 404

    def test_response_includes_request_id_header(self, seeded_client):
        response = seeded_client.get("/users/1/received/unread")
        assert "x-request-id" in response.headers


class TestStorageFailure:
    """PersistenceError is surfaced as a 500."""

    def test_create_storage_failure(self, client):
        with patch.object(SqlAlchemyBackend, "insert", side_effect=PersistenceError("insert failed")):
            response = client.post("/users/1/received", json={
                "received_at": "2024-01-01T10:00:00Z",
                "text": "hello",
                "origin": ORIGIN,
                "destination": DESTINATION,
            })

        assert response.status_code == 500
        assert response.json() == {"detail": "storage failure"}

    def test_query_storage_failure(self, client):
        with patch.object(SqlAlchemyBackend, "count", side_effect=PersistenceError("count failed")):
            response = client.get("/users/1/received/unread/count")

        assert response.status_code == 500


class TestHealthAndMetrics:
    def test_live(self, client):
        assert client.get("/health/live").json() == {"status": "ok", "reason": None}

    def test_ready(self, client):
        response = client.get("/health/ready")
        assert response.status_code == 200
        assert response.json()["status"] == "ready"

    def test_metrics_count_inbox_operations(self, client):
        create_received(client, 1, "2024-01-01T10:00:00Z", "hello")
        client.post("/users/1/received/999/read")

        body = client.get("/metrics").text

        assert 'inbox_operations_total{operation="create",result="created"}' in body
        assert 'inbox_operations_total{operation="mark_read",result="not_found"}' in body
        assert 'path="/users/{user_id}/received"' in body
