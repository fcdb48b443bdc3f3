import pytest
from fastapi.testclient import TestClient

from practice_room.config import Settings
from practice_room.main import create_app
from practice_room.store import InMemoryReservationBackend

from .conftest import TODAY


@pytest.fixture
def client():
    app = create_app(
        settings=Settings(database_url=None, database_key=None),
        backend=InMemoryReservationBackend(),
        today=lambda: TODAY,
    )
    with TestClient(app) as test_client:
        yield test_client


def book(client, day="2024-06-01", hour=9, user="Alice", session="default"):
    return client.post(
        "/reservations",
        json={"date": day, "hour": hour, "user": user},
        headers={"X-Session-Id": session},
    )


def test_session_defaults(client):
    response = client.get("/session")

    assert response.status_code == 200
    body = response.json()
    assert body["role"] == "user"
    assert body["active_user"] == "Guest"
    assert body["name_editable"] is True
    assert (body["year"], body["month"]) == (2024, 5)


def test_month_grid(client):
    book(client, day="2024-06-20", hour=9)
    book(client, day="2024-06-20", hour=10)

    response = client.get("/calendar/2024/6")

    assert response.status_code == 200
    cells = response.json()["cells"]
    assert len(cells) == 42
    assert cells[0]["date"] == "2024-05-26"
    june_20 = next(cell for cell in cells if cell["date"] == "2024-06-20")
    assert june_20["count"] == 2
    assert june_20["selectable"] is True


def test_invalid_month_is_bad_request(client):
    response = client.get("/calendar/2024/13")

    assert response.status_code == 400


def test_book_slot_and_conflict(client):
    response = book(client)
    assert response.status_code == 201
    created = response.json()
    assert created["user"] == "Alice"
    assert created["date"] == "2024-06-01"

    response = book(client, user="Bob")
    assert response.status_code == 409
    assert response.json() == {"detail": "slot taken"}


def test_conflict_across_sessions_is_caught_by_the_store(client):
    client.get("/calendar/2024/6", headers={"X-Session-Id": "tab-b"})
    assert book(client, user="Alice", session="tab-a").status_code == 201

    # tab-b's snapshot is stale, so the store rejects the insert
    response = book(client, user="Bob", session="tab-b")

    assert response.status_code == 502


def test_empty_name_is_rejected(client):
    response = book(client, user="  ")

    assert response.status_code == 400
    assert response.json()["detail"] == "empty name"


def test_day_view(client):
    book(client, day="2024-06-01", hour=14)
    client.get("/calendar/2024/6")

    response = client.get("/calendar/days/2024-06-01")

    assert response.status_code == 200
    slots = response.json()["slots"]
    assert len(slots) == 14
    booked = [slot for slot in slots if slot["status"] == "occupied"]
    assert booked[0]["slot_hour"] == 14
    assert booked[0]["time_label"] == "14:00 ~ 15:00"
    assert booked[0]["user"] == "Alice"


def test_past_day_cannot_be_opened(client):
    response = client.get("/calendar/days/2024-05-01")

    assert response.status_code == 400


def test_my_reservations_and_cancel(client):
    client.put("/session/name", json={"name": "Alice"})
    reservation_id = book(client, user="Alice").json()["id"]
    book(client, hour=10, user="Bob")

    mine = client.get("/reservations/mine").json()
    assert [r["id"] for r in mine] == [reservation_id]

    assert client.delete(f"/reservations/{reservation_id}").status_code == 204
    assert client.get("/reservations/mine").json() == []
    assert client.delete(f"/reservations/{reservation_id}").status_code == 404


def test_admin_rename_and_delete(client):
    reservation_id = book(client, user="Alice").json()["id"]

    session = client.put("/session/role", json={"role": "admin"}).json()
    assert session["active_user"] == "Admin"
    assert session["name_editable"] is False

    assert client.post(f"/admin/reservations/{reservation_id}/edit").status_code == 200
    response = client.patch(f"/admin/reservations/{reservation_id}", json={"user": ""})
    assert response.status_code == 400

    response = client.patch(f"/admin/reservations/{reservation_id}", json={"user": "Alicia"})
    assert response.status_code == 200
    assert response.json() == {"message": "Updated.", "id": reservation_id}

    client.get("/calendar/2024/6")
    slots = client.get("/calendar/days/2024-06-01").json()["slots"]
    assert slots[0]["user"] == "Alicia"

    assert client.delete(f"/admin/reservations/{reservation_id}").status_code == 204
    june_1 = client.get("/calendar/2024/6").json()["cells"][6]
    assert june_1["count"] == 0


def test_admin_actions_need_admin_role(client):
    reservation_id = book(client).json()["id"]

    assert client.delete(f"/admin/reservations/{reservation_id}").status_code == 400
    assert client.post(f"/admin/reservations/{reservation_id}/edit").status_code == 400


def test_name_is_locked_in_admin_mode(client):
    client.put("/session/role", json={"role": "admin"})

    response = client.put("/session/name", json={"name": "Mallory"})

    assert response.status_code == 400


def test_sessions_are_separate(client):
    client.put("/session/name", json={"name": "Alice"}, headers={"X-Session-Id": "a"})

    other = client.get("/session", headers={"X-Session-Id": "b"}).json()

    assert other["active_user"] == "Guest"


def test_day_of_another_month_needs_that_month_selected(client):
    book(client, day="2024-06-01", hour=14)

    # Session is still on May
    assert client.get("/calendar/days/2024-06-01").status_code == 400

    client.get("/calendar/2024/6")
    assert client.get("/calendar/days/2024-06-01").status_code == 200


def test_booking_does_not_change_the_selected_month(client):
    client.get("/calendar/2024/5")

    assert book(client, day="2024-06-20").status_code == 201

    session = client.get("/session").json()
    assert (session["year"], session["month"]) == (2024, 5)
    may_20 = next(
        cell for cell in client.get("/calendar/2024/5").json()["cells"] if cell["date"] == "2024-05-20"
    )
    assert may_20["count"] == 0


def test_rename_needs_admin_role(client):
    reservation_id = book(client).json()["id"]

    response = client.patch(f"/admin/reservations/{reservation_id}", json={"user": "Mallory"})

    assert response.status_code == 400
    client.get("/calendar/2024/6")
    assert client.get("/calendar/days/2024-06-01").json()["slots"][0]["user"] == "Alice"


@pytest.mark.parametrize("path", ["/calendar/1/1", "/calendar/9999/12", "/calendar/10000/1"])
def test_months_outside_the_calendar_are_bad_requests(client, path):
    assert client.get(path).status_code == 400


def test_least_recently_used_session_is_evicted():
    app = create_app(
        settings=Settings(database_url=None, database_key=None, max_sessions=3),
        backend=InMemoryReservationBackend(),
        today=lambda: TODAY,
    )
    with TestClient(app) as client:
        for tab in ["a", "b", "c"]:
            client.put("/session/name", json={"name": tab.upper()}, headers={"X-Session-Id": tab})
        # Touch "a" so "b" is now the oldest
        client.get("/session", headers={"X-Session-Id": "a"})
        client.get("/session", headers={"X-Session-Id": "d"})

        sessions = app.state.sessions
        assert len(sessions) == 3
        assert "b" not in sessions
        assert client.get("/session", headers={"X-Session-Id": "a"}).json()["active_user"] == "A"
        assert client.get("/session", headers={"X-Session-Id": "b"}).json()["active_user"] == "Guest"
        assert len(sessions) == 3
