# Import testing tools
from decimal import Decimal

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from turf_booking import models
from turf_booking.dependencies import get_payment_gateway
from turf_booking.main import app

from conftest import PLAYER_ID, create_test_token


def request_booking(client, slot_id, headers):
    return client.post("/bookings/", json={"slot_id": slot_id}, headers=headers)


def pay(client, gateway, booking_response, headers, payment_id="pay_1"):
    order_id = booking_response.json()["order_handle"]["order_id"]
    return client.post(
        "/payments/verify",
        json={"order_id": order_id, "payment_id": payment_id, "signature": gateway.sign(order_id, payment_id)},
        headers=headers,
    )


def test_request_booking_success(client: TestClient, player_headers, make_slot, db_session: Session):
    slot = make_slot(price="1000.00")

    response = request_booking(client, slot.id, player_headers)

    assert response.status_code == 201
    data = response.json()
    assert "booking_id" in data
    assert data["order_handle"]["order_id"] == "order_1"
    assert Decimal(data["order_handle"]["amount"]) == Decimal("1000.00")
    assert data["order_handle"]["currency"] == "INR"

    booking = db_session.get(models.Booking, data["booking_id"])
    assert booking.status == "pending"
    assert booking.user_id == PLAYER_ID


def test_request_booking_conflict(client: TestClient, player_headers, make_slot):
    slot = make_slot()
    assert request_booking(client, slot.id, player_headers).status_code == 201

    other_player = {"Authorization": create_test_token("player-2", "player")}
    response = request_booking(client, slot.id, other_player)

    assert response.status_code == 409
    assert response.json()["code"] == "slot_not_available"


def test_request_booking_unknown_slot(client: TestClient, player_headers):
    response = request_booking(client, 555555, player_headers)
    assert response.status_code == 404
    assert response.json()["code"] == "slot_not_found"


def test_request_booking_requires_player_role(client: TestClient, owner_headers, make_slot):
    response = request_booking(client, make_slot().id, owner_headers)
    assert response.status_code == 403


def test_request_booking_no_auth(client: TestClient, make_slot):
    response = client.post("/bookings/", json={"slot_id": make_slot().id})
    assert response.status_code in (401, 403)
    assert response.json() == {"detail": "Not authenticated"}


def test_request_booking_bad_token(client: TestClient, make_slot):
    response = client.post("/bookings/", json={"slot_id": make_slot().id}, headers={"Authorization": "Bearer nope"})
    assert response.status_code == 401


def test_request_booking_without_gateway(client: TestClient, player_headers, make_slot, db_session: Session):
    slot = make_slot()
    app.dependency_overrides[get_payment_gateway] = lambda: None

    response = request_booking(client, slot.id, player_headers)

    assert response.status_code == 503
    assert response.json()["code"] == "payment_gateway_unavailable"
    db_session.refresh(slot)
    assert slot.is_available is True


def test_request_booking_gateway_failure_releases_slot(
        client: TestClient, gateway, player_headers, make_slot, db_session: Session
):
    slot = make_slot()
    gateway.fail_orders = True

    response = request_booking(client, slot.id, player_headers)

    assert response.status_code == 502
    db_session.refresh(slot)
    assert slot.is_available is True


def test_read_user_bookings(client: TestClient, player_headers, make_slot):
    request_booking(client, make_slot().id, player_headers)
    request_booking(client, make_slot().id, player_headers)
    request_booking(client, make_slot().id, {"Authorization": create_test_token("player-2", "player")})

    response = client.get("/bookings/", headers=player_headers)

    assert response.status_code == 200
    data = response.json()
    assert isinstance(data, list)
    assert len(data) == 2
    assert all(b["user_id"] == PLAYER_ID for b in data)


def test_read_user_bookings_filtered_by_status(client: TestClient, gateway, player_headers, make_slot):
    first = request_booking(client, make_slot().id, player_headers)
    request_booking(client, make_slot().id, player_headers)
    pay(client, gateway, first, player_headers)

    response = client.get("/bookings/", params={"status": "confirmed"}, headers=player_headers)

    data = response.json()
    assert len(data) == 1
    assert data[0]["id"] == first.json()["booking_id"]


def test_read_owner_bookings(client: TestClient, player_headers, owner_headers, make_slot):
    request_booking(client, make_slot().id, player_headers)
    request_booking(client, make_slot(owner_id="owner-2").id, player_headers)

    response = client.get("/bookings/owner", headers=owner_headers)

    assert response.status_code == 200
    assert len(response.json()) == 1


def test_read_owner_bookings_requires_owner_role(client: TestClient, player_headers):
    assert client.get("/bookings/owner", headers=player_headers).status_code == 403


def test_player_cancel(client: TestClient, gateway, player_headers, make_slot, db_session: Session):
    slot = make_slot(price="1000.00")
    booking = request_booking(client, slot.id, player_headers)
    pay(client, gateway, booking, player_headers)
    booking_id = booking.json()["booking_id"]

    response = client.post(f"/bookings/{booking_id}/cancel", headers=player_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["message"] == "Booking cancelled successfully"
    assert data["status"] == "cancelled_by_user"
    assert Decimal(data["refund_amount"]) == Decimal("950.00")
    assert data["refund_issued"] is True
    db_session.refresh(slot)
    assert slot.is_available is True


def test_player_cancel_twice(client: TestClient, gateway, player_headers, make_slot):
    booking = request_booking(client, make_slot().id, player_headers)
    pay(client, gateway, booking, player_headers)
    booking_id = booking.json()["booking_id"]
    client.post(f"/bookings/{booking_id}/cancel", headers=player_headers)

    response = client.post(f"/bookings/{booking_id}/cancel", headers=player_headers)

    assert response.status_code == 404
    assert response.json()["code"] == "booking_not_found_or_already_cancelled"


def test_player_abandon_unpaid_booking(client: TestClient, player_headers, make_slot, db_session: Session):
    slot = make_slot()
    booking_id = request_booking(client, slot.id, player_headers).json()["booking_id"]

    response = client.post(f"/bookings/{booking_id}/abandon", headers=player_headers)

    assert response.status_code == 200
    assert response.json()["refund_amount"] is None
    db_session.refresh(slot)
    assert slot.is_available is True


def test_owner_cancel(client: TestClient, gateway, player_headers, owner_headers, make_slot):
    booking = request_booking(client, make_slot(price="1000.00").id, player_headers)
    pay(client, gateway, booking, player_headers)
    booking_id = booking.json()["booking_id"]

    response = client.post(f"/bookings/{booking_id}/owner-cancel", headers=owner_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["message"] == "Booking cancelled by owner"
    assert data["status"] == "cancelled_by_owner"
    assert Decimal(data["refund_amount"]) == Decimal("1000.00")
    assert gateway.refunds == [("pay_1", Decimal("1000.00"))]


def test_owner_cancel_someone_elses_booking(client: TestClient, gateway, player_headers, make_slot):
    booking = request_booking(client, make_slot().id, player_headers)
    pay(client, gateway, booking, player_headers)
    other_owner = {"Authorization": create_test_token("owner-2", "owner")}

    response = client.post(f"/bookings/{booking.json()['booking_id']}/owner-cancel", headers=other_owner)

    assert response.status_code == 403
    assert response.json()["code"] == "not_authorized_or_booking_not_found"


def test_owner_cancel_already_cancelled(client: TestClient, player_headers, owner_headers, make_slot):
    booking_id = request_booking(client, make_slot().id, player_headers).json()["booking_id"]
    client.post(f"/bookings/{booking_id}/owner-cancel", headers=owner_headers)

    response = client.post(f"/bookings/{booking_id}/owner-cancel", headers=owner_headers)

    assert response.status_code == 409
    assert response.json()["code"] == "booking_already_cancelled"


def test_read_root(client: TestClient):
    assert client.get("/").json() == {"message": "Welcome to the Turf Booking Service"}
