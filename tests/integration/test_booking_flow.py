# tests/integration/test_booking_flow.py

import re


def _buyer():
    return {"name": "Ada Buyer", "email": "ada@example.com", "phone": "555-0100"}


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200


def test_hold_commit_check_in_flow(client, catalog, gateway):
    perf = catalog["performance_id"]
    seat = catalog["seats"]["A5"]

    hold = client.post(
        f"/performances/{perf}/holds",
        json={"seat_id": seat, "session_id": "buyer-1"},
    )
    assert hold.status_code == 200
    assert hold.json()["renewed"] is False

    denied = client.post(
        f"/performances/{perf}/holds",
        json={"seat_id": seat, "session_id": "buyer-2"},
    )
    assert denied.status_code == 409
    assert denied.json()["detail"]["code"] == "SEAT_HELD_BY_OTHER"
    assert denied.json()["detail"]["seat_ids"] == [seat]

    seats = client.get(f"/performances/{perf}/availability", params={"session_id": "buyer-1"})
    assert seats.json()["seats"][seat] == "held_by_me"

    committed = client.post(
        f"/performances/{perf}/bookings",
        json={"session_id": "buyer-1", "seat_ids": [seat], "buyer": _buyer()},
    )
    assert committed.status_code == 201
    body = committed.json()
    assert re.fullmatch(r"TB-[0-9A-Z]{8}", body["reference"])
    assert body["status"] == "confirmed"
    assert body["method"] == "online"
    assert body["total_amount"] == "46.13"
    assert body["payment_status"] == "recorded"
    assert body["warnings"] == []
    assert len(body["tickets"]) == 1

    # The confirmation went out as a background task after the response.
    assert [sent["booking_reference"] for sent in gateway.sent] == [body["reference"]]

    availability = client.get(f"/performances/{perf}/availability").json()
    assert availability["seats"][seat] == "booked"
    assert availability["summary"]["booked"] == 1

    reference = body["reference"]
    fetched = client.get(f"/bookings/{reference}")
    assert fetched.status_code == 200
    assert fetched.json()["notification_status"] == "sent"

    first = client.post(f"/bookings/{reference}/check-in", json={"agent_id": "agent-7"})
    assert first.status_code == 200
    assert first.json()["already_checked_in"] is False
    assert first.json()["booking"]["status"] == "checked_in"

    second = client.post(f"/bookings/{reference}/check-in", json={"agent_id": "agent-7"})
    assert second.status_code == 200
    assert second.json()["already_checked_in"] is True
    assert (
        second.json()["booking"]["tickets"][0]["checked_in_at"]
        == first.json()["booking"]["tickets"][0]["checked_in_at"]
    )


def test_commit_without_hold_is_conflict(client, catalog):
    perf = catalog["performance_id"]
    response = client.post(
        f"/performances/{perf}/bookings",
        json={
            "session_id": "buyer-1",
            "seat_ids": [catalog["seats"]["A1"]],
            "buyer": _buyer(),
        },
    )

    assert response.status_code == 409
    detail = response.json()["detail"]
    assert detail["code"] == "SEAT_NOT_HELD"
    assert detail["seat_ids"] == [catalog["seats"]["A1"]]


def test_box_office_sale_and_cancel(client, catalog):
    perf = catalog["performance_id"]
    seat_ids = [catalog["seats"]["B1"], catalog["seats"]["B2"]]

    sale = client.post(
        f"/box-office/performances/{perf}/bookings",
        json={"seat_ids": seat_ids, "buyer": _buyer(), "agent_id": "agent-7"},
    )
    assert sale.status_code == 201
    assert sale.json()["method"] == "box_office"
    reference = sale.json()["reference"]

    again = client.post(
        f"/box-office/performances/{perf}/bookings",
        json={"seat_ids": seat_ids[:1], "buyer": _buyer()},
    )
    assert again.status_code == 409
    assert again.json()["detail"]["code"] == "SEAT_ALREADY_BOOKED"

    cancelled = client.post(f"/bookings/{reference}/cancel")
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "cancelled"

    seats = client.get(f"/performances/{perf}/availability").json()["seats"]
    assert all(seats[seat_id] == "available" for seat_id in seat_ids)

    refund = client.post(f"/bookings/{reference}/refund")
    assert refund.status_code == 409
    assert refund.json()["detail"]["code"] == "INVALID_STATE_TRANSITION"


def test_release_holds(client, catalog):
    perf = catalog["performance_id"]
    for label in ("A1", "A2"):
        client.post(
            f"/performances/{perf}/holds",
            json={"seat_id": catalog["seats"][label], "session_id": "buyer-1"},
        )

    single = client.delete(
        f"/performances/{perf}/holds/{catalog['seats']['A1']}",
        params={"session_id": "buyer-1"},
    )
    assert single.json() == {"released": 1}

    rest = client.delete(f"/performances/{perf}/holds", params={"session_id": "buyer-1"})
    assert rest.json() == {"released": 1}


def test_seat_map_is_ordered(client, catalog):
    response = client.get(f"/performances/{catalog['performance_id']}/seats")
    assert response.status_code == 200
    labels = [f"{seat['row_label']}{seat['seat_number']}" for seat in response.json()]
    assert labels == ["A1", "A2", "A3", "A4", "A5", "B1", "B2", "B3", "B4", "B5"]
    assert response.json()[-1]["status"] == "unavailable"


def test_unknown_resources_are_404(client):
    assert client.get("/performances/nope/availability").status_code == 404
    missing = client.get("/bookings/TB-MISSING0")
    assert missing.status_code == 404
    assert missing.json()["detail"]["code"] == "BOOKING_NOT_FOUND"


def test_invalid_buyer_is_rejected(client, catalog):
    response = client.post(
        f"/box-office/performances/{catalog['performance_id']}/bookings",
        json={"seat_ids": [catalog["seats"]["A1"]], "buyer": {"name": "X", "email": "nope"}},
    )
    assert response.status_code == 422


def test_outbox_listing_and_retry(client, catalog):
    perf = catalog["performance_id"]
    client.post(
        f"/box-office/performances/{perf}/bookings",
        json={"seat_ids": [catalog["seats"]["A3"]], "buyer": _buyer()},
    )

    published = client.get("/outbox/events", params={"status_filter": "PUBLISHED"}).json()
    assert len(published) == 1
    assert published[0]["event_type"] == "BOOKING_CONFIRMED"

    retried = client.post(f"/outbox/events/{published[0]['id']}/retry")
    assert retried.status_code == 200
    assert retried.json()["attempts"] == 1

    assert client.post("/outbox/events/nope/retry").status_code == 404


def test_user_booking_history(client, catalog):
    perf = catalog["performance_id"]
    seat = catalog["seats"]["A2"]
    client.post(
        f"/performances/{perf}/holds",
        json={"seat_id": seat, "session_id": "buyer-1", "user_id": "user-1"},
    )
    committed = client.post(
        f"/performances/{perf}/bookings",
        json={
            "session_id": "buyer-1",
            "seat_ids": [seat],
            "buyer": _buyer(),
            "user_id": "user-1",
        },
    )
    assert committed.status_code == 201

    history = client.get("/users/user-1/bookings")
    assert history.status_code == 200
    assert [booking["reference"] for booking in history.json()] == [
        committed.json()["reference"]
    ]
    assert client.get("/users/user-2/bookings").json() == []


def test_box_office_sales_listing(client, catalog):
    perf = catalog["performance_id"]
    client.post(
        f"/performances/{perf}/holds",
        json={"seat_id": catalog["seats"]["A1"], "session_id": "buyer-1"},
    )
    client.post(
        f"/performances/{perf}/bookings",
        json={"session_id": "buyer-1", "seat_ids": [catalog["seats"]["A1"]], "buyer": _buyer()},
    )
    sale = client.post(
        f"/box-office/performances/{perf}/bookings",
        json={"seat_ids": [catalog["seats"]["B3"]], "buyer": _buyer(), "agent_id": "agent-7"},
    )

    listed = client.get(f"/box-office/performances/{perf}/bookings", params={"limit": 500})
    assert listed.status_code == 200
    assert [booking["reference"] for booking in listed.json()] == [sale.json()["reference"]]
    assert listed.json()[0]["method"] == "box_office"

    missing = client.get("/box-office/performances/nope/bookings")
    assert missing.status_code == 404
    assert missing.json()["detail"]["code"] == "PERFORMANCE_NOT_FOUND"


def test_booking_lookup_after_sale(client, catalog, clock):
    sale = client.post(
        f"/box-office/performances/{catalog['performance_id']}/bookings",
        json={"seat_ids": [catalog["seats"]["B4"]], "buyer": _buyer()},
    )
    reference = sale.json()["reference"]
    clock.advance(days=1)

    fetched = client.get(f"/bookings/{reference}")

    assert fetched.status_code == 200
    assert fetched.json()["reference"] == reference
    assert fetched.json()["status"] == "confirmed"
