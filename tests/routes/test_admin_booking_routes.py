"""Operator endpoints for bookings, locations and students."""

import pytest


@pytest.fixture
def reconciled(client, make_event, make_paid_order):
    make_event("2026-01-05")
    order = make_paid_order(["2026-01-05"])
    items = client.post(f"/api/admin/orders/{order.id}/reconcile").json()["items"]
    return order, items[0]["booking_id"]


class TestBookings:
    def test_list_and_get(self, client, reconciled, student, location):
        _, booking_id = reconciled

        listing = client.get("/api/admin/bookings", params={"from_day": "2026-01-05"})
        detail = client.get(f"/api/admin/bookings/{booking_id}")

        assert listing.status_code == 200
        assert listing.json()["count"] == 1
        body = detail.json()
        assert body["id"] == booking_id
        assert body["student_name"] == student.name
        assert body["location_name"] == location.name
        assert body["status"] == "CONFIRMED"
        assert body["start_utc"] == "2026-01-04T22:00:00Z"
        assert body["total_price"] == 80.0

    def test_status_filter(self, client, reconciled):
        response = client.get("/api/admin/bookings", params={"status": "CANCELLED"})
        assert response.json()["count"] == 0

    def test_unknown_booking(self, client):
        response = client.get("/api/admin/bookings/01NOBOOKING000000000000000")
        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "BOOKING_NOT_FOUND"

    @pytest.mark.parametrize("status", ["COMPLETED", "NO_SHOW", "CANCELLED"])
    def test_update_status(self, client, reconciled, status):
        _, booking_id = reconciled
        response = client.put(f"/api/admin/bookings/{booking_id}", json={"status": status})
        assert response.status_code == 200
        assert response.json()["status"] == status

    def test_invalid_transition(self, client, reconciled):
        _, booking_id = reconciled
        client.delete(f"/api/admin/bookings/{booking_id}")

        response = client.put(f"/api/admin/bookings/{booking_id}", json={"status": "CONFIRMED"})

        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "INVALID_BOOKING_TRANSITION"

    def test_unknown_status_rejected(self, client, reconciled):
        _, booking_id = reconciled
        response = client.put(f"/api/admin/bookings/{booking_id}", json={"status": "LOST"})
        assert response.status_code == 422

    def test_delete_cancels_and_reconcile_rebooks(self, client, reconciled):
        order, booking_id = reconciled

        deleted = client.delete(f"/api/admin/bookings/{booking_id}")
        items = client.post(f"/api/admin/orders/{order.id}/reconcile").json()["items"]

        assert deleted.status_code == 200
        assert deleted.json()["status"] == "CANCELLED"
        assert deleted.json()["cancelled_at"] is not None
        assert items[0]["status"] == "linked"
        assert items[0]["booking_id"] != booking_id
        old = client.get(f"/api/admin/bookings/{booking_id}").json()
        assert old["status"] == "CANCELLED"


class TestLocations:
    def test_list_locations(self, client, location):
        response = client.get("/api/admin/locations")
        assert response.status_code == 200
        assert response.json()["locations"][0]["id"] == location.id
        assert response.json()["locations"][0]["timezone"] == "Australia/Sydney"

    def test_update_availability(self, client, location):
        response = client.put(
            f"/api/admin/locations/{location.id}/availability",
            json={"available_dates": ["2026-01-06", "2026-01-07"], "available_camp_types": ["day"]},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["available_dates"] == ["2026-01-06", "2026-01-07"]
        assert body["available_camp_types"] == ["day"]
        assert body["capacity"] == 20

    def test_unknown_camp_type_rejected(self, client, location):
        response = client.put(
            f"/api/admin/locations/{location.id}/availability",
            json={"available_camp_types": ["overnight"]},
        )
        assert response.status_code == 422

    def test_negative_capacity_rejected(self, client, location):
        response = client.put(
            f"/api/admin/locations/{location.id}/availability", json={"capacity": -1}
        )
        assert response.status_code == 422


class TestStudents:
    def test_list_students(self, client, reconciled, student):
        response = client.get("/api/admin/students", params={"parent_email": "PARENT@example.com"})
        assert response.status_code == 200
        students = response.json()["students"]
        assert [(s["id"], s["active_bookings"]) for s in students] == [(student.id, 1)]

    def test_unknown_parent(self, client, student):
        response = client.get("/api/admin/students", params={"parent_email": "nobody@example.com"})
        assert response.json()["count"] == 0
