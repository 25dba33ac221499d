"""Operator endpoints: templates, generation, ad-hoc events and remediation."""

import pytest

from tinkertank.models import OrderStatus


@pytest.fixture
def template_payload(location, camp_product):
    return {
        "name": "January Robotics",
        "product_id": camp_product.id,
        "location_id": location.id,
        "start_date": "2026-01-05",
        "end_date": "2026-01-12",
        "start_time": "09:00:00",
        "end_time": "15:00:00",
    }


class TestTemplates:
    def test_create_and_generate(self, client, template_payload):
        created = client.post("/api/admin/templates", json=template_payload)
        assert created.status_code == 201
        template_id = created.json()["id"]

        first = client.post(f"/api/admin/templates/{template_id}/generate")
        again = client.post(f"/api/admin/templates/{template_id}/generate")

        assert first.status_code == 200
        assert first.json()["created_count"] == 6
        assert again.json()["created_count"] == 0
        assert len(again.json()["skipped"]) == 6

    def test_invalid_weekdays_rejected(self, client, template_payload):
        response = client.post(
            "/api/admin/templates", json={**template_payload, "weekdays": [7]}
        )
        assert response.status_code == 422

    def test_unknown_fields_rejected(self, client, template_payload):
        response = client.post(
            "/api/admin/templates", json={**template_payload, "colour": "blue"}
        )
        assert response.status_code == 422

    def test_generate_unknown_template(self, client):
        response = client.post("/api/admin/templates/01NOTEMPLATE00000000000000/generate")
        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "TEMPLATE_NOT_FOUND"


class TestEvents:
    def test_create_event_on_closure_day(self, client, location, camp_product):
        response = client.post(
            "/api/admin/events",
            json={
                "title": "Australia Day Camp",
                "product_id": camp_product.id,
                "location_id": location.id,
                "day": "2026-01-26",
                "start_time": "09:00:00",
                "end_time": "15:00:00",
            },
        )
        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "CLOSURE_DAY"

    def test_create_event(self, client, location, camp_product):
        response = client.post(
            "/api/admin/events",
            json={
                "title": "Robotics",
                "product_id": camp_product.id,
                "location_id": location.id,
                "day": "2026-07-06",
                "start_time": "09:00:00",
                "end_time": "15:00:00",
            },
        )
        assert response.status_code == 201
        # AEST in July
        assert response.json()["start_utc"] == "2026-07-05T23:00:00Z"


class TestReconciliation:
    def test_reconcile_order_and_list_flags(self, client, make_paid_order):
        order = make_paid_order(["2026-01-05"])

        response = client.post(f"/api/admin/orders/{order.id}/reconcile")

        assert response.status_code == 200
        items = response.json()["items"]
        assert items[0]["status"] == "event_not_found"
        assert items[0]["event_id"] is None

        flags = client.get("/api/admin/reconciliation/flags", params={"kind": "EVENT_NOT_FOUND"})
        assert flags.status_code == 200
        assert flags.json()["count"] == 1
        assert flags.json()["flags"][0]["booking_id"] == items[0]["booking_id"]

    def test_reconcile_unpaid_order(self, client, make_paid_order):
        order = make_paid_order(["2026-01-05"], status=OrderStatus.PENDING)
        response = client.post(f"/api/admin/orders/{order.id}/reconcile")
        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "ORDER_NOT_PAID"

    def test_backfill_events(self, client, make_paid_order, make_event):
        order = make_paid_order(["2026-01-05"])
        client.post(f"/api/admin/orders/{order.id}/reconcile")
        event = make_event("2026-01-05")

        response = client.post("/api/admin/reconciliation/backfill-events")

        assert response.status_code == 200
        assert response.json()["scanned"] == 1
        assert len(response.json()["linked"]) == 1
        detail = client.get(f"/api/calendar/events/{event.id}").json()
        assert detail["booked_count"] == 1

    def test_resolve_flag(self, client, make_paid_order):
        order = make_paid_order(["2026-01-05"])
        client.post(f"/api/admin/orders/{order.id}/reconcile")
        flag_id = client.get("/api/admin/reconciliation/flags").json()["flags"][0]["id"]

        response = client.post(f"/api/admin/reconciliation/flags/{flag_id}/resolve")

        assert response.status_code == 200
        assert response.json()["id"] == flag_id
        assert response.json()["resolved_at"] is not None
        assert client.get("/api/admin/reconciliation/flags").json()["count"] == 0

    def test_resolve_unknown_flag(self, client):
        response = client.post("/api/admin/reconciliation/flags/01NOFLAG000000000000000000/resolve")
        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "FLAG_NOT_FOUND"
