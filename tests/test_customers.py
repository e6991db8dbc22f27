"""Tests for the customer and meter endpoints."""

from decimal import Decimal

from utilitrack.config import today


def customer_payload(**overrides):
    payload = {
        "first_name": "Brian",
        "last_name": "Kamau",
        "customer_type": "Commercial",
        "email": "brian@kamau-traders.co.ke",
        "phone": "0722000111",
        "address": "Tom Mboya Street",
        "city": "Nairobi",
        "registration_date": "2026-02-01",
    }
    payload.update(overrides)
    return payload


class TestCustomers:
    def test_create_get_update(self, client) -> None:
        created = client.post("/api/customers", json=customer_payload())
        assert created.status_code == 201
        customer = created.json()["data"]
        assert customer["status"] == "Active"

        fetched = client.get(f"/api/customers/{customer['id']}").json()
        assert fetched["success"] is True
        assert fetched["data"]["email"] == "brian@kamau-traders.co.ke"

        updated = client.put(f"/api/customers/{customer['id']}", json={"city": "Mombasa", "status": "Suspended"})
        assert updated.status_code == 200
        assert updated.json()["data"]["city"] == "Mombasa"
        assert updated.json()["data"]["status"] == "Suspended"

    def test_validation(self, client) -> None:
        bad_email = client.post("/api/customers", json=customer_payload(email="not-an-email"))
        assert bad_email.status_code == 400
        assert bad_email.json()["success"] is False

        bad_type = client.post("/api/customers", json=customer_payload(customer_type="Alien"))
        assert bad_type.status_code == 400

        missing_name = client.post("/api/customers", json=customer_payload(first_name=""))
        assert missing_name.status_code == 400

        assert client.put("/api/customers/1", json={}).status_code == 400

    def test_missing_customer(self, client) -> None:
        response = client.get("/api/customers/404")
        assert response.status_code == 404
        assert response.json() == {"success": False, "message": "Customer not found"}

    def test_list_filters_and_count(self, client, make_customer) -> None:
        make_customer(first_name="Grace", last_name="Njeri", customer_type="Residential")
        make_customer(first_name="Kisumu", last_name="Water Works", customer_type="Government", city="Kisumu")
        make_customer(first_name="Old", last_name="Account", status="Inactive")

        assert client.get("/api/customers").json()["count"] == 3
        assert client.get("/api/customers", params={"search": "njeri"}).json()["count"] == 1
        assert client.get("/api/customers", params={"search": "kisumu"}).json()["count"] == 1
        assert client.get("/api/customers", params={"type": "Government"}).json()["count"] == 1
        assert client.get("/api/customers", params={"status": "Inactive"}).json()["count"] == 1

        stats = client.get("/api/customers/stats/count").json()["data"]
        assert stats["total"] == 3
        assert stats["active"] == 2
        assert stats["inactive"] == 1
        assert stats["by_type"]["Residential"] == 2

    def test_delete(self, client, make_customer, make_meter) -> None:
        free = make_customer()
        assert client.delete(f"/api/customers/{free}").status_code == 200
        assert client.get(f"/api/customers/{free}").status_code == 404

        with_meter = make_customer()
        make_meter(customer_id=with_meter)
        response = client.delete(f"/api/customers/{with_meter}")
        assert response.status_code == 409
        assert "meters" in response.json()["message"]

    def test_null_fields(self, client, make_customer) -> None:
        customer_id = make_customer()

        response = client.put(f"/api/customers/{customer_id}", json={"first_name": None})
        assert response.status_code == 400
        assert response.json()["message"].startswith("first_name")
        assert client.put(f"/api/customers/{customer_id}", json={"status": None}).status_code == 400

        cleared = client.put(f"/api/customers/{customer_id}", json={"email": None})
        assert cleared.status_code == 200
        assert cleared.json()["data"]["email"] is None
        assert cleared.json()["data"]["first_name"] == "Amina"

    def test_customer_with_connection_cannot_be_deleted(self, client, make_connection) -> None:
        connection = make_connection()
        response = client.delete(f"/api/customers/{connection['customer_id']}")
        assert response.status_code == 409
        assert "service connections" in response.json()["message"]


class TestMeters:
    def test_create_and_list(self, client, make_customer) -> None:
        customer_id = make_customer()

        response = client.post(
            "/api/meters",
            json={
                "customer_id": customer_id,
                "utility_type": "Water",
                "meter_number": "WTR-0001",
                "installation_date": "2026-03-01",
                "initial_reading": "12.5",
            },
        )
        assert response.status_code == 201
        meter = response.json()["data"]
        assert meter["utility_type"] == "Water"
        assert meter["unit_of_measurement"] == "m3"
        assert Decimal(meter["initial_reading"]) == Decimal("12.5")
        assert meter["customer_name"] == "Amina Otieno"

        assert client.get("/api/meters", params={"utility_type": "Water"}).json()["count"] == 1
        assert client.get(f"/api/meters/customer/{customer_id}").json()["count"] == 1
        assert client.get("/api/meters/customer/9999").status_code == 404

    def test_duplicate_meter_number(self, client, make_customer) -> None:
        customer_id = make_customer()
        payload = {"customer_id": customer_id, "utility_type": "Gas", "meter_number": "GAS-1"}

        assert client.post("/api/meters", json=payload).status_code == 201
        assert client.post("/api/meters", json=payload).status_code == 409

    def test_inactive_customer_cannot_get_meter(self, client, make_customer) -> None:
        customer_id = make_customer(status="Inactive")
        response = client.post(
            "/api/meters",
            json={"customer_id": customer_id, "utility_type": "Gas", "meter_number": "GAS-2"},
        )
        assert response.status_code == 400

    def test_status_and_summary(self, client, make_meter) -> None:
        meter_id = make_meter()
        make_meter(utility_type="Water")

        response = client.patch(f"/api/meters/{meter_id}/status", json={"status": "Faulty"})
        assert response.status_code == 200
        assert response.json()["data"]["status"] == "Faulty"

        assert client.patch(f"/api/meters/{meter_id}/status", json={"status": "Melted"}).status_code == 400

        summary = client.get("/api/meters/stats/summary").json()["data"]
        assert summary["total_meters"] == 2
        assert summary["by_status"] == {"Active": 1, "Faulty": 1}
        assert summary["by_utility"]["Electricity"] == 1
        assert summary["by_utility"]["Gas"] == 0

    def test_initial_reading_locked_after_readings(self, client, make_meter, make_reading) -> None:
        meter_id = make_meter()
        assert client.put(f"/api/meters/{meter_id}", json={"initial_reading": "5"}).status_code == 200

        make_reading(meter_id, 50)
        response = client.put(f"/api/meters/{meter_id}", json={"initial_reading": "10"})
        assert response.status_code == 400

    def test_null_meter_fields(self, client, make_meter) -> None:
        meter_id = make_meter()

        response = client.put(f"/api/meters/{meter_id}", json={"meter_number": None})
        assert response.status_code == 400
        assert response.json()["message"].startswith("meter_number")
        assert client.put(f"/api/meters/{meter_id}", json={"notes": None}).status_code == 200

    def test_record_maintenance(self, client, make_meter) -> None:
        meter_id = make_meter()
        make_meter()
        assert client.get("/api/meters/stats/summary").json()["data"]["never_maintained"] == 2

        response = client.patch(
            f"/api/meters/{meter_id}/maintenance",
            json={"maintenance_date": "2026-06-15", "notes": "Seal replaced"},
        )
        assert response.status_code == 200
        meter = response.json()["data"]
        assert meter["last_maintenance_date"] == "2026-06-15"
        assert meter["notes"] == "Seal replaced"

        # No body: stamped today, notes untouched.
        again = client.patch(f"/api/meters/{meter_id}/maintenance").json()["data"]
        assert again["last_maintenance_date"] == today().isoformat()
        assert again["notes"] == "Seal replaced"

        assert client.get("/api/meters/stats/summary").json()["data"]["never_maintained"] == 1
        assert client.patch("/api/meters/9999/maintenance").status_code == 404

        early = client.patch(f"/api/meters/{meter_id}/maintenance", json={"maintenance_date": "2025-12-31"})
        assert early.status_code == 400

    def test_delete_meter(self, client, make_meter, make_reading) -> None:
        unused = make_meter()
        assert client.delete(f"/api/meters/{unused}").json() == {
            "success": True,
            "message": "Meter deleted successfully",
        }
        assert client.get(f"/api/meters/{unused}").status_code == 404
        assert client.delete(f"/api/meters/{unused}").status_code == 404

        read = make_meter()
        make_reading(read, 10)
        response = client.delete(f"/api/meters/{read}")
        assert response.status_code == 409
        assert "Removed" in response.json()["message"]

    def test_meter_on_a_connection(self, client, make_connection) -> None:
        connection = make_connection(utility_type="Water")
        payload = {
            "customer_id": connection["customer_id"],
            "utility_type": "Water",
            "connection_id": connection["id"],
            "meter_number": "WTR-0100",
        }

        response = client.post("/api/meters", json=payload)
        assert response.status_code == 201
        assert response.json()["data"]["connection_number"] == connection["connection_number"]
        assert client.get(f"/api/meters/connection/{connection['id']}").json()["count"] == 1
        assert client.get("/api/meters/connection/9999").status_code == 404

        wrong_utility = client.post(
            "/api/meters", json=dict(payload, utility_type="Gas", meter_number="GAS-0100")
        )
        assert wrong_utility.status_code == 400

        missing = client.post("/api/meters", json=dict(payload, connection_id=9999, meter_number="WTR-0101"))
        assert missing.status_code == 404

        disconnected = make_connection(
            customer_id=connection["customer_id"], utility_type="Gas", status="Disconnected"
        )
        response = client.post(
            "/api/meters",
            json=dict(payload, utility_type="Gas", connection_id=disconnected["id"], meter_number="GAS-0101"),
        )
        assert response.status_code == 400
        assert "disconnected" in response.json()["message"]
