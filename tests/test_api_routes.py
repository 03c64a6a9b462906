from vet_clinic.services import invoices as invoices_service


def _propose(client, start="2025-06-01T10:00", **extra):
    payload = {
        "patient_ref": "pet-1",
        "practitioner_ref": "vet-1",
        "starts_at": start,
        "service_kind": "CONSULTATION",
        "duration_minutes": 30,
    }
    payload.update(extra)
    return client.post("/api/appointments", json=payload, headers={"X-Actor-Id": "frontdesk-1"})


def test_propose_and_conflict(client):
    first = _propose(client)
    assert first.status_code == 201
    appt = first.get_json()["appointment"]
    assert appt["status"] == "PROPOSED"

    clash = _propose(client, "2025-06-01T10:15", patient_ref="pet-2")
    assert clash.status_code == 409
    body = clash.get_json()
    assert body["error"] == "slot_conflict"
    assert body["retryable"] is False
    assert body["details"]["conflicting_id"] == appt["id"]

    touching = _propose(client, "2025-06-01T10:30", patient_ref="pet-2")
    assert touching.status_code == 201


def test_validation_errors_are_400(client):
    resp = _propose(client, duration_minutes=0)
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "duration_not_positive"

    resp = _propose(client, service_kind="GROOMING")
    assert resp.status_code == 400
    assert "CONSULTATION" in resp.get_json()["details"]["allowed"]


def test_non_json_body_is_rejected(client):
    resp = client.post("/api/appointments", data="nope", content_type="text/plain")
    assert resp.status_code == 400
    assert resp.get_json()["success"] is False


def test_transition_flow(client):
    appt = _propose(client).get_json()["appointment"]
    url = f"/api/appointments/{appt['id']}/transition"
    for state in ("CONFIRMED", "IN_PROGRESS", "COMPLETED"):
        resp = client.post(url, json={"target_state": state})
        assert resp.status_code == 200
    resp = client.post(url, json={"target_state": "CONFIRMED"})
    assert resp.status_code == 409
    assert resp.get_json()["error"] == "transition_not_allowed"

    history = client.get(f"/api/appointments/{appt['id']}/history").get_json()["events"]
    assert len(history) == 4
    assert history[0]["actor_user_id"] == "frontdesk-1"


def test_unknown_appointment_is_404(client):
    resp = client.get("/api/appointments/missing")
    assert resp.status_code == 404
    assert resp.get_json()["error"] == "appointment_not_found"


def test_agenda_availability_and_delete(client):
    appt = _propose(client).get_json()["appointment"]
    agenda = client.get("/api/practitioners/vet-1/agenda?day=2025-06-01").get_json()["appointments"]
    assert [a["id"] for a in agenda] == [appt["id"]]

    free = client.get(
        "/api/practitioners/vet-1/availability?start=2025-06-01T09:00&end=2025-06-01T11:00"
    ).get_json()["free"]
    assert [(slot["starts_at"], slot["minutes"]) for slot in free] == [
        ("2025-06-01T09:00:00", 60),
        ("2025-06-01T10:30:00", 30),
    ]

    check = client.get("/api/practitioners/vet-1/available?starts_at=2025-06-01T10:15")
    assert check.get_json()["available"] is False

    assert client.delete(f"/api/appointments/{appt['id']}").status_code == 200
    listing = client.get("/api/appointments?day=2025-06-01").get_json()["appointments"]
    assert listing == []

    assert client.get("/api/practitioners/vet-1/agenda").status_code == 400


def test_reschedule_endpoint(client):
    appt = _propose(client).get_json()["appointment"]
    resp = client.post(f"/api/appointments/{appt['id']}/reschedule", json={"starts_at": "2025-06-01T15:00"})
    assert resp.status_code == 200
    assert resp.get_json()["appointment"]["starts_at"] == "2025-06-01T15:00:00"


def test_invoice_flow(client):
    created = client.post(
        "/api/invoices",
        json={"patient_ref": "pet-1", "owner_ref": "owner-1", "issued_by_ref": "staff-1"},
    )
    assert created.status_code == 201
    invoice = created.get_json()["invoice"]
    assert invoice["status"] == "PENDING"

    resp = client.post(
        f"/api/invoices/{invoice['id']}/items",
        json={"product_ref": "prod-vaccine", "quantity": 2, "unit_price": "50.00"},
    )
    assert resp.status_code == 201
    body = resp.get_json()["invoice"]
    assert (body["subtotal"], body["tax"], body["total"]) == ("100.00", "10.00", "110.00")

    over = client.post(
        f"/api/invoices/{invoice['id']}/payments",
        json={"amount": "150.00", "method": "CASH", "received_by_ref": "staff-1"},
    )
    assert over.status_code == 422
    assert over.get_json()["error"] == "payment_exceeds_balance"

    paid = client.post(
        f"/api/invoices/{invoice['id']}/payments",
        json={"amount": "110.00", "method": "CASH", "received_by_ref": "staff-1"},
    )
    assert paid.status_code == 201
    receipt = paid.get_json()["payment"]["receipt_number"]

    assert client.get(f"/api/invoices/{invoice['id']}/balance").get_json()["balance"] == "0.00"
    assert client.get(f"/api/invoices/by-number/{invoice['number']}").get_json()["invoice"]["status"] == "PAID"
    assert client.get(f"/api/receipts/{receipt}").get_json()["payment"]["amount"] == "110.00"
    assert len(client.get(f"/api/invoices/{invoice['id']}/payments").get_json()["payments"]) == 1

    frozen = client.post(
        f"/api/invoices/{invoice['id']}/items",
        json={"product_ref": "prod-extra", "quantity": 1, "unit_price": "5.00"},
    )
    assert frozen.status_code == 409
    assert frozen.get_json()["error"] == "invoice_paid"


def test_invoice_listing_filters(client):
    for patient in ("pet-1", "pet-2"):
        client.post(
            "/api/invoices",
            json={"patient_ref": patient, "owner_ref": "owner-1", "issued_by_ref": "staff-1"},
        )
    assert len(client.get("/api/invoices?owner=owner-1").get_json()["invoices"]) == 2
    assert len(client.get("/api/invoices?patient=pet-2").get_json()["invoices"]) == 1
    assert client.get("/api/invoices?outstanding=1").get_json()["invoices"] == []
    assert client.get("/api/invoices").status_code == 400


def test_write_rate_limit(make_app):
    app = make_app(RATELIMIT_ENABLED=True, API_WRITE_RATE_LIMIT="2 per minute")
    client = app.test_client()
    codes = [
        client.post("/api/invoices", json={"patient_ref": "p", "owner_ref": "o", "issued_by_ref": "s"}).status_code
        for _ in range(3)
    ]
    assert codes == [201, 201, 429]


def test_oversized_numbers_are_400(client):
    invoice = client.post(
        "/api/invoices",
        json={"patient_ref": "pet-1", "owner_ref": "owner-1", "issued_by_ref": "staff-1"},
    ).get_json()["invoice"]

    huge_qty = client.post(
        f"/api/invoices/{invoice['id']}/items",
        json={"product_ref": "prod-a", "quantity": 10**27, "unit_price": "1.00"},
    )
    assert huge_qty.status_code == 400
    assert huge_qty.get_json()["error"] == "line_total_too_large"

    client.post(
        f"/api/invoices/{invoice['id']}/items",
        json={"product_ref": "prod-a", "quantity": 1, "unit_price": "10.00"},
    )
    huge_amount = client.post(
        f"/api/invoices/{invoice['id']}/payments",
        json={"amount": "1e30", "method": "CASH", "received_by_ref": "staff-1"},
    )
    assert huge_amount.status_code == 400
    assert huge_amount.get_json()["error"] == "amount_too_large"

    long_slot = _propose(client, duration_minutes=10**10)
    assert long_slot.status_code == 400
    assert long_slot.get_json()["error"] == "duration_too_long"

    end_of_time = _propose(client, "9999-12-31T23:50")
    assert end_of_time.status_code == 400
    assert end_of_time.get_json()["error"] == "starts_at_invalid"


def test_ledger_report_endpoints(client, monkeypatch):
    monkeypatch.setattr(invoices_service, "_stamp", lambda: "2025-06-01T09:00:00+00:00")
    invoice = client.post(
        "/api/invoices",
        json={"patient_ref": "pet-1", "owner_ref": "owner-1", "issued_by_ref": "staff-1", "encounter_ref": "enc-1"},
    ).get_json()["invoice"]
    client.post(
        f"/api/invoices/{invoice['id']}/items",
        json={"product_ref": "prod-vaccine", "quantity": 2, "unit_price": "50.00"},
    )
    client.post(
        f"/api/invoices/{invoice['id']}/payments",
        json={"amount": "110.00", "method": "CASH", "received_by_ref": "staff-1"},
    )

    assert client.get("/api/invoices/by-encounter/enc-1").get_json()["invoice"]["id"] == invoice["id"]
    assert client.get("/api/invoices/by-encounter/enc-2").status_code == 404
    assert len(client.get("/api/invoices?from=2025-06-01&to=2025-06-01").get_json()["invoices"]) == 1
    assert len(client.get("/api/payments?method=cash").get_json()["payments"]) == 1
    assert len(client.get("/api/payments?received_by=staff-1").get_json()["payments"]) == 1
    assert client.get("/api/payments?from=2025-06-02&to=2025-06-30").get_json()["payments"] == []
    assert client.get("/api/payments").status_code == 400

    report = client.get("/api/reports/ledger?from=2025-06-01&to=2025-06-30&method=CASH").get_json()["report"]
    assert (report["billed"], report["collected"], report["method_total"]) == ("110.00", "110.00", "110.00")
    backwards = client.get("/api/reports/ledger?from=2025-06-02&to=2025-06-01")
    assert backwards.status_code == 400
    assert backwards.get_json()["error"] == "range_invalid"
    assert client.get("/api/reports/ledger").status_code == 400
