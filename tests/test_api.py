"""HTTP surface: idempotent commands and error rendering."""
from datetime import datetime, timedelta, timezone

CLIENT = {"X-Actor-Id": "client-1"}
PROVIDER = {"X-Actor-Id": "provider-1"}


def _create(client, **overrides):
    body = {
        "clientId": "client-1",
        "providerId": "provider-1",
        "tier": 2,
        "scheduledAt": (datetime.now(timezone.utc) + timedelta(days=2)).isoformat(),
        "price": 20000,
        "scope": "Rewire two bedroom sockets",
        "location": {"address": "4 Mill Lane", "latitude": -6.8, "longitude": 39.28},
        "paymentMethodRef": "pm_test",
    }
    body.update(overrides)
    return client.post("/api/v1/bookings", json=body, headers=CLIENT)


class TestBookingsAPI:

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}

    def test_create_and_read(self, client):
        r = _create(client)
        assert r.status_code == 200
        data = r.json()
        assert data["status"] == "requested"
        assert data["escrow"]["totalHeld"] == 0
        assert data["timeline"][0]["status"] == "requested"

        r = client.get(f"/api/v1/bookings/{data['id']}")
        assert r.status_code == 200
        assert r.json()["reference"] == data["reference"]

    def test_create_validation(self, client):
        assert _create(client, tier=7).status_code == 422
        assert _create(client, providerId="client-1").status_code == 400

    def test_missing_actor_is_unauthorized(self, client):
        r = client.post("/api/v1/bookings/whatever/confirm")
        assert r.status_code == 401

    def test_unknown_booking(self, client):
        r = client.get("/api/v1/bookings/nope")
        assert r.status_code == 404
        assert r.json()["code"] == "booking_not_found"

    def test_confirm_replay_with_same_key(self, client, gateway):
        booking_id = _create(client).json()["id"]
        headers = {**CLIENT, "Idempotency-Key": "confirm-1"}
        first = client.post(f"/api/v1/bookings/{booking_id}/confirm", headers=headers)
        second = client.post(f"/api/v1/bookings/{booking_id}/confirm", headers=headers)
        assert first.status_code == second.status_code == 200
        assert first.json() == second.json()
        assert first.json()["escrow"]["totalHeld"] == 20000
        assert first.json()["escrow"]["commitmentAmount"] == 5000
        assert len(gateway.captures) == 1

    def test_key_reused_for_other_command(self, client):
        booking_id = _create(client).json()["id"]
        headers = {**CLIENT, "Idempotency-Key": "k-1"}
        assert client.post(f"/api/v1/bookings/{booking_id}/confirm", headers=headers).status_code == 200
        r = client.post(f"/api/v1/bookings/{booking_id}/provider-accept", headers={**PROVIDER, "Idempotency-Key": "k-1"})
        assert r.status_code == 409
        assert r.json()["code"] == "idempotency_conflict"

    def test_invalid_transition_reports_current_status(self, client):
        booking_id = _create(client).json()["id"]
        client.post(f"/api/v1/bookings/{booking_id}/confirm", headers=CLIENT)
        r = client.post(f"/api/v1/bookings/{booking_id}/confirm", headers=CLIENT)
        assert r.status_code == 409
        assert r.json()["code"] == "invalid_transition"
        assert r.json()["status"] == "confirmed"

    def test_payment_failure_is_generic(self, client, gateway):
        booking_id = _create(client).json()["id"]
        gateway.fail_capture = True
        r = client.post(f"/api/v1/bookings/{booking_id}/confirm", headers=CLIENT)
        assert r.status_code == 402
        assert r.json()["detail"] == "Payment could not be processed"
        assert client.get(f"/api/v1/bookings/{booking_id}").json()["status"] == "requested"

    def test_arrival_flow_over_http(self, client):
        booking_id = _create(client).json()["id"]
        client.post(f"/api/v1/bookings/{booking_id}/confirm", headers=CLIENT)
        client.post(f"/api/v1/bookings/{booking_id}/provider-accept", headers=PROVIDER)
        r = client.post(f"/api/v1/bookings/{booking_id}/en-route", headers=PROVIDER)
        assert r.json()["status"] == "en_route"
        assert r.json()["otpExpiresAt"] is not None

        otp = client.post(f"/api/v1/bookings/{booking_id}/otp", headers=CLIENT).json()
        wrong = "000000" if otp["code"] != "000000" else "111111"
        r = client.post(f"/api/v1/bookings/{booking_id}/check-in", json={"code": wrong}, headers=PROVIDER)
        assert r.status_code == 422
        assert r.json()["code"] == "otp_invalid"

        r = client.post(f"/api/v1/bookings/{booking_id}/check-in", json={"code": otp["code"]}, headers=PROVIDER)
        assert r.status_code == 200
        assert r.json()["escrow"]["escrowStatus"] == "commitment_released"

        r = client.post(f"/api/v1/bookings/{booking_id}/complete", json={"notes": "all sockets live"}, headers=PROVIDER)
        assert r.json()["status"] == "observation"
        assert r.json()["scheduledRelease"]["deferred"] is False
        assert r.json()["observationEndsAt"] == r.json()["scheduledRelease"]["at"]

        r = client.post(
            f"/api/v1/bookings/{booking_id}/issues",
            json={"description": "one socket dead", "category": "incomplete_work"},
            headers=CLIENT,
        )
        assert r.status_code == 200
        case = r.json()["case"]
        assert r.json()["booking"]["status"] == "rectification"
        assert r.json()["booking"]["escrow"]["frozen"] is True

        r = client.post(f"/api/v1/issues/{case['id']}/withdraw", headers=CLIENT)
        assert r.json()["booking"]["status"] == "observation"

        r = client.post(f"/api/v1/bookings/{booking_id}/release", headers=CLIENT)
        assert r.json()["status"] == "released"
        assert r.json()["releaseKind"] == "early_released"

    def test_scope_change_and_admin_resolution(self, client, gateway):
        booking_id = _create(client).json()["id"]
        client.post(f"/api/v1/bookings/{booking_id}/confirm", headers=CLIENT)
        client.post(f"/api/v1/bookings/{booking_id}/provider-accept", headers=PROVIDER)

        r = client.post(
            f"/api/v1/bookings/{booking_id}/scope-changes",
            json={"description": "add outdoor socket", "amount": 4000},
            headers=PROVIDER,
        )
        invoice_id = r.json()["invoice"]["id"]
        r = client.post(f"/api/v1/scope-changes/{invoice_id}/approve", headers=CLIENT)
        assert r.json()["booking"]["escrow"]["totalHeld"] == 24000

        r = client.post(f"/api/v1/bookings/{booking_id}/sos", json={"note": "gas smell"}, headers=PROVIDER)
        assert r.json()["booking"]["status"] == "disputed"

        r = client.post(
            f"/api/v1/admin/bookings/{booking_id}/resolve",
            json={"outcome": "refund", "note": "job abandoned"},
            headers={"X-Actor-Id": "support-1"},
        )
        assert r.status_code == 200
        assert r.json()["escrow"]["refundedAmount"] == 24000
        assert sorted(amount for _, amount in gateway.refunds) == [4000, 20000]

        incidents = client.get(f"/api/v1/admin/bookings/{booking_id}/incidents").json()
        assert len(incidents) == 1

    def _in_observation(self, client):
        booking_id = _create(client).json()["id"]
        client.post(f"/api/v1/bookings/{booking_id}/confirm", headers=CLIENT)
        client.post(f"/api/v1/bookings/{booking_id}/provider-accept", headers=PROVIDER)
        client.post(f"/api/v1/bookings/{booking_id}/en-route", headers=PROVIDER)
        code = client.post(f"/api/v1/bookings/{booking_id}/otp", headers=CLIENT).json()["code"]
        client.post(f"/api/v1/bookings/{booking_id}/check-in", json={"code": code}, headers=PROVIDER)
        client.post(f"/api/v1/bookings/{booking_id}/complete", json={"notes": "done"}, headers=PROVIDER)
        return booking_id

    def test_escalated_issue_settled_with_split(self, client, gateway):
        booking_id = self._in_observation(client)
        r = client.post(
            f"/api/v1/bookings/{booking_id}/issues",
            json={"description": "two sockets dead", "category": "incomplete_work"},
            headers=CLIENT,
        )
        case_id = r.json()["case"]["id"]

        r = client.post(f"/api/v1/issues/{case_id}/escalate", json={"reason": "no reply"}, headers=CLIENT)
        assert r.status_code == 200
        assert r.json()["case"]["status"] == "escalated"
        assert r.json()["booking"]["status"] == "disputed"

        r = client.post(
            f"/api/v1/admin/bookings/{booking_id}/resolve",
            json={"outcome": "split", "refundAmount": 5000, "note": "half the sockets fixed"},
            headers={"X-Actor-Id": "support-1"},
        )
        assert r.status_code == 200
        assert r.json()["status"] == "released"
        assert r.json()["escrow"]["escrowStatus"] == "partially_refunded"
        assert r.json()["escrow"]["refundedAmount"] == 5000
        assert r.json()["escrow"]["releasedAmount"] == 15000
        assert gateway.refunds == [("tx-1", 5000)]

    def test_split_without_amount_is_rejected(self, client):
        booking_id = self._in_observation(client)
        client.post(f"/api/v1/bookings/{booking_id}/sos", json={"note": "dog bite"}, headers=PROVIDER)
        r = client.post(
            f"/api/v1/admin/bookings/{booking_id}/resolve",
            json={"outcome": "split"},
            headers={"X-Actor-Id": "support-1"},
        )
        assert r.status_code == 400
        assert client.get(f"/api/v1/bookings/{booking_id}").json()["status"] == "disputed"

    def test_admin_freeze_replays_with_same_key(self, client):
        booking_id = _create(client).json()["id"]
        client.post(f"/api/v1/bookings/{booking_id}/confirm", headers=CLIENT)
        headers = {"X-Actor-Id": "support-1", "Idempotency-Key": "freeze-1"}
        first = client.post(f"/api/v1/admin/bookings/{booking_id}/freeze", json={"reason": "kyc"}, headers=headers)
        second = client.post(f"/api/v1/admin/bookings/{booking_id}/freeze", json={"reason": "fraud"}, headers=headers)
        assert first.json() == second.json()
        assert first.json()["escrow"]["frozen"] is True
        assert client.get(f"/api/v1/bookings/{booking_id}/escrow").json()["frozenReason"] == "kyc"
