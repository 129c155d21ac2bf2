"""Tests for the HTTP API."""

import json
import pytest

from iftar_portal.auth import AdminAuthService
from iftar_portal.connectors import SimulatorScenario
from iftar_portal.database import get_async_session_factory

SITE_ID = "105889251"

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 256

REGISTRATION = {
    "first_name": "Awa",
    "last_name": "Sigué",
    "email": "awa.sigue@example.com",
    "contact_number": "+225 0701234567",
}


async def register(client, **overrides):
    response = await client.post("/participants", json={**REGISTRATION, **overrides})
    assert response.status_code == 201, response.text
    return response.json()


async def submit_proof(client, participant_id, **fields):
    data = {"payment_method": "MTN", "phone_number": "0701234567", **fields}
    return await client.post(
        f"/participants/{participant_id}/manual-payments",
        data=data,
        files={"screenshot": ("preuve.png", PNG_BYTES, "image/png")},
    )


class TestPublicEndpoints:
    """Tests for registration and payment endpoints."""

    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["gateway"]["connector"] == "simulator"

    async def test_register(self, client, sms_sender):
        participant = await register(client)

        assert participant["payment_status"] == "pending"
        assert participant["sms_code"].startswith("SIG-")
        sms_sender.send.assert_awaited_once()

    async def test_register_invalid_phone(self, client):
        response = await client.post("/participants", json={**REGISTRATION, "contact_number": "0701234567"})

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["field"] == "contact_number"

    async def test_unknown_participant(self, client):
        response = await client.get("/participants/missing")

        assert response.status_code == 404
        assert response.json()["success"] is False

    async def test_manual_payment_submission(self, client, email_sender):
        participant = await register(client)

        response = await submit_proof(
            client,
            participant["id"],
            companions=json.dumps([{"first_name": "Issa", "last_name": "Koné"}]),
        )

        assert response.status_code == 201, response.text
        body = response.json()
        assert body["status"] == "pending"
        assert body["number_of_places"] == 2
        assert body["screenshot_url"].startswith("https://iftar.test/uploads/")
        assert email_sender.send.await_count == 2

    async def test_manual_payment_bad_companions(self, client):
        participant = await register(client)

        response = await submit_proof(client, participant["id"], companions="not json")

        assert response.status_code == 400

    async def test_manual_payment_without_phone(self, client):
        participant = await register(client)

        response = await submit_proof(client, participant["id"], phone_number="")

        assert response.status_code == 400
        assert response.json()["field"] == "phone_number"

    async def test_self_check_in(self, client):
        participant = await register(client)

        response = await client.post(f"/participants/{participant['id']}/check-in", json={"code": "009"})

        assert response.status_code == 200, response.text
        body = response.json()
        assert body["method"] == "self-check-in"
        assert body["participant"]["check_in_status"] is True
        assert body["warnings"] == ["payment_not_completed"]

    async def test_self_check_in_wrong_code(self, client):
        participant = await register(client)

        response = await client.post(f"/participants/{participant['id']}/check-in", json={"code": "000"})

        assert response.status_code == 400
        assert response.json()["field"] == "code"
        assert (await client.get(f"/participants/{participant['id']}")).json()["check_in_status"] is False

    async def test_membership_request(self, client):
        response = await client.post("/memberships", json={
            "first_name": "Mariam",
            "last_name": "Traoré",
            "email": "mariam@example.com",
            "contact_number": "+225 0505050505",
            "payment_frequency": "annual",
        })

        assert response.status_code == 201, response.text
        assert response.json()["status"] == "pending"


class TestGatewayFlow:
    """Checkout, notification and confirmation polling."""

    async def test_checkout_then_notification(self, client, simulator, email_sender):
        participant = await register(client)

        response = await client.post(
            f"/participants/{participant['id']}/payments",
            json={"payment_method": "wave"},
        )
        assert response.status_code == 201, response.text
        payment = response.json()
        assert payment["payment_url"].startswith("https://checkout.simulator.local/")
        assert payment["amount"] == 1000

        simulator.settle(payment["transaction_id"], SimulatorScenario.ACCEPTED)
        response = await client.post(
            "/webhooks/cinetpay",
            json=simulator.build_notification(payment["transaction_id"]),
        )
        assert response.status_code == 200, response.text
        assert response.json()["new_status"] == "success"

        status = (await client.get(f"/participants/{participant['id']}/payment-status")).json()
        assert status["payment_status"] == "completed"
        assert status["qr_code_id"]
        assert status["latest_payment"]["status"] == "success"
        email_sender.send.assert_awaited()

    async def test_payment_for_several_places(self, client):
        participant = await register(client)

        response = await client.post(
            f"/participants/{participant['id']}/payments",
            json={"payment_method": "MOBILE_MONEY", "places": 3},
        )

        assert response.json()["amount"] == 3000


class TestWebhook:
    """Tests for the gateway notification endpoint."""

    async def test_preflight(self, client):
        response = await client.options("/webhooks/cinetpay")

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "*"

    async def test_method_not_allowed(self, client):
        response = await client.get("/webhooks/cinetpay")

        assert response.status_code == 405
        assert response.headers["access-control-allow-origin"] == "*"

    async def test_invalid_json(self, client):
        response = await client.post(
            "/webhooks/cinetpay",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400

    async def test_overflowing_amount(self, client):
        body = b'{"cpm_trans_id": "abc12345", "cpm_site_id": "105889251", "status": "ACCEPTED", "amount": 1e400}'

        response = await client.post(
            "/webhooks/cinetpay",
            content=body,
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.headers["access-control-allow-origin"] == "*"

    async def test_missing_fields(self, client):
        response = await client.post("/webhooks/cinetpay", json={"status": "ACCEPTED"})

        assert response.status_code == 400
        assert set(response.json()["missing_fields"]) == {"cpm_trans_id", "cpm_site_id"}

    async def test_site_mismatch(self, client):
        response = await client.post(
            "/webhooks/cinetpay",
            json={"cpm_trans_id": "tx-1", "cpm_site_id": "999999", "status": "ACCEPTED"},
        )

        assert response.status_code == 400
        assert response.json()["site_id"] == "999999"

    async def test_unknown_transaction(self, client):
        response = await client.post(
            "/webhooks/cinetpay",
            json={"cpm_trans_id": "tx-unknown", "cpm_site_id": SITE_ID, "status": "ACCEPTED"},
        )

        assert response.status_code == 404
        assert response.json()["attempted_ids"] == ["tx-unknown"]


class TestAdminEndpoints:
    """Tests for the back-office endpoints."""

    async def test_requires_token(self, client):
        response = await client.get("/admin/manual-payments")

        assert response.status_code == 401

    async def test_rejects_bad_token(self, client):
        response = await client.get("/admin/statistics", headers={"Authorization": "Bearer nope"})

        assert response.status_code == 401

    async def test_login(self, client, db_engine, portal_config):
        session_factory = get_async_session_factory(db_engine)
        async with session_factory() as session:
            await AdminAuthService(session, portal_config).create_admin("admin@iftar.test", "ramadan2026")
            await session.commit()

        response = await client.post("/admin/login", json={"email": "admin@iftar.test", "password": "ramadan2026"})
        assert response.status_code == 200
        token = response.json()["access_token"]

        response = await client.get("/admin/statistics", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 200

    async def test_login_wrong_password(self, client):
        response = await client.post("/admin/login", json={"email": "admin@iftar.test", "password": "nope-nope"})

        assert response.status_code == 401

    async def test_manual_payment_to_door(self, client, admin_headers):
        """Register, submit a proof, validate it, then find the participant at the door."""
        participant = await register(client)
        manual_payment = (await submit_proof(client, participant["id"])).json()

        listing = (await client.get("/admin/manual-payments?status=pending", headers=admin_headers)).json()
        assert [item["id"] for item in listing["items"]] == [manual_payment["id"]]
        assert listing["statistics"]["pending"] == 1

        response = await client.post(
            f"/admin/manual-payments/{manual_payment['id']}/validate",
            headers=admin_headers,
        )
        assert response.status_code == 200, response.text
        assert response.json()["status"] == "completed"
        assert response.json()["validated_by"] == "admin@iftar.test"

        response = await client.post(
            f"/admin/manual-payments/{manual_payment['id']}/validate",
            headers=admin_headers,
        )
        assert response.status_code == 409

        found = await client.get(f"/admin/check-in/code/{participant['sms_code'].lower()}", headers=admin_headers)
        assert found.status_code == 200
        assert found.json()["payment_status"] == "completed"
        assert found.json()["qr_code_id"]

        response = await client.post("/admin/check-in/code", json={"code": participant["sms_code"]}, headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["already_checked_in"] is False

        response = await client.post(
            "/admin/check-in/qr",
            json={"qr_code_id": found.json()["qr_code_id"]},
            headers=admin_headers,
        )
        assert response.json()["already_checked_in"] is True

    async def test_reject_manual_payment(self, client, admin_headers):
        participant = await register(client)
        manual_payment = (await submit_proof(client, participant["id"])).json()

        response = await client.post(
            f"/admin/manual-payments/{manual_payment['id']}/reject",
            json={"reason": "Capture illisible"},
            headers=admin_headers,
        )

        assert response.status_code == 200
        assert response.json()["status"] == "rejected"
        assert response.json()["admin_notes"] == "Capture illisible"

    async def test_quick_payment(self, client, admin_headers):
        participant = await register(client)

        response = await client.post(
            f"/admin/participants/{participant['id']}/quick-payment",
            json={"phone_number": "+225 0701234567"},
            headers=admin_headers,
        )

        assert response.status_code == 200, response.text
        assert response.json()["payment_method"] == "WAVE"
        assert response.json()["status"] == "completed"

    async def test_unknown_code_lookup(self, client, admin_headers):
        response = await client.get("/admin/check-in/code/XYZ-0000", headers=admin_headers)

        assert response.status_code == 404

    async def test_memberships_review(self, client, admin_headers):
        membership = (await client.post("/memberships", json={
            "first_name": "Mariam",
            "last_name": "Traoré",
            "email": "mariam@example.com",
            "contact_number": "+225 0505050505",
        })).json()

        response = await client.post(f"/admin/memberships/{membership['id']}/approve", headers=admin_headers)
        assert response.json()["status"] == "approved"

        items = (await client.get("/admin/memberships?status=approved", headers=admin_headers)).json()["items"]
        assert [m["id"] for m in items] == [membership["id"]]

    async def test_send_message(self, client, admin_headers, email_sender):
        first = await register(client)
        await register(client, email="issa.kone@example.com", first_name="Issa", last_name="Koné")

        response = await client.post(
            "/admin/messages",
            json={"subject": "Rappel", "message": "Rendez-vous à 18h30", "participant_ids": [first["id"], "missing"]},
            headers=admin_headers,
        )

        assert response.status_code == 200, response.text
        body = response.json()
        assert (body["sent"], body["failed"]) == (1, 1)
        assert [(r["participant_id"], r["sent"]) for r in body["results"]] == [(first["id"], True), ("missing", False)]
        assert email_sender.send.await_count == 1

        everyone = (await client.post(
            "/admin/messages",
            json={"subject": "Rappel", "message": "Rendez-vous à 18h30"},
            headers=admin_headers,
        )).json()
        assert everyone["sent"] == 2

    async def test_send_message_requires_text(self, client, admin_headers):
        response = await client.post("/admin/messages", json={"subject": "Rappel", "message": "  "}, headers=admin_headers)

        assert response.status_code == 400

    async def test_export_and_statistics(self, client, admin_headers):
        await register(client)

        response = await client.get("/admin/export/participants.csv", headers=admin_headers)
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        lines = response.text.strip().splitlines()
        assert len(lines) == 2
        assert lines[0].startswith("Nom,Prénom,Email")

        stats = (await client.get("/admin/statistics", headers=admin_headers)).json()
        assert stats["participants"] == 1
        assert stats["pending"] == 1

    async def test_delete_participant(self, client, admin_headers):
        participant = await register(client)

        response = await client.delete(f"/admin/participants/{participant['id']}", headers=admin_headers)

        assert response.status_code == 200
        assert (await client.get(f"/participants/{participant['id']}")).status_code == 404

    async def test_wipe_requires_confirmation(self, client, admin_headers):
        await register(client)

        assert (await client.delete("/admin/participants", headers=admin_headers)).status_code == 400

        response = await client.delete("/admin/participants?confirm=true", headers=admin_headers)
        assert response.json() == {"success": True, "deleted": 1}
