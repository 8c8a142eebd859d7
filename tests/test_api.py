"""Tests for the HTTP surface."""

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from affiliate_engine.api.main import create_app
from affiliate_engine.api.rate_limit import build_limiter
from affiliate_engine.settings import Settings


@pytest.fixture
def client(engine) -> TestClient:
    return TestClient(create_app(engine))


@pytest.fixture
def approved(client) -> dict:
    created = client.post("/api/v1/affiliates", json={"user_id": "partner-1", "full_name": "Maria Silva"})
    assert created.status_code == 201
    body = client.post(f"/api/v1/affiliates/{created.json()['id']}/status", json={"status": "approved"})
    assert body.status_code == 200
    return body.json()


class TestAffiliateEndpoints:
    def test_health(self, client) -> None:
        assert client.get("/health").json()["status"] == "healthy"

    def test_apply_returns_link(self, client) -> None:
        response = client.post("/api/v1/affiliates", json={"user_id": "partner-1", "full_name": "Maria Silva"})

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "pending"
        assert body["link"].endswith(body["code"])

    def test_duplicate_application_conflicts(self, client) -> None:
        payload = {"user_id": "partner-1", "full_name": "Maria Silva"}
        client.post("/api/v1/affiliates", json=payload)
        assert client.post("/api/v1/affiliates", json=payload).status_code == 409

    def test_unknown_status_action(self, client, approved) -> None:
        response = client.post(f"/api/v1/affiliates/{approved['id']}/status", json={"status": "deleted"})
        assert response.status_code == 422

    def test_unknown_affiliate_balance(self, client) -> None:
        assert client.get("/api/v1/affiliates/999/balance").status_code == 404


class TestAttributionFlow:
    def test_click_signup_commission(self, client, approved) -> None:
        click = client.post("/api/v1/clicks", json={"code": approved["code"], "utm_source": "blog"})
        assert click.status_code == 201
        assert click.json()["click_id"] > 0

        signup = client.post("/api/v1/signups", json={"code": approved["code"], "user_id": "author-1"})
        assert signup.json()["attributed"] is True

        commission = client.post("/api/v1/commissions", json={
            "affiliate_id": approved["id"],
            "user_id": "author-1",
            "event_type": "author_registration",
            "reference_id": "reg-1",
            "base_price": "100.00",
        })
        assert commission.status_code == 201

        balance = client.get(f"/api/v1/affiliates/{approved['id']}/balance").json()
        assert Decimal(str(balance["pending"])) == Decimal("25.00")

        referrals = client.get(f"/api/v1/affiliates/{approved['id']}/referrals").json()
        assert [r["user_id"] for r in referrals] == ["author-1"]

        stats = client.get(f"/api/v1/affiliates/{approved['id']}/stats").json()
        assert stats["total_clicks"] == 1

    def test_click_with_unknown_code(self, client) -> None:
        assert client.post("/api/v1/clicks", json={"code": "NOPE"}).status_code == 404

    def test_signup_without_click_is_not_an_error(self, client, approved) -> None:
        response = client.post("/api/v1/signups", json={"code": approved["code"], "user_id": "author-1"})
        assert response.status_code == 200
        assert response.json() == {"attributed": False, "conversion_id": None}

    def test_commission_for_unattributed_user(self, client, approved) -> None:
        response = client.post("/api/v1/commissions", json={
            "affiliate_id": approved["id"],
            "user_id": "stranger",
            "event_type": "subscription",
            "reference_id": "sub-1",
            "base_price": "10.00",
        })
        assert response.status_code == 409

    def test_schedule_qualifying_event(self, client) -> None:
        response = client.post("/api/v1/qualifying-events", json={
            "user_id": "author-1",
            "event_type": "subscription",
            "reference_id": "sub-1",
            "base_price": "10.00",
        })
        assert response.status_code == 202
        assert response.json()["job_id"] > 0


class TestWithdrawalEndpoints:
    @pytest.fixture
    def funded_id(self, funded) -> int:
        return funded("80.00").id

    def _request(self, client, affiliate_id: int, amount: str):
        return client.post(f"/api/v1/affiliates/{affiliate_id}/withdrawals", json={
            "amount": amount,
            "payment_method": "pix",
            "payment_details": {"pix_key": "maria@example.com"},
        })

    def test_request_and_pay(self, client, funded_id) -> None:
        created = self._request(client, funded_id, "60.00")
        assert created.status_code == 201
        withdrawal_id = created.json()["id"]

        for status in ("approved", "processing", "paid"):
            response = client.post(f"/api/v1/withdrawals/{withdrawal_id}/status", json={"status": status})
            assert response.status_code == 200
            assert response.json()["status"] == status

        balance = client.get(f"/api/v1/affiliates/{funded_id}/balance").json()
        assert Decimal(str(balance["total_paid"])) == Decimal("60.00")
        assert Decimal(str(balance["available"])) == Decimal("20.00")

        listed = client.get(f"/api/v1/affiliates/{funded_id}/withdrawals").json()
        assert [w["id"] for w in listed] == [withdrawal_id]

    def test_below_minimum(self, client, funded_id) -> None:
        assert self._request(client, funded_id, "49.99").status_code == 422

    def test_insufficient_balance(self, client, funded_id) -> None:
        assert self._request(client, funded_id, "90.00").status_code == 409

    def test_empty_payment_details(self, client, funded_id) -> None:
        response = client.post(f"/api/v1/affiliates/{funded_id}/withdrawals", json={
            "amount": "50.00",
            "payment_method": "pix",
            "payment_details": {},
        })
        assert response.status_code == 422
        assert "Payment details" in response.json()["detail"]
        assert client.get(f"/api/v1/affiliates/{funded_id}/withdrawals").json() == []

    def test_illegal_transition(self, client, funded_id) -> None:
        withdrawal_id = self._request(client, funded_id, "60.00").json()["id"]
        response = client.post(f"/api/v1/withdrawals/{withdrawal_id}/status", json={"status": "paid"})
        assert response.status_code == 409

    def test_unknown_status(self, client, funded_id) -> None:
        withdrawal_id = self._request(client, funded_id, "60.00").json()["id"]
        response = client.post(f"/api/v1/withdrawals/{withdrawal_id}/status", json={"status": "cancelled"})
        assert response.status_code == 422

    def test_unknown_withdrawal(self, client) -> None:
        assert client.post("/api/v1/withdrawals/999/status", json={"status": "approved"}).status_code == 404


class TestRateLimiter:
    def test_disabled_outside_production(self) -> None:
        assert build_limiter(Settings(_env_file=None, env="test")).enabled is False

    def test_enabled_in_production(self) -> None:
        limiter = build_limiter(Settings(_env_file=None, env="production", api_rate_limit="5/minute"))
        assert limiter.enabled is True
