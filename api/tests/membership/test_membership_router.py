"""Tests for membership HTTP endpoints."""

from datetime import UTC, datetime, timedelta
from uuid import uuid4

from fastapi.testclient import TestClient

from src.auth.permissions import UserRole
from src.utils.dates import utc_now


MASTER_KEY_HEADERS = {"X-API-Key": "test-master-key"}


class TestPurchaseEndpoint:
    """POST /transactions"""

    def test_requires_authentication(self, client: TestClient, fake_store) -> None:
        response = client.post(
            "/transactions", json={"amount": 100000, "membershipType": "premium"}
        )

        assert response.status_code == 401
        assert response.json()["code"] == "unauthorized"
        assert fake_store.writes == []

    def test_invalid_token_is_unauthenticated(self, client: TestClient) -> None:
        response = client.post(
            "/transactions",
            json={"amount": 100000, "membershipType": "premium"},
            headers={"Authorization": "Bearer not-a-jwt"},
        )
        assert response.status_code == 401

    def test_purchase(self, client: TestClient, fake_store, auth_headers) -> None:
        user_id = uuid4()

        response = client.post(
            "/transactions",
            json={"amount": 100000, "membershipType": "premium"},
            headers=auth_headers(user_id),
        )

        assert response.status_code == 201
        data = response.json()
        assert data["message"] == "Transaction successful"
        assert data["transaction"]["status"] == "success"
        assert data["transaction"]["user_id"] == str(user_id)
        assert data["membership_expires_at"] is not None
        assert fake_store.profiles[user_id].is_premium

    def test_purchase_with_session_cookie(
        self, client: TestClient, fake_store, make_token
    ) -> None:
        user_id = uuid4()
        cookie = f"tradingplatform_access_token={make_token(user_id)}"

        response = client.post(
            "/transactions",
            json={"amount": 1, "membershipType": "premium"},
            headers={"Cookie": cookie},
        )

        assert response.status_code == 201
        assert fake_store.profiles[user_id].is_premium

    def test_zero_amount_rejected(
        self, client: TestClient, fake_store, auth_headers
    ) -> None:
        response = client.post(
            "/transactions",
            json={"amount": 0, "membershipType": "premium"},
            headers=auth_headers(uuid4()),
        )

        assert response.status_code == 400
        assert response.json()["code"] == "validation_error"
        assert fake_store.writes == []

    def test_unknown_tier_rejected(self, client: TestClient, auth_headers) -> None:
        response = client.post(
            "/transactions",
            json={"amount": 10, "membershipType": "gold"},
            headers=auth_headers(uuid4()),
        )
        assert response.status_code == 400

    def test_non_numeric_amount_rejected(
        self, client: TestClient, auth_headers
    ) -> None:
        response = client.post(
            "/transactions",
            json={"amount": "lots", "membershipType": "premium"},
            headers=auth_headers(uuid4()),
        )

        assert response.status_code == 400
        assert response.json()["code"] == "validation_error"

    def test_declined_payment(
        self, client: TestClient, fake_store, auth_headers, declining_confirmer
    ) -> None:
        client.app.state.payment_confirmer = declining_confirmer

        response = client.post(
            "/transactions",
            json={"amount": 10, "membershipType": "premium"},
            headers=auth_headers(uuid4()),
        )

        assert response.status_code == 400
        data = response.json()
        assert data["code"] == "payment_failed"
        assert data["step"] == "confirm_payment"
        assert data["transaction_id"] in {str(t) for t in fake_store.transactions}

    def test_profile_update_failure_reports_transaction(
        self, client: TestClient, fake_store, auth_headers
    ) -> None:
        fake_store.fail_steps.add("update_profile")

        response = client.post(
            "/transactions",
            json={"amount": 10, "membershipType": "premium"},
            headers=auth_headers(uuid4()),
        )

        assert response.status_code == 400
        data = response.json()
        assert data["code"] == "profile_update_failed"
        assert data["step"] == "update_profile"
        assert data["transaction_id"]

    def test_store_failure_reports_step(
        self, client: TestClient, fake_store, auth_headers
    ) -> None:
        fake_store.fail_steps.add("create_transaction")

        response = client.post(
            "/transactions",
            json={"amount": 10, "membershipType": "premium"},
            headers=auth_headers(uuid4()),
        )

        assert response.status_code == 400
        assert response.json()["code"] == "store_error"
        assert response.json()["step"] == "create_transaction"


class TestTransactionLookup:
    """GET /transactions and GET /transactions/{id}"""

    def _purchase(self, client: TestClient, headers: dict[str, str]) -> str:
        response = client.post(
            "/transactions",
            json={"amount": 10, "membershipType": "premium"},
            headers=headers,
        )
        return response.json()["transaction"]["id"]

    def test_owner_reads_transaction(self, client: TestClient, auth_headers) -> None:
        headers = auth_headers(uuid4())
        tid = self._purchase(client, headers)

        response = client.get(f"/transactions/{tid}", headers=headers)

        assert response.status_code == 200
        assert response.json()["status"] == "success"

    def test_other_user_gets_404(self, client: TestClient, auth_headers) -> None:
        tid = self._purchase(client, auth_headers(uuid4()))

        response = client.get(f"/transactions/{tid}", headers=auth_headers(uuid4()))

        assert response.status_code == 404
        assert response.json()["code"] == "transaction_not_found"

    def test_admin_reads_any(self, client: TestClient, auth_headers) -> None:
        tid = self._purchase(client, auth_headers(uuid4()))

        response = client.get(
            f"/transactions/{tid}", headers=auth_headers(uuid4(), UserRole.ADMIN)
        )

        assert response.status_code == 200

    def test_list_my_transactions(self, client: TestClient, auth_headers) -> None:
        headers = auth_headers(uuid4())
        self._purchase(client, headers)
        self._purchase(client, auth_headers(uuid4()))

        response = client.get("/transactions", headers=headers)

        assert response.status_code == 200
        assert response.json()["total"] == 1

    def test_list_requires_authentication(self, client: TestClient) -> None:
        assert client.get("/transactions").status_code == 401


class TestReapplyEndpoint:
    """POST /transactions/{id}/reapply"""

    def test_admin_only(self, client: TestClient, auth_headers) -> None:
        response = client.post(
            f"/transactions/{uuid4()}/reapply", headers=auth_headers(uuid4())
        )
        assert response.status_code == 403

    def test_reapply_after_profile_failure(
        self, client: TestClient, fake_store, auth_headers
    ) -> None:
        user_id = uuid4()
        fake_store.fail_steps.add("update_profile")
        failed = client.post(
            "/transactions",
            json={"amount": 10, "membershipType": "premium"},
            headers=auth_headers(user_id),
        )
        fake_store.fail_steps.clear()

        response = client.post(
            f"/transactions/{failed.json()['transaction_id']}/reapply",
            headers=auth_headers(uuid4(), UserRole.ADMIN),
        )

        assert response.status_code == 200
        data = response.json()
        assert data["user_id"] == str(user_id)
        assert data["membership_type"] == "premium"
        assert data["has_premium_access"] is True


class TestCheckExpiryEndpoint:
    """POST /subscriptions/check-expiry"""

    def test_requires_api_key(self, client: TestClient) -> None:
        assert client.post("/subscriptions/check-expiry").status_code == 401

    def test_rejects_wrong_api_key(self, client: TestClient) -> None:
        response = client.post(
            "/subscriptions/check-expiry", headers={"X-API-Key": "nope"}
        )
        assert response.status_code == 403

    def test_downgrades_expired(
        self, client: TestClient, fake_store, premium_profile_factory
    ) -> None:
        expired = premium_profile_factory(utc_now() - timedelta(days=1))
        live = premium_profile_factory(utc_now() + timedelta(days=1))

        response = client.post(
            "/subscriptions/check-expiry", headers=MASTER_KEY_HEADERS
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["expiredCount"] == 1
        assert data["downgradedUserIds"] == [str(expired.user_id)]
        assert data["message"] == "Checked and updated 1 expired subscriptions"
        assert not fake_store.profiles[expired.user_id].is_premium
        assert fake_store.profiles[live.user_id].is_premium

    def test_update_failures_return_500_with_counts(
        self, client: TestClient, fake_store, premium_profile_factory
    ) -> None:
        premium_profile_factory(datetime(2024, 1, 1, tzinfo=UTC))
        fake_store.fail_steps.add("update_profile")

        response = client.post(
            "/subscriptions/check-expiry", headers=MASTER_KEY_HEADERS
        )

        assert response.status_code == 500
        data = response.json()
        assert data["success"] is False
        assert data["failedCount"] == 1
        assert data["expiredCount"] == 0

    def test_fetch_failure_returns_500(self, client: TestClient, fake_store) -> None:
        fake_store.fail_steps.add("fetch_expired")

        response = client.post(
            "/subscriptions/check-expiry", headers=MASTER_KEY_HEADERS
        )

        assert response.status_code == 500
        assert response.json()["code"] == "sweep_failed"


class TestMembershipStatus:
    """GET /membership/me and /membership/premium-check"""

    def test_me_without_profile(self, client: TestClient, auth_headers) -> None:
        user_id = uuid4()

        response = client.get("/membership/me", headers=auth_headers(user_id))

        assert response.status_code == 200
        data = response.json()
        assert data["user_id"] == str(user_id)
        assert data["membership_type"] == "free"
        assert data["has_premium_access"] is False

    def test_me_stale_premium(
        self, client: TestClient, auth_headers, premium_profile_factory
    ) -> None:
        """Premium on paper but expired: no access before the sweep runs."""
        profile = premium_profile_factory(utc_now() - timedelta(minutes=1))

        response = client.get(
            "/membership/me", headers=auth_headers(profile.user_id)
        )

        data = response.json()
        assert data["membership_type"] == "premium"
        assert data["has_premium_access"] is False

    def test_premium_check_allows_premium(
        self, client: TestClient, auth_headers, premium_profile_factory
    ) -> None:
        profile = premium_profile_factory(utc_now() + timedelta(days=10))

        response = client.get(
            "/membership/premium-check", headers=auth_headers(profile.user_id)
        )

        assert response.status_code == 200
        assert response.json()["has_premium_access"] is True

    def test_premium_check_denies_free(self, client: TestClient, auth_headers) -> None:
        response = client.get(
            "/membership/premium-check", headers=auth_headers(uuid4())
        )
        assert response.status_code == 403

    def test_premium_check_requires_authentication(self, client: TestClient) -> None:
        assert client.get("/membership/premium-check").status_code == 401

    def test_store_unavailable(
        self, client: TestClient, fake_store, auth_headers
    ) -> None:
        fake_store.fail_steps.add("get_profile")

        response = client.get(
            "/membership/premium-check", headers=auth_headers(uuid4())
        )

        assert response.status_code == 503
