"""
Tests for API routes.

Drives the webhook endpoints through a TestClient with the rewards service
built over in-memory stores and stub verifiers.
"""

from unittest.mock import AsyncMock

from app.config import settings
from app.exceptions import (
    BadRequestError,
    ConcurrencyError,
    InvalidInputError,
    OperationFailedError,
)
from app.models.domain import (
    AdPlatform,
    RewardConfig,
    RewardDetails,
    RewardType,
    VerifiedRewardPayload,
)
from app.services.applovin_ssv_verifier import AppLovinSsvVerifier
from app.services.ironsource_ssv_verifier import IronSourceSsvVerifier
from reward_fakes import InMemoryRewardConfigs, StubVerifier

ADMOB_PATH = "/v1/rewards/webhooks/admob"
APPLOVIN_PATH = "/v1/rewards/webhooks/applovin"
IRONSOURCE_PATH = "/v1/rewards/webhooks/ironsource"


class TestAdMobWebhook:
    """Tests for GET /v1/rewards/webhooks/admob."""

    def test_grant(self, client_factory, rewards_service_factory, payload, entitlements):
        """A verified callback grants the reward."""
        verifier = StubVerifier(payload)
        client = client_factory(rewards_service_factory({AdPlatform.ADMOB: verifier}))

        response = client.get(f"{ADMOB_PATH}?transaction_id=T1&user_id=U1&signature=s&key_id=1")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "granted"
        assert body["platform"] == "admob"
        assert body["transaction_id"] == "T1"
        assert body["reward_type"] == "adFree"
        assert body["expires_at"] is not None
        assert "U1" in entitlements.items

    def test_full_uri_passed_to_verifier(self, client_factory, rewards_service_factory, payload):
        """The verifier receives the query string exactly as sent."""
        verifier = StubVerifier(payload)
        client = client_factory(rewards_service_factory({AdPlatform.ADMOB: verifier}))

        client.get(f"{ADMOB_PATH}?b=2&a=1&custom_data=ad%2BFree&signature=s&key_id=1")

        assert verifier.calls[0].endswith("?b=2&a=1&custom_data=ad%2BFree&signature=s&key_id=1")

    def test_replay_is_acknowledged(
        self, client_factory, rewards_service_factory, payload, entitlements
    ):
        """A replayed transaction answers 200 without a second grant."""
        client = client_factory(rewards_service_factory({AdPlatform.ADMOB: StubVerifier(payload)}))

        first = client.get(f"{ADMOB_PATH}?transaction_id=T1")
        second = client.get(f"{ADMOB_PATH}?transaction_id=T1")

        assert first.json()["status"] == "granted"
        assert second.status_code == 200
        assert second.json()["status"] == "already_processed"
        assert second.json()["expires_at"] is None
        assert entitlements.writes == 1

    def test_invalid_signature(self, client_factory, rewards_service_factory):
        """Verification failures answer 400 with the reason."""
        verifier = StubVerifier(error=InvalidInputError("Invalid signature."))
        client = client_factory(rewards_service_factory({AdPlatform.ADMOB: verifier}))

        response = client.get(f"{ADMOB_PATH}?transaction_id=T1")

        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid signature."

    def test_unknown_reward_type(self, client_factory, rewards_service_factory):
        """An unknown reward type answers 400."""
        verifier = StubVerifier(error=BadRequestError("Unknown reward type: coins"))
        client = client_factory(rewards_service_factory({AdPlatform.ADMOB: verifier}))

        response = client.get(f"{ADMOB_PATH}?transaction_id=T1")

        assert response.status_code == 400
        assert response.json()["detail"] == "Unknown reward type: coins"

    def test_disabled_reward(
        self,
        client_factory,
        rewards_service_factory,
        payload,
        reward_configs: InMemoryRewardConfigs,
    ):
        """A disabled reward type answers 403."""
        reward_configs.config = RewardConfig(
            config_id="default",
            rewards={RewardType.AD_FREE: RewardDetails(enabled=False, duration_days=1)},
        )
        client = client_factory(rewards_service_factory({AdPlatform.ADMOB: StubVerifier(payload)}))

        response = client.get(f"{ADMOB_PATH}?transaction_id=T1")

        assert response.status_code == 403
        assert response.json()["detail"] == "Reward is currently disabled."

    def test_key_fetch_failure(self, client_factory, rewards_service_factory):
        """Infrastructure failures answer 500 without internal detail."""
        verifier = StubVerifier(error=OperationFailedError("Failed to fetch verifier keys"))
        client = client_factory(rewards_service_factory({AdPlatform.ADMOB: verifier}))

        response = client.get(f"{ADMOB_PATH}?transaction_id=T1")

        assert response.status_code == 500
        assert response.json()["detail"] == "Reward processing unavailable"

    def test_concurrent_update(self, client_factory, rewards_service_factory):
        """A concurrent entitlement update answers 500 so the network retries."""
        verifier = StubVerifier(error=ConcurrencyError("user_entitlements/U1"))
        client = client_factory(rewards_service_factory({AdPlatform.ADMOB: verifier}))

        response = client.get(f"{ADMOB_PATH}?transaction_id=T1")

        assert response.status_code == 500
        assert response.json()["detail"] == "Concurrent update, please retry"

    def test_platform_not_configured(self, client_factory, rewards_service_factory):
        """A platform without a verifier answers 500."""
        client = client_factory(rewards_service_factory({}))

        response = client.get(f"{ADMOB_PATH}?transaction_id=T1")

        assert response.status_code == 500


class TestAppLovinWebhook:
    """Tests for GET /v1/rewards/webhooks/applovin."""

    def test_grant(self, client_factory, rewards_service_factory):
        """A verified AppLovin callback grants the reward."""
        payload = VerifiedRewardPayload("E1", "U1", RewardType.AD_FREE)
        service = rewards_service_factory({AdPlatform.APPLOVIN: StubVerifier(payload)})
        client = client_factory(service)

        response = client.get(f"{APPLOVIN_PATH}?event_id=E1&user_id=U1&ts=1&signature=x")

        assert response.status_code == 200
        assert response.json()["platform"] == "applovin"
        assert response.json()["transaction_id"] == "E1"


    def test_non_ascii_signature_is_bad_request(
        self, client_factory, rewards_service_factory, entitlements
    ):
        """A non-ASCII signature answers 400 and grants nothing."""
        verifier = AppLovinSsvVerifier("applovin-secret")
        client = client_factory(rewards_service_factory({AdPlatform.APPLOVIN: verifier}))

        response = client.get(
            f"{APPLOVIN_PATH}?event_id=E1&user_id=U1&ts=1&reward_type=adFree&signature=%C3%A9"
        )

        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid signature."
        assert entitlements.items == {}


class TestIronSourceWebhook:
    """Tests for GET /v1/rewards/webhooks/ironsource."""

    def test_acknowledgement_body(self, client_factory, rewards_service_factory):
        """IronSource receives "<eventId>:OK" as plain text."""
        payload = VerifiedRewardPayload("E1", "U1", RewardType.AD_FREE)
        service = rewards_service_factory({AdPlatform.IRONSOURCE: StubVerifier(payload)})
        client = client_factory(service)

        response = client.get(f"{IRONSOURCE_PATH}?eventId=E1&appUserId=U1")

        assert response.status_code == 200
        assert response.text == "E1:OK"
        assert response.headers["content-type"].startswith("text/plain")

    def test_replay_acknowledged(self, client_factory, rewards_service_factory):
        """Replays are acknowledged with the same body."""
        payload = VerifiedRewardPayload("E1", "U1", RewardType.AD_FREE)
        service = rewards_service_factory({AdPlatform.IRONSOURCE: StubVerifier(payload)})
        client = client_factory(service)

        client.get(f"{IRONSOURCE_PATH}?eventId=E1")
        response = client.get(f"{IRONSOURCE_PATH}?eventId=E1")

        assert response.status_code == 200
        assert response.text == "E1:OK"

    def test_invalid_signature(self, client_factory, rewards_service_factory):
        """Verification failures answer 400."""
        verifier = StubVerifier(error=InvalidInputError("Invalid signature."))
        client = client_factory(rewards_service_factory({AdPlatform.IRONSOURCE: verifier}))

        response = client.get(f"{IRONSOURCE_PATH}?eventId=E1")

        assert response.status_code == 400


    def test_non_ascii_signature_is_bad_request(self, client_factory, rewards_service_factory):
        """A non-ASCII signature answers 400 instead of an acknowledgement."""
        verifier = IronSourceSsvVerifier("ironsource-secret")
        client = client_factory(rewards_service_factory({AdPlatform.IRONSOURCE: verifier}))

        response = client.get(
            f"{IRONSOURCE_PATH}?appUserId=U1&rewards=10%20adFree&eventId=E1"
            "&timestamp=202401151200&signature=%C3%A9"
        )

        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid signature."


class TestHealthAndRoot:
    """Tests for service endpoints."""

    def test_health_ok(self, client_factory, rewards_service_factory, db_session: AsyncMock):
        """Health reports a connected database."""
        client = client_factory(rewards_service_factory({}))

        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["database"] == "connected"
        db_session.execute.assert_awaited()

    def test_health_database_down(
        self, client_factory, rewards_service_factory, db_session: AsyncMock
    ):
        """Health answers 503 when the database is unreachable."""
        db_session.execute = AsyncMock(side_effect=ConnectionError("connection refused"))
        client = client_factory(rewards_service_factory({}))

        response = client.get("/health")

        assert response.status_code == 503
        assert response.json()["detail"]["database"] == "disconnected"

    def test_root(self, client_factory, rewards_service_factory):
        """Root reports the service name."""
        client = client_factory(rewards_service_factory({}))

        response = client.get("/")

        assert response.status_code == 200
        assert response.json()["service"] == "Ad Rewards API"

    def test_metrics(self, client_factory, rewards_service_factory, payload):
        """Prometheus metrics include reward callback counters."""
        client = client_factory(rewards_service_factory({AdPlatform.ADMOB: StubVerifier(payload)}))
        client.get(f"{ADMOB_PATH}?transaction_id=T1")

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "rewards_callbacks_total" in response.text
        assert "rewards_http_requests_total" in response.text


class TestRequestMiddleware:
    """Tests for the request middleware."""

    def test_request_id_echoed(self, client_factory, rewards_service_factory):
        """A caller-supplied request id is returned unchanged."""
        client = client_factory(rewards_service_factory({}))

        response = client.get("/", headers={"X-Request-ID": "req-42"})

        assert response.headers["X-Request-ID"] == "req-42"

    def test_request_id_generated(self, client_factory, rewards_service_factory):
        """A request id is generated when the caller sends none."""
        client = client_factory(rewards_service_factory({}))

        response = client.get("/")

        assert len(response.headers["X-Request-ID"]) == 32

    def test_forwarded_proto_ignored_from_untrusted_peer(
        self, client_factory, rewards_service_factory, payload
    ):
        """X-Forwarded-Proto from an arbitrary client does not change the scheme."""
        verifier = StubVerifier(payload)
        client = client_factory(rewards_service_factory({AdPlatform.ADMOB: verifier}))

        client.get(f"{ADMOB_PATH}?transaction_id=T1", headers={"X-Forwarded-Proto": "https"})

        assert verifier.calls[0].startswith("http://")

    def test_forwarded_proto_honoured_from_trusted_proxy(
        self, monkeypatch, client_factory, rewards_service_factory, payload
    ):
        """A trusted proxy's X-Forwarded-Proto becomes the callback URI scheme."""
        monkeypatch.setattr(settings, "TRUSTED_PROXY_IPS", "10.0.0.1, testclient")
        verifier = StubVerifier(payload)
        client = client_factory(rewards_service_factory({AdPlatform.ADMOB: verifier}))

        client.get(f"{ADMOB_PATH}?transaction_id=T1", headers={"X-Forwarded-Proto": "https"})

        assert verifier.calls[0].startswith("https://")

    def test_forwarded_proto_with_wildcard(
        self, monkeypatch, client_factory, rewards_service_factory, payload
    ):
        """A "*" entry trusts every peer."""
        monkeypatch.setattr(settings, "TRUSTED_PROXY_IPS", "*")
        verifier = StubVerifier(payload)
        client = client_factory(rewards_service_factory({AdPlatform.ADMOB: verifier}))

        client.get(f"{ADMOB_PATH}?transaction_id=T1", headers={"X-Forwarded-Proto": "https"})

        assert verifier.calls[0].startswith("https://")

    def test_unknown_forwarded_proto_ignored(
        self, monkeypatch, client_factory, rewards_service_factory, payload
    ):
        """Only http and https are accepted as schemes."""
        monkeypatch.setattr(settings, "TRUSTED_PROXY_IPS", "*")
        verifier = StubVerifier(payload)
        client = client_factory(rewards_service_factory({AdPlatform.ADMOB: verifier}))

        client.get(f"{ADMOB_PATH}?transaction_id=T1", headers={"X-Forwarded-Proto": "gopher"})

        assert verifier.calls[0].startswith("http://")
