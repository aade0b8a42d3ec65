import hashlib
import hmac
import json

import pytest
from fastapi.testclient import TestClient

from conftest import make_setting
from copytrader.main import create_app
from copytrader.services import build_services

USDC = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"


def helius_tx(signature="sig-1", fee_payer="Trader1", description="Bought YES on Trump wins 2024 via Drift",
              source="DRIFT"):
    return {
        "signature": signature,
        "feePayer": fee_payer,
        "description": description,
        "timestamp": 1727784000,
        "source": source,
        "tokenTransfers": [
            {"fromUserAccount": fee_payer, "toUserAccount": "Pool", "tokenAmount": 25, "mint": USDC},
        ],
    }


@pytest.fixture
def client(services):
    with TestClient(create_app(services)) as test_client:
        yield test_client


def follow(client, wallet="alice", **kwargs):
    return client.post(f"/api/copy-settings?wallet={wallet}", json=[make_setting(**kwargs)])


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["dry_run"] is True
    assert data["mode"] == "test"
    assert data["watcher_running"] is False


class TestCopySettings:
    def test_replace_and_read(self, client):
        response = client.post("/api/copy-settings?wallet=alice", json=[
            {"traderId": 12345, "isActive": "true", "allocationUsd": "250", "maxPositionPercent": 150},
            {"traderId": "Trader2", "isActive": False, "allocationUsd": "lots"},
        ])
        assert response.status_code == 200

        settings = client.get("/api/copy-settings?wallet=alice").json()["settings"]
        assert settings == [
            {"traderId": "12345", "isActive": True, "allocationUsd": 250.0, "maxPositionPercent": 100.0,
             "stopLossPercent": None, "copyOpenPositions": False},
            {"traderId": "Trader2", "isActive": False, "allocationUsd": 0.0, "maxPositionPercent": 0.0,
             "stopLossPercent": None, "copyOpenPositions": False},
        ]
        assert client.get("/api/copy-settings?wallet=bob").json()["settings"] == []

    def test_infinite_amounts_are_stored_as_zero(self, client):
        body = b'[{"traderId": "W1", "allocationUsd": 1e400, "maxPositionPercent": "Infinity"}]'
        response = client.post("/api/copy-settings?wallet=alice", content=body,
                               headers={"content-type": "application/json"})
        assert response.status_code == 200

        listed = client.get("/api/copy-settings?wallet=alice")
        assert listed.status_code == 200
        setting = listed.json()["settings"][0]
        assert setting["allocationUsd"] == 0.0
        assert setting["maxPositionPercent"] == 0.0

    def test_new_follow_is_notified_once(self, client):
        follow(client)
        follow(client)
        notifications = client.get("/api/notifications?wallet=alice").json()["notifications"]
        assert [n["kind"] for n in notifications] == ["trader_followed"]

    @pytest.mark.parametrize("body", [{"traderId": "x"}, [{"isActive": True}], "nope"])
    def test_bad_body_is_400(self, client, body):
        response = client.post("/api/copy-settings?wallet=alice", json=body)
        assert response.status_code == 400
        assert "error" in response.json()

    def test_invalid_json_is_400(self, client):
        response = client.post("/api/copy-settings", content=b"{not json",
                               headers={"content-type": "application/json"})
        assert response.status_code == 400


class TestWebhook:
    def test_status(self, client):
        assert client.get("/api/webhooks/helius").json()["status"] == "ok"

    def test_ingest_copies_trade(self, client):
        follow(client)

        response = client.post("/api/webhooks/helius", json=[helius_tx()])
        assert response.status_code == 200
        assert response.json()["processed"] == 1

        trades = client.get("/api/trades/Trader1?stats=true").json()
        assert trades["total"] == 1
        trade = trades["trades"][0]
        assert trade["status"] == "executed"
        assert trade["kalshiTicker"] == "PRES-24-DJT"
        assert trade["originalTrade"]["platform"] == "drift"
        assert trade["isSimulation"] is True
        assert trades["stats"]["executed"] == 1

        history = client.get("/api/webhooks/helius?wallet=Trader1").json()
        assert history["count"] == 1

        replay = client.post("/api/webhooks/helius", json=helius_tx()).json()
        assert replay["duplicates"] == 1
        assert client.get("/api/trades/recent").json()["total"] == 1

    def test_rejects_bad_payloads(self, client):
        response = client.post("/api/webhooks/helius", content=b"not json")
        assert response.status_code == 400
        assert client.post("/api/webhooks/helius", json="string").status_code == 400

        counts = client.post("/api/webhooks/helius", json=[{"feePayer": "x"}]).json()
        assert counts["rejected"] == 1

    def test_signature_required_when_secret_set(self, config, session_factory, exchange, feed):
        secured = build_services(config.model_copy(update={"HELIUS_WEBHOOK_SECRET": "s3cret"}),
                                 session_factory=session_factory, exchange=exchange, feed=feed)
        body = json.dumps([helius_tx()]).encode("utf-8")
        good = hmac.new(b"s3cret", body, hashlib.sha256).hexdigest()

        with TestClient(create_app(secured)) as secured_client:
            bad = secured_client.post("/api/webhooks/helius", content=body,
                                      headers={"x-helius-signature": "deadbeef"})
            ok = secured_client.post("/api/webhooks/helius", content=body,
                                     headers={"x-helius-signature": good})
        assert bad.status_code == 401
        assert ok.status_code == 200


class TestTrades:
    def test_filters_and_paging(self, client):
        follow(client)
        client.post("/api/webhooks/helius", json=[
            helius_tx("s1"),
            helius_tx("s2", description="Bought NO on Trump wins 2024 via Drift"),
            helius_tx("s3", description="Bought YES on Fed cuts rates via Polymarket", source="POLYMARKET"),
        ])

        page = client.get("/api/trades/Trader1?limit=2").json()
        assert page["total"] == 3
        assert len(page["trades"]) == 2
        assert page["hasMore"] is True
        assert page["stats"] is None

        assert client.get("/api/trades/Trader1?position=no").json()["total"] == 1
        assert client.get("/api/trades/Trader1?platform=polymarket").json()["total"] == 1
        assert client.get("/api/trades/Trader1?action=sell").json()["total"] == 0
        assert client.get("/api/trades/Trader1?startTime=1727784001").json()["total"] == 0
        assert client.get("/api/trades/Trader1?endTime=1727784000").json()["total"] == 3

    @pytest.mark.parametrize("query", ["startTime=100000000000000000000", "endTime=-100000000000000000000"])
    def test_out_of_range_time_is_400(self, client, query):
        response = client.get(f"/api/trades/Trader1?{query}")
        assert response.status_code == 400
        assert "error" in response.json()


class TestNotifications:
    def test_requires_wallet(self, client):
        assert client.get("/api/notifications").status_code == 400

    def test_create_read_clear(self, client):
        created = client.post("/api/notifications/create", json={
            "wallet": "alice", "type": "warning", "title": "Heads up", "message": "Check this",
        })
        assert created.status_code == 200
        note = created.json()["notification"]
        assert note["type"] == "warning"
        assert note["read"] is False

        listing = client.get("/api/notifications?wallet=alice").json()
        assert listing["unreadCount"] == 1

        read = client.post("/api/notifications/read", json={"wallet": "alice", "notificationId": note["id"]})
        assert read.json()["unreadCount"] == 0
        missing = client.post("/api/notifications/read", json={"wallet": "alice", "notificationId": note["id"]})
        assert missing.status_code == 404

        cleared = client.post("/api/notifications/clear", json={"wallet": "alice"}).json()
        assert cleared["cleared"] == 1

    def test_mark_all_read(self, client):
        for title in ("a", "b"):
            client.post("/api/notifications/create", json={"wallet": "alice", "title": title, "message": "m"})
        response = client.post("/api/notifications/read", json={"wallet": "alice", "all": True}).json()
        assert response["marked"] == 2

    def test_invalid_type_is_400(self, client):
        response = client.post("/api/notifications/create", json={
            "wallet": "alice", "type": "shout", "title": "t", "message": "m",
        })
        assert response.status_code == 400

    def test_live_push(self, client):
        with client.websocket_connect("/ws/notifications/alice") as ws:
            client.post("/api/notifications/create", json={"wallet": "alice", "title": "Live", "message": "now"})
            message = ws.receive_json()
        assert message["title"] == "Live"


class TestMarkets:
    def test_match(self, client):
        data = client.get("/api/markets/match", params={"q": "Fed cuts rates"}).json()
        assert data["ticker"] == "FED-RATE-CUT"
        assert data["candidates"][0]["score"] == 115

    def test_refresh(self, client, exchange):
        client.get("/api/markets/match", params={"q": "trump"})
        data = client.post("/api/markets/refresh").json()
        assert data["markets"] == 2
        assert exchange.market_calls == 2

    def test_catalog_unavailable_is_503(self, client, exchange):
        exchange.error = RuntimeError("down")
        assert client.get("/api/markets/match", params={"q": "trump"}).status_code == 503
