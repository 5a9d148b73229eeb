import json

import pytest
from fastapi.testclient import TestClient

from conftest import FakePage, FakePageDriver, ScriptedExtractor
from price_relay.app import create_app
from price_relay.service import PriceService
from price_relay.settings import Settings


def make_client(driver=None, extractor=None, **overrides):
    values = dict(
        source_url_template="https://quotes.test/{ticker}",
        simulation_mode=False,
        initial_tickers=[],
        sample_interval=0.01,
        stop_grace=0.2,
        batch_delay=0.01,
    )
    values.update(overrides)
    service = PriceService(
        Settings(**values),
        driver=driver or FakePageDriver(),
        extractor=extractor or ScriptedExtractor(["100", "101", "102"]),
    )
    return TestClient(create_app(service)), service


def test_ticker_endpoints():
    client, service = make_client()
    with client:
        response = client.post("/api/tickers", json={"ticker": "btcusd"})
        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Successfully added ticker BTCUSD"}

        assert client.post("/api/tickers", json={"ticker": "BTCUSD"}).status_code == 200
        assert client.get("/api/tickers").json() == {"tickers": ["BTCUSD"]}

        metrics = client.get("/api/metrics").json()
        assert metrics["activeTickerCount"] == 1
        assert metrics["subscriberCount"] == 0

        assert client.delete("/api/tickers/btcusd").json()["success"] is True
        assert client.get("/api/tickers").json() == {"tickers": []}
    assert not service.started


def test_add_failure_is_reported():
    driver = FakePageDriver()
    driver.failing.add("https://quotes.test/DEADUSD")
    client, _ = make_client(driver)
    with client:
        response = client.post("/api/tickers", json={"ticker": "DEADUSD"})
        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["message"].startswith("Failed to add ticker")

        assert client.post("/api/tickers", json={"ticker": "bad ticker"}).status_code == 400
        assert client.post("/api/tickers", json={}).status_code == 422


def test_driver_outage_is_a_server_error():
    driver = FakePageDriver()
    client, _ = make_client(driver)
    with client:
        driver.unavailable = True
        response = client.post("/api/tickers", json={"ticker": "BTCUSD"})
        assert response.status_code == 503
        assert response.json()["success"] is False


def test_health_and_performance():
    client, _ = make_client()
    with client:
        assert client.get("/health").json()["status"] == "ok"
        client.post("/api/tickers", json={"ticker": "ETHUSD"})
        perf = client.get("/api/performance").json()
        assert perf["mode"] == "extraction"
        assert "ETHUSD" in perf["monitors"]
        assert perf["uptime"] >= 0


def test_websocket_receives_batches():
    client, service = make_client()
    with client:
        with client.websocket_connect("/ws/prices") as ws:
            hello = json.loads(ws.receive_text())
            assert hello["type"] == "connected"
            assert service.metrics().subscriber_count == 1

            client.post("/api/tickers", json={"ticker": "SOLUSD"})
            message = json.loads(ws.receive_text())
            assert message["type"] == "batch_update"
            (update,) = message["updates"]
            assert update["ticker"] == "SOLUSD"
            assert update["value"] > 0
            assert set(update) == {"ticker", "value", "changePercent", "observedAt"}
            ws.send_text("ping")


def test_idle_websocket_is_kept_alive():
    client, service = make_client(keepalive_interval=0.05, subscriber_timeout=0.2, sweep_interval=0.05)
    with client:
        with client.websocket_connect("/ws/prices") as ws:
            assert json.loads(ws.receive_text())["type"] == "connected"

            # no tickers: only keep-alives flow, for well past the liveness timeout
            for _ in range(8):
                message = json.loads(ws.receive_text())
                assert message["type"] == "keep_alive"

            assert service.metrics().subscriber_count == 1
