import asyncio
import sys

import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, '.')

from api import fastapi_server
from api.alerts import SignalAlertNotifier
from strategy.signal_manager import Signal, SignalKind
from tests.signal_fixtures import build_engine, flat_candles


@pytest.fixture
def client():
    engine, _, _ = build_engine(flat_candles(100))

    async def prepare():
        await engine.feed.start()
        await engine.analyze()

    asyncio.run(prepare())
    fastapi_server.attach_engine(engine)
    # no context manager: the lifespan would start a live engine
    yield TestClient(fastapi_server.app)
    fastapi_server.signal_engine = None


def test_signal_endpoints(client):
    body = client.get("/api/signal").json()
    assert body['symbol'] == 'BTCUSDT'
    assert body['ready'] is True
    assert body['signal']['strategy'] == 'COMBINED'
    assert body['signal']['confidence'] == 30

    signals = client.get("/api/signals").json()['signals']
    assert set(signals) == {'TREND', 'trendline', 'channel'}
    assert signals['TREND']['signal'] == 'NEUTRAL'


def test_candles_and_swings(client):
    body = client.get("/api/candles", params={'limit': 10}).json()
    assert body['count'] == 10
    assert body['candles'][-1]['close'] == 100.0
    assert client.get("/api/swings").json()['count'] == 0


def test_history_endpoints(client):
    assert client.get("/api/history").json()['count'] == 1
    assert client.delete("/api/history").json()['status'] == 'cleared'
    assert client.get("/api/history").json()['count'] == 0


def test_symbol_switch(client):
    body = client.post("/api/symbol", json={'symbol': 'ethusdt'}).json()
    assert body['symbol'] == 'ETHUSDT'
    assert client.get("/api/signal").json()['signal']['symbol'] == 'ETHUSDT'


def test_health_and_uninitialized_engine(client):
    assert client.get("/health").json()['candles'] == 100
    fastapi_server.signal_engine = None
    assert client.get("/api/signal").status_code == 503


def test_alert_payload_and_disabled_webhook():
    notifier = SignalAlertNotifier(webhook_url='${SIGNAL_ALERT_WEBHOOK}')
    assert not notifier.enabled
    signal = Signal(SignalKind.BUY, 'Price near lower channel boundary', 101.5, 70, 'channel', 'BTCUSDT', 1)
    payload = notifier.build_payload(signal)
    assert payload['title'] == 'BTCUSDT BUY'
    assert payload['body'] == 'channel: Price near lower channel boundary @ 101.50 (70%)'
    assert payload['signal']['signal'] == 'BUY'
    asyncio.run(notifier.on_new_signal(signal))


def test_candle_limit_must_be_positive(client):
    assert client.get("/api/candles", params={'limit': -5}).status_code == 422
    assert client.get("/api/candles", params={'limit': 0}).status_code == 422
    assert client.get("/api/candles", params={'limit': 500}).json()['count'] == 100
