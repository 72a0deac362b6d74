import asyncio
import sys

sys.path.insert(0, '.')

from ingest.websocket_client import KlineStreamClient
from tests.signal_fixtures import kline_event, make_candle


class DummySocket:
    def __init__(self, messages):
        self.messages = list(messages)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    def __aiter__(self):
        return self._iter()

    async def _iter(self):
        for message in self.messages:
            yield message


async def _wait_for(predicate, timeout=2.0):
    async def poll():
        while not predicate():
            await asyncio.sleep(0.01)
    await asyncio.wait_for(poll(), timeout)


def test_stream_reconnects_after_remote_close():
    urls = []

    def connect(url, **kwargs):
        urls.append(url)
        return DummySocket([kline_event(make_candle(len(urls), 100.0 + len(urls)), True)])

    client = KlineStreamClient('BTCUSDT', '1m', ws_url='wss://example.test/ws', reconnect_delay_s=0, connect=connect)
    received = []

    async def on_kline(candle, is_closed):
        received.append(candle.close)

    client.register_handler('kline', on_kline)

    async def run():
        client.start()
        await _wait_for(lambda: len(urls) >= 3)
        await client.stop()

    asyncio.run(run())
    assert urls[0] == 'wss://example.test/ws/btcusdt@kline_1m'
    assert client.reconnect_count >= 2
    assert received[:2] == [101.0, 102.0]
    assert not client.running
    assert client.task is None


def test_stop_cancels_pending_reconnect():
    attempts = []

    def connect(url, **kwargs):
        attempts.append(url)
        raise OSError("connection refused")

    client = KlineStreamClient('BTCUSDT', '1m', ws_url='wss://example.test/ws', reconnect_delay_s=60, connect=connect)

    async def run():
        task = client.start()
        await _wait_for(lambda: client.reconnect_count == 1)
        await client.stop()
        return task

    task = asyncio.run(run())
    assert task.cancelled()
    assert len(attempts) == 1
    assert not client.connected


def test_handler_errors_do_not_kill_the_stream():
    client = KlineStreamClient('BTCUSDT', '1m', ws_url='wss://example.test/ws')

    async def broken(candle, is_closed):
        raise RuntimeError("boom")

    client.register_handler('kline', broken)
    asyncio.run(client._handle_message(kline_event(make_candle(1, 100.0), False)))
