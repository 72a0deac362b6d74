import asyncio
import json
from typing import Any, Dict, List, Optional

import aiohttp

from config import config
from .candle_store import Candle, ParseError, candle_from_kline_row


class BinanceAPIError(Exception):
    def __init__(self, status: int, code: Optional[int], msg: Optional[str], body: str):
        self.status = status
        self.code = code
        self.msg = msg
        self.body = body
        text = f"Binance API error (status={status}, code={code}, msg={msg})"
        super().__init__(text)


class DataFetchError(Exception):
    """Historical klines could not be fetched or decoded."""


class BinanceRESTClient:
    def __init__(self, base_url: Optional[str] = None, timeout_s: Optional[float] = None):
        # Spot market data, public endpoints only
        self.base_url = (base_url or config.exchange.get('rest_url', 'https://api.binance.com')).rstrip("/")
        self.timeout_s = float(timeout_s or config.exchange.get('request_timeout_s', 15))
        self._session: Optional[aiohttp.ClientSession] = None
        self._lock = asyncio.Lock()

    async def _get_session(self) -> aiohttp.ClientSession:
        async with self._lock:
            if self._session is None or self._session.closed:
                self._session = aiohttp.ClientSession()
            return self._session

    async def close(self):
        async with self._lock:
            if self._session and not self._session.closed:
                await self._session.close()
                self._session = None

    async def _request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        session = await self._get_session()
        url = f"{self.base_url}{path}"

        async with session.request(
            method.upper(),
            url,
            params=dict(params or {}),
            timeout=aiohttp.ClientTimeout(total=self.timeout_s),
        ) as resp:
            text = await resp.text()
            content_type = resp.headers.get("Content-Type", "")
            payload: Any
            if "application/json" in content_type:
                try:
                    payload = json.loads(text)
                except ValueError:
                    payload = text
            else:
                payload = text

            if resp.status >= 400:
                code = None
                msg = None
                if isinstance(payload, dict):
                    code = payload.get("code")
                    msg = payload.get("msg")
                raise BinanceAPIError(resp.status, code, msg, text)

            return payload

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self._request("GET", path, params=params)

    async def fetch_klines(self, symbol: str, interval: str, limit: int = 500) -> List[Candle]:
        """Most recent ``limit`` candles, oldest first.

        Raises DataFetchError for transport failures, API errors and payloads
        that are not a list of well-formed kline rows.
        """
        params = {"symbol": symbol.upper(), "interval": interval, "limit": int(limit)}
        try:
            raw = await self.get("/api/v3/klines", params=params)
        except (aiohttp.ClientError, asyncio.TimeoutError, BinanceAPIError) as exc:
            raise DataFetchError(f"klines request failed for {symbol} {interval}: {exc}") from exc
        if not isinstance(raw, list):
            raise DataFetchError(f"Unexpected klines payload type {type(raw).__name__}")
        try:
            return [candle_from_kline_row(row) for row in raw]
        except ParseError as exc:
            raise DataFetchError(f"Malformed klines payload: {exc}") from exc
