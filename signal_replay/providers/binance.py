from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple

import aiohttp

from ..models import Candle
from ..timeparse import interval_to_ms

log = logging.getLogger("binance")

FAPI_BASE = "https://fapi.binance.com"
KLINES_PATH = "/fapi/v1/klines"
EXCHANGE_INFO_PATH = "/fapi/v1/exchangeInfo"
MAX_KLINES_LIMIT = 1500


class BinanceRequestError(RuntimeError):
    def __init__(self, status: int, body: str = ""):
        super().__init__(f"Binance request failed: {status}")
        self.status = status
        self.body = body


def backoff_delay(attempt: int, base_s: float = 0.2) -> float:
    """Sleep before retrying after 0-based `attempt` failed."""
    return base_s * (2 ** attempt)


def is_retryable_status(status: int) -> bool:
    return status >= 500 or status == 429


def _parse_row(row: List[Any]) -> Candle:
    # [0]=open time, [1..4]=OHLC as numeric strings
    return Candle(
        open_time_ms=int(row[0]),
        open=float(row[1]),
        high=float(row[2]),
        low=float(row[3]),
        close=float(row[4]),
    )


class BinanceProvider:
    def __init__(
        self,
        base_url: str = FAPI_BASE,
        *,
        rest_timeout_s: int = 20,
        rest_max_attempts: int = 3,
        rest_backoff_s: float = 0.2,
        page_limit: int = MAX_KLINES_LIMIT,
        fetch_timeout_s: Optional[float] = None,
        rest_conn_limit: int = 40,
        rest_conn_limit_per_host: int = 10,
    ):
        self.base_url = base_url.rstrip("/")
        self.rest_timeout_s = rest_timeout_s
        self.page_limit = int(page_limit)
        # Overall bound for one logical fetch (all pages + retries); None/0 = unbounded.
        self.fetch_timeout_s = fetch_timeout_s

        self.rest_max_attempts = max(1, int(rest_max_attempts))
        self.rest_backoff_s = rest_backoff_s
        self.rest_conn_limit = rest_conn_limit
        self.rest_conn_limit_per_host = rest_conn_limit_per_host

        self._session: Optional[aiohttp.ClientSession] = None

    async def close(self) -> None:
        """Close the shared aiohttp session (best-effort)."""
        if self._session is not None and not self._session.closed:
            await self._session.close()

    def _timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(
            total=self.rest_timeout_s,
            connect=min(10, self.rest_timeout_s),
            sock_connect=min(10, self.rest_timeout_s),
            sock_read=max(10, int(self.rest_timeout_s * 0.75)),
        )

    def _connector(self) -> aiohttp.TCPConnector:
        return aiohttp.TCPConnector(
            limit=self.rest_conn_limit,
            limit_per_host=self.rest_conn_limit_per_host,
            ttl_dns_cache=300,
            enable_cleanup_closed=True,
        )

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout(), connector=self._connector())
        return self._session

    async def _with_deadline(self, coro):
        if not self.fetch_timeout_s:
            return await coro
        return await asyncio.wait_for(coro, timeout=self.fetch_timeout_s)

    async def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        url = self.base_url + path
        query = {k: str(v) for k, v in (params or {}).items()}
        sess = await self._get_session()

        last_err: Optional[BaseException] = None
        for attempt in range(self.rest_max_attempts):
            try:
                async with sess.get(url, params=query) as resp:
                    if 200 <= resp.status < 300:
                        # Some proxies return a wrong content-type; be tolerant.
                        return await resp.json(content_type=None)
                    txt = await resp.text()
                    if not is_retryable_status(resp.status):
                        raise BinanceRequestError(resp.status, txt[:500])
                    last_err = BinanceRequestError(resp.status, txt[:500])
                    log.warning(
                        "rest_retryable_status attempt=%d/%d status=%s path=%s params=%s body=%s",
                        attempt + 1,
                        self.rest_max_attempts,
                        resp.status,
                        path,
                        query,
                        txt[:200],
                    )
            except (asyncio.TimeoutError, aiohttp.ClientError) as e:
                last_err = e
                log.warning(
                    "rest_timeout_or_client_err attempt=%d/%d path=%s params=%s err=%s",
                    attempt + 1,
                    self.rest_max_attempts,
                    path,
                    query,
                    e,
                )
            if attempt + 1 < self.rest_max_attempts:
                await asyncio.sleep(backoff_delay(attempt, self.rest_backoff_s))

        assert last_err is not None
        raise last_err

    async def fetch_exchange_symbols(self) -> List[str]:
        data = await self._with_deadline(self._get_json(EXCHANGE_INFO_PATH))
        return [str(entry["symbol"]) for entry in (data or {}).get("symbols", [])]

    async def fetch_latest_klines(self, symbol: str, interval: str, limit: int) -> List[Candle]:
        params = {"symbol": symbol, "interval": interval, "limit": int(limit)}
        data = await self._with_deadline(self._get_json(KLINES_PATH, params))
        return [_parse_row(row) for row in data]

    async def fetch_klines_page(
        self,
        symbol: str,
        interval: str,
        start_ms: int,
        end_ms: int,
        limit: int,
    ) -> List[Candle]:
        """One request, no paging: the first `limit` candles at or after start_ms."""
        params = {
            "symbol": symbol,
            "interval": interval,
            "startTime": int(start_ms),
            "endTime": int(end_ms),
            "limit": int(limit),
        }
        data = await self._with_deadline(self._get_json(KLINES_PATH, params))
        return [c for c in (_parse_row(row) for row in data) if c.open_time_ms < end_ms]

    async def fetch_klines_range(
        self,
        symbol: str,
        interval: str,
        start_ms: int,
        end_ms: int,
        limit: Optional[int] = None,
    ) -> Tuple[List[Candle], bool]:
        """Candles with open time in [start_ms, end_ms), paging as needed.

        Returns (candles, partial). `partial` is set when a page comes back
        empty or the upstream stops advancing before end_ms is reached.
        """
        return await self._with_deadline(self._fetch_pages(symbol, interval, start_ms, end_ms, limit))

    async def _fetch_pages(
        self,
        symbol: str,
        interval: str,
        start_ms: int,
        end_ms: int,
        limit: Optional[int],
    ) -> Tuple[List[Candle], bool]:
        interval_ms = interval_to_ms(interval)
        page_limit = int(limit) if limit else self.page_limit
        by_open: Dict[int, Candle] = {}
        partial = False
        cursor = int(start_ms)
        pages = 0

        while cursor < end_ms:
            params = {
                "symbol": symbol,
                "interval": interval,
                "startTime": cursor,
                "endTime": int(end_ms),
                "limit": page_limit,
            }
            data = await self._get_json(KLINES_PATH, params)
            pages += 1
            if not data:
                partial = True
                log.info("klines_empty_page symbol=%s tf=%s cursor=%d end=%d", symbol, interval, cursor, end_ms)
                break

            for row in data:
                c = _parse_row(row)
                if c.open_time_ms >= end_ms:
                    continue
                by_open[c.open_time_ms] = c

            last_open = int(data[-1][0])
            next_cursor = last_open + interval_ms
            if next_cursor <= cursor:
                partial = True
                log.warning(
                    "klines_no_progress symbol=%s tf=%s cursor=%d last_open=%d",
                    symbol,
                    interval,
                    cursor,
                    last_open,
                )
                break
            cursor = next_cursor

        candles = sorted(by_open.values(), key=lambda c: c.open_time_ms)
        log.debug(
            "klines_range_done symbol=%s tf=%s pages=%d candles=%d partial=%s",
            symbol,
            interval,
            pages,
            len(candles),
            partial,
        )
        return candles, partial
