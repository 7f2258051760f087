from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .models import (
    ERR_ENTRY_ALIGNMENT,
    ERR_START_BEFORE_LISTING,
    ERR_SYMBOL_KLINE_UNAVAILABLE,
)
from .providers.binance import BinanceProvider
from .timeparse import MS_PER_MINUTE, entry_open_time, interval_to_ms

log = logging.getLogger("entry")

# 2000-01-01T00:00:00Z, used as "beginning of history" when probing the first listed bar.
HISTORY_FLOOR_MS = 946_684_800_000


@dataclass(frozen=True)
class EntryResolution:
    price: Optional[float]
    open_time_ms: int
    partial: bool = False
    error: Optional[str] = None
    debug: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.price is not None


class EntryResolver:
    """Locates the open price of the bar containing the signal time."""

    def __init__(self, provider: BinanceProvider) -> None:
        self.provider = provider

    async def resolve_entry(self, symbol: str, interval: str, start_time_utc_ms: int) -> EntryResolution:
        tf_ms = interval_to_ms(interval)
        boundary = entry_open_time(start_time_utc_ms, tf_ms)
        entry_end = boundary + tf_ms - 1
        debug: Dict[str, Any] = {
            "requestedSymbol": symbol,
            "interval": interval,
            "startTsUtcMs": start_time_utc_ms,
            "entryOpenTime": boundary,
            "entryEndTime": entry_end,
            "entryReq": {
                "symbol": symbol,
                "interval": interval,
                "startTime": boundary,
                "endTime": entry_end,
                "limit": 2,
            },
        }

        candles, partial = await self.provider.fetch_klines_range(symbol, interval, boundary, entry_end, limit=2)
        if candles:
            return EntryResolution(price=candles[0].open, open_time_ms=candles[0].open_time_ms, partial=partial, debug=debug)

        log.warning("entry_kline_empty symbol=%s tf=%s entry_open=%d", symbol, interval, boundary)
        debug["fallbackReq"] = {
            "symbol": symbol,
            "interval": interval,
            "startTime": boundary - tf_ms,
            "endTime": entry_end,
            "limit": 5,
        }
        fallback, _ = await self.provider.fetch_klines_range(symbol, interval, boundary - tf_ms, entry_end, limit=5)
        for c in fallback:
            if c.open_time_ms == boundary:
                log.info("entry_kline_recovered symbol=%s tf=%s entry_open=%d", symbol, interval, boundary)
                return EntryResolution(price=c.open, open_time_ms=boundary, partial=partial, debug=debug)

        latest = await self.provider.fetch_latest_klines(symbol, interval, 1)
        debug["latestReqOk"] = bool(latest)
        debug["latestKlineOpenTime"] = latest[0].open_time_ms if latest else None
        if not latest:
            return self._failure(ERR_SYMBOL_KLINE_UNAVAILABLE, boundary, debug)

        earliest = await self.provider.fetch_klines_page(
            symbol, "1m", HISTORY_FLOOR_MS, start_time_utc_ms + MS_PER_MINUTE, limit=1
        )
        earliest_open = earliest[0].open_time_ms if earliest else None
        debug["earliestKlineOpenTime"] = earliest_open
        if earliest_open is not None and start_time_utc_ms < earliest_open:
            return self._failure(ERR_START_BEFORE_LISTING, boundary, debug)

        return self._failure(ERR_ENTRY_ALIGNMENT, boundary, debug)

    def _failure(self, code: str, boundary: int, debug: Dict[str, Any]) -> EntryResolution:
        log.warning("entry_unresolved code=%s debug=%s", code, debug)
        return EntryResolution(price=None, open_time_ms=boundary, partial=True, error=code, debug=debug)
