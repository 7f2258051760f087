from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import FrozenSet, Optional, Tuple

from .providers.binance import BinanceProvider

log = logging.getLogger("symbols")

QUOTE = "USDT"
DENOMINATION_PREFIXES = ("1000", "10000")
EXCHANGE_INFO_TTL_MS = 30 * 60 * 1000


def normalize_symbol(ticker: str) -> str:
    upper = (ticker or "").strip().upper()
    if upper.endswith(QUOTE):
        return upper
    return f"{upper}{QUOTE}"


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class SymbolSnapshot:
    symbols: FrozenSet[str]
    symbols_list: Tuple[str, ...]
    expires_at_ms: int


class SymbolDirectory:
    """Listed USD-M symbols, cached as an immutable snapshot with a TTL.

    The snapshot is swapped wholesale on refresh, so concurrent readers always
    see either the previous or the new set. At most one refresh runs at a time.
    """

    def __init__(self, provider: BinanceProvider, ttl_ms: int = EXCHANGE_INFO_TTL_MS) -> None:
        self.provider = provider
        self.ttl_ms = int(ttl_ms)
        self._snapshot: Optional[SymbolSnapshot] = None
        self._refresh_lock = asyncio.Lock()

    def invalidate(self) -> None:
        self._snapshot = None

    async def snapshot(self) -> SymbolSnapshot:
        snap = self._snapshot
        if snap is not None and snap.expires_at_ms > _now_ms():
            return snap
        async with self._refresh_lock:
            # Another task may have refreshed while we waited.
            snap = self._snapshot
            if snap is not None and snap.expires_at_ms > _now_ms():
                return snap
            symbols = await self.provider.fetch_exchange_symbols()
            snap = SymbolSnapshot(
                symbols=frozenset(symbols),
                symbols_list=tuple(symbols),
                expires_at_ms=_now_ms() + self.ttl_ms,
            )
            self._snapshot = snap
            log.info("exchange_info_refreshed symbols=%d ttl_ms=%d", len(symbols), self.ttl_ms)
            return snap

    async def resolve(self, ticker: str) -> Optional[str]:
        normalized = normalize_symbol(ticker)
        base = normalized[: -len(QUOTE)]
        if not base:
            return None
        snap = await self.snapshot()
        if normalized in snap.symbols:
            return normalized

        for prefix in DENOMINATION_PREFIXES:
            alt = f"{prefix}{base}{QUOTE}"
            if alt in snap.symbols:
                return alt

        candidates = [s for s in snap.symbols_list if s.endswith(QUOTE) and base in s]
        if len(candidates) == 1:
            return candidates[0]
        if candidates:
            log.info("symbol_ambiguous ticker=%s candidates=%s", ticker, candidates[:10])
        return None

    async def is_listed(self, symbol: str) -> bool:
        snap = await self.snapshot()
        return symbol in snap.symbols
