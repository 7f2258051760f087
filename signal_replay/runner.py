from __future__ import annotations

import asyncio
import dataclasses
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from .config import Config
from .entry import EntryResolver
from .models import (
    ERR_NO_CANDLES,
    ERR_SYMBOL_NOT_LISTED,
    BacktestOptions,
    BacktestResult,
    Quality,
    Signal,
)
from .providers.binance import BinanceProvider
from .simulator import HIT_NONE, calculate_mfe_mae, detect_missing_minutes, detect_sl_tp_hits
from .symbols import SymbolDirectory
from .timeparse import (
    entry_open_time,
    interval_to_ms,
    lookahead_hours,
    lookahead_ms,
    map_timeframe_to_interval,
    normalize_direction,
    parse_leverage,
    parse_percentage,
    parse_start_time_utc_ms,
)

log = logging.getLogger("runner")


def _err_text(e: BaseException) -> str:
    return str(e) or e.__class__.__name__


class BacktestRunner:
    """Replays one signal at a time: symbol -> entry bar -> 1m lookahead -> outcome.

    Malformed input raises ValueError before any request is made. Everything
    after validation ends in a BacktestResult; failures land in quality.error.
    """

    def __init__(self, cfg: Config, provider: Optional[BinanceProvider] = None):
        self.cfg = cfg
        self.provider = provider or BinanceProvider(
            base_url=cfg.provider.base_url,
            rest_timeout_s=cfg.provider.rest_timeout_s,
            rest_max_attempts=cfg.provider.rest_max_attempts,
            rest_backoff_s=cfg.provider.rest_backoff_s,
            page_limit=cfg.provider.page_limit,
            fetch_timeout_s=cfg.provider.fetch_timeout_s,
        )
        self.symbols = SymbolDirectory(self.provider, ttl_ms=int(cfg.provider.exchange_info_ttl_s) * 1000)
        self.entry = EntryResolver(self.provider)

    def with_defaults(self, options: BacktestOptions) -> BacktestOptions:
        d = self.cfg.backtest
        return dataclasses.replace(
            options,
            leverage=d.leverage if options.leverage is None else options.leverage,
            sl_roe_pct=d.sl_roe_pct if options.sl_roe_pct is None else options.sl_roe_pct,
            tp_roe_pct=d.tp_roe_pct if options.tp_roe_pct is None else options.tp_roe_pct,
            lookahead_hours=d.lookahead_hours if options.lookahead_hours is None else options.lookahead_hours,
            timeframe=options.timeframe or d.timeframe,
        )

    def validate(self, signal: Signal, options: BacktestOptions) -> Tuple[str, int, str]:
        """-> (direction, start_time_utc_ms, interval); raises ValueError."""
        if not (signal.ticker or "").strip() or not signal.direction or not signal.start_time:
            raise ValueError("Signal is missing required fields")
        if not options.selected_date:
            raise ValueError("selected_date_required")
        direction = normalize_direction(signal.direction)
        start_ms = parse_start_time_utc_ms(options.selected_date, signal.start_time, "utc")
        interval = map_timeframe_to_interval(options.timeframe)
        return direction, start_ms, interval

    def _unresolved(
        self,
        pair: str,
        direction: str,
        start_ms: int,
        options: BacktestOptions,
        interval: str,
        error: str,
        debug: Dict[str, Any],
    ) -> BacktestResult:
        log.warning("backtest_unresolved pair=%s start=%d error=%s", pair, start_ms, error)
        return BacktestResult(
            id=f"{pair}-{start_ms}",
            pair=pair,
            direction=direction,
            start_time_utc_ms=start_ms,
            entry_price=None,
            sl_roe_pct=parse_percentage(options.sl_roe_pct),
            tp_roe_pct=parse_percentage(options.tp_roe_pct),
            leverage=parse_leverage(options.leverage),
            sl_price=None,
            tp_price=None,
            mfe_pct=None,
            mae_pct=None,
            sl_tp_hit=HIT_NONE,
            sl_before_tp=None,
            hit_order=None,
            lookahead_hours=lookahead_hours(options.lookahead_hours),
            timeframe=interval,
            quality=Quality(partial=True, gap=False, missing_minutes=0, error=error, debug=debug),
        )

    async def run(self, signal: Signal, options: BacktestOptions) -> BacktestResult:
        options = self.with_defaults(options)
        direction, start_ms, interval = self.validate(signal, options)

        tf_ms = interval_to_ms(interval)
        boundary = entry_open_time(start_ms, tf_ms)
        debug: Dict[str, Any] = {
            "requestedSymbol": signal.ticker,
            "interval": interval,
            "selectedDate": options.selected_date,
            "signalTime": signal.start_time,
            "startTsUtcMs": start_ms,
            "entryOpenTime": boundary,
            "entryEndTime": boundary + tf_ms - 1,
        }
        log.info("backtest_start ticker=%s side=%s start=%d tf=%s", signal.ticker, direction, start_ms, interval)

        fallback_pair = signal.ticker.strip().upper()
        try:
            symbol = await self.symbols.resolve(signal.ticker)
        except Exception as e:
            log.warning("symbol_resolve_failed ticker=%s err=%r", signal.ticker, e)
            return self._unresolved(fallback_pair, direction, start_ms, options, interval, _err_text(e), debug)

        if symbol is None:
            return self._unresolved(fallback_pair, direction, start_ms, options, interval, ERR_SYMBOL_NOT_LISTED, debug)

        debug["requestedSymbol"] = symbol
        try:
            if not await self.symbols.is_listed(symbol):
                return self._unresolved(symbol, direction, start_ms, options, interval, ERR_SYMBOL_NOT_LISTED, debug)

            entry = await self.entry.resolve_entry(symbol, interval, start_ms)
            if not entry.ok:
                return self._unresolved(
                    symbol, direction, start_ms, options, interval, entry.error, {**debug, **entry.debug}
                )

            candles, lookahead_partial = await self.provider.fetch_klines_range(
                symbol, "1m", start_ms, start_ms + lookahead_ms(options.lookahead_hours)
            )
        except Exception as e:
            log.warning("backtest_fetch_failed symbol=%s err=%r", symbol, e)
            return self._unresolved(symbol, direction, start_ms, options, interval, _err_text(e), debug)

        leverage = parse_leverage(options.leverage)
        sl_roe_pct = parse_percentage(options.sl_roe_pct)
        tp_roe_pct = parse_percentage(options.tp_roe_pct)

        gap, missing = detect_missing_minutes(candles)
        hits = detect_sl_tp_hits(candles, entry.price, direction, leverage, sl_roe_pct, tp_roe_pct)
        mfe, mae = calculate_mfe_mae(candles, entry.price, direction, leverage)

        if candles:
            quality = Quality(
                partial=gap or lookahead_partial or entry.partial,
                gap=gap,
                missing_minutes=missing,
            )
        else:
            quality = Quality(partial=True, gap=gap, missing_minutes=missing, error=ERR_NO_CANDLES, debug=debug)

        result = BacktestResult(
            id=f"{symbol}-{start_ms}",
            pair=symbol,
            direction=direction,
            start_time_utc_ms=start_ms,
            entry_price=entry.price,
            sl_roe_pct=sl_roe_pct,
            tp_roe_pct=tp_roe_pct,
            leverage=leverage,
            sl_price=hits.sl_price,
            tp_price=hits.tp_price,
            mfe_pct=mfe,
            mae_pct=mae,
            sl_tp_hit=hits.sl_tp_hit,
            sl_before_tp=hits.sl_before_tp,
            hit_order=hits.hit_order,
            lookahead_hours=lookahead_hours(options.lookahead_hours),
            timeframe=interval,
            quality=quality,
        )
        log.info(
            "backtest_done pair=%s side=%s entry=%s hit=%s order=%s candles=%d partial=%s missing=%d",
            symbol,
            direction,
            entry.price,
            result.sl_tp_hit,
            result.hit_order,
            len(candles),
            quality.partial,
            missing,
        )
        return result

    async def run_many(
        self,
        items: Sequence[Tuple[Signal, BacktestOptions]],
        concurrency: Optional[int] = None,
    ) -> List[Union[BacktestResult, ValueError]]:
        """Independent signals in parallel; rejected inputs come back as their ValueError."""
        sem = asyncio.Semaphore(max(1, int(concurrency or self.cfg.backtest.concurrency)))

        async def _one(signal: Signal, options: BacktestOptions) -> Union[BacktestResult, ValueError]:
            try:
                async with sem:
                    return await self.run(signal, options)
            except ValueError as e:
                log.warning("signal_rejected ticker=%s err=%s", signal.ticker, e)
                return e

        return list(await asyncio.gather(*[_one(s, o) for s, o in items]))
