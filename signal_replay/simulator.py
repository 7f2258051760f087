from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from .models import LONG, Candle
from .timeparse import MS_PER_MINUTE

HIT_NONE = "NONE"
HIT_TP = "TP"
HIT_SL = "SL"
HIT_BOTH = "BOTH"

SL_FIRST = "SL_FIRST"
TP_FIRST = "TP_FIRST"
SAME_CANDLE_UNKNOWN = "SAME_CANDLE_UNKNOWN"


@dataclass(frozen=True)
class HitReport:
    sl_tp_hit: str
    sl_before_tp: Optional[bool]
    hit_order: Optional[str]
    sl_hit_ts: Optional[int]
    tp_hit_ts: Optional[int]
    sl_price: Optional[float]
    tp_price: Optional[float]


def calculate_sl_tp_prices(
    entry_price: float,
    direction: str,
    leverage: float,
    sl_roe_pct: float,
    tp_roe_pct: float,
) -> Tuple[float, float]:
    """ROE thresholds -> (sl_price, tp_price). The price move is roe / leverage."""
    safe_leverage = leverage or 1.0
    sl_move = sl_roe_pct / safe_leverage / 100.0
    tp_move = tp_roe_pct / safe_leverage / 100.0
    if direction == LONG:
        return entry_price * (1.0 - sl_move), entry_price * (1.0 + tp_move)
    return entry_price * (1.0 + sl_move), entry_price * (1.0 - tp_move)


def calculate_mfe_mae(
    candles: Sequence[Candle],
    entry_price: float,
    direction: str,
    leverage: float,
) -> Tuple[Optional[float], Optional[float]]:
    """Max favorable / adverse excursion in leveraged percent, or (None, None)."""
    if not candles or entry_price <= 0:
        return None, None

    max_high = max(c.high for c in candles)
    min_low = min(c.low for c in candles)
    up = (max_high - entry_price) / entry_price
    down = (entry_price - min_low) / entry_price
    if direction == LONG:
        mfe, mae = up, down
    else:
        mfe, mae = down, up
    return mfe * 100.0 * leverage, mae * 100.0 * leverage


def detect_sl_tp_hits(
    candles: Sequence[Candle],
    entry_price: float,
    direction: str,
    leverage: float,
    sl_roe_pct: float,
    tp_roe_pct: float,
) -> HitReport:
    if entry_price <= 0:
        return HitReport(HIT_NONE, None, None, None, None, None, None)

    sl_price, tp_price = calculate_sl_tp_prices(entry_price, direction, leverage, sl_roe_pct, tp_roe_pct)

    sl_hit_ts: Optional[int] = None
    tp_hit_ts: Optional[int] = None
    for c in candles:
        if direction == LONG:
            tp_hit = c.high >= tp_price
            sl_hit = c.low <= sl_price
        else:
            tp_hit = c.low <= tp_price
            sl_hit = c.high >= sl_price
        if tp_hit and tp_hit_ts is None:
            tp_hit_ts = c.open_time_ms
        if sl_hit and sl_hit_ts is None:
            sl_hit_ts = c.open_time_ms
        if tp_hit_ts is not None and sl_hit_ts is not None:
            break

    if tp_hit_ts is not None and sl_hit_ts is not None:
        # OHLC bars carry no intrabar ordering: a shared first bar stays unresolved.
        if sl_hit_ts < tp_hit_ts:
            return HitReport(HIT_BOTH, True, SL_FIRST, sl_hit_ts, tp_hit_ts, sl_price, tp_price)
        if tp_hit_ts < sl_hit_ts:
            return HitReport(HIT_BOTH, False, TP_FIRST, sl_hit_ts, tp_hit_ts, sl_price, tp_price)
        return HitReport(HIT_BOTH, None, SAME_CANDLE_UNKNOWN, sl_hit_ts, tp_hit_ts, sl_price, tp_price)
    if tp_hit_ts is not None:
        return HitReport(HIT_TP, None, None, None, tp_hit_ts, sl_price, tp_price)
    if sl_hit_ts is not None:
        return HitReport(HIT_SL, None, None, sl_hit_ts, None, sl_price, tp_price)
    return HitReport(HIT_NONE, None, None, None, None, sl_price, tp_price)


def detect_missing_minutes(candles: Sequence[Candle], interval_ms: int = MS_PER_MINUTE) -> Tuple[bool, int]:
    """(gap, missing_bars) for a series expected to be contiguous at interval_ms."""
    missing = 0
    for prev, cur in zip(candles, candles[1:]):
        expected = prev.open_time_ms + interval_ms
        if cur.open_time_ms > expected:
            missing += round((cur.open_time_ms - expected) / interval_ms)
    return missing > 0, missing
