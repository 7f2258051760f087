from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

LONG = "LONG"
SHORT = "SHORT"

# Classified failure codes surfaced in Quality.error
ERR_SYMBOL_NOT_LISTED = "symbol_not_on_usdm_futures"
ERR_SYMBOL_KLINE_UNAVAILABLE = "symbol_kline_unavailable"
ERR_START_BEFORE_LISTING = "start_before_listing_history"
ERR_ENTRY_ALIGNMENT = "entry_kline_not_found_timestamp_alignment"
ERR_NO_CANDLES = "no_candles_returned"

SOURCE = {"venue": "BINANCE_FUTURES_USDM", "endpoint": "/fapi/v1/klines"}


@dataclass(frozen=True)
class Candle:
    open_time_ms: int
    open: float
    high: float
    low: float
    close: float


@dataclass(frozen=True)
class Signal:
    ticker: str
    direction: str  # LONG or SHORT, any case
    start_time: str  # HH:MM, UTC


@dataclass(frozen=True)
class BacktestOptions:
    selected_date: str = ""  # DD/MM/YYYY
    leverage: Union[str, float, None] = None  # 5 or "5x"
    sl_roe_pct: Union[str, float, None] = None
    tp_roe_pct: Union[str, float, None] = None
    lookahead_hours: Union[str, float, None] = None
    timeframe: Optional[str] = None


@dataclass(frozen=True)
class Quality:
    partial: bool = False
    gap: bool = False
    missing_minutes: int = 0
    error: Optional[str] = None
    debug: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "partial": self.partial,
            "gap": self.gap,
            "missingMinutes": self.missing_minutes,
            "error": self.error,
        }
        if self.debug is not None:
            out["debug"] = dict(self.debug)
        return out


@dataclass(frozen=True)
class BacktestResult:
    id: str
    pair: str
    direction: str
    start_time_utc_ms: int
    entry_price: Optional[float]
    sl_roe_pct: float
    tp_roe_pct: float
    leverage: float
    sl_price: Optional[float]
    tp_price: Optional[float]
    mfe_pct: Optional[float]
    mae_pct: Optional[float]
    sl_tp_hit: str  # NONE | TP | SL | BOTH
    sl_before_tp: Optional[bool]
    hit_order: Optional[str]  # SL_FIRST | TP_FIRST | SAME_CANDLE_UNKNOWN
    lookahead_hours: float
    timeframe: str
    quality: Quality
    source: Dict[str, str] = field(default_factory=lambda: dict(SOURCE))

    def to_dict(self) -> Dict[str, Any]:
        """camelCase rendering for JSON consumers."""
        return {
            "id": self.id,
            "pair": self.pair,
            "direction": self.direction,
            "startTimeUtcMs": self.start_time_utc_ms,
            "entryPrice": self.entry_price,
            "slRoePct": self.sl_roe_pct,
            "tpRoePct": self.tp_roe_pct,
            "leverage": self.leverage,
            "slPrice": self.sl_price,
            "tpPrice": self.tp_price,
            "mfePct": self.mfe_pct,
            "maePct": self.mae_pct,
            "slTpHit": self.sl_tp_hit,
            "slBeforeTp": self.sl_before_tp,
            "hitOrder": self.hit_order,
            "lookaheadHours": self.lookahead_hours,
            "timeframe": self.timeframe,
            "quality": self.quality.to_dict(),
            "source": dict(self.source),
        }
