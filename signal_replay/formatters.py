from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from .models import BacktestResult


def _fmt_ms(ts_ms: int) -> str:
    dt = datetime.fromtimestamp(ts_ms / 1000.0, tz=timezone.utc)
    return dt.strftime("%Y-%m-%d %H:%M")


def _fmt_price(val: Optional[float]) -> str:
    if val is None:
        return "-"
    return f"{val:g}"


def _fmt_pct(val: Optional[float]) -> str:
    if val is None:
        return "-"
    return f"{val:+.2f}%"


def format_result(r: BacktestResult) -> str:
    """One line per result, for terminals and logs."""
    outcome = r.sl_tp_hit
    if r.hit_order:
        outcome = f"{outcome} ({r.hit_order})"
    parts = [
        f"{r.pair} {r.direction}",
        f"@ {_fmt_ms(r.start_time_utc_ms)} UTC",
        f"entry {_fmt_price(r.entry_price)}",
        f"SL {_fmt_price(r.sl_price)} / TP {_fmt_price(r.tp_price)}",
        f"x{r.leverage:g}",
        outcome,
        f"MFE {_fmt_pct(r.mfe_pct)} MAE {_fmt_pct(r.mae_pct)}",
    ]
    q = r.quality
    flags = []
    if q.partial:
        flags.append("partial")
    if q.gap:
        flags.append(f"gap={q.missing_minutes}m")
    if q.error:
        flags.append(f"error={q.error}")
    if flags:
        parts.append("[" + ", ".join(flags) + "]")
    return " | ".join(parts)
