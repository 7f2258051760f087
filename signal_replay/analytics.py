from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Dict, Iterable, List, Tuple

from .models import BacktestResult
from .simulator import HIT_BOTH, HIT_SL, HIT_TP


@dataclass
class AnalyticsRow:
    pair: str
    direction: str
    sl_hit_trades: int = 0
    tp_hit_trades: int = 0
    sl_before_tp_trades: int = 0

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)


def summarize_results(results: Iterable[BacktestResult]) -> List[AnalyticsRow]:
    """Per pair+direction hit counts. BOTH counts toward SL and TP alike."""
    summary: Dict[Tuple[str, str], AnalyticsRow] = {}
    for r in results:
        row = summary.setdefault((r.pair, r.direction), AnalyticsRow(pair=r.pair, direction=r.direction))
        if r.sl_tp_hit in (HIT_SL, HIT_BOTH):
            row.sl_hit_trades += 1
        if r.sl_tp_hit in (HIT_TP, HIT_BOTH):
            row.tp_hit_trades += 1
        if r.sl_before_tp:
            row.sl_before_tp_trades += 1
    return sorted(summary.values(), key=lambda row: row.pair)
