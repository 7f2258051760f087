from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import logging
import sys
from typing import Any, Dict, List, Tuple

import yaml

from .analytics import summarize_results
from .config import load_config
from .formatters import format_result
from .models import BacktestOptions, BacktestResult, Signal
from .runner import BacktestRunner

_OPTION_KEYS = {f.name for f in dataclasses.fields(BacktestOptions)}


def _setup_logging(level: str) -> None:
    lvl = getattr(logging, (level or "INFO").upper(), logging.INFO)
    logging.basicConfig(
        level=lvl,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stderr,
    )


def _clock(value: Any) -> str:
    # YAML 1.1 reads unquoted 12:30 as sexagesimal 750
    if isinstance(value, int) and not isinstance(value, bool):
        return f"{value // 60}:{value % 60:02d}"
    return str(value)


def load_signals(path: str) -> List[Tuple[Signal, BacktestOptions]]:
    """Batch file: shared `options` plus a `signals` list; per-signal keys override options."""
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    shared = {k: v for k, v in (raw.get("options") or {}).items() if k in _OPTION_KEYS}
    items = []
    for entry in raw.get("signals") or []:
        opts = dict(shared)
        opts.update({k: v for k, v in entry.items() if k in _OPTION_KEYS})
        sig = Signal(
            ticker=str(entry.get("ticker", "")),
            direction=str(entry.get("direction", "")),
            start_time=_clock(entry.get("start_time", "")),
        )
        items.append((sig, BacktestOptions(**opts)))
    return items


def _signal_from_args(args: argparse.Namespace) -> Tuple[Signal, BacktestOptions]:
    sig = Signal(ticker=args.ticker, direction=args.direction, start_time=args.start_time)
    opts = BacktestOptions(
        selected_date=args.date or "",
        leverage=args.leverage,
        sl_roe_pct=args.sl,
        tp_roe_pct=args.tp,
        lookahead_hours=args.lookahead,
        timeframe=args.timeframe,
    )
    return sig, opts


def _render(outcomes: List[Any], fmt: str) -> str:
    results = [o for o in outcomes if isinstance(o, BacktestResult)]
    if fmt == "text":
        lines = [format_result(o) if isinstance(o, BacktestResult) else f"rejected: {o}" for o in outcomes]
        for row in summarize_results(results):
            lines.append(
                f"{row.pair} {row.direction}: SL {row.sl_hit_trades} | TP {row.tp_hit_trades} | SL<TP {row.sl_before_tp_trades}"
            )
        return "\n".join(lines)

    payload: Dict[str, Any] = {
        "results": [o.to_dict() if isinstance(o, BacktestResult) else {"error": str(o)} for o in outcomes],
        "analytics": [row.to_dict() for row in summarize_results(results)],
    }
    return json.dumps(payload, indent=2)


def main(argv=None) -> int:
    p = argparse.ArgumentParser(description="Signal Replay - SL/TP backtest of a signal on Binance USD-M history")
    p.add_argument("--config", help="Path to YAML config")
    p.add_argument("--signals", help="YAML batch file of signals")
    p.add_argument("--ticker", help="e.g. BTC, shib, ETHUSDT")
    p.add_argument("--direction", help="LONG or SHORT")
    p.add_argument("--start-time", help="HH:MM (UTC)")
    p.add_argument("--date", help="DD/MM/YYYY")
    p.add_argument("--leverage", help="e.g. 5x")
    p.add_argument("--sl", help="stop-loss ROE %%")
    p.add_argument("--tp", help="take-profit ROE %%")
    p.add_argument("--lookahead", help="lookahead window in hours")
    p.add_argument("--timeframe", help="1m,5m,15m,1h,4h,1d")
    p.add_argument("--format", choices=("json", "text"), default="json")
    args = p.parse_args(argv)

    if not args.signals and not (args.ticker and args.direction and args.start_time):
        p.error("either --signals or --ticker/--direction/--start-time is required")

    cfg = load_config(args.config)
    _setup_logging(cfg.app.log_level)

    items = load_signals(args.signals) if args.signals else [_signal_from_args(args)]
    runner = BacktestRunner(cfg)

    async def _run() -> List[Any]:
        try:
            return await runner.run_many(items)
        finally:
            # Close shared REST session cleanly.
            await runner.provider.close()

    try:
        outcomes = asyncio.run(_run())
    except KeyboardInterrupt:
        return 130
    except Exception as e:
        logging.getLogger("main").exception("fatal err=%s", e)
        return 1

    print(_render(outcomes, args.format))
    if len(outcomes) == 1 and isinstance(outcomes[0], ValueError):
        return 2
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
