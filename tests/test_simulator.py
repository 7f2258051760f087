import pytest

from signal_replay.models import Candle
from signal_replay.simulator import (
    HIT_BOTH,
    HIT_NONE,
    HIT_SL,
    HIT_TP,
    SAME_CANDLE_UNKNOWN,
    SL_FIRST,
    TP_FIRST,
    calculate_mfe_mae,
    calculate_sl_tp_prices,
    detect_missing_minutes,
    detect_sl_tp_hits,
)


def _c(idx: int, o: float, h: float, l: float, c: float) -> Candle:
    return Candle(open_time_ms=idx * 60_000, open=o, high=h, low=l, close=c)


def test_sl_tp_prices_long_and_short():
    sl, tp = calculate_sl_tp_prices(100, "LONG", 5, 100, 200)
    assert sl == pytest.approx(80)
    assert tp == pytest.approx(140)

    sl, tp = calculate_sl_tp_prices(100, "SHORT", 5, 100, 200)
    assert sl == pytest.approx(120)
    assert tp == pytest.approx(60)


def test_zero_leverage_falls_back_to_one():
    assert calculate_sl_tp_prices(100, "LONG", 0, 10, 10) == pytest.approx((90, 110))


@pytest.mark.parametrize("leverage", [0.5, 1, 3, 20, 125])
@pytest.mark.parametrize("sl_pct,tp_pct", [(0, 0), (5, 5), (100, 300), (37.5, 12.25)])
def test_sl_tp_prices_recover_price_move(leverage, sl_pct, tp_pct):
    entry = 2.3456
    sl, tp = calculate_sl_tp_prices(entry, "LONG", leverage, sl_pct, tp_pct)
    assert (entry - sl) / entry * 100 == pytest.approx(sl_pct / leverage)
    assert (tp - entry) / entry * 100 == pytest.approx(tp_pct / leverage)

    sl, tp = calculate_sl_tp_prices(entry, "SHORT", leverage, sl_pct, tp_pct)
    assert (sl - entry) / entry * 100 == pytest.approx(sl_pct / leverage)
    assert (entry - tp) / entry * 100 == pytest.approx(tp_pct / leverage)


def test_same_bar_hit_is_left_unresolved():
    r = detect_sl_tp_hits([_c(0, 100, 106, 94, 100)], 100, "LONG", 1, 5, 5)
    assert r.sl_tp_hit == HIT_BOTH
    assert r.hit_order == SAME_CANDLE_UNKNOWN
    assert r.sl_before_tp is None
    assert r.sl_hit_ts == r.tp_hit_ts == 0


def test_stop_then_target():
    candles = [_c(0, 100, 101, 94, 95), _c(1, 95, 106, 94, 105)]
    r = detect_sl_tp_hits(candles, 100, "LONG", 1, 5, 5)
    assert r.sl_tp_hit == HIT_BOTH
    assert r.hit_order == SL_FIRST
    assert r.sl_before_tp is True
    assert (r.sl_hit_ts, r.tp_hit_ts) == (0, 60_000)


def test_target_then_stop():
    candles = [_c(0, 100, 106, 99, 105), _c(1, 105, 105, 94, 95)]
    r = detect_sl_tp_hits(candles, 100, "LONG", 1, 5, 5)
    assert r.sl_tp_hit == HIT_BOTH
    assert r.hit_order == TP_FIRST
    assert r.sl_before_tp is False


def test_target_only_and_stop_only():
    tp_only = detect_sl_tp_hits([_c(0, 100, 104, 99, 102), _c(1, 102, 106, 100, 105)], 100, "LONG", 1, 5, 5)
    assert tp_only.sl_tp_hit == HIT_TP
    assert tp_only.tp_hit_ts == 60_000
    assert tp_only.hit_order is None
    assert tp_only.sl_before_tp is None

    sl_only = detect_sl_tp_hits([_c(0, 100, 101, 94, 95)], 100, "LONG", 1, 5, 5)
    assert sl_only.sl_tp_hit == HIT_SL
    assert sl_only.sl_hit_ts == 0


def test_short_uses_mirrored_conditions():
    # SHORT: tp at 95 via low, sl at 105 via high
    r = detect_sl_tp_hits([_c(0, 100, 101, 94, 95)], 100, "SHORT", 1, 5, 5)
    assert r.sl_tp_hit == HIT_TP
    r = detect_sl_tp_hits([_c(0, 100, 106, 99, 105), _c(1, 105, 105, 94, 95)], 100, "SHORT", 1, 5, 5)
    assert r.sl_tp_hit == HIT_BOTH
    assert r.hit_order == SL_FIRST


def test_first_hit_wins_over_later_bars():
    candles = [_c(0, 100, 101, 99, 100), _c(1, 100, 106, 99, 105), _c(2, 105, 107, 99, 106), _c(3, 106, 106, 90, 91)]
    r = detect_sl_tp_hits(candles, 100, "LONG", 1, 5, 5)
    assert r.tp_hit_ts == 60_000
    assert r.sl_hit_ts == 180_000
    assert r.hit_order == TP_FIRST


def test_nothing_touched():
    r = detect_sl_tp_hits([_c(0, 100, 101, 99, 100)], 100, "LONG", 1, 5, 5)
    assert r.sl_tp_hit == HIT_NONE
    assert r.sl_price == pytest.approx(95)
    assert r.tp_price == pytest.approx(105)


def test_empty_series_still_reports_prices():
    r = detect_sl_tp_hits([], 100, "LONG", 2, 10, 20)
    assert r.sl_tp_hit == HIT_NONE
    assert (r.sl_price, r.tp_price) == pytest.approx((95, 110))


def test_non_positive_entry_has_no_prices():
    r = detect_sl_tp_hits([_c(0, 1, 2, 0.5, 1)], 0, "LONG", 1, 5, 5)
    assert r.sl_tp_hit == HIT_NONE
    assert r.sl_price is None and r.tp_price is None


def test_mfe_mae_long_and_short():
    candles = [_c(0, 100, 110, 95, 105), _c(1, 105, 112, 90, 95)]
    mfe, mae = calculate_mfe_mae(candles, 100, "LONG", 2)
    assert mfe == pytest.approx(24)
    assert mae == pytest.approx(20)

    mfe, mae = calculate_mfe_mae(candles, 100, "SHORT", 2)
    assert mfe == pytest.approx(20)
    assert mae == pytest.approx(24)


def test_mfe_mae_swap_with_direction():
    candles = [_c(i, 10, 10 + i * 0.3, 10 - i * 0.1, 10) for i in range(8)]
    long_mfe, long_mae = calculate_mfe_mae(candles, 10.2, "LONG", 7)
    short_mfe, short_mae = calculate_mfe_mae(candles, 10.2, "SHORT", 7)
    assert long_mfe == pytest.approx(short_mae)
    assert long_mae == pytest.approx(short_mfe)


def test_mfe_mae_degenerate_inputs_are_none():
    assert calculate_mfe_mae([], 100, "LONG", 1) == (None, None)
    assert calculate_mfe_mae([_c(0, 1, 2, 0.5, 1)], 0, "LONG", 1) == (None, None)
    assert calculate_mfe_mae([_c(0, 1, 2, 0.5, 1)], -5, "SHORT", 1) == (None, None)


def test_missing_minutes():
    assert detect_missing_minutes([]) == (False, 0)
    assert detect_missing_minutes([_c(0, 1, 1, 1, 1)]) == (False, 0)
    contiguous = [_c(i, 1, 1, 1, 1) for i in range(5)]
    assert detect_missing_minutes(contiguous) == (False, 0)

    gappy = [_c(0, 1, 1, 1, 1), _c(1, 1, 1, 1, 1), _c(4, 1, 1, 1, 1), _c(5, 1, 1, 1, 1), _c(7, 1, 1, 1, 1)]
    assert detect_missing_minutes(gappy) == (True, 3)


def test_missing_bars_at_custom_interval():
    hour = 3_600_000
    candles = [Candle(0, 1, 1, 1, 1), Candle(hour, 1, 1, 1, 1), Candle(4 * hour, 1, 1, 1, 1)]
    assert detect_missing_minutes(candles, hour) == (True, 2)
