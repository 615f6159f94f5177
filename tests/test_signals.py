"""
Tests for observation windows and the signal bank.

Covers:
    - TR_N over the last N observations
    - Ratio returns over common dates
    - Annualized volatility
    - Band evaluation with polarity
    - Abstention (no_data) vs neutral
    - Default eight-signal bank on synthetic data
"""

from datetime import date

import numpy as np
import pandas as pd
import pytest

from conftest import AS_OF, make_series
from src.regime_detection.signals import (
    INFLATION,
    RATIO_RETURN,
    RISK,
    STATUS_NEUTRAL,
    STATUS_NO_DATA,
    STATUS_VOTE,
    TRAILING_RETURN,
    SignalBank,
    SignalSpec,
    SignalVote,
    default_signal_specs,
    evaluate_spec,
)
from src.regime_detection.windows import (
    TR_21,
    TR_63,
    annualized_volatility,
    last_date,
    last_value,
    ratio_return,
    trailing_return,
    truncate,
)


def _series(values, start="2024-01-01"):
    index = pd.bdate_range(start=start, periods=len(values))
    return pd.Series(values, index=index, dtype=float)


# ─── Windows ──────────────────────────────────────────────────────


class TestTrailingReturn:

    def test_uses_last_n_observations(self):
        s = _series([50.0, 100.0, 110.0, 121.0])
        assert trailing_return(s, 3) == pytest.approx(0.21)

    def test_exact_window_length(self):
        s = _series([100.0, 105.0])
        assert trailing_return(s, 2) == pytest.approx(0.05)

    def test_insufficient_data_returns_none(self):
        s = _series([100.0] * 62)
        assert trailing_return(s, TR_63) is None

    def test_none_series(self):
        assert trailing_return(None, TR_21) is None


class TestRatioReturn:

    def test_uses_common_dates_only(self):
        num = _series([100.0, 100.0, 110.0, 121.0])
        den = _series([50.0, 50.0, 50.0])  # one date shorter
        # Common dates: first three; ratio 2.0, 2.0, 2.2
        assert ratio_return(num, den, 2) == pytest.approx(0.10)

    def test_missing_leg_returns_none(self):
        assert ratio_return(_series([1.0, 2.0]), None, 2) is None

    def test_flat_ratio_is_zero(self):
        s = _series([100.0] * 70)
        assert ratio_return(s, s * 2, TR_63) == pytest.approx(0.0)


class TestVolatility:

    def test_constant_returns_have_zero_vol(self):
        s = make_series(drift=0.0, periods=100)
        assert annualized_volatility(s, TR_63) == pytest.approx(0.0)

    def test_needs_window_plus_one_observations(self):
        s = make_series(periods=63, wiggle=0.01)
        assert annualized_volatility(s, TR_63) is None

    def test_alternating_series(self):
        s = make_series(periods=100, wiggle=0.01)
        vol = annualized_volatility(s, TR_63)
        returns = s.pct_change().dropna().iloc[-63:]
        expected = np.std(returns.to_numpy(), ddof=0) * np.sqrt(252)
        assert vol == pytest.approx(expected)
        assert vol > 0


class TestTruncate:

    def test_drops_later_observations(self):
        s = make_series(end=date(2024, 1, 10), periods=10)
        cut = truncate(s, date(2024, 1, 5))
        assert last_date(cut) == date(2024, 1, 5)

    def test_none_as_of_keeps_everything(self):
        s = make_series(periods=5)
        assert len(truncate(s, None)) == 5

    def test_last_value_empty(self):
        assert last_value(pd.Series(dtype=float)) is None


# ─── Signal specs ─────────────────────────────────────────────────


class TestSignalSpec:

    def test_ratio_needs_two_symbols(self):
        with pytest.raises(ValueError):
            SignalSpec("bad", RATIO_RETURN, ("SPY",), TR_63, 0.01, -0.01, {RISK: 1})

    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            SignalSpec("bad", "momentum", ("SPY",), TR_63, 0.01, -0.01, {RISK: 1})

    def test_lower_above_upper(self):
        with pytest.raises(ValueError):
            SignalSpec("bad", TRAILING_RETURN, ("SPY",), TR_63, -0.01, 0.01, {RISK: 1})

    def test_bad_polarity(self):
        with pytest.raises(ValueError):
            SignalSpec("bad", TRAILING_RETURN, ("SPY",), TR_63, 0.01, -0.01, {RISK: 2})

    def test_axes_follow_polarity(self):
        spec = SignalSpec(
            "both", TRAILING_RETURN, ("SPY",), 2, 0.01, -0.01, {RISK: 1, INFLATION: -1}
        )
        assert spec.axes == (RISK, INFLATION)


class TestEvaluateSpec:

    def _spec(self, polarity=1):
        return SignalSpec("x_tr2", TRAILING_RETURN, ("X",), 2, 0.10, -0.10, {RISK: polarity})

    def test_upper_band_votes_plus_one(self):
        [vote] = evaluate_spec(self._spec(), {"X": _series([100.0, 120.0])})
        assert vote.vote == 1
        assert vote.status == STATUS_VOTE
        assert vote.threshold_hit == ">= 0.1"
        assert vote.value == pytest.approx(0.20)

    def test_negative_polarity_flips_vote(self):
        [vote] = evaluate_spec(self._spec(polarity=-1), {"X": _series([100.0, 120.0])})
        assert vote.vote == -1
        assert vote.threshold_hit == ">= 0.1"

    def test_lower_band(self):
        [vote] = evaluate_spec(self._spec(), {"X": _series([100.0, 80.0])})
        assert vote.vote == -1
        assert vote.threshold_hit == "<= -0.1"

    def test_inside_band_is_neutral(self):
        [vote] = evaluate_spec(self._spec(), {"X": _series([100.0, 101.0])})
        assert vote.vote == 0
        assert vote.status == STATUS_NEUTRAL
        assert vote.threshold_hit is None
        assert not vote.abstained

    def test_missing_data_abstains(self):
        [vote] = evaluate_spec(self._spec(), {})
        assert vote.vote == 0
        assert vote.status == STATUS_NO_DATA
        assert vote.abstained
        assert vote.value is None

    def test_vote_dict_round_trip(self):
        [vote] = evaluate_spec(self._spec(), {"X": _series([100.0, 120.0])})
        assert SignalVote.from_dict(vote.to_dict()) == vote


# ─── Signal bank ──────────────────────────────────────────────────


class TestSignalBank:

    def test_default_bank_has_four_signals_per_axis(self):
        bank = SignalBank()
        assert len(bank.specs) == 8
        assert len(bank.signals_for(RISK)) == 4
        assert len(bank.signals_for(INFLATION)) == 4

    def test_symbols_in_first_use_order(self):
        assert SignalBank().symbols == [
            "SPY", "HYG", "IEF", "VIX", "EEM", "PDBC", "TIP", "TLT", "UUP",
        ]

    def test_threshold_overrides(self):
        specs = default_signal_specs({"spy_tr63": {"upper": 0.05, "lower": -0.04}})
        spy = next(s for s in specs if s.name == "spy_tr63")
        assert (spy.upper, spy.lower) == (0.05, -0.04)

    def test_duplicate_names_rejected(self):
        spec = default_signal_specs()[0]
        with pytest.raises(ValueError):
            SignalBank([spec, spec])

    def test_evaluate_synthetic_market(self, market):
        votes = {v.name: v for v in SignalBank().evaluate(market, AS_OF)}

        assert votes["spy_tr63"].vote == 1
        assert votes["hyg_ief_tr63"].vote == 1
        assert votes["vix_tr21"].vote == 0
        assert votes["vix_tr21"].status == STATUS_NEUTRAL
        assert votes["eem_spy_tr63"].vote == 1

        assert votes["pdbc_tr63"].vote == -1
        assert votes["tip_ief_tr63"].status == STATUS_NEUTRAL
        assert votes["tlt_tr63"].vote == -1
        assert votes["uup_tr63"].vote == -1

    def test_missing_symbol_abstains_only_its_signals(self, market):
        del market["TIP"]
        votes = {v.name: v for v in SignalBank().evaluate(market, AS_OF)}
        assert votes["tip_ief_tr63"].status == STATUS_NO_DATA
        assert votes["pdbc_tr63"].status == STATUS_VOTE

    def test_as_of_before_history_abstains_everything(self, market):
        votes = SignalBank().evaluate(market, date(2020, 1, 1))
        assert all(v.abstained for v in votes)
