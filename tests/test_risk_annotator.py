import pytest

from config import RiskConfig
from conftest import make_signal
from data_models import SignalOutcome, SignalStatus, SignalType
from outcome_model import OutcomeModel
from risk_annotator import RiskAnnotator, classify_volatility


def coiled_outcomes(symbol="AAA", bucket="NORMAL", count=30):
    pairs = [(1.0, 6.0), (1.5, 7.0), (2.0, 8.0)]
    return [
        SignalOutcome(symbol=symbol, volatility_bucket=bucket,
                      max_adverse_pct=pairs[i % 3][0], max_favorable_pct=pairs[i % 3][1],
                      final_return_pct=3.0)
        for i in range(count)
    ]


@pytest.mark.parametrize("atr, expected", [
    (0.5, "LOW"),
    (2.0, "NORMAL"),
    (3.0, "HIGH"),
    (5.0, "EXTREME"),
])
def test_classify_volatility(atr, expected):
    assert classify_volatility(atr, 100.0) == expected


def test_long_volatility_levels():
    signal = RiskAnnotator().annotate(make_signal())

    assert signal.status == SignalStatus.ANNOTATED
    assert signal.risk_method == "volatility"
    assert signal.stop_loss == pytest.approx(95.0)
    assert signal.take_profit == pytest.approx(112.5)
    assert signal.stop_loss_percent == pytest.approx(5.0)
    assert signal.take_profit_percent == pytest.approx(12.5)
    assert signal.risk_reward_ratio == pytest.approx(2.5)


def test_position_sizing():
    signal = RiskAnnotator().annotate(make_signal())

    assert signal.suggested_shares == 20
    assert signal.position_value == pytest.approx(2000.0)
    assert signal.max_risk_amount == pytest.approx(100.0)
    assert signal.potential_gain_amount == pytest.approx(250.0)


def test_position_capped_by_max_position():
    config = RiskConfig(risk_per_trade_pct=5.0)
    signal = RiskAnnotator(config).annotate(make_signal())

    # 500 risk budget / 5 per share = 100 shares, capped at 20% of 10000
    assert signal.suggested_shares == 20


def test_support_tightens_long_stop():
    signal = RiskAnnotator().annotate(make_signal(support_level=97.0))

    assert signal.stop_loss == pytest.approx(97.0 * 0.98)
    assert signal.risk_reward_ratio == pytest.approx(2.5)


def test_short_levels_mirror_long():
    signal = RiskAnnotator().annotate(make_signal(signal_type=SignalType.SELL, rsi=75.0))

    assert signal.stop_loss == pytest.approx(105.0)
    assert signal.take_profit == pytest.approx(87.5)
    assert signal.take_profit < signal.price < signal.stop_loss


def test_warning_direction_follows_rsi():
    oversold = RiskAnnotator().annotate(make_signal(signal_type=SignalType.WARNING, rsi=25.0))
    overbought = RiskAnnotator().annotate(make_signal(signal_type=SignalType.WARNING, rsi=78.0))

    assert oversold.stop_loss < oversold.price < oversold.take_profit
    assert overbought.take_profit < overbought.price < overbought.stop_loss


@pytest.mark.parametrize("atr", [None, 0.0, float("nan")])
def test_degenerate_volatility_leaves_levels_unset(atr):
    signal = RiskAnnotator().annotate(make_signal(atr=atr))

    assert signal.status == SignalStatus.ANNOTATED
    assert signal.stop_loss is None
    assert signal.take_profit is None
    assert signal.risk_reward_ratio is None
    assert signal.risk_method is None


def test_short_target_below_zero_is_rejected():
    signal = RiskAnnotator().annotate(make_signal(signal_type=SignalType.SELL, rsi=80.0, atr=30.0))

    assert not signal.has_risk_levels


@pytest.mark.parametrize("price, atr, support", [
    (10.0, 0.05, None),
    (55.5, 1.2, 54.0),
    (250.0, 9.0, 230.0),
    (1200.0, 60.0, None),
])
def test_buy_invariant_holds(price, atr, support):
    signal = RiskAnnotator().annotate(make_signal(price=price, atr=atr, support_level=support))

    assert signal.stop_loss < signal.price < signal.take_profit
    expected_ratio = (signal.take_profit - signal.price) / (signal.price - signal.stop_loss)
    assert signal.risk_reward_ratio == pytest.approx(expected_ratio)
    assert signal.risk_reward_ratio >= RiskConfig().min_risk_reward


def test_data_driven_levels_from_symbol_history():
    annotator = RiskAnnotator(outcome_model=OutcomeModel(coiled_outcomes()))
    signal = annotator.annotate(make_signal(symbol="AAA"))

    assert signal.risk_method == "data_driven"
    assert signal.stop_loss == pytest.approx(98.0)
    assert signal.take_profit == pytest.approx(106.0)
    assert signal.risk_reward_ratio == pytest.approx(3.0)
    assert signal.predicted_success_probability == pytest.approx(200 / 3)
    assert "symbol" in signal.take_profit_strategy


def test_data_driven_uses_volatility_bucket():
    annotator = RiskAnnotator(outcome_model=OutcomeModel(coiled_outcomes(symbol="OTHER")))
    signal = annotator.annotate(make_signal(symbol="AAA"))

    assert signal.risk_method == "data_driven"
    assert "bucket" in signal.take_profit_strategy


def test_too_few_outcomes_fall_back_to_volatility():
    annotator = RiskAnnotator(outcome_model=OutcomeModel(coiled_outcomes(count=5)))
    signal = annotator.annotate(make_signal(symbol="AAA"))

    assert signal.risk_method == "volatility"
    assert signal.predicted_success_probability is None


def test_data_driven_can_be_disabled():
    annotator = RiskAnnotator(RiskConfig(use_data_driven=False), OutcomeModel(coiled_outcomes()))

    assert annotator.annotate(make_signal(symbol="AAA")).risk_method == "volatility"


def test_unusable_data_driven_short_falls_back_to_volatility():
    # Huge favourable excursions put a short target below zero
    outcomes = [
        SignalOutcome(symbol="S", volatility_bucket="NORMAL", max_adverse_pct=0.5 + i / 60,
                      max_favorable_pct=150.0, final_return_pct=20.0)
        for i in range(30)
    ]
    annotator = RiskAnnotator(outcome_model=OutcomeModel(outcomes))

    signal = annotator.annotate(make_signal(symbol="S", signal_type=SignalType.SELL, rsi=75.0))

    assert signal.risk_method == "volatility"
    assert signal.stop_loss == pytest.approx(105.0)
    assert signal.take_profit == pytest.approx(87.5)
    assert signal.predicted_success_probability is None
    assert signal.take_profit_strategy.startswith("ATR")
