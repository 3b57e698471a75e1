from datetime import datetime, timezone

import pytest

from conftest import make_indicator
from data_models import SignalType
from risk_annotator import RiskAnnotator
from signal_filter import SignalFilter, signal_hash


@pytest.fixture
def signal_filter():
    return SignalFilter()


def test_overbought_at_resistance_gives_sell(signal_filter):
    indicator = make_indicator(rsi=82.0, macd_histogram=-0.4, resistance_level=101.5)

    signal = signal_filter.evaluate(indicator)

    assert signal.signal_type in (SignalType.SELL, SignalType.WARNING)
    assert signal.signal_type == SignalType.SELL
    assert signal.confidence >= 70
    assert "RSI overbought" in signal.reason
    assert "Near resistance" in signal.reason

    RiskAnnotator().annotate(signal)
    assert signal.take_profit < signal.price < signal.stop_loss


def test_lone_rsi_extreme_is_warning(signal_filter):
    signal = signal_filter.evaluate(make_indicator(rsi=25.0))

    assert signal.signal_type == SignalType.WARNING
    assert signal.confidence == pytest.approx(30.0)
    assert signal.is_long


def test_rsi_extreme_against_trend_is_warning(signal_filter):
    indicator = make_indicator(rsi=18.0, macd_histogram=0.2, trend_direction="Bearish")

    signal = signal_filter.evaluate(indicator)

    assert signal.signal_type == SignalType.WARNING
    assert signal.confidence == pytest.approx(55.0)
    assert "against trend" in signal.reason


def test_bullish_confluence_without_extreme_is_buy(signal_filter):
    indicator = make_indicator(rsi=45.0, macd_histogram=0.3, trend_direction="Bullish")

    signal = signal_filter.evaluate(indicator)

    assert signal.signal_type == SignalType.BUY
    assert signal.confidence == pytest.approx(35.0)


def test_single_non_extreme_factor_gives_nothing(signal_filter):
    assert signal_filter.evaluate(make_indicator(rsi=45.0, macd_histogram=0.3)) is None


def test_neutral_rsi_gives_nothing(signal_filter):
    assert signal_filter.evaluate(make_indicator(rsi=50.0, macd_histogram=1.0, trend_direction="Bullish")) is None


def test_invalid_price_gives_nothing(signal_filter):
    assert signal_filter.evaluate(make_indicator(price=0.0, rsi=20.0)) is None


def test_more_confirmations_raise_confidence(signal_filter):
    base = dict(rsi=25.0, macd_histogram=0.2)
    confidences = [
        signal_filter.evaluate(make_indicator(**base)).confidence,
        signal_filter.evaluate(make_indicator(**base, trend_direction="Bullish")).confidence,
        signal_filter.evaluate(make_indicator(**base, trend_direction="Bullish", volume_strength=8.0)).confidence,
        signal_filter.evaluate(make_indicator(**base, trend_direction="Bullish", volume_strength=8.0,
                                              support_level=98.0)).confidence,
    ]

    assert confidences == sorted(confidences)
    assert len(set(confidences)) == 4
    assert confidences[-1] == 100.0


def test_deterministic_for_identical_input(signal_filter):
    indicator = make_indicator(rsi=75.0, macd_histogram=-0.2, volume_strength=7.0)

    first = signal_filter.evaluate(indicator)
    second = signal_filter.evaluate(indicator)

    assert first.signal_type == second.signal_type
    assert first.confidence == second.confidence
    assert first.reason == second.reason
    assert first.signal_hash == second.signal_hash


def test_already_sent_signal_is_suppressed(signal_filter):
    indicator = make_indicator(rsi=25.0)
    signal = signal_filter.evaluate(indicator)

    assert signal_filter.evaluate(indicator, sent_hashes={signal.signal_hash}) is None
    assert signal_filter.evaluate(indicator, sent_hashes={"something-else"}) is not None


def test_signal_hash_components():
    day = datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)
    later_same_day = datetime(2024, 3, 1, 18, 0, tzinfo=timezone.utc)
    next_day = datetime(2024, 3, 2, 10, 0, tzinfo=timezone.utc)

    base = signal_hash("AAPL", SignalType.BUY, 101.234, day)

    assert base == signal_hash("AAPL", SignalType.BUY, 101.2349, later_same_day)
    assert base != signal_hash("AAPL", SignalType.BUY, 101.234, next_day)
    assert base != signal_hash("AAPL", SignalType.SELL, 101.234, day)
    assert base != signal_hash("MSFT", SignalType.BUY, 101.234, day)
    assert base != signal_hash("AAPL", SignalType.BUY, 101.30, day)


def test_strong_trend_adds_weight(signal_filter):
    base = dict(rsi=45.0, macd_histogram=0.3, trend_direction="Bullish")

    confidences = [signal_filter.evaluate(make_indicator(**base, trend_strength=strength)).confidence
                   for strength in (2.0, 5.9, 6.0, 9.5)]

    assert confidences == sorted(confidences)
    assert confidences[0] == confidences[1] == pytest.approx(35.0)
    assert confidences[2] == confidences[3] == pytest.approx(45.0)


def test_trend_strength_needs_agreeing_direction(signal_filter):
    weak = signal_filter.evaluate(make_indicator(rsi=75.0, macd_histogram=-0.2, trend_strength=2.0))
    strong = signal_filter.evaluate(make_indicator(rsi=75.0, macd_histogram=-0.2, trend_strength=9.0))
    bearish = signal_filter.evaluate(make_indicator(rsi=75.0, macd_histogram=-0.2, trend_strength=9.0,
                                                    trend_direction="Bearish"))

    assert weak.confidence == strong.confidence
    assert bearish.confidence == pytest.approx(strong.confidence + 25.0)
    assert "Bearish trend (strength 9.0/10)" in bearish.reason
