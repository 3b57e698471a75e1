import numpy as np
import pandas as pd
import pytest

from data_models import Indicator, SignalType, TradingSignal


def make_history(closes, highs=None, lows=None, volumes=None, spread=0.01, start="2024-01-01"):
    """Chronological OHLCV frame shaped like yfinance output"""
    closes = np.asarray(closes, dtype=float)
    highs = np.asarray(highs, dtype=float) if highs is not None else closes * (1 + spread)
    lows = np.asarray(lows, dtype=float) if lows is not None else closes * (1 - spread)
    volumes = np.asarray(volumes, dtype=float) if volumes is not None else np.full(len(closes), 1000.0)
    index = pd.bdate_range(start=start, periods=len(closes))
    return pd.DataFrame({
        'Open': closes,
        'High': highs,
        'Low': lows,
        'Close': closes,
        'Volume': volumes,
    }, index=index)


def make_indicator(**overrides):
    values = dict(
        symbol="TEST",
        price=100.0,
        rsi=45.0,
        macd_histogram=0.0,
        volume=1000.0,
        trend_strength=5.0,
        volume_strength=5.0,
        support_level=None,
        resistance_level=None,
        market_condition="Neutral Range",
        trend_direction="Sideways",
        atr=2.0,
        bars=60,
    )
    values.update(overrides)
    return Indicator(**values)


def make_signal(**overrides):
    values = dict(
        symbol="TEST",
        signal_type=SignalType.BUY,
        confidence=70.0,
        price=100.0,
        rsi=40.0,
        macd_histogram=0.1,
        volume=1000.0,
        reason="test",
        atr=2.0,
        trend_strength=6.0,
        volume_strength=5.0,
    )
    values.update(overrides)
    return TradingSignal(**values)


@pytest.fixture
def flat_history():
    return make_history(np.full(60, 100.0))


@pytest.fixture
def rising_history():
    return make_history(np.linspace(100, 159, 60))


@pytest.fixture
def breakout_history():
    """
    A range that contracts into a tight coil while volume picks up.

    Prior 10 closes swing 95/105, last 10 swing 99/101, and the last five
    bars trade at 1.5x the earlier volume.
    """
    closes = np.concatenate([
        np.full(20, 100.0),
        np.tile([95.0, 105.0], 5),
        np.tile([99.0, 101.0], 5),
    ])
    volumes = np.concatenate([np.full(35, 1000.0), np.full(5, 1500.0)])
    return make_history(closes, volumes=volumes, spread=0.005)
