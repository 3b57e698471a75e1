"""
Indicator calculation over an OHLCV history
"""
import logging
from typing import List, Optional, Tuple

import numpy as np
import pandas as pd
from scipy import stats

from config import IndicatorConfig
from data_models import Indicator

logger = logging.getLogger(__name__)

PRICE_COLUMNS = ['Open', 'High', 'Low', 'Close', 'Volume']

NEUTRAL_RSI = 50.0
NEUTRAL_STRENGTH = 5.0


def clean_history(data: Optional[pd.DataFrame]) -> pd.DataFrame:
    """Return a chronological OHLCV frame with incomplete rows dropped"""
    if data is None or data.empty:
        return pd.DataFrame(columns=PRICE_COLUMNS)

    missing = [c for c in PRICE_COLUMNS if c not in data.columns]
    if missing:
        logger.warning(f"History is missing columns {missing}; treating as empty")
        return pd.DataFrame(columns=PRICE_COLUMNS)

    frame = data[PRICE_COLUMNS].dropna(subset=['Close']).sort_index().copy()
    frame['Volume'] = frame['Volume'].fillna(0)
    return frame.astype(float)


class IndicatorCalculator:
    """
    Derives RSI, MACD, moving averages and trend/volume scores from a price history.

    All methods are pure over their inputs, so one instance can be shared
    between worker threads.
    """

    def __init__(self, config: IndicatorConfig = None):
        self.config = config or IndicatorConfig()

    def compute(self, symbol: str, series: pd.DataFrame) -> Indicator:
        """
        Build the indicator snapshot for the latest bar of ``series``.

        Short histories never raise: each value falls back to its neutral
        default (RSI 50, MACD 0, strengths 5) when its window isn't met.
        """
        data = clean_history(series)
        bars = len(data)

        if bars == 0:
            return Indicator(
                symbol=symbol, price=0.0, rsi=NEUTRAL_RSI, macd_histogram=0.0, volume=0.0,
                trend_strength=NEUTRAL_STRENGTH, volume_strength=NEUTRAL_STRENGTH,
                support_level=None, resistance_level=None, market_condition="Limited Data",
            )

        closes = data['Close']
        price = float(closes.iloc[-1])

        rsi_values = self.calculate_rsi(closes)
        rsi = float(rsi_values.iloc[-1]) if not np.isnan(rsi_values.iloc[-1]) else NEUTRAL_RSI

        macd, macd_signal, histogram, cross_up = self.calculate_macd(closes)

        ema20 = self.calculate_ema(closes, 20)
        ema50 = self.calculate_ema(closes, 50)
        trend_direction = self.classify_trend(price, ema20, ema50)

        volume_ratio = self.calculate_volume_ratio(data['Volume'])
        support, resistance = self.calculate_key_levels(data['High'], data['Low'], price)

        return Indicator(
            symbol=symbol,
            price=price,
            rsi=rsi,
            macd_histogram=histogram,
            volume=float(data['Volume'].iloc[-1]),
            trend_strength=self.calculate_trend_strength(closes),
            volume_strength=min(10.0, volume_ratio * 5),
            support_level=support,
            resistance_level=resistance,
            market_condition=self.classify_market_condition(rsi_values),
            macd=macd,
            macd_signal=macd_signal,
            macd_cross_up=cross_up,
            ema20=ema20,
            ema50=ema50,
            trend_direction=trend_direction,
            volume_ratio=volume_ratio,
            atr=self.calculate_atr(data),
            bars=bars,
        )

    def calculate_rsi(self, prices: pd.Series) -> pd.Series:
        """Relative Strength Index with Wilder smoothing (NaN until the first full period)"""
        period = self.config.rsi_period
        values = prices.to_numpy(dtype=float)
        out = np.full(len(values), np.nan)
        if len(values) <= period:
            return pd.Series(out, index=prices.index)

        deltas = np.diff(values)
        gains = np.clip(deltas, 0, None)
        losses = np.clip(-deltas, 0, None)

        avg_gain = gains[:period].mean()
        avg_loss = losses[:period].mean()
        out[period] = _rsi_from_averages(avg_gain, avg_loss)

        for i in range(period, len(deltas)):
            avg_gain = (avg_gain * (period - 1) + gains[i]) / period
            avg_loss = (avg_loss * (period - 1) + losses[i]) / period
            out[i + 1] = _rsi_from_averages(avg_gain, avg_loss)

        return pd.Series(out, index=prices.index)

    def calculate_macd(self, prices: pd.Series) -> Tuple[float, float, float, bool]:
        """Return (macd, signal, histogram, histogram crossed above zero)"""
        if len(prices) < self.config.macd_slow:
            return 0.0, 0.0, 0.0, False

        fast = prices.ewm(span=self.config.macd_fast, adjust=False).mean()
        slow = prices.ewm(span=self.config.macd_slow, adjust=False).mean()
        macd_line = fast - slow
        signal_line = macd_line.ewm(span=self.config.macd_signal, adjust=False).mean()
        histogram = macd_line - signal_line

        cross_up = bool(histogram.iloc[-1] > 0 and histogram.iloc[-2] <= 0)
        return float(macd_line.iloc[-1]), float(signal_line.iloc[-1]), float(histogram.iloc[-1]), cross_up

    def calculate_ema(self, prices: pd.Series, period: int) -> float:
        if len(prices) < period:
            return float(prices.iloc[-1])
        return float(prices.ewm(span=period, adjust=False).mean().iloc[-1])

    def classify_trend(self, price: float, ema20: float, ema50: float) -> str:
        if price > ema20 > ema50:
            return "Bullish"
        if price < ema20 < ema50:
            return "Bearish"
        return "Sideways"

    def calculate_trend_strength(self, prices: pd.Series) -> float:
        """0-10 score from the regression slope of recent closes"""
        recent = prices.tail(self.config.trend_window).to_numpy(dtype=float)
        if len(recent) < 10:
            return NEUTRAL_STRENGTH

        mean_price = recent.mean()
        if mean_price <= 0:
            return NEUTRAL_STRENGTH

        slope, _, _, _, _ = stats.linregress(np.arange(len(recent)), recent)
        move_percent = slope * (len(recent) - 1) / mean_price * 100
        return float(min(10.0, abs(move_percent)))

    def calculate_volume_ratio(self, volumes: pd.Series) -> float:
        """Latest volume relative to the average of the preceding window"""
        if len(volumes) < 2:
            return 1.0
        prior = volumes.iloc[:-1].tail(self.config.volume_window)
        average = prior.mean()
        if not average or np.isnan(average) or average <= 0:
            return 1.0
        return float(volumes.iloc[-1] / average)

    def calculate_atr(self, data: pd.DataFrame) -> float:
        """Average True Range as the simple mean of the last ``atr_period`` true ranges"""
        period = self.config.atr_period
        if len(data) < period + 1:
            return 0.0

        prev_close = data['Close'].shift(1)
        true_range = pd.concat([
            data['High'] - data['Low'],
            (data['High'] - prev_close).abs(),
            (data['Low'] - prev_close).abs(),
        ], axis=1).max(axis=1).iloc[1:]

        return float(true_range.tail(period).mean())

    def calculate_key_levels(self, highs: pd.Series, lows: pd.Series,
                             price: float) -> Tuple[Optional[float], Optional[float]]:
        """Nearest swing-low support and swing-high resistance around ``price``"""
        window = self.config.levels_window
        swing_highs = _find_swings(highs.tail(window).tolist(), self.config.swing_lookback, highs=True)
        swing_lows = _find_swings(lows.tail(window).tolist(), self.config.swing_lookback, highs=False)

        above = [h for h in swing_highs if h > price * 1.01]
        below = [l for l in swing_lows if l < price * 0.99]

        resistance = min(above) if above else None
        support = max(below) if below else None
        return support, resistance

    def classify_market_condition(self, rsi_values: pd.Series) -> str:
        recent = rsi_values.dropna()
        if len(recent) < 10:
            return "Limited Data"

        average = recent.tail(10).mean()
        drift = recent.tail(5).mean() - recent.iloc[-10:-5].mean()

        if average < 30 and drift > 3:
            return "Oversold Recovery"
        if average < 35:
            return "Oversold Zone"
        if average > 70 and drift < -3:
            return "Overbought Decline"
        if average > 65:
            return "Overbought Zone"
        if drift > 8:
            return "Strong Bullish Momentum"
        if drift < -8:
            return "Strong Bearish Momentum"
        return "Neutral Range"


def _rsi_from_averages(avg_gain: float, avg_loss: float) -> float:
    if avg_gain == 0 and avg_loss == 0:
        return NEUTRAL_RSI
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100.0 - (100.0 / (1.0 + rs))


def _find_swings(values: List[float], lookback: int, highs: bool) -> List[float]:
    swings = []
    for i in range(lookback, len(values) - lookback):
        neighbours = values[i - lookback:i] + values[i + 1:i + lookback + 1]
        if highs and all(v < values[i] for v in neighbours):
            swings.append(values[i])
        elif not highs and all(v > values[i] for v in neighbours):
            swings.append(values[i])
    return swings
