"""
Pattern Detection Modules

Each detector looks at the same trailing window of daily bars and returns an
independent finding:
- Consolidation (range tightness and its shape)
- Compression (volatility squeeze versus the prior window)
- Volume accumulation (volume surge while price holds flat)
- Key levels (repeatedly touched resistance/support)
- Positioning (where the latest quote sits relative to those levels)

A window that is too short yields the invalid/undetected finding, never an
exception.
"""
import logging
from typing import Mapping

import numpy as np
import pandas as pd
from scipy import stats

from data_models import (CompressionPattern, ConsolidationPattern, KeyLevels,
                         PositioningAnalysis, VolumePattern)
from indicator_calculator import clean_history

logger = logging.getLogger(__name__)

FLAT_SLOPE = 0.001


class ConsolidationDetector:
    """
    Measure the trading range of the last ``window`` bars.

    The range is "compressing" when (max high - min low) / mean close stays
    under ``compression_threshold`` percent. The shape comes from the
    regression slopes of the last 10 highs and lows.
    """

    def __init__(self, window: int = 20, compression_threshold: float = 15.0, shape_window: int = 10):
        self.window = window
        self.compression_threshold = compression_threshold
        self.shape_window = shape_window

    def detect(self, data: pd.DataFrame) -> ConsolidationPattern:
        data = clean_history(data)
        if len(data) < self.window:
            return ConsolidationPattern(is_valid=False)

        recent = data.tail(self.window)
        high_level = float(recent['High'].max())
        low_level = float(recent['Low'].min())
        avg_close = float(recent['Close'].mean())
        if avg_close <= 0:
            return ConsolidationPattern(is_valid=False)

        volatility_percent = (high_level - low_level) / avg_close * 100

        return ConsolidationPattern(
            is_valid=True,
            duration_days=self.window,
            volatility_percent=volatility_percent,
            high_level=high_level,
            low_level=low_level,
            is_compressing=volatility_percent < self.compression_threshold,
            consolidation_type=self.classify_shape(recent['High'], recent['Low']),
        )

    def classify_shape(self, highs: pd.Series, lows: pd.Series) -> str:
        highs_slope = _slope(highs.tail(self.shape_window))
        lows_slope = _slope(lows.tail(self.shape_window))

        if abs(highs_slope) < FLAT_SLOPE and abs(lows_slope) < FLAT_SLOPE:
            return "Rectangle"
        if highs_slope < 0 and lows_slope > 0:
            return "Triangle"
        if highs_slope > 0 and lows_slope > 0:
            return "Rising Wedge"
        if highs_slope < 0 and lows_slope < 0:
            return "Falling Wedge"
        return "Irregular"


class CompressionDetector:
    """Compare close-price dispersion of the latest window against the one before it"""

    def __init__(self, window: int = 10, ratio_threshold: float = 0.7):
        self.window = window
        self.ratio_threshold = ratio_threshold

    def detect(self, data: pd.DataFrame) -> CompressionPattern:
        data = clean_history(data)
        if len(data) < self.window * 2:
            return CompressionPattern(is_detected=False)

        closes = data['Close'].to_numpy(dtype=float)
        recent = closes[-self.window:]
        prior = closes[-self.window * 2:-self.window]

        recent_std = float(np.std(recent))
        prior_std = float(np.std(prior))
        ratio = recent_std / prior_std if prior_std > 0 else 1.0

        return CompressionPattern(
            is_detected=ratio < self.ratio_threshold,
            compression_ratio=ratio,
            current_volatility=recent_std / recent.mean() * 100 if recent.mean() > 0 else 0.0,
            historical_volatility=prior_std / prior.mean() * 100 if prior.mean() > 0 else 0.0,
            compression_strength=max(0.0, (1 - ratio) * 100),
        )


class VolumePatternDetector:
    """Detect accumulation: recent volume well above its baseline while price holds flat"""

    def __init__(self, recent_bars: int = 5, historical_bars: int = 15,
                 surge_ratio: float = 1.2, max_price_drift: float = 1.1):
        self.recent_bars = recent_bars
        self.historical_bars = historical_bars
        self.surge_ratio = surge_ratio
        self.max_price_drift = max_price_drift

    def detect(self, data: pd.DataFrame) -> VolumePattern:
        data = clean_history(data)
        if len(data) < self.recent_bars + self.historical_bars:
            return VolumePattern(is_valid=False)

        window = data.tail(self.recent_bars + self.historical_bars)
        recent = window.tail(self.recent_bars)
        historical = window.head(self.historical_bars)

        avg_recent = float(recent['Volume'].mean())
        avg_historical = float(historical['Volume'].mean())
        increase_ratio = avg_recent / avg_historical if avg_historical > 0 else 1.0

        low_close = float(recent['Close'].min())
        price_stability = float(recent['Close'].max()) / low_close if low_close > 0 else float('inf')

        return VolumePattern(
            is_valid=True,
            volume_increase_ratio=increase_ratio,
            is_accumulating=increase_ratio > self.surge_ratio and price_stability < self.max_price_drift,
            average_volume=avg_historical,
            price_stability=price_stability,
            current_volume_strength=min(10.0, increase_ratio * 5),
        )


class KeyLevelDetector:
    """
    Find price levels touched repeatedly in the last ``window`` bars.

    Highs and lows are rounded to one decimal and grouped; a group qualifies
    with ``min_touches`` or more members on the correct side of the current
    close (resistance above +1%, support below -1%). The nearest
    ``max_levels`` of each side are kept, nearest first.
    """

    def __init__(self, window: int = 30, min_touches: int = 2, max_levels: int = 3):
        self.window = window
        self.min_touches = min_touches
        self.max_levels = max_levels

    def detect(self, data: pd.DataFrame) -> KeyLevels:
        data = clean_history(data)
        if len(data) < self.window:
            return KeyLevels(is_valid=False)

        recent = data.tail(self.window)
        current_price = float(recent['Close'].iloc[-1])

        highs = recent['High']
        lows = recent['Low']
        resistance = self._touched_levels(highs[highs > current_price * 1.01])
        support = self._touched_levels(lows[lows < current_price * 0.99])

        resistance = sorted(resistance)[:self.max_levels]
        support = sorted(support, reverse=True)[:self.max_levels]

        distance = (resistance[0] - current_price) / current_price * 100 if resistance and current_price > 0 else 0.0

        return KeyLevels(
            is_valid=True,
            resistance_levels=resistance,
            support_levels=support,
            current_price=current_price,
            distance_to_resistance=distance,
        )

    def _touched_levels(self, prices: pd.Series) -> list:
        counts = prices.round(1).value_counts()
        return [float(level) for level, touches in counts.items() if touches >= self.min_touches]


class PositioningAnalyzer:
    """Place the latest quote inside its day range and against the key levels"""

    def __init__(self, near_resistance: float = 0.03):
        self.near_resistance = near_resistance

    def analyze(self, quote: Mapping, key_levels: KeyLevels) -> PositioningAnalysis:
        price = float(quote.get('Close', 0) or 0)
        high = float(quote.get('High', 0) or 0)
        low = float(quote.get('Low', 0) or 0)

        if price <= 0:
            return PositioningAnalysis()

        resistance = key_levels.primary_resistance
        support = key_levels.primary_support

        return PositioningAnalysis(
            current_price=price,
            position_in_day_range=(price - low) / (high - low) * 100 if high > low else 50.0,
            distance_to_resistance=(resistance - price) / price * 100 if resistance else 100.0,
            distance_to_support=(price - support) / price * 100 if support else 100.0,
            is_near_resistance=bool(resistance) and abs(price - resistance) / price < self.near_resistance,
        )


def _slope(values: pd.Series) -> float:
    if len(values) < 2:
        return 0.0
    slope, _, _, _, _ = stats.linregress(np.arange(len(values)), values.to_numpy(dtype=float))
    return float(slope)
