"""
Confluence-based signal filter
"""
import hashlib
import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Tuple

from data_models import Indicator, SignalType, TradingSignal

logger = logging.getLogger(__name__)

# Factor weights; confidence is the capped sum of the factors that fired
RSI_EXTREME_WEIGHT = 30.0
RSI_DEEP_EXTREME_BONUS = 5.0
MACD_WEIGHT = 20.0
TREND_WEIGHT = 15.0
TREND_STRENGTH_BONUS = 10.0
VOLUME_WEIGHT = 15.0
LEVEL_WEIGHT = 20.0

RSI_OVERSOLD = 'RSI oversold'
RSI_OVERBOUGHT = 'RSI overbought'


def signal_hash(symbol: str, signal_type: SignalType, price: float, when: datetime = None) -> str:
    """Stable identity of a signal for de-duplication: symbol, type, price (2dp) and day"""
    when = when or datetime.now(timezone.utc)
    key = f"{symbol}|{signal_type.value}|{price:.2f}|{when:%Y-%m-%d}"
    return hashlib.sha1(key.encode('utf-8')).hexdigest()


class SignalFilter:
    """
    Turns an indicator snapshot into a Buy/Sell/Warning candidate.

    RSI decides which side is examined (below 50 bullish, above 50 bearish).
    The confidence is the sum of the weights of the confirming factors on
    that side, so more confirmations never lower it.
    """

    def __init__(self, oversold: float = 30.0, overbought: float = 70.0,
                 near_level_pct: float = 3.0, volume_confirm_strength: float = 6.0,
                 min_confirmations: int = 2, strong_trend_strength: float = 6.0):
        self.oversold = oversold
        self.overbought = overbought
        self.near_level_pct = near_level_pct
        self.volume_confirm_strength = volume_confirm_strength
        self.min_confirmations = min_confirmations
        self.strong_trend_strength = strong_trend_strength

    def evaluate(self, indicator: Indicator, sent_hashes: Iterable[str] = ()) -> Optional[TradingSignal]:
        """
        Build a candidate signal or return None.

        Args:
            indicator: Snapshot for the symbol being analyzed
            sent_hashes: Hashes of signals already sent for this symbol inside
                the de-duplication window
        """
        if indicator.price <= 0 or indicator.rsi == 50:
            return None

        is_long = indicator.rsi < 50
        factors = self.bullish_factors(indicator) if is_long else self.bearish_factors(indicator)
        if not factors:
            return None

        names = [name for name, _ in factors]
        confidence = min(100.0, sum(weight for _, weight in factors))
        rsi_extreme = (RSI_OVERSOLD if is_long else RSI_OVERBOUGHT) in names
        trend_opposes = indicator.trend_direction == ("Bearish" if is_long else "Bullish")

        if rsi_extreme and (len(factors) == 1 or trend_opposes):
            signal_type = SignalType.WARNING
        elif len(factors) >= self.min_confirmations and not trend_opposes:
            signal_type = SignalType.BUY if is_long else SignalType.SELL
        else:
            logger.debug(f"{indicator.symbol}: {len(factors)} factor(s) without a valid setup")
            return None

        signal = self._build_signal(indicator, signal_type, confidence, names, trend_opposes)

        if signal.signal_hash in set(sent_hashes):
            logger.debug(f"{indicator.symbol}: {signal_type.value} already sent today, skipping")
            return None

        logger.info(f"{indicator.symbol}: generated {signal_type.value} candidate with {confidence:.0f}% confidence")
        return signal

    def bullish_factors(self, indicator: Indicator) -> List[Tuple[str, float]]:
        factors = []
        if indicator.rsi < self.oversold:
            bonus = RSI_DEEP_EXTREME_BONUS if indicator.rsi < self.oversold - 10 else 0.0
            factors.append((RSI_OVERSOLD, RSI_EXTREME_WEIGHT + bonus))
        if indicator.macd_histogram > 0 or indicator.macd_cross_up:
            factors.append(('MACD bullish', MACD_WEIGHT))
        if indicator.trend_direction == "Bullish":
            factors.append(self._trend_factor("Bullish trend", indicator.trend_strength))
        if indicator.volume_strength >= self.volume_confirm_strength:
            factors.append((f'Volume spike ({indicator.volume_ratio:.1f}x)', VOLUME_WEIGHT))
        if self._within(indicator.price, indicator.support_level):
            factors.append(('Near support', LEVEL_WEIGHT))
        return factors

    def bearish_factors(self, indicator: Indicator) -> List[Tuple[str, float]]:
        factors = []
        if indicator.rsi > self.overbought:
            bonus = RSI_DEEP_EXTREME_BONUS if indicator.rsi > self.overbought + 10 else 0.0
            factors.append((RSI_OVERBOUGHT, RSI_EXTREME_WEIGHT + bonus))
        if indicator.macd_histogram < 0:
            factors.append(('MACD bearish', MACD_WEIGHT))
        if indicator.trend_direction == "Bearish":
            factors.append(self._trend_factor("Bearish trend", indicator.trend_strength))
        if indicator.volume_strength >= self.volume_confirm_strength:
            factors.append((f'Volume spike ({indicator.volume_ratio:.1f}x)', VOLUME_WEIGHT))
        if self._within(indicator.price, indicator.resistance_level):
            factors.append(('Near resistance', LEVEL_WEIGHT))
        return factors

    def _trend_factor(self, name: str, strength: float) -> Tuple[str, float]:
        """The trend factor, weighted up when the regression trend is strong"""
        if strength >= self.strong_trend_strength:
            return f"{name} (strength {strength:.1f}/10)", TREND_WEIGHT + TREND_STRENGTH_BONUS
        return name, TREND_WEIGHT

    def _within(self, price: float, level: Optional[float]) -> bool:
        if not level or price <= 0:
            return False
        return abs(price - level) / price * 100 <= self.near_level_pct

    def _build_signal(self, indicator: Indicator, signal_type: SignalType, confidence: float,
                      names: List[str], trend_opposes: bool) -> TradingSignal:
        headline = {
            SignalType.BUY: "BUY: bullish confluence",
            SignalType.SELL: "SELL: bearish confluence",
            SignalType.WARNING: "WARNING: RSI extreme against trend" if trend_opposes
            else "WARNING: RSI extreme without confirmation",
        }[signal_type]
        reason = f"{headline} | " + " + ".join(names) + f" | Confluence: {confidence:.0f}/100"

        created_at = datetime.now(timezone.utc)
        return TradingSignal(
            symbol=indicator.symbol,
            signal_type=signal_type,
            confidence=confidence,
            price=indicator.price,
            rsi=indicator.rsi,
            macd_histogram=indicator.macd_histogram,
            volume=indicator.volume,
            reason=reason,
            support_level=indicator.support_level,
            resistance_level=indicator.resistance_level,
            trend_strength=indicator.trend_strength,
            volume_strength=indicator.volume_strength,
            market_condition=indicator.market_condition,
            atr=indicator.atr or None,
            signal_hash=signal_hash(indicator.symbol, signal_type, indicator.price, created_at),
            created_at=created_at,
        )
