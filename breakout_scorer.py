"""
Breakout scoring: four 0-25 sub-scores combined into a 0-100 breakout score
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from data_models import (BreakoutSignal, BreakoutType, CompressionPattern,
                         ConsolidationPattern, Indicator, KeyLevels,
                         PositioningAnalysis, SignalType, TradingSignal,
                         VolumePattern)
from signal_filter import signal_hash

logger = logging.getLogger(__name__)

MAX_SUB_SCORE = 25.0
MIN_BREAKOUT_SCORE = 40.0


def classify_breakout(score: float) -> BreakoutType:
    """Map a total score onto its breakout class (lower bounds are inclusive)"""
    if score >= 80:
        return BreakoutType.IMMINENT
    if score >= 60:
        return BreakoutType.PROBABLE
    if score >= MIN_BREAKOUT_SCORE:
        return BreakoutType.POSSIBLE
    return BreakoutType.UNLIKELY


def score_consolidation(consolidation: ConsolidationPattern) -> Tuple[float, Optional[str]]:
    if not consolidation.is_valid:
        return 0.0, None
    if consolidation.is_compressing and consolidation.volatility_percent < 10:
        return 25.0, f"Tight consolidation ({consolidation.volatility_percent:.1f}% range)"
    if consolidation.is_compressing:
        return 15.0, "Price compression detected"
    return 5.0, "Loose consolidation"


def score_compression(compression: CompressionPattern) -> Tuple[float, Optional[str]]:
    if not compression.is_detected:
        return 0.0, None
    score = min(MAX_SUB_SCORE, compression.compression_strength * 0.8)
    return score, f"Volatility squeeze ({compression.compression_strength:.0f}% compression)"


def score_volume(volume: VolumePattern) -> Tuple[float, Optional[str]]:
    if not volume.is_valid:
        return 0.0, None
    if volume.is_accumulating:
        return 25.0, f"Accumulation detected ({volume.volume_increase_ratio:.1f}x volume)"
    if volume.volume_increase_ratio > 1.1:
        return 15.0, "Volume increasing"
    return 5.0, "Normal volume"


def score_positioning(positioning: PositioningAnalysis) -> Tuple[float, str]:
    if positioning.is_near_resistance and positioning.distance_to_resistance < 5:
        return 25.0, f"Near key resistance ({positioning.distance_to_resistance:.1f}% away)"
    if positioning.distance_to_resistance < 10:
        return 15.0, "Approaching resistance"
    return 5.0, "Away from key levels"


def score_breakout(symbol: str,
                   consolidation: ConsolidationPattern,
                   compression: CompressionPattern,
                   volume: VolumePattern,
                   key_levels: KeyLevels,
                   positioning: PositioningAnalysis) -> Optional[BreakoutSignal]:
    """
    Combine the pattern findings into a BreakoutSignal.

    Returns None when the total score is under 40; that is the hard gate
    for breakout candidates, not a low-confidence result.
    """
    scores: List[float] = []
    reasons: List[str] = []

    for score, reason in (score_consolidation(consolidation),
                          score_compression(compression),
                          score_volume(volume),
                          score_positioning(positioning)):
        scores.append(score)
        if reason:
            reasons.append(reason)

    total = min(100.0, sum(scores))
    breakout_type = classify_breakout(total)

    if total < MIN_BREAKOUT_SCORE:
        logger.debug(f"No breakout for {symbol}: score {total:.1f}/100")
        return None

    logger.info(f"Breakout signal generated for {symbol}: {breakout_type.value} ({total:.1f}/100)")

    return BreakoutSignal(
        symbol=symbol,
        analyzed_at=datetime.now(timezone.utc),
        current_price=positioning.current_price,
        breakout_score=total,
        breakout_type=breakout_type,
        reasons=reasons,
        consolidation=consolidation,
        compression=compression,
        volume_pattern=volume,
        key_levels=key_levels,
        positioning=positioning,
    )


def breakout_to_signal(breakout: BreakoutSignal, indicator: Indicator) -> TradingSignal:
    """Turn a breakout setup into a Buy candidate scored by its breakout score"""
    price = breakout.current_price or indicator.price
    reason = f"BREAKOUT {breakout.breakout_type.value.upper()}: " + " | ".join(breakout.reasons)

    return TradingSignal(
        symbol=breakout.symbol,
        signal_type=SignalType.BUY,
        confidence=breakout.breakout_score,
        price=price,
        rsi=indicator.rsi,
        macd_histogram=indicator.macd_histogram,
        volume=indicator.volume,
        reason=reason,
        support_level=breakout.key_levels.primary_support or indicator.support_level,
        resistance_level=breakout.key_levels.primary_resistance or indicator.resistance_level,
        trend_strength=indicator.trend_strength,
        volume_strength=indicator.volume_strength,
        market_condition=indicator.market_condition,
        atr=indicator.atr or None,
        signal_hash=signal_hash(breakout.symbol, SignalType.BUY, price, breakout.analyzed_at),
        created_at=breakout.analyzed_at,
    )
