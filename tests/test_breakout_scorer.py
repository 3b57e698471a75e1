import numpy as np
import pytest

from breakout_scorer import (breakout_to_signal, classify_breakout,
                             score_breakout, score_compression,
                             score_consolidation, score_positioning,
                             score_volume)
from conftest import make_history, make_indicator
from data_models import (BreakoutType, CompressionPattern,
                         ConsolidationPattern, KeyLevels, PositioningAnalysis,
                         SignalType, VolumePattern)
from pattern_detectors import (CompressionDetector, ConsolidationDetector,
                               KeyLevelDetector, PositioningAnalyzer,
                               VolumePatternDetector)


@pytest.mark.parametrize("score, expected", [
    (0.0, BreakoutType.UNLIKELY),
    (39.999, BreakoutType.UNLIKELY),
    (40.0, BreakoutType.POSSIBLE),
    (59.99, BreakoutType.POSSIBLE),
    (60.0, BreakoutType.PROBABLE),
    (79.999, BreakoutType.PROBABLE),
    (80.0, BreakoutType.IMMINENT),
    (100.0, BreakoutType.IMMINENT),
])
def test_classification_boundaries(score, expected):
    assert classify_breakout(score) == expected


def test_sub_scores():
    assert score_consolidation(ConsolidationPattern())[0] == 0
    assert score_consolidation(ConsolidationPattern(is_valid=True, is_compressing=True, volatility_percent=8))[0] == 25
    assert score_consolidation(ConsolidationPattern(is_valid=True, is_compressing=True, volatility_percent=12))[0] == 15
    assert score_consolidation(ConsolidationPattern(is_valid=True, volatility_percent=30))[0] == 5

    assert score_compression(CompressionPattern())[0] == 0
    assert score_compression(CompressionPattern(is_detected=True, compression_strength=20))[0] == pytest.approx(16)
    assert score_compression(CompressionPattern(is_detected=True, compression_strength=80))[0] == 25

    assert score_volume(VolumePattern())[0] == 0
    assert score_volume(VolumePattern(is_valid=True, is_accumulating=True, volume_increase_ratio=1.5))[0] == 25
    assert score_volume(VolumePattern(is_valid=True, volume_increase_ratio=1.15))[0] == 15
    assert score_volume(VolumePattern(is_valid=True, volume_increase_ratio=1.0))[0] == 5

    assert score_positioning(PositioningAnalysis(distance_to_resistance=2, is_near_resistance=True))[0] == 25
    assert score_positioning(PositioningAnalysis(distance_to_resistance=7))[0] == 15
    assert score_positioning(PositioningAnalysis())[0] == 5


def test_low_total_returns_none():
    result = score_breakout("NONE", ConsolidationPattern(), CompressionPattern(), VolumePattern(),
                            KeyLevels(), PositioningAnalysis())
    assert result is None


def test_score_is_monotonic_in_compression():
    consolidation = ConsolidationPattern(is_valid=True, is_compressing=True, volatility_percent=8)
    volume = VolumePattern(is_valid=True, is_accumulating=True, volume_increase_ratio=1.5)

    totals = []
    for strength in range(0, 101, 5):
        compression = CompressionPattern(is_detected=strength > 30, compression_strength=float(strength))
        breakout = score_breakout("MONO", consolidation, compression, volume, KeyLevels(), PositioningAnalysis())
        totals.append(breakout.breakout_score)

    assert totals == sorted(totals)


def test_score_is_capped_and_reasons_ordered():
    breakout = score_breakout(
        "CAP",
        ConsolidationPattern(is_valid=True, is_compressing=True, volatility_percent=5),
        CompressionPattern(is_detected=True, compression_strength=90),
        VolumePattern(is_valid=True, is_accumulating=True, volume_increase_ratio=2.0),
        KeyLevels(is_valid=True, resistance_levels=[102.0]),
        PositioningAnalysis(current_price=100.0, distance_to_resistance=2.0, is_near_resistance=True),
    )

    assert breakout.breakout_score == 100
    assert breakout.breakout_type == BreakoutType.IMMINENT
    assert len(breakout.reasons) == 4
    assert breakout.reasons[0].startswith("Tight consolidation")


def test_contracting_range_with_rising_volume_scores_as_breakout(breakout_history):
    key_levels = KeyLevelDetector().detect(breakout_history)
    breakout = score_breakout(
        "COIL",
        ConsolidationDetector().detect(breakout_history),
        CompressionDetector().detect(breakout_history),
        VolumePatternDetector().detect(breakout_history),
        key_levels,
        PositioningAnalyzer().analyze(breakout_history.iloc[-1].to_dict(), key_levels),
    )

    assert breakout is not None
    assert breakout.breakout_score >= 65
    assert breakout.breakout_type in (BreakoutType.PROBABLE, BreakoutType.IMMINENT)
    assert breakout.volume_pattern.is_accumulating
    assert breakout.compression.is_detected


def test_breakout_to_signal():
    breakout = score_breakout(
        "SIG",
        ConsolidationPattern(is_valid=True, is_compressing=True, volatility_percent=5),
        CompressionPattern(is_detected=True, compression_strength=50),
        VolumePattern(is_valid=True, is_accumulating=True, volume_increase_ratio=1.6),
        KeyLevels(is_valid=True, resistance_levels=[104.0], support_levels=[96.0]),
        PositioningAnalysis(current_price=100.0, distance_to_resistance=4.0),
    )
    signal = breakout_to_signal(breakout, make_indicator(symbol="SIG"))

    assert signal.signal_type == SignalType.BUY
    assert signal.confidence == breakout.breakout_score
    assert signal.price == 100.0
    assert signal.support_level == 96.0
    assert signal.resistance_level == 104.0
    assert signal.atr == 2.0
    assert signal.signal_hash
    assert signal.reason.startswith(f"BREAKOUT {breakout.breakout_type.value.upper()}")


def test_twenty_bar_window_scores_as_breakout():
    # Closes swing 96/104 then coil to 99/101 inside an 8% band; the last
    # five bars trade 1.5x the earlier volume
    closes = np.concatenate([np.tile([96.0, 104.0], 5), np.tile([99.0, 101.0], 5)])
    volumes = np.concatenate([np.full(15, 1000.0), np.full(5, 1500.0)])
    history = make_history(closes, volumes=volumes, spread=0.0)
    assert len(history) == 20

    key_levels = KeyLevelDetector().detect(history)
    breakout = score_breakout(
        "COIL20",
        ConsolidationDetector().detect(history),
        CompressionDetector().detect(history),
        VolumePatternDetector().detect(history),
        key_levels,
        PositioningAnalyzer().analyze(history.iloc[-1].to_dict(), key_levels),
    )

    assert not key_levels.is_valid
    assert breakout.consolidation.volatility_percent == pytest.approx(8.0)
    assert breakout.volume_pattern.volume_increase_ratio == pytest.approx(1.5)
    assert breakout.breakout_score == pytest.approx(80.0)
    assert breakout.breakout_score >= 65
    assert breakout.breakout_type in (BreakoutType.PROBABLE, BreakoutType.IMMINENT)
