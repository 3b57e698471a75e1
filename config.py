"""
Tunable thresholds for the signal pipeline

Every value can be overridden through an environment variable; the names
follow the section they belong to (IND_, RISK_, GATE_, SCAN_). Variables are
read each time a config object is built, not when this module is imported.
"""
import os
from dataclasses import dataclass, field
from typing import Dict, Tuple

from data_models import AnalysisMode


def _env_float(key: str, default: float) -> float:
    v = os.getenv(key)
    if v is None or v == "":
        return default
    try:
        return float(v)
    except ValueError:
        return default


def _env_int(key: str, default: int) -> int:
    v = os.getenv(key)
    if v is None or v == "":
        return default
    try:
        return int(v)
    except ValueError:
        return default


def _env_bool(key: str, default: bool = True) -> bool:
    v = os.getenv(key)
    if v is None or v == "":
        return default
    return v.strip().lower() not in ("0", "false", "no", "off")


def _float_field(key: str, default: float):
    return field(default_factory=lambda: _env_float(key, default))


def _int_field(key: str, default: int):
    return field(default_factory=lambda: _env_int(key, default))


def _bool_field(key: str, default: bool = True):
    return field(default_factory=lambda: _env_bool(key, default))


@dataclass(frozen=True)
class IndicatorConfig:
    rsi_period: int = _int_field("IND_RSI_PERIOD", 14)
    macd_fast: int = _int_field("IND_MACD_FAST", 12)
    macd_slow: int = _int_field("IND_MACD_SLOW", 26)
    macd_signal: int = _int_field("IND_MACD_SIGNAL", 9)
    atr_period: int = _int_field("IND_ATR_PERIOD", 14)
    trend_window: int = _int_field("IND_TREND_WINDOW", 20)
    volume_window: int = _int_field("IND_VOLUME_WINDOW", 20)
    levels_window: int = _int_field("IND_LEVELS_WINDOW", 60)
    swing_lookback: int = _int_field("IND_SWING_LOOKBACK", 3)


@dataclass(frozen=True)
class RiskConfig:
    # Volatility-based method
    atr_multiplier_low: float = _float_field("RISK_ATR_MULT_LOW", 2.0)
    atr_multiplier_normal: float = _float_field("RISK_ATR_MULT_NORMAL", 2.5)
    atr_multiplier_high: float = _float_field("RISK_ATR_MULT_HIGH", 3.0)
    atr_multiplier_extreme: float = _float_field("RISK_ATR_MULT_EXTREME", 4.0)
    target_multiple: float = _float_field("RISK_TARGET_MULTIPLE", 2.5)
    min_risk_reward: float = _float_field("RISK_MIN_RISK_REWARD", 2.0)
    support_buffer: float = _float_field("RISK_SUPPORT_BUFFER", 0.98)

    # Data-driven method
    use_data_driven: bool = _bool_field("RISK_USE_DATA_DRIVEN", True)
    min_outcome_samples: int = _int_field("RISK_MIN_OUTCOME_SAMPLES", 20)
    min_win_rate: float = _float_field("RISK_MIN_WIN_RATE", 0.45)
    stop_percentiles: Tuple[float, ...] = (50.0, 60.0, 70.0, 80.0, 90.0)
    target_percentiles: Tuple[float, ...] = (30.0, 40.0, 50.0, 60.0, 70.0)

    # Position sizing
    account_size: float = _float_field("RISK_ACCOUNT_SIZE", 10000.0)
    risk_per_trade_pct: float = _float_field("RISK_PER_TRADE_PCT", 1.0)
    max_position_pct: float = _float_field("RISK_MAX_POSITION_PCT", 20.0)

    def atr_multiplier(self, volatility_class: str) -> float:
        return {
            "LOW": self.atr_multiplier_low,
            "NORMAL": self.atr_multiplier_normal,
            "HIGH": self.atr_multiplier_high,
            "EXTREME": self.atr_multiplier_extreme,
        }.get(volatility_class, self.atr_multiplier_normal)


def _default_mode_thresholds() -> Dict[AnalysisMode, float]:
    return {
        AnalysisMode.FULL_ANALYSIS: _env_float("GATE_CONFIDENCE_FULL", 65.0),
        AnalysisMode.PRE_MARKET_WATCH: _env_float("GATE_CONFIDENCE_PREMARKET", 75.0),
        AnalysisMode.OFF_HOURS_MONITOR: _env_float("GATE_CONFIDENCE_OFFHOURS", 90.0),
    }


@dataclass(frozen=True)
class ValidationConfig:
    max_stop_loss_pct: float = _float_field("GATE_MAX_STOP_LOSS_PCT", 8.0)
    max_take_profit_pct: float = _float_field("GATE_MAX_TAKE_PROFIT_PCT", 20.0)
    min_risk_reward: float = _float_field("GATE_MIN_RISK_REWARD", 2.0)
    min_volume_strength: float = _float_field("GATE_MIN_VOLUME_STRENGTH", 4.0)
    min_trend_strength: float = _float_field("GATE_MIN_TREND_STRENGTH", 5.0)
    trend_check_confidence: float = _float_field("GATE_TREND_CHECK_CONFIDENCE", 80.0)
    off_hours_rsi_low: float = _float_field("GATE_OFFHOURS_RSI_LOW", 25.0)
    off_hours_rsi_high: float = _float_field("GATE_OFFHOURS_RSI_HIGH", 75.0)
    mode_thresholds: Dict[AnalysisMode, float] = field(default_factory=_default_mode_thresholds)
    risk_reward_modes: Tuple[AnalysisMode, ...] = (
        AnalysisMode.FULL_ANALYSIS,
        AnalysisMode.OFF_HOURS_MONITOR,
    )

    def confidence_threshold(self, mode: AnalysisMode) -> float:
        return self.mode_thresholds.get(mode, self.mode_thresholds[AnalysisMode.FULL_ANALYSIS])


@dataclass(frozen=True)
class ScannerConfig:
    lookback_period: str = field(default_factory=lambda: os.getenv("SCAN_LOOKBACK_PERIOD") or "6mo")
    min_history_bars: int = _int_field("SCAN_MIN_HISTORY_BARS", 20)
    max_workers: int = _int_field("SCAN_MAX_WORKERS", 8)
    dedup_window_hours: int = _int_field("SCAN_DEDUP_WINDOW_HOURS", 24)
