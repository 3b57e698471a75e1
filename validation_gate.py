"""
Release checks for annotated signals
"""
import logging
from typing import Callable, List, Optional, Tuple

from config import ValidationConfig
from data_models import AnalysisMode, SignalType, TradingSignal, ValidationResult

logger = logging.getLogger(__name__)

# A check returns None when it passes, or the rejection reason
Check = Callable[[TradingSignal, AnalysisMode], Optional[str]]

RESTRICTED_MODES = (AnalysisMode.PRE_MARKET_WATCH, AnalysisMode.OFF_HOURS_MONITOR)


class ValidationGate:
    """
    Sequential business-rule checks; the first failure rejects the signal.

    The gate reads the signal and never modifies it, so validating the same
    signal twice gives the same result.
    """

    def __init__(self, config: ValidationConfig = None):
        self.config = config or ValidationConfig()
        self.checks: List[Tuple[str, Check]] = [
            ('price', self.check_price),
            ('levels', self.check_level_ordering),
            ('stop_width', self.check_stop_width),
            ('target_width', self.check_target_width),
            ('confidence', self.check_confidence),
            ('session', self.check_session_restrictions),
            ('risk_reward', self.check_risk_reward),
            ('volume', self.check_volume_strength),
            ('trend', self.check_trend_strength),
        ]

    def validate(self, signal: TradingSignal, mode: AnalysisMode = AnalysisMode.FULL_ANALYSIS) -> ValidationResult:
        for _, check in self.checks:
            reason = check(signal, mode)
            if reason:
                logger.info(f"Rejected {signal.signal_type.value} {signal.symbol} [{mode.value}]: {reason}")
                return ValidationResult(accepted=False, reason=reason)

        logger.info(f"Accepted {signal.signal_type.value} {signal.symbol} [{mode.value}] "
                    f"with {signal.confidence:.0f}% confidence")
        return ValidationResult(accepted=True)

    def check_price(self, signal: TradingSignal, mode: AnalysisMode) -> Optional[str]:
        if not signal.price or signal.price <= 0:
            return f"invalid price {signal.price}"
        return None

    def check_level_ordering(self, signal: TradingSignal, mode: AnalysisMode) -> Optional[str]:
        """Every signal type needs both levels, on the side its direction implies"""
        if signal.stop_loss is None:
            return "missing stop loss"
        if signal.take_profit is None:
            return "missing take profit"

        if signal.is_long:
            if signal.stop_loss >= signal.price:
                return f"stop loss {signal.stop_loss:.2f} not below price {signal.price:.2f}"
            if signal.take_profit <= signal.price:
                return f"take profit {signal.take_profit:.2f} not above price {signal.price:.2f}"
        else:
            if signal.stop_loss <= signal.price:
                return f"stop loss {signal.stop_loss:.2f} not above price {signal.price:.2f}"
            if signal.take_profit >= signal.price:
                return f"take profit {signal.take_profit:.2f} not below price {signal.price:.2f}"
        return None

    def check_stop_width(self, signal: TradingSignal, mode: AnalysisMode) -> Optional[str]:
        if signal.stop_loss is None:
            return None
        width = abs(signal.price - signal.stop_loss) / signal.price * 100
        if width > self.config.max_stop_loss_pct:
            return f"stop loss too wide ({width:.1f}% > {self.config.max_stop_loss_pct:.1f}%)"
        return None

    def check_target_width(self, signal: TradingSignal, mode: AnalysisMode) -> Optional[str]:
        if signal.take_profit is None:
            return None
        width = abs(signal.take_profit - signal.price) / signal.price * 100
        if width > self.config.max_take_profit_pct:
            return f"take profit too wide ({width:.1f}% > {self.config.max_take_profit_pct:.1f}%)"
        return None

    def check_confidence(self, signal: TradingSignal, mode: AnalysisMode) -> Optional[str]:
        threshold = self.config.confidence_threshold(mode)
        if signal.confidence < threshold:
            return f"confidence {signal.confidence:.0f}% below {threshold:.0f}% for {mode.value}"
        return None

    def check_session_restrictions(self, signal: TradingSignal, mode: AnalysisMode) -> Optional[str]:
        if mode not in RESTRICTED_MODES:
            return None
        if signal.signal_type == SignalType.SELL:
            return f"{signal.signal_type.value} signals are not released in {mode.value}"
        if mode == AnalysisMode.OFF_HOURS_MONITOR:
            if self.config.off_hours_rsi_low <= signal.rsi <= self.config.off_hours_rsi_high:
                return f"RSI {signal.rsi:.1f} not extreme enough for {mode.value}"
        return None

    def check_risk_reward(self, signal: TradingSignal, mode: AnalysisMode) -> Optional[str]:
        if mode not in self.config.risk_reward_modes:
            return None
        if signal.stop_loss is None or signal.take_profit is None:
            return None
        risk = abs(signal.price - signal.stop_loss)
        if risk <= 0:
            return "zero risk distance"
        ratio = abs(signal.take_profit - signal.price) / risk
        if ratio < self.config.min_risk_reward:
            return f"risk/reward 1:{ratio:.2f} below 1:{self.config.min_risk_reward:.1f}"
        return None

    def check_volume_strength(self, signal: TradingSignal, mode: AnalysisMode) -> Optional[str]:
        if signal.signal_type != SignalType.BUY:
            return None
        strength = signal.volume_strength or 0.0
        if strength < self.config.min_volume_strength:
            return f"volume strength {strength:.1f} below {self.config.min_volume_strength:.1f}"
        return None

    def check_trend_strength(self, signal: TradingSignal, mode: AnalysisMode) -> Optional[str]:
        if signal.confidence < self.config.trend_check_confidence:
            return None
        strength = signal.trend_strength or 0.0
        if strength < self.config.min_trend_strength:
            return (f"trend strength {strength:.1f} below {self.config.min_trend_strength:.1f} "
                    f"for a {signal.confidence:.0f}% signal")
        return None
