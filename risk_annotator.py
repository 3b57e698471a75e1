"""
Risk annotation: stop-loss, take-profit, risk/reward and position size
"""
import logging
import math
from typing import Optional, Tuple

from config import RiskConfig
from data_models import DataDrivenTarget, SignalStatus, TradingSignal
from outcome_model import OutcomeModel

logger = logging.getLogger(__name__)

VOLATILITY_METHOD = "volatility"
DATA_DRIVEN_METHOD = "data_driven"


def classify_volatility(atr: float, price: float) -> str:
    """Bucket the ATR as a percentage of price"""
    atr_percent = atr / price * 100
    if atr_percent < 1.0:
        return "LOW"
    if atr_percent < 2.5:
        return "NORMAL"
    if atr_percent < 4.0:
        return "HIGH"
    return "EXTREME"


class RiskAnnotator:
    """
    Attaches risk levels to a candidate signal in place.

    The volatility (ATR) method is the default. When an outcome model is
    given and ``use_data_driven`` is set, distances learned from past
    outcomes are tried first. Whatever the method, the returned signal either
    satisfies stop < price < target (mirrored for shorts) or has no risk
    fields at all.
    """

    def __init__(self, config: RiskConfig = None, outcome_model: Optional[OutcomeModel] = None):
        self.config = config or RiskConfig()
        self.outcome_model = outcome_model

    def annotate(self, signal: TradingSignal) -> TradingSignal:
        signal.status = SignalStatus.ANNOTATED
        price = signal.price
        atr = signal.atr or 0.0

        if price <= 0 or atr <= 0 or not math.isfinite(atr):
            logger.warning(f"{signal.symbol}: cannot annotate risk (price={price}, atr={atr}); leaving levels unset")
            signal.clear_risk_fields()
            return signal

        volatility_class = classify_volatility(atr, price)
        long = signal.is_long

        target = self._data_driven_target(signal.symbol, volatility_class)
        if target is not None:
            stop_loss, take_profit = self._levels_from_percentages(price, target, long)
            method = DATA_DRIVEN_METHOD
            if not self._ordered(price, stop_loss, take_profit, long):
                logger.info(f"{signal.symbol}: data-driven levels SL={stop_loss:.4f} TP={take_profit:.4f} "
                            f"unusable at {price:.4f}; falling back to ATR")
                target = None

        if target is None:
            stop_loss, take_profit = self._levels_from_atr(signal, atr, volatility_class, long)
            method = VOLATILITY_METHOD

        if not self._ordered(price, stop_loss, take_profit, long):
            logger.warning(f"{signal.symbol}: invalid risk levels SL={stop_loss:.4f} price={price:.4f} "
                           f"TP={take_profit:.4f}; leaving levels unset")
            signal.clear_risk_fields()
            return signal

        risk_per_share = abs(price - stop_loss)
        reward_per_share = abs(take_profit - price)

        signal.stop_loss = stop_loss
        signal.take_profit = take_profit
        signal.stop_loss_percent = risk_per_share / price * 100
        signal.take_profit_percent = reward_per_share / price * 100
        signal.risk_reward_ratio = reward_per_share / risk_per_share
        signal.risk_method = method
        self._size_position(signal, risk_per_share, reward_per_share)

        if target is not None:
            signal.predicted_success_probability = target.win_rate * 100
            signal.take_profit_strategy = (f"Data-driven ({target.source}, {target.samples} outcomes, "
                                           f"{target.win_rate:.0%} hit rate)")
        else:
            signal.take_profit_strategy = f"ATR x{self.config.atr_multiplier(volatility_class):.1f} ({volatility_class})"

        signal.entry_strategy = self._entry_strategy(signal, volatility_class)
        signal.exit_strategy = self._exit_strategy(signal, atr)

        logger.info(f"Risk levels for {signal.symbol} ({method}): SL {signal.stop_loss:.2f} "
                    f"({signal.stop_loss_percent:.1f}%), TP {signal.take_profit:.2f} "
                    f"({signal.take_profit_percent:.1f}%), R/R 1:{signal.risk_reward_ratio:.1f}")
        return signal

    def _data_driven_target(self, symbol: str, volatility_class: str) -> Optional[DataDrivenTarget]:
        if not self.config.use_data_driven or self.outcome_model is None:
            return None
        return self.outcome_model.best_target(
            symbol, volatility_class,
            min_samples=self.config.min_outcome_samples,
            min_win_rate=self.config.min_win_rate,
            min_risk_reward=self.config.min_risk_reward,
            stop_percentiles=self.config.stop_percentiles,
            target_percentiles=self.config.target_percentiles,
        )

    def _levels_from_percentages(self, price: float, target: DataDrivenTarget, long: bool) -> Tuple[float, float]:
        stop_move = price * target.stop_percent / 100
        target_move = price * target.target_percent / 100
        if long:
            return price - stop_move, price + target_move
        return price + stop_move, price - target_move

    def _levels_from_atr(self, signal: TradingSignal, atr: float, volatility_class: str,
                         long: bool) -> Tuple[float, float]:
        price = signal.price
        distance = atr * self.config.atr_multiplier(volatility_class)
        multiple = max(self.config.target_multiple, self.config.min_risk_reward)

        if long:
            stop_loss = price - distance
            if signal.support_level and signal.support_level < price:
                stop_loss = max(stop_loss, signal.support_level * self.config.support_buffer)
            return stop_loss, price + (price - stop_loss) * multiple

        stop_loss = price + distance
        if signal.resistance_level and signal.resistance_level > price:
            stop_loss = min(stop_loss, signal.resistance_level * (2 - self.config.support_buffer))
        return stop_loss, price - (stop_loss - price) * multiple

    @staticmethod
    def _ordered(price: float, stop_loss: float, take_profit: float, long: bool) -> bool:
        if not all(math.isfinite(v) for v in (price, stop_loss, take_profit)):
            return False
        if long:
            return stop_loss < price < take_profit
        return take_profit < price < stop_loss and take_profit > 0

    def _size_position(self, signal: TradingSignal, risk_per_share: float, reward_per_share: float):
        account = self.config.account_size
        risk_budget = account * self.config.risk_per_trade_pct / 100
        max_position = account * self.config.max_position_pct / 100

        shares = math.floor(risk_budget / risk_per_share)
        shares = max(0, min(shares, math.floor(max_position / signal.price)))

        signal.suggested_shares = shares
        signal.position_value = shares * signal.price
        signal.max_risk_amount = shares * risk_per_share
        signal.potential_gain_amount = shares * reward_per_share

    def _entry_strategy(self, signal: TradingSignal, volatility_class: str) -> str:
        parts = []
        if signal.confidence >= 85 and volatility_class != "EXTREME":
            parts.append("Market order - high confidence setup")
        else:
            offset = 0.998 if signal.is_long else 1.002
            parts.append(f"Limit order at {signal.price * offset:.2f} - wait for a small pullback")

        if (signal.volume_strength or 0) >= 7:
            parts.append("Strong volume - enter immediately")
        else:
            parts.append("Wait for volume confirmation (>1.5x avg)")
        return " | ".join(parts)

    def _exit_strategy(self, signal: TradingSignal, atr: float) -> str:
        parts = [
            f"Stop Loss: {signal.stop_loss:.2f} ({signal.stop_loss_percent:.1f}%)",
            f"Take Profit: {signal.take_profit:.2f} ({signal.take_profit_percent:.1f}%)",
            f"Trailing Stop: {atr * 1.5:.2f} distance (1.5x ATR)",
        ]
        if signal.confidence >= 90:
            partial = signal.price + (signal.take_profit - signal.price) * 0.6
            parts.append(f"Take 50% profit at {partial:.2f}")
        return " | ".join(parts)
