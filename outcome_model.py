"""
Historical outcome model for data-driven stop/target selection
"""
import logging
import threading
from typing import Iterable, Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd

from data_models import DataDrivenTarget, SignalOutcome

logger = logging.getLogger(__name__)

OUTCOME_COLUMNS = ['symbol', 'volatility_bucket', 'max_favorable_pct', 'max_adverse_pct', 'final_return_pct']


def simulate_outcomes(outcomes: pd.DataFrame, stop_pct: float, target_pct: float) -> np.ndarray:
    """
    Realized return of each past outcome under a fixed stop/target pair.

    When both the stop and the target were reached the stop wins, since the
    intrabar order is unknown.
    """
    adverse = outcomes['max_adverse_pct'].to_numpy(dtype=float)
    favorable = outcomes['max_favorable_pct'].to_numpy(dtype=float)
    final = outcomes['final_return_pct'].to_numpy(dtype=float)

    return np.where(adverse >= stop_pct, -stop_pct,
                    np.where(favorable >= target_pct, target_pct, final))


class OutcomeModel:
    """
    Read-mostly store of past signal excursions.

    ``refresh`` swaps the whole table under a lock; readers take a reference
    to the current table and never see a half-written one.
    """

    def __init__(self, outcomes: Iterable[Union[SignalOutcome, Mapping]] = ()):
        self._lock = threading.Lock()
        self._outcomes = pd.DataFrame(columns=OUTCOME_COLUMNS)
        self.refresh(outcomes)

    def refresh(self, outcomes: Iterable[Union[SignalOutcome, Mapping]]):
        rows = [o.__dict__ if isinstance(o, SignalOutcome) else dict(o) for o in outcomes]
        frame = pd.DataFrame(rows, columns=OUTCOME_COLUMNS)
        frame = frame.dropna(subset=['max_favorable_pct', 'max_adverse_pct', 'final_return_pct'])
        # Excursions are magnitudes
        frame['max_favorable_pct'] = frame['max_favorable_pct'].astype(float).abs()
        frame['max_adverse_pct'] = frame['max_adverse_pct'].astype(float).abs()

        with self._lock:
            self._outcomes = frame
        logger.info(f"Outcome model refreshed with {len(frame)} outcomes")

    def __len__(self):
        return len(self._outcomes)

    def samples_for(self, symbol: str, volatility_bucket: str, min_samples: int):
        """Symbol history when there is enough of it, else the volatility bucket, else None"""
        outcomes = self._outcomes
        by_symbol = outcomes[outcomes['symbol'] == symbol]
        if len(by_symbol) >= min_samples:
            return by_symbol, 'symbol'
        by_bucket = outcomes[outcomes['volatility_bucket'] == volatility_bucket]
        if len(by_bucket) >= min_samples:
            return by_bucket, 'bucket'
        return None, None

    def best_target(self, symbol: str, volatility_bucket: str, *,
                    min_samples: int,
                    min_win_rate: float,
                    min_risk_reward: float,
                    stop_percentiles: Sequence[float],
                    target_percentiles: Sequence[float]) -> Optional[DataDrivenTarget]:
        """
        Grid-search stop/target distances over the empirical excursions.

        Stops come from percentiles of the adverse excursion, targets from
        percentiles of the favourable excursion. The pair with the highest
        mean realized return wins among those meeting the win-rate and R/R
        floors. Returns None when no data or no pair qualifies.
        """
        samples, source = self.samples_for(symbol, volatility_bucket, min_samples)
        if samples is None:
            return None

        stops = np.percentile(samples['max_adverse_pct'].to_numpy(dtype=float), list(stop_percentiles))
        targets = np.percentile(samples['max_favorable_pct'].to_numpy(dtype=float), list(target_percentiles))

        best: Optional[DataDrivenTarget] = None
        for stop_pct in stops:
            if stop_pct <= 0:
                continue
            for target_pct in targets:
                if target_pct <= 0 or target_pct / stop_pct < min_risk_reward:
                    continue

                returns = simulate_outcomes(samples, stop_pct, target_pct)
                win_rate = float(np.mean(returns == target_pct))
                if win_rate < min_win_rate:
                    continue

                expected = float(np.mean(returns))
                if best is None or expected > best.expected_return:
                    best = DataDrivenTarget(
                        stop_percent=float(stop_pct),
                        target_percent=float(target_pct),
                        win_rate=win_rate,
                        expected_return=expected,
                        samples=len(samples),
                        source=source,
                    )

        if best is None:
            logger.debug(f"{symbol}: no stop/target pair met the win-rate and R/R floors")
        return best


def measure_outcome(symbol: str, bars: pd.DataFrame, entry_price: float, long: bool,
                    volatility_bucket: str) -> Optional[SignalOutcome]:
    """
    Excursions of a trade entered at ``entry_price`` over the bars that followed it.

    Percentages are relative to the entry. Favourable and adverse excursions
    are magnitudes; the final return is signed in the trade's direction.
    """
    if bars is None or bars.empty or entry_price <= 0:
        return None

    high = float(bars['High'].max())
    low = float(bars['Low'].min())
    last = float(bars['Close'].iloc[-1])

    if long:
        favorable, adverse, final = high - entry_price, entry_price - low, last - entry_price
    else:
        favorable, adverse, final = entry_price - low, high - entry_price, entry_price - last

    return SignalOutcome(
        symbol=symbol,
        volatility_bucket=volatility_bucket,
        max_favorable_pct=max(0.0, favorable / entry_price * 100),
        max_adverse_pct=max(0.0, adverse / entry_price * 100),
        final_return_pct=final / entry_price * 100,
    )
