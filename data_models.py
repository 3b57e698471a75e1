"""
Data models for the breakout and trading signal pipeline
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional


def _record(instance) -> Dict:
    """Flatten a dataclass into a JSON-safe dict for persistence and task payloads"""
    record = {}
    for name in instance.__dataclass_fields__:
        value = getattr(instance, name)
        if isinstance(value, Enum):
            value = value.value
        elif isinstance(value, datetime):
            value = value.isoformat()
        record[name] = value
    return record


class SignalType(str, Enum):
    BUY = "Buy"
    SELL = "Sell"
    WARNING = "Warning"


class BreakoutType(str, Enum):
    UNLIKELY = "Unlikely"
    POSSIBLE = "Possible"
    PROBABLE = "Probable"
    IMMINENT = "Imminent"


class SignalStatus(str, Enum):
    CANDIDATE = "Candidate"
    ANNOTATED = "Annotated"
    ACCEPTED = "Accepted"
    REJECTED = "Rejected"


class AnalysisMode(str, Enum):
    """Session context supplied by the caller; decides the confidence bar"""
    FULL_ANALYSIS = "FullAnalysis"
    PRE_MARKET_WATCH = "PreMarketWatch"
    OFF_HOURS_MONITOR = "OffHoursMonitor"


@dataclass(frozen=True)
class Indicator:
    """Indicator snapshot for one symbol, one analysis cycle"""
    symbol: str
    price: float
    rsi: float
    macd_histogram: float
    volume: float
    trend_strength: float  # 0-10
    volume_strength: float  # 0-10
    support_level: Optional[float]
    resistance_level: Optional[float]
    market_condition: str
    macd: float = 0.0
    macd_signal: float = 0.0
    macd_cross_up: bool = False
    ema20: float = 0.0
    ema50: float = 0.0
    trend_direction: str = "Sideways"  # 'Bullish', 'Bearish', 'Sideways'
    volume_ratio: float = 1.0
    atr: float = 0.0
    bars: int = 0
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def has_sufficient_data(self) -> bool:
        return self.bars >= 26

    def to_record(self) -> Dict:
        return _record(self)


@dataclass
class ConsolidationPattern:
    is_valid: bool = False
    duration_days: int = 0
    volatility_percent: float = 0.0
    high_level: float = 0.0
    low_level: float = 0.0
    is_compressing: bool = False
    consolidation_type: str = "Irregular"


@dataclass
class CompressionPattern:
    is_detected: bool = False
    compression_ratio: float = 1.0
    current_volatility: float = 0.0
    historical_volatility: float = 0.0
    compression_strength: float = 0.0


@dataclass
class VolumePattern:
    is_valid: bool = False
    volume_increase_ratio: float = 1.0
    is_accumulating: bool = False
    average_volume: float = 0.0
    price_stability: float = 1.0
    current_volume_strength: float = 0.0


@dataclass
class KeyLevels:
    is_valid: bool = False
    resistance_levels: List[float] = field(default_factory=list)
    support_levels: List[float] = field(default_factory=list)
    current_price: float = 0.0
    distance_to_resistance: float = 0.0

    @property
    def primary_resistance(self) -> Optional[float]:
        return self.resistance_levels[0] if self.resistance_levels else None

    @property
    def secondary_resistance(self) -> Optional[float]:
        return self.resistance_levels[1] if len(self.resistance_levels) > 1 else None

    @property
    def primary_support(self) -> Optional[float]:
        return self.support_levels[0] if self.support_levels else None

    @property
    def secondary_support(self) -> Optional[float]:
        return self.support_levels[1] if len(self.support_levels) > 1 else None


@dataclass
class PositioningAnalysis:
    current_price: float = 0.0
    position_in_day_range: float = 50.0
    distance_to_resistance: float = 100.0
    distance_to_support: float = 100.0
    is_near_resistance: bool = False


@dataclass
class BreakoutSignal:
    """Scored breakout setup, carrying the findings it was built from"""
    symbol: str
    analyzed_at: datetime
    current_price: float
    breakout_score: float
    breakout_type: BreakoutType
    reasons: List[str]
    consolidation: ConsolidationPattern
    compression: CompressionPattern
    volume_pattern: VolumePattern
    key_levels: KeyLevels
    positioning: PositioningAnalysis
    max_possible_score: float = 100.0


@dataclass
class TradingSignal:
    """Data class for a signal as it moves through annotation and validation"""
    symbol: str
    signal_type: SignalType
    confidence: float
    price: float
    rsi: float
    macd_histogram: float
    volume: float
    reason: str = ""

    # Risk annotation
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    stop_loss_percent: Optional[float] = None
    take_profit_percent: Optional[float] = None
    risk_reward_ratio: Optional[float] = None
    suggested_shares: Optional[int] = None
    position_value: Optional[float] = None
    max_risk_amount: Optional[float] = None
    potential_gain_amount: Optional[float] = None
    atr: Optional[float] = None

    # Strategy labels
    entry_strategy: Optional[str] = None
    exit_strategy: Optional[str] = None
    take_profit_strategy: Optional[str] = None
    predicted_success_probability: Optional[float] = None
    risk_method: Optional[str] = None  # 'volatility', 'data_driven'

    # Market context
    support_level: Optional[float] = None
    resistance_level: Optional[float] = None
    trend_strength: Optional[float] = None
    volume_strength: Optional[float] = None
    market_condition: Optional[str] = None

    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    signal_hash: str = ""
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    status: SignalStatus = SignalStatus.CANDIDATE
    sent: bool = False
    sent_at: Optional[datetime] = None

    @property
    def is_long(self) -> bool:
        if self.signal_type == SignalType.BUY:
            return True
        if self.signal_type == SignalType.SELL:
            return False
        return self.rsi < 50

    @property
    def has_risk_levels(self) -> bool:
        return self.stop_loss is not None and self.take_profit is not None

    def clear_risk_fields(self):
        for name in ('stop_loss', 'take_profit', 'stop_loss_percent', 'take_profit_percent',
                     'risk_reward_ratio', 'suggested_shares', 'position_value',
                     'max_risk_amount', 'potential_gain_amount', 'entry_strategy',
                     'exit_strategy', 'take_profit_strategy', 'predicted_success_probability',
                     'risk_method'):
            setattr(self, name, None)

    def to_record(self) -> Dict:
        return _record(self)


@dataclass
class ValidationResult:
    accepted: bool
    reason: Optional[str] = None


@dataclass
class SignalOutcome:
    """Realized result of a past signal, as stored by the outcome store"""
    symbol: str
    volatility_bucket: str  # 'LOW', 'NORMAL', 'HIGH', 'EXTREME'
    max_favorable_pct: float
    max_adverse_pct: float
    final_return_pct: float


@dataclass
class DataDrivenTarget:
    stop_percent: float
    target_percent: float
    win_rate: float
    expected_return: float
    samples: int
    source: str  # 'symbol' or 'bucket'


@dataclass
class CycleReport:
    """Aggregation for one scan cycle, handed to reporting collaborators"""
    started_at: datetime
    symbols_analyzed: int = 0
    candidates: int = 0
    breakouts: int = 0
    accepted: List[TradingSignal] = field(default_factory=list)
    rejections: Dict[str, str] = field(default_factory=dict)
    failed_symbols: List[tuple] = field(default_factory=list)
    analysis_times: List[float] = field(default_factory=list)
    finished_at: Optional[datetime] = None

    @property
    def strong_signals(self) -> int:
        return sum(1 for s in self.accepted if s.confidence >= 90)
