"""
Celery tasks for signal persistence and the historical outcome store
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Any
from decimal import Decimal

from celery import Celery
import psycopg2
from psycopg2.extras import RealDictCursor
from psycopg2.extensions import ISOLATION_LEVEL_AUTOCOMMIT
import os
import yfinance as yf

from data_models import SignalOutcome
from indicator_calculator import IndicatorCalculator, clean_history
from outcome_model import measure_outcome
from risk_annotator import classify_volatility

logger = logging.getLogger(__name__)

# Celery app configuration
app = Celery('signal_scanner')
app.conf.update(
    broker_url=os.getenv('CELERY_BROKER_URL', 'redis://localhost:6379/0'),
    result_backend=os.getenv('CELERY_RESULT_BACKEND', 'redis://localhost:6379/0'),
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
)

# Make sure the app is available for task discovery
celery_app = app

# Database connection configuration
DB_CONFIG = {
    'host': os.getenv('DB_HOST', 'localhost'),
    'database': os.getenv('DB_NAME', 'signal_scanner'),
    'user': os.getenv('DB_USER', 'scanner'),
    'password': os.getenv('DB_PASSWORD', ''),
    'port': os.getenv('DB_PORT', '5432')
}

INDICATOR_COLUMNS = [
    'symbol', 'price', 'rsi', 'macd_histogram', 'volume', 'trend_strength',
    'volume_strength', 'support_level', 'resistance_level', 'market_condition',
    'atr', 'created_at',
]

SIGNAL_COLUMNS = [
    'id', 'signal_hash', 'symbol', 'signal_type', 'confidence', 'price', 'rsi',
    'macd_histogram', 'volume', 'reason', 'stop_loss', 'take_profit',
    'stop_loss_percent', 'take_profit_percent', 'risk_reward_ratio',
    'suggested_shares', 'position_value', 'max_risk_amount', 'potential_gain_amount',
    'entry_strategy', 'exit_strategy', 'take_profit_strategy',
    'predicted_success_probability', 'risk_method', 'support_level', 'resistance_level',
    'trend_strength', 'volume_strength', 'market_condition', 'atr', 'status', 'created_at',
]

OUTCOME_COLUMNS = [
    'symbol', 'volatility_bucket', 'max_favorable_pct', 'max_adverse_pct', 'final_return_pct',
]


def get_db_connection():
    """Get database connection with error handling"""
    try:
        conn = psycopg2.connect(**DB_CONFIG)
        conn.set_isolation_level(ISOLATION_LEVEL_AUTOCOMMIT)
        return conn
    except Exception as e:
        logger.error(f"Database connection error: {e}")
        raise


def _plain(row: Dict[str, Any]) -> Dict[str, Any]:
    """Make a RealDictCursor row JSON serializable for task results"""
    result = {}
    for key, value in dict(row).items():
        if isinstance(value, Decimal):
            value = float(value)
        elif isinstance(value, datetime):
            value = value.isoformat()
        result[key] = value
    return result


def _insert(cur, table: str, columns: List[str], data: Dict[str, Any], conflict: str = "") -> Optional[Dict]:
    values = [data.get(column) for column in columns]
    placeholders = ', '.join(['%s'] * len(columns))
    cur.execute(
        f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders}) {conflict} RETURNING id",
        values,
    )
    return cur.fetchone()


def measure_signal_outcome(row: Dict[str, Any], horizon_days: int) -> Optional[SignalOutcome]:
    """
    Excursions of a sent signal over the ``horizon_days`` after it was sent

    Returns None when the history cannot be fetched or no bar followed the signal.
    """
    symbol = row['symbol']
    sent_at = row['sent_at']
    price = float(row['price'] or 0)
    if price <= 0:
        return None

    try:
        history = yf.Ticker(symbol).history(
            start=(sent_at - timedelta(days=45)).strftime('%Y-%m-%d'),
            end=(sent_at + timedelta(days=horizon_days + 1)).strftime('%Y-%m-%d'),
        )
    except Exception as e:
        logger.error(f"Error fetching outcome history for {symbol}: {e}")
        return None

    history = clean_history(history)
    if history.empty:
        return None

    dates = history.index.date
    signal_day = sent_at.date()
    before = history[dates <= signal_day]
    after = history[(dates > signal_day) & (dates <= signal_day + timedelta(days=horizon_days))]

    atr = float(row['atr']) if row.get('atr') else IndicatorCalculator().calculate_atr(before)
    bucket = classify_volatility(atr, price) if atr > 0 else 'NORMAL'

    signal_type = row['signal_type']
    long = signal_type == 'Buy' or (signal_type == 'Warning' and float(row['rsi']) < 50)
    return measure_outcome(symbol, after, price, long, bucket)


# PUSH TASKS (Writing to Database)

@app.task(bind=True, retry_backoff=True, max_retries=3)
def save_indicator(self, indicator_data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Save an indicator snapshot

    Expected format is ``Indicator.to_record()``:
    {
        'symbol': 'ENI.MI',
        'price': 14.62,
        'rsi': 28.4,
        'macd_histogram': -0.031,
        'volume': 18250000.0,
        'trend_strength': 6.1,
        'volume_strength': 7.4,
        'support_level': 14.21,
        'resistance_level': 15.08,
        'market_condition': 'Oversold Zone',
        'atr': 0.29,
        'created_at': '2024-05-02T14:30:00+00:00'
    }
    """
    try:
        with get_db_connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                row = _insert(cur, 'indicators', INDICATOR_COLUMNS, indicator_data)
                logger.info(f"Saved indicator for {indicator_data['symbol']}")
                return {'indicator_id': row['id'], 'symbol': indicator_data['symbol']}

    except Exception as e:
        logger.error(f"Error saving indicator for {indicator_data.get('symbol', 'unknown')}: {e}")
        raise self.retry(exc=e, countdown=60)


@app.task(bind=True, retry_backoff=True, max_retries=3)
def save_trading_signal(self, signal_data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Save an annotated trading signal (``TradingSignal.to_record()``)

    Saving the same signal id twice is a no-op.
    """
    try:
        with get_db_connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                row = _insert(cur, 'trading_signals', SIGNAL_COLUMNS, signal_data,
                              conflict="ON CONFLICT (id) DO NOTHING")
                if row is None:
                    return {'action': 'exists', 'signal_id': signal_data['id']}

                logger.info(f"Saved {signal_data['signal_type']} signal for {signal_data['symbol']}")
                return {'action': 'created', 'signal_id': row['id'], 'symbol': signal_data['symbol']}

    except Exception as e:
        logger.error(f"Error saving signal for {signal_data.get('symbol', 'unknown')}: {e}")
        raise self.retry(exc=e, countdown=60)


@app.task(bind=True, retry_backoff=True, max_retries=3)
def mark_signal_sent(self, signal_id: str) -> Dict[str, Any]:
    """
    Flag a signal as delivered by the notifier

    A missing row is retried; the insert may not have landed yet.
    """
    try:
        with get_db_connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute("""
                    UPDATE trading_signals
                    SET sent = TRUE, sent_at = %s
                    WHERE id = %s
                    RETURNING id, symbol
                """, (datetime.now(timezone.utc), signal_id))

                row = cur.fetchone()
                if not row:
                    raise LookupError(f"Signal {signal_id} not found")

                logger.info(f"Marked signal {signal_id} for {row['symbol']} as sent")
                return {'signal_id': row['id'], 'symbol': row['symbol'], 'sent': True}

    except Exception as e:
        logger.error(f"Error marking signal {signal_id} as sent: {e}")
        raise self.retry(exc=e, countdown=60)


@app.task(bind=True, retry_backoff=True, max_retries=3)
def record_signal_outcome(self, outcome_data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Record the realized excursions of a past signal

    Expected format:
    {
        'signal_id': '5f0c...',
        'symbol': 'AAPL',
        'volatility_bucket': 'NORMAL',
        'max_favorable_pct': 6.2,
        'max_adverse_pct': 2.1,
        'final_return_pct': 3.4
    }
    """
    try:
        with get_db_connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                row = _insert(cur, 'signal_outcomes', ['signal_id'] + OUTCOME_COLUMNS, outcome_data)
                logger.info(f"Recorded outcome for {outcome_data['symbol']}")
                return {'outcome_id': row['id'], 'symbol': outcome_data['symbol']}

    except Exception as e:
        logger.error(f"Error recording outcome for {outcome_data.get('symbol', 'unknown')}: {e}")
        raise self.retry(exc=e, countdown=60)


@app.task(bind=True, retry_backoff=True, max_retries=3)
def track_signal_outcomes(self, horizon_days: int = 10, lookback_days: int = 60) -> Dict[str, int]:
    """
    Record the outcome of every sent signal whose tracking horizon has passed

    Signals that already have an outcome are left alone, so the task can run
    on any schedule. Feeds the data-driven branch of the risk annotator.
    """
    now = datetime.now(timezone.utc)
    try:
        with get_db_connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute("""
                    SELECT s.id, s.symbol, s.signal_type, s.price, s.rsi, s.atr, s.sent_at
                    FROM trading_signals s
                    LEFT JOIN signal_outcomes o ON o.signal_id = s.id
                    WHERE s.sent = TRUE
                    AND o.id IS NULL
                    AND s.sent_at <= %s
                    AND s.sent_at >= %s
                    ORDER BY s.sent_at
                """, (now - timedelta(days=horizon_days), now - timedelta(days=lookback_days)))
                pending = cur.fetchall()

                recorded = 0
                for row in pending:
                    outcome = measure_signal_outcome(row, horizon_days)
                    if outcome is None:
                        logger.warning(f"No outcome for signal {row['id']} ({row['symbol']})")
                        continue
                    _insert(cur, 'signal_outcomes', ['signal_id'] + OUTCOME_COLUMNS,
                            dict(outcome.__dict__, signal_id=row['id']))
                    recorded += 1

                logger.info(f"Recorded {recorded} of {len(pending)} pending signal outcomes")
                return {'recorded': recorded, 'skipped': len(pending) - recorded}

    except Exception as e:
        logger.error(f"Error tracking signal outcomes: {e}")
        raise self.retry(exc=e, countdown=60)


# PULL TASKS (Reading from Database)

@app.task(bind=True, retry_backoff=True, max_retries=3)
def get_recent_signal_hashes(self, symbol: str, hours: int = 24) -> List[str]:
    """
    Hashes of signals already sent for a symbol within the de-duplication window
    """
    try:
        with get_db_connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute("""
                    SELECT DISTINCT signal_hash
                    FROM trading_signals
                    WHERE symbol = %s
                    AND sent = TRUE
                    AND created_at >= %s
                """, (symbol, datetime.now(timezone.utc) - timedelta(hours=hours)))

                return [row['signal_hash'] for row in cur.fetchall()]

    except Exception as e:
        logger.error(f"Error getting recent signal hashes for {symbol}: {e}")
        raise self.retry(exc=e, countdown=60)


@app.task(bind=True, retry_backoff=True, max_retries=3)
def get_signal_outcomes(self, symbol: str = None, days: int = 180) -> List[Dict[str, Any]]:
    """
    Past signal outcomes for the outcome model, optionally for one symbol
    """
    try:
        with get_db_connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                query = f"""
                    SELECT {', '.join(OUTCOME_COLUMNS)}
                    FROM signal_outcomes
                    WHERE recorded_at >= %s
                """
                params = [datetime.now(timezone.utc) - timedelta(days=days)]
                if symbol:
                    query += " AND symbol = %s"
                    params.append(symbol)

                cur.execute(query, params)
                return [_plain(row) for row in cur.fetchall()]

    except Exception as e:
        logger.error(f"Error getting signal outcomes: {e}")
        raise self.retry(exc=e, countdown=60)


# UTILITY TASKS

@app.task(bind=True, retry_backoff=True, max_retries=3)
def cleanup_old_signals(self, days_to_keep: int = 90) -> Dict[str, int]:
    """
    Clean up indicators and unsent signals older than specified days

    Sent signals are kept since outcomes refer to them.
    """
    cutoff = datetime.now(timezone.utc) - timedelta(days=days_to_keep)
    try:
        with get_db_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("DELETE FROM indicators WHERE created_at < %s", (cutoff,))
                indicators_deleted = cur.rowcount

                cur.execute("""
                    DELETE FROM trading_signals
                    WHERE created_at < %s
                    AND sent = FALSE
                """, (cutoff,))
                signals_deleted = cur.rowcount

                logger.info(f"Cleaned up {indicators_deleted} indicators and {signals_deleted} signals")
                return {
                    'indicators_deleted': indicators_deleted,
                    'signals_deleted': signals_deleted
                }

    except Exception as e:
        logger.error(f"Error during cleanup: {e}")
        raise self.retry(exc=e, countdown=60)


@app.task
def get_database_stats() -> Dict[str, Any]:
    """
    Get database statistics
    """
    try:
        with get_db_connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                stats = {}

                cur.execute("SELECT COUNT(*) as count FROM indicators")
                stats['total_indicators'] = cur.fetchone()['count']

                cur.execute("SELECT COUNT(*) as count FROM trading_signals")
                stats['total_signals'] = cur.fetchone()['count']

                cur.execute("SELECT COUNT(*) as count FROM trading_signals WHERE sent = TRUE")
                stats['sent_signals'] = cur.fetchone()['count']

                cur.execute("SELECT COUNT(*) as count FROM signal_outcomes")
                stats['total_outcomes'] = cur.fetchone()['count']

                cur.execute("SELECT MAX(created_at) as latest FROM trading_signals")
                latest = cur.fetchone()['latest']
                stats['latest_signal'] = latest.isoformat() if latest else None

                # Signal type breakdown for the last week
                cur.execute("""
                    SELECT signal_type, COUNT(*) as count
                    FROM trading_signals
                    WHERE created_at >= %s
                    GROUP BY signal_type
                """, (datetime.now(timezone.utc) - timedelta(days=7),))

                stats['recent_signal_types'] = {row['signal_type']: row['count']
                                                for row in cur.fetchall()}

                return stats

    except Exception as e:
        logger.error(f"Error getting database stats: {e}")
        raise


if __name__ == "__main__":
    app.start()
