"""
Rendering and Telegram delivery of accepted signals
"""
import logging
import os
from typing import Optional

import requests

from data_models import AnalysisMode, SignalType, TradingSignal

logger = logging.getLogger(__name__)

CURRENCY_BY_SUFFIX = {
    '.MI': '€',
    '.PA': '€',
    '.DE': '€',
    '.AS': '€',
    '.L': '£',
    '.SW': 'CHF ',
    '.T': '¥',
}

SIGNAL_EMOJI = {
    SignalType.BUY: '🟢',
    SignalType.SELL: '🔴',
    SignalType.WARNING: '🟡',
}

MODE_EMOJI = {
    AnalysisMode.FULL_ANALYSIS: '📊',
    AnalysisMode.PRE_MARKET_WATCH: '🌅',
    AnalysisMode.OFF_HOURS_MONITOR: '🌙',
}


def currency_symbol(symbol: str) -> str:
    """Currency prefix for a ticker, from its exchange suffix (US dollars otherwise)"""
    upper = symbol.upper()
    for suffix, currency in CURRENCY_BY_SUFFIX.items():
        if upper.endswith(suffix):
            return currency
    return '$'


def confidence_label(confidence: float) -> str:
    if confidence >= 90:
        return 'Very strong'
    if confidence >= 80:
        return 'Strong'
    if confidence >= 70:
        return 'Good'
    return 'Moderate'


def risk_reward_label(ratio: Optional[float]) -> str:
    if not ratio or ratio <= 0:
        return 'Not available'
    if ratio >= 3:
        return 'Excellent: reward is at least three times the risk'
    if ratio >= 2:
        return 'Good: reward is at least twice the risk'
    if ratio >= 1.5:
        return 'Acceptable'
    return 'Poor: reward barely covers the risk'


def format_volume(volume: float) -> str:
    if volume >= 1_000_000:
        return f"{volume / 1_000_000:.1f}M"
    if volume >= 1_000:
        return f"{volume / 1_000:.1f}K"
    return f"{volume:.0f}"


def format_signal_message(signal: TradingSignal, mode: AnalysisMode = AnalysisMode.FULL_ANALYSIS) -> str:
    """Render an accepted signal as an HTML Telegram message"""
    cur = currency_symbol(signal.symbol)
    data_driven = signal.risk_method == 'data_driven'

    lines = [
        f"{MODE_EMOJI.get(mode, '')} {SIGNAL_EMOJI[signal.signal_type]} "
        f"<b>{signal.signal_type.value.upper()} {signal.symbol}</b>{' 🧠' if data_driven else ''}",
        "",
        f"🎯 <b>Confidence:</b> {signal.confidence:.0f}% ({confidence_label(signal.confidence)})",
    ]
    if signal.market_condition:
        lines.append(f"📊 <b>Market:</b> {signal.market_condition}")
    if data_driven and signal.predicted_success_probability is not None:
        lines.append(f"🧠 <b>Success probability:</b> {signal.predicted_success_probability:.0f}%")

    lines += [
        "",
        "📈 <b>TECHNICALS:</b>",
        f"• RSI: {signal.rsi:.1f}",
        f"• MACD: {signal.macd_histogram:.3f}",
        f"• Volume: {format_volume(signal.volume)} (strength {signal.volume_strength or 0:.1f}/10)",
        f"• Trend: {signal.trend_strength or 0:.1f}/10",
        "",
        f"💰 <b>Entry:</b> {cur}{signal.price:.2f}",
    ]

    if signal.has_risk_levels:
        lines += [
            f"🔻 <b>Stop Loss:</b> {cur}{signal.stop_loss:.2f} ({signal.stop_loss_percent:.1f}%)",
            f"🎯 <b>Take Profit:</b> {cur}{signal.take_profit:.2f} ({signal.take_profit_percent:.1f}%)",
            f"⚖️ <b>R/R:</b> 1:{signal.risk_reward_ratio:.1f} - {risk_reward_label(signal.risk_reward_ratio)}",
        ]
        if signal.suggested_shares:
            lines.append(f"📦 <b>Size:</b> {signal.suggested_shares} shares ({cur}{signal.position_value:,.2f}), "
                         f"risk {cur}{signal.max_risk_amount:,.2f}, potential {cur}{signal.potential_gain_amount:,.2f}")

    if signal.support_level or signal.resistance_level:
        levels = []
        if signal.support_level:
            levels.append(f"support {cur}{signal.support_level:.2f}")
        if signal.resistance_level:
            levels.append(f"resistance {cur}{signal.resistance_level:.2f}")
        lines.append(f"📐 <b>Levels:</b> {', '.join(levels)}")

    if signal.entry_strategy:
        lines += ["", f"🚪 <b>Entry:</b> {signal.entry_strategy}"]
    if signal.exit_strategy:
        lines.append(f"🏁 <b>Exit:</b> {signal.exit_strategy}")
    if signal.take_profit_strategy:
        lines.append(f"🧭 <b>TP strategy:</b> {signal.take_profit_strategy}")

    lines += ["", f"📝 <i>{signal.reason}</i>", f"⏰ {signal.created_at:%Y-%m-%d %H:%M} UTC"]
    return "\n".join(lines)


def send_telegram(text: str, bot_token: str = None, chat_id: str = None, parse_mode: str = "HTML") -> bool:
    """Post a message to Telegram; returns False instead of raising on failure"""
    bot_token = bot_token or os.getenv('TELEGRAM_BOT_TOKEN')
    chat_id = chat_id or os.getenv('TELEGRAM_CHAT_ID')
    if not bot_token or not chat_id:
        logger.warning("Telegram credentials missing; message not sent")
        return False

    url = f"https://api.telegram.org/bot{bot_token}/sendMessage"
    try:
        resp = requests.post(url, data={"chat_id": chat_id, "text": text, "parse_mode": parse_mode}, timeout=10)
        if not resp.ok:
            logger.error(f"Telegram send failed: {resp.status_code} {resp.text}")
            return False
        return True
    except requests.RequestException as e:
        logger.error(f"Telegram send error: {e}")
        return False
