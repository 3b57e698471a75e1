import pytest
import requests

import message_formatter
from conftest import make_signal
from data_models import AnalysisMode, SignalType
from message_formatter import (currency_symbol, format_signal_message,
                               format_volume, send_telegram)
from risk_annotator import RiskAnnotator


@pytest.mark.parametrize("symbol, expected", [
    ("ENI.MI", "€"),
    ("AIR.PA", "€"),
    ("SAP.DE", "€"),
    ("ASML.AS", "€"),
    ("HSBA.L", "£"),
    ("NESN.SW", "CHF "),
    ("7203.T", "¥"),
    ("AAPL", "$"),
    ("BRK-B", "$"),
])
def test_currency_by_suffix(symbol, expected):
    assert currency_symbol(symbol) == expected


def test_format_volume():
    assert format_volume(2_500_000) == "2.5M"
    assert format_volume(12_300) == "12.3K"
    assert format_volume(950) == "950"


def test_message_contains_levels_in_local_currency():
    signal = RiskAnnotator().annotate(make_signal(symbol="ENI.MI", confidence=82.0))

    message = format_signal_message(signal, AnalysisMode.FULL_ANALYSIS)

    assert "BUY ENI.MI" in message
    assert "€100.00" in message
    assert f"€{signal.stop_loss:.2f}" in message
    assert "R/R:</b> 1:2.5" in message
    assert "82%" in message


def test_message_without_risk_levels():
    signal = make_signal(symbol="AAPL", signal_type=SignalType.WARNING, rsi=25.0)

    message = format_signal_message(signal, AnalysisMode.OFF_HOURS_MONITOR)

    assert "WARNING AAPL" in message
    assert "Stop Loss" not in message
    assert "$100.00" in message


class FakeResponse:
    def __init__(self, ok=True):
        self.ok = ok
        self.status_code = 200 if ok else 400
        self.text = "" if ok else "Bad Request"


def test_send_telegram_without_credentials(monkeypatch):
    monkeypatch.delenv("TELEGRAM_BOT_TOKEN", raising=False)
    monkeypatch.delenv("TELEGRAM_CHAT_ID", raising=False)
    monkeypatch.setattr(message_formatter.requests, "post",
                        lambda *a, **kw: pytest.fail("should not post"))

    assert send_telegram("hello") is False


def test_send_telegram_posts_html(monkeypatch):
    calls = []

    def fake_post(url, data=None, timeout=None):
        calls.append((url, data))
        return FakeResponse()

    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "token")
    monkeypatch.setenv("TELEGRAM_CHAT_ID", "42")
    monkeypatch.setattr(message_formatter.requests, "post", fake_post)

    assert send_telegram("hello") is True
    url, data = calls[0]
    assert url == "https://api.telegram.org/bottoken/sendMessage"
    assert data == {"chat_id": "42", "text": "hello", "parse_mode": "HTML"}


def test_send_telegram_failures_return_false(monkeypatch):
    def raising_post(*args, **kwargs):
        raise requests.ConnectionError("offline")

    monkeypatch.setattr(message_formatter.requests, "post", lambda *a, **kw: FakeResponse(ok=False))
    assert send_telegram("hello", bot_token="t", chat_id="c") is False

    monkeypatch.setattr(message_formatter.requests, "post", raising_post)
    assert send_telegram("hello", bot_token="t", chat_id="c") is False
