"""
Breakout and confluence signal scanner with multithreading support
"""
import argparse
import json
import logging
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd
import yfinance as yf
from celery import chain
from tqdm import tqdm

from breakout_scorer import breakout_to_signal, score_breakout
from config import ScannerConfig
from data_models import (AnalysisMode, CycleReport, Indicator, SignalStatus,
                         TradingSignal)
from indicator_calculator import IndicatorCalculator, clean_history
from message_formatter import format_signal_message, send_telegram
from outcome_model import OutcomeModel
from pattern_detectors import (CompressionDetector, ConsolidationDetector,
                               KeyLevelDetector, PositioningAnalyzer,
                               VolumePatternDetector)
from risk_annotator import RiskAnnotator
from signal_filter import SignalFilter
import tasks
from validation_gate import ValidationGate

logger = logging.getLogger(__name__)

DEFAULT_STOCKS = [
    'AAPL', 'MSFT', 'GOOGL', 'AMZN', 'TSLA', 'META', 'NVDA', 'AMD',
    'JPM', 'BAC', 'XOM', 'CVX', 'KO', 'PEP', 'DIS', 'NFLX',
    'ENI.MI', 'ISP.MI', 'UCG.MI', 'AIR.PA', 'SAP.DE', 'ASML.AS',
    'HSBA.L', 'NESN.SW', '7203.T',
]


def full_analysis_mode(now: datetime) -> AnalysisMode:
    return AnalysisMode.FULL_ANALYSIS


def keep_order(symbols: List[str]) -> List[str]:
    return symbols


def no_sent_hashes(symbol: str) -> Iterable[str]:
    return ()


class BreakoutSignalDetector:
    """
    Runs the full signal pipeline over a watchlist.

    Per symbol: history -> indicators -> {patterns -> breakout score} and
    {confluence filter} -> best candidate -> risk annotation -> validation.
    Symbols are analyzed concurrently; everything a cycle counts goes into
    the CycleReport it returns.
    """

    def __init__(self,
                 config: ScannerConfig = None,
                 calculator: IndicatorCalculator = None,
                 signal_filter: SignalFilter = None,
                 annotator: RiskAnnotator = None,
                 gate: ValidationGate = None,
                 outcome_model: Optional[OutcomeModel] = None,
                 mode_policy: Callable[[datetime], AnalysisMode] = full_analysis_mode,
                 prioritize: Callable[[List[str]], List[str]] = keep_order,
                 sent_hashes: Callable[[str], Iterable[str]] = no_sent_hashes,
                 on_indicator: Optional[Callable[[Indicator], None]] = None,
                 log_filename: Optional[str] = "signals.log"):
        """
        Args:
            config: Scanner settings (lookback, worker count, minimum history)
            outcome_model: Past outcomes for the data-driven risk branch
            mode_policy: Maps the cycle start time to the session mode
            prioritize: Reorders (or filters) the watchlist before a cycle
            sent_hashes: Returns hashes of signals already sent for a symbol
            on_indicator: Receives every computed indicator snapshot (persistence sink)
            log_filename: File to write logs (None leaves logging untouched)
        """
        self.config = config or ScannerConfig()
        self.calculator = calculator or IndicatorCalculator()
        self.signal_filter = signal_filter or SignalFilter()
        self.annotator = annotator or RiskAnnotator(outcome_model=outcome_model)
        self.gate = gate or ValidationGate()
        self.mode_policy = mode_policy
        self.prioritize = prioritize
        self.sent_hashes = sent_hashes
        self.on_indicator = on_indicator
        self.max_workers = self.config.max_workers or min(32, (os.cpu_count() or 1) + 4)
        self.lock = threading.Lock()

        self.consolidation = ConsolidationDetector()
        self.compression = CompressionDetector()
        self.volume = VolumePatternDetector()
        self.key_levels = KeyLevelDetector()
        self.positioning = PositioningAnalyzer()

        if log_filename:
            logging.basicConfig(
                filename=log_filename,
                filemode='a',
                format='%(asctime)s - %(levelname)s - %(message)s',
                level=logging.INFO
            )

    def load_stock_list(self, file_path: str) -> List[str]:
        """
        Load stock symbols from a file

        Supports:
        - CSV files with 'symbol' column
        - TXT files with one symbol per line
        - JSON files with list of symbols
        """
        if not os.path.exists(file_path):
            logger.warning(f"File {file_path} not found. Using default stock list.")
            return list(DEFAULT_STOCKS)

        try:
            file_ext = os.path.splitext(file_path)[1].lower()

            if file_ext == '.csv':
                df = pd.read_csv(file_path)
                column = 'symbol' if 'symbol' in df.columns else 'Symbol' if 'Symbol' in df.columns else df.columns[0]
                return df[column].dropna().astype(str).str.strip().str.upper().tolist()

            if file_ext == '.txt':
                with open(file_path, 'r') as f:
                    return [line.strip().upper() for line in f if line.strip() and not line.startswith('#')]

            if file_ext == '.json':
                with open(file_path, 'r') as f:
                    data = json.load(f)
                if isinstance(data, dict):
                    data = data.get('symbols', [])
                return [str(s).upper() for s in data]

            logger.warning(f"Unsupported file format: {file_ext}. Using default stock list.")
            return list(DEFAULT_STOCKS)

        except Exception as e:
            logger.error(f"Error loading stock list from {file_path}: {e}")
            return list(DEFAULT_STOCKS)

    def fetch_data(self, symbol: str, report: Optional[CycleReport] = None) -> pd.DataFrame:
        """Fetch daily history; a failure is recorded and yields an empty frame"""
        try:
            data = yf.Ticker(symbol).history(period=self.config.lookback_period)
            return clean_history(data)
        except Exception as e:
            if report is not None:
                with self.lock:
                    report.failed_symbols.append((symbol, str(e)))
            logger.error(f"Error fetching data for {symbol}: {e}")
            return clean_history(None)

    def analyze_symbol(self, symbol: str, mode: AnalysisMode = AnalysisMode.FULL_ANALYSIS,
                       report: Optional[CycleReport] = None) -> Optional[TradingSignal]:
        """Run the pipeline for one symbol; returns the accepted signal or None"""
        report = report if report is not None else CycleReport(started_at=datetime.now(timezone.utc))
        data = self.fetch_data(symbol, report)

        if len(data) < self.config.min_history_bars:
            logger.info(f"Skipping {symbol}: {len(data)} bars of history")
            return None

        indicator = self.calculator.compute(symbol, data)
        if self.on_indicator is not None:
            self.on_indicator(indicator)
        already_sent = set(self.sent_hashes(symbol))

        candidates = []
        breakout = self.detect_breakout(symbol, data)
        if breakout is not None:
            breakout_signal = breakout_to_signal(breakout, indicator)
            if breakout_signal.signal_hash not in already_sent:
                candidates.append(breakout_signal)

        confluence_signal = self.signal_filter.evaluate(indicator, already_sent)
        if confluence_signal is not None:
            candidates.append(confluence_signal)

        with self.lock:
            report.symbols_analyzed += 1
            report.breakouts += breakout is not None
            report.candidates += len(candidates)

        if not candidates:
            return None

        signal = max(candidates, key=lambda s: s.confidence)
        self.annotator.annotate(signal)
        result = self.gate.validate(signal, mode)

        if not result.accepted:
            signal.status = SignalStatus.REJECTED
            with self.lock:
                report.rejections[symbol] = result.reason
            return None

        signal.status = SignalStatus.ACCEPTED
        with self.lock:
            report.accepted.append(signal)
        return signal

    def detect_breakout(self, symbol: str, data: pd.DataFrame):
        consolidation = self.consolidation.detect(data)
        compression = self.compression.detect(data)
        volume = self.volume.detect(data)
        key_levels = self.key_levels.detect(data)
        positioning = self.positioning.analyze(data.iloc[-1].to_dict(), key_levels)
        return score_breakout(symbol, consolidation, compression, volume, key_levels, positioning)

    def analyze_symbol_wrapper(self, symbol: str, mode: AnalysisMode, report: CycleReport):
        """Wrapper for multithreaded analysis"""
        start_time = time.time()
        signal = self.analyze_symbol(symbol, mode, report)
        analysis_time = time.time() - start_time

        with self.lock:
            report.analysis_times.append(analysis_time)

        return symbol, signal, analysis_time

    def scan_watchlist(self, stock_file: str = None, custom_symbols: Sequence[str] = None,
                       show_progress: bool = True) -> CycleReport:
        """Multithreaded scan of the watchlist; returns the cycle report"""
        if custom_symbols:
            symbols = list(custom_symbols)
        elif stock_file:
            symbols = self.load_stock_list(stock_file)
        else:
            symbols = list(DEFAULT_STOCKS)

        report = CycleReport(started_at=datetime.now(timezone.utc))
        mode = self.mode_policy(report.started_at)
        symbols = self.prioritize(symbols)

        logger.info(f"Starting {mode.value} scan of {len(symbols)} symbols using {self.max_workers} workers.")

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {executor.submit(self.analyze_symbol_wrapper, symbol, mode, report): symbol
                       for symbol in symbols}
            completed = as_completed(futures)
            if show_progress:
                completed = tqdm(completed, total=len(futures), desc="Analyzing symbols")

            for future in completed:
                symbol = futures[future]
                try:
                    _, _, analysis_time = future.result()
                    logger.info(f"Processed {symbol} in {analysis_time:.2f} seconds.")
                except Exception as e:
                    with self.lock:
                        report.failed_symbols.append((symbol, str(e)))
                    logger.error(f"Error processing {symbol}: {e}")

        report.accepted.sort(key=lambda s: s.confidence, reverse=True)
        report.finished_at = datetime.now(timezone.utc)

        total_time = (report.finished_at - report.started_at).total_seconds()
        avg_time = np.mean(report.analysis_times) if report.analysis_times else 0
        logger.info(f"Scan completed in {total_time:.2f} seconds (avg {avg_time:.2f}s per symbol): "
                    f"{report.candidates} candidates, {len(report.accepted)} accepted, "
                    f"{len(report.rejections)} rejected")

        if report.failed_symbols:
            logger.warning(f"Failed to analyze {len(report.failed_symbols)} symbols: "
                           f"{[s for s, _ in report.failed_symbols]}")

        return report


def dispatch_signal(signal: TradingSignal, mode: AnalysisMode, persist: bool = False, notify: bool = False) -> bool:
    """
    Store and/or deliver an accepted signal; returns whether it was delivered.

    A delivered signal is marked sent only after its row is saved, so the
    de-duplication lookup sees it on the next cycle.
    """
    delivered = notify and send_telegram(format_signal_message(signal, mode))
    if not persist:
        return delivered

    save = tasks.save_trading_signal.si(signal.to_record())
    if delivered:
        chain(save, tasks.mark_signal_sent.si(signal.id)).delay()
    else:
        save.delay()
    return delivered


def main():
    parser = argparse.ArgumentParser(description='Scan a watchlist for breakout and confluence signals')
    parser.add_argument('--file', type=str, default=None,
                        help='Watchlist file (.csv, .txt or .json)')
    parser.add_argument('--symbols', nargs='*', default=None,
                        help='Symbols to scan instead of a watchlist file')
    parser.add_argument('--mode', choices=[m.name for m in AnalysisMode], default='FULL_ANALYSIS',
                        help='Session mode deciding the confidence threshold')
    parser.add_argument('--persist', action='store_true',
                        help='Queue accepted signals for storage and use stored hashes for de-duplication')
    parser.add_argument('--notify', action='store_true',
                        help='Send accepted signals to Telegram')
    parser.add_argument('--track-outcomes', action='store_true',
                        help='Queue outcome tracking for sent signals after the scan')
    args = parser.parse_args()

    mode = AnalysisMode[args.mode]
    config = ScannerConfig()

    outcome_model = None
    on_indicator = None
    sent_hashes = no_sent_hashes
    if args.persist:
        outcome_model = OutcomeModel(tasks.get_signal_outcomes.apply().get())
        sent_hashes = lambda symbol: tasks.get_recent_signal_hashes.apply(
            args=[symbol, config.dedup_window_hours]).get()
        on_indicator = lambda indicator: tasks.save_indicator.delay(indicator.to_record())

    detector = BreakoutSignalDetector(config=config, outcome_model=outcome_model,
                                      mode_policy=lambda now: mode, sent_hashes=sent_hashes,
                                      on_indicator=on_indicator)
    report = detector.scan_watchlist(stock_file=args.file, custom_symbols=args.symbols)

    for signal in report.accepted:
        print(f"{signal.signal_type.value:8} {signal.symbol:10} {signal.confidence:5.1f}%  {signal.reason}")
        dispatch_signal(signal, mode, persist=args.persist, notify=args.notify)

    print(f"\n{report.symbols_analyzed} analyzed, {len(report.accepted)} accepted "
          f"({report.strong_signals} strong), {len(report.rejections)} rejected, "
          f"{len(report.failed_symbols)} failed")

    if args.track_outcomes:
        tasks.track_signal_outcomes.delay()


if __name__ == '__main__':
    main()
