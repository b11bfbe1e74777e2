"""Scanner: symbol x timeframe scan orchestration."""

from signal_trader.scanner.orchestrator import ScanOrchestrator, ScanReport, validate_candles, drop_forming

__all__ = ["ScanOrchestrator", "ScanReport", "validate_candles", "drop_forming"]
