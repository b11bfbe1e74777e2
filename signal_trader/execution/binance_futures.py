"""
Binance Futures execution with retry and rate-limit handling.
"""

from __future__ import annotations
import logging
import threading
import time
from typing import Any, Dict, Optional, Tuple

import pandas as pd
import requests

from binance.client import Client
from binance.exceptions import BinanceAPIException, BinanceRequestException

from signal_trader.core.errors import (
    DataError,
    ExchangeRejection,
    ExecutionError,
    InfrastructureError,
    RejectCode,
)
from signal_trader.core.types import InstrumentRules, OrderSide, OrderType, Position
from signal_trader.execution.base import (
    KLINE_COLUMNS,
    ExchangeClient,
    OrderAck,
    OrderRequest,
    retry_on_rate_limit,
)
from signal_trader.utils.exchange_filters import format_qty, parse_binance_symbol

logger = logging.getLogger("signal_trader.execution.binance")

BINANCE_ERROR_CODES: Dict[int, RejectCode] = {
    -1003: RejectCode.RATE_LIMITED,
    -1015: RejectCode.RATE_LIMITED,
    -1022: RejectCode.AUTH_FAILED,
    -2014: RejectCode.AUTH_FAILED,
    -2015: RejectCode.AUTH_FAILED,
    -1111: RejectCode.INVALID_PARAMETER,
    -1102: RejectCode.INVALID_PARAMETER,
    -2019: RejectCode.INSUFFICIENT_BALANCE,
    -2022: RejectCode.POSITION_CONFLICT,
    -4061: RejectCode.POSITION_CONFLICT,
    -4164: RejectCode.ORDER_VALUE_TOO_LOW,
    -4028: RejectCode.INVALID_PARAMETER,
    -4116: RejectCode.DUPLICATE_ORDER,
}


def map_binance_error(code: int, status_code: Optional[int] = None) -> RejectCode:
    if status_code in (429, 418):
        return RejectCode.RATE_LIMITED
    return BINANCE_ERROR_CODES.get(int(code), RejectCode.UNKNOWN)


class BinanceFuturesClient(ExchangeClient):
    """Binance USDT-M Futures client (testnet and live)."""

    name = "binance"

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        testnet: bool = True,
        timeout_s: float = 10.0,
        instrument_cache_ttl_s: float = 300.0,
        max_leverage: float = 125.0,
        client: Optional[Client] = None,
    ):
        if client is None and (not api_key or not api_secret):
            raise InfrastructureError("Binance API credentials are not configured (BINANCE_API_KEY / BINANCE_API_SECRET)")
        self._client = client or Client(
            api_key, api_secret, testnet=testnet, requests_params={"timeout": timeout_s}
        )
        logger.info("Binance Futures: using %s", "TESTNET" if testnet else "LIVE")
        self.instrument_cache_ttl_s = instrument_cache_ttl_s
        self.max_leverage = max_leverage
        self._exchange_info: Optional[Tuple[float, dict]] = None
        self._cache_lock = threading.Lock()

    def _call(self, method: str, **kwargs: Any) -> Any:
        """Invoke a python-binance method, translating its errors."""
        try:
            return getattr(self._client, method)(**kwargs)
        except BinanceAPIException as e:
            raise ExchangeRejection(str(e.code), e.message, map_binance_error(e.code, e.status_code)) from e
        except (BinanceRequestException, requests.RequestException) as e:
            raise ExecutionError(f"Binance {method}: {e}") from e

    @retry_on_rate_limit(max_retries=3, base_delay=1.0)
    def _fetch_klines(self, symbol: str, timeframe: str, limit: int) -> list:
        return self._call("futures_klines", symbol=symbol, interval=timeframe, limit=limit)

    def get_klines(self, symbol: str, timeframe: str, limit: int = 300) -> pd.DataFrame:
        try:
            raw = self._fetch_klines(symbol, timeframe, limit)
        except ExecutionError as e:
            raise DataError(f"{symbol} {timeframe}: kline fetch failed: {e}") from e
        if not raw:
            return pd.DataFrame(columns=KLINE_COLUMNS)
        df = pd.DataFrame(raw, columns=[
            "open_time", "open", "high", "low", "close", "volume",
            "close_time", "quote_av", "num_trades", "tb_base_av", "tb_quote_av", "ignore"
        ])
        df[["open", "high", "low", "close", "volume"]] = df[["open", "high", "low", "close", "volume"]].astype(float)
        df["time"] = pd.to_datetime(df["open_time"], unit="ms", utc=True)
        return df[KLINE_COLUMNS]

    @retry_on_rate_limit(max_retries=2)
    def _get_exchange_info(self) -> dict:
        now = time.monotonic()
        with self._cache_lock:
            if self._exchange_info and now - self._exchange_info[0] < self.instrument_cache_ttl_s:
                return self._exchange_info[1]
        info = self._call("futures_exchange_info")
        with self._cache_lock:
            self._exchange_info = (now, info)
        return info

    def get_instrument_rules(self, symbol: str) -> InstrumentRules:
        for s in self._get_exchange_info().get("symbols", []):
            if s.get("symbol") == symbol:
                return parse_binance_symbol(s, max_leverage=self.max_leverage)
        raise ExchangeRejection("-1121", f"Invalid symbol {symbol}", RejectCode.INVALID_PARAMETER)

    @retry_on_rate_limit(max_retries=2)
    def get_last_price(self, symbol: str) -> float:
        return float(self._call("futures_symbol_ticker", symbol=symbol)["price"])

    def set_leverage(self, symbol: str, leverage: float) -> None:
        self._call("futures_change_leverage", symbol=symbol, leverage=int(leverage))
        logger.info("Leverage set to %sx for %s", int(leverage), symbol)

    @retry_on_rate_limit(max_retries=2)
    def place_order(self, request: OrderRequest) -> OrderAck:
        params: Dict[str, Any] = {
            "symbol": request.symbol,
            "side": request.side.value.upper(),
            "type": request.order_type.value.upper(),
            "quantity": format_qty(request.quantity),
        }
        if request.reduce_only:
            params["reduceOnly"] = "true"
        # timeInForce is rejected on MARKET orders
        if request.order_type is OrderType.LIMIT:
            params["price"] = str(request.price)
            params["timeInForce"] = request.time_in_force or "GTC"
        if request.client_order_id:
            params["newClientOrderId"] = request.client_order_id
        res = self._call("futures_create_order", **params)
        avg = float(res.get("avgPrice") or 0)
        return OrderAck(
            order_id=str(res.get("orderId")),
            quantity=request.quantity,
            avg_price=avg if avg > 0 else None,
            client_order_id=res.get("clientOrderId") or request.client_order_id,
        )

    def set_trading_stop(
        self,
        symbol: str,
        side: OrderSide,
        stop_loss: Optional[float],
        take_profit: Optional[float],
    ) -> None:
        """SL and TP as closePosition conditional orders on the opposite side."""
        close_side = side.opposite.value.upper()
        if stop_loss is not None:
            self._call(
                "futures_create_order",
                symbol=symbol, side=close_side, type="STOP_MARKET",
                stopPrice=str(stop_loss), closePosition="true", workingType="MARK_PRICE",
            )
        if take_profit is not None:
            self._call(
                "futures_create_order",
                symbol=symbol, side=close_side, type="TAKE_PROFIT_MARKET",
                stopPrice=str(take_profit), closePosition="true", workingType="MARK_PRICE",
            )

    @retry_on_rate_limit(max_retries=2)
    def get_open_position(self, symbol: str) -> Optional[Position]:
        pos_info = self._call("futures_position_information", symbol=symbol)
        for p in pos_info:
            amt = float(p.get("positionAmt", 0.0))
            if amt != 0:
                side = OrderSide.BUY if amt > 0 else OrderSide.SELL
                return Position(
                    symbol=symbol,
                    side=side,
                    quantity=abs(amt),
                    entry_price=float(p.get("entryPrice", 0)),
                    unrealized_pnl=float(p.get("unRealizedProfit", 0)),
                    leverage=float(p.get("leverage", 1)),
                )
        return None

    def close(self) -> None:
        self._client.close_connection()
