"""
Bybit v5 REST client (linear USDT perpetuals) over requests.

Auth: X-BAPI-SIGN = hex HMAC-SHA256(secret, timestamp + api_key + recv_window + payload),
payload = query string for GET, exact JSON body for POST.
"""

from __future__ import annotations
import hashlib
import hmac
import json
import logging
import threading
import time
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlencode

import pandas as pd
import requests

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
from signal_trader.utils.exchange_filters import format_qty, parse_bybit_instrument
from signal_trader.utils.timeframes import bybit_interval

logger = logging.getLogger("signal_trader.execution.bybit")

MAINNET_URL = "https://api.bybit.com"
TESTNET_URL = "https://api-testnet.bybit.com"
CATEGORY = "linear"

BYBIT_ERROR_CODES: Dict[int, RejectCode] = {
    10001: RejectCode.INVALID_PARAMETER,
    10003: RejectCode.AUTH_FAILED,
    10004: RejectCode.AUTH_FAILED,
    10010: RejectCode.AUTH_FAILED,
    10005: RejectCode.PERMISSION_DENIED,
    10006: RejectCode.RATE_LIMITED,
    10018: RejectCode.RATE_LIMITED,
    110007: RejectCode.INSUFFICIENT_BALANCE,
    110012: RejectCode.INSUFFICIENT_BALANCE,
    110017: RejectCode.POSITION_CONFLICT,
    110025: RejectCode.POSITION_CONFLICT,
    110043: RejectCode.LEVERAGE_NOT_MODIFIED,
    110072: RejectCode.DUPLICATE_ORDER,
    110094: RejectCode.ORDER_VALUE_TOO_LOW,
    170130: RejectCode.INSUFFICIENT_BALANCE,
    170131: RejectCode.INSUFFICIENT_BALANCE,
    170140: RejectCode.ORDER_VALUE_TOO_LOW,
}


def map_bybit_error(ret_code: int, ret_msg: str = "") -> RejectCode:
    """Stable internal code for a Bybit retCode / retMsg."""
    code = BYBIT_ERROR_CODES.get(int(ret_code))
    if code is not None:
        return code
    msg = (ret_msg or "").lower()
    if "reduce-only" in msg or "reduce only" in msg or "position idx" in msg:
        return RejectCode.POSITION_CONFLICT
    if "insufficient" in msg:
        return RejectCode.INSUFFICIENT_BALANCE
    return RejectCode.UNKNOWN


class BybitClient(ExchangeClient):
    """Bybit v5 client (testnet and live)."""

    name = "bybit"

    def __init__(
        self,
        api_key: str = "",
        api_secret: str = "",
        testnet: bool = True,
        recv_window_ms: int = 5000,
        timeout_s: float = 10.0,
        instrument_cache_ttl_s: float = 300.0,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key
        self._secret = api_secret
        self.base_url = TESTNET_URL if testnet else MAINNET_URL
        self.recv_window = str(recv_window_ms)
        self.timeout_s = timeout_s
        self.instrument_cache_ttl_s = instrument_cache_ttl_s
        self._sess = session or requests.Session()
        self._sess.headers.update({"Content-Type": "application/json"})
        self._instruments: Dict[str, Tuple[float, InstrumentRules]] = {}
        self._cache_lock = threading.Lock()
        logger.info("Bybit: using %s", "TESTNET" if testnet else "LIVE")

    def sign(self, timestamp: str, payload: str) -> str:
        prehash = f"{timestamp}{self.api_key}{self.recv_window}{payload}"
        return hmac.new(self._secret.encode("utf-8"), prehash.encode("utf-8"), hashlib.sha256).hexdigest()

    def auth_headers(self, payload: str, timestamp: Optional[str] = None) -> Dict[str, str]:
        if not self.api_key or not self._secret:
            raise InfrastructureError("Bybit API credentials are not configured (BYBIT_API_KEY / BYBIT_API_SECRET)")
        timestamp = timestamp or str(int(time.time() * 1000))
        return {
            "X-BAPI-API-KEY": self.api_key,
            "X-BAPI-SIGN": self.sign(timestamp, payload),
            "X-BAPI-SIGN-TYPE": "2",
            "X-BAPI-TIMESTAMP": timestamp,
            "X-BAPI-RECV-WINDOW": self.recv_window,
        }

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        body: Optional[Dict[str, Any]] = None,
        auth: bool = False,
    ) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        query = urlencode(params or {})
        data = None
        if method == "GET":
            if query:
                url = f"{url}?{query}"
            payload = query
        else:
            data = json.dumps(body or {}, separators=(",", ":"))
            payload = data
        headers = self.auth_headers(payload) if auth else {}
        try:
            resp = self._sess.request(method, url, data=data, headers=headers, timeout=self.timeout_s)
        except requests.RequestException as e:
            raise ExecutionError(f"Bybit {method} {path}: {e}") from e

        if resp.status_code in (429, 418):
            raise ExchangeRejection(str(resp.status_code), resp.text[:200], RejectCode.RATE_LIMITED)
        if resp.status_code in (401, 403):
            raise ExchangeRejection(str(resp.status_code), resp.text[:200], RejectCode.AUTH_FAILED)
        if resp.status_code >= 400:
            raise ExchangeRejection(str(resp.status_code), resp.text[:200], RejectCode.UNKNOWN)
        try:
            out = resp.json()
        except ValueError as e:
            raise ExecutionError(f"Bybit {path}: invalid JSON response") from e
        ret_code = int(out.get("retCode", -1))
        if ret_code != 0:
            ret_msg = str(out.get("retMsg", ""))
            raise ExchangeRejection(str(ret_code), ret_msg, map_bybit_error(ret_code, ret_msg))
        return out.get("result") or {}

    @retry_on_rate_limit(max_retries=3, base_delay=1.0)
    def _fetch_klines(self, symbol: str, timeframe: str, limit: int) -> list:
        result = self._request(
            "GET",
            "/v5/market/kline",
            params={
                "category": CATEGORY,
                "symbol": symbol,
                "interval": bybit_interval(timeframe),
                "limit": min(int(limit), 1000),
            },
        )
        return result.get("list") or []

    def get_klines(self, symbol: str, timeframe: str, limit: int = 300) -> pd.DataFrame:
        try:
            rows = self._fetch_klines(symbol, timeframe, limit)
        except ExecutionError as e:
            raise DataError(f"{symbol} {timeframe}: kline fetch failed: {e}") from e
        if not rows:
            return pd.DataFrame(columns=KLINE_COLUMNS)
        # Newest first -> ascending
        df = pd.DataFrame(
            list(reversed(rows)),
            columns=["start", "open", "high", "low", "close", "volume", "turnover"],
        )
        df[["open", "high", "low", "close", "volume"]] = df[["open", "high", "low", "close", "volume"]].astype(float)
        df["time"] = pd.to_datetime(df["start"].astype("int64"), unit="ms", utc=True)
        return df[KLINE_COLUMNS].reset_index(drop=True)

    @retry_on_rate_limit(max_retries=2)
    def get_instrument_rules(self, symbol: str) -> InstrumentRules:
        now = time.monotonic()
        with self._cache_lock:
            cached = self._instruments.get(symbol)
            if cached and now - cached[0] < self.instrument_cache_ttl_s:
                return cached[1]
        result = self._request(
            "GET", "/v5/market/instruments-info", params={"category": CATEGORY, "symbol": symbol}
        )
        items = result.get("list") or []
        if not items:
            raise ExchangeRejection("10001", f"instrument {symbol} not found", RejectCode.INVALID_PARAMETER)
        rules = parse_bybit_instrument(items[0])
        with self._cache_lock:
            self._instruments[symbol] = (now, rules)
        return rules

    @retry_on_rate_limit(max_retries=2)
    def get_last_price(self, symbol: str) -> float:
        result = self._request("GET", "/v5/market/tickers", params={"category": CATEGORY, "symbol": symbol})
        items = result.get("list") or []
        if not items:
            raise ExchangeRejection("10001", f"no ticker for {symbol}", RejectCode.INVALID_PARAMETER)
        return float(items[0]["lastPrice"])

    def set_leverage(self, symbol: str, leverage: float) -> None:
        value = f"{leverage:g}"
        try:
            self._request(
                "POST",
                "/v5/position/set-leverage",
                body={"category": CATEGORY, "symbol": symbol, "buyLeverage": value, "sellLeverage": value},
                auth=True,
            )
            logger.info("Leverage set to %sx for %s", value, symbol)
        except ExchangeRejection as e:
            if e.code is RejectCode.LEVERAGE_NOT_MODIFIED:
                logger.debug("Leverage already %sx for %s", value, symbol)
                return
            raise

    @retry_on_rate_limit(max_retries=2)
    def place_order(self, request: OrderRequest) -> OrderAck:
        body: Dict[str, Any] = {
            "category": CATEGORY,
            "symbol": request.symbol,
            "side": request.side.value,
            "orderType": request.order_type.value,
            "qty": format_qty(request.quantity),
            "positionIdx": 0,
            "reduceOnly": request.reduce_only,
        }
        if request.order_type is OrderType.LIMIT and request.price is not None:
            body["price"] = str(request.price)
        if request.time_in_force:
            body["timeInForce"] = request.time_in_force
        if request.client_order_id:
            body["orderLinkId"] = request.client_order_id
        result = self._request("POST", "/v5/order/create", body=body, auth=True)
        return OrderAck(
            order_id=str(result.get("orderId", "")),
            quantity=request.quantity,
            client_order_id=result.get("orderLinkId") or request.client_order_id,
        )

    @retry_on_rate_limit(max_retries=2)
    def set_trading_stop(
        self,
        symbol: str,
        side: OrderSide,
        stop_loss: Optional[float],
        take_profit: Optional[float],
    ) -> None:
        body: Dict[str, Any] = {
            "category": CATEGORY,
            "symbol": symbol,
            "tpslMode": "Full",
            "positionIdx": 0,
        }
        if stop_loss is not None:
            body["stopLoss"] = str(stop_loss)
        if take_profit is not None:
            body["takeProfit"] = str(take_profit)
        self._request("POST", "/v5/position/trading-stop", body=body, auth=True)

    @retry_on_rate_limit(max_retries=2)
    def get_open_position(self, symbol: str) -> Optional[Position]:
        result = self._request(
            "GET", "/v5/position/list", params={"category": CATEGORY, "symbol": symbol}, auth=True
        )
        for p in result.get("list") or []:
            size = float(p.get("size") or 0)
            if size > 0 and p.get("side") in ("Buy", "Sell"):
                return Position(
                    symbol=symbol,
                    side=OrderSide(p["side"]),
                    quantity=size,
                    entry_price=float(p.get("avgPrice") or 0),
                    unrealized_pnl=float(p.get("unrealisedPnl") or 0),
                    leverage=float(p.get("leverage") or 1),
                )
        return None

    def close(self) -> None:
        self._sess.close()
