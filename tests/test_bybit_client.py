"""Bybit client: request signing, response handling and error mapping without network."""

import hashlib
import hmac
import json

import pytest

from signal_trader.core.errors import DataError, ExchangeRejection, InfrastructureError, RejectCode
from signal_trader.core.types import OrderSide, OrderType
from signal_trader.execution.base import OrderRequest
from signal_trader.execution.bybit import BybitClient, map_bybit_error

KEY = "test-key"
SECRET = "test-secret"


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self._payload = payload
        self.status_code = status_code
        self.text = json.dumps(payload)

    def json(self):
        return self._payload


class FakeSession:
    def __init__(self, *responses):
        self.headers = {}
        self.responses = list(responses)
        self.calls = []

    def request(self, method, url, data=None, headers=None, timeout=None):
        self.calls.append({"method": method, "url": url, "data": data, "headers": headers or {}, "timeout": timeout})
        return self.responses.pop(0)

    def close(self):
        pass


def ok(result):
    return FakeResponse({"retCode": 0, "retMsg": "OK", "result": result})


def client(*responses, **kwargs):
    return BybitClient(KEY, SECRET, testnet=True, session=FakeSession(*responses), **kwargs)


def expected_sign(timestamp, payload, recv_window="5000"):
    prehash = f"{timestamp}{KEY}{recv_window}{payload}"
    return hmac.new(SECRET.encode(), prehash.encode(), hashlib.sha256).hexdigest()


def test_sign_matches_documented_scheme():
    c = client()
    payload = '{"category":"linear","symbol":"BTCUSDT"}'
    assert c.sign("1700000000000", payload) == expected_sign("1700000000000", payload)


def test_auth_headers():
    c = client()
    headers = c.auth_headers("category=linear", timestamp="1700000000000")
    assert headers["X-BAPI-API-KEY"] == KEY
    assert headers["X-BAPI-SIGN-TYPE"] == "2"
    assert headers["X-BAPI-RECV-WINDOW"] == "5000"
    assert headers["X-BAPI-TIMESTAMP"] == "1700000000000"
    assert headers["X-BAPI-SIGN"] == expected_sign("1700000000000", "category=linear")


def test_missing_credentials_is_infrastructure_error():
    c = BybitClient("", "", session=FakeSession())
    with pytest.raises(InfrastructureError):
        c.auth_headers("x")


def test_post_signature_covers_exact_body():
    c = client(ok({"orderId": "abc123", "orderLinkId": "sig-1-1"}))
    ack = c.place_order(OrderRequest(
        symbol="BTCUSDT", side=OrderSide.BUY, quantity=0.01, order_type=OrderType.MARKET,
        time_in_force="IOC", client_order_id="sig-1-1",
    ))
    assert ack.order_id == "abc123"
    call = c._sess.calls[0]
    body = json.loads(call["data"])
    assert body["positionIdx"] == 0
    assert body["qty"] == "0.01"
    assert body["side"] == "Buy"
    assert body["orderLinkId"] == "sig-1-1"
    ts = call["headers"]["X-BAPI-TIMESTAMP"]
    assert call["headers"]["X-BAPI-SIGN"] == expected_sign(ts, call["data"])


def test_get_signature_covers_query_string():
    c = client(ok({"list": []}))
    c.get_open_position("BTCUSDT")
    call = c._sess.calls[0]
    query = call["url"].split("?", 1)[1]
    assert query == "category=linear&symbol=BTCUSDT"
    ts = call["headers"]["X-BAPI-TIMESTAMP"]
    assert call["headers"]["X-BAPI-SIGN"] == expected_sign(ts, query)


def test_nonzero_retcode_raises_mapped_rejection():
    c = client(FakeResponse({"retCode": 110017, "retMsg": "current position is zero, cannot fix reduce-only order qty"}))
    with pytest.raises(ExchangeRejection) as exc:
        c.place_order(OrderRequest(symbol="BTCUSDT", side=OrderSide.SELL, quantity=0.01))
    assert exc.value.code is RejectCode.POSITION_CONFLICT
    assert exc.value.raw_code == "110017"
    assert "reduce-only" in str(exc.value)


def test_leverage_not_modified_is_benign():
    c = client(FakeResponse({"retCode": 110043, "retMsg": "leverage not modified"}))
    c.set_leverage("BTCUSDT", 5)


def test_klines_reversed_to_ascending():
    rows = [
        ["1700007200000", "3", "4", "2", "3.5", "10", "35"],
        ["1700003600000", "2", "3", "1", "2.5", "10", "25"],
        ["1700000000000", "1", "2", "0.5", "1.5", "10", "15"],
    ]
    c = client(ok({"list": rows}))
    df = c.get_klines("BTCUSDT", "1h", 3)
    assert list(df["close"]) == [1.5, 2.5, 3.5]
    assert df["time"].is_monotonic_increasing
    assert str(df["time"].dt.tz) == "UTC"
    assert "interval=60" in c._sess.calls[0]["url"]


def test_kline_failure_is_data_error():
    c = client(FakeResponse({"retCode": 10001, "retMsg": "params error"}))
    with pytest.raises(DataError):
        c.get_klines("NOPEUSDT", "1h", 10)


def test_instrument_rules_cached():
    info = {
        "symbol": "BTCUSDT",
        "status": "Trading",
        "lotSizeFilter": {"minOrderQty": "0.001", "qtyStep": "0.001"},
        "priceFilter": {"tickSize": "0.1"},
        "leverageFilter": {"maxLeverage": "100"},
    }
    c = client(ok({"list": [info]}))
    first = c.get_instrument_rules("BTCUSDT")
    second = c.get_instrument_rules("BTCUSDT")
    assert first == second
    assert len(c._sess.calls) == 1


@pytest.mark.parametrize("code,msg,expected", [
    (10003, "invalid api key", RejectCode.AUTH_FAILED),
    (10004, "error sign", RejectCode.AUTH_FAILED),
    (10006, "too many visits", RejectCode.RATE_LIMITED),
    (110007, "ab not enough for new order", RejectCode.INSUFFICIENT_BALANCE),
    (110072, "OrderLinkedID is duplicate", RejectCode.DUPLICATE_ORDER),
    (99999, "position idx not match position mode", RejectCode.POSITION_CONFLICT),
    (99999, "something else", RejectCode.UNKNOWN),
])
def test_map_bybit_error(code, msg, expected):
    assert map_bybit_error(code, msg) is expected
