import json

import pytest

from tickerwatch.ingest import parser

TICKER = [340, {"a": ["50001.0", 1, "1.0"], "b": ["49999.0", 1, "1.0"], "c": ["50000.5", "0.01"]}, "ticker", "XBT/USD"]

def test_ticker_frame_uses_last_trade():
    f = parser.classify(TICKER)
    assert f.kind == "ticker"
    assert f.pair == "XBT/USD"
    assert f.price == pytest.approx(50000.5)

def test_ticker_falls_back_to_ask_then_bid():
    assert parser.parse_ticker_payload({"a": ["10.5", 1, "1"], "b": ["10.4"]}) == 10.5
    assert parser.parse_ticker_payload({"c": ["nan"], "b": ["10.4"]}) == 10.4
    assert parser.parse_ticker_payload({"c": []}) is None
    assert parser.parse_ticker_payload("junk") is None

@pytest.mark.parametrize("raw", [None, "abc", "0", "-5", "inf", "nan", True, [], {}])
def test_to_price_rejects_unusable(raw):
    assert parser.to_price(raw) is None

def test_malformed_ticker_price_is_none():
    f = parser.classify([1, {"c": ["oops", "1"]}, "ticker", "XBT/USD"])
    assert f.kind == "ticker" and f.price is None

def test_control_frames():
    assert parser.classify({"event": "heartbeat"}).kind == "heartbeat"
    assert parser.classify({"event": "pong"}).kind == "heartbeat"
    st = parser.classify({"event": "systemStatus", "status": "online", "version": "1.9.0"})
    assert st.kind == "system_status" and st.detail == "online"
    sub = parser.classify({"event": "subscriptionStatus", "status": "subscribed", "pair": "XBT/USD"})
    assert sub.kind == "subscribed" and sub.pair == "XBT/USD"
    err = parser.classify({"event": "subscriptionStatus", "status": "error", "errorMessage": "Currency pair not supported"})
    assert err.kind == "sub_error" and "not supported" in err.detail

def test_unknown_shapes_are_other():
    for m in [{"event": "whatever"}, [1, 2], "text", 42, None]:
        assert parser.classify(m).kind == "other"

def test_decode_garbage_returns_none():
    assert parser.decode("{not json") is None
    assert parser.decode(b'{"event":"heartbeat"}') == {"event": "heartbeat"}

def test_normalize_pair():
    assert parser.normalize_pair("XBT/USD") == "XBTUSD"
    assert parser.normalize_pair("xbt-usd") == "XBTUSD"

def test_outbound_messages():
    assert parser.subscribe_msg("XBT/USD") == {
        "event": "subscribe", "pair": ["XBT/USD"], "subscription": {"name": "ticker"},
    }
    assert json.loads(json.dumps(parser.ping_msg())) == {"event": "ping"}
