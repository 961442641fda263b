import asyncio
import math

import aiohttp
import pytest

from prepump_scanner.errors import Throttled, TransportFailure
from prepump_scanner.providers.kucoin import KucoinFuturesProvider


def test_list_symbols_dedupes_and_sorts():
    provider = KucoinFuturesProvider("https://example.invalid/api/v1/")
    assert provider.base_url == "https://example.invalid/api/v1"

    async def fake_get(path, params, label):
        assert path == "/contracts/active"
        return [
            {"symbol": "ETHUSDTM", "baseCurrency": "ETH", "fundingFeeRate": 0.0001},
            {"symbol": "BTCUSDTM", "baseCurrency": "XBT", "fundingFeeRate": "-0.0007"},
            {"symbol": "ETHUSDTM", "baseCurrency": "ETH", "fundingFeeRate": 0.0001},
            {"symbol": "", "baseCurrency": "???"},
            {"symbol": "NOFUNDUSDTM", "baseCurrency": "NOFUND"},
        ]

    provider._get = fake_get
    symbols = asyncio.run(provider.list_symbols())
    assert [s.symbol for s in symbols] == ["BTCUSDTM", "ETHUSDTM", "NOFUNDUSDTM"]
    assert symbols[0].funding_rate == -0.0007
    assert math.isnan(symbols[2].funding_rate)


def test_fetch_candles_maps_kline_rows():
    provider = KucoinFuturesProvider()
    seen = {}

    async def fake_get(path, params, label):
        seen.update(params, path=path)
        return [
            [1_700_000_000_000, 10, 11, 12, 9, 100, 1050],
            [1_700_000_900_000, 11, 10.5, 11.2, 10.1, 80, 860],
        ]

    provider._get = fake_get
    candles = asyncio.run(provider.fetch_candles("BTCUSDTM", 15, 1, 2))
    assert seen == {"path": "/kline/query", "symbol": "BTCUSDTM", "granularity": 15, "from": 1, "to": 2}
    assert [c.close for c in candles] == [11.0, 10.5]
    assert candles[1].start_time_ms == 1_700_000_900_000


def test_fetch_candles_tolerates_missing_data():
    provider = KucoinFuturesProvider()

    async def fake_get(path, params, label):
        return None

    provider._get = fake_get
    assert asyncio.run(provider.fetch_candles("BTCUSDTM", 1, 1, 2)) == []


class FakeResponse:
    def __init__(self, status=200, body=None, text="", bad_json=False):
        self.status = status
        self._body = body
        self._text = text
        self._bad_json = bad_json

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def text(self):
        return self._text

    async def json(self, content_type=None):
        if self._bad_json:
            raise ValueError("Expecting value: line 1 column 1 (char 0)")
        return self._body


class FakeSession:
    closed = False

    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.requests = []

    def get(self, url, params=None):
        self.requests.append((url, params))
        if self.error is not None:
            raise self.error
        return self.response


def _provider_with(response=None, error=None):
    provider = KucoinFuturesProvider("https://example.invalid/api/v1")
    provider._session = FakeSession(response, error)
    return provider


def _call(provider):
    return asyncio.run(provider._get("/kline/query", {"symbol": "BTCUSDTM"}, "GET kline 15m BTCUSDTM"))


def _counters(m):
    return (m.requests, m.ok_2xx, m.rate_429, m.errors)


def test_get_returns_data_and_counts_ok():
    provider = _provider_with(FakeResponse(body={"code": "200000", "data": [1, 2]}))
    assert _call(provider) == [1, 2]
    assert _counters(provider.metrics) == (1, 1, 0, 0)
    assert provider._session.requests == [("https://example.invalid/api/v1/kline/query", {"symbol": "BTCUSDTM"})]


@pytest.mark.parametrize("status", [418, 429])
def test_get_http_rate_limit_raises_throttled(status):
    provider = _provider_with(FakeResponse(status=status))
    with pytest.raises(Throttled) as info:
        _call(provider)
    assert info.value.status == status
    assert info.value.label == "GET kline 15m BTCUSDTM"
    assert _counters(provider.metrics) == (1, 0, 1, 0)


def test_get_body_rate_limit_code_raises_throttled():
    provider = _provider_with(FakeResponse(body={"code": "429000", "msg": "Too Many Requests"}))
    with pytest.raises(Throttled):
        _call(provider)
    assert _counters(provider.metrics) == (1, 0, 1, 0)


def test_get_other_http_status_is_a_transport_failure():
    provider = _provider_with(FakeResponse(status=503, text="upstream down"))
    with pytest.raises(TransportFailure) as info:
        _call(provider)
    assert info.value.status == 503
    assert not isinstance(info.value, Throttled)
    assert _counters(provider.metrics) == (1, 0, 0, 1)


def test_get_malformed_json_is_a_transport_failure():
    provider = _provider_with(FakeResponse(bad_json=True))
    with pytest.raises(TransportFailure):
        _call(provider)
    assert _counters(provider.metrics) == (1, 0, 0, 1)


@pytest.mark.parametrize("body", [{"code": "400100", "msg": "bad symbol"}, {"data": []}, ["not", "a", "dict"]])
def test_get_unexpected_api_code_is_a_transport_failure(body):
    provider = _provider_with(FakeResponse(body=body))
    with pytest.raises(TransportFailure):
        _call(provider)
    assert _counters(provider.metrics) == (1, 0, 0, 1)


def test_get_network_errors_are_transport_failures():
    for error in (aiohttp.ClientConnectionError("reset"), asyncio.TimeoutError()):
        provider = _provider_with(error=error)
        with pytest.raises(TransportFailure):
            _call(provider)
        assert _counters(provider.metrics) == (1, 0, 0, 1)
