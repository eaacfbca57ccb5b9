"""Tests for history normalization, the cached provider and the monitor loop."""

import asyncio

import aiohttp
import pytest

import config
import fetcher
from conftest import make_history
from fetcher import FetchError, HistoryProvider, extract_items, normalize_items
from prediction_engine import BIG, SMALL


class FakeResponse:
    def __init__(self, status=200, payload=None, reason="OK"):
        self.status = status
        self.reason = reason
        self._payload = payload

    async def json(self, content_type="application/json"):
        return self._payload

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    """Stands in for aiohttp.ClientSession; replays queued responses or errors."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def get(self, url, **kwargs):
        self.calls.append((url, kwargs))
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


def api_payload(*pairs):
    return {"data": {"list": [{"issue": issue, "result": result} for issue, result in pairs]}}


class TestNormalization:

    def test_extract_nested_list(self):
        assert extract_items(api_payload(("1", "10"))) == [{"issue": "1", "result": "10"}]

    def test_extract_flat_shapes(self):
        assert extract_items({"list": [1]}) == [1]
        assert extract_items([2]) == [2]

    def test_extract_rejects_unknown_shape(self):
        with pytest.raises(FetchError):
            extract_items({"data": "nope"})

    def test_records_sorted_newest_first(self):
        items = [{"issue": "101", "result": "12,3"}, {"issue": "103", "result": "88,1"},
                 {"issue": "102", "result": "50"}]
        records = normalize_items(items)
        assert [r.issue for r in records] == ["103", "102", "101"]
        assert [r.outcome for r in records] == [BIG, BIG, SMALL]

    def test_alternate_keys_and_malformed_items(self):
        items = [{"issueNumber": "7", "number": 64}, {"issue": "8"}, "garbage", {"result": "3"}]
        records = normalize_items(items)
        assert len(records) == 1
        assert records[0].issue == "7"
        assert records[0].number == 64


class TestHistoryProvider:

    def test_successful_fetch(self):
        session = FakeSession(FakeResponse(payload=api_payload(("2", "70,1"), ("1", "20,1"))))
        provider = HistoryProvider(url="http://draws.test")
        records = asyncio.run(provider.fetch_history(session, limit=10))
        assert [r.issue for r in records] == ["2", "1"]
        url, kwargs = session.calls[0]
        assert url == "http://draws.test"
        assert kwargs["params"]["pageSize"] == config.FETCH_LIMIT

    def test_cached_within_window(self):
        session = FakeSession(FakeResponse(payload=api_payload(("2", "70"), ("1", "20"))))
        provider = HistoryProvider(cache_seconds=60)
        asyncio.run(provider.fetch_history(session))
        again = asyncio.run(provider.fetch_history(session, limit=1))
        assert len(session.calls) == 1
        assert [r.issue for r in again] == ["2"]

    def test_failure_returns_stale_cache(self):
        session = FakeSession(
            FakeResponse(payload=api_payload(("2", "70"), ("1", "20"))),
            aiohttp.ClientError("boom"),
        )
        provider = HistoryProvider(cache_seconds=0)
        first = asyncio.run(provider.fetch_history(session))
        second = asyncio.run(provider.fetch_history(session))
        assert second == first

    @pytest.mark.parametrize("failure", [
        FakeResponse(status=503, reason="Service Unavailable"),
        FakeResponse(payload={"unexpected": True}),
        asyncio.TimeoutError(),
        aiohttp.ClientError("refused"),
    ])
    def test_failure_without_cache_is_empty(self, failure):
        provider = HistoryProvider(cache_seconds=0)
        assert asyncio.run(provider.fetch_history(FakeSession(failure))) == []


class StopMonitor(BaseException):
    pass


class ScriptedProvider:
    def __init__(self, *batches):
        self.batches = list(batches)

    async def fetch_history(self, session, limit=config.FETCH_LIMIT):
        batch = self.batches.pop(0)
        if isinstance(batch, BaseException):
            raise batch
        return batch


class RecordingService:
    def __init__(self):
        self.cycles = []

    def run_cycle(self, history):
        self.cycles.append(history[0].issue)
        return {'status': 'error', 'message': 'Insufficient data for prediction'}


class TestMonitorLoop:

    def test_one_cycle_per_new_issue(self, monkeypatch):
        monkeypatch.setattr(config, "POLL_INTERVAL", 0)
        monkeypatch.setattr(config, "RECONNECT_DELAY", 0)
        history = make_history([60] * 3)
        newer = make_history([40] * 4)
        provider = ScriptedProvider(history, history, [], newer, StopMonitor())
        service = RecordingService()

        with pytest.raises(StopMonitor):
            asyncio.run(fetcher.main_loop(provider, service))

        assert service.cycles == [history[0].issue, newer[0].issue]
