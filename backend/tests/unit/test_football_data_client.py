"""
Unit tests for the football-data.org client.

Tests that:
- Responses are cached and concurrent identical calls share one request
- The queue drains by priority, then enqueue order
- 429, 5xx and network failures follow the retry policy
- The per-window budget is never exceeded
- Match payloads parse into ApiMatch values
"""

import asyncio
import time

import httpx
import pytest

from database.models import FixtureStatus
from football_data.client import (
    ApiMatch,
    FootballDataAPIError,
    FootballDataClient,
    FootballDataRateLimitError,
    FootballDataUnavailableError,
    api_season,
)


def _client(config, handler):
    return FootballDataClient(config, transport=httpx.MockTransport(handler))


class Recorder:
    """MockTransport handler returning canned responses and recording requests."""

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.requests = []
        self.times = []

    def __call__(self, request):
        self.requests.append(request)
        self.times.append(time.monotonic())
        if self.responses:
            response = self.responses.pop(0)
            if isinstance(response, Exception):
                raise response
            return response
        return httpx.Response(200, json={"path": request.url.path, "query": str(request.url.query)})

    @property
    def paths(self):
        return [r.url.path for r in self.requests]


class TestRequests:
    """Basic request behaviour."""

    @pytest.mark.asyncio
    async def test_call_returns_json_with_auth_header(self, config):
        recorder = Recorder()
        client = _client(config, recorder)
        try:
            data = await client.call("/competitions/PL/teams?season=2025")
        finally:
            await client.close()

        assert data["path"] == "/v4/competitions/PL/teams"
        assert recorder.requests[0].headers["X-Auth-Token"] == "test-token"

    @pytest.mark.asyncio
    async def test_cached_response_skips_network(self, config):
        config.response_cache_ttl = 120
        recorder = Recorder()
        client = _client(config, recorder)
        try:
            first = await client.call("/matches?ids=1")
            second = await client.call("/matches?ids=1")
            await client.call("/matches?ids=1", use_cache=False)
        finally:
            await client.close()

        assert first == second
        assert len(recorder.requests) == 2

    @pytest.mark.asyncio
    async def test_concurrent_identical_calls_share_request(self, config):
        recorder = Recorder()
        client = _client(config, recorder)
        try:
            results = await asyncio.gather(*[client.call("/matches?ids=7") for _ in range(5)])
        finally:
            await client.close()

        assert len(recorder.requests) == 1
        assert all(result == results[0] for result in results)

    @pytest.mark.asyncio
    async def test_priority_then_fifo(self, config):
        recorder = Recorder()
        client = _client(config, recorder)
        try:
            await asyncio.gather(
                client.call("/a", priority=1),
                client.call("/b", priority=5),
                client.call("/c", priority=1),
                client.call("/d", priority=3),
            )
        finally:
            await client.close()

        assert recorder.paths == ["/v4/b", "/v4/d", "/v4/a", "/v4/c"]


class TestRetryPolicy:
    """Failure handling."""

    @pytest.mark.asyncio
    async def test_rate_limited_request_retries(self, config):
        recorder = Recorder([httpx.Response(429, headers={"Retry-After": "0"})])
        client = _client(config, recorder)
        try:
            data = await client.call("/matches?ids=1")
        finally:
            await client.close()

        assert data["path"] == "/v4/matches"
        assert len(recorder.requests) == 2

    @pytest.mark.asyncio
    async def test_persistent_rate_limit_raises(self, config):
        config.max_rate_limit_retries = 2
        recorder = Recorder([httpx.Response(429) for _ in range(10)])
        client = _client(config, recorder)
        try:
            with pytest.raises(FootballDataRateLimitError):
                await client.call("/matches?ids=1")
        finally:
            await client.close()

        assert len(recorder.requests) == 3

    @pytest.mark.asyncio
    async def test_server_error_retried_then_succeeds(self, config):
        recorder = Recorder([httpx.Response(500), httpx.Response(503)])
        client = _client(config, recorder)
        try:
            data = await client.call("/matches?ids=1")
        finally:
            await client.close()

        assert data["path"] == "/v4/matches"
        assert len(recorder.requests) == 3

    @pytest.mark.asyncio
    async def test_server_error_exhausts_retries(self, config):
        recorder = Recorder([httpx.Response(500, text="boom") for _ in range(10)])
        client = _client(config, recorder)
        try:
            with pytest.raises(FootballDataAPIError) as exc_info:
                await client.call("/matches?ids=1")
        finally:
            await client.close()

        assert exc_info.value.status_code == 500
        assert not isinstance(exc_info.value, FootballDataRateLimitError)
        # first attempt plus three retries
        assert len(recorder.requests) == 4

    @pytest.mark.asyncio
    async def test_network_error_retried_once(self, config):
        recorder = Recorder([
            httpx.ConnectError("connection refused"),
            httpx.ConnectError("connection refused"),
        ])
        client = _client(config, recorder)
        try:
            with pytest.raises(FootballDataUnavailableError):
                await client.call("/matches?ids=1")
        finally:
            await client.close()

        assert len(recorder.requests) == 2

    @pytest.mark.asyncio
    async def test_failing_request_does_not_block_others(self, config):
        def handler(request):
            if request.url.path.endswith("/bad"):
                return httpx.Response(500)
            return httpx.Response(200, json={"ok": True})

        client = _client(config, handler)
        try:
            bad, good = await asyncio.gather(
                client.call("/bad", priority=5),
                client.call("/good", priority=1),
                return_exceptions=True,
            )
        finally:
            await client.close()

        assert isinstance(bad, FootballDataAPIError)
        assert good == {"ok": True}


class TestBudget:
    """The sliding-window request budget."""

    @pytest.mark.asyncio
    async def test_never_exceeds_budget(self, config):
        config.max_requests_per_minute = 3
        config.rate_limit_period = 0.5
        recorder = Recorder()
        client = _client(config, recorder)
        try:
            await asyncio.gather(*[client.call(f"/m/{i}") for i in range(7)])
            assert client.calls_in_window() <= 3
        finally:
            await client.close()

        assert len(recorder.times) == 7
        # Any 4 consecutive requests must span at least one period
        for first, fourth in zip(recorder.times, recorder.times[3:]):
            assert fourth - first >= 0.5 - 0.05

    @pytest.mark.asyncio
    async def test_retries_spend_budget(self, config):
        config.max_requests_per_minute = 2
        config.rate_limit_period = 0.4
        recorder = Recorder([httpx.Response(500), httpx.Response(500)])
        client = _client(config, recorder)
        try:
            await client.call("/matches?ids=1")
        finally:
            await client.close()

        assert len(recorder.times) == 3
        assert recorder.times[2] - recorder.times[0] >= 0.4 - 0.05

    @pytest.mark.asyncio
    async def test_estimated_wait_idle(self, config):
        client = _client(config, Recorder())
        try:
            assert client.estimated_wait() == 0
            assert client.calls_in_window() == 0
        finally:
            await client.close()


class TestParsing:
    """ApiMatch / endpoint helpers."""

    def test_full_time_score(self):
        match = ApiMatch.from_api({
            "id": 99,
            "status": "FINISHED",
            "utcDate": "2025-08-16T14:00:00Z",
            "matchday": 1,
            "homeTeam": {"id": 1, "name": "Arsenal FC", "tla": "ARS"},
            "awayTeam": {"id": 2, "name": "Chelsea FC", "tla": "CHE"},
            "score": {"fullTime": {"home": 2, "away": 1}, "halfTime": {"home": 1, "away": 0}},
        })

        assert match.external_id == "99"
        assert match.status == FixtureStatus.FINISHED
        assert (match.home_score, match.away_score) == (2, 1)
        assert match.home_team.short_name == "ARS"
        assert match.kickoff.hour == 14

    def test_half_time_fallback_while_live(self):
        match = ApiMatch.from_api({
            "id": 5,
            "status": "PAUSED",
            "score": {"fullTime": {"home": None, "away": None}, "halfTime": {"home": 0, "away": 1}},
        })

        assert (match.home_score, match.away_score) == (0, 1)

    def test_no_score_before_kickoff(self):
        match = ApiMatch.from_api({"id": 5, "status": "TIMED", "score": {"fullTime": {"home": None, "away": None}}})

        assert match.home_score is None and match.away_score is None
        assert not match.has_scores

    def test_awarded_counts_as_finished(self):
        match = ApiMatch.from_api({"id": 5, "status": "AWARDED", "score": {"fullTime": {"home": 3, "away": 0}}})

        assert match.status == FixtureStatus.FINISHED

    def test_api_season(self):
        assert api_season("2025-26") == "2025"
        assert api_season("2024") == "2024"

    @pytest.mark.asyncio
    async def test_get_matches_requests_ids(self, config, fake_api):
        fake_api.set_match(11, status="IN_PLAY", half_time=(1, 0))
        fake_api.set_match(12, status="FINISHED", home=2, away=2)
        client = _client(config, fake_api.handler)
        try:
            matches = await client.get_matches(["11", "12", "13"])
        finally:
            await client.close()

        assert fake_api.requests[0].url.params["ids"] == "11,12,13"
        assert {m.external_id: (m.home_score, m.away_score) for m in matches} == {
            "11": (1, 0),
            "12": (2, 2),
        }

    @pytest.mark.asyncio
    async def test_get_matches_empty_skips_request(self, config, fake_api):
        client = _client(config, fake_api.handler)
        try:
            assert await client.get_matches([]) == []
        finally:
            await client.close()

        assert fake_api.requests == []
