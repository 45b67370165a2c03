"""
football-data.org API client with a shared request queue, rate limiting,
response caching and retry policy.

Handles all communication with the football-data.org v4 API. The free tier
allows roughly 10 calls per minute, so every request (retries and 429s
included) goes through a single priority queue that spends one budget.
"""

import asyncio
import itertools
import logging
import random
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

import httpx
from asyncio_throttle import Throttler

from config import Config
from database.models import FixtureStatus
from utils.timeutils import parse_timestamp

logger = logging.getLogger(__name__)


class FootballDataAPIError(Exception):
    """Base exception for football-data.org API errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class FootballDataRateLimitError(FootballDataAPIError):
    """Raised when a request keeps hitting 429 after its rate-limit retries."""
    pass


class FootballDataUnavailableError(FootballDataAPIError):
    """Raised for network errors or timeouts after retries are exhausted."""
    pass


@dataclass
class RetryPolicy:
    """How the queue reacts to failed attempts."""
    max_retries: int = 3
    max_network_retries: int = 1
    max_rate_limit_retries: int = 5
    backoff_base: float = 1.0
    max_delay: float = 60.0
    rate_limit_wait: float = 2.0

    @classmethod
    def from_config(cls, config: Config) -> "RetryPolicy":
        return cls(
            max_retries=config.max_retries,
            max_network_retries=config.max_network_retries,
            max_rate_limit_retries=config.max_rate_limit_retries,
            backoff_base=config.retry_backoff_base,
            max_delay=config.max_retry_delay,
            rate_limit_wait=config.rate_limit_wait,
        )

    def backoff(self, attempt: int) -> float:
        """Exponential backoff with +/-25% jitter for the given (1-based) attempt."""
        delay = min(self.backoff_base * (2 ** (attempt - 1)), self.max_delay)
        jitter = delay * 0.25 * (random.random() * 2 - 1)
        return max(0.0, delay + jitter)


@dataclass
class _QueuedRequest:
    url: str
    priority: int
    enqueued_at: float
    seq: int
    future: asyncio.Future
    attempts: int = 0
    network_attempts: int = 0
    rate_limit_attempts: int = 0
    not_before: float = 0.0

    def sort_key(self) -> Tuple[int, float, int]:
        return (-self.priority, self.enqueued_at, self.seq)


@dataclass
class ApiTeam:
    external_id: int
    name: str
    short_name: str

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "ApiTeam":
        name = data.get("name") or data.get("shortName") or ""
        short = data.get("tla") or data.get("shortName") or name[:3].upper()
        return cls(external_id=int(data["id"]), name=name, short_name=short)


@dataclass
class ApiMatch:
    """The consumed subset of a football-data.org match."""
    external_id: str
    status: FixtureStatus
    kickoff: Optional[datetime]
    matchday: Optional[int]
    home_team: Optional[ApiTeam]
    away_team: Optional[ApiTeam]
    home_score: Optional[int] = None
    away_score: Optional[int] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def has_scores(self) -> bool:
        return self.home_score is not None and self.away_score is not None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "ApiMatch":
        status = FixtureStatus.parse(data.get("status") or "SCHEDULED")
        score = data.get("score") or {}
        full_time = score.get("fullTime") or {}
        half_time = score.get("halfTime") or {}

        home, away = full_time.get("home"), full_time.get("away")
        if (home is None or away is None) and status.is_live:
            home, away = half_time.get("home"), half_time.get("away")
        if home is None or away is None:
            home, away = None, None

        home_team = data.get("homeTeam") or {}
        away_team = data.get("awayTeam") or {}
        return cls(
            external_id=str(data["id"]),
            status=status,
            kickoff=parse_timestamp(data.get("utcDate")),
            matchday=data.get("matchday"),
            home_team=ApiTeam.from_api(home_team) if home_team.get("id") is not None else None,
            away_team=ApiTeam.from_api(away_team) if away_team.get("id") is not None else None,
            home_score=home,
            away_score=away,
            raw=data,
        )


def api_season(season: str) -> str:
    """Season tag '2025-26' -> API season parameter '2025'."""
    return str(season).split("-")[0].split("/")[0]


class FootballDataClient:
    """
    Client for interacting with the football-data.org API.

    `call()` is the only way requests reach the network. One worker task
    drains the queue in priority order; the throttler holds the whole queue
    while the per-minute budget is spent.
    """

    def __init__(
        self,
        config: Config,
        retry_policy: Optional[RetryPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self.base_url = config.football_data_base_url.rstrip("/")
        self.competition = config.competition_code
        self.retry_policy = retry_policy or RetryPolicy.from_config(config)

        self.max_requests = config.max_requests_per_minute
        self.period = config.rate_limit_period
        self.throttler = Throttler(
            rate_limit=self.max_requests,
            period=self.period,
            retry_interval=config.rate_limit_poll_interval,
        )
        self._issued: deque = deque()

        self.cache_ttl = config.response_cache_ttl
        self._cache: Dict[str, Tuple[float, Any]] = {}

        self._queue: List[_QueuedRequest] = []
        self._inflight: Dict[str, _QueuedRequest] = {}
        self._seq = itertools.count()
        self._wakeup = asyncio.Event()
        self._paused_until = 0.0
        self._worker: Optional[asyncio.Task] = None
        self._closed = False

        self.client = httpx.AsyncClient(
            timeout=config.request_timeout,
            follow_redirects=True,
            transport=transport,
            headers={
                "X-Auth-Token": config.football_data_api_key,
                "Accept": "application/json",
            },
        )

    # Public request API

    async def call(self, url: str, priority: int = 1, use_cache: bool = True) -> Any:
        """
        Queue a GET request and wait for its JSON body.

        Args:
            url: Absolute URL or path relative to the API base
            priority: Higher runs first; equal priorities run in enqueue order
            use_cache: Serve a fresh cached response without spending budget

        Raises:
            FootballDataRateLimitError: 429 persisted past the retry policy
            FootballDataUnavailableError: network failure persisted
            FootballDataAPIError: any other failure after retries
        """
        if self._closed:
            raise FootballDataUnavailableError("Client is closed")

        url = self._build_url(url)
        if use_cache:
            cached = self._cache_get(url)
            if cached is not None:
                logger.debug("Serving cached response", extra={"url": url})
                return cached

        request = self._inflight.get(url)
        if request is None or request.future.done():
            request = self._enqueue(url, priority)
        elif priority > request.priority:
            request.priority = priority

        return await asyncio.shield(request.future)

    async def get_teams(self, season: str) -> List[ApiTeam]:
        """Get the competition's teams for a season tag like '2025-26'."""
        data = await self.call(
            f"/competitions/{self.competition}/teams?season={api_season(season)}",
            priority=1,
        )
        teams = [ApiTeam.from_api(team) for team in data.get("teams", [])]
        logger.info("Fetched teams", extra={"season": season, "teams_count": len(teams)})
        return teams

    async def get_competition_matches(self, season: str) -> List[ApiMatch]:
        """Get every match of the competition for a season tag."""
        data = await self.call(
            f"/competitions/{self.competition}/matches?season={api_season(season)}",
            priority=1,
        )
        matches = [ApiMatch.from_api(match) for match in data.get("matches", [])]
        logger.info("Fetched competition matches", extra={
            "season": season,
            "matches_count": len(matches)
        })
        return matches

    async def get_matches(
        self,
        external_ids: Iterable[str],
        priority: int = 2,
        use_cache: bool = True,
    ) -> List[ApiMatch]:
        """Get specific matches by external id in one call."""
        ids = ",".join(str(external_id) for external_id in external_ids)
        if not ids:
            return []
        data = await self.call(f"/matches?ids={ids}", priority=priority, use_cache=use_cache)
        matches = [ApiMatch.from_api(match) for match in data.get("matches", [])]
        logger.debug("Fetched matches", extra={"requested": ids, "matches_count": len(matches)})
        return matches

    # Introspection

    def calls_in_window(self) -> int:
        """Requests issued within the current rate-limit period."""
        self._prune_issued(time.monotonic())
        return len(self._issued)

    def estimated_wait(self) -> float:
        """Rough seconds until a newly queued request would be issued."""
        now = time.monotonic()
        self._prune_issued(now)
        wait = max(0.0, self._paused_until - now)
        ahead = len(self._queue)
        free = self.max_requests - len(self._issued)
        if ahead < free:
            return wait
        if self._issued:
            wait = max(wait, self._issued[0] + self.period - now)
        overflow = ahead - max(free, 0)
        return wait + (overflow // self.max_requests) * self.period

    @property
    def queue_size(self) -> int:
        return len(self._queue)

    # Queue internals

    def _build_url(self, url: str) -> str:
        if url.startswith("http"):
            return url
        return f"{self.base_url}/{url.lstrip('/')}"

    def _cache_get(self, url: str) -> Optional[Any]:
        entry = self._cache.get(url)
        if entry is None:
            return None
        expires_at, data = entry
        if time.monotonic() >= expires_at:
            del self._cache[url]
            return None
        return data

    def _prune_issued(self, now: float):
        while self._issued and now - self._issued[0] >= self.period:
            self._issued.popleft()

    def _enqueue(self, url: str, priority: int) -> _QueuedRequest:
        loop = asyncio.get_running_loop()
        request = _QueuedRequest(
            url=url,
            priority=priority,
            enqueued_at=time.monotonic(),
            seq=next(self._seq),
            future=loop.create_future(),
        )
        self._inflight[url] = request
        self._queue.append(request)
        self._wakeup.set()
        if self._worker is None or self._worker.done():
            self._worker = loop.create_task(self._run_queue())
        return request

    def _next_ready(self, now: float) -> Optional[_QueuedRequest]:
        ready = [request for request in self._queue if request.not_before <= now]
        if not ready:
            return None
        return min(ready, key=_QueuedRequest.sort_key)

    async def _sleep(self, delay: float):
        """Sleep up to `delay`, waking early when a request is enqueued."""
        self._wakeup.clear()
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=max(delay, 0.0))
        except asyncio.TimeoutError:
            pass

    async def _run_queue(self):
        while not self._closed:
            now = time.monotonic()
            if not self._queue:
                self._wakeup.clear()
                await self._wakeup.wait()
                continue

            if self._paused_until > now:
                await asyncio.sleep(self._paused_until - now)
                continue

            request = self._next_ready(now)
            if request is None:
                earliest = min(r.not_before for r in self._queue)
                await self._sleep(earliest - now)
                continue

            self._queue.remove(request)
            if request.future.done():
                continue

            try:
                await self._issue(request)
            except Exception as e:
                logger.error("Unexpected error in request queue", extra={
                    "url": request.url,
                    "error": str(e),
                    "error_type": type(e).__name__
                }, exc_info=True)
                self._settle(request, error=FootballDataAPIError(f"Request failed: {e}"))

    def _requeue(self, request: _QueuedRequest):
        self._queue.append(request)

    def _settle(self, request: _QueuedRequest, result: Any = None, error: Optional[Exception] = None):
        if self._inflight.get(request.url) is request:
            del self._inflight[request.url]
        if request.future.done():
            return
        if error is not None:
            request.future.set_exception(error)
            # Callers may have gone away; mark the exception as retrieved
            request.future.exception()
        else:
            request.future.set_result(result)

    async def _issue(self, request: _QueuedRequest):
        """Spend one unit of budget on one attempt and route the outcome."""
        policy = self.retry_policy

        async with self.throttler:
            self._issued.append(time.monotonic())
            try:
                response = await self.client.get(request.url)
            except httpx.TransportError as e:
                response = None
                transport_error = e

        if response is None:
            request.network_attempts += 1
            if request.network_attempts > policy.max_network_retries:
                logger.error("football-data.org unreachable", extra={
                    "url": request.url,
                    "attempts": request.network_attempts,
                    "error": str(transport_error)
                })
                self._settle(request, error=FootballDataUnavailableError(
                    f"Network error after {request.network_attempts} attempts: {transport_error}"
                ))
                return
            wait_time = policy.backoff(request.network_attempts)
            logger.warning("Network error from football-data.org, retrying", extra={
                "url": request.url,
                "attempt": request.network_attempts,
                "wait_time": wait_time,
                "error": str(transport_error)
            })
            request.not_before = time.monotonic() + wait_time
            self._requeue(request)
            return

        status_code = response.status_code

        if status_code == 429:
            request.rate_limit_attempts += 1
            if request.rate_limit_attempts > policy.max_rate_limit_retries:
                self._settle(request, error=FootballDataRateLimitError(
                    f"Rate limited after {policy.max_rate_limit_retries} retries",
                    status_code=429,
                ))
                return
            wait_time = self._retry_after(response)
            self._paused_until = time.monotonic() + wait_time
            request.priority += 1
            logger.warning("Rate limited by football-data.org", extra={
                "url": request.url,
                "retry_after": wait_time,
                "attempt": request.rate_limit_attempts,
                "priority": request.priority
            })
            self._requeue(request)
            return

        if not response.is_success:
            request.attempts += 1
            if request.attempts > policy.max_retries:
                error_text = response.text[:500]
                logger.error("Request failed after retries", extra={
                    "url": request.url,
                    "status_code": status_code,
                    "error": error_text
                })
                self._settle(request, error=FootballDataAPIError(
                    f"Request failed after {policy.max_retries} retries: "
                    f"{status_code} - {error_text}",
                    status_code=status_code,
                ))
                return
            wait_time = policy.backoff(request.attempts)
            logger.warning("Error from football-data.org, retrying", extra={
                "url": request.url,
                "status_code": status_code,
                "attempt": request.attempts,
                "wait_time": wait_time
            })
            request.not_before = time.monotonic() + wait_time
            self._requeue(request)
            return

        try:
            data = response.json()
        except ValueError as e:
            logger.error("JSON parse failed", extra={
                "url": request.url,
                "status_code": status_code,
                "response_preview": response.text[:500]
            })
            self._settle(request, error=FootballDataAPIError(
                f"Failed to parse JSON: {e}", status_code=status_code
            ))
            return

        self._cache[request.url] = (time.monotonic() + self.cache_ttl, data)
        self._settle(request, result=data)

    def _retry_after(self, response: httpx.Response) -> float:
        header = response.headers.get("Retry-After")
        if header:
            try:
                return min(float(header), self.retry_policy.max_delay)
            except ValueError:
                pass
        return self.retry_policy.rate_limit_wait

    async def close(self):
        """Stop the queue, fail anything still waiting and close the HTTP client."""
        self._closed = True
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        for request in list(self._queue) + list(self._inflight.values()):
            self._settle(request, error=FootballDataUnavailableError("Client closed"))
        self._queue.clear()
        await self.client.aclose()

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()
