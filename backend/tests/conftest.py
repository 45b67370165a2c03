"""
Pytest configuration and fixtures.

Supabase is replaced by an in-memory PostgREST-style query builder so the
real SupabaseClient code runs against it. football-data.org is served by an
httpx.MockTransport handler.
"""

import copy
import itertools
import uuid
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import httpx
import pytest
from postgrest.exceptions import APIError

from config import Config
from database.supabase_client import SupabaseClient
from football_data.client import FootballDataClient
from refresh.live_window import LiveWindowAdvisor
from refresh.reconciler import FixtureReconciler
from refresh.recovery import RecoveryScanner
from refresh.seeding import SeasonManager
from scoring.engine import ScoringService
from scoring.leaderboard import LeaderboardAggregator
from scoring.predictions import PredictionService
from scoring.ranking_history import RankingHistoryService
from utils.timeutils import to_iso

NOW = datetime(2025, 8, 16, 18, 0, tzinfo=timezone.utc)
SEASON = "2025-26"

UNIQUE_KEYS = {
    "teams": [("external_team_id",)],
    "fixtures": [("external_match_id",)],
    "predictions": [("user_id", "fixture_id", "organization_id")],
    "league_table": [("user_id", "organization_id", "season")],
}


# In-memory Supabase

def _comparable(value):
    if isinstance(value, str) and "T" in value:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return value
    return value


class FakeResponse:
    def __init__(self, data, count=None):
        self.data = data
        self.count = count


class FakeQuery:
    """Chainable subset of the postgrest request builder."""

    def __init__(self, db: "FakeSupabase", table: str):
        self.db = db
        self.table = table
        self.action = "select"
        self.columns = "*"
        self.count = None
        self.payload = None
        self.on_conflict = None
        self.filters = []
        self.orders = []
        self.row_limit = None
        self.row_range = None
        self._negate = False

    # Actions

    def select(self, columns: str = "*", count: Optional[str] = None):
        self.action = "select"
        self.columns = columns
        self.count = count
        return self

    def insert(self, rows):
        self.action = "insert"
        self.payload = rows
        return self

    def upsert(self, rows, on_conflict: str = ""):
        self.action = "upsert"
        self.payload = rows
        self.on_conflict = on_conflict
        return self

    def update(self, values: Dict[str, Any]):
        self.action = "update"
        self.payload = values
        return self

    def delete(self):
        self.action = "delete"
        return self

    # Filters

    @property
    def not_(self):
        self._negate = True
        return self

    def _filter(self, predicate):
        if self._negate:
            self._negate = False
            self.filters.append(lambda row: not predicate(row))
        else:
            self.filters.append(predicate)
        return self

    def eq(self, column, value):
        return self._filter(lambda row: _comparable(row.get(column)) == _comparable(value))

    def neq(self, column, value):
        return self._filter(lambda row: _comparable(row.get(column)) != _comparable(value))

    def in_(self, column, values):
        wanted = {_comparable(value) for value in values}
        return self._filter(lambda row: _comparable(row.get(column)) in wanted)

    def is_(self, column, value):
        if value in ("null", None):
            return self._filter(lambda row: row.get(column) is None)
        return self._filter(lambda row: row.get(column) is value)

    def _compare(self, column, value, op):
        def predicate(row):
            current = row.get(column)
            if current is None:
                return False
            return op(_comparable(current), _comparable(value))
        return self._filter(predicate)

    def lt(self, column, value):
        return self._compare(column, value, lambda a, b: a < b)

    def lte(self, column, value):
        return self._compare(column, value, lambda a, b: a <= b)

    def gt(self, column, value):
        return self._compare(column, value, lambda a, b: a > b)

    def gte(self, column, value):
        return self._compare(column, value, lambda a, b: a >= b)

    def order(self, column, desc: bool = False):
        self.orders.append((column, desc))
        return self

    def limit(self, size: int):
        self.row_limit = size
        return self

    def range(self, start: int, end: int):
        self.row_range = (start, end)
        return self

    # Execution

    def _matching(self) -> List[Dict[str, Any]]:
        return [row for row in self.db.tables[self.table] if all(f(row) for f in self.filters)]

    def _project(self, row):
        if self.columns.strip() == "*":
            return copy.deepcopy(row)
        names = [name.strip() for name in self.columns.split(",")]
        return {name: copy.deepcopy(row.get(name)) for name in names}

    def execute(self) -> FakeResponse:
        self.db.calls.append((self.table, self.action))
        handler = getattr(self, f"_execute_{self.action}")
        return handler()

    def _execute_select(self):
        rows = self._matching()
        count = len(rows) if self.count else None
        for column, desc in reversed(self.orders):
            present = [row for row in rows if row.get(column) is not None]
            missing = [row for row in rows if row.get(column) is None]
            present.sort(key=lambda row: _comparable(row[column]), reverse=desc)
            rows = present + missing
        if self.row_range is not None:
            start, end = self.row_range
            rows = rows[start:end + 1]
        if self.row_limit is not None:
            rows = rows[:self.row_limit]
        if self.db.max_rows is not None:
            rows = rows[:self.db.max_rows]
        return FakeResponse([self._project(row) for row in rows], count)

    def _rows(self):
        return self.payload if isinstance(self.payload, list) else [self.payload]

    def _execute_insert(self):
        inserted = []
        for row in self._rows():
            inserted.append(self.db.insert_row(self.table, row))
        return FakeResponse(copy.deepcopy(inserted))

    def _execute_upsert(self):
        keys = tuple(column.strip() for column in (self.on_conflict or "id").split(","))
        written = []
        for row in self._rows():
            existing = self.db.find(self.table, {key: row.get(key) for key in keys})
            if existing is None:
                written.append(self.db.insert_row(self.table, row))
            else:
                existing.update(copy.deepcopy(row))
                written.append(existing)
        return FakeResponse(copy.deepcopy(written))

    def _execute_update(self):
        rows = self._matching()
        for row in rows:
            row.update(copy.deepcopy(self.payload))
        return FakeResponse(copy.deepcopy(rows))

    def _execute_delete(self):
        rows = self._matching()
        ids = {id(row) for row in rows}
        self.db.tables[self.table] = [row for row in self.db.tables[self.table] if id(row) not in ids]
        return FakeResponse(copy.deepcopy(rows))


class FakeSupabase:
    """Holds tables as lists of dicts and enforces their unique keys."""

    def __init__(self):
        self.tables: Dict[str, List[Dict[str, Any]]] = {name: [] for name in UNIQUE_KEYS}
        self.calls: List[tuple] = []
        # Server-side cap on rows per response, like PostgREST max-rows
        self.max_rows: Optional[int] = None

    def table(self, name: str) -> FakeQuery:
        self.tables.setdefault(name, [])
        return FakeQuery(self, name)

    def find(self, table: str, match: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        if any(value is None for value in match.values()):
            return None
        for row in self.tables[table]:
            if all(row.get(key) == value for key, value in match.items()):
                return row
        return None

    def insert_row(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        row = copy.deepcopy(row)
        row.setdefault("id", str(uuid.uuid4()))
        for keys in [("id",)] + UNIQUE_KEYS.get(table, []):
            if self.find(table, {key: row.get(key) for key in keys}) is not None:
                raise APIError({
                    "code": "23505",
                    "message": f"duplicate key value violates unique constraint on {table}{keys}",
                    "details": None,
                    "hint": None,
                })
        self.tables[table].append(row)
        return row

    def rows(self, table: str) -> List[Dict[str, Any]]:
        return copy.deepcopy(self.tables[table])


class FrozenClock:
    """Injectable clock for components that take `clock=`."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


# football-data.org fake

class FakeFootballDataAPI:
    """Serves /matches, /competitions/{c}/matches and /competitions/{c}/teams."""

    def __init__(self):
        self.matches: Dict[str, Dict[str, Any]] = {}
        self.teams: List[Dict[str, Any]] = []
        self.requests: List[httpx.Request] = []
        # Status codes returned (in order) before normal responses resume
        self.failures: List[int] = []
        self.duplicate_ids: List[str] = []

    def set_match(
        self,
        external_id,
        status: str = "SCHEDULED",
        home: Optional[int] = None,
        away: Optional[int] = None,
        half_time=(None, None),
        kickoff: datetime = NOW,
        matchday: int = 1,
        home_team: int = 57,
        away_team: int = 61,
    ):
        self.matches[str(external_id)] = {
            "id": int(external_id),
            "utcDate": kickoff.strftime("%Y-%m-%dT%H:%M:%SZ"),
            "status": status,
            "matchday": matchday,
            "homeTeam": {"id": home_team, "name": f"Team {home_team}", "tla": f"T{home_team}"},
            "awayTeam": {"id": away_team, "name": f"Team {away_team}", "tla": f"T{away_team}"},
            "score": {
                "fullTime": {"home": home, "away": away},
                "halfTime": {"home": half_time[0], "away": half_time[1]},
            },
        }

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.failures:
            status = self.failures.pop(0)
            headers = {"Retry-After": "0"} if status == 429 else {}
            return httpx.Response(status, json={"message": "error"}, headers=headers)

        path = request.url.path
        if path.endswith("/teams"):
            return httpx.Response(200, json={"teams": self.teams})
        if path.endswith("/matches") and "/competitions/" in path:
            return httpx.Response(200, json={"matches": list(self.matches.values())})
        if path.endswith("/matches"):
            ids = request.url.params.get("ids", "").split(",")
            found = [copy.deepcopy(self.matches[i]) for i in ids if i in self.matches]
            found += [copy.deepcopy(self.matches[i]) for i in self.duplicate_ids if i in ids]
            return httpx.Response(200, json={"matches": found})
        return httpx.Response(404, json={"message": "not found"})

    @property
    def match_requests(self) -> List[httpx.Request]:
        return [r for r in self.requests if "/competitions/" not in r.url.path]


# Fixtures

@pytest.fixture
def config():
    """Config with fast timings and no network credentials."""
    config = Config()
    config.supabase_url = "https://test.supabase.co"
    config.supabase_key = "test-key"
    config.football_data_api_key = "test-token"
    config.football_data_base_url = "https://api.football-data.test/v4"
    config.current_season = SEASON
    config.max_requests_per_minute = 100
    config.rate_limit_period = 60.0
    config.rate_limit_poll_interval = 0.01
    config.response_cache_ttl = 0
    config.retry_backoff_base = 0.01
    config.max_retry_delay = 0.05
    config.rate_limit_wait = 0.01
    config.reconcile_batch_size = 5
    config.log_format = "text"
    return config


@pytest.fixture
def fake_supabase():
    return FakeSupabase()


@pytest.fixture
def db(config, fake_supabase):
    return SupabaseClient(config, client=fake_supabase)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def fake_api():
    return FakeFootballDataAPI()


@pytest.fixture
async def api_client(config, fake_api):
    client = FootballDataClient(config, transport=httpx.MockTransport(fake_api.handler))
    yield client
    await client.close()


@pytest.fixture
def engine(db, api_client, config, clock):
    """Every engine component wired to the fakes."""
    leaderboard = LeaderboardAggregator(db, clock=clock)
    scoring = ScoringService(db, leaderboard, clock=clock)
    reconciler = FixtureReconciler(db, api_client, scoring, config, clock=clock)
    return SimpleNamespace(
        db=db,
        api=api_client,
        leaderboard=leaderboard,
        scoring=scoring,
        reconciler=reconciler,
        recovery=RecoveryScanner(db, reconciler, scoring, config, clock=clock),
        advisor=LiveWindowAdvisor(db, config, clock=clock),
        seasons=SeasonManager(db, api_client, scoring, leaderboard, config),
        predictions=PredictionService(db, config, leaderboard, clock=clock),
        history=RankingHistoryService(db),
    )


_external_ids = itertools.count(1000)


@pytest.fixture
def add_fixture(fake_supabase):
    """Insert a fixture row directly; returns its id."""

    def _add(**overrides) -> str:
        row = {
            "id": str(uuid.uuid4()),
            "external_match_id": str(next(_external_ids)),
            "season": SEASON,
            "gameweek": 1,
            "kickoff": to_iso(NOW - timedelta(hours=3)),
            "home_team_id": "team-home",
            "away_team_id": "team-away",
            "status": "SCHEDULED",
            "home_score": None,
            "away_score": None,
            "points_multiplier": 1,
            "last_reconciled": None,
        }
        for key, value in overrides.items():
            row[key] = to_iso(value) if isinstance(value, datetime) else value
        fake_supabase.insert_row("fixtures", row)
        return row["id"]

    return _add


@pytest.fixture
def add_prediction(fake_supabase):
    """Insert a prediction row directly; returns its id."""

    def _add(user_id, fixture_id, home, away, organization_id="org-1", **overrides) -> str:
        row = {
            "id": str(uuid.uuid4()),
            "user_id": user_id,
            "fixture_id": fixture_id,
            "organization_id": organization_id,
            "season": SEASON,
            "predicted_home_score": home,
            "predicted_away_score": away,
            "points": None,
            "outcome": None,
            "created_at": to_iso(NOW - timedelta(days=1)),
            "updated_at": to_iso(NOW - timedelta(days=1)),
        }
        row.update(overrides)
        fake_supabase.insert_row("predictions", row)
        return row["id"]

    return _add
