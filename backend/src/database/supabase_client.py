"""
Supabase client for fixture store operations.

Wraps the PostgREST query builder with domain methods that take and return
the value types in `database.models`. Queries select only the columns and
rows each caller needs.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from postgrest.exceptions import APIError
from supabase import Client, create_client

from config import Config
from database.models import (
    Fixture,
    FixtureStatus,
    LeagueTableEntry,
    Prediction,
    PredictionOutcome,
    Team,
)
from utils.errors import DuplicatePredictionError
from utils.timeutils import to_iso, utc_now

logger = logging.getLogger(__name__)

# PostgREST URLs get long quickly with in_() filters
IN_FILTER_CHUNK = 100

UNIQUE_VIOLATION = "23505"

# Rows per request; PostgREST caps responses at its max-rows setting (1000 by default)
PAGE_SIZE = 1000


def _chunks(values: Sequence[Any], size: int = IN_FILTER_CHUNK) -> Iterable[List[Any]]:
    values = list(values)
    for start in range(0, len(values), size):
        yield values[start:start + size]


def _status_values(statuses: Iterable[FixtureStatus]) -> List[str]:
    return [FixtureStatus.parse(status).value for status in statuses]


class SupabaseClient:
    """Client for interacting with the Supabase fixture store."""

    def __init__(self, config: Config, client: Optional[Client] = None):
        self.config = config
        self.page_size = PAGE_SIZE
        self.client: Optional[Client] = client
        if self.client is None:
            self._initialize_client()

    def _initialize_client(self):
        """Initialize Supabase client."""
        if not self.config.supabase_url or not self.config.supabase_key:
            raise ValueError("Supabase URL and key are required")

        # Use service key if available for admin operations, otherwise use anon key
        key = self.config.supabase_service_key or self.config.supabase_key

        self.client = create_client(
            self.config.supabase_url,
            key
        )

        logger.info("Initialized Supabase client", extra={
            "url": self.config.supabase_url,
            "using_service_key": bool(self.config.supabase_service_key)
        })

    def _fetch_all(self, build_query: Callable[[], Any]) -> List[Dict[str, Any]]:
        """
        Fetch every row of a select, paging past the server's row cap.

        build_query must return a fresh query with a stable order on each
        call. Paging stops at the first empty page, so a server cap below
        PAGE_SIZE still yields every row.
        """
        rows: List[Dict[str, Any]] = []
        offset = 0
        while True:
            page = build_query().range(offset, offset + self.page_size - 1).execute().data or []
            if not page:
                break
            rows.extend(page)
            offset += len(page)
        return rows

    # Teams

    def get_teams(self) -> List[Team]:
        rows = self._fetch_all(lambda: self.client.table("teams").select("*").order("id"))
        return [Team.from_row(row) for row in rows]

    def upsert_teams(self, teams: List[Dict[str, Any]]) -> List[Team]:
        """
        Upsert teams keyed by external_team_id.

        Rows without an id keep the id already stored for that external team.
        """
        if not teams:
            return []
        existing = {team.external_team_id: team.id for team in self.get_teams()}
        rows = []
        for team in teams:
            row = dict(team)
            row.setdefault("id", existing.get(int(row["external_team_id"])) or str(uuid.uuid4()))
            rows.append(row)
        result = self.client.table("teams").upsert(
            rows,
            on_conflict="external_team_id"
        ).execute()
        return [Team.from_row(row) for row in result.data or []]

    # Fixtures

    def get_fixture(self, fixture_id: str) -> Optional[Fixture]:
        result = (
            self.client.table("fixtures")
            .select("*")
            .eq("id", fixture_id)
            .limit(1)
            .execute()
        )
        if not result.data:
            return None
        return Fixture.from_row(result.data[0])

    def get_fixtures(
        self,
        season: Optional[str] = None,
        gameweek: Optional[int] = None,
        statuses: Optional[Iterable[FixtureStatus]] = None,
        fixture_ids: Optional[Iterable[str]] = None,
    ) -> List[Fixture]:
        """
        Get fixtures with optional filtering, ordered by kickoff.

        Args:
            season: Filter by season tag
            gameweek: Filter by gameweek
            statuses: Only fixtures in these statuses
            fixture_ids: Only these fixture ids
        """
        if fixture_ids is not None:
            fixtures: List[Fixture] = []
            for chunk in _chunks(fixture_ids):
                query = self.client.table("fixtures").select("*").in_("id", chunk)
                if season is not None:
                    query = query.eq("season", season)
                fixtures.extend(Fixture.from_row(row) for row in query.execute().data or [])
            if statuses is not None:
                wanted = set(_status_values(statuses))
                fixtures = [f for f in fixtures if f.status.value in wanted]
            if gameweek is not None:
                fixtures = [f for f in fixtures if f.gameweek == gameweek]
            return sorted(fixtures, key=lambda f: f.kickoff)

        status_values = _status_values(statuses) if statuses is not None else None

        def build_query():
            query = self.client.table("fixtures").select("*")
            if season is not None:
                query = query.eq("season", season)
            if gameweek is not None:
                query = query.eq("gameweek", gameweek)
            if status_values is not None:
                query = query.in_("status", status_values)
            return query.order("kickoff").order("id")

        return [Fixture.from_row(row) for row in self._fetch_all(build_query)]

    def get_fixtures_by_status(
        self,
        statuses: Iterable[FixtureStatus],
        kickoff_after: Optional[datetime] = None,
        kickoff_before: Optional[datetime] = None,
        limit: Optional[int] = None,
        descending: bool = False,
    ) -> List[Fixture]:
        """
        Get fixtures in the given statuses within an optional kickoff window.

        Bounds are inclusive. Results are ordered by kickoff.
        """
        status_values = _status_values(statuses)

        def build_query():
            query = (
                self.client.table("fixtures")
                .select("*")
                .in_("status", status_values)
            )
            if kickoff_after is not None:
                query = query.gte("kickoff", to_iso(kickoff_after))
            if kickoff_before is not None:
                query = query.lte("kickoff", to_iso(kickoff_before))
            return query.order("kickoff", desc=descending).order("id")

        if limit:
            rows = build_query().limit(limit).execute().data or []
        else:
            rows = self._fetch_all(build_query)
        return [Fixture.from_row(row) for row in rows]

    def get_finished_fixtures_missing_scores(self, kickoff_after: datetime) -> List[Fixture]:
        """FINISHED fixtures since kickoff_after with at least one null score."""
        fixtures: Dict[str, Fixture] = {}
        for column in ("home_score", "away_score"):
            rows = self._fetch_all(lambda: (
                self.client.table("fixtures")
                .select("*")
                .eq("status", FixtureStatus.FINISHED.value)
                .gte("kickoff", to_iso(kickoff_after))
                .is_(column, "null")
                .order("id")
            ))
            for row in rows:
                fixtures[row["id"]] = Fixture.from_row(row)
        return sorted(fixtures.values(), key=lambda f: f.kickoff)

    def upsert_fixtures(self, fixtures: List[Dict[str, Any]]) -> List[Fixture]:
        """
        Upsert fixtures keyed by external_match_id.

        Rows without an id reuse the stored id for that external match.
        """
        if not fixtures:
            return []
        external_ids = [str(row["external_match_id"]) for row in fixtures]
        existing: Dict[str, str] = {}
        for chunk in _chunks(external_ids):
            result = (
                self.client.table("fixtures")
                .select("id, external_match_id")
                .in_("external_match_id", chunk)
                .execute()
            )
            existing.update({
                str(row["external_match_id"]): row["id"] for row in result.data or []
            })

        rows = []
        for fixture in fixtures:
            row = dict(fixture)
            row["external_match_id"] = str(row["external_match_id"])
            row.setdefault("id", existing.get(row["external_match_id"]) or str(uuid.uuid4()))
            rows.append(row)

        result = self.client.table("fixtures").upsert(
            rows,
            on_conflict="external_match_id"
        ).execute()
        return [Fixture.from_row(row) for row in result.data or []]

    def update_fixture(self, fixture_id: str, fields: Dict[str, Any]) -> Optional[Fixture]:
        """Apply a partial update to one fixture in a single write."""
        payload = dict(fields)
        if isinstance(payload.get("status"), FixtureStatus):
            payload["status"] = payload["status"].value
        for key in ("kickoff", "last_reconciled"):
            if isinstance(payload.get(key), datetime):
                payload[key] = to_iso(payload[key])
        result = self.client.table("fixtures").update(payload).eq("id", fixture_id).execute()
        if not result.data:
            return None
        return Fixture.from_row(result.data[0])

    def touch_fixtures(self, fixture_ids: Iterable[str], reconciled_at: datetime):
        """Stamp last_reconciled on fixtures fetched without a real change."""
        for chunk in _chunks(list(fixture_ids)):
            self.client.table("fixtures").update(
                {"last_reconciled": to_iso(reconciled_at)}
            ).in_("id", chunk).execute()

    def delete_fixtures(self, fixture_ids: Iterable[str]) -> int:
        deleted = 0
        for chunk in _chunks(list(fixture_ids)):
            result = self.client.table("fixtures").delete().in_("id", chunk).execute()
            deleted += len(result.data or [])
        return deleted

    # Predictions

    def get_predictions_for_fixture(self, fixture_id: str) -> List[Prediction]:
        rows = self._fetch_all(lambda: (
            self.client.table("predictions")
            .select("*")
            .eq("fixture_id", fixture_id)
            .order("id")
        ))
        return [Prediction.from_row(row) for row in rows]

    def get_predictions_for_fixtures(
        self,
        fixture_ids: Iterable[str],
        unscored_only: bool = False,
    ) -> List[Prediction]:
        predictions: List[Prediction] = []
        for chunk in _chunks(list(fixture_ids)):
            def build_query():
                query = self.client.table("predictions").select("*").in_("fixture_id", chunk)
                if unscored_only:
                    query = query.is_("points", "null")
                return query.order("id")

            predictions.extend(Prediction.from_row(row) for row in self._fetch_all(build_query))
        return predictions

    def get_prediction(
        self,
        user_id: str,
        fixture_id: str,
        organization_id: str,
    ) -> Optional[Prediction]:
        result = (
            self.client.table("predictions")
            .select("*")
            .eq("user_id", user_id)
            .eq("fixture_id", fixture_id)
            .eq("organization_id", organization_id)
            .limit(1)
            .execute()
        )
        if not result.data:
            return None
        return Prediction.from_row(result.data[0])

    def get_predictions(
        self,
        organization_id: str,
        season: str,
        scored_only: bool = False,
        user_id: Optional[str] = None,
    ) -> List[Prediction]:
        """Predictions for an organization and season, optionally one user's."""

        def build_query():
            query = (
                self.client.table("predictions")
                .select("*")
                .eq("organization_id", organization_id)
                .eq("season", season)
            )
            if user_id is not None:
                query = query.eq("user_id", user_id)
            if scored_only:
                query = query.not_.is_("points", "null")
            return query.order("id")

        return [Prediction.from_row(row) for row in self._fetch_all(build_query)]

    def count_predictions(self, user_id: str, organization_id: str, season: str) -> int:
        """Number of fixtures the user has predicted in this organization and season."""
        result = (
            self.client.table("predictions")
            .select("id", count="exact")
            .eq("user_id", user_id)
            .eq("organization_id", organization_id)
            .eq("season", season)
            .execute()
        )
        if result.count is not None:
            return result.count
        return len(result.data or [])

    def insert_prediction(self, prediction: Dict[str, Any]) -> Prediction:
        """
        Insert a new prediction.

        Raises:
            DuplicatePredictionError: the (user, fixture, organization) key exists
        """
        row = dict(prediction)
        row.setdefault("id", str(uuid.uuid4()))
        now = to_iso(utc_now())
        row.setdefault("created_at", now)
        row.setdefault("updated_at", now)
        try:
            result = self.client.table("predictions").insert(row).execute()
        except APIError as e:
            if e.code == UNIQUE_VIOLATION:
                raise DuplicatePredictionError(
                    row["user_id"], row["fixture_id"], row["organization_id"]
                ) from e
            raise
        return Prediction.from_row(result.data[0])

    def upsert_prediction(self, prediction: Dict[str, Any]) -> Prediction:
        """Insert or replace the predicted score for (user, fixture, organization)."""
        row = dict(prediction)
        existing = self.get_prediction(row["user_id"], row["fixture_id"], row["organization_id"])
        now = to_iso(utc_now())
        if existing is not None:
            row["id"] = existing.id
            row["created_at"] = to_iso(existing.created_at) or now
        else:
            row.setdefault("id", str(uuid.uuid4()))
            row.setdefault("created_at", now)
        row["updated_at"] = now
        result = self.client.table("predictions").upsert(
            row,
            on_conflict="user_id,fixture_id,organization_id"
        ).execute()
        return Prediction.from_row(result.data[0])

    def update_prediction_score(
        self,
        prediction_id: str,
        points: Optional[int],
        outcome: Optional[PredictionOutcome],
    ):
        """Set (never increment) a prediction's points and classification."""
        self.client.table("predictions").update({
            "points": points,
            "outcome": outcome.value if outcome else None,
            "updated_at": to_iso(utc_now()),
        }).eq("id", prediction_id).execute()

    def delete_predictions_for_fixtures(self, fixture_ids: Iterable[str]) -> List[Prediction]:
        """Delete predictions for the fixtures and return the deleted rows."""
        deleted: List[Prediction] = []
        for chunk in _chunks(list(fixture_ids)):
            result = self.client.table("predictions").delete().in_("fixture_id", chunk).execute()
            deleted.extend(Prediction.from_row(row) for row in result.data or [])
        return deleted

    def get_prediction_scopes(self, season: str) -> Set[Tuple[str, str]]:
        """Distinct (organization_id, season) pairs that hold predictions."""
        rows = self._fetch_all(lambda: (
            self.client.table("predictions")
            .select("id, organization_id, season")
            .eq("season", season)
            .order("id")
        ))
        return {(row["organization_id"], row["season"]) for row in rows}

    # League table

    def get_league_table_entries(self, organization_id: str, season: str) -> List[LeagueTableEntry]:
        rows = self._fetch_all(lambda: (
            self.client.table("league_table")
            .select("*")
            .eq("organization_id", organization_id)
            .eq("season", season)
            .order("id")
        ))
        return [LeagueTableEntry.from_row(row) for row in rows]

    def get_league_table_entry(
        self,
        user_id: str,
        organization_id: str,
        season: str,
    ) -> Optional[LeagueTableEntry]:
        result = (
            self.client.table("league_table")
            .select("*")
            .eq("user_id", user_id)
            .eq("organization_id", organization_id)
            .eq("season", season)
            .limit(1)
            .execute()
        )
        if not result.data:
            return None
        return LeagueTableEntry.from_row(result.data[0])

    def upsert_league_table_entries(self, entries: List[LeagueTableEntry]):
        """Write standings rows keyed by (user, organization, season)."""
        if not entries:
            return []
        result = self.client.table("league_table").upsert(
            [entry.to_row() for entry in entries],
            on_conflict="user_id,organization_id,season"
        ).execute()
        return result.data

    def delete_league_table_entries(self, organization_id: str, season: str, user_ids: Iterable[str]):
        for chunk in _chunks(list(user_ids)):
            (
                self.client.table("league_table")
                .delete()
                .eq("organization_id", organization_id)
                .eq("season", season)
                .in_("user_id", chunk)
                .execute()
            )
