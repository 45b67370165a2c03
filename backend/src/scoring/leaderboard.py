"""
League table aggregation.

Standings rows are only written here. The incremental path applies deltas
from the scoring engine; the recompute path rebuilds rows from stored
prediction results and must agree with it.
"""

import logging
import uuid
from collections import defaultdict
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from database.models import LeagueTableEntry, PredictionOutcome
from database.supabase_client import SupabaseClient
from utils.errors import FixtureNotFinishedError, FixtureNotFoundError, InvariantViolationError
from utils.timeutils import utc_now

logger = logging.getLogger(__name__)


def competition_ranks(points: Sequence[int]) -> List[int]:
    """
    Ranks for values already sorted best-first; equal values share a rank
    and the next distinct value skips ahead (1, 2, 2, 4).
    """
    ranks: List[int] = []
    for position, value in enumerate(points):
        if position > 0 and value == points[position - 1]:
            ranks.append(ranks[-1])
        else:
            ranks.append(position + 1)
    return ranks


def table_sort_key(entry: LeagueTableEntry) -> Tuple[int, int, int, str]:
    return (
        -entry.total_points,
        -entry.correct_scorelines,
        -entry.correct_outcomes,
        entry.user_id,
    )


def check_entry(entry: LeagueTableEntry):
    """Raise if a standings row breaks its counting invariants."""
    counters = (
        entry.correct_scorelines,
        entry.correct_outcomes,
        entry.completed_fixtures,
        entry.predicted_fixtures,
    )
    if any(value < 0 for value in counters):
        raise InvariantViolationError(
            f"Negative standings counter for user {entry.user_id} in {entry.organization_id}"
        )
    if entry.correct_scorelines + entry.correct_outcomes > entry.completed_fixtures:
        raise InvariantViolationError(
            f"User {entry.user_id} in {entry.organization_id} has more correct "
            f"predictions than completed fixtures"
        )


class LeaderboardAggregator:
    """Maintains league_table rows per user, organization and season."""

    def __init__(self, db_client: SupabaseClient, clock: Callable = utc_now):
        self.db_client = db_client
        self.clock = clock

    def apply_fixture_result(self, fixture_id: str, deltas) -> int:
        """
        Apply standings deltas produced by scoring one fixture.

        Returns:
            Number of standings rows written

        Raises:
            FixtureNotFoundError: unknown fixture id
            FixtureNotFinishedError: the fixture is not durably FINISHED with scores
        """
        fixture = self.db_client.get_fixture(fixture_id)
        if fixture is None:
            raise FixtureNotFoundError(fixture_id)
        if not fixture.is_scoreable:
            raise FixtureNotFinishedError(fixture_id, fixture.status.value)
        return self._apply_deltas(fixture_id, deltas)

    def retract_fixture_result(self, fixture_id: str, deltas) -> int:
        """Apply the negative deltas of a fixture that left FINISHED."""
        return self._apply_deltas(fixture_id, deltas)

    def _apply_deltas(self, fixture_id: str, deltas) -> int:
        now = self.clock()
        entries: List[LeagueTableEntry] = []
        for delta in deltas:
            entry = self.db_client.get_league_table_entry(
                delta.user_id, delta.organization_id, delta.season
            )
            if entry is None:
                entry = LeagueTableEntry(
                    id=str(uuid.uuid4()),
                    user_id=delta.user_id,
                    organization_id=delta.organization_id,
                    season=delta.season,
                )
            entry.total_points += delta.points
            entry.correct_scorelines += delta.correct_scorelines
            entry.correct_outcomes += delta.correct_outcomes
            entry.completed_fixtures += delta.completed_fixtures
            entry.predicted_fixtures = self.db_client.count_predictions(
                delta.user_id, delta.organization_id, delta.season
            )
            entry.last_updated = now
            check_entry(entry)
            entries.append(entry)

        # Checked in full before anything is written
        self.db_client.upsert_league_table_entries(entries)
        logger.debug("Standings updated", extra={
            "fixture_id": fixture_id,
            "entries": len(entries)
        })
        return len(entries)

    def refresh_predicted_fixtures(
        self,
        user_id: str,
        organization_id: str,
        season: str,
    ) -> Optional[LeagueTableEntry]:
        """
        Bring a standings row's prediction count up to date after the user
        predicts another fixture. Users without a row are left alone; their
        row appears on their first scored fixture.
        """
        entry = self.db_client.get_league_table_entry(user_id, organization_id, season)
        if entry is None:
            return None
        count = self.db_client.count_predictions(user_id, organization_id, season)
        if entry.predicted_fixtures == count:
            return entry
        entry.predicted_fixtures = count
        entry.last_updated = self.clock()
        check_entry(entry)
        self.db_client.upsert_league_table_entries([entry])
        return entry

    def compute_leaderboard(self, organization_id: str, season: str) -> Dict[str, LeagueTableEntry]:
        """Build standings from stored prediction results without writing them."""
        entries: Dict[str, LeagueTableEntry] = {}
        scored_users = set()
        predicted: Dict[str, int] = defaultdict(int)

        for prediction in self.db_client.get_predictions(organization_id, season):
            predicted[prediction.user_id] += 1
            if not prediction.is_scored:
                continue
            scored_users.add(prediction.user_id)
            entry = entries.setdefault(prediction.user_id, LeagueTableEntry(
                id="",
                user_id=prediction.user_id,
                organization_id=organization_id,
                season=season,
            ))
            entry.total_points += prediction.points
            entry.completed_fixtures += 1
            if prediction.outcome == PredictionOutcome.EXACT:
                entry.correct_scorelines += 1
            elif prediction.outcome == PredictionOutcome.OUTCOME:
                entry.correct_outcomes += 1

        # Users with an existing row keep it even when nothing of theirs is scored any more
        for stored in self.db_client.get_league_table_entries(organization_id, season):
            entries.setdefault(stored.user_id, LeagueTableEntry(
                id=stored.id,
                user_id=stored.user_id,
                organization_id=organization_id,
                season=season,
            ))
            entries[stored.user_id].id = stored.id

        for user_id, entry in entries.items():
            entry.predicted_fixtures = predicted.get(user_id, 0)
            if not entry.id:
                entry.id = str(uuid.uuid4())
        return entries

    def recalculate_leaderboard(self, organization_id: str, season: str) -> List[LeagueTableEntry]:
        """
        Rebuild every standings row for an organization and season from
        stored prediction results. Used for repair and after week wipes.
        """
        entries = list(self.compute_leaderboard(organization_id, season).values())
        now = self.clock()
        for entry in entries:
            entry.last_updated = now
            check_entry(entry)
        self.db_client.upsert_league_table_entries(entries)
        logger.info("Leaderboard recalculated", extra={
            "organization_id": organization_id,
            "season": season,
            "entries": len(entries)
        })
        return sorted(entries, key=table_sort_key)

    def get_league_table(self, organization_id: str, season: str) -> List[LeagueTableEntry]:
        """
        Standings ordered by points, then correct scorelines, then correct
        outcomes (all descending), then user id. Equal points share a rank.
        """
        entries = sorted(
            self.db_client.get_league_table_entries(organization_id, season),
            key=table_sort_key,
        )
        ranks = competition_ranks([entry.total_points for entry in entries])
        for entry, rank in zip(entries, ranks):
            entry.rank = rank
        return entries

    def verify_leaderboard(self, organization_id: str, season: str) -> List[str]:
        """
        Compare stored standings with a recompute.

        Returns:
            User ids whose stored row is missing or differs
        """
        expected = self.compute_leaderboard(organization_id, season)
        stored = {
            entry.user_id: entry
            for entry in self.db_client.get_league_table_entries(organization_id, season)
        }
        mismatched = []
        for user_id, entry in expected.items():
            current = stored.get(user_id)
            if current is None:
                # A user who predicted but has nothing scored has no row yet
                if entry.completed_fixtures == 0:
                    continue
                mismatched.append(user_id)
            elif not current.same_totals(entry):
                mismatched.append(user_id)

        if mismatched:
            logger.warning("Leaderboard mismatch", extra={
                "organization_id": organization_id,
                "season": season,
                "users": mismatched
            })
        return sorted(mismatched)
