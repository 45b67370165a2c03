"""
Season administration: seeding teams and fixtures, wiping a gameweek and
applying points multipliers.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from config import Config
from database.supabase_client import SupabaseClient
from football_data.client import FootballDataClient
from scoring.engine import ScoringService, validate_multiplier
from scoring.leaderboard import LeaderboardAggregator
from utils.errors import FixtureNotFoundError
from utils.timeutils import to_iso

logger = logging.getLogger(__name__)


@dataclass
class SeedResult:
    teams: int = 0
    fixtures_created: int = 0
    fixtures_updated: int = 0
    skipped: int = 0


@dataclass
class WipeResult:
    fixtures_deleted: int = 0
    predictions_deleted: int = 0
    leaderboards_recalculated: int = 0


class SeasonManager:
    """Administrative season operations."""

    def __init__(
        self,
        db_client: SupabaseClient,
        api_client: Optional[FootballDataClient],
        scoring: ScoringService,
        leaderboard: LeaderboardAggregator,
        config: Config,
    ):
        self.db_client = db_client
        self.api_client = api_client
        self.scoring = scoring
        self.leaderboard = leaderboard
        self.config = config

    async def seed_season(self, season: Optional[str] = None) -> SeedResult:
        """
        Load the competition's teams and fixtures for a season.

        New fixtures take the feed's status and score. Existing fixtures only
        get their kickoff and gameweek refreshed; status and score belong to
        the reconciler.
        """
        season = season or self.config.current_season
        result = SeedResult()

        api_teams = await self.api_client.get_teams(season)
        teams = self.db_client.upsert_teams([
            {
                "external_team_id": team.external_id,
                "name": team.name,
                "short_name": team.short_name,
            }
            for team in api_teams
        ])
        result.teams = len(teams)
        team_ids = {team.external_team_id: team.id for team in self.db_client.get_teams()}

        matches = await self.api_client.get_competition_matches(season)
        existing = {
            fixture.external_match_id
            for fixture in self.db_client.get_fixtures(season=season)
            if fixture.external_match_id
        }

        new_rows: List[Dict] = []
        update_rows: List[Dict] = []
        for match in matches:
            home_id = team_ids.get(match.home_team.external_id) if match.home_team else None
            away_id = team_ids.get(match.away_team.external_id) if match.away_team else None
            if not match.matchday or match.kickoff is None or not home_id or not away_id:
                result.skipped += 1
                logger.warning("Skipping match without gameweek, kickoff or known teams", extra={
                    "external_match_id": match.external_id,
                    "matchday": match.matchday
                })
                continue

            row = {
                "external_match_id": match.external_id,
                "season": season,
                "gameweek": match.matchday,
                "kickoff": to_iso(match.kickoff),
                "home_team_id": home_id,
                "away_team_id": away_id,
            }
            if match.external_id in existing:
                update_rows.append(row)
            else:
                row.update({
                    "status": match.status.value,
                    "home_score": match.home_score,
                    "away_score": match.away_score,
                    "points_multiplier": 1,
                    "last_reconciled": None,
                })
                new_rows.append(row)

        # Separate batches so each upsert carries one column set
        result.fixtures_created = len(self.db_client.upsert_fixtures(new_rows))
        result.fixtures_updated = len(self.db_client.upsert_fixtures(update_rows))

        logger.info("Season seeded", extra={
            "season": season,
            "teams": result.teams,
            "fixtures_created": result.fixtures_created,
            "fixtures_updated": result.fixtures_updated,
            "skipped": result.skipped
        })
        return result

    def wipe_gameweek(self, season: str, gameweek: int) -> WipeResult:
        """
        Delete a gameweek's fixtures and their predictions, then rebuild the
        leaderboards that held those predictions.
        """
        result = WipeResult()
        fixture_ids = [fixture.id for fixture in self.db_client.get_fixtures(season=season, gameweek=gameweek)]
        if not fixture_ids:
            logger.info("No fixtures to wipe", extra={"season": season, "gameweek": gameweek})
            return result

        deleted = self.db_client.delete_predictions_for_fixtures(fixture_ids)
        result.predictions_deleted = len(deleted)
        result.fixtures_deleted = self.db_client.delete_fixtures(fixture_ids)

        scopes = sorted({(prediction.organization_id, prediction.season) for prediction in deleted})
        for organization_id, prediction_season in scopes:
            self.leaderboard.recalculate_leaderboard(organization_id, prediction_season)
        result.leaderboards_recalculated = len(scopes)

        logger.warning("Gameweek wiped", extra={
            "season": season,
            "gameweek": gameweek,
            "fixtures_deleted": result.fixtures_deleted,
            "predictions_deleted": result.predictions_deleted,
            "leaderboards_recalculated": result.leaderboards_recalculated
        })
        return result

    def update_multipliers(self, multipliers: Dict[str, int]) -> int:
        """
        Apply fixture_id -> multiplier. Every value is validated and every
        fixture looked up before the first write.

        Returns:
            Number of fixtures whose multiplier changed
        """
        for fixture_id, multiplier in multipliers.items():
            validate_multiplier(multiplier)
        known = {fixture.id for fixture in self.db_client.get_fixtures(fixture_ids=list(multipliers))}
        for fixture_id in multipliers:
            if fixture_id not in known:
                raise FixtureNotFoundError(fixture_id)

        changed = 0
        for fixture_id, multiplier in multipliers.items():
            before = self.db_client.get_fixture(fixture_id)
            self.scoring.apply_multiplier(fixture_id, multiplier)
            if before.points_multiplier != multiplier:
                changed += 1

        logger.info("Multipliers updated", extra={
            "requested": len(multipliers),
            "changed": changed
        })
        return changed
