"""
Prediction submission rules.

Predictions stay editable until the cutoff before kickoff; after that they
are frozen so scoring always sees what the user committed to.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from config import Config
from database.models import Fixture, Prediction
from database.supabase_client import SupabaseClient
from scoring.leaderboard import LeaderboardAggregator
from utils.errors import DuplicatePredictionError, FixtureNotFoundError, PredictionLockedError
from utils.timeutils import utc_now

logger = logging.getLogger(__name__)


class PredictionService:
    """Accepts user predictions for fixtures that are still open."""

    def __init__(
        self,
        db_client: SupabaseClient,
        config: Config,
        leaderboard: Optional[LeaderboardAggregator] = None,
        clock: Callable = utc_now,
    ):
        self.db_client = db_client
        self.cutoff = timedelta(minutes=config.prediction_cutoff_minutes)
        self.leaderboard = leaderboard or LeaderboardAggregator(db_client, clock=clock)
        self.clock = clock

    def locks_at(self, fixture: Fixture) -> datetime:
        return fixture.kickoff - self.cutoff

    def is_locked(self, fixture: Fixture, now: Optional[datetime] = None) -> bool:
        now = now or self.clock()
        return now >= self.locks_at(fixture) or not fixture.status.is_pre_match

    def submit_prediction(
        self,
        user_id: str,
        fixture_id: str,
        organization_id: str,
        predicted_home: int,
        predicted_away: int,
        allow_update: bool = True,
    ) -> Prediction:
        """
        Create or change a user's prediction for a fixture.

        Args:
            allow_update: Replace an existing prediction; when False a second
                submission is rejected

        Raises:
            ValueError: negative or non-integer scores
            FixtureNotFoundError: unknown fixture id
            PredictionLockedError: the fixture is past its cutoff
            DuplicatePredictionError: a prediction exists and allow_update is False
        """
        for value in (predicted_home, predicted_away):
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ValueError(f"Predicted scores must be non-negative integers, got {value!r}")

        fixture = self.db_client.get_fixture(fixture_id)
        if fixture is None:
            raise FixtureNotFoundError(fixture_id)

        now = self.clock()
        if self.is_locked(fixture, now):
            raise PredictionLockedError(
                f"Predictions for fixture {fixture_id} closed at {self.locks_at(fixture).isoformat()}"
            )

        row = {
            "user_id": user_id,
            "fixture_id": fixture_id,
            "organization_id": organization_id,
            "season": fixture.season,
            "predicted_home_score": predicted_home,
            "predicted_away_score": predicted_away,
        }

        existing = self.db_client.get_prediction(user_id, fixture_id, organization_id)
        if existing is not None and not allow_update:
            raise DuplicatePredictionError(user_id, fixture_id, organization_id)
        if allow_update:
            prediction = self.db_client.upsert_prediction(row)
        else:
            prediction = self.db_client.insert_prediction(row)

        # A replaced prediction leaves the count unchanged
        if existing is None:
            self.leaderboard.refresh_predicted_fixtures(user_id, organization_id, fixture.season)

        logger.info("Prediction saved", extra={
            "user_id": user_id,
            "fixture_id": fixture_id,
            "organization_id": organization_id,
            "prediction": f"{predicted_home}-{predicted_away}"
        })
        return prediction
