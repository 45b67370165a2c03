"""
Prediction scoring.

`score()` / `classify()` are the pure rule. `ScoringService` applies it to
every prediction of a finished fixture, writes the results with set
semantics and hands per-user standings deltas to the leaderboard.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from database.models import Fixture, FixtureStatus, Prediction, PredictionOutcome
from database.supabase_client import SupabaseClient
from utils.errors import (
    FixtureNotFoundError,
    InvalidMultiplierError,
    ScoreMismatchError,
)
from utils.timeutils import utc_now

logger = logging.getLogger(__name__)

EXACT_SCORE_POINTS = 3
CORRECT_OUTCOME_POINTS = 1


def _sign(value: int) -> int:
    return (value > 0) - (value < 0)


def validate_multiplier(multiplier) -> int:
    """Return the multiplier if it is an integer >= 1."""
    if isinstance(multiplier, bool) or not isinstance(multiplier, int) or multiplier < 1:
        raise InvalidMultiplierError(f"Points multiplier must be an integer >= 1, got {multiplier!r}")
    return multiplier


def _validate_scores(*scores: int):
    for value in scores:
        if value is None or value < 0:
            raise ValueError(f"Scores must be non-negative integers, got {value!r}")


def classify(
    predicted_home: int,
    predicted_away: int,
    actual_home: int,
    actual_away: int,
) -> PredictionOutcome:
    """Classify a prediction against the actual result."""
    _validate_scores(predicted_home, predicted_away, actual_home, actual_away)
    if predicted_home == actual_home and predicted_away == actual_away:
        return PredictionOutcome.EXACT
    if _sign(predicted_home - predicted_away) == _sign(actual_home - actual_away):
        return PredictionOutcome.OUTCOME
    return PredictionOutcome.INCORRECT


def score(
    predicted_home: int,
    predicted_away: int,
    actual_home: int,
    actual_away: int,
    multiplier: int = 1,
) -> int:
    """
    Points for one prediction.

    Exact scoreline is worth 3, the right result (home win, draw, away win)
    is worth 1, anything else 0; the fixture multiplier scales both.

    Raises:
        ValueError: negative scores or a multiplier below 1
    """
    validate_multiplier(multiplier)
    outcome = classify(predicted_home, predicted_away, actual_home, actual_away)
    if outcome == PredictionOutcome.EXACT:
        return EXACT_SCORE_POINTS * multiplier
    if outcome == PredictionOutcome.OUTCOME:
        return CORRECT_OUTCOME_POINTS * multiplier
    return 0


@dataclass
class StandingsDelta:
    """Change to one (user, organization, season) standings row."""
    user_id: str
    organization_id: str
    season: str
    points: int = 0
    correct_scorelines: int = 0
    correct_outcomes: int = 0
    completed_fixtures: int = 0

    @property
    def key(self) -> Tuple[str, str, str]:
        return (self.user_id, self.organization_id, self.season)

    @property
    def is_zero(self) -> bool:
        return not (
            self.points
            or self.correct_scorelines
            or self.correct_outcomes
            or self.completed_fixtures
        )

    def add(self, other: "StandingsDelta"):
        self.points += other.points
        self.correct_scorelines += other.correct_scorelines
        self.correct_outcomes += other.correct_outcomes
        self.completed_fixtures += other.completed_fixtures


def prediction_delta(
    prediction: Prediction,
    new_points: Optional[int],
    new_outcome: Optional[PredictionOutcome],
) -> StandingsDelta:
    """Difference between a prediction's stored result and a new one (None = unscored)."""
    old_points, old_outcome = prediction.points, prediction.outcome
    return StandingsDelta(
        user_id=prediction.user_id,
        organization_id=prediction.organization_id,
        season=prediction.season,
        points=(new_points or 0) - (old_points or 0),
        correct_scorelines=(
            int(new_outcome == PredictionOutcome.EXACT) - int(old_outcome == PredictionOutcome.EXACT)
        ),
        correct_outcomes=(
            int(new_outcome == PredictionOutcome.OUTCOME) - int(old_outcome == PredictionOutcome.OUTCOME)
        ),
        completed_fixtures=int(new_points is not None) - int(old_points is not None),
    )


def merge_deltas(deltas: List[StandingsDelta]) -> List[StandingsDelta]:
    """Combine deltas per standings row, dropping rows that net to zero."""
    merged: Dict[Tuple[str, str, str], StandingsDelta] = {}
    for delta in deltas:
        current = merged.get(delta.key)
        if current is None:
            merged[delta.key] = StandingsDelta(delta.user_id, delta.organization_id, delta.season)
            current = merged[delta.key]
        current.add(delta)
    return [delta for delta in merged.values() if not delta.is_zero]


@dataclass
class ScoringResult:
    processed: int = 0
    points_allocated: int = 0
    users_updated: int = 0
    newly_scored: int = 0
    deltas: List[StandingsDelta] = field(default_factory=list)


class ScoringService:
    """Scores predictions for finished fixtures and keeps standings in step."""

    def __init__(self, db_client: SupabaseClient, leaderboard, clock: Callable = utc_now):
        self.db_client = db_client
        self.leaderboard = leaderboard
        self.clock = clock

    def process_predictions_for_fixture(
        self,
        fixture_id: str,
        home_score: Optional[int],
        away_score: Optional[int],
    ) -> ScoringResult:
        """
        Score every prediction for a fixture and update standings.

        Safe to call repeatedly: points are set, never added, and standings
        receive only the difference from what was stored before.

        Args:
            fixture_id: Internal fixture id
            home_score: Final home score (None means nothing to score yet)
            away_score: Final away score

        Returns:
            ScoringResult; all zeros when the fixture is not scoreable

        Raises:
            FixtureNotFoundError: unknown fixture id
            ScoreMismatchError: scores differ from the stored result
        """
        fixture = self.db_client.get_fixture(fixture_id)
        if fixture is None:
            raise FixtureNotFoundError(fixture_id)

        if home_score is None or away_score is None:
            logger.info("Skipping scoring, result incomplete", extra={
                "fixture_id": fixture_id,
                "home_score": home_score,
                "away_score": away_score
            })
            return ScoringResult()

        if fixture.status != FixtureStatus.FINISHED:
            logger.debug("Skipping scoring, fixture not finished", extra={
                "fixture_id": fixture_id,
                "status": fixture.status.value
            })
            return ScoringResult()

        if (fixture.home_score, fixture.away_score) != (home_score, away_score):
            raise ScoreMismatchError(
                f"Fixture {fixture_id} stored result is "
                f"{fixture.home_score}-{fixture.away_score}, got {home_score}-{away_score}"
            )

        return self._score_fixture(fixture)

    def _score_fixture(self, fixture: Fixture) -> ScoringResult:
        multiplier = validate_multiplier(fixture.points_multiplier)
        predictions = self.db_client.get_predictions_for_fixture(fixture.id)
        result = ScoringResult()
        deltas: List[StandingsDelta] = []

        for prediction in predictions:
            outcome = classify(
                prediction.predicted_home,
                prediction.predicted_away,
                fixture.home_score,
                fixture.away_score,
            )
            points = score(
                prediction.predicted_home,
                prediction.predicted_away,
                fixture.home_score,
                fixture.away_score,
                multiplier,
            )
            result.processed += 1
            result.points_allocated += points

            if prediction.points == points and prediction.outcome == outcome:
                continue

            if prediction.points is None:
                result.newly_scored += 1
            deltas.append(prediction_delta(prediction, points, outcome))
            self.db_client.update_prediction_score(prediction.id, points, outcome)

        result.deltas = merge_deltas(deltas)
        result.users_updated = len(result.deltas)

        # Standings only move once every prediction for the fixture is written
        if result.deltas:
            self.leaderboard.apply_fixture_result(fixture.id, result.deltas)

        logger.info("Fixture scored", extra={
            "fixture_id": fixture.id,
            "score": f"{fixture.home_score}-{fixture.away_score}",
            "multiplier": multiplier,
            "processed": result.processed,
            "newly_scored": result.newly_scored,
            "points_allocated": result.points_allocated,
            "users_updated": result.users_updated
        })
        return result

    def retract_fixture(self, fixture_id: str) -> ScoringResult:
        """
        Undo scoring for a fixture that is no longer FINISHED.

        Points return to null (unscored) and standings lose what the fixture
        contributed.
        """
        fixture = self.db_client.get_fixture(fixture_id)
        if fixture is None:
            raise FixtureNotFoundError(fixture_id)

        result = ScoringResult()
        deltas: List[StandingsDelta] = []
        for prediction in self.db_client.get_predictions_for_fixture(fixture_id):
            if not prediction.is_scored:
                continue
            deltas.append(prediction_delta(prediction, None, None))
            self.db_client.update_prediction_score(prediction.id, None, None)
            result.processed += 1

        result.deltas = merge_deltas(deltas)
        result.users_updated = len(result.deltas)
        if result.deltas:
            self.leaderboard.retract_fixture_result(fixture_id, result.deltas)

        logger.warning("Fixture scoring retracted", extra={
            "fixture_id": fixture_id,
            "status": fixture.status.value,
            "retracted": result.processed,
            "users_updated": result.users_updated
        })
        return result

    def apply_multiplier(self, fixture_id: str, multiplier: int) -> Optional[ScoringResult]:
        """
        Set a fixture's points multiplier, re-scoring it if already finished.

        Raises:
            InvalidMultiplierError: multiplier is not an integer >= 1
            FixtureNotFoundError: unknown fixture id
        """
        validate_multiplier(multiplier)
        fixture = self.db_client.get_fixture(fixture_id)
        if fixture is None:
            raise FixtureNotFoundError(fixture_id)
        if fixture.points_multiplier == multiplier:
            return None

        fixture = self.db_client.update_fixture(fixture_id, {"points_multiplier": multiplier})
        logger.info("Multiplier updated", extra={
            "fixture_id": fixture_id,
            "multiplier": multiplier
        })
        if fixture is not None and fixture.is_scoreable:
            return self._score_fixture(fixture)
        return None

    def record_result(self, fixture_id: str, home_score: int, away_score: int) -> ScoringResult:
        """Manually enter a final result and score the fixture."""
        _validate_scores(home_score, away_score)
        fixture = self.db_client.get_fixture(fixture_id)
        if fixture is None:
            raise FixtureNotFoundError(fixture_id)

        self.db_client.update_fixture(fixture_id, {
            "status": FixtureStatus.FINISHED,
            "home_score": home_score,
            "away_score": away_score,
            "last_reconciled": self.clock(),
        })
        logger.info("Result recorded manually", extra={
            "fixture_id": fixture_id,
            "previous_status": fixture.status.value,
            "score": f"{home_score}-{away_score}"
        })
        return self.process_predictions_for_fixture(fixture_id, home_score, away_score)
