"""
Per-gameweek standings history for an organization's league.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Sequence

from database.models import FixtureStatus, PredictionOutcome
from database.supabase_client import SupabaseClient

logger = logging.getLogger(__name__)


def dense_ranks(points: Sequence[int]) -> List[int]:
    """Ranks for values already sorted best-first; equal values share a rank (1, 2, 2, 3)."""
    ranks: List[int] = []
    for position, value in enumerate(points):
        if position == 0:
            ranks.append(1)
        elif value == points[position - 1]:
            ranks.append(ranks[-1])
        else:
            ranks.append(ranks[-1] + 1)
    return ranks


@dataclass
class RankingPoint:
    gameweek: int
    rank: int
    cumulative_points: int
    points: int


@dataclass
class WeeklyPoints:
    gameweek: int
    points: int = 0
    correct_scorelines: int = 0
    correct_outcomes: int = 0
    predictions: int = 0


class RankingHistoryService:
    """Read model over stored predictions; never writes."""

    def __init__(self, db_client: SupabaseClient):
        self.db_client = db_client

    def get_ranking_history(self, organization_id: str, season: str) -> Dict[str, List[RankingPoint]]:
        """
        Rank of every user after each gameweek that has finished fixtures.

        Points accumulate over scored predictions on FINISHED fixtures. Users
        are ordered by cumulative points (desc) then user id; equal points
        share a dense rank (1, 2, 2, 3) and user id only fixes the listing order.

        Returns:
            user_id -> series ordered by gameweek
        """
        fixtures = self.db_client.get_fixtures(season=season, statuses=[FixtureStatus.FINISHED])
        gameweek_of = {fixture.id: fixture.gameweek for fixture in fixtures}
        gameweeks = sorted(set(gameweek_of.values()))

        predictions = self.db_client.get_predictions(organization_id, season)
        users = sorted({prediction.user_id for prediction in predictions})
        weekly: Dict[str, Dict[int, int]] = defaultdict(lambda: defaultdict(int))
        for prediction in predictions:
            gameweek = gameweek_of.get(prediction.fixture_id)
            if gameweek is None or not prediction.is_scored:
                continue
            weekly[prediction.user_id][gameweek] += prediction.points

        history: Dict[str, List[RankingPoint]] = {user_id: [] for user_id in users}
        cumulative = {user_id: 0 for user_id in users}
        for gameweek in gameweeks:
            for user_id in users:
                cumulative[user_id] += weekly[user_id][gameweek]
            ordered = sorted(users, key=lambda user_id: (-cumulative[user_id], user_id))
            ranks = dense_ranks([cumulative[user_id] for user_id in ordered])
            for user_id, rank in zip(ordered, ranks):
                history[user_id].append(RankingPoint(
                    gameweek=gameweek,
                    rank=rank,
                    cumulative_points=cumulative[user_id],
                    points=weekly[user_id][gameweek],
                ))

        logger.debug("Ranking history built", extra={
            "organization_id": organization_id,
            "season": season,
            "users": len(users),
            "gameweeks": len(gameweeks)
        })
        return history

    def get_weekly_points(self, organization_id: str, season: str) -> Dict[str, List[WeeklyPoints]]:
        """Points, correct scorelines/outcomes and prediction count per user per gameweek."""
        gameweek_of = {
            fixture.id: fixture.gameweek
            for fixture in self.db_client.get_fixtures(season=season)
        }
        weeks: Dict[str, Dict[int, WeeklyPoints]] = defaultdict(dict)
        for prediction in self.db_client.get_predictions(organization_id, season):
            gameweek = gameweek_of.get(prediction.fixture_id)
            if gameweek is None:
                continue
            week = weeks[prediction.user_id].setdefault(gameweek, WeeklyPoints(gameweek=gameweek))
            week.predictions += 1
            if prediction.is_scored:
                week.points += prediction.points
                if prediction.outcome == PredictionOutcome.EXACT:
                    week.correct_scorelines += 1
                elif prediction.outcome == PredictionOutcome.OUTCOME:
                    week.correct_outcomes += 1

        return {
            user_id: [by_week[gameweek] for gameweek in sorted(by_week)]
            for user_id, by_week in weeks.items()
        }
