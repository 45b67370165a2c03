"""
Value types shared by every engine component.

Rows come back from Supabase as plain dicts; they are converted here once so
the reconciler, scoring engine and aggregator all work with the same
well-defined shapes.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from utils.timeutils import parse_timestamp, to_iso


class FixtureStatus(str, Enum):
    """Canonical fixture status vocabulary (football-data.org values)."""
    SCHEDULED = "SCHEDULED"
    TIMED = "TIMED"
    IN_PLAY = "IN_PLAY"
    PAUSED = "PAUSED"
    FINISHED = "FINISHED"
    POSTPONED = "POSTPONED"
    SUSPENDED = "SUSPENDED"
    CANCELLED = "CANCELLED"

    @classmethod
    def parse(cls, value: str) -> "FixtureStatus":
        """
        Map an API or legacy status string onto the canonical enum.

        Older rows used lower-case values ('completed', 'in_play', ...).

        Raises:
            ValueError: for an unknown status
        """
        if isinstance(value, cls):
            return value
        if value is None:
            raise ValueError("Fixture status is required")
        normalized = str(value).strip()
        if normalized.upper() in cls.__members__:
            return cls[normalized.upper()]
        legacy = _LEGACY_STATUSES.get(normalized.lower())
        if legacy is None:
            raise ValueError(f"Unknown fixture status: {value!r}")
        return legacy

    @property
    def is_live(self) -> bool:
        return self in LIVE_STATUSES

    @property
    def is_pre_match(self) -> bool:
        return self in PRE_MATCH_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


_LEGACY_STATUSES = {
    "scheduled": FixtureStatus.SCHEDULED,
    "timed": FixtureStatus.TIMED,
    "upcoming": FixtureStatus.SCHEDULED,
    "in_play": FixtureStatus.IN_PLAY,
    "in-play": FixtureStatus.IN_PLAY,
    "extra_time": FixtureStatus.IN_PLAY,
    "penalty_shootout": FixtureStatus.IN_PLAY,
    "live": FixtureStatus.IN_PLAY,
    "paused": FixtureStatus.PAUSED,
    "halftime": FixtureStatus.PAUSED,
    "completed": FixtureStatus.FINISHED,
    "finished": FixtureStatus.FINISHED,
    "awarded": FixtureStatus.FINISHED,
    "postponed": FixtureStatus.POSTPONED,
    "suspended": FixtureStatus.SUSPENDED,
    "cancelled": FixtureStatus.CANCELLED,
    "canceled": FixtureStatus.CANCELLED,
}

LIVE_STATUSES = frozenset({FixtureStatus.IN_PLAY, FixtureStatus.PAUSED})
PRE_MATCH_STATUSES = frozenset({FixtureStatus.SCHEDULED, FixtureStatus.TIMED})
TERMINAL_STATUSES = frozenset({
    FixtureStatus.FINISHED,
    FixtureStatus.POSTPONED,
    FixtureStatus.CANCELLED,
})


class PredictionOutcome(str, Enum):
    """Classification stored next to a prediction's points."""
    EXACT = "exact"  # correct scoreline
    OUTCOME = "outcome"  # correct result, wrong scoreline
    INCORRECT = "incorrect"


@dataclass
class Team:
    id: str
    external_team_id: int
    name: str
    short_name: str

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Team":
        return cls(
            id=row["id"],
            external_team_id=int(row["external_team_id"]),
            name=row.get("name") or "",
            short_name=row.get("short_name") or "",
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "external_team_id": self.external_team_id,
            "name": self.name,
            "short_name": self.short_name,
        }


@dataclass
class Fixture:
    """One real-world match as mirrored in the fixture store."""
    id: str
    external_match_id: Optional[str]
    season: str
    gameweek: int
    kickoff: datetime
    home_team_id: str
    away_team_id: str
    status: FixtureStatus = FixtureStatus.SCHEDULED
    home_score: Optional[int] = None
    away_score: Optional[int] = None
    points_multiplier: int = 1
    last_reconciled: Optional[datetime] = None

    @property
    def has_scores(self) -> bool:
        return self.home_score is not None and self.away_score is not None

    @property
    def is_scoreable(self) -> bool:
        """FINISHED with both scores known."""
        return self.status == FixtureStatus.FINISHED and self.has_scores

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Fixture":
        external = row.get("external_match_id")
        return cls(
            id=row["id"],
            external_match_id=str(external) if external not in (None, "") else None,
            season=row["season"],
            gameweek=int(row["gameweek"]),
            kickoff=parse_timestamp(row["kickoff"]),
            home_team_id=row["home_team_id"],
            away_team_id=row["away_team_id"],
            status=FixtureStatus.parse(row.get("status") or FixtureStatus.SCHEDULED.value),
            home_score=row.get("home_score"),
            away_score=row.get("away_score"),
            points_multiplier=int(row.get("points_multiplier") or 1),
            last_reconciled=parse_timestamp(row.get("last_reconciled")),
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "external_match_id": self.external_match_id,
            "season": self.season,
            "gameweek": self.gameweek,
            "kickoff": to_iso(self.kickoff),
            "home_team_id": self.home_team_id,
            "away_team_id": self.away_team_id,
            "status": self.status.value,
            "home_score": self.home_score,
            "away_score": self.away_score,
            "points_multiplier": self.points_multiplier,
            "last_reconciled": to_iso(self.last_reconciled),
        }


@dataclass
class Prediction:
    """A user's guess for one fixture within one organization."""
    id: str
    user_id: str
    fixture_id: str
    organization_id: str
    season: str
    predicted_home: int
    predicted_away: int
    # None means "not yet scored", which is distinct from 0
    points: Optional[int] = None
    outcome: Optional[PredictionOutcome] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_scored(self) -> bool:
        return self.points is not None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Prediction":
        outcome = row.get("outcome")
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            fixture_id=row["fixture_id"],
            organization_id=row["organization_id"],
            season=row["season"],
            predicted_home=int(row["predicted_home_score"]),
            predicted_away=int(row["predicted_away_score"]),
            points=row.get("points"),
            outcome=PredictionOutcome(outcome) if outcome else None,
            created_at=parse_timestamp(row.get("created_at")),
            updated_at=parse_timestamp(row.get("updated_at")),
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "fixture_id": self.fixture_id,
            "organization_id": self.organization_id,
            "season": self.season,
            "predicted_home_score": self.predicted_home,
            "predicted_away_score": self.predicted_away,
            "points": self.points,
            "outcome": self.outcome.value if self.outcome else None,
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
        }


@dataclass
class LeagueTableEntry:
    """One user's cumulative standings row within an organization and season."""
    id: str
    user_id: str
    organization_id: str
    season: str
    total_points: int = 0
    correct_scorelines: int = 0
    correct_outcomes: int = 0
    predicted_fixtures: int = 0
    completed_fixtures: int = 0
    last_updated: Optional[datetime] = None
    # Read-model only, never persisted
    rank: Optional[int] = field(default=None, compare=False)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "LeagueTableEntry":
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            organization_id=row["organization_id"],
            season=row["season"],
            total_points=int(row.get("total_points") or 0),
            correct_scorelines=int(row.get("correct_scorelines") or 0),
            correct_outcomes=int(row.get("correct_outcomes") or 0),
            predicted_fixtures=int(row.get("predicted_fixtures") or 0),
            completed_fixtures=int(row.get("completed_fixtures") or 0),
            last_updated=parse_timestamp(row.get("last_updated")),
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "organization_id": self.organization_id,
            "season": self.season,
            "total_points": self.total_points,
            "correct_scorelines": self.correct_scorelines,
            "correct_outcomes": self.correct_outcomes,
            "predicted_fixtures": self.predicted_fixtures,
            "completed_fixtures": self.completed_fixtures,
            "last_updated": to_iso(self.last_updated),
        }

    def same_totals(self, other: "LeagueTableEntry") -> bool:
        """Compare aggregates only (ids and timestamps differ between paths)."""
        return (
            self.total_points == other.total_points
            and self.correct_scorelines == other.correct_scorelines
            and self.correct_outcomes == other.correct_outcomes
            and self.predicted_fixtures == other.predicted_fixtures
            and self.completed_fixtures == other.completed_fixtures
        )
