"""Unit tests for the shared value types."""

from datetime import datetime, timezone

import pytest

from database.models import (
    Fixture,
    FixtureStatus,
    LeagueTableEntry,
    Prediction,
    PredictionOutcome,
)


class TestFixtureStatus:
    """Tests for FixtureStatus.parse and its groupings."""

    @pytest.mark.parametrize("raw,expected", [
        ("FINISHED", FixtureStatus.FINISHED),
        ("in_play", FixtureStatus.IN_PLAY),
        ("completed", FixtureStatus.FINISHED),
        ("AWARDED", FixtureStatus.FINISHED),
        ("EXTRA_TIME", FixtureStatus.IN_PLAY),
        ("halftime", FixtureStatus.PAUSED),
        ("canceled", FixtureStatus.CANCELLED),
    ])
    def test_parse(self, raw, expected):
        assert FixtureStatus.parse(raw) == expected

    def test_parse_rejects_unknown(self):
        with pytest.raises(ValueError):
            FixtureStatus.parse("abandoned-ish")
        with pytest.raises(ValueError):
            FixtureStatus.parse(None)

    def test_groupings(self):
        assert FixtureStatus.PAUSED.is_live
        assert FixtureStatus.TIMED.is_pre_match
        assert FixtureStatus.POSTPONED.is_terminal
        assert not FixtureStatus.SUSPENDED.is_terminal
        assert not FixtureStatus.FINISHED.is_live


class TestRows:
    """Row conversion."""

    def test_fixture_from_row(self):
        fixture = Fixture.from_row({
            "id": "f1",
            "external_match_id": 12345,
            "season": "2025-26",
            "gameweek": "3",
            "kickoff": "2025-08-30T14:00:00+00:00",
            "home_team_id": "h",
            "away_team_id": "a",
            "status": "completed",
            "home_score": 1,
            "away_score": 0,
            "points_multiplier": None,
            "last_reconciled": None,
        })

        assert fixture.external_match_id == "12345"
        assert fixture.gameweek == 3
        assert fixture.kickoff == datetime(2025, 8, 30, 14, 0, tzinfo=timezone.utc)
        assert fixture.status == FixtureStatus.FINISHED
        assert fixture.points_multiplier == 1
        assert fixture.is_scoreable

    def test_fixture_without_scores_is_not_scoreable(self):
        fixture = Fixture(
            id="f1", external_match_id=None, season="2025-26", gameweek=1,
            kickoff=datetime(2025, 8, 30, tzinfo=timezone.utc),
            home_team_id="h", away_team_id="a",
            status=FixtureStatus.FINISHED, home_score=2,
        )
        assert not fixture.is_scoreable
        assert fixture.to_row()["status"] == "FINISHED"

    def test_prediction_columns(self):
        prediction = Prediction.from_row({
            "id": "p1",
            "user_id": "u",
            "fixture_id": "f",
            "organization_id": "o",
            "season": "2025-26",
            "predicted_home_score": 2,
            "predicted_away_score": 1,
            "points": 0,
            "outcome": "incorrect",
        })

        assert (prediction.predicted_home, prediction.predicted_away) == (2, 1)
        # Zero points is scored, not missing
        assert prediction.is_scored
        assert prediction.outcome == PredictionOutcome.INCORRECT
        assert prediction.to_row()["predicted_home_score"] == 2

    def test_league_entry_rank_is_not_compared(self):
        first = LeagueTableEntry(id="e", user_id="u", organization_id="o", season="s", total_points=4, rank=1)
        second = LeagueTableEntry(id="e", user_id="u", organization_id="o", season="s", total_points=4, rank=2)

        assert first == second
        assert "rank" not in first.to_row()
