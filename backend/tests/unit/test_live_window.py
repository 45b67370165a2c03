"""Unit tests for live-window heuristics."""

from datetime import datetime, timedelta, timezone

import pytest

from database.models import Fixture, FixtureStatus
from refresh.live_window import check_live_games, polling_interval, should_be_live

NOW = datetime(2025, 8, 16, 18, 0, tzinfo=timezone.utc)


def _fixture(fixture_id, status="SCHEDULED", kickoff=NOW, last_reconciled=None):
    return Fixture(
        id=fixture_id,
        external_match_id=fixture_id,
        season="2025-26",
        gameweek=1,
        kickoff=kickoff,
        home_team_id="home",
        away_team_id="away",
        status=FixtureStatus.parse(status),
        last_reconciled=last_reconciled,
    )


class TestShouldBeLive:
    """Tests for should_be_live."""

    @pytest.mark.parametrize("minutes_since_kickoff,expected", [
        (-5, False),
        (0, True),
        (45, True),
        (120, True),
        (121, False),
    ])
    def test_window(self, minutes_since_kickoff, expected):
        kickoff = NOW - timedelta(minutes=minutes_since_kickoff)
        assert should_be_live(kickoff, FixtureStatus.SCHEDULED, NOW) is expected

    @pytest.mark.parametrize("status", ["FINISHED", "POSTPONED", "CANCELLED"])
    def test_terminal_status_is_never_live(self, status):
        assert not should_be_live(NOW - timedelta(minutes=30), status, NOW)


class TestPollingInterval:
    """Tests for polling_interval."""

    @pytest.mark.parametrize("has_live,minutes,expected", [
        (False, None, 300),
        (False, 1, 300),
        (True, None, 15),
        (True, 10, 15),
        (True, 3, 30),
        (True, 1, 60),
    ])
    def test_interval(self, has_live, minutes, expected):
        assert polling_interval(has_live, minutes) == expected


class TestCheckLiveGames:
    """Tests for check_live_games."""

    def test_no_fixtures(self):
        check = check_live_games([], None, NOW)

        assert not check.has_live
        assert not check.should_trigger_update
        assert check.next_check_in == 300

    def test_pre_match_past_kickoff_triggers(self):
        fixtures = [_fixture("a", kickoff=NOW - timedelta(minutes=20), last_reconciled=NOW)]

        check = check_live_games(fixtures, NOW, NOW)

        assert check.has_live
        assert check.should_trigger_update
        assert check.live_fixture_ids == ["a"]

    def test_fresh_live_data_does_not_trigger(self):
        fixtures = [_fixture("a", status="IN_PLAY", kickoff=NOW - timedelta(minutes=20))]

        check = check_live_games(fixtures, NOW - timedelta(minutes=1), NOW)

        assert check.has_live
        assert not check.should_trigger_update
        assert check.next_check_in == 60

    def test_stale_live_data_triggers(self):
        fixtures = [_fixture("a", status="PAUSED", kickoff=NOW - timedelta(minutes=50))]

        check = check_live_games(fixtures, NOW - timedelta(minutes=3), NOW)

        assert check.should_trigger_update
        assert check.next_check_in == 30

    def test_never_reconciled_triggers(self):
        fixtures = [_fixture("a", status="IN_PLAY", kickoff=NOW - timedelta(minutes=50))]

        check = check_live_games(fixtures, None, NOW)

        assert check.should_trigger_update
        assert check.next_check_in == 15

    def test_stale_data_without_live_games_does_not_trigger(self):
        fixtures = [_fixture("a", status="FINISHED", kickoff=NOW - timedelta(minutes=50))]

        check = check_live_games(fixtures, NOW - timedelta(hours=3), NOW)

        assert not check.has_live
        assert not check.should_trigger_update


class TestLiveWindowAdvisor:
    """Tests for the store-backed advisor."""

    def test_reads_live_and_in_window_fixtures(self, engine, add_fixture):
        live = add_fixture(
            status="IN_PLAY",
            kickoff=NOW - timedelta(minutes=30),
            last_reconciled=NOW - timedelta(minutes=1),
        )
        add_fixture(status="FINISHED", home_score=1, away_score=0, kickoff=NOW - timedelta(minutes=100))
        add_fixture(kickoff=NOW + timedelta(hours=2))

        check = engine.advisor.check_live_games()

        assert check.live_fixture_ids == [live]
        assert not check.should_trigger_update

    def test_behind_fixture_triggers(self, engine, add_fixture):
        behind = add_fixture(kickoff=NOW - timedelta(minutes=10))

        check = engine.advisor.check_live_games()

        assert check.live_fixture_ids == [behind]
        assert check.should_trigger_update

    def test_idle(self, engine, add_fixture):
        add_fixture(kickoff=NOW + timedelta(days=1))

        check = engine.advisor.check_live_games()

        assert not check.has_live
        assert check.next_check_in == 300
