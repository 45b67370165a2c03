"""
Live-window heuristics.

Decides from local fixture state alone (no API calls) whether matches are
live and how soon the next reconcile should run.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional

from config import Config
from database.models import LIVE_STATUSES, PRE_MATCH_STATUSES, Fixture, FixtureStatus
from database.supabase_client import SupabaseClient
from utils.timeutils import utc_now

logger = logging.getLogger(__name__)

LIVE_WINDOW_MINUTES = 120
STALE_UPDATE_MINUTES = 2

IDLE_POLL_SECONDS = 300
URGENT_POLL_SECONDS = 15
STALE_POLL_SECONDS = 30
LIVE_POLL_SECONDS = 60


def should_be_live(
    kickoff: datetime,
    status: FixtureStatus,
    now: datetime,
    window_minutes: int = LIVE_WINDOW_MINUTES,
) -> bool:
    """True between kickoff and the end of the live window unless the status is terminal."""
    if FixtureStatus.parse(status).is_terminal:
        return False
    elapsed = now - kickoff
    return timedelta(0) <= elapsed <= timedelta(minutes=window_minutes)


def polling_interval(has_live: bool, minutes_since_update: Optional[float]) -> int:
    """Seconds until the next live check."""
    if not has_live:
        return IDLE_POLL_SECONDS
    if minutes_since_update is None or minutes_since_update > 5:
        return URGENT_POLL_SECONDS
    if minutes_since_update > STALE_UPDATE_MINUTES:
        return STALE_POLL_SECONDS
    return LIVE_POLL_SECONDS


@dataclass
class LiveGameCheck:
    has_live: bool
    should_trigger_update: bool
    live_fixture_ids: List[str] = field(default_factory=list)
    reason: str = ""
    next_check_in: int = IDLE_POLL_SECONDS


def check_live_games(
    fixtures: Iterable[Fixture],
    last_update: Optional[datetime],
    now: datetime,
    window_minutes: int = LIVE_WINDOW_MINUTES,
    stale_minutes: int = STALE_UPDATE_MINUTES,
) -> LiveGameCheck:
    """
    Combine stored live statuses with kickoff-time estimates.

    A fixture still marked pre-match inside its live window is "time-based
    live": the feed has probably moved on and the store is behind.
    """
    live_ids: List[str] = []
    time_based: List[str] = []
    for fixture in fixtures:
        if fixture.status in LIVE_STATUSES:
            live_ids.append(fixture.id)
        elif fixture.status in PRE_MATCH_STATUSES and should_be_live(
            fixture.kickoff, fixture.status, now, window_minutes
        ):
            live_ids.append(fixture.id)
            time_based.append(fixture.id)

    has_live = bool(live_ids)
    minutes_since = None
    if last_update is not None:
        minutes_since = (now - last_update).total_seconds() / 60

    if not has_live:
        reason = "no live fixtures"
        trigger = False
    elif time_based:
        reason = f"{len(time_based)} fixture(s) past kickoff still marked pre-match"
        trigger = True
    elif minutes_since is None:
        reason = "live fixtures never reconciled"
        trigger = True
    elif minutes_since > stale_minutes:
        reason = f"live data {minutes_since:.1f} min old"
        trigger = True
    else:
        reason = "live data fresh"
        trigger = False

    return LiveGameCheck(
        has_live=has_live,
        should_trigger_update=trigger,
        live_fixture_ids=live_ids,
        reason=reason,
        next_check_in=polling_interval(has_live, minutes_since),
    )


class LiveWindowAdvisor:
    """Runs the live check over the fixture store."""

    def __init__(self, db_client: SupabaseClient, config: Config, clock: Callable = utc_now):
        self.db_client = db_client
        self.window_minutes = config.live_window_minutes
        self.stale_minutes = config.live_update_stale_minutes
        self.clock = clock

    def check_live_games(self) -> LiveGameCheck:
        now = self.clock()
        live = self.db_client.get_fixtures_by_status(LIVE_STATUSES)
        in_window = self.db_client.get_fixtures_by_status(
            PRE_MATCH_STATUSES,
            kickoff_after=now - timedelta(minutes=self.window_minutes),
            kickoff_before=now,
        )
        fixtures = {fixture.id: fixture for fixture in live + in_window}.values()

        stamps = [f.last_reconciled for f in fixtures if f.last_reconciled is not None]
        last_update = max(stamps) if stamps else None

        check = check_live_games(
            fixtures,
            last_update,
            now,
            window_minutes=self.window_minutes,
            stale_minutes=self.stale_minutes,
        )
        logger.debug("Live check", extra={
            "has_live": check.has_live,
            "trigger": check.should_trigger_update,
            "live_fixtures": len(check.live_fixture_ids),
            "reason": check.reason,
            "next_check_in": check.next_check_in
        })
        return check
