"""
Fixture reconciliation.

Pulls the current state of candidate fixtures from football-data.org and
folds it into the fixture store, scoring fixtures that reach FINISHED and
retracting scores of fixtures that leave it.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from config import Config
from database.models import (
    LIVE_STATUSES,
    PRE_MATCH_STATUSES,
    Fixture,
    FixtureStatus,
)
from database.supabase_client import SupabaseClient
from football_data.client import (
    ApiMatch,
    FootballDataAPIError,
    FootballDataClient,
    FootballDataRateLimitError,
)
from scoring.engine import ScoringService
from utils.errors import EngineError
from utils.timeutils import utc_now

logger = logging.getLogger(__name__)

LIVE_PRIORITY = 3
DEFAULT_PRIORITY = 2


@dataclass
class ReconcileResult:
    updated: int = 0
    live: int = 0
    recently_completed: int = 0
    potentially_missed: int = 0
    upcoming: int = 0
    checked: int = 0
    scored: int = 0
    retracted: int = 0
    unlinked: int = 0
    rate_limited: int = 0
    failed: int = 0
    skipped: Optional[str] = None
    finished_fixture_ids: List[str] = field(default_factory=list)


@dataclass
class CandidateSet:
    live: List[Fixture] = field(default_factory=list)
    upcoming: List[Fixture] = field(default_factory=list)
    recently_completed: List[Fixture] = field(default_factory=list)
    potentially_missed: List[Fixture] = field(default_factory=list)

    def all(self) -> List[Fixture]:
        seen: Dict[str, Fixture] = {}
        for fixture in self.live + self.upcoming + self.recently_completed + self.potentially_missed:
            seen.setdefault(fixture.id, fixture)
        return list(seen.values())

    @property
    def is_empty(self) -> bool:
        return not (self.live or self.upcoming or self.recently_completed or self.potentially_missed)


def is_real_change(fixture: Fixture, match: ApiMatch) -> bool:
    """Status differs, or the API reports a score that differs from the stored one."""
    if fixture.status != match.status:
        return True
    if match.home_score is not None and match.home_score != fixture.home_score:
        return True
    if match.away_score is not None and match.away_score != fixture.away_score:
        return True
    return False


class FixtureReconciler:
    """Keeps stored fixtures in step with the external match feed."""

    def __init__(
        self,
        db_client: SupabaseClient,
        api_client: FootballDataClient,
        scoring: ScoringService,
        config: Config,
        clock: Callable = utc_now,
    ):
        self.db_client = db_client
        self.api_client = api_client
        self.scoring = scoring
        self.config = config
        self.clock = clock

        self._in_progress = False
        self._last_full_pass: Optional[datetime] = None
        self._last_live_pass: Optional[datetime] = None
        self._cached_result: Optional[ReconcileResult] = None
        self._cached_at: Optional[datetime] = None

    @property
    def in_progress(self) -> bool:
        return self._in_progress

    def select_candidates(self, now: Optional[datetime] = None) -> CandidateSet:
        """
        Fixtures worth asking the API about, from local state only.

        Categories (each capped): live; pre-match kicking off within the
        upcoming window (or kicked off within the missed-transition window);
        recently FINISHED with a stale reconcile stamp; pre-match long past
        kickoff.
        """
        now = now or self.clock()
        config = self.config
        candidates = CandidateSet()

        candidates.live = self.db_client.get_fixtures_by_status(
            LIVE_STATUSES,
            limit=config.live_candidate_cap,
        )

        missed_after = now - timedelta(hours=config.missed_transition_hours)
        candidates.upcoming = self.db_client.get_fixtures_by_status(
            PRE_MATCH_STATUSES,
            kickoff_after=missed_after,
            kickoff_before=now + timedelta(minutes=config.upcoming_window_minutes),
            limit=config.upcoming_candidate_cap,
        )

        stale_before = now - timedelta(hours=config.stale_finished_hours)
        finished = self.db_client.get_fixtures_by_status(
            [FixtureStatus.FINISHED],
            kickoff_after=now - timedelta(days=config.missed_transition_max_days),
            kickoff_before=now,
        )
        candidates.recently_completed = [
            fixture for fixture in finished
            if fixture.last_reconciled is None or fixture.last_reconciled < stale_before
        ][:config.finished_candidate_cap]

        candidates.potentially_missed = [
            fixture for fixture in self.db_client.get_fixtures_by_status(
                PRE_MATCH_STATUSES,
                kickoff_after=now - timedelta(days=config.missed_transition_max_days),
                kickoff_before=missed_after,
                limit=config.missed_candidate_cap + 1,
            )
            if fixture.kickoff < missed_after
        ][:config.missed_candidate_cap]

        return candidates

    def needs_reconciliation(self, now: Optional[datetime] = None) -> bool:
        return not self.select_candidates(now).is_empty

    def _cooldown_skip(self, fixture_ids, now: datetime) -> Optional[str]:
        if fixture_ids is None:
            if self._cached_result is not None and self._cached_at is not None:
                if (now - self._cached_at).total_seconds() < self.config.result_cache_ttl_seconds:
                    return "cached"
            if self._last_full_pass is not None:
                if (now - self._last_full_pass).total_seconds() < self.config.full_pass_cooldown_seconds:
                    return "cooldown"
        elif self._last_live_pass is not None:
            if (now - self._last_live_pass).total_seconds() < self.config.live_pass_cooldown_seconds:
                return "cooldown"
        return None

    async def reconcile(self, fixture_ids: Optional[List[str]] = None, force: bool = False) -> ReconcileResult:
        """
        Run one reconciliation pass.

        Args:
            fixture_ids: Reconcile exactly these fixtures (a targeted/live
                pass); None selects candidates from local state (full pass)
            force: Ignore cooldowns and the result cache

        Returns:
            ReconcileResult; `skipped` says why nothing ran
        """
        if self._in_progress:
            logger.debug("Reconcile already running, trigger absorbed")
            return ReconcileResult(skipped="in-progress")

        now = self.clock()
        if not force:
            reason = self._cooldown_skip(fixture_ids, now)
            if reason == "cached":
                return replace(self._cached_result, skipped="cached")
            if reason is not None:
                return ReconcileResult(skipped=reason)

        self._in_progress = True
        try:
            result = ReconcileResult()
            if fixture_ids is None:
                candidates = self.select_candidates(now)
                self._last_full_pass = now
                if candidates.is_empty:
                    result.skipped = "nothing-to-do"
                    self._cache(result, now)
                    return result
                result.live = len(candidates.live)
                result.upcoming = len(candidates.upcoming)
                result.recently_completed = len(candidates.recently_completed)
                result.potentially_missed = len(candidates.potentially_missed)
                fixtures = candidates.all()
            else:
                self._last_live_pass = now
                fixtures = self.db_client.get_fixtures(fixture_ids=list(dict.fromkeys(fixture_ids)))
                result.live = sum(1 for fixture in fixtures if fixture.status.is_live)

            await self._reconcile_fixtures(fixtures, result, force=force)

            logger.info("Reconcile pass complete", extra={
                "mode": "full" if fixture_ids is None else "targeted",
                "checked": result.checked,
                "updated": result.updated,
                "scored": result.scored,
                "retracted": result.retracted,
                "unlinked": result.unlinked,
                "rate_limited": result.rate_limited,
                "failed": result.failed
            })
            if fixture_ids is None:
                self._cache(result, now)
            return result
        finally:
            self._in_progress = False

    def _cache(self, result: ReconcileResult, now: datetime):
        self._cached_result = result
        self._cached_at = now

    async def _reconcile_fixtures(self, fixtures: List[Fixture], result: ReconcileResult, force: bool):
        linked: Dict[str, Fixture] = {}
        for fixture in fixtures:
            if fixture.external_match_id:
                linked[fixture.external_match_id] = fixture
            else:
                result.unlinked += 1

        if result.unlinked:
            logger.warning("Fixtures without external match id skipped", extra={
                "unlinked": result.unlinked,
                "fixture_ids": [f.id for f in fixtures if not f.external_match_id]
            })

        external_ids = list(linked)
        batch_size = max(1, self.config.reconcile_batch_size)
        for start in range(0, len(external_ids), batch_size):
            batch = external_ids[start:start + batch_size]
            priority = (
                LIVE_PRIORITY
                if any(linked[external_id].status.is_live for external_id in batch)
                else DEFAULT_PRIORITY
            )
            issued_at = self.clock()
            try:
                matches = await self.api_client.get_matches(batch, priority=priority, use_cache=not force)
            except FootballDataRateLimitError as e:
                result.rate_limited += 1
                logger.warning("Reconcile batch rate limited", extra={
                    "batch": batch,
                    "error": str(e)
                })
                continue
            except FootballDataAPIError as e:
                result.failed += 1
                logger.error("Reconcile batch failed", extra={
                    "batch": batch,
                    "status_code": e.status_code,
                    "error": str(e)
                })
                continue

            # A match listed twice resolves to its last occurrence
            latest: Dict[str, ApiMatch] = {}
            for match in matches:
                latest[match.external_id] = match

            unchanged: List[str] = []
            for external_id in batch:
                match = latest.get(external_id)
                if match is None:
                    continue
                result.checked += 1
                fixture = linked[external_id]
                if not is_real_change(fixture, match):
                    unchanged.append(fixture.id)
                    continue
                self._apply_change(fixture, match, issued_at, result)

            if unchanged:
                self.db_client.touch_fixtures(unchanged, issued_at)

    def _apply_change(self, fixture: Fixture, match: ApiMatch, issued_at: datetime, result: ReconcileResult):
        fields = {
            "status": match.status,
            "last_reconciled": issued_at,
        }
        if match.home_score is not None:
            fields["home_score"] = match.home_score
        if match.away_score is not None:
            fields["away_score"] = match.away_score

        updated = self.db_client.update_fixture(fixture.id, fields)
        if updated is None:
            logger.warning("Fixture vanished during reconcile", extra={"fixture_id": fixture.id})
            return
        result.updated += 1

        logger.info("Fixture updated", extra={
            "fixture_id": fixture.id,
            "external_match_id": fixture.external_match_id,
            "previous_status": fixture.status.value,
            "status": updated.status.value,
            "score": f"{updated.home_score}-{updated.away_score}"
        })

        try:
            if fixture.status == FixtureStatus.FINISHED and updated.status != FixtureStatus.FINISHED:
                self.scoring.retract_fixture(updated.id)
                result.retracted += 1
            elif updated.is_scoreable:
                self.scoring.process_predictions_for_fixture(
                    updated.id, updated.home_score, updated.away_score
                )
                result.scored += 1
                result.finished_fixture_ids.append(updated.id)
        except EngineError as e:
            result.failed += 1
            logger.error("Scoring failed after fixture update", extra={
                "fixture_id": updated.id,
                "error": str(e),
                "error_type": type(e).__name__
            }, exc_info=True)
