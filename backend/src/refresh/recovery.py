"""
Recovery scanner.

Finds fixtures and predictions left behind by missed or partial updates and
pushes them back through the reconcile and scoring paths.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable, Dict, List, Optional

from config import Config
from database.models import LIVE_STATUSES, PRE_MATCH_STATUSES, Fixture, FixtureStatus
from database.supabase_client import SupabaseClient
from refresh.reconciler import FixtureReconciler
from scoring.engine import ScoringService
from utils.errors import EngineError
from utils.timeutils import utc_now

logger = logging.getLogger(__name__)


@dataclass
class RecoveryResult:
    scanned: int = 0
    updated: int = 0
    reprocessed_predictions: int = 0
    unfixable: int = 0
    rate_limited: int = 0
    failed: int = 0
    reconcile_skipped: Optional[str] = None
    unfixable_fixture_ids: List[str] = field(default_factory=list)


class RecoveryScanner:
    """Repairs fixtures stuck in the wrong state and unscored predictions."""

    def __init__(
        self,
        db_client: SupabaseClient,
        reconciler: FixtureReconciler,
        scoring: ScoringService,
        config: Config,
        clock: Callable = utc_now,
    ):
        self.db_client = db_client
        self.reconciler = reconciler
        self.scoring = scoring
        self.config = config
        self.clock = clock

    def find_anomalies(self) -> Dict[str, Fixture]:
        """
        Fixtures needing repair, keyed by id:

        - FINISHED with a missing score (recent lookback)
        - still pre-match or live well after kickoff
        - FINISHED with scores but holding unscored predictions
        """
        now = self.clock()
        config = self.config
        anomalies: Dict[str, Fixture] = {}

        missing_scores = self.db_client.get_finished_fixtures_missing_scores(
            now - timedelta(days=config.recovery_missing_score_days)
        )
        stuck = self.db_client.get_fixtures_by_status(
            PRE_MATCH_STATUSES | LIVE_STATUSES,
            kickoff_after=now - timedelta(days=config.recovery_lookback_days),
            kickoff_before=now - timedelta(minutes=config.recovery_stuck_after_minutes),
        )
        # Open predictions on future fixtures are unscored too; only look at finished ones
        scoreable = [
            fixture for fixture in self.db_client.get_fixtures(statuses=[FixtureStatus.FINISHED])
            if fixture.is_scoreable
        ]
        unscored_fixture_ids = {
            prediction.fixture_id
            for prediction in self.db_client.get_predictions_for_fixtures(
                [fixture.id for fixture in scoreable], unscored_only=True
            )
        }
        orphaned = [fixture for fixture in scoreable if fixture.id in unscored_fixture_ids]

        for fixture in missing_scores + stuck + orphaned:
            anomalies.setdefault(fixture.id, fixture)

        logger.info("Recovery scan", extra={
            "missing_scores": len(missing_scores),
            "stuck": len(stuck),
            "unscored_finished": len(orphaned)
        })
        return anomalies

    async def recover(self) -> RecoveryResult:
        """
        Find anomalies, force a reconcile of those that can be fetched, and
        re-score every fixture that is now FINISHED with scores.
        """
        result = RecoveryResult()
        anomalies = self.find_anomalies()
        result.scanned = len(anomalies)
        if not anomalies:
            return result

        unscored_before = Counter(
            prediction.fixture_id
            for prediction in self.db_client.get_predictions_for_fixtures(anomalies, unscored_only=True)
        )

        to_fetch = []
        for fixture in anomalies.values():
            if fixture.external_match_id:
                if not fixture.is_scoreable:
                    to_fetch.append(fixture.id)
            else:
                result.unfixable += 1
                result.unfixable_fixture_ids.append(fixture.id)

        if result.unfixable:
            logger.warning("Fixtures cannot be recovered without external match id", extra={
                "fixture_ids": result.unfixable_fixture_ids
            })

        if to_fetch:
            reconcile_result = await self.reconciler.reconcile(fixture_ids=to_fetch, force=True)
            result.updated = reconcile_result.updated
            result.rate_limited = reconcile_result.rate_limited
            result.failed = reconcile_result.failed
            result.reconcile_skipped = reconcile_result.skipped
            if reconcile_result.skipped == "in-progress":
                logger.warning("Recovery reconcile deferred, another pass is running", extra={
                    "fixture_ids": to_fetch
                })

        for fixture in self.db_client.get_fixtures(fixture_ids=list(anomalies)):
            if not fixture.is_scoreable:
                continue
            try:
                self.scoring.process_predictions_for_fixture(
                    fixture.id, fixture.home_score, fixture.away_score
                )
            except EngineError as e:
                result.failed += 1
                logger.error("Recovery scoring failed", extra={
                    "fixture_id": fixture.id,
                    "error": str(e),
                    "error_type": type(e).__name__
                }, exc_info=True)

        unscored_after = Counter(
            prediction.fixture_id
            for prediction in self.db_client.get_predictions_for_fixtures(anomalies, unscored_only=True)
        )
        result.reprocessed_predictions = sum(
            max(0, count - unscored_after.get(fixture_id, 0))
            for fixture_id, count in unscored_before.items()
        )

        logger.info("Recovery complete", extra={
            "scanned": result.scanned,
            "updated": result.updated,
            "reprocessed_predictions": result.reprocessed_predictions,
            "unfixable": result.unfixable,
            "rate_limited": result.rate_limited,
            "reconcile_skipped": result.reconcile_skipped
        })
        return result
