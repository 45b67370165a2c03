"""
Refresh Orchestrator - Coordinates fixture reconciliation, scoring and recovery.

Owns the engine components for one process and runs the service loops.
"""

import asyncio
import logging
from datetime import datetime
from enum import Enum
from typing import Optional

from config import Config
from database.supabase_client import SupabaseClient
from football_data.client import FootballDataClient
from refresh.live_window import LiveGameCheck, LiveWindowAdvisor
from refresh.reconciler import FixtureReconciler, ReconcileResult
from refresh.recovery import RecoveryScanner
from refresh.seeding import SeasonManager
from scoring.engine import ScoringService
from scoring.leaderboard import LeaderboardAggregator
from scoring.ranking_history import RankingHistoryService
from utils.timeutils import utc_now

logger = logging.getLogger(__name__)


class RefreshState(Enum):
    """Refresh state enumeration."""
    IDLE = "idle"  # Nothing live, full passes on the slow cadence
    LIVE_MATCHES = "live_matches"  # Matches in progress or due to be


class RefreshOrchestrator:
    """Orchestrates all refresh operations."""

    def __init__(
        self,
        config: Config,
        db_client: Optional[SupabaseClient] = None,
        api_client: Optional[FootballDataClient] = None,
    ):
        self.config = config
        self.db_client = db_client
        self.api_client = api_client
        self.leaderboard: Optional[LeaderboardAggregator] = None
        self.scoring: Optional[ScoringService] = None
        self.reconciler: Optional[FixtureReconciler] = None
        self.recovery: Optional[RecoveryScanner] = None
        self.advisor: Optional[LiveWindowAdvisor] = None
        self.season_manager: Optional[SeasonManager] = None
        self.ranking_history: Optional[RankingHistoryService] = None
        self.running = False
        self.current_state = RefreshState.IDLE
        self._last_live_check: Optional[LiveGameCheck] = None
        self._last_recovery_time: Optional[datetime] = None

    async def initialize(self):
        """Initialize orchestrator and clients."""
        logger.info("Orchestrator starting")

        if self.api_client is None:
            self.api_client = FootballDataClient(self.config)
        if self.db_client is None:
            self.db_client = SupabaseClient(self.config)
        self.leaderboard = LeaderboardAggregator(self.db_client)
        self.scoring = ScoringService(self.db_client, self.leaderboard)
        self.reconciler = FixtureReconciler(
            self.db_client, self.api_client, self.scoring, self.config
        )
        self.recovery = RecoveryScanner(
            self.db_client, self.reconciler, self.scoring, self.config
        )
        self.advisor = LiveWindowAdvisor(self.db_client, self.config)
        self.season_manager = SeasonManager(
            self.db_client, self.api_client, self.scoring, self.leaderboard, self.config
        )
        self.ranking_history = RankingHistoryService(self.db_client)

        logger.info("Orchestrator ready")

    async def shutdown(self):
        """Shutdown orchestrator gracefully."""
        logger.info("Orchestrator shutting down")
        self.running = False

        if self.api_client:
            await self.api_client.close()

        logger.info("Orchestrator stopped")

    def _detect_state(self) -> RefreshState:
        check = self.advisor.check_live_games()
        self._last_live_check = check
        return RefreshState.LIVE_MATCHES if check.has_live else RefreshState.IDLE

    async def _fast_cycle(self) -> int:
        """
        One live check; reconcile the live fixtures when the advisor says so.

        Returns:
            Seconds to sleep before the next cycle
        """
        new_state = self._detect_state()
        if new_state != self.current_state:
            logger.info("State transition", extra={
                "from": self.current_state.value,
                "to": new_state.value
            })
            self.current_state = new_state

        check = self._last_live_check
        if check.should_trigger_update and check.live_fixture_ids:
            result = await self.reconciler.reconcile(fixture_ids=check.live_fixture_ids)
            self._log_pass("fast", result)

        if self.current_state == RefreshState.LIVE_MATCHES:
            return min(check.next_check_in, self.config.fast_loop_interval_live)
        return min(check.next_check_in, self.config.max_idle_sleep_seconds)

    async def _run_fast_loop(self):
        """Fast loop: live-window check and targeted reconcile of live fixtures."""
        while self.running:
            try:
                sleep_sec = await self._fast_cycle()
                await asyncio.sleep(sleep_sec)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Fast loop error", extra={"error": str(e)}, exc_info=True)
                await asyncio.sleep(self.config.fast_loop_interval_live)

    async def _run_slow_loop(self):
        """Slow loop: full candidate reconcile on the full-pass cooldown."""
        while self.running:
            try:
                result = await self.reconciler.reconcile()
                self._log_pass("slow", result)
                await asyncio.sleep(self.config.slow_loop_interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Slow loop error", extra={"error": str(e)}, exc_info=True)
                await asyncio.sleep(60)

    async def _run_recovery_loop(self):
        """Recovery loop: anomaly scan every recovery interval."""
        while self.running:
            try:
                # Skip while live so recovery does not compete for request budget
                if self.current_state != RefreshState.LIVE_MATCHES:
                    result = await self.recovery.recover()
                    self._last_recovery_time = utc_now()
                    if result.scanned:
                        logger.info("Recovery cycle", extra={
                            "scanned": result.scanned,
                            "updated": result.updated,
                            "reprocessed_predictions": result.reprocessed_predictions,
                            "unfixable": result.unfixable
                        })
                await asyncio.sleep(self.config.recovery_interval_seconds)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.warning("Recovery loop error", extra={"error": str(e)}, exc_info=True)
                await asyncio.sleep(self.config.recovery_interval_seconds)

    def _log_pass(self, path: str, result: ReconcileResult):
        if result.skipped:
            logger.debug("Reconcile skipped", extra={"path": path, "reason": result.skipped})
            return
        logger.info("Reconcile cycle", extra={
            "path": path,
            "state": self.current_state.value,
            "updated": result.updated,
            "scored": result.scored,
            "rate_limited": result.rate_limited,
            "queue_size": self.api_client.queue_size,
            "calls_in_window": self.api_client.calls_in_window()
        })

    async def run(self):
        """Run fast, slow, and recovery loops in parallel."""
        logger.info("Refresh loops started (fast + slow + recovery)")
        self.running = True
        try:
            await asyncio.gather(
                self._run_fast_loop(),
                self._run_slow_loop(),
                self._run_recovery_loop(),
            )
        except asyncio.CancelledError:
            logger.info("Refresh loops cancelled")
        finally:
            self.running = False
