#!/usr/bin/env python3
"""
Predictor League Refresh Service - Main Entry Point

Keeps the fixture mirror in step with football-data.org, scores finished
fixtures and keeps every organization's league table current.

Usage:
    python backend/src/main.py                  # run the refresh loops
    python backend/src/main.py --once           # one forced pass, then exit
    python backend/src/main.py --log-file logs/refresh.log
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

# Load .env from backend directory before Config() is used
from dotenv import load_dotenv
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent))

from config import Config
from refresh.orchestrator import RefreshOrchestrator
from utils.logger import setup_logging

logger = logging.getLogger(__name__)


class PredictorRefreshService:
    """Owns one orchestrator and stops it on SIGTERM/SIGINT."""

    def __init__(self, config: Optional[Config] = None):
        self.config = config or Config()
        self.orchestrator: Optional[RefreshOrchestrator] = None
        self._run_task: Optional[asyncio.Task] = None

    async def _start_orchestrator(self) -> RefreshOrchestrator:
        self.config.validate()
        self.orchestrator = RefreshOrchestrator(self.config)
        await self.orchestrator.initialize()
        return self.orchestrator

    async def run_forever(self):
        """Run the fast, slow and recovery loops until a shutdown signal."""
        logger.info("Starting Predictor League Refresh Service", extra={
            "version": "1.0.0",
            "environment": self.config.environment,
            "competition": self.config.competition_code,
            "season": self.config.current_season,
            "max_requests_per_minute": self.config.max_requests_per_minute
        })

        orchestrator = await self._start_orchestrator()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._handle_shutdown, sig)

        self._run_task = asyncio.create_task(orchestrator.run())
        try:
            await self._run_task
        except asyncio.CancelledError:
            logger.info("Refresh loops cancelled")
        finally:
            await orchestrator.shutdown()

    async def run_once(self) -> bool:
        """
        One forced full reconcile followed by a recovery pass.

        Returns:
            True when neither pass reported failed batches or fixtures
        """
        orchestrator = await self._start_orchestrator()
        try:
            reconcile_result = await orchestrator.reconciler.reconcile(force=True)
            recovery_result = await orchestrator.recovery.recover()
        finally:
            await orchestrator.shutdown()

        logger.info("Single pass complete", extra={
            "checked": reconcile_result.checked,
            "updated": reconcile_result.updated,
            "scored": reconcile_result.scored,
            "recovered_predictions": recovery_result.reprocessed_predictions,
            "unfixable": recovery_result.unfixable,
            "failed": reconcile_result.failed + recovery_result.failed
        })
        return not (reconcile_result.failed or recovery_result.failed)

    def _handle_shutdown(self, signum):
        logger.info("Received shutdown signal", extra={"signal": signum})
        if self._run_task is not None and not self._run_task.done():
            self._run_task.cancel()


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Predictor League refresh service")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run one forced reconcile and recovery pass, then exit",
    )
    parser.add_argument("--log-file", help="Also append logs to this file")
    return parser.parse_args(argv)


async def main(argv=None):
    """Main entry point."""
    args = parse_args(argv)
    service = PredictorRefreshService()
    setup_logging(service.config, log_file=args.log_file)

    try:
        if args.once:
            if not await service.run_once():
                sys.exit(1)
        else:
            await service.run_forever()
    except KeyboardInterrupt:
        logger.info("Service interrupted by user")
    except Exception as e:
        logger.error("Service crashed", extra={
            "error": str(e),
            "error_type": type(e).__name__
        }, exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
