#!/usr/bin/env python3
"""
Run the recovery scanner once.

Finds FINISHED fixtures with missing scores, fixtures stuck before or during
play long after kickoff, and unscored predictions on finished fixtures, then
forces a reconcile and re-scores what it can.

Usage:
    python3 scripts/run_recovery.py
"""

import asyncio
import sys
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
load_dotenv(Path(__file__).parent.parent / ".env")

# Add src directory to path
backend_dir = Path(__file__).parent.parent
src_dir = backend_dir / "src"
sys.path.insert(0, str(src_dir))

from config import Config
from refresh.orchestrator import RefreshOrchestrator
from utils.logger import setup_logging


async def run_recovery():
    """Run a single recovery scan."""
    config = Config()
    setup_logging(config)
    config.validate()
    orchestrator = RefreshOrchestrator(config)

    try:
        await orchestrator.initialize()
        print("🔎 Scanning for fixtures and predictions to recover...\n")

        result = await orchestrator.recovery.recover()

        print(f"   Scanned:                 {result.scanned}")
        print(f"   Updated:                 {result.updated}")
        print(f"   Predictions re-scored:   {result.reprocessed_predictions}")
        print(f"   Unfixable (no match id): {result.unfixable}")
        print(f"   Rate limited batches:    {result.rate_limited}")
        if result.reconcile_skipped:
            print(f"   ⚠️  Reconcile skipped:    {result.reconcile_skipped}")
        for fixture_id in result.unfixable_fixture_ids:
            print(f"   ⚠️  {fixture_id} has no external match id")

        print("\n✅ Recovery completed")

    except Exception as e:
        print(f"\n❌ Recovery failed: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)

    finally:
        await orchestrator.shutdown()


if __name__ == "__main__":
    asyncio.run(run_recovery())
