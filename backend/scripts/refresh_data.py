#!/usr/bin/env python3
"""
Script to manually trigger a reconciliation pass.

This will:
1. Select candidate fixtures (live, upcoming, recently finished, missed)
2. Fetch their current state from football-data.org
3. Write status/score changes and score newly finished fixtures

Usage:
    python3 scripts/refresh_data.py
    python3 scripts/refresh_data.py --force
    python3 scripts/refresh_data.py --fixture <fixture-id> --fixture <fixture-id>
"""

import argparse
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


async def refresh_data(force: bool, fixture_ids=None):
    """Run a single reconcile pass."""
    config = Config()
    setup_logging(config)
    config.validate()
    orchestrator = RefreshOrchestrator(config)

    print("🔄 Initializing refresh orchestrator...\n")

    try:
        await orchestrator.initialize()

        print("✅ Orchestrator initialized")
        print("🔄 Running reconcile pass...\n")

        result = await orchestrator.reconciler.reconcile(fixture_ids=fixture_ids, force=force)

        if result.skipped:
            print(f"⏭️  Pass skipped: {result.skipped} (use --force to override)")
            return

        print(f"   Live candidates:      {result.live}")
        print(f"   Upcoming candidates:  {result.upcoming}")
        print(f"   Recently completed:   {result.recently_completed}")
        print(f"   Potentially missed:   {result.potentially_missed}")
        print(f"   Checked:              {result.checked}")
        print(f"   Updated:              {result.updated}")
        print(f"   Scored:               {result.scored}")
        print(f"   Unlinked:             {result.unlinked}")
        print(f"   Rate limited batches: {result.rate_limited}")
        print("\n✅ Reconcile pass completed successfully!")

    except Exception as e:
        print(f"\n❌ Error during reconcile pass: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)

    finally:
        await orchestrator.shutdown()


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Run one fixture reconcile pass")
    parser.add_argument("--force", action="store_true", help="Ignore cooldowns and cached results")
    parser.add_argument(
        "--fixture",
        action="append",
        dest="fixture_ids",
        help="Reconcile only this fixture id (repeatable)"
    )
    args = parser.parse_args()
    asyncio.run(refresh_data(force=args.force, fixture_ids=args.fixture_ids))


if __name__ == "__main__":
    main()
