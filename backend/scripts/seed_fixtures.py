#!/usr/bin/env python3
"""
Seed teams and fixtures for a season from football-data.org.

Safe to re-run: existing fixtures keep their status, score and multiplier and
only pick up kickoff/gameweek changes.

Usage:
    python3 scripts/seed_fixtures.py
    python3 scripts/seed_fixtures.py --season 2025-26
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


async def seed_fixtures(season: str):
    """Seed one season."""
    config = Config()
    setup_logging(config)
    config.validate()
    orchestrator = RefreshOrchestrator(config)

    try:
        await orchestrator.initialize()
        print(f"🌱 Seeding {config.competition_code} season {season}...\n")

        result = await orchestrator.season_manager.seed_season(season)

        print(f"   Teams:             {result.teams}")
        print(f"   Fixtures created:  {result.fixtures_created}")
        print(f"   Fixtures updated:  {result.fixtures_updated}")
        print(f"   Matches skipped:   {result.skipped}")
        print("\n✅ Season seeded")

    except Exception as e:
        print(f"\n❌ Seeding failed: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)

    finally:
        await orchestrator.shutdown()


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Seed teams and fixtures for a season")
    parser.add_argument("--season", help="Season tag, e.g. 2025-26 (default: CURRENT_SEASON)")
    args = parser.parse_args()
    asyncio.run(seed_fixtures(args.season or Config().current_season))


if __name__ == "__main__":
    main()
