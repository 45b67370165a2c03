#!/usr/bin/env python3
"""
Delete every fixture of a gameweek together with its predictions, then
rebuild the affected league tables.

Usage:
    python3 scripts/wipe_gameweek.py --gameweek 3 --yes
"""

import argparse
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
from database.supabase_client import SupabaseClient
from refresh.seeding import SeasonManager
from scoring.engine import ScoringService
from scoring.leaderboard import LeaderboardAggregator
from utils.logger import setup_logging


def wipe(season: str, gameweek: int):
    config = Config()
    setup_logging(config)
    db_client = SupabaseClient(config)
    leaderboard = LeaderboardAggregator(db_client)
    scoring = ScoringService(db_client, leaderboard)
    manager = SeasonManager(db_client, None, scoring, leaderboard, config)

    result = manager.wipe_gameweek(season, gameweek)
    print(f"🗑️  Fixtures deleted:          {result.fixtures_deleted}")
    print(f"🗑️  Predictions deleted:       {result.predictions_deleted}")
    print(f"🔄 Leaderboards recalculated: {result.leaderboards_recalculated}")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Wipe one gameweek")
    parser.add_argument("--gameweek", type=int, required=True, help="Gameweek to delete")
    parser.add_argument("--season", help="Season tag (default: CURRENT_SEASON)")
    parser.add_argument("--yes", action="store_true", help="Confirm the deletion")
    args = parser.parse_args()

    season = args.season or Config().current_season
    if not args.yes:
        print(f"❌ Refusing to wipe gameweek {args.gameweek} of {season} without --yes")
        sys.exit(2)

    try:
        wipe(season, args.gameweek)
    except Exception as e:
        print(f"\n❌ Error: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
