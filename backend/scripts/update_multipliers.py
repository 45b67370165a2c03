#!/usr/bin/env python3
"""
Set points multipliers for fixtures and re-score any that already finished.

Multipliers are chosen outside the engine and passed in as a JSON object of
fixture id -> multiplier, e.g. {"<fixture-id>": 3, "<fixture-id>": 2}.

Usage:
    python3 scripts/update_multipliers.py --file multipliers.json
    python3 scripts/update_multipliers.py --fixture <fixture-id> --multiplier 2
"""

import argparse
import json
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


def update_multipliers(multipliers):
    """Apply the mapping."""
    config = Config()
    setup_logging(config)
    db_client = SupabaseClient(config)
    leaderboard = LeaderboardAggregator(db_client)
    scoring = ScoringService(db_client, leaderboard)
    manager = SeasonManager(db_client, None, scoring, leaderboard, config)

    changed = manager.update_multipliers(multipliers)
    print(f"✅ {changed} of {len(multipliers)} fixture multiplier(s) changed")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Update fixture points multipliers")
    parser.add_argument("--file", help="JSON file mapping fixture id to multiplier")
    parser.add_argument("--fixture", help="Single fixture id")
    parser.add_argument("--multiplier", type=int, help="Multiplier for --fixture")
    args = parser.parse_args()

    if args.file:
        multipliers = json.loads(Path(args.file).read_text())
    elif args.fixture and args.multiplier is not None:
        multipliers = {args.fixture: args.multiplier}
    else:
        parser.error("Provide --file or both --fixture and --multiplier")

    try:
        update_multipliers(multipliers)
    except Exception as e:
        print(f"\n❌ Error: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
