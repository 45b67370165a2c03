#!/usr/bin/env python3
"""
Rebuild an organization's league table from stored prediction results.

Useful when:
- Standings drifted after a manual data fix
- A verification run reported mismatches

Usage:
    python3 scripts/recalculate_leaderboard.py --org <organization-id>
    python3 scripts/recalculate_leaderboard.py --org <organization-id> --verify-only
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
from scoring.leaderboard import LeaderboardAggregator
from utils.logger import setup_logging


def recalculate(organization_id: str, season: str, verify_only: bool):
    """Verify and optionally rebuild one league table."""
    print(f"\n{'='*70}")
    print(f"LEAGUE TABLE FOR ORGANIZATION {organization_id} ({season})")
    print(f"{'='*70}\n")

    config = Config()
    setup_logging(config)
    db_client = SupabaseClient(config)
    leaderboard = LeaderboardAggregator(db_client)

    mismatched = leaderboard.verify_leaderboard(organization_id, season)
    if mismatched:
        print(f"⚠️  {len(mismatched)} user(s) differ from stored predictions:")
        for user_id in mismatched:
            print(f"   - {user_id}")
    else:
        print("✅ Stored standings match stored predictions")

    if not verify_only:
        leaderboard.recalculate_leaderboard(organization_id, season)
        print("\n🔄 Leaderboard rebuilt\n")

    print(f"{'Rank':<6}{'User':<40}{'Pts':>6}{'Exact':>7}{'Result':>8}{'Done':>6}")
    for entry in leaderboard.get_league_table(organization_id, season):
        print(
            f"{entry.rank:<6}{entry.user_id:<40}{entry.total_points:>6}"
            f"{entry.correct_scorelines:>7}{entry.correct_outcomes:>8}{entry.completed_fixtures:>6}"
        )

    print(f"\n{'='*70}\n")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Recalculate an organization's leaderboard")
    parser.add_argument("--org", required=True, help="Organization id")
    parser.add_argument("--season", help="Season tag (default: CURRENT_SEASON)")
    parser.add_argument("--verify-only", action="store_true", help="Report mismatches without writing")
    args = parser.parse_args()

    try:
        recalculate(args.org, args.season or Config().current_season, args.verify_only)
    except Exception as e:
        print(f"\n❌ Error: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
