"""
Check piece status consistency against sales, and optionally fix it.

Reports, for each piece id given, whether its status matches its sales and
which corrective action is recommended. With --fix, safe corrections
(release/reserve) are applied through the auto-fixer; ambiguous states are
only reported.
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from config import load_settings
from logging_config import configure_logging
from services.auto_fix_service import fix_piece_status
from services.consistency_service import check_piece_consistency
from services.context import MaintenanceContext, build_context


async def check_pieces(ctx: MaintenanceContext, piece_ids: list[str], fix: bool) -> int:
    """Print a report per piece. Returns the number of pieces still inconsistent."""

    inconsistent = 0

    print("=" * 60)
    print("PIECE CONSISTENCY")
    print("=" * 60)

    for piece_id in piece_ids:
        report = await check_piece_consistency(ctx, piece_id)
        status = report.status.value if report.status else "Unknown"
        state = "OK" if report.is_consistent else "INCONSISTENT"
        print(f"{piece_id}: {status:<10} {state}")
        for issue in report.issues:
            print(f"    - {issue}")
        if report.recommended_action is not None:
            print(f"    recommended action: {report.recommended_action.value}")

        if fix and not report.is_consistent:
            result = await fix_piece_status(ctx, piece_id)
            print(f"    fix: {result.action.value}" + (f" ({result.error})" if result.error else ""))
            if not result.success:
                inconsistent += 1
        elif not report.is_consistent:
            inconsistent += 1

    print("=" * 60)
    return inconsistent


def main() -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="Check land piece status consistency against sales",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Report only
  python check_piece_consistency.py 3f0c... 9ab1...

  # Apply safe fixes
  python check_piece_consistency.py 3f0c... --fix
        """
    )
    parser.add_argument("piece_ids", nargs="+", help="Piece ids to check")
    parser.add_argument(
        "--fix",
        action="store_true",
        help="Apply automatic fixes (release/reserve) where safe"
    )
    args = parser.parse_args()

    settings = load_settings()
    configure_logging(settings.log_level)

    async def run() -> int:
        ctx = await build_context(settings)
        return await check_pieces(ctx, args.piece_ids, args.fix)

    try:
        remaining = asyncio.run(run())
    except Exception as e:
        print(f"\n[ERROR] {e}", file=sys.stderr)
        return 2

    return 1 if remaining else 0


if __name__ == "__main__":
    sys.exit(main())
