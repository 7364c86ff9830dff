"""
Auto-Reply Runner - Draft Replies From the Command Line
=======================================================

Imports a review export for a business, drafts replies for pending reviews
(or retries the ones that failed last time) and prints a summary.

    python run_autoreply.py --business biz-1 --name "Corner Bakery" --import reviews.csv
    python run_autoreply.py --business biz-1 --approval-mode auto_4_plus
    python run_autoreply.py --business biz-1 --retry-failed
    python run_autoreply.py --business biz-1 --digest
"""

import argparse
import asyncio
import json
import logging

from replydesk.application import build_service
from replydesk.domain import ApprovalMode, ReportPeriod
from replydesk.infrastructure.config import get_settings
from replydesk.infrastructure.importer import ReviewImporter
from replydesk.infrastructure.persistence import open_database

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Draft AI replies for a business's reviews")
    parser.add_argument("--business", required=True, help="Business id")
    parser.add_argument("--name", help="Business name to store before running")
    parser.add_argument("--industry", default="service", help="Business industry (with --name)")
    parser.add_argument(
        "--approval-mode",
        choices=[m.value for m in ApprovalMode],
        help="Store which fresh drafts are approved without review",
    )
    parser.add_argument("--import", dest="import_file", help="Review export to import (.csv or .xlsx)")
    parser.add_argument("--limit", type=int, default=50, help="Max reviews to draft in this run")
    parser.add_argument("--retry-failed", action="store_true", help="Only retry replies that failed before")
    parser.add_argument("--digest", action="store_true", help="Print this week's insights digest")
    parser.add_argument("--previous-week", action="store_true", help="Use last week for --digest")
    return parser.parse_args(argv)


async def run(args: argparse.Namespace) -> None:
    settings = get_settings()
    db = open_database(str(settings.database_file))
    service = build_service(settings, db=db)

    if args.name:
        db.upsert_business(args.business, args.name, industry=args.industry)
    if args.approval_mode:
        db.save_business_settings(args.business, approval_mode=args.approval_mode)

    if args.import_file:
        parsed = ReviewImporter().parse(args.import_file)
        stored = await service.import_reviews(args.business, parsed.reviews)
        print(f"Imported {stored['added']} reviews ({stored['skipped']} duplicates skipped)")
        for error in parsed.errors + stored["errors"]:
            print(f"   {error}")

    if args.retry_failed:
        result = await service.retry_failed(args.business, args.limit)
    else:
        result = await service.run_automation(args.business, args.limit)

    print(f"\nDrafted {result.total} replies: {result.success_count} AI, {result.failure_count} fallback")
    if result.auto_approved:
        print(f"Auto-approved {result.auto_approved} replies")
    for error in result.errors:
        print(f"   {error.review_id} [{error.step}]: {error.error}")

    if args.digest:
        period = ReportPeriod.previous_week() if args.previous_week else ReportPeriod.current_week()
        bundle = await service.generate_insights(args.business, period)
        print(f"\nDigest for {period.label}:")
        print(json.dumps(bundle.to_dict(), indent=2))

    stats = await service.get_stats(args.business)
    print("\n" + "=" * 60)
    print(
        f"   Total: {stats['total']} | Pending: {stats['pending']} | "
        f"Approved: {stats['approved']} | Posted: {stats['posted']} | "
        f"Failed drafts: {stats['automation_failed']}"
    )
    print("=" * 60 + "\n")


def main(argv=None):
    args = parse_args(argv)

    print("\n" + "=" * 60)
    print("   ReplyDesk - Auto-Reply Runner")
    print("=" * 60 + "\n")

    try:
        asyncio.run(run(args))
    except FileNotFoundError as e:
        print(f"Error: {e}")
    except ValueError as e:
        print(f"Import failed: {e}")
    except KeyboardInterrupt:
        print("\n\nInterrupted! Progress saved.")


if __name__ == "__main__":
    main()
