"""Main entry point with CLI."""
import argparse
import asyncio
import logging
import sys

from brickcache.config import Config, config
from brickcache.context import AppContext
from brickcache.logging_conf import setup_logging

logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Brick inventory metadata cache")

    # Work to run
    parser.add_argument(
        "--parts",
        nargs="+",
        default=None,
        help="Element ids to enrich with available colors",
    )
    parser.add_argument(
        "--minifigs",
        nargs="+",
        default=None,
        help="Rebrickable minifig ids to enrich with name and image",
    )
    parser.add_argument(
        "--refresh-expired-prices",
        action="store_true",
        help="Re-price every minifig whose price snapshot expired",
    )
    parser.add_argument(
        "--purge-history",
        action="store_true",
        help="Delete price history rows past their expiry",
    )

    # Scope
    parser.add_argument(
        "--table-id",
        default=None,
        help="Apply enrichment results to records of this table",
    )
    parser.add_argument(
        "--owner-id",
        default=None,
        help="Apply enrichment results to records of this owner",
    )

    # Mode flags
    parser.add_argument(
        "--dev",
        action="store_true",
        help="Development mode (short cooldowns, verbose logs)",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help=f"Ids per batch (default: {config.BATCH_SIZE})",
    )

    return parser.parse_args(argv)


async def run(args: argparse.Namespace) -> list[dict]:
    """Run the requested jobs in order and wait for each to finish."""
    summaries = []
    async with AppContext() as context:
        enrichment = context.enrichment
        accepted = []
        if args.parts:
            accepted.append(enrichment.enrich_batch(args.parts, args.table_id, args.owner_id))
        if args.minifigs:
            accepted.append(enrichment.enrich_minifigs(args.minifigs, args.table_id, args.owner_id))
        if args.refresh_expired_prices:
            accepted.append(await enrichment.refresh_expired_prices())

        for ack in accepted:
            summary = await context.registry.wait(ack.batch_id)
            summaries.append(summary)
            logger.info(f"Run {ack.batch_id} finished with status {summary['status']}")

        if args.purge_history:
            deleted = await context.price_store.purge_expired_history(context.prices.clock())
            summaries.append({"kind": "purge_history", "deleted": deleted})
    return summaries


def main() -> None:
    """Main entry point."""
    # Setup logging
    setup_logging()

    # Parse args
    args = parse_args()

    if not (args.parts or args.minifigs or args.refresh_expired_prices or args.purge_history):
        logger.error("Nothing to do: pass --parts, --minifigs, --refresh-expired-prices or --purge-history")
        sys.exit(1)

    # Apply DEV mode defaults
    if args.dev:
        config.STANDARD_DELAY = 1
        config.PRICE_STANDARD_DELAY = 1
        config.RATE_LIMIT_DELAY = 10
        logging.getLogger().setLevel(logging.DEBUG)

    if args.batch_size:
        config.BATCH_SIZE = args.batch_size

    needs_rebrickable = bool(args.parts or args.minifigs or args.refresh_expired_prices)
    try:
        Config.validate(require_rebrickable=needs_rebrickable)
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    logger.info("=" * 60)
    logger.info("Brick inventory cache starting")
    logger.info(f"Mode: {'DEV' if args.dev else 'PROD'}")
    logger.info(f"Batch size: {config.BATCH_SIZE}")
    logger.info(f"Cooldowns: {config.STANDARD_DELAY}s standard, {config.RATE_LIMIT_DELAY}s after 429")
    logger.info(f"Database: {config.DB_PATH}")
    logger.info("=" * 60)

    try:
        summaries = asyncio.run(run(args))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(130)

    failed = [summary for summary in summaries if summary.get("status") == "failed"]
    sys.exit(1 if failed else 0)


if __name__ == "__main__":
    main()
