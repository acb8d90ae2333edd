"""
Run a one-off import for a single shop from the command line
"""

import argparse
import asyncio
import sys
import os

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.database import create_tables, engine
from core.exceptions import IngestionError
from core.logging import get_logger, setup_logging
from ingestion.coordinator import VALID_TARGETS, IngestionCoordinator
from schemas.imports import ImportOptions

setup_logging()
logger = get_logger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Import Shopify data for one tenant")
    parser.add_argument("--tenant", required=True, help="Tenant identifier")
    parser.add_argument("--shop-domain", help="Shop domain; onboards the tenant when given")
    parser.add_argument("--token", help="Admin API access token (with --shop-domain)")
    parser.add_argument("--resource", default="all", choices=sorted(VALID_TARGETS))
    parser.add_argument(
        "--dry-run", action="store_true",
        help="Fetch and count records without validating or writing",
    )
    args = parser.parse_args(argv)
    if args.shop_domain and not args.token:
        parser.error("--token is required with --shop-domain")
    return args


async def run_sync(args) -> int:
    await create_tables()
    coordinator = IngestionCoordinator(scheduler_enabled=False)
    try:
        await coordinator.initialize()
        if args.shop_domain:
            await coordinator.add_tenant(
                args.tenant,
                {"shop_domain": args.shop_domain, "access_token": args.token},
            )

        result = await coordinator.import_data(
            args.tenant, args.resource, ImportOptions(dry_run=args.dry_run)
        )
        results = result.values() if isinstance(result, dict) else [result]
        for r in results:
            logger.info(f"{r.resource_type}: {r.summary()}")
        return 0 if all(r.success for r in results) else 1
    except IngestionError as e:
        logger.error(f"Sync failed: {e}")
        return 1
    finally:
        await coordinator.shutdown()
        await engine.dispose()


if __name__ == "__main__":
    sys.exit(asyncio.run(run_sync(parse_args())))
