"""Operator entry point for periodic and one-off marketplace jobs.

    python run_maintenance.py sweep [--batch-size N]
    python run_maintenance.py backfill

sweep     completes ended auctions and expires stale fixed-price listings;
          schedule it (cron, k8s CronJob) every minute or so
backfill  creates completed transaction records for sold listings lacking one
"""

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import asdict

from src.cm_admin.application.service import AdminService
from src.cm_common.database import async_session_factory, engine
from src.cm_common.errors import AppError
from src.cm_settlement.application.backfill import backfill_sold_listings
from src.cm_settlement.application.service import SettlementService
from src.cm_settlement.infrastructure.ledger_gateway import HttpLedgerGateway

logger = logging.getLogger("cm.maintenance")


async def run_sweep(batch_size: int | None) -> dict[str, object]:
    ledger = await HttpLedgerGateway.connect()
    try:
        async with async_session_factory() as db:
            report = await AdminService(SettlementService(ledger=ledger)).sweep_listings(
                db, batch_size
            )
    finally:
        await ledger.close()
    return {**asdict(report), "processed": report.processed}


async def run_backfill() -> dict[str, object]:
    async with async_session_factory() as db:
        report = await backfill_sold_listings(db)
    return asdict(report)


async def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    sub = parser.add_subparsers(dest="command", required=True)
    sweep = sub.add_parser("sweep", help="complete ended auctions, expire stale listings")
    sweep.add_argument("--batch-size", type=int, default=None)
    sub.add_parser("backfill", help="create missing transaction records")
    args = parser.parse_args(argv)

    try:
        if args.command == "sweep":
            result = await run_sweep(args.batch_size)
        else:
            result = await run_backfill()
    except AppError as exc:
        logger.error("%s aborted: [%d] %s", args.command, exc.code, exc.message)
        return 1
    finally:
        await engine.dispose()

    print(json.dumps(result, indent=2))
    return 0


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    sys.exit(asyncio.run(main()))
