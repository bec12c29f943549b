"""
Run one ingestion (or a reparse) from the command line and print the JSON result

Examples:
    python -m scripts.run_ingest --source fl-sarasota-pa --address "1660 Ringling Blvd, Sarasota, FL 34236"
    python -m scripts.run_ingest --source fl-manatee-pa --parcel-id 1234567890 --force
    python -m scripts.run_ingest --reparse 6f1c...

Exit codes: 0 SUCCESS, 1 FAILED, 2 SKIPPED
"""

import argparse
import asyncio
import json
import logging
import sys
from uuid import UUID

from core.database import async_session_maker, engine
from core.exceptions import ParcelIngestionError
from core.logging import setup_logging
from ingestion.registry import build_default_registry
from ingestion.runner import IngestionPipeline
from models.base import TriggerOrigin
from schemas.ingestion import IngestionStatus, ResolveInput

logger = logging.getLogger(__name__)

EXIT_CODES = {
    IngestionStatus.SUCCESS: 0,
    IngestionStatus.FAILED: 1,
    IngestionStatus.SKIPPED: 2,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Ingest one parcel from one source")
    parser.add_argument("--source", dest="source_key", help="Source key (defaults to PARCEL_DEFAULT_SOURCE)")
    parser.add_argument("--address", help="Situs address to search for")
    parser.add_argument("--parcel-id", help="Parcel id, any formatting")
    parser.add_argument("--county-fips", help="3-digit county FIPS hint for statewide sources")
    parser.add_argument("--force", action="store_true", help="Store new raw fetches even when unchanged")
    parser.add_argument("--purpose", help="Purpose tag recorded on the run")
    parser.add_argument("--reparse", metavar="JOB_ID", type=UUID, help="Re-run extract over a job's raw fetches")
    return parser


async def run(args: argparse.Namespace) -> int:
    registry = build_default_registry()

    try:
        async with async_session_maker() as session:
            pipeline = IngestionPipeline(session, registry)

            if args.reparse:
                try:
                    outcome = await pipeline.reparse(args.reparse)
                except ParcelIngestionError as e:
                    logger.error(f"Reparse failed: {e.message}", extra={"error_context": e.to_dict()})
                    print(json.dumps({"error": e.message}, indent=2))
                    return 1
                print(json.dumps({
                    "artifact_id": str(outcome.artifact.id),
                    "parser_version": outcome.artifact.parser_version,
                    "content_signature": outcome.artifact.content_signature,
                    "reused": outcome.reused,
                    "warnings": outcome.warnings,
                }, indent=2))
                return 0

            result = await pipeline.ingest(
                args.source_key,
                ResolveInput(address=args.address, parcel_id=args.parcel_id, county_fips=args.county_fips),
                force=args.force,
                trigger=TriggerOrigin.MANUAL,
                purpose=args.purpose,
            )
            print(result.model_dump_json(indent=2))
            return EXIT_CODES[result.status]
    finally:
        await registry.close()
        await engine.dispose()


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    if not (args.reparse or args.address or args.parcel_id):
        build_parser().error("one of --address, --parcel-id or --reparse is required")

    setup_logging()
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
