"""Ingestion runner entry point.

Processes a single uploaded document outside the API server, or sweeps documents stuck in
pending/processing and processes them again inline.

Usage:
    python -m services.doc_ingestion.ingest_runner process <doc_id> <user_id>
    python -m services.doc_ingestion.ingest_runner reconcile [--requeue] [--audit-user <user_id>]
"""

import argparse
import asyncio

from services.bootstrap import build_services, close_clients, load_clients
from services.doc_ingestion.ReconciliationService import ReconciliationService
from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import setup_logging


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="ingest_runner", description="Run docintel ingestion jobs.")
    commands = parser.add_subparsers(dest="command", required=True)

    process = commands.add_parser("process", help="Process one document now.")
    process.add_argument("doc_id")
    process.add_argument("user_id")

    reconcile = commands.add_parser("reconcile", help="Report stale documents and optionally process them again.")
    reconcile.add_argument("--requeue", action="store_true", help="Process stale documents again.")
    reconcile.add_argument("--audit-user", default=None, help="Also audit completed documents of this user.")
    return parser.parse_args(argv)


async def main(argv: list[str] | None = None) -> int:
    """Run the requested ingestion command.

    Returns:
        int: Process exit code, 0 on success.
    """
    args = parse_args(argv)
    logger = setup_logging()
    config = HelperConfig(logger=logger)

    clients = {}
    try:
        clients = await load_clients(config)
        await clients["meta"].do_initialize()
        services = build_services(config, clients)

        if args.command == "process":
            result = await services.pipeline.do_process(args.doc_id, args.user_id)
            if not result.success:
                logger.error("Processing of document %s failed: %s", args.doc_id, result.error)
                return 1
            logger.info(
                "Document %s processed: %d chunks, %d entities, %d relationships.",
                args.doc_id, result.chunks_created, result.entities_extracted, result.relationships_found,
            )
            return 0

        # no queue: stale documents are processed inline, one after another
        reconciliation = ReconciliationService(
            config,
            meta_client=clients["meta"],
            rag_client=clients["rag"],
            graph_client=clients["graph"],
            pipeline=services.pipeline,
        )
        report = await reconciliation.do_reconcile(requeue=args.requeue, audit_user_id=args.audit_user)
        logger.info(
            "Reconciliation finished: %d stale, %d reprocessed, %d inconsistent.",
            len(report.stale_documents), len(report.requeued), len(report.inconsistent_documents),
        )
        return 0
    finally:
        if clients:
            await close_clients(config, clients)


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main()))
