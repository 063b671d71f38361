#!/usr/bin/env python
"""Re-run source ingestion from the command line.

Usage:
    python scripts/reingest.py --source-id <id> --user-id <user>
    python scripts/reingest.py --project-id <id> --user-id <user>
    python scripts/reingest.py --project-id <id> --user-id <user> --failed-only
"""
import argparse
import asyncio
import sys
from datetime import datetime

import structlog

from papertrail import config, db
from papertrail.errors import PapertrailError
from papertrail.rag.ingest import IngestPipeline

logger = structlog.get_logger()


class ProgressReporter:
    """Simple progress reporter for CLI."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self.start_time = None

    def start(self, message: str):
        self.start_time = datetime.now()
        print(f"\n{'=' * 60}")
        print(f"  {message}")
        print(f"{'=' * 60}\n")

    def update(self, current: int, total: int, title: str, outcome: str):
        print(f"  ({current}/{total}) {title[:40]:<40} {outcome}")

    def finish(self, stats: dict):
        elapsed = (datetime.now() - self.start_time).total_seconds()

        print(f"\n{'=' * 60}")
        print("  Ingestion Complete!")
        print(f"{'=' * 60}\n")
        print(f"  Sources ready:       {stats['sources_ready']}")
        print(f"  Sources failed:      {stats['sources_failed']}")
        print(f"  Chunks created:      {stats['chunks_created']}")
        print(f"  Without embeddings:  {stats['sources_unembedded']}")
        print(f"  Time elapsed:        {elapsed:.1f}s")
        print(f"\n{'=' * 60}\n")

        if stats["sources_failed"] > 0:
            print(f"Warning: {stats['sources_failed']} source(s) failed to ingest.")
            print("   Check logs for details.\n")


async def reingest(source_ids, user_id: str, progress: ProgressReporter) -> dict:
    """Ingest each source in turn and collect totals."""
    pipeline = IngestPipeline()
    stats = {
        "sources_ready": 0,
        "sources_failed": 0,
        "chunks_created": 0,
        "sources_unembedded": 0,
    }

    for position, (source_id, title) in enumerate(source_ids, 1):
        try:
            result = await pipeline.ingest_source(source_id, user_id)
        except PapertrailError as e:
            stats["sources_failed"] += 1
            progress.update(position, len(source_ids), title, f"error: {e}")
            continue

        stats["sources_ready"] += 1
        stats["chunks_created"] += result.chunk_count
        if not result.embedded:
            stats["sources_unembedded"] += 1
        progress.update(position, len(source_ids), title, f"{result.chunk_count} chunks")

    return stats


async def main():
    """Main entry point for reingest script."""
    parser = argparse.ArgumentParser(
        description="Re-run ingestion for one source or every source of a project",
    )
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--source-id", help="Ingest a single source")
    target.add_argument("--project-id", help="Ingest every source of a project")
    parser.add_argument("--user-id", required=True, help="Owner of the sources")
    parser.add_argument(
        "--failed-only",
        action="store_true",
        help="With --project-id, only retry sources in the error state",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Show verbose progress output")

    args = parser.parse_args()
    progress = ProgressReporter(verbose=args.verbose)

    db.init_database()

    if args.source_id:
        source = db.get_source(args.source_id, args.user_id)
        if source is None:
            print(f"\nError: source {args.source_id} not found\n")
            sys.exit(1)
        targets = [(source.id, source.title)]
    else:
        status = "error" if args.failed_only else None
        sources = db.list_sources(args.project_id, args.user_id, status=status)
        targets = [(source.id, source.title) for source in sources]

    print("\nConfiguration:")
    print(f"   Database:         {config.DB_PATH}")
    print(f"   Embedding model:  {config.EMBEDDING_MODEL}")
    print(f"   Chunk size:       {config.CHUNK_SIZE} chars")
    print(f"   Chunk overlap:    {config.CHUNK_OVERLAP} chars")

    if not targets:
        print("\nNothing to ingest.\n")
        return

    try:
        progress.start(f"Ingesting {len(targets)} source(s)")
        stats = await reingest(targets, args.user_id, progress)
        progress.finish(stats)

        if stats["sources_failed"] > 0:
            sys.exit(1)

    except KeyboardInterrupt:
        print("\n\nIngestion cancelled by user.\n")
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
