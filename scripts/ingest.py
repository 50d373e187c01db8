#!/usr/bin/env python
"""Ingest documents into the RAG index.

Usage:
    python scripts/ingest.py docs/                 # Ingest a directory
    python scripts/ingest.py a.md b.txt --rebuild  # Clear the index first
    python scripts/ingest.py docs/ --verbose       # Show per-file results
"""
import argparse
import asyncio
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import structlog

from docqa import config
from docqa.context import build_context
from docqa.log import configure_logging
from docqa.rag.models import IngestReport, IngestResult

logger = structlog.get_logger()


class ProgressReporter:
    """Console progress observer for batch ingestion."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self.start_time = None

    def start(self, message: str):
        self.start_time = datetime.now()
        print(f"\n{'=' * 60}")
        print(f"  {message}")
        print(f"{'=' * 60}\n")

    def on_document(
        self,
        current: int,
        total: int,
        path: Path,
        result: Optional[IngestResult],
        error: Optional[Exception],
    ) -> None:
        percentage = (current / total) * 100 if total > 0 else 0
        bar_length = 40
        filled = int(bar_length * current / total) if total > 0 else 0
        bar = "█" * filled + "░" * (bar_length - filled)

        print(
            f"\r  [{bar}] {percentage:5.1f}% ({current}/{total}) {path.name[:30]:<30}",
            end="",
            flush=True,
        )

        if self.verbose:
            outcome = f"{result.chunk_count} chunks" if result else f"FAILED: {error}"
            print(f"\n      {outcome}")

    def finish(self, report: IngestReport, mode: str):
        print("\n")
        elapsed_seconds = (datetime.now() - self.start_time).total_seconds()

        print(f"{'=' * 60}")
        print("  Ingestion Complete!")
        print(f"{'=' * 60}\n")
        print(f"  Files processed:  {report.files_processed}")
        print(f"  Files failed:     {report.files_failed}")
        print(f"  Chunks created:   {report.chunks_created}")
        print(f"  Index mode:       {mode}")
        print(f"  Time elapsed:     {elapsed_seconds:.1f}s")

        if report.chunks_created > 0 and elapsed_seconds > 0:
            rate = report.chunks_created / elapsed_seconds
            print(f"  Indexing rate:    {rate:.1f} chunks/sec")

        print(f"\n{'=' * 60}\n")

        for path, error in report.failures.items():
            print(f"  ⚠️  {path}: {error}")


async def main():
    """Main entry point for the ingest script."""
    parser = argparse.ArgumentParser(
        description="Ingest documents into the RAG index",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/ingest.py docs/                 # Ingest a directory
  python scripts/ingest.py a.md b.txt --rebuild  # Clear the index first
        """,
    )
    parser.add_argument("paths", nargs="+", type=Path, help="Files or directories to ingest")
    parser.add_argument(
        "--rebuild",
        action="store_true",
        help="Clear the index before ingesting",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Show per-file results",
    )
    parser.add_argument(
        "--backend",
        choices=["faiss", "chroma", "memory"],
        default=None,
        help=f"Vector backend (default: {config.VECTOR_BACKEND})",
    )

    args = parser.parse_args()
    configure_logging("DEBUG" if args.verbose else "WARNING")

    progress = ProgressReporter(verbose=args.verbose)

    try:
        print("\n📋 Configuration:")
        print(f"   Embedding model:  {config.EMBEDDING_MODEL}")
        print(f"   Backend:          {args.backend or config.VECTOR_BACKEND}")
        print(f"   Chunk size:       {config.CHUNK_SIZE} chars")
        print(f"   Chunk overlap:    {config.CHUNK_OVERLAP} chars")

        context = await build_context(backend=args.backend)

        if args.rebuild:
            await context.pipeline.reset()
            print("\n⚠️  Index cleared.")

        progress.start("Rebuilding Index" if args.rebuild else "Ingesting Documents")
        report = await context.pipeline.ingest_paths(args.paths, observer=progress)
        progress.finish(report, context.index.mode.value)

        if report.files_failed > 0:
            sys.exit(1)

    except KeyboardInterrupt:
        print("\n\n⚠️  Ingestion cancelled by user.\n")
        sys.exit(1)

    except Exception as e:
        print(f"\n❌ Error: {e}\n")
        logger.error("ingest_script_failed", error=str(e), error_type=type(e).__name__)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
