#!/usr/bin/env python
"""Ask a question against the RAG index.

Usage:
    python scripts/ask.py "What color is the sky?"
    python scripts/ask.py "What color is the sky?" --top-k 3 --show-context
"""
import argparse
import asyncio
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import structlog

from docqa import config
from docqa.context import build_context
from docqa.errors import DocQAError
from docqa.log import configure_logging

logger = structlog.get_logger()


async def main():
    parser = argparse.ArgumentParser(description="Ask a question against the RAG index")
    parser.add_argument("question", help="Question text")
    parser.add_argument(
        "--top-k",
        type=int,
        default=config.RETRIEVAL_TOP_K,
        help=f"Passages to retrieve (default: {config.RETRIEVAL_TOP_K}, max: {config.MAX_TOP_K})",
    )
    parser.add_argument("--show-context", action="store_true", help="Print retrieved passages")
    parser.add_argument(
        "--backend",
        choices=["faiss", "chroma", "memory"],
        default=None,
        help=f"Vector backend (default: {config.VECTOR_BACKEND})",
    )
    args = parser.parse_args()
    configure_logging("WARNING")

    try:
        context = await build_context(backend=args.backend)
        answer = await context.pipeline.answer(args.question, args.top_k)
    except DocQAError as e:
        print(f"\n❌ Error: {e}\n")
        logger.error("ask_script_failed", error=str(e), error_type=type(e).__name__)
        sys.exit(1)

    print(f"\n{answer.answer}\n")

    if answer.sources:
        print("Sources:")
        for source in answer.sources:
            print(f"  - {source}")

    if args.show_context:
        for i, (passage, distance) in enumerate(zip(answer.context, answer.distances), 1):
            print(f"\n[{i}] (distance {distance:.3f})\n{passage}")

    print()


if __name__ == "__main__":
    asyncio.run(main())
