#!/usr/bin/env python3
"""Try knowledge base retrieval end to end against local documents.

Loads .md and .txt files from a directory into an in-memory knowledge base,
chunks and embeds them through DocumentProcessor, then prints the gate
decision and the assembled context for a query.

Usage:
    python scripts/query_knowledge.py --data-dir docs/ "Qual o horário de atendimento?"
    python scripts/query_knowledge.py --data-dir docs/ --format plain --top-k 3 "How do refunds work?"
    python scripts/query_knowledge.py --data-dir docs/ --dry-run "anything"
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
from pathlib import Path

# Ensure project root is on sys.path so we can import src modules
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv  # noqa: E402

# Load .env from project root
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))

CONTENT_TYPES: dict[str, str] = {
    ".md": "text/markdown",
    ".txt": "text/plain",
}


async def run(args: argparse.Namespace) -> int:
    from src.kb_retrieval import (
        InMemoryKnowledgeStore,
        KnowledgeBase,
        KnowledgeBaseConfig,
        KnowledgeBaseError,
        KnowledgeContextOptions,
        KnowledgeDocument,
        KnowledgeRetriever,
        should_search_knowledge_base,
    )
    from src.kb_retrieval.ingestion import DocumentProcessor
    from src.kb_retrieval.log_config import configure_logging_from_config

    data_path = Path(args.data_dir)
    if not data_path.is_dir():
        print(f"Error: data directory does not exist: {data_path}")
        return 1

    files = sorted(p for p in data_path.iterdir() if p.suffix in CONTENT_TYPES)
    if not files:
        print(f"No .md or .txt files found in {data_path}")
        return 1

    print(f"Found {len(files)} documents in {data_path}")
    for f in files:
        print(f"  {f.name} -> {CONTENT_TYPES[f.suffix]}")

    gate = should_search_knowledge_base(args.query)
    print(f"\nQuery gate: {'search' if gate else 'skip'}")

    if args.dry_run:
        print("\n[DRY RUN] No documents were embedded.")
        return 0

    config = KnowledgeBaseConfig()
    configure_logging_from_config(config)

    store = InMemoryKnowledgeStore()
    knowledge_base = store.add_knowledge_base(
        KnowledgeBase(
            tenant_id=args.tenant_id,
            name=data_path.name,
            embedding_model=config.embedding_model,
            chunk_size=config.chunk_size,
            chunk_overlap=config.chunk_overlap,
        )
    )
    processor = DocumentProcessor(store, config=config)

    for f in files:
        document = store.add_document(
            KnowledgeDocument(
                knowledge_base_id=knowledge_base.id,
                title=f.stem,
                content=f.read_text(encoding="utf-8"),
                content_type=CONTENT_TYPES[f.suffix],
            )
        )
        result = await processor.process_document(document.id)
        status = f"{result.chunks_created} chunks" if not result.error else f"FAILED: {result.error}"
        print(f"  {f.name}: {status}")

    retriever = KnowledgeRetriever(store, config=config)
    try:
        context = await retriever.get_knowledge_context(
            KnowledgeContextOptions(
                tenant_id=args.tenant_id,
                query=args.query,
                top_k=args.top_k,
                threshold=args.threshold,
                format=args.format,
                skip_gate=not args.gate,
            )
        )
    except KnowledgeBaseError as e:
        print(f"\nRetrieval failed: {e}")
        return 1

    print(f"\nResults ({len(context.results)}):")
    for r in context.results:
        print(f"  {r.score:.3f}  {r.source}#{r.position}")

    print("\nContext:\n")
    print(context.context if context.has_context else "(no relevant context)")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Query local documents through the retrieval engine")
    parser.add_argument("query", help="User query to retrieve context for")
    parser.add_argument("--data-dir", required=True, help="Directory with .md/.txt documents")
    parser.add_argument("--tenant-id", default="local", help="Tenant id for the in-memory base")
    parser.add_argument("--top-k", type=int, default=5)
    parser.add_argument("--threshold", type=float, default=0.7)
    parser.add_argument("--format", choices=["markdown", "plain"], default="markdown")
    parser.add_argument("--gate", action="store_true", help="Apply the query gate before searching")
    parser.add_argument("--dry-run", action="store_true", help="List documents without embedding")
    args = parser.parse_args()

    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
