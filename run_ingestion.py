#!/usr/bin/env python3
"""
Standalone script to ingest prepared knowledge chunks.

This script orchestrates:
1. Loading chunks from a JSON file
2. Generating embeddings via Ollama (rate-limited batches)
3. Storing embeddings in the Qdrant vector database

The input file holds a list of objects:
    [{"id": "doc-1#0", "content": "...", "metadata": {"userId": "u1", "title": "..."}}]

Usage:
    python run_ingestion.py chunks.json [--recreate] [--user-id ID] [--tenant-id ID] [--agent-id ID]

Options:
    --recreate      Recreate the vector database collection (deletes existing data)
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import List, Optional

from knowledge_rag.agents.orchestrator import create_orchestrator
from knowledge_rag.rag.models import KnowledgeChunk
from knowledge_rag.utils.config import get_settings
from knowledge_rag.utils.errors import BatchIngestionError
from knowledge_rag.utils.logger import get_logger, setup_logger
from knowledge_rag.vectorstore.qdrant_client import QdrantVectorStore

# Initialize logger
setup_logger()
logger = get_logger()


def load_chunks(
    path: Path,
    user_id: Optional[str] = None,
    tenant_id: Optional[str] = None,
    agent_id: Optional[str] = None,
) -> List[KnowledgeChunk]:
    """
    Load knowledge chunks from a JSON file.

    Scope ids given on the command line are added to every chunk's metadata
    unless the chunk already sets them.
    """
    with open(path, "r", encoding="utf-8") as f:
        raw = json.load(f)

    scope = {"userId": user_id, "tenantId": tenant_id, "agentId": agent_id}
    scope = {key: value for key, value in scope.items() if value}

    chunks = []
    for i, item in enumerate(raw):
        if not item.get("id") or not item.get("content"):
            raise ValueError(f"Entry {i} is missing 'id' or 'content'")
        chunks.append(KnowledgeChunk(
            id=str(item["id"]),
            content=item["content"],
            metadata={**scope, **(item.get("metadata") or {})},
        ))

    return chunks


async def ingest(args: argparse.Namespace) -> int:
    settings = get_settings()

    chunks = load_chunks(Path(args.input), args.user_id, args.tenant_id, args.agent_id)
    logger.info(f"Loaded {len(chunks)} chunks from {args.input}")

    vector_store = QdrantVectorStore(settings=settings)
    if not await vector_store.connect():
        logger.error("Failed to connect to Qdrant")
        return 1

    try:
        if args.recreate:
            await vector_store.delete_collection()

        orchestrator = await create_orchestrator(settings, vector_store)
        result = await orchestrator.batch_store_knowledge(chunks)

        print("\n" + "=" * 70)
        print("INGESTION SUMMARY")
        print("=" * 70)
        print(f"Chunks stored: {result.entries}")
        print(f"Embedding batches: {result.embedding_groups}")
        print(f"Upsert batches: {result.upsert_groups}")
        print(f"Duration: {result.duration_seconds:.2f} seconds")
        print("=" * 70)

        info = await vector_store.get_collection_info()
        if info:
            print(f"Collection '{info['name']}' now holds {info['points_count']} points")

        return 0

    except BatchIngestionError as e:
        logger.error(f"Ingestion aborted: {e}")
        print(f"\n✗ Ingestion aborted after {e.stored} of {e.total} chunks were stored")
        return 1

    finally:
        await vector_store.close()


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Ingest prepared knowledge chunks into the vector database",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Ingest chunks for a tenant
  python run_ingestion.py chunks.json --tenant-id acme

  # Recreate database and ingest
  python run_ingestion.py chunks.json --recreate
        """
    )

    parser.add_argument("input", help="JSON file with a list of {id, content, metadata} objects")
    parser.add_argument(
        "--recreate",
        action="store_true",
        help="Recreate the vector database collection (WARNING: deletes existing data)"
    )
    parser.add_argument("--user-id", help="Owner id added to every chunk")
    parser.add_argument("--tenant-id", help="Tenant id added to every chunk")
    parser.add_argument("--agent-id", help="Agent id added to every chunk")

    args = parser.parse_args()

    if args.recreate:
        logger.warning("=" * 70)
        logger.warning("WARNING: --recreate flag is set!")
        logger.warning("This will DELETE all existing data in the vector database!")
        logger.warning("=" * 70)

        response = input("Are you sure you want to continue? (yes/no): ")
        if response.lower() != "yes":
            logger.info("Ingestion cancelled by user")
            return 0

    try:
        return asyncio.run(ingest(args))

    except KeyboardInterrupt:
        logger.info("\nIngestion cancelled by user (Ctrl+C)")
        return 130

    except Exception as e:
        logger.exception(f"Fatal error during ingestion: {e}")
        print(f"\n✗ Fatal error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
