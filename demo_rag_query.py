#!/usr/bin/env python3
"""
Demo script to test the RAG pipeline with LLM response generation.

This demonstrates the full workflow:
1. User asks a question
2. RAG retrieves relevant knowledge for the user/tenant/agent scope
3. LLM generates an answer using the assembled context
4. User sees the answer with its citations

Usage:
    python demo_rag_query.py "your question here" [--tenant-id ID] [--stream]
"""

import argparse
import asyncio
import sys

from knowledge_rag.agents.orchestrator import create_orchestrator
from knowledge_rag.rag.models import RAGResponse
from knowledge_rag.utils.logger import get_logger, setup_logger

setup_logger(log_to_file=False)
logger = get_logger()


def print_citations(response: RAGResponse) -> None:
    print("📄 SOURCES:")
    print("-" * 80)

    if not response.citations:
        print("   (no matching knowledge)")

    for i, citation in enumerate(response.citations, 1):
        print(f"\n{i}. {citation.title or citation.file_name or citation.id}")
        if citation.page is not None:
            print(f"   Page: {citation.page}")
        print(f"   Relevance: {citation.score:.2%}")
        print(f"   Text: {citation.content_preview}")

    print()
    print("-" * 80)


async def run(args: argparse.Namespace) -> int:
    print("📚 Step 1: Initializing RAG system...")
    orchestrator = await create_orchestrator()
    print("✅ RAG system ready")
    print()

    print("❓ QUESTION:")
    print(f"   {args.query}")
    print()

    print("=" * 80)
    print("  💬 ANSWER:")
    print("=" * 80)
    print()

    if args.stream:
        async for chunk in orchestrator.chat_with_rag_stream(
            args.query,
            user_id=args.user_id,
            tenant_id=args.tenant_id,
            agent_id=args.agent_id,
        ):
            print(chunk, end="", flush=True)
        print("\n")
        return 0

    response = await orchestrator.chat_with_rag(
        args.query,
        user_id=args.user_id,
        tenant_id=args.tenant_id,
        agent_id=args.agent_id,
    )
    print(response.response)
    print()
    print_citations(response)
    return 0


def main():
    """Run demo."""
    parser = argparse.ArgumentParser(description="Ask a question against the knowledge base")
    parser.add_argument("query", nargs="+", help="Question text")
    parser.add_argument("--user-id", help="Owner scope")
    parser.add_argument("--tenant-id", help="Tenant scope")
    parser.add_argument("--agent-id", help="Agent scope")
    parser.add_argument("--stream", action="store_true", help="Stream the answer as it is generated")

    args = parser.parse_args()
    args.query = " ".join(args.query)

    try:
        return asyncio.run(run(args))
    except Exception as e:
        logger.error(f"Demo failed: {e}")
        print(f"❌ {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
