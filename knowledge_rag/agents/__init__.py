"""Orchestration of the RAG pipeline.

This module contains:
- RAGOrchestrator: embedding, search, context assembly and generation
- create_orchestrator: wiring of the default Ollama and Qdrant backends
"""
