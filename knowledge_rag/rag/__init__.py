"""Retrieval-Augmented Generation (RAG) pipeline.

This module handles:
- Similarity search over stored knowledge
- Token-budgeted context preparation for the LLM
- Knowledge ingestion and deletion
- Response generation with retrieved context
"""
