"""Vector database management for RAG.

This module provides:
- Vector index interface and Qdrant implementation
- Embedding generation and token estimation
"""
