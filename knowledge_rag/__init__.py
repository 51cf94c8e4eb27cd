"""
Knowledge RAG - question answering over a tenant's private knowledge base.

This package provides retrieval-augmented generation on top of a vector
database, with a shared memoizing cache in front of every expensive call.
"""

__version__ = "1.0.0"
