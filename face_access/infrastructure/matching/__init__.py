"""Embedding index implementations."""
from .pinecone_index import PineconeEmbeddingIndex
from .sql_index import SqlEmbeddingIndex

__all__ = ["PineconeEmbeddingIndex", "SqlEmbeddingIndex"]
