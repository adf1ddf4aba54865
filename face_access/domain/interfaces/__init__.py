"""Service interfaces package."""
from .matching.embedding_index import EmbeddingIndex

__all__ = ["EmbeddingIndex"]
