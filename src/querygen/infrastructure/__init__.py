"""
Infrastructure layer for external integrations.

Thin async clients for PostgreSQL, Supabase Storage, and the OpenRouter
LLM and embedding APIs.
"""

from .database_client import DatabaseClient
from .embedding_client import EmbeddingClient
from .llm_client import LLMClient
from .storage_client import StorageClient

__all__ = ["DatabaseClient", "EmbeddingClient", "LLMClient", "StorageClient"]
