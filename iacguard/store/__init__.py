"""Versioned template content and agent session storage."""

from .base import SessionStore, TemplateStore
from .client import GraphClient, Neo4jSettings
from .memory import InMemorySessionStore, InMemoryTemplateStore
from .graph import Neo4jSessionStore, Neo4jTemplateStore, ensure_schema

__all__ = [
    # Interfaces
    "SessionStore",
    "TemplateStore",
    # In-memory
    "InMemorySessionStore",
    "InMemoryTemplateStore",
    # Neo4j
    "GraphClient",
    "Neo4jSettings",
    "Neo4jSessionStore",
    "Neo4jTemplateStore",
    "ensure_schema",
]
