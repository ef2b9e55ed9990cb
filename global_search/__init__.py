"""Federated search and indexing pipeline for Meilisearch."""

__version__ = "1.0.0"
