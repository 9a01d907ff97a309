"""HTTP API for the embedding service."""
