"""Tests for the embedding service.

Models are replaced by deterministic in-process fakes (see ``fakes``) so the
suite runs without downloading weights.
"""
