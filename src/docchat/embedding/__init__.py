"""Embedding backends and the on-disk embedding cache."""
