"""Vector stores and the indexing/retrieval orchestrators."""
