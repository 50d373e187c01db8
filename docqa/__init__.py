"""Document question answering over a semantic vector index."""
