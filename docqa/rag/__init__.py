"""RAG (Retrieval-Augmented Generation) pipeline components.

This package contains modules for:
- Document reading and frontmatter parsing
- Sentence-aware chunking with overlap
- Embedding and generation capabilities
- Durable FAISS / Chroma collections
- The vector index with in-memory fallback
- Ingestion and question answering
"""
