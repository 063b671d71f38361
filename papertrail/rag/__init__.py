"""RAG (Retrieval-Augmented Generation) pipeline components.

This package contains modules for:
- Sliding-window text chunking
- Embedding generation
- FAISS similarity search
- Semantic retrieval and context formatting
- Source ingestion
"""
