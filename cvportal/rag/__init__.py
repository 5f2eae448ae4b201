"""RAG (Retrieval-Augmented Generation) components for CV portals.

This package contains modules for:
- Profile chunking with section metadata
- Batched embedding generation
- Cosine-similarity vector storage (FAISS)
- Token-budgeted context retrieval
- The portal chat assistant
"""
