"""CV portal generator: turns a parsed CV into a deployed portal with RAG chat."""
