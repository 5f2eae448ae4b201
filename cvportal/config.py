"""Application configuration with sensible defaults."""
import os
from pathlib import Path

# Paths
BASE_DIR = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("CVPORTAL_DATA_DIR", str(BASE_DIR / "data")))
VECTOR_STORE_DIR = DATA_DIR / "vector_stores"
SPACE_TEMPLATES_DIR = Path(__file__).parent / "deploy" / "templates"

# Ensure data directories exist
DATA_DIR.mkdir(parents=True, exist_ok=True)

# Ollama configuration
OLLAMA_BASE_URL = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
OLLAMA_TIMEOUT = float(os.getenv("OLLAMA_TIMEOUT", "60.0"))
CHAT_MODEL = os.getenv("CHAT_MODEL", "gemma3:12b")

# Embeddings (all-minilm == sentence-transformers/all-MiniLM-L6-v2, 384 dims)
EMBEDDING_PROVIDER = os.getenv("EMBEDDING_PROVIDER", "ollama")
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "all-minilm")
EMBEDDING_DIMENSION = int(os.getenv("EMBEDDING_DIMENSION", "384"))
EMBEDDING_BATCH_SIZE = int(os.getenv("EMBEDDING_BATCH_SIZE", "10"))
EMBEDDING_RATE_LIMIT_DELAY_MS = int(os.getenv("EMBEDDING_RATE_LIMIT_DELAY_MS", "500"))
EMBEDDING_RETRY_ATTEMPTS = int(os.getenv("EMBEDDING_RETRY_ATTEMPTS", "3"))
EMBEDDING_TIMEOUT = float(os.getenv("EMBEDDING_TIMEOUT", "30.0"))

# Chunking (character-based to avoid tokenizer inconsistencies)
CHUNK_SIZE = int(os.getenv("CHUNK_SIZE", "2000"))          # ≈500 tokens
CHUNK_OVERLAP = int(os.getenv("CHUNK_OVERLAP", "200"))     # ≈50 tokens

# Retrieval
RETRIEVAL_TOP_K = int(os.getenv("RETRIEVAL_TOP_K", "10"))
RETRIEVAL_MIN_SCORE = float(os.getenv("RETRIEVAL_MIN_SCORE", "0.7"))
MAX_CONTEXT_TOKENS = int(os.getenv("MAX_CONTEXT_TOKENS", "2000"))
MAX_CONTEXT_SOURCES = 3

# Hugging Face deployment
HUGGINGFACE_API_URL = os.getenv("HUGGINGFACE_API_URL", "https://huggingface.co")
HUGGINGFACE_TOKEN = os.getenv("HUGGINGFACE_TOKEN", "")
HUGGINGFACE_NAMESPACE = os.getenv("HUGGINGFACE_NAMESPACE", "")  # empty = token owner
HUGGINGFACE_TIMEOUT = float(os.getenv("HUGGINGFACE_TIMEOUT", "30.0"))
DEPLOY_POLL_ATTEMPTS = int(os.getenv("DEPLOY_POLL_ATTEMPTS", "10"))
DEPLOY_POLL_INTERVAL = float(os.getenv("DEPLOY_POLL_INTERVAL", "6.0"))
SPACE_CHAT_MODEL = os.getenv("SPACE_CHAT_MODEL", "HuggingFaceH4/zephyr-7b-beta")
SPACE_CHAT_API_KEY = os.getenv("SPACE_CHAT_API_KEY", "")

# Portal URLs
PORTAL_DOMAIN_SUFFIX = "-cv-portal.hf.space"

# Pipeline
STEP_TIMEOUT_SECONDS = float(os.getenv("STEP_TIMEOUT_SECONDS", "120.0"))

# Database
DB_PATH = DATA_DIR / "portals.sqlite"

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
