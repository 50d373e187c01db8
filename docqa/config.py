"""Application configuration with sensible defaults."""
import os
from pathlib import Path

# Paths
BASE_DIR = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("RAG_DATA_DIR", str(BASE_DIR / "data")))

# Ollama configuration
OLLAMA_BASE_URL = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
CHAT_MODEL = os.getenv("CHAT_MODEL", "gemma3:12b")
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "all-minilm:latest")  # 384 dims

# Vector backend: "faiss" (local, persisted), "chroma" (remote) or "memory"
VECTOR_BACKEND = os.getenv("VECTOR_BACKEND", "faiss").lower()
CHROMA_URL = os.getenv("CHROMA_URL", "http://localhost:8000")
CHROMA_API_PREFIX = os.getenv("CHROMA_API_PREFIX", "/api/v1")
COLLECTION_NAME = os.getenv("COLLECTION_NAME", "rag_documents")

# RAG parameters (character-based to avoid tokenizer inconsistencies)
CHUNK_SIZE = int(os.getenv("CHUNK_SIZE", "500"))
CHUNK_OVERLAP = int(os.getenv("CHUNK_OVERLAP", "50"))
MIN_CHUNK_FRACTION = float(os.getenv("MIN_CHUNK_FRACTION", "0.2"))
RETRIEVAL_TOP_K = int(os.getenv("RETRIEVAL_TOP_K", "5"))
MAX_TOP_K = int(os.getenv("MAX_TOP_K", "20"))
INDEX_BATCH_SIZE = int(os.getenv("INDEX_BATCH_SIZE", "5"))

# Timeouts (seconds) and retries for capability / backend calls
REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", "30.0"))
BACKEND_TIMEOUT = float(os.getenv("BACKEND_TIMEOUT", "10.0"))
CAPABILITY_MAX_RETRIES = int(os.getenv("CAPABILITY_MAX_RETRIES", "2"))

# Uploads
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))
ALLOWED_EXTENSIONS = (".txt", ".md", ".json")

# Service
SERVICE_NAME = "docqa"
VERSION = "1.0.0"

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
