"""Engine-wide constants and defaults."""

DEFAULT_DEDUP_THRESHOLD = 0.95

DEFAULT_CHUNK_SIZE_TOKENS = 500
DEFAULT_CHUNK_OVERLAP_TOKENS = 50

DEFAULT_HALF_LIFE_DAYS = 30.0
DEFAULT_RANKING_WEIGHTS = {
    "similarity": 0.40,
    "recency": 0.30,
    "frequency": 0.20,
    "importance": 0.10,
}

# Declared output dimensions of common embedding models
DEFAULT_MODEL_DIMENSIONS = {
    "nomic-embed-text": 768,
    "mxbai-embed-large": 1024,
    "all-minilm": 384,
    "snowflake-arctic-embed": 1024,
    "bge-m3": 1024,
    "voyage-3": 1024,
    "voyage-3-large": 1024,
    "voyage-code-2": 1536,
}

# Metadata key and tag that mark a memory as important for ranking
IMPORTANCE_METADATA_KEY = "important"
IMPORTANCE_TAG = "important"

SECONDS_PER_DAY = 86_400.0
