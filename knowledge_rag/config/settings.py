"""Application settings loaded from environment variables via pydantic-settings.

Values come from (highest priority first) environment variables, then the
``.env`` file in the working directory, then the defaults below.  Field
``openai_api_key`` maps to ``OPENAI_API_KEY`` and so on.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Knowledge base settings.

    Environment variables override defaults. Loaded from .env file when present.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # === Embedding providers ===
    # Empty string = "not configured"; provider selection skips it.
    openai_api_key: str = ""
    openai_base_url: str = ""  # OpenAI-compatible endpoint (TogetherAI, vLLM, ...)
    openai_embedding_model: str = ""  # empty -> text-embedding-3-small
    ollama_base_url: str = "http://localhost:11434"

    # === Storage ===
    knowledge_db_path: str = "data/knowledge.db"
    chromadb_persist_dir: str = "./data/chromadb"
    knowledge_files_dir: str = "data/knowledge-files"

    # === Chunking ===
    chunk_size: int = 500
    chunk_overlap: int = 50
    min_chunk_size: int = 100

    # === Embedding client policy ===
    embedding_batch_size: int = 20
    embedding_max_retries: int = 3
    embedding_retry_delay: float = 1.0  # seconds, doubled per attempt
    embedding_rate_limit_delay: float = 0.1  # seconds between batches

    # === Search defaults ===
    search_top_k: int = 5
    search_min_score: float = 0.5

    # === Web fetching ===
    web_fetch_timeout: float = 30.0

    # === App Config ===
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_env: str = "development"
    log_level: str = "INFO"

    def get_available_embedding_providers(self) -> list[str]:
        """Return embedding provider names that have configuration present."""
        providers: list[str] = []
        if self.openai_api_key:
            providers.append("openai")
        if self.ollama_base_url:
            providers.append("ollama")
        return providers
