
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    API_KEY: str = ""
    ALLOWED_ORIGINS: str = "*"

    DATABASE_URL: str = ""
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "docchat"
    DB_USER: str = "postgres"
    DB_PASSWORD: str = "postgres"

    STORAGE_DIR: str = "./storage"
    PUBLIC_BASE_URL: str = "http://localhost:8000/files"

    # Upload policy
    MAX_FILE_SIZE: int = 10 * 1024 * 1024
    ALLOWED_EXTENSIONS: str = "pdf,docx,txt"
    MIN_TEXT_LENGTH: int = 10

    CHUNK_SIZE: int = 1000
    CHUNK_OVERLAP: int = 200

    # OpenAI (embeddings, and chat when LLM_PROVIDER=openai)
    OPENAI_API_KEY: str = ""
    OPENAI_MODEL: str = "gpt-4o-mini"
    OPENAI_EMBED_MODEL: str = "text-embedding-3-small"
    EMBED_DIM: int = 1536
    EMBED_BATCH_SIZE: int = 100
    EMBED_PACE_EVERY: int = 100
    EMBED_PACE_SECONDS: float = 0.1

    UPSERT_BATCH_SIZE: int = 100
    VECTOR_TEXT_LIMIT: int = 8000

    # LLM provider selection: "openai" or "perplexity"
    LLM_PROVIDER: str = "openai"
    PERPLEXITY_API_KEY: str = ""
    PERPLEXITY_MODEL: str = "sonar"
    LLM_TEMPERATURE: float = 0.1

    RETRIEVAL_TOP_K: int = 4
    HISTORY_LIMIT: int = 6

    INGEST_TIMEOUT_SECONDS: float = 300.0
    DOCUMENT_CACHE_SIZE: int = 256

    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return f"postgresql+asyncpg://{self.DB_USER}:{self.DB_PASSWORD}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

    @property
    def allowed_extensions(self) -> frozenset[str]:
        return frozenset(e.strip().lower().lstrip(".") for e in self.ALLOWED_EXTENSIONS.split(",") if e.strip())

settings = Settings()
