"""Typed application settings.

Every tunable of the engine lives here: which embedder and backends to build,
where they keep data, how documents are chunked and how retrieval ranks.
Values come from KNOWLEDGE_* environment variables (nested with "__", e.g.
KNOWLEDGE_RETRIEVAL__RRF_K) and from the TOML file read by
knowledge.config.loader. Invalid chunking numbers fall back to defaults;
other invalid values fail validation.
"""

from enum import Enum
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CHUNK_SIZE = 1000
DEFAULT_CHUNK_OVERLAP = 200
DEFAULT_LIMIT = 10
DEFAULT_RRF_K = 60.0


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class EmbeddingProviderType(str, Enum):
    """Supported embedding providers."""

    OPENAI = "openai"
    LOCAL = "local"
    HASH = "hash"


class VectorStoreType(str, Enum):
    """Supported vector stores."""

    CHROMA = "chroma"
    MEMORY = "memory"


class GraphStoreType(str, Enum):
    """Supported graph stores."""

    SQLITE = "sqlite"
    MEMORY = "memory"


class RepositoryType(str, Enum):
    """Supported knowledge repositories."""

    SQLITE = "sqlite"
    MEMORY = "memory"


class LoggingConfig(BaseModel):
    """File logging settings. Level and renderer are AppConfig.log_level and json_logs."""

    enable_file: bool = False
    log_dir: Path = Field(default=Path.home() / ".knowledge" / "logs")
    max_days: int = Field(default=30, gt=0)

    def model_post_init(self, __context: Any) -> None:
        """Expand ~ in paths."""
        self.log_dir = self.log_dir.expanduser()


class EmbeddingConfig(BaseModel):
    """Embedding provider configuration."""

    provider: EmbeddingProviderType = EmbeddingProviderType.HASH
    model_name: str = "hash-256"
    api_key: Optional[str] = None
    batch_size: int = Field(default=32, gt=0)
    extra_params: dict[str, Any] = Field(default_factory=dict)


class VectorStoreConfig(BaseModel):
    """Vector store configuration."""

    store_type: VectorStoreType = VectorStoreType.CHROMA
    persist_directory: Optional[Path] = None
    extra_params: dict[str, Any] = Field(default_factory=dict)

    def model_post_init(self, __context: Any) -> None:
        """Expand ~ in paths."""
        if self.persist_directory:
            self.persist_directory = self.persist_directory.expanduser()


class GraphStoreConfig(BaseModel):
    """Graph store configuration."""

    store_type: GraphStoreType = GraphStoreType.SQLITE
    connection_string: str = "sqlite:///~/.knowledge/graph.db"


class RepositoryConfig(BaseModel):
    """Knowledge repository (aggregate persistence) configuration."""

    store_type: RepositoryType = RepositoryType.SQLITE
    connection_string: str = "sqlite:///~/.knowledge/knowledge.db"


class ChunkingConfig(BaseModel):
    """Fixed-width chunking configuration.

    Non-positive chunk sizes and negative overlaps fall back to the defaults
    (1000 / 200). An overlap that is not strictly smaller than the chunk size
    is rejected, since the window would never advance.
    """

    chunk_size: int = Field(default=DEFAULT_CHUNK_SIZE, description="Window width in characters")
    chunk_overlap: int = Field(default=DEFAULT_CHUNK_OVERLAP, description="Characters shared by consecutive windows")

    @field_validator("chunk_size", mode="before")
    @classmethod
    def default_chunk_size(cls, v: Any) -> Any:
        if isinstance(v, int) and v <= 0:
            return DEFAULT_CHUNK_SIZE
        return v

    @field_validator("chunk_overlap", mode="before")
    @classmethod
    def default_chunk_overlap(cls, v: Any) -> Any:
        if isinstance(v, int) and v < 0:
            return DEFAULT_CHUNK_OVERLAP
        return v

    @model_validator(mode="after")
    def overlap_below_size(self) -> "ChunkingConfig":
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError(
                f"chunk_overlap ({self.chunk_overlap}) must be smaller than "
                f"chunk_size ({self.chunk_size})"
            )
        return self


class RetrievalConfig(BaseModel):
    """Hybrid retrieval configuration."""

    default_limit: int = Field(default=DEFAULT_LIMIT, gt=0, description="Result count used when a caller passes limit <= 0")
    candidate_multiplier: int = Field(default=2, gt=0, description="Candidates requested per source, as a multiple of limit")
    rrf_k: float = Field(default=DEFAULT_RRF_K, gt=0)
    rerank: bool = True
    rerank_boost: float = Field(default=0.2, ge=0.0)
    rerank_case_sensitive: bool = True


class AppConfig(BaseSettings):
    """Main application configuration.

    Loads from (highest priority first):
    1. Environment variables (prefixed with KNOWLEDGE_)
    2. .env file
    3. Config file (TOML), passed in as keyword arguments
    """

    model_config = SettingsConfigDict(
        env_prefix="KNOWLEDGE_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    app_name: str = "knowledge"
    log_level: LogLevel = LogLevel.INFO
    json_logs: bool = False
    data_dir: Path = Field(default=Path.home() / ".knowledge")

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    vector_store: VectorStoreConfig = Field(default_factory=VectorStoreConfig)
    graph_store: GraphStoreConfig = Field(default_factory=GraphStoreConfig)
    repository: RepositoryConfig = Field(default_factory=RepositoryConfig)
    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # Environment variables override values passed in from the TOML file
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    def model_post_init(self, __context: Any) -> None:
        """Post-initialization: create data directory if needed."""
        self.data_dir = self.data_dir.expanduser()
        self.data_dir.mkdir(parents=True, exist_ok=True)
