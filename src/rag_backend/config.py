"""Configuration management for the RAG backend using Hydra.

All configuration is loaded from YAML files in conf/rag/. API keys come from
the environment (via `${oc.env:...}` interpolation) or, when unset there,
from conf/secrets.yml. Validation happens once, at process start, through
`validate_config`.
"""

import os
from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]
from hydra import compose, initialize_config_dir
from omegaconf import DictConfig, OmegaConf
from pydantic import BaseModel, Field, field_validator

from rag_backend.chunking import ChunkingConfig
from rag_backend.embedding import EmbeddingConfig
from rag_backend.errors import ConfigurationError
from rag_backend.extraction import DEFAULT_EXTENSIONS
from rag_backend.index import IndexConfig

PROVIDER_KEY_NAMES = {"huggingface/": "HUGGINGFACE_API_KEY", "openai/": "OPENAI_API_KEY"}


def _repo_root() -> Path:
    return Path(__file__).resolve().parents[2]


class ServerConfig(BaseModel):
    """MCP server identity and logging.

    Attributes:
        name: Server name advertised to MCP clients
        version: Server version advertised to MCP clients
        log_level: loguru level for stderr logging
    """

    name: str = "mcp-rag"
    version: str = "1.0.0"
    log_level: str = "INFO"


class FilesConfig(BaseModel):
    """Limits applied to documents before ingestion.

    Attributes:
        max_file_size_mb: Largest accepted file size
        supported_extensions: Extension allow-list (with leading dots)
    """

    max_file_size_mb: int = Field(default=50, ge=1)
    supported_extensions: list[str] = Field(default_factory=lambda: list(DEFAULT_EXTENSIONS))

    @field_validator("supported_extensions")
    @classmethod
    def normalize_extensions(cls, v: list[str]) -> list[str]:
        """Lower-case extensions and make sure each starts with a dot."""
        normalized = []
        for ext in v:
            ext = ext.strip().lower()
            if not ext:
                continue
            normalized.append(ext if ext.startswith(".") else f".{ext}")
        if not normalized:
            raise ValueError("supported_extensions cannot be empty")
        return normalized

    @property
    def max_file_size_bytes(self) -> int:
        return self.max_file_size_mb * 1024 * 1024


class SearchDefaults(BaseModel):
    limit: int = Field(default=10, ge=1, le=10000)
    threshold: float = Field(default=0.7, ge=-1.0, le=1.0)


class RAGConfig(BaseModel):
    """Top-level configuration for the RAG backend.

    Attributes:
        server: MCP server settings
        chunking: Text chunking configuration
        embedding: Embedding model configuration
        index: Vector index configuration
        files: Ingestion limits
        search: Default search limit and threshold
    """

    server: ServerConfig = Field(default_factory=ServerConfig)
    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    index: IndexConfig = Field(default_factory=IndexConfig)
    files: FilesConfig = Field(default_factory=FilesConfig)
    search: SearchDefaults = Field(default_factory=SearchDefaults)


def provider_key_name(model: str) -> str:
    """Name of the environment variable holding the key for an embedding model."""
    for prefix, name in PROVIDER_KEY_NAMES.items():
        if model.startswith(prefix):
            return name
    return "EMBEDDING_API_KEY"


def load_secrets(path: str | Path | None = None) -> dict[str, str]:
    """Read API keys from a YAML secrets file.

    Args:
        path: Secrets file (defaults to RAG_SECRETS_PATH or conf/secrets.yml)

    Returns:
        Mapping of key names to non-empty values; empty if the file is absent
    """
    env_path = os.environ.get("RAG_SECRETS_PATH")
    secrets_path = Path(path or env_path or _repo_root() / "conf" / "secrets.yml")
    if not secrets_path.exists():
        return {}

    data = yaml.safe_load(secrets_path.read_text()) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Secrets file must contain a mapping: {secrets_path}")

    return {str(key): str(value) for key, value in data.items() if value}


def _apply_secrets(config: RAGConfig, secrets: dict[str, str]) -> RAGConfig:
    """Fill unset API keys from the environment, then from the secrets file."""
    embedding_key = provider_key_name(config.embedding.model)
    if not config.embedding.api_key:
        config.embedding.api_key = os.environ.get(embedding_key) or secrets.get(embedding_key)
    if not config.index.api_key:
        config.index.api_key = os.environ.get("PINECONE_API_KEY") or secrets.get(
            "PINECONE_API_KEY"
        )
    return config


def _default_config_dir() -> Path:
    env_path = os.environ.get("RAG_CONFIG_PATH")
    if env_path:
        return Path(env_path)

    cwd_candidate = Path.cwd() / "conf" / "rag"
    if cwd_candidate.exists():
        return cwd_candidate
    return _repo_root() / "conf" / "rag"


def load_config(
    config_name: str = "default",
    config_path: str | Path | None = None,
    overrides: list[str] | None = None,
    secrets_path: str | Path | None = None,
) -> RAGConfig:
    """Load RAG configuration from Hydra YAML files.

    Args:
        config_name: Name of config file (without .yaml extension)
        config_path: Path to config directory (defaults to conf/rag/)
        overrides: List of config overrides (e.g., ["chunking.chunk_size=500"])
        secrets_path: Optional secrets file used for keys missing from the env

    Returns:
        Configuration object (call `validate_config` before serving)

    Example:
        >>> config = load_config("default")
        >>> config.embedding.dimensions
        384

        >>> config = load_config("default", overrides=["search.threshold=0.5"])
        >>> config.search.threshold
        0.5
    """
    config_path = Path(config_path or _default_config_dir()).resolve()

    if not config_path.exists():
        raise FileNotFoundError(
            f"Config directory not found: {config_path}\n" f"Create it with: mkdir -p {config_path}"
        )

    # Initialize Hydra with config directory
    with initialize_config_dir(config_dir=str(config_path), version_base=None, job_name="rag"):
        cfg: DictConfig = compose(config_name=config_name, overrides=overrides or [])

    # Convert OmegaConf to dict and validate with Pydantic
    config_dict = OmegaConf.to_container(cfg, resolve=True)
    config = RAGConfig(**config_dict)  # type: ignore[arg-type]
    return _apply_secrets(config, load_secrets(secrets_path))


def validate_config(config: RAGConfig) -> None:
    """Check everything the server needs before it starts.

    Raises:
        ConfigurationError: Listing every missing or inconsistent setting
    """
    problems: list[str] = []

    if not config.embedding.model.startswith(tuple(PROVIDER_KEY_NAMES)):
        problems.append(
            f"embedding.model {config.embedding.model!r} must start with one of "
            f"{sorted(PROVIDER_KEY_NAMES)}"
        )
    if not config.embedding.api_key:
        problems.append(
            f"{provider_key_name(config.embedding.model)} is required. "
            "Set it in the environment or conf/secrets.yml."
        )
    if config.index.backend == "pinecone" and not config.index.api_key:
        problems.append("PINECONE_API_KEY is required. Set it in the environment or conf/secrets.yml.")
    if config.index.documents_index == config.index.memory_index and not config.index.namespace:
        problems.append("index.documents_index and index.memory_index must differ")

    if problems:
        raise ConfigurationError("Invalid configuration:\n- " + "\n- ".join(problems))


def create_default_config() -> dict[str, dict[str, Any]]:
    """Create a default configuration dictionary for bootstrapping.

    Returns:
        Dictionary suitable for writing to YAML

    Example:
        >>> import yaml
        >>> config = create_default_config()
        >>> with open("conf/rag/default.yaml", "w") as f:
        ...     yaml.dump(config, f)
    """
    return {
        "server": {
            "name": "mcp-rag",
            "version": "1.0.0",
            "log_level": "${oc.env:LOG_LEVEL,INFO}",
        },
        "chunking": {
            "chunk_size": 1000,
            "overlap": 200,
        },
        "embedding": {
            "model": "huggingface/sentence-transformers/all-MiniLM-L6-v2",
            "dimensions": 384,
            "batch_size": 10,
            "max_retries": 3,
            "timeout_seconds": 30.0,
            "batch_delay_seconds": 1.0,
            "backoff_base_seconds": 1.0,
            "api_key": "${oc.env:HUGGINGFACE_API_KEY,null}",
            "base_url": None,
        },
        "index": {
            "backend": "pinecone",
            "api_key": "${oc.env:PINECONE_API_KEY,null}",
            "documents_index": "${oc.env:PINECONE_INDEX_FILES,rag-files}",
            "memory_index": "${oc.env:PINECONE_INDEX_MEMORY,agent-memory}",
            "namespace": None,
        },
        "files": {
            "max_file_size_mb": 50,
            "supported_extensions": list(DEFAULT_EXTENSIONS),
        },
        "search": {
            "limit": 10,
            "threshold": 0.7,
        },
    }
