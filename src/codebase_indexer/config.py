"""Configuration management for Codebase Indexer."""

import json
import logging
from pathlib import Path
from typing import List, Optional, Any, Literal

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

CONFIG_DIR_NAME = ".codebase-indexer"


class OllamaConfig(BaseModel):
    """Configuration for Ollama service."""

    host: str = Field(default="http://localhost:11434", description="Ollama API host")
    model: str = Field(default="nomic-embed-text", description="Embedding model name")
    timeout: int = Field(default=30, description="Request timeout in seconds")
    batch_size: int = Field(
        default=16, description="Texts handed to the client per embedding call"
    )


class VoyageAIConfig(BaseModel):
    """Configuration for VoyageAI embedding service.

    VoyageAI provides high-quality embeddings optimized for code and text.
    API documentation: https://docs.voyageai.com/
    """

    # API key should be set via VOYAGE_API_KEY environment variable
    api_endpoint: str = Field(
        default="https://api.voyageai.com/v1/embeddings",
        description="VoyageAI API endpoint URL",
    )
    model: str = Field(
        default="voyage-code-3",
        description="VoyageAI embedding model name (e.g., voyage-code-3, voyage-large-2, voyage-2)",
    )
    timeout: int = Field(default=30, description="Request timeout in seconds")
    batch_size: int = Field(
        default=128,
        description="Maximum number of texts to send in a single batch request",
    )

    # Retry configuration for server errors and transient failures
    max_retries: int = Field(
        default=3, description="Maximum number of retries for failed requests"
    )
    retry_delay: float = Field(
        default=1.0, description="Initial delay between retries in seconds"
    )
    exponential_backoff: bool = Field(
        default=True, description="Use exponential backoff for retries"
    )


class VectorConfig(BaseModel):
    """Configuration for the vector index and its embedding concurrency."""

    enabled: bool = Field(
        default=True, description="Build the vector index when a provider is set"
    )
    min_concurrency: int = Field(
        default=1, description="Lower bound for concurrent embedding requests"
    )
    max_concurrency: int = Field(
        default=8, description="Upper bound for concurrent embedding requests"
    )
    latency_target: float = Field(
        default=10.0,
        description="Requests slower than this (seconds) shrink the concurrency window",
    )


class IndexingConfig(BaseModel):
    """Configuration for indexing behavior."""

    files_per_batch: int = Field(
        default=500, description="Maximum refresh operations applied in one batch"
    )
    max_chunk_size: int = Field(
        default=2000, description="Maximum chunk size in characters"
    )
    max_file_size: int = Field(
        default=1048576, description="Maximum file size to index"
    )
    disable_indexing: bool = Field(
        default=False, description="Report indexing as disabled and do nothing"
    )
    pause_poll_interval: float = Field(
        default=0.1, description="Seconds between checks while indexing is paused"
    )


class StorageConfig(BaseModel):
    """Where index data lives on disk."""

    index_dir: Path = Field(
        default=Path.home() / CONFIG_DIR_NAME / "index",
        description="Directory holding the sqlite database and full-text index",
    )

    @field_validator("index_dir", mode="before")
    @classmethod
    def convert_path(cls, v: Any) -> Path:
        """Convert string paths to Path objects."""
        if isinstance(v, str):
            return Path(v).expanduser()
        if isinstance(v, Path):
            return v
        raise ValueError(f"Expected str or Path, got {type(v)}")


class Config(BaseModel):
    """Main configuration for Codebase Indexer."""

    workspace_dirs: List[Path] = Field(
        default_factory=lambda: [Path(".")],
        description="Directories to index",
    )
    file_extensions: List[str] = Field(
        default=[
            "py",
            "js",
            "ts",
            "tsx",
            "jsx",
            "java",
            "c",
            "cpp",
            "cc",
            "cs",
            "h",
            "hpp",
            "go",
            "rs",
            "rb",
            "php",
            "sh",
            "html",
            "css",
            "md",
            "json",
            "yaml",
            "yml",
            "toml",
            "sql",
            "swift",
            "kt",
            "scala",
            "lua",
        ],
        description="File extensions to index",
    )
    exclude_dirs: List[str] = Field(
        default=[
            "node_modules",
            "venv",
            "__pycache__",
            ".git",
            "dist",
            "build",
            "target",
            ".idea",
            ".vscode",
            "coverage",
            CONFIG_DIR_NAME,
        ],
        description="Directories to exclude from indexing",
    )

    embedding_provider: Literal["ollama", "voyage-ai", "none"] = Field(
        default="none",
        description="Embedding provider: 'ollama', 'voyage-ai', or 'none' to skip vectors",
    )

    ollama: OllamaConfig = Field(default_factory=OllamaConfig)
    voyage_ai: VoyageAIConfig = Field(default_factory=VoyageAIConfig)
    vectors: VectorConfig = Field(default_factory=VectorConfig)
    indexing: IndexingConfig = Field(default_factory=IndexingConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)

    @field_validator("workspace_dirs", mode="before")
    @classmethod
    def convert_paths(cls, v: Any) -> List[Path]:
        """Convert string paths to Path objects."""
        if not isinstance(v, (list, tuple)):
            raise ValueError(f"Expected a list of paths, got {type(v)}")
        return [Path(p) if isinstance(p, str) else p for p in v]

    @field_validator("file_extensions")
    @classmethod
    def normalize_extensions(cls, v: List[str]) -> List[str]:
        """Remove dots from file extensions."""
        return [ext.lstrip(".") for ext in v]


class ConfigManager:
    """Manages configuration loading, saving, and validation."""

    DEFAULT_CONFIG_PATH = Path(CONFIG_DIR_NAME) / "config.json"

    def __init__(self, config_path: Optional[Path] = None):
        self.config_path = config_path or self.DEFAULT_CONFIG_PATH
        self._config: Optional[Config] = None

    def load(self) -> Config:
        """Load configuration from file or create default."""
        if self.config_path.exists():
            try:
                with open(self.config_path, "r") as f:
                    data = json.load(f)

                if "workspace_dirs" in data:
                    data["workspace_dirs"] = [
                        str(self._resolve_relative_path(p))
                        for p in data["workspace_dirs"]
                    ]

                self._config = Config(**data)
            except Exception as e:
                raise ValueError(f"Failed to load config from {self.config_path}: {e}")
        else:
            self._config = Config()

        return self._config

    def save(self, config: Optional[Config] = None) -> None:
        """Save configuration to file with paths relative to the project root."""
        if config is None:
            config = self._config

        if config is None:
            raise ValueError("No configuration to save")

        self.config_path.parent.mkdir(parents=True, exist_ok=True)

        config_dict = config.model_dump(mode="json")
        config_dict["workspace_dirs"] = [
            self._make_relative_to_config(p) for p in config.workspace_dirs
        ]

        with open(self.config_path, "w") as f:
            json.dump(config_dict, f, indent=2)

    def get_config(self) -> Config:
        """Get current configuration, loading if necessary."""
        if self._config is None:
            self.load()
        if self._config is None:
            raise RuntimeError("Failed to load configuration")
        return self._config

    def create_default_config(self, workspace_dir: Path = Path(".")) -> Config:
        """Create a default configuration for the given directory."""
        config = Config(workspace_dirs=[workspace_dir])
        self._config = config
        self.save()
        return config

    @staticmethod
    def find_config_path(start_dir: Optional[Path] = None) -> Optional[Path]:
        """Find .codebase-indexer/config.json by walking up the directory tree.

        Args:
            start_dir: Directory to start searching from (default: current directory)

        Returns:
            Path to config.json if found, None otherwise
        """
        current = start_dir or Path.cwd()

        for path in [current] + list(current.parents):
            config_path = path / CONFIG_DIR_NAME / "config.json"
            if config_path.exists():
                return config_path

        return None

    @classmethod
    def create_with_backtrack(cls, start_dir: Optional[Path] = None) -> "ConfigManager":
        """Create ConfigManager by finding config through directory backtracking.

        Args:
            start_dir: Directory to start searching from (default: current directory)

        Returns:
            ConfigManager instance with found config path or default path
        """
        config_path = cls.find_config_path(start_dir)
        if config_path is None:
            start = start_dir or Path.cwd()
            config_path = start / CONFIG_DIR_NAME / "config.json"
        return cls(config_path)

    def _make_relative_to_config(self, path: Path) -> str:
        """Convert an absolute path to relative path from config location."""
        if not path.is_absolute():
            return str(path)

        config_root = self.config_path.parent.parent.resolve()
        try:
            relative_path = path.resolve().relative_to(config_root)
            return str(relative_path) if str(relative_path) != "." else "."
        except ValueError:
            # Outside the project root
            return str(path.resolve())

    def _resolve_relative_path(self, path_str: str) -> Path:
        """Resolve a potentially relative path from config to absolute path."""
        path = Path(path_str)
        if path.is_absolute():
            return path

        config_dir = self.config_path.parent.parent
        return (config_dir / path).resolve()
