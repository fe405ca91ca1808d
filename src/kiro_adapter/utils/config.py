"""
Configuration loader for the BMad Kiro adapter.

This module provides configuration management with:
- Multiple configuration sources (dicts, JSON, YAML, TOML files)
- Environment variable overrides
- Schema validation through pydantic
- Priority-ordered merging
"""

import os
import json
import yaml
from pathlib import Path
from typing import Optional, Dict, Any, List, Union
import toml
from pydantic import BaseModel, Field, field_validator, ValidationError, ConfigDict
import asyncio

from .logging import get_logger
from .errors import ConfigurationError


logger = get_logger("kiro-adapter.config")

ENV_PREFIX = "KIRO_ADAPTER_"


class ConfigSource(BaseModel):
    """Configuration source definition."""
    path: Optional[Path] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    priority: int = 0
    source_type: str = "dict"

    model_config = ConfigDict(arbitrary_types_allowed=True)


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "INFO"
    format: str = "json"
    directory: Optional[Path] = None
    console: bool = True

    @field_validator('level')
    @classmethod
    def validate_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}")
        return v.upper()


class DiscoveryConfig(BaseModel):
    """Where agent definitions live."""
    root_path: Path = Field(default_factory=Path.cwd)
    core_dir: str = "bmad-core"
    expansion_packs_dir: str = "expansion-packs"
    agents_subdir: str = "agents"
    file_pattern: str = "*.md"
    include_expansion_packs: bool = True
    validate_metadata: bool = True


class ResolverConfig(BaseModel):
    """Dependency resolver configuration."""
    root_path: Path = Field(default_factory=Path.cwd)
    core_dir: str = "bmad-core"
    expansion_packs_dir: str = "expansion-packs"
    common_dir: str = "common"
    extensions: Dict[str, str] = Field(default_factory=lambda: {
        "tasks": ".md",
        "templates": ".yaml",
        "checklists": ".md",
        "data": ".md",
        "utils": ".md",
    })
    enable_cache: bool = False
    max_suggestions: int = 3
    similarity_threshold: float = 0.6

    @field_validator('similarity_threshold')
    @classmethod
    def validate_threshold(cls, v):
        if not 0.0 <= v <= 1.0:
            raise ValueError("similarity_threshold must be between 0 and 1")
        return v


class TransformerConfig(BaseModel):
    """Agent transformer configuration."""
    output_dir: Path = Field(default_factory=lambda: Path(".kiro") / "agents")
    steering_rules: List[str] = Field(default_factory=list)
    mcp_tools: List[str] = Field(default_factory=list)
    enable_context_injection: bool = True
    enable_steering_integration: bool = True
    enable_mcp_integration: bool = True
    enable_expansion_pack_features: bool = True


class HookGeneratorConfig(BaseModel):
    """Hook generator configuration."""
    output_path: Path = Field(default_factory=lambda: Path(".kiro") / "hooks")
    max_retries: int = 3
    retry_delay_ms: int = 1000


class RegistryConfig(BaseModel):
    """Agent registry configuration."""
    retry_attempts: int = Field(default=3, ge=1)
    retry_delay_ms: int = Field(default=1000, ge=0)
    max_retry_delay_ms: int = Field(default=30000, ge=0)


class ActivationConfig(BaseModel):
    """Activation manager configuration."""
    max_concurrent_activations: int = Field(default=10, ge=1)
    activation_timeout_ms: int = Field(default=30000, gt=0)
    session_timeout_ms: int = Field(default=30 * 60 * 1000, gt=0)  # 30 minutes
    session_cleanup_interval: int = 60  # seconds
    state_file: Path = Field(default_factory=lambda: Path(".kiro") / "agent-state.json")
    persist_state: bool = False


class MonitorConfig(BaseModel):
    """Activation monitor configuration."""
    metrics_file: Path = Field(default_factory=lambda: Path(".kiro") / "activation-metrics.json")
    health_check_interval: int = 300  # 5 minutes
    performance_threshold_ms: float = 5000.0
    retention_days: int = Field(default=30, ge=1)
    max_history: int = 1000
    enable_health_checks: bool = True


class AdapterConfig(BaseModel):
    """Main adapter configuration."""
    app_name: str = "kiro-adapter"
    version: str = "0.1.0"
    debug: bool = False

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    discovery: DiscoveryConfig = Field(default_factory=DiscoveryConfig)
    resolver: ResolverConfig = Field(default_factory=ResolverConfig)
    transformer: TransformerConfig = Field(default_factory=TransformerConfig)
    hooks: HookGeneratorConfig = Field(default_factory=HookGeneratorConfig)
    registry: RegistryConfig = Field(default_factory=RegistryConfig)
    activation: ActivationConfig = Field(default_factory=ActivationConfig)
    monitor: MonitorConfig = Field(default_factory=MonitorConfig)

    model_config = ConfigDict(
        arbitrary_types_allowed=True,
        validate_assignment=True
    )

    @classmethod
    def for_project(cls, root: Union[str, Path], **overrides: Any) -> 'AdapterConfig':
        """Build a configuration with every path anchored at a project root."""
        root = Path(root)
        data: Dict[str, Any] = {
            "discovery": {"root_path": root},
            "resolver": {"root_path": root},
            "transformer": {"output_dir": root / ".kiro" / "agents"},
            "hooks": {"output_path": root / ".kiro" / "hooks"},
            "activation": {"state_file": root / ".kiro" / "agent-state.json"},
            "monitor": {"metrics_file": root / ".kiro" / "activation-metrics.json"},
        }
        return cls(**_deep_merge(data, overrides))


def _deep_merge(base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge two dictionaries."""
    result = base.copy()

    for key, value in update.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value

    return result


class ConfigLoader:
    """Configuration loader with multiple source support."""

    def __init__(self, env_prefix: str = ENV_PREFIX):
        self.env_prefix = env_prefix
        self._sources: List[ConfigSource] = []
        self._config: Optional[AdapterConfig] = None
        self._lock = asyncio.Lock()

    def add_source(
        self,
        source: Union[str, Path, Dict[str, Any]],
        priority: int = 0,
        source_type: Optional[str] = None
    ) -> None:
        """
        Add configuration source.

        Args:
            source: Configuration source (file path or dict)
            priority: Source priority (higher wins)
            source_type: Source type (auto-detected if None)
        """
        if isinstance(source, (str, Path)):
            path = Path(source)
            if not source_type:
                source_type = self._detect_source_type(path)

            self._sources.append(ConfigSource(
                path=path,
                priority=priority,
                source_type=source_type
            ))
        else:
            self._sources.append(ConfigSource(
                data=source,
                priority=priority,
                source_type="dict"
            ))

        # Lowest priority first so later merges win
        self._sources.sort(key=lambda s: s.priority)

    def _detect_source_type(self, path: Path) -> str:
        """Detect configuration file type."""
        suffix = path.suffix.lower()
        if suffix == ".json":
            return "json"
        elif suffix in (".yaml", ".yml"):
            return "yaml"
        elif suffix == ".toml":
            return "toml"
        else:
            raise ConfigurationError(f"Unknown config file type: {suffix}")

    async def load(self) -> AdapterConfig:
        """
        Load configuration from all sources.

        Returns:
            Merged configuration
        """
        async with self._lock:
            merged_data: Dict[str, Any] = {}

            for source in self._sources:
                data = self._load_source(source)
                merged_data = _deep_merge(merged_data, data)

            merged_data = _deep_merge(merged_data, self._load_env_vars())

            try:
                self._config = AdapterConfig(**merged_data)
            except ValidationError as e:
                errors = []
                for error in e.errors():
                    field = ".".join(str(x) for x in error["loc"])
                    errors.append(f"{field}: {error['msg']}")

                raise ConfigurationError(
                    f"Configuration validation failed: {'; '.join(errors)}"
                ) from e

            logger.info("configuration_loaded", sources=len(self._sources))
            return self._config

    def _load_source(self, source: ConfigSource) -> Dict[str, Any]:
        """Load data from a configuration source."""
        if source.path is None:
            return source.data

        if not source.path.exists():
            logger.warning("config_file_not_found", path=str(source.path))
            return {}

        content = source.path.read_text(encoding="utf-8")

        try:
            if source.source_type == "json":
                return json.loads(content)
            elif source.source_type == "yaml":
                return yaml.safe_load(content) or {}
            elif source.source_type == "toml":
                return toml.loads(content)
        except (ValueError, yaml.YAMLError, toml.TomlDecodeError) as e:
            raise ConfigurationError(
                f"Failed to parse {source.path}: {e}", cause=e
            ) from e

        raise ConfigurationError(f"Unknown source type: {source.source_type}")

    def _load_env_vars(self) -> Dict[str, Any]:
        """
        Load overrides from environment variables.

        Sections are separated by a double underscore, e.g.
        KIRO_ADAPTER_REGISTRY__RETRY_ATTEMPTS=5.
        """
        result: Dict[str, Any] = {}

        for key, value in os.environ.items():
            if not key.startswith(self.env_prefix):
                continue

            parts = key[len(self.env_prefix):].lower().split("__")
            current = result
            for part in parts[:-1]:
                current = current.setdefault(part, {})
            current[parts[-1]] = self._convert_value(value)

        return result

    def _convert_value(self, value: str) -> Any:
        """Convert string value to appropriate type."""
        if value.lower() in ("true", "yes", "on"):
            return True
        elif value.lower() in ("false", "no", "off"):
            return False

        try:
            if "." in value:
                return float(value)
            return int(value)
        except ValueError:
            pass

        if "," in value:
            return [v.strip() for v in value.split(",")]

        return value

    def get_config(self) -> AdapterConfig:
        """Get current configuration."""
        if self._config is None:
            raise ConfigurationError("Configuration not loaded")
        return self._config


async def load_config(
    config_paths: Optional[List[Union[str, Path]]] = None,
    extra_config: Optional[Dict[str, Any]] = None
) -> AdapterConfig:
    """
    Load configuration from standard locations.

    Args:
        config_paths: Additional configuration paths
        extra_config: Extra configuration to merge

    Returns:
        Loaded configuration
    """
    loader = ConfigLoader()

    default_paths = [
        Path.home() / ".kiro-adapter" / "config.yaml",
        Path("./kiro-adapter.yaml"),
        Path("./kiro-adapter.json"),
        Path("./kiro-adapter.toml"),
    ]

    for path in default_paths:
        if path.exists():
            loader.add_source(path, priority=10)

    if config_paths:
        for i, path in enumerate(config_paths):
            loader.add_source(path, priority=20 + i)

    if extra_config:
        loader.add_source(extra_config, priority=100)

    return await loader.load()


__all__ = [
    'AdapterConfig',
    'LoggingConfig',
    'DiscoveryConfig',
    'ResolverConfig',
    'TransformerConfig',
    'HookGeneratorConfig',
    'RegistryConfig',
    'ActivationConfig',
    'MonitorConfig',
    'ConfigLoader',
    'load_config',
]
