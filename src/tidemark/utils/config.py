"""
Configuration loader for Tidemark.

This module provides configuration management with:
- Multiple configuration sources (files, env vars, dicts)
- Schema validation
- Configuration merging
- Hot reloading
- Defaults management
"""

import os
import json
import asyncio
import inspect
from pathlib import Path
from typing import Optional, Dict, Any, List, Set, Union, Callable, Literal

import yaml
import toml
from pydantic import BaseModel, Field, field_validator, model_validator, ValidationError, ConfigDict
from watchdog.observers import Observer
from watchdog.events import FileSystemEventHandler, FileSystemEvent

from .logging import get_logger
from .errors import ConfigurationError


logger = get_logger("tidemark.config")

ENV_PREFIX = "TIDEMARK_"
ENV_NESTING = "__"


class ConfigSource(BaseModel):
    """Configuration source definition."""
    path: Optional[Path] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    priority: int = 0
    source_type: str = "dict"

    model_config = ConfigDict(arbitrary_types_allowed=True)


class SyncConfig(BaseModel):
    """Synchronisation policy."""
    auto_sync_interval: float = Field(default=0.0, ge=0)  # seconds, 0 disables the loop
    push_sync: bool = True
    allow_remote: bool = True
    allow_persistence: bool = True
    early_data_return: bool = False
    retry_codes: Set[int] = Field(default_factory=lambda: {401, 500, 502})
    replace_codes: Set[int] = Field(default_factory=lambda: {400, 403, 404})
    max_retry: int = Field(default=3, ge=0)
    schema_drift_reset: bool = False

    @field_validator('retry_codes', 'replace_codes')
    @classmethod
    def validate_codes(cls, v):
        """Response codes must be HTTP status codes."""
        bad = sorted(code for code in v if not 100 <= code <= 599)
        if bad:
            raise ValueError(f"Not HTTP status codes: {bad}")
        return v

    @model_validator(mode='after')
    def validate_disjoint(self):
        """A code cannot be both retried and replaced."""
        overlap = self.retry_codes & self.replace_codes
        if overlap:
            raise ValueError(f"Codes configured as both retry and replace: {sorted(overlap)}")
        return self


class StorageConfig(BaseModel):
    """Local store configuration."""
    backend: Literal["sqlite", "json", "memory"] = "sqlite"
    path: Path = Field(default_factory=lambda: Path.home() / ".tidemark" / "tidemark.db")

    @field_validator('path')
    @classmethod
    def validate_path(cls, v):
        """Ensure path is absolute."""
        return Path(v).expanduser().absolute()


class TransportConfig(BaseModel):
    """Remote transport configuration."""
    base_url: Optional[str] = None
    timeout: float = Field(default=30.0, gt=0)
    headers: Dict[str, str] = Field(default_factory=dict)
    since_param: str = "after"


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "INFO"
    format: str = "json"
    directory: Path = Field(default_factory=lambda: Path.home() / ".tidemark" / "logs")
    enable_sentry: bool = False
    sentry_dsn: Optional[str] = None

    @field_validator('level')
    @classmethod
    def validate_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}")
        return v.upper()


class CollectionConfig(BaseModel):
    """One collection declaration."""
    name: str
    primary_key_field: str
    timestamp_field: str
    read_endpoint: str
    create_endpoint: str
    update_endpoint: Optional[str] = None
    read_wrapper_path: Optional[str] = None
    write_wrapper_path: Optional[str] = None


class TidemarkConfig(BaseModel):
    """Main Tidemark configuration."""
    app_name: str = "tidemark"
    debug: bool = False

    sync: SyncConfig = Field(default_factory=SyncConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    transport: TransportConfig = Field(default_factory=TransportConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    collections: List[CollectionConfig] = Field(default_factory=list)

    enable_hot_reload: bool = False

    model_config = ConfigDict(
        arbitrary_types_allowed=True,
        validate_assignment=True
    )

    @field_validator('collections')
    @classmethod
    def validate_unique_names(cls, v):
        """Collection names must be unique."""
        seen: Set[str] = set()
        for collection in v:
            if collection.name in seen:
                raise ValueError(f"Duplicate collection name: {collection.name}")
            seen.add(collection.name)
        return v


class ConfigLoader:
    """Configuration loader with multiple source support."""

    def __init__(self):
        """Initialize configuration loader."""
        self._sources: List[ConfigSource] = []
        self._config: Optional[TidemarkConfig] = None
        self._observers: List[Observer] = []
        self._callbacks: List[Callable[[TidemarkConfig], Any]] = []
        self._lock = asyncio.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

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
        elif suffix == ".env":
            return "env"
        else:
            raise ConfigurationError(f"Unknown config file type: {suffix}")

    async def load(self) -> TidemarkConfig:
        """
        Load configuration from all sources.

        Returns:
            Merged configuration
        """
        async with self._lock:
            merged_data: Dict[str, Any] = {}

            for source in self._sources:
                try:
                    data = self._load_source(source)
                except (OSError, ValueError, yaml.YAMLError) as e:
                    logger.error(
                        "failed_to_load_source",
                        source=str(source.path or "dict"),
                        error=str(e)
                    )
                    raise ConfigurationError(
                        f"Failed to load configuration from {source.path or 'dict'}: {e}",
                        cause=e
                    ) from e
                merged_data = self._deep_merge(merged_data, data)

            merged_data = self._deep_merge(merged_data, self._load_env_vars())

            try:
                self._config = TidemarkConfig(**merged_data)
            except ValidationError as e:
                errors = []
                for error in e.errors():
                    field = ".".join(str(x) for x in error["loc"])
                    errors.append(f"{field}: {error['msg']}")

                raise ConfigurationError(
                    f"Configuration validation failed: {'; '.join(errors)}"
                ) from e

            logger.info(
                "configuration_loaded",
                sources=len(self._sources),
                collections=len(self._config.collections)
            )

            if self._config.enable_hot_reload and not self._observers:
                self._setup_hot_reload()

            return self._config

    def _load_source(self, source: ConfigSource) -> Dict[str, Any]:
        """Load data from a configuration source."""
        if source.path is None:
            return source.data

        if not source.path.exists():
            logger.warning("config_file_not_found", path=str(source.path))
            return {}

        content = source.path.read_text()

        if source.source_type == "json":
            return json.loads(content)
        elif source.source_type == "yaml":
            return yaml.safe_load(content) or {}
        elif source.source_type == "toml":
            return toml.loads(content)
        elif source.source_type == "env":
            return self._parse_env_lines(content.splitlines())
        else:
            raise ConfigurationError(f"Unknown source type: {source.source_type}")

    def _parse_env_lines(self, lines: List[str]) -> Dict[str, Any]:
        """Parse KEY=value lines, nesting on double underscores."""
        pairs = {}
        for line in lines:
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, value = line.split("=", 1)
            pairs[key.strip()] = value.strip().strip('"').strip("'")
        return self._nest(pairs)

    def _load_env_vars(self) -> Dict[str, Any]:
        """Load configuration from environment variables."""
        return self._nest({
            key: value for key, value in os.environ.items()
            if key.startswith(ENV_PREFIX)
        })

    def _nest(self, pairs: Dict[str, str]) -> Dict[str, Any]:
        """Turn TIDEMARK_SYNC__MAX_RETRY style keys into nested dicts."""
        result: Dict[str, Any] = {}

        for key, value in pairs.items():
            if key.startswith(ENV_PREFIX):
                key = key[len(ENV_PREFIX):]
            parts = key.lower().split(ENV_NESTING)
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
            else:
                return int(value)
        except ValueError:
            pass

        # Comma-separated lists, e.g. TIDEMARK_SYNC__RETRY_CODES=401,500
        if "," in value:
            return [self._convert_value(v.strip()) for v in value.split(",")]

        return value

    def _deep_merge(self, base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries."""
        result = base.copy()

        for key, value in update.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def _setup_hot_reload(self) -> None:
        """Watch configuration files for changes."""
        try:
            self._loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("hot_reload_requires_running_loop")
            return

        for source in self._sources:
            if source.path and source.path.exists():
                observer = Observer()
                handler = ConfigFileHandler(self, source.path)
                observer.schedule(handler, str(source.path.parent), recursive=False)
                observer.start()
                self._observers.append(observer)

                logger.info("hot_reload_enabled", path=str(source.path))

    def register_callback(self, callback: Callable[[TidemarkConfig], Any]) -> None:
        """Register configuration change callback."""
        self._callbacks.append(callback)

    def schedule_reload(self) -> None:
        """Schedule a reload on the loop that owns this loader (thread-safe)."""
        if self._loop is not None and not self._loop.is_closed():
            asyncio.run_coroutine_threadsafe(self._reload(), self._loop)

    async def _reload(self) -> None:
        """Reload configuration."""
        logger.info("reloading_configuration")

        old_config = self._config
        try:
            new_config = await self.load()
        except ConfigurationError as e:
            logger.error("reload_failed", error=str(e))
            return

        if old_config == new_config:
            return

        for callback in self._callbacks:
            try:
                if inspect.iscoroutinefunction(callback):
                    await callback(new_config)
                else:
                    callback(new_config)
            except Exception as e:
                logger.error(
                    "callback_error",
                    callback=getattr(callback, "__name__", repr(callback)),
                    error=str(e)
                )

    def get_config(self) -> TidemarkConfig:
        """Get current configuration."""
        if self._config is None:
            raise ConfigurationError("Configuration not loaded")
        return self._config

    def shutdown(self) -> None:
        """Shutdown configuration loader."""
        for observer in self._observers:
            observer.stop()
            observer.join()
        self._observers.clear()


class ConfigFileHandler(FileSystemEventHandler):
    """File system event handler for configuration files."""

    def __init__(self, loader: ConfigLoader, path: Path):
        self.loader = loader
        self.path = path

    def on_modified(self, event: FileSystemEvent) -> None:
        """Handle file modification."""
        if not event.is_directory and Path(str(event.src_path)) == self.path:
            logger.info("config_file_modified", path=str(event.src_path))
            self.loader.schedule_reload()


async def load_config(
    config_paths: Optional[List[Union[str, Path]]] = None,
    extra_config: Optional[Dict[str, Any]] = None,
    loader: Optional[ConfigLoader] = None
) -> TidemarkConfig:
    """
    Load configuration from standard locations.

    Args:
        config_paths: Additional configuration paths
        extra_config: Extra configuration to merge
        loader: Loader to populate (a fresh one by default)

    Returns:
        Loaded configuration
    """
    loader = loader or ConfigLoader()

    default_paths = [
        Path.home() / ".tidemark" / "config.yaml",
        Path.home() / ".tidemark" / "config.json",
        Path("./tidemark.yaml"),
        Path("./tidemark.json"),
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
    'TidemarkConfig',
    'SyncConfig',
    'StorageConfig',
    'TransportConfig',
    'LoggingConfig',
    'CollectionConfig',
    'ConfigLoader',
    'load_config',
]
