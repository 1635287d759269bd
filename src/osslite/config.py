"""Configuration loading and Pydantic models for osslite."""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field


class ServerConfig(BaseModel):
    """Server binding and runtime configuration."""

    host: str = "0.0.0.0"
    port: int = 9000
    region: str = "oss-cn-hangzhou"
    log_level: str = "INFO"
    log_format: str = "text"
    shutdown_timeout: int = 30


class AuthConfig(BaseModel):
    """Authentication and credential configuration."""

    access_key: str = "osslite"
    secret_key: str = "osslite-secret"
    enabled: bool = True
    clock_skew_seconds: int = 900


class SQLiteConfig(BaseModel):
    """SQLite metadata engine settings."""

    path: str = "./data/metadata.db"


class MetadataConfig(BaseModel):
    """Metadata store configuration."""

    engine: str = "sqlite"
    sqlite: SQLiteConfig = Field(default_factory=SQLiteConfig)


class StorageConfig(BaseModel):
    """Object storage backend configuration."""

    backend: str = "local"
    local_root: str = "./data/objects"
    memory_max_size_bytes: int = 0


class MultipartConfig(BaseModel):
    """Multipart upload limits."""

    min_part_size: int = 100 * 1024
    max_part_number: int = 10000


class ObservabilityConfig(BaseModel):
    """Metrics and health check toggles."""

    metrics: bool = True
    health_check: bool = True


class OSSLiteConfig(BaseModel):
    """Top-level osslite configuration."""

    server: ServerConfig = Field(default_factory=ServerConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    metadata: MetadataConfig = Field(default_factory=MetadataConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    multipart: MultipartConfig = Field(default_factory=MultipartConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)


def _parse_server(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the server section from YAML data into a dict for Pydantic."""
    if data is None:
        return {}
    return {
        "host": data.get("host", "0.0.0.0"),
        "port": data.get("port", 9000),
        "region": data.get("region", "oss-cn-hangzhou"),
        "log_level": data.get("log_level", "INFO"),
        "log_format": data.get("log_format", "text"),
        "shutdown_timeout": data.get("shutdown_timeout", 30),
    }


def _parse_auth(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the auth section from YAML data."""
    if data is None:
        return {}
    return {
        "access_key": data.get("access_key", "osslite"),
        "secret_key": data.get("secret_key", "osslite-secret"),
        "enabled": data.get("enabled", True),
        "clock_skew_seconds": data.get("clock_skew_seconds", 900),
    }


def _parse_metadata(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the metadata section from YAML data.

    Handles nested structure: metadata.sqlite.path -> sqlite.path
    """
    if data is None:
        return {}
    result: dict[str, Any] = {"engine": data.get("engine", "sqlite")}
    sqlite_section = data.get("sqlite")
    if isinstance(sqlite_section, dict):
        result["sqlite"] = SQLiteConfig(path=sqlite_section.get("path", "./data/metadata.db"))
    return result


def _parse_storage(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the storage section from YAML data.

    Handles nested structure: storage.local.root_dir -> local_root,
    storage.memory.max_size_bytes -> memory_max_size_bytes.
    """
    if data is None:
        return {}

    result: dict[str, Any] = {"backend": data.get("backend", "local")}

    local_section = data.get("local")
    if isinstance(local_section, dict):
        result["local_root"] = local_section.get("root_dir", "./data/objects")

    memory_section = data.get("memory")
    if isinstance(memory_section, dict):
        result["memory_max_size_bytes"] = memory_section.get("max_size_bytes", 0)

    return result


def _parse_multipart(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the multipart section from YAML data."""
    if data is None:
        return {}
    return {
        "min_part_size": data.get("min_part_size", 100 * 1024),
        "max_part_number": data.get("max_part_number", 10000),
    }


def _parse_observability(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the observability section from YAML data."""
    if data is None:
        return {}
    return {
        "metrics": data.get("metrics", True),
        "health_check": data.get("health_check", True),
    }


def load_config(path: Path) -> OSSLiteConfig:
    """Load an OSSLiteConfig from a YAML file.

    Args:
        path: Path to the YAML configuration file.

    Returns:
        A fully populated OSSLiteConfig validated by Pydantic.

    Raises:
        FileNotFoundError: If the config file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
    """
    with open(path, "r") as fh:
        raw: dict[str, Any] = yaml.safe_load(fh) or {}

    return OSSLiteConfig(
        server=ServerConfig(**_parse_server(raw.get("server"))),
        auth=AuthConfig(**_parse_auth(raw.get("auth"))),
        metadata=MetadataConfig(**_parse_metadata(raw.get("metadata"))),
        storage=StorageConfig(**_parse_storage(raw.get("storage"))),
        multipart=MultipartConfig(**_parse_multipart(raw.get("multipart"))),
        observability=ObservabilityConfig(**_parse_observability(raw.get("observability"))),
    )
