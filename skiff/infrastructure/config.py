"""
Configuration Module

Architectural Intent:
- Centralized configuration loading from a JSON file
- Provides typed access to all Skiff settings
- Falls back to sensible defaults when config file is absent
- Environment variables override file-based config

Design Decisions:
- Config is a frozen dataclass for immutability after load
- Nested config sections map to sub-dataclasses
- Env values arrive as strings and are coerced by the declared field type
"""

from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
import dataclasses
import json
import logging
import os

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WebConfig:
    """HTTP API configuration."""
    host: str = "127.0.0.1"
    port: int = 8080


@dataclass(frozen=True)
class AuthConfig:
    """API tokens as name:token pairs. Empty disables authentication."""
    tokens: tuple[str, ...] = ()


@dataclass(frozen=True)
class StoreConfig:
    """Job record store configuration."""
    db_path: str = "skiff.db"


@dataclass(frozen=True)
class PipelineConfig:
    """Deployment pipeline limits."""
    timeout_seconds: float = 1800.0
    upload_timeout_seconds: float = 900.0
    command_timeout_seconds: float = 900.0
    workspace_root: str = ""
    large_output_mb: float = 100.0


@dataclass(frozen=True)
class EventLoggerConfig:
    """Batching and retention for persisted log events."""
    batch_size: int = 10
    flush_interval: float = 2.0
    retention: int = 1000


@dataclass(frozen=True)
class HubConfig:
    """Broadcast hub configuration."""
    buffer_size: int = 100
    queue_size: int = 256
    grace_seconds: float = 2.0
    heartbeat_seconds: float = 5.0
    channel_ttl_seconds: float = 600.0
    legacy_completion_matching: bool = False


@dataclass(frozen=True)
class SweeperConfig:
    """Reconciliation sweeper configuration."""
    interval_seconds: float = 5.0
    pending_ttl_seconds: float = 3600.0


@dataclass(frozen=True)
class SourceConfig:
    """Source retrieval configuration."""
    base_url: str = "https://github.com"
    access_token: str = ""


@dataclass(frozen=True)
class PublishConfig:
    """Artifact publishing configuration."""
    provider: str = "local"  # "local" or "http"
    api_url: str = ""
    api_key: str = ""
    gateway_url: str = "https://ipfs.io/ipfs/"
    output_root: str = "artifacts"


@dataclass(frozen=True)
class SecretsConfig:
    """Provisioned secrets configuration."""
    path: str = "secrets.json"


@dataclass(frozen=True)
class TelemetryConfig:
    """OTLP export of deployment metrics and traces. Empty endpoint disables it."""
    endpoint: str = ""
    service_name: str = "skiff"
    environment: str = "development"
    insecure: bool = False


@dataclass(frozen=True)
class ClientConfig:
    """Reconnect policy for live log stream subscribers."""
    initial_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 30.0
    max_attempts: int = 10
    stall_seconds: float = 30.0
    server_url: str = "http://127.0.0.1:8080"
    token: str = ""


@dataclass(frozen=True)
class SkiffConfig:
    """Root configuration for the Skiff application."""
    web: WebConfig = field(default_factory=WebConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    logger: EventLoggerConfig = field(default_factory=EventLoggerConfig)
    hub: HubConfig = field(default_factory=HubConfig)
    sweeper: SweeperConfig = field(default_factory=SweeperConfig)
    source: SourceConfig = field(default_factory=SourceConfig)
    publish: PublishConfig = field(default_factory=PublishConfig)
    secrets: SecretsConfig = field(default_factory=SecretsConfig)
    client: ClientConfig = field(default_factory=ClientConfig)
    telemetry: TelemetryConfig = field(default_factory=TelemetryConfig)
    log_level: str = "WARNING"


_SECTIONS = {
    "web": WebConfig,
    "auth": AuthConfig,
    "store": StoreConfig,
    "pipeline": PipelineConfig,
    "logger": EventLoggerConfig,
    "hub": HubConfig,
    "sweeper": SweeperConfig,
    "source": SourceConfig,
    "publish": PublishConfig,
    "secrets": SecretsConfig,
    "client": ClientConfig,
    "telemetry": TelemetryConfig,
}


def _env_override(data: dict, prefix: str = "SKIFF") -> dict:
    """Override config values with environment variables.

    Environment variables follow the pattern SKIFF_SECTION_KEY.
    For example: SKIFF_WEB_PORT=9090, SKIFF_HUB_GRACE_SECONDS=1.5
    """
    for key, value in os.environ.items():
        if not key.startswith(f"{prefix}_"):
            continue
        parts = key[len(prefix) + 1:].lower().split("_", 1)
        if len(parts) == 2 and parts[0] in _SECTIONS:
            section, field_name = parts
            if not isinstance(data.get(section), dict):
                data[section] = {}
            data[section][field_name] = value
        else:
            data[key[len(prefix) + 1:].lower()] = value
    return data


def _parse_config_file(path: Path) -> dict:
    """Parse a JSON config file. Returns empty dict on failure."""
    try:
        with open(path) as f:
            return json.load(f)
    except FileNotFoundError:
        logger.debug("Config file not found: %s", path)
        return {}
    except json.JSONDecodeError as e:
        logger.warning("Invalid config file %s: %s", path, e)
        return {}


def _build_sub_config(cls, data: dict):
    """Build a sub-config dataclass from a dict, ignoring unknown keys."""
    valid_fields = {f.name for f in dataclasses.fields(cls)}
    filtered = {k: v for k, v in data.items() if k in valid_fields}

    for f in dataclasses.fields(cls):
        if f.name not in filtered:
            continue
        val = filtered[f.name]

        # Convert comma-separated strings to tuples for tuple fields
        if f.type == "tuple[str, ...]":
            if isinstance(val, str):
                filtered[f.name] = tuple(v.strip() for v in val.split(",") if v.strip())
            elif isinstance(val, list):
                filtered[f.name] = tuple(val)

        # Convert string numbers to int/float/bool
        elif isinstance(val, str):
            if f.type == "int":
                filtered[f.name] = int(val)
            elif f.type == "float":
                filtered[f.name] = float(val)
            elif f.type == "bool":
                filtered[f.name] = val.lower() in ("true", "1", "yes")
        elif f.type == "float" and isinstance(val, int):
            filtered[f.name] = float(val)

    return cls(**filtered)


def load_config(
    path: Optional[str] = None,
    env_prefix: str = "SKIFF",
) -> SkiffConfig:
    """Load configuration from file and environment variables.

    Priority (highest to lowest):
    1. Environment variables (SKIFF_SECTION_KEY)
    2. Config file values
    3. Defaults

    Args:
        path: Path to config file (JSON). Defaults to skiff.json in CWD.
        env_prefix: Environment variable prefix. Defaults to SKIFF.
    """
    config_path = Path(path) if path else Path("skiff.json")
    data = _parse_config_file(config_path)
    data = _env_override(data, env_prefix)

    sections = {
        name: _build_sub_config(cls, data.get(name) or {})
        for name, cls in _SECTIONS.items()
    }
    return SkiffConfig(**sections, log_level=data.get("log_level", "WARNING"))
