"""Server configuration models and the config file loader.

A config file (default ``.hydra/mcp-servers.json``; ``.yaml``/``.yml`` also
accepted) declares named servers, each tagged with its transport ``type``:

    {
      "version": "1.0.0",
      "servers": {
        "ollama": {
          "type": "stdio",
          "command": "npx",
          "args": ["-y", "ollama-mcp"],
          "env": {"OLLAMA_HOST": "${OLLAMA_HOST}"},
          "tags": ["ai", "local"]
        },
        "remote": {"type": "sse", "url": "https://mcp.example.com/sse"}
      },
      "groups": {"ai": ["ollama"]}
    }

All durations are in seconds.
"""

from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(".hydra") / "mcp-servers.json"

_ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)\}")


class ReconnectConfig(BaseModel):
    """SSE stream reconnection policy."""

    model_config = ConfigDict(extra="forbid")

    max_attempts: int = Field(default=5, ge=0)
    delay: float = Field(default=2.0, gt=0)
    max_delay: float = Field(default=30.0, gt=0)
    backoff_multiplier: float = Field(default=1.5, ge=1.0)

    def delay_for(self, attempt: int) -> float:
        """Delay before reconnect attempt number ``attempt`` (0-based)."""
        return min(self.delay * self.backoff_multiplier**attempt, self.max_delay)


class RetryConfig(BaseModel):
    """Retry policy for a single HTTP POST exchange."""

    model_config = ConfigDict(extra="forbid")

    max_retries: int = Field(default=3, ge=0, le=10)
    base_delay: float = Field(default=1.0, gt=0)
    max_delay: float = Field(default=10.0, gt=0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)

    def delay_for(self, attempt: int) -> float:
        return min(self.base_delay * self.backoff_multiplier**attempt, self.max_delay)


class _ServerConfigBase(BaseModel):
    model_config = ConfigDict(extra="forbid")

    request_timeout: float = Field(default=30.0, gt=0)

    # Loader metadata, ignored by the transports
    enabled: bool = True
    tags: list[str] = Field(default_factory=list)
    description: str | None = None


class StdioServerConfig(_ServerConfigBase):
    """Subprocess speaking newline-delimited JSON-RPC on stdio."""

    type: Literal["stdio"] = "stdio"
    command: str = Field(min_length=1)
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)
    cwd: str | None = None

    startup_timeout: float = Field(default=30.0, gt=0)
    # Silent servers are considered ready after this long
    ready_grace: float = Field(default=0.5, ge=0)
    # SIGTERM -> SIGKILL escalation window on close
    kill_timeout: float = Field(default=5.0, gt=0)
    # MCP server binaries are usually not on the executable allowlist
    allow_unlisted: bool = True


class SseServerConfig(_ServerConfigBase):
    """Long-lived SSE stream plus a POST endpoint for outbound calls."""

    type: Literal["sse"] = "sse"
    url: str = Field(pattern=r"^https?://")
    headers: dict[str, str] = Field(default_factory=dict)
    message_url: str | None = None
    connect_timeout: float = Field(default=30.0, gt=0)
    reconnect: ReconnectConfig = Field(default_factory=ReconnectConfig)


class HttpServerConfig(_ServerConfigBase):
    """Plain HTTP: each call is a POST whose body carries the answer."""

    type: Literal["http"] = "http"
    url: str = Field(pattern=r"^https?://")
    headers: dict[str, str] = Field(default_factory=dict)
    retry: RetryConfig = Field(default_factory=RetryConfig)


ServerConfig = Annotated[
    StdioServerConfig | SseServerConfig | HttpServerConfig,
    Field(discriminator="type"),
]


class ServersFile(BaseModel):
    """Top-level structure of a servers config file."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    schema_url: str | None = Field(default=None, alias="$schema")
    version: str = "1.0.0"
    servers: dict[str, ServerConfig] = Field(default_factory=dict)
    groups: dict[str, list[str]] = Field(default_factory=dict)


def format_validation_error(exc: ValidationError) -> str:
    """Render pydantic errors as ``path: message`` lines."""
    lines = []
    for error in exc.errors():
        path = ".".join(str(part) for part in error["loc"])
        lines.append(f"{path}: {error['msg']}" if path else error["msg"])
    return "\n".join(lines)


def interpolate_env(value: Any, env: dict[str, str]) -> Any:
    """Replace ``${VAR}`` in every string of a decoded config document.

    Unknown variables become empty strings.
    """
    if isinstance(value, str):
        return _ENV_VAR_PATTERN.sub(lambda m: env.get(m.group(1), ""), value)
    if isinstance(value, list):
        return [interpolate_env(item, env) for item in value]
    if isinstance(value, dict):
        return {key: interpolate_env(item, env) for key, item in value.items()}
    return value


class ServerConfigLoader:
    """Loads, validates and queries a servers config file."""

    def __init__(
        self,
        config_path: str | Path | None = None,
        env_overrides: dict[str, str] | None = None,
    ):
        self.config_path = Path(config_path) if config_path else Path.cwd() / DEFAULT_CONFIG_PATH
        self.env_overrides = env_overrides or {}
        self._config: ServersFile | None = None

    @property
    def config(self) -> ServersFile | None:
        return self._config

    def load(self) -> ServersFile:
        """Read and validate the file.

        Raises:
            ConfigurationError: file missing, unparsable, or invalid
        """
        try:
            raw_text = self.config_path.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise ConfigurationError(
                f"MCP configuration file not found: {self.config_path}"
            ) from e

        document = self._parse(raw_text)
        env = {**os.environ, **self.env_overrides}

        try:
            config = ServersFile.model_validate(interpolate_env(document, env))
        except ValidationError as e:
            raise ConfigurationError(
                f"MCP configuration validation failed:\n{format_validation_error(e)}"
            ) from e

        for group, members in config.groups.items():
            missing = [name for name in members if name not in config.servers]
            if missing:
                logger.warning(f"Group '{group}' references unknown servers: {missing}")

        self._config = config
        logger.info(f"Loaded {len(config.servers)} MCP server(s) from {self.config_path}")
        return config

    def _parse(self, raw_text: str) -> Any:
        if self.config_path.suffix in (".yaml", ".yml"):
            import yaml

            try:
                return yaml.safe_load(raw_text) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"MCP configuration parse error: {e}") from e
        try:
            return json.loads(raw_text)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"MCP configuration parse error: {e}") from e

    def _require(self) -> ServersFile:
        if self._config is None:
            return self.load()
        return self._config

    def get_server(self, server_id: str) -> StdioServerConfig | SseServerConfig | HttpServerConfig:
        config = self._require()
        try:
            return config.servers[server_id]
        except KeyError:
            raise ConfigurationError(f"Unknown MCP server: {server_id}") from None

    def enabled_servers(self) -> dict[str, Any]:
        return {name: s for name, s in self._require().servers.items() if s.enabled}

    def servers_by_tag(self, tag: str) -> dict[str, Any]:
        return {name: s for name, s in self._require().servers.items() if tag in s.tags}

    def servers_by_group(self, group: str) -> dict[str, Any]:
        config = self._require()
        return {
            name: config.servers[name]
            for name in config.groups.get(group, [])
            if name in config.servers
        }
