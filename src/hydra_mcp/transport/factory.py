"""Transport factory: declared ``type`` + config -> unstarted transport.

Construction is pure. Nothing is spawned or connected until the caller
invokes ``start()`` on the returned transport.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from enum import Enum
from typing import Any

from pydantic import BaseModel, ValidationError

from ..config import HttpServerConfig, SseServerConfig, StdioServerConfig, format_validation_error
from ..errors import ConfigurationError
from ..security import CommandValidator, DefaultCommandValidator
from .base import Transport
from .http import HttpTransport
from .sse import SseTransport
from .stdio import StdioTransport

logger = logging.getLogger(__name__)

TransportBuilder = Callable[[Any, "TransportFactory"], Transport]


class TransportType(str, Enum):
    """Built-in transport types."""

    STDIO = "stdio"
    SSE = "sse"
    HTTP = "http"


def _build_stdio(config: StdioServerConfig, factory: TransportFactory) -> Transport:
    return StdioTransport(config, validator=factory.validator)


def _build_sse(config: SseServerConfig, factory: TransportFactory) -> Transport:
    return SseTransport(config)


def _build_http(config: HttpServerConfig, factory: TransportFactory) -> Transport:
    return HttpTransport(config)


class TransportFactory:
    """Creates transports by type.

    Holds the command validator handed to every stdio transport it builds.

    Example:
        factory = TransportFactory()
        transport = factory.create({"type": "stdio", "command": "uvx", "args": ["mcp-git"]})
        async with transport:
            await transport.request("tools/list")
    """

    def __init__(self, validator: CommandValidator | None = None):
        self.validator = validator or DefaultCommandValidator()
        self._registry: dict[str, tuple[type[BaseModel], TransportBuilder]] = {
            TransportType.STDIO.value: (StdioServerConfig, _build_stdio),
            TransportType.SSE.value: (SseServerConfig, _build_sse),
            TransportType.HTTP.value: (HttpServerConfig, _build_http),
        }

    def register(
        self,
        transport_type: str,
        config_model: type[BaseModel],
        builder: TransportBuilder,
    ) -> None:
        """Add (or replace) a transport type."""
        self._registry[transport_type] = (config_model, builder)
        logger.debug(f"Registered transport type: {transport_type}")

    def is_supported(self, transport_type: str) -> bool:
        return transport_type in self._registry

    def get_supported_types(self) -> list[str]:
        return list(self._registry)

    def create(self, config: BaseModel | Mapping[str, Any]) -> Transport:
        """Build an unstarted transport.

        Args:
            config: A server config model, or a mapping with a ``type`` key

        Raises:
            ConfigurationError: unknown type or invalid configuration
        """
        if isinstance(config, BaseModel):
            transport_type = getattr(config, "type", None)
        elif isinstance(config, Mapping):
            transport_type = config.get("type")
        else:
            raise ConfigurationError(
                f"Transport config must be a mapping or config model, got {type(config).__name__}"
            )

        if not isinstance(transport_type, str) or transport_type not in self._registry:
            supported = ", ".join(self._registry)
            raise ConfigurationError(
                f"Unsupported transport type: {transport_type!r} (supported: {supported})"
            )

        config_model, builder = self._registry[transport_type]
        if not isinstance(config, config_model):
            data = config.model_dump() if isinstance(config, BaseModel) else dict(config)
            try:
                config = config_model.model_validate(data)
            except ValidationError as e:
                raise ConfigurationError(
                    f"Invalid {transport_type} transport configuration:\n"
                    f"{format_validation_error(e)}"
                ) from e

        logger.debug(f"Creating {transport_type} transport")
        return builder(config, self)


def create_transport(
    config: BaseModel | Mapping[str, Any],
    factory: TransportFactory | None = None,
) -> Transport:
    """Create a transport with the default factory (or the given one)."""
    return (factory or TransportFactory()).create(config)
