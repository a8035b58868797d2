"""
Transport Adapter — Abstract Base Class

Every delivery channel (AS2, SFTP) implements this interface so the
transaction pipeline never branches on a partner's communication method.
A partner's channel plus its channel-specific config dataclass is all
``get_adapter`` needs; manual / API / email partners have no adapter.

    send(filename, content)  → DispatchResult
    test_connection()        → DispatchResult
    poll()                   → list[PolledFile]   (pollable channels only)
    mark_processed(filename) → None               (pollable channels only)
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

import structlog

from core.errors import ConfigurationError

logger = structlog.get_logger()


# ── Channels ───────────────────────────────────────────────────────────────


class TransportChannel(str, Enum):
    """Partner communication methods."""

    MANUAL = "manual"
    API = "api"
    SFTP = "sftp"
    AS2 = "as2"
    EMAIL = "email"


class ErrorKind(str, Enum):
    CONFIGURATION = "configuration"
    TRANSPORT = "transport"
    REJECTED = "rejected"  # partner answered with a failed MDN


# ── Results ───────────────────────────────────────────────────────────────


@dataclass
class DispatchResult:
    """Standardized return from every adapter operation."""

    success: bool
    message_id: str | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    started_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: datetime | None = None

    def complete(self) -> "DispatchResult":
        self.completed_at = datetime.utcnow()
        return self

    @classmethod
    def failed(cls, error: str, kind: ErrorKind, message_id: str | None = None, **metadata: Any) -> "DispatchResult":
        return cls(success=False, message_id=message_id, error=error, error_kind=kind, metadata=metadata).complete()


@dataclass
class PolledFile:
    filename: str
    content: str
    size: int = 0
    modified_at: datetime | None = None


# ── Abstract adapter ──────────────────────────────────────────────────────


class TransportAdapter(ABC):
    """
    Base class for partner delivery channels.

    Adapters are constructed per operation from a pipeline's config
    snapshot and hold no connection between calls.
    """

    supports_polling = False

    def __init__(self, tenant_id: str, config: Any):
        self.tenant_id = tenant_id
        self.config = config
        self.logger = logger.bind(
            channel=self.channel.value,
            tenant_id=str(tenant_id),
        )

    @property
    @abstractmethod
    def channel(self) -> TransportChannel:
        """Return the channel this adapter handles."""
        ...

    @abstractmethod
    async def send(self, filename: str, content: str, content_type: str = "application/edi-x12") -> DispatchResult:
        """Deliver one document to the partner."""
        ...

    @abstractmethod
    async def test_connection(self) -> DispatchResult:
        """Lightweight reachability check; never transfers a document."""
        ...

    async def poll(self) -> list[PolledFile]:
        raise ConfigurationError(f"Channel '{self.channel.value}' does not support inbox polling")

    async def mark_processed(self, filename: str) -> None:
        raise ConfigurationError(f"Channel '{self.channel.value}' does not support inbox polling")


# ── Adapter registry ──────────────────────────────────────────────────────

_ADAPTER_REGISTRY: dict[TransportChannel, type[TransportAdapter]] = {}


def register_adapter(adapter_cls: type[TransportAdapter]):
    """Decorator: register an adapter class for its channel."""
    _ADAPTER_REGISTRY[adapter_cls.channel.fget(None)] = adapter_cls  # type: ignore
    return adapter_cls


def has_adapter(channel: TransportChannel | str) -> bool:
    return TransportChannel(channel) in _ADAPTER_REGISTRY


def get_adapter(
    channel: TransportChannel | str,
    tenant_id: str,
    config: Any,
    **kwargs: Any,
) -> TransportAdapter:
    """Factory: return the right adapter instance for the given channel."""
    channel = TransportChannel(channel)
    adapter_cls = _ADAPTER_REGISTRY.get(channel)
    if adapter_cls is None:
        raise ConfigurationError(f"No transport adapter registered for channel: {channel.value}")
    return adapter_cls(tenant_id=tenant_id, config=config, **kwargs)
