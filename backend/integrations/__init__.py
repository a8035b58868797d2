"""
Transport adapters package.

Partner delivery channels behind one interface:
  - AS2   (signed / encrypted HTTP with MDN receipts)
  - SFTP  (inbox polling + outbound file drops)

Usage:
    from integrations import get_adapter, TransportChannel

    adapter = get_adapter(
        TransportChannel.SFTP,
        tenant_id="...",
        config=SftpConfig(host="sftp.partner.example", username="edi", password="..."),
    )
    files = await adapter.poll()
"""

from integrations.as2_adapter import AS2Adapter, As2Config, As2Inbound, receive_message
from integrations.base import (
    DispatchResult,
    ErrorKind,
    PolledFile,
    TransportAdapter,
    TransportChannel,
    get_adapter,
    has_adapter,
    register_adapter,
)
from integrations.mdn import MdnReceipt, generate_mdn, parse_mdn
from integrations.sftp_adapter import SFTPAdapter, SftpConfig

__all__ = [
    "TransportChannel",
    "ErrorKind",
    "DispatchResult",
    "PolledFile",
    "TransportAdapter",
    "get_adapter",
    "has_adapter",
    "register_adapter",
    "AS2Adapter",
    "As2Config",
    "As2Inbound",
    "receive_message",
    "SFTPAdapter",
    "SftpConfig",
    "MdnReceipt",
    "generate_mdn",
    "parse_mdn",
]
