"""
SFTP Transport Adapter

Partners that exchange documents through file drops:

  Inbound (polled by workers.sftp_scheduler):
    1. List the partner's remote directory (default /incoming)
    2. Download every regular, non-hidden file
    3. After the transaction pipeline has run, move the file into
       <remote_dir>/processed/ so the next poll does not ingest it again

  Outbound:
    Upload the generated document into the outgoing directory
    (default /outgoing).

Every operation opens its own connection and closes it before
returning; nothing is held open between polls.
"""

from __future__ import annotations

import asyncio
import posixpath
import stat
from dataclasses import dataclass
from datetime import datetime

import asyncssh
from asyncssh.constants import FILEXFER_TYPE_DIRECTORY

from core.errors import ConfigurationError, TransportError
from integrations.base import (
    DispatchResult,
    ErrorKind,
    PolledFile,
    TransportAdapter,
    TransportChannel,
    register_adapter,
)


@dataclass
class SftpConfig:
    host: str | None
    username: str | None
    password: str | None = None
    private_key: str | None = None  # PEM / OpenSSH
    port: int = 22
    remote_dir: str = "/incoming"
    outgoing_dir: str = "/outgoing"
    processed_dir_name: str = "processed"
    connect_timeout: float = 15.0
    operation_timeout: float = 120.0


@register_adapter
class SFTPAdapter(TransportAdapter):
    """Connect-per-operation SFTP client."""

    supports_polling = True

    def __init__(self, tenant_id: str, config: SftpConfig, connect=None):
        super().__init__(tenant_id, config)
        self._connect_fn = connect or asyncssh.connect

    @property
    def channel(self) -> TransportChannel:
        return TransportChannel.SFTP

    # ── Connection ────────────────────────────────────────────────────────

    def _check_config(self) -> None:
        cfg = self.config
        if not cfg.host:
            raise ConfigurationError("SFTP host is not configured")
        if not cfg.username or not (cfg.password or cfg.private_key):
            raise ConfigurationError("SFTP username and a password or private key are required")

    def _connect(self):
        cfg = self.config
        options = {
            "port": cfg.port,
            "username": cfg.username,
            "known_hosts": None,
            "connect_timeout": cfg.connect_timeout,
        }
        if cfg.private_key:
            try:
                options["client_keys"] = [asyncssh.import_private_key(cfg.private_key)]
            except (asyncssh.KeyImportError, ValueError) as exc:
                raise ConfigurationError(f"Invalid SFTP private key: {exc}") from exc
        if cfg.password:
            options["password"] = cfg.password
        return self._connect_fn(cfg.host, **options)

    async def _with_sftp(self, operation: str, fn):
        """Run ``fn(sftp)`` inside a fresh connection, bounded by the operation timeout."""
        self._check_config()

        async def _run():
            async with self._connect() as conn:
                async with conn.start_sftp_client() as sftp:
                    return await fn(sftp)

        try:
            return await asyncio.wait_for(_run(), timeout=self.config.operation_timeout)
        except asyncio.TimeoutError as exc:
            raise TransportError(f"SFTP {operation} timed out") from exc
        except (asyncssh.Error, OSError) as exc:
            self.logger.warning("sftp.operation_failed", operation=operation, error=str(exc))
            raise TransportError(f"SFTP {operation} failed: {exc}") from exc

    # ── Operations ────────────────────────────────────────────────────────

    async def test_connection(self) -> DispatchResult:
        try:
            self._check_config()
            async with self._connect():
                pass
        except ConfigurationError as exc:
            return DispatchResult.failed(exc.message, ErrorKind.CONFIGURATION)
        except (asyncssh.Error, OSError, asyncio.TimeoutError) as exc:
            self.logger.warning("sftp_connection_failed", host=self.config.host, error=str(exc))
            return DispatchResult.failed(f"SFTP connection failed: {exc}", ErrorKind.TRANSPORT)
        return DispatchResult(success=True, metadata={"message": "SFTP connection successful"}).complete()

    async def send(self, filename: str, content: str, content_type: str = "application/edi-x12") -> DispatchResult:
        remote_path = posixpath.join(self.config.outgoing_dir, posixpath.basename(filename))

        async def _upload(sftp):
            async with sftp.open(remote_path, "wb") as remote:
                await remote.write(content.encode())

        try:
            await self._with_sftp("upload", _upload)
        except ConfigurationError as exc:
            return DispatchResult.failed(exc.message, ErrorKind.CONFIGURATION)
        except TransportError as exc:
            return DispatchResult.failed(exc.message, ErrorKind.TRANSPORT)

        self.logger.info("sftp.uploaded", remote_path=remote_path, bytes=len(content))
        return DispatchResult(success=True, metadata={"remote_path": remote_path}).complete()

    async def poll(self) -> list[PolledFile]:
        remote_dir = self.config.remote_dir

        async def _download(sftp) -> list[PolledFile]:
            files = []
            for entry in await sftp.readdir(remote_dir):
                name = entry.filename
                if name.startswith(".") or _is_directory(entry.attrs):
                    continue
                async with sftp.open(posixpath.join(remote_dir, name), "rb") as remote:
                    data = await remote.read()
                files.append(
                    PolledFile(
                        filename=name,
                        content=data.decode("utf-8", errors="replace"),
                        size=len(data),
                        modified_at=datetime.utcfromtimestamp(entry.attrs.mtime) if entry.attrs.mtime else None,
                    )
                )
            return sorted(files, key=lambda f: f.filename)

        files = await self._with_sftp("poll", _download)
        self.logger.info("sftp.polled", remote_dir=remote_dir, files=len(files))
        return files

    async def mark_processed(self, filename: str) -> None:
        remote_dir = self.config.remote_dir
        processed_dir = posixpath.join(remote_dir, self.config.processed_dir_name)
        source = posixpath.join(remote_dir, filename)
        target = posixpath.join(processed_dir, filename)

        async def _move(sftp):
            await sftp.makedirs(processed_dir, exist_ok=True)
            if await sftp.exists(target):
                await sftp.remove(target)
            await sftp.rename(source, target)

        await self._with_sftp("mark_processed", _move)
        self.logger.info("sftp.marked_processed", filename=filename, processed_dir=processed_dir)


def _is_directory(attrs) -> bool:
    if getattr(attrs, "type", None) == FILEXFER_TYPE_DIRECTORY:
        return True
    permissions = getattr(attrs, "permissions", None)
    return permissions is not None and stat.S_ISDIR(permissions)
