"""
AS2 Transport Adapter

Outbound:
  1. Wrap the document in a MIME entity
  2. Sign it (detached S/MIME) with the company key
  3. Encrypt the signed entity for the partner certificate (unless "none")
  4. POST to the partner URL with AS2-From / AS2-To / Message-ID
  5. Read the synchronous MDN, if the partner returned one

Inbound (``receive_message``) reverses 1–3 for the /as2/receive route.

Missing company certificate/key, partner certificate or URL is reported
as a configuration error before any HTTP request is made.
"""

from __future__ import annotations

import base64
import binascii
import re
import time
import uuid
from collections.abc import Mapping
from dataclasses import dataclass

import httpx

from core.errors import ConfigurationError, FormatError
from integrations.base import (
    DispatchResult,
    ErrorKind,
    TransportAdapter,
    TransportChannel,
    register_adapter,
)
from integrations.certificates import (
    NO_ENCRYPTION,
    decrypt_envelope,
    encrypt_envelope,
    load_certificate,
    load_private_key,
    sign_detached,
    split_mime,
    verify_detached,
)
from integrations.mdn import MIC_ALGORITHM_NAMES, compute_mic, parse_mdn

AS2_VERSION = "1.2"
ENVELOPED_CONTENT_TYPE = 'application/pkcs7-mime; smime-type=enveloped-data; name="smime.p7m"'

# S/MIME signing rewrites the signed part with CRLF line breaks
_LINE_BREAKS = re.compile(rb"\r\n|\r|\n")


@dataclass
class As2Config:
    url: str | None
    as2_from: str | None  # company AS2 id
    as2_to: str | None  # partner AS2 id
    company_certificate: str | None
    company_private_key: str | None
    partner_certificate: str | None
    encryption_algorithm: str = "aes256"
    signature_algorithm: str = "sha256"
    request_mdn: bool = True
    mdn_email: str | None = None
    timeout_seconds: float = 30.0
    message_id_domain: str = "edi-exchange"


@dataclass
class As2Message:
    message_id: str
    headers: dict[str, str]
    body: bytes
    mic: str


@dataclass
class As2Inbound:
    content: str
    content_type: str
    filename: str | None
    message_id: str | None
    as2_from: str | None
    as2_to: str | None
    mic: str | None
    signed: bool
    encrypted: bool


@register_adapter
class AS2Adapter(TransportAdapter):
    """Signed/encrypted HTTP delivery with MDN receipts."""

    def __init__(self, tenant_id: str, config: As2Config, http_transport: httpx.AsyncBaseTransport | None = None):
        super().__init__(tenant_id, config)
        self._http_transport = http_transport

    @property
    def channel(self) -> TransportChannel:
        return TransportChannel.AS2

    def missing_configuration(self) -> list[str]:
        cfg = self.config
        missing = []
        if not cfg.company_certificate or not cfg.company_private_key:
            missing.append("company certificate and private key")
        if not cfg.partner_certificate:
            missing.append("partner certificate")
        if not cfg.url:
            missing.append("partner AS2 URL")
        if not cfg.as2_from or not cfg.as2_to:
            missing.append("AS2 identifiers")
        return missing

    def new_message_id(self) -> str:
        return f"<{int(time.time() * 1000)}.{uuid.uuid4().hex[:12]}@{self.config.message_id_domain}>"

    def build_message(self, filename: str, content: bytes, content_type: str) -> As2Message:
        cfg = self.config
        entity = (
            f"Content-Type: {content_type}\r\n"
            "Content-Transfer-Encoding: binary\r\n"
            f'Content-Disposition: attachment; filename="{filename}"\r\n'
            "\r\n"
        ).encode() + content
        entity = _LINE_BREAKS.sub(b"\r\n", entity)

        company_cert = load_certificate(cfg.company_certificate)
        company_key = load_private_key(cfg.company_private_key)
        signed = sign_detached(entity, company_cert, company_key, cfg.signature_algorithm)
        mic = compute_mic(entity, cfg.signature_algorithm)

        if cfg.encryption_algorithm and cfg.encryption_algorithm != NO_ENCRYPTION:
            body = encrypt_envelope(signed, load_certificate(cfg.partner_certificate), cfg.encryption_algorithm)
            body_content_type = ENVELOPED_CONTENT_TYPE
        else:
            signed_headers, body = split_mime(signed)
            body_content_type = " ".join(signed_headers["Content-Type"].split())

        message_id = self.new_message_id()
        headers = {
            "AS2-Version": AS2_VERSION,
            "AS2-From": _quote_as2_id(cfg.as2_from),
            "AS2-To": _quote_as2_id(cfg.as2_to),
            "Message-ID": message_id,
            "Subject": f"EDI document {filename}",
            "MIME-Version": "1.0",
            "Content-Type": body_content_type,
            "Content-Transfer-Encoding": "binary",
        }
        if cfg.request_mdn:
            headers["Disposition-Notification-To"] = cfg.mdn_email or cfg.as2_from
            micalg = MIC_ALGORITHM_NAMES.get(cfg.signature_algorithm, cfg.signature_algorithm)
            headers["Disposition-Notification-Options"] = (
                f"signed-receipt-protocol=optional, pkcs7-signature; signed-receipt-micalg=optional, {micalg}"
            )
        return As2Message(message_id=message_id, headers=headers, body=body, mic=mic)

    async def send(self, filename: str, content: str, content_type: str = "application/edi-x12") -> DispatchResult:
        missing = self.missing_configuration()
        if missing:
            self.logger.warning("as2.send.misconfigured", missing=missing)
            return DispatchResult.failed(f"AS2 send requires {', '.join(missing)}", ErrorKind.CONFIGURATION)

        try:
            message = self.build_message(filename, content.encode(), content_type)
        except ConfigurationError as exc:
            return DispatchResult.failed(exc.message, ErrorKind.CONFIGURATION)

        try:
            async with httpx.AsyncClient(
                timeout=self.config.timeout_seconds,
                transport=self._http_transport,
            ) as client:
                response = await client.post(self.config.url, content=message.body, headers=message.headers)
        except httpx.TimeoutException:
            self.logger.warning("as2.send.timeout", message_id=message.message_id)
            return DispatchResult.failed(
                f"AS2 request timed out after {self.config.timeout_seconds:g}s",
                ErrorKind.TRANSPORT,
                message_id=message.message_id,
            )
        except httpx.HTTPError as exc:
            self.logger.warning("as2.send.http_error", message_id=message.message_id, error=str(exc))
            return DispatchResult.failed(f"AS2 request failed: {exc}", ErrorKind.TRANSPORT, message_id=message.message_id)

        if response.status_code >= 400:
            return DispatchResult.failed(
                f"AS2 endpoint returned HTTP {response.status_code}",
                ErrorKind.TRANSPORT,
                message_id=message.message_id,
            )

        receipt = parse_mdn(response.text)
        if receipt is None:
            self.logger.info("as2.send.accepted_without_mdn", message_id=message.message_id)
            return DispatchResult(
                success=True,
                message_id=message.message_id,
                metadata={"mdn": "pending", "mic": message.mic},
            ).complete()

        if not receipt.processed:
            return DispatchResult.failed(
                f"Partner MDN reported failure: {receipt.error}",
                ErrorKind.REJECTED,
                message_id=message.message_id,
                disposition=receipt.disposition,
            )
        if receipt.mic and receipt.mic != message.mic:
            return DispatchResult.failed(
                "Partner MDN MIC does not match the transmitted content",
                ErrorKind.REJECTED,
                message_id=message.message_id,
                expected_mic=message.mic,
                received_mic=receipt.mic,
            )

        self.logger.info("as2.send.processed", message_id=message.message_id)
        return DispatchResult(
            success=True,
            message_id=message.message_id,
            metadata={"mdn": "processed", "disposition": receipt.disposition, "mic": message.mic},
        ).complete()

    async def test_connection(self) -> DispatchResult:
        if not self.config.url:
            return DispatchResult.failed("Partner AS2 URL is not configured", ErrorKind.CONFIGURATION)
        try:
            async with httpx.AsyncClient(
                timeout=self.config.timeout_seconds,
                transport=self._http_transport,
            ) as client:
                response = await client.head(self.config.url)
                if response.status_code == 405:
                    response = await client.options(self.config.url)
        except httpx.HTTPError as exc:
            self.logger.warning("as2.connection_failed", error=str(exc))
            return DispatchResult.failed(f"AS2 endpoint unreachable: {exc}", ErrorKind.TRANSPORT)

        if response.status_code >= 400:
            return DispatchResult.failed(f"AS2 endpoint returned HTTP {response.status_code}", ErrorKind.TRANSPORT)
        return DispatchResult(
            success=True,
            metadata={"status_code": response.status_code, "message": "AS2 endpoint reachable"},
        ).complete()


def receive_message(
    body: bytes,
    headers: Mapping[str, str],
    company_certificate: str | None,
    company_private_key: str | None,
    partner_certificate: str | None,
    signature_algorithm: str = "sha256",
) -> As2Inbound:
    """Decrypt / unwrap an inbound AS2 body and authenticate its sender.

    The body must carry a detached signature that verifies under the
    partner's certificate on file.

    Raises:
        ConfigurationError: encrypted message but no company key on file,
            or no partner certificate to verify against.
        FormatError: undecryptable body, malformed MIME, an unsigned body,
            or a signature that does not verify.
    """
    lowered = {k.lower(): v for k, v in headers.items()}
    content_type = lowered.get("content-type", "application/octet-stream")
    encrypted = "enveloped-data" in content_type.lower() or "pkcs7-mime" in content_type.lower()

    if encrypted:
        if not company_certificate or not company_private_key:
            raise ConfigurationError("Encrypted AS2 message received but no company certificate/key is configured")
        entity = decrypt_envelope(body, load_certificate(company_certificate), load_private_key(company_private_key))
    else:
        entity = f"Content-Type: {content_type}\r\n\r\n".encode() + body

    payload_entity = open_signed_entity(entity, partner_certificate)

    payload_headers, payload = split_mime(payload_entity)
    if (payload_headers.get("Content-Transfer-Encoding") or "").lower() == "base64":
        payload = _decode_base64(payload)

    return As2Inbound(
        content=payload.decode("utf-8", errors="replace"),
        content_type=payload_headers.get_content_type(),
        filename=payload_headers.get_filename(),
        message_id=lowered.get("message-id"),
        as2_from=_unquote_as2_id(lowered.get("as2-from")),
        as2_to=_unquote_as2_id(lowered.get("as2-to")),
        mic=compute_mic(payload_entity, signature_algorithm),
        signed=True,
        encrypted=encrypted,
    )


def open_signed_entity(entity: bytes, partner_certificate: str | None) -> bytes:
    """Return the signed part of a multipart/signed entity once its signature verifies."""
    if not partner_certificate:
        raise ConfigurationError("Partner has no certificate on file; AS2 content cannot be authenticated")
    entity_headers, entity_body = split_mime(entity)
    if entity_headers.get_content_type() != "multipart/signed":
        raise FormatError("Unsigned AS2 content rejected; partner messages must be signed")
    payload_entity, signature_der = _unwrap_signed(entity_headers, entity_body)
    verify_detached(payload_entity, signature_der, load_certificate(partner_certificate))
    return payload_entity


def _unwrap_signed(entity_headers, entity_body: bytes) -> tuple[bytes, bytes]:
    """Exact bytes of the signed part and the DER signature of a multipart/signed body."""
    boundary = entity_headers.get_boundary()
    if not boundary:
        raise FormatError("multipart/signed entity has no boundary")
    sections = entity_body.split(b"--" + boundary.encode())
    if len(sections) < 3:
        raise FormatError("multipart/signed entity must contain content and signature parts")

    content_part = _trim_part(sections[1])
    signature_headers, signature_body = split_mime(_trim_part(sections[2]))
    encoding = (signature_headers.get("Content-Transfer-Encoding") or "").lower()
    signature_der = _decode_base64(signature_body) if encoding == "base64" else signature_body
    return content_part, signature_der


def _trim_part(section: bytes) -> bytes:
    if section.startswith(b"\r\n"):
        section = section[2:]
    elif section.startswith(b"\n"):
        section = section[1:]
    if section.endswith(b"\r\n"):
        section = section[:-2]
    elif section.endswith(b"\n"):
        section = section[:-1]
    return section


def _decode_base64(data: bytes) -> bytes:
    try:
        return base64.b64decode(b"".join(data.split()))
    except binascii.Error as exc:
        raise FormatError(f"Invalid base64 content: {exc}") from exc


def _quote_as2_id(value: str | None) -> str:
    value = value or ""
    return f'"{value}"' if " " in value else value


def _unquote_as2_id(value: str | None) -> str | None:
    return value.strip().strip('"') if value else value
