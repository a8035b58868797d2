"""
AS2 Message Disposition Notifications (RFC 4130 / RFC 3798).

    generate_mdn  — receipt we return for an inbound AS2 message
    parse_mdn     — read a partner's receipt (sync response or async POST)
    compute_mic   — base64 digest of the signed MIME entity
"""

from __future__ import annotations

import base64
import hashlib
import re
import uuid
from dataclasses import dataclass

MIC_ALGORITHM_NAMES = {
    "sha1": "sha-1",
    "sha256": "sha-256",
    "sha384": "sha-384",
    "sha512": "sha-512",
}

_DISPOSITION = re.compile(r"^Disposition:\s*(.+)$", re.IGNORECASE | re.MULTILINE)
_ORIGINAL_MESSAGE_ID = re.compile(r"^Original-Message-ID:\s*(.+)$", re.IGNORECASE | re.MULTILINE)
_RECEIVED_MIC = re.compile(r"^Received-Content-MIC:\s*([^,\r\n]+)\s*(?:,\s*([\w-]+))?", re.IGNORECASE | re.MULTILINE)
_FAILURE_MODIFIER = re.compile(r"(?:processed|failed)/(?:error|failure):\s*(.+)$", re.IGNORECASE)


@dataclass
class MdnReceipt:
    processed: bool
    disposition: str
    original_message_id: str | None = None
    mic: str | None = None
    mic_algorithm: str | None = None
    error: str | None = None


@dataclass
class GeneratedMdn:
    message_id: str
    content_type: str
    body: str


def compute_mic(content: bytes, algorithm: str = "sha256") -> str:
    return base64.b64encode(hashlib.new(algorithm, content).digest()).decode()


def generate_mdn(
    original_message_id: str,
    recipient_as2_id: str,
    mic: str | None,
    success: bool = True,
    error: str | None = None,
    algorithm: str = "sha256",
    reporting_ua: str = "EDI Exchange AS2",
    message_id_domain: str = "edi-exchange",
) -> GeneratedMdn:
    boundary = f"----=_MDN_{uuid.uuid4().hex}"
    disposition = "automatic-action/MDN-sent-automatically; processed"
    if not success:
        disposition += f"/error: {error or 'unexpected-processing-error'}"

    if success:
        text = f"The AS2 message {original_message_id} was received and processed."
    else:
        text = f"The AS2 message {original_message_id} could not be processed: {error}"

    notification = [
        f"Reporting-UA: {reporting_ua}",
        f"Original-Recipient: rfc822; {recipient_as2_id}",
        f"Final-Recipient: rfc822; {recipient_as2_id}",
        f"Original-Message-ID: {original_message_id}",
        f"Disposition: {disposition}",
    ]
    if mic:
        notification.append(f"Received-Content-MIC: {mic}, {MIC_ALGORITHM_NAMES.get(algorithm, algorithm)}")

    body = "\r\n".join(
        [
            f"--{boundary}",
            "Content-Type: text/plain; charset=us-ascii",
            "",
            text,
            "",
            f"--{boundary}",
            "Content-Type: message/disposition-notification",
            "",
            *notification,
            "",
            f"--{boundary}--",
            "",
        ]
    )
    return GeneratedMdn(
        message_id=f"<{uuid.uuid4().hex}@{message_id_domain}>",
        content_type=f'multipart/report; report-type=disposition-notification; boundary="{boundary}"',
        body=body,
    )


def parse_mdn(body: str) -> MdnReceipt | None:
    """Return the receipt in ``body``, or None when it carries no disposition."""
    match = _DISPOSITION.search(body or "")
    if match is None:
        return None

    disposition = match.group(1).strip()
    failure = _FAILURE_MODIFIER.search(disposition)
    processed = failure is None and "processed" in disposition.lower()

    original = _ORIGINAL_MESSAGE_ID.search(body)
    mic = _RECEIVED_MIC.search(body)
    return MdnReceipt(
        processed=processed,
        disposition=disposition,
        original_message_id=original.group(1).strip() if original else None,
        mic=mic.group(1).strip() if mic else None,
        mic_algorithm=mic.group(2) if mic and mic.group(2) else None,
        error=None if processed else (failure.group(1).strip() if failure else disposition),
    )
