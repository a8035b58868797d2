"""
S/MIME helpers for AS2 — certificate loading, signing, enveloping.

Built on cryptography's PKCS7 builders; asn1crypto reads the SignerInfo
structures when verifying. Signing produces a detached multipart/signed
entity; enveloping produces DER enveloped-data that is posted as the raw
AS2 body.
"""

from __future__ import annotations

import hmac
import re
from datetime import datetime, timedelta, timezone
from email import message_from_bytes
from email.message import Message

from asn1crypto import cms
from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.hazmat.primitives.ciphers import algorithms
from cryptography.hazmat.primitives.serialization import pkcs7
from cryptography.x509.oid import NameOID

from core.errors import ConfigurationError, FormatError

SIGNATURE_HASHES = {
    "sha1": hashes.SHA1,
    "sha256": hashes.SHA256,
    "sha384": hashes.SHA384,
    "sha512": hashes.SHA512,
}

ENCRYPTION_ALGORITHMS = {
    "aes128": algorithms.AES128,
    "aes256": algorithms.AES256,
}

NO_ENCRYPTION = "none"

_LINE_BREAKS = re.compile(rb"\r\n|\r|\n")


def load_certificate(pem: str) -> x509.Certificate:
    try:
        return x509.load_pem_x509_certificate(pem.encode())
    except ValueError as exc:
        raise ConfigurationError(f"Invalid PEM certificate: {exc}") from exc


def load_private_key(pem: str):
    try:
        return serialization.load_pem_private_key(pem.encode(), password=None)
    except (ValueError, TypeError) as exc:
        raise ConfigurationError("Invalid or passphrase-protected PEM private key") from exc


def sign_detached(content: bytes, certificate: x509.Certificate, private_key, algorithm: str = "sha256") -> bytes:
    """Return a complete multipart/signed MIME entity (headers included)."""
    hash_cls = SIGNATURE_HASHES.get(algorithm)
    if hash_cls is None:
        raise ConfigurationError(f"Unsupported signature algorithm: {algorithm}")
    return (
        pkcs7.PKCS7SignatureBuilder()
        .set_data(content)
        .add_signer(certificate, private_key, hash_cls())
        .sign(
            serialization.Encoding.SMIME,
            [pkcs7.PKCS7Options.DetachedSignature, pkcs7.PKCS7Options.Binary],
        )
    )


def encrypt_envelope(content: bytes, certificate: x509.Certificate, algorithm: str = "aes256") -> bytes:
    cipher = ENCRYPTION_ALGORITHMS.get(algorithm)
    if cipher is None:
        raise ConfigurationError(f"Unsupported encryption algorithm: {algorithm}")
    return (
        pkcs7.PKCS7EnvelopeBuilder()
        .set_data(content)
        .add_recipient(certificate)
        .set_content_encryption_algorithm(cipher)
        .encrypt(serialization.Encoding.DER, [pkcs7.PKCS7Options.Binary])
    )


def decrypt_envelope(data: bytes, certificate: x509.Certificate, private_key) -> bytes:
    try:
        return pkcs7.pkcs7_decrypt_der(data, certificate, private_key, [])
    except ValueError as exc:
        raise FormatError(f"Unable to decrypt AS2 payload: {exc}") from exc


def verify_detached(content: bytes, signature_der: bytes, certificate: x509.Certificate) -> str:
    """Check a detached CMS signature over ``content`` with the certificate's public key.

    Every SignerInfo is tried; one that verifies under the certificate is
    enough. Certificates bundled in the signature are never trusted.

    Returns:
        The digest algorithm of the verified signer (e.g. "sha256").

    Raises:
        FormatError: unreadable signature, or no signer verifies.
    """
    try:
        content_info = cms.ContentInfo.load(signature_der)
        if content_info["content_type"].native != "signed_data":
            raise FormatError("S/MIME signature is not CMS signed-data")
        signer_infos = list(content_info["content"]["signer_infos"])
    except (ValueError, TypeError, KeyError) as exc:
        raise FormatError(f"Unreadable S/MIME signature: {exc}") from exc

    public_key = certificate.public_key()
    candidates = [content]
    canonical = _LINE_BREAKS.sub(b"\r\n", content)
    if canonical != content:
        candidates.append(canonical)

    for signer_info in signer_infos:
        try:
            digest_name = signer_info["digest_algorithm"]["algorithm"].native
            signature_algo = signer_info["signature_algorithm"]["algorithm"].native
            signature = signer_info["signature"].native
            signed_attrs = signer_info["signed_attrs"]
            attributes = signed_attrs.native or []
        except (ValueError, TypeError, KeyError):
            continue
        hash_cls = SIGNATURE_HASHES.get(digest_name)
        if hash_cls is None:
            continue

        for data in candidates:
            if attributes:
                expected = next((a["values"][0] for a in attributes if a["type"] == "message_digest"), None)
                digest = hashes.Hash(hash_cls())
                digest.update(data)
                if expected is None or not hmac.compare_digest(digest.finalize(), expected):
                    continue
                # signature covers the DER SET OF attributes, not the [0] IMPLICIT form
                signed_bytes = b"\x31" + signed_attrs.dump()[1:]
            else:
                signed_bytes = data
            if _signature_valid(public_key, signature, signed_bytes, hash_cls(), signature_algo):
                return digest_name

    raise FormatError("AS2 signature was not produced by the partner certificate")


def _signature_valid(public_key, signature: bytes, data: bytes, hash_algorithm, signature_algo: str) -> bool:
    try:
        if isinstance(public_key, rsa.RSAPublicKey):
            if signature_algo == "rsassa_pss":
                rsa_padding = padding.PSS(mgf=padding.MGF1(hash_algorithm), salt_length=padding.PSS.AUTO)
            else:
                rsa_padding = padding.PKCS1v15()
            public_key.verify(signature, data, rsa_padding, hash_algorithm)
        elif isinstance(public_key, ec.EllipticCurvePublicKey):
            public_key.verify(signature, data, ec.ECDSA(hash_algorithm))
        else:
            return False
    except InvalidSignature:
        return False
    return True


def split_mime(entity: bytes) -> tuple[Message, bytes]:
    """Split a MIME entity into its parsed headers and the exact body bytes."""
    candidates = [i for i in (entity.find(b"\r\n\r\n"), entity.find(b"\n\n")) if i != -1]
    if not candidates:
        raise FormatError("MIME entity has no header/body separator")
    cut = min(candidates)
    separator = 4 if entity[cut : cut + 4] == b"\r\n\r\n" else 2
    headers = message_from_bytes(entity[: cut + separator])
    return headers, entity[cut + separator :]


def generate_self_signed(common_name: str, days: int = 365, key_size: int = 2048) -> tuple[str, str]:
    """Return (certificate_pem, private_key_pem) for a new self-signed AS2 identity."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.now(timezone.utc)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=5))
        .not_valid_after(now + timedelta(days=days))
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .sign(key, hashes.SHA256())
    )
    cert_pem = certificate.public_bytes(serialization.Encoding.PEM).decode()
    key_pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode()
    return cert_pem, key_pem
