import base64

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.serialization import pkcs7

from core.errors import ConfigurationError, FormatError
from integrations.as2_adapter import AS2Adapter, As2Config, _unwrap_signed, receive_message
from integrations.certificates import load_certificate, load_private_key, sign_detached, split_mime, verify_detached
from conftest import COMPANY_AS2_ID, PARTNER_AS2_ID, sample_850


def _sender(signing_identity, recipient_cert, encryption="none"):
    cert, key = signing_identity
    return AS2Adapter(
        "acme",
        As2Config(
            url="https://edi-exchange.test/api/v1/as2/receive",
            as2_from=PARTNER_AS2_ID,
            as2_to=COMPANY_AS2_ID,
            company_certificate=cert,
            company_private_key=key,
            partner_certificate=recipient_cert,
            encryption_algorithm=encryption,
        ),
    )


def _receive(message, company_identity, partner_cert):
    company_cert, company_key = company_identity
    return receive_message(
        message.body,
        message.headers,
        company_certificate=company_cert,
        company_private_key=company_key,
        partner_certificate=partner_cert,
    )


def test_signed_message_from_partner_is_accepted(partner_identity, company_identity):
    partner_cert, _ = partner_identity
    message = _sender(partner_identity, company_identity[0]).build_message(
        "acme_po.edi", sample_850().encode(), "application/edi-x12"
    )

    inbound = _receive(message, company_identity, partner_cert)

    assert inbound.signed and not inbound.encrypted
    assert inbound.filename == "acme_po.edi"
    assert inbound.mic == message.mic
    assert inbound.as2_from == PARTNER_AS2_ID
    assert "WIDGET-1" in inbound.content


def test_unsigned_body_is_rejected(partner_identity, company_identity):
    partner_cert, _ = partner_identity

    with pytest.raises(FormatError, match="Unsigned AS2 content"):
        receive_message(
            sample_850().encode(),
            {"Content-Type": "application/edi-x12", "AS2-From": PARTNER_AS2_ID},
            company_certificate=company_identity[0],
            company_private_key=company_identity[1],
            partner_certificate=partner_cert,
        )


def test_partner_without_certificate_cannot_be_authenticated(partner_identity, company_identity):
    message = _sender(partner_identity, company_identity[0]).build_message(
        "acme_po.edi", sample_850().encode(), "application/edi-x12"
    )

    with pytest.raises(ConfigurationError, match="no certificate on file"):
        _receive(message, company_identity, None)


def test_signature_from_another_key_is_rejected(partner_identity, company_identity):
    partner_cert, _ = partner_identity
    # signed and bundled with a certificate the partner record does not hold
    message = _sender(company_identity, company_identity[0]).build_message(
        "acme_po.edi", sample_850().encode(), "application/edi-x12"
    )

    with pytest.raises(FormatError, match="not produced by the partner certificate"):
        _receive(message, company_identity, partner_cert)


def test_certificate_bundle_without_signer_is_rejected(partner_identity, company_identity):
    partner_cert, _ = partner_identity
    bundle = pkcs7.serialize_certificates([load_certificate(partner_cert)], serialization.Encoding.DER)
    body = b"".join(
        [
            b"--forged\r\n",
            b"Content-Type: application/edi-x12\r\n\r\n",
            sample_850().encode(),
            b"\r\n--forged\r\n",
            b"Content-Type: application/pkcs7-signature; name=smime.p7s\r\n",
            b"Content-Transfer-Encoding: base64\r\n\r\n",
            base64.encodebytes(bundle),
            b"\r\n--forged--\r\n",
        ]
    )
    headers = {
        "Content-Type": 'multipart/signed; protocol="application/pkcs7-signature"; micalg=sha-256; boundary="forged"',
        "AS2-From": PARTNER_AS2_ID,
    }

    with pytest.raises(FormatError, match="not produced by the partner certificate"):
        receive_message(
            body,
            headers,
            company_certificate=company_identity[0],
            company_private_key=company_identity[1],
            partner_certificate=partner_cert,
        )


def test_tampered_content_fails_verification(partner_identity, company_identity):
    partner_cert, _ = partner_identity
    message = _sender(partner_identity, company_identity[0]).build_message(
        "acme_po.edi", sample_850().encode(), "application/edi-x12"
    )
    message.body = message.body.replace(b"WIDGET-1", b"WIDGET-9")

    with pytest.raises(FormatError):
        _receive(message, company_identity, partner_cert)


def test_encrypted_message_is_verified_after_decryption(partner_identity, company_identity):
    partner_cert, _ = partner_identity
    message = _sender(partner_identity, company_identity[0], encryption="aes256").build_message(
        "acme_po.edi", sample_850().encode(), "application/edi-x12"
    )

    inbound = _receive(message, company_identity, partner_cert)
    assert inbound.signed and inbound.encrypted

    with pytest.raises(FormatError):
        _receive(message, company_identity, company_identity[0])


def test_verify_detached_reports_signer_digest(partner_identity):
    cert_pem, key_pem = partner_identity
    certificate = load_certificate(cert_pem)
    content = b"Content-Type: text/plain\r\n\r\nhello"
    signed = sign_detached(content, certificate, load_private_key(key_pem), "sha384")
    signed_part, signature_der = _unwrap_signed(*split_mime(signed))

    assert verify_detached(signed_part, signature_der, certificate) == "sha384"
    with pytest.raises(FormatError, match="Unreadable S/MIME signature"):
        verify_detached(content, b"not der", certificate)
