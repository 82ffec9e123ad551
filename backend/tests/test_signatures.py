# backend/tests/test_signatures.py
#
# Certificate validation and the two signing methods.

import datetime
import io
from unittest.mock import MagicMock

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import BestAvailableEncryption, pkcs12
from cryptography.x509.oid import NameOID

from clinic import signatures
from clinic.errors import CertificateMissingError, CertificatePasswordError


@pytest.fixture(scope="module")
def p12_bytes():
    """A self-signed certificate for 'Dra. Elena Ruiz' protected by 'secreto123'."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "Dra. Elena Ruiz")])
    issuer = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "CA Pruebas GT")])
    now = datetime.datetime.now(datetime.timezone.utc)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(key.public_key())
        .serial_number(0xABC123)
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(datetime.datetime(2030, 1, 31, tzinfo=datetime.timezone.utc))
        .sign(key, hashes.SHA256())
    )
    return pkcs12.serialize_key_and_certificates(
        b"firma", key, certificate, None, BestAvailableEncryption(b"secreto123")
    )


def test_read_certificate_metadata(p12_bytes):
    metadata = signatures.read_certificate(p12_bytes, "secreto123")

    assert metadata == {
        'issuedTo': "Dra. Elena Ruiz",
        'issuedBy': "CA Pruebas GT",
        'serialNumber': "ABC123",
        'expiryDate': "2030-01-31",
    }


def test_wrong_password_is_rejected(p12_bytes):
    with pytest.raises(CertificatePasswordError):
        signatures.read_certificate(p12_bytes, "incorrecta")


def test_store_certificate_uploads_and_returns_key(p12_bytes, mocker):
    # Arrange
    s3 = mocker.patch("clinic.signatures.s3_client", MagicMock())

    # Act
    metadata = signatures.store_certificate("doc-1", p12_bytes, "secreto123")

    # Assert
    assert metadata['fileKey'] == "certificates/doc-1/signature.p12"
    s3.put_object.assert_called_once()
    assert s3.put_object.call_args.kwargs['Body'] == p12_bytes


def test_store_certificate_with_wrong_password_uploads_nothing(p12_bytes, mocker):
    s3 = mocker.patch("clinic.signatures.s3_client", MagicMock())

    with pytest.raises(CertificatePasswordError):
        signatures.store_certificate("doc-1", p12_bytes, "incorrecta")
    s3.put_object.assert_not_called()


def test_digital_signature_reads_stored_certificate(p12_bytes, mocker):
    # Arrange
    s3 = mocker.patch("clinic.signatures.s3_client", MagicMock())
    s3.get_object.return_value = {'Body': io.BytesIO(p12_bytes)}
    user = {'id': "doc-1", 'name': "Elena Ruiz", 'digitalCertData': {'fileKey': "certificates/doc-1/signature.p12"}}

    # Act
    signature = signatures.build_signature('digital', user, "secreto123")

    # Assert
    assert signature['type'] == 'digital_p12'
    assert signature['signerName'] == "Dra. Elena Ruiz"
    assert signature['certificateSerial'] == "ABC123"
    assert isinstance(signature['signatureDate'], int)


def test_digital_signature_without_certificate():
    with pytest.raises(CertificateMissingError):
        signatures.build_signature('digital', {'id': "doc-1"}, "secreto123")


def test_manual_signature_is_a_marker():
    assert signatures.build_signature('manual', {'id': "doc-1"}) == {'type': 'manual'}
    with pytest.raises(ValueError):
        signatures.build_signature('fax', {'id': "doc-1"})
