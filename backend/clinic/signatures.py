# clinic/signatures.py
#
# Consultation signing. A manual signature is only a marker (the doctor signs
# the printed page). A digital signature decrypts the doctor's stored PKCS#12
# certificate with a password supplied at signing time; the password is never
# stored.

import logging
from typing import Any, Dict, Optional

from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID

from .database import FILES_BUCKET, s3_client
from .errors import CertificateMissingError, CertificatePasswordError
from .timeutils import now_ms

logger = logging.getLogger(__name__)


def _common_name(name) -> Optional[str]:
    attrs = name.get_attributes_for_oid(NameOID.COMMON_NAME)
    if attrs:
        return attrs[0].value
    return name.rfc4514_string() or None


def read_certificate(p12_bytes: bytes, password: str) -> Dict[str, Any]:
    """Decrypts a .p12 bundle and extracts the metadata shown on documents."""
    try:
        _key, certificate, _extra = pkcs12.load_key_and_certificates(
            p12_bytes, password.encode("utf-8") if password else None
        )
    except ValueError:
        raise CertificatePasswordError()
    if certificate is None:
        raise CertificatePasswordError()

    return {
        'issuedTo': _common_name(certificate.subject),
        'issuedBy': _common_name(certificate.issuer),
        'serialNumber': format(certificate.serial_number, 'X'),
        'expiryDate': certificate.not_valid_after_utc.date().isoformat(),
    }


def certificate_key(user_id: str) -> str:
    return f"certificates/{user_id}/signature.p12"


def store_certificate(user_id: str, p12_bytes: bytes, password: str) -> Dict[str, Any]:
    """Validates the bundle with its password, uploads it and returns its metadata."""
    metadata = read_certificate(p12_bytes, password)
    key = certificate_key(user_id)
    s3_client.put_object(Bucket=FILES_BUCKET, Key=key, Body=p12_bytes, ContentType="application/x-pkcs12")
    logger.info("SIGN: Stored certificate %s for user %s", metadata['serialNumber'], user_id)
    metadata['fileKey'] = key
    return metadata


def manual_signature() -> Dict[str, Any]:
    return {'type': 'manual'}


def digital_signature(user: Dict[str, Any], password: str) -> Dict[str, Any]:
    cert_data = user.get('digitalCertData') or {}
    file_key = cert_data.get('fileKey')
    if not file_key:
        raise CertificateMissingError()

    p12_bytes = s3_client.get_object(Bucket=FILES_BUCKET, Key=file_key)['Body'].read()
    metadata = read_certificate(p12_bytes, password)
    logger.info("SIGN: Digital signature by %s with certificate %s", user.get('id'), metadata['serialNumber'])
    return {
        'type': 'digital_p12',
        'signerName': metadata['issuedTo'] or user.get('name'),
        'signatureDate': now_ms(),
        'certificateSerial': metadata['serialNumber'],
        'issuedBy': metadata['issuedBy'],
    }


def build_signature(method: str, user: Dict[str, Any], password: Optional[str] = None) -> Dict[str, Any]:
    if method == 'manual':
        return manual_signature()
    if method == 'digital':
        return digital_signature(user, password or '')
    raise ValueError(f"Unknown signature method: {method}")
