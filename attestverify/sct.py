"""Verifying signed certificate timestamps embedded in a leaf signing certificate."""

from __future__ import annotations

import hashlib
import struct
from datetime import datetime, timedelta, timezone
from typing import Any, Sequence

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.x509.certificate_transparency import (
    SignatureAlgorithm,
    SignedCertificateTimestamp,
    Version,
)

from .interface import TransparencyLog, TrustedMaterial

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_SCT_VERSION_V1 = 0
_SIGNATURE_TYPE_CERTIFICATE_TIMESTAMP = 0
_ENTRY_TYPE_PRECERT = 1


def _as_utc(when: datetime) -> datetime:
    return when.replace(tzinfo=timezone.utc) if when.tzinfo is None else when


def _millis(when: datetime) -> int:
    return (_as_utc(when) - _EPOCH) // timedelta(milliseconds=1)


def _embedded_scts(cert: x509.Certificate) -> list[SignedCertificateTimestamp]:
    try:
        extension = cert.extensions.get_extension_for_class(
            x509.PrecertificateSignedCertificateTimestamps
        )
    except x509.ExtensionNotFound:
        return []
    return list(extension.value)


def _within_validity(log: TransparencyLog, when: datetime) -> bool:
    if log.validity_period_start is not None and when < _as_utc(log.validity_period_start):
        return False
    if log.validity_period_end is not None and when > _as_utc(log.validity_period_end):
        return False
    return True


def _signature_input(
    sct: SignedCertificateTimestamp, precert_tbs: bytes, issuer: x509.Certificate
) -> bytes:
    if sct.version != Version.v1:
        raise ValueError("unsupported SCT version")
    issuer_spki = issuer.public_key().public_bytes(
        serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo
    )
    issuer_key_hash = hashlib.sha256(issuer_spki).digest()
    extensions = sct.extension_bytes
    return b"".join(
        (
            struct.pack(
                ">BBQH",
                _SCT_VERSION_V1,
                _SIGNATURE_TYPE_CERTIFICATE_TIMESTAMP,
                _millis(sct.timestamp),
                _ENTRY_TYPE_PRECERT,
            ),
            issuer_key_hash,
            len(precert_tbs).to_bytes(3, "big"),
            precert_tbs,
            struct.pack(">H", len(extensions)),
            extensions,
        )
    )


def _verify_sct_signature(public_key: Any, sct: SignedCertificateTimestamp, data: bytes) -> None:
    hash_algorithm = sct.signature_hash_algorithm
    if isinstance(public_key, ec.EllipticCurvePublicKey):
        if sct.signature_algorithm != SignatureAlgorithm.ECDSA:
            raise ValueError("SCT signature algorithm does not match log key")
        public_key.verify(sct.signature, data, ec.ECDSA(hash_algorithm))
    elif isinstance(public_key, rsa.RSAPublicKey):
        if sct.signature_algorithm != SignatureAlgorithm.RSA:
            raise ValueError("SCT signature algorithm does not match log key")
        public_key.verify(sct.signature, data, padding.PKCS1v15(), hash_algorithm)
    else:
        raise ValueError("unsupported CT log key type")


def _sct_verifies(
    log: TransparencyLog,
    sct: SignedCertificateTimestamp,
    precert_tbs: bytes,
    issuer: x509.Certificate,
) -> bool:
    try:
        _verify_sct_signature(log.public_key, sct, _signature_input(sct, precert_tbs, issuer))
    except Exception:
        return False
    return True


def verify_signed_certificate_timestamp(
    chains: Sequence[Sequence[x509.Certificate]],
    threshold: int,
    trusted_material: TrustedMaterial,
) -> int:
    """Verify the leaf's embedded SCTs against the trusted CT logs.

    Returns the number of verified SCTs and raises if it is below the threshold.
    """
    if not chains or not chains[0] or chains[0][0] is None:
        raise ValueError("no chains provided")
    leaf = chains[0][0]
    ct_logs = trusted_material.ct_logs() or {}

    scts = _embedded_scts(leaf)
    precert_tbs = leaf.tbs_precertificate_bytes if scts else b""

    verified = 0
    for sct in scts:
        log = ct_logs.get(sct.log_id.hex())
        if log is None:
            # the trust root cannot verify this entry
            continue
        if not _within_validity(log, _as_utc(sct.timestamp)):
            continue
        for chain in chains:
            if len(chain) < 2:
                continue
            if _sct_verifies(log, sct, precert_tbs, chain[1]):
                verified += 1

    if verified < threshold:
        raise ValueError(
            f"only able to verify {verified} SCT entries; unable to meet threshold of {threshold}"
        )
    return verified