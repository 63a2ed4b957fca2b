"""Verifying a leaf signing certificate against the trusted authorities."""

from __future__ import annotations

from datetime import datetime

from cryptography import x509

from .interface import TrustedMaterial


def verify_leaf_certificate(
    observer_timestamp: datetime,
    leaf_cert: x509.Certificate,
    trusted_material: TrustedMaterial,
) -> list[list[x509.Certificate]]:
    """Return the chains built by the first authority that accepts the leaf at that time."""
    for authority in trusted_material.fulcio_certificate_authorities():
        try:
            return authority.verify(leaf_cert, observer_timestamp)
        except Exception:
            continue
    raise ValueError("leaf certificate verification failed")