"""Verifying RFC 3161 timestamps over a signed entity's signature."""

from __future__ import annotations

from .interface import SignedEntity, Timestamp, TrustedMaterial

MAX_ALLOWED_TIMESTAMPS = 32


def _verify_signed_timestamp(
    signed_timestamp: bytes, signature: bytes, trusted_material: TrustedMaterial
) -> Timestamp:
    for authority in trusted_material.timestamping_authorities():
        try:
            return authority.verify(signed_timestamp, signature)
        except Exception:
            continue
    raise ValueError("unable to verify signed timestamps")


def verify_timestamp_authority(
    entity: SignedEntity, trusted_material: TrustedMaterial
) -> list[Timestamp]:
    """Return the entity's timestamps that a trusted authority verifies.

    Timestamps from unknown authorities are skipped rather than treated as errors.
    """
    signed_timestamps = [bytes(ts) for ts in entity.timestamps()]

    # limit the number of timestamps to prevent denial of service
    if len(signed_timestamps) > MAX_ALLOWED_TIMESTAMPS:
        raise ValueError(
            f"too many signed timestamps: {len(signed_timestamps)} > {MAX_ALLOWED_TIMESTAMPS}"
        )

    # duplicates could be used to reach the threshold with a single timestamp
    if len(set(signed_timestamps)) != len(signed_timestamps):
        raise ValueError("duplicate timestamps found")

    signature = entity.signature_content().signature()

    verified: list[Timestamp] = []
    for signed_timestamp in signed_timestamps:
        try:
            verified.append(_verify_signed_timestamp(signed_timestamp, signature, trusted_material))
        except ValueError:
            continue
    return verified


def verify_timestamp_authority_with_threshold(
    entity: SignedEntity, trusted_material: TrustedMaterial, threshold: int
) -> list[Timestamp]:
    """Like verify_timestamp_authority, but require at least threshold verified timestamps."""
    verified = verify_timestamp_authority(entity, trusted_material)
    if len(verified) < threshold:
        raise ValueError(
            f"threshold not met for verified signed timestamps: {len(verified)} < {threshold}"
        )
    return verified