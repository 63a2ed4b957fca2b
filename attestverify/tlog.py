"""Verifying that a signed entity was recorded in a trusted transparency log."""

from __future__ import annotations

from typing import Any

from .interface import SignedEntity, Timestamp, TrustedMaterial
from .signature import load_verifier

MAX_ALLOWED_TLOG_ENTRIES = 32


def _key_id_hex(key_id: Any) -> str:
    raw = key_id if isinstance(key_id, (bytes, bytearray)) else str(key_id).encode("latin-1")
    return bytes(raw).hex()


def verify_artifact_transparency_log(
    entity: SignedEntity,
    trusted_material: TrustedMaterial,
    log_threshold: int,
    trust_integrated_time: bool,
) -> list[Timestamp]:
    """Verify the entity's log entries and require at least log_threshold of them.

    Returns the integrated times of entries with a verified promise, when
    trust_integrated_time is set.
    """
    entries = list(entity.tlog_entries())

    # limit the number of entries to prevent denial of service
    if len(entries) > MAX_ALLOWED_TLOG_ENTRIES:
        raise ValueError(f"too many tlog entries: {len(entries)} > {MAX_ALLOWED_TLOG_ENTRIES}")

    # duplicates could be used to reach the threshold with a single entry
    seen: set[tuple[Any, int]] = set()
    for entry in entries:
        identity = (entry.log_key_id(), entry.log_index())
        if identity in seen:
            raise ValueError("duplicate tlog entries found")
        seen.add(identity)

    entity_signature = bytes(entity.signature_content().signature())
    verification_content = entity.verification_content()

    verified_timestamps: list[Timestamp] = []
    entries_verified = 0

    for entry in entries:
        entry.validate()

        rekor_logs = trusted_material.rekor_logs()
        log = rekor_logs.get(_key_id_hex(entry.log_key_id()))
        if log is None:
            # the trust root cannot verify this entry
            continue

        if not entry.has_inclusion_promise() and not entry.has_inclusion_proof():
            raise ValueError("entry must contain an inclusion proof and/or promise")

        if entry.has_inclusion_promise():
            try:
                entry.verify_set(rekor_logs)
            except Exception:
                continue
            if trust_integrated_time:
                verified_timestamps.append(Timestamp(entry.integrated_time(), log.base_url))

        if entry.has_inclusion_proof():
            verifier = load_verifier(log.public_key, log.signature_hash_func)
            entry.verify_inclusion(verifier)
            # an inclusion proof alone is not signed metadata, so its time is not trusted

        if bytes(entry.signature()) != entity_signature:
            raise ValueError("transparency log signature does not match")

        if not verification_content.compare_key(entry.public_key(), trusted_material):
            raise ValueError("transparency log certificate does not match")

        if not verification_content.valid_at_time(entry.integrated_time(), trusted_material):
            raise ValueError("integrated time outside certificate validity")

        entries_verified += 1

    if entries_verified < log_threshold:
        raise ValueError(
            "not enough verified log entries from transparency log: "
            f"{entries_verified} < {log_threshold}"
        )
    return verified_timestamps