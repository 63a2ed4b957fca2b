"""Interfaces that signed entities and trusted material offer to the verifier."""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Protocol, Sequence, TypeVar, runtime_checkable

from cryptography import x509

_T = TypeVar("_T")


@dataclass(frozen=True)
class Timestamp:
    """A verified point in time and the URI of the service that vouched for it."""

    time: datetime
    uri: str = ""


@dataclass
class TransparencyLog:
    """A trusted transparency log (Rekor or CT) and its verification key."""

    base_url: str = ""
    id: bytes = b""
    validity_period_start: datetime | None = None
    validity_period_end: datetime | None = None
    public_key: Any = None
    signature_hash_func: str = "sha256"


@dataclass(frozen=True)
class EnvelopeSignature:
    """One signature carried by a DSSE envelope."""

    sig: bytes
    keyid: str = ""


@dataclass
class Envelope:
    """A DSSE envelope with its base64-encoded payload."""

    payload_type: str
    payload: str
    signatures: list[EnvelopeSignature] = field(default_factory=list)

    def decoded_payload(self) -> bytes:
        """Decode the payload, accepting standard or URL-safe base64, padded or not."""
        padded = self.payload + "=" * (-len(self.payload) % 4)
        for altchars in (None, b"-_"):
            try:
                return base64.b64decode(padded, altchars=altchars, validate=True)
            except binascii.Error:
                continue
        raise ValueError("envelope payload is not valid base64")


@runtime_checkable
class PublicKeyProvider(Protocol):
    def hint(self) -> str:
        """Identifier of the key in the trusted material."""


@runtime_checkable
class MessageSignatureContent(Protocol):
    def digest(self) -> bytes:
        """Digest of the signed artifact."""

    def digest_algorithm(self) -> str:
        """Name of the algorithm that produced the digest."""

    def signature(self) -> bytes:
        """Signature over the artifact."""


@runtime_checkable
class EnvelopeContent(Protocol):
    def raw_envelope(self) -> Envelope:
        """The DSSE envelope as carried by the entity."""

    def statement(self) -> dict[str, Any]:
        """The in-toto statement held in the envelope payload."""


@runtime_checkable
class SignatureContent(Protocol):
    def signature(self) -> bytes:
        """The raw signature bytes."""

    def envelope_content(self) -> EnvelopeContent | None:
        """The envelope, when the entity is signed as a DSSE envelope."""

    def message_signature_content(self) -> MessageSignatureContent | None:
        """The message signature, when the entity signs an artifact directly."""


@runtime_checkable
class VerificationContent(Protocol):
    def compare_key(self, key: Any, trusted_material: TrustedMaterial) -> bool:
        """Whether the given key or certificate is the one that signed the entity."""

    def valid_at_time(self, when: datetime, trusted_material: TrustedMaterial) -> bool:
        """Whether the signing key or certificate was valid at the given time."""

    def certificate(self) -> x509.Certificate | None:
        """The leaf certificate, when the entity is signed with one."""

    def public_key(self) -> PublicKeyProvider | None:
        """The key hint, when the entity is signed with a long-lived key."""


@runtime_checkable
class TlogEntry(Protocol):
    def log_key_id(self) -> str:
        """Identifier of the log's key, as raw key-id bytes held in a string."""

    def log_index(self) -> int:
        """Index of the entry in its log."""

    def has_inclusion_promise(self) -> bool:
        """Whether the entry carries a signed entry timestamp."""

    def has_inclusion_proof(self) -> bool:
        """Whether the entry carries a Merkle inclusion proof."""

    def integrated_time(self) -> datetime:
        """Time at which the log integrated the entry."""

    def signature(self) -> bytes:
        """Signature recorded in the entry body."""

    def public_key(self) -> Any:
        """Key or certificate recorded in the entry body."""

    def validate(self) -> None:
        """Check the entry body is well formed; raise on failure."""

    def verify_set(self, rekor_logs: Mapping[str, TransparencyLog]) -> None:
        """Check the signed entry timestamp; raise on failure."""

    def verify_inclusion(self, verifier: Any) -> None:
        """Check the inclusion proof with the log's verifier; raise on failure."""


@runtime_checkable
class CertificateAuthority(Protocol):
    def verify(
        self, leaf_cert: x509.Certificate, observer_timestamp: datetime
    ) -> list[list[x509.Certificate]]:
        """Build the chains from the leaf to this authority; raise on failure."""


@runtime_checkable
class TimestampingAuthority(Protocol):
    def verify(self, signed_timestamp: bytes, signature: bytes) -> Timestamp:
        """Verify an RFC 3161 timestamp over the signature; raise on failure."""


@runtime_checkable
class TrustedMaterial(Protocol):
    def fulcio_certificate_authorities(self) -> Sequence[CertificateAuthority]:
        """Certificate authorities trusted to issue signing certificates."""

    def ct_logs(self) -> Mapping[str, TransparencyLog]:
        """Certificate transparency logs, keyed by hex key id."""

    def rekor_logs(self) -> Mapping[str, TransparencyLog]:
        """Transparency logs for signatures, keyed by hex key id."""

    def timestamping_authorities(self) -> Sequence[TimestampingAuthority]:
        """Trusted RFC 3161 timestamping authorities."""

    def public_key_verifier(self, hint: str) -> Any:
        """The verifier for a long-lived key named by its hint."""


@runtime_checkable
class SignedEntity(Protocol):
    def has_inclusion_promise(self) -> bool:
        """Whether any log entry carries a signed entry timestamp."""

    def has_inclusion_proof(self) -> bool:
        """Whether any log entry carries an inclusion proof."""

    def signature_content(self) -> SignatureContent:
        """The signature and what it covers."""

    def timestamps(self) -> list[bytes]:
        """Signed RFC 3161 timestamps over the signature."""

    def tlog_entries(self) -> list[TlogEntry]:
        """Transparency log entries for the signature."""

    def verification_content(self) -> VerificationContent:
        """The certificate or key that verifies the signature."""


class _ContentUnavailableError(LookupError):
    """The entity does not carry the requested content."""


def _provided(value: _T | None, what: str) -> _T:
    if value is None:
        raise _ContentUnavailableError(f"signed entity provides no {what}")
    return value


@dataclass
class BaseSignedEntity:
    """A signed entity holding only what it is given; missing parts raise on access.

    Subclass it and override methods, or pass the parts that are available.
    """

    provided_verification_content: VerificationContent | None = None
    provided_signature_content: SignatureContent | None = None
    provided_timestamps: list[bytes] | None = None
    provided_tlog_entries: list[TlogEntry] | None = None

    def has_inclusion_promise(self) -> bool:
        return False

    def has_inclusion_proof(self) -> bool:
        return False

    def verification_content(self) -> VerificationContent:
        return _provided(self.provided_verification_content, "verification content")

    def signature_content(self) -> SignatureContent:
        return _provided(self.provided_signature_content, "signature content")

    def timestamps(self) -> list[bytes]:
        return list(_provided(self.provided_timestamps, "timestamps"))

    def tlog_entries(self) -> list[TlogEntry]:
        return list(_provided(self.provided_tlog_entries, "transparency log entries"))