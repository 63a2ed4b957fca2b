"""Verifying a signed entity end to end and reporting what was verified."""

from __future__ import annotations

import base64
import json
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterator, Mapping

from cryptography import x509
from cryptography.x509.oid import ObjectIdentifier

from .certificate import verify_leaf_certificate
from .certificate_identity import (
    CertificateIdentity,
    CertificateSummary,
    IssuerMatcher,
    SubjectAlternativeNameMatcher,
)
from .interface import SignedEntity, TrustedMaterial
from .policy import PolicyBuilder
from .sct import verify_signed_certificate_timestamp
from .signature import (
    verify_signature,
    verify_signature_with_artifact_digests,
    verify_signature_with_artifacts,
)
from .tlog import verify_artifact_transparency_log
from .tsa import verify_timestamp_authority, verify_timestamp_authority_with_threshold

VERIFICATION_RESULT_MEDIA_TYPE_01 = (
    "application/vnd.dev.sigstore.verificationresult+json;version=0.1"
)

_FULCIO_PREFIX = "1.3.6.1.4.1.57264.1."
_OTHERNAME_SAN_OID = ObjectIdentifier("1.3.6.1.4.1.57264.1.7")

# Extensions written as raw strings by older issuers.
_RAW_EXTENSIONS = {
    "1": "issuer",
    "2": "githubWorkflowTrigger",
    "3": "githubWorkflowSHA",
    "4": "githubWorkflowName",
    "5": "githubWorkflowRepository",
    "6": "githubWorkflowRef",
}

# Extensions written as DER-encoded strings.
_DER_EXTENSIONS = {
    "8": "issuer",
    "9": "buildSignerURI",
    "10": "buildSignerDigest",
    "11": "runnerEnvironment",
    "12": "sourceRepositoryURI",
    "13": "sourceRepositoryDigest",
    "14": "sourceRepositoryRef",
    "15": "sourceRepositoryIdentifier",
    "16": "sourceRepositoryOwnerURI",
    "17": "sourceRepositoryOwnerIdentifier",
    "18": "buildConfigURI",
    "19": "buildConfigDigest",
    "20": "buildTrigger",
    "21": "runInvocationURI",
    "22": "sourceRepositoryVisibilityAtSigning",
}

_DER_STRING_TAGS = {0x0C, 0x13, 0x16}


@contextmanager
def _wrapped(prefix: str) -> Iterator[None]:
    """Re-raise any failure inside the block with a prefix, keeping it as the cause."""
    try:
        yield
    except Exception as exc:
        raise ValueError(f"{prefix}: {exc}") from exc


# --------------------------------------------------------------------------
# Verifier configuration


@dataclass
class VerifierConfig:
    """Which observations a verifier demands, and how many of each."""

    require_signed_timestamps: bool = False
    signed_timestamp_threshold: int = 0
    require_integrated_timestamps: bool = False
    integrated_time_threshold: int = 0
    require_observer_timestamps: bool = False
    observer_timestamp_threshold: int = 0
    require_tlog_entries: bool = False
    tlog_entries_threshold: int = 0
    require_scts: bool = False
    ctlog_entries_threshold: int = 0
    use_current_time: bool = False

    def validate(self) -> None:
        """Require at least one source of time for checking certificates."""
        if not (
            self.require_observer_timestamps
            or self.require_signed_timestamps
            or self.require_integrated_timestamps
            or self.use_current_time
        ):
            raise ValueError(
                "when initializing a new SignedEntityVerifier, you must specify at least one of "
                "WithObserverTimestamps(), WithSignedTimestamps(), or WithIntegratedTimestamps()"
            )


VerifierOption = Callable[[VerifierConfig], None]


def with_signed_timestamps(threshold: int) -> VerifierOption:
    """Expect RFC 3161 timestamps from trusted timestamping authorities."""

    def apply(config: VerifierConfig) -> None:
        if threshold < 1:
            raise ValueError("signed timestamp threshold must be at least 1")
        config.require_signed_timestamps = True
        config.signed_timestamp_threshold = threshold

    return apply


def with_observer_timestamps(threshold: int) -> VerifierOption:
    """Expect timestamps from either a timestamping authority or a log."""

    def apply(config: VerifierConfig) -> None:
        if threshold < 1:
            raise ValueError("observer timestamp threshold must be at least 1")
        config.require_observer_timestamps = True
        config.observer_timestamp_threshold = threshold

    return apply


def with_transparency_log(threshold: int) -> VerifierOption:
    """Expect transparency log entries verified against the trusted logs."""

    def apply(config: VerifierConfig) -> None:
        if threshold < 1:
            raise ValueError("transparency log entry threshold must be at least 1")
        config.require_tlog_entries = True
        config.tlog_entries_threshold = threshold

    return apply


def with_integrated_timestamps(threshold: int) -> VerifierOption:
    """Expect log entry integrated timestamps."""

    def apply(config: VerifierConfig) -> None:
        config.require_integrated_timestamps = True
        config.integrated_time_threshold = threshold

    return apply


def with_signed_certificate_timestamps(threshold: int) -> VerifierOption:
    """Expect the signing certificate to carry verifiable SCTs."""

    def apply(config: VerifierConfig) -> None:
        if threshold < 1:
            raise ValueError("ctlog entry threshold must be at least 1")
        config.require_scts = True
        config.ctlog_entries_threshold = threshold

    return apply


def with_current_time() -> VerifierOption:
    """Check certificates against the current time rather than observed timestamps."""

    def apply(config: VerifierConfig) -> None:
        config.use_current_time = True

    return apply


# --------------------------------------------------------------------------
# Results


def _format_time(when: datetime) -> str:
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return when.isoformat().replace("+00:00", "Z")


def _parse_time(text: str) -> datetime:
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def _summary_to_dict(summary: CertificateSummary) -> dict[str, str]:
    result = {
        "certificateIssuer": summary.certificate_issuer,
        "subjectAlternativeName": summary.subject_alternative_name,
    }
    result.update({name: value for name, value in summary.extensions.items() if value})
    return result


def _summary_from_dict(data: Mapping[str, Any]) -> CertificateSummary:
    extensions = {
        name: value
        for name, value in data.items()
        if name not in ("certificateIssuer", "subjectAlternativeName")
    }
    return CertificateSummary(
        subject_alternative_name=data.get("subjectAlternativeName", ""),
        certificate_issuer=data.get("certificateIssuer", ""),
        extensions=extensions,
    )


def _identity_from_dict(data: Mapping[str, Any]) -> CertificateIdentity:
    san = data.get("subjectAlternativeName") or {}
    issuer = data.get("issuer") or {}
    extensions = {
        name: value
        for name, value in data.items()
        if name not in ("subjectAlternativeName", "issuer")
    }
    return CertificateIdentity(
        SubjectAlternativeNameMatcher(san.get("subjectAlternativeName", ""), san.get("regexp", "")),
        IssuerMatcher(issuer.get("issuer", ""), issuer.get("regexp", "")),
        extensions,
    )


@dataclass
class TimestampVerificationResult:
    """A verified time, where it came from, and which service vouched for it."""

    type: str
    uri: str
    timestamp: datetime

    def to_dict(self) -> dict[str, str]:
        return {"type": self.type, "uri": self.uri, "timestamp": _format_time(self.timestamp)}


@dataclass
class SignatureVerificationResult:
    """What verified the signature: a key id or a certificate summary."""

    public_key_id: bytes | None = None
    certificate: CertificateSummary | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if self.public_key_id is not None:
            result["publicKeyId"] = base64.b64encode(self.public_key_id).decode("ascii")
        if self.certificate is not None:
            result["certificate"] = _summary_to_dict(self.certificate)
        return result


@dataclass
class VerificationResult:
    """Everything a successful verification established."""

    media_type: str = VERIFICATION_RESULT_MEDIA_TYPE_01
    statement: dict[str, Any] | None = None
    signature: SignatureVerificationResult | None = None
    verified_timestamps: list[TimestampVerificationResult] | None = None
    verified_identity: CertificateIdentity | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"mediaType": self.media_type}
        if self.statement is not None:
            result["statement"] = self.statement
        if self.signature is not None:
            result["signature"] = self.signature.to_dict()
        result["verifiedTimestamps"] = (
            None
            if self.verified_timestamps is None
            else [ts.to_dict() for ts in self.verified_timestamps]
        )
        if self.verified_identity is not None:
            result["verifiedIdentity"] = self.verified_identity.to_dict()
        return result

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


def verification_result_from_json(data: str | bytes) -> VerificationResult:
    """Rebuild a VerificationResult from its JSON form."""
    raw = json.loads(data)
    if not isinstance(raw, dict):
        raise ValueError("verification result must be a JSON object")

    signature = None
    if raw.get("signature") is not None:
        sig = raw["signature"]
        key_id = sig.get("publicKeyId")
        cert = sig.get("certificate")
        signature = SignatureVerificationResult(
            public_key_id=None if key_id is None else base64.b64decode(key_id),
            certificate=None if cert is None else _summary_from_dict(cert),
        )

    timestamps = raw.get("verifiedTimestamps")
    identity = raw.get("verifiedIdentity")
    return VerificationResult(
        media_type=raw.get("mediaType", ""),
        statement=raw.get("statement"),
        signature=signature,
        verified_timestamps=None
        if timestamps is None
        else [
            TimestampVerificationResult(
                ts.get("type", ""), ts.get("uri", ""), _parse_time(ts["timestamp"])
            )
            for ts in timestamps
        ],
        verified_identity=None if identity is None else _identity_from_dict(identity),
    )


# --------------------------------------------------------------------------
# Certificate summary


def _decode_der_string(data: bytes) -> str:
    if len(data) < 2 or data[0] not in _DER_STRING_TAGS:
        raise ValueError("extension value is not a DER string")
    length = data[1]
    offset = 2
    if length & 0x80:
        count = length & 0x7F
        length = int.from_bytes(data[2 : 2 + count], "big")
        offset = 2 + count
    if offset + length > len(data):
        raise ValueError("truncated DER string")
    return data[offset : offset + length].decode("utf-8")


def _subject_alternative_name(cert: x509.Certificate) -> str:
    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    except x509.ExtensionNotFound:
        raise ValueError("no subject alternative name found") from None
    for kind in (
        x509.DNSName,
        x509.RFC822Name,
        x509.IPAddress,
        x509.UniformResourceIdentifier,
    ):
        values = san.get_values_for_type(kind)
        if values:
            return str(values[0])
    for other in san.get_values_for_type(x509.OtherName):
        if other.type_id == _OTHERNAME_SAN_OID:
            return _decode_der_string(other.value)
    raise ValueError("no subject alternative name found")


def _summarize_certificate(cert: x509.Certificate) -> CertificateSummary:
    extensions: dict[str, str] = {}
    for extension in cert.extensions:
        dotted = extension.oid.dotted_string
        if not dotted.startswith(_FULCIO_PREFIX):
            continue
        value = getattr(extension.value, "value", None)
        if not isinstance(value, bytes):
            continue
        suffix = dotted[len(_FULCIO_PREFIX) :]
        if suffix in _RAW_EXTENSIONS:
            extensions[_RAW_EXTENSIONS[suffix]] = value.decode("utf-8")
        elif suffix in _DER_EXTENSIONS:
            extensions[_DER_EXTENSIONS[suffix]] = _decode_der_string(value)
    return CertificateSummary(
        subject_alternative_name=_subject_alternative_name(cert),
        certificate_issuer=cert.issuer.rfc4514_string(),
        extensions=extensions,
    )


# --------------------------------------------------------------------------
# Verifier


class SignedEntityVerifier:
    """Verifies signed entities against trusted material under a fixed configuration."""

    def __init__(self, trusted_material: TrustedMaterial, *args: VerifierOption) -> None:
        config = VerifierConfig()
        for option in args:
            try:
                option(config)
            except Exception as exc:
                raise ValueError(f"failed to configure verifier: {exc}") from exc
        config.validate()
        self.trusted_material = trusted_material
        self.config = config

    def verify(self, entity: SignedEntity, policy_builder: PolicyBuilder) -> VerificationResult:
        """Check the entity's log entries, timestamps, certificate, signature and identity."""
        with _wrapped("failed to build policy"):
            policy = policy_builder.build_config()

        with _wrapped("failed to verify log inclusion"):
            tlog_timestamps = self.verify_transparency_log_inclusion(entity)

        with _wrapped("failed to verify timestamps"):
            verified_timestamps = self.verify_observer_timestamps(entity, tlog_timestamps)

        with _wrapped("failed to fetch verification content"):
            verification_content = entity.verification_content()

        signed_with_certificate = False
        summary: CertificateSummary | None = None

        leaf_cert = verification_content.certificate()
        if leaf_cert is not None:
            if policy.require_signing_key():
                raise ValueError("expected key signature, not certificate")
            signed_with_certificate = True

            with _wrapped("failed to summarize certificate"):
                summary = _summarize_certificate(leaf_cert)

            chains: list[list[x509.Certificate]] = []
            for verified in verified_timestamps:
                with _wrapped("failed to verify leaf certificate"):
                    chains = verify_leaf_certificate(
                        verified.timestamp, leaf_cert, self.trusted_material
                    )

            if self.config.require_scts:
                with _wrapped("failed to verify signed certificate timestamp"):
                    verify_signed_certificate_timestamp(
                        chains, self.config.ctlog_entries_threshold, self.trusted_material
                    )

        if self.config.require_scts and verification_content.public_key() is not None:
            raise ValueError(
                "SCTs required but bundle is signed with a public key, which cannot contain SCTs"
            )

        with _wrapped("failed to fetch signature content"):
            sig_content = entity.signature_content()

        with _wrapped("failed to verify signature"):
            if not policy.require_artifact():
                verify_signature(sig_content, verification_content, self.trusted_material)
            elif policy.verify_artifacts:
                verify_signature_with_artifacts(
                    sig_content, verification_content, self.trusted_material, policy.artifacts
                )
            elif policy.verify_artifact_digests:
                verify_signature_with_artifact_digests(
                    sig_content,
                    verification_content,
                    self.trusted_material,
                    policy.artifact_digests,
                )
            else:
                raise ValueError("no artifact or artifact digest provided")

        result = VerificationResult()
        if signed_with_certificate:
            result.signature = SignatureVerificationResult(certificate=summary)

        envelope = sig_content.envelope_content()
        if envelope is not None:
            with _wrapped("failed to fetch envelope statement"):
                result.statement = envelope.statement()

        result.verified_timestamps = verified_timestamps

        if policy.require_identities():
            if not signed_with_certificate or summary is None:
                raise ValueError(
                    "can't verify certificate identities: entity was not signed with a certificate"
                )
            if not policy.certificate_identities:
                raise ValueError("can't verify certificate identities: no identities provided")
            with _wrapped("failed to verify certificate identity"):
                result.verified_identity = policy.certificate_identities.verify(summary)

        return result

    def verify_transparency_log_inclusion(
        self, entity: SignedEntity
    ) -> list[TimestampVerificationResult]:
        """Verify log entries if required; return trusted integrated times when asked for."""
        if not self.config.require_tlog_entries:
            return []
        timestamps = verify_artifact_transparency_log(
            entity,
            self.trusted_material,
            self.config.tlog_entries_threshold,
            self.config.require_integrated_timestamps or self.config.require_observer_timestamps,
        )
        return [TimestampVerificationResult("Tlog", ts.uri, ts.time) for ts in timestamps]

    def verify_observer_timestamps(
        self, entity: SignedEntity, log_timestamps: list[TimestampVerificationResult]
    ) -> list[TimestampVerificationResult]:
        """Gather the verified times and check each configured threshold."""
        config = self.config
        verified: list[TimestampVerificationResult] = []

        if config.require_signed_timestamps:
            signed = verify_timestamp_authority_with_threshold(
                entity, self.trusted_material, config.signed_timestamp_threshold
            )
            verified.extend(
                TimestampVerificationResult("TimestampAuthority", ts.uri, ts.time) for ts in signed
            )

        if config.require_integrated_timestamps:
            if len(log_timestamps) < config.integrated_time_threshold:
                raise ValueError(
                    "threshold not met for verified log entry integrated timestamps: "
                    f"{len(log_timestamps)} < {config.integrated_time_threshold}"
                )
            verified.extend(log_timestamps)

        if config.require_observer_timestamps:
            signed = verify_timestamp_authority(entity, self.trusted_material)
            count = len(signed) + len(log_timestamps)
            if count < config.observer_timestamp_threshold:
                raise ValueError(
                    "threshold not met for verified signed & log entry integrated timestamps: "
                    f"{count} < {config.observer_timestamp_threshold}"
                )
            verified.extend(log_timestamps)
            verified.extend(
                TimestampVerificationResult("TimestampAuthority", ts.uri, ts.time) for ts in signed
            )

        if config.use_current_time:
            verified.append(
                TimestampVerificationResult("CurrentTime", "", datetime.now(timezone.utc))
            )

        if not verified:
            raise ValueError("no valid observer timestamps found")
        return verified