"""Verification policy: which artifact and which identity a signed entity must match."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Sequence

from .certificate_identity import CertificateIdentities, CertificateIdentity
from .signature import Artifact, ArtifactDigest

__all__ = [
    "PolicyConfig",
    "PolicyBuilder",
    "PolicyOption",
    "new_policy",
    "without_identities_unsafe",
    "with_certificate_identity",
    "with_key",
    "without_artifact_unsafe",
    "with_artifact",
    "with_artifacts",
    "with_artifact_digest",
    "with_artifact_digests",
]


@dataclass
class PolicyConfig:
    """The settled policy that a verification is checked against."""

    ignore_artifact: bool = False
    ignore_identities: bool = False
    signing_key_required: bool = False
    certificate_identities: CertificateIdentities = field(default_factory=CertificateIdentities)
    verify_artifacts: bool = False
    artifacts: list[Artifact] = field(default_factory=list)
    verify_artifact_digests: bool = False
    artifact_digests: list[ArtifactDigest] = field(default_factory=list)

    def require_artifact(self) -> bool:
        """Whether the signature must be checked against an artifact or its digest."""
        return not self.ignore_artifact

    def require_identities(self) -> bool:
        """Whether the signing certificate must match one of the trusted identities."""
        return not self.ignore_identities

    def require_signing_key(self) -> bool:
        """Whether the entity must be signed with a key rather than a certificate."""
        return self.signing_key_required

    def _ensure_artifact_not_configured(self) -> None:
        if self.verify_artifacts or self.verify_artifact_digests:
            raise ValueError(
                "only one invocation of WithArtifact/WithArtifacts/WithArtifactDigest/"
                "WithArtifactDigests is allowed"
            )

    def _validate(self) -> None:
        if self.require_identities() and not self.certificate_identities:
            raise ValueError("can't verify identities without providing at least one identity")


PolicyOption = Callable[[PolicyConfig], None]


@dataclass(frozen=True)
class PolicyBuilder:
    """An artifact option plus further options, applied in order to build a PolicyConfig."""

    artifact_policy: PolicyOption
    policy_options: tuple[PolicyOption, ...] = ()

    def build_config(self) -> PolicyConfig:
        """Apply every option and check that the result is a complete policy."""
        policy = PolicyConfig()
        for apply_option in (self.artifact_policy, *self.policy_options):
            apply_option(policy)
        policy._validate()
        return policy


def new_policy(artifact_option: PolicyOption, *args: PolicyOption) -> PolicyBuilder:
    """Start a policy from its artifact option and any identity options."""
    return PolicyBuilder(artifact_option, tuple(args))


def without_identities_unsafe() -> PolicyOption:
    """Skip every check on who created the entity. Unsafe outside exceptional cases."""

    def apply(policy: PolicyConfig) -> None:
        if policy.certificate_identities:
            raise ValueError("can't use WithoutIdentitiesUnsafe while specifying CertificateIdentities")
        policy.ignore_identities = True

    return apply


def with_certificate_identity(identity: CertificateIdentity) -> PolicyOption:
    """Add an identity that is sufficient for the signing certificate to match."""

    def apply(policy: PolicyConfig) -> None:
        if policy.ignore_identities:
            raise ValueError("can't use WithCertificateIdentity while using WithoutIdentitiesUnsafe")
        if policy.signing_key_required:
            raise ValueError("can't use WithCertificateIdentity while using WithKey")
        policy.certificate_identities.append(identity)

    return apply


def with_key() -> PolicyOption:
    """Require the entity to be signed with a key, not a certificate."""

    def apply(policy: PolicyConfig) -> None:
        if policy.certificate_identities:
            raise ValueError("can't use WithKey while using WithCertificateIdentity")
        policy.signing_key_required = True
        policy.ignore_identities = True

    return apply


def without_artifact_unsafe() -> PolicyOption:
    """Skip checking which artifact the entity covers. Unsafe outside exceptional cases."""

    def apply(policy: PolicyConfig) -> None:
        policy._ensure_artifact_not_configured()
        policy.ignore_artifact = True

    return apply


def _artifact_option(name: str, store: Callable[[PolicyConfig], None]) -> PolicyOption:
    def apply(policy: PolicyConfig) -> None:
        policy._ensure_artifact_not_configured()
        if policy.ignore_artifact:
            raise ValueError(f"can't use {name} while using WithoutArtifactUnsafe")
        store(policy)

    return apply


def with_artifact(artifact: Artifact) -> PolicyOption:
    """Require the entity to cover the given artifact."""

    def store(policy: PolicyConfig) -> None:
        policy.verify_artifacts = True
        policy.artifacts = [artifact]

    return _artifact_option("WithArtifact", store)


def with_artifacts(artifacts: Sequence[Artifact]) -> PolicyOption:
    """Require the entity to cover every one of the given artifacts."""

    def store(policy: PolicyConfig) -> None:
        policy.verify_artifacts = True
        policy.artifacts = list(artifacts)

    return _artifact_option("WithArtifacts", store)


def with_artifact_digest(algorithm: str, digest: bytes) -> PolicyOption:
    """Require the entity to cover an artifact with the given digest."""

    def store(policy: PolicyConfig) -> None:
        policy.verify_artifact_digests = True
        policy.artifact_digests = [ArtifactDigest(algorithm, bytes(digest))]

    return _artifact_option("WithArtifactDigest", store)


def with_artifact_digests(digests: Sequence[ArtifactDigest]) -> PolicyOption:
    """Require the entity to cover artifacts with every one of the given digests."""

    def store(policy: PolicyConfig) -> None:
        policy.verify_artifact_digests = True
        policy.artifact_digests = list(digests)

    return _artifact_option("WithArtifactDigests", store)