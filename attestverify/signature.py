"""Verifying signatures over DSSE envelopes and artifacts, and matching artifact digests."""

from __future__ import annotations

import binascii
import hashlib
from dataclasses import dataclass
from enum import Enum
from typing import Any, BinaryIO, Iterable, Iterator, Mapping, Sequence, Union

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, padding, rsa, utils

from .interface import EnvelopeContent, MessageSignatureContent, SignatureContent, TrustedMaterial, VerificationContent

MAX_ALLOWED_SUBJECTS = 1024
MAX_ALLOWED_SUBJECT_DIGESTS = 32

_CHUNK_SIZE = 64 * 1024

Artifact = Union[bytes, bytearray, memoryview, BinaryIO]


class HashAlgorithm(Enum):
    """Digest algorithms that subjects and artifacts may be compared with."""

    SHA256 = "sha256"
    SHA384 = "sha384"
    SHA512 = "sha512"

    @staticmethod
    def from_name(name: str) -> HashAlgorithm:
        """Look up an algorithm by its in-toto digest name."""
        try:
            return HashAlgorithm(name)
        except ValueError:
            raise ValueError("unsupported digest algorithm") from None

    def new(self) -> Any:
        """A fresh hashlib object for this algorithm."""
        return hashlib.new(self.value)

    @property
    def crypto_hash(self) -> hashes.HashAlgorithm:
        """The matching hash object for signature primitives."""
        return _CRYPTO_HASHES[self]()


_CRYPTO_HASHES = {
    HashAlgorithm.SHA256: hashes.SHA256,
    HashAlgorithm.SHA384: hashes.SHA384,
    HashAlgorithm.SHA512: hashes.SHA512,
}

# Strongest first: the order in which a subject's algorithms are preferred.
_SUPPORTED_HASH_FUNCS = (HashAlgorithm.SHA512, HashAlgorithm.SHA384, HashAlgorithm.SHA256)


@dataclass(frozen=True)
class ArtifactDigest:
    """The digest of an artifact and the name of the algorithm that produced it."""

    algorithm: str
    digest: bytes


class DSSEInvalidSignatureCountError(ValueError):
    """A DSSE envelope must carry exactly one signature."""

    def __init__(self) -> None:
        super().__init__("exactly one signature is required")


def _iter_chunks(source: Artifact) -> Iterator[bytes]:
    if isinstance(source, (bytes, bytearray, memoryview)):
        yield bytes(source)
        return
    while True:
        chunk = source.read(_CHUNK_SIZE)
        if not chunk:
            return
        yield chunk


def _read_all(source: Artifact) -> bytes:
    return b"".join(_iter_chunks(source))


@dataclass(frozen=True)
class SignatureVerifier:
    """Checks signatures made with one public key and one hash algorithm."""

    public_key: Any
    hash_algorithm: HashAlgorithm = HashAlgorithm.SHA256

    def verify_signature(self, signature: bytes, message: Artifact) -> None:
        """Raise InvalidSignature unless the signature covers the message."""
        data = _read_all(message)
        key = self.public_key
        if isinstance(key, ed25519.Ed25519PublicKey):
            key.verify(signature, data)
        elif isinstance(key, ec.EllipticCurvePublicKey):
            key.verify(signature, data, ec.ECDSA(self.hash_algorithm.crypto_hash))
        else:
            key.verify(signature, data, padding.PKCS1v15(), self.hash_algorithm.crypto_hash)

    def verify_digest(self, signature: bytes, digest: bytes) -> None:
        """Raise unless the signature covers a message with this digest."""
        key = self.public_key
        prehashed = utils.Prehashed(self.hash_algorithm.crypto_hash)
        if isinstance(key, ed25519.Ed25519PublicKey):
            raise ValueError("ed25519 signatures cannot be verified against a digest")
        if isinstance(key, ec.EllipticCurvePublicKey):
            key.verify(signature, digest, ec.ECDSA(prehashed))
        else:
            key.verify(signature, digest, padding.PKCS1v15(), prehashed)


def load_verifier(public_key: Any, hash_algorithm: HashAlgorithm | str = HashAlgorithm.SHA256) -> SignatureVerifier:
    """Make a verifier for an RSA, ECDSA or Ed25519 public key."""
    if not isinstance(
        public_key, (rsa.RSAPublicKey, ec.EllipticCurvePublicKey, ed25519.Ed25519PublicKey)
    ):
        raise ValueError(f"unsupported public key type: {type(public_key).__name__}")
    if isinstance(hash_algorithm, str):
        hash_algorithm = HashAlgorithm.from_name(hash_algorithm)
    return SignatureVerifier(public_key, hash_algorithm)


def pae(payload_type: str, payload: bytes) -> bytes:
    """DSSE pre-authentication encoding of a payload and its type."""
    type_bytes = payload_type.encode("utf-8")
    return b"DSSEv1 %d %s %d %s" % (len(type_bytes), type_bytes, len(payload), payload)


class MultiHasher:
    """Feeds the same data to several hash algorithms at once."""

    def __init__(self, hash_algorithms: Sequence[HashAlgorithm]) -> None:
        if not hash_algorithms:
            raise ValueError("no hash functions specified")
        self._hashers = {algorithm: algorithm.new() for algorithm in hash_algorithms}

    def update(self, data: bytes) -> None:
        for hasher in self._hashers.values():
            hasher.update(data)

    def digests(self) -> dict[HashAlgorithm, bytes]:
        return {algorithm: hasher.digest() for algorithm, hasher in self._hashers.items()}


def _subjects(statement: Mapping[str, Any]) -> list[Mapping[str, Any]]:
    return list(statement.get("subject") or [])


def _subject_digests(subject: Mapping[str, Any]) -> Mapping[str, str]:
    return subject.get("digest") or {}


def _decode_hex(text: str) -> bytes:
    return binascii.unhexlify(text.encode("ascii"))


def get_hash_functions(statement: Mapping[str, Any]) -> list[HashAlgorithm]:
    """The smallest set of supported algorithms that covers every subject."""
    subjects = _subjects(statement)
    if not subjects:
        raise ValueError("no subjects found in statement")

    chosen: list[HashAlgorithm] = []
    for subject in subjects:
        available = set()
        for name in _subject_digests(subject):
            try:
                available.add(HashAlgorithm.from_name(name))
            except ValueError:
                continue
        if available.intersection(chosen):
            continue
        preferred = next((hf for hf in _SUPPORTED_HASH_FUNCS if hf in available), None)
        if preferred is not None:
            chosen.append(preferred)

    if not chosen:
        raise ValueError("no supported digest algorithms found")
    return chosen


def limit_subjects(statement: Mapping[str, Any]) -> None:
    """Refuse statements with too many subjects or digests."""
    subjects = _subjects(statement)
    if len(subjects) > MAX_ALLOWED_SUBJECTS:
        raise ValueError(f"too many subjects: {len(subjects)} > {MAX_ALLOWED_SUBJECTS}")
    for subject in subjects:
        count = len(_subject_digests(subject))
        if count > MAX_ALLOWED_SUBJECT_DIGESTS:
            raise ValueError(f"too many digests: {count} > {MAX_ALLOWED_SUBJECT_DIGESTS}")


def _signature_verifier(
    verification_content: VerificationContent, trusted_material: TrustedMaterial
) -> Any:
    try:
        leaf_cert = verification_content.certificate()
        if leaf_cert is not None:
            return load_verifier(leaf_cert.public_key(), HashAlgorithm.SHA256)
        key_provider = verification_content.public_key()
        if key_provider is not None:
            return trusted_material.public_key_verifier(key_provider.hint())
        raise ValueError("no public key or certificate found")
    except Exception as exc:
        raise ValueError(f"could not load signature verifier: {exc}") from exc


def verify_envelope(verifier: Any, envelope: EnvelopeContent) -> None:
    """Check the single signature on a DSSE envelope."""
    dsse_envelope = envelope.raw_envelope()
    if len(dsse_envelope.signatures) != 1:
        raise DSSEInvalidSignatureCountError()
    try:
        payload = dsse_envelope.decoded_payload()
        verifier.verify_signature(
            dsse_envelope.signatures[0].sig, pae(dsse_envelope.payload_type, payload)
        )
    except Exception as exc:
        raise ValueError(f"could not verify envelope: {exc}") from exc


def _statement(envelope: EnvelopeContent) -> Mapping[str, Any]:
    try:
        return envelope.statement()
    except Exception as exc:
        raise ValueError(
            f"could not verify artifact: unable to extract statement from envelope: {exc}"
        ) from exc


def _verify_envelope_with_artifacts(
    verifier: Any, envelope: EnvelopeContent, artifacts: Iterable[Artifact]
) -> None:
    verify_envelope(verifier, envelope)
    statement = _statement(envelope)
    limit_subjects(statement)
    if not _subjects(statement):
        raise ValueError("no subjects found in statement")

    try:
        hash_funcs = get_hash_functions(statement)
    except ValueError as exc:
        raise ValueError(f"unable to determine hash functions: {exc}") from exc

    hashed_artifacts = []
    for artifact in artifacts:
        hasher = MultiHasher(hash_funcs)
        try:
            for chunk in _iter_chunks(artifact):
                hasher.update(chunk)
        except OSError as exc:
            raise ValueError(f"could not verify artifact: unable to calculate digest: {exc}") from exc
        hashed_artifacts.append(hasher.digests())

    subject_digests: dict[HashAlgorithm, list[bytes]] = {}
    for subject in _subjects(statement):
        for name, hex_digest in _subject_digests(subject).items():
            try:
                algorithm = HashAlgorithm.from_name(name)
            except ValueError:
                continue
            known = subject_digests.setdefault(algorithm, [])
            try:
                known.append(_decode_hex(hex_digest))
            except ValueError:
                continue

    for digests in hashed_artifacts:
        match_found = False
        for algorithm, value in digests.items():
            if algorithm not in subject_digests:
                raise ValueError("no matching artifact hash algorithm found in subject digests")
            if value in subject_digests[algorithm]:
                match_found = True
                break
        if not match_found:
            raise ValueError("provided artifact digests do not match digests in statement")


def _verify_envelope_with_artifact_digests(
    verifier: Any, envelope: EnvelopeContent, digests: Iterable[ArtifactDigest]
) -> None:
    verify_envelope(verifier, envelope)
    statement = _statement(envelope)
    limit_subjects(statement)

    subject_digests: dict[str, list[bytes]] = {}
    for subject in _subjects(statement):
        for name, hex_digest in _subject_digests(subject).items():
            known = subject_digests.setdefault(name, [])
            try:
                known.append(_decode_hex(hex_digest))
            except ValueError as exc:
                raise ValueError(
                    f"could not verify artifact: unable to decode subject digest: {exc}"
                ) from exc

    for artifact_digest in digests:
        if artifact_digest.algorithm not in subject_digests:
            raise ValueError("provided artifact digests does not match digests in statement")
        if bytes(artifact_digest.digest) not in subject_digests[artifact_digest.algorithm]:
            raise ValueError("provided artifact digest does not match any digest in statement")


def _verify_message_signature(verifier: Any, msg: MessageSignatureContent, artifact: Artifact) -> None:
    try:
        verifier.verify_signature(msg.signature(), artifact)
    except Exception as exc:
        raise ValueError(f"could not verify message: {exc}") from exc


def _verify_message_signature_with_digest(
    verifier: Any, msg: MessageSignatureContent, artifact_digest: bytes
) -> None:
    if bytes(artifact_digest) != bytes(msg.digest()):
        raise ValueError("artifact does not match digest")
    if isinstance(getattr(verifier, "public_key", None), ed25519.Ed25519PublicKey):
        raise ValueError(
            "message signatures with ed25519 signatures can only be verified with artifacts, "
            "and not just their digest"
        )
    try:
        verifier.verify_digest(msg.signature(), bytes(artifact_digest))
    except Exception as exc:
        raise ValueError(f"could not verify message: {exc}") from exc


def verify_signature(
    sig_content: SignatureContent,
    verification_content: VerificationContent,
    trusted_material: TrustedMaterial,
) -> None:
    """Verify an envelope signature without checking which artifact it covers."""
    verifier = _signature_verifier(verification_content, trusted_material)
    envelope = sig_content.envelope_content()
    if envelope is not None:
        verify_envelope(verifier, envelope)
        return
    if sig_content.message_signature_content() is not None:
        raise ValueError("artifact must be provided to verify message signature")
    raise ValueError("signature content has neither an envelope or a message")


def verify_signature_with_artifacts(
    sig_content: SignatureContent,
    verification_content: VerificationContent,
    trusted_material: TrustedMaterial,
    artifacts: Sequence[Artifact],
) -> None:
    """Verify the signature and that it covers the given artifacts."""
    verifier = _signature_verifier(verification_content, trusted_material)
    envelope = sig_content.envelope_content()
    msg = sig_content.message_signature_content()
    if envelope is None and msg is None:
        raise ValueError("signature content has neither an envelope or a message")
    if envelope is None:
        if len(artifacts) != 1:
            raise ValueError("only one artifact can be verified with a message signature")
        _verify_message_signature(verifier, msg, artifacts[0])
        return
    _verify_envelope_with_artifacts(verifier, envelope, artifacts)


def verify_signature_with_artifact_digests(
    sig_content: SignatureContent,
    verification_content: VerificationContent,
    trusted_material: TrustedMaterial,
    digests: Sequence[ArtifactDigest],
) -> None:
    """Verify the signature and that it covers artifacts with the given digests."""
    verifier = _signature_verifier(verification_content, trusted_material)
    envelope = sig_content.envelope_content()
    msg = sig_content.message_signature_content()
    if envelope is None and msg is None:
        raise ValueError("signature content has neither an envelope or a message")
    if envelope is None:
        if len(digests) != 1:
            raise ValueError("only one artifact can be verified with a message signature")
        _verify_message_signature_with_digest(verifier, msg, digests[0].digest)
        return
    _verify_envelope_with_artifact_digests(verifier, envelope, digests)