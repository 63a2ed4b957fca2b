import base64
import datetime
import hashlib
import io
import json

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, x25519
from cryptography.x509.oid import NameOID

from attestverify.interface import Envelope, EnvelopeSignature
from attestverify.signature import (
    ArtifactDigest,
    DSSEInvalidSignatureCountError,
    HashAlgorithm,
    MultiHasher,
    SignatureVerifier,
    get_hash_functions,
    limit_subjects,
    load_verifier,
    pae,
    verify_envelope,
    verify_signature,
    verify_signature_with_artifact_digests,
    verify_signature_with_artifacts,
)

PAYLOAD_TYPE = "application/vnd.in-toto+json"
TEST_BYTES = b"Hello, world!"


class FakeEnvelopeContent:
    def __init__(self, envelope, statement=None):
        self._envelope = envelope
        self._statement = statement

    def raw_envelope(self):
        return self._envelope

    def statement(self):
        if self._statement is None:
            raise ValueError("no statement")
        return self._statement


class FakeMessage:
    def __init__(self, digest, signature):
        self._digest = digest
        self._signature = signature

    def digest(self):
        return self._digest

    def digest_algorithm(self):
        return "sha256"

    def signature(self):
        return self._signature


class FakeSignatureContent:
    def __init__(self, envelope=None, message=None):
        self._envelope = envelope
        self._message = message

    def signature(self):
        if self._envelope is not None:
            return self._envelope.raw_envelope().signatures[0].sig
        return self._message.signature()

    def envelope_content(self):
        return self._envelope

    def message_signature_content(self):
        return self._message


class FakeKeyProvider:
    def hint(self):
        return "test-key"


class FakeVerificationContent:
    def __init__(self, cert=None, key=True):
        self._cert = cert
        self._key = key

    def certificate(self):
        return self._cert

    def public_key(self):
        return FakeKeyProvider() if self._key else None

    def compare_key(self, key, trusted_material):
        return True

    def valid_at_time(self, when, trusted_material):
        return True


class FakeTrustedMaterial:
    def __init__(self, public_key):
        self.public_key = public_key
        self.hints = []

    def public_key_verifier(self, hint):
        self.hints.append(hint)
        return load_verifier(self.public_key, "sha256")


@pytest.fixture
def ec_key():
    return ec.generate_private_key(ec.SECP256R1())


def make_envelope(private_key, payload, count=1):
    sig = private_key.sign(pae(PAYLOAD_TYPE, payload), ec.ECDSA(hashes.SHA256()))
    return Envelope(
        PAYLOAD_TYPE,
        base64.b64encode(payload).decode(),
        [EnvelopeSignature(sig) for _ in range(count)],
    )


def make_statement_content(private_key, statement):
    payload = json.dumps(statement).encode()
    return FakeSignatureContent(envelope=FakeEnvelopeContent(make_envelope(private_key, payload), statement))


def statement_for(subjects):
    return {
        "_type": "https://in-toto.io/Statement/v0.1",
        "predicateType": "customFoo",
        "subject": subjects,
        "predicate": {},
    }


def statement_with_algs(subject_algs):
    return {"subject": [{"digest": {alg: "foobar" for alg in algs}} for algs in subject_algs]}


@pytest.mark.parametrize(
    "algorithms",
    [
        [HashAlgorithm.SHA256],
        [HashAlgorithm.SHA256, HashAlgorithm.SHA512],
        [HashAlgorithm.SHA256, HashAlgorithm.SHA384, HashAlgorithm.SHA512],
    ],
)
def test_multi_hasher(algorithms):
    expected_all = {
        HashAlgorithm.SHA256: hashlib.sha256(TEST_BYTES).digest(),
        HashAlgorithm.SHA384: hashlib.sha384(TEST_BYTES).digest(),
        HashAlgorithm.SHA512: hashlib.sha512(TEST_BYTES).digest(),
    }
    hasher = MultiHasher(algorithms)
    hasher.update(TEST_BYTES)
    digests = hasher.digests()
    assert digests == {alg: expected_all[alg] for alg in algorithms}
    assert len(digests) == len(algorithms)


def test_multi_hasher_needs_algorithms():
    with pytest.raises(ValueError, match="no hash functions specified"):
        MultiHasher([])


@pytest.mark.parametrize(
    "algs, expected",
    [
        ([["sha256", "sha512"]], [HashAlgorithm.SHA512]),
        ([["sha256"], ["sha512"]], [HashAlgorithm.SHA256, HashAlgorithm.SHA512]),
        ([["sha512"], ["sha256", "sha512"]], [HashAlgorithm.SHA512]),
        (
            [["sha256", "sha512"], ["sha384", "sha512"], ["sha256", "sha384"]],
            [HashAlgorithm.SHA512, HashAlgorithm.SHA384],
        ),
        ([["md5", "sha512"], ["sha256", "sha512"]], [HashAlgorithm.SHA512]),
    ],
)
def test_get_hash_functions(algs, expected):
    assert get_hash_functions(statement_with_algs(algs)) == expected


def test_get_hash_functions_no_recognized_algorithms():
    with pytest.raises(ValueError, match="no supported digest algorithms found"):
        get_hash_functions(statement_with_algs([["md5"], ["sha1"]]))


def test_get_hash_functions_no_subjects():
    with pytest.raises(ValueError, match="no subjects found in statement"):
        get_hash_functions({"subject": []})


def test_hash_algorithm_from_name():
    assert HashAlgorithm.from_name("sha384") is HashAlgorithm.SHA384
    with pytest.raises(ValueError, match="unsupported digest algorithm"):
        HashAlgorithm.from_name("md5")


def test_pae_matches_dsse_encoding():
    assert pae("http://example.com/HelloWorld", b"hello world") == (
        b"DSSEv1 29 http://example.com/HelloWorld 11 hello world"
    )


@pytest.mark.parametrize("count, fail", [(0, True), (1, False), (2, True)])
def test_verify_envelope_signature_count(ec_key, count, fail):
    if count == 0:
        envelope = Envelope("test-payload-type", "dGVzdC1wYXlsb2Fk")
    else:
        sig = ec_key.sign(pae("test-payload-type", b"test-payload"), ec.ECDSA(hashes.SHA256()))
        envelope = Envelope(
            "test-payload-type",
            "dGVzdC1wYXlsb2Fk",
            [EnvelopeSignature(sig) for _ in range(count)],
        )
    verifier = load_verifier(ec_key.public_key(), HashAlgorithm.SHA256)
    content = FakeEnvelopeContent(envelope)
    if fail:
        with pytest.raises(DSSEInvalidSignatureCountError, match="exactly one signature is required"):
            verify_envelope(verifier, content)
    else:
        assert verify_envelope(verifier, content) is None


def test_verify_envelope_rejects_tampered_payload(ec_key):
    envelope = make_envelope(ec_key, b"original")
    envelope.payload = base64.b64encode(b"tampered").decode()
    verifier = load_verifier(ec_key.public_key(), "sha256")
    with pytest.raises(ValueError, match="could not verify envelope"):
        verify_envelope(verifier, FakeEnvelopeContent(envelope))


def test_limit_subjects_too_many_subjects():
    statement = {"subject": [{"name": f"subject-{i}", "digest": {"sha256": ""}} for i in range(1025)]}
    with pytest.raises(ValueError, match="too many subjects: 1025 > 1024"):
        limit_subjects(statement)


def test_limit_subjects_too_many_digests():
    digests = {"sha512": ""}
    digests.update({f"digest-{i}": "" for i in range(32)})
    with pytest.raises(ValueError, match="too many digests: 33 > 32"):
        limit_subjects({"subject": [{"name": "subject", "digest": digests}]})


def test_verify_signature_envelope_with_key(ec_key):
    statement = statement_for([{"name": "subject", "digest": {"sha256": "deadbeef" * 8}}])
    content = make_statement_content(ec_key, statement)
    trusted = FakeTrustedMaterial(ec_key.public_key())
    assert verify_signature(content, FakeVerificationContent(), trusted) is None
    assert trusted.hints == ["test-key"]


def test_verify_signature_fails_with_other_key(ec_key):
    statement = statement_for([{"name": "subject", "digest": {"sha256": "deadbeef" * 8}}])
    content = make_statement_content(ec_key, statement)
    other = ec.generate_private_key(ec.SECP256R1())
    with pytest.raises(ValueError, match="could not verify envelope"):
        verify_signature(content, FakeVerificationContent(), FakeTrustedMaterial(other.public_key()))


def test_verify_signature_with_certificate(ec_key):
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "example")])
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(ec_key.public_key())
        .serial_number(1)
        .not_valid_before(now)
        .not_valid_after(now + datetime.timedelta(days=1))
        .sign(ec_key, hashes.SHA256())
    )
    statement = statement_for([{"name": "subject", "digest": {"sha256": "deadbeef" * 8}}])
    content = make_statement_content(ec_key, statement)
    other = ec.generate_private_key(ec.SECP256R1())
    trusted = FakeTrustedMaterial(other.public_key())
    assert verify_signature(content, FakeVerificationContent(cert=cert), trusted) is None
    assert trusted.hints == []


def test_verify_signature_message_needs_artifact(ec_key):
    content = FakeSignatureContent(message=FakeMessage(b"", b"sig"))
    with pytest.raises(ValueError, match="artifact must be provided to verify message signature"):
        verify_signature(content, FakeVerificationContent(), FakeTrustedMaterial(ec_key.public_key()))


def test_verify_signature_without_content(ec_key):
    with pytest.raises(ValueError, match="neither an envelope or a message"):
        verify_signature(
            FakeSignatureContent(), FakeVerificationContent(), FakeTrustedMaterial(ec_key.public_key())
        )


def test_verify_signature_without_key_or_certificate(ec_key):
    statement = statement_for([{"name": "subject", "digest": {"sha256": "deadbeef" * 8}}])
    content = make_statement_content(ec_key, statement)
    with pytest.raises(ValueError, match="could not load signature verifier: no public key or certificate found"):
        verify_signature(content, FakeVerificationContent(key=False), FakeTrustedMaterial(ec_key.public_key()))


def test_envelope_subject_artifact_and_digest(ec_key):
    body = b"Hi, I am a subject!"
    digest = hashlib.sha256(body).digest()
    statement = statement_for([{"name": "subject", "digest": {"sha256": digest.hex()}}])
    content = make_statement_content(ec_key, statement)
    trusted = FakeTrustedMaterial(ec_key.public_key())
    vc = FakeVerificationContent()

    assert verify_signature_with_artifacts(content, vc, trusted, [io.BytesIO(body)]) is None
    assert verify_signature_with_artifact_digests(content, vc, trusted, [ArtifactDigest("sha256", digest)]) is None

    with pytest.raises(ValueError, match="provided artifact digests do not match digests in statement"):
        verify_signature_with_artifacts(content, vc, trusted, [io.BytesIO(b"Hi, I am a different subject!")])

    with pytest.raises(ValueError, match="provided artifact digests does not match digests in statement"):
        verify_signature_with_artifact_digests(content, vc, trusted, [ArtifactDigest("sha512", digest)])


def test_envelope_with_multiple_artifacts_and_digests(ec_key):
    subjects, artifacts, digests = [], [], []
    for i in range(10):
        body = f"Hi, I am a subject! #{i}".encode()
        artifacts.append(io.BytesIO(body))
        alg = "sha256" if i % 2 == 0 else "sha512"
        digest = hashlib.new(alg, body).digest()
        subjects.append({"name": f"subject-{i}", "digest": {alg: digest.hex()}})
        digests.append(ArtifactDigest(alg, digest))
    content = make_statement_content(ec_key, statement_for(subjects))
    trusted = FakeTrustedMaterial(ec_key.public_key())
    vc = FakeVerificationContent()

    assert verify_signature_with_artifacts(content, vc, trusted, artifacts) is None
    assert verify_signature_with_artifact_digests(content, vc, trusted, digests) is None

    with pytest.raises(ValueError, match="do not match"):
        verify_signature_with_artifacts(content, vc, trusted, [io.BytesIO(b"some other artifact")])

    with pytest.raises(ValueError, match="provided artifact digest does not match any digest in statement"):
        verify_signature_with_artifact_digests(
            content, vc, trusted, [ArtifactDigest("sha256", b"some other artifact")]
        )


def test_envelope_with_too_many_subjects(ec_key):
    subjects = [{"name": f"subject-{i}", "digest": {"sha256": ""}} for i in range(1025)]
    content = make_statement_content(ec_key, statement_for(subjects))
    with pytest.raises(ValueError, match="too many subjects"):
        verify_signature_with_artifacts(
            content, FakeVerificationContent(), FakeTrustedMaterial(ec_key.public_key()), [b"artifact"]
        )


def test_message_signature_with_artifact(ec_key):
    artifact = b"Hi, I am an artifact!"
    sig = ec_key.sign(artifact, ec.ECDSA(hashes.SHA256()))
    content = FakeSignatureContent(message=FakeMessage(hashlib.sha256(artifact).digest(), sig))
    trusted = FakeTrustedMaterial(ec_key.public_key())
    vc = FakeVerificationContent()

    assert verify_signature_with_artifacts(content, vc, trusted, [io.BytesIO(artifact)]) is None
    with pytest.raises(ValueError, match="could not verify message"):
        verify_signature_with_artifacts(content, vc, trusted, [b"Hi, I am a different artifact!"])
    with pytest.raises(ValueError, match="only one artifact"):
        verify_signature_with_artifacts(content, vc, trusted, [artifact, artifact])


def test_message_signature_with_digest(ec_key):
    artifact = b"Hi, I am an artifact!"
    digest = hashlib.sha256(artifact).digest()
    sig = ec_key.sign(artifact, ec.ECDSA(hashes.SHA256()))
    content = FakeSignatureContent(message=FakeMessage(digest, sig))
    trusted = FakeTrustedMaterial(ec_key.public_key())
    vc = FakeVerificationContent()

    assert verify_signature_with_artifact_digests(content, vc, trusted, [ArtifactDigest("sha256", digest)]) is None
    with pytest.raises(ValueError, match="artifact does not match digest"):
        verify_signature_with_artifact_digests(
            content, vc, trusted, [ArtifactDigest("sha256", hashlib.sha256(b"other").digest())]
        )


def test_ed25519_message_needs_whole_artifact():
    key = ed25519.Ed25519PrivateKey.generate()
    artifact = b"Hi, I am an artifact!"
    digest = hashlib.sha256(artifact).digest()
    content = FakeSignatureContent(message=FakeMessage(digest, key.sign(artifact)))
    trusted = FakeTrustedMaterial(key.public_key())
    vc = FakeVerificationContent()

    assert verify_signature_with_artifacts(content, vc, trusted, [artifact]) is None
    with pytest.raises(ValueError, match="ed25519"):
        verify_signature_with_artifact_digests(content, vc, trusted, [ArtifactDigest("sha256", digest)])


def test_signature_verifier_digest_roundtrip(ec_key):
    message = b"payload"
    sig = ec_key.sign(message, ec.ECDSA(hashes.SHA384()))
    verifier = SignatureVerifier(ec_key.public_key(), HashAlgorithm.SHA384)
    assert verifier.verify_signature(sig, message) is None
    assert verifier.verify_digest(sig, hashlib.sha384(message).digest()) is None


def test_load_verifier_rejects_unsupported_key():
    key = x25519.X25519PrivateKey.generate().public_key()
    with pytest.raises(ValueError, match="unsupported public key type"):
        load_verifier(key, HashAlgorithm.SHA256)