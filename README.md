# attestverify

A library for verifying signed entities: DSSE envelopes carrying in-toto
statements, plain message signatures, transparency log entries, RFC 3161
signed timestamps and signed certificate timestamps (SCTs) embedded in a
signing certificate. Everything is checked against trusted material that you
supply.

## Installation

```
pip install attestverify
```

To run the test suite from a checkout:

```
pip install ".[test]"
pytest
```

## Concepts

The verifier works against protocols defined in `attestverify.interface`.
You provide objects that implement them:

- `TrustedMaterial`: the certificate authorities (`CertificateAuthority`),
  timestamping authorities (`TimestampingAuthority`), transparency logs and
  CT logs (`TransparencyLog`, keyed by hex key id) and long-lived key
  verifiers that you trust.
- `SignedEntity`: what is being verified. It exposes its
  `SignatureContent` (a DSSE `EnvelopeContent` or a
  `MessageSignatureContent`), its `VerificationContent` (a leaf certificate
  or a `PublicKeyProvider` hint), its `TlogEntry` objects and its raw signed
  timestamps. `BaseSignedEntity` is a dataclass that holds whichever of these
  parts you pass it and raises `LookupError` for the rest; subclass it to
  override individual methods.

`Envelope`, `EnvelopeSignature`, `Timestamp` and `TransparencyLog` are plain
dataclasses for the data that flows between these objects.
`Envelope.decoded_payload()` accepts standard or URL-safe base64, padded or
not.

A **verifier configuration** states what a deployment is expected to provide;
a **policy** states what must hold for one particular verification.

## Usage

```python
from attestverify.certificate_identity import new_short_certificate_identity
from attestverify.policy import new_policy, with_artifact, with_certificate_identity
from attestverify.signed_entity import (
    SignedEntityVerifier,
    with_observer_timestamps,
    with_transparency_log,
)

verifier = SignedEntityVerifier(
    trusted_material,
    with_transparency_log(1),
    with_observer_timestamps(1),
)

identity = new_short_certificate_identity(
    "https://issuer.example.com",  # issuer
    "",                            # issuer regex
    "",                            # SAN value
    r"^https://example\.com/",     # SAN regex
)

with open("artifact.bin", "rb") as artifact:
    result = verifier.verify(
        entity,
        new_policy(with_artifact(artifact), with_certificate_identity(identity)),
    )

print(result.to_json())
```

`SignedEntityVerifier.verify` runs, in order: transparency log inclusion,
observer timestamps, leaf certificate chain validation at each verified time,
SCTs (if required), the signature against the artifact or digests, and
finally the identity policy. Any failure raises a `ValueError` whose message
names the failing step (for example `failed to verify signature: ...`); the
underlying exception is kept as `__cause__`. On success it returns a
`VerificationResult` holding the media type, the verified timestamps, a
summary of the signing certificate, the in-toto statement (for DSSE
envelopes) and the identity that matched.

`VerificationResult.to_dict()` and `to_json()` produce a JSON form with
camel-case keys; `verification_result_from_json()` reads it back.

### Verifier options

Passed to `SignedEntityVerifier(trusted_material, *options)`:

| Option | Effect |
| --- | --- |
| `with_transparency_log(n)` | require at least `n` verified log entries |
| `with_signed_timestamps(n)` | require at least `n` verified RFC 3161 timestamps |
| `with_integrated_timestamps(n)` | require at least `n` log integrated timestamps |
| `with_observer_timestamps(n)` | require at least `n` timestamps of either kind |
| `with_signed_certificate_timestamps(n)` | require at least `n` verified SCTs in the leaf certificate |
| `with_current_time()` | verify certificates against the current time |

Thresholds below 1 are rejected (except for `with_integrated_timestamps`).
At least one time source (signed, integrated, observer timestamps or the
current time) must be configured, otherwise `VerifierConfig.validate()`
raises.

### Policy options

`new_policy(artifact_option, *identity_options)` from `attestverify.policy`
returns a `PolicyBuilder`; `build_config()` applies the options and returns a
`PolicyConfig`.

The artifact option is exactly one of `with_artifact`, `with_artifacts`,
`with_artifact_digest(algorithm, digest)`, `with_artifact_digests` (taking
`attestverify.signature.ArtifactDigest` values) or `without_artifact_unsafe`.
Artifacts may be bytes or binary file objects.

The identity options are `with_certificate_identity` (repeatable; any one
match is enough), `with_key` (require a key rather than a certificate) or
`without_identities_unsafe`. Contradictory combinations raise `ValueError`
when the policy is built, and a policy with no identity option at all is
rejected.

### Certificate identities

`attestverify.certificate_identity` provides `SubjectAlternativeNameMatcher`
and `IssuerMatcher` (an exact value and/or a regular expression, searched
anywhere in the value), `CertificateIdentity`, and `CertificateIdentities`, a
list whose `verify()` returns the first identity that matches a
`CertificateSummary`. Mismatches raise `ValueMismatchError` or
`ValueRegexMismatchError`; when none match,
`NoMatchingCertificateIdentityError` carries every failure in `errors`.
`new_certificate_identity` and `new_short_certificate_identity` refuse
identities that lack SAN or issuer criteria.

### Lower-level checks

Each step can be called on its own:

- `attestverify.certificate.verify_leaf_certificate`
- `attestverify.signature.verify_signature`,
  `verify_signature_with_artifacts`, `verify_signature_with_artifact_digests`,
  `verify_envelope`, plus the helpers `load_verifier`, `pae`, `MultiHasher`,
  `get_hash_functions` and `limit_subjects`
- `attestverify.sct.verify_signed_certificate_timestamp` (returns the number
  of verified SCTs)
- `attestverify.tlog.verify_artifact_transparency_log`
- `attestverify.tsa.verify_timestamp_authority`,
  `verify_timestamp_authority_with_threshold`

A DSSE envelope that does not carry exactly one signature raises
`attestverify.signature.DSSEInvalidSignatureCountError`.
`attestverify.errors.VerificationError` is available for wrapping a failure
with a `verification error:` prefix.

Built-in limits guard against oversized input: at most 1024 subjects per
statement, 32 digests per subject, 32 transparency log entries and 32 signed
timestamps; duplicate log entries or timestamps are rejected.

## What this package does not do

- It does not read bundle files or trusted-root documents. You supply
  `SignedEntity` and `TrustedMaterial` implementations yourself.
- It does not contact transparency logs, timestamping authorities or
  certificate authorities; inclusion proofs, signed entry timestamps, RFC 3161
  tokens and chain building are checked by the `TlogEntry`,
  `TimestampingAuthority` and `CertificateAuthority` objects you provide.
- It does not sign anything, and it has no command-line tool.