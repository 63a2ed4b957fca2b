from datetime import datetime, timezone

import pytest

from attestverify.interface import BaseSignedEntity, Timestamp
from attestverify.tsa import (
    verify_timestamp_authority,
    verify_timestamp_authority_with_threshold,
)

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
TSA_URL = "https://tsa.example.com"
OTHER_TSA_URL = "https://other-tsa.example.com"
SIGNATURE = b"entity signature"
TRUSTED_TS = b"trusted timestamp"
UNTRUSTED_TS = b"untrusted timestamp"


class FakeTSA:
    def __init__(self, known, signature=SIGNATURE):
        self._known = dict(known)
        self._signature = signature

    def verify(self, signed_timestamp, signature):
        if signature != self._signature or signed_timestamp not in self._known:
            raise ValueError("timestamp not signed by this authority")
        return self._known[signed_timestamp]


class FakeTrustedMaterial:
    def __init__(self, authorities):
        self._authorities = list(authorities)

    def timestamping_authorities(self):
        return self._authorities


class FakeSignatureContent:
    def __init__(self, sig):
        self._sig = sig

    def signature(self):
        return self._sig

    def envelope_content(self):
        return None

    def message_signature_content(self):
        return None


class FakeEntity(BaseSignedEntity):
    def __init__(self, timestamps, signature=SIGNATURE):
        self._timestamps = list(timestamps)
        self._signature = signature

    def timestamps(self):
        return list(self._timestamps)

    def signature_content(self):
        return FakeSignatureContent(self._signature)


TRUSTED_RESULT = Timestamp(NOW, TSA_URL)


@pytest.fixture
def material():
    return FakeTrustedMaterial([FakeTSA({TRUSTED_TS: TRUSTED_RESULT})])


@pytest.fixture
def other_material():
    return FakeTrustedMaterial([FakeTSA({UNTRUSTED_TS: Timestamp(NOW, OTHER_TSA_URL)})])


def test_trusted_timestamp_is_verified(material):
    assert verify_timestamp_authority(FakeEntity([TRUSTED_TS]), material) == [TRUSTED_RESULT]
    assert verify_timestamp_authority_with_threshold(FakeEntity([TRUSTED_TS]), material, 1) == [
        TRUSTED_RESULT
    ]


def test_unknown_authority_gives_no_timestamps(other_material):
    assert verify_timestamp_authority(FakeEntity([TRUSTED_TS]), other_material) == []


def test_unknown_authority_fails_threshold(other_material):
    with pytest.raises(ValueError, match="threshold not met for verified signed timestamps: 0 < 1"):
        verify_timestamp_authority_with_threshold(FakeEntity([TRUSTED_TS]), other_material, 1)


def test_one_trusted_one_untrusted(material):
    entity = FakeEntity([TRUSTED_TS, UNTRUSTED_TS])
    assert verify_timestamp_authority_with_threshold(entity, material, 1) == [TRUSTED_RESULT]
    with pytest.raises(ValueError, match="threshold not met for verified signed timestamps: 1 < 2"):
        verify_timestamp_authority_with_threshold(entity, material, 2)


def test_duplicate_timestamps(material):
    with pytest.raises(ValueError, match="duplicate timestamps found"):
        verify_timestamp_authority_with_threshold(FakeEntity([TRUSTED_TS, TRUSTED_TS]), material, 1)


def test_bad_timestamp_bytes(material):
    with pytest.raises(ValueError, match="threshold not met"):
        verify_timestamp_authority_with_threshold(FakeEntity([b"bad signature"]), material, 1)


def test_timestamp_over_another_signature_is_not_verified():
    material = FakeTrustedMaterial([FakeTSA({TRUSTED_TS: TRUSTED_RESULT}, signature=b"other")])
    assert verify_timestamp_authority(FakeEntity([TRUSTED_TS]), material) == []


def test_too_many_timestamps(material):
    timestamps = [TRUSTED_TS] + [b"timestamp %d" % i for i in range(32)]
    with pytest.raises(ValueError, match="too many signed timestamps: 33 > 32"):
        verify_timestamp_authority_with_threshold(FakeEntity(timestamps), material, 1)


def test_later_authority_verifies_when_first_fails():
    other_result = Timestamp(NOW, OTHER_TSA_URL)
    material = FakeTrustedMaterial(
        [FakeTSA({UNTRUSTED_TS: TRUSTED_RESULT}), FakeTSA({TRUSTED_TS: other_result})]
    )
    assert verify_timestamp_authority(FakeEntity([TRUSTED_TS]), material) == [other_result]


def test_verified_timestamps_keep_entity_order():
    first = Timestamp(NOW, TSA_URL)
    second = Timestamp(NOW, OTHER_TSA_URL)
    material = FakeTrustedMaterial([FakeTSA({TRUSTED_TS: first, UNTRUSTED_TS: second})])
    entity = FakeEntity([UNTRUSTED_TS, TRUSTED_TS])
    assert verify_timestamp_authority_with_threshold(entity, material, 2) == [second, first]


def test_no_authorities_verifies_nothing():
    assert verify_timestamp_authority(FakeEntity([TRUSTED_TS]), FakeTrustedMaterial([])) == []