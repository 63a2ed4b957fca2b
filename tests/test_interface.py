import base64

import pytest

from attestverify.interface import BaseSignedEntity, Envelope, SignedEntity


def test_base_entity_has_no_promise_or_proof():
    entity = BaseSignedEntity()
    assert entity.has_inclusion_promise() is False
    assert entity.has_inclusion_proof() is False


def test_base_entity_content_is_unavailable():
    entity = BaseSignedEntity()
    with pytest.raises(LookupError):
        entity.verification_content()
    with pytest.raises(LookupError):
        entity.signature_content()
    with pytest.raises(LookupError):
        entity.timestamps()
    with pytest.raises(LookupError):
        entity.tlog_entries()


class _OnlyTimestamps(BaseSignedEntity):
    def timestamps(self):
        return [b"ts"]


def test_subclass_overrides_only_what_it_has():
    entity = _OnlyTimestamps()
    assert isinstance(entity, SignedEntity)
    assert entity.timestamps() == [b"ts"]
    assert BaseSignedEntity.has_inclusion_promise(entity) is False
    assert BaseSignedEntity.has_inclusion_proof(entity) is False
    with pytest.raises(LookupError):
        BaseSignedEntity.tlog_entries(entity)
    with pytest.raises(LookupError):
        BaseSignedEntity.timestamps(entity)


def test_decoded_payload_standard_base64():
    envelope = Envelope(payload_type="test-payload-type", payload="dGVzdC1wYXlsb2Fk")
    assert envelope.decoded_payload() == b"test-payload"


def test_decoded_payload_url_safe_unpadded_round_trip():
    data = bytes(range(250, 256)) + b"\xfb\xff"
    encoded = base64.urlsafe_b64encode(data).rstrip(b"=").decode()
    envelope = Envelope(payload_type="application/octet-stream", payload=encoded)
    assert envelope.decoded_payload() == data


def test_decoded_payload_rejects_garbage():
    envelope = Envelope(payload_type="x", payload="!!!not base64!!!")
    with pytest.raises(ValueError):
        envelope.decoded_payload()


def test_envelope_signatures_default_empty():
    envelope = Envelope(payload_type="x", payload="")
    assert envelope.signatures == []
    assert envelope.decoded_payload() == b""