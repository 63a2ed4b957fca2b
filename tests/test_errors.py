import pytest

from attestverify.errors import VerificationError


def test_message_wraps_cause():
    err = VerificationError(ValueError("boom"))
    assert str(err) == "verification error: boom"


def test_cause_is_kept():
    inner = KeyError("missing")
    err = VerificationError(inner)
    assert err.cause is inner
    assert err.__cause__ is inner


def test_can_be_raised_and_caught():
    inner = RuntimeError("bad signature")
    with pytest.raises(VerificationError) as info:
        raise VerificationError(inner)
    assert info.value.cause is inner
    assert "bad signature" in str(info.value)