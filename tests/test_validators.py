import pytest

from heromount.domain.notifications.dispatcher import normalize_recipient
from heromount.shared.validators import normalize_zipcode, validate_email, validate_us_phone


@pytest.mark.parametrize(
    "raw",
    ["(512) 555-0100", "512.555.0100", "5125550100", "+1 512 555 0100", "1-512-555-0100"],
)
def test_us_phone_normalized_to_e164(raw):
    assert validate_us_phone(raw) == "+15125550100"


@pytest.mark.parametrize("raw", ["555-0100", "+44 20 7946 0958", "512555010099", "call me"])
def test_malformed_phone_rejected(raw):
    with pytest.raises(ValueError):
        validate_us_phone(raw)


def test_email_lowercased_and_checked():
    assert validate_email("  Sam@Example.COM ") == "sam@example.com"
    with pytest.raises(ValueError):
        validate_email("sam@example")


def test_zipcode_normalization():
    assert normalize_zipcode("78701") == "78701"
    assert normalize_zipcode("78701-1234") == "78701"
    assert normalize_zipcode("7870") is None
    assert normalize_zipcode(None) is None


def test_recipient_channel_detection():
    assert normalize_recipient("Sam@Example.com") == ("email", "sam@example.com")
    assert normalize_recipient("(512) 555-0100") == ("sms", "+15125550100")
    with pytest.raises(ValueError):
        normalize_recipient("12345")
