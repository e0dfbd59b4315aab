"""
Tests for Input Validation Utilities
"""
import pytest
from hypothesis import given, settings as h_settings
from hypothesis.strategies import from_regex, sampled_from

from insureme.core.exceptions import ErrorCode, InvalidPhoneFormat
from insureme.core.validation import (
    PhoneNumberValidator,
    NameValidator,
    TextSanitizer,
    normalize_phone,
)

# 9 subscriber digits behind an operator prefix of 7, 8 or 9
SUBSCRIBER = from_regex(r"\A[789][0-9]{8}\Z", fullmatch=True)


class TestPhoneNumberValidator:
    """Tests for phone number validation"""

    @pytest.mark.unit
    @pytest.mark.parametrize("phone,expected", [
        ("0712345678", True),
        ("0712 345 678", True),
        ("0712-345-678", True),
        ("+254712345678", True),
        ("254712345678", True),
        ("0812345678", True),
        ("0912345678", True),
        # Operator prefix must be 7, 8 or 9
        ("0612345678", False),
        ("+254612345678", False),
        ("071234567", False),  # Too short
        ("07123456789", False),  # Too long
        ("+972501234567", False),
        ("abcdefghij", False),
        ("", False),
    ])
    def test_validate_kenyan_phone(self, phone: str, expected: bool):
        """Only Kenyan mobile numbers validate"""
        assert PhoneNumberValidator.validate(phone) == expected

    @pytest.mark.unit
    @pytest.mark.parametrize("phone,expected", [
        ("0712345678", "+254712345678"),
        ("254712345678", "+254712345678"),
        ("+254712345678", "+254712345678"),
        ("0712 345 678", "+254712345678"),
    ])
    def test_normalize(self, phone: str, expected: str):
        assert PhoneNumberValidator.normalize(phone) == expected

    @pytest.mark.unit
    def test_normalize_invalid_raises(self):
        with pytest.raises(InvalidPhoneFormat) as exc_info:
            normalize_phone("0612345678")

        assert exc_info.value.error_code == ErrorCode.INVALID_PHONE_FORMAT
        assert exc_info.value.status_code == 400
        # The full number is never echoed back
        assert "0612345678" not in str(exc_info.value.to_dict())

    @pytest.mark.unit
    def test_to_msisdn_drops_plus(self):
        assert PhoneNumberValidator.to_msisdn("0712345678") == "254712345678"

    @pytest.mark.unit
    @pytest.mark.parametrize("phone,expected", [
        ("+254712345678", "+254712****78"),
        ("12345", "****"),
        ("", ""),
    ])
    def test_mask(self, phone: str, expected: str):
        assert PhoneNumberValidator.mask(phone) == expected

    @pytest.mark.unit
    @given(subscriber=SUBSCRIBER)
    @h_settings(max_examples=100)
    def test_local_form_normalizes_to_international(self, subscriber: str):
        """0XXXXXXXXX -> +254XXXXXXXXX"""
        assert normalize_phone(f"0{subscriber}") == f"+254{subscriber}"

    @pytest.mark.unit
    @given(subscriber=SUBSCRIBER, prefix=sampled_from(["+254", "254"]))
    @h_settings(max_examples=100)
    def test_normalization_is_idempotent(self, subscriber: str, prefix: str):
        once = normalize_phone(f"{prefix}{subscriber}")
        assert once == f"+254{subscriber}"
        assert normalize_phone(once) == once


class TestNameValidator:
    """Tests for name validation"""

    @pytest.mark.unit
    @pytest.mark.parametrize("name,expected_valid", [
        ("Jane Wanjiku", True),
        ("O'Brien", True),
        ("Mary-Anne Otieno", True),
        ("J", False),
        ("", False),
        ("12345", False),
        ("A" * 101, False),
    ])
    def test_validate_name(self, name: str, expected_valid: bool):
        is_valid, error = NameValidator.validate(name)
        assert is_valid == expected_valid
        if not expected_valid:
            assert error is not None


class TestTextSanitizer:
    """Tests for text sanitization"""

    @pytest.mark.unit
    def test_strips_control_characters(self):
        assert TextSanitizer.sanitize("Jane\x00 \x07Doe") == "Jane Doe"

    @pytest.mark.unit
    def test_collapses_spaces(self):
        assert TextSanitizer.sanitize("  Jane    Doe  ") == "Jane Doe"

    @pytest.mark.unit
    def test_caps_length(self):
        assert len(TextSanitizer.sanitize("a" * 50, max_length=10)) == 10

    @pytest.mark.unit
    def test_empty(self):
        assert TextSanitizer.sanitize("") == ""
