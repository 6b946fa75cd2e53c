"""
Tests for Input Validation Utilities
"""
import pytest
from pydantic import BaseModel, ValidationError, field_validator

from app.core.validation import (
    AddressValidator,
    CoordinateValidator,
    TextSanitizer,
    address_validator,
    normalize_promo_code,
    promo_code_validator,
    sanitized_text_validator,
)


class TestAddressValidator:
    """Tests for address validation"""

    @pytest.mark.unit
    @pytest.mark.parametrize("address,valid", [
        ("House 12, Street 4, Gulberg III, Lahore", True),
        ("Flat #3/B, Block 7 (near masjid), Karachi", True),
        ("مکان نمبر 12 گلبرگ لاہور", True),
        ("1234", False),  # Too short
        ("", False),
        ("x" * 301, False),  # Too long
        ("House 12 <b>Lahore</b>", False),
        ("House 12; DROP TABLE orders", False),
    ])
    def test_validate_address(self, address: str, valid: bool):
        is_valid, error = AddressValidator.validate(address)
        assert is_valid == valid
        assert (error is None) == valid

    @pytest.mark.unit
    def test_normalize_collapses_whitespace(self):
        assert AddressValidator.normalize("  House 12,   Street   4  ") == "House 12, Street 4"

    @pytest.mark.unit
    def test_field_validator_returns_normalized(self):
        assert address_validator("  House 12,\tStreet 4 ") == "House 12, Street 4"
        assert address_validator(None) is None

    @pytest.mark.unit
    def test_field_validator_raises_value_error(self):
        with pytest.raises(ValueError, match="too short"):
            address_validator("abc")


class TestCoordinateValidator:

    @pytest.mark.unit
    @pytest.mark.parametrize("lat,lng,valid", [
        (31.5204, 74.3587, True),
        (-90.0, 180.0, True),
        (90.1, 74.0, False),
        (31.0, -180.5, False),
    ])
    def test_ranges(self, lat: float, lng: float, valid: bool):
        is_valid, _ = CoordinateValidator.validate(lat, lng)
        assert is_valid == valid


class TestPromoCode:

    @pytest.mark.unit
    def test_normalize(self):
        assert normalize_promo_code("  welcome100 ") == "WELCOME100"

    @pytest.mark.unit
    @pytest.mark.parametrize("raw,expected", [
        ("welcome100", "WELCOME100"),
        ("eid-2024", "EID-2024"),
        ("   ", None),
        (None, None),
    ])
    def test_validator_accepts(self, raw, expected):
        assert promo_code_validator(raw) == expected

    @pytest.mark.unit
    @pytest.mark.parametrize("raw", ["AB", "FREE FOOD", "x" * 33, "50%OFF"])
    def test_validator_rejects(self, raw: str):
        with pytest.raises(ValueError):
            promo_code_validator(raw)


class TestTextSanitizer:
    """Tests for text sanitization"""

    @pytest.mark.unit
    def test_sanitize_keeps_special_chars(self):
        text = "Extra raita & no onions <please>"
        assert TextSanitizer.sanitize(text) == text

    @pytest.mark.unit
    def test_sanitize_collapses_spaces_and_null_bytes(self):
        assert TextSanitizer.sanitize("  ring\x00 the   bell  ") == "ring the bell"

    @pytest.mark.unit
    def test_sanitize_enforces_max_length(self):
        assert len(TextSanitizer.sanitize("a" * 2000, max_length=500)) == 500
        assert TextSanitizer.sanitize("") == ""

    @pytest.mark.unit
    @pytest.mark.parametrize("text", [
        "<script>alert('x')</script>",
        "javascript:alert(1)",
        "<img src=x onerror=alert(1)>",
        "<iframe src='evil'>",
    ])
    def test_check_for_injection(self, text: str):
        is_safe, pattern = TextSanitizer.check_for_injection(text)
        assert is_safe is False
        assert pattern is not None

    @pytest.mark.unit
    @pytest.mark.parametrize("text", [
        "Please call on arrival",
        "Leave at the gate, contact guard",
        "",
    ])
    def test_safe_text(self, text: str):
        assert TextSanitizer.check_for_injection(text) == (True, None)

    @pytest.mark.unit
    def test_sanitized_text_validator(self):
        assert sanitized_text_validator("  less   spicy ") == "less spicy"
        assert sanitized_text_validator(None) is None
        with pytest.raises(ValueError):
            sanitized_text_validator("<script>x</script>")


class TestPydanticIntegration:
    """Validators plugged into a pydantic model the way the API schemas use them"""

    class _Note(BaseModel):
        notes: str | None = None

        @field_validator("notes")
        @classmethod
        def sanitize(cls, v):
            return sanitized_text_validator(v, max_length=20)

    @pytest.mark.unit
    def test_truncates(self):
        assert self._Note(notes="x" * 50).notes == "x" * 20

    @pytest.mark.unit
    def test_rejects_injection(self):
        with pytest.raises(ValidationError):
            self._Note(notes="javascript:void(0)")
