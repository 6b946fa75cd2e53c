"""
Input Validation Utilities

Validation for free-form customer/operator input:
- Shipping address validation and normalization
- Delivery coordinates
- Promo code normalization
- Text sanitization for injection prevention
"""
import re


class ValidationPatterns:
    """Regex patterns for validation"""

    # Letters in any script, digits, and the punctuation people put in addresses
    ADDRESS = re.compile(r"^[\w\s,.\-/#'\"()]+$", re.UNICODE)

    PROMO_CODE = re.compile(r"^[A-Z0-9_-]{3,32}$")

    XSS_PATTERNS = [
        re.compile(r"<script[^>]*>.*?</script>", re.IGNORECASE | re.DOTALL),
        re.compile(r"javascript:", re.IGNORECASE),
        # event handlers at a word boundary (onclick=, onload=)
        re.compile(r"\bon\w+=", re.IGNORECASE),
        re.compile(r"<iframe", re.IGNORECASE),
        re.compile(r"<object", re.IGNORECASE),
        re.compile(r"<embed", re.IGNORECASE),
    ]


class TextSanitizer:
    """Text sanitization for security"""

    @staticmethod
    def sanitize(text: str, max_length: int = 1000) -> str:
        """
        Sanitize text input for safe storage.

        Trims whitespace, enforces max length, drops null bytes and collapses runs of spaces.
        HTML escaping is left to whoever renders the text.
        """
        if not text:
            return ""

        sanitized = text.strip()[:max_length]
        sanitized = sanitized.replace("\x00", "")
        return re.sub(r" +", " ", sanitized)

    @staticmethod
    def check_for_injection(text: str) -> tuple[bool, str | None]:
        """Returns (is_safe, detected_pattern)"""
        if not text:
            return True, None

        for pattern in ValidationPatterns.XSS_PATTERNS:
            if pattern.search(text):
                return False, "script injection pattern detected"

        return True, None


class AddressValidator:
    """Shipping address validation utilities"""

    MIN_LENGTH = 5
    MAX_LENGTH = 300

    @staticmethod
    def validate(address: str) -> tuple[bool, str | None]:
        """Returns (is_valid, error_message)"""
        if not address:
            return False, "Address is required"

        address = address.strip()

        if len(address) < AddressValidator.MIN_LENGTH:
            return False, f"Address too short (minimum {AddressValidator.MIN_LENGTH} characters)"

        if len(address) > AddressValidator.MAX_LENGTH:
            return False, f"Address too long (maximum {AddressValidator.MAX_LENGTH} characters)"

        if not ValidationPatterns.ADDRESS.match(address):
            return False, "Address contains invalid characters"

        is_safe, pattern = TextSanitizer.check_for_injection(address)
        if not is_safe:
            return False, f"Invalid address: {pattern}"

        return True, None

    @staticmethod
    def normalize(address: str) -> str:
        if not address:
            return ""
        return re.sub(r"\s+", " ", address.strip())


class CoordinateValidator:
    """Latitude/longitude range checks"""

    @staticmethod
    def validate(latitude: float, longitude: float) -> tuple[bool, str | None]:
        if not -90.0 <= latitude <= 90.0:
            return False, "Latitude must be between -90 and 90"
        if not -180.0 <= longitude <= 180.0:
            return False, "Longitude must be between -180 and 180"
        return True, None


def normalize_promo_code(code: str) -> str:
    """Promo codes are stored upper-case without surrounding whitespace"""
    return code.strip().upper()


# Pydantic field validators for reuse
def address_validator(v: str | None) -> str | None:
    """Pydantic field validator for addresses"""
    if v is None:
        return None
    is_valid, error = AddressValidator.validate(v)
    if not is_valid:
        raise ValueError(error)
    return AddressValidator.normalize(v)


def promo_code_validator(v: str | None) -> str | None:
    """Pydantic field validator for promo codes"""
    if v is None or not v.strip():
        return None
    code = normalize_promo_code(v)
    if not ValidationPatterns.PROMO_CODE.match(code):
        raise ValueError("Invalid promo code format")
    return code


def sanitized_text_validator(v: str | None, max_length: int = 1000) -> str | None:
    """Pydantic field validator for sanitized text"""
    if v is None:
        return None
    is_safe, pattern = TextSanitizer.check_for_injection(v)
    if not is_safe:
        raise ValueError(f"Invalid input: {pattern}")
    return TextSanitizer.sanitize(v, max_length)
