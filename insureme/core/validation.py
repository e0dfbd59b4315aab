"""
Input Validation Utilities

- Phone number validation and normalization (Kenyan mobile numbers)
- Name validation for USSD registration
- Text sanitization for free-text USSD answers
"""
import re

from insureme.core.exceptions import InvalidPhoneFormat


class ValidationPatterns:
    """Regex patterns for validation"""

    # Kenyan mobile numbers: operator prefix 7, 8 or 9 followed by 8 digits.
    # 07XXXXXXXX, +2547XXXXXXXX or 2547XXXXXXXX
    PHONE_KENYA = re.compile(
        r"^(?:"
        r"(?:\+254|254)(?P<intl>[789]\d{8})|"
        r"0(?P<local>[789]\d{8})"
        r")$"
    )

    # Latin letters plus the separators people put in names
    NAME = re.compile(r"^[A-Za-z\s\-\'\.]{2,100}$")


class PhoneNumberValidator:
    """Phone number validation and normalization"""

    COUNTRY_CODE = "254"

    @staticmethod
    def _clean(phone: str) -> str:
        return re.sub(r"[\s\-]", "", phone or "")

    @staticmethod
    def validate(phone: str) -> bool:
        """True if the number is a Kenyan mobile number in local or international form"""
        if not phone:
            return False
        return bool(ValidationPatterns.PHONE_KENYA.match(PhoneNumberValidator._clean(phone)))

    @staticmethod
    def normalize(phone: str) -> str:
        """
        Normalize phone number to the canonical +254XXXXXXXXX form.

        Raises:
            InvalidPhoneFormat: when the input is neither local nor international
                form, or the operator prefix is not 7, 8 or 9.
        """
        match = ValidationPatterns.PHONE_KENYA.match(PhoneNumberValidator._clean(phone))
        if not match:
            raise InvalidPhoneFormat(phone)
        subscriber = match.group("intl") or match.group("local")
        return f"+{PhoneNumberValidator.COUNTRY_CODE}{subscriber}"

    @staticmethod
    def to_msisdn(phone: str) -> str:
        """M-Pesa wants 2547XXXXXXXX - no plus sign"""
        return PhoneNumberValidator.normalize(phone).lstrip("+")

    @staticmethod
    def mask(phone: str) -> str:
        """
        Mask phone number for logging (privacy).

        +254712345678 -> +254712****78
        """
        if not phone:
            return ""
        if len(phone) < 6:
            return "****"
        return phone[:-6] + "****" + phone[-2:]


def normalize_phone(phone: str) -> str:
    """Shortcut used by the gateway, the ledger and the API schemas"""
    return PhoneNumberValidator.normalize(phone)


class NameValidator:
    """Name validation utilities"""

    MIN_LENGTH = 2
    MAX_LENGTH = 100

    @staticmethod
    def validate(name: str) -> tuple[bool, str | None]:
        """
        Validate name format.

        Returns:
            Tuple of (is_valid, error_message)
        """
        if not name:
            return False, "Name is required"

        name = name.strip()

        if len(name) < NameValidator.MIN_LENGTH:
            return False, f"Name too short (minimum {NameValidator.MIN_LENGTH} characters)"

        if len(name) > NameValidator.MAX_LENGTH:
            return False, f"Name too long (maximum {NameValidator.MAX_LENGTH} characters)"

        if not ValidationPatterns.NAME.match(name):
            return False, "Name contains invalid characters"

        return True, None


class TextSanitizer:
    """Text sanitization for free-text USSD answers"""

    @staticmethod
    def sanitize(text: str, max_length: int = 1000) -> str:
        """
        Trim, cap length, drop null bytes and control characters, collapse spaces.
        """
        if not text:
            return ""

        sanitized = text.strip()[:max_length]
        sanitized = sanitized.replace("\x00", "")
        sanitized = "".join(char for char in sanitized if char >= " ")
        return re.sub(r" +", " ", sanitized)
