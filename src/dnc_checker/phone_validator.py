"""
Phone number validation and normalization.

Numbers are parsed as Uruguayan (region UY) and normalized to the
registry's format: the national significant number, without country code
or trunk prefix (e.g. 59898297150 -> 98297150).
"""

from dataclasses import dataclass
from typing import Optional

import phonenumbers
from phonenumbers import NumberParseException, PhoneNumberFormat, PhoneNumberType

from .enums import PhoneValidationErrorCode
from .exceptions import ValidationError


DEFAULT_REGION = "UY"

NUMBER_TYPE_NAMES = {
    PhoneNumberType.MOBILE: "Mobile",
    PhoneNumberType.FIXED_LINE: "Fixed Line",
    PhoneNumberType.FIXED_LINE_OR_MOBILE: "Fixed Line or Mobile",
    PhoneNumberType.TOLL_FREE: "Toll Free",
    PhoneNumberType.PREMIUM_RATE: "Premium Rate",
    PhoneNumberType.SHARED_COST: "Shared Cost",
    PhoneNumberType.VOIP: "VoIP",
    PhoneNumberType.PERSONAL_NUMBER: "Personal Number",
    PhoneNumberType.PAGER: "Pager",
    PhoneNumberType.UAN: "UAN",
    PhoneNumberType.VOICEMAIL: "Voicemail",
}


@dataclass
class PhoneValidationError:
    """Structured error information for phone validation failures."""

    code: PhoneValidationErrorCode
    message: str
    details: dict


@dataclass
class PhoneValidationResult:
    """Result of phone validation."""

    valid: bool
    formatted: Optional[str] = None  # International format, e.g. "+598 98 297 150"
    number_type: Optional[str] = None
    normalized: Optional[str] = None  # Registry format
    error: Optional[PhoneValidationError] = None


class PhoneValidator:
    """
    Validates and normalizes phone numbers for one region.

    Handles:
    - Numbers with or without country code and trunk prefix
    - Rejection of numbers valid elsewhere but not in the region
    - Normalization that is idempotent on its own output
    """

    def __init__(self, region: str = DEFAULT_REGION) -> None:
        self._region = region.upper()

    @property
    def region(self) -> str:
        return self._region

    def _invalid(self, code: PhoneValidationErrorCode, message: str, raw: str) -> PhoneValidationResult:
        return PhoneValidationResult(
            valid=False,
            error=PhoneValidationError(code=code, message=message, details={"raw_input": raw}),
        )

    def validate(self, raw_number: str) -> PhoneValidationResult:
        """
        Validate a phone number string.

        Args:
            raw_number: The number as entered by the user

        Returns:
            PhoneValidationResult with formatted and normalized forms or an error
        """
        if not raw_number or not raw_number.strip():
            return self._invalid(
                PhoneValidationErrorCode.EMPTY_INPUT, "Phone number is empty", raw_number
            )

        try:
            number = phonenumbers.parse(raw_number.strip(), self._region)
        except NumberParseException as e:
            return self._invalid(
                PhoneValidationErrorCode.PARSE_ERROR,
                f"Could not parse phone number: {e}",
                raw_number,
            )

        if not phonenumbers.is_valid_number(number):
            return self._invalid(
                PhoneValidationErrorCode.INVALID_NUMBER,
                f"Invalid phone number format for region {self._region}",
                raw_number,
            )

        if phonenumbers.region_code_for_number(number) != self._region:
            return self._invalid(
                PhoneValidationErrorCode.WRONG_REGION,
                f"Phone number is not from region {self._region}",
                raw_number,
            )

        return PhoneValidationResult(
            valid=True,
            formatted=phonenumbers.format_number(number, PhoneNumberFormat.INTERNATIONAL),
            number_type=NUMBER_TYPE_NAMES.get(phonenumbers.number_type(number), "Unknown"),
            normalized=str(number.national_number),
        )

    def normalize(self, raw_number: str) -> Optional[str]:
        """Registry-format number, or None if the input is not a valid number."""
        return self.validate(raw_number).normalized

    def normalize_or_raise(self, raw_number: str) -> str:
        """
        Registry-format number.

        Raises:
            ValidationError: If the input is not a valid number for the region
        """
        result = self.validate(raw_number)
        if not result.valid or result.normalized is None:
            error = result.error
            raise ValidationError(
                code=error.code.value if error else PhoneValidationErrorCode.INVALID_NUMBER.value,
                message=error.message if error else "Invalid phone number",
                details=error.details if error else {"raw_input": raw_number},
            )
        return result.normalized
