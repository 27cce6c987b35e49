import re

from stk_service.errors import InvalidPhoneFormat

COUNTRY_CODE = "254"

_NON_DIGITS = re.compile(r"\D")


def normalize_phone(raw) -> str:
    """Return the canonical ``254XXXXXXXXX`` form of a Kenyan mobile number."""
    if not isinstance(raw, str):
        raise InvalidPhoneFormat()

    digits = _NON_DIGITS.sub("", raw)

    if len(digits) == 9 and digits.startswith("7"):
        return COUNTRY_CODE + digits
    if len(digits) == 10 and digits.startswith("07"):
        return COUNTRY_CODE + digits[1:]
    if len(digits) == 12 and digits.startswith(COUNTRY_CODE):
        return digits

    raise InvalidPhoneFormat()
