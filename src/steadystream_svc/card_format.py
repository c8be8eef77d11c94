import re

CARD_NUMBER_DIGITS = 16
EXPIRY_DIGITS = 4
CVV_DIGITS = 4

_NON_DIGITS = re.compile(r'\D')


def _digits(value: str) -> str:
    return _NON_DIGITS.sub('', value or '')


def format_card_number(value: str) -> str:
    """
    Group card digits in blocks of four, e.g. "4242424242424242" -> "4242 4242 4242 4242".
    Anything past sixteen digits is dropped.
    """
    digits = _digits(value)[:CARD_NUMBER_DIGITS]
    return ' '.join(digits[i:i + 4] for i in range(0, len(digits), 4))


def format_expiry_date(value: str) -> str:
    """Render expiry input as MM/YY once the month is complete."""
    digits = _digits(value)[:EXPIRY_DIGITS]
    if len(digits) >= 2:
        return digits[:2] + '/' + digits[2:]
    return digits


def format_cvv(value: str) -> str:
    return _digits(value)[:CVV_DIGITS]
