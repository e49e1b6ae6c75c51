import re
import unicodedata
from decimal import Decimal, InvalidOperation
from typing import Any, Union
from jutil.format import dec2


IBAN_MIN_LENGTH = 15
IBAN_MAX_LENGTH = 34

IBAN_STRUCTURE_RE = re.compile(r"[A-Z]{2}[0-9]{2}[A-Z0-9]+")

# characters outside XML 1.0 Char production
XML_ILLEGAL_CHARS_RE = re.compile("[\x00-\x08\x0b\x0c\x0e-\x1f\ud800-\udfff\ufffe\uffff]")

WHITESPACE_RE = re.compile(r"\s+")


def unicode_decode(value: Any) -> str:
    """
    Normalizes arbitrary input to text which is safe to store and emit as XML text node.
    Bytes are decoded as UTF-8, falling back to cp1252 for legacy input.
    :param value: str, bytes or any object convertible to str. None is treated as empty string.
    :return: str
    """
    if value is None:
        return ""
    if isinstance(value, (bytes, bytearray)):
        try:
            value = bytes(value).decode("utf-8")
        except UnicodeDecodeError:
            value = bytes(value).decode("cp1252", errors="replace")
    elif not isinstance(value, str):
        value = str(value)
    value = unicodedata.normalize("NFC", value).replace("\r\n", "\n").replace("\r", "\n")
    return XML_ILLEGAL_CHARS_RE.sub("", value)


def check_string_length(text: Any, max_length: int) -> bool:
    return len(unicode_decode(text)) <= max_length


def remove_spaces(text: Any) -> str:
    return WHITESPACE_RE.sub("", unicode_decode(text))


def check_iban(iban: str) -> bool:
    """
    Checks IBAN structure and ISO 7064 mod-97 checksum.
    :param iban: IBAN without whitespace
    :return: bool
    """
    iban = unicode_decode(iban).upper()
    if not IBAN_MIN_LENGTH <= len(iban) <= IBAN_MAX_LENGTH:
        return False
    if not IBAN_STRUCTURE_RE.fullmatch(iban):
        return False
    rearranged = iban[4:] + iban[:4]
    remainder = 0
    for c in rearranged:
        digits = str(ord(c) - ord("A") + 10) if c.isalpha() else c
        for d in digits:
            remainder = (remainder * 10 + int(d)) % 97
    return remainder == 1


def amount_to_string(amount: Union[Decimal, float, int, str]) -> str:
    """
    Formats amount as fixed point string with two decimals, e.g. 12.5 -> "12.50".
    Raises ValueError if amount is not a finite number.
    """
    if isinstance(amount, bool):
        raise ValueError("Invalid amount: {}".format(amount))
    try:
        value = Decimal(amount.strip() if isinstance(amount, str) else amount)
        if not value.is_finite():
            raise ValueError("Invalid amount: {}".format(amount))
        return str(dec2(value))
    except (InvalidOperation, TypeError) as exc:
        raise ValueError("Invalid amount: {}".format(amount)) from exc
