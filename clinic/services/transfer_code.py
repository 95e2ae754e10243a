"""
Bank-transfer reference codes (``PREFIX + SUFFIX``).

The bank gateway matches an incoming transfer to a payment by the
reference written in the transfer description.  A reference is a 2-5
character prefix followed by a 3-10 digit numeric suffix, 5-15
characters in total (``DH12345678``).

``parse`` scans prefix lengths from 2 to 5 and returns the first split
whose remainder is a valid suffix, so ``DH123456`` always parses as
``DH`` + ``123456`` even though ``DH1`` + ``23456`` would also be valid.
"""
from __future__ import annotations

from dataclasses import dataclass

from clinic.exceptions import InvalidTransferFormat

DEFAULT_PREFIX = 'DH'
PREFIX_MIN, PREFIX_MAX = 2, 5
SUFFIX_MIN, SUFFIX_MAX = 3, 10
CONTENT_MIN, CONTENT_MAX = 5, 15
ORDER_CODE_TAIL = 8


@dataclass(frozen=True)
class TransferContent:
    prefix: str
    suffix: str
    full_content: str


@dataclass(frozen=True)
class ParsedTransferContent:
    prefix: str
    suffix: str
    is_valid: bool


def _is_numeric_suffix(value: str) -> bool:
    return SUFFIX_MIN <= len(value) <= SUFFIX_MAX and value.isascii() and value.isdigit()


def generate_transfer_content(order_code: str, user_id: int, prefix: str | None = None) -> TransferContent:
    """Build a reference from the tail of ``order_code``.

    The suffix is not guaranteed numeric: it is only as numeric as the
    order code it is taken from.  Callers that need a reference the bank
    can match must check the result with :func:`validate_transfer_content`.
    """
    prefix = DEFAULT_PREFIX if prefix is None else prefix
    if not PREFIX_MIN <= len(prefix) <= PREFIX_MAX:
        raise InvalidTransferFormat(f'Prefix must be between {PREFIX_MIN}-{PREFIX_MAX} characters')

    suffix = order_code[-ORDER_CODE_TAIL:]
    if len(suffix) < SUFFIX_MIN:
        suffix = suffix + str(user_id)[-2:]
    if len(suffix) < SUFFIX_MIN:
        suffix = suffix.ljust(SUFFIX_MIN, '0')
    elif len(suffix) > SUFFIX_MAX:
        suffix = suffix[-SUFFIX_MAX:]

    return TransferContent(prefix=prefix, suffix=suffix, full_content=f'{prefix}{suffix}')


def parse_transfer_content(content: str) -> ParsedTransferContent:
    if content and CONTENT_MIN <= len(content) <= CONTENT_MAX:
        for prefix_len in range(PREFIX_MIN, PREFIX_MAX + 1):
            suffix = content[prefix_len:]
            if _is_numeric_suffix(suffix):
                return ParsedTransferContent(prefix=content[:prefix_len], suffix=suffix, is_valid=True)
    return ParsedTransferContent(prefix='', suffix='', is_valid=False)


def validate_transfer_content(content: str) -> bool:
    return parse_transfer_content(content).is_valid
