"""
JavaScript value semantics for constant evaluation.

Implements the small part of the ECMAScript abstract operations the
constant folder needs: ToNumber, ToString, ToBoolean, ToInt32/ToUint32 and
Number::toString. JS values are held as Python values:

    string -> str, number -> int/float, boolean -> bool,
    null -> None, undefined -> UNDEFINED
"""

import math
import re
from typing import Any, Tuple


class _Undefined:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return 'undefined'

    def __bool__(self) -> bool:
        return False


class _NotConstant:
    def __repr__(self) -> str:
        return '<not constant>'


UNDEFINED = _Undefined()
NOT_CONSTANT = _NotConstant()

MAX_SAFE_INTEGER = 2 ** 53 - 1

_DECIMAL_RE = re.compile(r'^[+-]?(?:\d+\.?\d*(?:[eE][+-]?\d+)?|\.\d+(?:[eE][+-]?\d+)?)$')
_JS_WHITESPACE = (
    ' \t\n\r\v\f\u00a0\u1680\u2000\u2001\u2002\u2003\u2004\u2005\u2006'
    '\u2007\u2008\u2009\u200a\u2028\u2029\u202f\u205f\u3000\ufeff'
)


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_primitive(value: Any) -> bool:
    return value is None or value is UNDEFINED or isinstance(value, (bool, str, int, float))


def normalize_number(value: float) -> Any:
    """Prefer ``int`` for integral numbers in the safe-integer range."""
    if isinstance(value, float) and value.is_integer() and abs(value) <= MAX_SAFE_INTEGER:
        if value == 0 and math.copysign(1.0, value) < 0:
            return value
        return int(value)
    return value


def to_number(value: Any) -> float:
    if value is UNDEFINED:
        return math.nan
    if value is None:
        return 0
    if isinstance(value, bool):
        return 1 if value else 0
    if is_number(value):
        return value
    if isinstance(value, str):
        text = value.strip(_JS_WHITESPACE)
        if not text:
            return 0
        lowered = text.lower()
        for prefix, base in (('0x', 16), ('0o', 8), ('0b', 2)):
            if lowered.startswith(prefix):
                try:
                    return int(text[2:], base)
                except ValueError:
                    return math.nan
        if text in ('Infinity', '+Infinity'):
            return math.inf
        if text == '-Infinity':
            return -math.inf
        if _DECIMAL_RE.match(text):
            return normalize_number(float(text))
        return math.nan
    raise TypeError(f'no ToNumber for {value!r}')


def _shortest_digits(value: float) -> Tuple[str, int]:
    """
    Shortest round-trip digits ``d`` and exponent ``n`` with
    ``value == 0.d * 10 ** n`` for a finite positive value.
    """
    text = repr(float(value))
    exponent = 0
    if 'e' in text:
        text, exp_text = text.split('e')
        exponent = int(exp_text)
    if '.' in text:
        int_part, frac_part = text.split('.')
    else:
        int_part, frac_part = text, ''
    digits = int_part + frac_part
    point = len(int_part)
    stripped = digits.lstrip('0')
    point -= len(digits) - len(stripped)
    digits = stripped.rstrip('0') or '0'
    return digits, point + exponent


def number_to_string(value: Any) -> str:
    """Number::toString(10)."""
    if isinstance(value, int):
        if abs(value) < 10 ** 21:
            return str(value)
        value = float(value)
    if value != value:
        return 'NaN'
    if value == 0:
        return '0'
    if math.isinf(value):
        return 'Infinity' if value > 0 else '-Infinity'
    if value < 0:
        return '-' + number_to_string(-value)
    digits, n = _shortest_digits(value)
    k = len(digits)
    if k <= n <= 21:
        return digits + '0' * (n - k)
    if 0 < n <= 21:
        return digits[:n] + '.' + digits[n:]
    if -6 < n <= 0:
        return '0.' + '0' * (-n) + digits
    e = n - 1
    sign = '+' if e >= 0 else '-'
    if k == 1:
        return f'{digits}e{sign}{abs(e)}'
    return f'{digits[0]}.{digits[1:]}e{sign}{abs(e)}'


def to_string(value: Any) -> str:
    if value is UNDEFINED:
        return 'undefined'
    if value is None:
        return 'null'
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if is_number(value):
        return number_to_string(value)
    if isinstance(value, str):
        return value
    raise TypeError(f'no ToString for {value!r}')


def truthy(value: Any) -> bool:
    if value is UNDEFINED or value is None:
        return False
    if isinstance(value, bool):
        return value
    if is_number(value):
        return not (value == 0 or value != value)
    if isinstance(value, str):
        return value != ''
    return True


def type_of(value: Any) -> str:
    if value is UNDEFINED:
        return 'undefined'
    if value is None:
        return 'object'
    if isinstance(value, bool):
        return 'boolean'
    if is_number(value):
        return 'number'
    if isinstance(value, str):
        return 'string'
    return 'object'


def to_int32(value: Any) -> int:
    number = to_number(value)
    if number != number or math.isinf(number):
        return 0
    number = int(number) & 0xFFFFFFFF
    if number >= 0x80000000:
        number -= 0x100000000
    return number


def to_uint32(value: Any) -> int:
    return to_int32(value) & 0xFFFFFFFF


def _type_tag(value: Any) -> str:
    return type_of(value) if value is not None else 'null'


def strict_equals(left: Any, right: Any) -> bool:
    if _type_tag(left) != _type_tag(right):
        return False
    return left == right


def loose_equals(left: Any, right: Any) -> bool:
    if _type_tag(left) == _type_tag(right):
        return strict_equals(left, right)
    if (left is None or left is UNDEFINED) and (right is None or right is UNDEFINED):
        return True
    if left is None or left is UNDEFINED or right is None or right is UNDEFINED:
        return False
    return to_number(left) == to_number(right)
