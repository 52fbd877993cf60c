"""
PHP serialize() format support for WordPress data.

Values are decoded into a small tagged tree (PhpNull, PhpBool, PhpInt,
PhpFloat, PhpString, PhpArray, PhpObject) so that text can be replaced inside
string leaves and the result re-encoded with correct byte-length prefixes.
String lengths in the format are byte counts of the UTF-8 encoding.
"""

import math
import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union

from wp_maintenance.errors import SerializedParseError

Key = Union[int, str]


class IntKey(int):
    """Integer array key that remembers the digits it was decoded from."""

    def __new__(cls, value, literal: Optional[str] = None):
        key = super().__new__(cls, value)
        key.literal = literal
        return key


@dataclass(frozen=True)
class PhpNull:
    pass


@dataclass(frozen=True)
class PhpBool:
    value: bool


@dataclass(frozen=True)
class PhpInt:
    value: int
    # Text the value was decoded from, reused when re-encoding
    literal: Optional[str] = field(default=None, compare=False)


@dataclass(frozen=True)
class PhpFloat:
    value: float
    literal: Optional[str] = field(default=None, compare=False)


@dataclass(frozen=True)
class PhpString:
    value: str


@dataclass(frozen=True)
class PhpArray:
    items: Tuple[Tuple[Key, "PhpValue"], ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "items", tuple(tuple(pair) for pair in self.items))


@dataclass(frozen=True)
class PhpObject:
    class_name: str
    properties: Tuple[Tuple[Key, "PhpValue"], ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "properties", tuple(tuple(pair) for pair in self.properties))


PhpValue = Union[PhpNull, PhpBool, PhpInt, PhpFloat, PhpString, PhpArray, PhpObject]


# Detection

_SERIALIZED_PATTERNS = {
    'b': re.compile(r'b:[01];'),
    'i': re.compile(r'i:[+-]?[0-9]+;'),
    'd': re.compile(r'd:[0-9.E-]+;'),
    's': re.compile(r's:[0-9]+:".*";', re.DOTALL),
    'a': re.compile(r'a:[0-9]+:\{.*\}', re.DOTALL),
    'O': re.compile(r'O:[0-9]+:".*":[0-9]+:\{.*\}', re.DOTALL),
}


def is_serialized(value) -> bool:
    """Check if a value looks like PHP serialized data.

    The check is purely textual and errs towards "not serialized": the tag
    must be known and the whole value must match that tag's pattern. Declared
    string lengths are not verified here; loads() does that.
    """
    if not isinstance(value, str):
        return False

    value = value.strip()
    if value == 'N;':
        return True
    if len(value) < 4 or value[1] != ':':
        return False

    pattern = _SERIALIZED_PATTERNS.get(value[0])
    return bool(pattern and pattern.fullmatch(value))


# Decoding

_DIGITS = re.compile(rb'[0-9]+')
_INTEGER = re.compile(rb'[+-]?[0-9]+')
_FLOAT = re.compile(rb'[+-]?(?:INF|NAN|(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?)')


class _Reader:
    """Recursive descent parser over the encoded bytes."""

    def __init__(self, data: bytes):
        self.data = data
        self.pos = 0

    def fail(self, message: str):
        raise SerializedParseError(message, self.pos)

    def expect(self, token: bytes):
        if not self.data.startswith(token, self.pos):
            self.fail(f"expected {token.decode('ascii')!r}")
        self.pos += len(token)

    def take(self, length: int) -> bytes:
        end = self.pos + length
        if end > len(self.data):
            self.fail("unexpected end of data")
        chunk = self.data[self.pos:end]
        self.pos = end
        return chunk

    def read_until(self, delimiter: bytes, pattern) -> bytes:
        end = self.data.find(delimiter, self.pos)
        if end == -1:
            self.fail(f"missing {delimiter.decode('ascii')!r}")
        raw = self.data[self.pos:end]
        if not pattern.fullmatch(raw):
            self.fail(f"invalid token {raw[:20]!r}")
        self.pos = end + len(delimiter)
        return raw

    def read_length(self, delimiter: bytes = b':') -> int:
        return int(self.read_until(delimiter, _DIGITS))

    def read_text(self) -> str:
        length = self.read_length()
        self.expect(b'"')
        raw = self.take(length)
        try:
            return raw.decode('utf-8')
        except UnicodeDecodeError:
            self.fail("string is not valid UTF-8")

    def read_key(self) -> Key:
        tag = self.data[self.pos:self.pos + 1]
        if tag == b'i':
            self.expect(b'i:')
            raw = self.read_until(b';', _INTEGER)
            return IntKey(int(raw), raw.decode('ascii'))
        if tag == b's':
            self.expect(b's:')
            key = self.read_text()
            self.expect(b'";')
            return key
        self.fail("array keys must be integers or strings")

    def read_pairs(self, count: int) -> List[Tuple[Key, PhpValue]]:
        self.expect(b'{')
        pairs = []
        for _ in range(count):
            key = self.read_key()
            pairs.append((key, self.read_value()))
        self.expect(b'}')
        return pairs

    def read_value(self) -> PhpValue:
        tag = self.data[self.pos:self.pos + 1]

        if tag == b'N':
            self.expect(b'N;')
            return PhpNull()

        if tag == b'b':
            self.expect(b'b:')
            raw = self.read_until(b';', _DIGITS)
            if raw not in (b'0', b'1'):
                self.fail("boolean must be 0 or 1")
            return PhpBool(raw == b'1')

        if tag == b'i':
            self.expect(b'i:')
            raw = self.read_until(b';', _INTEGER)
            return PhpInt(int(raw), raw.decode('ascii'))

        if tag == b'd':
            self.expect(b'd:')
            raw = self.read_until(b';', _FLOAT).decode('ascii')
            return PhpFloat(float(raw), raw)

        if tag == b's':
            self.expect(b's:')
            value = self.read_text()
            self.expect(b'";')
            return PhpString(value)

        if tag == b'a':
            self.expect(b'a:')
            count = self.read_length()
            return PhpArray(tuple(self.read_pairs(count)))

        if tag == b'O':
            self.expect(b'O:')
            class_name = self.read_text()
            self.expect(b'":')
            count = self.read_length()
            return PhpObject(class_name, tuple(self.read_pairs(count)))

        self.fail(f"unsupported type tag {tag!r}")


def loads(data: Union[str, bytes]) -> PhpValue:
    """Decode PHP serialized data into a value tree.

    Raises SerializedParseError for anything that is not exactly one
    well-formed value.
    """
    if isinstance(data, str):
        data = data.encode('utf-8')

    reader = _Reader(data)
    try:
        value = reader.read_value()
    except RecursionError:
        raise SerializedParseError("nesting too deep", reader.pos)

    if reader.pos != len(data):
        reader.fail("trailing data after value")
    return value


# Encoding

def _format_float(value: float) -> str:
    if math.isnan(value):
        return 'NAN'
    if math.isinf(value):
        return 'INF' if value > 0 else '-INF'

    text = repr(value)
    if 'e' in text:
        mantissa, exponent = text.split('e')
        if '.' not in mantissa:
            mantissa += '.0'
        sign = '-' if exponent.startswith('-') else '+'
        return f"{mantissa}E{sign}{int(exponent.lstrip('+-'))}"
    if text.endswith('.0'):
        return text[:-2]
    return text


def _dump_string(value: str, out: List[str]):
    out.append(f's:{len(value.encode("utf-8"))}:"{value}";')


def _dump_pairs(pairs, out: List[str]):
    out.append('{')
    for key, item in pairs:
        if isinstance(key, bool) or not isinstance(key, (int, str)):
            raise TypeError(f"Unsupported array key type: {type(key).__name__}")
        if isinstance(key, int):
            literal = getattr(key, 'literal', None)
            out.append(f'i:{literal if literal is not None else int(key)};')
        else:
            _dump_string(key, out)
        _dump(item, out)
    out.append('}')


def _dump(value: PhpValue, out: List[str]):
    if isinstance(value, PhpNull):
        out.append('N;')
    elif isinstance(value, PhpBool):
        out.append('b:1;' if value.value else 'b:0;')
    elif isinstance(value, PhpInt):
        literal = value.literal if value.literal is not None else str(value.value)
        out.append(f'i:{literal};')
    elif isinstance(value, PhpFloat):
        literal = value.literal if value.literal is not None else _format_float(value.value)
        out.append(f'd:{literal};')
    elif isinstance(value, PhpString):
        _dump_string(value.value, out)
    elif isinstance(value, PhpArray):
        out.append(f'a:{len(value.items)}:')
        _dump_pairs(value.items, out)
    elif isinstance(value, PhpObject):
        name_length = len(value.class_name.encode('utf-8'))
        out.append(f'O:{name_length}:"{value.class_name}":{len(value.properties)}:')
        _dump_pairs(value.properties, out)
    else:
        raise TypeError(f"Cannot serialize {type(value).__name__}")


def dumps(value: PhpValue) -> str:
    """Encode a value tree in PHP serialize() format."""
    out: List[str] = []
    _dump(value, out)
    return ''.join(out)


# Replacement

def _replace_key(key: Key, search: str, replace: str) -> Key:
    if isinstance(key, str):
        return key.replace(search, replace)
    return key


def replace_in_value(value: PhpValue, search: str, replace: str) -> PhpValue:
    """Recursively replace text in every string leaf, array key and property name"""
    if not search:
        return value

    if isinstance(value, PhpString):
        if search in value.value:
            return PhpString(value.value.replace(search, replace))
        return value

    if isinstance(value, PhpArray):
        return PhpArray(tuple(
            (_replace_key(key, search, replace), replace_in_value(item, search, replace))
            for key, item in value.items
        ))

    if isinstance(value, PhpObject):
        return PhpObject(value.class_name, tuple(
            (_replace_key(key, search, replace), replace_in_value(item, search, replace))
            for key, item in value.properties
        ))

    return value


def replace_serialized(data: str, search: str, replace: str) -> str:
    """Replace text inside serialized data, fixing the length prefixes.

    Returns the original value unchanged when it is not serialized, cannot be
    decoded, or does not contain the search text in any string. Whitespace
    around the serialized value is kept.
    """
    if not is_serialized(data):
        return data

    stripped = data.strip()
    try:
        tree = loads(stripped)
    except SerializedParseError:
        return data

    new_tree = replace_in_value(tree, search, replace)
    if new_tree == tree:
        return data

    start = len(data) - len(data.lstrip())
    return data[:start] + dumps(new_tree) + data[start + len(stripped):]
