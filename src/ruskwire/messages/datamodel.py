# SPDX-FileCopyrightText: 2020-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

import enum
import math
import struct
from collections.abc import Buffer
from io import SEEK_END, BytesIO
from types import new_class
from typing import ClassVar, Protocol, runtime_checkable

from .exceptions import MalformedInput, MalformedVarint, TruncatedInput

__all__ = (  # noqa: RUF022
    # Protocols and types

    'WireData',
    'WireType',
    'WireAdapter',

    # Constants

    'MAX_VARINT_LENGTH',
    'MIN_TAG',
    'MAX_TAG',
    'RESERVED_TAGS',

    # Wire primitives

    'as_buffer',
    'remaining',
    'encode_varint',
    'varint_length',
    'read_varint',
    'encode_key',
    'read_key',
    'read_bytes',
    'read_length_delimited',
    'skip_field',
    'zigzag_encode',
    'zigzag_decode',

    # Adapters

    'VarintAdapter',
    'ZigZagAdapter',
    'BooleanAdapter',
    'FixedIntegerAdapter',
    'FloatingPointAdapter',
    'BytesAdapter',
    'FixedBytesAdapter',
    'StringAdapter',
    'EnumAdapter',
    'make_enum_adapter',

    'Int32Adapter',
    'Int64Adapter',
    'UInt32Adapter',
    'UInt64Adapter',
    'SInt32Adapter',
    'SInt64Adapter',
    'Fixed32Adapter',
    'Fixed64Adapter',
    'SFixed32Adapter',
    'SFixed64Adapter',
    'FloatAdapter',
    'DoubleAdapter',
)


type WireData = bytes | bytearray | memoryview | BytesIO


MAX_VARINT_LENGTH = 10

MIN_TAG = 1
MAX_TAG = 2**29 - 1
RESERVED_TAGS = range(19000, 20000)  # reserved by the wire format for internal use


class WireType(enum.IntEnum):
    VARINT = 0
    I64 = 1
    LEN = 2
    SGROUP = 3
    EGROUP = 4
    I32 = 5


# Protocols

@runtime_checkable
class WireAdapter[T](Protocol):
    """Converts the value part of a field record of type T to and from wire data"""

    _abstract_: ClassVar[bool] = True
    _wire_type_: ClassVar[WireType]
    _packable_: ClassVar[bool]
    _default_: ClassVar[object]

    @staticmethod
    def from_wire(buffer: WireData) -> T: ...

    @staticmethod
    def to_wire(value: T, /) -> bytes: ...

    @staticmethod
    def wire_length(value: T, /) -> int: ...

    @staticmethod
    def validate(value: T, /) -> T: ...

    @staticmethod
    def is_default(value: T, /) -> bool: ...


# Wire primitives

def as_buffer(buffer: WireData) -> BytesIO:
    return buffer if isinstance(buffer, BytesIO) else BytesIO(buffer)


def remaining(buffer: BytesIO) -> int:
    """Return the number of bytes left to read from buffer"""
    position = buffer.tell()
    end = buffer.seek(0, SEEK_END)
    buffer.seek(position)
    return end - position


def encode_varint(value: int) -> bytes:
    """Encode an integer as a base 128 varint (negative values use their 64-bit two's complement)"""
    if not -(1 << 63) <= value < 1 << 64:
        raise ValueError(f'Value cannot be represented as a 64-bit varint: {value!r}')
    if value < 0:
        value += 1 << 64
    data = bytearray()
    while value > 0x7f:
        data.append(value & 0x7f | 0x80)
        value >>= 7
    data.append(value)
    return bytes(data)


def varint_length(value: int) -> int:
    if value < 0:
        return MAX_VARINT_LENGTH
    return max(1, (value.bit_length() + 6) // 7)


def read_varint(buffer: WireData) -> int:
    buffer = as_buffer(buffer)
    result = 0
    for shift in range(0, 7 * MAX_VARINT_LENGTH, 7):
        data = buffer.read(1)
        if not data:
            raise MalformedVarint('Insufficient data in buffer to extract a varint')
        byte = data[0]
        result |= (byte & 0x7f) << shift
        if byte < 0x80:
            break
    else:
        raise MalformedVarint(f'Varint does not terminate within {MAX_VARINT_LENGTH} bytes')
    if result.bit_length() > 64:
        raise MalformedVarint('Varint value overflows 64 bits')
    return result


def encode_key(tag: int, wire_type: WireType) -> bytes:
    return encode_varint(tag << 3 | wire_type)


def read_key(buffer: WireData) -> tuple[int, WireType]:
    key = read_varint(buffer)
    tag = key >> 3
    if not MIN_TAG <= tag <= MAX_TAG:
        raise MalformedInput(f'Invalid field tag: {tag}')
    try:
        wire_type = WireType(key & 0x07)
    except ValueError as exc:
        raise MalformedInput(f'Invalid wire type {key & 0x07} for field {tag}') from exc
    return tag, wire_type


def read_bytes(buffer: WireData, length: int, /, *, what: str = 'data') -> bytes:
    buffer = as_buffer(buffer)
    available = remaining(buffer)
    if length > available:
        raise TruncatedInput(f'Insufficient data in buffer to extract {what} ({available} < {length})')
    return buffer.read(length)


def read_length_delimited(buffer: WireData, /, *, what: str = 'length delimited data') -> bytes:
    buffer = as_buffer(buffer)
    return read_bytes(buffer, read_varint(buffer), what=what)


def skip_field(buffer: WireData, tag: int, wire_type: WireType, /, *, max_depth: int = 100) -> bytes:
    """
    Skip over the value of a field whose key was just read and return its raw bytes.

    The returned bytes can be written back verbatim after the field key to
    reproduce the field. Groups are skipped together with their end marker.
    """

    buffer = as_buffer(buffer)
    start = buffer.tell()
    match wire_type:
        case WireType.VARINT:
            read_varint(buffer)
        case WireType.I64:
            read_bytes(buffer, 8, what=f'the 64-bit value of field {tag}')
        case WireType.I32:
            read_bytes(buffer, 4, what=f'the 32-bit value of field {tag}')
        case WireType.LEN:
            read_length_delimited(buffer, what=f'the value of field {tag}')
        case WireType.SGROUP:
            if max_depth <= 0:
                raise MalformedInput(f'Group nesting for field {tag} exceeds the maximum depth')
            while True:
                if remaining(buffer) == 0:
                    raise TruncatedInput(f'Input ended before the end of group {tag}')
                inner_tag, inner_wire_type = read_key(buffer)
                if inner_wire_type is WireType.EGROUP:
                    if inner_tag != tag:
                        raise MalformedInput(f'Mismatched end of group (expected {tag}, got {inner_tag})')
                    break
                skip_field(buffer, inner_tag, inner_wire_type, max_depth=max_depth - 1)
        case WireType.EGROUP:
            raise MalformedInput(f'Unexpected end of group {tag}')
    end = buffer.tell()
    buffer.seek(start)
    return buffer.read(end - start)


def zigzag_encode(value: int, bits: int) -> int:
    return (value << 1) ^ (value >> (bits - 1))


def zigzag_decode(value: int) -> int:
    return (value >> 1) ^ -(value & 1)


# Adapters

class VarintAdapter:
    """Integers encoded as varints, truncated to their bit size when read"""

    _abstract_: ClassVar[bool] = True
    _wire_type_: ClassVar[WireType] = WireType.VARINT
    _packable_: ClassVar[bool] = True
    _default_: ClassVar[object] = 0

    _bits_: ClassVar[int] = NotImplemented
    _signed_: ClassVar[bool] = False
    _min_: ClassVar[int] = NotImplemented
    _max_: ClassVar[int] = NotImplemented

    def __init_subclass__(cls, *, bits: int = NotImplemented, signed: bool = False, **kw: object) -> None:
        if bits is not NotImplemented:
            cls._bits_ = bits
            cls._signed_ = signed
            cls._min_ = -(1 << (bits - 1)) if signed else 0
            cls._max_ = (1 << (bits - 1)) - 1 if signed else (1 << bits) - 1
            cls._abstract_ = False
        super().__init_subclass__(**kw)

    @classmethod
    def _describe(cls) -> str:
        return f'{'signed' if cls._signed_ else 'unsigned'} {cls._bits_}-bit integer'

    @classmethod
    def _truncate(cls, value: int) -> int:
        value &= (1 << cls._bits_) - 1
        if cls._signed_ and value >> (cls._bits_ - 1):
            value -= 1 << cls._bits_
        return value

    @classmethod
    def from_wire(cls, buffer: WireData) -> int:
        return cls._truncate(read_varint(buffer))

    @classmethod
    def to_wire(cls, value: int, /) -> bytes:
        return encode_varint(value)

    @classmethod
    def wire_length(cls, value: int, /) -> int:
        return varint_length(value)

    @classmethod
    def validate(cls, value: int, /) -> int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise TypeError(f'Value for {cls._describe()} must be an int, not {value.__class__.__qualname__!r}')
        if not cls._min_ <= value <= cls._max_:
            raise ValueError(f'Value is out of range for {cls._describe()}: {value!r}')
        return int(value)

    @classmethod
    def is_default(cls, value: int, /) -> bool:
        return value == 0


class ZigZagAdapter(VarintAdapter):
    """Signed integers encoded as zigzag varints, so that small negative values stay small"""

    @classmethod
    def from_wire(cls, buffer: WireData) -> int:
        return zigzag_decode(read_varint(buffer) & ((1 << cls._bits_) - 1))

    @classmethod
    def to_wire(cls, value: int, /) -> bytes:
        return encode_varint(zigzag_encode(value, cls._bits_))

    @classmethod
    def wire_length(cls, value: int, /) -> int:
        return varint_length(zigzag_encode(value, cls._bits_))


class Int32Adapter(VarintAdapter, bits=32, signed=True):
    pass


class Int64Adapter(VarintAdapter, bits=64, signed=True):
    pass


class UInt32Adapter(VarintAdapter, bits=32):
    pass


class UInt64Adapter(VarintAdapter, bits=64):
    pass


class SInt32Adapter(ZigZagAdapter, bits=32, signed=True):
    pass


class SInt64Adapter(ZigZagAdapter, bits=64, signed=True):
    pass


class BooleanAdapter:
    _abstract_: ClassVar[bool] = False
    _wire_type_: ClassVar[WireType] = WireType.VARINT
    _packable_: ClassVar[bool] = True
    _default_: ClassVar[object] = False

    @staticmethod
    def from_wire(buffer: WireData) -> bool:
        return read_varint(buffer) != 0

    @staticmethod
    def to_wire(value: bool, /) -> bytes:  # noqa: FBT001
        return b'\x01' if value else b'\x00'

    @staticmethod
    def wire_length(_: bool, /) -> int:  # noqa: FBT001
        return 1

    @staticmethod
    def validate(value: bool, /) -> bool:  # noqa: FBT001
        if not isinstance(value, bool):
            raise TypeError(f'Value for boolean must be a bool, not {value.__class__.__qualname__!r}')
        return value

    @staticmethod
    def is_default(value: bool, /) -> bool:  # noqa: FBT001
        return not value


class FixedIntegerAdapter:
    """Integers encoded in little endian on a fixed number of bytes"""

    _abstract_: ClassVar[bool] = True
    _wire_type_: ClassVar[WireType] = NotImplemented
    _packable_: ClassVar[bool] = True
    _default_: ClassVar[object] = 0

    _bits_: ClassVar[int] = NotImplemented
    _size_: ClassVar[int] = NotImplemented
    _signed_: ClassVar[bool] = False

    def __init_subclass__(cls, *, bits: int = NotImplemented, signed: bool = False, **kw: object) -> None:
        if bits is not NotImplemented:
            if bits not in {32, 64}:
                raise TypeError('Fixed width integers must have either 32 or 64 bits')
            cls._bits_ = bits
            cls._size_ = bits // 8
            cls._signed_ = signed
            cls._wire_type_ = WireType.I32 if bits == 32 else WireType.I64
            cls._abstract_ = False
        super().__init_subclass__(**kw)

    @classmethod
    def from_wire(cls, buffer: WireData) -> int:
        data = read_bytes(buffer, cls._size_, what=f'a fixed {cls._bits_}-bit integer')
        return int.from_bytes(data, byteorder='little', signed=cls._signed_)

    @classmethod
    def to_wire(cls, value: int, /) -> bytes:
        return value.to_bytes(cls._size_, byteorder='little', signed=cls._signed_)

    @classmethod
    def wire_length(cls, _: int, /) -> int:
        return cls._size_

    @classmethod
    def validate(cls, value: int, /) -> int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise TypeError(f'Value for fixed {cls._bits_}-bit integer must be an int, not {value.__class__.__qualname__!r}')
        try:
            value.to_bytes(cls._size_, byteorder='little', signed=cls._signed_)
        except OverflowError as exc:
            raise ValueError(f'Value is out of range for {'signed' if cls._signed_ else 'unsigned'} fixed {cls._bits_}-bit integer: {value!r}') from exc
        return int(value)

    @classmethod
    def is_default(cls, value: int, /) -> bool:
        return value == 0


class Fixed32Adapter(FixedIntegerAdapter, bits=32):
    pass


class Fixed64Adapter(FixedIntegerAdapter, bits=64):
    pass


class SFixed32Adapter(FixedIntegerAdapter, bits=32, signed=True):
    pass


class SFixed64Adapter(FixedIntegerAdapter, bits=64, signed=True):
    pass


class FloatingPointAdapter:
    _abstract_: ClassVar[bool] = True
    _wire_type_: ClassVar[WireType] = NotImplemented
    _packable_: ClassVar[bool] = True
    _default_: ClassVar[object] = 0.0

    _struct_: ClassVar[struct.Struct] = NotImplemented

    def __init_subclass__(cls, *, bits: int = NotImplemented, **kw: object) -> None:
        if bits is not NotImplemented:
            match bits:
                case 32:
                    cls._struct_ = struct.Struct('<f')
                    cls._wire_type_ = WireType.I32
                case 64:
                    cls._struct_ = struct.Struct('<d')
                    cls._wire_type_ = WireType.I64
                case _:
                    raise TypeError('Floating point numbers must have either 32 or 64 bits')
            cls._abstract_ = False
        super().__init_subclass__(**kw)

    @classmethod
    def from_wire(cls, buffer: WireData) -> float:
        data = read_bytes(buffer, cls._struct_.size, what='a floating point number')
        return cls._struct_.unpack(data)[0]

    @classmethod
    def to_wire(cls, value: float, /) -> bytes:
        return cls._struct_.pack(value)

    @classmethod
    def wire_length(cls, _: float, /) -> int:
        return cls._struct_.size

    @classmethod
    def validate(cls, value: float, /) -> float:
        if isinstance(value, bool) or not isinstance(value, int | float):
            raise TypeError(f'Value for floating point number must be a float, not {value.__class__.__qualname__!r}')
        try:
            cls._struct_.pack(value)
        except OverflowError as exc:
            raise ValueError(f'Value is out of range for a {cls._struct_.size * 8}-bit floating point number: {value!r}') from exc
        return float(value)

    @classmethod
    def is_default(cls, value: float, /) -> bool:
        # negative zero is a distinct value on the wire
        return value == 0 and math.copysign(1.0, value) > 0


class FloatAdapter(FloatingPointAdapter, bits=32):
    pass


class DoubleAdapter(FloatingPointAdapter, bits=64):
    pass


class BytesAdapter:
    """Adapter for length prefixed bytes, optionally constrained in size and converted to a bytes subtype"""

    _abstract_: ClassVar[bool] = False
    _wire_type_: ClassVar[WireType] = WireType.LEN
    _packable_: ClassVar[bool] = False
    _default_: ClassVar[object] = b''

    _type_: ClassVar[type[bytes]] = bytes
    _minsize_: ClassVar[int] = 0
    _maxsize_: ClassVar[int | None] = None

    def __init_subclass__(cls, *, type: type[bytes] = NotImplemented, minsize: int = NotImplemented, maxsize: int | None = NotImplemented, **kw: object) -> None:  # noqa: A002
        if type is not NotImplemented:
            cls._type_ = type
        if minsize is not NotImplemented:
            cls._minsize_ = minsize
        if maxsize is not NotImplemented:
            cls._maxsize_ = maxsize
        if cls._maxsize_ is not None and cls._minsize_ > cls._maxsize_:
            raise TypeError(f'The minsize of {cls.__qualname__!r} is larger than its maxsize')
        # a type whose size cannot be zero has no zero value
        cls._default_ = cls._type_() if cls._minsize_ == 0 else None
        super().__init_subclass__(**kw)

    @classmethod
    def _size_error(cls, length: int) -> str | None:
        if length < cls._minsize_ or (cls._maxsize_ is not None and length > cls._maxsize_):
            if cls._minsize_ == cls._maxsize_:
                return f'{cls._type_.__qualname__!r} must have exactly {cls._minsize_} bytes (got {length})'
            return f'{cls._type_.__qualname__!r} must have between {cls._minsize_} and {cls._maxsize_} bytes (got {length})'
        return None

    @classmethod
    def from_wire(cls, buffer: WireData) -> bytes:
        data = read_length_delimited(buffer, what=f'the data for {cls._type_.__qualname__!r}')
        if (error := cls._size_error(len(data))) is not None:
            raise MalformedInput(error)
        return cls._type_(data)

    @classmethod
    def to_wire(cls, value: bytes, /) -> bytes:
        return encode_varint(len(value)) + value

    @classmethod
    def wire_length(cls, value: bytes, /) -> int:
        return varint_length(len(value)) + len(value)

    @classmethod
    def validate(cls, value: bytes, /) -> bytes:
        if isinstance(value, str) or not isinstance(value, Buffer):
            raise TypeError(f'Value for {cls._type_.__qualname__!r} must be a bytes-like object, not {value.__class__.__qualname__!r}')
        if (error := cls._size_error(len(memoryview(value).cast('B')))) is not None:
            raise ValueError(error)
        return value if value.__class__ is cls._type_ else cls._type_(value)

    @classmethod
    def is_default(cls, value: bytes, /) -> bool:
        return not value


class FixedBytesAdapter(BytesAdapter):
    """Length prefixed bytes that must always have exactly size bytes"""

    _abstract_: ClassVar[bool] = True
    _size_: ClassVar[int] = NotImplemented

    def __init_subclass__(cls, *, size: int = NotImplemented, **kw: object) -> None:
        if size is not NotImplemented:
            if size <= 0:
                raise TypeError('The size of fixed size bytes must be a positive integer')
            cls._size_ = size
            cls._abstract_ = False
            kw.update(minsize=size, maxsize=size)
        super().__init_subclass__(**kw)  # type: ignore[arg-type]


class StringAdapter:
    """Strings encoded as length prefixed UTF-8 bytes"""

    _abstract_: ClassVar[bool] = False
    _wire_type_: ClassVar[WireType] = WireType.LEN
    _packable_: ClassVar[bool] = False
    _default_: ClassVar[object] = ''

    @staticmethod
    def from_wire(buffer: WireData) -> str:
        data = read_length_delimited(buffer, what='the bytes representation of the string')
        try:
            return data.decode()
        except UnicodeDecodeError as exc:
            raise MalformedInput(f'Cannot decode bytes to string: {exc}') from exc

    @staticmethod
    def to_wire(value: str, /) -> bytes:
        data = value.encode()
        return encode_varint(len(data)) + data

    @staticmethod
    def wire_length(value: str, /) -> int:
        length = len(value.encode())
        return varint_length(length) + length

    @staticmethod
    def validate(value: str, /) -> str:
        if not isinstance(value, str):
            raise TypeError(f'Value for string must be a str, not {value.__class__.__qualname__!r}')
        try:
            value.encode()
        except UnicodeEncodeError as exc:
            raise ValueError(f'Cannot encode string as UTF-8: {exc}') from exc
        return value

    @staticmethod
    def is_default(value: str, /) -> bool:
        return not value


class EnumAdapter[E: enum.IntEnum](Int32Adapter):
    """
    Enumerations encoded as 32-bit signed varints.

    Enumerations are open: values that are not members of the enumeration
    are kept as plain integers, so that data produced with a newer version
    of the enumeration survives decoding and encoding again.
    """

    _abstract_: ClassVar[bool] = True
    _enum_: ClassVar[type[enum.IntEnum]] = NotImplemented

    def __init_subclass__(cls, *, enum_type: type[E] = NotImplemented, **kw: object) -> None:
        super().__init_subclass__(**kw)
        if enum_type is not NotImplemented:
            cls._enum_ = enum_type
            cls._default_ = enum_type(0) if 0 in enum_type._value2member_map_ else 0
            cls._abstract_ = False

    @classmethod
    def _convert(cls, value: int) -> E | int:
        try:
            return cls._enum_(value)
        except ValueError:
            return value

    @classmethod
    def from_wire(cls, buffer: WireData) -> E | int:
        return cls._convert(super().from_wire(buffer))

    @classmethod
    def validate(cls, value: E | int, /) -> E | int:
        return cls._convert(super().validate(value))


def make_enum_adapter[E: enum.IntEnum](enum_type: type[E]) -> type[EnumAdapter[E]]:
    return new_class(f'{enum_type.__name__}Adapter', (EnumAdapter[enum_type],), kwds={'enum_type': enum_type})  # type: ignore[valid-type]
