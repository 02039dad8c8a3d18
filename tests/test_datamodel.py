# SPDX-FileCopyrightText: 2020-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

import struct
from enum import IntEnum
from io import BytesIO

import pytest
from ruskwire.messages.datamodel import (
    BooleanAdapter,
    BytesAdapter,
    DoubleAdapter,
    EnumAdapter,
    Fixed32Adapter,
    FixedBytesAdapter,
    FixedIntegerAdapter,
    FloatAdapter,
    FloatingPointAdapter,
    Int32Adapter,
    Int64Adapter,
    SFixed64Adapter,
    SInt32Adapter,
    SInt64Adapter,
    StringAdapter,
    UInt32Adapter,
    UInt64Adapter,
    VarintAdapter,
    WireAdapter,
    WireType,
    encode_key,
    encode_varint,
    make_enum_adapter,
    read_key,
    read_length_delimited,
    read_varint,
    remaining,
    skip_field,
    varint_length,
    zigzag_decode,
    zigzag_encode,
)
from ruskwire.messages.exceptions import CodecError, MalformedInput, MalformedVarint, TruncatedInput


class Color(IntEnum):
    RED = 0
    GREEN = 1


class TestPrimitives:

    def test_exceptions(self) -> None:
        # all the wire errors can be caught either as CodecError or as ValueError
        for exception_type in (TruncatedInput, MalformedVarint, MalformedInput):
            assert issubclass(exception_type, CodecError)
            assert issubclass(exception_type, ValueError)
        assert issubclass(MalformedVarint, TruncatedInput)

    def test_varint_encoding(self) -> None:
        assert encode_varint(0) == b'\x00'
        assert encode_varint(1) == b'\x01'
        assert encode_varint(127) == b'\x7f'
        assert encode_varint(128) == b'\x80\x01'
        assert encode_varint(300) == b'\xac\x02'
        assert encode_varint(2**64 - 1) == b'\xff' * 9 + b'\x01'
        assert encode_varint(-1) == b'\xff' * 9 + b'\x01'
        with pytest.raises(ValueError, match=r'Value cannot be represented as a 64-bit varint'):
            encode_varint(2**64)
        with pytest.raises(ValueError, match=r'Value cannot be represented as a 64-bit varint'):
            encode_varint(-2**63 - 1)
        for value in (0, 1, 127, 128, 300, 2**32, 2**64 - 1, -1):
            assert varint_length(value) == len(encode_varint(value))

    def test_varint_decoding(self) -> None:
        assert read_varint(b'\x00') == 0
        assert read_varint(b'\xac\x02') == 300
        assert read_varint(b'\xff' * 9 + b'\x01') == 2**64 - 1

        buffer = BytesIO(b'\xac\x02\x01')
        assert read_varint(buffer) == 300
        assert remaining(buffer) == 1

        with pytest.raises(MalformedVarint, match=r'Insufficient data in buffer to extract a varint'):
            read_varint(b'')
        with pytest.raises(MalformedVarint, match=r'Insufficient data in buffer to extract a varint'):
            read_varint(b'\x80\x80')
        with pytest.raises(MalformedVarint, match=r'Varint does not terminate within 10 bytes'):
            read_varint(b'\xff' * 10 + b'\x01')
        with pytest.raises(MalformedVarint, match=r'Varint value overflows 64 bits'):
            read_varint(b'\xff' * 9 + b'\x02')

        # an unterminated varint is also a truncated input
        with pytest.raises(TruncatedInput):
            read_varint(b'\xff')

    def test_keys(self) -> None:
        assert encode_key(1, WireType.VARINT) == b'\x08'
        assert encode_key(1, WireType.LEN) == b'\x0a'
        assert encode_key(2, WireType.LEN) == b'\x12'
        assert encode_key(16, WireType.I32) == b'\x85\x01'
        assert read_key(b'\x1a') == (3, WireType.LEN)
        assert read_key(b'\x85\x01') == (16, WireType.I32)
        with pytest.raises(MalformedInput, match=r'Invalid field tag: 0'):
            read_key(b'\x02')
        with pytest.raises(MalformedInput, match=r'Invalid wire type 6 for field 1'):
            read_key(b'\x0e')
        with pytest.raises(MalformedInput, match=r'Invalid wire type 7 for field 1'):
            read_key(b'\x0f')

    def test_length_delimited(self) -> None:
        assert read_length_delimited(b'\x03abc') == b'abc'
        assert read_length_delimited(b'\x00') == b''
        with pytest.raises(TruncatedInput, match=r'Insufficient data in buffer to extract length delimited data \(2 < 3\)'):
            read_length_delimited(b'\x03ab')

    def test_skip_field(self) -> None:
        buffer = BytesIO(b'\x96\x01rest')
        assert skip_field(buffer, 5, WireType.VARINT) == b'\x96\x01'
        assert buffer.read() == b'rest'

        assert skip_field(b'\x01\x02\x03\x04', 5, WireType.I32) == b'\x01\x02\x03\x04'
        assert skip_field(b'\x01' * 8, 5, WireType.I64) == b'\x01' * 8
        assert skip_field(b'\x02hi', 5, WireType.LEN) == b'\x02hi'

        with pytest.raises(TruncatedInput):
            skip_field(b'\x01\x02', 5, WireType.I32)
        with pytest.raises(TruncatedInput):
            skip_field(b'\x05hi', 5, WireType.LEN)

    def test_skip_group(self) -> None:
        # group 5 holding field 1 = 1, followed by the end of group 5
        assert skip_field(b'\x08\x01\x2c', 5, WireType.SGROUP) == b'\x08\x01\x2c'
        # nested groups are skipped together with their parent
        assert skip_field(b'\x33\x08\x01\x34\x2c', 5, WireType.SGROUP) == b'\x33\x08\x01\x34\x2c'

        with pytest.raises(MalformedInput, match=r'Mismatched end of group \(expected 5, got 6\)'):
            skip_field(b'\x08\x01\x34', 5, WireType.SGROUP)
        with pytest.raises(MalformedInput, match=r'Unexpected end of group 5'):
            skip_field(b'', 5, WireType.EGROUP)
        with pytest.raises(TruncatedInput, match=r'Input ended before the end of group 5'):
            skip_field(b'\x08\x01', 5, WireType.SGROUP)
        with pytest.raises(MalformedInput, match=r'exceeds the maximum depth'):
            skip_field(b'\x33\x08\x01\x34\x2c', 5, WireType.SGROUP, max_depth=1)

    def test_zigzag(self) -> None:
        assert [zigzag_encode(value, 32) for value in (0, -1, 1, -2, 2)] == [0, 1, 2, 3, 4]
        assert zigzag_encode(2**31 - 1, 32) == 2**32 - 2
        assert zigzag_encode(-2**31, 32) == 2**32 - 1
        assert zigzag_encode(-2**63, 64) == 2**64 - 1
        for value in (0, -1, 1, 2**31 - 1, -2**31):
            assert zigzag_decode(zigzag_encode(value, 32)) == value


class TestAdapters:

    def test_protocols(self) -> None:
        # Adapters can't be tested with issubclass because they have non-method
        # members, but they can be tested with isinstance.

        for adapter in (VarintAdapter, BooleanAdapter, FixedIntegerAdapter, FloatingPointAdapter, BytesAdapter, FixedBytesAdapter, StringAdapter, EnumAdapter):
            assert isinstance(adapter, WireAdapter)

        # only adapters that define their size are concrete
        assert VarintAdapter._abstract_
        assert FixedIntegerAdapter._abstract_
        assert FloatingPointAdapter._abstract_
        assert FixedBytesAdapter._abstract_
        assert EnumAdapter._abstract_
        assert not UInt32Adapter._abstract_
        assert not Fixed32Adapter._abstract_
        assert not DoubleAdapter._abstract_
        assert not BytesAdapter._abstract_
        assert not make_enum_adapter(Color)._abstract_

    def test_varint_adapters(self) -> None:
        assert UInt32Adapter.to_wire(300) == b'\xac\x02'
        assert UInt32Adapter.from_wire(b'\xac\x02') == 300
        assert UInt64Adapter.from_wire(b'\xff' * 9 + b'\x01') == 2**64 - 1

        # values read from the wire are truncated to the size of the type
        assert UInt32Adapter.from_wire(encode_varint(2**32 + 5)) == 5

        # negative values are sign extended to 64 bits
        assert Int32Adapter.to_wire(-1) == b'\xff' * 9 + b'\x01'
        assert Int32Adapter.wire_length(-1) == 10
        assert Int32Adapter.from_wire(b'\xff' * 9 + b'\x01') == -1
        assert Int64Adapter.from_wire(encode_varint(-2**63)) == -2**63

        for adapter in (Int32Adapter, Int64Adapter, UInt32Adapter, UInt64Adapter):
            assert adapter._wire_type_ is WireType.VARINT
            assert adapter._packable_
            assert adapter._default_ == 0
            for value in (0, 1, 127, 128, adapter._max_, adapter._min_):
                assert adapter.from_wire(adapter.to_wire(value)) == value
                assert adapter.wire_length(value) == len(adapter.to_wire(value))

        with pytest.raises(ValueError, match=r'Value is out of range for unsigned 32-bit integer: 4294967296'):
            UInt32Adapter.validate(2**32)
        with pytest.raises(ValueError, match=r'Value is out of range for unsigned 64-bit integer: -1'):
            UInt64Adapter.validate(-1)
        with pytest.raises(ValueError, match=r'Value is out of range for signed 32-bit integer'):
            Int32Adapter.validate(2**31)
        with pytest.raises(TypeError, match=r"Value for unsigned 32-bit integer must be an int, not 'bool'"):
            UInt32Adapter.validate(True)  # noqa: FBT003
        with pytest.raises(TypeError, match=r"Value for signed 64-bit integer must be an int, not 'str'"):
            Int64Adapter.validate('1')  # type: ignore[arg-type]

    def test_zigzag_adapters(self) -> None:
        assert SInt32Adapter.to_wire(-1) == b'\x01'
        assert SInt32Adapter.to_wire(1) == b'\x02'
        assert SInt32Adapter.from_wire(b'\x01') == -1
        assert SInt32Adapter.wire_length(-64) == 1
        assert SInt64Adapter.to_wire(-2**63) == b'\xff' * 9 + b'\x01'
        for adapter in (SInt32Adapter, SInt64Adapter):
            for value in (0, -1, 1, adapter._min_, adapter._max_):
                assert adapter.from_wire(adapter.to_wire(value)) == value
                assert adapter.wire_length(value) == len(adapter.to_wire(value))

    def test_boolean_adapter(self) -> None:
        assert BooleanAdapter.from_wire(b'\x00') is False
        assert BooleanAdapter.from_wire(b'\x01') is True
        assert BooleanAdapter.from_wire(BytesIO(b'\x02')) is True
        assert BooleanAdapter.to_wire(True) == b'\x01'  # noqa: FBT003
        assert BooleanAdapter.to_wire(False) == b'\x00'  # noqa: FBT003
        assert BooleanAdapter.is_default(False)  # noqa: FBT003
        with pytest.raises(MalformedVarint):
            BooleanAdapter.from_wire(b'')
        with pytest.raises(TypeError, match=r"Value for boolean must be a bool, not 'int'"):
            BooleanAdapter.validate(1)  # type: ignore[arg-type]

    def test_fixed_integer_adapters(self) -> None:
        assert Fixed32Adapter.to_wire(1) == b'\x01\x00\x00\x00'
        assert Fixed32Adapter._wire_type_ is WireType.I32
        assert SFixed64Adapter.to_wire(-1) == b'\xff' * 8
        assert SFixed64Adapter._wire_type_ is WireType.I64
        assert SFixed64Adapter.from_wire(b'\xfe' + b'\xff' * 7) == -2
        assert SFixed64Adapter.wire_length(0) == 8
        with pytest.raises(TruncatedInput, match=r'Insufficient data in buffer to extract a fixed 32-bit integer'):
            Fixed32Adapter.from_wire(b'\x01\x00')
        with pytest.raises(ValueError, match=r'Value is out of range for unsigned fixed 32-bit integer: -1'):
            Fixed32Adapter.validate(-1)
        with pytest.raises(TypeError, match=r'Fixed width integers must have either 32 or 64 bits'):
            class Fixed16Adapter(FixedIntegerAdapter, bits=16):
                pass

    def test_floating_point_adapters(self) -> None:
        assert DoubleAdapter.to_wire(1.0) == b'\x00\x00\x00\x00\x00\x00\xf0\x3f'
        assert DoubleAdapter.from_wire(struct.pack('<d', 2.5)) == 2.5
        assert FloatAdapter.to_wire(1.0) == b'\x00\x00\x80\x3f'
        assert FloatAdapter._wire_type_ is WireType.I32
        assert FloatAdapter.validate(1) == 1.0
        assert isinstance(FloatAdapter.validate(1), float)
        assert FloatAdapter.is_default(0.0)
        assert not FloatAdapter.is_default(-0.0)
        with pytest.raises(ValueError, match=r'Value is out of range for a 32-bit floating point number'):
            FloatAdapter.validate(1e40)
        with pytest.raises(TypeError, match=r"Value for floating point number must be a float, not 'bool'"):
            DoubleAdapter.validate(False)  # noqa: FBT003
        with pytest.raises(TruncatedInput):
            DoubleAdapter.from_wire(b'\x00' * 7)

    def test_bytes_adapters(self) -> None:
        assert BytesAdapter.to_wire(b'abc') == b'\x03abc'
        assert BytesAdapter.wire_length(b'abc') == 4
        assert BytesAdapter.from_wire(b'\x03abc') == b'abc'
        assert BytesAdapter.from_wire(b'\x00') == b''
        assert BytesAdapter._default_ == b''

        value = BytesAdapter.validate(bytearray(b'xyz'))
        assert value == b'xyz'
        assert type(value) is bytes

        with pytest.raises(TruncatedInput):
            BytesAdapter.from_wire(b'\x05ab')
        with pytest.raises(TypeError, match=r"Value for 'bytes' must be a bytes-like object, not 'str'"):
            BytesAdapter.validate('abc')  # type: ignore[arg-type]

        class Hash(bytes):
            pass

        class HashAdapter(FixedBytesAdapter, type=Hash, size=4):
            pass

        class LabelAdapter(BytesAdapter, minsize=1, maxsize=3):
            pass

        # types that cannot be empty have no zero value
        assert HashAdapter._default_ is None
        assert LabelAdapter._default_ is None

        assert type(HashAdapter.from_wire(b'\x04abcd')) is Hash
        assert type(HashAdapter.validate(b'abcd')) is Hash
        assert HashAdapter.to_wire(Hash(b'abcd')) == b'\x04abcd'
        with pytest.raises(MalformedInput, match=r"Hash' must have exactly 4 bytes \(got 3\)"):
            HashAdapter.from_wire(b'\x03abc')
        with pytest.raises(ValueError, match=r"Hash' must have exactly 4 bytes \(got 5\)"):
            HashAdapter.validate(b'abcde')
        with pytest.raises(MalformedInput, match=r"'bytes' must have between 1 and 3 bytes \(got 0\)"):
            LabelAdapter.from_wire(b'\x00')
        with pytest.raises(ValueError, match=r"'bytes' must have between 1 and 3 bytes \(got 4\)"):
            LabelAdapter.validate(b'abcd')
        with pytest.raises(TypeError, match=r'The minsize of .* is larger than its maxsize'):
            class BadAdapter(BytesAdapter, minsize=4, maxsize=2):
                pass

    def test_string_adapter(self) -> None:
        assert StringAdapter.to_wire('é') == b'\x02\xc3\xa9'
        assert StringAdapter.wire_length('é') == 3
        assert StringAdapter.from_wire(b'\x02\xc3\xa9') == 'é'
        with pytest.raises(MalformedInput, match=r'Cannot decode bytes to string'):
            StringAdapter.from_wire(b'\x02\xff\xfe')
        with pytest.raises(ValueError, match=r'Cannot encode string as UTF-8'):
            StringAdapter.validate('\ud800')
        with pytest.raises(TypeError, match=r"Value for string must be a str, not 'bytes'"):
            StringAdapter.validate(b'abc')  # type: ignore[arg-type]

    def test_enum_adapters(self) -> None:
        adapter = make_enum_adapter(Color)
        assert adapter.__name__ == 'ColorAdapter'
        assert adapter._default_ is Color.RED
        assert adapter.from_wire(b'\x01') is Color.GREEN
        assert adapter.to_wire(Color.GREEN) == b'\x01'
        assert adapter.validate(1) is Color.GREEN

        # enums are open, unknown values are kept as they are
        value = adapter.from_wire(b'\x07')
        assert value == 7
        assert not isinstance(value, Color)
        assert adapter.to_wire(value) == b'\x07'

        with pytest.raises(ValueError, match=r'Value is out of range for signed 32-bit integer'):
            adapter.validate(2**31)
