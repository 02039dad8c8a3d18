# SPDX-FileCopyrightText: 2020-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

import enum
from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from contextvars import ContextVar
from copy import copy, deepcopy
from dataclasses import dataclass
from inspect import Parameter, Signature
from io import BytesIO
from typing import ClassVar, Self, cast, dataclass_transform, overload

from ruskwire.python import reprproxy
from ruskwire.python.contextvars import run_in_context

from .datamodel import (
    MAX_TAG,
    MIN_TAG,
    RESERVED_TAGS,
    WireAdapter,
    WireData,
    WireType,
    as_buffer,
    encode_key,
    encode_varint,
    make_enum_adapter,
    read_key,
    read_length_delimited,
    remaining,
    skip_field,
    varint_length,
)
from .exceptions import CodecError, MalformedInput, TypeMismatch

__all__ = (  # noqa: RUF022
    'Message',
    'AnnotatedMessage',
    'DecodeOptions',
    'UnknownField',

    'decode_options',

    'Field',
    'MessageField',
    'RepeatedField',
)


@dataclass(frozen=True, slots=True)
class DecodeOptions:
    max_nesting_depth: int = 100
    preserve_unknown_fields: bool = True


# The options in effect for the decoding operation that runs in the current context.
decode_options: ContextVar[DecodeOptions] = ContextVar('decode_options', default=DecodeOptions())

_nesting_depth: ContextVar[int] = ContextVar('_nesting_depth', default=0)


@dataclass(frozen=True, slots=True)
class UnknownField:
    """A field record with a tag unknown to the message type, kept as it was read from the wire"""

    tag: int
    wire_type: WireType
    data: bytes

    def __repr__(self) -> str:
        return f'{self.__class__.__qualname__}(tag={self.tag!r}, wire_type={reprproxy(self.wire_type)!r}, data={reprproxy(self.data)!r})'

    def to_wire(self) -> bytes:
        return encode_key(self.tag, self.wire_type) + self.data

    def wire_length(self) -> int:
        return varint_length(self.tag << 3) + len(self.data)


class Message:  # noqa: PLW1641
    __signature__: ClassVar[Signature] = Signature()

    _fields_: ClassVar[dict[str, 'FieldDescriptor']] = {}
    _tags_: ClassVar[dict[int, 'FieldDescriptor']] = {}
    _reserved_: ClassVar[frozenset[int]] = frozenset()

    _all_arguments: ClassVar[frozenset[str]] = frozenset()

    _from_wire_running_: ContextVar[bool] = ContextVar('_from_wire_running_')

    def __new__(cls, **kw: object) -> Self:
        if not cls._all_arguments.issuperset(kw):
            raise TypeError(f'Got an unexpected keyword argument {next(iter(set(kw) - cls._all_arguments))!r}')
        return super().__new__(cls)

    def __init__(self, **kw: object) -> None:
        for name, field in self._fields_.items():
            if name in kw:
                setattr(self, name, kw[name])
            else:
                field.initialize(self)
        self.__dict__['_unknown_fields_'] = []

    def __init_subclass__(cls, *, reserved: Iterable[int] = (), **kw: object) -> None:
        super().__init_subclass__(**kw)

        # all the fields on this message (both inherited and locally defined)
        fields = cls._fields_ | {name: value for name, value in cls.__dict__.items() if isinstance(value, FieldDescriptor)}
        reserved_tags = cls._reserved_ | frozenset(reserved)

        tags: dict[int, FieldDescriptor] = {}
        for name, field in fields.items():
            if not MIN_TAG <= field.tag <= MAX_TAG:
                raise TypeError(f'The tag for {cls.__qualname__}.{name} must be between {MIN_TAG} and {MAX_TAG} (got {field.tag})')
            if field.tag in RESERVED_TAGS:
                raise TypeError(f'The tag for {cls.__qualname__}.{name} is in the range reserved by the wire format ({RESERVED_TAGS.start}-{RESERVED_TAGS.stop - 1})')
            if field.tag in reserved_tags:
                raise TypeError(f'The tag for {cls.__qualname__}.{name} is reserved and cannot be reused: {field.tag}')
            if field.tag in tags:
                raise TypeError(f'The {cls.__qualname__}.{name} and {cls.__qualname__}.{tags[field.tag].name} fields use the same tag: {field.tag}')
            tags[field.tag] = field

        # fields are kept in ascending tag order, which is the order they are written to the wire
        cls._fields_ = dict(sorted(fields.items(), key=lambda item: item[1].tag))
        cls._tags_ = dict(sorted(tags.items()))
        cls._reserved_ = reserved_tags

        cls.__signature__ = Signature(parameters=[descriptor.signature_parameter for descriptor in cls._fields_.values()])
        cls._all_arguments = frozenset(cls.__signature__.parameters)

    def __repr__(self) -> str:
        return f'{self.__class__.__qualname__}({', '.join(f'{name}={reprproxy(getattr(self, name))!r}' for name in self._fields_)})'

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Message):
            return self.__class__ is other.__class__ and all(getattr(self, name) == getattr(other, name) for name in self._fields_)
        return NotImplemented

    @property
    def unknown_fields(self) -> tuple[UnknownField, ...]:
        return tuple(self.__dict__['_unknown_fields_'])

    def clear_unknown_fields(self) -> None:
        self.__dict__['_unknown_fields_'].clear()

    def merge_from(self, other: Self) -> None:
        """Merge the fields present in other into this message, the same way repeated records merge on the wire"""
        if other.__class__ is not self.__class__:
            raise TypeError(f'Cannot merge {other.__class__.__qualname__!r} into {self.__class__.__qualname__!r}')
        for field in self._fields_.values():
            field.merge(self, other)
        self.__dict__['_unknown_fields_'].extend(other.__dict__['_unknown_fields_'])

    @classmethod
    @run_in_context(sentinel=_from_wire_running_)
    def from_wire(cls, buffer: WireData) -> Self:
        """
        Create a message from wire data.

        All the data in buffer (or all the remaining data if buffer is a
        BytesIO) is consumed, as message records are not self delimiting.
        Either a fully populated message is returned, or an exception that
        is an instance of CodecError is raised.
        """

        options = decode_options.get()
        depth = _nesting_depth.get()
        if depth >= options.max_nesting_depth:
            raise MalformedInput(f'Message nesting exceeds the maximum depth of {options.max_nesting_depth}')
        token = _nesting_depth.set(depth + 1)
        try:
            return cls._read_records(as_buffer(buffer), options, options.max_nesting_depth - depth)
        finally:
            _nesting_depth.reset(token)

    @classmethod
    def _read_records(cls, buffer: BytesIO, options: DecodeOptions, depth_left: int) -> Self:
        instance = super().__new__(cls)
        for field in cls._fields_.values():
            field.initialize(instance)
        unknown_fields = []
        while remaining(buffer) > 0:
            tag, wire_type = read_key(buffer)
            field = cls._tags_.get(tag, None)
            if field is None:
                data = skip_field(buffer, tag, wire_type, max_depth=depth_left)
                if options.preserve_unknown_fields:
                    unknown_fields.append(UnknownField(tag, wire_type, data))
                continue
            try:
                field.from_wire(instance, wire_type, buffer)
            except CodecError as exc:
                raise _contextualize(exc, f'Failed to read the {cls.__qualname__}.{field.name} field from wire') from exc
        instance.__dict__['_unknown_fields_'] = unknown_fields
        return instance

    def to_wire(self) -> bytes:
        known = b''.join(field.to_wire(self) for field in self._fields_.values())
        return known + b''.join(unknown.to_wire() for unknown in self.__dict__['_unknown_fields_'])

    def wire_length(self) -> int:
        known = sum(field.wire_length(self) for field in self._fields_.values())
        return known + sum(unknown.wire_length() for unknown in self.__dict__['_unknown_fields_'])


# Helpers

def _contextualize[E: CodecError](exc: E, context: str) -> E:
    # Prefix the error message with context information, while preserving the exception type and attributes.
    error = copy(exc)
    error.args = (f'{context}: {exc}',)
    return error


def _adapter_for[T](kind: type[WireAdapter[T]] | type[enum.IntEnum]) -> type[WireAdapter[T]]:
    if isinstance(kind, type) and issubclass(kind, enum.IntEnum):
        return cast(type[WireAdapter[T]], make_enum_adapter(kind))
    if not isinstance(kind, WireAdapter):
        raise TypeError(f'{reprproxy(kind)!r} is neither a wire adapter nor an IntEnum')
    if kind._abstract_:
        raise TypeError(f'Cannot use abstract adapter {kind.__qualname__!r} (need to select a concrete implementation of it, usually one that defines its size)')
    return kind


def _type_mismatch(instance: Message, field: 'FieldDescriptor', expected: WireType, received: WireType) -> TypeMismatch:
    name = f'{instance.__class__.__qualname__}.{field.name}'
    return TypeMismatch(f'Field {name} (tag {field.tag}) expects wire type {expected.name} but got {received.name}', field=name, expected=expected, received=received)


# Field descriptor specifications

class FieldDescriptor(ABC):
    name: str | None
    tag: int
    default: object

    @property
    @abstractmethod
    def annotation(self) -> object: ...

    @property
    def signature_parameter(self) -> Parameter:
        assert self.name is not None  # noqa: S101 (used by type checkers)
        return Parameter(name=self.name, kind=Parameter.KEYWORD_ONLY, annotation=self.annotation, default=self.default)

    def __set_name__(self, owner: type[Message], name: str) -> None:
        if self.name is None:
            self.name = name
        elif name != self.name:
            raise TypeError(f'Cannot assign the same {self.__class__.__qualname__!r} to two different names: {self.name!r} and {name!r}')

    def _get_value(self, instance: Message) -> object:
        if self.name is None:
            raise TypeError(f'Cannot use {self.__class__.__qualname__!r} instance without calling __set_name__ on it.')
        try:
            return instance.__dict__[self.name]
        except KeyError as exc:
            raise AttributeError(f'Attribute {self.name!r} of object {instance.__class__.__qualname__!r} is not set') from exc

    @abstractmethod
    def initialize(self, instance: Message) -> None:
        """Set the field to its default value on an instance that is being read from wire"""

    @abstractmethod
    def from_wire(self, instance: Message, wire_type: WireType, buffer: BytesIO) -> None: ...

    @abstractmethod
    def to_wire(self, instance: Message) -> bytes: ...

    @abstractmethod
    def wire_length(self, instance: Message) -> int: ...

    @abstractmethod
    def merge(self, instance: Message, other: Message) -> None: ...


# Field descriptor implementations

class Field[T](FieldDescriptor):
    """
    A scalar field.

    By default the field has implicit presence: its default is the zero value
    of its type and it's omitted from the wire while it has that value. With
    optional=True the field has explicit presence: it defaults to None, which
    means absent, and any other value is written to the wire, even a zero value.
    With required=True the field defaults to the zero value of its type and is
    always written to the wire.
    """

    @overload
    def __init__(self, tag: int, kind: type[WireAdapter[T]], /, *, optional: bool = ..., required: bool = ...) -> None: ...

    @overload
    def __init__(self, tag: int, kind: type[enum.IntEnum], /, *, optional: bool = ..., required: bool = ...) -> None: ...

    def __init__(self, tag: int, kind: type[WireAdapter[T]] | type[enum.IntEnum], /, *, optional: bool = False, required: bool = False) -> None:
        if optional and required:
            raise TypeError('A field cannot be both optional and required')
        self.name = None
        self.tag = tag
        self.kind = kind
        self.optional = optional
        self.required = required
        self.adapter = _adapter_for(kind)
        if optional:
            self.default = None
        elif self.adapter._default_ is None:
            raise TypeError(f'A field of type {reprproxy(kind)!r} has no zero value and must be declared optional')
        else:
            self.default = self.adapter._default_
        self.key = encode_key(tag, self.adapter._wire_type_)

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}({self.tag!r}, {reprproxy(self.kind)!r}, optional={self.optional!r}, required={self.required!r})'

    @property
    def annotation(self) -> object:
        return self.kind

    @overload
    def __get__(self, instance: None, owner: type[Message]) -> Self: ...

    @overload
    def __get__(self, instance: Message, owner: type[Message] | None = None) -> T: ...

    def __get__(self, instance: Message | None, owner: type[Message] | None = None) -> Self | T:
        if instance is None:
            return self
        return cast(T, self._get_value(instance))

    def __set__(self, instance: Message, value: T | None) -> None:
        if self.name is None:
            raise TypeError(f'Cannot use {self.__class__.__qualname__!r} instance without calling __set_name__ on it.')
        if value is None:
            if not self.optional:
                raise TypeError(f'The {self.name!r} field of {instance.__class__.__qualname__!r} is not optional and cannot be set to None')
            instance.__dict__[self.name] = None
        else:
            instance.__dict__[self.name] = self.adapter.validate(value)

    def __delete__(self, instance: Message) -> None:
        # deleting a field resets it to its default (which is absent for optional fields)
        self.initialize(instance)

    def _is_present(self, value: T | None) -> bool:
        if self.required:
            return True
        if self.optional:
            return value is not None
        return not self.adapter.is_default(value)

    def initialize(self, instance: Message) -> None:
        assert self.name is not None  # noqa: S101 (used by type checkers)
        instance.__dict__[self.name] = self.default

    def from_wire(self, instance: Message, wire_type: WireType, buffer: BytesIO) -> None:
        assert self.name is not None  # noqa: S101 (used by type checkers)
        if wire_type != self.adapter._wire_type_:
            raise _type_mismatch(instance, self, self.adapter._wire_type_, wire_type)
        instance.__dict__[self.name] = self.adapter.from_wire(buffer)

    def to_wire(self, instance: Message) -> bytes:
        value = self.__get__(instance)
        if not self._is_present(value):
            return b''
        return self.key + self.adapter.to_wire(value)

    def wire_length(self, instance: Message) -> int:
        value = self.__get__(instance)
        if not self._is_present(value):
            return 0
        return len(self.key) + self.adapter.wire_length(value)

    def merge(self, instance: Message, other: Message) -> None:
        assert self.name is not None  # noqa: S101 (used by type checkers)
        value = self.__get__(other)
        if self._is_present(value):
            instance.__dict__[self.name] = value


class MessageField[M: Message](FieldDescriptor):
    """
    A nested message, owned by the containing message.

    By default None means absent. With required=True the field always holds a
    message, which starts out empty and is always written to the wire.
    """

    def __init__(self, tag: int, message_type: type[M], /, *, required: bool = False) -> None:
        if not issubclass(message_type, Message):
            raise TypeError(f'The type of a message field must be a Message subclass, not {reprproxy(message_type)!r}')
        self.name = None
        self.tag = tag
        self.type = message_type
        self.required = required
        self.key = encode_key(tag, WireType.LEN)

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}({self.tag!r}, {reprproxy(self.type)!r}, required={self.required!r})'

    @property
    def annotation(self) -> object:
        return self.type if self.required else self.type | None

    @property
    def default(self) -> M | None:  # type: ignore[override]
        return self.type() if self.required else None

    @overload
    def __get__(self, instance: None, owner: type[Message]) -> Self: ...

    @overload
    def __get__(self, instance: Message, owner: type[Message] | None = None) -> M | None: ...

    def __get__(self, instance: Message | None, owner: type[Message] | None = None) -> Self | M | None:
        if instance is None:
            return self
        return cast(M | None, self._get_value(instance))

    def __set__(self, instance: Message, value: M | None) -> None:
        if self.name is None:
            raise TypeError(f'Cannot use {self.__class__.__qualname__!r} instance without calling __set_name__ on it.')
        if value is None:
            if self.required:
                raise TypeError(f'The {self.name!r} field of {instance.__class__.__qualname__!r} is required and cannot be set to None')
        elif not isinstance(value, self.type):
            raise TypeError(f'The value for the {self.name!r} field should be of type {self.type.__qualname__!r}')
        instance.__dict__[self.name] = value

    def __delete__(self, instance: Message) -> None:
        self.initialize(instance)

    def initialize(self, instance: Message) -> None:
        assert self.name is not None  # noqa: S101 (used by type checkers)
        instance.__dict__[self.name] = self.default

    def from_wire(self, instance: Message, wire_type: WireType, buffer: BytesIO) -> None:
        assert self.name is not None  # noqa: S101 (used by type checkers)
        if wire_type != WireType.LEN:
            raise _type_mismatch(instance, self, WireType.LEN, wire_type)
        value = self.type.from_wire(read_length_delimited(buffer, what=f'the {self.type.__qualname__} message'))
        existing = instance.__dict__[self.name]
        if existing is None:
            instance.__dict__[self.name] = value
        else:
            existing.merge_from(value)

    def to_wire(self, instance: Message) -> bytes:
        value = self.__get__(instance)
        if value is None:
            return b''
        data = value.to_wire()
        return self.key + encode_varint(len(data)) + data

    def wire_length(self, instance: Message) -> int:
        value = self.__get__(instance)
        if value is None:
            return 0
        length = value.wire_length()
        return len(self.key) + varint_length(length) + length

    def merge(self, instance: Message, other: Message) -> None:
        assert self.name is not None  # noqa: S101 (used by type checkers)
        value = self.__get__(other)
        if value is None:
            return
        existing = instance.__dict__[self.name]
        if existing is None:
            instance.__dict__[self.name] = deepcopy(value)
        else:
            existing.merge_from(value)


class RepeatedField[T](FieldDescriptor):
    """
    An ordered sequence of scalars or messages.

    Scalars with a numeric wire type are written packed in a single length
    delimited record. When reading, both the packed and the unpacked forms
    are accepted, in any combination, and the values keep the order in which
    they are found.
    """

    @overload
    def __init__(self, tag: int, kind: type[WireAdapter[T]], /) -> None: ...

    @overload
    def __init__(self, tag: int, kind: type[enum.IntEnum], /) -> None: ...

    @overload
    def __init__(self, tag: int, kind: type[Message], /) -> None: ...

    def __init__(self, tag: int, kind: type[WireAdapter[T]] | type[enum.IntEnum] | type[Message], /) -> None:
        self.name = None
        self.tag = tag
        self.kind = kind
        self.default = ()
        if isinstance(kind, type) and issubclass(kind, Message):
            self.message_type: type[Message] | None = kind
            self.adapter: type[WireAdapter[T]] | None = None
            self.packed = False
            self.key = encode_key(tag, WireType.LEN)
        else:
            self.message_type = None
            self.adapter = _adapter_for(kind)
            self.packed = self.adapter._packable_
            self.key = encode_key(tag, WireType.LEN if self.packed else self.adapter._wire_type_)

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}({self.tag!r}, {reprproxy(self.kind)!r})'

    @property
    def annotation(self) -> object:
        return list[self.kind]  # type: ignore[name-defined]

    @overload
    def __get__(self, instance: None, owner: type[Message]) -> Self: ...

    @overload
    def __get__(self, instance: Message, owner: type[Message] | None = None) -> list[T]: ...

    def __get__(self, instance: Message | None, owner: type[Message] | None = None) -> Self | list[T]:
        if instance is None:
            return self
        return cast(list[T], self._get_value(instance))

    def __set__(self, instance: Message, values: Sequence[T]) -> None:
        if self.name is None:
            raise TypeError(f'Cannot use {self.__class__.__qualname__!r} instance without calling __set_name__ on it.')
        if isinstance(values, str | bytes | bytearray | memoryview):
            raise TypeError(f'The value for the {self.name!r} field must be a sequence of items, not {values.__class__.__qualname__!r}')
        instance.__dict__[self.name] = [self._validate_item(value) for value in values]

    def __delete__(self, instance: Message) -> None:
        self.initialize(instance)

    def _validate_item(self, value: T) -> T:
        if self.adapter is not None:
            return self.adapter.validate(value)
        assert self.message_type is not None  # noqa: S101 (used by type checkers)
        if not isinstance(value, self.message_type):
            raise TypeError(f'The items of the {self.name!r} field should be of type {self.message_type.__qualname__!r}')
        return value

    def initialize(self, instance: Message) -> None:
        assert self.name is not None  # noqa: S101 (used by type checkers)
        instance.__dict__[self.name] = []

    def from_wire(self, instance: Message, wire_type: WireType, buffer: BytesIO) -> None:
        assert self.name is not None  # noqa: S101 (used by type checkers)
        values = instance.__dict__[self.name]
        if self.message_type is not None:
            if wire_type != WireType.LEN:
                raise _type_mismatch(instance, self, WireType.LEN, wire_type)
            values.append(self.message_type.from_wire(read_length_delimited(buffer, what=f'the {self.message_type.__qualname__} message')))
            return
        assert self.adapter is not None  # noqa: S101 (used by type checkers)
        if wire_type == self.adapter._wire_type_:
            values.append(self.adapter.from_wire(buffer))
        elif wire_type == WireType.LEN and self.adapter._packable_:
            packed_buffer = BytesIO(read_length_delimited(buffer, what='the packed values'))
            while remaining(packed_buffer) > 0:
                values.append(self.adapter.from_wire(packed_buffer))
        else:
            raise _type_mismatch(instance, self, self.adapter._wire_type_, wire_type)

    def to_wire(self, instance: Message) -> bytes:
        values = self.__get__(instance)
        if not values:
            return b''
        if self.message_type is not None:
            return b''.join(self.key + encode_varint(len(data)) + data for data in (value.to_wire() for value in values))  # type: ignore[attr-defined]
        assert self.adapter is not None  # noqa: S101 (used by type checkers)
        if self.packed:
            data = b''.join(self.adapter.to_wire(value) for value in values)
            return self.key + encode_varint(len(data)) + data
        return b''.join(self.key + self.adapter.to_wire(value) for value in values)

    def wire_length(self, instance: Message) -> int:
        values = self.__get__(instance)
        if not values:
            return 0
        if self.message_type is not None:
            return sum(len(self.key) + varint_length(length) + length for length in (value.wire_length() for value in values))  # type: ignore[attr-defined]
        assert self.adapter is not None  # noqa: S101 (used by type checkers)
        if self.packed:
            length = sum(self.adapter.wire_length(value) for value in values)
            return len(self.key) + varint_length(length) + length
        return sum(len(self.key) + self.adapter.wire_length(value) for value in values)

    def merge(self, instance: Message, other: Message) -> None:
        assert self.name is not None  # noqa: S101 (used by type checkers)
        instance.__dict__[self.name].extend(deepcopy(self.__get__(other)))


@dataclass_transform(kw_only_default=True, field_specifiers=(Field, MessageField, RepeatedField))
class AnnotatedMessage(Message):
    pass
