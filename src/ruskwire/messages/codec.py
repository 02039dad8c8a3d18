# SPDX-FileCopyrightText: 2020-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

from collections.abc import Iterator
from io import BytesIO

from ruskwire.configuration import CodecConfiguration
from ruskwire.python.contextvars import ContextSpec

from .datamodel import WireData, as_buffer, encode_varint, read_bytes, read_varint, remaining
from .elements import DecodeOptions, Message, decode_options
from .exceptions import MalformedInput, MessageTooLarge

__all__ = 'Codec', 'decode', 'decode_stream', 'encode'


class Codec:
    """
    Converts messages to and from length delimited frames.

    A frame is the wire representation of a message prefixed with its
    length as a varint, which is how messages are exchanged when they
    are sent one after another over a stream. A codec holds no state
    besides its configuration and can be shared between threads.
    """

    def __init__(self, configuration: CodecConfiguration | None = None) -> None:
        self.configuration = configuration if configuration is not None else CodecConfiguration()

    def __repr__(self) -> str:
        return f'{self.__class__.__qualname__}({self.configuration!r})'

    @property
    def decode_options(self) -> DecodeOptions:
        configuration = self.configuration
        return DecodeOptions(max_nesting_depth=configuration.max_nesting_depth, preserve_unknown_fields=configuration.preserve_unknown_fields)  # type: ignore[arg-type]

    @property
    def max_message_size(self) -> int:
        return self.configuration.max_message_size  # type: ignore[return-value]

    def encode(self, message: Message) -> bytes:
        body = message.to_wire()
        if len(body) > self.max_message_size:
            raise MessageTooLarge(f'The {message.__class__.__qualname__} message is too large ({len(body)} > {self.max_message_size})')
        return encode_varint(len(body)) + body

    def decode[M: Message](self, message_type: type[M], data: WireData) -> M:
        """Decode a message from data, which must contain exactly one frame"""
        buffer = as_buffer(data)
        message = self._read_frame(message_type, buffer)
        if remaining(buffer) > 0:
            raise MalformedInput(f'Found {remaining(buffer)} bytes of trailing data after the {message_type.__qualname__} message')
        return message

    def decode_stream[M: Message](self, message_type: type[M], data: WireData) -> Iterator[M]:
        """Decode consecutive frames from data, until it is exhausted"""
        buffer = as_buffer(data)
        while remaining(buffer) > 0:
            yield self._read_frame(message_type, buffer)

    def _read_frame[M: Message](self, message_type: type[M], buffer: BytesIO) -> M:
        length = read_varint(buffer)
        if length > self.max_message_size:
            raise MessageTooLarge(f'The {message_type.__qualname__} message is too large ({length} > {self.max_message_size})')
        body = read_bytes(buffer, length, what=f'the {message_type.__qualname__} message')
        context_spec = ContextSpec({decode_options: self.decode_options})
        return context_spec.run(message_type.from_wire, body)


_default_codec = Codec()


def encode(message: Message) -> bytes:
    return _default_codec.encode(message)


def decode[M: Message](message_type: type[M], data: WireData) -> M:
    return _default_codec.decode(message_type, data)


def decode_stream[M: Message](message_type: type[M], data: WireData) -> Iterator[M]:
    return _default_codec.decode_stream(message_type, data)
