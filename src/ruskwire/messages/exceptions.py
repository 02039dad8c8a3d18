# SPDX-FileCopyrightText: 2020-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later


__all__ = 'CodecError', 'TruncatedInput', 'MalformedVarint', 'TypeMismatch', 'MalformedInput', 'MessageTooLarge'  # noqa: RUF022


class CodecError(ValueError):
    """Base class for all the errors raised while converting messages to and from wire data."""


class TruncatedInput(CodecError):
    """Raised when the input ends before a declared length is satisfied."""


class MalformedVarint(TruncatedInput):
    """Raised when a variable width integer does not terminate within its maximum length."""


class TypeMismatch(CodecError):
    """Raised when the wire type of a known field contradicts its declared type."""

    def __init__(self, message: str, /, *, field: str | None = None, expected: object = None, received: object = None) -> None:
        super().__init__(message)
        self.field = field
        self.expected = expected
        self.received = received


class MalformedInput(CodecError):
    """Raised when the input is structurally invalid."""


class MessageTooLarge(CodecError):
    """Raised when a message exceeds the configured maximum size."""
