# SPDX-FileCopyrightText: 2020-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

from enum import Enum
from types import NoneType, UnionType

__all__ = 'reprproxy',  # noqa: COM818


class reprproxy:  # noqa: N801
    """
    A proxy to provide better representation for certain types.

    Enum members are shown as they are written in code, types by their
    qualified name and bytes in hex, which keeps opaque binary payloads
    readable in reprs and error messages.
    """

    def __init__(self, value: object) -> None:
        self.value = value

    def __repr__(self) -> str:
        match self.value:
            case UnionType() as value:
                return ' | '.join('None' if _type is NoneType else reprproxy(_type).__repr__() for _type in value.__args__)
            case Enum() as value:  # this also covers Flag which is a subclass of Enum
                return f'{value.__class__.__qualname__}.{value.name}'
            case type() as value:
                return value.__qualname__
            case bytes() as value if value.__class__ is bytes:
                return f'bytes.fromhex({value.hex()!r})' if value else "b''"
            case value:
                return repr(value)

    __str__ = __repr__
