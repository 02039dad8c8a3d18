# SPDX-FileCopyrightText: 2020-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

"""
Contract call transactions

   A ledger node hands contract calls over to the contract execution host
   as transactions. A transaction wraps a single contract call, which
   names the contract that should run it, the function that should be
   invoked and carries the call arguments as an opaque payload:

     Transaction
       +-- call: ContractCall
       |     +-- payload            (opaque bytes, forwarded unopened)
       |     +-- contract_id        (32 bytes)
       |     +-- function_selector  (up to 255 bytes)
       +-- signature                (opaque bytes)

   Messages are encoded using the protocol buffers binary wire format, so
   that they can be exchanged with any peer that implements the same
   schema. Every field is a record that starts with a key made of its tag
   and wire type, followed by its value:

     +---------------------+---------------------+
     | varint(tag << 3|wt) |        value        |
     +---------------------+---------------------+

   Fields with tags that are not known to a message are skipped when
   decoding and are kept, so they can be written back unchanged when
   the message is encoded again. This allows nodes running an older
   version of the schema to relay messages produced with a newer one.
"""

from typing import Self

from .datamodel import BytesAdapter, FixedBytesAdapter
from .elements import AnnotatedMessage, Field, Message, MessageField, UnknownField
from .exceptions import CodecError, MalformedInput, MalformedVarint, MessageTooLarge, TruncatedInput, TypeMismatch

__all__ = (  # noqa: RUF022
    # Types

    'ContractID',
    'FunctionSelector',

    # Messages

    'Message',
    'UnknownField',
    'ContractCall',
    'Transaction',
    'ContractCallTx',

    # Exceptions

    'CodecError',
    'TruncatedInput',
    'MalformedVarint',
    'TypeMismatch',
    'MalformedInput',
    'MessageTooLarge',
)


# Types

class ContractID(bytes):
    """The 32 byte identifier of a deployed contract"""

    def __repr__(self) -> str:
        return f'<{self.__class__.__qualname__}: {self.hex()}>'

    @classmethod
    def from_hex(cls, value: str) -> Self:
        return cls(bytes.fromhex(value))


class FunctionSelector(bytes):
    """Names the function that a contract call invokes (usually a short function name)"""

    def __repr__(self) -> str:
        return f'<{self.__class__.__qualname__}: {self.hex()}>'


class ContractIDAdapter(FixedBytesAdapter, type=ContractID, size=32):
    pass


class FunctionSelectorAdapter(BytesAdapter, type=FunctionSelector, maxsize=255):
    pass


# Messages

class ContractCall(AnnotatedMessage):
    payload: Field[bytes] = Field(1, BytesAdapter)
    contract_id: Field[ContractID] = Field(2, ContractIDAdapter, optional=True)
    function_selector: Field[FunctionSelector] = Field(3, FunctionSelectorAdapter, optional=True)


class Transaction(AnnotatedMessage):
    call: MessageField[ContractCall] = MessageField(1, ContractCall)
    signature: Field[bytes] = Field(2, BytesAdapter, optional=True)


ContractCallTx = Transaction
