# SPDX-FileCopyrightText: 2020-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

"""
Messages used to store phoenix notes and transactions on the contract execution host

All the fields of these messages that are not repeated are required, so they are
always written to the wire, even when they hold their zero value.
"""

from enum import IntEnum

from .datamodel import BooleanAdapter, BytesAdapter, UInt64Adapter
from .elements import AnnotatedMessage, Field, MessageField, RepeatedField

__all__ = (  # noqa: RUF022
    'NoteType',
    'Status',

    'Scalar',
    'CompressedPoint',
    'SecretKey',
    'ViewKey',
    'PublicKey',
    'Idx',
    'Note',
    'TransactionInput',
    'TransactionOutput',
    'Transaction',
    'StoreTransactionsRequest',
    'StoreTransactionsResponse',
)


class NoteType(IntEnum):
    TRANSPARENT = 0
    OBFUSCATED = 1


class Status(IntEnum):
    OK = 0
    ERROR = 1


# Keys and points

class Scalar(AnnotatedMessage):
    data: Field[bytes] = Field(1, BytesAdapter, required=True)


class CompressedPoint(AnnotatedMessage):
    y: Field[bytes] = Field(1, BytesAdapter, required=True)


class SecretKey(AnnotatedMessage):
    a: MessageField[Scalar] = MessageField(1, Scalar, required=True)
    b: MessageField[Scalar] = MessageField(2, Scalar, required=True)


class ViewKey(AnnotatedMessage):
    a: MessageField[Scalar] = MessageField(1, Scalar, required=True)
    b_g: MessageField[CompressedPoint] = MessageField(2, CompressedPoint, required=True)


class PublicKey(AnnotatedMessage):
    a_g: MessageField[CompressedPoint] = MessageField(1, CompressedPoint, required=True)
    b_g: MessageField[CompressedPoint] = MessageField(2, CompressedPoint, required=True)


# Notes

class Idx(AnnotatedMessage):
    pos: Field[int] = Field(1, UInt64Adapter, required=True)


class Note(AnnotatedMessage):
    note_type: Field[NoteType] = Field(1, NoteType, required=True)
    pos: Field[int] = Field(2, UInt64Adapter, required=True)
    value: Field[int] = Field(3, UInt64Adapter, required=True)
    unspent: Field[bool] = Field(4, BooleanAdapter, required=True)
    raw: Field[bytes] = Field(5, BytesAdapter, required=True)


# Transactions

class TransactionInput(AnnotatedMessage):
    pos: MessageField[Idx] = MessageField(1, Idx, required=True)
    sk: MessageField[SecretKey] = MessageField(2, SecretKey, required=True)


class TransactionOutput(AnnotatedMessage):
    note_type: Field[NoteType] = Field(1, NoteType, required=True)
    pk: MessageField[PublicKey] = MessageField(2, PublicKey, required=True)
    value: Field[int] = Field(3, UInt64Adapter, required=True)


class Transaction(AnnotatedMessage):
    inputs: RepeatedField[TransactionInput] = RepeatedField(1, TransactionInput)
    outputs: RepeatedField[TransactionOutput] = RepeatedField(2, TransactionOutput)


class StoreTransactionsRequest(AnnotatedMessage):
    transactions: RepeatedField[Transaction] = RepeatedField(1, Transaction)


class StoreTransactionsResponse(AnnotatedMessage):
    status: Field[Status] = Field(1, Status, required=True)
    root: MessageField[Scalar] = MessageField(2, Scalar, required=True)
