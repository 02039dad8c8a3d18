# SPDX-FileCopyrightText: 2020-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

from .xml import AnnotatedXMLElement, Namespace, OptionalDataElement
from .xml.datamodel import PositiveIntegerAdapter, UnsignedIntAdapter

__all__ = 'CodecConfiguration', 'ns_rusk_wire'  # noqa: RUF022


ns_rusk_wire = Namespace('urn:dusk:params:xml:ns:rusk-wire', schema='rusk-wire.rng', prefix=None)


class RuskWireElement(AnnotatedXMLElement, namespace=ns_rusk_wire):
    pass


class CodecConfiguration(RuskWireElement, name='codec-configuration'):
    """The limits and options that apply when converting messages to and from wire data"""

    max_message_size: OptionalDataElement[int] = OptionalDataElement(int, name='max-message-size', adapter=UnsignedIntAdapter, default=4 * 1024 * 1024)
    max_nesting_depth: OptionalDataElement[int] = OptionalDataElement(int, name='max-nesting-depth', adapter=PositiveIntegerAdapter, default=100)
    preserve_unknown_fields: OptionalDataElement[bool] = OptionalDataElement(bool, name='preserve-unknown-fields', default=True)
