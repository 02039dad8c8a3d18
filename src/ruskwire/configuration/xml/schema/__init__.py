# SPDX-FileCopyrightText: 2020-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

from functools import cache
from pathlib import Path
from typing import Protocol

from lxml import etree

__all__ = 'RelaxNGValidator', 'Validator', 'get_validator'


type ETreeElement = etree._Element  # noqa: SLF001


class Validator(Protocol):
    def validate(self, element: ETreeElement) -> None: ...


class RelaxNGValidator:
    """Validates documents against a RelaxNG schema that lives in this directory"""

    schema_directory = Path(__file__).parent

    def __init__(self, schema_file: str) -> None:
        self.schema_path = self.schema_directory / schema_file
        self.schema = etree.RelaxNG(file=self.schema_path)

    def __repr__(self) -> str:
        return f'{self.__class__.__qualname__}({self.schema_path.name!r})'

    def __eq__(self, other: object) -> bool:
        if isinstance(other, RelaxNGValidator):
            return self.schema_path == other.schema_path
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.schema_path)

    def validate(self, element: ETreeElement) -> None:
        if not self.schema.validate(element):
            error = self.schema.error_log.last_error
            raise ValueError(f'The document does not conform to the {self.schema_path.name} schema: {error.message if error is not None else "unknown error"}')


@cache
def get_validator(schema_file: str) -> RelaxNGValidator:
    return RelaxNGValidator(schema_file)
