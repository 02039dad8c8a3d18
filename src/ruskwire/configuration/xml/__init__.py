# SPDX-FileCopyrightText: 2020-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from inspect import Parameter, Signature
from os import PathLike, fspath
from typing import ClassVar, Self, cast, dataclass_transform, overload

from lxml import etree

from .datamodel import BooleanAdapter, DataAdapter
from .schema import get_validator

__all__ = (  # noqa: RUF022
    'Namespace',
    'XMLElement',
    'AnnotatedXMLElement',
    'OptionalDataElement',
)


# noinspection PyProtectedMember
type ETreeElement = etree._Element  # noqa: SLF001
type NSMap = dict[str | None, str]
type XMLData = str | int | bool


class Namespace(str):
    __slots__ = 'prefix', 'schema'

    prefix: str | None
    schema: str | None

    def __new__(cls, namespace: str, /, *, prefix: str | None = None, schema: str | None = None) -> Self:
        self = super().__new__(cls, namespace)
        self.prefix = prefix
        self.schema = schema
        return self

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}({super().__repr__()}, prefix={self.prefix!r}, schema={self.schema!r})'

    def __setattr__(self, name: str, value: object, /) -> None:
        if name in self.__slots__ and hasattr(self, name):
            raise AttributeError(f'{self.__class__.__name__} object attribute {name!r} is read-only')
        return super().__setattr__(name, value)


# The parser used for configuration documents. It never fetches anything from the network and does not expand entities.
_parser = etree.XMLParser(remove_blank_text=True, resolve_entities=False, no_network=True)


class XMLElement:  # noqa: PLW1641
    # Public attributes. These can either be overwritten by subclasses, or preferably specified via class parameters:
    #
    # class MyElement(XMLElement, name=..., namespace=...):
    #     ...

    _name_: ClassVar[str | None] = None
    _namespace_: ClassVar[Namespace | None] = None

    # Derived and internal attributes (these should not be overwritten in subclasses)

    _etree_element_: ETreeElement

    _tag_: ClassVar[str | None] = None
    _qualname_: ClassVar[str | None] = None
    _nsmap_: ClassVar[NSMap | None] = None

    _fields_: ClassVar[dict[str, 'FieldDescriptor']] = {}

    __signature__: ClassVar[Signature] = Signature()

    _all_arguments: ClassVar[frozenset[str]] = frozenset()

    def __new__(cls, **kw: object) -> Self:
        if cls._tag_ is None:
            raise TypeError(f'Cannot instantiate abstract class {cls.__qualname__!r} that does not specify a name and namespace')
        if not cls._all_arguments.issuperset(kw):
            raise TypeError(f'got an unexpected keyword argument {next(iter(set(kw) - cls._all_arguments))!r}')
        return super().__new__(cls)

    def __init__(self, **kw: object) -> None:
        self._etree_element_ = etree.Element(self._tag_, nsmap=self._nsmap_)  # type: ignore[arg-type]  # lxml stubs are a mess
        for name, value in kw.items():
            setattr(self, name, value)

    def __init_subclass__(cls, name: str | None = None, namespace: Namespace | None = None, **kw: object) -> None:
        super().__init_subclass__(**kw)

        if name is not None:
            cls._name_ = name
        if namespace is not None:
            cls._namespace_ = namespace

        if cls._name_ is not None:
            if cls._namespace_ is not None:
                cls._tag_ = f'{{{cls._namespace_}}}{cls._name_}'
                cls._qualname_ = f'{cls._namespace_.prefix}:{cls._name_}' if cls._namespace_.prefix is not None else cls._name_
                cls._nsmap_ = {cls._namespace_.prefix: cls._namespace_}
            else:
                cls._tag_ = cls._name_
                cls._qualname_ = cls._name_
                cls._nsmap_ = None

        # all the fields on this element (both inherited and locally defined)
        cls._fields_ = cls._fields_ | {name: value for name, value in cls.__dict__.items() if isinstance(value, FieldDescriptor)}

        cls.__signature__ = Signature(parameters=[descriptor.signature_parameter for descriptor in cls._fields_.values()])
        cls._all_arguments = frozenset(cls.__signature__.parameters)

    def __repr__(self) -> str:
        return f'{self.__class__.__qualname__}({', '.join(f'{name}={getattr(self, name)!r}' for name in self._fields_)})'

    def __eq__(self, other: object) -> bool:
        if isinstance(other, XMLElement):
            return self.__class__ is other.__class__ and all(getattr(self, name) == getattr(other, name) for name in self._fields_)
        return NotImplemented

    @classmethod
    def from_xml(cls, element: ETreeElement) -> Self:
        if cls._tag_ is None:
            raise TypeError(f'Cannot instantiate abstract class {cls.__qualname__} that does not specify a name and namespace')
        if element.tag != cls._tag_:
            raise TypeError(f'The etree element tag does not match the {cls.__qualname__} element tag: {element.tag!r} != {cls._tag_!r}')
        instance = super().__new__(cls)
        instance._etree_element_ = element
        for field in instance._fields_.values():
            field.from_xml(instance)
        return instance

    @classmethod
    def from_string(cls, data: str | bytes) -> Self:
        """Create an element from an XML document, validating it against its namespace schema if it has one"""
        try:
            element = etree.fromstring(data, parser=_parser)
        except etree.XMLSyntaxError as exc:
            raise ValueError(f'Invalid XML document: {exc}') from exc
        return cls._from_document(element)

    @classmethod
    def from_file(cls, path: str | PathLike[str]) -> Self:
        try:
            element = etree.parse(fspath(path), parser=_parser).getroot()
        except etree.XMLSyntaxError as exc:
            raise ValueError(f'Invalid XML document: {exc}') from exc
        return cls._from_document(element)

    @classmethod
    def _from_document(cls, element: ETreeElement) -> Self:
        if cls._tag_ is None:
            raise TypeError(f'Cannot instantiate abstract class {cls.__qualname__} that does not specify a name and namespace')
        if element.tag != cls._tag_:
            raise TypeError(f'The etree element tag does not match the {cls.__qualname__} element tag: {element.tag!r} != {cls._tag_!r}')
        if cls._namespace_ is not None and cls._namespace_.schema is not None:
            get_validator(cls._namespace_.schema).validate(element)
        return cls.from_xml(element)

    def to_string(self, *, pretty_print: bool = True) -> str:
        return etree.tostring(self._etree_element_, encoding='unicode', pretty_print=pretty_print)


# Field descriptor specifications

class FieldDescriptor[F](ABC):
    name: str | None
    type: type[F]

    @property
    @abstractmethod
    def signature_parameter(self) -> Parameter: ...

    @abstractmethod
    def from_xml(self, instance: XMLElement) -> None:
        """Fill in the instance's field value from its corresponding etree element"""


@dataclass
class DataElementValue[D: XMLData]:  # noqa: PLW1641
    value: D
    element: ETreeElement

    def __eq__(self, other: object) -> bool:
        if isinstance(other, DataElementValue):
            return self.value == other.value
        return NotImplemented


# Field descriptor implementations

class OptionalDataElement[D: XMLData](FieldDescriptor[D]):
    """A child element holding a single value, which takes the default value while the element is missing"""

    xml_name: str
    xml_namespace: Namespace | None
    xml_tag: str
    xml_qualname: str

    xml_parse: Callable[[str], D]
    xml_build: Callable[[D], str]

    def __init__(self, data_type: type[D], /, *, namespace: Namespace | None = None, name: str | None = None, default: D | None = None, adapter: type[DataAdapter[D]] | None = None) -> None:
        self.name = None
        self.type = data_type
        self.xml_name = name or ''
        self.xml_namespace = namespace
        self.default = default
        self.adapter = adapter

        if adapter is None and issubclass(data_type, bool):
            adapter = cast(type[DataAdapter[D]], BooleanAdapter)

        if adapter is not None:
            self.xml_parse = adapter.xml_parse
            self.xml_build = adapter.xml_build
        else:
            self.xml_parse = data_type
            self.xml_build = str

        self._update_tag()

    def __repr__(self) -> str:
        name = self.xml_name if self.xml_name != self.name else None
        adapter_name = self.adapter.__qualname__ if self.adapter else None
        return f'{self.__class__.__name__}({self.type.__name__}, namespace={self.xml_namespace!r}, {name=}, default={self.default!r}, adapter={adapter_name})'

    def _update_tag(self) -> None:
        self.xml_tag = f'{{{self.xml_namespace}}}{self.xml_name}' if self.xml_namespace is not None else self.xml_name
        self.xml_qualname = f'{self.xml_namespace.prefix}:{self.xml_name}' if self.xml_namespace is not None and self.xml_namespace.prefix is not None else self.xml_name

    @property
    def signature_parameter(self) -> Parameter:
        assert self.name is not None  # noqa: S101 (used by type checkers)
        return Parameter(name=self.name, kind=Parameter.KEYWORD_ONLY, annotation=self.type | None, default=self.default)

    def __set_name__(self, owner: type[XMLElement], name: str) -> None:
        if not issubclass(owner, XMLElement):  # static type analysis does not catch this
            raise TypeError(f'Can only use {self.__class__.__qualname__} descriptors on XMLElement objects')
        if self.name is None:
            self.name = name
            self.xml_name = self.xml_name or name
            self.xml_namespace = self.xml_namespace or owner._namespace_
            self._update_tag()
        elif name != self.name:
            raise TypeError(f'cannot assign the same {self.__class__.__name__} descriptor to two different names: {self.name} and {name}')

    @overload
    def __get__(self, instance: None, owner: type[XMLElement]) -> Self: ...

    @overload
    def __get__(self, instance: XMLElement, owner: type[XMLElement] | None = None) -> D | None: ...

    def __get__(self, instance: XMLElement | None, owner: type[XMLElement] | None = None) -> Self | D | None:
        if instance is None:
            return self
        assert self.name is not None  # noqa: S101 (used by type checkers)
        data_element = instance.__dict__.get(self.name, None)
        return self.default if data_element is None else data_element.value

    def __set__(self, instance: XMLElement, value: D | None) -> None:
        assert self.name is not None  # noqa: S101 (used by type checkers)
        if value is None:
            self.__delete__(instance)
            return
        if not isinstance(value, self.type) or (self.type is int and isinstance(value, bool)):
            raise TypeError(f'value must be of type {self.type.__qualname__}')
        xml_value = self.xml_build(value)
        data_element = instance.__dict__.get(self.name, None)
        if data_element is None:
            data_element = DataElementValue(value, etree.SubElement(instance._etree_element_, self.xml_tag))
            instance.__dict__[self.name] = data_element
        data_element.value = value
        data_element.element.text = xml_value

    def __delete__(self, instance: XMLElement) -> None:
        assert self.name is not None  # noqa: S101 (used by type checkers)
        data_element = instance.__dict__.pop(self.name, None)
        if data_element is not None:
            instance._etree_element_.remove(data_element.element)

    def from_xml(self, instance: XMLElement) -> None:
        assert self.name is not None  # noqa: S101 (used by type checkers)
        elements = [element for element in instance._etree_element_ if element.tag == self.xml_tag]
        if len(elements) > 1:
            raise ValueError(f'Excess elements for {self.xml_qualname!r}')
        if not elements:
            instance.__dict__.pop(self.name, None)
            return
        element = elements[0]
        try:
            instance.__dict__[self.name] = DataElementValue(self.xml_parse(element.text or ''), element)
        except ValueError as exc:
            raise ValueError(f'Invalid value for element {self.xml_qualname!r}: {exc!s}') from exc


@dataclass_transform(kw_only_default=True, field_specifiers=(OptionalDataElement,))
class AnnotatedXMLElement(XMLElement):
    """
    A static type checker friendly variant of XMLElement.

    The element definition needs to include both an annotation and the
    descriptor definition for each of its fields:

      max_nesting_depth: OptionalDataElement[int] = OptionalDataElement(int, name='max-nesting-depth', default=100)

    With these, static type checkers are able to infer the __init__ signature
    and identify problems with the arguments during instance creation.
    """
