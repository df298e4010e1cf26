#!/usr/bin/env python
from collections.abc import Iterable
from typing import ClassVar
from typing import List
from typing import Optional
from typing import Union

from lxml import etree
from lxml.etree import _Element

from caldav_sync.lib.namespace import nsmap


class BaseElement:
    """
    Small builder for WebDAV request bodies.  Elements are combined
    with ``+``::

        dav.SyncCollection() + [dav.SyncToken(token), dav.SyncLevel("1")]
    """

    tag: ClassVar[Optional[str]] = None

    def __init__(
        self, name: Optional[str] = None, value: Union[str, bytes, None] = None
    ) -> None:
        self.children: List["BaseElement"] = []
        self.attributes: dict = {}
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        self.value: Optional[str] = value
        if name is not None:
            self.attributes["name"] = name

    def __add__(
        self, other: Union["BaseElement", Iterable["BaseElement"]]
    ) -> "BaseElement":
        return self.append(other)

    def __str__(self) -> str:
        return self.tostring(pretty_print=True).decode("utf-8")

    def xmlelement(self) -> _Element:
        if self.tag is None:
            raise ValueError("Unexpected value None for self.tag")
        root = etree.Element(self.tag, nsmap=nsmap)
        if self.value is not None:
            root.text = self.value
        for k, v in self.attributes.items():
            root.set(k, v)
        for child in self.children:
            root.append(child.xmlelement())
        return root

    def tostring(self, pretty_print: bool = False) -> bytes:
        return etree.tostring(
            self.xmlelement(),
            encoding="utf-8",
            xml_declaration=True,
            pretty_print=pretty_print,
        )

    def append(
        self, element: Union["BaseElement", Iterable["BaseElement"]]
    ) -> "BaseElement":
        if isinstance(element, BaseElement):
            self.children.append(element)
        else:
            self.children.extend(element)
        return self


class NamedBaseElement(BaseElement):
    def __init__(self, name: Optional[str] = None) -> None:
        super().__init__(name=name)

    def xmlelement(self) -> _Element:
        if self.attributes.get("name") is None:
            raise ValueError("name attribute must be defined")
        return super().xmlelement()


class ValuedBaseElement(BaseElement):
    def __init__(self, value: Union[str, bytes, None] = None) -> None:
        super().__init__(value=value)
