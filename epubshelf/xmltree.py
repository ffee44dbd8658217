"""Namespace-agnostic XML tree used for OPF/OCF documents.

Producers disagree on prefixes (``dc:title`` vs. a default namespace vs. no
namespace at all), so every tag and attribute is reduced to its local name.
A node is either an :class:`XmlText` run or an :class:`XmlElement` holding its
attributes and ordered children.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Union

from lxml import etree as LXML_ET

from .errors import MalformedPackageError


@dataclass(frozen=True)
class XmlText:
    value: str


@dataclass(frozen=True)
class XmlElement:
    tag: str
    attributes: dict[str, str] = field(default_factory=dict)
    children: tuple["XmlNode", ...] = ()

    @property
    def text(self) -> str:
        return "".join(child.value for child in self.children if isinstance(child, XmlText)).strip()

    def elements(self, tag: Optional[str] = None) -> list["XmlElement"]:
        return [
            child
            for child in self.children
            if isinstance(child, XmlElement) and (tag is None or child.tag == tag)
        ]

    def first(self, tag: str) -> Optional["XmlElement"]:
        for child in self.children:
            if isinstance(child, XmlElement) and child.tag == tag:
                return child
        return None

    def attr(self, name: str, default: Optional[str] = None) -> Optional[str]:
        value = self.attributes.get(name)
        if value is None:
            return default
        value = value.strip()
        return value or default

    def to_data(self) -> Union[str, dict]:
        """Collapse the subtree into plain JSON-compatible values.

        Leaf elements without attributes become their text; everything else
        becomes a dict of attributes, ``#text`` and child tags, where repeated
        sibling tags collapse into a list in document order.
        """
        element_children = self.elements()
        if not self.attributes and not element_children:
            return self.text

        data: dict[str, object] = dict(self.attributes)
        if self.text:
            data["#text"] = self.text
        grouped: dict[str, list] = {}
        for child in element_children:
            grouped.setdefault(child.tag, []).append(child.to_data())
        for tag, values in grouped.items():
            data[tag] = values[0] if len(values) == 1 else values
        return data


XmlNode = Union[XmlText, XmlElement]


def local_name(tag: object) -> str:
    if not tag or not isinstance(tag, str):
        return ""
    if "}" in tag:
        return tag.split("}", 1)[1]
    if ":" in tag:
        return tag.split(":", 1)[1]
    return tag


def from_lxml(node: LXML_ET._Element) -> XmlElement:
    children: list[XmlNode] = []
    if node.text:
        children.append(XmlText(node.text))
    for child in node:
        # comments and processing instructions only contribute their tail
        if isinstance(child.tag, str):
            children.append(from_lxml(child))
        if child.tail:
            children.append(XmlText(child.tail))
    attributes = {local_name(key): str(value) for key, value in node.attrib.items()}
    return XmlElement(tag=local_name(node.tag), attributes=attributes, children=tuple(children))


def parse_xml(raw: bytes) -> XmlElement:
    parser = LXML_ET.XMLParser(resolve_entities=False, no_network=True, recover=True)
    try:
        root = LXML_ET.fromstring(raw, parser=parser)
    except LXML_ET.XMLSyntaxError as exc:
        raise MalformedPackageError(f"Unparseable XML: {exc}") from exc
    if root is None:
        raise MalformedPackageError("Unparseable XML: empty document")
    return from_lxml(root)
