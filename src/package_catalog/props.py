# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Property Documents

Single responsibility: Read PropertyList XML documents into a generic tree.

Catalog documents and package filters share this hierarchical key/value
format: every element is a node, leaf elements carry a text value, and a
name may repeat (document order is kept).
"""

import xml.etree.ElementTree as ET
from typing import Iterator, List, Optional

from package_catalog.core.errors import PropertyParseError

_TRUE_VALUES = {"true", "1", "yes"}


class PropertyNode:
    """One node of a property document"""

    def __init__(self, name: str, value: Optional[str] = None):
        self.name = name
        self.value = value
        self.children: List["PropertyNode"] = []

    def __repr__(self) -> str:
        return f"PropertyNode({self.name!r}, value={self.value!r}, children={len(self.children)})"

    def __iter__(self) -> Iterator["PropertyNode"]:
        return iter(self.children)

    def add_child(self, name: str, value: Optional[str] = None) -> "PropertyNode":
        """Append a child node and return it"""
        child = PropertyNode(name, value)
        self.children.append(child)
        return child

    def has_child(self, name: str) -> bool:
        return any(c.name == name for c in self.children)

    def get_child(self, name: str) -> Optional["PropertyNode"]:
        """First child called `name`, or None"""
        for child in self.children:
            if child.name == name:
                return child
        return None

    def get_children(self, name: str) -> List["PropertyNode"]:
        return [c for c in self.children if c.name == name]

    def get_string(self, name: str, default: str = "") -> str:
        child = self.get_child(name)
        if child is None or child.value is None:
            return default
        return child.value

    def get_int(self, name: str, default: int = 0) -> int:
        """
        Integer value of child `name`.

        Raises:
            ValueError: If the child exists but is not an integer
        """
        child = self.get_child(name)
        if child is None or not child.value:
            return default
        return int(child.value)

    def get_bool(self, name: str, default: bool = False) -> bool:
        child = self.get_child(name)
        if child is None or child.value is None:
            return default
        return child.value.strip().lower() in _TRUE_VALUES

    @property
    def is_leaf(self) -> bool:
        return not self.children


def _from_element(element: ET.Element) -> PropertyNode:
    node = PropertyNode(element.tag)
    for child in element:
        node.children.append(_from_element(child))

    if not node.children:
        node.value = (element.text or "").strip()
    return node


def read_properties(data: bytes) -> PropertyNode:
    """
    Parse a PropertyList document.

    Args:
        data: Raw document bytes

    Returns:
        Root node (its name is the document element, usually PropertyList)

    Raises:
        PropertyParseError: If the document is not well-formed
    """
    try:
        element = ET.fromstring(data)
    except ET.ParseError as e:
        raise PropertyParseError(f"Malformed property document: {e}")
    return _from_element(element)
