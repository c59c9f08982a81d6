"""Namespace-agnostic mapping of vCloud response documents.

vCloud responses arrive with whatever namespace prefixes the server chose
(``<Catalog>``, ``<vcloud:Catalog>``, ``<ovf:OperatingSystemSection>``...).
Everything in this module matches elements by local name only, so the same
extraction rules work for every prefix a server uses.

Philosophy:
- Standard library only (xml.etree.ElementTree)
- No I/O; the only state is the per-document name table
- Missing optional data is None, never an error
- Only malformed input raises (DocumentParseError)

Public API:
    local_name: Strip "{uri}" or "prefix:" from a qualified name
    LocalNameMatcher: Name matcher built once from a document root
    Document: Parsed document with lookup helpers
    parse_document: Parse raw response text into a Document
    children, first_child, attribute, text, visit, serialize: Element helpers
    parse_timestamp: ISO-8601 timestamp to epoch milliseconds
"""

import logging
import xml.etree.ElementTree as ET
from collections.abc import Callable, Iterator, Mapping
from datetime import datetime, timezone

from vcimage.errors import CloudError, DocumentParseError

__all__ = [
    "Document",
    "Element",
    "LocalNameMatcher",
    "attribute",
    "children",
    "first_child",
    "local_name",
    "parse_document",
    "parse_timestamp",
    "serialize",
    "text",
    "visit",
]

logger = logging.getLogger(__name__)

Element = ET.Element
ElementHandler = Callable[[ET.Element], None]

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def local_name(qualified_name: str) -> str:
    """Return the local part of a qualified element name.

    Handles both ElementTree's expanded form and raw prefixed names.

    Example:
        >>> local_name("{http://www.vmware.com/vcloud/v1.5}Catalog")
        'Catalog'
        >>> local_name("vcloud:Catalog")
        'Catalog'
    """
    if qualified_name.startswith("{"):
        return qualified_name.rsplit("}", 1)[-1]
    return qualified_name.split(":", 1)[-1]


class LocalNameMatcher:
    """Element name matcher for one document.

    Lower-cased local names are kept per qualified tag, seeded from every
    element under the root, so each tag is stripped once per document.
    """

    def __init__(self):
        self._names: dict[str, str] = {}

    @classmethod
    def for_root(cls, root: ET.Element) -> "LocalNameMatcher":
        matcher = cls()
        for element in root.iter():
            matcher.name_of(element)
        return matcher

    @property
    def local_names(self) -> set[str]:
        return set(self._names.values())

    def name_of(self, element: ET.Element) -> str | None:
        """Lower-cased local name of an element, None for comments and PIs."""
        tag = element.tag
        if not isinstance(tag, str):
            return None
        name = self._names.get(tag)
        if name is None:
            name = self._names[tag] = local_name(tag).lower()
        return name

    def matches(self, element: ET.Element, name: str) -> bool:
        return self.name_of(element) == name.lower()


class Document:
    """A parsed response document."""

    def __init__(self, root: ET.Element):
        self.root = root
        self.matcher = LocalNameMatcher.for_root(root)

    def find_all(self, name: str) -> list[ET.Element]:
        """Find every element (root included) with the given local name."""
        return [element for element in self.root.iter() if self.matcher.matches(element, name)]

    def find_first(self, name: str) -> ET.Element | None:
        """Find the first element with the given local name, in document order."""
        for element in self.root.iter():
            if self.matcher.matches(element, name):
                return element
        return None


def parse_document(raw: str | bytes) -> Document:
    """Parse a raw response body.

    Args:
        raw: XML text returned by the platform

    Returns:
        Document wrapping the parsed tree

    Raises:
        DocumentParseError: If the body is not well-formed XML
    """
    try:
        root = ET.fromstring(raw)
    except ET.ParseError as e:
        raise DocumentParseError(f"Unable to parse response document: {e}") from e
    return Document(root)


def _tag_matches(element: ET.Element, name: str) -> bool:
    return isinstance(element.tag, str) and local_name(element.tag).lower() == name.lower()


def children(element: ET.Element, name: str) -> Iterator[ET.Element]:
    """Iterate direct children with the given local name."""
    return (child for child in element if _tag_matches(child, name))


def first_child(element: ET.Element, name: str) -> ET.Element | None:
    """Return the first direct child with the given local name."""
    return next(children(element, name), None)


def attribute(element: ET.Element, name: str) -> str | None:
    """Return an unprefixed attribute value, trimmed, or None."""
    value = element.get(name)
    if value is None:
        return None
    return value.strip()


def text(element: ET.Element | None) -> str | None:
    """Return the trimmed text of an element; None when absent or empty."""
    if element is None or element.text is None:
        return None
    value = element.text.strip()
    return value or None


def visit(element: ET.Element, handlers: Mapping[str, ElementHandler]) -> None:
    """Dispatch each direct child to the handler registered for its local name.

    Handler keys are compared case-insensitively; children without a handler
    are skipped.
    """
    dispatch = {key.lower(): handler for key, handler in handlers.items()}
    for child in element:
        if not isinstance(child.tag, str):
            continue
        handler = dispatch.get(local_name(child.tag).lower())
        if handler is not None:
            handler(child)


def serialize(element: ET.Element) -> str:
    """Serialize an element sub-tree to text."""
    return ET.tostring(element, encoding="unicode")


def parse_timestamp(value: str | None) -> int:
    """Convert an ISO-8601 timestamp into epoch milliseconds.

    Args:
        value: Timestamp such as "2013-08-24T12:59:56.243-07:00"

    Returns:
        Milliseconds since the epoch, or 0 when the value cannot be parsed

    Raises:
        CloudError: If the value is empty

    Example:
        >>> parse_timestamp("2013-09-11T01:13:18.412Z")
        1378861998412
    """
    if value is None or not value.strip():
        raise CloudError("Received empty timestamp")
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError:
        logger.debug(f"Unparseable timestamp: {value!r}")
        return 0
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    delta = parsed - _EPOCH
    return (delta.days * 86400 + delta.seconds) * 1000 + delta.microseconds // 1000
