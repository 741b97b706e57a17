"""Tolerant extraction of repeated elements from VIS XML payloads.

The synchronizer only depends on :class:`PayloadParser`; the regex parser is
the default and the BeautifulSoup parser can be swapped in without touching
callers.
"""

from __future__ import annotations

import html
import re
from collections.abc import Sequence
from functools import lru_cache
from typing import Protocol

from bs4 import BeautifulSoup, Tag

from ..exceptions import PayloadParseError

ElementValues = dict[str, str | None]

_BOM = "\ufeff"
_XML_DECLARATION = re.compile(r"<\?xml[^>]*\?>", re.IGNORECASE)
_CDATA = re.compile(r"<!\[CDATA\[(.*?)\]\]>", re.DOTALL)
_INTER_TAG_WHITESPACE = re.compile(r">\s+<")
_ATTRIBUTE = re.compile(r'([A-Za-z_][\w.\-]*)\s*=\s*(?:"([^"]*)"|\'([^\']*)\')')


def clean_payload(raw: str | bytes) -> str:
    """Strip BOM, XML declarations and CDATA wrappers; normalize whitespace."""

    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    text = raw.lstrip(_BOM)
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _XML_DECLARATION.sub("", text)
    text = _CDATA.sub(lambda match: html.escape(match.group(1), quote=False), text)
    text = _INTER_TAG_WHITESPACE.sub("><", text)
    return text.strip()


@lru_cache(maxsize=32)
def _element_patterns(tag: str) -> tuple[re.Pattern[str], re.Pattern[str], re.Pattern[str]]:
    name = re.escape(tag)
    block = re.compile(rf"<{name}(?=[\s/>])([^>]*?)(?:/>|>(.*?)</{name}\s*>)", re.DOTALL)
    opening = re.compile(rf"<{name}(?=[\s>])[^>]*(?<!/)>")
    closing = re.compile(rf"</{name}\s*>")
    return block, opening, closing


def ensure_structure(payload: str, element_tag: str) -> None:
    """Raise :class:`PayloadParseError` when ``payload`` cannot be XML at all."""

    if not payload:
        raise PayloadParseError("Empty payload received from upstream")
    if not payload.startswith("<") or not payload.endswith(">"):
        raise PayloadParseError("Payload is not an XML document")
    _, opening, closing = _element_patterns(element_tag)
    opened = len(opening.findall(payload))
    closed = len(closing.findall(payload))
    if opened != closed:
        raise PayloadParseError(
            f"Unbalanced <{element_tag}> elements: {opened} opened, {closed} closed"
        )


def _attributes(fragment: str) -> dict[str, str]:
    values: dict[str, str] = {}
    for match in _ATTRIBUTE.finditer(fragment or ""):
        raw_value = match.group(2) if match.group(2) is not None else match.group(3)
        values[match.group(1)] = html.unescape(raw_value)
    return values


class PayloadParser(Protocol):
    def extract_elements(
        self,
        payload: str,
        element_tag: str,
        fields: Sequence[str],
    ) -> list[ElementValues]:
        """Return one mapping of field values per ``element_tag`` occurrence."""
        ...


class RegexElementParser:
    """Regex-based extractor that reads child tags, ``value`` attributes or element attributes."""

    def extract_elements(
        self,
        payload: str,
        element_tag: str,
        fields: Sequence[str],
    ) -> list[ElementValues]:
        cleaned = clean_payload(payload)
        ensure_structure(cleaned, element_tag)
        block_pattern, _, _ = _element_patterns(element_tag)

        elements: list[ElementValues] = []
        for match in block_pattern.finditer(cleaned):
            element_attributes = _attributes(match.group(1))
            body = match.group(2) or ""
            elements.append(
                {name: self._field_value(body, name, element_attributes) for name in fields}
            )
        return elements

    @staticmethod
    def _field_value(body: str, name: str, element_attributes: dict[str, str]) -> str | None:
        field = re.escape(name)
        content = re.search(rf"<{field}(?:\s[^>]*)?>(.*?)</{field}\s*>", body, re.DOTALL)
        if content:
            return html.unescape(content.group(1)).strip()
        self_closing = re.search(rf"<{field}(\s[^>]*?)?/>", body)
        if self_closing:
            return _attributes(self_closing.group(1) or "").get("value")
        return element_attributes.get(name)


class SoupElementParser:
    """BeautifulSoup-backed extractor with the same tolerance rules."""

    def __init__(self, features: str = "html.parser") -> None:
        self._features = features

    def extract_elements(
        self,
        payload: str,
        element_tag: str,
        fields: Sequence[str],
    ) -> list[ElementValues]:
        cleaned = clean_payload(payload)
        ensure_structure(cleaned, element_tag)
        soup = BeautifulSoup(cleaned, self._features)

        # html.parser lower-cases tag and attribute names.
        elements: list[ElementValues] = []
        for element in soup.find_all(element_tag.lower()):
            if not isinstance(element, Tag):
                continue
            elements.append({name: self._field_value(element, name) for name in fields})
        return elements

    @staticmethod
    def _field_value(element: Tag, name: str) -> str | None:
        key = name.lower()
        child = element.find(key, recursive=False)
        if isinstance(child, Tag):
            if child.contents:
                return child.get_text().strip()
            value = child.get("value")
            return str(value) if value is not None else None
        attribute = element.get(key)
        return str(attribute) if attribute is not None else None
