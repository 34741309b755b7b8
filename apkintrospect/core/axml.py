"""Token-stream reader for Android compiled binary XML.

Compiled manifests are a tree of little-endian chunks::

    chunk header:  type:u16  header_size:u16  size:u32

The document chunk (``RES_XML_TYPE``) holds a string pool, an optional
resource-id map, and a flat sequence of XML tree nodes.  ``BinaryXmlReader``
walks those nodes and yields ``XmlToken`` objects in document order, the
way the platform's pull parser does.

Only what manifest scanning needs is decoded: element names, attributes
with their typed values, and text nodes.  Styles and namespaces are
skipped.
"""

from __future__ import annotations

import struct
from collections.abc import Iterator
from enum import Enum

from pydantic import BaseModel, ConfigDict

from apkintrospect.core.errors import ManifestParseError

# ---------------------------------------------------------------------------
# Chunk and value type constants
# ---------------------------------------------------------------------------

RES_STRING_POOL_TYPE = 0x0001
RES_XML_TYPE = 0x0003
RES_XML_START_NAMESPACE_TYPE = 0x0100
RES_XML_END_NAMESPACE_TYPE = 0x0101
RES_XML_START_ELEMENT_TYPE = 0x0102
RES_XML_END_ELEMENT_TYPE = 0x0103
RES_XML_CDATA_TYPE = 0x0104
RES_XML_RESOURCE_MAP_TYPE = 0x0180

TYPE_NULL = 0x00
TYPE_REFERENCE = 0x01
TYPE_STRING = 0x03
TYPE_INT_DEC = 0x10
TYPE_INT_HEX = 0x11
TYPE_INT_BOOLEAN = 0x12

UTF8_FLAG = 1 << 8
NO_INDEX = 0xFFFFFFFF

_CHUNK_HEADER = struct.Struct("<HHI")
_STRING_POOL_HEADER = struct.Struct("<IIIII")
_NODE_HEADER = struct.Struct("<II")
_START_ELEMENT_EXT = struct.Struct("<IIHHHHHH")
_END_ELEMENT_EXT = struct.Struct("<II")
_CDATA_EXT = struct.Struct("<I")
_ATTRIBUTE = struct.Struct("<IIIHBBI")

# Framework attribute ids, used when a stripped manifest leaves the
# attribute's name out of the string pool.
ANDROID_ATTRIBUTE_NAMES: dict[int, str] = {
    0x0101020C: "minSdkVersion",
    0x01010270: "targetSdkVersion",
    0x01010271: "maxSdkVersion",
}


class TokenKind(str, Enum):
    """Pull-parser event kinds."""

    START_TAG = "start_tag"
    END_TAG = "end_tag"
    TEXT = "text"
    END_DOCUMENT = "end_document"


class XmlAttribute(BaseModel):
    """One attribute of a start tag, with its typed value."""

    model_config = ConfigDict(frozen=True)

    name: str
    value: str
    data_type: int = TYPE_STRING
    data: int = 0

    def as_int(self) -> int:
        """Interpret the attribute as an integer.

        Integer-typed values are returned directly; string values must
        parse as a decimal integer.  Raises ``ValueError`` otherwise.
        """
        if self.data_type in (TYPE_INT_DEC, TYPE_INT_HEX):
            return _signed32(self.data)
        if self.data_type == TYPE_STRING:
            return int(self.value)
        raise ValueError(
            f"Attribute {self.name!r} is not an integer (type 0x{self.data_type:02x})"
        )


class XmlToken(BaseModel):
    """A single event from the token stream."""

    model_config = ConfigDict(frozen=True)

    kind: TokenKind
    name: str = ""
    attributes: tuple[XmlAttribute, ...] = ()
    text: str = ""
    line_number: int = 0

    def attribute(self, name: str) -> XmlAttribute | None:
        """Return the first attribute called *name*, or None."""
        for attr in self.attributes:
            if attr.name == name:
                return attr
        return None


def _signed32(value: int) -> int:
    return value - (1 << 32) if value & 0x80000000 else value


def render_value(data_type: int, data: int, raw: str | None) -> str:
    """Render a typed value the way the platform's pull parser does."""
    if data_type == TYPE_STRING:
        return raw or ""
    if data_type == TYPE_INT_DEC:
        return str(_signed32(data))
    if data_type == TYPE_INT_HEX:
        return f"0x{data:x}"
    if data_type == TYPE_INT_BOOLEAN:
        return "true" if data else "false"
    if data_type == TYPE_REFERENCE:
        return f"@{data}"
    if data_type == TYPE_NULL:
        return ""
    return raw if raw is not None else str(data)


# ---------------------------------------------------------------------------
# Reader
# ---------------------------------------------------------------------------


class BinaryXmlReader:
    """Pull-style reader over a compiled binary XML document.

    Parameters
    ----------
    data:
        The raw document bytes, e.g. ``AndroidManifest.xml`` read out of
        an APK.

    Raises
    ------
    ManifestParseError
        From ``tokens()`` when the document is truncated, not binary XML,
        or references strings that do not exist.
    """

    def __init__(self, data: bytes) -> None:
        self._data = bytes(data)
        self._strings: list[str] = []
        self._resource_ids: list[int] = []

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def tokens(self) -> Iterator[XmlToken]:
        """Yield tokens in document order, ending with ``END_DOCUMENT``."""
        try:
            yield from self._walk()
        except (struct.error, IndexError, UnicodeDecodeError) as exc:
            raise ManifestParseError(f"Malformed binary XML: {exc}") from exc

    # ------------------------------------------------------------------
    # Chunk walking
    # ------------------------------------------------------------------

    def _walk(self) -> Iterator[XmlToken]:
        chunk_type, header_size, doc_size = _CHUNK_HEADER.unpack_from(self._data, 0)
        if chunk_type != RES_XML_TYPE:
            raise ManifestParseError(
                f"Not a binary XML document (chunk type 0x{chunk_type:04x})"
            )
        end = min(doc_size, len(self._data))
        pos = header_size

        while pos < end:
            chunk_type, header_size, size = _CHUNK_HEADER.unpack_from(self._data, pos)
            if size < _CHUNK_HEADER.size or pos + size > len(self._data):
                raise ManifestParseError(
                    f"Bad chunk size {size} at offset {pos}"
                )

            if chunk_type == RES_STRING_POOL_TYPE:
                self._strings = self._read_string_pool(pos, header_size)
            elif chunk_type == RES_XML_RESOURCE_MAP_TYPE:
                count = (size - header_size) // 4
                self._resource_ids = list(
                    struct.unpack_from(f"<{count}I", self._data, pos + header_size)
                )
            elif chunk_type == RES_XML_START_ELEMENT_TYPE:
                yield self._read_start_element(pos, header_size)
            elif chunk_type == RES_XML_END_ELEMENT_TYPE:
                line, _ = _NODE_HEADER.unpack_from(self._data, pos + 8)
                _, name_idx = _END_ELEMENT_EXT.unpack_from(self._data, pos + header_size)
                yield XmlToken(
                    kind=TokenKind.END_TAG,
                    name=self._string(name_idx),
                    line_number=line,
                )
            elif chunk_type == RES_XML_CDATA_TYPE:
                line, _ = _NODE_HEADER.unpack_from(self._data, pos + 8)
                (text_idx,) = _CDATA_EXT.unpack_from(self._data, pos + header_size)
                yield XmlToken(
                    kind=TokenKind.TEXT,
                    text=self._string(text_idx),
                    line_number=line,
                )
            # Namespace nodes and unknown chunks are skipped.

            pos += size

        yield XmlToken(kind=TokenKind.END_DOCUMENT)

    def _read_start_element(self, pos: int, header_size: int) -> XmlToken:
        line, _ = _NODE_HEADER.unpack_from(self._data, pos + 8)
        ext = pos + header_size
        (
            _ns,
            name_idx,
            attr_start,
            attr_size,
            attr_count,
            _id_index,
            _class_index,
            _style_index,
        ) = _START_ELEMENT_EXT.unpack_from(self._data, ext)

        attributes = []
        for i in range(attr_count):
            offset = ext + attr_start + i * attr_size
            (
                _attr_ns,
                attr_name_idx,
                raw_idx,
                _value_size,
                _res0,
                data_type,
                data,
            ) = _ATTRIBUTE.unpack_from(self._data, offset)
            raw = self._string(raw_idx) if raw_idx != NO_INDEX else None
            if data_type == TYPE_STRING and raw is None:
                raw = self._string(data)
            attributes.append(
                XmlAttribute(
                    name=self._attribute_name(attr_name_idx),
                    value=render_value(data_type, data, raw),
                    data_type=data_type,
                    data=data,
                )
            )

        return XmlToken(
            kind=TokenKind.START_TAG,
            name=self._string(name_idx),
            attributes=tuple(attributes),
            line_number=line,
        )

    # ------------------------------------------------------------------
    # String pool
    # ------------------------------------------------------------------

    def _read_string_pool(self, pos: int, header_size: int) -> list[str]:
        (
            string_count,
            _style_count,
            flags,
            strings_start,
            _styles_start,
        ) = _STRING_POOL_HEADER.unpack_from(self._data, pos + 8)
        offsets = struct.unpack_from(
            f"<{string_count}I", self._data, pos + header_size
        )
        base = pos + strings_start
        if flags & UTF8_FLAG:
            return [self._decode_utf8(base + off) for off in offsets]
        return [self._decode_utf16(base + off) for off in offsets]

    def _decode_utf8(self, pos: int) -> str:
        _, pos = self._utf8_length(pos)  # length in UTF-16 units, unused
        byte_len, pos = self._utf8_length(pos)
        end = pos + byte_len
        if end > len(self._data):
            raise ManifestParseError(f"String at offset {pos} runs past end of data")
        return self._data[pos:end].decode("utf-8")

    def _utf8_length(self, pos: int) -> tuple[int, int]:
        length = self._data[pos]
        if length & 0x80:
            length = ((length & 0x7F) << 8) | self._data[pos + 1]
            return length, pos + 2
        return length, pos + 1

    def _decode_utf16(self, pos: int) -> str:
        (length,) = struct.unpack_from("<H", self._data, pos)
        pos += 2
        if length & 0x8000:
            (low,) = struct.unpack_from("<H", self._data, pos)
            length = ((length & 0x7FFF) << 16) | low
            pos += 2
        end = pos + length * 2
        if end > len(self._data):
            raise ManifestParseError(f"String at offset {pos} runs past end of data")
        return self._data[pos:end].decode("utf-16-le")

    def _string(self, index: int) -> str:
        if index == NO_INDEX:
            return ""
        if index >= len(self._strings):
            raise ManifestParseError(f"String index {index} out of range")
        return self._strings[index]

    def _attribute_name(self, index: int) -> str:
        name = self._string(index)
        if not name and index < len(self._resource_ids):
            return ANDROID_ATTRIBUTE_NAMES.get(self._resource_ids[index], "")
        return name


def iter_tokens(data: bytes) -> Iterator[XmlToken]:
    """Convenience wrapper: ``BinaryXmlReader(data).tokens()``."""
    return BinaryXmlReader(data).tokens()
