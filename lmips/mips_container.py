# lmips/mips_container.py
"""
Object container layout (all multi-byte fields big-endian):

    header (15 bytes)
        marker      u8   0x10
        magic       3s   b"LEF"
        major       u8
        minor       u8
        entry       u32  file offset of the first instruction to execute
        shoff       u32  file offset of the section-header table
        shnum       u8   number of section headers
    .text payload    (starts right after the header)
    .string payload  (reserved for a literal pool, currently empty)
    .data payload
    section-header table, one 11-byte entry per section:
        name        u16  reserved, always 0
        type        u8   SECTION_TEXT / SECTION_STRING / SECTION_DATA
        offset      u32
        size        u32

The header is written last, once the table offset and entry point are known.
"""
import logging
import struct
from dataclasses import dataclass

logger = logging.getLogger(__name__)

HEADER_MARKER = 0x10
MAGIC = b"LEF"
FORMAT_VERSION = (1, 0)

HEADER_FORMAT = ">B3sBBIIB"
SECTION_HEADER_FORMAT = ">HBII"
HEADER_SIZE = struct.calcsize(HEADER_FORMAT)                  # 15
SECTION_HEADER_SIZE = struct.calcsize(SECTION_HEADER_FORMAT)  # 11

SECTION_TEXT = 0x01
SECTION_STRING = 0x02
SECTION_DATA = 0x04

SECTION_NAMES = {
    SECTION_TEXT: ".text",
    SECTION_STRING: ".string",
    SECTION_DATA: ".data",
}


class ContainerFormatError(ValueError):
    """Raised when a byte buffer is not a readable object container."""


@dataclass
class SectionHeader:
    name: str
    type: int
    offset: int
    size: int = 0

    def to_dict(self):
        return {"name": self.name, "type": self.type, "offset": self.offset, "size": self.size}


class ObjectWriter:
    """Growable big-endian byte buffer with section bookkeeping."""

    def __init__(self):
        self.buffer = bytearray(HEADER_SIZE) # Header placeholder, backpatched by write_header()
        self.sections = []
        self.section_table_offset = 0
        self.entry = HEADER_SIZE

    @property
    def offset(self):
        return len(self.buffer)

    def emit_byte(self, value):
        self.buffer += struct.pack(">B", value & 0xFF)

    def emit_half(self, value):
        self.buffer += struct.pack(">H", value & 0xFFFF)

    def emit_word(self, value):
        self.buffer += struct.pack(">I", value & 0xFFFFFFFF)

    def emit_bytes(self, data):
        self.buffer += bytes(data)

    def begin_section(self, section_type, name=None):
        header = SectionHeader(name or SECTION_NAMES[section_type], section_type, self.offset)
        logger.debug(f"Section '{header.name}' starts at offset {header.offset}")
        return header

    def end_section(self, header):
        header.size = self.offset - header.offset
        self.sections.append(header)
        logger.debug(f"Section '{header.name}' ends: {header.size} bytes")
        return header

    def write_section_table(self):
        self.section_table_offset = self.offset
        for header in self.sections:
            self.buffer += struct.pack(SECTION_HEADER_FORMAT, 0, header.type, header.offset, header.size)

    def write_header(self, entry):
        self.entry = entry
        major, minor = FORMAT_VERSION
        struct.pack_into(
            HEADER_FORMAT, self.buffer, 0,
            HEADER_MARKER, MAGIC, major, minor, entry, self.section_table_offset, len(self.sections),
        )

    def getvalue(self):
        return bytes(self.buffer)


@dataclass
class ObjectFile:
    """A parsed container. 'raw' keeps the full image the sections point into."""
    version: tuple
    entry: int
    section_table_offset: int
    sections: list
    raw: bytes

    def find_section(self, section_type):
        for header in self.sections:
            if header.type == section_type:
                return header
        return None

    def section(self, section_type):
        header = self.find_section(section_type)
        if header is None:
            return b""
        return self.raw[header.offset:header.offset + header.size]

    @property
    def code(self):
        return self.section(SECTION_TEXT)

    @property
    def data(self):
        return self.section(SECTION_DATA)

    @property
    def code_entry(self):
        """Entry point relative to the start of the code section."""
        text = self.find_section(SECTION_TEXT)
        base = text.offset if text else HEADER_SIZE
        return self.entry - base


def read_object(data):
    """Parses an object container, checking the header and every section bound."""
    data = bytes(data)
    if len(data) < HEADER_SIZE:
        raise ContainerFormatError(f"Object too short: {len(data)} bytes, header needs {HEADER_SIZE}")

    marker, magic, major, minor, entry, shoff, shnum = struct.unpack_from(HEADER_FORMAT, data, 0)
    if marker != HEADER_MARKER or magic != MAGIC:
        raise ContainerFormatError(f"Bad object header: marker=0x{marker:02x}, magic={magic!r}")
    if major != FORMAT_VERSION[0]:
        raise ContainerFormatError(f"Unsupported object format version {major}.{minor}")

    table_end = shoff + shnum * SECTION_HEADER_SIZE
    if shoff < HEADER_SIZE or table_end > len(data):
        raise ContainerFormatError(f"Section table at {shoff} ({shnum} entries) lies outside the object")

    sections = []
    for i in range(shnum):
        _, section_type, offset, size = struct.unpack_from(SECTION_HEADER_FORMAT, data, shoff + i * SECTION_HEADER_SIZE)
        if offset + size > len(data):
            raise ContainerFormatError(f"Section {i} (type {section_type}) at {offset}+{size} lies outside the object")
        name = SECTION_NAMES.get(section_type, f".section{i}")
        sections.append(SectionHeader(name, section_type, offset, size))

    logger.debug(f"Read object v{major}.{minor}: entry={entry}, {shnum} sections")
    return ObjectFile((major, minor), entry, shoff, sections, data)
