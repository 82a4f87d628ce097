"""Parsing of 32-byte FAT directory entries."""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass

from .records import BufferTooSmallError

DIRECTORY_ENTRY_SIZE = 32
LFN_ATTRIBUTE = 0x0F


class Attributes(enum.IntFlag):
    """Attribute bits of a directory entry."""

    READ_ONLY = 0x01
    HIDDEN = 0x02
    SYSTEM = 0x04
    VOLUME_ID = 0x08
    DIRECTORY = 0x10
    ARCHIVE = 0x20


def _require_entry(data: bytes) -> bytes:
    data = bytes(data)
    if len(data) < DIRECTORY_ENTRY_SIZE:
        raise BufferTooSmallError(len(data))
    return data


def _u16(data: bytes, offset: int) -> int:
    return struct.unpack_from("<H", data, offset)[0]


def _u32(data: bytes, offset: int) -> int:
    return struct.unpack_from("<I", data, offset)[0]


def _decode_utf16_lossy(units):
    """Decode UTF-16 code units, dropping unpaired surrogates."""
    chars = []
    pending = None
    for unit in units:
        if pending is not None:
            if 0xDC00 <= unit <= 0xDFFF:
                chars.append(chr(0x10000 + ((pending - 0xD800) << 10) + (unit - 0xDC00)))
                pending = None
                continue
            pending = None
        if 0xD800 <= unit <= 0xDBFF:
            pending = unit
        elif 0xDC00 <= unit <= 0xDFFF:
            continue
        else:
            chars.append(chr(unit))
    return "".join(chars)


@dataclass(frozen=True, slots=True)
class LongFileNameEntry:
    """A VFAT long-file-name entry holding 13 UTF-16 code units."""

    sequence_number: int
    name_units: tuple[int, ...]
    short_name_checksum: int

    @classmethod
    def read(cls, data: bytes) -> LongFileNameEntry:
        """Parse a long-file-name entry."""
        data = _require_entry(data)
        units = (
            [_u16(data, 0x01 + 2 * i) for i in range(5)]
            + [_u16(data, 0x0E + 2 * i) for i in range(6)]
            + [_u16(data, 0x1C + 2 * i) for i in range(2)]
        )
        return cls(
            sequence_number=data[0x00],
            name_units=tuple(units),
            short_name_checksum=data[0x0D],
        )

    def is_deleted(self) -> bool:
        return self.sequence_number == 0xE5

    def name(self) -> str:
        """The name fragment, with 0xFFFF padding and undecodable units removed.

        A NUL terminator, if present, is kept as a character.
        """
        return _decode_utf16_lossy(u for u in self.name_units if u != 0xFFFF)


@dataclass(frozen=True, slots=True)
class RealEntry:
    """A regular 8.3 directory entry."""

    raw_name: bytes
    attributes: int
    entry_case: int
    creation_time_ms: int
    creation_time: int
    creation_date: int
    access_date: int
    cluster_number: int
    modified_time: int
    modified_date: int
    file_size: int

    @classmethod
    def read(cls, data: bytes) -> RealEntry:
        """Parse a regular directory entry."""
        data = _require_entry(data)
        high = _u16(data, 0x14)
        low = _u16(data, 0x1A)
        return cls(
            raw_name=data[0x00:0x0B],
            attributes=data[0x0B],
            entry_case=data[0x0C],
            creation_time_ms=data[0x0D],
            creation_time=_u16(data, 0x0E),
            creation_date=_u16(data, 0x10),
            access_date=_u16(data, 0x12),
            cluster_number=(high << 16) | low,
            modified_time=_u16(data, 0x16),
            modified_date=_u16(data, 0x18),
            file_size=_u32(data, 0x1C),
        )

    def start_cluster(self) -> int:
        return self.cluster_number

    def is_dir(self) -> bool:
        return bool(self.attributes & Attributes.DIRECTORY)

    def is_file(self) -> bool:
        return not self.attributes & (Attributes.DIRECTORY | Attributes.VOLUME_ID)

    def is_empty(self) -> bool:
        return self.raw_name[0] == 0

    def has_extension(self) -> bool:
        return self.is_file() and self.raw_name[8:11] != b"   "

    def is_name_lowercase(self) -> bool:
        return bool(self.entry_case & (1 << 3))

    def is_extension_lowercase(self) -> bool:
        return bool(self.entry_case & (1 << 4))

    def short_name(self) -> str:
        """The raw 11-byte 8.3 name as text."""
        return self.raw_name.decode("utf-8", errors="replace")


def read_directory_entry(data: bytes) -> LongFileNameEntry | RealEntry:
    """Parse an entry, choosing the long-file-name form when its attribute byte says so."""
    data = _require_entry(data)
    if data[0x0B] == LFN_ATTRIBUTE:
        return LongFileNameEntry.read(data)
    return RealEntry.read(data)