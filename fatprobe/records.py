"""Parsing of the FAT32 boot record and the FSInfo sector."""

from __future__ import annotations

import struct
from dataclasses import dataclass

FS_INFO_FIRST_SIGNATURE = 0x41615252
FS_INFO_SECOND_SIGNATURE = 0x61417272
FS_INFO_END_SIGNATURE = 0xAA550000

BOOT_RECORD_MIN_SIZE = 0x47 + 11
FS_INFO_MIN_SIZE = 0x200


class BufferTooSmallError(ValueError):
    """Raised when a buffer is too short to hold the structure being read."""

    def __init__(self, size: int) -> None:
        self.size = size
        super().__init__(f"Buffer size too small, was only {size} bytes.")


def _require(buffer: bytes, size: int) -> None:
    if len(buffer) < size:
        raise BufferTooSmallError(len(buffer))


def _u16(buffer: bytes, offset: int) -> int:
    return struct.unpack_from("<H", buffer, offset)[0]


def _u32(buffer: bytes, offset: int) -> int:
    return struct.unpack_from("<I", buffer, offset)[0]


@dataclass(frozen=True, slots=True)
class BootRecord:
    """BIOS parameter block and FAT32 extended boot record."""

    bytes_per_sector: int
    sectors_per_cluster: int
    num_reserved_sectors: int
    num_fats: int
    total_sectors: int
    num_hidden_sectors: int
    large_total_sectors: int
    sectors_per_fat: int
    flags: int
    fat_version: int
    root_directory_cluster: int
    fs_info_sector: int
    backup_boot_sector: int
    signature: int
    volume_serial_number: int
    volume_label: bytes

    @classmethod
    def read(cls, buffer: bytes) -> BootRecord:
        """Parse a boot record from the first sector of a volume."""
        buffer = bytes(buffer)
        _require(buffer, BOOT_RECORD_MIN_SIZE)
        return cls(
            bytes_per_sector=_u16(buffer, 0x0B),
            sectors_per_cluster=buffer[0x0D],
            num_reserved_sectors=_u16(buffer, 0x0E),
            num_fats=buffer[0x10],
            total_sectors=_u16(buffer, 0x13),
            num_hidden_sectors=_u32(buffer, 0x1C),
            large_total_sectors=_u32(buffer, 0x20),
            sectors_per_fat=_u32(buffer, 0x24),
            flags=_u16(buffer, 0x28),
            fat_version=_u16(buffer, 0x2A),
            root_directory_cluster=_u32(buffer, 0x2C),
            fs_info_sector=_u16(buffer, 0x30),
            backup_boot_sector=_u16(buffer, 0x32),
            signature=buffer[0x42],
            volume_serial_number=_u32(buffer, 0x43),
            volume_label=buffer[0x47:0x47 + 11],
        )

    def first_data_sector(self) -> int:
        """Sector index where the data region starts."""
        return self.num_reserved_sectors + self.num_fats * self.sectors_per_fat

    def first_fat_sector(self) -> int:
        """Sector index of the first file allocation table."""
        return self.num_reserved_sectors

    def num_sectors(self) -> int:
        """Total sector count, taken from the large field when the small one is zero."""
        if self.total_sectors == 0:
            return self.large_total_sectors
        return self.total_sectors


@dataclass(frozen=True, slots=True)
class FSInfo:
    """The FAT32 FSInfo sector."""

    first_signature: int
    second_signature: int
    last_free_cluster_count: int
    next_available_cluster: int
    end_signature: int

    @classmethod
    def read(cls, buffer: bytes) -> FSInfo:
        """Parse an FSInfo sector."""
        buffer = bytes(buffer)
        _require(buffer, FS_INFO_MIN_SIZE)
        return cls(
            first_signature=_u32(buffer, 0x000),
            second_signature=_u32(buffer, 0x1E4),
            last_free_cluster_count=_u32(buffer, 0x1E8),
            next_available_cluster=_u32(buffer, 0x1EC),
            end_signature=_u32(buffer, 0x1FC),
        )

    def is_valid(self) -> bool:
        """True when all three signatures hold their fixed values."""
        return (
            self.first_signature == FS_INFO_FIRST_SIGNATURE
            and self.second_signature == FS_INFO_SECOND_SIGNATURE
            and self.end_signature == FS_INFO_END_SIGNATURE
        )