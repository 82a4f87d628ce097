"""A read-only FAT32 driver working on top of a block device."""

from __future__ import annotations

import abc
import struct
from collections.abc import Iterator
from dataclasses import dataclass
from typing import BinaryIO

from .entry import DIRECTORY_ENTRY_SIZE, LongFileNameEntry, RealEntry, read_directory_entry
from .records import BootRecord, BufferTooSmallError, FSInfo

END_OF_CHAIN = 0x0FFFFFF8
FAT_ENTRY_MASK = 0x0FFFFFFF
FIRST_DATA_CLUSTER = 2
DELETED_MARKER = 0xE5
DEFAULT_BLOCK_SIZE = 512


class DriverError(Exception):
    """Base class of every error the driver raises."""


class DiskError(DriverError):
    """The underlying block device failed to deliver a block."""


class FileSystemInvalidError(DriverError):
    """The volume does not hold a usable FAT32 file system."""


class PathNotFoundError(DriverError):
    """No entry exists at the requested path."""


class NotADirectoryEntryError(DriverError):
    """A directory was requested but the path names something else."""


class DirectoryEntryIsDirectoryError(DriverError):
    """A file was requested but the path names a directory."""


class BlockDevice(abc.ABC):
    """A device that hands out fixed-size blocks by index."""

    block_size: int = DEFAULT_BLOCK_SIZE

    @abc.abstractmethod
    def read_block(self, index: int) -> bytes:
        """Return the block at ``index``; raise OSError when it cannot be read."""


class FileBlockDevice(BlockDevice):
    """A block device backed by a seekable binary file."""

    def __init__(self, file: BinaryIO, block_size: int = DEFAULT_BLOCK_SIZE) -> None:
        if block_size <= 0:
            raise ValueError(f"block size must be positive, got {block_size}")
        self._file = file
        self.block_size = block_size

    def read_block(self, index: int) -> bytes:
        if index < 0:
            raise OSError(f"block index {index} is negative")
        self._file.seek(index * self.block_size)
        data = self._file.read(self.block_size)
        if len(data) != self.block_size:
            raise OSError(
                f"short read of block {index}: got {len(data)} of {self.block_size} bytes"
            )
        return data


@dataclass(frozen=True, slots=True)
class VFATDirectoryEntry:
    """A named entry found while listing a directory."""

    name: str
    entry: RealEntry

    def is_file(self) -> bool:
        return self.entry.is_file()

    def is_directory(self) -> bool:
        return self.entry.is_dir()


@dataclass(frozen=True, slots=True)
class VFATFile:
    """An opened regular file."""

    start_cluster: int
    size_bytes: int

    def size(self) -> int:
        return self.size_bytes


@dataclass(frozen=True, slots=True)
class VFATDirectory:
    """An opened directory."""

    start_cluster: int


@dataclass(slots=True)
class _SectorBuffer:
    location: int | None = None
    data: bytes = b""


def _path_segments(path: str) -> list[str]:
    return [segment for segment in path.split("/") if segment]


def _short_entry_name(entry: RealEntry) -> str:
    base = bytes(b for b in entry.raw_name[:8] if b != 0x20)
    if entry.is_name_lowercase():
        base = base.lower()
    name = base.decode("latin-1")
    if entry.has_extension():
        extension = bytes(b for b in entry.raw_name[8:11] if b != 0x20)
        if entry.is_extension_lowercase():
            extension = extension.lower()
        name += "." + extension.decode("latin-1")
    return name.split("\0", 1)[0]


class VFAT32Driver:
    """Reads directories and files from a FAT32 volume."""

    def __init__(self, block_device: BlockDevice) -> None:
        self._device = block_device
        self._fat_buffer = _SectorBuffer()
        self._data_buffer = _SectorBuffer()

        try:
            self.boot_record = BootRecord.read(self._read_block(0))
        except BufferTooSmallError as exc:
            raise FileSystemInvalidError(f"boot sector unreadable: {exc}") from exc
        if self.boot_record.bytes_per_sector == 0 or self.boot_record.sectors_per_cluster == 0:
            raise FileSystemInvalidError("boot record declares an empty sector or cluster")

        try:
            self.fs_info = FSInfo.read(self._read_block(self.boot_record.fs_info_sector))
        except BufferTooSmallError as exc:
            raise FileSystemInvalidError(f"FSInfo sector unreadable: {exc}") from exc
        if not self.fs_info.is_valid():
            raise FileSystemInvalidError("FSInfo signatures do not match")

        self._sector_size = self.boot_record.bytes_per_sector

    def open_dir(self, path: str) -> VFATDirectory:
        """Open the directory at ``path``; any path of only slashes is the root."""
        if not _path_segments(path):
            if path:
                return VFATDirectory(self.boot_record.root_directory_cluster)
            raise PathNotFoundError("empty path")
        found = self._open_entry(path)
        if not found.is_directory():
            raise NotADirectoryEntryError(f"{path} is not a directory")
        return VFATDirectory(found.entry.start_cluster())

    def read_dir(self, directory: VFATDirectory) -> Iterator[VFATDirectoryEntry]:
        """Yield the entries of an opened directory in on-disk order."""
        yield from self._entries(directory.start_cluster)

    def open(self, path: str) -> VFATFile:
        """Open the regular file at ``path``."""
        found = self._open_entry(path)
        if not found.is_file():
            raise DirectoryEntryIsDirectoryError(f"{path} is a directory")
        return VFATFile(found.entry.start_cluster(), found.entry.file_size)

    def read_file(self, file: VFATFile, offset: int = 0, size: int | None = None) -> bytes:
        """Read up to ``size`` bytes from ``offset``, never past the end of the file."""
        if offset < 0:
            raise ValueError(f"offset must not be negative, got {offset}")
        if size is not None and size < 0:
            raise ValueError(f"size must not be negative, got {size}")

        end = file.size_bytes if size is None else min(file.size_bytes, offset + size)
        if offset >= end:
            return b""

        first_sector, start = divmod(offset, self._sector_size)
        remaining = end - offset
        parts = []
        for sector in self._sectors(file.start_cluster, skip=first_sector):
            piece = sector[start:self._sector_size][:remaining]
            parts.append(piece)
            remaining -= len(piece)
            start = 0
            if remaining <= 0:
                break
        return b"".join(parts)

    def _open_entry(self, path: str) -> VFATDirectoryEntry:
        segments = _path_segments(path)
        if not segments:
            raise PathNotFoundError(f"{path!r} names no entry")

        cluster = self.boot_record.root_directory_cluster
        *parents, last = segments
        for segment in parents:
            found = self._find(segment, cluster)
            if not found.is_directory():
                raise PathNotFoundError(f"{segment} in {path} is not a directory")
            cluster = found.entry.start_cluster()
        return self._find(last, cluster)

    def _find(self, name: str, cluster: int) -> VFATDirectoryEntry:
        for candidate in self._entries(cluster):
            if candidate.name == name:
                return candidate
        raise PathNotFoundError(f"{name} not found")

    def _entries(self, start_cluster: int) -> Iterator[VFATDirectoryEntry]:
        fragments: list[str] = []
        usable = self._sector_size - self._sector_size % DIRECTORY_ENTRY_SIZE
        for sector in self._sectors(start_cluster):
            for position in range(0, min(usable, len(sector)), DIRECTORY_ENTRY_SIZE):
                raw = sector[position:position + DIRECTORY_ENTRY_SIZE]
                entry = read_directory_entry(raw)
                if isinstance(entry, RealEntry) and entry.is_empty():
                    return
                if raw[0] == DELETED_MARKER:
                    fragments.clear()
                    continue
                if isinstance(entry, LongFileNameEntry):
                    fragments.append(entry.name())
                    continue
                if fragments:
                    name = "".join(reversed(fragments)).split("\0", 1)[0]
                    fragments.clear()
                else:
                    name = _short_entry_name(entry)
                yield VFATDirectoryEntry(name, entry)

    def _sectors(self, start_cluster: int, skip: int = 0) -> Iterator[bytes]:
        per_cluster = self.boot_record.sectors_per_cluster
        skip_clusters, skip_in_first = divmod(skip, per_cluster)
        for position, cluster in enumerate(self._clusters(start_cluster)):
            if position < skip_clusters:
                continue
            first = self._first_sector_of(cluster)
            start = skip_in_first if position == skip_clusters else 0
            for sector_in_cluster in range(start, per_cluster):
                yield self._load(self._data_buffer, first + sector_in_cluster)

    def _clusters(self, start_cluster: int) -> Iterator[int]:
        seen: set[int] = set()
        cluster = start_cluster
        while cluster < END_OF_CHAIN:
            if cluster < FIRST_DATA_CLUSTER:
                raise FileSystemInvalidError(f"cluster chain reaches reserved cluster {cluster}")
            if cluster in seen:
                raise FileSystemInvalidError(f"cluster chain loops at cluster {cluster}")
            seen.add(cluster)
            yield cluster
            cluster = self._next_cluster(cluster)

    def _next_cluster(self, cluster: int) -> int:
        fat_offset = cluster * 4
        sector = self.boot_record.first_fat_sector() + fat_offset // self._sector_size
        within = fat_offset % self._sector_size
        data = self._load(self._fat_buffer, sector)
        if within + 4 > len(data):
            raise FileSystemInvalidError(f"FAT entry for cluster {cluster} lies outside its block")
        return struct.unpack_from("<I", data, within)[0] & FAT_ENTRY_MASK

    def _first_sector_of(self, cluster: int) -> int:
        relative = (cluster - FIRST_DATA_CLUSTER) * self.boot_record.sectors_per_cluster
        return relative + self.boot_record.first_data_sector()

    def _load(self, buffer: _SectorBuffer, sector: int) -> bytes:
        if buffer.location != sector:
            buffer.data = self._read_block(sector)
            buffer.location = sector
        return buffer.data

    def _read_block(self, index: int) -> bytes:
        try:
            return bytes(self._device.read_block(index))
        except OSError as exc:
            raise DiskError(f"cannot read block {index}: {exc}") from exc