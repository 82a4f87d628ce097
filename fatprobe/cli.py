"""Command line tool for inspecting FAT32 images."""

from __future__ import annotations

import argparse
import dataclasses
import sys

from .driver import DriverError, FileBlockDevice, VFAT32Driver
from .records import BootRecord, BufferTooSmallError, FSInfo

DUMP_ROWS = 16
DUMP_COLUMNS = 16


def _describe(record) -> str:
    lines = [type(record).__name__]
    lines.extend(
        f"  {field.name}: {getattr(record, field.name)!r}" for field in dataclasses.fields(record)
    )
    return "\n".join(lines)


def _hex_dump(data: bytes) -> str:
    window = data[:DUMP_ROWS * DUMP_COLUMNS]
    rows = (window[start:start + DUMP_COLUMNS] for start in range(0, len(window), DUMP_COLUMNS))
    return "\n".join("".join(f"{byte:02X} " for byte in row) for row in rows)


def _info(device: FileBlockDevice, args: argparse.Namespace) -> int:
    boot_record = BootRecord.read(device.read_block(0))
    print(_describe(boot_record))

    fs_info = FSInfo.read(device.read_block(boot_record.fs_info_sector))
    print(_describe(fs_info))

    if not fs_info.is_valid():
        print("FSInfo is invalid!", file=sys.stderr)
        return 1
    print("FSInfo is valid")

    print(_hex_dump(device.read_block(boot_record.first_fat_sector())))
    print(f"Root directory cluster: {boot_record.root_directory_cluster}")
    return 0


def _ls(device: FileBlockDevice, args: argparse.Namespace) -> int:
    driver = VFAT32Driver(device)
    directory = driver.open_dir(args.path)
    print(f"Files in {args.path}:")
    for entry in driver.read_dir(directory):
        prefix = "<DIR> " if entry.is_directory() else "      "
        print(f"{prefix}{entry.name}")
    return 0


def _cat(device: FileBlockDevice, args: argparse.Namespace) -> int:
    driver = VFAT32Driver(device)
    file = driver.open(args.path)
    print(f"File size: {file.size()}")
    contents = driver.read_file(file, 0, file.size())
    print(contents.decode("utf-8", errors="replace"), end="")
    return 0


_COMMANDS = {"info": _info, "ls": _ls, "cat": _cat}


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="fatprobe", description="Inspect a FAT32 disk image.")
    commands = parser.add_subparsers(dest="command", required=True)

    info = commands.add_parser("info", help="show the boot record, FSInfo and start of the FAT")
    info.add_argument("image")

    ls = commands.add_parser("ls", help="list a directory")
    ls.add_argument("image")
    ls.add_argument("path", nargs="?", default="/")

    cat = commands.add_parser("cat", help="print a file")
    cat.add_argument("image")
    cat.add_argument("path")
    return parser


def main(argv=None) -> int:
    """Run the tool and return its exit status."""
    args = _parser().parse_args(argv)
    try:
        with open(args.image, "rb") as handle:
            return _COMMANDS[args.command](FileBlockDevice(handle), args)
    except (DriverError, OSError, BufferTooSmallError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())