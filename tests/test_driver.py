import io
import struct

import pytest

from fatprobe.driver import (
    BlockDevice,
    DirectoryEntryIsDirectoryError,
    DiskError,
    DriverError,
    FileBlockDevice,
    FileSystemInvalidError,
    NotADirectoryEntryError,
    PathNotFoundError,
    VFAT32Driver,
    VFATDirectory,
    VFATFile,
)

SECTOR = 512
EOC = 0x0FFFFFFF
CONTENT = b"abcdefghij" * 60
HELLO = b"hello\n"


def _short(name11, attr, cluster, size=0, case=0):
    entry = bytearray(32)
    entry[0:11] = name11
    entry[0x0B] = attr
    entry[0x0C] = case
    struct.pack_into("<H", entry, 0x14, cluster >> 16)
    struct.pack_into("<H", entry, 0x1A, cluster & 0xFFFF)
    struct.pack_into("<I", entry, 0x1C, size)
    return bytes(entry)


def _lfn(seq, text):
    units = [ord(c) for c in text]
    if len(units) < 13:
        units.append(0)
    units.extend([0xFFFF] * (13 - len(units)))
    entry = bytearray(32)
    entry[0] = seq
    entry[0x0B] = 0x0F
    struct.pack_into("<5H", entry, 0x01, *units[0:5])
    struct.pack_into("<6H", entry, 0x0E, *units[5:11])
    struct.pack_into("<2H", entry, 0x1C, *units[11:13])
    return bytes(entry)


def _sector(data=b""):
    return data.ljust(SECTOR, b"\0")


def build_image(valid_fsinfo=True):
    boot = bytearray(SECTOR)
    struct.pack_into("<H", boot, 0x0B, SECTOR)
    boot[0x0D] = 1
    struct.pack_into("<H", boot, 0x0E, 2)
    boot[0x10] = 1
    struct.pack_into("<H", boot, 0x13, 10)
    struct.pack_into("<I", boot, 0x24, 1)
    struct.pack_into("<I", boot, 0x2C, 2)
    struct.pack_into("<H", boot, 0x30, 1)
    boot[0x42] = 0x29
    boot[0x47:0x52] = b"TESTVOL    "

    fsinfo = bytearray(SECTOR)
    if valid_fsinfo:
        struct.pack_into("<I", fsinfo, 0x000, 0x41615252)
        struct.pack_into("<I", fsinfo, 0x1E4, 0x61417272)
        struct.pack_into("<I", fsinfo, 0x1FC, 0xAA550000)

    fat_entries = [0x0FFFFFF8, EOC, EOC, EOC, 5, EOC, EOC, EOC, EOC]
    fat = struct.pack(f"<{len(fat_entries)}I", *fat_entries)

    root = b"".join(
        [
            _short(b"MYDIR      ", 0x10, 3),
            _short(b"TEST    TXT", 0x20, 4, len(CONTENT)),
            _lfn(0x41, "Long Name.txt"),
            _short(b"LONGNA~1TXT", 0x20, 7, 5),
            _short(b"\xe5ONE    TXT", 0x20, 9, 1),
            _short(b"README  MD ", 0x20, 8, 3, case=0x18),
        ]
    )
    mydir = b"".join(
        [
            _short(b".          ", 0x10, 3),
            _short(b"..         ", 0x10, 0),
            _short(b"HELLO   TXT", 0x20, 6, len(HELLO)),
            _lfn(0x41, "a.b"),
            _short(b"A       B  ", 0x20, 6, len(HELLO)),
        ]
    )
    sectors = [
        bytes(boot),
        bytes(fsinfo),
        _sector(fat),
        _sector(root),
        _sector(mydir),
        _sector(CONTENT[:SECTOR]),
        _sector(CONTENT[SECTOR:]),
        _sector(HELLO),
        _sector(b"12345"),
        _sector(b"abc"),
    ]
    return b"".join(sectors)


def make_driver(**kwargs):
    return VFAT32Driver(FileBlockDevice(io.BytesIO(build_image(**kwargs))))


class FailingDevice(BlockDevice):
    def read_block(self, index):
        raise OSError("device unplugged")


def test_root_listing_names():
    driver = make_driver()
    names = [entry.name for entry in driver.read_dir(driver.open_dir("/"))]
    assert names == ["MYDIR", "TEST.TXT", "Long Name.txt", "readme.md"]


def test_root_listing_kinds():
    driver = make_driver()
    kinds = {e.name: (e.is_directory(), e.is_file()) for e in driver.read_dir(driver.open_dir("/"))}
    assert kinds["MYDIR"] == (True, False)
    assert kinds["TEST.TXT"] == (False, True)


def test_subdirectory_listing_cuts_long_name_at_nul():
    driver = make_driver()
    names = [entry.name for entry in driver.read_dir(driver.open_dir("/MYDIR/"))]
    assert names == [".", "..", "HELLO.TXT", "a.b"]


def test_slashes_only_path_is_root():
    driver = make_driver()
    assert driver.open_dir("///") == VFATDirectory(driver.boot_record.root_directory_cluster)


def test_empty_path_is_not_found():
    driver = make_driver()
    with pytest.raises(PathNotFoundError):
        driver.open_dir("")


def test_open_file_reports_size():
    driver = make_driver()
    file = driver.open("/TEST.TXT")
    assert file.size() == len(CONTENT)
    assert file == VFATFile(4, len(CONTENT))


def test_read_whole_file_spanning_clusters():
    driver = make_driver()
    file = driver.open("/TEST.TXT")
    assert driver.read_file(file, 0, file.size()) == CONTENT


@pytest.mark.parametrize("offset,size", [(0, 10), (510, 10), (511, 1), (100, 500), (599, 5)])
def test_read_with_offset_matches_slice(offset, size):
    driver = make_driver()
    file = driver.open("/TEST.TXT")
    assert driver.read_file(file, offset, size) == CONTENT[offset:offset + size]


def test_read_rest_of_file_without_size():
    driver = make_driver()
    file = driver.open("/TEST.TXT")
    assert driver.read_file(file, 100) == CONTENT[100:]


def test_read_past_end_is_empty():
    driver = make_driver()
    file = driver.open("/TEST.TXT")
    assert driver.read_file(file, len(CONTENT) + 5, 10) == b""


def test_negative_offset_rejected():
    driver = make_driver()
    file = driver.open("/TEST.TXT")
    with pytest.raises(ValueError):
        driver.read_file(file, -1, 4)


def test_nested_and_long_name_files():
    driver = make_driver()
    assert driver.read_file(driver.open("//MYDIR//HELLO.TXT")) == HELLO
    assert driver.read_file(driver.open("/Long Name.txt")) == b"12345"
    assert driver.read_file(driver.open("/readme.md")) == b"abc"


def test_deleted_entry_is_hidden():
    driver = make_driver()
    with pytest.raises(PathNotFoundError):
        driver.open("/\xe5ONE.TXT")


def test_open_directory_as_file():
    driver = make_driver()
    with pytest.raises(DirectoryEntryIsDirectoryError):
        driver.open("/MYDIR")


def test_open_file_as_directory():
    driver = make_driver()
    with pytest.raises(NotADirectoryEntryError):
        driver.open_dir("/TEST.TXT")


@pytest.mark.parametrize("path", ["/missing", "/TEST.TXT/inner", "/MYDIR/nothing", "/test.txt"])
def test_missing_paths(path):
    driver = make_driver()
    with pytest.raises(PathNotFoundError):
        driver.open(path)


def test_errors_share_base_class():
    driver = make_driver()
    with pytest.raises(DriverError):
        driver.open("/nowhere")


def test_invalid_fsinfo_rejected():
    with pytest.raises(FileSystemInvalidError):
        make_driver(valid_fsinfo=False)


def test_failing_device_raises_disk_error():
    with pytest.raises(DiskError):
        VFAT32Driver(FailingDevice())


def test_truncated_image_raises_disk_error():
    image = build_image()[:SECTOR]
    with pytest.raises(DiskError):
        VFAT32Driver(FileBlockDevice(io.BytesIO(image)))


def test_file_block_device_reads_blocks():
    image = build_image()
    device = FileBlockDevice(io.BytesIO(image))
    assert device.read_block(3) == image[3 * SECTOR:4 * SECTOR]
    assert device.block_size == SECTOR


def test_file_block_device_short_read():
    device = FileBlockDevice(io.BytesIO(b"\0" * 100))
    with pytest.raises(OSError):
        device.read_block(0)