# fatprobe

fatprobe reads FAT32 disk images without mounting them. It decodes the boot
record and FSInfo sector, walks directories (long file names included) and
reads file contents by following the cluster chain in the allocation table.
It also has decoders for two pieces of PC firmware data: PCI configuration
space headers and the ACPI RSDP, RSDT and FADT tables.

Only the standard library is needed.

## Installing

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Command line

Installing the package provides the `fatprobe` command with three
subcommands:

```
fatprobe info IMAGE          # boot record, FSInfo, first 256 bytes of the FAT, root cluster
fatprobe ls IMAGE [PATH]     # list a directory (PATH defaults to /)
fatprobe cat IMAGE PATH      # print a file's size, then its contents
```

`ls` marks directories with `<DIR>`. `info` prints the boot record and FSInfo
field by field, reports whether the FSInfo signatures are valid and, if they
are, hex-dumps the start of the first allocation table. On any error the
command prints `error: ...` to standard error and exits with status 1.

```
fatprobe --help
```

## Reading an image from Python

```python
from fatprobe.driver import FileBlockDevice, VFAT32Driver, PathNotFoundError

with open("disk.img", "rb") as image:
    driver = VFAT32Driver(FileBlockDevice(image, 512))

    directory = driver.open_dir("/mydir/")
    entries = list(driver.read_dir(directory))
    names = [entry.name for entry in entries]
    subdirectories = [entry for entry in entries if entry.is_directory()]
    files = [entry for entry in entries if entry.is_file()]

    handle = driver.open("/test.txt")
    contents = driver.read_file(handle, 0, handle.size())
    print(contents.decode())

    try:
        driver.open("/missing.txt")
    except PathNotFoundError:
        print("no such file")
```

Paths use `/` as a separator. Empty segments are ignored, so `/mydir/` and
`mydir` name the same directory, and `/` names the root; an empty string is
not a path. `read_file(file, offset=0, size=None)` returns `bytes` and never
reads past the size recorded in the directory entry.

Every failure is a subclass of `DriverError`:

- `DiskError` when a block cannot be read,
- `FileSystemInvalidError` when the boot record or FSInfo sector is unusable,
  the FSInfo signatures are wrong, or a cluster chain is broken or loops,
- `PathNotFoundError`,
- `NotADirectoryEntryError` when `open_dir` is given a file,
- `DirectoryEntryIsDirectoryError` when `open` is given a directory.

`VFAT32Driver` accepts any `BlockDevice`: a subclass whose
`read_block(index)` returns one sector as `bytes` and raises `OSError` when it
cannot. `FileBlockDevice(file, block_size=512)` is the one provided, backed by
a seekable binary file.

## On-disk structures

`fatprobe.records` holds `BootRecord` and `FSInfo`, each built with `read`
from a sector's bytes; a short buffer raises `BufferTooSmallError`.
`BootRecord` gives the sector layout (`first_fat_sector`,
`first_data_sector`, `num_sectors`), and `FSInfo.is_valid` checks the three
signatures.

`fatprobe.entry` decodes 32-byte directory entries: `read_directory_entry`
returns either a `LongFileNameEntry` or a `RealEntry`. A `RealEntry` reports
its `Attributes`, start cluster, file size, case flags and the short 8.3 name;
a `LongFileNameEntry` gives its name fragment with `name()`.

## PCI and ACPI

`fatprobe.pci` turns raw configuration-space words into `CommonHeader`,
`GeneralHeader` and `DeviceClass` values, and formats `PCIAddress` and
`GeneralDevice` as `bb:dd.f` lines with a class and device name.
`PCISubsystem` enumerates general-header functions on buses 0 to 7 and sets
command-register bits with `send_command`, working through a `ConfigSpace`.
The `ConfigSpace` provided keeps configuration words in memory, keyed by
`PCIAddress`, so enumeration runs against recorded or simulated data.

`fatprobe.acpi` works on a `bytes` image of physical memory. `Rsdp.find`
searches the BIOS area and then the EBDA for the RSDP, `validate_checksum`
checks table checksums, and `Rsdt` and `Fadt` parse those tables.
`AcpiReader.read` does all of that in one call and raises `AcpiError` when a
table is missing, corrupt, or the RSDP revision is not 0.

## What it does not do

- It never writes: there is no creating, changing or deleting of files or
  directories, and nothing is mounted.
- It reads FAT32 only, not FAT12 or FAT16.
- It does not touch hardware. PCI enumeration needs a `ConfigSpace` filled
  with configuration words, and the ACPI code needs a memory image supplied
  as bytes.
- Only ACPI 1.0 tables (RSDP revision 0, RSDT) are read; the XSDT is not.