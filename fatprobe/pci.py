"""PCI configuration-space decoding and bus enumeration."""

from __future__ import annotations

import enum
import threading
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass

CONFIG_ENABLE = 0x80000000
BUS_MASTER_ENABLE = 0x100
MEMORY_SPACE_ENABLE = 0x010
IO_SPACE_ENABLE = 0x001

DEVICE_ID_OFFSET = 0
COMMAND_REGISTER_OFFSET = 3

NO_DEVICE = 0xFFFFFFFF
U32_MASK = 0xFFFFFFFF

BUS_COUNT = 8
DEVICE_COUNT = 32
FUNCTION_COUNT = 8

COMMON_HEADER_WORDS = 4
GENERAL_HEADER_WORDS = 12

MULTIFUNCTION_BIT = 1 << 7


@dataclass(frozen=True, slots=True)
class PCIAddress:
    """Location of a function on the PCI bus."""

    bus: int
    device: int
    function: int = 0

    def __post_init__(self) -> None:
        if not 0 <= self.bus <= 0xFF:
            raise ValueError(f"bus must be in 0..255, got {self.bus}")
        if not 0 <= self.device < DEVICE_COUNT:
            raise ValueError(f"device must be in 0..31, got {self.device}")
        if not 0 <= self.function < FUNCTION_COUNT:
            raise ValueError(f"function must be in 0..7, got {self.function}")

    def __str__(self) -> str:
        return f"{self.bus:02x}:{self.device:02x}.{self.function}"


def config_address(addr: PCIAddress, offset: int) -> int:
    """The value written to the configuration address port for a byte offset."""
    if not 0 <= offset <= 0xFF:
        raise ValueError(f"configuration offset must be in 0..255, got {offset}")
    return CONFIG_ENABLE | (addr.bus << 16) | (addr.device << 11) | (addr.function << 8) | offset


class HeaderType(enum.Enum):
    """Layout of the header that follows the common part."""

    GENERAL = 0
    PCI_TO_PCI_BRIDGE = 1
    PCI_TO_CARDBUS_BRIDGE = 2
    UNKNOWN = "unknown"

    @classmethod
    def from_byte(cls, value: int) -> HeaderType:
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


class _Labelled(enum.Enum):
    def __str__(self) -> str:
        return self.value


class Unclassified(_Labelled):
    NON_VGA_COMPATIBLE = "Non-VGA compatible controller"
    VGA_COMPATIBLE = "VGA compatible controller"
    UNKNOWN = "Unknown unclassified"

    @classmethod
    def from_subclass(cls, subclass: int) -> Unclassified:
        return {0: cls.NON_VGA_COMPATIBLE, 1: cls.VGA_COMPATIBLE}.get(subclass, cls.UNKNOWN)


class MassStorageController(_Labelled):
    SCSI = "SCSI controller"
    IDE = "IDE controller"
    FLOPPY = "Floppy controller"
    IPI = "IPI controller"
    RAID = "RAID controller"
    ATA = "ATA controller"
    SATA = "SATA controller"
    SAS = "SAS controller"
    NVM = "Non-Volatile memory controller"
    OTHER = "Other storage controller"

    @classmethod
    def from_subclass(cls, subclass: int) -> MassStorageController:
        table = {
            0: cls.SCSI,
            1: cls.IDE,
            2: cls.FLOPPY,
            3: cls.IPI,
            4: cls.RAID,
            5: cls.ATA,
            6: cls.SATA,
            7: cls.SAS,
            8: cls.NVM,
        }
        return table.get(subclass, cls.OTHER)


class Bridge(_Labelled):
    HOST = "Host bridge"
    ISA = "ISA bridge"
    EISA = "EISA bridge"
    MCA = "MCA bridge"
    PCI_TO_PCI = "PCI bridge"
    PCMCIA = "PCMCIA bridge"
    NUBUS = "NuBus bridge"
    CARDBUS = "CardBus bridge"
    RACEWAY = "RACEway bridge"
    INFINIBAND_TO_PCI = "InfiniBand bridge"
    OTHER = "Other bridge"

    @classmethod
    def from_subclass(cls, subclass: int) -> Bridge:
        table = {
            0: cls.HOST,
            1: cls.ISA,
            2: cls.EISA,
            3: cls.MCA,
            4: cls.PCI_TO_PCI,
            9: cls.PCI_TO_PCI,
            5: cls.PCMCIA,
            6: cls.NUBUS,
            7: cls.CARDBUS,
            8: cls.RACEWAY,
            10: cls.INFINIBAND_TO_PCI,
        }
        return table.get(subclass, cls.OTHER)


class DeviceCategory(_Labelled):
    """Broad device class given by the class code."""

    UNCLASSIFIED = "Unclassified"
    MASS_STORAGE = "Mass storage controller"
    NETWORK = "Network controller"
    DISPLAY = "Display controller"
    MULTIMEDIA = "Multimedia controller"
    MEMORY = "RAM memory"
    BRIDGE = "Bridge"
    SIMPLE_COMMUNICATION = "Communication controller"
    BASE_SYSTEM_PERIPHERAL = "System peripheral"
    INPUT_DEVICE = "Input device"
    DOCKING_STATION = "Docking station"
    PROCESSOR = "Processor"
    SERIAL_BUS = "Serial bus controller"
    WIRELESS = "Wireless controller"
    INTELLIGENT = "Intelligent controller"
    SATELLITE_COMMUNICATION = "Satellite controller"
    ENCRYPTION = "Encryption device"
    SIGNAL_PROCESSING = "Signal processing controller"
    PROCESSING_ACCELERATOR = "Processing accelerator"
    NON_ESSENTIAL = "Non-essential"
    CO_PROCESSOR = "Co-processor"
    UNKNOWN = "Unknown"


_CATEGORY_BY_CODE = {
    0: DeviceCategory.UNCLASSIFIED,
    1: DeviceCategory.MASS_STORAGE,
    2: DeviceCategory.NETWORK,
    3: DeviceCategory.DISPLAY,
    4: DeviceCategory.MULTIMEDIA,
    5: DeviceCategory.MEMORY,
    6: DeviceCategory.BRIDGE,
    7: DeviceCategory.SIMPLE_COMMUNICATION,
    8: DeviceCategory.BASE_SYSTEM_PERIPHERAL,
    9: DeviceCategory.INPUT_DEVICE,
    10: DeviceCategory.DOCKING_STATION,
    11: DeviceCategory.PROCESSOR,
    12: DeviceCategory.SERIAL_BUS,
    13: DeviceCategory.WIRELESS,
    14: DeviceCategory.INTELLIGENT,
    15: DeviceCategory.SATELLITE_COMMUNICATION,
    16: DeviceCategory.ENCRYPTION,
    17: DeviceCategory.SIGNAL_PROCESSING,
    18: DeviceCategory.PROCESSING_ACCELERATOR,
    19: DeviceCategory.NON_ESSENTIAL,
    0x40: DeviceCategory.CO_PROCESSOR,
}

_SUBCLASS_KINDS = {
    DeviceCategory.UNCLASSIFIED: Unclassified,
    DeviceCategory.MASS_STORAGE: MassStorageController,
    DeviceCategory.BRIDGE: Bridge,
}


@dataclass(frozen=True, slots=True)
class DeviceClass:
    """A device category, refined by subclass where the category has named ones."""

    category: DeviceCategory
    subclass: Unclassified | MassStorageController | Bridge | None = None

    @classmethod
    def from_identifiers(cls, class_code: int, subclass: int) -> DeviceClass:
        category = _CATEGORY_BY_CODE.get(class_code, DeviceCategory.UNKNOWN)
        kind = _SUBCLASS_KINDS.get(category)
        return cls(category, kind.from_subclass(subclass) if kind else None)

    def __str__(self) -> str:
        if self.subclass is not None:
            return str(self.subclass)
        return str(self.category)


def _require_words(words: Sequence[int], count: int, what: str) -> list[int]:
    words = [word & U32_MASK for word in words]
    if len(words) != count:
        raise ValueError(f"{what} needs {count} words, got {len(words)}")
    return words


@dataclass(frozen=True, slots=True)
class CommonHeader:
    """The first four configuration words, shared by every header type."""

    device_id: int
    vendor_id: int
    status: int
    command: int
    class_code: int
    subclass: int
    prog_if: int
    revision_id: int
    bist: int
    header_type: HeaderType
    latency_timer: int
    cache_line_size: int
    is_multifunction: bool

    @classmethod
    def from_words(cls, words: Sequence[int]) -> CommonHeader:
        w = _require_words(words, COMMON_HEADER_WORDS, "common header")
        header_type_byte = (w[3] >> 16) & 0xFF
        is_multifunction = bool(header_type_byte & MULTIFUNCTION_BIT)
        return cls(
            device_id=w[0] >> 16,
            vendor_id=w[0] & 0xFFFF,
            status=w[1] >> 16,
            command=w[1] & 0xFFFF,
            class_code=w[2] >> 24,
            subclass=(w[2] >> 16) & 0xFF,
            prog_if=(w[2] >> 8) & 0xFF,
            revision_id=w[2] & 0xFF,
            bist=w[3] >> 24,
            header_type=HeaderType.from_byte(header_type_byte & ~MULTIFUNCTION_BIT),
            latency_timer=(w[3] >> 8) & 0xFF,
            cache_line_size=w[3] & 0xFF,
            is_multifunction=is_multifunction,
        )


@dataclass(frozen=True, slots=True)
class GeneralHeader:
    """Configuration words 4 to 15 of a general (type 0) header."""

    bar0: int
    bar1: int
    bar2: int
    bar3: int
    bar4: int
    bar5: int
    cardbus_cis_pointer: int
    subsystem_id: int
    subsystem_vendor_id: int
    expansion_rom_base_addr: int
    capabilities_pointer: int
    max_latency: int
    min_grant: int
    interrupt_pin: int
    interrupt_line: int

    @classmethod
    def from_words(cls, words: Sequence[int]) -> GeneralHeader:
        w = _require_words(words, GENERAL_HEADER_WORDS, "general header")
        # Word 10 is reserved.
        return cls(
            bar0=w[0],
            bar1=w[1],
            bar2=w[2],
            bar3=w[3],
            bar4=w[4],
            bar5=w[5],
            cardbus_cis_pointer=w[6],
            subsystem_id=w[7] >> 16,
            subsystem_vendor_id=w[7] & 0xFFFF,
            expansion_rom_base_addr=w[8],
            capabilities_pointer=w[9] & 0xFF,
            max_latency=w[11] >> 24,
            min_grant=(w[11] >> 16) & 0xFF,
            interrupt_pin=(w[11] >> 8) & 0xFF,
            interrupt_line=w[11] & 0xFF,
        )


def device_name(device_id: int, vendor_id: int) -> str | None:
    """Human-readable name of a known device, or None."""
    known = {(0x15AD, 0x0405): "VMWare SVGA-II"}
    return known.get((vendor_id, device_id))


@dataclass(frozen=True, slots=True)
class GeneralDevice:
    """A function with a general header found on the bus."""

    addr: PCIAddress
    common_header: CommonHeader
    header: GeneralHeader
    device_class: DeviceClass

    @property
    def vendor_id(self) -> int:
        return self.common_header.vendor_id

    @property
    def device_id(self) -> int:
        return self.common_header.device_id

    @property
    def bar0(self) -> int:
        return self.header.bar0

    def __str__(self) -> str:
        name = device_name(self.device_id, self.vendor_id)
        if name is None:
            name = f"Unknown ({self.vendor_id:04x}:{self.device_id:04x})"
        return f"{self.addr} {self.device_class}: {name}"


class ConfigSpace:
    """PCI configuration space accessed through configuration addresses.

    This implementation keeps each function's configuration words in memory;
    functions that are not present read as all ones.
    """

    def __init__(self, functions: Mapping[PCIAddress, Sequence[int]] | None = None) -> None:
        self._functions = {
            addr: [word & U32_MASK for word in words] for addr, words in (functions or {}).items()
        }

    @staticmethod
    def _decode(address: int) -> tuple[PCIAddress, int] | None:
        if not address & CONFIG_ENABLE:
            return None
        addr = PCIAddress((address >> 16) & 0xFF, (address >> 11) & 0x1F, (address >> 8) & 0x7)
        return addr, (address & 0xFC) // 4

    def read(self, address: int) -> int:
        """The 32-bit word at a configuration address."""
        decoded = self._decode(address)
        if decoded is None:
            return NO_DEVICE
        addr, index = decoded
        words = self._functions.get(addr)
        if words is None:
            return NO_DEVICE
        return words[index] if index < len(words) else 0

    def write(self, address: int, value: int) -> None:
        """Store a 32-bit word; writes to absent functions are dropped."""
        decoded = self._decode(address)
        if decoded is None:
            return
        addr, index = decoded
        words = self._functions.get(addr)
        if words is None:
            return
        if index >= len(words):
            words.extend([0] * (index + 1 - len(words)))
        words[index] = value & U32_MASK


class PCISubsystem:
    """Enumerates and commands PCI functions through a configuration space."""

    def __init__(self, config_space: ConfigSpace) -> None:
        self._space = config_space
        self._lock = threading.Lock()

    def enumerate_devices(self) -> list[GeneralDevice]:
        """Every general-header function on buses 0-7, in bus, device, function order."""
        with self._lock:
            return list(self._scan())

    def send_command(self, device: GeneralDevice, command: int) -> None:
        """Set bits in the command register of a device."""
        with self._lock:
            before = self._read_u16(device.addr, COMMAND_REGISTER_OFFSET)
            self._write_u16(device.addr, COMMAND_REGISTER_OFFSET, before | command)

    def _scan(self) -> Iterator[GeneralDevice]:
        for bus in range(BUS_COUNT):
            for slot in range(DEVICE_COUNT):
                base = PCIAddress(bus, slot)
                header = self._common_header(base)
                if header is None:
                    continue
                if not header.is_multifunction:
                    device = self._device(header, base)
                    if device is not None:
                        yield device
                    continue
                for function in range(FUNCTION_COUNT):
                    addr = PCIAddress(bus, slot, function)
                    function_header = self._common_header(addr)
                    if function_header is None:
                        continue
                    device = self._device(function_header, addr)
                    if device is not None:
                        yield device

    def _device(self, header: CommonHeader, addr: PCIAddress) -> GeneralDevice | None:
        if header.header_type is not HeaderType.GENERAL:
            return None
        words = [
            self._read_u32(addr, index)
            for index in range(COMMON_HEADER_WORDS, COMMON_HEADER_WORDS + GENERAL_HEADER_WORDS)
        ]
        return GeneralDevice(
            addr=addr,
            common_header=header,
            header=GeneralHeader.from_words(words),
            device_class=DeviceClass.from_identifiers(header.class_code, header.subclass),
        )

    def _common_header(self, addr: PCIAddress) -> CommonHeader | None:
        if self._read_u32(addr, DEVICE_ID_OFFSET) == NO_DEVICE:
            return None
        return CommonHeader.from_words(
            [self._read_u32(addr, index) for index in range(COMMON_HEADER_WORDS)]
        )

    def _read_u32(self, addr: PCIAddress, index: int) -> int:
        return self._space.read(config_address(addr, index * 4)) & U32_MASK

    def _read_u16(self, addr: PCIAddress, offset: int) -> int:
        data = self._space.read(config_address(addr, (offset & 0xFE) * 2)) & U32_MASK
        return data & 0xFFFF if offset % 2 else data >> 16

    def _write_u16(self, addr: PCIAddress, offset: int, value: int) -> None:
        address = config_address(addr, (offset & 0xFE) * 2)
        before = self._space.read(address) & U32_MASK
        value &= 0xFFFF
        if offset % 2:
            data = value | (before & 0xFFFF0000)
        else:
            data = (value << 16) | (before & 0x0000FFFF)
        self._space.write(address, data)