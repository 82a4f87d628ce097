"""Location and parsing of ACPI tables in an image of physical memory."""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass

EBDA_START = 0x00080000
EBDA_END = 0x0009FFFF

BIOS_BELOW_START = 0x000E0000
BIOS_BELOW_END = 0x000FFFFF

RSDP_SIGNATURE = b"RSD PTR "
RSDP_SIZE = 20
RSDP_ALIGNMENT = 16

RSDT_SIGNATURE = b"RSDT"
FADT_SIGNATURE = b"FACP"

SDT_HEADER_SIZE = 36
SDT_POINTER_SIZE = 4
FADT_BODY_SIZE = 116

_SDT_HEADER_LAYOUT = struct.Struct("<4sIBB6s8sIII")
_FADT_LAYOUT = struct.Struct("<2I2BHI4B8I8B4H5BHBI")


class AcpiError(Exception):
    """Raised when ACPI structures are missing, damaged or unsupported."""


def validate_checksum(data: bytes) -> bool:
    """True when the bytes sum to zero modulo 256."""
    return sum(bytes(data)) % 0x100 == 0


def _read(memory: bytes, address: int, size: int) -> bytes:
    if address < 0:
        raise AcpiError(f"address {address:#x} is negative")
    chunk = bytes(memory[address:address + size])
    if len(chunk) != size:
        raise AcpiError(f"{size} bytes at {address:#x} lie outside memory")
    return chunk


class PowerManagementProfile(enum.Enum):
    """Preferred power management profile declared by the FADT."""

    UNSPECIFIED = 0
    DESKTOP = 1
    MOBILE = 2
    WORKSTATION = 3
    ENTERPRISE_SERVER = 4
    SOHO_SERVER = 5
    APPLIANCE_PC = 6
    PERFORMANCE_SERVER = 7
    TABLET = 8
    UNKNOWN = "unknown"

    @classmethod
    def from_value(cls, value: int) -> PowerManagementProfile:
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


class AddressSpace(enum.Enum):
    """Address space identifier of an ACPI generic address."""

    SYSTEM_MEMORY = 0
    SYSTEM_IO = 1
    PCI_CONFIGURATION_SPACE = 2
    EMBEDDED_CONTROLLER = 3
    SYSTEM_MANAGEMENT_BUS = 4
    SYSTEM_CMOS = 5
    PCI_DEVICE_BAR_TARGET = 6
    INTELLIGENT_PLATFORM_MANAGEMENT_INFRASTRUCTURE = 7
    GENERAL_PURPOSE_IO = 8
    GENERIC_SERIAL_BUS = 9
    PLATFORM_COMMUNICATION_CHANNEL = 10
    UNKNOWN = "unknown"

    @classmethod
    def from_value(cls, value: int) -> AddressSpace:
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


def _search_rsdp(memory: bytes, start: int, end: int) -> int | None:
    for address in range(start, end, RSDP_ALIGNMENT):
        if bytes(memory[address:address + len(RSDP_SIGNATURE)]) == RSDP_SIGNATURE:
            return address
    return None


@dataclass(frozen=True, slots=True)
class Rsdp:
    """Root system description pointer."""

    address: int
    checksum: int
    oem_id: bytes
    revision: int
    rsdt_address: int

    @classmethod
    def find(cls, memory: bytes) -> Rsdp:
        """Search the BIOS area, then the EBDA, for a valid RSDP."""
        address = _search_rsdp(memory, BIOS_BELOW_START, BIOS_BELOW_END)
        if address is None:
            address = _search_rsdp(memory, EBDA_START, EBDA_END)
        if address is None:
            raise AcpiError("RSDP not found")

        data = _read(memory, address, RSDP_SIZE)
        if not validate_checksum(data):
            raise AcpiError(f"RSDP at {address:#x} has a bad checksum")

        return cls(
            address=address,
            checksum=data[8],
            oem_id=data[9:15],
            revision=data[15],
            rsdt_address=struct.unpack_from("<I", data, 16)[0],
        )


@dataclass(frozen=True, slots=True)
class SdtHeader:
    """Header shared by every ACPI system description table."""

    signature: bytes
    length: int
    revision: int
    checksum: int
    oem_id: bytes
    oem_table_id: bytes
    oem_revision: int
    creator_id: int
    creator_revision: int

    @classmethod
    def parse(cls, data: bytes) -> SdtHeader:
        """Parse the 36-byte header at the start of ``data``."""
        data = bytes(data)
        if len(data) < SDT_HEADER_SIZE:
            raise AcpiError(f"table header needs {SDT_HEADER_SIZE} bytes, got {len(data)}")
        return cls(*_SDT_HEADER_LAYOUT.unpack_from(data))


def _checked_table(memory: bytes, address: int, signature: bytes) -> SdtHeader:
    header = SdtHeader.parse(_read(memory, address, SDT_HEADER_SIZE))
    if header.signature != signature:
        raise AcpiError(
            f"table at {address:#x} has signature {header.signature!r}, expected {signature!r}"
        )
    if header.length < SDT_HEADER_SIZE:
        raise AcpiError(f"table at {address:#x} declares length {header.length}")
    if not validate_checksum(_read(memory, address, header.length)):
        raise AcpiError(f"table at {address:#x} has a bad checksum")
    return header


@dataclass(frozen=True, slots=True)
class Rsdt:
    """Root system description table."""

    address: int
    header: SdtHeader

    @classmethod
    def parse(cls, memory: bytes, address: int) -> Rsdt:
        return cls(address, _checked_table(memory, address, RSDT_SIGNATURE))

    def find_table(self, memory: bytes, signature: str | bytes) -> int | None:
        """Physical address of the first listed table with ``signature``, or None."""
        if isinstance(signature, str):
            signature = signature.encode("ascii")
        if len(signature) != 4:
            raise ValueError(f"table signature must be 4 bytes, got {signature!r}")

        count = (self.header.length - SDT_HEADER_SIZE) // SDT_POINTER_SIZE
        first = self.address + SDT_HEADER_SIZE
        for index in range(count):
            pointer = _read(memory, first + index * SDT_POINTER_SIZE, SDT_POINTER_SIZE)
            table_address = struct.unpack("<I", pointer)[0]
            if bytes(memory[table_address:table_address + 4]) == signature:
                return table_address
        return None


@dataclass(frozen=True, slots=True)
class Fadt:
    """Fixed ACPI description table."""

    header: SdtHeader
    firmware_control: int
    dsdt_address: int
    int_model: int
    preferred_power_management_profile: PowerManagementProfile
    sci_interrupt: int
    smi_command_port: int
    acpi_enable: int
    acpi_disable: int
    s4bios_req: int
    pstate_control: int
    pm1a_event_block: int
    pm1b_event_block: int
    pm1a_control_block: int
    pm1b_control_block: int
    pm2_control_block: int
    pm_timer_block: int
    gpe0_block: int
    gpe1_block: int
    pm1_event_length: int
    pm1_control_length: int
    pm2_control_length: int
    pm_timer_length: int
    gpe0_length: int
    gpe1_length: int
    gpe1_base: int
    c_state_control: int
    worst_c2_latency: int
    worst_c3_latency: int
    flush_size: int
    flush_stride: int
    duty_offset: int
    duty_width: int
    day_alarm: int
    month_alarm: int
    century: int
    boot_architecture_flags: int
    reserved2: int
    flags: int

    @classmethod
    def parse(cls, memory: bytes, address: int) -> Fadt:
        header = _checked_table(memory, address, FADT_SIGNATURE)
        body = _read(memory, address + SDT_HEADER_SIZE, FADT_BODY_SIZE)
        values = list(_FADT_LAYOUT.unpack_from(body))
        values[3] = PowerManagementProfile.from_value(values[3])
        return cls(header, *values)


@dataclass(frozen=True, slots=True)
class AcpiReader:
    """The RSDP, RSDT and FADT of a machine."""

    rsdp: Rsdp
    rsdt: Rsdt
    fadt: Fadt

    @classmethod
    def read(cls, memory: bytes) -> AcpiReader:
        """Locate and parse the ACPI 1.0 tables in a physical memory image."""
        rsdp = Rsdp.find(memory)
        if rsdp.revision != 0:
            raise AcpiError(f"unsupported RSDP revision {rsdp.revision}")
        rsdt = Rsdt.parse(memory, rsdp.rsdt_address)
        fadt_address = rsdt.find_table(memory, FADT_SIGNATURE)
        if fadt_address is None:
            raise AcpiError("FADT not listed in the RSDT")
        return cls(rsdp, rsdt, Fadt.parse(memory, fadt_address))