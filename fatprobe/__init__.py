"""Read FAT32 images and decode PCI configuration headers and ACPI tables."""

__version__ = "0.1.0"

__all__ = ["__version__"]