[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "fatprobe"
version = "0.1.0"
description = "Read-only FAT32 image inspection plus PCI configuration and ACPI table decoding"
requires-python = ">=3.10"
dependencies = []
keywords = ["fat32", "vfat", "filesystem", "disk-image", "pci", "acpi", "firmware"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Filesystems",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
fatprobe = "fatprobe.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["fatprobe"]

[tool.hatch.build.targets.sdist]
include = ["fatprobe", "tests", "README.md"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
