"""Golden-snapshot UI testing for firmware running in a containerized emulator."""

__version__ = "0.1.0"
