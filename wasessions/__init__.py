"""QR-paired messaging session lifecycle manager."""

__version__ = "0.1.0"
