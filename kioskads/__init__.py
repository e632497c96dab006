"""Kiosk advertising backend: campaign lifecycle, media archival and volume pricing."""

__version__ = "0.1.0"
