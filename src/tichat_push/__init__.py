"""TiChat push notification subsystem."""

__version__ = "0.1.0"
