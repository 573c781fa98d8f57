"""PEroxide: asynchronous file scanning service."""

__version__ = "1.0.0"
