"""stealthyai: local chat and notes store with device pairing."""

__version__ = "0.1.0"
