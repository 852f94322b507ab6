"""devprune - find and safely remove build artifacts across developer projects."""

__version__ = "0.1.0"
