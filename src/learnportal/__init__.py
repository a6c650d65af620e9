"""Local-first session and persistence engine for the learning portal."""

__version__ = "0.1.0"
