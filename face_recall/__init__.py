"""Face Recall: remember who you just saw."""

__version__ = "0.1.0"
