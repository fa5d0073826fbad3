"""Chat session and message synchronization for the town planning assistant."""

__version__ = "0.1.0"
