"""Copy camera cards into dated shooting-session folders, resumably."""

__version__ = "0.1.0"
