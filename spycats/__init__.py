"""Spy Cat Agency: cats, missions and targets with consistent assignment and completion."""

__version__ = "0.1.0"
