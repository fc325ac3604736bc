"""Background supervisor for multi-phase automated coding workflows."""

__version__ = "0.3.0"
