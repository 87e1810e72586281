"""Route motion engine for tracking a school bus on a map."""

__version__ = "0.1.0"
