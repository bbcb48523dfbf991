"""Session entity graph and quota engine for skip-trace lookups."""

__version__ = "0.1.0"
