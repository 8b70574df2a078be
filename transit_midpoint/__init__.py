"""Transit-optimized meeting point resolution."""

__version__ = "1.0.0"
