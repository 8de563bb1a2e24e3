"""igsync - Instagram analytics sync and caching engine."""

__version__ = "0.1.0"
