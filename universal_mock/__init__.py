"""A mock HTTP server that answers every request with the contents of one file."""

__version__ = "1.0.0"
