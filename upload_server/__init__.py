"""HTTP file upload/download server."""

__version__ = "2.0.0"
