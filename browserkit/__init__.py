"""Server-side bridge for browser-mediated capabilities."""

__version__ = "0.1.0"
