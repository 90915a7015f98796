"""Haunted aquarium relay: chunked image transfer between control panel and displays."""
__version__ = "1.0.0"
