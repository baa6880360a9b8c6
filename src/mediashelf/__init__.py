"""Media Shelf: local film and TV library catalog."""
__version__ = "1.0.0"
