"""Serialization-safe database export, search-replace and import for WordPress sites."""

__version__ = "0.1.0"
