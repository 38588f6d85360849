"""Autocall: a single-device phone call queue with rotation."""

__all__ = ["__version__"]
__version__ = "0.1.0"
