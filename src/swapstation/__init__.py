"""Swap Station - battery swap reservation and exchange engine."""

__version__ = "0.1.0"
