"""Security advisory and firmware digest builder."""

__version__ = "0.1.0"
