"""Transaction routing, permission registry and credential recovery flows."""

__version__ = "0.1.0"
