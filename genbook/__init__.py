"""GenBook entitlements and subscription gating."""

__version__ = "0.1.0"
