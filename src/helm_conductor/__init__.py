"""Chart repository sync, catalog cache and release reconciliation."""

__version__ = "0.1.0"
