"""bunq banking nodes for workflow automation."""

__version__ = "1.0.0"
