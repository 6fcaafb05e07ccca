"""quotadeck - quota dashboard core for CLIProxyAPI-managed provider accounts."""

__version__ = "0.1.0"
