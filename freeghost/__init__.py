"""Encrypted storage, versioned network state, TCP transport, plugins and behaviour analysis for a secure identity node."""

__version__ = "0.1.0"