"""nebulactl - package operation controller for xbps systems."""

__version__ = "0.1.0"
